"""FastAPI server: exposes the committee engine over HTTP."""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from committee.config import split_csv
from committee.engine import CommitteeEngine
from committee.errors import CommitteeError, InsufficientSuccesses
from committee.schemas import CommitteeResult, CommitteeTask

logger = logging.getLogger(__name__)


class ApiSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="COMMITTEE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
    )

    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: object) -> object:
        return split_csv(value)


_engine: CommitteeEngine | None = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    # Let background audit writes finish before the loop goes away
    if _engine is not None:
        logger.info("Draining pending audit writes")
        await _engine.audit_sink.drain()


settings = ApiSettings()
app = FastAPI(title="Committee Engine API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_engine() -> CommitteeEngine:
    global _engine
    if _engine is None:
        _engine = CommitteeEngine.from_env()
    return _engine


def set_engine(engine: CommitteeEngine | None) -> None:
    global _engine
    _engine = engine


@app.exception_handler(CommitteeError)
async def committee_error_handler(request: Request, exc: CommitteeError) -> JSONResponse:
    status = 503 if isinstance(exc, InsufficientSuccesses) else 400
    logger.warning("Committee request failed (%s): %s", exc.kind, exc.reason)
    return JSONResponse(status_code=status, content={"error": exc.kind, "reason": exc.reason})


@app.post("/committee", response_model=CommitteeResult)
async def run_committee(task: CommitteeTask) -> CommitteeResult:
    """Run one task through the committee and return the decision record."""
    return await get_engine().run_committee(task)


@app.get("/weights")
async def get_weights() -> dict[str, float]:
    """Trust weights the next task would use."""
    return get_engine().weights_snapshot().shares


@app.get("/health")
async def health() -> dict:
    engine = get_engine()
    return {"status": "ok", "evaluators": engine.pool.ids()}
