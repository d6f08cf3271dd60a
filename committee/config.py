from __future__ import annotations

from pathlib import Path
from typing import Annotated

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

load_dotenv()

COMMITTEE_SIZE = 3
MAX_CONCURRENCY = 3             # outbound evaluator calls in flight, independent of committee size
TIMEOUT_SECONDS = 30.0          # per evaluator call
MIN_SUCCESSFUL_EVALUATORS = 2
MARGIN_THRESHOLD = 0.25         # winner minus runner-up below this needs a human
MIN_WINNER_WEIGHT = 0.5
MAJORITY_RATIO = 0.66
SPLIT_RATIO = 0.33
CONFIDENCE_THRESHOLD = 0.75     # auto-accept for unanimous
MAJORITY_CONFIDENCE_THRESHOLD = 0.85
CALIBRATION_STEEPNESS = 10.0

DEFAULT_POOL = [
    "azure-gpt-5.1",
    "azure-claude-opus-4.5",
    "azure-deepseek-v3.2",
    "gemini-2.5-pro",
    "xai-grok-4-reasoning",
]

DEFAULT_WEIGHTS_FILE = Path(__file__).resolve().parent.parent / "config" / "calibrated-weights.json"


def split_csv(value: object) -> object:
    """Comma-separated env values (COMMITTEE_POOL=a,b,c) become lists."""
    if isinstance(value, str):
        return [p.strip() for p in value.split(",") if p.strip()]
    return value


class CommitteeConfig(BaseSettings):
    """Committee settings; any field can be overridden by a COMMITTEE_* variable or .env entry."""

    model_config = SettingsConfigDict(
        env_prefix="COMMITTEE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
        populate_by_name=True,
    )

    evaluator_count: int = Field(default=COMMITTEE_SIZE, ge=1, alias="COMMITTEE_SIZE")
    evaluator_pool: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_POOL), alias="COMMITTEE_POOL"
    )
    max_concurrency: int = Field(default=MAX_CONCURRENCY, ge=1)
    timeout_seconds: float = Field(default=TIMEOUT_SECONDS, gt=0)
    min_successful_evaluators: int = Field(default=MIN_SUCCESSFUL_EVALUATORS, ge=1, alias="COMMITTEE_MIN_SUCCESSES")
    margin_threshold: float = MARGIN_THRESHOLD
    majority_ratio: float = MAJORITY_RATIO
    split_ratio: float = SPLIT_RATIO
    confidence_threshold: float = CONFIDENCE_THRESHOLD
    majority_confidence_threshold: float = MAJORITY_CONFIDENCE_THRESHOLD
    weights_file: Path | None = DEFAULT_WEIGHTS_FILE
    audit_dir: Path | None = None

    @field_validator("evaluator_pool", mode="before")
    @classmethod
    def _split_pool(cls, value: object) -> object:
        return split_csv(value)

    @classmethod
    def from_env(cls) -> CommitteeConfig:
        return cls()
