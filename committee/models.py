from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

import google.genai as genai
from openai import AsyncAzureOpenAI, AsyncOpenAI

from committee.errors import EvaluatorFailure
from committee.evaluator import build_user_prompt, parse_evaluator_output
from committee.schemas import EvaluatorOutput, EvidencePack

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.1
DEFAULT_MAX_TOKENS = 4000


@dataclass
class LLMResponse:
    content: str
    model: str


class LLMProvider(ABC):
    @abstractmethod
    async def complete(self, system: str, user: str, temperature: float = DEFAULT_TEMPERATURE) -> LLMResponse:
        ...

    @property
    @abstractmethod
    def model_id(self) -> str:
        ...


class GeminiProvider(LLMProvider):
    def __init__(self, model: str, api_key: str, max_tokens: int = DEFAULT_MAX_TOKENS):
        self._model = model
        self._max_tokens = max_tokens
        self._client = genai.Client(api_key=api_key)

    @property
    def model_id(self) -> str:
        return self._model

    async def complete(self, system: str, user: str, temperature: float = DEFAULT_TEMPERATURE) -> LLMResponse:
        resp = await asyncio.to_thread(
            self._client.models.generate_content,
            model=self._model,
            contents=user,
            config=genai.types.GenerateContentConfig(
                system_instruction=system,
                temperature=temperature,
                max_output_tokens=self._max_tokens,
                response_mime_type="application/json",
            ),
        )
        return LLMResponse(content=resp.text or "", model=self._model)


class OpenAIProvider(LLMProvider):
    """Chat-completions backend; covers OpenAI-compatible endpoints (Foundry, xAI, DeepSeek)."""

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        azure_api_version: str | None = None,
    ):
        self._model = model
        self._max_tokens = max_tokens
        if azure_api_version:
            self._client = AsyncAzureOpenAI(
                azure_endpoint=base_url or "",
                api_key=api_key,
                api_version=azure_api_version,
            )
        else:
            self._client = AsyncOpenAI(base_url=base_url, api_key=api_key)

    @property
    def model_id(self) -> str:
        return self._model

    async def complete(self, system: str, user: str, temperature: float = DEFAULT_TEMPERATURE) -> LLMResponse:
        resp = await self._client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=temperature,
            max_tokens=self._max_tokens,
            response_format={"type": "json_object"},
        )
        content = resp.choices[0].message.content if resp.choices else None
        return LLMResponse(content=content or "", model=resp.model or self._model)


# ── Evaluator interface ─────────────────────────────────────────────

class Evaluator(ABC):
    """One committee member. The engine depends only on this interface."""

    @property
    @abstractmethod
    def evaluator_id(self) -> str:
        ...

    @property
    def name(self) -> str:
        return self.evaluator_id

    @abstractmethod
    async def execute(
        self,
        pack: EvidencePack,
        questions: list[str],
        system_prompt: str,
        timeout: float,
    ) -> EvaluatorOutput:
        """Answer every question, honouring ``timeout`` (seconds)."""


class LLMEvaluator(Evaluator):
    def __init__(
        self,
        evaluator_id: str,
        provider: LLMProvider,
        name: str | None = None,
        temperature: float = DEFAULT_TEMPERATURE,
    ):
        self._id = evaluator_id
        self._name = name or evaluator_id
        self._provider = provider
        self._temperature = temperature

    @property
    def evaluator_id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    async def execute(
        self,
        pack: EvidencePack,
        questions: list[str],
        system_prompt: str,
        timeout: float,
    ) -> EvaluatorOutput:
        start = time.monotonic()
        user_prompt = build_user_prompt(pack, questions)

        try:
            response = await asyncio.wait_for(
                self._provider.complete(system=system_prompt, user=user_prompt, temperature=self._temperature),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise EvaluatorFailure(self._id, f"timeout after {timeout:.1f}s") from None

        if not response.content.strip():
            raise EvaluatorFailure(self._id, "empty response")

        try:
            output = parse_evaluator_output(
                response.content,
                evaluator_id=self._id,
                evaluator_name=self._name,
                valid_option_ids=set(pack.option_ids()),
            )
        except ValueError as exc:
            logger.error(
                "Failed to parse JSON from %s (%s). Raw output:\n%s",
                self._id,
                self._provider.model_id,
                response.content,
            )
            raise EvaluatorFailure(self._id, f"unparseable response: {exc}") from exc

        output.processing_time_ms = int((time.monotonic() - start) * 1000)
        return output
