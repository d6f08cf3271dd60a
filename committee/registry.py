"""Evaluator pool: a registry of committee members keyed by stable id."""
from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from committee.models import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    Evaluator,
    GeminiProvider,
    LLMEvaluator,
    LLMProvider,
    OpenAIProvider,
)

logger = logging.getLogger(__name__)

AZURE_OPENAI_API_VERSION = "2024-10-21"


@dataclass
class EvaluatorSpec:
    evaluator_id: str
    name: str
    kind: str                     # "gemini" | "openai" | "azure-openai"
    model: str
    api_key_env: str
    endpoint_env: str | None = None
    base_url: str | None = None
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS

    @property
    def api_key(self) -> str:
        return os.environ.get(self.api_key_env, "")

    @property
    def endpoint(self) -> str | None:
        if self.endpoint_env:
            return os.environ.get(self.endpoint_env) or None
        return self.base_url

    @property
    def enabled(self) -> bool:
        if not self.api_key:
            return False
        return self.endpoint_env is None or bool(self.endpoint)


def default_evaluator_specs() -> list[EvaluatorSpec]:
    """Known backends; each is enabled once its credentials are in the environment."""
    return [
        EvaluatorSpec(
            evaluator_id="azure-gpt-5.1",
            name="Azure GPT-5.1",
            kind="azure-openai",
            model="gpt-5.1",
            api_key_env="AZURE_OPENAI_API_KEY",
            endpoint_env="AZURE_OPENAI_ENDPOINT",
        ),
        EvaluatorSpec(
            evaluator_id="azure-claude-opus-4.5",
            name="Azure Claude Opus 4.5",
            kind="openai",
            model="claude-opus-4-5",
            api_key_env="AZURE_ANTHROPIC_API_KEY",
            endpoint_env="AZURE_ANTHROPIC_ENDPOINT",
        ),
        EvaluatorSpec(
            evaluator_id="azure-deepseek-v3.2",
            name="Azure DeepSeek V3.2",
            kind="openai",
            model="DeepSeek-V3.2",
            api_key_env="AZURE_DEEPSEEK_API_KEY",
            endpoint_env="AZURE_DEEPSEEK_ENDPOINT",
        ),
        EvaluatorSpec(
            evaluator_id="gemini-2.5-pro",
            name="Google Gemini 2.5 Pro",
            kind="gemini",
            model="gemini-2.5-pro",
            api_key_env="GEMINI_API_KEY",
        ),
        EvaluatorSpec(
            evaluator_id="xai-grok-4-reasoning",
            name="xAI Grok-4 Fast Reasoning",
            kind="openai",
            model="grok-4-fast-reasoning",
            api_key_env="XAI_API_KEY",
            base_url="https://api.x.ai/v1",
        ),
    ]


def build_provider(spec: EvaluatorSpec) -> LLMProvider:
    if spec.kind == "gemini":
        return GeminiProvider(model=spec.model, api_key=spec.api_key, max_tokens=spec.max_tokens)
    if spec.kind == "openai":
        return OpenAIProvider(
            model=spec.model,
            api_key=spec.api_key,
            base_url=spec.endpoint,
            max_tokens=spec.max_tokens,
        )
    if spec.kind == "azure-openai":
        return OpenAIProvider(
            model=spec.model,
            api_key=spec.api_key,
            base_url=spec.endpoint,
            max_tokens=spec.max_tokens,
            azure_api_version=AZURE_OPENAI_API_VERSION,
        )
    raise ValueError(f"Unknown evaluator kind: {spec.kind}")


class EvaluatorPool:
    def __init__(self, evaluators: Iterable[Evaluator] = ()):
        self._evaluators: dict[str, Evaluator] = {}
        for evaluator in evaluators:
            self.register(evaluator)

    @classmethod
    def from_specs(cls, specs: Iterable[EvaluatorSpec]) -> EvaluatorPool:
        pool = cls()
        for spec in specs:
            if not spec.enabled:
                continue
            try:
                provider = build_provider(spec)
            except Exception:
                logger.exception("Failed to initialise evaluator %s", spec.evaluator_id)
                continue
            pool.register(LLMEvaluator(
                spec.evaluator_id,
                provider,
                name=spec.name,
                temperature=spec.temperature,
            ))
        logger.info("Evaluator pool ready: %s", pool.ids() or "(empty)")
        return pool

    def register(self, evaluator: Evaluator) -> None:
        if evaluator.evaluator_id in self._evaluators:
            logger.warning("Replacing registered evaluator %s", evaluator.evaluator_id)
        self._evaluators[evaluator.evaluator_id] = evaluator

    def get(self, evaluator_id: str) -> Evaluator | None:
        return self._evaluators.get(evaluator_id)

    def ids(self) -> list[str]:
        return list(self._evaluators)

    def __contains__(self, evaluator_id: object) -> bool:
        return evaluator_id in self._evaluators

    def __len__(self) -> int:
        return len(self._evaluators)

    def __iter__(self) -> Iterator[Evaluator]:
        return iter(self._evaluators.values())
