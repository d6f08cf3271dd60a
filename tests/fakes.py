"""Test doubles for the evaluator boundary."""
from __future__ import annotations

import asyncio

from committee.models import Evaluator
from committee.schemas import Answer, EvaluatorOutput, EvidencePack

CONSTRAINTS = [
    "Choose only from the given candidate option ids",
    "Return null rather than invent a value",
]


def make_pack(case_id: str = "case-001", headers: list[str] | None = None, **overrides) -> EvidencePack:
    headers = headers if headers is not None else ["Customer Name", "SKU", "Quantity", "Unit Price"]
    data = {
        "case_id": case_id,
        "candidate_headers": headers,
        "sample_values": {str(i): [f"{h} sample"] for i, h in enumerate(headers)},
        "constraints": list(CONSTRAINTS),
    }
    data.update(overrides)
    return EvidencePack(**data)


def make_output(
    evaluator_id: str,
    answers: dict[str, tuple[str | None, float]],
    overall_confidence: float = 0.9,
    error: str | None = None,
) -> EvaluatorOutput:
    return EvaluatorOutput(
        evaluator_id=evaluator_id,
        evaluator_name=evaluator_id,
        answers=[
            Answer(question=q, selected_option_id=option, confidence=conf, reasoning="test")
            for q, (option, conf) in answers.items()
        ],
        overall_confidence=overall_confidence,
        error=error,
    )


class FakeEvaluator(Evaluator):
    """Returns canned answers; can be slowed down or made to fail."""

    def __init__(
        self,
        evaluator_id: str,
        answers: dict[str, tuple[str | None, float]] | None = None,
        overall_confidence: float = 0.9,
        delay: float = 0.0,
        fail_with: Exception | None = None,
    ):
        self._id = evaluator_id
        self.answers = answers or {}
        self.overall_confidence = overall_confidence
        self.delay = delay
        self.fail_with = fail_with
        self.calls = 0
        self.active = 0
        self.max_active = 0

    @property
    def evaluator_id(self) -> str:
        return self._id

    async def execute(self, pack: EvidencePack, questions: list[str], system_prompt: str, timeout: float) -> EvaluatorOutput:
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_with is not None:
                raise self.fail_with
            return make_output(self._id, self.answers, self.overall_confidence)
        finally:
            self.active -= 1


class ConcurrencyGauge:
    """Shared counter to observe how many fake calls overlap."""

    def __init__(self):
        self.active = 0
        self.max_active = 0


class GaugedEvaluator(FakeEvaluator):
    def __init__(self, evaluator_id: str, gauge: ConcurrencyGauge, **kwargs):
        super().__init__(evaluator_id, **kwargs)
        self.gauge = gauge

    async def execute(self, pack, questions, system_prompt, timeout):
        self.gauge.active += 1
        self.gauge.max_active = max(self.gauge.max_active, self.gauge.active)
        try:
            return await super().execute(pack, questions, system_prompt, timeout)
        finally:
            self.gauge.active -= 1
