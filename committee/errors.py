"""Error taxonomy for committee runs.

Only ``InvalidEvidencePack``, ``UnknownTaskType`` and ``InsufficientSuccesses``
ever reach the caller. ``EvaluatorFailure`` is raised inside an evaluator and
turned into a failed output by the executor.
"""
from __future__ import annotations


class CommitteeError(Exception):
    """Base class; ``reason`` is the human-readable explanation."""

    kind = "committee_error"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class InvalidEvidencePack(CommitteeError):
    kind = "invalid_evidence_pack"


class UnknownTaskType(CommitteeError):
    kind = "unknown_task_type"

    def __init__(self, task_type: str):
        super().__init__(f"Unknown task type: {task_type!r}")
        self.task_type = task_type


class InsufficientSuccesses(CommitteeError):
    kind = "insufficient_successes"

    def __init__(self, required: int, got: int):
        super().__init__(
            f"Insufficient successful evaluator responses. Required: {required}, Got: {got}"
        )
        self.required = required
        self.got = got


class EvaluatorFailure(CommitteeError):
    kind = "evaluator_failure"

    def __init__(self, evaluator_id: str, reason: str):
        super().__init__(f"{evaluator_id}: {reason}")
        self.evaluator_id = evaluator_id
