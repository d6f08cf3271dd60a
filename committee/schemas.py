from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, JsonValue


# ── Evidence ────────────────────────────────────────────────────────

class ColumnStats(BaseModel):
    column_id: str
    header_text: str
    non_empty_count: int = 0
    unique_count: int = 0
    data_types: dict[str, int] = Field(default_factory=dict)
    patterns: list[str] = Field(default_factory=list)


class EvidencePack(BaseModel):
    """Bounded description of one decision problem.

    Deliberately permissive: structural checks happen in the engine so that a
    bad pack fails with ``InvalidEvidencePack`` rather than a parse error.
    """

    case_id: str = ""
    candidate_headers: list[str] = Field(default_factory=list)
    sample_values: dict[str, list[str]] = Field(default_factory=dict)
    column_stats: list[ColumnStats] = Field(default_factory=list)
    detected_language: str = "unknown"
    constraints: list[str] = Field(default_factory=list)
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    metadata: dict[str, JsonValue] = Field(default_factory=dict)

    def option_ids(self) -> list[str]:
        """Candidate option ids are the positions of the candidate headers."""
        return [str(i) for i in range(len(self.candidate_headers))]


# ── Evaluator outputs ───────────────────────────────────────────────

class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Answer(BaseModel):
    question: str
    selected_option_id: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = ""


class Issue(BaseModel):
    code: str
    severity: Severity = Severity.INFO
    evidence: str = ""


class EvaluatorOutput(BaseModel):
    evaluator_id: str
    evaluator_name: str = ""
    answers: list[Answer] = Field(default_factory=list)
    issues: list[Issue] = Field(default_factory=list)
    overall_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    processing_time_ms: int = 0
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def answer_for(self, question: str) -> Answer | None:
        for answer in self.answers:
            if answer.question == question:
                return answer
        return None


# ── Aggregated output ───────────────────────────────────────────────

class ConsensusLevel(str, Enum):
    UNANIMOUS = "unanimous"
    MAJORITY = "majority"
    SPLIT = "split"
    NO_CONSENSUS = "no_consensus"


class Vote(BaseModel):
    option_id: str | None
    weight: float = 0.0
    max_confidence: float = 0.0
    evaluator_ids: list[str] = Field(default_factory=list)


class QuestionVote(BaseModel):
    question: str
    votes: list[Vote] = Field(default_factory=list)     # descending weight
    winner: str | None = None
    margin: float = 0.0
    consensus: ConsensusLevel = ConsensusLevel.NO_CONSENSUS
    needs_human: bool = True

    @property
    def winner_weight(self) -> float:
        return self.votes[0].weight if self.votes else 0.0


class Disagreement(BaseModel):
    question: str
    reason: str
    choices: dict[str, str | None]                       # evaluator id -> option


class AggregatedResult(BaseModel):
    consensus: ConsensusLevel
    question_votes: list[QuestionVote]
    overall_confidence: float
    disagreements: list[Disagreement] = Field(default_factory=list)


# ── Tasks and results ───────────────────────────────────────────────

class CommitteeTask(BaseModel):
    type: str
    evidence_pack: EvidencePack
    expected_questions: list[str] = Field(default_factory=list)
    evaluator_ids: list[str] | None = None               # explicit subset, used verbatim


class AuditTrail(BaseModel):
    timestamp: str
    config: dict[str, Any] = Field(default_factory=dict)
    evidence_pack_sha256: str = ""
    evidence_pack_uri: str | None = None                 # filled in by the audit sink
    raw_outputs_uri: str | None = None


class CommitteeResult(BaseModel):
    task_id: str
    case_id: str
    task_type: str
    selected_evaluators: list[str]
    evaluator_outputs: list[EvaluatorOutput]
    aggregated_result: AggregatedResult
    final_answers: dict[str, str | None]
    requires_human_review: bool
    warnings: list[str] = Field(default_factory=list)
    execution_time_ms: int
    audit_trail: AuditTrail


# ── Calibration ─────────────────────────────────────────────────────

class ReferenceCase(BaseModel):
    case_id: str
    description: str = ""
    expected_answers: dict[str, str | None]
    evidence_pack: EvidencePack
    task_type: str = "schema-mapping"


class CalibrationResult(BaseModel):
    evaluator_id: str
    accuracy: float
    question_accuracies: dict[str, float] = Field(default_factory=dict)
    answered: int = 0
    correct: int = 0
    recommended_weight: float
    cases_processed: int = 0


class EvaluatorStats(BaseModel):
    accuracy: float
    question_accuracies: dict[str, float] = Field(default_factory=dict)
    cases_processed: int = 0


class WeightsFile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: str = "1.0.0"
    last_calibrated: str | None = None
    calibration_cases_count: int = 0
    weights: dict[str, float] = Field(default_factory=dict)
    evaluator_stats: dict[str, EvaluatorStats] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
