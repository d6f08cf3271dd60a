from __future__ import annotations

import logging
import random
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from committee.aggregator import aggregate_votes
from committee.audit import AuditSink, FileArtifactStore, hash_evidence
from committee.config import CommitteeConfig
from committee.consensus import requires_human_review
from committee.errors import InvalidEvidencePack, UnknownTaskType
from committee.executor import check_question_coverage, execute_committee_task
from committee.prompts import MAPPING_REVIEW_PROMPT
from committee.registry import EvaluatorPool, default_evaluator_specs
from committee.schemas import AuditTrail, CommitteeResult, CommitteeTask, EvidencePack
from committee.selection import select_evaluators
from committee.weights import TrustWeights, WeightStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskHandler:
    task_type: str
    system_prompt: str


# Closed set of supported task types
TASK_HANDLERS: dict[str, TaskHandler] = {
    "schema-mapping": TaskHandler("schema-mapping", MAPPING_REVIEW_PROMPT),
}


def validate_evidence_pack(pack: EvidencePack) -> None:
    if not pack.case_id or not pack.case_id.strip():
        raise InvalidEvidencePack("Evidence pack missing caseId")
    if not pack.candidate_headers:
        raise InvalidEvidencePack("Evidence pack missing candidateHeaders")
    if not pack.constraints:
        raise InvalidEvidencePack("Evidence pack missing constraints")


class CommitteeEngine:
    """Runs one task through selection, fan-out, aggregation and classification."""

    def __init__(
        self,
        pool: EvaluatorPool,
        config: CommitteeConfig | None = None,
        weight_store: WeightStore | None = None,
        weights: TrustWeights | None = None,
        audit_sink: AuditSink | None = None,
        rng: random.Random | None = None,
    ):
        self.pool = pool
        self.config = config or CommitteeConfig()
        self.weight_store = weight_store
        self._static_weights = weights or TrustWeights()
        self.audit_sink = audit_sink or AuditSink()
        self._rng = rng or random.Random()

    @classmethod
    def from_env(cls) -> CommitteeEngine:
        config = CommitteeConfig.from_env()
        pool = EvaluatorPool.from_specs(default_evaluator_specs())
        store = WeightStore(config.weights_file) if config.weights_file else None
        sink = AuditSink(FileArtifactStore(config.audit_dir) if config.audit_dir else None)
        return cls(pool, config, weight_store=store, audit_sink=sink)

    def weights_snapshot(self) -> TrustWeights:
        """Weights for one task, renormalised over the evaluators currently registered."""
        weights = self.weight_store.current() if self.weight_store else self._static_weights
        ids = self.pool.ids()
        return weights.reconcile(ids) if ids else weights

    def _selection_pool(self) -> list[str]:
        configured = [i for i in self.config.evaluator_pool if i in self.pool]
        return configured or self.pool.ids()

    async def run_committee(self, task: CommitteeTask) -> CommitteeResult:
        start = time.monotonic()
        task_id = str(uuid.uuid4())

        handler = TASK_HANDLERS.get(task.type)
        if handler is None:
            raise UnknownTaskType(task.type)
        validate_evidence_pack(task.evidence_pack)

        # One snapshot for the whole task
        weights = self.weights_snapshot()

        selected = select_evaluators(
            self._selection_pool(),
            count=self.config.evaluator_count,
            subset=task.evaluator_ids,
            rng=self._rng,
        )
        logger.info("Committee %s: selected evaluators %s", task_id, selected)

        questions = list(task.expected_questions)
        outputs = await execute_committee_task(
            pack=task.evidence_pack,
            questions=questions,
            system_prompt=handler.system_prompt,
            evaluator_ids=selected,
            pool=self.pool,
            timeout=self.config.timeout_seconds,
            min_successes=self.config.min_successful_evaluators,
            max_concurrency=self.config.max_concurrency,
        )

        warnings = check_question_coverage(outputs, questions)
        if warnings:
            logger.warning("Committee %s: validation warnings: %s", task_id, warnings)

        aggregated = aggregate_votes(
            outputs,
            weights,
            margin_threshold=self.config.margin_threshold,
            questions=questions or None,
            majority_ratio=self.config.majority_ratio,
            split_ratio=self.config.split_ratio,
        )
        human_review = requires_human_review(
            aggregated,
            self.config.confidence_threshold,
            self.config.majority_confidence_threshold,
        )

        result = CommitteeResult(
            task_id=task_id,
            case_id=task.evidence_pack.case_id,
            task_type=task.type,
            selected_evaluators=selected,
            evaluator_outputs=outputs,
            aggregated_result=aggregated,
            final_answers={qv.question: qv.winner for qv in aggregated.question_votes},
            requires_human_review=human_review,
            warnings=warnings,
            execution_time_ms=int((time.monotonic() - start) * 1000),
            audit_trail=AuditTrail(
                timestamp=datetime.now(timezone.utc).isoformat(),
                config=self.config.model_dump(mode="json"),
                evidence_pack_sha256=hash_evidence(task.evidence_pack.model_dump(mode="json")),
            ),
        )

        # Decision is final; persistence happens in the background
        self.audit_sink.schedule(task_id, task.evidence_pack, outputs, result.audit_trail)

        logger.info(
            "Committee %s: completed in %dms. Consensus: %s, Human review: %s",
            task_id,
            result.execution_time_ms,
            aggregated.consensus.value,
            human_review,
        )
        return result
