"""End-to-end tests for the committee engine with fake evaluators."""
import asyncio
import random

import pytest
from pydantic import ValidationError

from committee.audit import AuditSink, FileArtifactStore
from committee.config import CommitteeConfig
from committee.engine import CommitteeEngine
from committee.errors import InsufficientSuccesses, InvalidEvidencePack, UnknownTaskType
from committee.registry import EvaluatorPool
from committee.schemas import CommitteeTask, ConsensusLevel, WeightsFile
from committee.weights import TrustWeights, WeightStore
from tests.fakes import FakeEvaluator, make_pack

QUESTIONS = ["customer_name", "sku"]
AGREED = {"customer_name": ("0", 0.9), "sku": ("1", 0.9)}


def _task(**overrides) -> CommitteeTask:
    data = {"type": "schema-mapping", "evidence_pack": make_pack(), "expected_questions": list(QUESTIONS)}
    data.update(overrides)
    return CommitteeTask(**data)


def _engine(evaluators, **kwargs) -> CommitteeEngine:
    kwargs.setdefault("config", CommitteeConfig(evaluator_pool=[]))
    kwargs.setdefault("rng", random.Random(0))
    return CommitteeEngine(EvaluatorPool(evaluators), **kwargs)


async def _run_and_drain(engine, task):
    result = await engine.run_committee(task)
    await engine.audit_sink.drain()
    return result


class TestRunCommittee:
    def test_unanimous_confident_committee_auto_accepts(self):
        engine = _engine([FakeEvaluator(i, AGREED) for i in ("a", "b", "c")])
        result = asyncio.run(engine.run_committee(_task()))

        assert sorted(result.selected_evaluators) == ["a", "b", "c"]
        assert result.aggregated_result.consensus == ConsensusLevel.UNANIMOUS
        assert result.final_answers == {"customer_name": "0", "sku": "1"}
        assert result.requires_human_review is False
        assert result.warnings == []
        assert result.case_id == "case-001"
        assert len(result.audit_trail.evidence_pack_sha256) == 64

    def test_selects_committee_size_from_larger_pool(self):
        evaluators = [FakeEvaluator(i, AGREED) for i in ("a", "b", "c", "d", "e")]
        engine = _engine(evaluators)
        result = asyncio.run(engine.run_committee(_task()))

        assert len(result.selected_evaluators) == 3
        assert len(set(result.selected_evaluators)) == 3
        assert sum(e.calls for e in evaluators) == 3

    def test_configured_pool_limits_selection(self):
        evaluators = [FakeEvaluator(i, AGREED) for i in ("a", "b", "c", "d")]
        engine = _engine(evaluators, config=CommitteeConfig(evaluator_pool=["b", "c", "zz"]))
        result = asyncio.run(engine.run_committee(_task()))

        assert sorted(result.selected_evaluators) == ["b", "c"]

    def test_explicit_subset_is_used_verbatim(self):
        evaluators = [FakeEvaluator(i, AGREED) for i in ("a", "b", "c", "d")]
        engine = _engine(evaluators)
        result = asyncio.run(engine.run_committee(_task(evaluator_ids=["d", "a"])))

        assert result.selected_evaluators == ["d", "a"]
        assert [e.calls for e in evaluators] == [1, 0, 0, 1]

    def test_unknown_task_type_makes_no_calls(self):
        evaluators = [FakeEvaluator(i, AGREED) for i in ("a", "b", "c")]
        engine = _engine(evaluators)

        with pytest.raises(UnknownTaskType):
            asyncio.run(engine.run_committee(_task(type="translation")))
        assert all(e.calls == 0 for e in evaluators)

    @pytest.mark.parametrize("overrides, message", [
        ({"case_id": "  "}, "caseId"),
        ({"candidate_headers": []}, "candidateHeaders"),
        ({"constraints": []}, "constraints"),
    ])
    def test_invalid_pack_makes_no_calls(self, overrides, message):
        evaluators = [FakeEvaluator(i, AGREED) for i in ("a", "b", "c")]
        engine = _engine(evaluators)
        pack = make_pack().model_copy(update=overrides)

        with pytest.raises(InvalidEvidencePack) as excinfo:
            asyncio.run(engine.run_committee(_task(evidence_pack=pack)))
        assert message in excinfo.value.reason
        assert all(e.calls == 0 for e in evaluators)

    def test_insufficient_successes_propagate(self):
        evaluators = [
            FakeEvaluator("a", AGREED),
            FakeEvaluator("b", fail_with=RuntimeError("down")),
            FakeEvaluator("c", fail_with=RuntimeError("down")),
        ]
        with pytest.raises(InsufficientSuccesses):
            asyncio.run(_engine(evaluators).run_committee(_task()))

    def test_failed_evaluator_is_reported_but_not_counted(self):
        evaluators = [
            FakeEvaluator("a", AGREED),
            FakeEvaluator("b", AGREED),
            FakeEvaluator("c", fail_with=RuntimeError("down")),
        ]
        result = asyncio.run(_engine(evaluators).run_committee(_task()))

        failed = [o.evaluator_id for o in result.evaluator_outputs if o.failed]
        assert failed == ["c"]
        assert result.aggregated_result.consensus == ConsensusLevel.UNANIMOUS
        assert result.requires_human_review is False

    def test_missing_answers_become_warnings(self):
        evaluators = [
            FakeEvaluator("a", AGREED),
            FakeEvaluator("b", AGREED),
            FakeEvaluator("c", {"customer_name": ("0", 0.9)}),
        ]
        result = asyncio.run(_engine(evaluators).run_committee(_task()))

        assert result.warnings == ["Evaluator c did not answer required question: sku"]

    def test_disagreement_requires_human_review(self):
        evaluators = [
            FakeEvaluator("a", {"customer_name": ("0", 0.9), "sku": ("1", 0.6)}),
            FakeEvaluator("b", {"customer_name": ("0", 0.9), "sku": ("2", 0.6)}),
        ]
        result = asyncio.run(_engine(evaluators).run_committee(_task()))

        assert result.requires_human_review is True
        assert [d.question for d in result.aggregated_result.disagreements] == ["sku"]

    def test_invented_options_are_never_accepted(self):
        evaluators = [FakeEvaluator(i, {"sku": ("99", 0.9)}) for i in ("a", "b", "c")]
        result = asyncio.run(_engine(evaluators).run_committee(_task(expected_questions=["sku"])))

        assert result.final_answers == {"sku": None}
        assert result.requires_human_review is True
        assert all(o.issues[0].code == "INVALID_ANSWER" for o in result.evaluator_outputs)

    def test_every_evaluator_declining_needs_review(self):
        evaluators = [FakeEvaluator(i, {"sku": (None, 0.0)}) for i in ("a", "b", "c")]
        result = asyncio.run(_engine(evaluators).run_committee(_task(expected_questions=["sku"])))

        assert result.final_answers == {"sku": None}
        assert result.aggregated_result.question_votes[0].needs_human is True
        assert result.requires_human_review is True

    def test_pack_metadata_is_fingerprinted(self):
        engine = _engine([FakeEvaluator(i, AGREED) for i in ("a", "b")])
        pack = make_pack(metadata={"source": "upload", "rows": 120, "tags": ["erp", None]})
        result = asyncio.run(engine.run_committee(_task(evidence_pack=pack)))
        assert len(result.audit_trail.evidence_pack_sha256) == 64

    def test_pack_metadata_must_be_json(self):
        with pytest.raises(ValidationError):
            make_pack(metadata={"loaded_at": object()})

    def test_static_weights_decide_close_votes(self):
        evaluators = [
            FakeEvaluator("a", {"sku": ("1", 0.8)}),
            FakeEvaluator("b", {"sku": ("2", 0.8)}),
        ]
        weights = TrustWeights(shares={"a": 1.0, "b": 3.0})
        result = asyncio.run(_engine(evaluators, weights=weights).run_committee(_task(expected_questions=["sku"])))

        assert result.final_answers == {"sku": "2"}

    def test_weights_are_snapshotted_per_task(self, tmp_path):
        store = WeightStore(tmp_path / "weights.json", defaults={"a": 1.0, "b": 1.0, "c": 1.0})

        class RecalibratingEvaluator(FakeEvaluator):
            async def execute(self, pack, questions, system_prompt, timeout):
                store.save(WeightsFile(weights={"a": 0.01, "b": 0.01, "c": 0.98}))
                return await super().execute(pack, questions, system_prompt, timeout)

        evaluators = [
            RecalibratingEvaluator("a", {"sku": ("1", 0.9)}),
            FakeEvaluator("b", {"sku": ("1", 0.9)}),
            FakeEvaluator("c", {"sku": ("2", 0.9)}),
        ]
        engine = _engine(evaluators, weight_store=store)

        first = asyncio.run(engine.run_committee(_task(expected_questions=["sku"])))
        second = asyncio.run(engine.run_committee(_task(expected_questions=["sku"])))

        assert first.final_answers == {"sku": "1"}
        assert second.final_answers == {"sku": "2"}

    def test_weights_snapshot_covers_registered_evaluators(self):
        engine = _engine(
            [FakeEvaluator(i) for i in ("a", "b")],
            weights=TrustWeights(shares={"a": 1.0, "retired": 1.0}),
        )
        shares = engine.weights_snapshot().shares
        assert set(shares) == {"a", "b"}
        assert sum(shares.values()) == pytest.approx(1.0)


class TestAuditTrail:
    def test_artifacts_are_written_after_decision(self, tmp_path):
        engine = _engine(
            [FakeEvaluator(i, AGREED) for i in ("a", "b", "c")],
            audit_sink=AuditSink(FileArtifactStore(tmp_path)),
        )
        result = asyncio.run(_run_and_drain(engine, _task()))

        trail = result.audit_trail
        assert trail.evidence_pack_uri.startswith("file://")
        assert trail.raw_outputs_uri.endswith("raw-outputs.json")
        assert (tmp_path / result.task_id / "evidence-pack.json").exists()
        assert (tmp_path / result.task_id / "raw-outputs.json").exists()

    def test_storage_failure_does_not_affect_decision(self):
        class BrokenStore(FileArtifactStore):
            def put_artifact(self, key, data):
                raise OSError("disk full")

        engine = _engine(
            [FakeEvaluator(i, AGREED) for i in ("a", "b", "c")],
            audit_sink=AuditSink(BrokenStore("unused")),
        )
        result = asyncio.run(_run_and_drain(engine, _task()))

        assert result.requires_human_review is False
        assert result.audit_trail.evidence_pack_uri is None
        assert result.audit_trail.raw_outputs_uri is None

    def test_no_store_means_no_uris(self):
        engine = _engine([FakeEvaluator(i, AGREED) for i in ("a", "b", "c")])
        result = asyncio.run(_run_and_drain(engine, _task()))
        assert result.audit_trail.evidence_pack_uri is None

    def test_config_is_recorded(self):
        engine = _engine([FakeEvaluator(i, AGREED) for i in ("a", "b")])
        result = asyncio.run(engine.run_committee(_task()))
        assert result.audit_trail.config["evaluator_count"] == 3
        assert result.audit_trail.config["margin_threshold"] == 0.25
