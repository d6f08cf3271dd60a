"""Tests for parallel evaluator execution."""
import asyncio
import time

import pytest

from committee.errors import EvaluatorFailure, InsufficientSuccesses
from committee.executor import check_question_coverage, execute_committee_task, failed_output
from committee.registry import EvaluatorPool
from tests.fakes import ConcurrencyGauge, FakeEvaluator, GaugedEvaluator, make_output, make_pack

ANSWERS = {"sku": ("1", 0.9)}


def _run(pool, ids, timeout=5.0, min_successes=2, max_concurrency=3):
    return asyncio.run(execute_committee_task(
        pack=make_pack(),
        questions=["sku"],
        system_prompt="sys",
        evaluator_ids=ids,
        pool=pool,
        timeout=timeout,
        min_successes=min_successes,
        max_concurrency=max_concurrency,
    ))


class TestExecuteCommitteeTask:
    def test_all_succeed(self):
        pool = EvaluatorPool([FakeEvaluator(i, ANSWERS) for i in ("a", "b", "c")])
        outputs = _run(pool, ["a", "b", "c"])

        assert [o.evaluator_id for o in outputs] == ["a", "b", "c"]
        assert not any(o.failed for o in outputs)

    def test_one_failure_is_tolerated(self):
        pool = EvaluatorPool([
            FakeEvaluator("a", ANSWERS),
            FakeEvaluator("b", ANSWERS, fail_with=RuntimeError("rate limited")),
            FakeEvaluator("c", ANSWERS),
        ])
        outputs = _run(pool, ["a", "b", "c"])

        failed = [o for o in outputs if o.failed]
        assert len(failed) == 1
        assert failed[0].evaluator_id == "b"
        assert failed[0].error == "rate limited"
        assert failed[0].overall_confidence == 0.0
        assert failed[0].issues[0].code == "PROVIDER_FAILED"

    def test_evaluator_failure_reason_is_recorded(self):
        pool = EvaluatorPool([
            FakeEvaluator("a", ANSWERS),
            FakeEvaluator("b", ANSWERS, fail_with=EvaluatorFailure("b", "empty response")),
        ])
        outputs = _run(pool, ["a", "b"], min_successes=1)
        assert outputs[1].error == "b: empty response"

    def test_too_many_failures_raise(self):
        pool = EvaluatorPool([
            FakeEvaluator("a", ANSWERS),
            FakeEvaluator("b", fail_with=RuntimeError("down")),
            FakeEvaluator("c", fail_with=RuntimeError("down")),
        ])
        with pytest.raises(InsufficientSuccesses) as excinfo:
            _run(pool, ["a", "b", "c"])

        assert excinfo.value.required == 2
        assert excinfo.value.got == 1
        assert excinfo.value.reason == "Insufficient successful evaluator responses. Required: 2, Got: 1"

    def test_slow_evaluator_times_out(self):
        slow = FakeEvaluator("slow", ANSWERS, delay=2.0)
        pool = EvaluatorPool([FakeEvaluator("a", ANSWERS), FakeEvaluator("b", ANSWERS), slow])

        start = time.monotonic()
        outputs = _run(pool, ["a", "b", "slow"], timeout=0.1)

        assert time.monotonic() - start < 1.5
        timed_out = next(o for o in outputs if o.evaluator_id == "slow")
        assert timed_out.failed
        assert "timeout" in timed_out.error

    def test_unregistered_id_becomes_failed_output(self):
        pool = EvaluatorPool([FakeEvaluator("a", ANSWERS), FakeEvaluator("b", ANSWERS)])
        outputs = _run(pool, ["a", "b", "ghost"])

        ghost = outputs[2]
        assert ghost.evaluator_id == "ghost"
        assert ghost.failed

    def test_concurrency_is_capped(self):
        gauge = ConcurrencyGauge()
        evaluators = [GaugedEvaluator(f"e{i}", gauge, answers=ANSWERS, delay=0.05) for i in range(7)]
        pool = EvaluatorPool(evaluators)

        outputs = _run(pool, pool.ids(), max_concurrency=3)

        assert len(outputs) == 7
        assert gauge.max_active == 3
        assert all(e.calls == 1 for e in evaluators)


class TestQuestionCoverage:
    def test_warns_for_each_missing_answer(self):
        outputs = [
            make_output("a", {"sku": ("1", 0.9), "quantity": ("2", 0.9)}),
            make_output("b", {"sku": ("1", 0.9)}),
            failed_output("c", "down"),
        ]
        warnings = check_question_coverage(outputs, ["sku", "quantity"])
        assert warnings == ["Evaluator b did not answer required question: quantity"]

    def test_declined_answer_counts_as_answered(self):
        outputs = [make_output("a", {"discount": (None, 0.7)})]
        assert check_question_coverage(outputs, ["discount"]) == []


class TestCandidateSetAtTheBoundary:
    def test_invented_option_from_any_evaluator_is_declined(self):
        pool = EvaluatorPool([
            FakeEvaluator("a", {"sku": ("99", 0.9)}),
            FakeEvaluator("b", ANSWERS),
        ])
        outputs = _run(pool, ["a", "b"])

        answer = outputs[0].answer_for("sku")
        assert answer.selected_option_id is None
        assert answer.confidence == 0.0
        assert outputs[0].issues[0].code == "INVALID_ANSWER"
        assert not outputs[0].failed
        assert outputs[1].answer_for("sku").selected_option_id == "1"
