"""Offline calibration: replay labeled reference cases and derive trust weights.

Every registered evaluator sits on every reference case. Each evaluator's
answers are scored against the known-correct answers, accuracy is squashed
into a recommended weight, and the normalised vector is committed to the
weights file in one atomic write. Until that write the previous weights stay
in force.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path

from committee.config import CALIBRATION_STEEPNESS
from committee.engine import CommitteeEngine
from committee.errors import CommitteeError
from committee.schemas import (
    CalibrationResult,
    CommitteeResult,
    CommitteeTask,
    EvaluatorStats,
    ReferenceCase,
    WeightsFile,
)
from committee.weights import WEIGHTS_FILE_VERSION, WeightStore, normalize_weights, squash_accuracy

logger = logging.getLogger(__name__)

LOW_ACCURACY_WARNING = 0.7


def load_reference_cases(directory: Path) -> list[ReferenceCase]:
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Reference directory not found: {directory}")

    cases = [
        ReferenceCase.model_validate_json(path.read_text(encoding="utf-8"))
        for path in sorted(directory.glob("*.json"))
    ]
    logger.info("Loaded %d reference cases from %s", len(cases), directory)
    return cases


async def run_reference_cases(
    engine: CommitteeEngine,
    cases: list[ReferenceCase],
) -> dict[str, CommitteeResult]:
    """Run every case with the full pool; cases that fail outright are skipped."""
    evaluator_ids = engine.pool.ids()
    results: dict[str, CommitteeResult] = {}

    for case in cases:
        task = CommitteeTask(
            type=case.task_type,
            evidence_pack=case.evidence_pack,
            expected_questions=list(case.expected_answers),
            evaluator_ids=evaluator_ids,
        )
        try:
            result = await engine.run_committee(task)
        except CommitteeError as exc:
            logger.error("Reference case %s failed: %s", case.case_id, exc.reason)
            continue
        results[case.case_id] = result
        logger.info("Reference case %s completed (consensus: %s)", case.case_id, result.aggregated_result.consensus.value)

    return results


def score_evaluator(
    evaluator_id: str,
    cases: list[ReferenceCase],
    results: dict[str, CommitteeResult],
    steepness: float = CALIBRATION_STEEPNESS,
) -> CalibrationResult:
    correct = 0
    answered = 0
    per_question: dict[str, list[int]] = defaultdict(lambda: [0, 0])   # question -> [correct, total]

    for case in cases:
        result = results.get(case.case_id)
        if result is None:
            continue
        output = next((o for o in result.evaluator_outputs if o.evaluator_id == evaluator_id), None)
        if output is None or output.failed:
            continue

        for answer in output.answers:
            if answer.question not in case.expected_answers:
                continue
            is_correct = answer.selected_option_id == case.expected_answers[answer.question]
            answered += 1
            per_question[answer.question][1] += 1
            if is_correct:
                correct += 1
                per_question[answer.question][0] += 1

    if answered:
        accuracy = correct / answered
        recommended = squash_accuracy(accuracy, steepness)
    else:
        # No evidence either way: neutral weight
        accuracy = 0.0
        recommended = 0.5

    return CalibrationResult(
        evaluator_id=evaluator_id,
        accuracy=accuracy,
        question_accuracies={q: (c / t if t else 0.0) for q, (c, t) in sorted(per_question.items())},
        answered=answered,
        correct=correct,
        recommended_weight=recommended,
        cases_processed=len(results),
    )


async def calibrate(
    engine: CommitteeEngine,
    cases: list[ReferenceCase],
    steepness: float = CALIBRATION_STEEPNESS,
) -> list[CalibrationResult]:
    results = await run_reference_cases(engine, cases)
    return [score_evaluator(i, cases, results, steepness) for i in engine.pool.ids()]


def build_weights_file(results: list[CalibrationResult], reference_dir: str) -> WeightsFile:
    weights = normalize_weights({r.evaluator_id: r.recommended_weight for r in results})
    return WeightsFile(
        version=WEIGHTS_FILE_VERSION,
        last_calibrated=datetime.now(timezone.utc).isoformat(),
        calibration_cases_count=max((r.cases_processed for r in results), default=0),
        weights=weights,
        evaluator_stats={
            r.evaluator_id: EvaluatorStats(
                accuracy=r.accuracy,
                question_accuracies=r.question_accuracies,
                cases_processed=r.cases_processed,
            )
            for r in results
        },
        metadata={"calibration_script": "calibrate.py", "reference_dir": reference_dir},
    )


def commit_calibration(store: WeightStore, results: list[CalibrationResult], reference_dir: str) -> WeightsFile:
    """Compute the full weights file, then replace the live one in a single write."""
    data = build_weights_file(results, reference_dir)
    store.save(data)
    return data


def format_report(data: WeightsFile, results: list[CalibrationResult]) -> str:
    lines = [
        "Committee Weight Calibration",
        "============================",
        f"Version: {data.version}",
        f"Last calibrated: {data.last_calibrated}",
        f"Reference cases: {data.calibration_cases_count}",
        "",
        "Evaluator weights:",
    ]
    by_id = {r.evaluator_id: r for r in results}
    for evaluator_id, weight in sorted(data.weights.items(), key=lambda kv: kv[1], reverse=True):
        result = by_id.get(evaluator_id)
        if result is None or result.answered == 0:
            lines.append(f"  {evaluator_id}: {weight:.3f} (no scored answers)")
            continue
        lines.append(
            f"  {evaluator_id}: {weight:.3f} "
            f"(accuracy: {result.accuracy:.1%}, {result.correct}/{result.answered} correct)"
        )
        for question, accuracy in result.question_accuracies.items():
            lines.append(f"      {question}: {accuracy:.1%}")

    scored = sorted((r for r in results if r.answered), key=lambda r: r.accuracy, reverse=True)
    if scored:
        lines += ["", "Top performing evaluators:"]
        lines += [f"  {i}. {r.evaluator_id} ({r.accuracy:.1%})" for i, r in enumerate(scored[:3], 1)]
        lowest = scored[-1]
        if lowest.accuracy < LOW_ACCURACY_WARNING:
            lines += [
                "",
                f"Warning: {lowest.evaluator_id} has low accuracy ({lowest.accuracy:.1%}).",
                "  Consider investigating or disabling this evaluator.",
            ]
    return "\n".join(lines) + "\n"
