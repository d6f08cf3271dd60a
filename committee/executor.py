from __future__ import annotations

import asyncio
import logging
import time

from committee.config import MAX_CONCURRENCY
from committee.errors import EvaluatorFailure, InsufficientSuccesses
from committee.evaluator import enforce_candidate_set
from committee.registry import EvaluatorPool
from committee.schemas import EvaluatorOutput, EvidencePack, Issue, Severity

logger = logging.getLogger(__name__)


def failed_output(evaluator_id: str, error: str, elapsed_ms: int = 0, name: str = "") -> EvaluatorOutput:
    """Sentinel output for an evaluator that timed out, raised, or is not registered."""
    return EvaluatorOutput(
        evaluator_id=evaluator_id,
        evaluator_name=name or evaluator_id,
        answers=[],
        issues=[Issue(
            code="PROVIDER_FAILED",
            severity=Severity.ERROR,
            evidence=f"Provider execution failed: {error}",
        )],
        overall_confidence=0.0,
        processing_time_ms=elapsed_ms,
        error=error,
    )


async def _run_one(
    evaluator_id: str,
    pool: EvaluatorPool,
    semaphore: asyncio.Semaphore,
    pack: EvidencePack,
    questions: list[str],
    system_prompt: str,
    timeout: float,
) -> EvaluatorOutput:
    evaluator = pool.get(evaluator_id)
    if evaluator is None:
        logger.warning("Evaluator %s is not registered", evaluator_id)
        return failed_output(evaluator_id, "evaluator not registered")

    async with semaphore:
        start = time.monotonic()
        try:
            output = await asyncio.wait_for(
                evaluator.execute(pack, questions, system_prompt, timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            elapsed = int((time.monotonic() - start) * 1000)
            logger.warning("Evaluator %s timed out after %dms", evaluator_id, elapsed)
            return failed_output(evaluator_id, f"timeout after {timeout:.1f}s", elapsed, evaluator.name)
        except EvaluatorFailure as exc:
            elapsed = int((time.monotonic() - start) * 1000)
            logger.warning("Evaluator %s failed: %s", evaluator_id, exc.reason)
            return failed_output(evaluator_id, exc.reason, elapsed, evaluator.name)
        except Exception as exc:
            elapsed = int((time.monotonic() - start) * 1000)
            logger.exception("Evaluator %s failed", evaluator_id)
            return failed_output(evaluator_id, str(exc) or type(exc).__name__, elapsed, evaluator.name)

    # Outputs are keyed by evaluator id, whatever the backend reported
    if output.evaluator_id != evaluator_id:
        output = output.model_copy(update={"evaluator_id": evaluator_id})
    return enforce_candidate_set(output, set(pack.option_ids()))


async def execute_committee_task(
    pack: EvidencePack,
    questions: list[str],
    system_prompt: str,
    evaluator_ids: list[str],
    pool: EvaluatorPool,
    timeout: float,
    min_successes: int,
    max_concurrency: int = MAX_CONCURRENCY,
) -> list[EvaluatorOutput]:
    """Fan one evidence pack out to the selected evaluators and fan the answers in.

    Individual failures become failed outputs. Raises ``InsufficientSuccesses``
    when fewer than ``min_successes`` evaluators answered.
    """
    semaphore = asyncio.Semaphore(max_concurrency)
    tasks = [
        _run_one(evaluator_id, pool, semaphore, pack, questions, system_prompt, timeout)
        for evaluator_id in evaluator_ids
    ]
    outputs = list(await asyncio.gather(*tasks))

    successes = sum(1 for o in outputs if not o.failed)
    logger.info(
        "Committee calls finished: %d/%d succeeded (%s)",
        successes,
        len(outputs),
        ", ".join(f"{o.evaluator_id}={'ok' if not o.failed else 'failed'}" for o in outputs),
    )
    if successes < min_successes:
        raise InsufficientSuccesses(required=min_successes, got=successes)
    return outputs


def check_question_coverage(outputs: list[EvaluatorOutput], questions: list[str]) -> list[str]:
    """Warnings for successful outputs that skipped an expected question."""
    warnings: list[str] = []
    for output in outputs:
        if output.failed:
            continue
        answered = {a.question for a in output.answers}
        for question in questions:
            if question not in answered:
                warnings.append(
                    f"Evaluator {output.evaluator_id} did not answer required question: {question}"
                )
    return warnings
