"""CLI entry point: run the committee on one task file."""
from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

from committee.engine import CommitteeEngine
from committee.errors import CommitteeError
from committee.schemas import CommitteeTask


async def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    if len(sys.argv) < 2:
        print("Usage: python run.py <task.json> [result.json]")
        return 2

    task = CommitteeTask.model_validate_json(Path(sys.argv[1]).read_text(encoding="utf-8"))
    out_path = Path(sys.argv[2]) if len(sys.argv) > 2 else Path("committee-result.json")

    engine = CommitteeEngine.from_env()
    print(f"\nCase: {task.evidence_pack.case_id}")
    print(f"Questions: {len(task.expected_questions)}, Candidates: {len(task.evidence_pack.candidate_headers)}")
    print(f"Evaluators registered: {', '.join(engine.pool.ids()) or '(none)'}\n")

    try:
        result = await engine.run_committee(task)
    except CommitteeError as exc:
        print(f"\nCommittee failed ({exc.kind}): {exc.reason}")
        return 1
    await engine.audit_sink.drain()

    aggregated = result.aggregated_result
    print("\n" + "=" * 60)
    print("COMMITTEE DECISION")
    print("=" * 60)
    print(f"  Consensus:          {aggregated.consensus.value}")
    print(f"  Overall confidence: {aggregated.overall_confidence:.2%}")
    print(f"  Human review:       {'REQUIRED' if result.requires_human_review else 'not required'}")
    print("  Answers:")
    for qv in aggregated.question_votes:
        flag = "  <- needs human" if qv.needs_human else ""
        print(f"    {qv.question}: {qv.winner} (margin {qv.margin:.2f}){flag}")
    for output in result.evaluator_outputs:
        if output.failed:
            print(f"  Failed evaluator: {output.evaluator_id} ({output.error})")
    for warning in result.warnings:
        print(f"  Warning: {warning}")
    print("=" * 60)

    with open(out_path, "w") as f:
        json.dump(result.model_dump(mode="json"), f, indent=2)
    print(f"\nFull result written to {out_path}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
