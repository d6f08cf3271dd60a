from __future__ import annotations

from collections.abc import Sequence

from committee.config import MAJORITY_RATIO, MARGIN_THRESHOLD, MIN_WINNER_WEIGHT, SPLIT_RATIO
from committee.consensus import classify_question, determine_consensus
from committee.schemas import (
    AggregatedResult,
    Disagreement,
    EvaluatorOutput,
    QuestionVote,
    Vote,
)
from committee.weights import TrustWeights


def _vote_order(vote: Vote) -> tuple[float, int, str]:
    # Heaviest first; ties broken by option id with the "none" pseudo-option last
    return (-vote.weight, vote.option_id is None, vote.option_id or "")


def _choice(output: EvaluatorOutput, question: str) -> str | None:
    answer = output.answer_for(question)
    return answer.selected_option_id if answer else None


def tally_question(
    question: str,
    outputs: Sequence[EvaluatorOutput],
    weights: TrustWeights,
    margin_threshold: float = MARGIN_THRESHOLD,
) -> QuestionVote:
    """Weighted vote for one question. ``outputs`` must already be in evaluator-id order."""
    votes: dict[str | None, Vote] = {}

    for output in outputs:
        answer = output.answer_for(question)
        if answer is None:
            continue
        option = answer.selected_option_id
        vote = votes.setdefault(option, Vote(option_id=option))
        vote.weight += weights.weight_for(output.evaluator_id) * answer.confidence
        vote.max_confidence = max(vote.max_confidence, answer.confidence)
        vote.evaluator_ids.append(output.evaluator_id)

    ranked = sorted(votes.values(), key=_vote_order)
    winner = ranked[0].option_id if ranked else None
    winner_weight = ranked[0].weight if ranked else 0.0
    runner_up_weight = ranked[1].weight if len(ranked) > 1 else 0.0
    margin = winner_weight - runner_up_weight

    needs_human = margin < margin_threshold or winner_weight < MIN_WINNER_WEIGHT
    # Independent evaluators agreeing on a real option need no tie-break; shared declines do
    if len(ranked) == 1 and ranked[0].option_id is not None and len(ranked[0].evaluator_ids) >= 2:
        needs_human = False

    question_vote = QuestionVote(
        question=question,
        votes=ranked,
        winner=winner,
        margin=margin,
        needs_human=needs_human,
    )
    question_vote.consensus = classify_question(question_vote)
    return question_vote


def aggregate_votes(
    outputs: Sequence[EvaluatorOutput],
    weights: TrustWeights,
    margin_threshold: float = MARGIN_THRESHOLD,
    questions: Sequence[str] | None = None,
    majority_ratio: float = MAJORITY_RATIO,
    split_ratio: float = SPLIT_RATIO,
) -> AggregatedResult:
    """Combine surviving evaluator answers into per-question weighted votes.

    Failed outputs are ignored. Outputs are tallied in evaluator-id order, so
    the result does not depend on the order they arrived in.
    """
    survivors = sorted((o for o in outputs if not o.failed), key=lambda o: o.evaluator_id)

    if questions is None:
        seen: dict[str, None] = {}
        for output in survivors:
            for answer in output.answers:
                seen.setdefault(answer.question, None)
        questions = list(seen)

    question_votes = [tally_question(q, survivors, weights, margin_threshold) for q in questions]

    overall_confidence = (
        sum(o.overall_confidence for o in survivors) / len(survivors) if survivors else 0.0
    )

    disagreements = [
        Disagreement(
            question=qv.question,
            reason=f"Evaluators disagree or low confidence (margin: {qv.margin:.2f})",
            choices={o.evaluator_id: _choice(o, qv.question) for o in survivors},
        )
        for qv in question_votes
        if len(qv.votes) > 1 and qv.needs_human
    ]

    return AggregatedResult(
        consensus=determine_consensus(question_votes, majority_ratio, split_ratio),
        question_votes=question_votes,
        overall_confidence=overall_confidence,
        disagreements=disagreements,
    )
