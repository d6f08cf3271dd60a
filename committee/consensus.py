"""Consensus classification and the auto-accept decision."""
from __future__ import annotations

from collections.abc import Sequence

from committee.config import (
    CONFIDENCE_THRESHOLD,
    MAJORITY_CONFIDENCE_THRESHOLD,
    MAJORITY_RATIO,
    MARGIN_THRESHOLD,
    SPLIT_RATIO,
)
from committee.schemas import AggregatedResult, ConsensusLevel, QuestionVote


def classify_question(question_vote: QuestionVote, margin_threshold: float = MARGIN_THRESHOLD) -> ConsensusLevel:
    if not question_vote.votes:
        return ConsensusLevel.NO_CONSENSUS
    if len(question_vote.votes) == 1:
        return ConsensusLevel.UNANIMOUS
    if question_vote.margin >= margin_threshold:
        return ConsensusLevel.MAJORITY
    return ConsensusLevel.SPLIT


def determine_consensus(
    question_votes: Sequence[QuestionVote],
    majority_ratio: float = MAJORITY_RATIO,
    split_ratio: float = SPLIT_RATIO,
) -> ConsensusLevel:
    """Overall level from the ratio of per-question levels to the question count."""
    if not question_votes:
        return ConsensusLevel.NO_CONSENSUS

    total = len(question_votes)
    unanimous = sum(1 for qv in question_votes if qv.consensus == ConsensusLevel.UNANIMOUS)
    majority = sum(1 for qv in question_votes if qv.consensus == ConsensusLevel.MAJORITY)

    if unanimous == total:
        return ConsensusLevel.UNANIMOUS
    resolved = (unanimous + majority) / total
    if resolved >= majority_ratio:
        return ConsensusLevel.MAJORITY
    if resolved >= split_ratio:
        return ConsensusLevel.SPLIT
    return ConsensusLevel.NO_CONSENSUS


def is_sufficient_consensus(
    level: ConsensusLevel,
    overall_confidence: float,
    confidence_threshold: float = CONFIDENCE_THRESHOLD,
    majority_confidence_threshold: float = MAJORITY_CONFIDENCE_THRESHOLD,
) -> bool:
    """Shape and confidence are checked independently; both must pass."""
    if level == ConsensusLevel.UNANIMOUS:
        return overall_confidence >= confidence_threshold
    if level == ConsensusLevel.MAJORITY:
        return overall_confidence >= majority_confidence_threshold
    return False


def requires_human_review(
    result: AggregatedResult,
    confidence_threshold: float = CONFIDENCE_THRESHOLD,
    majority_confidence_threshold: float = MAJORITY_CONFIDENCE_THRESHOLD,
) -> bool:
    if not is_sufficient_consensus(
        result.consensus,
        result.overall_confidence,
        confidence_threshold,
        majority_confidence_threshold,
    ):
        return True
    return any(qv.needs_human for qv in result.question_votes)
