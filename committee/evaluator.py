from __future__ import annotations

import json
import logging
import math
import re

from committee.schemas import Answer, EvaluatorOutput, EvidencePack, Issue, Severity

logger = logging.getLogger(__name__)


def build_user_prompt(pack: EvidencePack, questions: list[str]) -> str:
    constraints_block = "\n".join(f"- {c}" for c in pack.constraints)
    questions_block = "\n".join(f"- {q}" for q in questions)

    columns = []
    for option_id, header in zip(pack.option_ids(), pack.candidate_headers):
        samples = "\n".join(f"  - {v}" for v in pack.sample_values.get(option_id, []))
        columns.append(f"### Option {option_id}\nHeader: {header}\nSample values:\n{samples or '  (none)'}")
    columns_block = "\n\n".join(columns)

    stats_block = "\n".join(
        f"Option {s.column_id} ({s.header_text}): non-empty={s.non_empty_count}, "
        f"unique={s.unique_count}, types={json.dumps(s.data_types, sort_keys=True)}, "
        f"patterns={', '.join(s.patterns) or 'none'}"
        for s in pack.column_stats
    )

    return (
        f"CASE ID: {pack.case_id}\n"
        f"DETECTED LANGUAGE: {pack.detected_language}\n\n"
        f"CONSTRAINTS:\n{constraints_block}\n\n"
        f"QUESTIONS TO ANSWER:\n{questions_block}\n\n"
        f"CANDIDATE OPTIONS:\n{columns_block}\n\n"
        f"OPTION STATISTICS:\n{stats_block or '(none)'}\n\n"
        "For every question select one option id from the candidates above, or null "
        "if none fits. Respond with a single JSON object and nothing else."
    )


def _sanitize_json(raw: str) -> str:
    """Fix common LLM JSON errors before parsing."""
    # Trailing commas before a closing bracket
    raw = re.sub(r",\s*([}\]])", r"\1", raw)
    # "Option 3" used where the bare id was expected
    raw = re.sub(r'"Option\s+(\d+)"', r'"\1"', raw)
    return raw


def _extract_json(text: str) -> dict:
    """Extract the first JSON object from LLM output, tolerating markdown fences."""
    text = text.strip()

    if text.startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            data = json.loads(_sanitize_json(text))
    else:
        match = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", text, re.DOTALL)
        if match:
            raw = match.group(1)
        else:
            # Last resort: first { ... last }
            start = text.index("{")
            end = text.rindex("}") + 1
            raw = text[start:end]
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            data = json.loads(_sanitize_json(raw))

    if not isinstance(data, dict):
        raise ValueError("top-level JSON value is not an object")
    return data


def _as_confidence(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    if math.isnan(value) or value < 0.0 or value > 1.0:
        return None
    return value


def _declined(question: str, reason: str) -> tuple[Answer, Issue]:
    answer = Answer(question=question, selected_option_id=None, confidence=0.0, reasoning=reason)
    issue = Issue(code="INVALID_ANSWER", severity=Severity.WARNING, evidence=f"{question}: {reason}")
    return answer, issue


def _parse_answer(entry: object, valid_option_ids: set[str]) -> tuple[Answer | None, Issue | None]:
    if not isinstance(entry, dict) or not isinstance(entry.get("question"), str) or not entry["question"]:
        return None, Issue(
            code="INVALID_ANSWER",
            severity=Severity.WARNING,
            evidence=f"Unattributable answer entry: {str(entry)[:200]}",
        )

    question = entry["question"]
    option = entry.get("selected_option_id")
    if isinstance(option, int) and not isinstance(option, bool):
        option = str(option)
    if option is not None and not isinstance(option, str):
        return _declined(question, f"option id is not a string: {option!r}")
    if option is not None and option not in valid_option_ids:
        return _declined(question, f"option {option!r} is not in the candidate set")

    confidence = _as_confidence(entry.get("confidence"))
    if confidence is None:
        return _declined(question, f"confidence out of range: {entry.get('confidence')!r}")

    reasoning = entry.get("reasoning")
    return Answer(
        question=question,
        selected_option_id=option,
        confidence=confidence,
        reasoning=reasoning if isinstance(reasoning, str) else "",
    ), None


def _parse_issue(entry: object) -> Issue | None:
    if not isinstance(entry, dict) or not isinstance(entry.get("code"), str):
        return None
    try:
        severity = Severity(entry.get("severity", "info"))
    except ValueError:
        severity = Severity.INFO
    evidence = entry.get("evidence")
    return Issue(code=entry["code"], severity=severity, evidence=evidence if isinstance(evidence, str) else "")


def parse_evaluator_output(
    text: str,
    evaluator_id: str,
    evaluator_name: str,
    valid_option_ids: set[str],
) -> EvaluatorOutput:
    """Turn a raw model response into an ``EvaluatorOutput``.

    Raises ``ValueError`` when no JSON object can be recovered. Individual
    answers that break the schema are kept as declines (no option, zero
    confidence) and flagged with an ``INVALID_ANSWER`` issue.
    """
    data = _extract_json(text)

    answers: list[Answer] = []
    issues: list[Issue] = []
    seen: set[str] = set()

    raw_answers = data.get("answers")
    if not isinstance(raw_answers, list):
        raw_answers = []
        issues.append(Issue(code="MISSING_ANSWERS", severity=Severity.ERROR, evidence="No answers array in response"))

    for entry in raw_answers:
        answer, issue = _parse_answer(entry, valid_option_ids)
        if issue is not None:
            issues.append(issue)
        if answer is None:
            continue
        if answer.question in seen:
            issues.append(Issue(
                code="DUPLICATE_ANSWER",
                severity=Severity.WARNING,
                evidence=f"Question {answer.question!r} answered more than once; first answer kept",
            ))
            continue
        seen.add(answer.question)
        answers.append(answer)

    raw_issues = data.get("issues")
    for entry in raw_issues if isinstance(raw_issues, list) else []:
        issue = _parse_issue(entry)
        if issue is not None:
            issues.append(issue)

    overall = _as_confidence(data.get("overall_confidence"))
    if overall is None:
        issues.append(Issue(
            code="INVALID_OVERALL_CONFIDENCE",
            severity=Severity.WARNING,
            evidence=f"overall_confidence={data.get('overall_confidence')!r}",
        ))
        overall = 0.0

    return EvaluatorOutput(
        evaluator_id=evaluator_id,
        evaluator_name=evaluator_name,
        answers=answers,
        issues=issues,
        overall_confidence=overall,
    )


def enforce_candidate_set(output: EvaluatorOutput, valid_option_ids: set[str]) -> EvaluatorOutput:
    """Turn answers naming an option outside the candidate set into declines."""
    answers: list[Answer] = []
    issues = list(output.issues)
    for answer in output.answers:
        option = answer.selected_option_id
        if option is None or option in valid_option_ids:
            answers.append(answer)
            continue
        declined, issue = _declined(answer.question, f"option {option!r} is not in the candidate set")
        answers.append(declined)
        issues.append(issue)

    if len(issues) == len(output.issues):
        return output
    logger.warning(
        "Evaluator %s chose %d option(s) outside the candidate set",
        output.evaluator_id,
        len(issues) - len(output.issues),
    )
    return output.model_copy(update={"answers": answers, "issues": issues})
