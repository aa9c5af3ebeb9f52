"""
Auto Evaluator - deterministic grading and score merging.

Grading pipeline for one exam and one student's answers:
1. Resolve each question's kind (unknown types become QuestionKind.UNKNOWN)
2. Grade objective kinds against the answer key: full marks or zero
3. Route everything without a deterministic key to manual grading (score 0)
4. Accumulate totals across all questions

Merging then overwrites every manual-grading placeholder with the
evaluator's score, clamped into [0, max_marks], and recomputes the totals.

Policies:
- multiple_correct is all-or-nothing (exact set equality, no partial credit)
- numeric answers match within the question's tolerance (default: exact)
- a missing manual score counts as zero; an out-of-range one is clamped
- an unrecognized or malformed question is never auto-scored
"""

import math
import time
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

from fairtest.logging_config import get_logger, log_with_context
from fairtest.schemas import (
    AutoEvalResult, FinalResult, Question, QuestionKind, QuestionScore,
)

logger = get_logger("evaluator")

# Outcome of a grader: True/False when auto-graded, None when a human must grade
Grade = Optional[bool]

_TRUE_STRINGS = {"true", "t", "yes", "1"}
_FALSE_STRINGS = {"false", "f", "no", "0"}


def _normalize_choice(value: Any) -> str:
    """Trimmed string form of a selected option."""
    return str(value).strip()


def _to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    return None


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (ValueError, TypeError):
        return None
    return number if math.isfinite(number) else None


def _as_choice_set(value: Any) -> Optional[frozenset]:
    if value is None:
        return None
    if isinstance(value, (list, tuple, set, frozenset)):
        return frozenset(_normalize_choice(v) for v in value)
    return frozenset([_normalize_choice(value)])


# ── Graders ──────────────────────────────────────────────────
# Each grader returns True/False for an auto-graded question, or None when
# the question cannot be graded deterministically (manual grading).

def _grade_mcq(question: Question, answer: Any) -> Grade:
    if question.correct_answer is None:
        return None
    if answer is None:
        return False
    return _normalize_choice(answer) == _normalize_choice(question.correct_answer)


def _grade_true_false(question: Question, answer: Any) -> Grade:
    expected = _to_bool(question.correct_answer) if question.correct_answer is not None else None
    if expected is None:
        return None
    if answer is None:
        return False
    return _to_bool(answer) is expected


def _grade_multiple_correct(question: Question, answer: Any) -> Grade:
    expected = _as_choice_set(question.correct_answers)
    if not expected:
        return None
    given = _as_choice_set(answer)
    return given == expected


def _grade_numeric(question: Question, answer: Any) -> Grade:
    expected = _to_number(question.correct_answer)
    if expected is None:
        return None
    given = _to_number(answer)
    if given is None:
        return False
    tolerance = question.tolerance or 0.0
    return abs(given - expected) <= tolerance


def _needs_manual_grading(question: Question, answer: Any) -> Grade:
    return None


GRADERS: Dict[QuestionKind, Callable[[Question, Any], Grade]] = {
    QuestionKind.MCQ: _grade_mcq,
    QuestionKind.TRUE_FALSE: _grade_true_false,
    QuestionKind.MULTIPLE_CORRECT: _grade_multiple_correct,
    QuestionKind.NUMERIC: _grade_numeric,
    QuestionKind.SHORT_ANSWER: _needs_manual_grading,
    QuestionKind.ESSAY: _needs_manual_grading,
    QuestionKind.UNKNOWN: _needs_manual_grading,
}


def grade_question(question: Question, answer: Any) -> QuestionScore:
    """Grade a single question into exactly one QuestionScore."""
    outcome = GRADERS[question.kind](question, answer)
    if outcome is None:
        return QuestionScore(
            question_id=question.id,
            score=0,
            max_marks=question.marks,
            correct=None,
            auto_graded=False,
        )
    return QuestionScore(
        question_id=question.id,
        score=question.marks if outcome else 0,
        max_marks=question.marks,
        correct=outcome,
        auto_graded=True,
    )


def evaluate_exam(questions: Iterable[Union[Question, Mapping]],
                  answers: Optional[Mapping[Any, Any]]) -> AutoEvalResult:
    """
    Grade every question of an exam against one student's answers.

    Args:
        questions: Question models or dicts (validated into Question)
        answers: Mapping of question id -> answer; keys are compared as strings

    Returns:
        AutoEvalResult with one score per question; manual-grading questions
        score 0 and still count toward max_score.
    """
    start_time = time.time()
    answer_map = {str(k): v for k, v in (answers or {}).items()}

    question_scores = []
    auto_graded = []
    manual_grading = []

    for raw in questions:
        question = raw if isinstance(raw, Question) else Question.model_validate(raw)
        entry = grade_question(question, answer_map.get(question.id))
        question_scores.append(entry)
        if entry.auto_graded:
            auto_graded.append(question.id)
        else:
            manual_grading.append(question.id)

    result = AutoEvalResult(
        total_score=sum(q.score for q in question_scores),
        max_score=sum(q.max_marks for q in question_scores),
        question_scores=question_scores,
        auto_graded=auto_graded,
        manual_grading=manual_grading,
    )

    duration_ms = (time.time() - start_time) * 1000
    log_with_context(logger, "INFO",
        "Auto-evaluation complete: {}/{} ({} auto-graded, {} need manual grading)".format(
            result.total_score, result.max_score, len(auto_graded), len(manual_grading)),
        extra_data={
            "duration_ms": round(duration_ms, 2),
            "manual_grading": manual_grading,
        })
    return result


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


def _manual_score_or_zero(manual_scores: Mapping[str, Any], question_id: str) -> float:
    """
    Manual score for a question, defaulting to zero when the evaluator left
    it blank or entered something that is not a number.
    """
    number = _to_number(manual_scores.get(question_id))
    return number if number is not None else 0.0


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_percentage(total_score: float, max_score: float) -> int:
    """Integer percentage; 0 when there is nothing to score."""
    if max_score <= 0:
        return 0
    return round_half_up(100 * total_score / max_score)


def merge_final_score(auto_result: AutoEvalResult,
                      manual_scores: Optional[Mapping[Any, Any]] = None) -> FinalResult:
    """
    Merge evaluator scores into the auto-evaluation.

    Only questions listed in auto_result.manual_grading take a manual score;
    manual entries for auto-graded questions are ignored.
    """
    manual = {str(k): v for k, v in (manual_scores or {}).items()}
    pending = set(auto_result.manual_grading)

    merged = []
    clamped = []
    for entry in auto_result.question_scores:
        if entry.question_id in pending:
            raw_score = _manual_score_or_zero(manual, entry.question_id)
            score = clamp(raw_score, 0, entry.max_marks)
            if score != raw_score:
                clamped.append(entry.question_id)
            entry = entry.model_copy(update={"score": score})
        merged.append(entry)

    total_score = sum(q.score for q in merged)
    max_score = sum(q.max_marks for q in merged)
    final = FinalResult(
        total_score=total_score,
        max_score=max_score,
        percentage=compute_percentage(total_score, max_score),
        question_scores=merged,
    )

    missing = sorted(pending - set(manual))
    log_with_context(logger, "INFO",
        "Final score merged: {}/{} ({}%)".format(final.total_score, final.max_score, final.percentage),
        extra_data={"defaulted_to_zero": missing, "clamped": clamped})
    return final


def is_passing(percentage: float, pass_percentage: float) -> bool:
    return percentage >= pass_percentage
