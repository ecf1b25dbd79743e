"""
Quiz scoring — automatic marking, adaptive weighting and manual grading.

Pure functions over plain question dicts (the embedded quiz shape) so the
quizzes blueprint and the tests can call them without a database. Bank
questions are resolved through a caller-supplied lookup.

Question shape:
    {"question": {"en": ...}, "type": "multiple-choice", "options": [
        {"text": {"en": ...}, "isCorrect": bool}], "correctAnswer": ...,
     "points": 1, "explanation": {...}, "difficulty": "medium", "tags": [],
     "bankRef": <bank question id or None>}
"""

from __future__ import annotations

import math
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from models import BankQuestion, SubmissionAnswer

DIFFICULTY_WEIGHTS = {"easy": 1.0, "medium": 1.5, "hard": 2.0}
DEFAULT_WEIGHT = DIFFICULTY_WEIGHTS["medium"]

BANK_TYPE_MAP = {
    "mcq": "multiple-choice",
    "true_false": "true-false",
    "essay": "essay",
}


class GradingError(ValueError):
    """Raised when a manual grade is out of range or targets a bad index."""


@dataclass
class ScoreResult:
    answers: list[SubmissionAnswer] = field(default_factory=list)
    earned_points: float = 0
    total_points: float = 0
    score: float = 0
    adaptive_score: Optional[float] = None
    passed: bool = False
    graded: bool = True
    correct_answers: int = 0


# ── Question resolution ──────────────────────────────────────────────


def map_bank_question(bq: BankQuestion) -> dict:
    """Convert a bank question into the embedded quiz question shape."""
    options = [
        {"text": opt.get("text", ""), "isCorrect": bool(opt.get("isCorrect"))}
        for opt in bq.options
    ]
    mapped = {
        "question": {"en": bq.text},
        "type": BANK_TYPE_MAP.get(bq.type, bq.type),
        "options": options,
        "points": bq.marks,
    }
    if bq.type == "true_false":
        correct = next((o for o in options if o["isCorrect"]), None)
        mapped["correctAnswer"] = _option_text(correct["text"]) if correct else None
    return mapped


def resolve_question(question: dict, lookup: Callable[[int], Optional[BankQuestion]] | None) -> dict:
    """Return the effective question, merging in its bank entry when one exists.

    A reference to a bank question that no longer exists falls back to the
    embedded fields.
    """
    ref = question.get("bankRef")
    if ref is None or lookup is None:
        return question
    bq = lookup(ref)
    if bq is None:
        return question
    merged = dict(question)
    merged.update(map_bank_question(bq))
    return merged


def _option_text(text: Any) -> str:
    if isinstance(text, dict):
        return text.get("en") or next(iter(text.values()), "")
    return "" if text is None else str(text)


def _option_texts(text: Any) -> set[str]:
    if isinstance(text, dict):
        return {str(v) for v in text.values() if v is not None}
    return {str(text)} if text is not None else set()


def question_points(question: dict) -> float:
    points = question.get("points")
    return 1 if points is None else points


def difficulty_weight(question: dict) -> float:
    return DIFFICULTY_WEIGHTS.get(question.get("difficulty") or "medium", DEFAULT_WEIGHT)


def _normalize_bool(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


# ── Marking ──────────────────────────────────────────────────────────


def check_answer(question: dict, answer: Any) -> Optional[bool]:
    """True/False for auto-markable types, None when a human must grade."""
    qtype = question.get("type")

    if qtype == "essay":
        return None
    if answer is None:
        return False

    if qtype == "multiple-choice":
        correct = next((o for o in question.get("options", []) if o.get("isCorrect")), None)
        if correct is None or not isinstance(answer, str):
            return False
        return answer in _option_texts(correct.get("text"))

    if qtype == "true-false":
        expected = _normalize_bool(question.get("correctAnswer"))
        return expected is not None and _normalize_bool(answer) == expected

    if qtype == "short-answer":
        expected = question.get("correctAnswer")
        if expected is None:
            return False
        return str(answer).strip().lower() == str(expected).strip().lower()

    return False


def aggregate(questions: list[dict], answers: list[SubmissionAnswer],
              passing_score: float, is_adaptive: bool) -> ScoreResult:
    """Recompute totals from per-answer points. Used after marking and regrading."""
    result = ScoreResult(answers=answers)
    weighted_total = 0.0
    weighted_earned = 0.0

    by_index = {a.question_index: a for a in answers}
    for index, q in enumerate(questions):
        pts = question_points(q)
        result.total_points += pts
        weight = difficulty_weight(q)
        weighted_total += pts * weight

        a = by_index.get(index)
        if a is None:
            continue
        result.earned_points += a.points_awarded
        weighted_earned += a.points_awarded * weight
        if a.is_correct is True:
            result.correct_answers += 1
        elif a.is_correct is None:
            result.graded = False

    if result.total_points:
        result.score = result.earned_points / result.total_points * 100
    if is_adaptive:
        result.adaptive_score = weighted_earned / weighted_total * 100 if weighted_total else 0.0
    result.passed = result.score >= passing_score
    return result


def score_submission(questions: list[dict], raw_answers: list, passing_score: float,
                     is_adaptive: bool = False,
                     lookup: Callable[[int], Optional[BankQuestion]] | None = None,
                     ) -> tuple[ScoreResult, list[dict]]:
    """Mark every question against the answer at the same index.

    Returns the score and the resolved questions (bank references applied),
    which callers need for results and later regrading.
    """
    resolved = [resolve_question(q, lookup) for q in questions]
    answers: list[SubmissionAnswer] = []
    for index, q in enumerate(resolved):
        answer = raw_answers[index] if index < len(raw_answers) else None
        correct = check_answer(q, answer)
        answers.append(SubmissionAnswer(
            question_index=index,
            question_id=q.get("bankRef"),
            answer=answer,
            is_correct=correct,
            points_awarded=question_points(q) if correct is True else 0,
        ))
    return aggregate(resolved, answers, passing_score, is_adaptive), resolved


def apply_manual_grades(questions: list[dict], answers: list[SubmissionAnswer],
                        grades: list[dict], passing_score: float,
                        is_adaptive: bool) -> ScoreResult:
    """Overwrite per-question points with a grader's marks and recompute.

    Each grade is {"questionIndex", "pointsAwarded", "isCorrect"?}. Grading
    the same index twice replaces the earlier mark.
    """
    by_index = {a.question_index: a for a in answers}
    for g in grades:
        index = g.get("questionIndex") if isinstance(g, dict) else None
        points = g.get("pointsAwarded") if isinstance(g, dict) else None
        if (not isinstance(index, int) or isinstance(index, bool)
                or not isinstance(points, (int, float)) or isinstance(points, bool)
                or not math.isfinite(points)):
            raise GradingError("Each grade needs a numeric questionIndex and pointsAwarded")
        points = float(points)
        if index < 0 or index >= len(questions):
            raise GradingError(f"Question index {index} is out of range")
        max_points = question_points(questions[index])
        if points < 0 or points > max_points:
            raise GradingError(f"pointsAwarded for question {index} must be between 0 and {max_points}")

        a = by_index.get(index)
        if a is None:
            a = SubmissionAnswer(question_index=index)
            answers.append(a)
            by_index[index] = a
        a.points_awarded = points
        is_correct = g.get("isCorrect")
        a.is_correct = bool(is_correct) if is_correct is not None else points >= max_points

    answers.sort(key=lambda a: a.question_index)
    return aggregate(questions, answers, passing_score, is_adaptive)


# ── Presentation ─────────────────────────────────────────────────────


def build_results(questions: list[dict], answers: list[SubmissionAnswer]) -> list[dict]:
    """Per-question feedback. Explanations only accompany answers that were not correct."""
    results = []
    for a in answers:
        q = questions[a.question_index] if a.question_index < len(questions) else {}
        results.append({
            "questionIndex": a.question_index,
            "isCorrect": a.is_correct,
            "userAnswer": a.answer,
            "pointsAwarded": a.points_awarded,
            "explanation": None if a.is_correct else q.get("explanation"),
        })
    return results


def sanitize_for_student(quiz_dict: dict, rng: random.Random | None = None) -> dict:
    """Strip answer keys and apply the quiz's shuffle settings."""
    rng = rng or random.Random()
    out = dict(quiz_dict)
    questions = []
    for index, q in enumerate(quiz_dict.get("questions", [])):
        clean = {k: v for k, v in q.items() if k not in ("correctAnswer", "explanation")}
        clean["index"] = index
        options = [{k: v for k, v in o.items() if k != "isCorrect"} for o in q.get("options", [])]
        if quiz_dict.get("shuffleOptions"):
            rng.shuffle(options)
        clean["options"] = options
        questions.append(clean)
    if quiz_dict.get("shuffleQuestions"):
        rng.shuffle(questions)
    out["questions"] = questions
    return out
