"""Quiz routes — CRUD, student view, submission, attempts and manual grading."""

from __future__ import annotations

import logging

from flask import Blueprint
from flask_login import current_user, login_required

from audit import log_event
from blueprints.notifications import create_notification
from db_stores import CourseStoreDB, EnrollmentStoreDB, QuestionBankDB, QuizStoreDB, SubmissionStoreDB
from helpers import api_error, api_ok, current_user_id, int_arg, json_body, localized_text, trainer_required
from models import DIFFICULTIES, QUESTION_TYPES, SHOW_RESULTS_MODES, Quiz, Submission
from quiz_scoring import (
    GradingError,
    apply_manual_grades,
    build_results,
    resolve_question,
    sanitize_for_student,
    score_submission,
)
from streaks import record_activity

logger = logging.getLogger(__name__)

bp = Blueprint("quizzes", __name__)

_NUMERIC_FIELDS = ("passingScore", "timeLimit", "attemptsAllowed")
_BOOL_FIELDS = ("shuffleQuestions", "shuffleOptions", "isAdaptive", "isRequired", "isPublished")


def _is_staff() -> bool:
    return current_user.role in ("trainer", "admin")


def _validate_question(q, index: int) -> str | None:
    if not isinstance(q, dict):
        return f"Question {index} must be an object"
    if q.get("type") not in QUESTION_TYPES:
        return f"Question {index} has an invalid type"
    if q.get("difficulty", "medium") not in DIFFICULTIES:
        return f"Question {index} has an invalid difficulty"
    if q.get("bankRef") is None and localized_text(q.get("question")) is None:
        return f"Question {index} needs question text"
    points = q.get("points", 1)
    if isinstance(points, bool) or not isinstance(points, (int, float)) or points < 0:
        return f"Question {index} points must be a non-negative number"
    options = q.get("options", [])
    if not isinstance(options, list) or any(not isinstance(o, dict) for o in options):
        return f"Question {index} options must be a list of objects"
    return None


def _validate_quiz(data: dict, partial: bool) -> str | None:
    """Return an error message for invalid quiz data, else None."""
    if not partial or "title" in data:
        if localized_text(data.get("title")) is None:
            return "Quiz title is required"
    if "questions" in data or not partial:
        questions = data.get("questions", [])
        if not isinstance(questions, list):
            return "questions must be a list"
        for i, q in enumerate(questions):
            err = _validate_question(q, i)
            if err:
                return err
    if data.get("lessonId") is not None and not isinstance(data["lessonId"], int):
        return "lessonId must be an integer"
    if "showResults" in data and data["showResults"] not in SHOW_RESULTS_MODES:
        return f"showResults must be one of {', '.join(SHOW_RESULTS_MODES)}"
    for key in _NUMERIC_FIELDS:
        if key in data and (isinstance(data[key], bool) or not isinstance(data[key], (int, float))):
            return f"{key} must be a number"
    if "attemptsAllowed" in data and data["attemptsAllowed"] != -1 and data["attemptsAllowed"] < 1:
        return "attemptsAllowed must be -1 (unlimited) or at least 1"
    return None


def _normalize(data: dict) -> dict:
    out = dict(data)
    if "title" in out:
        out["title"] = localized_text(out["title"])
    if "description" in out:
        out["description"] = localized_text(out["description"]) or {}
    for key in _BOOL_FIELDS:
        if key in out:
            out[key] = bool(out[key])
    return out


def _load_visible_quiz(quiz_id: int) -> Quiz | None:
    quiz = QuizStoreDB.get(quiz_id)
    if quiz is None or (not quiz.is_published and not _is_staff()):
        return None
    return quiz


def _resolved_questions(quiz: Quiz) -> list[dict]:
    return [resolve_question(q, QuestionBankDB.get) for q in quiz.questions]


@bp.route("/api/quizzes")
@login_required
def api_quizzes():
    course_id = int_arg("courseId")
    if course_id is None:
        return api_error("Please provide courseId", 400)
    quizzes = QuizStoreDB.for_course(course_id, int_arg("lessonId"), published_only=True)
    if _is_staff():
        data = [q.to_dict() for q in quizzes]
    else:
        data = []
        for q in quizzes:
            d = q.to_dict()
            d["questions"] = _resolved_questions(q)
            data.append(sanitize_for_student(d))
    return api_ok(data, count=len(data))


@bp.route("/api/quizzes/<int:quiz_id>")
@login_required
def api_quiz_detail(quiz_id):
    quiz = _load_visible_quiz(quiz_id)
    if quiz is None:
        return api_error("Quiz not found", 404)
    if _is_staff():
        return api_ok(quiz.to_dict())
    data = quiz.to_dict()
    data["questions"] = _resolved_questions(quiz)
    return api_ok(sanitize_for_student(data))


@bp.route("/api/quizzes", methods=["POST"])
@trainer_required
def api_quiz_create():
    data = json_body()
    course_id = data.get("courseId")
    if not isinstance(course_id, int) or not CourseStoreDB.get(course_id):
        return api_error("A valid courseId is required", 400)
    err = _validate_quiz(data, partial=False)
    if err:
        return api_error(err, 400)
    quiz = QuizStoreDB.create(course_id, _normalize(data), created_by=current_user_id())
    log_event("quiz_create", current_user_id(), f"quiz={quiz.id}")
    return api_ok(quiz.to_dict(), status=201)


@bp.route("/api/quizzes/<int:quiz_id>", methods=["PUT"])
@trainer_required
def api_quiz_update(quiz_id):
    if not QuizStoreDB.get(quiz_id):
        return api_error("Quiz not found", 404)
    data = json_body()
    err = _validate_quiz(data, partial=True)
    if err:
        return api_error(err, 400)
    quiz = QuizStoreDB.update(quiz_id, _normalize(data))
    log_event("quiz_update", current_user_id(), f"quiz={quiz_id}")
    return api_ok(quiz.to_dict())


@bp.route("/api/quizzes/<int:quiz_id>", methods=["DELETE"])
@trainer_required
def api_quiz_delete(quiz_id):
    if not QuizStoreDB.get(quiz_id):
        return api_error("Quiz not found", 404)
    QuizStoreDB.delete(quiz_id)
    log_event("quiz_delete", current_user_id(), f"quiz={quiz_id}")
    return api_ok({}, message="Quiz deleted successfully")


@bp.route("/api/quizzes/<int:quiz_id>/submit", methods=["POST"])
@login_required
def api_quiz_submit(quiz_id):
    quiz = _load_visible_quiz(quiz_id)
    if quiz is None:
        return api_error("Quiz not found", 404)
    if not quiz.questions:
        return api_error("Quiz has no questions", 400)

    data = json_body()
    answers = data.get("answers")
    if not isinstance(answers, list):
        return api_error("answers must be a list", 400)
    course_id = data.get("courseId", quiz.course_id)
    if not isinstance(course_id, int) or not CourseStoreDB.get(course_id):
        return api_error("A valid courseId is required", 400)

    uid = current_user_id()
    submissions = SubmissionStoreDB(uid)
    previous = submissions.attempt_count(quiz_id)
    if quiz.attempts_allowed != -1 and previous >= quiz.attempts_allowed:
        return api_error("Maximum attempts reached for this quiz", 400)

    result, resolved = score_submission(
        quiz.questions, answers, quiz.passing_score, quiz.is_adaptive, lookup=QuestionBankDB.get,
    )
    attempt = previous + 1
    submission = submissions.create(
        quiz_id, course_id, result.answers, attempt, result.score, result.total_points,
        result.earned_points, result.adaptive_score, result.passed, result.graded,
    )

    enrollment = EnrollmentStoreDB(uid).get(course_id)
    if enrollment is not None:
        EnrollmentStoreDB.record_quiz_score(
            enrollment.id, quiz_id, result.earned_points, result.total_points, attempt,
        )

    record_activity(uid, "quiz")
    _notify_result(uid, quiz, result.score, result.passed)

    return api_ok({
        "score": result.score,
        "passed": result.passed,
        "correctAnswers": result.correct_answers,
        "totalQuestions": len(quiz.questions),
        "earnedPoints": result.earned_points,
        "totalPoints": result.total_points,
        "adaptiveScore": result.adaptive_score,
        "graded": result.graded,
        "attempt": attempt,
        "submissionId": submission.id,
        "results": build_results(resolved, result.answers) if quiz.show_results != "never" else None,
    })


def _notify_result(user_id: int, quiz: Quiz, score: float, passed: bool) -> None:
    try:
        create_notification(
            user_id,
            "quiz_result",
            {"en": "Quiz result", "ar": "نتيجة الاختبار"},
            {
                "en": f"You scored {score:.0f}% on {quiz.title.get('en', 'your quiz')}"
                      f"{' and passed' if passed else ''}.",
                "ar": f"حصلت على {score:.0f}% في {quiz.title.get('ar') or quiz.title.get('en', 'الاختبار')}.",
            },
            data={"quizId": quiz.id, "score": score, "passed": passed},
            link=f"/quizzes/{quiz.id}",
        )
    except Exception:
        logger.exception("Could not create quiz_result notification for user %s", user_id)


@bp.route("/api/quizzes/<int:quiz_id>/attempts")
@login_required
def api_quiz_attempts(quiz_id):
    if not QuizStoreDB.get(quiz_id):
        return api_error("Quiz not found", 404)
    uid = current_user_id()
    requested = int_arg("userId")
    if requested is not None and requested != uid:
        if not _is_staff():
            return api_error("Not authorized to view other users' attempts", 403)
        uid = requested
    attempts = SubmissionStoreDB(uid).for_quiz(quiz_id)
    return api_ok([s.to_dict() for s in attempts], count=len(attempts))


@bp.route("/api/quizzes/<int:quiz_id>/grade", methods=["POST"])
@trainer_required
def api_quiz_grade(quiz_id):
    quiz = QuizStoreDB.get(quiz_id)
    if quiz is None:
        return api_error("Quiz not found", 404)
    data = json_body()
    submission: Submission | None = None
    if isinstance(data.get("submissionId"), int):
        submission = SubmissionStoreDB.get(data["submissionId"])
    if submission is None or submission.quiz_id != quiz_id:
        return api_error("Submission not found", 404)
    grades = data.get("grades")
    if not isinstance(grades, list) or not grades:
        return api_error("grades must be a non-empty list", 400)

    try:
        result = apply_manual_grades(
            _resolved_questions(quiz), submission.answers, grades,
            quiz.passing_score, quiz.is_adaptive,
        )
    except GradingError as e:
        return api_error(str(e), 400)

    submission.answers = result.answers
    submission.earned_points = result.earned_points
    submission.max_score = result.total_points
    submission.score = result.score
    submission.adaptive_score = result.adaptive_score
    submission.is_passed = result.passed
    submission.graded = result.graded
    SubmissionStoreDB.save_grades(submission)

    # The enrollment mirror tracks the latest attempt only
    latest = SubmissionStoreDB(submission.user_id).attempt_count(quiz_id)
    if submission.course_id is not None and submission.attempt == latest:
        enrollment = EnrollmentStoreDB(submission.user_id).get(submission.course_id)
        if enrollment is not None:
            EnrollmentStoreDB.record_quiz_score(
                enrollment.id, quiz_id, result.earned_points, result.total_points, submission.attempt,
            )

    log_event("quiz_grade", current_user_id(), f"submission={submission.id}")
    return api_ok(submission.to_dict())
