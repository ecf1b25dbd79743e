"""Question bank routes — reusable questions that quizzes reference by id."""

from __future__ import annotations

from flask import Blueprint

from audit import log_event
from db_stores import QuestionBankDB, QuizStoreDB
from helpers import api_error, api_ok, current_user_id, int_arg, json_body, trainer_required
from models import BANK_QUESTION_TYPES

bp = Blueprint("questions", __name__)


def _validate(data: dict, partial: bool) -> str | None:
    if not partial or "text" in data:
        text = data.get("text")
        if not isinstance(text, str) or not text.strip():
            return "Question text is required"
    if not partial or "type" in data:
        if data.get("type", "mcq") not in BANK_QUESTION_TYPES:
            return f"type must be one of {', '.join(BANK_QUESTION_TYPES)}"
    if "marks" in data:
        marks = data["marks"]
        if isinstance(marks, bool) or not isinstance(marks, (int, float)) or marks < 0:
            return "marks must be a non-negative number"
    if "options" in data:
        options = data["options"]
        if not isinstance(options, list) or any(not isinstance(o, dict) for o in options):
            return "options must be a list of objects"
    if "order" in data and not isinstance(data["order"], int):
        return "order must be an integer"
    if data.get("quizId") is not None:
        if not isinstance(data["quizId"], int) or not QuizStoreDB.get(data["quizId"]):
            return "Quiz not found"
    return None


@bp.route("/api/questions")
@trainer_required
def api_questions():
    questions = QuestionBankDB.list_questions(int_arg("quizId"))
    return api_ok([q.to_dict() for q in questions], count=len(questions))


@bp.route("/api/questions", methods=["POST"])
@trainer_required
def api_question_create():
    data = json_body()
    err = _validate(data, partial=False)
    if err:
        return api_error(err, 400)
    question = QuestionBankDB.create(
        data["text"].strip(),
        qtype=data.get("type", "mcq"),
        options=data.get("options", []),
        marks=data.get("marks", 1),
        order=data.get("order", 0),
        quiz_id=data.get("quizId"),
        created_by=current_user_id(),
    )
    log_event("question_create", current_user_id(), f"question={question.id}")
    return api_ok(question.to_dict(), status=201)


@bp.route("/api/questions/<int:question_id>")
@trainer_required
def api_question_detail(question_id):
    question = QuestionBankDB.get(question_id)
    if not question:
        return api_error("Question not found", 404)
    return api_ok(question.to_dict())


@bp.route("/api/questions/<int:question_id>", methods=["PUT"])
@trainer_required
def api_question_update(question_id):
    if not QuestionBankDB.get(question_id):
        return api_error("Question not found", 404)
    data = json_body()
    err = _validate(data, partial=True)
    if err:
        return api_error(err, 400)
    text = data.get("text")
    question = QuestionBankDB.update(
        question_id,
        text=text.strip() if isinstance(text, str) else None,
        qtype=data.get("type"),
        options=data.get("options"),
        marks=data.get("marks"),
        order=data.get("order"),
        quiz_id=data.get("quizId"),
    )
    return api_ok(question.to_dict())


@bp.route("/api/questions/<int:question_id>", methods=["DELETE"])
@trainer_required
def api_question_delete(question_id):
    if not QuestionBankDB.get(question_id):
        return api_error("Question not found", 404)
    QuestionBankDB.delete(question_id)
    log_event("question_delete", current_user_id(), f"question={question_id}")
    return api_ok({}, message="Question deleted")
