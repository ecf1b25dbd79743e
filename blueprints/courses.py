"""Course catalog, lesson and enrollment routes."""

from __future__ import annotations

from flask import Blueprint
from flask_login import current_user, login_required

from audit import log_event
from db_stores import CourseStoreDB, EnrollmentStoreDB
from helpers import api_error, api_ok, current_user_id, json_body, localized_text, trainer_required

bp = Blueprint("courses", __name__)


def _can_manage(course) -> bool:
    return current_user.role == "admin" or course.trainer_id == current_user.id


@bp.route("/api/courses")
def api_courses():
    courses = CourseStoreDB.list_published()
    return api_ok([c.to_dict() for c in courses], count=len(courses))


@bp.route("/api/courses", methods=["POST"])
@trainer_required
def api_course_create():
    data = json_body()
    title = localized_text(data.get("title"))
    if title is None:
        return api_error("Course title is required", 400)
    description = localized_text(data.get("description")) or {}
    course = CourseStoreDB.create(
        title, description, trainer_id=current_user_id(), is_published=bool(data.get("isPublished")),
    )
    log_event("course_create", current_user_id(), f"course={course.id}")
    return api_ok(course.to_dict(), status=201)


@bp.route("/api/courses/<int:course_id>")
def api_course_detail(course_id):
    course = CourseStoreDB.get(course_id)
    if not course:
        return api_error("Course not found", 404)
    data = course.to_dict()
    data["lessons"] = [lesson.to_dict() for lesson in CourseStoreDB.lessons(course_id)]
    return api_ok(data)


@bp.route("/api/courses/<int:course_id>/lessons")
def api_course_lessons(course_id):
    if not CourseStoreDB.get(course_id):
        return api_error("Course not found", 404)
    lessons = CourseStoreDB.lessons(course_id)
    return api_ok([lesson.to_dict() for lesson in lessons], count=len(lessons))


@bp.route("/api/courses/<int:course_id>/lessons", methods=["POST"])
@trainer_required
def api_lesson_create(course_id):
    course = CourseStoreDB.get(course_id)
    if not course:
        return api_error("Course not found", 404)
    if not _can_manage(course):
        return api_error("Not authorized to modify this course", 403)
    data = json_body()
    title = localized_text(data.get("title"))
    if title is None:
        return api_error("Lesson title is required", 400)
    order = data.get("order")
    if order is not None and not isinstance(order, int):
        return api_error("order must be an integer", 400)
    lesson = CourseStoreDB.add_lesson(course_id, title, order)
    return api_ok(lesson.to_dict(), status=201)


@bp.route("/api/courses/<int:course_id>/enroll", methods=["POST"])
@login_required
def api_enroll(course_id):
    course = CourseStoreDB.get(course_id)
    if not course:
        return api_error("Course not found", 404)
    if not course.is_published and not _can_manage(course):
        return api_error("Course is not open for enrollment", 400)
    store = EnrollmentStoreDB(current_user_id())
    existing = store.get(course_id)
    if existing:
        return api_ok(existing.to_dict(), message="Already enrolled")
    enrollment = store.enroll(course_id)
    log_event("enroll", current_user_id(), f"course={course_id}")
    return api_ok(enrollment.to_dict(), status=201)


@bp.route("/api/enrollments/me")
@login_required
def api_my_enrollments():
    enrollments = []
    for e in EnrollmentStoreDB(current_user_id()).all():
        item = e.to_dict()
        item["quizScores"] = EnrollmentStoreDB.quiz_scores(e.id)
        enrollments.append(item)
    return api_ok(enrollments, count=len(enrollments))
