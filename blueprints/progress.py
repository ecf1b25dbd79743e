"""Lesson progress routes."""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import Blueprint
from flask_login import login_required

from db_stores import CourseStoreDB, EnrollmentStoreDB, ProgressStoreDB
from helpers import api_error, api_ok, current_user_id, json_body
from models import LessonProgress, Progress
from streaks import record_activity

bp = Blueprint("progress", __name__)

STREAK_WINDOW = timedelta(hours=24)


def next_streak_count(progress: Progress | None, completed: bool, now: datetime) -> int:
    """Per-course streak: grows while lessons are completed within 24h of the last visit."""
    if progress is None:
        return 1 if completed else 0
    if progress.last_accessed:
        try:
            last = datetime.fromisoformat(progress.last_accessed)
        except ValueError:
            last = None
        if last is not None and now - last <= STREAK_WINDOW:
            return progress.streak_count + (1 if completed else 0)
    return 1 if completed else 0


def _course_percentage(course_id: int, progress: Progress) -> float:
    total = len(CourseStoreDB.lessons(course_id))
    if not total:
        return 0
    done = sum(1 for lp in progress.lessons if lp.completed)
    return round(min(100, done / total * 100), 2)


@bp.route("/api/progress", methods=["PUT"])
@login_required
def api_update_progress():
    data = json_body()
    course_id = data.get("courseId")
    lesson_id = data.get("lessonId")
    if not isinstance(course_id, int) or not isinstance(lesson_id, int):
        return api_error("courseId and lessonId are required", 400)
    lesson = CourseStoreDB.get_lesson(lesson_id)
    if lesson is None or lesson.course_id != course_id:
        return api_error("Lesson not found in this course", 404)

    completed_given = "completed" in data and data["completed"] is not None
    completed = bool(data.get("completed")) if completed_given else False
    completion_time = data.get("completionTime")
    quiz_score = data.get("quizScore")
    now = datetime.now()

    uid = current_user_id()
    store = ProgressStoreDB(uid)
    progress = store.get(course_id)
    streak = next_streak_count(progress, completed, now)
    if progress is None:
        progress = store.create(course_id, streak, now.isoformat())
    progress.streak_count = streak
    progress.last_accessed = now.isoformat()

    entry = next((lp for lp in progress.lessons if lp.lesson_id == lesson_id), None)
    if entry is None:
        entry = LessonProgress(lesson_id=lesson_id)
        progress.lessons.append(entry)
    # Only fields present in the request change an existing entry
    if completed_given:
        entry.completed = completed
    if completion_time is not None:
        entry.completion_time = completion_time
    if quiz_score is not None:
        entry.quiz_scores.append({"score": quiz_score, "date": now.isoformat()})
    if completed:
        progress.last_completed_lesson = lesson_id

    ProgressStoreDB.save(progress)

    if completed_given:
        enrollments = EnrollmentStoreDB(uid)
        if enrollments.get(course_id) is not None:
            enrollments.set_progress(course_id, _course_percentage(course_id, progress))

    record_activity(uid, "lesson")

    return api_ok(store.get(course_id).to_dict())


@bp.route("/api/progress/<int:course_id>")
@login_required
def api_get_progress(course_id):
    progress = ProgressStoreDB(current_user_id()).get(course_id)
    if progress is None:
        return api_error("Progress not found", 404)
    return api_ok(progress.to_dict())
