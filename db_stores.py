"""
DB-backed store classes for GreenDye Academy.

Each class wraps the SQL for one area and returns the dataclasses from
models.py. Writes commit immediately; callers never manage transactions.
"""

from __future__ import annotations

import json
from datetime import datetime, date, timedelta
from typing import Optional

from database import get_db
from models import (
    Badge,
    BankQuestion,
    ChatConversation,
    ChatMessage,
    Course,
    DailyLearningRecord,
    Enrollment,
    LeaderboardEntry,
    Lesson,
    LessonProgress,
    Notification,
    NotificationPreferences,
    Progress,
    Quiz,
    Submission,
    SubmissionAnswer,
    loads,
)
from quiz_scoring import question_points


def _now() -> str:
    return datetime.now().isoformat()


# ── Courses & Lessons ────────────────────────────────────────────────


class CourseStoreDB:
    """Catalog: courses and their ordered lessons."""

    @staticmethod
    def create(title: dict, description: dict | None = None, trainer_id: int | None = None,
               is_published: bool = False) -> Course:
        db = get_db()
        cur = db.execute(
            "INSERT INTO courses (title, description, trainer_id, is_published, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (json.dumps(title), json.dumps(description or {}), trainer_id,
             1 if is_published else 0, _now()),
        )
        db.commit()
        return CourseStoreDB.get(cur.lastrowid)

    @staticmethod
    def get(course_id: int) -> Optional[Course]:
        db = get_db()
        row = db.execute("SELECT * FROM courses WHERE id = ?", (course_id,)).fetchone()
        return CourseStoreDB._row_to_course(row) if row else None

    @staticmethod
    def list_published() -> list[Course]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM courses WHERE is_published = 1 ORDER BY created_at DESC"
        ).fetchall()
        return [CourseStoreDB._row_to_course(r) for r in rows]

    @staticmethod
    def add_lesson(course_id: int, title: dict, order: int | None = None) -> Lesson:
        db = get_db()
        if order is None:
            row = db.execute(
                "SELECT COALESCE(MAX(sort_order), -1) + 1 AS next FROM lessons WHERE course_id = ?",
                (course_id,),
            ).fetchone()
            order = row["next"]
        cur = db.execute(
            "INSERT INTO lessons (course_id, title, sort_order, created_at) VALUES (?, ?, ?, ?)",
            (course_id, json.dumps(title), order, _now()),
        )
        db.commit()
        return Lesson(id=cur.lastrowid, course_id=course_id, title=title, order=order)

    @staticmethod
    def lessons(course_id: int) -> list[Lesson]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM lessons WHERE course_id = ? ORDER BY sort_order, id", (course_id,)
        ).fetchall()
        return [CourseStoreDB._row_to_lesson(r) for r in rows]

    @staticmethod
    def get_lesson(lesson_id: int) -> Optional[Lesson]:
        db = get_db()
        row = db.execute("SELECT * FROM lessons WHERE id = ?", (lesson_id,)).fetchone()
        return CourseStoreDB._row_to_lesson(row) if row else None

    @staticmethod
    def _row_to_course(r) -> Course:
        return Course(
            id=r["id"], title=loads(r["title"], {}), description=loads(r["description"], {}),
            trainer_id=r["trainer_id"], is_published=bool(r["is_published"]),
            created_at=r["created_at"],
        )

    @staticmethod
    def _row_to_lesson(r) -> Lesson:
        return Lesson(id=r["id"], course_id=r["course_id"], title=loads(r["title"], {}),
                      order=r["sort_order"])


# ── Enrollments ──────────────────────────────────────────────────────


class EnrollmentStoreDB:
    """Enrollments and the per-quiz score mirror kept on them."""

    def __init__(self, user_id: int):
        self.user_id = user_id

    def enroll(self, course_id: int) -> Enrollment:
        db = get_db()
        db.execute(
            "INSERT OR IGNORE INTO enrollments (user_id, course_id, enrolled_at) VALUES (?, ?, ?)",
            (self.user_id, course_id, _now()),
        )
        db.commit()
        return self.get(course_id)

    def get(self, course_id: int) -> Optional[Enrollment]:
        db = get_db()
        row = db.execute(
            "SELECT * FROM enrollments WHERE user_id = ? AND course_id = ?",
            (self.user_id, course_id),
        ).fetchone()
        return self._row_to_enrollment(row) if row else None

    def all(self) -> list[Enrollment]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM enrollments WHERE user_id = ? ORDER BY enrolled_at DESC", (self.user_id,)
        ).fetchall()
        return [self._row_to_enrollment(r) for r in rows]

    def completed_count(self) -> int:
        db = get_db()
        row = db.execute(
            "SELECT COUNT(*) AS cnt FROM enrollments WHERE user_id = ? AND progress >= 100",
            (self.user_id,),
        ).fetchone()
        return row["cnt"]

    def set_progress(self, course_id: int, progress: float) -> None:
        db = get_db()
        status = "completed" if progress >= 100 else "active"
        db.execute(
            "UPDATE enrollments SET progress = ?, status = ? WHERE user_id = ? AND course_id = ?",
            (progress, status, self.user_id, course_id),
        )
        db.commit()

    @staticmethod
    def record_quiz_score(enrollment_id: int, quiz_id: int, score: float, max_score: float,
                          attempt: int) -> None:
        """Mirror the latest attempt for a quiz onto the enrollment."""
        db = get_db()
        db.execute(
            "INSERT INTO enrollment_quiz_scores "
            "(enrollment_id, quiz_id, score, max_score, attempt, completed_at) "
            "VALUES (?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(enrollment_id, quiz_id) DO UPDATE SET "
            "score = excluded.score, max_score = excluded.max_score, "
            "attempt = excluded.attempt, completed_at = excluded.completed_at",
            (enrollment_id, quiz_id, score, max_score, attempt, _now()),
        )
        db.commit()

    @staticmethod
    def quiz_scores(enrollment_id: int) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT quiz_id, score, max_score, attempt, completed_at "
            "FROM enrollment_quiz_scores WHERE enrollment_id = ? ORDER BY quiz_id",
            (enrollment_id,),
        ).fetchall()
        return [
            {"quizId": r["quiz_id"], "score": r["score"], "maxScore": r["max_score"],
             "attempt": r["attempt"], "completedAt": r["completed_at"]}
            for r in rows
        ]

    @staticmethod
    def _row_to_enrollment(r) -> Enrollment:
        return Enrollment(
            id=r["id"], user_id=r["user_id"], course_id=r["course_id"], status=r["status"],
            progress=r["progress"], enrolled_at=r["enrolled_at"],
        )


# ── Quizzes ──────────────────────────────────────────────────────────

_QUIZ_COLUMNS = {
    "lesson_id": "lessonId",
    "passing_score": "passingScore",
    "time_limit": "timeLimit",
    "attempts_allowed": "attemptsAllowed",
    "shuffle_questions": "shuffleQuestions",
    "shuffle_options": "shuffleOptions",
    "show_results": "showResults",
    "is_adaptive": "isAdaptive",
    "is_required": "isRequired",
    "is_published": "isPublished",
}
_QUIZ_BOOL_COLUMNS = {
    "shuffle_questions", "shuffle_options", "is_adaptive", "is_required", "is_published",
}


def total_points(questions: list[dict]) -> float:
    return sum(question_points(q) for q in questions)


class QuizStoreDB:
    """Quizzes with their embedded question list."""

    @staticmethod
    def create(course_id: int, data: dict, created_by: int | None = None) -> Quiz:
        questions = data.get("questions", [])
        now = _now()
        cols = ["course_id", "title", "description", "questions", "total_points",
                "created_by", "created_at", "updated_at"]
        vals = [course_id, json.dumps(data.get("title", {})),
                json.dumps(data.get("description", {})), json.dumps(questions),
                total_points(questions), created_by, now, now]
        for col, key in _QUIZ_COLUMNS.items():
            if key in data:
                cols.append(col)
                vals.append(QuizStoreDB._column_value(col, data[key]))
        db = get_db()
        cur = db.execute(
            f"INSERT INTO quizzes ({', '.join(cols)}) VALUES ({', '.join('?' * len(cols))})",
            vals,
        )
        db.commit()
        return QuizStoreDB.get(cur.lastrowid)

    @staticmethod
    def update(quiz_id: int, data: dict) -> Optional[Quiz]:
        sets: list[str] = []
        vals: list = []
        for key in ("title", "description"):
            if key in data:
                sets.append(f"{key} = ?")
                vals.append(json.dumps(data[key]))
        if "questions" in data:
            sets += ["questions = ?", "total_points = ?"]
            vals += [json.dumps(data["questions"]), total_points(data["questions"])]
        for col, key in _QUIZ_COLUMNS.items():
            if key in data:
                sets.append(f"{col} = ?")
                vals.append(QuizStoreDB._column_value(col, data[key]))
        sets.append("updated_at = ?")
        vals += [_now(), quiz_id]
        db = get_db()
        db.execute(f"UPDATE quizzes SET {', '.join(sets)} WHERE id = ?", vals)
        db.commit()
        return QuizStoreDB.get(quiz_id)

    @staticmethod
    def delete(quiz_id: int) -> None:
        db = get_db()
        db.execute("DELETE FROM quizzes WHERE id = ?", (quiz_id,))
        db.commit()

    @staticmethod
    def get(quiz_id: int) -> Optional[Quiz]:
        db = get_db()
        row = db.execute("SELECT * FROM quizzes WHERE id = ?", (quiz_id,)).fetchone()
        return QuizStoreDB._row_to_quiz(row) if row else None

    @staticmethod
    def for_course(course_id: int, lesson_id: int | None = None,
                   published_only: bool = True) -> list[Quiz]:
        sql = "SELECT * FROM quizzes WHERE course_id = ?"
        params: list = [course_id]
        if lesson_id is not None:
            sql += " AND lesson_id = ?"
            params.append(lesson_id)
        if published_only:
            sql += " AND is_published = 1"
        db = get_db()
        rows = db.execute(sql + " ORDER BY id", params).fetchall()
        return [QuizStoreDB._row_to_quiz(r) for r in rows]

    @staticmethod
    def _column_value(col: str, value):
        if col in _QUIZ_BOOL_COLUMNS:
            return 1 if value else 0
        return value

    @staticmethod
    def _row_to_quiz(r) -> Quiz:
        return Quiz(
            id=r["id"], course_id=r["course_id"], lesson_id=r["lesson_id"],
            title=loads(r["title"], {}), description=loads(r["description"], {}),
            questions=loads(r["questions"], []),
            passing_score=r["passing_score"], time_limit=r["time_limit"],
            attempts_allowed=r["attempts_allowed"],
            shuffle_questions=bool(r["shuffle_questions"]),
            shuffle_options=bool(r["shuffle_options"]),
            show_results=r["show_results"], is_adaptive=bool(r["is_adaptive"]),
            is_required=bool(r["is_required"]), is_published=bool(r["is_published"]),
            total_points=r["total_points"], created_by=r["created_by"],
            created_at=r["created_at"], updated_at=r["updated_at"],
        )


# ── Question Bank ────────────────────────────────────────────────────


class QuestionBankDB:
    """Reusable standalone questions a quiz can reference by id."""

    @staticmethod
    def create(text: str, qtype: str = "mcq", options: list | None = None, marks: float = 1,
               order: int = 0, quiz_id: int | None = None,
               created_by: int | None = None) -> BankQuestion:
        db = get_db()
        cur = db.execute(
            "INSERT INTO questions (quiz_id, text, type, options, marks, sort_order, created_by, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (quiz_id, text, qtype, json.dumps(options or []), marks, order, created_by, _now()),
        )
        db.commit()
        return QuestionBankDB.get(cur.lastrowid)

    @staticmethod
    def get(question_id: int) -> Optional[BankQuestion]:
        db = get_db()
        row = db.execute("SELECT * FROM questions WHERE id = ?", (question_id,)).fetchone()
        return QuestionBankDB._row_to_question(row) if row else None

    @staticmethod
    def list_questions(quiz_id: int | None = None) -> list[BankQuestion]:
        db = get_db()
        if quiz_id is not None:
            rows = db.execute(
                "SELECT * FROM questions WHERE quiz_id = ? ORDER BY sort_order, id", (quiz_id,)
            ).fetchall()
        else:
            rows = db.execute("SELECT * FROM questions ORDER BY sort_order, id").fetchall()
        return [QuestionBankDB._row_to_question(r) for r in rows]

    @staticmethod
    def update(question_id: int, *, text=None, qtype=None, options=None, marks=None,
               order=None, quiz_id=None) -> Optional[BankQuestion]:
        sets = []
        vals: list = []
        for col, value in (("text", text), ("type", qtype), ("marks", marks),
                           ("sort_order", order), ("quiz_id", quiz_id)):
            if value is not None:
                sets.append(f"{col} = ?")
                vals.append(value)
        if options is not None:
            sets.append("options = ?")
            vals.append(json.dumps(options))
        if sets:
            vals.append(question_id)
            db = get_db()
            db.execute(f"UPDATE questions SET {', '.join(sets)} WHERE id = ?", vals)
            db.commit()
        return QuestionBankDB.get(question_id)

    @staticmethod
    def delete(question_id: int) -> None:
        db = get_db()
        db.execute("DELETE FROM questions WHERE id = ?", (question_id,))
        db.commit()

    @staticmethod
    def _row_to_question(r) -> BankQuestion:
        return BankQuestion(
            id=r["id"], quiz_id=r["quiz_id"], text=r["text"], type=r["type"],
            options=loads(r["options"], []), marks=r["marks"], order=r["sort_order"],
            created_by=r["created_by"], created_at=r["created_at"],
        )


# ── Submissions ──────────────────────────────────────────────────────


class SubmissionStoreDB:
    """Quiz attempts. The attempt count for a user is derived from these rows."""

    def __init__(self, user_id: int):
        self.user_id = user_id

    def attempt_count(self, quiz_id: int) -> int:
        db = get_db()
        row = db.execute(
            "SELECT COUNT(*) AS cnt FROM submissions WHERE quiz_id = ? AND user_id = ?",
            (quiz_id, self.user_id),
        ).fetchone()
        return row["cnt"]

    def create(self, quiz_id: int, course_id: int | None, answers: list[SubmissionAnswer],
               attempt: int, score: float, max_score: float, earned_points: float,
               adaptive_score: float | None, is_passed: bool, graded: bool) -> Submission:
        db = get_db()
        cur = db.execute(
            "INSERT INTO submissions (quiz_id, user_id, course_id, answers, attempt, score, "
            "max_score, earned_points, adaptive_score, is_passed, graded, submitted_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (quiz_id, self.user_id, course_id, json.dumps([a.to_dict() for a in answers]),
             attempt, score, max_score, earned_points, adaptive_score,
             1 if is_passed else 0, 1 if graded else 0, _now()),
        )
        db.commit()
        return SubmissionStoreDB.get(cur.lastrowid)

    def for_quiz(self, quiz_id: int) -> list[Submission]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM submissions WHERE quiz_id = ? AND user_id = ? ORDER BY attempt",
            (quiz_id, self.user_id),
        ).fetchall()
        return [SubmissionStoreDB._row_to_submission(r) for r in rows]

    def perfect_count(self) -> int:
        db = get_db()
        row = db.execute(
            "SELECT COUNT(*) AS cnt FROM submissions WHERE user_id = ? AND score >= 100",
            (self.user_id,),
        ).fetchone()
        return row["cnt"]

    @staticmethod
    def get(submission_id: int) -> Optional[Submission]:
        db = get_db()
        row = db.execute("SELECT * FROM submissions WHERE id = ?", (submission_id,)).fetchone()
        return SubmissionStoreDB._row_to_submission(row) if row else None

    @staticmethod
    def save_grades(submission: Submission) -> None:
        db = get_db()
        db.execute(
            "UPDATE submissions SET answers = ?, score = ?, max_score = ?, earned_points = ?, "
            "adaptive_score = ?, is_passed = ?, graded = ? WHERE id = ?",
            (json.dumps([a.to_dict() for a in submission.answers]), submission.score,
             submission.max_score, submission.earned_points, submission.adaptive_score,
             1 if submission.is_passed else 0, 1 if submission.graded else 0, submission.id),
        )
        db.commit()

    @staticmethod
    def _row_to_submission(r) -> Submission:
        return Submission(
            id=r["id"], quiz_id=r["quiz_id"], user_id=r["user_id"], course_id=r["course_id"],
            answers=[SubmissionAnswer.from_dict(a) for a in loads(r["answers"], [])],
            attempt=r["attempt"], score=r["score"], max_score=r["max_score"],
            earned_points=r["earned_points"], adaptive_score=r["adaptive_score"],
            is_passed=bool(r["is_passed"]), graded=bool(r["graded"]),
            submitted_at=r["submitted_at"],
        )


# ── Progress ─────────────────────────────────────────────────────────


class ProgressStoreDB:
    """Per-course progress and its lesson entries."""

    def __init__(self, user_id: int):
        self.user_id = user_id

    def get(self, course_id: int) -> Optional[Progress]:
        db = get_db()
        row = db.execute(
            "SELECT * FROM progress WHERE user_id = ? AND course_id = ?",
            (self.user_id, course_id),
        ).fetchone()
        if not row:
            return None
        lesson_rows = db.execute(
            "SELECT lp.*, l.title AS lesson_title, l.sort_order AS lesson_order "
            "FROM lesson_progress lp LEFT JOIN lessons l ON l.id = lp.lesson_id "
            "WHERE lp.progress_id = ? ORDER BY l.sort_order, lp.id",
            (row["id"],),
        ).fetchall()
        return Progress(
            id=row["id"], user_id=row["user_id"], course_id=row["course_id"],
            last_completed_lesson=row["last_completed_lesson"],
            streak_count=row["streak_count"], last_accessed=row["last_accessed"],
            lessons=[
                LessonProgress(
                    lesson_id=lr["lesson_id"], completed=bool(lr["completed"]),
                    completion_time=lr["completion_time"],
                    quiz_scores=loads(lr["quiz_scores"], []),
                    title=loads(lr["lesson_title"], {}), order=lr["lesson_order"] or 0,
                )
                for lr in lesson_rows
            ],
        )

    def create(self, course_id: int, streak_count: int, last_accessed: str) -> Progress:
        db = get_db()
        db.execute(
            "INSERT INTO progress (user_id, course_id, streak_count, last_accessed) VALUES (?, ?, ?, ?)",
            (self.user_id, course_id, streak_count, last_accessed),
        )
        db.commit()
        return self.get(course_id)

    @staticmethod
    def save(progress: Progress) -> None:
        """Persist the progress row and every lesson entry on it."""
        db = get_db()
        db.execute(
            "UPDATE progress SET last_completed_lesson = ?, streak_count = ?, last_accessed = ? "
            "WHERE id = ?",
            (progress.last_completed_lesson, progress.streak_count, progress.last_accessed,
             progress.id),
        )
        for lp in progress.lessons:
            db.execute(
                "INSERT INTO lesson_progress (progress_id, lesson_id, completed, completion_time, quiz_scores) "
                "VALUES (?, ?, ?, ?, ?) "
                "ON CONFLICT(progress_id, lesson_id) DO UPDATE SET "
                "completed = excluded.completed, completion_time = excluded.completion_time, "
                "quiz_scores = excluded.quiz_scores",
                (progress.id, lp.lesson_id, 1 if lp.completed else 0, lp.completion_time,
                 json.dumps(lp.quiz_scores)),
            )
        db.commit()

    def completed_lessons_count(self) -> int:
        db = get_db()
        row = db.execute(
            "SELECT COUNT(*) AS cnt FROM lesson_progress lp JOIN progress p ON p.id = lp.progress_id "
            "WHERE p.user_id = ? AND lp.completed = 1",
            (self.user_id,),
        ).fetchone()
        return row["cnt"]


# ── Daily Learning Records ───────────────────────────────────────────


class DailyLearningRecordDB:
    """One record per user per calendar day, listing the activity types seen."""

    def __init__(self, user_id: int):
        self.user_id = user_id

    def get(self, day: date) -> Optional[DailyLearningRecord]:
        db = get_db()
        row = db.execute(
            "SELECT * FROM daily_learning_records WHERE user_id = ? AND date = ?",
            (self.user_id, day.isoformat()),
        ).fetchone()
        if not row:
            return None
        return DailyLearningRecord(user_id=self.user_id, date=row["date"],
                                   activities=loads(row["activities"], []))

    def upsert(self, day: date, activities: list[str]) -> DailyLearningRecord:
        db = get_db()
        db.execute(
            "INSERT INTO daily_learning_records (user_id, date, activities) VALUES (?, ?, ?) "
            "ON CONFLICT(user_id, date) DO UPDATE SET activities = excluded.activities",
            (self.user_id, day.isoformat(), json.dumps(activities)),
        )
        db.commit()
        return DailyLearningRecord(user_id=self.user_id, date=day.isoformat(), activities=activities)

    def dates(self) -> list[date]:
        """All record dates, newest first."""
        db = get_db()
        rows = db.execute(
            "SELECT date FROM daily_learning_records WHERE user_id = ? ORDER BY date DESC",
            (self.user_id,),
        ).fetchall()
        return [date.fromisoformat(r["date"]) for r in rows]


# ── Gamification ─────────────────────────────────────────────────────


class BadgeStoreDB:
    """Badge catalog and the achievements users hold."""

    @staticmethod
    def create(name: dict, criteria_type: str, threshold: int, description: dict | None = None,
               icon: str = "", points: int = 0, rarity: str = "common",
               is_active: bool = True) -> Badge:
        db = get_db()
        cur = db.execute(
            "INSERT INTO badges (name, description, icon, criteria_type, threshold, points, rarity, "
            "is_active, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (json.dumps(name), json.dumps(description or {}), icon, criteria_type, threshold,
             points, rarity, 1 if is_active else 0, _now()),
        )
        db.commit()
        return Badge(id=cur.lastrowid, name=name, criteria_type=criteria_type, threshold=threshold,
                     description=description or {}, icon=icon, points=points, rarity=rarity,
                     is_active=is_active)

    @staticmethod
    def active(criteria_type: str | None = None, max_threshold: int | None = None) -> list[Badge]:
        sql = "SELECT * FROM badges WHERE is_active = 1"
        params: list = []
        if criteria_type is not None:
            sql += " AND criteria_type = ?"
            params.append(criteria_type)
        if max_threshold is not None:
            sql += " AND threshold <= ?"
            params.append(max_threshold)
        db = get_db()
        rows = db.execute(sql + " ORDER BY threshold, id", params).fetchall()
        return [BadgeStoreDB._row_to_badge(r) for r in rows]

    @staticmethod
    def has_achievement(user_id: int, badge_id: int) -> bool:
        db = get_db()
        row = db.execute(
            "SELECT 1 FROM user_achievements WHERE user_id = ? AND badge_id = ?",
            (user_id, badge_id),
        ).fetchone()
        return row is not None

    @staticmethod
    def award(user_id: int, badge: Badge) -> dict:
        db = get_db()
        earned_at = _now()
        db.execute(
            "INSERT OR IGNORE INTO user_achievements "
            "(user_id, badge_id, progress_current, progress_target, earned_at) VALUES (?, ?, ?, ?, ?)",
            (user_id, badge.id, badge.threshold, badge.threshold, earned_at),
        )
        db.commit()
        return {
            "badge": badge.to_dict(),
            "progress": {"current": badge.threshold, "target": badge.threshold},
            "earnedAt": earned_at,
        }

    @staticmethod
    def achievements(user_id: int) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT ua.progress_current, ua.progress_target, ua.earned_at, b.* "
            "FROM user_achievements ua JOIN badges b ON b.id = ua.badge_id "
            "WHERE ua.user_id = ? ORDER BY ua.earned_at DESC, ua.id DESC",
            (user_id,),
        ).fetchall()
        return [
            {
                "badge": BadgeStoreDB._row_to_badge(r).to_dict(),
                "progress": {"current": r["progress_current"], "target": r["progress_target"]},
                "earnedAt": r["earned_at"],
            }
            for r in rows
        ]

    @staticmethod
    def achievement_count(user_id: int) -> int:
        db = get_db()
        row = db.execute(
            "SELECT COUNT(*) AS cnt FROM user_achievements WHERE user_id = ?", (user_id,)
        ).fetchone()
        return row["cnt"]

    @staticmethod
    def _row_to_badge(r) -> Badge:
        return Badge(
            id=r["id"], name=loads(r["name"], {}), description=loads(r["description"], {}),
            icon=r["icon"], criteria_type=r["criteria_type"], threshold=r["threshold"],
            points=r["points"], rarity=r["rarity"], is_active=bool(r["is_active"]),
        )


class LeaderboardStoreDB:
    """Per-period leaderboard entries."""

    @staticmethod
    def get(user_id: int, period: str = "all_time") -> Optional[LeaderboardEntry]:
        db = get_db()
        row = db.execute(
            "SELECT * FROM leaderboard_entries WHERE user_id = ? AND period = ?", (user_id, period)
        ).fetchone()
        return LeaderboardStoreDB._row_to_entry(row) if row else None

    @staticmethod
    def get_or_create(user_id: int, period: str = "all_time") -> LeaderboardEntry:
        entry = LeaderboardStoreDB.get(user_id, period)
        if entry is not None:
            return entry
        db = get_db()
        db.execute(
            "INSERT OR IGNORE INTO leaderboard_entries (user_id, period) VALUES (?, ?)",
            (user_id, period),
        )
        db.commit()
        return LeaderboardStoreDB.get(user_id, period)

    @staticmethod
    def save(entry: LeaderboardEntry) -> None:
        db = get_db()
        db.execute(
            "UPDATE leaderboard_entries SET points = ?, courses_completed = ?, certificates_earned = ?, "
            "streak_current = ?, streak_longest = ?, last_activity = ?, level = ?, rank = ? "
            "WHERE user_id = ? AND period = ?",
            (entry.points, entry.courses_completed, entry.certificates_earned,
             entry.streak_current, entry.streak_longest, entry.last_activity, entry.level,
             entry.rank, entry.user_id, entry.period),
        )
        db.commit()

    @staticmethod
    def ranking(period: str = "all_time", limit: int = 100) -> list[LeaderboardEntry]:
        """Entries by points descending, ranked 1..n."""
        db = get_db()
        rows = db.execute(
            "SELECT le.*, u.name AS user_name FROM leaderboard_entries le "
            "JOIN users u ON u.id = le.user_id "
            "WHERE le.period = ? ORDER BY le.points DESC, le.user_id LIMIT ?",
            (period, limit),
        ).fetchall()
        entries = []
        for i, r in enumerate(rows, 1):
            entry = LeaderboardStoreDB._row_to_entry(r)
            entry.name = r["user_name"]
            entry.rank = i
            entries.append(entry)
        return entries

    @staticmethod
    def rank_of(user_id: int, period: str = "all_time") -> Optional[int]:
        entry = LeaderboardStoreDB.get(user_id, period)
        if entry is None:
            return None
        db = get_db()
        row = db.execute(
            "SELECT COUNT(*) AS ahead FROM leaderboard_entries "
            "WHERE period = ? AND (points > ? OR (points = ? AND user_id < ?))",
            (period, entry.points, entry.points, user_id),
        ).fetchone()
        return row["ahead"] + 1

    @staticmethod
    def _row_to_entry(r) -> LeaderboardEntry:
        return LeaderboardEntry(
            id=r["id"], user_id=r["user_id"], period=r["period"], points=r["points"],
            courses_completed=r["courses_completed"], certificates_earned=r["certificates_earned"],
            streak_current=r["streak_current"], streak_longest=r["streak_longest"],
            last_activity=r["last_activity"], level=r["level"], rank=r["rank"],
        )


# ── Notifications ────────────────────────────────────────────────────


class NotificationStoreDB:
    """DB-backed notifications. Expired rows are invisible and purged by the scheduler."""

    def __init__(self, user_id: int):
        self.user_id = user_id

    def add(self, ntype: str, title: dict, message: dict, data: dict | None = None,
            link: str = "", priority: str = "medium", ttl_days: int = 90) -> Notification:
        now = datetime.now()
        db = get_db()
        cur = db.execute(
            "INSERT INTO notifications (user_id, type, title, message, data, link, priority, "
            "expires_at, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (self.user_id, ntype, json.dumps(title), json.dumps(message), json.dumps(data or {}),
             link, priority, (now + timedelta(days=ttl_days)).isoformat(), now.isoformat()),
        )
        db.commit()
        return NotificationStoreDB.get(cur.lastrowid)

    def page(self, page: int, limit: int, unread_only: bool = False) -> tuple[list[Notification], int]:
        where = "user_id = ? AND expires_at > ?"
        params: list = [self.user_id, _now()]
        if unread_only:
            where += " AND is_read = 0"
        db = get_db()
        total = db.execute(f"SELECT COUNT(*) AS cnt FROM notifications WHERE {where}", params).fetchone()["cnt"]
        rows = db.execute(
            f"SELECT * FROM notifications WHERE {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            params + [limit, (page - 1) * limit],
        ).fetchall()
        return [NotificationStoreDB._row_to_notif(r) for r in rows], total

    def unread_count(self) -> int:
        db = get_db()
        row = db.execute(
            "SELECT COUNT(*) AS cnt FROM notifications WHERE user_id = ? AND is_read = 0 AND expires_at > ?",
            (self.user_id, _now()),
        ).fetchone()
        return row["cnt"]

    def mark_all_read(self) -> int:
        db = get_db()
        cur = db.execute(
            "UPDATE notifications SET is_read = 1, read_at = ? WHERE user_id = ? AND is_read = 0",
            (_now(), self.user_id),
        )
        db.commit()
        return cur.rowcount

    def delete_read(self) -> int:
        db = get_db()
        cur = db.execute("DELETE FROM notifications WHERE user_id = ? AND is_read = 1", (self.user_id,))
        db.commit()
        return cur.rowcount

    @staticmethod
    def get(notif_id: int) -> Optional[Notification]:
        db = get_db()
        row = db.execute("SELECT * FROM notifications WHERE id = ?", (notif_id,)).fetchone()
        return NotificationStoreDB._row_to_notif(row) if row else None

    @staticmethod
    def mark_read(notif_id: int) -> None:
        db = get_db()
        db.execute("UPDATE notifications SET is_read = 1, read_at = ? WHERE id = ?", (_now(), notif_id))
        db.commit()

    @staticmethod
    def delete(notif_id: int) -> None:
        db = get_db()
        db.execute("DELETE FROM notifications WHERE id = ?", (notif_id,))
        db.commit()

    @staticmethod
    def mark_email_sent(notif_id: int) -> None:
        db = get_db()
        db.execute("UPDATE notifications SET email_sent = 1, email_sent_at = ? WHERE id = ?",
                   (_now(), notif_id))
        db.commit()

    @staticmethod
    def mark_push_sent(notif_id: int) -> None:
        db = get_db()
        db.execute("UPDATE notifications SET push_sent = 1, push_sent_at = ? WHERE id = ?",
                   (_now(), notif_id))
        db.commit()

    @staticmethod
    def purge_expired() -> int:
        db = get_db()
        cur = db.execute("DELETE FROM notifications WHERE expires_at <= ?", (_now(),))
        db.commit()
        return cur.rowcount

    @staticmethod
    def _row_to_notif(r) -> Notification:
        return Notification(
            id=r["id"], user_id=r["user_id"], type=r["type"], title=loads(r["title"], {}),
            message=loads(r["message"], {}), data=loads(r["data"], {}), link=r["link"],
            is_read=bool(r["is_read"]), read_at=r["read_at"], priority=r["priority"],
            email_sent=bool(r["email_sent"]), email_sent_at=r["email_sent_at"],
            push_sent=bool(r["push_sent"]), push_sent_at=r["push_sent_at"],
            expires_at=r["expires_at"], created_at=r["created_at"],
        )


class NotificationPreferencesDB:
    """Per-user delivery preferences, created with defaults on first read."""

    @staticmethod
    def get_or_create(user_id: int) -> NotificationPreferences:
        db = get_db()
        row = db.execute(
            "SELECT * FROM notification_preferences WHERE user_id = ?", (user_id,)
        ).fetchone()
        if not row:
            user = db.execute("SELECT preferred_language FROM users WHERE id = ?", (user_id,)).fetchone()
            lang = user["preferred_language"] if user else "en"
            db.execute(
                "INSERT OR IGNORE INTO notification_preferences (user_id, preferred_language) VALUES (?, ?)",
                (user_id, lang),
            )
            db.commit()
            return NotificationPreferences(user_id=user_id, preferred_language=lang)
        return NotificationPreferences(
            user_id=user_id, email_enabled=bool(row["email_enabled"]),
            push_enabled=bool(row["push_enabled"]), preferred_language=row["preferred_language"],
        )

    @staticmethod
    def update(user_id: int, *, email_enabled=None, push_enabled=None,
               preferred_language=None) -> NotificationPreferences:
        prefs = NotificationPreferencesDB.get_or_create(user_id)
        if email_enabled is not None:
            prefs.email_enabled = bool(email_enabled)
        if push_enabled is not None:
            prefs.push_enabled = bool(push_enabled)
        if preferred_language is not None:
            prefs.preferred_language = preferred_language
        db = get_db()
        db.execute(
            "UPDATE notification_preferences SET email_enabled = ?, push_enabled = ?, "
            "preferred_language = ? WHERE user_id = ?",
            (1 if prefs.email_enabled else 0, 1 if prefs.push_enabled else 0,
             prefs.preferred_language, user_id),
        )
        db.commit()
        return prefs


# ── Push Subscriptions ───────────────────────────────────────────────


class PushSubscriptionStoreDB:
    """Manage web push subscriptions."""

    @staticmethod
    def subscribe(user_id: int, endpoint: str, p256dh: str, auth: str):
        db = get_db()
        db.execute(
            "INSERT OR REPLACE INTO push_subscriptions (user_id, endpoint, p256dh, auth, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (user_id, endpoint, p256dh, auth, _now()),
        )
        db.commit()

    @staticmethod
    def unsubscribe(endpoint: str, user_id: int | None = None) -> int:
        db = get_db()
        if user_id is None:
            cur = db.execute("DELETE FROM push_subscriptions WHERE endpoint = ?", (endpoint,))
        else:
            cur = db.execute(
                "DELETE FROM push_subscriptions WHERE endpoint = ? AND user_id = ?", (endpoint, user_id)
            )
        db.commit()
        return cur.rowcount

    @staticmethod
    def get_for_user(user_id: int) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM push_subscriptions WHERE user_id = ?", (user_id,)
        ).fetchall()
        return [dict(r) for r in rows]


# ── Support Chat ─────────────────────────────────────────────────────


class ChatStoreDB:
    """Support conversations, their participants and messages."""

    @staticmethod
    def create_conversation(user_id: int, channel: str = "support", course_id: int | None = None,
                            priority: str = "medium") -> ChatConversation:
        db = get_db()
        cur = db.execute(
            "INSERT INTO chat_conversations (channel, course_id, priority, created_at) VALUES (?, ?, ?, ?)",
            (channel, course_id, priority, _now()),
        )
        db.execute(
            "INSERT INTO chat_participants (conversation_id, user_id) VALUES (?, ?)",
            (cur.lastrowid, user_id),
        )
        db.commit()
        return ChatStoreDB.get(cur.lastrowid)

    @staticmethod
    def get(conversation_id: int) -> Optional[ChatConversation]:
        db = get_db()
        row = db.execute("SELECT * FROM chat_conversations WHERE id = ?", (conversation_id,)).fetchone()
        if not row:
            return None
        participants = [
            r["user_id"] for r in db.execute(
                "SELECT user_id FROM chat_participants WHERE conversation_id = ? ORDER BY user_id",
                (conversation_id,),
            ).fetchall()
        ]
        return ChatStoreDB._row_to_conversation(row, participants)

    @staticmethod
    def add_participant(conversation_id: int, user_id: int) -> None:
        db = get_db()
        db.execute(
            "INSERT OR IGNORE INTO chat_participants (conversation_id, user_id) VALUES (?, ?)",
            (conversation_id, user_id),
        )
        db.commit()

    @staticmethod
    def add_message(conversation_id: int, sender_id: int | None, text: str,
                    sender_type: str = "user", mtype: str = "text") -> ChatMessage:
        now = _now()
        db = get_db()
        cur = db.execute(
            "INSERT INTO chat_messages (conversation_id, sender_id, sender_type, type, text, "
            "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (conversation_id, sender_id, sender_type, mtype, text, now, now),
        )
        db.execute("UPDATE chat_conversations SET last_message_at = ? WHERE id = ?", (now, conversation_id))
        db.commit()
        return ChatMessage(id=cur.lastrowid, conversation_id=conversation_id, sender_id=sender_id,
                           text=text, sender_type=sender_type, type=mtype, created_at=now,
                           updated_at=now)

    @staticmethod
    def messages(conversation_id: int, page: int, limit: int) -> tuple[list[ChatMessage], int]:
        """Messages oldest first."""
        db = get_db()
        total = db.execute(
            "SELECT COUNT(*) AS cnt FROM chat_messages WHERE conversation_id = ?", (conversation_id,)
        ).fetchone()["cnt"]
        rows = db.execute(
            "SELECT * FROM chat_messages WHERE conversation_id = ? ORDER BY created_at, id LIMIT ? OFFSET ?",
            (conversation_id, limit, (page - 1) * limit),
        ).fetchall()
        return [
            ChatMessage(id=r["id"], conversation_id=r["conversation_id"], sender_id=r["sender_id"],
                        text=r["text"], sender_type=r["sender_type"], type=r["type"],
                        created_at=r["created_at"], updated_at=r["updated_at"])
            for r in rows
        ], total

    @staticmethod
    def for_user(user_id: int) -> list[ChatConversation]:
        """The user's conversations, most recent activity first."""
        db = get_db()
        rows = db.execute(
            "SELECT c.* FROM chat_conversations c "
            "JOIN chat_participants p ON p.conversation_id = c.id "
            "WHERE p.user_id = ? "
            "ORDER BY COALESCE(c.last_message_at, c.created_at) DESC, c.id DESC",
            (user_id,),
        ).fetchall()
        return [ChatStoreDB.get(r["id"]) for r in rows]

    @staticmethod
    def _row_to_conversation(r, participants: list[int]) -> ChatConversation:
        return ChatConversation(
            id=r["id"], participants=participants, status=r["status"], channel=r["channel"],
            course_id=r["course_id"], assigned_to=r["assigned_to"], priority=r["priority"],
            tags=loads(r["tags"], []), last_message_at=r["last_message_at"],
            created_at=r["created_at"],
        )
