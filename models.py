"""
Domain dataclasses for GreenDye Academy.

Stores in db_stores.py build these from sqlite rows; blueprints serialize them
with ``to_dict()`` (camelCase keys, as the web and mobile clients expect).
Localized text fields are plain dicts keyed by language code.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Optional

QUESTION_TYPES = ("multiple-choice", "true-false", "short-answer", "essay")
BANK_QUESTION_TYPES = ("mcq", "true_false", "essay")
SHOW_RESULTS_MODES = ("immediately", "after-submission", "never")
DIFFICULTIES = ("easy", "medium", "hard")

BADGE_CRITERIA = (
    "courses_completed",
    "points_earned",
    "streak_days",
    "quiz_perfect",
    "certificates_earned",
    "lessons_completed",
)
BADGE_RARITIES = ("common", "rare", "epic", "legendary")
LEADERBOARD_PERIODS = ("all_time", "monthly", "weekly")

NOTIFICATION_TYPES = (
    "enrollment",
    "course_update",
    "new_lesson",
    "quiz_result",
    "certificate_issued",
    "course_completed",
    "payment_success",
    "payment_failed",
    "forum_reply",
    "forum_mention",
    "announcement",
    "reminder",
    "promotion",
)
NOTIFICATION_PRIORITIES = ("low", "medium", "high", "urgent")

CHAT_STATUSES = ("open", "pending", "resolved", "closed")
CHAT_CHANNELS = ("support", "course", "billing", "tech")


def loads(raw, default):
    """Decode a JSON column, tolerating NULL and legacy blanks."""
    if raw in (None, ""):
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


def localize(text, lang: str, fallback: str = "en") -> str:
    """Pick *lang* from a localized map, then *fallback*, then any value."""
    if isinstance(text, str):
        return text
    if not text:
        return ""
    return text.get(lang) or text.get(fallback) or next(iter(text.values()), "")


# ── Catalog ──────────────────────────────────────────────────────────


@dataclass
class Course:
    id: int
    title: dict
    description: dict = field(default_factory=dict)
    trainer_id: Optional[int] = None
    is_published: bool = False
    created_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "trainerId": self.trainer_id,
            "isPublished": self.is_published,
            "createdAt": self.created_at,
        }


@dataclass
class Lesson:
    id: int
    course_id: int
    title: dict
    order: int = 0

    def to_dict(self) -> dict:
        return {"id": self.id, "courseId": self.course_id, "title": self.title, "order": self.order}


@dataclass
class Enrollment:
    id: int
    user_id: int
    course_id: int
    status: str = "active"
    progress: float = 0.0
    enrolled_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "courseId": self.course_id,
            "status": self.status,
            "progress": self.progress,
            "enrolledAt": self.enrolled_at,
        }


# ── Quizzes ──────────────────────────────────────────────────────────


@dataclass
class Quiz:
    id: int
    course_id: int
    title: dict
    questions: list[dict] = field(default_factory=list)
    lesson_id: Optional[int] = None
    description: dict = field(default_factory=dict)
    passing_score: float = 70
    time_limit: int = 0  # minutes, 0 = no limit
    attempts_allowed: int = 1  # -1 = unlimited
    shuffle_questions: bool = False
    shuffle_options: bool = False
    show_results: str = "after-submission"
    is_adaptive: bool = False
    is_required: bool = False
    is_published: bool = False
    total_points: float = 0
    created_by: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "courseId": self.course_id,
            "lessonId": self.lesson_id,
            "title": self.title,
            "description": self.description,
            "questions": self.questions,
            "passingScore": self.passing_score,
            "timeLimit": self.time_limit,
            "attemptsAllowed": self.attempts_allowed,
            "shuffleQuestions": self.shuffle_questions,
            "shuffleOptions": self.shuffle_options,
            "showResults": self.show_results,
            "isAdaptive": self.is_adaptive,
            "isRequired": self.is_required,
            "isPublished": self.is_published,
            "totalPoints": self.total_points,
            "createdBy": self.created_by,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class BankQuestion:
    id: int
    text: str
    type: str = "mcq"
    options: list[dict] = field(default_factory=list)
    marks: float = 1
    order: int = 0
    quiz_id: Optional[int] = None
    created_by: Optional[int] = None
    created_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "type": self.type,
            "options": self.options,
            "marks": self.marks,
            "order": self.order,
            "quizId": self.quiz_id,
            "createdAt": self.created_at,
        }


@dataclass
class SubmissionAnswer:
    question_index: int
    answer: object = None
    is_correct: Optional[bool] = False
    points_awarded: float = 0
    question_id: Optional[int] = None  # bank question, when the quiz referenced one

    def to_dict(self) -> dict:
        return {
            "questionIndex": self.question_index,
            "questionId": self.question_id,
            "answer": self.answer,
            "isCorrect": self.is_correct,
            "pointsAwarded": self.points_awarded,
        }

    @staticmethod
    def from_dict(d: dict) -> SubmissionAnswer:
        return SubmissionAnswer(
            question_index=d.get("questionIndex", 0),
            question_id=d.get("questionId"),
            answer=d.get("answer"),
            is_correct=d.get("isCorrect"),
            points_awarded=d.get("pointsAwarded", 0),
        )


@dataclass
class Submission:
    id: int
    quiz_id: int
    user_id: int
    answers: list[SubmissionAnswer] = field(default_factory=list)
    attempt: int = 1
    score: float = 0
    max_score: float = 0
    earned_points: float = 0
    adaptive_score: Optional[float] = None
    is_passed: bool = False
    graded: bool = True
    course_id: Optional[int] = None
    submitted_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "quizId": self.quiz_id,
            "userId": self.user_id,
            "courseId": self.course_id,
            "answers": [a.to_dict() for a in self.answers],
            "attempt": self.attempt,
            "score": self.score,
            "maxScore": self.max_score,
            "earnedPoints": self.earned_points,
            "adaptiveScore": self.adaptive_score,
            "isPassed": self.is_passed,
            "graded": self.graded,
            "submittedAt": self.submitted_at,
        }


# ── Progress & streaks ───────────────────────────────────────────────


@dataclass
class LessonProgress:
    lesson_id: int
    completed: bool = False
    completion_time: float = 0
    quiz_scores: list[dict] = field(default_factory=list)  # [{"score": 80, "date": "..."}]
    title: dict = field(default_factory=dict)
    order: int = 0

    def to_dict(self) -> dict:
        return {
            "lessonId": self.lesson_id,
            "title": self.title,
            "order": self.order,
            "completed": self.completed,
            "completionTime": self.completion_time,
            "quizScores": self.quiz_scores,
        }


@dataclass
class Progress:
    id: int
    user_id: int
    course_id: int
    last_completed_lesson: Optional[int] = None
    streak_count: int = 0
    last_accessed: str = ""
    lessons: list[LessonProgress] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "courseId": self.course_id,
            "lastCompletedLesson": self.last_completed_lesson,
            "streakCount": self.streak_count,
            "lastAccessed": self.last_accessed,
            "lessons": [lp.to_dict() for lp in self.lessons],
        }


@dataclass
class DailyLearningRecord:
    user_id: int
    date: str  # YYYY-MM-DD
    activities: list[str] = field(default_factory=list)


# ── Gamification ─────────────────────────────────────────────────────


@dataclass
class Badge:
    id: int
    name: dict
    criteria_type: str
    threshold: int = 1
    description: dict = field(default_factory=dict)
    icon: str = ""
    points: int = 0
    rarity: str = "common"
    is_active: bool = True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "criteria": {"type": self.criteria_type, "threshold": self.threshold},
            "points": self.points,
            "rarity": self.rarity,
            "isActive": self.is_active,
        }


@dataclass
class LeaderboardEntry:
    user_id: int
    period: str = "all_time"
    points: int = 0
    courses_completed: int = 0
    certificates_earned: int = 0
    streak_current: int = 0
    streak_longest: int = 0
    last_activity: Optional[str] = None
    level: int = 1
    rank: Optional[int] = None
    id: Optional[int] = None
    name: str = ""

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "name": self.name,
            "period": self.period,
            "points": self.points,
            "coursesCompleted": self.courses_completed,
            "certificatesEarned": self.certificates_earned,
            "streak": {
                "current": self.streak_current,
                "longest": self.streak_longest,
                "lastActivity": self.last_activity,
            },
            "level": self.level,
            "rank": self.rank,
        }


# ── Notifications ────────────────────────────────────────────────────


@dataclass
class Notification:
    id: int
    user_id: int
    type: str
    title: dict
    message: dict
    data: dict = field(default_factory=dict)
    link: str = ""
    is_read: bool = False
    read_at: Optional[str] = None
    priority: str = "medium"
    email_sent: bool = False
    email_sent_at: Optional[str] = None
    push_sent: bool = False
    push_sent_at: Optional[str] = None
    expires_at: str = ""
    created_at: str = ""

    def to_dict(self, lang: str | None = None) -> dict:
        d = {
            "id": self.id,
            "userId": self.user_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "data": self.data,
            "link": self.link,
            "isRead": self.is_read,
            "readAt": self.read_at,
            "priority": self.priority,
            "emailSent": self.email_sent,
            "emailSentAt": self.email_sent_at,
            "pushSent": self.push_sent,
            "pushSentAt": self.push_sent_at,
            "expiresAt": self.expires_at,
            "createdAt": self.created_at,
        }
        if lang:
            d["display"] = {
                "title": localize(self.title, lang),
                "message": localize(self.message, lang),
            }
        return d


@dataclass
class NotificationPreferences:
    user_id: int
    email_enabled: bool = True
    push_enabled: bool = True
    preferred_language: str = "en"

    def to_dict(self) -> dict:
        return {
            "emailEnabled": self.email_enabled,
            "pushEnabled": self.push_enabled,
            "preferredLanguage": self.preferred_language,
        }


# ── Chat ─────────────────────────────────────────────────────────────


@dataclass
class ChatConversation:
    id: int
    participants: list[int] = field(default_factory=list)
    status: str = "open"
    channel: str = "support"
    course_id: Optional[int] = None
    assigned_to: Optional[int] = None
    priority: str = "medium"
    tags: list[str] = field(default_factory=list)
    last_message_at: Optional[str] = None
    created_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "participants": self.participants,
            "status": self.status,
            "channel": self.channel,
            "courseId": self.course_id,
            "assignedTo": self.assigned_to,
            "priority": self.priority,
            "tags": self.tags,
            "lastMessageAt": self.last_message_at,
            "createdAt": self.created_at,
        }


@dataclass
class ChatMessage:
    id: int
    conversation_id: int
    sender_id: Optional[int]
    text: str
    sender_type: str = "user"
    type: str = "text"
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "conversationId": self.conversation_id,
            "senderId": self.sender_id,
            "senderType": self.sender_type,
            "type": self.type,
            "text": self.text,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
