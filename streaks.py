"""
Daily learning streaks.

Every learning action (lesson completion, quiz submission) lands in a
per-day record; streaks are derived from the set of record dates and
mirrored onto the user's all-time leaderboard entry, where streak badges
are also awarded.
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from db_stores import BadgeStoreDB, DailyLearningRecordDB, LeaderboardStoreDB
from models import DailyLearningRecord, LeaderboardEntry

logger = logging.getLogger(__name__)


def log_learning_activity(user_id: int, activity_types: list[str] | None = None,
                          today: date | None = None) -> DailyLearningRecord:
    """Find or create today's record and append any activity types not yet on it."""
    today = today or date.today()
    store = DailyLearningRecordDB(user_id)
    record = store.get(today)
    activities = list(record.activities) if record else []
    for activity in activity_types or []:
        if activity not in activities:
            activities.append(activity)
    if record is not None and activities == record.activities:
        return record
    return store.upsert(today, activities)


def calculate_streak(dates: list[date]) -> tuple[int, int]:
    """Return (current, longest) streak lengths in days.

    Current is the unbroken run ending at the most recent date; longest is
    the longest run anywhere in the history. Duplicate dates are ignored.
    """
    ordered = sorted(set(dates), reverse=True)
    if not ordered:
        return 0, 0

    current = 0
    longest = 0
    run = 0
    in_first_run = True
    prev = None
    for d in ordered:
        if prev is None or (prev - d).days == 1:
            run += 1
        else:
            if in_first_run:
                current = run
                in_first_run = False
            run = 1
        longest = max(longest, run)
        prev = d
    if in_first_run:
        current = run
    return current, longest


def award_streak_badges(user_id: int, current_streak: int,
                        entry: LeaderboardEntry | None) -> list[dict]:
    """Award every active streak badge within reach that the user does not hold yet."""
    earned = []
    for badge in BadgeStoreDB.active(criteria_type="streak_days", max_threshold=current_streak):
        if BadgeStoreDB.has_achievement(user_id, badge.id):
            continue
        earned.append(BadgeStoreDB.award(user_id, badge))
        if entry is not None:
            entry.points += badge.points
        logger.info("Streak badge %s awarded to user %s", badge.id, user_id)
    return earned


def update_leaderboard_streak(user_id: int) -> tuple[LeaderboardEntry, list[dict]]:
    """Recompute the streak and store it on the all-time leaderboard entry."""
    current, longest = calculate_streak(DailyLearningRecordDB(user_id).dates())
    entry = LeaderboardStoreDB.get_or_create(user_id, "all_time")
    entry.streak_current = current
    entry.streak_longest = max(entry.streak_longest or 0, longest)
    entry.last_activity = datetime.now().isoformat()
    new_badges = award_streak_badges(user_id, current, entry)
    entry.level = entry.points // 100 + 1
    LeaderboardStoreDB.save(entry)
    return entry, new_badges


def record_activity(user_id: int, activity: str) -> None:
    """Log an activity and refresh the leaderboard streak; failures are only logged."""
    try:
        log_learning_activity(user_id, [activity])
        update_leaderboard_streak(user_id)
    except Exception:
        logger.exception("Streak update failed for user %s (%s)", user_id, activity)
