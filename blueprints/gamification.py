"""Gamification routes — badges, achievements, leaderboard, points and stats."""

from __future__ import annotations

import logging
from datetime import datetime

from flask import Blueprint, request
from flask_login import login_required

from audit import log_event
from db_stores import (
    BadgeStoreDB,
    EnrollmentStoreDB,
    LeaderboardStoreDB,
    ProgressStoreDB,
    SubmissionStoreDB,
)
from helpers import admin_required, api_error, api_ok, current_user_id, json_body, localized_text
from models import BADGE_CRITERIA, BADGE_RARITIES, LEADERBOARD_PERIODS, LeaderboardEntry

logger = logging.getLogger(__name__)

bp = Blueprint("gamification", __name__)

POINTS_PER_LEVEL = 100


def level_for(points: int) -> int:
    return points // POINTS_PER_LEVEL + 1


def bump_activity_streak(entry: LeaderboardEntry, now: datetime) -> None:
    """Day-based streak on the entry: consecutive days extend it, a longer gap resets it to 1."""
    if entry.last_activity:
        last = datetime.fromisoformat(entry.last_activity).date()
        gap = (now.date() - last).days
        if gap == 1:
            entry.streak_current += 1
        elif gap > 1:
            entry.streak_current = 1
        elif entry.streak_current == 0:
            entry.streak_current = 1
    else:
        entry.streak_current = 1
    entry.streak_longest = max(entry.streak_longest, entry.streak_current)
    entry.last_activity = now.isoformat()


def _criteria_values(uid: int, entry: LeaderboardEntry) -> dict[str, int]:
    """Current value of every badge criterion for a user."""
    return {
        "courses_completed": EnrollmentStoreDB(uid).completed_count(),
        "points_earned": entry.points,
        "streak_days": entry.streak_current,
        "quiz_perfect": SubmissionStoreDB(uid).perfect_count(),
        "certificates_earned": 0,
        "lessons_completed": ProgressStoreDB(uid).completed_lessons_count(),
    }


@bp.route("/api/gamification/badges")
def api_badges():
    badges = BadgeStoreDB.active()
    return api_ok([b.to_dict() for b in badges], count=len(badges))


@bp.route("/api/gamification/badges", methods=["POST"])
@admin_required
def api_badge_create():
    data = json_body()
    name = localized_text(data.get("name"))
    if name is None:
        return api_error("Badge name is required", 400)
    criteria = data.get("criteria")
    if not isinstance(criteria, dict) or criteria.get("type") not in BADGE_CRITERIA:
        return api_error(f"criteria.type must be one of {', '.join(BADGE_CRITERIA)}", 400)
    threshold = criteria.get("threshold")
    if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 1:
        return api_error("criteria.threshold must be a positive integer", 400)
    points = data.get("points", 0)
    if isinstance(points, bool) or not isinstance(points, int) or points < 0:
        return api_error("points must be a non-negative integer", 400)
    rarity = data.get("rarity", "common")
    if rarity not in BADGE_RARITIES:
        return api_error(f"rarity must be one of {', '.join(BADGE_RARITIES)}", 400)

    badge = BadgeStoreDB.create(
        name, criteria["type"], threshold,
        description=localized_text(data.get("description")) or {},
        icon=str(data.get("icon", "")),
        points=points,
        rarity=rarity,
        is_active=bool(data.get("isActive", True)),
    )
    log_event("badge_create", current_user_id(), f"badge={badge.id}")
    return api_ok(badge.to_dict(), status=201)


@bp.route("/api/gamification/achievements")
@login_required
def api_achievements():
    achievements = BadgeStoreDB.achievements(current_user_id())
    return api_ok(achievements, count=len(achievements))


@bp.route("/api/gamification/check-badges", methods=["POST"])
@login_required
def api_check_badges():
    uid = current_user_id()
    entry = LeaderboardStoreDB.get_or_create(uid, "all_time")
    values = _criteria_values(uid, entry)

    awarded = []
    for badge in BadgeStoreDB.active():
        if BadgeStoreDB.has_achievement(uid, badge.id):
            continue
        if values.get(badge.criteria_type, 0) >= badge.threshold:
            awarded.append(BadgeStoreDB.award(uid, badge))
            entry.points += badge.points
            logger.info("Badge %s awarded to user %s", badge.id, uid)

    if awarded:
        entry.level = level_for(entry.points)
        LeaderboardStoreDB.save(entry)

    return api_ok(
        awarded,
        message=f"{len(awarded)} new badge(s) earned" if awarded else "No new badges",
        count=len(awarded),
    )


@bp.route("/api/gamification/leaderboard")
def api_leaderboard():
    period = request.args.get("period", "all_time")
    if period not in LEADERBOARD_PERIODS:
        return api_error(f"period must be one of {', '.join(LEADERBOARD_PERIODS)}", 400)
    try:
        limit = min(100, max(1, int(request.args.get("limit", 100))))
    except (TypeError, ValueError):
        limit = 100
    entries = LeaderboardStoreDB.ranking(period, limit)
    return api_ok([e.to_dict() for e in entries], period=period, count=len(entries))


@bp.route("/api/gamification/points", methods=["POST"])
@login_required
def api_add_points():
    data = json_body()
    points = data.get("points")
    if isinstance(points, bool) or not isinstance(points, int):
        return api_error("points must be an integer", 400)
    action = data.get("action", "")

    uid = current_user_id()
    entry = LeaderboardStoreDB.get_or_create(uid, "all_time")
    entry.points = max(0, entry.points + points)
    bump_activity_streak(entry, datetime.now())
    entry.level = level_for(entry.points)
    LeaderboardStoreDB.save(entry)
    logger.info("User %s earned %s points (%s)", uid, points, action or "unspecified")
    return api_ok(entry.to_dict())


@bp.route("/api/gamification/stats")
@login_required
def api_stats():
    uid = current_user_id()
    entry = LeaderboardStoreDB.get(uid, "all_time")
    return api_ok({
        "points": entry.points if entry else 0,
        "level": entry.level if entry else 1,
        "rank": LeaderboardStoreDB.rank_of(uid, "all_time"),
        "badges": BadgeStoreDB.achievement_count(uid),
        "coursesCompleted": EnrollmentStoreDB(uid).completed_count(),
        "certificatesEarned": 0,
        "currentStreak": entry.streak_current if entry else 0,
        "longestStreak": entry.streak_longest if entry else 0,
    })
