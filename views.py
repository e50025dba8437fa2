"""Read-only views: dashboard, heatmap, leaderboard, report detail, profile, badges."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING

from auth import CurrentUser, new_profile
from database import RecordStore
from schemas import PENDING_STATUSES, RESOLVED_STATUSES

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("created_at", DESCENDING)]


class NotFound(LookupError):
    pass


def _count_status(reports: List[Dict[str, Any]], statuses) -> int:
    return sum(1 for r in reports if r.get("status") in statuses)


def get_profile(store: RecordStore, user: CurrentUser) -> Dict[str, Any]:
    """Profile row, or a blank profile when the row has not been created yet."""
    profile = store.find_one("users", {"_id": user.id})
    if profile is None:
        logger.warning("No profile row for %s; serving defaults", user.id)
        profile = new_profile(user.id, user.email).model_dump()
    reports = store.get_documents("reports", {"user_id": user.id}, projection={"status": 1})
    profile["total_reports"] = len(reports)
    profile["resolved_reports"] = _count_status(reports, RESOLVED_STATUSES)
    return profile


def earned_badges(store: RecordStore, user_id: str) -> List[Dict[str, Any]]:
    links = store.get_documents("user_badges", {"user_id": user_id}, sort=[("earned_at", ASCENDING)])
    out = []
    for link in links:
        badge = store.find_one("badges", {"_id": link["badge_id"]})
        if badge is not None:
            out.append({**badge, "earned_at": link.get("earned_at")})
    return out


def dashboard(store: RecordStore, user: CurrentUser) -> Dict[str, Any]:
    reports = store.get_documents("reports", {"user_id": user.id}, sort=NEWEST_FIRST)
    profile = store.find_one("users", {"_id": user.id}, projection={"reputation_points": 1})
    return {
        "reports": reports,
        "stats": {
            "total_reports": len(reports),
            "resolved": _count_status(reports, RESOLVED_STATUSES),
            "pending": _count_status(reports, PENDING_STATUSES),
            "reputation_points": (profile or {}).get("reputation_points", 0),
        },
        "badges": earned_badges(store, user.id),
    }


def heatmap(store: RecordStore, severity: str = "all", status: str = "all") -> Dict[str, Any]:
    """All reports newest first, filtered for the map; counts cover the unfiltered set."""
    reports = store.get_documents("reports", sort=NEWEST_FIRST)
    filtered = [
        r for r in reports
        if (severity == "all" or r.get("severity") == severity)
        and (status == "all" or r.get("status") == status)
    ]
    return {
        "reports": filtered,
        "counts": {
            "total": len(reports),
            "with_location": sum(1 for r in reports if r.get("location_lat") and r.get("location_lon")),
            "critical": sum(1 for r in reports if r.get("severity") == "Critical"),
            "high": sum(1 for r in reports if r.get("severity") == "High"),
            "resolved": sum(1 for r in reports if r.get("status") == "resolved"),
        },
    }


def leaderboard(store: RecordStore, limit: int = 50) -> List[Dict[str, Any]]:
    users = store.get_documents(
        "users",
        sort=[("reputation_points", DESCENDING)],
        limit=limit,
        projection={"name": 1, "email": 1, "avatar_url": 1, "reputation_points": 1},
    )
    leaders = []
    for rank, u in enumerate(users, start=1):
        reports = store.get_documents("reports", {"user_id": u["id"]}, projection={"status": 1})
        leaders.append({
            **u,
            "rank": rank,
            "total_reports": len(reports),
            "resolved_reports": _count_status(reports, RESOLVED_STATUSES),
        })
    return leaders


def report_detail(store: RecordStore, ticket_id: str) -> Dict[str, Any]:
    report = store.find_one("reports", {"ticket_id": ticket_id})
    if report is None:
        raise NotFound(f"Report not found: {ticket_id}")
    reporter: Optional[Dict[str, Any]] = store.find_one(
        "users", {"_id": report["user_id"]}, projection={"_id": 0, "name": 1, "email": 1, "avatar_url": 1}
    )
    report["users"] = reporter
    return report


def badges(store: RecordStore) -> List[Dict[str, Any]]:
    return store.get_documents("badges", sort=[("points_required", ASCENDING)])
