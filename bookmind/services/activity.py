from __future__ import annotations

from datetime import datetime

from bookmind.extensions import db
from bookmind.models import ACTIVITY_TYPES, Activity, Bookmark
from bookmind.services.duplicates import owner_clause


def record_activity(
    bookmark: Bookmark | None,
    activity_type: str,
    content: str | None = None,
    tags: list[str] | None = None,
    is_update: bool = False,
    user_id: str | None = None,
) -> Activity:
    """Append an activity row to the current session; the caller commits."""
    if activity_type not in ACTIVITY_TYPES:
        raise ValueError(f"unknown activity type: {activity_type}")

    activity = Activity(
        bookmark_id=bookmark.id if bookmark else None,
        bookmark_title=bookmark.title if bookmark else None,
        user_id=user_id if user_id is not None else (bookmark.user_id if bookmark else None),
        type=activity_type,
        content=content,
        tags=list(tags or []),
        is_update=is_update,
    )
    db.session.add(activity)
    return activity


def list_activities(
    user_id: str | None = None,
    limit: int = 50,
    before: datetime | None = None,
) -> list[Activity]:
    query = Activity.query.filter(owner_clause(Activity.user_id, user_id))
    if before is not None:
        query = query.filter(Activity.created_at < before)
    limit = max(1, min(limit, 200))
    return query.order_by(Activity.created_at.desc(), Activity.id.desc()).limit(limit).all()
