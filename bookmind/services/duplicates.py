from __future__ import annotations

from dataclasses import dataclass

from bookmind.models import Bookmark
from bookmind.services.urls import normalize_url


@dataclass
class DuplicateResolution:
    normalized_url: str
    existing_id: str | None = None
    existing_belongs_to_caller: bool = False

    @property
    def has_owned_duplicate(self) -> bool:
        return self.existing_id is not None and self.existing_belongs_to_caller


def owner_clause(column, user_id: str | None):
    if user_id is None:
        return column.is_(None)
    return column == user_id


def resolve_duplicate(
    url: str,
    user_id: str | None,
    strip_tracking: bool = True,
    tracking_params: frozenset[str] | None = None,
) -> DuplicateResolution:
    """Find an existing bookmark for ``url``, preferring one owned by ``user_id``.

    A match owned by somebody else is reported with
    ``existing_belongs_to_caller=False``; bookmarks are never merged across
    users, so callers only use it for information.
    """
    normalized = normalize_url(
        url, strip_tracking=strip_tracking, tracking_params=tracking_params
    )
    resolution = DuplicateResolution(normalized_url=normalized)
    if not normalized:
        return resolution

    base = Bookmark.query.filter(Bookmark.normalized_url == normalized)
    owned = (
        base.filter(owner_clause(Bookmark.user_id, user_id))
        .order_by(Bookmark.created_at.asc())
        .first()
    )
    if owned:
        resolution.existing_id = owned.id
        resolution.existing_belongs_to_caller = True
        return resolution

    other = base.order_by(Bookmark.created_at.asc()).first()
    if other:
        resolution.existing_id = other.id
    return resolution
