from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from flask import current_app
from sqlalchemy.exc import IntegrityError

from bookmind.extensions import db
from bookmind.models import (
    ACTIVITY_BOOKMARK_ADDED,
    BOOKMARK_SOURCES,
    ENRICHMENT_PENDING,
    TAG_TYPE_USER,
    Bookmark,
    BookmarkTag,
    Tag,
    new_id,
    utcnow,
)
from bookmind.services.activity import record_activity
from bookmind.services.catalog import (
    add_highlight,
    add_note,
    add_screenshot,
    attach_tags,
    detach_all_tags,
)
from bookmind.services.content import extract_metadata
from bookmind.services.duplicates import owner_clause, resolve_duplicate
from bookmind.services.enrichment import is_enrichment_in_flight, submit_enrichment
from bookmind.services.errors import BookmarkNotFound, InvalidBookmarkRequest
from bookmind.services.tag_normalizer import normalize_tags
from bookmind.services.urls import normalize_url

DESCRIPTION_SEPARATOR = "\n\n---\n\n"
UPDATED_ACTIVITY_CONTENT = "Bookmark updated"
MAX_TITLE_LENGTH = 512
TEXT_OPTIONS = (
    "url",
    "title",
    "description",
    "content",
    "notes",
    "screenshot_url",
    "source",
)


@dataclass
class HighlightInput:
    quote: str
    position_selector: dict | None = None


@dataclass
class BookmarkOptions:
    url: str
    user_id: str | None = None
    title: str | None = None
    description: str | None = None
    content: str | None = None
    notes: str | None = None
    tags: list[str] = field(default_factory=list)
    highlights: list[HighlightInput] = field(default_factory=list)
    screenshot_url: str | None = None
    source: str = "web"
    auto_enrich: bool = False
    insight_depth: int = 1
    extract_metadata: bool = True
    media_urls: list[str] = field(default_factory=list)


@dataclass
class AcquireResult:
    bookmark: Bookmark
    is_existing: bool
    was_updated: bool = False
    enrichment: Future | None = None

    def as_dict(self):
        return {
            "bookmark": self.bookmark.as_dict(),
            "is_existing": self.is_existing,
            "was_updated": self.was_updated,
        }


def _tracking_params():
    return current_app.config.get("TRACKING_PARAMS")


def _placeholder_title(normalized_url: str) -> str:
    try:
        parts = urlsplit(normalized_url)
    except ValueError:
        return "Untitled"
    segments = [segment for segment in parts.path.split("/") if segment]
    if segments:
        return segments[-1]
    return parts.hostname or "Untitled"


def _require_text(name: str, value) -> None:
    if value is not None and not isinstance(value, str):
        raise InvalidBookmarkRequest(f"{name} must be a string")


def _validate(options: BookmarkOptions) -> str:
    for name in TEXT_OPTIONS:
        _require_text(name, getattr(options, name))
    if not isinstance(options.tags, (list, tuple)):
        raise InvalidBookmarkRequest("tags must be a list")
    url = (options.url or "").strip()
    if not url:
        raise InvalidBookmarkRequest("url is required")
    if options.source not in BOOKMARK_SOURCES:
        raise InvalidBookmarkRequest(f"unknown source: {options.source}")
    try:
        depth = int(options.insight_depth or 0)
    except (TypeError, ValueError):
        raise InvalidBookmarkRequest("insight_depth must be an integer") from None
    if depth < 1:
        raise InvalidBookmarkRequest("insight_depth must be at least 1")
    return url


def _add_children(bookmark: Bookmark, options: BookmarkOptions) -> None:
    notes = (options.notes or "").strip()
    if notes:
        add_note(bookmark, notes)
    screenshot_url = (options.screenshot_url or "").strip()
    if screenshot_url:
        add_screenshot(bookmark, screenshot_url)
    for highlight in options.highlights:
        quote = (highlight.quote or "").strip()
        if quote:
            add_highlight(bookmark, quote, highlight.position_selector)


def _merge_description(existing: str | None, incoming: str | None) -> str | None:
    incoming = (incoming or "").strip()
    existing_text = (existing or "").strip()
    if not incoming or incoming == existing_text:
        return existing
    if not existing_text:
        return incoming
    if existing_text.endswith(f"{DESCRIPTION_SEPARATOR}{incoming}"):
        return existing
    return f"{existing_text}{DESCRIPTION_SEPARATOR}{incoming}"


def _merge_into(bookmark: Bookmark, options: BookmarkOptions) -> None:
    bookmark.description = _merge_description(bookmark.description, options.description)
    if options.content and options.content != bookmark.content:
        bookmark.content = options.content

    attach_tags(bookmark, normalize_tags(options.tags), TAG_TYPE_USER)
    _add_children(bookmark, options)
    record_activity(
        bookmark,
        ACTIVITY_BOOKMARK_ADDED,
        content=UPDATED_ACTIVITY_CONTENT,
        is_update=True,
    )
    bookmark.updated_at = utcnow()


def _merge_existing(
    app, bookmark_id: str, normalized_url: str, options: BookmarkOptions
) -> AcquireResult:
    bookmark = db.session.get(Bookmark, bookmark_id)
    try:
        _merge_into(bookmark, options)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    app.logger.info(
        "URL %s already saved as bookmark %s, merged update", normalized_url, bookmark_id
    )
    return AcquireResult(bookmark=bookmark, is_existing=True, was_updated=True)


def acquire_bookmark(options: BookmarkOptions) -> AcquireResult:
    """Save a URL for a user, merging into their existing bookmark for it.

    Everything up to and including the commit happens before this returns;
    enrichment, when requested, is only queued afterwards.
    """
    app = current_app._get_current_object()
    url = _validate(options)

    resolution = resolve_duplicate(
        url, options.user_id, strip_tracking=True, tracking_params=_tracking_params()
    )
    if resolution.has_owned_duplicate:
        return _merge_existing(app, resolution.existing_id, resolution.normalized_url, options)

    if resolution.existing_id:
        app.logger.info(
            "URL %s is also saved by another user (bookmark %s), creating a separate bookmark",
            resolution.normalized_url,
            resolution.existing_id,
        )

    normalized = resolution.normalized_url
    title = (options.title or "").strip() or None
    description = (options.description or "").strip() or None
    content = options.content or None

    wants_content = options.auto_enrich and not content
    if options.extract_metadata and (not title or not description or wants_content):
        try:
            metadata = extract_metadata(
                normalized,
                timeout=float(app.config["CONTENT_FETCH_TIMEOUT"]),
                max_bytes=int(app.config["CONTENT_MAX_BYTES"]),
            )
            title = title or metadata.title
            description = description or metadata.description
            content = content or metadata.content or None
            if metadata.error:
                app.logger.warning(
                    "Metadata extraction for %s failed: %s", normalized, metadata.error
                )
        except Exception as exc:
            app.logger.warning("Metadata extraction for %s failed: %s", normalized, exc)

    try:
        bookmark = Bookmark(
            id=new_id(),
            user_id=options.user_id,
            url=normalized,
            normalized_url=normalized,
            title=(title or _placeholder_title(normalized))[:MAX_TITLE_LENGTH],
            description=description or "",
            content=content,
            source=options.source,
            enrichment_status=ENRICHMENT_PENDING,
        )
        bookmark_id = bookmark.id
        db.session.add(bookmark)
        db.session.flush()
        record_activity(bookmark, ACTIVITY_BOOKMARK_ADDED)
        attach_tags(bookmark, normalize_tags(options.tags), TAG_TYPE_USER)
        _add_children(bookmark, options)
        db.session.commit()
    except IntegrityError:
        # Another save of the same URL for this owner won the insert.
        db.session.rollback()
        resolution = resolve_duplicate(normalized, options.user_id, strip_tracking=False)
        if not resolution.has_owned_duplicate:
            raise
        app.logger.info(
            "Concurrent save of %s created bookmark %s first",
            normalized,
            resolution.existing_id,
        )
        return _merge_existing(app, resolution.existing_id, normalized, options)
    except Exception:
        db.session.rollback()
        raise

    app.logger.info("Created bookmark %s for %s", bookmark_id, normalized)
    result = AcquireResult(bookmark=bookmark, is_existing=False)
    if options.auto_enrich:
        try:
            result.enrichment = submit_enrichment(
                app,
                bookmark_id,
                depth=int(options.insight_depth),
                media_urls=list(options.media_urls) or None,
            )
        except RuntimeError as exc:
            app.logger.warning(
                "Could not queue enrichment for bookmark %s: %s", bookmark_id, exc
            )
    return result


def get_bookmark(bookmark_id: str) -> Bookmark:
    bookmark = db.session.get(Bookmark, bookmark_id)
    if bookmark is None:
        raise BookmarkNotFound(bookmark_id)
    return bookmark


def list_bookmarks(
    user_id: str | None = None,
    status: str | None = None,
    tag: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Bookmark]:
    """List one owner's bookmarks; ``user_id=None`` lists the anonymous ones."""
    query = Bookmark.query.filter(owner_clause(Bookmark.user_id, user_id))
    if status:
        query = query.filter(Bookmark.enrichment_status == status)
    if tag:
        query = query.join(BookmarkTag, BookmarkTag.bookmark_id == Bookmark.id).join(
            Tag, Tag.id == BookmarkTag.tag_id
        ).filter(Tag.name == tag.strip().lower())
    limit = max(1, min(limit, 200))
    return (
        query.order_by(Bookmark.created_at.desc(), Bookmark.id.asc())
        .offset(max(0, offset))
        .limit(limit)
        .all()
    )


def _ensure_unique_for_owner(
    bookmark: Bookmark, normalized_url: str, user_id: str | None
) -> None:
    resolution = resolve_duplicate(normalized_url, user_id, strip_tracking=False)
    if resolution.has_owned_duplicate and resolution.existing_id != bookmark.id:
        raise InvalidBookmarkRequest(
            f"bookmark {resolution.existing_id} already uses this URL"
        )


def update_bookmark(bookmark_id: str, fields: dict) -> Bookmark:
    bookmark = get_bookmark(bookmark_id)
    for name in ("title", "description", "url", "notes", "user_id"):
        _require_text(name, fields.get(name))

    try:
        if (fields.get("title") or "").strip():
            bookmark.title = fields["title"].strip()[:MAX_TITLE_LENGTH]
        if "description" in fields and fields["description"] is not None:
            bookmark.description = fields["description"]

        owner = fields["user_id"] if "user_id" in fields else bookmark.user_id
        url = bookmark.url
        if (fields.get("url") or "").strip():
            url = normalize_url(
                fields["url"], strip_tracking=True, tracking_params=_tracking_params()
            )
        if url != bookmark.url or owner != bookmark.user_id:
            _ensure_unique_for_owner(bookmark, url, owner)
            bookmark.url = url
            bookmark.normalized_url = url
            bookmark.user_id = owner

        if "tags" in fields and fields["tags"] is not None:
            detach_all_tags(bookmark)
            attach_tags(bookmark, normalize_tags(fields["tags"]), TAG_TYPE_USER)

        notes = (fields.get("notes") or "").strip()
        if notes:
            add_note(bookmark, notes)

        bookmark.updated_at = utcnow()
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return bookmark


def delete_bookmark(bookmark_id: str) -> bool:
    bookmark = get_bookmark(bookmark_id)
    try:
        detached = detach_all_tags(bookmark)
        db.session.delete(bookmark)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    current_app.logger.info(
        "Deleted bookmark %s (%s tags detached)", bookmark_id, len(detached)
    )
    return True


def request_enrichment(bookmark_id: str, depth: int = 1) -> Future:
    if int(depth or 0) < 1:
        raise InvalidBookmarkRequest("depth must be at least 1")
    bookmark = get_bookmark(bookmark_id)
    bookmark.enrichment_status = ENRICHMENT_PENDING
    db.session.commit()
    return submit_enrichment(current_app._get_current_object(), bookmark_id, depth=depth)


def enrichment_state(bookmark: Bookmark) -> dict:
    return {
        "bookmark_id": bookmark.id,
        "status": bookmark.enrichment_status,
        "error": bookmark.enrichment_error,
        "in_flight": is_enrichment_in_flight(bookmark.id),
        "has_embedding": bool(bookmark.embedding),
        "has_insight": bookmark.insight is not None,
    }
