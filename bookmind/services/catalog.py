"""Storage primitives shared by the ingestion path and the enrichment merge.

Tag counts are only ever changed with server-side ``count = count + 1``
style updates, and tag rows and tag links are inserted with
``ON CONFLICT DO NOTHING`` so concurrent writers can neither lose an
increment nor create a second link for the same (bookmark, tag) pair.
"""

from __future__ import annotations

from sqlalchemy import case, delete, insert, update
from sqlalchemy.dialects import postgresql, sqlite

from bookmind.extensions import db
from bookmind.models import (
    ACTIVITY_BOOKMARK_ADDED,
    ACTIVITY_HIGHLIGHT_ADDED,
    ACTIVITY_NOTE_ADDED,
    Bookmark,
    BookmarkTag,
    Highlight,
    Note,
    Screenshot,
    Setting,
    Tag,
    new_id,
    utcnow,
)
from bookmind.services.activity import record_activity

MAX_TAG_NAME_LENGTH = 64

SETTING_TAGGING_PROMPT = "auto_tagging_prompt"
SETTING_SUMMARY_PROMPT = "summary_prompt"
KNOWN_SETTINGS = (SETTING_TAGGING_PROMPT, SETTING_SUMMARY_PROMPT)

_TAGS = Tag.__table__
_BOOKMARK_TAGS = BookmarkTag.__table__


def _insert_or_ignore(model, conflict_columns: list[str], values: dict) -> bool:
    table = model.__table__
    dialect = db.session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(table).values(**values)
        stmt = stmt.on_conflict_do_nothing(index_elements=conflict_columns)
    elif dialect == "sqlite":
        stmt = sqlite.insert(table).values(**values)
        stmt = stmt.on_conflict_do_nothing(index_elements=conflict_columns)
    else:
        filters = {column: values[column] for column in conflict_columns}
        if db.session.query(model).filter_by(**filters).first() is not None:
            return False
        stmt = insert(table).values(**values)
    result = db.session.execute(stmt)
    return bool(result.rowcount)


def get_or_create_tag(name: str, tag_type: str) -> Tag:
    name = (name or "").strip().lower()[:MAX_TAG_NAME_LENGTH]
    if not name:
        raise ValueError("tag name is required")

    tag = Tag.query.filter_by(name=name).first()
    if tag:
        return tag

    _insert_or_ignore(
        Tag,
        ["name"],
        {
            "id": new_id(),
            "name": name,
            "type": tag_type,
            "count": 0,
            "created_at": utcnow(),
        },
    )
    return Tag.query.filter_by(name=name).one()


def increment_tag_count(tag: Tag) -> None:
    db.session.execute(
        update(_TAGS)
        .where(_TAGS.c.id == tag.id)
        .values(count=_TAGS.c.count + 1)
    )
    db.session.expire(tag, ["count"])


def decrement_tag_count(tag: Tag) -> None:
    db.session.execute(
        update(_TAGS)
        .where(_TAGS.c.id == tag.id)
        .values(count=case((_TAGS.c.count > 0, _TAGS.c.count - 1), else_=0))
    )
    db.session.expire(tag, ["count"])


def attach_tag(bookmark: Bookmark, name: str, tag_type: str) -> bool:
    """Link ``name`` to ``bookmark``; returns False when it was already linked."""
    tag = get_or_create_tag(name, tag_type)
    inserted = _insert_or_ignore(
        BookmarkTag,
        ["bookmark_id", "tag_id"],
        {
            "id": new_id(),
            "bookmark_id": bookmark.id,
            "tag_id": tag.id,
            "created_at": utcnow(),
        },
    )
    if inserted:
        increment_tag_count(tag)
        db.session.expire(bookmark, ["tag_links", "tags"])
    return inserted


def attach_tags(bookmark: Bookmark, names: list[str], tag_type: str) -> list[str]:
    attached = []
    for name in names:
        if attach_tag(bookmark, name, tag_type):
            attached.append(name)
    return attached


def detach_tag(bookmark: Bookmark, tag: Tag) -> bool:
    result = db.session.execute(
        delete(_BOOKMARK_TAGS).where(
            _BOOKMARK_TAGS.c.bookmark_id == bookmark.id,
            _BOOKMARK_TAGS.c.tag_id == tag.id,
        )
    )
    if not result.rowcount:
        return False
    decrement_tag_count(tag)
    db.session.expire(bookmark, ["tag_links", "tags"])
    return True


def detach_all_tags(bookmark: Bookmark) -> list[Tag]:
    tags = (
        Tag.query.join(BookmarkTag, BookmarkTag.tag_id == Tag.id)
        .filter(BookmarkTag.bookmark_id == bookmark.id)
        .all()
    )
    return [tag for tag in tags if detach_tag(bookmark, tag)]


def add_note(bookmark: Bookmark, text: str) -> Note:
    note = Note(bookmark_id=bookmark.id, text=text)
    db.session.add(note)
    record_activity(bookmark, ACTIVITY_NOTE_ADDED, content=text)
    return note


def add_highlight(
    bookmark: Bookmark, quote: str, position_selector: dict | None = None
) -> Highlight:
    highlight = Highlight(
        bookmark_id=bookmark.id, quote=quote, position_selector=position_selector
    )
    db.session.add(highlight)
    record_activity(bookmark, ACTIVITY_HIGHLIGHT_ADDED, content=quote)
    return highlight


def add_screenshot(bookmark: Bookmark, image_url: str) -> Screenshot:
    screenshot = Screenshot(bookmark_id=bookmark.id, image_url=image_url)
    db.session.add(screenshot)
    record_activity(bookmark, ACTIVITY_BOOKMARK_ADDED, content="Screenshot added")
    return screenshot


def get_setting(key: str) -> str | None:
    setting = db.session.get(Setting, key)
    if not setting or not (setting.value or "").strip():
        return None
    return setting.value


def set_setting(key: str, value: str | None) -> Setting:
    setting = db.session.get(Setting, key) or Setting(key=key)
    setting.value = value
    db.session.add(setting)
    return setting
