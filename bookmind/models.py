import uuid
from datetime import datetime, timezone

from bookmind.extensions import db


BOOKMARK_SOURCES = ("extension", "web", "import", "external-feed")

ENRICHMENT_PENDING = "pending"
ENRICHMENT_PROCESSING = "processing"
ENRICHMENT_COMPLETED = "completed"
ENRICHMENT_FAILED = "failed"
ENRICHMENT_STATUSES = (
    ENRICHMENT_PENDING,
    ENRICHMENT_PROCESSING,
    ENRICHMENT_COMPLETED,
    ENRICHMENT_FAILED,
)

TAG_TYPE_USER = "user"
TAG_TYPE_SYSTEM = "system"

ACTIVITY_BOOKMARK_ADDED = "bookmark_added"
ACTIVITY_NOTE_ADDED = "note_added"
ACTIVITY_HIGHLIGHT_ADDED = "highlight_added"
ACTIVITY_INSIGHT_GENERATED = "insight_generated"
ACTIVITY_TYPES = (
    ACTIVITY_BOOKMARK_ADDED,
    ACTIVITY_NOTE_ADDED,
    ACTIVITY_HIGHLIGHT_ADDED,
    ACTIVITY_INSIGHT_GENERATED,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class Bookmark(db.Model):
    __tablename__ = "bookmarks"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(64), nullable=True, index=True)

    url = db.Column(db.Text, nullable=False)
    normalized_url = db.Column(db.Text, nullable=False, index=True)
    title = db.Column(db.String(512), nullable=False)
    description = db.Column(db.Text, nullable=True)
    content = db.Column(db.Text, nullable=True)
    source = db.Column(db.String(32), nullable=False, default="web")

    embedding = db.Column(db.JSON, nullable=True)
    enrichment_status = db.Column(
        db.String(32), nullable=False, default=ENRICHMENT_PENDING, index=True
    )
    enrichment_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    tag_links = db.relationship(
        "BookmarkTag",
        backref="bookmark",
        cascade="all, delete-orphan",
    )
    tags = db.relationship(
        "Tag", secondary="bookmark_tags", viewonly=True, order_by="Tag.name"
    )
    notes = db.relationship(
        "Note",
        backref="bookmark",
        cascade="all, delete-orphan",
        order_by="Note.created_at",
    )
    highlights = db.relationship(
        "Highlight",
        backref="bookmark",
        cascade="all, delete-orphan",
    )
    screenshots = db.relationship(
        "Screenshot",
        backref="bookmark",
        cascade="all, delete-orphan",
    )
    insight = db.relationship(
        "Insight",
        backref="bookmark",
        uselist=False,
        cascade="all, delete-orphan",
    )
    activities = db.relationship("Activity", backref="bookmark")

    __table_args__ = (
        db.UniqueConstraint("user_id", "normalized_url", name="uq_bookmark_user_url"),
        db.Index(
            "uq_bookmark_anonymous_url",
            "normalized_url",
            unique=True,
            sqlite_where=db.text("user_id IS NULL"),
            postgresql_where=db.text("user_id IS NULL"),
        ),
        db.Index("ix_bookmark_user_created", "user_id", "created_at"),
    )

    def as_dict(self, include_content=False):
        payload = {
            "id": self.id,
            "user_id": self.user_id,
            "url": self.url,
            "normalized_url": self.normalized_url,
            "title": self.title,
            "description": self.description or "",
            "source": self.source,
            "tags": [tag.name for tag in self.tags],
            "enrichment_status": self.enrichment_status,
            "enrichment_error": self.enrichment_error,
            "has_embedding": bool(self.embedding),
            "insight": self.insight.as_dict() if self.insight else None,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_content:
            payload["content"] = self.content or ""
            payload["notes"] = [note.as_dict() for note in self.notes]
            payload["highlights"] = [item.as_dict() for item in self.highlights]
            payload["screenshots"] = [item.as_dict() for item in self.screenshots]
        return payload


class Tag(db.Model):
    __tablename__ = "tags"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(64), nullable=False, unique=True)
    type = db.Column(db.String(16), nullable=False, default=TAG_TYPE_USER)
    count = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (db.CheckConstraint("count >= 0", name="ck_tag_count_positive"),)

    def as_dict(self):
        return {"id": self.id, "name": self.name, "type": self.type, "count": self.count}


class BookmarkTag(db.Model):
    __tablename__ = "bookmark_tags"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    bookmark_id = db.Column(
        db.String(36),
        db.ForeignKey("bookmarks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tag_id = db.Column(
        db.String(36),
        db.ForeignKey("tags.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    tag = db.relationship("Tag")

    __table_args__ = (
        db.UniqueConstraint("bookmark_id", "tag_id", name="uq_bookmark_tag"),
    )


class Insight(db.Model):
    __tablename__ = "insights"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    bookmark_id = db.Column(
        db.String(36),
        db.ForeignKey("bookmarks.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    summary = db.Column(db.Text, nullable=True)
    sentiment = db.Column(db.Float, nullable=True)
    depth_level = db.Column(db.Integer, nullable=False, default=1)
    related_links = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (db.CheckConstraint("depth_level >= 1", name="ck_insight_depth"),)

    def as_dict(self):
        return {
            "id": self.id,
            "summary": self.summary,
            "sentiment": self.sentiment,
            "depth_level": self.depth_level,
            "related_links": list(self.related_links or []),
            "updated_at": _iso(self.updated_at),
        }


class Note(db.Model):
    __tablename__ = "notes"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    bookmark_id = db.Column(
        db.String(36),
        db.ForeignKey("bookmarks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    text = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def as_dict(self):
        return {"id": self.id, "text": self.text, "created_at": _iso(self.created_at)}


class Highlight(db.Model):
    __tablename__ = "highlights"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    bookmark_id = db.Column(
        db.String(36),
        db.ForeignKey("bookmarks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    quote = db.Column(db.Text, nullable=False)
    position_selector = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def as_dict(self):
        return {
            "id": self.id,
            "quote": self.quote,
            "position_selector": self.position_selector,
            "created_at": _iso(self.created_at),
        }


class Screenshot(db.Model):
    __tablename__ = "screenshots"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    bookmark_id = db.Column(
        db.String(36),
        db.ForeignKey("bookmarks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    image_url = db.Column(db.Text, nullable=False)
    uploaded_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def as_dict(self):
        return {
            "id": self.id,
            "image_url": self.image_url,
            "uploaded_at": _iso(self.uploaded_at),
        }


class Activity(db.Model):
    __tablename__ = "activities"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    bookmark_id = db.Column(
        db.String(36),
        db.ForeignKey("bookmarks.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    bookmark_title = db.Column(db.String(512), nullable=True)
    user_id = db.Column(db.String(64), nullable=True, index=True)
    type = db.Column(db.String(32), nullable=False)
    content = db.Column(db.Text, nullable=True)
    tags = db.Column(db.JSON, nullable=False, default=list)
    is_update = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )

    def as_dict(self):
        return {
            "id": self.id,
            "bookmark_id": self.bookmark_id,
            "bookmark_title": self.bookmark_title,
            "user_id": self.user_id,
            "type": self.type,
            "content": self.content,
            "tags": list(self.tags or []),
            "is_update": self.is_update,
            "created_at": _iso(self.created_at),
        }


class Setting(db.Model):
    __tablename__ = "settings"

    key = db.Column(db.String(120), primary_key=True)
    value = db.Column(db.Text, nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def as_dict(self):
        return {"key": self.key, "value": self.value, "updated_at": _iso(self.updated_at)}
