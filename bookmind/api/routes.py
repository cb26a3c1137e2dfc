from __future__ import annotations

from datetime import datetime

from flask import current_app, jsonify, request

from bookmind.api import api_bp
from bookmind.extensions import db
from bookmind.models import Tag
from bookmind.services.activity import list_activities
from bookmind.services.bookmark_import import parse_bookmark_html
from bookmind.services.bookmarks import (
    BookmarkOptions,
    HighlightInput,
    acquire_bookmark,
    delete_bookmark,
    enrichment_state,
    get_bookmark,
    list_bookmarks,
    request_enrichment,
    update_bookmark,
)
from bookmind.services.catalog import (
    KNOWN_SETTINGS,
    add_highlight,
    add_note,
    get_setting,
    set_setting,
)
from bookmind.services.errors import BookmarkNotFound, InvalidBookmarkRequest
from bookmind.services.tag_normalizer import parse_tags


def _to_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _to_int(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _caller_id() -> str | None:
    value = (request.headers.get("X-User-Id") or "").strip()
    return value or None


def _json_body() -> dict:
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        raise InvalidBookmarkRequest("request body must be a JSON object")
    return payload


def _owned_bookmark(bookmark_id: str):
    bookmark = get_bookmark(bookmark_id)
    if bookmark.user_id != _caller_id():
        raise BookmarkNotFound(bookmark_id)
    return bookmark


def _parse_highlights(raw) -> list[HighlightInput]:
    if not isinstance(raw, list):
        return []
    highlights = []
    for item in raw:
        if isinstance(item, str):
            highlights.append(HighlightInput(quote=item))
        elif isinstance(item, dict) and item.get("quote"):
            selector = item.get("position_selector") or item.get("positionSelector")
            highlights.append(
                HighlightInput(
                    quote=str(item["quote"]),
                    position_selector=selector if isinstance(selector, dict) else None,
                )
            )
    return highlights


def _options_from_payload(payload: dict) -> BookmarkOptions:
    media_urls = payload.get("media_urls")
    if not isinstance(media_urls, list):
        media_urls = []
    return BookmarkOptions(
        url=payload.get("url"),
        user_id=_caller_id(),
        title=payload.get("title"),
        description=payload.get("description"),
        content=payload.get("content"),
        notes=payload.get("notes"),
        tags=parse_tags(payload.get("tags")),
        highlights=_parse_highlights(payload.get("highlights")),
        screenshot_url=payload.get("screenshot_url") or None,
        source=payload.get("source") or "web",
        auto_enrich=_to_bool(payload.get("auto_enrich"), default=False),
        insight_depth=_to_int(payload.get("insight_depth"), 1),
        extract_metadata=_to_bool(payload.get("extract_metadata"), default=True),
        media_urls=[item for item in media_urls if isinstance(item, str)],
    )


@api_bp.errorhandler(InvalidBookmarkRequest)
def handle_invalid_request(exc):
    return jsonify({"error": str(exc)}), 400


@api_bp.errorhandler(BookmarkNotFound)
def handle_not_found(exc):
    return jsonify({"error": "bookmark not found", "bookmark_id": exc.bookmark_id}), 404


@api_bp.route("/health")
def health():
    return jsonify({"status": "ok", "service": "Bookmind"})


@api_bp.route("/bookmarks", methods=["GET"])
def bookmarks_list_api():
    items = list_bookmarks(
        user_id=_caller_id(),
        status=request.args.get("status") or None,
        tag=request.args.get("tag") or None,
        limit=request.args.get("limit", 50, type=int),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify({"items": [item.as_dict() for item in items]})


@api_bp.route("/bookmarks", methods=["POST"])
def bookmarks_create_api():
    payload = _json_body()
    result = acquire_bookmark(_options_from_payload(payload))
    return jsonify(result.as_dict()), 200 if result.is_existing else 201


@api_bp.route("/bookmarks/<bookmark_id>", methods=["GET"])
def bookmarks_get_api(bookmark_id):
    bookmark = _owned_bookmark(bookmark_id)
    return jsonify(bookmark.as_dict(include_content=True))


@api_bp.route("/bookmarks/<bookmark_id>", methods=["PATCH"])
def bookmarks_update_api(bookmark_id):
    _owned_bookmark(bookmark_id)
    payload = _json_body()
    fields = {
        key: payload[key]
        for key in ("title", "description", "url", "notes")
        if key in payload
    }
    if "tags" in payload:
        fields["tags"] = parse_tags(payload.get("tags"))
    bookmark = update_bookmark(bookmark_id, fields)
    return jsonify(bookmark.as_dict(include_content=True))


@api_bp.route("/bookmarks/<bookmark_id>", methods=["DELETE"])
def bookmarks_delete_api(bookmark_id):
    _owned_bookmark(bookmark_id)
    delete_bookmark(bookmark_id)
    return jsonify({"status": "deleted", "bookmark_id": bookmark_id})


@api_bp.route("/bookmarks/<bookmark_id>/enrichment", methods=["GET"])
def bookmarks_enrichment_state_api(bookmark_id):
    bookmark = _owned_bookmark(bookmark_id)
    return jsonify(enrichment_state(bookmark))


@api_bp.route("/bookmarks/<bookmark_id>/enrich", methods=["POST"])
def bookmarks_enrich_api(bookmark_id):
    _owned_bookmark(bookmark_id)
    payload = _json_body()
    depth = _to_int(payload.get("depth"), 1)
    request_enrichment(bookmark_id, depth=depth)
    return jsonify({"status": "queued", "bookmark_id": bookmark_id, "depth": depth}), 202


@api_bp.route("/bookmarks/<bookmark_id>/notes", methods=["POST"])
def bookmarks_add_note_api(bookmark_id):
    bookmark = _owned_bookmark(bookmark_id)
    payload = _json_body()
    text = (payload.get("text") or "").strip()
    if not text:
        return jsonify({"error": "text is required"}), 400
    note = add_note(bookmark, text)
    db.session.commit()
    return jsonify(note.as_dict()), 201


@api_bp.route("/bookmarks/<bookmark_id>/highlights", methods=["POST"])
def bookmarks_add_highlight_api(bookmark_id):
    bookmark = _owned_bookmark(bookmark_id)
    payload = _json_body()
    highlights = _parse_highlights([payload])
    if not highlights:
        return jsonify({"error": "quote is required"}), 400
    highlight = add_highlight(
        bookmark, highlights[0].quote.strip(), highlights[0].position_selector
    )
    db.session.commit()
    return jsonify(highlight.as_dict()), 201


@api_bp.route("/tags", methods=["GET"])
def tags_list():
    tags = Tag.query.order_by(Tag.count.desc(), Tag.name.asc()).all()
    return jsonify({"items": [tag.as_dict() for tag in tags]})


@api_bp.route("/activities", methods=["GET"])
def activities_list_api():
    before = None
    raw_before = request.args.get("before")
    if raw_before:
        try:
            before = datetime.fromisoformat(raw_before)
        except ValueError:
            return jsonify({"error": "before must be an ISO 8601 timestamp"}), 400
    items = list_activities(
        user_id=_caller_id(),
        limit=request.args.get("limit", 50, type=int),
        before=before,
    )
    return jsonify({"items": [item.as_dict() for item in items]})


@api_bp.route("/settings/<key>", methods=["GET"])
def settings_get_api(key):
    if key not in KNOWN_SETTINGS:
        return jsonify({"error": "unknown setting"}), 404
    return jsonify({"key": key, "value": get_setting(key)})


@api_bp.route("/settings/<key>", methods=["PUT"])
def settings_put_api(key):
    if key not in KNOWN_SETTINGS:
        return jsonify({"error": "unknown setting"}), 404
    payload = _json_body()
    value = payload.get("value")
    if value is not None and not isinstance(value, str):
        return jsonify({"error": "value must be a string"}), 400
    setting = set_setting(key, value)
    db.session.commit()
    return jsonify(setting.as_dict())


@api_bp.route("/import/browser-html", methods=["POST"])
def import_browser_html_api():
    upload = request.files.get("file")
    if not upload:
        return jsonify({"error": "file field is required"}), 400

    html = upload.read().decode("utf-8", errors="ignore")
    entries = parse_bookmark_html(html)
    auto_enrich = _to_bool(request.form.get("auto_enrich"), default=False)

    created = 0
    merged = 0
    failed = 0
    for entry in entries:
        try:
            result = acquire_bookmark(
                BookmarkOptions(
                    url=entry.url,
                    user_id=_caller_id(),
                    title=entry.title or None,
                    tags=entry.all_tags,
                    source="import",
                    auto_enrich=auto_enrich,
                    extract_metadata=False,
                )
            )
        except InvalidBookmarkRequest as exc:
            failed += 1
            current_app.logger.warning("Skipping imported entry %s: %s", entry.url, exc)
            continue
        if result.is_existing:
            merged += 1
        else:
            created += 1

    current_app.logger.info(
        "Imported %s bookmark(s): %s created, %s merged, %s failed",
        len(entries),
        created,
        merged,
        failed,
    )
    return jsonify(
        {
            "status": "done",
            "total": len(entries),
            "created": created,
            "merged": merged,
            "failed": failed,
        }
    )
