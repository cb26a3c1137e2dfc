import io
from datetime import timedelta

from bookmind.extensions import db
from bookmind.models import (
    ENRICHMENT_COMPLETED,
    ENRICHMENT_PROCESSING,
    Bookmark,
    Tag,
    utcnow,
)
from bookmind.jobs.scheduler import enqueue_pending_enrichment
from bookmind.services.enrichment import is_enrichment_in_flight

USER = {"X-User-Id": "user-1"}
OTHER = {"X-User-Id": "user-2"}


def _create(client, headers=USER, **payload):
    payload.setdefault("url", "https://example.com/post")
    return client.post("/api/v1/bookmarks", headers=headers, json=payload)


def test_health(client):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"


def test_create_then_repeat_save_returns_existing(client):
    response = _create(client, title="Post", tags="News, tech", description="First")
    assert response.status_code == 201
    body = response.get_json()
    assert body["is_existing"] is False
    assert body["bookmark"]["tags"] == ["news", "tech"]
    assert body["bookmark"]["user_id"] == "user-1"

    again = _create(client, url="http://www.example.com/post", description="Second")
    assert again.status_code == 200
    again_body = again.get_json()
    assert again_body["is_existing"] is True
    assert again_body["was_updated"] is True
    assert again_body["bookmark"]["id"] == body["bookmark"]["id"]
    assert again_body["bookmark"]["description"] == "First\n\n---\n\nSecond"


def test_create_rejects_missing_url(client):
    response = client.post("/api/v1/bookmarks", headers=USER, json={"title": "x"})
    assert response.status_code == 400
    assert response.get_json()["error"] == "url is required"


def test_create_rejects_non_string_fields(client):
    response = _create(client, title=5)
    assert response.status_code == 400
    assert response.get_json()["error"] == "title must be a string"

    assert _create(client, url=["https://example.com"]).status_code == 400
    assert _create(client, source=7).status_code == 400
    listed = client.get("/api/v1/bookmarks", headers=USER).get_json()["items"]
    assert listed == []


def test_create_rejects_non_object_body(client):
    response = client.post("/api/v1/bookmarks", headers=USER, json=["https://a.com"])
    assert response.status_code == 400


def test_anonymous_callers_cannot_reach_user_bookmarks(client, app):
    bookmark_id = _create(client, title="Mine").get_json()["bookmark"]["id"]
    url = f"/api/v1/bookmarks/{bookmark_id}"

    assert client.get(url).status_code == 404
    assert client.patch(url, json={"title": "Hijacked"}).status_code == 404
    assert client.post(f"{url}/notes", json={"text": "hi"}).status_code == 404
    assert client.delete(url).status_code == 404
    assert client.get("/api/v1/bookmarks").get_json()["items"] == []
    assert client.get("/api/v1/activities").get_json()["items"] == []

    with app.app_context():
        assert db.session.get(Bookmark, bookmark_id).title == "Mine"


def test_anonymous_bookmarks_are_hidden_from_identified_callers(client):
    response = client.post(
        "/api/v1/bookmarks", json={"url": "https://example.com/anon", "title": "Anon"}
    )
    assert response.status_code == 201
    bookmark_id = response.get_json()["bookmark"]["id"]

    assert client.get(f"/api/v1/bookmarks/{bookmark_id}").status_code == 200
    assert client.get(f"/api/v1/bookmarks/{bookmark_id}", headers=USER).status_code == 404
    assert client.delete(f"/api/v1/bookmarks/{bookmark_id}", headers=USER).status_code == 404


def test_bookmarks_are_scoped_to_caller(client):
    bookmark_id = _create(client, title="Mine").get_json()["bookmark"]["id"]

    assert client.get(f"/api/v1/bookmarks/{bookmark_id}", headers=USER).status_code == 200
    assert client.get(f"/api/v1/bookmarks/{bookmark_id}", headers=OTHER).status_code == 404
    assert client.get("/api/v1/bookmarks", headers=OTHER).get_json()["items"] == []

    theirs = _create(client, headers=OTHER, title="Theirs")
    assert theirs.status_code == 201
    assert theirs.get_json()["bookmark"]["id"] != bookmark_id


def test_patch_and_delete_bookmark(client, app):
    bookmark_id = _create(client, title="Post", tags=["a", "b"]).get_json()["bookmark"]["id"]

    response = client.patch(
        f"/api/v1/bookmarks/{bookmark_id}",
        headers=USER,
        json={"title": "Renamed", "tags": "b, c", "notes": "a note"},
    )
    assert response.status_code == 200
    body = response.get_json()
    assert body["title"] == "Renamed"
    assert body["tags"] == ["b", "c"]
    assert [note["text"] for note in body["notes"]] == ["a note"]

    deleted = client.delete(f"/api/v1/bookmarks/{bookmark_id}", headers=USER)
    assert deleted.status_code == 200
    assert client.delete(f"/api/v1/bookmarks/{bookmark_id}", headers=USER).status_code == 404

    with app.app_context():
        assert {tag.name: tag.count for tag in Tag.query.all()} == {"a": 0, "b": 0, "c": 0}


def test_notes_highlights_and_activity_feed(client):
    bookmark_id = _create(client, title="Post").get_json()["bookmark"]["id"]

    note = client.post(
        f"/api/v1/bookmarks/{bookmark_id}/notes", headers=USER, json={"text": "Remember"}
    )
    assert note.status_code == 201
    highlight = client.post(
        f"/api/v1/bookmarks/{bookmark_id}/highlights",
        headers=USER,
        json={"quote": "Important", "position_selector": {"xpath": "/p[1]"}},
    )
    assert highlight.status_code == 201
    assert client.post(
        f"/api/v1/bookmarks/{bookmark_id}/notes", headers=USER, json={}
    ).status_code == 400

    feed = client.get("/api/v1/activities", headers=USER).get_json()["items"]
    assert {item["type"] for item in feed} == {
        "bookmark_added",
        "note_added",
        "highlight_added",
    }
    assert client.get("/api/v1/activities?before=nope", headers=USER).status_code == 400


def test_enrich_endpoint_queues_run_and_reports_state(client, app):
    bookmark_id = _create(
        client, title="Post", content="Enough text to enrich this bookmark properly."
    ).get_json()["bookmark"]["id"]

    state = client.get(f"/api/v1/bookmarks/{bookmark_id}/enrichment", headers=USER)
    assert state.get_json()["status"] == "pending"

    response = client.post(
        f"/api/v1/bookmarks/{bookmark_id}/enrich", headers=USER, json={"depth": 2}
    )
    assert response.status_code == 202

    app.extensions["bookmind.enrichment_executor"].shutdown(wait=True)
    with app.app_context():
        bookmark = db.session.get(Bookmark, bookmark_id)
        assert bookmark.enrichment_status == ENRICHMENT_COMPLETED
        assert bookmark.insight.depth_level == 2

    state = client.get(f"/api/v1/bookmarks/{bookmark_id}/enrichment", headers=USER)
    body = state.get_json()
    assert body["status"] == ENRICHMENT_COMPLETED
    assert body["has_embedding"] is True
    assert body["in_flight"] is False


def test_settings_round_trip(client):
    assert client.get("/api/v1/settings/summary_prompt").get_json()["value"] is None

    response = client.put(
        "/api/v1/settings/summary_prompt", json={"value": "Summarize in one line"}
    )
    assert response.status_code == 200
    assert client.get("/api/v1/settings/summary_prompt").get_json()["value"] == (
        "Summarize in one line"
    )
    assert client.get("/api/v1/settings/unknown").status_code == 404


def test_import_browser_html_creates_and_merges(client, app):
    html = """
<!DOCTYPE NETSCAPE-Bookmark-file-1>
<DL><p>
  <DT><H3>Dev</H3>
  <DL><p>
    <DT><A HREF="https://example.com/post" TAGS="python">Post</A>
    <DT><A HREF="https://example.com/other">Other</A>
  </DL><p>
</DL><p>
"""
    _create(client, title="Existing")

    response = client.post(
        "/api/v1/import/browser-html",
        headers=USER,
        data={"file": (io.BytesIO(html.encode("utf-8")), "bookmarks.html")},
        content_type="multipart/form-data",
    )
    assert response.status_code == 200
    body = response.get_json()
    assert body["created"] == 1
    assert body["merged"] == 1

    with app.app_context():
        other = Bookmark.query.filter_by(normalized_url="https://example.com/other").one()
        assert other.source == "import"
        assert other.title == "Other"
        assert [tag.name for tag in other.tags] == ["dev"]
        merged = Bookmark.query.filter_by(normalized_url="https://example.com/post").one()
        assert [tag.name for tag in merged.tags] == ["dev", "python"]


def test_pending_sweep_queues_pending_bookmarks(client, app):
    first = _create(client, title="One", content="Body text for the first bookmark.")
    second = _create(
        client, url="https://example.com/two", title="Two", content="Second body."
    )
    ids = {first.get_json()["bookmark"]["id"], second.get_json()["bookmark"]["id"]}

    queued = enqueue_pending_enrichment(app, user_id="user-1")
    assert set(queued) == ids

    app.extensions["bookmind.enrichment_executor"].shutdown(wait=True)
    assert not any(is_enrichment_in_flight(bookmark_id) for bookmark_id in ids)
    with app.app_context():
        statuses = {bookmark.enrichment_status for bookmark in Bookmark.query.all()}
        assert statuses == {ENRICHMENT_COMPLETED}
    assert enqueue_pending_enrichment(app, user_id="user-1") == []


def test_pending_sweep_picks_up_stale_processing_bookmarks(client, app):
    stale = _create(client, title="Stale", content="Body text that never got enriched.")
    fresh = _create(client, url="https://example.com/fresh", title="Fresh")
    stale_id = stale.get_json()["bookmark"]["id"]
    fresh_id = fresh.get_json()["bookmark"]["id"]

    with app.app_context():
        stale_row = db.session.get(Bookmark, stale_id)
        stale_row.enrichment_status = ENRICHMENT_PROCESSING
        stale_row.updated_at = utcnow() - timedelta(
            minutes=app.config["ENRICHMENT_STALE_MINUTES"] + 5
        )
        fresh_row = db.session.get(Bookmark, fresh_id)
        fresh_row.enrichment_status = ENRICHMENT_PROCESSING
        db.session.commit()

    queued = enqueue_pending_enrichment(app, user_id="user-1")
    assert queued == [stale_id]

    app.extensions["bookmind.enrichment_executor"].shutdown(wait=True)
    with app.app_context():
        assert db.session.get(Bookmark, stale_id).enrichment_status == ENRICHMENT_COMPLETED
        assert db.session.get(Bookmark, fresh_id).enrichment_status == ENRICHMENT_PROCESSING
