"""Background enrichment: embedding, AI tags and insight for one bookmark.

Runs are submitted to a per-app worker pool and never awaited by the HTTP
caller. Inside a run the three provider calls execute concurrently and are
joined with a bounded wait; whatever finished successfully is merged into the
catalog in a single transaction. Runs for the same bookmark are serialized.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import partial

from flask import Flask, current_app

from bookmind.extensions import db
from bookmind.models import (
    ACTIVITY_INSIGHT_GENERATED,
    ENRICHMENT_COMPLETED,
    ENRICHMENT_FAILED,
    ENRICHMENT_PROCESSING,
    TAG_TYPE_SYSTEM,
    Bookmark,
    Insight,
)
from bookmind.services.activity import record_activity
from bookmind.services.catalog import (
    SETTING_SUMMARY_PROMPT,
    SETTING_TAGGING_PROMPT,
    attach_tags,
    get_setting,
)
from bookmind.services.content import html_to_text
from bookmind.services.providers import EnrichmentProvider, InsightResult, build_provider
from bookmind.services.tag_normalizer import process_generated_tags

EXECUTOR_KEY = "bookmind.enrichment_executor"
PROVIDER_KEY = "bookmind.enrichment_provider"

TASK_EMBEDDING = "embedding"
TASK_TAGS = "tags"
TASK_INSIGHT = "insight"

_RUNTIME_LOCK = threading.Lock()
_BOOKMARK_LOCKS: dict[str, list] = {}
_IN_FLIGHT: dict[str, int] = {}


@dataclass
class TaskResults:
    embedding: list[float] | None = None
    tags: list[str] = field(default_factory=list)
    insight: InsightResult | None = None
    errors: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def produced_anything(self) -> bool:
        return bool(self.embedding) or bool(self.tags) or self.insight is not None


@dataclass
class EnrichmentOutcome:
    bookmark_id: str
    status: str | None
    embedding_stored: bool = False
    tags_attached: list[str] = field(default_factory=list)
    insight_stored: bool = False
    errors: dict[str, str] = field(default_factory=dict)


def init_enrichment(app: Flask, provider: EnrichmentProvider | None = None) -> None:
    app.extensions[PROVIDER_KEY] = provider or build_provider(app.config)
    workers = int(app.config.get("ENRICHMENT_WORKERS", 3))
    app.extensions[EXECUTOR_KEY] = ThreadPoolExecutor(
        max_workers=max(1, min(workers, 16)),
        thread_name_prefix="enrichment",
    )


def get_provider(app: Flask) -> EnrichmentProvider:
    return app.extensions[PROVIDER_KEY]


def is_enrichment_in_flight(bookmark_id: str) -> bool:
    with _RUNTIME_LOCK:
        return _IN_FLIGHT.get(bookmark_id, 0) > 0


def submit_enrichment(
    app: Flask,
    bookmark_id: str,
    depth: int = 1,
    url: str | None = None,
    content: str | None = None,
    media_urls: list[str] | None = None,
) -> Future:
    """Queue a run for ``bookmark_id``; the caller must have committed it already."""
    executor: ThreadPoolExecutor = app.extensions[EXECUTOR_KEY]
    with _RUNTIME_LOCK:
        _IN_FLIGHT[bookmark_id] = _IN_FLIGHT.get(bookmark_id, 0) + 1

    try:
        future = executor.submit(
            _run_in_app_context, app, bookmark_id, depth, url, content, media_urls
        )
    except RuntimeError:
        _release_in_flight(bookmark_id)
        raise
    future.add_done_callback(partial(_on_run_finished, app, bookmark_id))
    app.logger.info("Queued enrichment for bookmark %s (depth %s)", bookmark_id, depth)
    return future


def _release_in_flight(bookmark_id: str) -> None:
    with _RUNTIME_LOCK:
        remaining = _IN_FLIGHT.get(bookmark_id, 0) - 1
        if remaining > 0:
            _IN_FLIGHT[bookmark_id] = remaining
        else:
            _IN_FLIGHT.pop(bookmark_id, None)


def _on_run_finished(app: Flask, bookmark_id: str, future: Future) -> None:
    _release_in_flight(bookmark_id)
    if future.cancelled():
        app.logger.warning("Enrichment for bookmark %s was cancelled", bookmark_id)
        return
    exc = future.exception()
    if exc is not None:
        app.logger.error(
            "Enrichment for bookmark %s crashed: %s", bookmark_id, exc, exc_info=exc
        )


def _run_in_app_context(
    app: Flask,
    bookmark_id: str,
    depth: int,
    url: str | None,
    content: str | None,
    media_urls: list[str] | None,
) -> EnrichmentOutcome:
    with app.app_context():
        db.session.remove()
        try:
            return run_enrichment(
                bookmark_id, depth=depth, url=url, content=content, media_urls=media_urls
            )
        finally:
            db.session.remove()


@contextmanager
def _bookmark_guard(bookmark_id: str):
    with _RUNTIME_LOCK:
        entry = _BOOKMARK_LOCKS.setdefault(bookmark_id, [threading.Lock(), 0])
        entry[1] += 1
    try:
        with entry[0]:
            yield
    finally:
        with _RUNTIME_LOCK:
            entry[1] -= 1
            if entry[1] <= 0:
                _BOOKMARK_LOCKS.pop(bookmark_id, None)


def run_enrichment(
    bookmark_id: str,
    depth: int = 1,
    url: str | None = None,
    content: str | None = None,
    media_urls: list[str] | None = None,
) -> EnrichmentOutcome:
    """Enrich one bookmark synchronously. Must run inside an app context.

    Never raises for provider or persistence failures; those end up in the
    returned outcome, the bookmark's ``enrichment_error`` and the log.
    """
    with _bookmark_guard(bookmark_id):
        return _run_locked(bookmark_id, max(1, int(depth or 1)), url, content, media_urls)


def _run_locked(
    bookmark_id: str,
    depth: int,
    url: str | None,
    content: str | None,
    media_urls: list[str] | None,
) -> EnrichmentOutcome:
    app = current_app._get_current_object()

    bookmark = db.session.get(Bookmark, bookmark_id)
    if bookmark is None:
        app.logger.warning("Cannot enrich bookmark %s: not found", bookmark_id)
        return EnrichmentOutcome(bookmark_id=bookmark_id, status=None)

    url = url or bookmark.url
    text = html_to_text(bookmark.content if content is None else content)
    short_text = text or (bookmark.description or "").strip()

    try:
        tagging_prompt = get_setting(SETTING_TAGGING_PROMPT)
        summary_prompt = get_setting(SETTING_SUMMARY_PROMPT)
        bookmark.enrichment_status = ENRICHMENT_PROCESSING
        bookmark.enrichment_error = None
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        app.logger.warning("Could not start enrichment for bookmark %s: %s", bookmark_id, exc)
        return EnrichmentOutcome(
            bookmark_id=bookmark_id, status=None, errors={"start": str(exc)}
        )

    app.logger.info("Starting enrichment for bookmark %s (%s)", bookmark_id, url)
    results = _run_tasks(
        app,
        get_provider(app),
        bookmark_id=bookmark_id,
        url=url,
        text=text,
        short_text=short_text,
        depth=depth,
        tagging_prompt=tagging_prompt,
        summary_prompt=summary_prompt,
        media_urls=media_urls,
    )

    if not results.produced_anything:
        reason = _describe_errors(results.errors) or "enrichment produced no results"
        _mark_failed(app, bookmark_id, reason)
        return EnrichmentOutcome(
            bookmark_id=bookmark_id, status=ENRICHMENT_FAILED, errors=results.errors
        )

    attempts = max(1, int(app.config.get("ENRICHMENT_MERGE_ATTEMPTS", 3)))
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            outcome = _merge_results(bookmark_id, results, depth)
            db.session.commit()
            app.logger.info(
                "Completed enrichment for bookmark %s: embedding=%s tags=%s insight=%s",
                bookmark_id,
                outcome.embedding_stored,
                len(outcome.tags_attached),
                outcome.insight_stored,
            )
            return outcome
        except Exception as exc:
            db.session.rollback()
            last_error = exc
            app.logger.warning(
                "Persisting enrichment for bookmark %s failed (attempt %s/%s): %s",
                bookmark_id,
                attempt,
                attempts,
                exc,
            )
            if attempt < attempts:
                time.sleep(min(0.25 * attempt, 2.0))

    errors = dict(results.errors)
    errors["merge"] = str(last_error)
    _mark_failed(app, bookmark_id, f"could not persist enrichment: {last_error}")
    return EnrichmentOutcome(bookmark_id=bookmark_id, status=ENRICHMENT_FAILED, errors=errors)


def _run_tasks(
    app: Flask,
    provider: EnrichmentProvider,
    *,
    bookmark_id: str,
    url: str,
    text: str,
    short_text: str,
    depth: int,
    tagging_prompt: str | None,
    summary_prompt: str | None,
    media_urls: list[str] | None,
) -> TaskResults:
    results = TaskResults()
    timeout = float(app.config.get("ENRICHMENT_TASK_TIMEOUT", 120))

    futures: dict[str, Future] = {}
    not_done: set[Future] = set()
    executor = ThreadPoolExecutor(max_workers=3, thread_name_prefix="enrichment-task")
    try:
        if text:
            futures[TASK_EMBEDDING] = executor.submit(provider.embed, text)
        else:
            results.skipped.append(TASK_EMBEDDING)
        futures[TASK_TAGS] = executor.submit(
            provider.generate_tags, short_text, url, tagging_prompt
        )
        futures[TASK_INSIGHT] = executor.submit(
            provider.generate_insights, url, short_text, depth, summary_prompt, media_urls
        )
        _, not_done = wait(futures.values(), timeout=timeout)
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    for name, future in futures.items():
        if future in not_done:
            results.errors[name] = f"timed out after {timeout:g}s"
            app.logger.warning(
                "Enrichment task %s for bookmark %s timed out", name, bookmark_id
            )
            continue
        exc = future.exception()
        if exc is not None:
            results.errors[name] = str(exc) or exc.__class__.__name__
            app.logger.warning(
                "Enrichment task %s for bookmark %s failed: %s", name, bookmark_id, exc
            )
            continue

        value = future.result()
        if name == TASK_EMBEDDING:
            results.embedding = [float(item) for item in value or []] or None
        elif name == TASK_TAGS:
            results.tags = list(value or [])
        elif value is not None:
            results.insight = value

    if TASK_EMBEDDING in results.skipped:
        app.logger.info("No content for bookmark %s, embedding skipped", bookmark_id)
    return results


def _merge_results(bookmark_id: str, results: TaskResults, depth: int) -> EnrichmentOutcome:
    bookmark = db.session.get(Bookmark, bookmark_id)
    if bookmark is None:
        current_app.logger.info(
            "Bookmark %s was deleted during enrichment, discarding results", bookmark_id
        )
        return EnrichmentOutcome(bookmark_id=bookmark_id, status=None, errors=results.errors)

    outcome = EnrichmentOutcome(
        bookmark_id=bookmark_id, status=ENRICHMENT_COMPLETED, errors=dict(results.errors)
    )

    if results.embedding:
        bookmark.embedding = results.embedding
        outcome.embedding_stored = True

    insight = results.insight
    tag_names = process_generated_tags(
        [*results.tags, *(insight.tags if insight else [])]
    )
    outcome.tags_attached = attach_tags(bookmark, tag_names, TAG_TYPE_SYSTEM)

    if insight is not None:
        _upsert_insight(bookmark, insight, depth)
        record_activity(bookmark, ACTIVITY_INSIGHT_GENERATED, tags=insight.tags)
        outcome.insight_stored = True

    bookmark.enrichment_status = ENRICHMENT_COMPLETED
    bookmark.enrichment_error = _describe_errors(results.errors) or None
    return outcome


def _upsert_insight(bookmark: Bookmark, result: InsightResult, depth: int) -> Insight:
    insight = Insight.query.filter_by(bookmark_id=bookmark.id).first()
    if insight is None:
        insight = Insight(bookmark_id=bookmark.id)
        db.session.add(insight)
    insight.summary = result.summary
    insight.sentiment = result.sentiment
    insight.depth_level = depth
    insight.related_links = list(result.related_links or [])
    return insight


def _mark_failed(app: Flask, bookmark_id: str, reason: str) -> None:
    app.logger.warning("Enrichment failed for bookmark %s: %s", bookmark_id, reason)
    try:
        bookmark = db.session.get(Bookmark, bookmark_id)
        if bookmark is None:
            return
        bookmark.enrichment_status = ENRICHMENT_FAILED
        bookmark.enrichment_error = reason[:2000]
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        app.logger.error(
            "Could not record enrichment failure for bookmark %s: %s", bookmark_id, exc
        )


def _describe_errors(errors: dict[str, str]) -> str:
    return "; ".join(f"{name}: {message}" for name, message in sorted(errors.items()))
