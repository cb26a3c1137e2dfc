import os
from datetime import timedelta

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import and_, or_

from bookmind.models import ENRICHMENT_PENDING, ENRICHMENT_PROCESSING, Bookmark, utcnow
from bookmind.services.enrichment import is_enrichment_in_flight, submit_enrichment


scheduler = BackgroundScheduler()


def enqueue_pending_enrichment(app, user_id=None, limit=None):
    """Submit pending bookmarks to the enrichment pool, oldest first.

    Bookmarks stuck in ``processing`` for longer than
    ``ENRICHMENT_STALE_MINUTES`` without a live run (a worker that died with
    the process) are picked up again as well.
    """
    batch = limit or app.config["ENRICHMENT_SWEEP_BATCH"]
    stale_before = utcnow() - timedelta(minutes=app.config["ENRICHMENT_STALE_MINUTES"])
    with app.app_context():
        query = Bookmark.query.filter(
            or_(
                Bookmark.enrichment_status == ENRICHMENT_PENDING,
                and_(
                    Bookmark.enrichment_status == ENRICHMENT_PROCESSING,
                    Bookmark.updated_at < stale_before,
                ),
            )
        )
        if user_id is not None:
            query = query.filter(Bookmark.user_id == user_id)
        candidates = [
            bookmark.id
            for bookmark in query.order_by(Bookmark.created_at.asc()).limit(batch * 2).all()
        ]

    queued = []
    for bookmark_id in candidates:
        if len(queued) >= batch:
            break
        if is_enrichment_in_flight(bookmark_id):
            continue
        submit_enrichment(app, bookmark_id)
        queued.append(bookmark_id)

    if queued:
        app.logger.info("Pending sweep queued %s bookmark(s) for enrichment", len(queued))
    return queued


def run_pending_sweep(app):
    try:
        enqueue_pending_enrichment(app)
    except Exception as exc:
        app.logger.error("Pending enrichment sweep failed: %s", exc)


def start_scheduler(app):
    if not app.config.get("SCHEDULER_ENABLED", True):
        return
    if os.environ.get("WERKZEUG_RUN_MAIN") == "false":
        return

    interval_minutes = app.config["ENRICHMENT_SWEEP_INTERVAL_MINUTES"]
    if not scheduler.get_jobs():
        scheduler.add_job(
            run_pending_sweep,
            "interval",
            minutes=interval_minutes,
            kwargs={"app": app},
            id="pending_enrichment_sweep",
            replace_existing=True,
        )
        scheduler.start()
