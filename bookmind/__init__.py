from flask import Flask

from bookmind.api import api_bp
from bookmind.config import Config
from bookmind.extensions import db, migrate
from bookmind.jobs.scheduler import enqueue_pending_enrichment, start_scheduler
from bookmind.services.enrichment import init_enrichment


def create_app(config_object=Config, provider=None):
    app = Flask(__name__)
    app.config.from_object(config_object)

    db.init_app(app)
    migrate.init_app(app, db)
    init_enrichment(app, provider=provider)

    app.register_blueprint(api_bp)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        print("Initialized Bookmind database.")

    @app.cli.command("enrich-pending")
    def enrich_pending_command():
        queued = enqueue_pending_enrichment(app)
        print(f"Queued {len(queued)} bookmark(s) for enrichment.")

    with app.app_context():
        db.create_all()

    start_scheduler(app)
    return app
