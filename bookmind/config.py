import os
from pathlib import Path

from bookmind.services.urls import DEFAULT_TRACKING_PARAMS


BASE_DIR = Path(__file__).resolve().parent.parent


def _tracking_params_from_env() -> frozenset[str]:
    raw = os.environ.get("TRACKING_PARAMS", "")
    extra = {item.strip().lower() for item in raw.split(",") if item.strip()}
    return DEFAULT_TRACKING_PARAMS | frozenset(extra)


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'bookmind.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") == "1"
    CONTENT_FETCH_TIMEOUT = float(os.environ.get("CONTENT_FETCH_TIMEOUT", "10"))
    CONTENT_MAX_BYTES = int(os.environ.get("CONTENT_MAX_BYTES", "2500000"))
    TRACKING_PARAMS = _tracking_params_from_env()

    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")
    OPENAI_CHAT_MODEL = os.environ.get("OPENAI_CHAT_MODEL", "gpt-4o")
    OPENAI_EMBEDDING_MODEL = os.environ.get(
        "OPENAI_EMBEDDING_MODEL", "text-embedding-ada-002"
    )
    PROVIDER_TIMEOUT = float(os.environ.get("PROVIDER_TIMEOUT", "60"))

    ENRICHMENT_WORKERS = int(os.environ.get("ENRICHMENT_WORKERS", "3"))
    ENRICHMENT_TASK_TIMEOUT = float(os.environ.get("ENRICHMENT_TASK_TIMEOUT", "120"))
    ENRICHMENT_MERGE_ATTEMPTS = int(os.environ.get("ENRICHMENT_MERGE_ATTEMPTS", "3"))
    ENRICHMENT_SWEEP_INTERVAL_MINUTES = int(
        os.environ.get("ENRICHMENT_SWEEP_INTERVAL_MINUTES", "15")
    )
    ENRICHMENT_SWEEP_BATCH = int(os.environ.get("ENRICHMENT_SWEEP_BATCH", "5"))
    ENRICHMENT_STALE_MINUTES = int(os.environ.get("ENRICHMENT_STALE_MINUTES", "30"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SCHEDULER_ENABLED = False
    OPENAI_API_KEY = ""
    ENRICHMENT_TASK_TIMEOUT = 5.0
    ENRICHMENT_MERGE_ATTEMPTS = 2
    ENRICHMENT_WORKERS = 1
