import pytest

from bookmind import create_app
from bookmind.config import TestConfig
from bookmind.extensions import db
from bookmind.services.content import FETCH_STATUS_UNREACHABLE, PageMetadata
from bookmind.services.enrichment import EXECUTOR_KEY
from bookmind.services.providers import EnrichmentProvider, InsightResult


class FakeProvider(EnrichmentProvider):
    def __init__(
        self,
        embedding=None,
        tags=None,
        insight=None,
        fail=(),
        delay=None,
    ):
        self.embedding = [0.1, 0.2, 0.3] if embedding is None else embedding
        self.tags = ["python", "web"] if tags is None else tags
        self.insight = insight or InsightResult(
            summary="A post about Python.",
            sentiment=7.0,
            tags=["programming"],
            related_links=["https://docs.python.org"],
        )
        self.fail = set(fail)
        self.delay = delay or {}
        self.calls = []
        self.prompts = {}

    def _maybe_fail(self, name):
        self.calls.append(name)
        if name in self.delay:
            self.delay[name].wait(timeout=10)
        if name in self.fail:
            raise RuntimeError(f"{name} provider down")

    def embed(self, text):
        self._maybe_fail("embedding")
        return list(self.embedding)

    def generate_tags(self, text, url, prompt_override=None):
        self.prompts["tags"] = prompt_override
        self._maybe_fail("tags")
        return list(self.tags)

    def generate_insights(self, url, text, depth, prompt_override=None, media_urls=None):
        self.prompts["insight"] = prompt_override
        self._maybe_fail("insight")
        return self.insight


@pytest.fixture(autouse=True)
def no_network_extraction(monkeypatch):
    monkeypatch.setattr(
        "bookmind.services.bookmarks.extract_metadata",
        lambda *_args, **_kwargs: PageMetadata(
            title=None,
            description=None,
            content="",
            status=FETCH_STATUS_UNREACHABLE,
            error="network disabled in tests",
        ),
    )


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def app(provider):
    app = create_app(TestConfig, provider=provider)
    with app.app_context():
        db.drop_all()
        db.create_all()
    yield app
    app.extensions[EXECUTOR_KEY].shutdown(wait=True)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def file_app(provider, tmp_path):
    """App on a SQLite file so worker threads get their own connections."""

    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'bookmind.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30}}
        ENRICHMENT_WORKERS = 3

    app = create_app(FileConfig, provider=provider)
    with app.app_context():
        db.create_all()
    yield app
    app.extensions[EXECUTOR_KEY].shutdown(wait=True)
    with app.app_context():
        db.engine.dispose()
