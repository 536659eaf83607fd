import base64
import os
import tempfile

# Keep the app's module-level engine and data dir out of the working tree.
os.environ.setdefault("HEARTH_DATA_DIR", tempfile.mkdtemp(prefix="hearth-test-"))

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from hearth.config import Config, get_config
from hearth.errors import FetchError
from hearth.main import app
from hearth.models import get_db, init_db, make_engine
from hearth.routes.background import get_background_service
from hearth.routes.icons import get_icon_resolver
from hearth.services.background_provider import BackgroundProviderResolver
from hearth.services.background_service import BackgroundService
from hearth.services.fetcher import DEFAULT_TIMEOUT, IMAGE_ACCEPT, MAX_ICON_BYTES, BoundedFetcher, FetchResult
from hearth.services.icon_resolver import IconResolver

PNG_1X1 = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
ICO_BYTES = b"\x00\x00\x01\x00\x01\x00\x10\x10\x00\x00\x01\x00\x20\x00" + b"\x00" * 64
HANG = object()


class StubFetcher(BoundedFetcher):
    """Serves canned responses by URL and records every URL requested."""

    def __init__(self):
        super().__init__(session=MagicMock())
        self.responses = {}
        self.calls = []

    def add_html(self, url, html, final_url=None):
        self.responses[url] = FetchResult(html.encode("utf-8"), final_url or url, "text/html; charset=utf-8")

    def add_image(self, url, data, content_type="image/png", final_url=None):
        self.responses[url] = FetchResult(data, final_url or url, content_type)

    def add_json(self, url, body):
        self.responses[url] = FetchResult(body.encode("utf-8"), url, "application/json")

    def add_error(self, url, error):
        self.responses[url] = error

    def add_hang(self, url):
        self.responses[url] = HANG

    def fetch(self, url, accept=IMAGE_ACCEPT, max_bytes=MAX_ICON_BYTES, timeout=DEFAULT_TIMEOUT, budget=None):
        self.calls.append(url)
        if budget is not None:
            budget.check(url)
        response = self.responses.get(url)
        if response is HANG:
            # Upstream that never answers; only a cancelled or expired budget ends the wait.
            budget.cancel_event.wait(budget.remaining())
            budget.check(url)
        if response is None:
            raise FetchError(FetchError.BAD_STATUS, "bad status", status=404, url=url)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def png_1x1():
    return PNG_1X1


@pytest.fixture
def ico_bytes():
    return ICO_BYTES


@pytest.fixture
def fetcher():
    return StubFetcher()


@pytest.fixture
def config(tmp_path):
    cfg = Config(data_dir=tmp_path / "data")
    cfg.icons_dir.mkdir(parents=True)
    cfg.cache_dir.mkdir(parents=True)
    return cfg


@pytest.fixture
def session_factory(config):
    engine = make_engine(config.database_url)
    init_db(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def icon_resolver(config, fetcher):
    return IconResolver(config.icons_dir, fetcher=fetcher)


@pytest.fixture
def background_service(config, fetcher, session_factory):
    resolver = BackgroundProviderResolver(config.cache_dir, fetcher=fetcher)
    return BackgroundService(config.cache_dir, resolver=resolver, session_factory=session_factory)


@pytest.fixture
def client(config, session_factory, icon_resolver, background_service):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_config] = lambda: config
    app.dependency_overrides[get_icon_resolver] = lambda: icon_resolver
    app.dependency_overrides[get_background_service] = lambda: background_service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
