import threading
from datetime import datetime, timedelta

import pytest

from config.database import create_session_factory, init_database
from config.settings import Settings
from monitoring.errors import FetchError, NotifyError
from monitoring.notifier import Notifier
from monitoring.status_store import StatusStore

BASE_URL = "https://www.nhs.uk"


def practice_url(code, slug="practice"):
    return f"{BASE_URL}/services/dentist/{slug}/{code}"


class FakeFetcher:
    """Serves canned pages by exact URL; unknown URLs are a 404."""

    def __init__(self, pages=None):
        self.pages = dict(pages or {})
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, url):
        with self._lock:
            self.calls.append(url)
        page = self.pages.get(url)
        if page is None:
            raise FetchError(f"Not found: {url}", status_code=404, url=url)
        if isinstance(page, Exception):
            raise page
        return page, url


class FakeNotifier(Notifier):

    def __init__(self, failing=()):
        self.sent = []
        self.failing = set(failing)

    def send(self, recipient, subject, body):
        if recipient in self.failing:
            raise NotifyError("mailbox unavailable", recipient=recipient)
        self.sent.append((recipient, subject, body))


class FakeClock:

    def __init__(self, start=None):
        self.now = start or datetime(2025, 3, 10, 9, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'radar.db'}"


@pytest.fixture
def session_factory(database_url):
    factory = create_session_factory(database_url)
    init_database(factory)
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def store(session_factory):
    return StatusStore(session_factory)


@pytest.fixture
def settings(database_url):
    return Settings(
        database_url=database_url,
        batch_size=10,
        rate_min_ms=0,
        rate_max_ms=0,
        max_concurrency=2,
        cache_ttl_ms=0,
        fetch_retries=0,
        cooldown_hours=72,
        default_radius=10,
        base_url=BASE_URL,
    )


@pytest.fixture
def clock():
    return FakeClock()
