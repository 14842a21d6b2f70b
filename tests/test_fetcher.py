from unittest.mock import MagicMock

import pytest
import requests

from config.settings import Settings
from monitoring.errors import FetchError
from monitoring.fetcher import RateLimitedFetcher, origin_of


class MonotonicClock:
    """Fake monotonic clock; sleeping advances it."""

    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def make_response(status=200, text="<html>ok</html>", url=None):
    response = MagicMock()
    response.status_code = status
    response.text = text
    response.url = url
    return response


@pytest.fixture
def clock():
    return MonotonicClock()


@pytest.fixture
def session():
    session = MagicMock()
    session.headers = {}
    session.get.side_effect = lambda url, **kwargs: make_response(url=url)
    return session


def make_fetcher(session, clock, **overrides):
    values = dict(rate_min_ms=1000, rate_max_ms=1000, max_concurrent_fetches=2,
                  cache_ttl_ms=0, http_timeout_ms=5000)
    values.update(overrides)
    fetcher = RateLimitedFetcher(Settings(**values), session=session, clock=clock, sleep=clock.sleep)
    return fetcher.start()


class TestOrigins:

    def test_origin_of(self):
        assert origin_of("https://www.NHS.uk/services/dentist/x") == "https://www.nhs.uk"
        assert origin_of("not a url") == "default"


class TestLifecycle:

    def test_fetch_before_start_fails(self, session, clock):
        fetcher = RateLimitedFetcher(Settings(), session=session, clock=clock, sleep=clock.sleep)
        with pytest.raises(RuntimeError):
            fetcher.fetch("https://www.nhs.uk/")

    def test_start_sets_client_headers(self, session, clock):
        make_fetcher(session, clock, user_agent="radar-test/1.0")
        assert session.headers["User-Agent"] == "radar-test/1.0"
        assert session.headers["Accept-Language"].startswith("en-GB")

    def test_context_manager_stops(self, session, clock):
        settings = Settings(rate_min_ms=0, rate_max_ms=0)
        with RateLimitedFetcher(settings, session=session, clock=clock, sleep=clock.sleep) as fetcher:
            fetcher.fetch("https://www.nhs.uk/a")
        with pytest.raises(RuntimeError):
            fetcher.fetch("https://www.nhs.uk/a")


class TestPoliteness:

    def test_first_request_is_not_delayed(self, session, clock):
        fetcher = make_fetcher(session, clock)
        body, final_url = fetcher.fetch("https://www.nhs.uk/a")
        assert body == "<html>ok</html>"
        assert final_url == "https://www.nhs.uk/a"
        assert clock.sleeps == []

    def test_same_origin_waits_for_delay(self, session, clock):
        fetcher = make_fetcher(session, clock)
        fetcher.fetch("https://www.nhs.uk/a")
        fetcher.fetch("https://www.nhs.uk/b")
        assert clock.sleeps == [pytest.approx(1.0)]

    def test_delay_counts_from_end_of_previous_request(self, session, clock):
        fetcher = make_fetcher(session, clock)
        fetcher.fetch("https://www.nhs.uk/a")
        clock.now += 0.4
        fetcher.fetch("https://www.nhs.uk/b")
        assert clock.sleeps == [pytest.approx(0.6)]

    def test_other_origins_are_not_gated(self, session, clock):
        fetcher = make_fetcher(session, clock)
        fetcher.fetch("https://www.nhs.uk/a")
        fetcher.fetch("https://example.org/a")
        assert clock.sleeps == []


class TestCache:

    def test_cache_hit_skips_network_and_delay(self, session, clock):
        fetcher = make_fetcher(session, clock, cache_ttl_ms=60000)
        fetcher.fetch("https://www.nhs.uk/a")
        fetcher.fetch("https://www.nhs.uk/a")
        assert session.get.call_count == 1
        assert clock.sleeps == []
        assert fetcher.get_metrics()["cache_size"] == 1

    def test_cache_expires(self, session, clock):
        fetcher = make_fetcher(session, clock, cache_ttl_ms=60000)
        fetcher.fetch("https://www.nhs.uk/a")
        clock.now += 61
        fetcher.fetch("https://www.nhs.uk/a")
        assert session.get.call_count == 2

    def test_expired_entries_are_swept_on_insert(self, session, clock):
        fetcher = make_fetcher(session, clock, cache_ttl_ms=60000)
        fetcher.fetch("https://www.nhs.uk/a")
        fetcher.fetch("https://www.nhs.uk/b")
        assert fetcher.get_metrics()["cache_size"] == 2

        clock.now += 61
        fetcher.fetch("https://www.nhs.uk/c")
        assert fetcher.get_metrics()["cache_size"] == 1

    def test_cache_is_bounded(self, session, clock, monkeypatch):
        monkeypatch.setattr("monitoring.fetcher.MAX_CACHE_ENTRIES", 2)
        fetcher = make_fetcher(session, clock, cache_ttl_ms=600000)
        for path in ("a", "b", "c"):
            fetcher.fetch(f"https://www.nhs.uk/{path}")
        assert fetcher.get_metrics()["cache_size"] == 2

        fetcher.fetch("https://www.nhs.uk/a")
        assert session.get.call_count == 4

    def test_failures_are_not_cached(self, session, clock):
        session.get.side_effect = [make_response(status=503), make_response(url="https://www.nhs.uk/a")]
        fetcher = make_fetcher(session, clock, cache_ttl_ms=60000)
        with pytest.raises(FetchError):
            fetcher.fetch("https://www.nhs.uk/a")
        assert fetcher.fetch("https://www.nhs.uk/a")[0] == "<html>ok</html>"


class TestErrors:

    def test_not_found_is_terminal(self, session, clock):
        session.get.side_effect = None
        session.get.return_value = make_response(status=404)
        fetcher = make_fetcher(session, clock)
        with pytest.raises(FetchError) as excinfo:
            fetcher.fetch("https://www.nhs.uk/missing")
        assert excinfo.value.status_code == 404
        assert excinfo.value.transient is False
        assert "HTTP 404" in str(excinfo.value)

    def test_server_error_is_transient(self, session, clock):
        session.get.side_effect = None
        session.get.return_value = make_response(status=503)
        fetcher = make_fetcher(session, clock)
        with pytest.raises(FetchError) as excinfo:
            fetcher.fetch("https://www.nhs.uk/busy")
        assert excinfo.value.transient is True

    def test_timeout(self, session, clock):
        session.get.side_effect = requests.Timeout("read timed out")
        fetcher = make_fetcher(session, clock)
        with pytest.raises(FetchError) as excinfo:
            fetcher.fetch("https://www.nhs.uk/slow")
        assert excinfo.value.status_code is None
        assert excinfo.value.transient is True
        assert "Timed out" in str(excinfo.value)

    def test_timeout_is_passed_to_session(self, session, clock):
        fetcher = make_fetcher(session, clock)
        fetcher.fetch("https://www.nhs.uk/a")
        assert session.get.call_args.kwargs["timeout"] == 5.0

    def test_queue_is_released_after_failure(self, session, clock):
        session.get.side_effect = requests.ConnectionError("reset")
        fetcher = make_fetcher(session, clock)
        with pytest.raises(FetchError):
            fetcher.fetch("https://www.nhs.uk/a")
        assert fetcher.get_metrics() == {"queued": 0, "running": 0, "cache_size": 0}
