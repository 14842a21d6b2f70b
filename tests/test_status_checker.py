from datetime import datetime
from types import SimpleNamespace

from config.models import STATUS_ACCEPTING, STATUS_NOT_ACCEPTING, STATUS_UNKNOWN
from monitoring.errors import FetchError
from monitoring.status_checker import StatusChecker, find_appointments_link

from tests.conftest import BASE_URL, FakeFetcher, practice_url

CODE = "V123456"
MAIN = practice_url(CODE)
APPOINTMENTS = f"{MAIN}/appointments"
TARGET = SimpleNamespace(id=CODE, canonical_url=MAIN)
T0 = datetime(2025, 3, 10, 9, 0, 0)


class FlakyFetcher(FakeFetcher):
    """Fails the first `failures` calls for a URL with the given error."""

    def __init__(self, pages, error, failures):
        super().__init__(pages)
        self.error = error
        self.failures = failures

    def fetch(self, url):
        if self.failures > 0:
            self.failures -= 1
            self.calls.append(url)
            raise self.error
        return super().fetch(url)


class TestTwoPageProtocol:

    def test_locked_appointments_verdict_is_final(self):
        fetcher = FakeFetcher({
            APPOINTMENTS: "This dentist is not accepting new NHS patients.",
            MAIN: "Accepting new NHS patients",
        })
        verdict, meta = StatusChecker(fetcher).check(TARGET, checked_at=T0)
        assert verdict.status == STATUS_NOT_ACCEPTING
        assert meta.source == "appointments"
        assert meta.ok is True
        assert fetcher.calls == [APPOINTMENTS]

    def test_main_page_fallback(self):
        fetcher = FakeFetcher({
            APPOINTMENTS: "<h1>Opening times</h1>",
            MAIN: "<p>Accepting new NHS patients</p>",
        })
        verdict, meta = StatusChecker(fetcher).check(TARGET, checked_at=T0)
        assert verdict.status == STATUS_ACCEPTING
        assert meta.source == "main"
        assert meta.checked_at == T0
        assert meta.appointments_url == APPOINTMENTS

    def test_unlocked_fallback_is_not_adopted(self):
        fetcher = FakeFetcher({APPOINTMENTS: "<h1>Opening times</h1>", MAIN: "<h1>Welcome</h1>"})
        verdict, meta = StatusChecker(fetcher).check(TARGET)
        assert verdict.status == STATUS_UNKNOWN
        assert verdict.lock is False
        assert meta.source == "appointments"

    def test_not_confirmed_on_main_page_is_not_adopted(self):
        fetcher = FakeFetcher({
            APPOINTMENTS: "<h1>Opening times</h1>",
            MAIN: "This dentist has not confirmed if they accept new NHS patients.",
        })
        verdict, meta = StatusChecker(fetcher).check(TARGET)
        assert verdict.reason_code == "no_signal"
        assert meta.source == "appointments"

    def test_target_with_subpage_url(self):
        target = SimpleNamespace(id=CODE, canonical_url=APPOINTMENTS)
        fetcher = FakeFetcher({APPOINTMENTS: "Accepting new NHS patients"})
        verdict, meta = StatusChecker(fetcher).check(target)
        assert verdict.is_accepting
        assert meta.canonical_url == MAIN


class TestAppointmentsPageResolution:

    def test_practice_without_appointments_page_uses_main_page(self):
        fetcher = FakeFetcher({MAIN: "<p>Accepting new NHS patients</p>"})
        verdict, meta = StatusChecker(fetcher).check(TARGET, checked_at=T0)
        assert verdict.status == STATUS_ACCEPTING
        assert verdict.reason_code != "fetch_failed"
        assert meta.ok is True
        assert meta.source == "main"
        assert meta.appointments_url is None
        assert meta.canonical_url == MAIN
        assert fetcher.calls[:2] == [APPOINTMENTS, MAIN]

    def test_linked_appointments_page_is_followed(self):
        linked = f"{MAIN}/appointments-and-opening-times"
        fetcher = FakeFetcher({
            MAIN: f'<nav><a href="/services/dentist/practice/{CODE}/appointments-and-opening-times">Opening times</a></nav>',
            linked: "This dentist is not accepting new NHS patients.",
        })
        verdict, meta = StatusChecker(fetcher).check(TARGET)
        assert verdict.status == STATUS_NOT_ACCEPTING
        assert meta.source == "appointments"
        assert meta.appointments_url == linked
        assert fetcher.calls == [APPOINTMENTS, MAIN, linked]

    def test_known_subpage_names_are_tried(self):
        subpage = f"{MAIN}/patients-and-appointments"
        fetcher = FakeFetcher({
            MAIN: "<h1>Welcome</h1>",
            subpage: "When availability allows, this dentist accepts new NHS patients.",
        })
        verdict, meta = StatusChecker(fetcher).check(TARGET)
        assert verdict.is_accepting
        assert meta.source == "appointments"
        assert meta.appointments_url == subpage

    def test_resolved_page_without_signal_falls_back_to_main(self):
        subpage = f"{MAIN}/opening-times"
        fetcher = FakeFetcher({MAIN: "Accepting new NHS patients", subpage: "<h1>Opening times</h1>"})
        verdict, meta = StatusChecker(fetcher).check(TARGET)
        assert verdict.is_accepting
        assert meta.source == "main"
        assert fetcher.calls.count(MAIN) == 1

    def test_unreachable_main_page_still_fails(self):
        fetcher = FakeFetcher({MAIN: FetchError("Timed out", url=MAIN)})
        verdict, meta = StatusChecker(fetcher).check(TARGET)
        assert verdict.reason_code == "fetch_failed"
        assert meta.ok is False
        assert fetcher.calls == [APPOINTMENTS, MAIN]


class TestFindAppointmentsLink:

    def test_prefers_known_subpage_names(self):
        html = (
            f'<a href="#top">Back to top</a>'
            f'<a href="/services/dentist/practice/{CODE}/opening-times">Hours</a>'
            f'<a href="/services/dentist/practice/{CODE}/appointments">Book</a>'
        )
        assert find_appointments_link(html, MAIN) == APPOINTMENTS

    def test_falls_back_to_link_text(self):
        html = '<a href="/booking-info#panel">Appointments and registration</a>'
        assert find_appointments_link(html, MAIN) == f"{BASE_URL}/booking-info"

    def test_ignores_links_back_to_the_page(self):
        assert find_appointments_link(f'<a href="{MAIN}#appointments">Appointments</a>', MAIN) is None
        assert find_appointments_link("", MAIN) is None


class TestFailures:

    def test_fetch_failure_becomes_unknown(self):
        verdict, meta = StatusChecker(FakeFetcher()).check(TARGET, checked_at=T0)
        assert verdict.status == STATUS_UNKNOWN
        assert verdict.reason_code == "fetch_failed"
        assert meta.ok is False
        assert meta.source == "error"
        assert "HTTP 404" in meta.error

    def test_transient_errors_are_retried(self):
        sleeps = []
        fetcher = FlakyFetcher(
            {APPOINTMENTS: "Accepting new NHS patients"},
            FetchError("Timed out", url=APPOINTMENTS),
            failures=2,
        )
        verdict, meta = StatusChecker(fetcher, retries=2, backoff_seconds=0.5, sleep=sleeps.append).check(TARGET)
        assert verdict.is_accepting
        assert meta.ok is True
        assert sleeps == [0.5, 1.0]

    def test_retries_are_bounded(self):
        fetcher = FlakyFetcher({}, FetchError("busy", status_code=503), failures=10)
        verdict, meta = StatusChecker(fetcher, retries=2, sleep=lambda s: None).check(TARGET)
        assert meta.ok is False
        assert len(fetcher.calls) == 3

    def test_terminal_errors_are_not_retried(self):
        fetcher = FlakyFetcher({}, FetchError("forbidden", status_code=403), failures=10)
        StatusChecker(fetcher, retries=3, sleep=lambda s: None).check(TARGET)
        assert len(fetcher.calls) == 1
