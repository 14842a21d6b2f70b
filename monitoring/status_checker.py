"""
Status Checker

Runs the two-page protocol for one target: classify the appointments page
first, and only when it carries no signal fall back to the practice's main
page. Transient fetch failures are retried here with exponential backoff.

Not every practice has an "/appointments" sub-page. When it is missing, the
practice page is searched for a link to its appointments information, then a
short list of known sub-page names is tried. A practice with no such page at
all is classified from its main page alone.
"""

import time
import logging
from urllib.parse import urldefrag, urljoin, urlsplit

from bs4 import BeautifulSoup

from config.models import STATUS_UNKNOWN
from monitoring.classifier import classify, Verdict
from monitoring.discovery import canonical_target_url
from monitoring.errors import FetchError
from monitoring.status_store import CheckMeta
from utils.text import clean_text, truncate
from utils.time_utils import utcnow

logger = logging.getLogger(__name__)

SOURCE_APPOINTMENTS = 'appointments'
SOURCE_MAIN = 'main'
SOURCE_ERROR = 'error'

REASON_FETCH_FAILED = 'fetch_failed'

# Statuses meaning "this sub-page does not exist", as opposed to a failed fetch
MISSING_PAGE_CODES = (404, 410)

# Sub-pages that may carry the acceptance panel, in the order they are tried
APPOINTMENTS_SLUGS = (
    "appointments",
    "appointments-and-opening-times",
    "patients-and-appointments",
    "opening-times",
    "registration",
    "who-we-can-accept",
)


def appointments_url_for(canonical_url):
    return f"{canonical_url.rstrip('/')}/appointments"


def find_appointments_link(html, page_url):
    """
    Find a practice page's link to its appointments information.

    Links whose path ends in a known sub-page name win, in slug order; after
    that the first link whose text mentions appointments is used.

    Returns:
        str or None: Absolute URL without fragment
    """
    soup = BeautifulSoup(html or "", "html.parser")
    page = urldefrag(page_url)[0].rstrip("/")
    links = []
    for anchor in soup.find_all("a", href=True):
        url = urldefrag(urljoin(page_url, anchor["href"]))[0].rstrip("/")
        if url.startswith(("http://", "https://")) and url != page:
            links.append((url, clean_text(anchor.get_text(" ")).lower()))

    for slug in APPOINTMENTS_SLUGS:
        for url, _ in links:
            if urlsplit(url).path.lower().endswith(f"/{slug}"):
                return url
    for url, text in links:
        if "appointment" in text:
            return url
    return None


class StatusChecker:
    """
    Derive one verdict per target from its public pages.

    Args:
        fetcher: Started RateLimitedFetcher (or anything with fetch(url))
        retries (int): Extra attempts for transient fetch failures
        backoff_seconds (float): First retry delay, doubled per attempt
    """

    def __init__(self, fetcher, retries=0, backoff_seconds=1.0, sleep=time.sleep):
        self.fetcher = fetcher
        self.retries = max(0, retries)
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def _fetch_with_retry(self, url):
        attempt = 0
        while True:
            try:
                return self.fetcher.fetch(url)
            except FetchError as e:
                if not e.transient or attempt >= self.retries:
                    raise
                delay = self.backoff_seconds * (2 ** attempt)
                attempt += 1
                logger.warning(f"Transient error for {url} ({e}), retry {attempt}/{self.retries} in {delay:g}s")
                self._sleep(delay)

    def check(self, target, checked_at=None):
        """
        Check a target's acceptance status.

        Never raises FetchError: a failed fetch becomes an unknown verdict
        with ok=False so the batch can carry on.

        Args:
            target: Object with `id` and `canonical_url`
            checked_at (datetime, optional): Check timestamp (default: now)

        Returns:
            tuple: (Verdict, CheckMeta)
        """
        checked_at = checked_at or utcnow()
        base_url = canonical_target_url(target.canonical_url)
        appointments_url = appointments_url_for(base_url)

        try:
            verdict, source, appointments_url, page_url = self._run_protocol(target, base_url, appointments_url)
        except FetchError as e:
            logger.warning(f"{target.id}: check failed: {e}")
            verdict = Verdict(STATUS_UNKNOWN, False, REASON_FETCH_FAILED)
            meta = CheckMeta(
                source=SOURCE_ERROR,
                checked_at=checked_at,
                ok=False,
                error=truncate(str(e), 500),
                appointments_url=appointments_url,
            )
            return verdict, meta

        meta = CheckMeta(
            source=source,
            checked_at=checked_at,
            ok=True,
            canonical_url=canonical_target_url(page_url) if page_url else base_url,
            appointments_url=appointments_url,
        )
        logger.info(f"{target.id}: {verdict.status} ({verdict.reason_code}, source={source})")
        return verdict, meta

    def _run_protocol(self, target, base_url, appointments_url):
        """
        Returns:
            tuple: (Verdict, source, appointments page URL or None, page URL
            the canonical URL is taken from)
        """
        main_page = None
        try:
            body, page_url = self._fetch_with_retry(appointments_url)
        except FetchError as e:
            if e.status_code not in MISSING_PAGE_CODES:
                raise
            logger.info(f"{target.id}: {appointments_url} not found, looking for the appointments page")
            main_page = self._fetch_with_retry(base_url)
            appointments_url, found = self._resolve_appointments_page(main_page, base_url, tried={appointments_url})
            if found is None:
                logger.info(f"{target.id}: no appointments page, classifying the practice page")
                return classify(main_page[0]), SOURCE_MAIN, None, main_page[1]
            body = found[0]
            page_url = main_page[1]

        verdict = classify(body)
        if verdict.lock:
            return verdict, SOURCE_APPOINTMENTS, appointments_url, page_url

        logger.debug(f"{target.id}: no signal on appointments page, trying main page")
        main_body, _ = main_page or self._fetch_with_retry(base_url)
        fallback = classify(main_body)
        if fallback.lock and fallback.status != STATUS_UNKNOWN:
            return fallback, SOURCE_MAIN, appointments_url, page_url
        return verdict, SOURCE_APPOINTMENTS, appointments_url, page_url

    def _resolve_appointments_page(self, main_page, base_url, tried):
        """
        Try the practice page's own appointments link, then the known
        sub-page names.

        Returns:
            tuple: (URL, (body, final_url)), or (None, None) if none exist
        """
        body, page_url = main_page
        candidates = []
        link = find_appointments_link(body, page_url)
        if link:
            candidates.append(link)
        candidates.extend(f"{base_url}/{slug}" for slug in APPOINTMENTS_SLUGS)

        for url in candidates:
            if url in tried:
                continue
            tried.add(url)
            try:
                return url, self._fetch_with_retry(url)
            except FetchError as e:
                if e.status_code not in MISSING_PAGE_CODES:
                    raise
                logger.debug(f"No appointments page at {url}")
        return None, None
