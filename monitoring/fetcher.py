"""
Rate-Limited Fetch Layer

The only gateway to the network. Requests are grouped by origin
(scheme + host); each origin has its own concurrency cap and a minimum delay
measured from the end of its previous request. A short-TTL cache keyed by the
exact URL lets repeated fetches within a cycle skip the queue entirely.
No retries happen here; callers decide whether to try again.
"""

import random
import threading
import time
import logging
from urllib.parse import urlsplit

import requests

from config.settings import Settings
from monitoring.errors import FetchError

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
ACCEPT_LANGUAGE = "en-GB,en;q=0.9"
MAX_CACHE_ENTRIES = 2000


def origin_of(url):
    """
    Return the network origin of a URL, e.g. "https://www.nhs.uk".
    """
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return "default"
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"


class _OriginQueue:
    """Per-origin gate: concurrency slots plus the time the last request ended."""

    def __init__(self, max_concurrency):
        self.slots = threading.BoundedSemaphore(max_concurrency)
        self.lock = threading.Lock()
        self.last_finished = None
        self.waiting = 0
        self.running = 0


class RateLimitedFetcher:
    """
    Polite HTTP GET client with per-origin queues and a response cache.

    Usage:
        with RateLimitedFetcher(settings) as fetcher:
            body, final_url = fetcher.fetch(url)
    """

    def __init__(self, settings=None, session=None, clock=time.monotonic, sleep=time.sleep, rng=None):
        self.settings = settings or Settings.from_env()
        self._session = session
        self._owns_session = session is None
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()

        self._origins = {}
        self._origins_lock = threading.Lock()
        self._cache = {}
        self._cache_lock = threading.Lock()
        self._running = False

    def start(self):
        if self._running:
            return self
        if self._session is None:
            self._session = requests.Session()
            self._owns_session = True
        self._session.headers.update({
            "User-Agent": self.settings.user_agent,
            "Accept": ACCEPT_HEADER,
            "Accept-Language": ACCEPT_LANGUAGE,
        })
        self._running = True
        logger.debug("Fetch layer started")
        return self

    def stop(self):
        if not self._running:
            return
        self._running = False
        if self._owns_session and self._session is not None:
            self._session.close()
            self._session = None
        with self._cache_lock:
            self._cache.clear()
        with self._origins_lock:
            self._origins.clear()
        logger.debug("Fetch layer stopped")

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    def fetch(self, url):
        """
        Fetch a page through the origin queue.

        Args:
            url (str): Absolute URL

        Returns:
            tuple: (body, final_url) after redirects

        Raises:
            FetchError: on timeout, transport failure or non-2xx/3xx status
        """
        if not self._running:
            raise RuntimeError("Fetcher is not running; call start() first")

        cached = self._cache_get(url)
        if cached is not None:
            logger.debug(f"Cache hit: {url}")
            return cached

        queue = self._queue_for(origin_of(url))
        with queue.lock:
            queue.waiting += 1
        try:
            queue.slots.acquire()
        finally:
            with queue.lock:
                queue.waiting -= 1

        try:
            self._wait_for_turn(queue)
            with queue.lock:
                queue.running += 1
            try:
                body, final_url = self._send(url)
            finally:
                with queue.lock:
                    queue.running -= 1
                    queue.last_finished = self._clock()
        finally:
            queue.slots.release()

        self._cache_put(url, (body, final_url))
        return body, final_url

    def get_metrics(self):
        queued = running = 0
        with self._origins_lock:
            queues = list(self._origins.values())
        for queue in queues:
            with queue.lock:
                queued += queue.waiting
                running += queue.running
        with self._cache_lock:
            cache_size = len(self._cache)
        return {"queued": queued, "running": running, "cache_size": cache_size}

    def _queue_for(self, origin):
        with self._origins_lock:
            queue = self._origins.get(origin)
            if queue is None:
                queue = _OriginQueue(self.settings.max_concurrent_fetches)
                self._origins[origin] = queue
            return queue

    def _pick_delay(self):
        low = self.settings.rate_min_ms / 1000.0
        high = self.settings.rate_max_ms / 1000.0
        if high <= low:
            return low
        return self._rng.uniform(low, high)

    def _wait_for_turn(self, queue):
        delay = self._pick_delay()
        with queue.lock:
            if queue.last_finished is None:
                return
            wait = max(0.0, delay - (self._clock() - queue.last_finished))
        if wait > 0:
            self._sleep(wait)

    def _send(self, url):
        timeout = self.settings.http_timeout_seconds
        try:
            response = self._session.get(url, timeout=timeout, allow_redirects=True)
        except requests.Timeout as e:
            raise FetchError(f"Timed out after {timeout:g}s fetching {url}", url=url) from e
        except requests.RequestException as e:
            raise FetchError(f"Request failed for {url}: {e}", url=url) from e

        status = response.status_code
        logger.debug(f"[GET] {url} -> {status}")
        if status < 200 or status >= 400:
            raise FetchError(f"Unexpected status fetching {url}", status_code=status, url=url)

        return response.text or "", response.url or url

    def _cache_get(self, url):
        ttl = self.settings.cache_ttl_seconds
        if ttl <= 0:
            return None
        with self._cache_lock:
            entry = self._cache.get(url)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= ttl:
                del self._cache[url]
                return None
            return value

    def _cache_put(self, url, value):
        ttl = self.settings.cache_ttl_seconds
        if ttl <= 0:
            return
        with self._cache_lock:
            now = self._clock()
            expired = [key for key, (stored_at, _) in self._cache.items() if now - stored_at >= ttl]
            for key in expired:
                del self._cache[key]
            self._cache[url] = (now, value)
            # Oldest entries go first once the map is full
            while len(self._cache) > MAX_CACHE_ENTRIES:
                oldest = min(self._cache, key=lambda key: self._cache[key][0])
                del self._cache[oldest]
