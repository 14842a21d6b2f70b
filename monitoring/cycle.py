"""
Monitoring Cycle

One batch cycle: group subscriptions, discover targets around each postcode,
select a batch, check it on a bounded worker pool, persist every verdict and
finally notify subscribers. Each cycle is otherwise stateless, so the process
can be restarted safely between cycles.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import timedelta

from monitoring.discovery import TargetDiscovery
from monitoring.dispatcher import NotificationDispatcher, group_subscriptions, scope_key_for
from monitoring.errors import PersistenceError
from monitoring.scheduler import BatchScheduler
from monitoring.status_checker import StatusChecker
from utils.text import normalize_postcode
from utils.time_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class CycleSummary:
    targets_scanned: int = 0
    notifications_sent: int = 0
    errors: int = 0
    targets_discovered: int = 0
    failed_checks: int = 0
    groups: int = 0
    stopped_early: bool = False


@dataclass
class _CheckOutcome:
    target_id: str
    verdict: object = None
    meta: object = None
    persisted: bool = False
    error: str = None


class MonitoringCycle:
    """
    Entry point called by the CLI and the daemon.

    Args:
        settings (Settings): Loaded configuration
        fetcher: Started RateLimitedFetcher
        store (StatusStore): Persistence surface
        notifier (Notifier): Outbound transport
        subscription_source (iterable, optional): Subscriptions to use instead
            of the subscriptions table
    """

    def __init__(self, settings, fetcher, store, notifier, subscription_source=None,
                 discovery=None, checker=None, dispatcher=None, clock=utcnow):
        self.settings = settings
        self.fetcher = fetcher
        self.store = store
        self.subscription_source = subscription_source
        self.discovery = discovery or TargetDiscovery(fetcher, settings.base_url, settings.discovery_max_pages)
        self.checker = checker or StatusChecker(fetcher, retries=settings.fetch_retries)
        self.scheduler = BatchScheduler(store)
        self.dispatcher = dispatcher or NotificationDispatcher(
            store,
            notifier,
            cooldown=timedelta(hours=settings.cooldown_hours),
            include_children_only=settings.include_child_only,
            clock=clock,
        )
        self._clock = clock
        self._stop = threading.Event()

    def request_stop(self):
        """Ask the running cycle to stop before its next target."""
        self._stop.set()

    @property
    def stop_requested(self):
        return self._stop.is_set()

    def _load_subscriptions(self):
        if self.subscription_source is None:
            return self.store.list_subscriptions()
        if callable(self.subscription_source):
            return list(self.subscription_source())
        return list(self.subscription_source)

    def discover_location(self, location_hint, radius):
        """
        Discover and upsert targets around a postcode.

        Found targets are linked to the (postcode, radius) scope, so a
        subscription group only hears about practices its own search found.

        Returns:
            list: Target ids found this time
        """
        candidates = self.discovery.discover(location_hint, radius)
        if not candidates:
            return []
        return self.store.upsert_targets(
            candidates, location_hint, seen_at=self._clock(), scope_key=scope_key_for(location_hint, radius)
        )

    def run_cycle(self, location_filter=None, discover=True):
        """
        Run one monitoring cycle.

        Args:
            location_filter (str, optional): Only process this postcode
            discover (bool): Refresh targets from search results first

        Returns:
            CycleSummary: Counts for the cycle
        """
        summary = CycleSummary()
        groups = group_subscriptions(self._load_subscriptions(), self.settings.default_radius, location_filter)
        summary.groups = len(groups)
        logger.info(f"Starting cycle: {len(groups)} subscription groups")

        targets_by_group = {}
        for group in groups:
            if self.stop_requested:
                summary.stopped_early = True
                break
            ids = set()
            if discover:
                try:
                    found = self.discover_location(group.location_hint, group.radius)
                    summary.targets_discovered += len(found)
                    ids.update(found)
                except PersistenceError as e:
                    logger.error(f"[{group.key}] Could not store discovered targets: {e}")
                    summary.errors += 1
            try:
                ids.update(self.store.target_ids_for_scope(group.key))
            except PersistenceError as e:
                logger.error(f"[{group.key}] Could not load known targets: {e}")
                summary.errors += 1
            targets_by_group[group.key] = ids

        candidate_ids = self._candidate_pool(groups, targets_by_group, location_filter)
        if candidate_ids is not None and not candidate_ids:
            logger.info("No targets to check this cycle")
            return summary

        batch = self.scheduler.select_batch(self.settings.batch_size, candidate_ids)
        verdicts = {}
        for outcome in self._check_batch(batch):
            if outcome is None:
                summary.stopped_early = True
                continue
            summary.targets_scanned += 1
            if outcome.meta is not None and not outcome.meta.ok:
                summary.failed_checks += 1
                summary.errors += 1
            if not outcome.persisted:
                # Not durably recorded, so never notified about
                summary.errors += 1
                continue
            verdicts[outcome.target_id] = outcome.verdict

        for group in groups:
            group_ids = targets_by_group.get(group.key, set())
            group_verdicts = {tid: v for tid, v in verdicts.items() if tid in group_ids}
            for attempt in self.dispatcher.maybe_notify(group, group_verdicts):
                if attempt.sent:
                    summary.notifications_sent += 1
                if attempt.error:
                    summary.errors += 1

        logger.info(
            f"Cycle complete: {summary.targets_scanned} scanned, {summary.failed_checks} failed, "
            f"{summary.notifications_sent} notifications, {summary.errors} errors"
        )
        return summary

    def _candidate_pool(self, groups, targets_by_group, location_filter):
        if groups:
            pool = set()
            for ids in targets_by_group.values():
                pool.update(ids)
            return pool
        if location_filter:
            return set(self.store.target_ids_for_location(normalize_postcode(location_filter)))
        return None

    def _check_batch(self, batch):
        if not batch:
            return []
        workers = max(1, min(self.settings.max_concurrency, len(batch)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="check") as pool:
            futures = [pool.submit(self._check_one, target) for target in batch]
            return [future.result() for future in futures]

    def _check_one(self, target):
        if self.stop_requested:
            return None

        verdict, meta = self.checker.check(target, checked_at=self._clock())
        outcome = _CheckOutcome(target.id, verdict, meta)
        try:
            self.store.record_check(target.id, verdict, meta)
            outcome.persisted = True
        except PersistenceError as e:
            logger.error(f"{target.id}: check not recorded: {e}")
            outcome.error = str(e)
        return outcome
