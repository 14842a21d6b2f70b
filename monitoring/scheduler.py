"""
Batch Selection Scheduler

Picks the targets to check in a cycle: never-checked targets first, then the
stalest checked ones. Ordering relies only on status_latest.checked_at, so no
per-target scheduling state is kept.
"""

import logging

logger = logging.getLogger(__name__)


class BatchScheduler:

    def __init__(self, store):
        self.store = store

    def select_batch(self, n, candidate_ids=None):
        """
        Select up to n targets to check.

        Args:
            n (int): Batch size
            candidate_ids (iterable, optional): Restrict selection to these ids

        Returns:
            list: Target rows, never-checked first then stalest first
        """
        if n <= 0:
            return []
        ids = None if candidate_ids is None else list(dict.fromkeys(candidate_ids))
        if ids is not None and not ids:
            return []

        batch = self.store.never_checked_targets(n, ids)
        fresh = len(batch)
        if len(batch) < n:
            batch.extend(self.store.stalest_checked_targets(n - len(batch), ids))

        logger.info(f"Selected {len(batch)} targets ({fresh} never checked, {len(batch) - fresh} stale)")
        return batch
