"""
Notification Dispatcher

Decides whether and what to tell each subscriber after a cycle.

Subscriptions sharing a (postcode, radius) pair form one group and are
scanned once. Inside the cooldown window a recipient is only told about
practices they have not already been told about. Ledger rows are claimed
before sending, so two cycles running at once cannot both send the same
alert.
"""

import re
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from config.settings import clamp_radius
from monitoring.errors import NotifyError, PersistenceError
from monitoring.notifier import render_availability_message
from utils.text import normalize_postcode
from utils.time_utils import utcnow, uk_date_key

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

SKIP_COOLDOWN = 'cooldown'
SKIP_DUPLICATE = 'already_claimed'

EPOCH = datetime(1970, 1, 1)


@dataclass(frozen=True)
class Subscription:
    recipient: str
    location_hint: str
    radius: int = None


@dataclass
class SubscriptionGroup:
    location_hint: str
    radius: int
    recipients: list = field(default_factory=list)

    @property
    def key(self):
        return scope_key_for(self.location_hint, self.radius)


@dataclass
class NotificationAttempt:
    recipient: str
    target_ids: tuple = ()
    sent: bool = False
    skipped_reason: str = None
    error: str = None


def scope_key_for(location_hint, radius):
    """Ledger and discovery scope for a (postcode, radius) pair, e.g. "RG1 2AB|10"."""
    return f"{location_hint}|{radius}"


def normalize_recipient(recipient):
    """
    Lower-case and validate an email recipient.

    Returns:
        str or None: Normalised address, or None if it is not usable
    """
    value = str(recipient or "").strip().lower()
    return value if EMAIL_PATTERN.match(value) else None


def group_subscriptions(subscriptions, default_radius=25, location_filter=None):
    """
    Group subscriptions by normalised (postcode, radius).

    Args:
        subscriptions (iterable): Objects with recipient, location_hint, radius
        default_radius (int): Radius used when a subscription has none
        location_filter (str, optional): Only keep this postcode

    Returns:
        list: SubscriptionGroup items in first-seen order
    """
    wanted = normalize_postcode(location_filter) if location_filter else None
    groups = {}

    for sub in subscriptions:
        postcode = normalize_postcode(getattr(sub, "location_hint", ""))
        if not postcode or (wanted and postcode != wanted):
            continue
        recipient = normalize_recipient(getattr(sub, "recipient", ""))
        if recipient is None:
            logger.warning(f"Skipping subscription with invalid recipient for {postcode}")
            continue

        radius = clamp_radius(getattr(sub, "radius", None) or default_radius, default=default_radius)
        group = groups.get((postcode, radius))
        if group is None:
            group = SubscriptionGroup(location_hint=postcode, radius=radius)
            groups[(postcode, radius)] = group
        if recipient not in group.recipients:
            group.recipients.append(recipient)

    return list(groups.values())


def window_key_for(moment, target_ids, cooldown=None):
    """
    Ledger window for a send: the start of the cooldown period it falls in
    (UK-local) plus a digest of the disclosed set.

    Periods are aligned to the epoch, so two sends a full cooldown apart
    always land in different windows. With no cooldown the send time itself
    is the window.
    """
    digest = hashlib.sha1(",".join(sorted(target_ids)).encode("utf-8")).hexdigest()[:12]
    if cooldown and cooldown.total_seconds() > 0:
        period = cooldown.total_seconds()
        elapsed = (moment - EPOCH).total_seconds()
        start = EPOCH + timedelta(seconds=(elapsed // period) * period)
        return f"{uk_date_key(start, fmt='%Y-%m-%dT%H:%M%z')}:{digest}"
    return f"{uk_date_key(moment, fmt='%Y-%m-%dT%H:%M:%S.%f%z')}:{digest}"


class NotificationDispatcher:
    """
    Args:
        store: StatusStore used for target details and the ledger
        notifier: Notifier transport
        cooldown (timedelta): Minimum time between repeat alerts
        include_children_only (bool): Also alert on children-only openings
    """

    def __init__(self, store, notifier, cooldown=timedelta(hours=72), include_children_only=False, clock=utcnow):
        self.store = store
        self.notifier = notifier
        self.cooldown = cooldown
        self.include_children_only = include_children_only
        self._clock = clock

    def accepting_targets(self, verdicts_by_target):
        accepting = set()
        for target_id, verdict in verdicts_by_target.items():
            if not verdict.is_accepting:
                continue
            if verdict.children_only and not self.include_children_only:
                continue
            accepting.add(target_id)
        return accepting

    def maybe_notify(self, group, verdicts_by_target, now=None):
        """
        Notify a group's recipients about accepting practices.

        Args:
            group (SubscriptionGroup): Recipients sharing a postcode and radius
            verdicts_by_target (dict): target id -> Verdict from this cycle
            now (datetime, optional): Send time (default: clock)

        Returns:
            list: NotificationAttempt per recipient considered
        """
        now = now or self._clock()
        accepting = self.accepting_targets(verdicts_by_target)
        if not accepting:
            return []

        try:
            targets = self.store.get_targets(accepting)
        except PersistenceError as e:
            logger.error(f"[{group.key}] Could not load accepting practices: {e}")
            return [NotificationAttempt(recipient, error=str(e)) for recipient in group.recipients]

        attempts = []
        for recipient in group.recipients:
            attempts.append(self._notify_recipient(group, recipient, accepting, targets, now))

        sent = sum(1 for attempt in attempts if attempt.sent)
        logger.info(f"[{group.key}] {len(accepting)} accepting, {sent}/{len(attempts)} recipients notified")
        return attempts

    def _notify_recipient(self, group, recipient, accepting, targets, now):
        try:
            entries = self.store.recent_ledger_entries(recipient, now - self.cooldown)
        except PersistenceError as e:
            return NotificationAttempt(recipient, error=str(e))

        if entries:
            disclosed = set()
            for entry in entries:
                disclosed.update(entry.disclosed_target_ids or [])
            to_send = accepting - disclosed
            if not to_send:
                logger.info(f"[{group.key}] {recipient}: nothing new inside cooldown")
                return NotificationAttempt(recipient, skipped_reason=SKIP_COOLDOWN)
        else:
            to_send = set(accepting)

        target_ids = tuple(sorted(to_send))
        try:
            entry_id = self.store.claim_notification(
                recipient, group.key, window_key_for(now, target_ids, self.cooldown), target_ids, now
            )
        except PersistenceError as e:
            return NotificationAttempt(recipient, target_ids, error=str(e))
        if entry_id is None:
            return NotificationAttempt(recipient, target_ids, skipped_reason=SKIP_DUPLICATE)

        listed = [targets[target_id] for target_id in target_ids if target_id in targets]
        subject, body = render_availability_message(group.location_hint, group.radius, listed)

        try:
            self.notifier.send(recipient, subject, body)
        except NotifyError as e:
            logger.error(f"[{group.key}] Failed to notify {recipient}: {e}")
            try:
                self.store.release_notification(entry_id)
            except PersistenceError as release_error:
                logger.error(f"Could not release ledger entry {entry_id}: {release_error}")
            return NotificationAttempt(recipient, target_ids, error=str(e))

        try:
            self.store.confirm_notification(entry_id)
        except PersistenceError as e:
            # Sent but left pending; a pending entry still counts as disclosed
            return NotificationAttempt(recipient, target_ids, sent=True, error=str(e))

        return NotificationAttempt(recipient, target_ids, sent=True)
