"""
Status Store & Event Log

Persists the latest status per target (upsert), an append-only history of
every check, the discovered targets themselves, and the notification ledger.
Every write runs in a single transaction; failures are rolled back and
raised as PersistenceError.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, func, and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from config.models import (
    Target,
    TargetScope,
    StatusLatest,
    StatusEvent,
    Subscription,
    NotificationLedgerEntry,
)
from monitoring.errors import PersistenceError
from utils.text import truncate
from utils.time_utils import utcnow

logger = logging.getLogger(__name__)

MAX_EVIDENCE_CHARS = 480
MAX_ERROR_CHARS = 500

LEDGER_PENDING = 'pending'
LEDGER_SENT = 'sent'


@dataclass
class CheckMeta:
    """How a verdict was obtained: page source, time, and fetch outcome."""
    source: str
    checked_at: datetime
    ok: bool = True
    error: str = None
    canonical_url: str = None
    appointments_url: str = None


class StatusStore:
    """
    Query and write surface over the monitor's tables.

    Args:
        session_factory: SQLAlchemy sessionmaker (see config.database)
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def _write(self, action, work):
        session = self._session_factory()
        try:
            result = work(session)
            session.commit()
            return result
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error {action}: {e}")
            raise PersistenceError(f"Error {action}: {e}") from e
        finally:
            session.close()

    def _read(self, action, work):
        session = self._session_factory()
        try:
            return work(session)
        except SQLAlchemyError as e:
            logger.error(f"Error {action}: {e}")
            raise PersistenceError(f"Error {action}: {e}") from e
        finally:
            session.close()

    # Targets

    def upsert_targets(self, candidates, location_hint, seen_at=None, scope_key=None):
        """
        Create or refresh targets from discovery candidates.

        A target's id never changes; its name and URL are refreshed when a
        later sighting provides them. When scope_key is given, each target is
        also linked to the (postcode, radius) search that found it.

        Returns:
            list: Target ids, in candidate order
        """
        seen_at = seen_at or utcnow()
        # Pending rows are invisible to session.get until flushed
        unique = {candidate.id: candidate for candidate in candidates}

        def work(session):
            ids = []
            for candidate in unique.values():
                target = session.get(Target, candidate.id)
                if target is None:
                    target = Target(
                        id=candidate.id,
                        display_name=candidate.name or '',
                        location_hint=location_hint or '',
                        canonical_url=candidate.url or '',
                        first_seen_at=seen_at,
                        sightings=0,
                    )
                    session.add(target)
                else:
                    if candidate.name:
                        target.display_name = candidate.name
                    if candidate.url:
                        target.canonical_url = candidate.url
                    if not target.location_hint and location_hint:
                        target.location_hint = location_hint
                target.last_seen_at = seen_at
                target.sightings = (target.sightings or 0) + 1
                if scope_key:
                    self._link_scope(session, candidate.id, scope_key, seen_at)
                ids.append(candidate.id)
            return ids

        return self._write("upserting targets", work)

    @staticmethod
    def _link_scope(session, target_id, scope_key, seen_at):
        stmt = select(TargetScope).where(and_(
            TargetScope.target_id == target_id,
            TargetScope.scope_key == scope_key,
        ))
        link = session.execute(stmt).scalars().first()
        if link is None:
            link = TargetScope(target_id=target_id, scope_key=scope_key, first_seen_at=seen_at)
            session.add(link)
        link.last_seen_at = seen_at

    def get_target(self, target_id):
        return self._read("fetching target", lambda session: session.get(Target, target_id))

    def get_targets(self, target_ids):
        """
        Returns:
            dict: target id -> Target
        """
        ids = list(target_ids)
        if not ids:
            return {}

        def work(session):
            rows = session.execute(select(Target).where(Target.id.in_(ids))).scalars().all()
            return {row.id: row for row in rows}

        return self._read("fetching targets", work)

    def target_ids_for_location(self, location_hint):
        def work(session):
            stmt = select(Target.id).where(Target.location_hint == location_hint).order_by(Target.id)
            return list(session.execute(stmt).scalars().all())

        return self._read("fetching targets by location", work)

    def target_ids_for_scope(self, scope_key):
        """
        Targets any discovery run for this (postcode, radius) scope has found.
        """
        def work(session):
            stmt = select(TargetScope.target_id).where(TargetScope.scope_key == scope_key).order_by(TargetScope.target_id)
            return list(session.execute(stmt).scalars().all())

        return self._read("fetching targets by scope", work)

    # Status

    def record_check(self, target_id, verdict, meta):
        """
        Record one check: upsert the latest status and append an event.

        Both writes share a transaction, so either both land or neither does.
        An older check never overwrites a newer latest row, but its event is
        still appended.

        Args:
            target_id (str): Target code
            verdict (Verdict): Classifier output
            meta (CheckMeta): Source page, check time and fetch outcome

        Raises:
            PersistenceError: if the transaction fails
        """
        evidence = truncate(verdict.evidence or '', MAX_EVIDENCE_CHARS)
        error = truncate(meta.error, MAX_ERROR_CHARS)

        def work(session):
            latest = session.get(StatusLatest, target_id)
            if latest is None:
                latest = StatusLatest(target_id=target_id)
                session.add(latest)
                stale = False
            else:
                stale = latest.checked_at is not None and latest.checked_at > meta.checked_at

            if stale:
                logger.warning(f"Check for {target_id} at {meta.checked_at} is older than latest; keeping latest")
            else:
                latest.status = verdict.status
                latest.evidence = evidence
                latest.source = meta.source
                latest.reason_code = verdict.reason_code
                latest.checked_at = meta.checked_at
                latest.ok = meta.ok
                latest.error = error
                latest.children_only = verdict.children_only
                latest.appointments_url = meta.appointments_url or ''

            session.add(StatusEvent(
                target_id=target_id,
                status=verdict.status,
                evidence=evidence,
                source=meta.source,
                reason_code=verdict.reason_code,
                checked_at=meta.checked_at,
                ok=meta.ok,
                error=error,
                children_only=verdict.children_only,
            ))

            if meta.canonical_url:
                target = session.get(Target, target_id)
                if target is not None and target.canonical_url != meta.canonical_url:
                    target.canonical_url = meta.canonical_url

        self._write(f"recording check for {target_id}", work)

    def latest_status(self, target_id):
        return self._read("fetching latest status", lambda session: session.get(StatusLatest, target_id))

    def latest_statuses(self, target_ids=None):
        """
        Returns:
            dict: target id -> StatusLatest
        """
        def work(session):
            stmt = select(StatusLatest)
            if target_ids is not None:
                stmt = stmt.where(StatusLatest.target_id.in_(list(target_ids)))
            return {row.target_id: row for row in session.execute(stmt).scalars().all()}

        return self._read("fetching latest statuses", work)

    def oldest_checked_at(self, target_ids=None):
        def work(session):
            stmt = select(func.min(StatusLatest.checked_at))
            if target_ids is not None:
                stmt = stmt.where(StatusLatest.target_id.in_(list(target_ids)))
            return session.execute(stmt).scalar()

        return self._read("fetching oldest check", work)

    def never_checked_targets(self, limit, target_ids=None):
        """
        Targets with no latest-status row, oldest sighting first.
        """
        def work(session):
            stmt = (
                select(Target)
                .outerjoin(StatusLatest, StatusLatest.target_id == Target.id)
                .where(StatusLatest.target_id.is_(None))
                .order_by(Target.first_seen_at.asc(), Target.id.asc())
            )
            if target_ids is not None:
                stmt = stmt.where(Target.id.in_(list(target_ids)))
            stmt = stmt.limit(limit)
            return list(session.execute(stmt).scalars().all())

        return self._read("fetching never-checked targets", work)

    def stalest_checked_targets(self, limit, target_ids=None):
        """
        Checked targets ordered by last check time, stalest first.
        """
        def work(session):
            stmt = (
                select(Target)
                .join(StatusLatest, StatusLatest.target_id == Target.id)
                .order_by(StatusLatest.checked_at.asc(), Target.id.asc())
            )
            if target_ids is not None:
                stmt = stmt.where(Target.id.in_(list(target_ids)))
            stmt = stmt.limit(limit)
            return list(session.execute(stmt).scalars().all())

        return self._read("fetching stale targets", work)

    def event_history(self, target_id, limit=None):
        def work(session):
            stmt = (
                select(StatusEvent)
                .where(StatusEvent.target_id == target_id)
                .order_by(StatusEvent.checked_at.asc(), StatusEvent.event_id.asc())
            )
            if limit:
                stmt = stmt.limit(limit)
            return list(session.execute(stmt).scalars().all())

        return self._read("fetching event history", work)

    def status_counts(self):
        """
        Count latest statuses, e.g. {'accepting': 12, 'unknown': 40}.
        """
        def work(session):
            stmt = select(StatusLatest.status, func.count()).group_by(StatusLatest.status)
            return {status: count for status, count in session.execute(stmt).all()}

        return self._read("counting statuses", work)

    # Subscriptions

    def list_subscriptions(self, location_hint=None):
        def work(session):
            stmt = select(Subscription).where(Subscription.active.is_(True))
            if location_hint:
                stmt = stmt.where(Subscription.location_hint == location_hint)
            return list(session.execute(stmt.order_by(Subscription.subscription_id)).scalars().all())

        return self._read("fetching subscriptions", work)

    # Notification ledger

    def recent_ledger_entries(self, recipient, since):
        """
        Pending or sent ledger entries for a recipient since a cutoff.
        """
        def work(session):
            stmt = (
                select(NotificationLedgerEntry)
                .where(and_(
                    NotificationLedgerEntry.recipient == recipient,
                    NotificationLedgerEntry.sent_at >= since,
                    or_(
                        NotificationLedgerEntry.delivery_status == LEDGER_SENT,
                        NotificationLedgerEntry.delivery_status == LEDGER_PENDING,
                    ),
                ))
                .order_by(NotificationLedgerEntry.sent_at.desc())
            )
            return list(session.execute(stmt).scalars().all())

        return self._read("fetching ledger entries", work)

    def claim_notification(self, recipient, scope_key, window_key, target_ids, sent_at):
        """
        Reserve a ledger row before sending.

        The unique (recipient, scope_key, window_key) constraint makes the
        claim atomic: a concurrent cycle about to send the same thing loses.

        Returns:
            int or None: Entry id, or None if an identical claim already exists

        Raises:
            PersistenceError: for any other database failure
        """
        session = self._session_factory()
        try:
            entry = NotificationLedgerEntry(
                recipient=recipient,
                scope_key=scope_key,
                window_key=window_key,
                disclosed_target_ids=sorted(target_ids),
                sent_at=sent_at,
                delivery_status=LEDGER_PENDING,
            )
            session.add(entry)
            session.commit()
            return entry.entry_id
        except IntegrityError:
            session.rollback()
            logger.info(f"Notification for {recipient} ({scope_key}, {window_key}) already claimed")
            return None
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error claiming notification for {recipient}: {e}")
            raise PersistenceError(f"Error claiming notification for {recipient}: {e}") from e
        finally:
            session.close()

    def confirm_notification(self, entry_id):
        def work(session):
            entry = session.get(NotificationLedgerEntry, entry_id)
            if entry is not None:
                entry.delivery_status = LEDGER_SENT

        self._write("confirming notification", work)

    def release_notification(self, entry_id):
        def work(session):
            entry = session.get(NotificationLedgerEntry, entry_id)
            if entry is not None:
                session.delete(entry)

        self._write("releasing notification", work)
