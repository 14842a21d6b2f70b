"""
SQLAlchemy ORM Models
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, JSON, Index, UniqueConstraint
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

STATUS_ACCEPTING = 'accepting'
STATUS_NOT_ACCEPTING = 'not_accepting'
STATUS_UNKNOWN = 'unknown'

class Target(Base):
    __tablename__ = 'targets'

    id = Column(String, primary_key=True)  # organisation code, e.g. V123456
    display_name = Column(String, default='')
    location_hint = Column(String, default='', index=True)
    canonical_url = Column(String, default='')  # base page, never the /appointments page
    first_seen_at = Column(DateTime, server_default=func.now())
    last_seen_at = Column(DateTime)
    sightings = Column(Integer, default=0)

class TargetScope(Base):
    __tablename__ = 'target_scopes'

    id = Column(Integer, primary_key=True)
    target_id = Column(String, nullable=False, index=True)
    scope_key = Column(String, nullable=False, index=True)  # "<location_hint>|<radius>" the search ran for
    first_seen_at = Column(DateTime, server_default=func.now())
    last_seen_at = Column(DateTime)

    __table_args__ = (
        UniqueConstraint('target_id', 'scope_key', name='uq_target_scope'),
    )

class StatusLatest(Base):
    __tablename__ = 'status_latest'

    target_id = Column(String, primary_key=True)
    status = Column(String, nullable=False, index=True)
    evidence = Column(Text, default='')
    source = Column(String, default='')
    reason_code = Column(String, default='')
    checked_at = Column(DateTime, nullable=False, index=True)
    ok = Column(Boolean, default=True)
    error = Column(Text)
    children_only = Column(Boolean, default=False)
    appointments_url = Column(String, default='')

class StatusEvent(Base):
    __tablename__ = 'status_events'

    event_id = Column(Integer, primary_key=True)
    target_id = Column(String, nullable=False)
    status = Column(String, nullable=False, index=True)
    evidence = Column(Text, default='')
    source = Column(String, default='')
    reason_code = Column(String, default='')
    checked_at = Column(DateTime, nullable=False)
    ok = Column(Boolean, default=True)
    error = Column(Text)
    children_only = Column(Boolean, default=False)

    __table_args__ = (
        Index('ix_status_events_target_checked', 'target_id', 'checked_at'),
    )

class Subscription(Base):
    # Owned by the account subsystem; the monitor only reads it
    __tablename__ = 'subscriptions'

    subscription_id = Column(Integer, primary_key=True)
    recipient = Column(String, nullable=False, index=True)
    location_hint = Column(String, nullable=False, index=True)
    radius = Column(Integer)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())

class NotificationLedgerEntry(Base):
    __tablename__ = 'notification_ledger'

    entry_id = Column(Integer, primary_key=True)
    recipient = Column(String, nullable=False, index=True)
    scope_key = Column(String, nullable=False)  # "<location_hint>|<radius>"
    window_key = Column(String, nullable=False)
    disclosed_target_ids = Column(JSON, default=list)
    sent_at = Column(DateTime, nullable=False, index=True)
    delivery_status = Column(String, default='pending')  # pending | sent

    __table_args__ = (
        UniqueConstraint('recipient', 'scope_key', 'window_key', name='uq_ledger_recipient_scope_window'),
    )
