#!/usr/bin/env python3
"""
Database Inspection Script

Prints table columns, status counts and the most recent checks.
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from sqlalchemy import inspect, select

from config.settings import Settings
from config.database import create_session_factory
from config.models import StatusEvent
from monitoring.status_store import StatusStore


def get_table_columns(engine):
    """
    Returns:
        dict: table name -> list of column descriptions
    """
    inspector = inspect(engine)
    return {name: inspector.get_columns(name) for name in inspector.get_table_names()}


def get_recent_events(session_factory, limit=10):
    session = session_factory()
    try:
        stmt = select(StatusEvent).order_by(StatusEvent.checked_at.desc()).limit(limit)
        return list(session.execute(stmt).scalars().all())
    finally:
        session.close()


def main():
    """Main inspection function."""
    settings = Settings.from_env()
    session_factory = create_session_factory(settings.database_url)
    engine = session_factory.kw["bind"]

    print("Database Inspection")
    print("=" * 50)
    tables = get_table_columns(engine)
    print(f"Found {len(tables)} tables: {', '.join(tables)}\n")
    for table_name, columns in tables.items():
        print(f"Table: {table_name}")
        print("-" * 30)
        for col in columns:
            nullable = "NULL" if col['nullable'] else "NOT NULL"
            print(f"  - {col['name']} ({col['type']}) {nullable}")
        print()

    if "status_latest" not in tables:
        return

    print("=" * 50)
    print("Status counts")
    print("=" * 50)
    for status, count in sorted(StatusStore(session_factory).status_counts().items()):
        print(f"  {status}: {count}")

    print("\nRecent checks")
    for event in get_recent_events(session_factory):
        flag = "" if event.ok else f"  [error: {event.error}]"
        print(f"  {event.checked_at} {event.target_id} {event.status} ({event.reason_code}){flag}")


if __name__ == "__main__":
    main()
