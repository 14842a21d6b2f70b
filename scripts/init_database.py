#!/usr/bin/env python3
"""
Database Initialization Script

Run this script to create the monitor's tables.
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from sqlalchemy.exc import SQLAlchemyError

from config.settings import Settings
from config.database import create_session_factory, init_database, backup_database


def main():
    """Initialize the database and create a backup."""
    print("Initializing Practice Radar Database...")
    print("=" * 50)

    settings = Settings.from_env()
    try:
        init_database(create_session_factory(settings.database_url))
    except SQLAlchemyError as e:
        print(f"Error initializing database: {e}")
        sys.exit(1)
    print("Database initialized successfully!")

    backup_path = backup_database(settings.database_url)
    if backup_path:
        print(f"Initial backup created: {backup_path}")
    else:
        print("Could not create initial backup")

    print("\nDatabase Structure:")
    print("   - targets: Discovered practices")
    print("   - status_latest: Latest acceptance status per practice")
    print("   - status_events: Every check ever made")
    print("   - subscriptions: Recipients and their postcodes (read-only here)")
    print("   - notification_ledger: Alerts already sent")


if __name__ == "__main__":
    main()
