#!/usr/bin/env python3
"""
Practice Radar - Main Entry Point

Runs a single monitoring cycle, or discovery only, from the command line.

Usage:
    python main.py --init-db
    python main.py --postcode "RG1 2AB"
    python main.py --discover --postcode "RG1 2AB" --radius 10
"""

import sys
import argparse
import logging

from config.settings import Settings, clamp_radius, configure_logging
from config.database import create_session_factory, init_database
from monitoring.cycle import MonitoringCycle
from monitoring.fetcher import RateLimitedFetcher
from monitoring.status_store import StatusStore
from services.email_service import build_notifier
from utils.text import normalize_postcode

logger = logging.getLogger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Practice Radar - NHS dentist acceptance monitor")
    parser.add_argument("--init-db", action="store_true", help="Create database tables and exit")
    parser.add_argument("--discover", action="store_true", help="Only discover targets for --postcode")
    parser.add_argument("--postcode", help="Limit the cycle to one postcode")
    parser.add_argument("--radius", type=int, help="Search radius in miles (with --discover)")
    parser.add_argument("--no-discovery", action="store_true", help="Check known targets without searching")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    configure_logging(settings)

    session_factory = create_session_factory(settings.database_url)
    init_database(session_factory)
    if args.init_db:
        print("Database initialized.")
        return 0

    store = StatusStore(session_factory)

    with RateLimitedFetcher(settings) as fetcher:
        cycle = MonitoringCycle(settings, fetcher, store, build_notifier(settings))

        if args.discover:
            if not args.postcode:
                parser.error("--discover requires --postcode")
            postcode = normalize_postcode(args.postcode)
            radius = clamp_radius(args.radius or settings.default_radius, default=settings.default_radius)
            ids = cycle.discover_location(postcode, radius)
            print(f"Discovered {len(ids)} targets near {postcode} ({radius} miles)")
            return 0

        summary = cycle.run_cycle(location_filter=args.postcode, discover=not args.no_discovery)

    print(f"Targets scanned:    {summary.targets_scanned}")
    print(f"Failed checks:      {summary.failed_checks}")
    print(f"Notifications sent: {summary.notifications_sent}")
    print(f"Errors:             {summary.errors}")
    return 1 if summary.errors and not summary.targets_scanned else 0


if __name__ == "__main__":
    sys.exit(main())
