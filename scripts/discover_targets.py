#!/usr/bin/env python3
"""
Seed Discovery Script

Discovers practices around every postcode in a seed file (one postcode per
line, optional radius after a comma) and stores them as targets.

Usage:
    python scripts/discover_targets.py seeds.txt
"""

import sys
import argparse
import logging
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from config.settings import Settings, clamp_radius, configure_logging
from config.database import create_session_factory, init_database
from monitoring.discovery import TargetDiscovery
from monitoring.dispatcher import scope_key_for
from monitoring.errors import PersistenceError
from monitoring.fetcher import RateLimitedFetcher
from monitoring.status_store import StatusStore
from utils.text import normalize_postcode

logger = logging.getLogger(__name__)


def read_seeds(path, default_radius):
    """
    Parse a seed file.

    Returns:
        list: (postcode, radius) pairs, duplicates removed
    """
    seeds = []
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        line = line.split("#", 1)[0].strip()
        if not line:
            continue
        postcode, _, radius = line.partition(",")
        pair = (normalize_postcode(postcode), clamp_radius(radius.strip() or default_radius, default=default_radius))
        if pair[0] and pair not in seeds:
            seeds.append(pair)
    return seeds


def main(argv=None):
    parser = argparse.ArgumentParser(description="Discover practices for a list of postcodes")
    parser.add_argument("seed_file", help="File with one postcode per line")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    configure_logging(settings)
    session_factory = create_session_factory(settings.database_url)
    init_database(session_factory)
    store = StatusStore(session_factory)

    seeds = read_seeds(args.seed_file, settings.default_radius)
    print(f"Discovering targets for {len(seeds)} postcodes")

    total = 0
    with RateLimitedFetcher(settings) as fetcher:
        discovery = TargetDiscovery(fetcher, settings.base_url, settings.discovery_max_pages)
        for postcode, radius in seeds:
            candidates = discovery.discover(postcode, radius)
            try:
                ids = store.upsert_targets(candidates, postcode, scope_key=scope_key_for(postcode, radius))
            except PersistenceError as e:
                logger.error(f"Could not store targets for {postcode}: {e}")
                continue
            total += len(ids)
            print(f"  {postcode} ({radius} miles): {len(ids)} targets")

    print(f"Done. {total} target sightings stored.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
