"""
Monitoring Daemon

Background service that runs monitoring cycles for every subscribed
postcode, sleeping a jittered interval between cycles.

Usage:
    python -m services.monitoring_daemon
    python -m services.monitoring_daemon --once --postcode "RG1 2AB"
"""

import sys
import time
import random
import signal
import logging
import argparse
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from config.settings import Settings, configure_logging
from config.database import create_session_factory, init_database
from monitoring.cycle import MonitoringCycle
from monitoring.fetcher import RateLimitedFetcher
from monitoring.status_store import StatusStore
from services.email_service import build_notifier

logger = logging.getLogger(__name__)


class MonitoringDaemon:
    """
    Loop around MonitoringCycle with graceful SIGINT/SIGTERM shutdown.

    A stop request is passed to the running cycle, which finishes the
    targets already mid-check and skips the rest.
    """

    def __init__(self, settings, cycle, sleep=time.sleep, rng=None):
        self.settings = settings
        self.cycle = cycle
        self.running = True
        self._sleep = sleep
        self._rng = rng or random.Random()

    def signal_handler(self, signum, frame):
        logger.info("Received shutdown signal. Stopping gracefully...")
        self.stop()

    def stop(self):
        self.running = False
        self.cycle.request_stop()

    def next_wait(self):
        base = self.settings.scan_interval_seconds
        return base + self._rng.randint(10, max(10, base // 10))

    def run(self, location_filter=None, once=False):
        cycle_count = 0
        logger.info("Starting Monitoring Daemon")

        while self.running:
            cycle_count += 1
            logger.info(f"=== Monitoring Cycle #{cycle_count} ===")
            try:
                self.cycle.run_cycle(location_filter=location_filter)
            except KeyboardInterrupt:
                raise
            except Exception as e:
                logger.error(f"Error in monitoring cycle: {e}", exc_info=True)

            if once or not self.running:
                break

            wait_time = self.next_wait()
            logger.info(f"Waiting {wait_time} seconds before next cycle...")
            # Check every second if we should stop
            for _ in range(wait_time):
                if not self.running:
                    break
                self._sleep(1)

        logger.info("Monitoring Daemon stopped")
        return cycle_count


def main(argv=None):
    parser = argparse.ArgumentParser(description="Practice Radar monitoring daemon")
    parser.add_argument("--postcode", help="Only monitor this postcode")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    configure_logging(settings)

    session_factory = create_session_factory(settings.database_url)
    init_database(session_factory)
    store = StatusStore(session_factory)

    with RateLimitedFetcher(settings) as fetcher:
        cycle = MonitoringCycle(settings, fetcher, store, build_notifier(settings))
        daemon = MonitoringDaemon(settings, cycle)
        signal.signal(signal.SIGINT, daemon.signal_handler)
        signal.signal(signal.SIGTERM, daemon.signal_handler)
        try:
            daemon.run(location_filter=args.postcode, once=args.once)
        except KeyboardInterrupt:
            logger.info("Interrupted by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
