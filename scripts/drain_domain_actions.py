"""
Drains the domain action queue once and exits.

Runs dispatch passes until a pass finds nothing due. Exits with status 1 if
any action had no registered executor, so deploy checks notice the mismatch.
"""
import argparse
import asyncio
import json
import sys

from boxoffice.app.core.config import get_settings
from boxoffice.app.core.database import async_session_maker
from boxoffice.app.core.logging import setup_logging, get_logger
from boxoffice.app.workers.domain_action_monitor import DomainActionMonitor

logger = get_logger(__name__)


async def drain(publish_events: bool = False) -> int:
    settings = get_settings()
    monitor = DomainActionMonitor(settings=settings, session_factory=async_session_maker)

    if publish_events:
        published = await monitor.publisher_service.find_and_publish_events()
        logger.info(f"Published {published} domain event(s) before draining")

    report = await monitor.run_til_empty()
    print(json.dumps(report.as_dict(), indent=2))
    return 1 if report.configuration_errors else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Execute every due domain action, then exit.")
    parser.add_argument("--publish-events", action="store_true",
                        help="Run one domain event publication cycle before draining.")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL.")
    args = parser.parse_args()

    setup_logging(level=args.log_level or get_settings().log_level)
    sys.exit(asyncio.run(drain(publish_events=args.publish_events)))
