#!/usr/bin/env python3
"""
Run the daily reminder sweep.

Meant to be scheduled once a day (cron, Cloud Scheduler, a GitHub Actions
schedule). Re-running on the same day is safe: reminders already in a
student's ledger are not sent again, and failed sends are retried.

Usage:
    python scripts/run_reminder_sweep.py
    python scripts/run_reminder_sweep.py --dry-run

Requires:
    - .env file with Snowflake and Brevo credentials (or the mock modes)

Exits with status 1 if any reminder failed.
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from trainerdesk.api.dependencies import (  # noqa: E402
    build_email_config,
    build_snowflake_config,
    build_trainer_profile,
)
from trainerdesk.config.settings import get_settings  # noqa: E402
from trainerdesk.core.billing.orchestrator import AccountingOrchestrator  # noqa: E402
from trainerdesk.infrastructure.clock import SystemClock  # noqa: E402
from trainerdesk.infrastructure.email.brevo import create_email_client  # noqa: E402
from trainerdesk.infrastructure.snowflake.client import create_snowflake_connection  # noqa: E402
from trainerdesk.infrastructure.snowflake.repositories.accounts import AccountRepository  # noqa: E402

logger = logging.getLogger("run_reminder_sweep")


async def run(dry_run: bool = False) -> int:
    settings = get_settings()

    missing = settings.validate_required_fields()
    if missing:
        logger.error("Missing required configuration", extra={"missing_fields": missing})
        print(f"Missing configuration: {', '.join(missing)}")
        return 1

    snowflake_config = None if settings.snowflake_mock_mode else build_snowflake_config(settings)
    email_config = None if settings.email_mock_mode else build_email_config(settings)
    notifier = create_email_client(config=email_config, mock_mode=settings.email_mock_mode)

    try:
        with create_snowflake_connection(
            config=snowflake_config,
            mock_mode=settings.snowflake_mock_mode,
        ) as conn:
            orchestrator = AccountingOrchestrator(
                gateway=AccountRepository(conn, max_retries=settings.persistence_max_retries),
                notifier=notifier,
                clock=SystemClock(settings.timezone),
                trainer=build_trainer_profile(settings),
            )

            if dry_run:
                intents = await orchestrator.preview_reminders()
                print(f"{len(intents)} reminder(s) due")
                for intent in intents:
                    print(f"  {intent.recipient_email:<40} {intent.threshold_key.value}")
                return 0

            report = await orchestrator.run_sweep()
    finally:
        await notifier.aclose()

    print(f"Sweep for {report.today.isoformat()}: {len(report.sent)} sent, {len(report.failed)} failed")
    for failure in report.failed:
        print(f"  FAILED {failure.student_id} {failure.threshold_key.value} ({failure.stage}): {failure.error}")
    return 0 if report.ok else 1


def main():
    import argparse

    parser = argparse.ArgumentParser(description='Send due plan reminders')
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='List the reminders that are due without sending anything',
    )
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=settings.log_level.upper(),
    )

    sys.exit(asyncio.run(run(dry_run=args.dry_run)))


if __name__ == '__main__':
    main()
