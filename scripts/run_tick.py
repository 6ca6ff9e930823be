#!/usr/bin/env python
"""
Run the dispatcher without the API server.
Run with: python scripts/run_tick.py [--loop] [--interval 60]
Requires DATABASE_URL, SECRET_KEY and ENCRYPTION_KEY in .env.
"""

import argparse
import asyncio
import os
import sys

# Add package to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from webhook_scheduler.config import settings
from webhook_scheduler.connectors.discord_connector import DiscordWebhookConnector
from webhook_scheduler.services.dispatcher import ScheduleDispatcher, TickResult
from webhook_scheduler.utils.log_config import configure_logging


def print_result(run: int, result: TickResult) -> None:
    print(f"\n[{result.started_at.strftime('%H:%M:%S')}] Run #{run}")
    if not result.reports:
        print("No schedules due")
        return
    print(f"Processed {result.processed} schedule(s)")
    for report in result.reports:
        print(f"   - {report.name}: {'Success' if report.success else 'Failed'}")
        if report.continues:
            print(f"     Next: {report.next_execution_at.isoformat()}")
        else:
            print(f"     Status: {report.outcome.value}")


async def main(loop: bool, interval: int) -> None:
    dispatcher = ScheduleDispatcher(connector=DiscordWebhookConnector())
    run = 0
    try:
        while True:
            run += 1
            print_result(run, await dispatcher.run_tick())
            if not loop:
                break
            await asyncio.sleep(interval)
    finally:
        await dispatcher.connector.aclose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run dispatcher ticks from the shell")
    parser.add_argument("--loop", action="store_true", help="keep ticking until interrupted")
    parser.add_argument("--interval", type=int, default=settings.dispatcher_tick_seconds, help="seconds between ticks")
    args = parser.parse_args()

    configure_logging(settings.log_level)
    try:
        asyncio.run(main(args.loop, args.interval))
    except KeyboardInterrupt:
        print("\nStopped")
