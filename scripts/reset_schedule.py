#!/usr/bin/env python
"""
Make a schedule due immediately (operator run-now override).
Run with: python scripts/reset_schedule.py <schedule-id>
Requires DATABASE_URL, SECRET_KEY and ENCRYPTION_KEY in .env.
"""

import os
import sys

# Add package to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from webhook_scheduler.database import SessionLocal, utc_now
from webhook_scheduler.exceptions import ScheduleError
from webhook_scheduler.models.schedule import Schedule
from webhook_scheduler.schemas.auth import Owner
from webhook_scheduler.services.schedule_service import run_schedule_now
from webhook_scheduler.utils.audit_logger import create_audit_log


def describe(schedule: Schedule) -> None:
    now = utc_now()
    limit = schedule.max_executions if schedule.max_executions is not None else "unlimited"
    print(f"   Name: {schedule.name}")
    print(f"   Active: {schedule.is_active}")
    print(f"   Recurring: {schedule.is_recurring}")
    print(f"   Pattern: {schedule.recurrence_pattern}")
    print(f"   Config: {schedule.recurrence_config}")
    print(f"   Execution Count: {schedule.execution_count}/{limit}")
    print(f"   Next Execution: {schedule.next_execution_at}")
    if schedule.next_execution_at is not None:
        if schedule.next_execution_at <= now:
            print("   Is Due: YES")
        else:
            minutes = int((schedule.next_execution_at - now).total_seconds() // 60)
            print(f"   Is Due: no, executes in {minutes} minute(s)")


def reset_schedule(schedule_id: str) -> int:
    db = SessionLocal()
    try:
        schedule = db.get(Schedule, schedule_id)
        if schedule is None:
            print(f"Schedule not found: {schedule_id}")
            return 1

        print(f"Resetting schedule: {schedule_id}\n")
        print("Current state:")
        describe(schedule)
        previous = schedule.next_execution_at

        try:
            schedule = run_schedule_now(db, Owner(id=schedule.owner_id), schedule_id)
        except ScheduleError as e:
            print(f"Error updating schedule: {e}")
            return 1

        create_audit_log(
            db, None,
            action="schedule_run_now",
            entity_type="schedule",
            entity_id=schedule.id,
            owner_id=schedule.owner_id,
            details={"source": "reset_schedule.py"},
        )

        print("\nSchedule updated:")
        print(f"   Old Next Execution: {previous}")
        print(f"   New Next Execution: {schedule.next_execution_at}")
        if not schedule.is_active:
            print("   Schedule is inactive; reactivate it before it can run.")
        else:
            print("\nThe schedule executes on the next dispatcher tick.")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python scripts/reset_schedule.py <schedule-id>")
        sys.exit(2)
    sys.exit(reset_schedule(sys.argv[1]))
