"""
Turn Reminder Job
Nudges the member whose turn has been open longer than the group's turn duration
"""

import os
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from noteclub.db.connection import get_database
from noteclub.db.documents import parse_iso, now_iso
from noteclub.db import turn_order
from noteclub.http_api.turns import active_member_ids
from noteclub.http_api.notifications import create_notification

logger = logging.getLogger(__name__)

REMINDER_INTERVAL_SECONDS = int(os.getenv("TURN_REMINDER_INTERVAL_SECONDS", "3600"))


def turn_is_overdue(group, now: datetime) -> bool:
    started = parse_iso(group.get("last_turn_started_at") or group.get("created_at"))
    if not started:
        return False
    return now - started >= timedelta(days=group.get("turn_duration_days", 7))


def send_turn_reminders(dry_run: bool = False, db=None, now: Optional[datetime] = None):
    """
    Remind the current member of every group whose turn is overdue

    A group is reminded at most once per turn start: the start timestamp the
    reminder was sent for is stored on the group as ``last_reminder_for``.

    Args:
        dry_run: If True, only log who would be reminded
        db: Database to use (defaults to the configured one)
        now: Clock override for tests

    Returns:
        dict: Statistics about the run
    """
    db = db if db is not None else get_database()
    now = now or datetime.now(timezone.utc)

    checked = 0
    due = 0
    sent = 0

    for group in db.groups.find({}, {"_id": 0}):
        checked += 1
        if not group.get("turn_order") or not turn_is_overdue(group, now):
            continue

        turn_start = group.get("last_turn_started_at") or group.get("created_at")
        if group.get("last_reminder_for") == turn_start:
            continue

        user_id = turn_order.current_turn_user_id(group, active_member_ids(db, group))
        if not user_id:
            continue
        due += 1

        if dry_run:
            logger.info(f"🧪 Would remind {user_id} in {group.get('name')}")
            continue

        try:
            create_notification(
                db, user_id, "turn_reminder",
                "Your turn is waiting",
                f"It's still your turn to share an album in {group.get('name')}.",
                group=group["id"],
            )
            db.groups.update_one(
                {"id": group["id"]},
                {"$set": {"last_reminder_for": turn_start, "updated_at": now_iso()}}
            )
            sent += 1
            logger.info(f"⏰ Reminded {user_id} in {group.get('name')}")
        except Exception as e:
            logger.error(f"❌ Failed to remind {user_id} in {group.get('name')}: {e}")

    logger.info(f"🎉 Turn reminders: {checked} groups checked, {due} due, {sent} sent")
    return {"dry_run": dry_run, "checked": checked, "due": due, "sent": sent}


async def run_reminder_loop(interval_seconds: int = REMINDER_INTERVAL_SECONDS):
    """Run ``send_turn_reminders`` forever on a fixed interval"""
    while True:
        try:
            await asyncio.to_thread(send_turn_reminders)
        except Exception as e:
            logger.error(f"❌ Turn reminder job failed: {e}")
        await asyncio.sleep(interval_seconds)


if __name__ == "__main__":
    import argparse

    logging.basicConfig(level=logging.INFO)

    parser = argparse.ArgumentParser(description="Send overdue turn reminders")
    parser.add_argument("--dry-run", action="store_true", help="Only log who would be reminded")
    args = parser.parse_args()

    send_turn_reminders(dry_run=args.dry_run)
