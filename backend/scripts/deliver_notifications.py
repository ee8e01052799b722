"""One-shot notification delivery pass against the backend DB.

Usage: python scripts/deliver_notifications.py [--skip-reminders]

Queues session reminders for sessions starting within the next hour,
then "delivers" every due scheduled notification (logged to stdout; plug
push/email/SMS in here) and stamps them as sent. Run it from cron or a
platform timer; it does not loop.
"""
import sys
import argparse
import json
import pathlib
# Ensure `backend/` is on sys.path so `studybuddy` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from studybuddy.database import engine, create_db_and_tables
from studybuddy import services


def main(skip_reminders: bool = False):
    """Run one scheduling + delivery pass and print a summary."""
    create_db_and_tables()
    with Session(engine) as session:
        svc = services.NotificationService(session)
        if not skip_reminders:
            queued = svc.send_session_reminders()
            print(f'Queued {queued} session reminders')
        due = svc.list_pending()
        if not due:
            print('No scheduled notifications due')
            return
        for n in due:
            print(f'[deliver] -> user:{n["user_id"]} type:{n["notification_type"]} '
                  f'title:"{n["title"]}" meta:{json.dumps(n["metadata"])}')
        marked = svc.mark_sent([n['notification_id'] for n in due])
        print(f'Marked {marked} scheduled notifications as sent')


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--skip-reminders', action='store_true', help='Only deliver; do not queue session reminders')
    args = parser.parse_args()
    main(skip_reminders=args.skip_reminders)
