#!/usr/bin/env python
"""
Run the TenderAlert background scheduler.
Keeps the daily scrape, subscription expiry check, smart matching and
deadline reminders going until interrupted.
"""

import time
import logging

from tenderalert import database as db
from tenderalert.scheduler import start_scheduler, stop_scheduler, SCHEDULE_CONFIG

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main():
    db.init_database()
    start_scheduler()

    print("=" * 70)
    print("TENDERALERT SCHEDULER RUNNING")
    print(f"Daily scrape at {SCHEDULE_CONFIG['scrape_time']} UTC")
    print(f"Subscription expiry check at {SCHEDULE_CONFIG['expiry_check_time']} UTC")
    print(f"Deadline reminders at {SCHEDULE_CONFIG['reminder_time']} UTC")
    print(f"Smart matching every {SCHEDULE_CONFIG['matching_interval_hours']} hours")
    print("=" * 70)

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Shutting down scheduler...")
    finally:
        stop_scheduler()


if __name__ == '__main__':
    main()
