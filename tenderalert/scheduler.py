"""
Scheduler for automated scraping, subscription upkeep and notifications.
Runs the daily scrape, the subscription expiry sweep, smart matching and
saved-tender deadline reminders from one background thread.
"""

import os
import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Optional

from .automation import run_automated_scraper
from .dates import utc_now
from .matching import run_smart_matching
from .notifications import NotificationService, send_deadline_reminders
from .subscriptions import check_subscription_expiry

logger = logging.getLogger(__name__)

# All times are UTC
SCHEDULE_CONFIG = {
    'scrape_time': os.environ.get('SCRAPE_TIME', '06:00'),            # cron 0 6 * * *
    'expiry_check_time': os.environ.get('EXPIRY_CHECK_TIME', '00:30'),
    'reminder_time': os.environ.get('REMINDER_TIME', '08:00'),
    'matching_interval_hours': 6,
    'deadline_reminder_days': 3,
}

TASKS = ('scrape', 'expiry', 'matching', 'reminders')


def _is_due_daily(now: datetime, last_run: Optional[datetime], at: str) -> bool:
    """True once per day, on the first tick at or after the HH:MM time."""
    if last_run and last_run.date() == now.date():
        return False
    hour, minute = map(int, at.split(':'))
    return (now.hour, now.minute) >= (hour, minute)


class SchedulerService:
    """Background scheduler for automated tasks."""

    def __init__(self, notification_service: NotificationService = None):
        self.running = False
        self.thread: Optional[threading.Thread] = None
        self.last_scrape: Optional[datetime] = None
        self.last_expiry_check: Optional[datetime] = None
        self.last_matching: Optional[datetime] = None
        self.last_reminders: Optional[datetime] = None
        self.notification_service = notification_service or NotificationService()

    def start(self):
        """Start the scheduler in a background thread."""
        if self.running:
            logger.warning("Scheduler is already running")
            return

        self.running = True
        self.thread = threading.Thread(target=self._run_loop, daemon=True)
        self.thread.start()
        logger.info("Scheduler started")

    def stop(self):
        """Stop the scheduler."""
        self.running = False
        if self.thread:
            self.thread.join(timeout=5)
        logger.info("Scheduler stopped")

    def tick(self, now: datetime = None):
        """Run whatever is due at the given time."""
        now = now or utc_now()

        if self._should_run_scrape(now):
            self._run_scrape(now)

        if self._should_check_expiry(now):
            self._check_expiry(now)

        if self._should_run_matching(now):
            self._run_matching(now)

        if self._should_send_reminders(now):
            self._send_reminders(now)

    def _run_loop(self):
        """Main scheduler loop."""
        while self.running:
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Scheduler error: {e}")
            # Sleep for 1 minute before next check
            time.sleep(60)

    def _should_run_scrape(self, now: datetime) -> bool:
        return _is_due_daily(now, self.last_scrape, SCHEDULE_CONFIG['scrape_time'])

    def _should_check_expiry(self, now: datetime) -> bool:
        return _is_due_daily(now, self.last_expiry_check, SCHEDULE_CONFIG['expiry_check_time'])

    def _should_send_reminders(self, now: datetime) -> bool:
        return _is_due_daily(now, self.last_reminders, SCHEDULE_CONFIG['reminder_time'])

    def _should_run_matching(self, now: datetime) -> bool:
        if self.last_matching is None:
            return True
        interval = timedelta(hours=SCHEDULE_CONFIG['matching_interval_hours'])
        return now - self.last_matching >= interval

    def _run_scrape(self, now: datetime = None):
        """Daily tender scrape through the scraper endpoint."""
        logger.info("Daily tender scraping triggered by scheduler...")
        self.last_scrape = now or utc_now()
        try:
            run_automated_scraper()
        except Exception as e:
            logger.error(f"Scheduled scraping failed: {e}")

    def _check_expiry(self, now: datetime = None):
        logger.info("Checking subscription expiry...")
        self.last_expiry_check = now or utc_now()
        try:
            check_subscription_expiry()
        except Exception as e:
            logger.error(f"Subscription expiry check failed: {e}")

    def _run_matching(self, now: datetime = None):
        logger.info("Running smart matching for all users...")
        self.last_matching = now or utc_now()
        try:
            run_smart_matching(notifier=self.notification_service)
        except Exception as e:
            logger.error(f"Smart matching failed: {e}")

    def _send_reminders(self, now: datetime = None):
        logger.info("Sending saved-tender deadline reminders...")
        self.last_reminders = now or utc_now()
        try:
            send_deadline_reminders(days=SCHEDULE_CONFIG['deadline_reminder_days'],
                                    service=self.notification_service)
        except Exception as e:
            logger.error(f"Deadline reminders failed: {e}")

    def run_now(self, task: str = 'all'):
        """Manually trigger a scheduled task."""
        if task != 'all' and task not in TASKS:
            raise ValueError(f'Unknown task: {task}')

        if task in ('all', 'scrape'):
            self._run_scrape()

        if task in ('all', 'expiry'):
            self._check_expiry()

        if task in ('all', 'matching'):
            self._run_matching()

        if task in ('all', 'reminders'):
            self._send_reminders()


# Global scheduler instance
_scheduler: Optional[SchedulerService] = None


def get_scheduler() -> SchedulerService:
    """Get or create the global scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = SchedulerService()
    return _scheduler


def start_scheduler() -> SchedulerService:
    """Start the global scheduler."""
    scheduler = get_scheduler()
    scheduler.start()
    return scheduler


def stop_scheduler():
    """Stop the global scheduler."""
    global _scheduler
    if _scheduler:
        _scheduler.stop()
        _scheduler = None
