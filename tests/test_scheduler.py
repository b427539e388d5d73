"""
Tests for the background scheduler.
"""

from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from tenderalert import scheduler as scheduler_module
from tenderalert.scheduler import SchedulerService, _is_due_daily


@pytest.fixture
def schedule(monkeypatch):
    monkeypatch.setitem(scheduler_module.SCHEDULE_CONFIG, 'scrape_time', '06:00')
    monkeypatch.setitem(scheduler_module.SCHEDULE_CONFIG, 'expiry_check_time', '00:30')
    monkeypatch.setitem(scheduler_module.SCHEDULE_CONFIG, 'reminder_time', '08:00')
    monkeypatch.setitem(scheduler_module.SCHEDULE_CONFIG, 'matching_interval_hours', 6)


@pytest.fixture
def tasks():
    with patch.object(scheduler_module, 'run_automated_scraper') as scrape, \
            patch.object(scheduler_module, 'check_subscription_expiry') as expiry, \
            patch.object(scheduler_module, 'run_smart_matching') as matching, \
            patch.object(scheduler_module, 'send_deadline_reminders') as reminders:
        yield {'scrape': scrape, 'expiry': expiry, 'matching': matching, 'reminders': reminders}


class TestDailyWindow:
    def test_due_after_time(self):
        assert _is_due_daily(datetime(2030, 1, 1, 6, 0), None, '06:00')
        assert _is_due_daily(datetime(2030, 1, 1, 23, 0), None, '06:00')

    def test_not_due_before_time(self):
        assert not _is_due_daily(datetime(2030, 1, 1, 5, 59), None, '06:00')

    def test_once_per_day(self):
        assert not _is_due_daily(datetime(2030, 1, 1, 12, 0), datetime(2030, 1, 1, 6, 0), '06:00')
        assert _is_due_daily(datetime(2030, 1, 2, 6, 1), datetime(2030, 1, 1, 6, 0), '06:00')


class TestTick:
    def test_runs_due_tasks_once(self, schedule, tasks):
        service = SchedulerService(notification_service=MagicMock())

        service.tick(datetime(2030, 1, 1, 9, 0))
        service.tick(datetime(2030, 1, 1, 10, 0))

        for task in tasks.values():
            task.assert_called_once()
        tasks['reminders'].assert_called_once_with(days=3, service=service.notification_service)

    def test_matching_interval(self, schedule, tasks):
        service = SchedulerService(notification_service=MagicMock())
        service.tick(datetime(2030, 1, 1, 9, 0))
        service.tick(datetime(2030, 1, 1, 15, 0))
        assert tasks['matching'].call_count == 2

    def test_early_morning(self, schedule, tasks):
        service = SchedulerService(notification_service=MagicMock())
        service.tick(datetime(2030, 1, 1, 1, 0))
        tasks['scrape'].assert_not_called()
        tasks['reminders'].assert_not_called()
        tasks['expiry'].assert_called_once()

    def test_task_failure_does_not_stop_others(self, schedule, tasks):
        tasks['scrape'].side_effect = RuntimeError('portal down')
        service = SchedulerService(notification_service=MagicMock())

        service.tick(datetime(2030, 1, 1, 9, 0))

        assert service.last_scrape == datetime(2030, 1, 1, 9, 0)
        tasks['expiry'].assert_called_once()


class TestRunNow:
    def test_single_task(self, tasks):
        SchedulerService(notification_service=MagicMock()).run_now('expiry')
        tasks['expiry'].assert_called_once()
        tasks['scrape'].assert_not_called()

    def test_all_tasks(self, tasks):
        SchedulerService(notification_service=MagicMock()).run_now()
        for task in tasks.values():
            task.assert_called_once()

    def test_unknown_task(self):
        with pytest.raises(ValueError, match='Unknown task'):
            SchedulerService(notification_service=MagicMock()).run_now('backup')


class TestGlobalScheduler:
    def test_start_and_stop(self):
        with patch.object(SchedulerService, 'start') as start, patch.object(SchedulerService, 'stop') as stop:
            service = scheduler_module.start_scheduler()
            assert scheduler_module.get_scheduler() is service
            scheduler_module.stop_scheduler()

        start.assert_called_once()
        stop.assert_called_once()
        assert scheduler_module._scheduler is None
