from datetime import datetime, timedelta

from takeout import tasks
from takeout.celery_worker import celery_app
from takeout.sweeper import SweepResult, cancel_stuck_deliveries, cancel_unpaid_orders


class TestBeatSchedule:
    def test_sweeps_are_scheduled(self):
        schedule = celery_app.conf.beat_schedule

        assert schedule["cancel-unpaid-orders"]["task"] == "takeout.tasks.sweep_payment_timeouts"
        assert schedule["cancel-stuck-deliveries"]["task"] == "takeout.tasks.sweep_stuck_deliveries"

    def test_stuck_delivery_runs_daily_at_one(self):
        cron = celery_app.conf.beat_schedule["cancel-stuck-deliveries"]["schedule"]

        assert cron.hour == {1}
        assert cron.minute == {0}

    def test_payment_sweep_runs_every_minute(self):
        cron = celery_app.conf.beat_schedule["cancel-unpaid-orders"]["schedule"]
        assert len(cron.minute) == 60


class TestSweepTasks:
    def test_payment_task_runs_sweep_with_configured_grace(self, monkeypatch):
        calls = []

        async def fake_run_sweep(sweep, grace, now):
            calls.append((sweep, grace))
            return SweepResult(rule="payment-timeout", cutoff=now - grace, scanned=3, transitioned=2)

        monkeypatch.setattr(tasks, "run_sweep", fake_run_sweep)

        summary = tasks.sweep_payment_timeouts.apply().get()

        assert calls == [(cancel_unpaid_orders, timedelta(minutes=15))]
        assert summary["transitioned"] == 2
        assert summary["scanned"] == 3
        assert "processing_time_seconds" in summary

    def test_delivery_task_runs_sweep_with_configured_grace(self, monkeypatch):
        calls = []

        async def fake_run_sweep(sweep, grace, now):
            calls.append((sweep, grace))
            return SweepResult(rule="stuck-delivery", cutoff=datetime(2024, 5, 20))

        monkeypatch.setattr(tasks, "run_sweep", fake_run_sweep)

        summary = tasks.sweep_stuck_deliveries.apply().get()

        assert calls == [(cancel_stuck_deliveries, timedelta(minutes=60))]
        assert summary["rule"] == "stuck-delivery"

    def test_health_check(self):
        assert tasks.health_check.apply().get()["status"] == "healthy"
