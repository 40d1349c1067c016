#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Scheduler Tests

Tests for cron parsing and the PopulationScheduler job lifecycle.
"""

import threading
from datetime import datetime
from unittest.mock import MagicMock

import pytest
from pytz import utc

from lead_coverage.errors import ConfigurationError
from lead_coverage.orchestration.background import BackgroundTaskPool
from lead_coverage.scheduler.scheduler import JobState, PopulationScheduler, parse_cron_expression

# A Monday
MONDAY = datetime(2024, 1, 1, 0, 0, 0, tzinfo=utc)


def next_fire(expression, now=MONDAY):
    return parse_cron_expression(expression).get_next_fire_time(None, now)


class TestParseCronExpression:
    """Tests for five- and six-field cron parsing."""

    def test_daily(self):
        assert next_fire("0 2 * * *") == datetime(2024, 1, 1, 2, 0, 0, tzinfo=utc)

    def test_sunday_is_zero(self):
        assert next_fire("0 3 * * 0") == datetime(2024, 1, 7, 3, 0, 0, tzinfo=utc)

    def test_sunday_is_seven(self):
        assert next_fire("0 3 * * 7") == datetime(2024, 1, 7, 3, 0, 0, tzinfo=utc)

    def test_weekday_range(self):
        # Saturday 2024-01-06 -> next weekday fire is Monday
        saturday = datetime(2024, 1, 6, 12, 0, 0, tzinfo=utc)
        assert next_fire("0 9 * * 1-5", saturday) == datetime(2024, 1, 8, 9, 0, 0, tzinfo=utc)

    def test_wrapping_weekday_range(self):
        # fri-mon; from Tuesday the next fire is Friday
        tuesday = datetime(2024, 1, 2, 12, 0, 0, tzinfo=utc)
        assert next_fire("0 9 * * 5-1", tuesday) == datetime(2024, 1, 5, 9, 0, 0, tzinfo=utc)
        sunday = datetime(2024, 1, 7, 12, 0, 0, tzinfo=utc)
        assert next_fire("0 9 * * 5-1", sunday) == datetime(2024, 1, 8, 9, 0, 0, tzinfo=utc)

    def test_six_fields_seconds_first(self):
        assert next_fire("30 */15 * * * *") == datetime(2024, 1, 1, 0, 0, 30, tzinfo=utc)

    def test_question_mark_day(self):
        assert next_fire("0 4 ? * *") == datetime(2024, 1, 1, 4, 0, 0, tzinfo=utc)

    def test_descriptor(self):
        assert next_fire("@weekly") == datetime(2024, 1, 7, 0, 0, 0, tzinfo=utc)

    def fire_days(self, expression, count=7):
        trigger = parse_cron_expression(expression)
        sunday = datetime(2024, 1, 7, 0, 0, 0, tzinfo=utc)
        fires, previous, now = [], None, sunday
        for _ in range(count):
            previous = trigger.get_next_fire_time(previous, now)
            fires.append(previous.strftime("%a"))
            now = previous
        return set(fires)

    def test_stepped_weekdays_follow_cron_numbering(self):
        assert self.fire_days("0 0 * * */2") == {"Sun", "Tue", "Thu", "Sat"}

    def test_stepped_weekday_range(self):
        assert self.fire_days("0 9 * * 1-5/2") == {"Mon", "Wed", "Fri"}
        assert self.fire_days("0 9 * * 0-6/3") == {"Sun", "Wed", "Sat"}

    @pytest.mark.parametrize("expression", [
        "",
        "   ",
        "every day",
        "0 2 * *",
        "0 0 2 * * * *",
        "61 * * * *",
        "0 25 * * *",
        "0 2 * * 9",
        "0 2 * * */0",
        "0 2 * * 5-1/2",
    ])
    def test_invalid(self, expression):
        with pytest.raises(ConfigurationError):
            parse_cron_expression(expression)


@pytest.fixture
def orchestrator():
    return MagicMock()


@pytest.fixture
def scheduler(orchestrator, app_config):
    population_scheduler = PopulationScheduler(orchestrator, app_config)
    yield population_scheduler
    if population_scheduler.running:
        population_scheduler.stop(wait=False)


class TestSetup:
    """Tests for job registration."""

    def test_registers_three_jobs(self, scheduler):
        scheduler.setup_jobs()

        assert sorted(job.id for job in scheduler.scheduler.get_jobs()) == [
            "low_data_population", "missing_population", "stats_report"
        ]

    def test_invalid_cron_is_fatal(self, orchestrator, app_config):
        app_config.missing_job.cron = "every sunday"
        population_scheduler = PopulationScheduler(orchestrator, app_config)

        with pytest.raises(ConfigurationError) as excinfo:
            population_scheduler.start()

        assert any("missing_population" in error for error in excinfo.value.errors)
        assert population_scheduler.scheduler is None
        assert not population_scheduler.running

    def test_invalid_parameters_are_fatal(self, orchestrator, app_config):
        app_config.low_data_job.max_concurrent = 0

        with pytest.raises(ConfigurationError, match="max_concurrent"):
            PopulationScheduler(orchestrator, app_config).setup_jobs()

    def test_unknown_timezone(self, orchestrator, app_config):
        app_config.scheduler_timezone = "Mars/Olympus_Mons"

        with pytest.raises(ConfigurationError, match="timezone"):
            PopulationScheduler(orchestrator, app_config).setup_jobs()


class TestExecution:
    """Tests for running jobs."""

    def test_run_job_now_dispatches(self, scheduler, orchestrator, app_config):
        scheduler.run_job_now("low_data_population")
        scheduler.run_job_now("missing_population")
        scheduler.run_job_now("stats_report")

        low_job, low_deadline = orchestrator.populate_low_data.call_args.args
        assert low_job is app_config.low_data_job
        assert low_deadline.timeout_seconds == app_config.low_data_job.timeout_seconds
        orchestrator.populate_missing.assert_called_once()
        orchestrator.report_stats.assert_called_once()
        assert scheduler.stats["runs_completed"] == 3

    def test_each_run_gets_fresh_deadline(self, scheduler, orchestrator):
        scheduler.run_job_now("stats_report")
        scheduler.run_job_now("stats_report")

        first, second = [call.args[0] for call in orchestrator.report_stats.call_args_list]
        assert first is not second

    def test_overlapping_run_is_skipped(self, scheduler, orchestrator):
        entered = threading.Event()
        release = threading.Event()

        def slow_run(job, deadline):
            entered.set()
            release.wait(5)

        orchestrator.populate_low_data.side_effect = slow_run
        worker = threading.Thread(target=scheduler.run_job_now, args=("low_data_population",))
        worker.start()
        try:
            assert entered.wait(5)
            assert scheduler.job_state("low_data_population") == JobState.RUNNING

            assert scheduler.run_job_now("low_data_population") is None
            assert scheduler.stats["runs_skipped"] == 1
            assert orchestrator.populate_low_data.call_count == 1
        finally:
            release.set()
            worker.join(5)

        assert scheduler.job_state("low_data_population") == JobState.IDLE

    def test_failure_is_recorded_and_raised(self, scheduler, orchestrator):
        orchestrator.populate_missing.side_effect = RuntimeError("store down")

        with pytest.raises(RuntimeError):
            scheduler.run_job_now("missing_population")

        assert scheduler.stats["runs_failed"] == 1
        assert scheduler.stats["last_run"]["missing_population"]["status"] == "failed"
        assert scheduler.job_state("missing_population") == JobState.IDLE

    def test_unknown_job(self, scheduler):
        with pytest.raises(KeyError):
            scheduler.run_job_now("nope")
        with pytest.raises(KeyError):
            scheduler.job_state("nope")

    def test_trigger_job_async(self, orchestrator, app_config):
        orchestrator.report_stats.return_value = "summary"
        pool = BackgroundTaskPool(max_workers=1, max_queued=1)
        population_scheduler = PopulationScheduler(orchestrator, app_config, background=pool)

        future = population_scheduler.trigger_job_async("stats_report")

        assert future.result(timeout=5) == "summary"
        pool.shutdown()


class TestLifecycle:
    """Tests for start/stop semantics."""

    def test_start_and_stop(self, scheduler):
        scheduler.start()
        scheduler.start()

        assert scheduler.running
        status = scheduler.get_scheduler_status()
        assert status["scheduler_status"] == "running"
        assert all(job["next_run"] for job in status["jobs"])

        scheduler.stop()
        scheduler.stop()

        assert not scheduler.running
        assert scheduler.get_scheduler_status()["scheduler_status"] == "stopped"

    def test_stop_before_start(self, scheduler):
        with pytest.raises(RuntimeError):
            scheduler.stop()

    def test_no_restart_after_stop(self, scheduler):
        scheduler.start()
        scheduler.stop()

        with pytest.raises(RuntimeError):
            scheduler.start()

    def test_stop_can_cancel_running_jobs(self, scheduler, orchestrator):
        entered = threading.Event()
        seen = {}

        def slow_run(job, deadline):
            seen["deadline"] = deadline
            entered.set()
            deadline.wait(5)

        orchestrator.populate_low_data.side_effect = slow_run
        scheduler.start()
        worker = threading.Thread(target=scheduler.run_job_now, args=("low_data_population",))
        worker.start()
        assert entered.wait(5)

        scheduler.stop(wait=True, cancel_running=True)
        worker.join(5)

        assert seen["deadline"].cancelled
        assert seen["deadline"].describe() == "scheduler stopping"

    def test_stop_leaves_running_jobs_alone_by_default(self, scheduler, orchestrator):
        entered = threading.Event()
        release = threading.Event()
        seen = {}

        def slow_run(job, deadline):
            seen["deadline"] = deadline
            entered.set()
            release.wait(5)

        orchestrator.populate_low_data.side_effect = slow_run
        scheduler.start()
        worker = threading.Thread(target=scheduler.run_job_now, args=("low_data_population",))
        worker.start()
        assert entered.wait(5)

        scheduler.stop(wait=False)
        assert not seen["deadline"].cancelled

        release.set()
        worker.join(5)
