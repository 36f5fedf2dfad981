"""Tests for gadget_mirror.reporting module.

Validates FailureReporter: severity mapping, the consecutive-failure
streak, alarm escalation and its persistence between invocations.
"""

import errno
import logging

import pytest

from gadget_mirror.reporting import FailureReporter, Severity, load_streak
from gadget_mirror.reporting.streak import load_last_pass
from gadget_mirror.sync.record import PassOutcome, PassRecord


def _record(outcome):
    r = PassRecord()
    if outcome == PassOutcome.SUCCESS:
        r.add_copy("a.dcm", 10)
        return r.finalize()
    if outcome == PassOutcome.FAILED:
        r.fail("a.dcm", "No space left on device", errno.ENOSPC)
        return r.finalize()
    if outcome == PassOutcome.PARTIAL:
        r.add_copy("a.dcm", 10)
        r.fail("b.dcm", "Input/output error", errno.EIO)
        return r.finalize()
    return r.finalize(outcome)


@pytest.fixture
def reporter(tmp_dirs):
    return FailureReporter(tmp_dirs["state"], alarm_threshold=3)


class TestSeverity:
    """Test outcome to severity mapping."""

    @pytest.mark.parametrize("outcome,severity", [
        (PassOutcome.SUCCESS, Severity.INFO),
        (PassOutcome.PARTIAL, Severity.WARNING),
        (PassOutcome.FAILED, Severity.WARNING),
        (PassOutcome.DEFERRED, Severity.WARNING),
        (PassOutcome.SKIPPED, Severity.INFO),
    ])
    def test_single_pass(self, reporter, outcome, severity):
        assert reporter.report(_record(outcome)).severity == severity

    def test_alarm_logs_critical(self):
        assert Severity.ALARM.log_level == logging.CRITICAL


class TestStreak:
    """Test the consecutive-failure streak and alarm."""

    def test_alarm_at_threshold(self, reporter):
        first = reporter.report(_record(PassOutcome.FAILED))
        second = reporter.report(_record(PassOutcome.FAILED))
        third = reporter.report(_record(PassOutcome.FAILED))

        assert (first.consecutive_failures, first.alarm_active) == (1, False)
        assert (second.consecutive_failures, second.alarm_active) == (2, False)
        assert third.severity == Severity.ALARM
        assert third.consecutive_failures == 3
        assert third.alarm_active is True

    def test_alarm_persists_between_invocations(self, tmp_dirs):
        for _ in range(3):
            FailureReporter(tmp_dirs["state"], alarm_threshold=3).report(_record(PassOutcome.FAILED))

        state = load_streak(tmp_dirs["state"])
        assert state.consecutive_failures == 3
        assert state.alarm is True
        assert state.alarm_since is not None

    def test_success_clears_alarm(self, reporter):
        for _ in range(3):
            reporter.report(_record(PassOutcome.FAILED))
        report = reporter.report(_record(PassOutcome.SUCCESS))
        assert report.consecutive_failures == 0
        assert report.alarm_active is False

    def test_partial_resets_streak(self, reporter):
        reporter.report(_record(PassOutcome.FAILED))
        reporter.report(_record(PassOutcome.FAILED))
        report = reporter.report(_record(PassOutcome.PARTIAL))
        assert report.consecutive_failures == 0

    @pytest.mark.parametrize("outcome", [PassOutcome.DEFERRED, PassOutcome.SKIPPED])
    def test_neutral_outcomes_keep_streak(self, reporter, outcome):
        reporter.report(_record(PassOutcome.FAILED))
        reporter.report(_record(PassOutcome.FAILED))
        report = reporter.report(_record(outcome))
        assert report.consecutive_failures == 2
        third = reporter.report(_record(PassOutcome.FAILED))
        assert third.alarm_active is True

    def test_reset(self, reporter, tmp_dirs):
        for _ in range(3):
            reporter.report(_record(PassOutcome.FAILED))
        assert reporter.reset() is True
        assert load_streak(tmp_dirs["state"]).alarm is False
        assert reporter.report(_record(PassOutcome.FAILED)).consecutive_failures == 1

    def test_in_memory_reporter(self):
        reporter = FailureReporter(alarm_threshold=2)
        reporter.report(_record(PassOutcome.FAILED))
        assert reporter.report(_record(PassOutcome.FAILED)).alarm_active is True
        assert reporter.status()["last_pass"] is None


class TestOutput:
    """Test what the reporter logs and persists."""

    def test_last_pass_saved(self, reporter, tmp_dirs):
        reporter.report(_record(PassOutcome.SUCCESS))
        last = load_last_pass(tmp_dirs["state"])
        assert last["outcome"] == "success"
        assert last["copied"] == ["a.dcm"]

    def test_log_carries_pass_record(self, reporter, caplog):
        with caplog.at_level(logging.INFO, logger="gadget_mirror"):
            reporter.report(_record(PassOutcome.SUCCESS))
        record = caplog.records[-1]
        assert record.levelno == logging.INFO
        assert record.pass_record["outcome"] == "success"
        assert record.severity == "info"

    def test_alarm_message(self, reporter, caplog):
        with caplog.at_level(logging.INFO, logger="gadget_mirror"):
            for _ in range(3):
                reporter.report(_record(PassOutcome.FAILED))
        record = caplog.records[-1]
        assert record.levelno == logging.CRITICAL
        assert record.getMessage().startswith("ALARM: 3 consecutive failed passes")

    def test_unfinalized_record_is_settled(self, reporter):
        report = reporter.report(PassRecord())
        assert report.outcome == PassOutcome.SUCCESS

    def test_status(self, reporter):
        reporter.report(_record(PassOutcome.DEFERRED))
        status = reporter.status()
        assert status["alarm_threshold"] == 3
        assert status["streak"]["last_outcome"] == "deferred"
        assert status["last_pass"]["outcome"] == "deferred"
