"""Tests for gadget_mirror.utils logging, credentials and system helpers."""

import json
import logging
import sys
from unittest import mock

import pytest

from gadget_mirror.sync.record import PassRecord
from gadget_mirror.utils import system
from gadget_mirror.utils.credentials import CredentialRef
from gadget_mirror.utils.logging import JsonFormatter, TextFormatter, configure_root_logger


def _log_record(msg="Pass success", **extra):
    record = logging.LogRecord("gadget_mirror.test", logging.WARNING, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    """Test structured log output."""

    def test_basic_fields(self):
        data = json.loads(JsonFormatter().format(_log_record()))
        assert data["level"] == "WARNING"
        assert data["logger"] == "gadget_mirror.test"
        assert data["message"] == "Pass success"
        assert data["timestamp"].endswith("+00:00")
        assert "pass" not in data

    def test_pass_record_is_flattened(self):
        pass_record = PassRecord(note="share full")
        pass_record.add_copy("a.dcm", 10)
        pass_record.fail("b.dcm", "No space left on device", 28)
        pass_record.finalize()
        record = _log_record(pass_record=pass_record.to_dict(), severity="warning")

        data = json.loads(JsonFormatter().format(record))

        assert data["outcome"] == "partial"
        assert data["files_copied"] == 1
        assert data["bytes_copied"] == 10
        assert data["files_failed"] == 1
        assert data["severity"] == "warning"
        assert data["pass"]["failures"][0]["path"] == "b.dcm"
        assert "pass_record" not in data
        assert "lineno" not in data

    def test_unserializable_extra(self):
        data = json.loads(JsonFormatter().format(_log_record(path=object())))
        assert data["path"].startswith("<object")

    def test_exception(self):
        try:
            raise OSError("share gone")
        except OSError:
            record = logging.LogRecord("t", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
        data = json.loads(JsonFormatter().format(record))
        assert "share gone" in data["exception"]


class TestTextFormatter:
    """Test the journal-friendly text output."""

    def test_plain_message(self):
        line = TextFormatter().format(_log_record("Starting gadget stage"))
        assert line.endswith("| WARNING  | gadget_mirror.test | Starting gadget stage")

    def test_pass_report_is_tagged(self):
        record = _log_record(
            "Pass deferred: 0 copied",
            pass_record={"outcome": "deferred"},
            severity="warning",
        )
        assert TextFormatter().format(record).endswith("[warning outcome=deferred]")


class TestConfigureRootLogger:
    """Test root logger setup."""

    @pytest.fixture(autouse=True)
    def restore_root(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        for handler in root.handlers:
            if handler not in handlers:
                handler.close()
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_level_and_file(self, tmp_path):
        log_file = tmp_path / "logs" / "mirror.log"
        configure_root_logger("debug", json_output=True, log_file=log_file)
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert logging.getLogger("fasteners").level == logging.INFO
        logging.getLogger("gadget_mirror.test").info("hello", extra={"severity": "info"})
        for handler in root.handlers:
            handler.flush()
        line = log_file.read_text().strip().splitlines()[-1]
        assert json.loads(line)["severity"] == "info"

    def test_unknown_level_defaults_to_info(self):
        configure_root_logger("chatty")
        assert logging.getLogger().level == logging.INFO


class TestCredentialRef:
    """Test credential reference handling."""

    def test_load(self, tmp_path):
        path = tmp_path / "creds"
        path.write_text("username=scanner\npassword=hunter2\ndomain=CLINIC\n")
        cred = CredentialRef(path).load()
        assert cred.username == "scanner"
        assert cred.domain == "CLINIC"

    def test_password_never_rendered(self, tmp_path):
        path = tmp_path / "creds"
        path.write_text("username=scanner\npassword=hunter2\n")
        cred = CredentialRef(path).load()
        assert "hunter2" not in repr(cred)
        assert "hunter2" not in str(cred)

    def test_missing_username(self, tmp_path):
        path = tmp_path / "creds"
        path.write_text("password=hunter2\n")
        with pytest.raises(ValueError):
            CredentialRef(path).load()

    def test_loose_permissions_are_a_warning(self, tmp_path):
        path = tmp_path / "creds"
        path.write_text("username=scanner\npassword=hunter2\n")
        path.chmod(0o644)
        ref = CredentialRef(path)
        assert ref.check() == []
        warning = ref.permission_warning()
        assert "644" in warning
        assert "hunter2" not in warning

    def test_check_ok(self, tmp_path):
        path = tmp_path / "creds"
        path.write_text("username=scanner\n")
        path.chmod(0o600)
        assert CredentialRef(path).check() == []
        assert CredentialRef(path).permission_warning() is None

    def test_check_missing(self, tmp_path):
        assert "not found" in CredentialRef(tmp_path / "absent").check()[0]


class TestSystemHelpers:
    """Test command execution and inspection helpers."""

    def test_run_command(self):
        code, stdout, _ = system.run_command([sys.executable, "-c", "print('ok')"])
        assert code == 0
        assert stdout.strip() == "ok"

    def test_missing_binary(self):
        code, _, stderr = system.run_command(["definitely-not-a-command-gm"])
        assert code == -1
        assert "not found" in stderr

    def test_timeout(self):
        code, _, stderr = system.run_command(
            [sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2
        )
        assert code == -2
        assert "timed out" in stderr

    def test_missing_commands(self):
        assert system.missing_commands(["definitely-not-a-command-gm"]) == ["definitely-not-a-command-gm"]

    def test_is_mountpoint_missing_path(self, tmp_path):
        assert system.is_mountpoint(tmp_path / "absent") is False

    def test_is_mountpoint_uses_command(self, tmp_path):
        with mock.patch.object(system.shutil, "which", return_value="/usr/bin/mountpoint"), \
                mock.patch.object(system, "run_command", return_value=(0, "", "")) as run:
            assert system.is_mountpoint(tmp_path) is True
        run.assert_called_once_with(["mountpoint", "-q", str(tmp_path)], timeout=10)

    def test_is_mountpoint_falls_back_to_proc(self, tmp_path):
        with mock.patch.object(system.shutil, "which", return_value=None):
            assert system.is_mountpoint(tmp_path) is False

    def test_disk_usage(self, tmp_path):
        usage = system.get_disk_usage(tmp_path)
        assert usage.total_bytes > 0
        assert 0 <= usage.percent_used <= 100

    def test_disk_usage_unreachable(self, tmp_path):
        assert system.get_disk_usage(tmp_path / "absent") is None
