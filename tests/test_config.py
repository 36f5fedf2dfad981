"""Tests for gadget_mirror.config module.

Validates config file parsing, required-setting collection, size parsing,
systemd unit naming, and cross-field validation.
"""

from pathlib import Path

import pytest

from gadget_mirror.config import (
    DEFAULT_EXCLUDE,
    DestinationConfig,
    GadgetBackend,
    MirrorConfig,
    StorageType,
    Transport,
    VolumeConfig,
    config_from_settings,
    environment_overrides,
    load_config,
    mount_unit_name,
    parse_config_text,
    parse_size,
    systemd_escape_path,
)
from gadget_mirror.errors import ConfigInvalid

MINIMAL = {
    "STORAGE_TYPE": "local",
    "LOCAL_DISK_LABEL": "GADGETDATA",
    "DISK_SIZE": "32G",
    "DESTINATION_SHARE": "//nas.local/scans",
}


class TestParseSize:
    """Verify truncate-style size parsing."""

    def test_plain_bytes(self):
        assert parse_size("4096") == 4096

    def test_binary_units(self):
        assert parse_size("32G") == 32 * 1024 ** 3
        assert parse_size("512M") == 512 * 1024 ** 2
        assert parse_size("2GiB") == 2 * 1024 ** 3

    def test_decimal_units(self):
        assert parse_size("1KB") == 1000
        assert parse_size("2GB") == 2 * 1000 ** 3

    def test_lowercase(self):
        assert parse_size("8g") == 8 * 1024 ** 3

    def test_int_passthrough(self):
        assert parse_size(1024) == 1024

    @pytest.mark.parametrize("value", ["", "G", "12X", "1.5G", "-1G"])
    def test_invalid_raises(self, value):
        with pytest.raises(ValueError):
            parse_size(value)


class TestUnitNames:
    """Verify systemd path escaping."""

    def test_simple_path(self):
        assert systemd_escape_path("/mnt/backing") == "mnt-backing"

    def test_dash_is_escaped(self):
        assert mount_unit_name("/mnt/gadget-share") == "mnt-gadget\\x2dshare.mount"

    def test_root(self):
        assert systemd_escape_path("/") == "-"

    def test_redundant_slashes(self):
        assert systemd_escape_path("/mnt//share/") == "mnt-share"

    def test_leading_dot(self):
        assert systemd_escape_path("/.hidden") == "\\x2ehidden"


class TestParseConfigText:
    """Test the shell-style config file parser."""

    def test_basic(self):
        text = 'STORAGE_TYPE=nfs\nNFS_SERVER="10.0.0.5:/export/gadget"\n'
        settings = parse_config_text(text)
        assert settings == {"STORAGE_TYPE": "nfs", "NFS_SERVER": "10.0.0.5:/export/gadget"}

    def test_comments_blank_and_export(self):
        text = "# provisioned\n\nexport DISK_SIZE=8G  # image size\n"
        assert parse_config_text(text) == {"DISK_SIZE": "8G"}

    def test_quoted_value_with_spaces(self):
        settings = parse_config_text("EXCLUDE='._* \"Thumbs.db\"'\n")
        assert settings["EXCLUDE"] == '._* "Thumbs.db"'

    def test_secrets_are_dropped(self):
        text = "SMB_USERNAME=scanner\nSMB_PASSWORD=hunter2\nDISK_SIZE=8G\n"
        assert parse_config_text(text) == {"DISK_SIZE": "8G"}

    def test_malformed_lines_collected(self):
        with pytest.raises(ConfigInvalid) as exc_info:
            parse_config_text("GOOD=1\nnot an assignment\nBAD='unterminated\n")
        assert len(exc_info.value.problems) == 2
        assert exc_info.value.problems[0].startswith("line 2")


class TestConfigFromSettings:
    """Test building MirrorConfig from settings."""

    def test_minimal_defaults(self):
        config = config_from_settings(dict(MINIMAL))
        assert config.volume.storage_type == StorageType.LOCAL
        assert config.volume.disk_size == 32 * 1024 ** 3
        assert config.volume.image_path == Path("/mnt/gadget-backing/disk.img")
        assert config.volume.backing_unit == "mnt-gadget\\x2dbacking.mount"
        assert config.destination.transport == Transport.CIFS
        assert config.destination.unit == "mnt-gadget\\x2dshare.mount"
        assert config.gadget_backend == GadgetBackend.SYSTEMD
        assert config.exclude == DEFAULT_EXCLUDE
        assert config.min_stable_age == 10.0
        assert config.alarm_threshold == 3

    def test_missing_required_all_reported(self):
        with pytest.raises(ConfigInvalid) as exc_info:
            config_from_settings({})
        problems = " ".join(exc_info.value.problems)
        assert "STORAGE_TYPE" in problems
        assert "DISK_SIZE" in problems
        assert "DESTINATION_SHARE" in problems
        assert exc_info.value.recoverable is False

    def test_storage_requirements(self):
        settings = dict(MINIMAL, STORAGE_TYPE="nfs")
        with pytest.raises(ConfigInvalid, match="NFS_SERVER"):
            config_from_settings(settings)

    def test_malformed_values(self):
        settings = dict(MINIMAL, SYNC_INTERVAL="often", ALARM_THRESHOLD="many")
        with pytest.raises(ConfigInvalid) as exc_info:
            config_from_settings(settings)
        problems = " ".join(exc_info.value.problems)
        assert "SYNC_INTERVAL" in problems
        assert "ALARM_THRESHOLD" in problems

    def test_enum_values_case_insensitive(self):
        settings = dict(MINIMAL, STORAGE_TYPE="LOCAL", DESTINATION_TRANSPORT="NFS", GADGET_BACKEND="Modprobe")
        config = config_from_settings(settings)
        assert config.destination.transport == Transport.NFS
        assert config.gadget_backend == GadgetBackend.MODPROBE

    def test_overrides(self):
        settings = dict(
            MINIMAL,
            MIN_STABLE_AGE="30",
            MTIME_TOLERANCE="2",
            COPY_WORKERS="8",
            VERIFY_COPIES="yes",
            IMAGE_VIEW="false",
            EXCLUDE="'*.tmp' Thumbs.db",
            LOG_FORMAT="JSON",
        )
        config = config_from_settings(settings)
        assert config.min_stable_age == 30.0
        assert config.copy_workers == 8
        assert config.verify_copies is True
        assert config.volume.image_view is False
        assert config.exclude == ["*.tmp", "Thumbs.db"]
        assert config.log_format == "json"

    def test_tolerance_must_be_below_stability_window(self):
        settings = dict(MINIMAL, MIN_STABLE_AGE="2", MTIME_TOLERANCE="2")
        with pytest.raises(ConfigInvalid, match="MTIME_TOLERANCE"):
            config_from_settings(settings)


class TestLoadConfig:
    """Test loading from disk."""

    def test_load(self, tmp_path):
        path = tmp_path / "config"
        path.write_text("\n".join(f"{k}={v}" for k, v in MINIMAL.items()))
        config = load_config(path)
        assert config.destination.share == "//nas.local/scans"

    def test_overrides_take_precedence(self, tmp_path):
        path = tmp_path / "config"
        path.write_text("\n".join(f"{k}={v}" for k, v in MINIMAL.items()))
        config = load_config(path, overrides={"SYNC_INTERVAL": "15", "LOG_LEVEL": None})
        assert config.sync_interval == 15.0
        assert config.log_level == "INFO"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigInvalid, match="not found"):
            load_config(tmp_path / "absent")

    def test_environment_overrides(self):
        environ = {
            "GADGET_MIRROR_SYNC_INTERVAL": "15",
            "GADGET_MIRROR_SMB_PASSWORD": "hunter2",
            "GADGET_MIRROR_": "ignored",
            "SYNC_INTERVAL": "99",
        }
        assert environment_overrides(environ) == {"SYNC_INTERVAL": "15"}

    def test_environment_reaches_loaded_config(self, tmp_path, monkeypatch):
        path = tmp_path / "config"
        path.write_text("\n".join(f"{k}={v}" for k, v in MINIMAL.items()))
        monkeypatch.setenv("GADGET_MIRROR_MIN_STABLE_AGE", "30")
        config = load_config(path, overrides=environment_overrides())
        assert config.min_stable_age == 30.0


class TestDataclasses:
    """Test dataclass coercion."""

    def test_string_coercion(self, tmp_path):
        config = MirrorConfig(
            volume=VolumeConfig(storage_type="nfs", disk_size="1G", backing_mount=str(tmp_path), nfs_server="nas:/x"),
            destination=DestinationConfig(share="nas:/mirror", mount_point=str(tmp_path / "m"), transport="nfs"),
            gadget_backend="modprobe",
            state_dir=str(tmp_path / "state"),
        )
        assert isinstance(config.volume.backing_mount, Path)
        assert config.volume.storage_type == StorageType.NFS
        assert config.destination.transport == Transport.NFS
        assert isinstance(config.state_dir, Path)
        assert config.validate() == []

    def test_validate_collects_problems(self, sample_config):
        sample_config.copy_workers = 0
        sample_config.alarm_threshold = 0
        problems = sample_config.validate()
        assert len(problems) == 2
