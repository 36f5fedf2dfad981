"""Shared pytest fixtures for Gadget Mirror tests.

Provides temp directories, config objects, fake mount stages and a fake
clock for testing components without touching real mounts or systemd.
"""

import os
import time
from pathlib import Path

import pytest

from gadget_mirror.config import (
    DestinationConfig,
    MirrorConfig,
    StorageType,
    Transport,
    VolumeConfig,
)
from gadget_mirror.stages import MountChain
from gadget_mirror.stages.base import MountStage, StageResult
from gadget_mirror.state import ChainState, DestinationMount, MountState, Volume


class FakeStage(MountStage):
    """In-memory mount stage recording every start/stop request."""

    def __init__(self, name, events, settle=True, accept=True):
        super().__init__()
        self.name = name
        self.events = events
        self.active = False
        self.settle = settle
        self.accept = accept

    def is_active(self):
        return self.active

    def activate(self):
        self.events.append(("start", self.name))
        if not self.accept:
            return StageResult(False, "unit refused to start")
        if self.settle:
            self.active = True
        return StageResult(True, "start queued")

    def deactivate(self):
        self.events.append(("stop", self.name))
        if not self.accept:
            return StageResult(False, "unit refused to stop")
        if self.settle:
            self.active = False
        return StageResult(True, "stop queued")

    def diagnose(self):
        return f"{self.name} still settling"


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


@pytest.fixture
def tmp_dirs(tmp_path):
    """Create volume, destination and state directories for testing."""
    volume = tmp_path / "volume"
    destination = tmp_path / "share"
    state = tmp_path / "state"
    volume.mkdir()
    destination.mkdir()
    state.mkdir()
    return {"volume": volume, "destination": destination, "state": state, "root": tmp_path}


@pytest.fixture
def sample_config(tmp_dirs):
    """Create a sample MirrorConfig pointing at temp directories."""
    root = tmp_dirs["root"]
    return MirrorConfig(
        volume=VolumeConfig(
            storage_type=StorageType.LOCAL,
            disk_size="1G",
            backing_mount=root / "backing",
            volume_root=tmp_dirs["volume"],
            image_view=False,
            local_disk_label="GADGETDATA",
        ),
        destination=DestinationConfig(
            share="//nas.local/scans",
            mount_point=tmp_dirs["destination"],
            transport=Transport.CIFS,
            credentials_file=root / "mountcreds",
        ),
        min_stable_age=10.0,
        mtime_tolerance=1.0,
        copy_workers=2,
        state_dir=tmp_dirs["state"],
        lock_file=root / "run" / "pass.lock",
    )


@pytest.fixture
def ready_state(sample_config):
    """ChainState with the volume exposed and the share mounted."""
    return ChainState(
        volume=Volume(
            path=sample_config.volume.image_path,
            declared_size=sample_config.volume.disk_size,
            filesystem="exfat",
            mount_state=MountState.EXPOSED_TO_HOST,
        ),
        destination=DestinationMount(
            path=sample_config.destination.mount_point,
            transport=Transport.CIFS,
            credential_ref=str(sample_config.destination.credentials_file),
            mount_state=MountState.MOUNTED,
        ),
    )


@pytest.fixture
def write_file():
    """Write a file and backdate its mtime by ``age`` seconds."""

    def _write(path: Path, content: bytes = b"data", age: float = 60.0) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        mtime = time.time() - age
        os.utime(path, (mtime, mtime))
        return path

    return _write


@pytest.fixture
def events():
    """Shared start/stop log for fake stages."""
    return []


@pytest.fixture
def fake_chain(events):
    """A mount chain of settling fake stages."""
    return MountChain(
        backing=FakeStage("backing", events),
        gadget=FakeStage("gadget", events),
        destination=FakeStage("destination", events),
    )


@pytest.fixture
def fake_clock():
    return FakeClock()
