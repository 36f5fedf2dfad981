#!/usr/bin/env python3
"""Basic usage example for Gadget Mirror.

This example demonstrates, without touching real mounts:
1. Running a reconciliation pass from a volume directory to a share directory
2. The stability window holding back a file the host is still writing
3. Re-copying a file the host rewrote
4. The destination only growing when files disappear from the volume
5. The failure reporter escalating to an alarm

Run this example:
    python basic_usage.py
"""

import os
import tempfile
import time
from pathlib import Path

from gadget_mirror import FailureReporter, PassOutcome, PassRecord, SyncEngine


def write(path: Path, content: bytes, age: float) -> None:
    """Write a file and pretend the host finished it ``age`` seconds ago."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    mtime = time.time() - age
    os.utime(path, (mtime, mtime))


def main():
    with tempfile.TemporaryDirectory() as temp_dir:
        temp_path = Path(temp_dir)

        # What the host writes through the gadget
        volume = temp_path / "volume"
        # The mounted destination share
        share = temp_path / "share"
        volume.mkdir()
        share.mkdir()

        engine = SyncEngine(min_stable_age=10.0)
        reporter = FailureReporter(alarm_threshold=3)

        print("=" * 60)
        print("Gadget Mirror - Basic Usage Example")
        print("=" * 60)

        # ---------------------------------------------------------------------
        # Step 1: First pass copies finished files
        # ---------------------------------------------------------------------
        print("\n[1] Host wrote two scans a minute ago...")
        write(volume / "study1" / "a.dcm", b"\x01" * 512000, age=60)
        write(volume / "study1" / "b.dcm", b"\x02" * 2048, age=60)

        record = engine.run_pass(volume, share)
        print(f"    {record.summary()}")
        print(f"    Copied: {record.copied}")

        # ---------------------------------------------------------------------
        # Step 2: Stability window
        # ---------------------------------------------------------------------
        print("\n[2] Host is rewriting a.dcm right now...")
        write(volume / "study1" / "a.dcm", b"\x03" * 600000, age=0)

        record = engine.run_pass(volume, share)
        print(f"    {record.summary()}")
        for skipped in record.skipped:
            print(f"    Held back: {skipped.path} ({skipped.reason.value}: {skipped.detail})")
        print(f"    Share still has {(share / 'study1' / 'a.dcm').stat().st_size:,} bytes")

        # ---------------------------------------------------------------------
        # Step 3: Once quiet, the new version is copied
        # ---------------------------------------------------------------------
        print("\n[3] Thirty seconds later...")
        later = time.time() - 30
        os.utime(volume / "study1" / "a.dcm", (later, later))

        record = engine.run_pass(volume, share)
        print(f"    {record.summary()}")
        print(f"    Share now has {(share / 'study1' / 'a.dcm').stat().st_size:,} bytes")

        # ---------------------------------------------------------------------
        # Step 4: Additive only
        # ---------------------------------------------------------------------
        print("\n[4] Host deletes b.dcm from the volume...")
        (volume / "study1" / "b.dcm").unlink()

        record = engine.run_pass(volume, share)
        print(f"    {record.summary()}")
        print(f"    b.dcm still on share: {(share / 'study1' / 'b.dcm').exists()}")

        # ---------------------------------------------------------------------
        # Step 5: Failure reporting
        # ---------------------------------------------------------------------
        print("\n[5] Three passes in a row fail (share full)...")
        for _ in range(3):
            failed = PassRecord(note="destination full")
            failed.fail("study2/c.dcm", "No space left on device", 28)
            report = reporter.report(failed.finalize())
            print(
                f"    outcome={report.outcome.value} severity={report.severity.value} "
                f"streak={report.consecutive_failures} alarm={report.alarm_active}"
            )

        report = reporter.report(PassRecord().finalize(PassOutcome.SUCCESS))
        print(f"    Next good pass: severity={report.severity.value} alarm={report.alarm_active}")

        print("\n" + "=" * 60)
        print("Example complete!")
        print("=" * 60)


if __name__ == "__main__":
    main()
