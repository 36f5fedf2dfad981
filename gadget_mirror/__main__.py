"""CLI entry point for Gadget Mirror.

Usage:
    python -m gadget_mirror [-c CONFIG] up
    python -m gadget_mirror [-c CONFIG] down
    python -m gadget_mirror [-c CONFIG] pass
    python -m gadget_mirror [-c CONFIG] rebind
    python -m gadget_mirror [-c CONFIG] status [--json]
    python -m gadget_mirror [-c CONFIG] check-config
    python -m gadget_mirror [-c CONFIG] reset-alarm
    python -m gadget_mirror [-c CONFIG] daemon [--interval SECONDS]

Commands:
    up            Bring the mount chain up (backing, gadget, destination)
    down          Tear the mount chain down in reverse order
    pass          Run one sync pass (what the timer invokes)
    rebind        Restart gadget exposure without racing a pass
    status        Show chain, alarm and last pass
    check-config  Validate configuration and environment
    reset-alarm   Clear the consecutive-failure alarm
    daemon        Bring up, then run passes on the configured interval

Settings may be overridden with GADGET_MIRROR_<KEY> environment variables.

Exit codes:
    0  success, or a pass reported at info/warning severity
    1  operation failed, or the failure alarm is active
    2  invalid configuration
"""

import argparse
import json
import logging
import signal
import sys
import threading
from typing import Optional, Sequence

from gadget_mirror import __version__
from gadget_mirror.config import DEFAULT_CONFIG_PATH, MirrorConfig, environment_overrides, load_config
from gadget_mirror.errors import ConfigInvalid, LockContention, MountTimeout, MountUnavailable
from gadget_mirror.service import MirrorService
from gadget_mirror.utils.logging import configure_root_logger

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def setup_logging(config: Optional[MirrorConfig], verbose: bool = False, json_logs: bool = False) -> None:
    """Configure logging for CLI output from config and flags."""
    level = config.log_level if config else "INFO"
    if verbose:
        level = "DEBUG"
    json_output = json_logs or (config is not None and config.log_format == "json")
    log_file = config.log_file if config else None
    configure_root_logger(level=level, json_output=json_output, log_file=log_file)


def cmd_up(service: MirrorService, args: argparse.Namespace) -> int:
    """Handle the 'up' command - bring the mount chain up.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    try:
        state = service.bring_up()
    except (MountTimeout, MountUnavailable, LockContention) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED

    print("Mount chain up:")
    print(f"  Volume: {state.volume.path} ({state.volume.mount_state.value})")
    print(f"  Destination: {state.destination.path} ({state.destination.mount_state.value})")
    return EXIT_OK


def cmd_down(service: MirrorService, args: argparse.Namespace) -> int:
    """Handle the 'down' command - tear the chain down in reverse order."""
    try:
        success = service.tear_down()
    except LockContention as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED

    if success:
        print("Mount chain down.")
        return EXIT_OK
    print("Tear-down incomplete; see log for the stage that failed", file=sys.stderr)
    return EXIT_FAILED


def cmd_pass(service: MirrorService, args: argparse.Namespace) -> int:
    """Handle the 'pass' command - one scheduled sync pass.

    Returns:
        Exit code (1 only when the failure alarm is active)
    """
    record, report = service.run_pass()

    if args.json:
        print(json.dumps({"record": record.to_dict(), "report": report.to_dict()}, indent=2, default=str))
    else:
        print(record.summary())
        if report.alarm_active:
            print(f"ALARM: {report.consecutive_failures} consecutive failed passes", file=sys.stderr)

    return EXIT_FAILED if report.alarm_active else EXIT_OK


def cmd_rebind(service: MirrorService, args: argparse.Namespace) -> int:
    """Handle the 'rebind' command - restart gadget exposure."""
    try:
        state = service.rebind_gadget()
    except (MountTimeout, MountUnavailable, LockContention) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED

    print(f"Gadget rebound: volume {state.volume.mount_state.value}")
    return EXIT_OK


def cmd_status(service: MirrorService, args: argparse.Namespace) -> int:
    """Handle the 'status' command - show chain and reporter status."""
    status = service.status()

    if args.json:
        print(json.dumps(status, indent=2, default=str))
        return EXIT_OK

    chain = status["chain"]
    print(f"Ready: {chain['ready']}")
    if not chain["ready"]:
        print(f"  Reason: {chain['not_ready_reason']}")
    print()

    for name, stage in chain["stages"].items():
        marker = "up" if stage["active"] else "down"
        print(f"  [{name}] {marker:<4} {stage['description']}")
    print()

    volume = chain["volume"]
    print(f"Volume: {volume['path']} ({volume['mount_state']})")
    if volume.get("actual_size") is not None:
        print(f"  Size: {volume['actual_size']:,} / {volume['declared_size']:,} bytes")

    destination = chain["destination"]
    print(f"Destination: {destination['path']} ({destination['transport']}, {destination['mount_state']})")
    usage = status.get("destination_usage")
    if usage:
        print(f"  Usage: {usage['used_bytes']:,} / {usage['total_bytes']:,} bytes ({usage['percent_used']:.1f}%), {usage['free_bytes']:,} free")
    print()

    reporter = status["reporter"]
    streak = reporter["streak"]
    print(f"Consecutive failures: {streak['consecutive_failures']} (alarm at {reporter['alarm_threshold']})")
    if streak["alarm"]:
        print(f"  ALARM active since {streak['alarm_since']}")
    last_pass = reporter.get("last_pass")
    if last_pass:
        print(f"Last pass: {last_pass['outcome']} ({last_pass['duration_ms']:.0f} ms)")
        print(f"  Copied {last_pass['files_copied']}, skipped {last_pass['files_skipped']}, failed {last_pass['files_failed']}")
    if status["pass_running"]:
        print("A pass is running now.")

    return EXIT_FAILED if streak["alarm"] else EXIT_OK


def cmd_check_config(service: MirrorService, args: argparse.Namespace) -> int:
    """Handle the 'check-config' command - environment preflight."""
    problems = service.preflight()
    if not problems:
        print("Configuration OK.")
        return EXIT_OK

    for problem in problems:
        print(f"  - {problem}", file=sys.stderr)
    return EXIT_FAILED


def cmd_reset_alarm(service: MirrorService, args: argparse.Namespace) -> int:
    """Handle the 'reset-alarm' command."""
    if service.reset_alarm():
        print("Alarm cleared.")
        return EXIT_OK
    print("Failed to clear alarm state", file=sys.stderr)
    return EXIT_FAILED


def cmd_daemon(service: MirrorService, args: argparse.Namespace) -> int:
    """Handle the 'daemon' command - bring up, then pass on an interval."""
    stop = threading.Event()

    def _stop(signum, frame):
        logging.getLogger(__name__).info(f"Signal {signum} received, stopping after current pass")
        stop.set()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)

    service.daemon(interval=args.interval, stop=stop)
    return EXIT_OK


COMMANDS = {
    "up": cmd_up,
    "down": cmd_down,
    "pass": cmd_pass,
    "rebind": cmd_rebind,
    "status": cmd_status,
    "check-config": cmd_check_config,
    "reset-alarm": cmd_reset_alarm,
    "daemon": cmd_daemon,
}


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="gadget-mirror",
        description="Gadget Mirror - USB gadget volume mirrored additively to a network share",
    )
    parser.add_argument(
        "--version", action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-c", "--config", default=str(DEFAULT_CONFIG_PATH),
        help=f"Config file (default: {DEFAULT_CONFIG_PATH})"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging"
    )
    parser.add_argument(
        "--json-logs", action="store_true",
        help="Emit log records as JSON lines"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("up", help="Bring the mount chain up")
    subparsers.add_parser("down", help="Tear the mount chain down")

    pass_parser = subparsers.add_parser("pass", help="Run one sync pass")
    pass_parser.add_argument("--json", action="store_true", help="Print the pass record as JSON")

    subparsers.add_parser("rebind", help="Restart gadget exposure")

    status_parser = subparsers.add_parser("status", help="Show chain and alarm status")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")

    subparsers.add_parser("check-config", help="Validate configuration and environment")
    subparsers.add_parser("reset-alarm", help="Clear the failure alarm")

    daemon_parser = subparsers.add_parser("daemon", help="Run passes on an interval")
    daemon_parser.add_argument(
        "--interval", type=float, default=None,
        help="Seconds between passes (default: SYNC_INTERVAL from config)"
    )

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the CLI.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_OK

    try:
        config = load_config(args.config, overrides=environment_overrides())
    except ConfigInvalid as e:
        setup_logging(None, verbose=args.verbose, json_logs=args.json_logs)
        print(f"Invalid configuration ({args.config}):", file=sys.stderr)
        for problem in e.problems:
            print(f"  - {problem}", file=sys.stderr)
        return EXIT_CONFIG

    setup_logging(config, verbose=args.verbose, json_logs=args.json_logs)

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return EXIT_FAILED
    return handler(MirrorService(config), args)


if __name__ == "__main__":
    sys.exit(main())
