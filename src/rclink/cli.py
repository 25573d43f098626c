"""Command line entry point.

Usage
-----
::

    rclink ports
    rclink send --port COM5 "MACLIST 10 20"
    rclink run --port COM5 --scanner-port COM7 --party-mode

``run`` reads ``RCLINK_*`` environment variables and the settings file;
command line options win.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import sys
import time
from typing import Any

from rclink import protocol
from rclink.config import RcLinkConfig
from rclink.controller import GroundStationController
from rclink.exceptions import ProtocolError, RcLinkError
from rclink.models.ground_station import GroundStationDirective
from rclink.models.notifications import Notification, NotificationKind
from rclink.serial_link import SerialLink, list_serial_ports
from rclink.settings import SettingsFile


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="rclink", description="RC vehicle ground-station link.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logs.")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the controller until Ctrl+C.")
    run.add_argument("--port", help="Ground-station serial port.")
    run.add_argument("--baud", type=int, help="Ground-station baud rate.")
    run.add_argument("--scanner-port", help="Token scanner serial port.")
    run.add_argument("--remote-url", help="Remote control websocket URL.")
    run.add_argument("--no-remote", action="store_true", help="Disable remote control ingest.")
    run.add_argument("--hub-port", type=int, help="Event hub listen port.")
    run.add_argument("--party-mode", action="store_true", help="Lock output until a token is scanned.")
    run.add_argument("--settings", help="Settings file path.")
    run.add_argument(
        "--duration",
        type=float,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )

    sub.add_parser("ports", help="List serial ports.")

    send = sub.add_parser("send", help="Send one line to the ground station and print replies.")
    send.add_argument("--port", required=True, help="Ground-station serial port.")
    send.add_argument("--baud", type=int, default=None, help="Baud rate.")
    send.add_argument("--wait", type=float, default=1.0, help="Seconds to wait for replies.")
    send.add_argument(
        "--range",
        nargs=2,
        type=int,
        metavar=("START", "END"),
        help="Apply MACLIST START END first (required before MACSELECT).",
    )
    send.add_argument("line", help='Directive ("MACLIST 0 9", "MACSELECT 3", "MACACTIVE?") or "S090T090".')
    return parser.parse_args(argv)


def _config_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.port:
        overrides["serial_port"] = args.port
    if args.baud:
        overrides["baud"] = args.baud
    if args.scanner_port:
        overrides["scanner_port"] = args.scanner_port
    if args.remote_url:
        overrides["remote_url"] = args.remote_url
    if args.no_remote:
        overrides["remote_enabled"] = False
    if args.hub_port:
        overrides["hub_port"] = args.hub_port
    if args.party_mode:
        overrides["party_mode"] = True
    if args.settings:
        overrides["settings_path"] = args.settings
    return overrides


async def _run(args: argparse.Namespace) -> int:
    config = RcLinkConfig.from_env(**_config_overrides(args))
    settings_file = SettingsFile(config.settings_path)
    auto_connect = bool(args.port or args.scanner_port) or settings_file.load().auto_connect_serial

    controller = GroundStationController(config, settings_file=settings_file, auto_connect=auto_connect)
    # Flags win over persisted toggles and are applied before anything starts.
    if args.party_mode and not controller.drive_settings.gating_enabled:
        controller.set_party_mode(True)
    if args.no_remote and controller.drive_settings.remote_enabled:
        await controller.set_remote_enabled(False)

    async with controller:
        if args.duration > 0:
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(controller.run_forever(), args.duration)
        else:
            await controller.run_forever()
    return 0


def _parse_line(line: str) -> GroundStationDirective | None:
    """Directive for *line*, or ``None`` if it is a drive command."""
    try:
        protocol.parse_command(line)
    except ProtocolError:
        return protocol.parse_directive(line)
    return None


def _send(args: argparse.Namespace) -> int:
    try:
        directive = _parse_line(args.line)
    except ProtocolError as exc:
        print(f"Invalid line: {exc}", file=sys.stderr)
        return 2

    def _print_ack(notification: Notification) -> None:
        if notification.kind == NotificationKind.ACK:
            print(notification.message)

    config = RcLinkConfig.from_env()
    link = SerialLink(on_notify=_print_ack)
    ok, err = link.connect(args.port, args.baud or config.baud)
    if not ok:
        print(f"Could not open {args.port}: {err}", file=sys.stderr)
        return 1
    try:
        if directive is None:
            frame = protocol.parse_command(args.line)
            link.send_command(frame.steering, frame.throttle)
        else:
            if args.range:
                link.set_mac_range(*args.range)
            link.send_directive(directive)
        time.sleep(max(0.0, args.wait))
    except RcLinkError as exc:
        print(f"Send failed: {exc}", file=sys.stderr)
        return 1
    finally:
        link.disconnect()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "ports":
        ports = list_serial_ports()
        if not ports:
            print("No serial ports found")
        for port in ports:
            print(port)
        return 0
    if args.command == "send":
        return _send(args)
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130
