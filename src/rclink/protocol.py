"""Ground-station line protocol.

ASCII, newline-terminated, one directive or response per line.

Outbound::

    S090T090        drive command (steering, throttle; 3 digits each)
    MACLIST 10 20   restrict to MAC slots 10..20
    MACSELECT 12    activate slot 12
    MACACTIVE?      query the active slot

Inbound lines are classified by case-insensitive prefix, most specific
first: ``MACACTIVE``, ``MACRANGE-ACK``, ``MACLIST-ACK``, ``RX:``; anything
else non-empty is a generic acknowledgement.
"""

from __future__ import annotations

from pydantic import ValidationError

from rclink.exceptions import DirectiveError, ProtocolError
from rclink.models.control import CommandFrame
from rclink.models.ground_station import (
    ActiveMac,
    GroundStationAck,
    GroundStationDirective,
    ListAck,
    PassThrough,
    QueryActiveMac,
    RangeAck,
    SelectMacIndex,
    SetMacRange,
    Unrecognized,
)
from rclink.normalize import strict_int

MACLIST = "MACLIST"
MACSELECT = "MACSELECT"
MACACTIVE_QUERY = "MACACTIVE?"

_ACK_ACTIVE = "MACACTIVE"
_ACK_RANGE = "MACRANGE-ACK"
_ACK_LIST = "MACLIST-ACK"
_ACK_RX = "RX:"


def encode_command(steering: int, throttle: int) -> bytes:
    """Encode a drive command, clamping both axes into ``[0, 180]``."""
    return CommandFrame.clamped(steering, throttle).encode()


def build_mac_range(start: int, end: int) -> SetMacRange:
    """Validated :class:`SetMacRange`; raises :class:`DirectiveError`."""
    try:
        return SetMacRange(start=start, end=end)
    except ValidationError as exc:
        raise DirectiveError(f"Invalid MAC range {start}..{end}: {exc.errors()[0]['msg']}") from exc


def build_mac_select(index: int) -> SelectMacIndex:
    """Validated :class:`SelectMacIndex`; raises :class:`DirectiveError`."""
    try:
        return SelectMacIndex(index=index)
    except ValidationError as exc:
        raise DirectiveError(f"Invalid MAC index {index}: {exc.errors()[0]['msg']}") from exc


def encode_directive_line(directive: GroundStationDirective) -> str:
    """Directive text without terminator."""
    if isinstance(directive, SetMacRange):
        return f"{MACLIST} {directive.start} {directive.end}"
    if isinstance(directive, SelectMacIndex):
        return f"{MACSELECT} {directive.index}"
    if isinstance(directive, QueryActiveMac):
        return MACACTIVE_QUERY
    raise DirectiveError(f"Unsupported directive: {directive!r}")


def encode_directive(directive: GroundStationDirective) -> bytes:
    return f"{encode_directive_line(directive)}\n".encode("ascii")


def parse_directive(line: str) -> GroundStationDirective:
    """Decode an outbound directive line (as the ground station would).

    Raises :class:`ProtocolError` for anything that is not a well-formed
    directive.
    """
    text = line.strip()
    if text.upper() == MACACTIVE_QUERY:
        return QueryActiveMac()

    parts = text.split()
    if not parts:
        raise ProtocolError("Empty directive line")
    tag = parts[0].upper()
    args = [strict_int(p) for p in parts[1:]]
    if any(a is None for a in args):
        raise ProtocolError(f"Non-integer directive argument: {text!r}")

    try:
        if tag == MACLIST and len(args) == 2:
            return SetMacRange(start=args[0], end=args[1])
        if tag == MACSELECT and len(args) == 1:
            return SelectMacIndex(index=args[0])
    except ValidationError as exc:
        raise ProtocolError(f"Invalid directive {text!r}: {exc.errors()[0]['msg']}") from exc
    raise ProtocolError(f"Unknown directive: {text!r}")


def parse_command(line: str) -> CommandFrame:
    """Decode an ``S###T###`` line; raises :class:`ProtocolError`."""
    text = line.strip()
    if len(text) != 8 or text[0] != "S" or text[4] != "T":
        raise ProtocolError(f"Not a command frame: {text!r}")
    steering = strict_int(text[1:4])
    throttle = strict_int(text[5:8])
    if steering is None or throttle is None:
        raise ProtocolError(f"Not a command frame: {text!r}")
    try:
        return CommandFrame(steering=steering, throttle=throttle)
    except ValidationError as exc:
        raise ProtocolError(f"Command out of range: {text!r}") from exc


def _parse_active_mac(text: str) -> ActiveMac:
    parts = text.split()
    if len(parts) < 4:
        raise ProtocolError(f"MACACTIVE needs 4 fields, got {len(parts)}: {text!r}")
    index = strict_int(parts[1])
    total = strict_int(parts[3])
    if index is None or total is None:
        raise ProtocolError(f"MACACTIVE index/total not integers: {text!r}")
    return ActiveMac(line=text, index=index, mac=parts[2], total=total)


def parse_ack(line: str) -> GroundStationAck | None:
    """Classify an inbound line.

    Returns ``None`` for blank lines. Raises :class:`ProtocolError` for a
    malformed ``MACACTIVE`` line; the caller logs and drops it.
    """
    text = line.strip()
    if not text:
        return None
    upper = text.upper()
    if upper.startswith(_ACK_RANGE):
        return RangeAck(line=text)
    if upper.startswith(_ACK_LIST):
        return ListAck(line=text)
    if upper.startswith(_ACK_ACTIVE):
        return _parse_active_mac(text)
    if upper.startswith(_ACK_RX):
        return PassThrough(line=text)
    return Unrecognized(line=text)
