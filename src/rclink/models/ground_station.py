"""Ground-station directive and acknowledgement models.

Directives go out as single ASCII lines (``MACLIST a b``, ``MACSELECT i``,
``MACACTIVE?``); acknowledgements come back as lines classified by prefix.
The index-range/select addressing scheme is the only one supported.
"""

from __future__ import annotations

import enum
from typing import Literal

from pydantic import Field, model_validator

from rclink._constants import MAC_INDEX_MAX, MAC_INDEX_MIN
from rclink.models._base import RcBaseModel

_INDEX = {"ge": MAC_INDEX_MIN, "le": MAC_INDEX_MAX}

# ------------------------------------------------------------------
# Directives
# ------------------------------------------------------------------


class SetMacRange(RcBaseModel):
    """Restrict the ground station to MAC slots ``start..end`` inclusive."""

    kind: Literal["set_mac_range"] = "set_mac_range"
    start: int = Field(**_INDEX)
    end: int = Field(**_INDEX)

    @model_validator(mode="after")
    def _ordered(self) -> SetMacRange:
        if self.start > self.end:
            raise ValueError(f"range start {self.start} is after end {self.end}")
        return self

    def contains(self, index: int) -> bool:
        return self.start <= index <= self.end


class SelectMacIndex(RcBaseModel):
    """Make slot ``index`` the active vehicle."""

    kind: Literal["select_mac_index"] = "select_mac_index"
    index: int = Field(**_INDEX)


class QueryActiveMac(RcBaseModel):
    """Ask which slot is active; answered by a ``MACACTIVE`` line."""

    kind: Literal["query_active_mac"] = "query_active_mac"


GroundStationDirective = SetMacRange | SelectMacIndex | QueryActiveMac

# ------------------------------------------------------------------
# Acknowledgements
# ------------------------------------------------------------------


class AckKind(enum.StrEnum):
    ACTIVE_MAC = "active_mac"
    RANGE_ACK = "range_ack"
    LIST_ACK = "list_ack"
    PASS_THROUGH = "pass_through"
    UNRECOGNIZED = "unrecognized"


class GroundStationAck(RcBaseModel):
    """A classified inbound line."""

    kind: AckKind
    line: str


class ActiveMac(GroundStationAck):
    """``MACACTIVE <index> <mac> <total>``."""

    kind: AckKind = AckKind.ACTIVE_MAC
    index: int
    mac: str
    total: int


class RangeAck(GroundStationAck):
    kind: AckKind = AckKind.RANGE_ACK


class ListAck(GroundStationAck):
    kind: AckKind = AckKind.LIST_ACK


class PassThrough(GroundStationAck):
    """Text relayed from the vehicle radio (``RX: ...``)."""

    kind: AckKind = AckKind.PASS_THROUGH


class Unrecognized(GroundStationAck):
    """Any other non-empty line; surfaced as the generic latest ack."""

    kind: AckKind = AckKind.UNRECOGNIZED
