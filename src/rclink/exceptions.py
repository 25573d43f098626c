"""Custom exception hierarchy for rclink."""

from __future__ import annotations


class RcLinkError(Exception):
    """Base exception for all rclink errors."""


class RcLinkConfigError(RcLinkError):
    """Invalid or missing configuration."""


class SerialLinkError(RcLinkError):
    """Serial-level failure (open, read or write)."""

    def __init__(self, message: str, *, port: str = "") -> None:
        self.port = port
        super().__init__(message)


class TransmissionError(SerialLinkError):
    """A command frame could not be written.

    By the time this is raised the link has already been torn down; the
    caller should not retry within the same tick.
    """


class DirectiveError(RcLinkError, ValueError):
    """Ground-station directive parameters are invalid.

    Raised before anything is written to the device.
    """


class ProtocolError(RcLinkError):
    """An inbound line could not be decoded."""
