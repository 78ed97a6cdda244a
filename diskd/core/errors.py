"""Daemon error types and the error-domain registration table.

Every error raised by the daemon carries one of a closed set of kinds. The
control plane maps a kind onto its wire identifier; code that raises only
needs a kind and a message.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar

ERROR_DOMAIN = "udisks-error-quark"


class ErrorKind(IntEnum):
    FAILED = 0
    CANCELLED = 1
    ALREADY_CANCELLED = 2


_WIRE_NAMES: dict[ErrorKind, str] = {
    ErrorKind.FAILED: "org.freedesktop.UDisks.Error.Failed",
    ErrorKind.CANCELLED: "org.freedesktop.UDisks.Error.Cancelled",
    ErrorKind.ALREADY_CANCELLED: "org.freedesktop.UDisks.Error.AlreadyCancelled",
}


def wire_name_for(kind: ErrorKind) -> str:
    return _WIRE_NAMES[ErrorKind(kind)]


def kind_for_wire_name(name: str) -> ErrorKind | None:
    for kind, wire_name in _WIRE_NAMES.items():
        if wire_name == name:
            return kind
    return None


@dataclass(eq=False)
class DaemonError(Exception):
    """Base error for daemon-level failures."""

    message: str
    cause: Exception | None = None

    kind: ClassVar[ErrorKind] = ErrorKind.FAILED

    def __str__(self) -> str:
        if self.cause is None:
            return self.message
        return f"{self.message} (cause: {self.cause})"

    @property
    def domain(self) -> str:
        return ERROR_DOMAIN

    @property
    def code(self) -> int:
        return int(self.kind)

    @property
    def wire_name(self) -> str:
        return wire_name_for(self.kind)


class LaunchError(DaemonError):
    """The command line could not be parsed or the child could not be spawned."""


class CancelledError(DaemonError):
    """User-initiated cancellation."""

    kind = ErrorKind.CANCELLED


class AlreadyCancelledError(DaemonError):
    """Cancellation was requested for something that is already cancelled."""

    kind = ErrorKind.ALREADY_CANCELLED


_ERRORS_BY_KIND: dict[ErrorKind, type[DaemonError]] = {
    ErrorKind.FAILED: DaemonError,
    ErrorKind.CANCELLED: CancelledError,
    ErrorKind.ALREADY_CANCELLED: AlreadyCancelledError,
}


def error_from_kind(kind: ErrorKind, message: str) -> DaemonError:
    """Build the error class registered for ``kind``."""
    return _ERRORS_BY_KIND[ErrorKind(kind)](message)
