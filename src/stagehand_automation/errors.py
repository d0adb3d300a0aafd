from __future__ import annotations

from typing import Optional


class StagehandError(Exception):
    """Base class for errors raised by stagehand."""


class ParseError(StagehandError, ValueError):
    """Raised when an inventory, playbook or role cannot be parsed."""

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        super().__init__(message)
        self.line = line
        self.column = column


class TransportError(StagehandError):
    """The session to a host broke while running a command."""


class HostConnectionError(TransportError):
    """A session to the host could not be opened."""


class CapabilityError(StagehandError):
    """A capability could not bring the host to its desired state."""
