"""
Roadwatch exception hierarchy.

Nothing raised here is fatal to the process: ingestion rejects the single
event, the broadcaster drops the single subscriber.
"""

from typing import Any, List, Optional


class RoadwatchError(Exception):
    """Base exception for all roadwatch errors."""
    pass


class ReadingValidationError(RoadwatchError):
    """Raised when an inbound event does not match its reading schema."""

    def __init__(self, kind: str, errors: Optional[List[Any]] = None):
        self.kind = kind
        self.errors = errors or []
        super().__init__(f"Invalid {kind} event: {len(self.errors)} error(s)")


class UnknownTopicError(RoadwatchError):
    """Raised when subscribing or publishing to a topic that does not exist."""
    pass


class TransportWriteError(RoadwatchError):
    """Raised by a transport handle when a frame cannot be written."""
    pass


class ConfigurationError(RoadwatchError):
    """Raised when configuration is invalid."""
    pass
