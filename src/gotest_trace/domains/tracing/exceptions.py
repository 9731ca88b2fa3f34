"""Error taxonomy of the trace pipeline."""

from datetime import datetime
from typing import Optional


class TraceError(Exception):
    """Base class for every error raised by gotest-trace."""


class DecodeError(TraceError):
    """A line of the event stream is not a valid test event."""

    def __init__(self, line: str, reason: str):
        super().__init__(f"Malformed test event: {reason}: {line!r}")
        self.line = line
        self.reason = reason


class IncompleteInterval(TraceError):
    """A span node never observed both a start and an end timestamp."""

    def __init__(self, name: str, start: Optional[datetime], end: Optional[datetime]):
        super().__init__(f"Span {name!r} has an incomplete interval (start={start}, end={end})")
        self.name = name
        self.start = start
        self.end = end


class HierarchyInsertionMismatch(TraceError):
    """An owner key does not share the prefix the hierarchy was built for."""

    def __init__(self, key: str, prefix: str):
        super().__init__(f"Key {key!r} is not below hierarchy root {prefix!r}")
        self.key = key
        self.prefix = prefix


class ProcessError(TraceError):
    """The test process could not be started."""


class ExportError(TraceError):
    """Spans could not be flushed to the trace backend."""
