"""Domain models for `go test -json` events."""

import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator

from gotest_trace.domains.tracing.exceptions import DecodeError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ONE_MICROSECOND = timedelta(microseconds=1)

# Go marshals time.Time{} as the first instant of year 1.
_GO_ZERO_TIME = "0001-01-01T00:00:00"
# Go emits nanoseconds, datetime stores microseconds.
_SUB_MICROSECOND = re.compile(r"(\.\d{6})\d+")

Interval = Tuple[Optional[datetime], Optional[datetime]]


class Action(str, Enum):
    START = "start"
    RUN = "run"
    PAUSE = "pause"
    CONT = "cont"
    PASS = "pass"
    BENCH = "bench"
    FAIL = "fail"
    OUTPUT = "output"
    SKIP = "skip"


class TestEvent(BaseModel):
    """One line of `go test -json` output.

    Only ``Action`` is meaningful on every line; the other keys are omitted by
    Go when empty, so every field has a default. ``time`` is ``None`` when the
    instant is unknown.
    """
    __test__ = False

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    time: Optional[datetime] = Field(default=None, alias="Time")
    action: str = Field(default="", alias="Action")
    package: str = Field(default="", alias="Package")
    test: str = Field(default="", alias="Test")
    elapsed: Optional[timedelta] = Field(default=None, alias="Elapsed")
    output: str = Field(default="", alias="Output")

    @field_validator("time", mode="before")
    @classmethod
    def _parse_time(cls, value: Any) -> Any:
        if isinstance(value, str):
            if value.startswith(_GO_ZERO_TIME):
                return None
            return _SUB_MICROSECOND.sub(r"\1", value)
        return value

    @field_validator("time", mode="after")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("elapsed", mode="before")
    @classmethod
    def _parse_elapsed(cls, value: Any) -> Any:
        # Elapsed is a float number of seconds.
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return timedelta(seconds=value)
        return value

    @field_serializer("elapsed")
    def _serialize_elapsed(self, value: Optional[timedelta]) -> Optional[str]:
        if value is None:
            return None
        return format_duration(value)

    @property
    def owner_key(self) -> str:
        """Key events are grouped by before folding."""
        return self.package

    @property
    def test_path(self) -> str:
        return self.test

    @property
    def test_segments(self) -> List[str]:
        if not self.test:
            return []
        return self.test.split("/")

    @classmethod
    def decode(cls, line: Union[str, bytes]) -> "TestEvent":
        """Decode one JSON line, raising DecodeError if it is not a test event."""
        try:
            return cls.model_validate_json(line)
        except ValidationError as e:
            if isinstance(line, bytes):
                line = line.decode("utf-8", errors="replace")
            errors = e.errors()
            reason = errors[0]["msg"] if errors else str(e)
            raise DecodeError(line.rstrip("\n"), reason) from e

    def encode(self) -> str:
        return self.model_dump_json(by_alias=True)


def format_duration(value: timedelta) -> str:
    """Format a duration the way Go's time.Duration.String does, e.g. 1m2.5s or 250ms."""
    micros = value // ONE_MICROSECOND
    sign = "-" if micros < 0 else ""
    micros = abs(micros)

    if micros == 0:
        return "0s"
    if micros < 1000:
        return f"{sign}{micros}µs"
    if micros < 1_000_000:
        return f"{sign}{_with_fraction(micros, 1000)}ms"

    hours, rest = divmod(micros, 3_600_000_000)
    minutes, rest = divmod(rest, 60_000_000)
    seconds = _with_fraction(rest, 1_000_000) + "s"
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}"
    if minutes:
        return f"{sign}{minutes}m{seconds}"
    return f"{sign}{seconds}"


def _with_fraction(value: int, unit: int) -> str:
    whole, fraction = divmod(value, unit)
    if not fraction:
        return str(whole)
    digits = len(str(unit)) - 1
    return f"{whole}.{fraction:0{digits}d}".rstrip("0")


def to_unix_nanos(value: datetime) -> int:
    """Convert an instant to integer nanoseconds since the epoch, as OTel expects."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return ((value - EPOCH) // ONE_MICROSECOND) * 1000
