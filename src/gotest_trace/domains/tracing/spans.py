"""Span tree built from the events of one package."""

from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional, Tuple

from loguru import logger
from opentelemetry import trace as otel_trace
from opentelemetry.context import Context
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from gotest_trace.domains.tracing.exceptions import IncompleteInterval
from gotest_trace.domains.tracing.models import Action, Interval, TestEvent, to_unix_nanos


class OutputLine(NamedTuple):
    time: Optional[datetime]
    text: str


def earliest(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


def latest(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def merge_intervals(intervals: Iterable[Interval]) -> Interval:
    """Smallest interval covering every known bound of the given intervals."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    for other_start, other_end in intervals:
        start = earliest(start, other_start)
        end = latest(end, other_end)
    return start, end


class SpanNode:
    """Accumulates the events of one package, test or subtest.

    The root node of a package has an empty ``test``. Children are keyed by
    their full test path (``TestA/Sub``), so every node knows its own path and
    no back references are needed. Reporting is a read-only top-down walk.
    """

    def __init__(self, package: str, test: str = ""):
        self.package = package
        self.test = test
        self.start: Optional[datetime] = None
        self.end: Optional[datetime] = None
        self.failed = False
        self.skipped = False
        self.output: List[OutputLine] = []
        self.children: Dict[str, "SpanNode"] = {}
        # A run event or a back-computed start fixed the opening boundary.
        self._started = False
        self._structural = False

    @classmethod
    def placeholder(cls, name: str, interval: Interval) -> "SpanNode":
        """A grouping node that carries only an interval and reports no status."""
        node = cls(name)
        node.start, node.end = interval
        node._structural = True
        return node

    @property
    def name(self) -> str:
        if not self.test:
            return self.package
        return f"{self.package}/{self.test}"

    @property
    def span_name(self) -> str:
        if self.skipped:
            return "test/skipped"
        if not self.test:
            return "test/package"
        return "test/run"

    def add(self, depth: int, event: TestEvent) -> None:
        """Fold one event into the subtree rooted here.

        ``depth`` is the number of test path segments already consumed to reach
        this node; the package root is folded at depth 0.
        """
        when = event.time
        if when is not None:
            self.start = earliest(self.start, when)
            self.end = latest(self.end, when)

        segments = event.test_segments
        if len(segments) > depth:
            key = "/".join(segments[:depth + 1])
            child = self.children.get(key)
            if child is None:
                child = self.children[key] = SpanNode(event.package, key)
            child.add(depth + 1, event)
            return

        action = event.action
        if action == Action.OUTPUT:
            self.output.append(OutputLine(when, event.output))
        elif action == Action.RUN:
            if when is not None:
                self.start = when
                self._started = True
        elif action == Action.SKIP:
            self.skipped = True
        elif action in (Action.FAIL, Action.PASS):
            if action == Action.FAIL:
                self.failed = True
            if when is None:
                return
            if not self._started:
                # No run event was seen, recover the start from the duration.
                self.start = earliest(self.start, when - (event.elapsed or timedelta(0)))
                self._started = True
            self.end = when

    def bounds(self) -> Interval:
        """Own interval widened by output timestamps and every descendant's bounds."""
        intervals: List[Interval] = [(self.start, self.end)]
        intervals.extend((line.time, line.time) for line in self.output)
        intervals.extend(child.bounds() for child in self.children.values())
        return merge_intervals(intervals)

    def interval(self, extra: Optional[Interval] = None) -> Tuple[datetime, datetime]:
        """Effective interval of the span, raising IncompleteInterval if a bound is unknown."""
        start, end = self.bounds()
        if extra is not None:
            start, end = merge_intervals([(start, end), extra])
        if start is None or end is None:
            raise IncompleteInterval(self.name, start, end)
        return start, end

    def iter_children(self, sort: bool = False) -> Iterable["SpanNode"]:
        if sort:
            return [self.children[key] for key in sorted(self.children)]
        return self.children.values()

    def report(
        self,
        tracer: Tracer,
        context: Optional[Context] = None,
        *,
        extra: Optional[Interval] = None,
        nested: Optional[Callable[[Context], None]] = None,
        sort_children: bool = False,
    ) -> Optional[Span]:
        """Emit this node and its subtree as spans below ``context``.

        ``nested`` is called with the span's context after the children have
        been reported, so callers can hang further spans below this one;
        ``extra`` widens the interval to cover them.
        Returns None without emitting anything if the interval is incomplete.
        """
        try:
            start, end = self.interval(extra)
        except IncompleteInterval as e:
            logger.warning(f"Skipping span {e.name!r}: start or end timestamp missing (start={e.start}, end={e.end})")
            return None

        span = tracer.start_span(
            self.span_name,
            context=context,
            start_time=to_unix_nanos(start),
            attributes={"package": self.package, "test": self.test},
        )
        try:
            if self.failed:
                span.set_status(Status(StatusCode.ERROR, "test failed"))
            elif not self.skipped and not self._structural:
                span.set_status(Status(StatusCode.OK))

            for line in self.output:
                span.add_event(
                    "log message",
                    attributes={"output": line.text},
                    timestamp=to_unix_nanos(line.time or start),
                )

            child_context = otel_trace.set_span_in_context(span, context)
            for child in self.iter_children(sort_children):
                child.report(tracer, child_context, sort_children=sort_children)
            if nested is not None:
                nested(child_context)
        finally:
            span.end(end_time=to_unix_nanos(end))
        return span


def build_span_tree(package: str, events: Iterable[TestEvent]) -> SpanNode:
    """Fold every event of one package into a fresh tree rooted at the package."""
    root = SpanNode(package)
    for event in events:
        root.add(0, event)
    return root
