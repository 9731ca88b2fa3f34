"""Domain services turning an event stream into an exported trace."""

import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, TextIO, Union

from loguru import logger
from opentelemetry import trace as otel_trace
from opentelemetry.trace import Status, StatusCode, Tracer

from gotest_trace.config import Settings
from gotest_trace.domains.tracing.exceptions import TraceError
from gotest_trace.domains.tracing.hierarchy import build_hierarchy
from gotest_trace.domains.tracing.models import Action, TestEvent, to_unix_nanos
from gotest_trace.domains.tracing.reporter import TreeReporter
from gotest_trace.domains.tracing.spans import SpanNode, build_span_tree


class EventCollector:
    """Groups decoded events by package, in arrival order."""

    def __init__(self, echo: Optional[TextIO] = None):
        self.groups: Dict[str, List[TestEvent]] = {}
        self.unowned = 0
        self.echo = echo

    def add(self, event: TestEvent) -> None:
        if self.echo is not None and event.action == Action.OUTPUT:
            self.echo.write(event.output)

        if not event.owner_key:
            self.unowned += 1
            logger.debug(f"Ignoring {event.action!r} event without a package")
            return
        self.groups.setdefault(event.owner_key, []).append(event)

    def consume(self, lines: Iterable[Union[str, bytes]]) -> int:
        """Decode and collect every non-blank line. Returns the number of events read."""
        count = 0
        for line in lines:
            if not line.strip():
                continue
            self.add(TestEvent.decode(line))
            count += 1
        return count


def build_span_trees(groups: Mapping[str, Sequence[TestEvent]]) -> Dict[str, SpanNode]:
    return {package: build_span_tree(package, events) for package, events in groups.items()}


@dataclass(frozen=True)
class TraceResult:
    trace_id: str
    event_count: int
    groups: Dict[str, List[TestEvent]] = field(default_factory=dict)
    spans: Dict[str, SpanNode] = field(default_factory=dict)


class TraceService:
    """Reports one `go test -json` stream as one trace.

    Every package span is nested, through the package hierarchy, under a single
    run-level span covering the whole run.
    """

    def __init__(self, tracer: Tracer, settings: Settings, echo: Optional[TextIO] = None):
        self.tracer = tracer
        self.settings = settings
        self.echo = echo

    def run(self, lines: Iterable[Union[str, bytes]]) -> TraceResult:
        """Consume ``lines`` and report them under one run-level span.

        The run span covers both the wall-clock time spent reading the stream and
        the recorded event times, so a replayed stream still nests inside it.
        """
        started = time.time_ns()
        collector = EventCollector(echo=self.echo)
        spans: Dict[str, SpanNode] = {}
        count = 0
        failure: Optional[TraceError] = None
        try:
            count = collector.consume(lines)
            spans = build_span_trees(collector.groups)
        except TraceError as e:
            failure = e

        reporter = TreeReporter(self.tracer, spans, sort_children=self.settings.sort_children)
        hierarchy = None
        first, last = None, None
        if failure is None and spans:
            try:
                hierarchy = build_hierarchy(spans)
            except TraceError as e:
                failure = e
            else:
                first, last = reporter.bounds(hierarchy)

        if first is not None:
            started = min(started, to_unix_nanos(first))
        root = self.tracer.start_span(self.settings.root_span_name, start_time=started)
        try:
            if failure is not None:
                root.record_exception(failure)
                root.set_status(Status(StatusCode.ERROR, str(failure)))
                raise failure
            if hierarchy is not None:
                reporter.report(hierarchy, otel_trace.set_span_in_context(root))
            else:
                logger.warning(f"No test events with a package were received ({count} event(s) read)")
        finally:
            ended = time.time_ns()
            if last is not None:
                ended = max(ended, to_unix_nanos(last))
            root.end(end_time=ended)

        return TraceResult(
            trace_id=otel_trace.format_trace_id(root.get_span_context().trace_id),
            event_count=count,
            groups=collector.groups,
            spans=spans,
        )
