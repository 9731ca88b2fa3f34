"""Tests for event grouping and the end-to-end trace service."""

import io
import json

import pytest
from opentelemetry.trace import StatusCode

from gotest_trace.config import Settings
from gotest_trace.domains.tracing.exceptions import DecodeError
from gotest_trace.domains.tracing.services import EventCollector, TraceService, build_span_trees

GO_TEST_OUTPUT = [
    {"Time": "2024-03-01T12:00:00Z", "Action": "start", "Package": "example.com/svc/api"},
    {"Time": "2024-03-01T12:00:00.1Z", "Action": "run", "Package": "example.com/svc/api", "Test": "TestGet"},
    {"Time": "2024-03-01T12:00:00.1Z", "Action": "output", "Package": "example.com/svc/api", "Test": "TestGet",
     "Output": "=== RUN   TestGet\n"},
    {"Time": "2024-03-01T12:00:00.2Z", "Action": "run", "Package": "example.com/svc/db", "Test": "TestQuery"},
    {"Time": "2024-03-01T12:00:00.3Z", "Action": "run", "Package": "example.com/svc/api", "Test": "TestGet/missing"},
    {"Time": "2024-03-01T12:00:00.4Z", "Action": "fail", "Package": "example.com/svc/api", "Test": "TestGet/missing",
     "Elapsed": 0.1},
    {"Time": "2024-03-01T12:00:00.5Z", "Action": "fail", "Package": "example.com/svc/api", "Test": "TestGet",
     "Elapsed": 0.4},
    {"Time": "2024-03-01T12:00:00.6Z", "Action": "pass", "Package": "example.com/svc/db", "Test": "TestQuery",
     "Elapsed": 0.4},
    {"Time": "2024-03-01T12:00:00.7Z", "Action": "output", "Package": "example.com/svc/db",
     "Output": "ok  \texample.com/svc/db\t0.5s\n"},
    {"Time": "2024-03-01T12:00:00.7Z", "Action": "pass", "Package": "example.com/svc/db", "Elapsed": 0.5},
    {"Time": "2024-03-01T12:00:00.8Z", "Action": "fail", "Package": "example.com/svc/api", "Elapsed": 0.8},
]


def lines():
    return [json.dumps(record) + "\n" for record in GO_TEST_OUTPUT]


class TestEventCollector:
    def test_groups_by_package_in_order(self):
        collector = EventCollector()
        count = collector.consume(lines())

        assert count == len(GO_TEST_OUTPUT)
        assert list(collector.groups) == ["example.com/svc/api", "example.com/svc/db"]
        assert [event.action for event in collector.groups["example.com/svc/db"]] == [
            "run", "pass", "output", "pass",
        ]

    def test_skips_blank_lines(self):
        collector = EventCollector()
        assert collector.consume(["\n", "   \n", lines()[0]]) == 1

    def test_ignores_events_without_package(self):
        collector = EventCollector()
        collector.consume(['{"Action":"output","Output":"go: downloading x\\n"}'])

        assert collector.groups == {}
        assert collector.unowned == 1

    def test_echoes_output(self):
        echo = io.StringIO()
        EventCollector(echo=echo).consume(lines())

        assert echo.getvalue() == "=== RUN   TestGet\nok  \texample.com/svc/db\t0.5s\n"

    def test_decode_error_is_fatal(self):
        collector = EventCollector()
        with pytest.raises(DecodeError):
            collector.consume([lines()[0], "garbage\n", lines()[1]])
        assert sum(len(events) for events in collector.groups.values()) == 1


def test_build_span_trees():
    collector = EventCollector()
    collector.consume(lines())
    spans = build_span_trees(collector.groups)

    assert set(spans) == {"example.com/svc/api", "example.com/svc/db"}
    api = spans["example.com/svc/api"]
    assert api.test == ""
    assert api.failed
    assert api.children["TestGet"].failed
    assert api.children["TestGet"].children["TestGet/missing"].failed
    assert not spans["example.com/svc/db"].failed


class TestTraceService:
    def test_run_exports_nested_trace(self, otel_env, by_key):
        tracer, exporter, _ = otel_env
        result = TraceService(tracer, Settings()).run(lines())

        finished = exporter.get_finished_spans()
        root = next(span for span in finished if span.name == "go tests")
        spans = by_key(finished)

        assert result.event_count == len(GO_TEST_OUTPUT)
        assert result.trace_id == format(root.context.trace_id, "032x")
        assert all(span.context.trace_id == root.context.trace_id for span in finished)

        group = spans[("example.com/svc", "")]
        assert group.parent.span_id == root.context.span_id
        assert group.status.status_code == StatusCode.UNSET
        assert spans[("example.com/svc/api", "")].parent.span_id == group.context.span_id
        assert spans[("example.com/svc/db", "")].parent.span_id == group.context.span_id
        assert spans[("example.com/svc/api", "TestGet/missing")].status.status_code == StatusCode.ERROR
        assert spans[("example.com/svc/db", "TestQuery")].status.status_code == StatusCode.OK
        assert len(finished) == 1 + 1 + 2 + 3

    def test_root_span_name_from_settings(self, otel_env):
        tracer, exporter, _ = otel_env
        TraceService(tracer, Settings(root_span_name="ci run")).run(lines())

        assert "ci run" in [span.name for span in exporter.get_finished_spans()]

    def test_no_events(self, otel_env, log_messages):
        tracer, exporter, _ = otel_env
        result = TraceService(tracer, Settings()).run([])

        assert [span.name for span in exporter.get_finished_spans()] == ["go tests"]
        assert result.spans == {}
        assert any("No test events" in message for message in log_messages)

    def test_decode_error_marks_root_span(self, otel_env):
        tracer, exporter, _ = otel_env

        with pytest.raises(DecodeError):
            TraceService(tracer, Settings()).run([lines()[0], "{oops\n"])

        (root,) = exporter.get_finished_spans()
        assert root.status.status_code == StatusCode.ERROR
        assert root.events[0].name == "exception"

    def test_replayed_stream_nests_inside_root_span(self, otel_env):
        tracer, exporter, _ = otel_env
        TraceService(tracer, Settings()).run(lines())

        finished = exporter.get_finished_spans()
        root = next(span for span in finished if span.name == "go tests")
        children = [span for span in finished if span is not root]

        assert children
        assert root.start_time <= min(span.start_time for span in children)
        assert root.end_time >= max(span.end_time for span in children)
