from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import pytest
from loguru import logger
from opentelemetry.sdk.trace import ReadableSpan, Tracer, TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from gotest_trace.domains.tracing.models import TestEvent

BASE_TIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

OtelEnv = Tuple[Tracer, InMemorySpanExporter, TracerProvider]


@pytest.fixture
def otel_env():
    """Isolated OTel TracerProvider with in-memory exporter."""
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    tracer = provider.get_tracer("test")
    yield tracer, exporter, provider
    provider.shutdown()


@pytest.fixture
def at() -> Callable[[float], datetime]:
    """Instant ``seconds`` after a fixed base time."""
    def _at(seconds: float) -> datetime:
        return BASE_TIME + timedelta(seconds=seconds)
    return _at


@pytest.fixture
def make_event(at) -> Callable[..., TestEvent]:
    def _make_event(
        action: str,
        test: str = "",
        t: Optional[float] = None,
        elapsed: Optional[float] = None,
        output: str = "",
        package: str = "example.com/pkg",
    ) -> TestEvent:
        return TestEvent(
            time=at(t) if t is not None else None,
            action=action,
            package=package,
            test=test,
            elapsed=timedelta(seconds=elapsed) if elapsed is not None else None,
            output=output,
        )
    return _make_event


@pytest.fixture
def log_messages():
    """Messages logged through loguru while the test runs."""
    messages: List[str] = []
    handler_id = logger.add(lambda message: messages.append(message.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)


def spans_by_key(spans: Iterable[ReadableSpan]) -> Dict[Tuple[str, str], ReadableSpan]:
    """Finished spans keyed by their (package, test) attributes."""
    return {
        (span.attributes["package"], span.attributes["test"]): span
        for span in spans
        if span.attributes and "package" in span.attributes
    }


@pytest.fixture
def by_key():
    return spans_by_key
