"""Plain-text pass/fail summary, suitable for a pull request comment."""

from typing import List, Mapping, Sequence

from gotest_trace.domains.tracing.models import Action, TestEvent, format_duration

ALL_PASSED = "All tests passed!"
FAILURES_HEADER = "Oh no, test failures:"


def generate_comment(groups: Mapping[str, Sequence[TestEvent]]) -> str:
    failures: List[TestEvent] = [
        event
        for events in groups.values()
        for event in events
        if event.action == Action.FAIL and event.test
    ]

    if not failures:
        return ALL_PASSED

    lines = [FAILURES_HEADER]
    for failure in failures:
        elapsed = format_duration(failure.elapsed) if failure.elapsed is not None else "unknown"
        lines.append(f"\t{failure.package} {failure.test} failed after {elapsed}")
    return "\n".join(lines)
