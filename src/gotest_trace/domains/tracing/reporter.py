"""Reporting of the package hierarchy as nested spans."""

from typing import Iterable, Mapping, Optional

from opentelemetry.context import Context
from opentelemetry.trace import Tracer

from gotest_trace.domains.tracing.hierarchy import PrefixTreeNode
from gotest_trace.domains.tracing.models import Interval
from gotest_trace.domains.tracing.spans import SpanNode, merge_intervals


class TreeReporter:
    """Walks a package hierarchy and reports one span per node.

    Nodes whose name is a collected package delegate to that package's
    SpanNode. Every other node is a grouping span covering its descendants.
    """

    def __init__(self, tracer: Tracer, spans: Mapping[str, SpanNode], sort_children: bool = False):
        self.tracer = tracer
        self.spans = spans
        self.sort_children = sort_children

    def _children(self, node: PrefixTreeNode) -> Iterable[PrefixTreeNode]:
        if self.sort_children:
            return [node.children[key] for key in sorted(node.children)]
        return node.children.values()

    def bounds(self, node: PrefixTreeNode) -> Interval:
        """Earliest start and latest end over the packages at and below ``node``."""
        intervals = []
        for descendant in node.walk():
            span_node = self.spans.get(descendant.name)
            if span_node is not None:
                intervals.append(span_node.bounds())
        return merge_intervals(intervals)

    def report(self, node: PrefixTreeNode, context: Optional[Context] = None) -> None:
        if not node.name:
            # Packages share no prefix, there is nothing to group them under.
            for child in self._children(node):
                self.report(child, context)
            return

        def report_children(child_context: Context) -> None:
            for child in self._children(node):
                self.report(child, child_context)

        span_node = self.spans.get(node.name)
        if span_node is None:
            span_node = SpanNode.placeholder(node.name, self.bounds(node))
        span_node.report(
            self.tracer,
            context,
            extra=self.bounds(node),
            nested=report_children,
            sort_children=self.sort_children,
        )
