"""
Single-pass tree walker.

Builds a dispatch table from node kind to handlers once, then visits every
node of a file in source order and hands it to the scope tracker and to
each subscribed detector.
"""

import logging
from typing import Callable, Dict, List

from tree_sitter import Node

from flakescanner.core.findings import Finding
from flakescanner.core.rules import AnalysisContext, Detector
from flakescanner.core.scope import ScopeTracker
from flakescanner.parsers.javascript import iter_nodes

logger = logging.getLogger(__name__)

Handler = Callable[[Node], None]


class TreeWalker:
    """Dispatches the nodes of one file to detectors in registration order."""

    def __init__(self, detectors: List[Detector]):
        self.detectors = list(detectors)
        self._table: Dict[str, List[Detector]] = {}
        for detector in self.detectors:
            for kind in detector.node_kinds:
                self._table.setdefault(getattr(kind, "value", kind), []).append(detector)
        self._scope_kinds = frozenset(kind.value for kind in ScopeTracker.node_kinds)

    def walk(self, context: AnalysisContext) -> List[Finding]:
        """Traverse the file once and return its sorted findings."""
        for detector in self.detectors:
            detector.reset(context)

        for node in iter_nodes(context.parsed.root):
            if node.type in self._scope_kinds:
                context.scope.on_enter(node)
            for detector in self._table.get(node.type, ()):
                self._run(detector, context, detector.on_enter, node)

        for detector in self.detectors:
            if detector.has_exit:
                self._run(detector, context, detector.on_exit)

        return context.reporter.flush()

    def _run(self, detector: Detector, context: AnalysisContext, handler: Callable, *args):
        try:
            handler(*args)
        except Exception as e:
            message = f"Error running rule {detector.rule_id} on {context.file_path}: {e}"
            logger.warning(message)
            context.errors.append(message)
