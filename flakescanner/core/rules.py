"""
Detector harness for the flaky-test scanner.

This module provides the base class for pattern detectors, the registry
used to discover them, and the per-file analysis context they report into.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple, Type

from tree_sitter import Node

from flakescanner.core.evidence import EvidenceAnalyzer
from flakescanner.core.findings import (
    CodeLocation, CodeSnippet, Confidence, Finding, FindingCategory, FixEdit, Severity
)
from flakescanner.core.framework import Framework, detect_framework
from flakescanner.core.reporter import DiagnosticReporter
from flakescanner.core.scope import ScopeTracker
from flakescanner.parsers.javascript import NodeKind, ParsedFile
from flakescanner.remediation.synthesizer import FixSynthesizer

logger = logging.getLogger(__name__)

SUPPRESSION_PATTERN = re.compile(r"//\s*(?:flakescanner-ignore|noqa)\b|/\*\s*(?:flakescanner-ignore|noqa)\b", re.IGNORECASE)


class _MessageData(dict):
    def __missing__(self, key):
        return "{" + key + "}"


@dataclass
class RuleMetadata:
    """Metadata for a detector."""
    rule_id: str
    name: str
    description: str
    severity: Severity
    confidence: Confidence
    category: FindingCategory
    messages: Dict[str, str]
    tags: List[str] = field(default_factory=list)
    fixable: bool = False
    enabled_by_default: bool = True


class Detector(ABC):
    """
    Base class for all flakiness detectors.

    A detector subscribes to node kinds and is handed every matching node
    during the single traversal of a file. It may keep state between nodes
    of the same file; `reset` is called before each file.
    """

    node_kinds: Tuple[NodeKind, ...] = ()

    def __init__(self, config: Optional[Dict[str, Any]] = None, severity: Optional[Severity] = None):
        self.config = config or {}
        self.severity = severity or self.metadata.severity
        self.context: Optional["AnalysisContext"] = None
        self._reported: Set[Tuple[int, int, str]] = set()

    @property
    @abstractmethod
    def metadata(self) -> RuleMetadata:
        """Return rule metadata."""
        pass

    @property
    def rule_id(self) -> str:
        return self.metadata.rule_id

    @property
    def parsed(self) -> ParsedFile:
        return self.context.parsed

    def option(self, name: str, default: Any = None) -> Any:
        return self.config.get(name, default)

    def text_of(self, node: Optional[Node]) -> str:
        return self.context.parsed.text_of(node)

    def reset(self, context: "AnalysisContext"):
        """Bind the detector to a new file and drop per-file state."""
        self.context = context
        self._reported = set()

    @abstractmethod
    def on_enter(self, node: Node):
        """Inspect one node of a subscribed kind."""
        pass

    def on_exit(self):
        """Called once after the traversal of a file."""
        pass

    @property
    def has_exit(self) -> bool:
        return type(self).on_exit is not Detector.on_exit

    def report(
        self,
        node: Node,
        message_key: str,
        data: Optional[Dict[str, Any]] = None,
        fix: Optional[List[FixEdit]] = None,
        category: Optional[FindingCategory] = None,
        confidence: Optional[Confidence] = None,
    ) -> Optional[Finding]:
        """
        Create a finding for a node and hand it to the reporter.

        Reporting the same node with the same message twice is a no-op.
        """
        key = (node.start_byte, node.end_byte, message_key)
        if key in self._reported:
            return None
        self._reported.add(key)

        metadata = self.metadata
        data = {name: str(value) for name, value in (data or {}).items()}
        template = metadata.messages.get(message_key, metadata.description)
        location = self.context.location_of(node)
        suppressed = self.context.is_line_suppressed(location.start_line)

        finding = Finding(
            rule_id=metadata.rule_id,
            category=category or metadata.category,
            message_key=message_key,
            message=template.format_map(_MessageData(data)),
            severity=self.severity,
            confidence=confidence or metadata.confidence,
            location=location,
            message_data=data,
            fix=fix,
            snippet=self.context.get_snippet(location.start_line),
            suppressed=suppressed,
            suppression_reason="inline comment" if suppressed else None,
        )
        self.context.reporter.report(finding)
        return finding


class RuleRegistry:
    """
    Registry for managing and discovering detectors.

    Detector classes are registered once at import time; instances are
    created fresh for every file.
    """

    _instance: Optional["RuleRegistry"] = None

    def __init__(self):
        self._rules: Dict[str, Type[Detector]] = {}
        self._metadata: Dict[str, RuleMetadata] = {}

    @classmethod
    def get_instance(cls) -> "RuleRegistry":
        """Get the singleton registry instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def register(self, rule_class: Type[Detector]) -> Type[Detector]:
        """
        Register a detector class.

        Can be used as a decorator:

        @registry.register
        class MyDetector(Detector):
            ...
        """
        metadata = rule_class().metadata
        if metadata.rule_id in self._rules:
            logger.debug("Replacing registered rule %s", metadata.rule_id)
        self._rules[metadata.rule_id] = rule_class
        self._metadata[metadata.rule_id] = metadata
        return rule_class

    def get_rule(
        self,
        rule_id: str,
        config: Optional[Dict[str, Any]] = None,
        severity: Optional[Severity] = None,
    ) -> Optional[Detector]:
        """Create a fresh detector instance by ID."""
        rule_class = self._rules.get(rule_id)
        if rule_class is None:
            return None
        return rule_class(config, severity)

    def get_metadata(self, rule_id: str) -> Optional[RuleMetadata]:
        return self._metadata.get(rule_id)

    @property
    def rule_ids(self) -> List[str]:
        """Registered rule IDs in registration order."""
        return list(self._rules)

    def all_metadata(self) -> List[RuleMetadata]:
        return [self._metadata[rule_id] for rule_id in self._rules]

    @property
    def rule_count(self) -> int:
        """Return the number of registered rules."""
        return len(self._rules)


class AnalysisContext:
    """
    Per-file state shared by the walker and the detectors.

    Holds the parsed file, the scope tracker, the evidence analyzer, the
    reporter and the fix synthesizer. A fresh context is built for every
    file so nothing leaks between files.
    """

    def __init__(
        self,
        parsed: ParsedFile,
        framework: Optional[Framework] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        self.parsed = parsed
        self.file_path = parsed.path
        self.config = config or {}
        self.framework = framework if framework is not None else detect_framework(parsed.text, parsed.path)
        self.scope = ScopeTracker(parsed)
        self.evidence = EvidenceAnalyzer(parsed)
        self.reporter = DiagnosticReporter()
        self.synthesizer = FixSynthesizer(parsed, self.framework)
        self.errors: List[str] = []
        self._suppressed_lines: Optional[Set[int]] = None

    @property
    def text(self) -> str:
        return self.parsed.text

    @property
    def lines(self) -> List[str]:
        return self.parsed.lines

    @property
    def suppressed_lines(self) -> Set[int]:
        """Line numbers covered by a suppression comment."""
        if self._suppressed_lines is None:
            self._suppressed_lines = set()
            for i, line in enumerate(self.lines, start=1):
                if SUPPRESSION_PATTERN.search(line):
                    self._suppressed_lines.add(i)
                    # Also suppress the next line
                    self._suppressed_lines.add(i + 1)
        return self._suppressed_lines

    def is_line_suppressed(self, line_number: int) -> bool:
        return line_number in self.suppressed_lines

    def location_of(self, node: Node) -> CodeLocation:
        start_line, start_column = self.parsed.position(node.start_byte)
        end_line, end_column = self.parsed.position(node.end_byte)
        return CodeLocation(
            file_path=self.file_path,
            start_line=start_line,
            end_line=end_line,
            start_column=start_column,
            end_column=end_column,
            start_byte=node.start_byte,
            end_byte=node.end_byte,
        )

    def get_snippet(self, line_number: int, context_lines: int = 3) -> CodeSnippet:
        """Get a code snippet around a line number."""
        lines = self.lines
        start = max(0, line_number - context_lines - 1)
        end = min(len(lines), line_number + context_lines)

        return CodeSnippet(
            code=lines[line_number - 1] if line_number <= len(lines) else "",
            highlighted_line=line_number,
            context_before=lines[start:line_number - 1],
            context_after=lines[line_number:end],
        )


# Global registry instance
registry = RuleRegistry.get_instance()


def rule(cls: Type[Detector]) -> Type[Detector]:
    """
    Decorator to register a detector with the global registry.

    Usage:
        @rule
        class MyDetector(Detector):
            ...
    """
    return registry.register(cls)
