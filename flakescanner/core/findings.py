"""
Finding data structures for the flaky-test scanner.

This module defines the core data structures used to represent
detected flakiness patterns, their locations and proposed fixes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any
import json


class Severity(Enum):
    """Severity levels for findings."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    def __lt__(self, other):
        order = [Severity.INFO, Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]
        return order.index(self) < order.index(other)

    def __le__(self, other):
        return self == other or self < other


class Confidence(Enum):
    """Confidence levels for findings."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class FindingCategory(Enum):
    """Categories of flakiness findings."""
    # Test isolation
    SHARED_STATE = "shared-state"
    INIT_IN_SETUP = "init-in-setup"
    MODULE_MUTATION = "module-mutation"
    NEEDS_CLEANUP = "needs-cleanup"
    GLOBAL_STATE = "global-state"

    # Timing and asynchrony
    TIMING = "timing"
    PROMISE_RACE = "promise-race"
    ANIMATION = "animation"
    ASYNC = "async"
    ELEMENT_REMOVAL = "element-removal"
    FOCUS = "focus"

    # External resources
    NETWORK = "network"
    FILESYSTEM = "filesystem"
    DATABASE = "database"

    # Determinism and selection
    RANDOMNESS = "randomness"
    TEST_FOCUS = "test-focus"
    SELECTOR = "selector"
    TEXT_MATCH = "text-match"
    VIEWPORT = "viewport"


class EditGroup(Enum):
    """Sub-step that contributed an edit to a fix."""
    WRAP = "wrap"
    ASYNC = "async"
    IMPORT = "import"
    REPLACE = "replace"
    REMOVE = "remove"


@dataclass
class CodeLocation:
    """Represents a location in source code."""
    file_path: str
    start_line: int
    end_line: int
    start_column: int = 0
    end_column: int = 0
    start_byte: int = 0
    end_byte: int = 0

    def __str__(self) -> str:
        return f"{self.file_path}:{self.start_line}:{self.start_column + 1}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "start_column": self.start_column,
            "end_column": self.end_column,
            "start_byte": self.start_byte,
            "end_byte": self.end_byte,
        }


@dataclass
class CodeSnippet:
    """A snippet of code with context."""
    code: str
    highlighted_line: int
    context_before: List[str] = field(default_factory=list)
    context_after: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "highlighted_line": self.highlighted_line,
            "context_before": self.context_before,
            "context_after": self.context_after,
        }


@dataclass(frozen=True)
class FixEdit:
    """
    One textual edit of a fix.

    Offsets are byte offsets into the UTF-8 encoded source. A zero-width
    range is an insertion.
    """
    start: int
    end: int
    replacement: str
    group: EditGroup = EditGroup.REPLACE

    def overlaps(self, other: "FixEdit") -> bool:
        if self.start == self.end and other.start == other.end:
            return self.start == other.start
        return self.start < other.end and other.start < self.end

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start,
            "end": self.end,
            "replacement": self.replacement,
            "group": self.group.value,
        }


def edits_overlap(edits: List[FixEdit]) -> bool:
    """Check whether any two edits of one fix conflict."""
    for i, edit in enumerate(edits):
        for other in edits[i + 1:]:
            if edit.overlaps(other):
                return True
    return False


def apply_edits(source: bytes, edits: List[FixEdit]) -> bytes:
    """Apply non-overlapping edits, highest offset first."""
    result = source
    for edit in sorted(edits, key=lambda e: (e.start, e.end), reverse=True):
        result = result[:edit.start] + edit.replacement.encode("utf-8") + result[edit.end:]
    return result


@dataclass
class Finding:
    """
    Represents one detected flakiness pattern.

    This is the core data structure produced by detectors and collected by
    the diagnostic reporter. A fix of None means no safe fix is available.
    """
    rule_id: str
    category: FindingCategory
    message_key: str
    message: str
    severity: Severity
    confidence: Confidence
    location: CodeLocation
    message_data: Dict[str, str] = field(default_factory=dict)
    fix: Optional[List[FixEdit]] = None
    snippet: Optional[CodeSnippet] = None
    suppressed: bool = False
    suppression_reason: Optional[str] = None

    def __post_init__(self):
        """Validate and normalize the finding."""
        if isinstance(self.severity, str):
            self.severity = Severity(self.severity)
        if isinstance(self.confidence, str):
            self.confidence = Confidence(self.confidence)
        if isinstance(self.category, str):
            self.category = FindingCategory(self.category)

    @property
    def fixable(self) -> bool:
        return bool(self.fix)

    def to_dict(self) -> Dict[str, Any]:
        """Convert finding to a dictionary."""
        result = {
            "rule_id": self.rule_id,
            "category": self.category.value,
            "message_key": self.message_key,
            "message": self.message,
            "message_data": self.message_data,
            "severity": self.severity.value,
            "confidence": self.confidence.value,
            "location": self.location.to_dict(),
            "fix": [edit.to_dict() for edit in self.fix] if self.fix is not None else None,
            "suppressed": self.suppressed,
        }

        if self.snippet:
            result["snippet"] = self.snippet.to_dict()
        if self.suppression_reason:
            result["suppression_reason"] = self.suppression_reason

        return result

    def to_json(self, indent: int = 2) -> str:
        """Convert finding to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Finding":
        """Create a Finding from a dictionary."""
        data = dict(data)
        location = CodeLocation(**data.pop("location"))

        snippet = None
        if data.get("snippet"):
            snippet = CodeSnippet(**data.pop("snippet"))
        else:
            data.pop("snippet", None)

        fix = None
        if data.get("fix") is not None:
            fix = [
                FixEdit(
                    start=edit["start"],
                    end=edit["end"],
                    replacement=edit["replacement"],
                    group=EditGroup(edit.get("group", "replace")),
                )
                for edit in data.pop("fix")
            ]
        else:
            data.pop("fix", None)

        return cls(location=location, snippet=snippet, fix=fix, **data)


@dataclass
class ScanResult:
    """Results from a complete scan."""
    findings: List[Finding]
    files_scanned: int
    scan_time_seconds: float
    frameworks_detected: List[str]
    rules_applied: List[str]
    errors: List[str] = field(default_factory=list)

    @property
    def critical_count(self) -> int:
        return sum(1 for f in self.findings if f.severity == Severity.CRITICAL and not f.suppressed)

    @property
    def high_count(self) -> int:
        return sum(1 for f in self.findings if f.severity == Severity.HIGH and not f.suppressed)

    @property
    def medium_count(self) -> int:
        return sum(1 for f in self.findings if f.severity == Severity.MEDIUM and not f.suppressed)

    @property
    def low_count(self) -> int:
        return sum(1 for f in self.findings if f.severity == Severity.LOW and not f.suppressed)

    @property
    def info_count(self) -> int:
        return sum(1 for f in self.findings if f.severity == Severity.INFO and not f.suppressed)

    @property
    def total_findings(self) -> int:
        return sum(1 for f in self.findings if not f.suppressed)

    @property
    def suppressed_count(self) -> int:
        return sum(1 for f in self.findings if f.suppressed)

    @property
    def fixable_count(self) -> int:
        return sum(1 for f in self.findings if f.fixable and not f.suppressed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": {
                "files_scanned": self.files_scanned,
                "scan_time_seconds": self.scan_time_seconds,
                "frameworks_detected": self.frameworks_detected,
                "rules_applied": self.rules_applied,
                "total_findings": self.total_findings,
                "suppressed_findings": self.suppressed_count,
                "fixable_findings": self.fixable_count,
                "by_severity": {
                    "critical": self.critical_count,
                    "high": self.high_count,
                    "medium": self.medium_count,
                    "low": self.low_count,
                    "info": self.info_count,
                },
            },
            "findings": [f.to_dict() for f in self.findings],
            "errors": self.errors,
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)
