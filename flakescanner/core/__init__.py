"""Core scanning data structures."""

from flakescanner.core.findings import (
    CodeLocation,
    Confidence,
    EditGroup,
    Finding,
    FindingCategory,
    FixEdit,
    ScanResult,
    Severity,
)

__all__ = [
    "CodeLocation",
    "Confidence",
    "EditGroup",
    "Finding",
    "FindingCategory",
    "FixEdit",
    "ScanResult",
    "Severity",
]
