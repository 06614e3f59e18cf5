"""
Flaky Test Scanner

A static analysis tool that finds flakiness anti-patterns in JavaScript
test files (timing races, shared state, unmocked resources, unawaited
async events) and rewrites the safe cases automatically.
"""

__version__ = "1.0.0"
__author__ = "Flake Scanner Team"

from flakescanner.core.engine import ScanEngine
from flakescanner.core.findings import Finding, Severity, Confidence
from flakescanner.config import ScanConfig

__all__ = [
    "ScanEngine",
    "Finding",
    "Severity",
    "Confidence",
    "ScanConfig",
]
