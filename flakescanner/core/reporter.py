"""
Diagnostic reporter.

Buffers the findings of one file, drops duplicates reported for the same
location, rule and category, and emits them in a stable priority order.
"""

import logging
from typing import Dict, List, Set, Tuple

from flakescanner.core.findings import Finding, FindingCategory

logger = logging.getLogger(__name__)

# Fixing a lower number can make a higher number moot, so it sorts first.
CATEGORY_PRIORITY: Dict[FindingCategory, int] = {
    FindingCategory.SHARED_STATE: 0,
    FindingCategory.INIT_IN_SETUP: 1,
    FindingCategory.MODULE_MUTATION: 2,
    FindingCategory.NEEDS_CLEANUP: 3,
}
DEFAULT_PRIORITY = 4


def category_priority(category: FindingCategory) -> int:
    return CATEGORY_PRIORITY.get(category, DEFAULT_PRIORITY)


class DiagnosticReporter:
    """Collects findings for a single file."""

    def __init__(self):
        self._buffer: List[Finding] = []

    def report(self, finding: Finding):
        self._buffer.append(finding)

    def __len__(self) -> int:
        return len(self._buffer)

    def flush(self) -> List[Finding]:
        """Deduplicate, sort by (priority, line, column) and clear the buffer."""
        seen: Set[Tuple[int, int, str, FindingCategory]] = set()
        unique: List[Finding] = []
        for finding in self._buffer:
            key = (finding.location.start_byte, finding.location.end_byte, finding.rule_id, finding.category)
            if key in seen:
                logger.debug("Dropping duplicate %s finding at %s", finding.category.value, finding.location)
                continue
            seen.add(key)
            unique.append(finding)

        unique.sort(key=lambda f: (
            category_priority(f.category),
            f.location.start_line,
            f.location.start_column,
        ))
        self._buffer = []
        return unique
