"""
Fix synthesis and application.

Builds waitFor fixes for findings, resolves conflicts between fixes, and
writes fixed files with diffs and backups.
"""

from flakescanner.remediation.synthesizer import FixSynthesizer
from flakescanner.remediation.engine import RemediationEngine, fix_source

__all__ = [
    "FixSynthesizer",
    "RemediationEngine",
    "fix_source",
]
