"""
Remediation engine for applying synthesized fixes.

This module provides:
- Per-file application of finding fixes in reporter order
- Conflict resolution between fixes of different findings
- Before/after diff visualization
- File rewriting with dry-run and backup support
"""

import difflib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from flakescanner.core.findings import Finding, FixEdit, ScanResult, apply_edits

logger = logging.getLogger(__name__)


@dataclass
class FixResult:
    """Result of fixing one file."""
    file_path: str
    applied: List[Finding]
    skipped: List[Finding]
    original_code: str
    fixed_code: str
    diff: str
    success: bool = True
    error_message: Optional[str] = None


@dataclass
class RemediationPlan:
    """A plan for remediating findings across files."""
    findings: List[Finding]
    fixes: List[FixResult] = field(default_factory=list)

    @property
    def auto_fixable_count(self) -> int:
        return sum(1 for f in self.findings if f.fixable and not f.suppressed)

    @property
    def manual_fix_count(self) -> int:
        return sum(1 for f in self.findings if not f.fixable and not f.suppressed)


def resolve_fixes(findings: List[Finding]) -> Tuple[List[FixEdit], List[Finding], List[Finding]]:
    """
    Pick the fixes of one file that can be applied together.

    Findings are taken in order; a fix that overlaps an already accepted
    edit is skipped as a whole.
    """
    accepted: List[FixEdit] = []
    applied: List[Finding] = []
    skipped: List[Finding] = []
    for finding in findings:
        if not finding.fixable or finding.suppressed:
            continue
        if any(edit.overlaps(other) for edit in finding.fix for other in accepted):
            skipped.append(finding)
            continue
        accepted.extend(finding.fix)
        applied.append(finding)
    return accepted, applied, skipped


def fix_source(source: bytes, findings: List[Finding]) -> Tuple[bytes, List[Finding], List[Finding]]:
    """Apply every compatible fix to a source buffer."""
    edits, applied, skipped = resolve_fixes(findings)
    return apply_edits(source, edits), applied, skipped


class RemediationEngine:
    """
    Engine for applying fixes to test files.

    The remediation engine:
    1. Groups fixable findings by file
    2. Applies non-conflicting fixes in reporter order
    3. Creates before/after diffs
    4. Optionally writes the files with dry-run and backup support
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.dry_run = self.config.get("dry_run", True)
        self.backup = self.config.get("backup", True)

    def generate_remediation_plan(self, scan_result: ScanResult) -> RemediationPlan:
        """
        Generate a remediation plan for all findings.

        Args:
            scan_result: The result from a scan.

        Returns:
            A RemediationPlan with one FixResult per file that has fixes.
        """
        plan = RemediationPlan(findings=scan_result.findings)

        by_file: Dict[str, List[Finding]] = {}
        for finding in scan_result.findings:
            if finding.fixable and not finding.suppressed:
                by_file.setdefault(finding.location.file_path, []).append(finding)

        for file_path, findings in by_file.items():
            plan.fixes.append(self.generate_fix(file_path, findings))

        return plan

    def generate_fix(self, file_path: str, findings: List[Finding]) -> FixResult:
        """Apply the fixes of one file in memory and diff the result."""
        try:
            source = Path(file_path).read_bytes()
        except OSError as e:
            return FixResult(
                file_path=file_path,
                applied=[],
                skipped=list(findings),
                original_code="",
                fixed_code="",
                diff="",
                success=False,
                error_message=f"Could not read source file: {e}",
            )

        fixed, applied, skipped = fix_source(source, findings)
        for finding in skipped:
            logger.info("Skipping conflicting fix for %s at %s", finding.rule_id, finding.location)

        original_code = source.decode("utf-8", errors="replace")
        fixed_code = fixed.decode("utf-8", errors="replace")
        return FixResult(
            file_path=file_path,
            applied=applied,
            skipped=skipped,
            original_code=original_code,
            fixed_code=fixed_code,
            diff=self._generate_diff(original_code, fixed_code, file_path),
        )

    def apply_fixes(self, fixes: List[FixResult], dry_run: Optional[bool] = None) -> List[FixResult]:
        """
        Write fixed files to disk.

        Args:
            fixes: Per-file results from generate_remediation_plan.
            dry_run: If True, don't modify files. Overrides instance setting.

        Returns:
            The results with updated success status.
        """
        if dry_run is None:
            dry_run = self.dry_run

        for fix in fixes:
            if not fix.success or not fix.applied or dry_run:
                continue
            path = Path(fix.file_path)
            try:
                if self.backup:
                    path.with_name(path.name + ".bak").write_text(fix.original_code, encoding="utf-8")
                path.write_text(fix.fixed_code, encoding="utf-8")
                logger.info("Applied %d fix(es) to %s", len(fix.applied), fix.file_path)
            except OSError as e:
                fix.success = False
                fix.error_message = f"Error modifying file: {e}"

        return fixes

    def _generate_diff(self, original: str, fixed: str, file_path: str) -> str:
        """Generate a unified diff between original and fixed code."""
        diff = difflib.unified_diff(
            original.splitlines(keepends=True),
            fixed.splitlines(keepends=True),
            fromfile=f"a/{file_path}",
            tofile=f"b/{file_path}",
        )
        return "".join(diff)

    def format_remediation_report(self, plan: RemediationPlan) -> str:
        """
        Format a remediation plan as a human-readable report.

        Args:
            plan: The remediation plan to format.

        Returns:
            A formatted string report.
        """
        lines = [
            "=" * 60,
            "REMEDIATION REPORT",
            "=" * 60,
            "",
            f"Total findings: {len(plan.findings)}",
            f"Auto-fixable: {plan.auto_fixable_count}",
            f"Manual fix required: {plan.manual_fix_count}",
            "",
        ]

        if plan.fixes:
            lines.append("-" * 60)
            lines.append("PROPOSED FIXES")
            lines.append("-" * 60)

            for fix in plan.fixes:
                lines.append(f"\n{fix.file_path}")
                if not fix.success:
                    lines.append(f"    Status: failed ({fix.error_message})")
                    continue
                lines.append(f"    Applied: {len(fix.applied)}")
                for finding in fix.skipped:
                    lines.append(f"    Skipped (conflict): {finding.rule_id} at line {finding.location.start_line}")
                if fix.diff:
                    lines.append("\n    Diff:")
                    for line in fix.diff.splitlines():
                        lines.append(f"    {line}")

        manual = [f for f in plan.findings if not f.suppressed and not f.fixable]
        if manual:
            lines.append("")
            lines.append("-" * 60)
            lines.append("MANUAL REMEDIATION REQUIRED")
            lines.append("-" * 60)
            for finding in manual:
                lines.append(f"\n* {finding.message}")
                lines.append(f"  File: {finding.location}")
                lines.append(f"  Rule: {finding.rule_id} ({finding.severity.value})")

        lines.append("\n" + "=" * 60)
        return "\n".join(lines)
