"""
CLI output formatter for human-readable results.
"""

from typing import List
import sys

from flakescanner.core.findings import Finding, ScanResult, Severity


# ANSI color codes
class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    WHITE = "\033[97m"

    BG_RED = "\033[41m"


def supports_color() -> bool:
    """Check if the terminal supports color output."""
    if not hasattr(sys.stdout, "isatty"):
        return False
    if not sys.stdout.isatty():
        return False
    return True


class CLIFormatter:
    """
    Formats scan results for human-readable CLI output.
    """

    def __init__(self, use_color: bool = True, verbose: bool = False, include_suppressed: bool = False):
        self.use_color = use_color and supports_color()
        self.verbose = verbose
        self.include_suppressed = include_suppressed

    def _color(self, text: str, color: str) -> str:
        """Apply color to text if colors are enabled."""
        if self.use_color:
            return f"{color}{text}{Colors.RESET}"
        return text

    def _severity_color(self, severity: Severity) -> str:
        colors = {
            Severity.CRITICAL: Colors.BG_RED + Colors.WHITE,
            Severity.HIGH: Colors.RED,
            Severity.MEDIUM: Colors.YELLOW,
            Severity.LOW: Colors.BLUE,
            Severity.INFO: Colors.DIM,
        }
        return colors.get(severity, "")

    def _severity_label(self, severity: Severity) -> str:
        """Get a formatted severity label."""
        return self._color(f"[{severity.value.upper()}]", self._severity_color(severity))

    def format_result(self, result: ScanResult) -> str:
        """Format a complete scan result."""
        lines = []

        # Header
        lines.append("")
        lines.append(self._color("=" * 70, Colors.DIM))
        lines.append(self._color(" FLAKY TEST SCAN RESULTS ", Colors.BOLD))
        lines.append(self._color("=" * 70, Colors.DIM))
        lines.append("")

        # Summary
        lines.append(self._color("Summary", Colors.BOLD))
        lines.append(self._color("-" * 40, Colors.DIM))
        lines.append(f"  Files scanned:     {result.files_scanned}")
        lines.append(f"  Frameworks:        {', '.join(result.frameworks_detected) or 'none detected'}")
        lines.append(f"  Scan time:         {result.scan_time_seconds:.2f}s")
        lines.append(f"  Rules applied:     {len(result.rules_applied)}")
        lines.append("")

        # Findings summary
        lines.append(self._color("Findings", Colors.BOLD))
        lines.append(self._color("-" * 40, Colors.DIM))

        if result.total_findings == 0:
            lines.append(self._color("  No flaky patterns found!", Colors.GREEN))
        else:
            lines.append(f"  {self._severity_label(Severity.CRITICAL)} {result.critical_count}")
            lines.append(f"  {self._severity_label(Severity.HIGH)} {result.high_count}")
            lines.append(f"  {self._severity_label(Severity.MEDIUM)} {result.medium_count}")
            lines.append(f"  {self._severity_label(Severity.LOW)} {result.low_count}")
            lines.append(f"  {self._severity_label(Severity.INFO)} {result.info_count}")
            lines.append(f"  Auto-fixable:      {result.fixable_count}")

        if result.suppressed_count > 0:
            lines.append(f"  Suppressed:        {result.suppressed_count}")

        lines.append("")

        shown = [f for f in result.findings if self.include_suppressed or not f.suppressed]

        if shown:
            lines.append(self._color("=" * 70, Colors.DIM))
            lines.append(self._color(" DETAILED FINDINGS ", Colors.BOLD))
            lines.append(self._color("=" * 70, Colors.DIM))
            lines.append("")

            # Group by file
            findings_by_file = {}
            for finding in shown:
                findings_by_file.setdefault(finding.location.file_path, []).append(finding)

            for file_path, findings in findings_by_file.items():
                lines.append(self._color(file_path, Colors.CYAN))
                lines.append("")

                for finding in findings:
                    lines.extend(self._format_finding(finding))
                    lines.append("")

        # Errors
        if result.errors:
            lines.append(self._color("=" * 70, Colors.DIM))
            lines.append(self._color(" ERRORS ", Colors.RED))
            lines.append(self._color("=" * 70, Colors.DIM))
            for error in result.errors:
                lines.append(f"  - {error}")
            lines.append("")

        return "\n".join(lines)

    def _format_finding(self, finding: Finding) -> List[str]:
        """Format a single finding."""
        lines = []

        severity_label = self._severity_label(finding.severity)
        location = f"{finding.location.file_path}:{finding.location.start_line}:{finding.location.start_column + 1}"

        if finding.suppressed:
            title = self._color(f"[SUPPRESSED] {finding.message}", Colors.DIM)
        else:
            title = self._color(finding.message, Colors.BOLD)

        lines.append(f"  {severity_label} {title}")
        lines.append(f"  {self._color('Location:', Colors.DIM)} {location}")
        lines.append(f"  {self._color('Rule:', Colors.DIM)} {finding.rule_id} ({finding.category.value})")
        if self.verbose:
            lines.append(f"  {self._color('Confidence:', Colors.DIM)} {finding.confidence.value}")

        # Code snippet
        if finding.snippet:
            lines.append("")
            lines.append(self._color("  Code:", Colors.DIM))

            before = finding.snippet.context_before[-3:] if self.verbose else []
            for i, ctx_line in enumerate(before):
                line_num = finding.snippet.highlighted_line - len(before) + i
                lines.append(self._color(f"    {line_num:4} | {ctx_line}", Colors.DIM))

            lines.append(self._color(
                f"  > {finding.snippet.highlighted_line:4} | {finding.snippet.code}",
                Colors.RED if finding.severity >= Severity.HIGH else Colors.YELLOW
            ))

            after = finding.snippet.context_after[:3] if self.verbose else []
            for i, ctx_line in enumerate(after):
                line_num = finding.snippet.highlighted_line + 1 + i
                lines.append(self._color(f"    {line_num:4} | {ctx_line}", Colors.DIM))

        if finding.fixable:
            lines.append("")
            lines.append(self._color("  Fix available: run `flakescanner fix` to apply", Colors.GREEN))

        lines.append(self._color("  " + "-" * 66, Colors.DIM))

        return lines

    def format_finding(self, finding: Finding) -> str:
        """Format a single finding."""
        return "\n".join(self._format_finding(finding))
