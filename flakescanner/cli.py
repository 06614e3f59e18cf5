"""
Command-line interface for the flaky test scanner.

Provides a CLI for scanning test suites, viewing results, and applying
the automatic fixes.
"""

import argparse
import logging
import os
import sys
from typing import Optional, List

from flakescanner import __version__
from flakescanner.core.engine import ScanEngine
from flakescanner.core.findings import ScanResult, Severity
from flakescanner.core.rules import registry
from flakescanner.config import (
    CONFIG_FILE_NAMES,
    ScanConfig,
    create_default_config,
    load_scan_config,
)
from flakescanner.formatters import get_formatter
from flakescanner.remediation import RemediationEngine

logger = logging.getLogger(__name__)

DEBUG_ENV = "FLAKESCANNER_DEBUG"


def configure_logging(verbosity: int):
    """WARNING by default, INFO for -v, DEBUG for -vv."""
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="flakescanner",
        description="Static detector and fixer for flaky patterns in JavaScript test suites.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  flakescanner scan ./src                       # Scan a directory
  flakescanner scan login.test.js               # Scan a single file
  flakescanner scan . --format json             # Output as JSON
  flakescanner scan . --format sarif -o out     # SARIF output to file
  flakescanner scan . --severity high           # Only high+ severity
  flakescanner init                             # Create config file
  flakescanner fix ./src --dry-run              # Show fixes without applying
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Scan command
    scan_parser = subparsers.add_parser("scan", help="Scan test files for flaky patterns")
    scan_parser.add_argument(
        "target",
        nargs="?",
        default=".",
        help="Target file or directory to scan (default: current directory)",
    )
    scan_parser.add_argument(
        "-c", "--config",
        help="Path to configuration file",
    )
    scan_parser.add_argument(
        "-f", "--format",
        choices=["text", "json", "sarif"],
        default=None,
        help="Output format (default: text)",
    )
    scan_parser.add_argument(
        "-o", "--output",
        help="Output file (default: stdout)",
    )
    scan_parser.add_argument(
        "-s", "--severity",
        choices=["critical", "high", "medium", "low", "info"],
        default="info",
        help="Minimum severity to report (default: info)",
    )
    scan_parser.add_argument(
        "--preset",
        choices=["recommended", "strict", "all"],
        help="Rule preset to start from",
    )
    scan_parser.add_argument(
        "--enable",
        action="append",
        help="Enable a rule by ID (can be specified multiple times)",
    )
    scan_parser.add_argument(
        "--disable",
        action="append",
        help="Disable a rule by ID (can be specified multiple times)",
    )
    scan_parser.add_argument(
        "--include",
        action="append",
        help="Include patterns (can be specified multiple times)",
    )
    scan_parser.add_argument(
        "--exclude",
        action="append",
        help="Exclude patterns (can be specified multiple times)",
    )
    scan_parser.add_argument(
        "--all-files",
        action="store_true",
        help="Scan JavaScript files that do not look like tests",
    )
    scan_parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Verbose output (-vv for debug logging)",
    )
    scan_parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output",
    )
    scan_parser.add_argument(
        "--show-suppressed",
        action="store_true",
        help="Show suppressed findings",
    )
    scan_parser.add_argument(
        "-j", "--jobs",
        type=int,
        default=None,
        help="Number of parallel workers (default: 4)",
    )

    # Fix command
    fix_parser = subparsers.add_parser("fix", help="Apply automatic fixes")
    fix_parser.add_argument(
        "target",
        nargs="?",
        default=".",
        help="Target file or directory",
    )
    fix_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show fixes without applying them",
    )
    fix_parser.add_argument(
        "--no-backup",
        action="store_true",
        help="Don't create backup files",
    )
    fix_parser.add_argument(
        "-c", "--config",
        help="Path to configuration file",
    )
    fix_parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Verbose output (-vv for debug logging)",
    )

    # Init command
    init_parser = subparsers.add_parser("init", help="Create a configuration file")
    init_parser.add_argument(
        "-f", "--force",
        action="store_true",
        help="Overwrite existing config file",
    )

    # List-rules command
    rules_parser = subparsers.add_parser("list-rules", help="List available rules")
    rules_parser.add_argument(
        "--category",
        help="Filter by finding category (for example timing or network)",
    )
    rules_parser.add_argument(
        "--fixable",
        action="store_true",
        help="Only list rules that can produce fixes",
    )

    return parser


def load_config_for(target: str, config_path: Optional[str]) -> ScanConfig:
    """Explicit config file, else the nearest one above the target."""
    start_dir = target if os.path.isdir(target) else os.path.dirname(os.path.abspath(target))
    return load_scan_config(config_path, start_dir=start_dir)


def filter_by_severity(result: ScanResult, minimum: str) -> ScanResult:
    threshold = Severity(minimum)
    result.findings = [f for f in result.findings if f.severity >= threshold]
    return result


def cmd_scan(args: argparse.Namespace) -> int:
    """Execute the scan command."""
    scan_config = load_config_for(args.target, args.config)
    config = scan_config.to_engine_config()

    # Apply command-line overrides
    if args.jobs is not None:
        config["max_workers"] = args.jobs
    if args.include:
        config["include_patterns"] = args.include
    if args.exclude:
        config["ignore_patterns"] = (config.get("ignore_patterns") or []) + args.exclude
    if args.all_files:
        config["include_non_test_files"] = True
    if args.preset:
        config["rules"]["preset"] = args.preset
    if args.enable:
        config["rules"]["enabled"] = list(config["rules"]["enabled"]) + args.enable
    if args.disable:
        config["rules"]["disabled"] = list(config["rules"]["disabled"]) + args.disable

    output_format = args.format or scan_config.output.format

    engine = ScanEngine(config)

    if args.verbose and output_format == "text":
        print(f"Scanning {os.path.abspath(args.target)}...")

    result = filter_by_severity(engine.scan(args.target), args.severity)

    formatter = get_formatter(output_format)

    if hasattr(formatter, 'verbose'):
        formatter.verbose = bool(args.verbose) or scan_config.output.verbose
    if hasattr(formatter, 'use_color'):
        formatter.use_color = scan_config.output.color and not args.no_color
    if hasattr(formatter, 'include_suppressed'):
        formatter.include_suppressed = args.show_suppressed or scan_config.output.show_suppressed

    output = formatter.format_result(result)

    output_file = args.output or scan_config.output.output_file
    if output_file:
        with open(output_file, 'w', encoding='utf-8') as f:
            f.write(output)
        if output_format == "text":
            print(f"Results written to {output_file}")
    else:
        print(output)

    # Non-zero exit when anything high or worse is left unsuppressed
    if result.critical_count > 0 or result.high_count > 0:
        return 1
    return 0


def cmd_fix(args: argparse.Namespace) -> int:
    """Execute the fix command."""
    scan_config = load_config_for(args.target, args.config)

    engine = ScanEngine(scan_config.to_engine_config())
    result = engine.scan(args.target)

    if result.fixable_count == 0:
        print("No fixable findings!")
        return 0

    dry_run = args.dry_run or scan_config.fix.dry_run
    remediation_engine = RemediationEngine({
        "dry_run": dry_run,
        "backup": scan_config.fix.backup and not args.no_backup,
    })

    plan = remediation_engine.generate_remediation_plan(result)

    print(remediation_engine.format_remediation_report(plan))

    if dry_run:
        print("\n[DRY RUN] No files were modified.")
        return 0

    applied = remediation_engine.apply_fixes(plan.fixes, dry_run=False)
    successful = sum(1 for f in applied if f.success)
    print(f"\nApplied fixes to {successful}/{len(applied)} files.")
    return 0 if successful == len(applied) else 1


def cmd_init(args: argparse.Namespace) -> int:
    """Execute the init command."""
    config_file = CONFIG_FILE_NAMES[0]

    if os.path.exists(config_file) and not args.force:
        print(f"Configuration file {config_file} already exists.")
        print("Use --force to overwrite.")
        return 1

    content = create_default_config()

    with open(config_file, 'w', encoding='utf-8') as f:
        f.write(content)

    print(f"Created configuration file: {config_file}")
    return 0


def cmd_list_rules(args: argparse.Namespace) -> int:
    """Execute the list-rules command."""
    rules = registry.all_metadata()

    if args.category:
        rules = [meta for meta in rules if meta.category.value == args.category]
    if args.fixable:
        rules = [meta for meta in rules if meta.fixable]

    print("\nAvailable Rules")
    print("=" * 78)

    for meta in rules:
        status = "✓" if meta.enabled_by_default else "○"
        fix = "fix" if meta.fixable else ""
        print(f"  {status} {meta.rule_id:<26} {meta.category.value:<16} [{meta.severity.value}] {fix}")

    print(f"\nTotal: {len(rules)} rules")
    print("✓ = enabled by default, ○ = disabled by default")

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    configure_logging(getattr(args, "verbose", 0))

    try:
        if args.command == "scan":
            return cmd_scan(args)
        elif args.command == "fix":
            return cmd_fix(args)
        elif args.command == "init":
            return cmd_init(args)
        elif args.command == "list-rules":
            return cmd_list_rules(args)
        else:
            parser.print_help()
            return 0

    except KeyboardInterrupt:
        print("\nScan interrupted.")
        return 130
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        if os.environ.get(DEBUG_ENV):
            raise
        return 1


if __name__ == "__main__":
    sys.exit(main())
