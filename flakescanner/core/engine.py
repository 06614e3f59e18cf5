"""
Main scanning engine for the flaky-test scanner.

This module orchestrates the scanning process: it discovers test files,
parses them, runs the configured detectors over each file in a single
traversal and collects the findings.
"""

import fnmatch
import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional, Set, Tuple, Union

from flakescanner.config import ConfigError, get_preset_rules, matches_any
from flakescanner.core.findings import Finding, ScanResult, Severity
from flakescanner.core.framework import is_test_file
from flakescanner.core.rules import AnalysisContext, Detector, registry
from flakescanner.core.walker import TreeWalker
from flakescanner.parsers.javascript import EXTENSIONS, parse_source

# Import rules to register them with the registry
import flakescanner.rules  # noqa: F401

logger = logging.getLogger(__name__)


# Default ignore patterns
DEFAULT_IGNORE_PATTERNS = [
    "node_modules/**",
    "node_modules",
    ".git/**",
    ".git",
    "dist/**",
    "build/**",
    "coverage/**",
    ".next/**",
    "*.min.js",
    "*.bundle.js",
    ".idea/**",
    ".vscode/**",
]


class ScanEngine:
    """
    Main scanning engine that orchestrates the analysis process.

    The engine:
    1. Discovers test files in the target directory
    2. Parses each file with tree-sitter
    3. Runs the selected detectors in one traversal per file
    4. Collects and returns findings
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.registry = registry
        self.errors: List[str] = []

        # Configuration options
        self.max_file_size = self.config.get("max_file_size", 1024 * 1024)  # 1MB
        self.max_workers = self.config.get("max_workers", 4)
        self.ignore_patterns = self.config.get("ignore_patterns") or DEFAULT_IGNORE_PATTERNS
        self.include_patterns = self.config.get("include_patterns", None)
        self.include_non_test_files = self.config.get("include_non_test_files", False)
        self.rule_config = self.config.get("rules", {})

        self.active_rules: List[str] = []
        self.severity_overrides: Dict[str, Severity] = {}
        self._configure_rules()

    def _configure_rules(self):
        """Resolve the preset, explicit selections and severity overrides."""
        preset = get_preset_rules(self.rule_config.get("preset", "recommended"))
        enabled = self.rule_config.get("enabled", []) or []
        disabled = self.rule_config.get("disabled", []) or []

        for rule_id in enabled + disabled:
            if self.registry.get_metadata(rule_id) is None and not any(c in rule_id for c in "*?["):
                logger.warning("Unknown rule in configuration: %s", rule_id)

        self.active_rules = []
        for rule_id in self.registry.rule_ids:
            active = matches_any(rule_id, preset["enabled"]) and not matches_any(rule_id, preset["disabled"])
            if matches_any(rule_id, enabled):
                active = True
            if matches_any(rule_id, disabled):
                active = False
            if active:
                self.active_rules.append(rule_id)

        floor = preset.get("severity_floor")
        for rule_id in self.active_rules:
            severity = self.registry.get_metadata(rule_id).severity
            if floor and severity < Severity(floor):
                self.severity_overrides[rule_id] = Severity(floor)

        for rule_id, value in (self.rule_config.get("severity_overrides") or {}).items():
            try:
                self.severity_overrides[rule_id] = Severity(str(value).lower())
            except ValueError:
                raise ConfigError(f"Unknown severity '{value}' for rule {rule_id}")

    def create_detectors(self) -> List[Detector]:
        """Fresh detector instances for one file."""
        options = self.rule_config.get("options", {}) or {}
        return [
            self.registry.get_rule(rule_id, options.get(rule_id), self.severity_overrides.get(rule_id))
            for rule_id in self.active_rules
        ]

    def should_ignore(self, file_path: str, base_path: str) -> bool:
        """Check if a file should be ignored based on patterns."""
        rel_path = os.path.relpath(file_path, base_path)

        for pattern in self.ignore_patterns:
            if fnmatch.fnmatch(rel_path, pattern) or fnmatch.fnmatch(os.path.basename(file_path), pattern):
                return True

        if self.include_patterns and os.path.isfile(file_path):
            if not any(
                fnmatch.fnmatch(rel_path, pattern) or fnmatch.fnmatch(os.path.basename(file_path), pattern)
                for pattern in self.include_patterns
            ):
                return True

        return False

    def discover_files(self, target_path: str) -> Generator[str, None, None]:
        """Discover all test files to scan in the target path."""
        target = Path(target_path)

        if target.is_file():
            yield str(target)
            return

        for root, dirs, files in os.walk(target):
            dirs[:] = sorted(d for d in dirs if not self.should_ignore(os.path.join(root, d), target_path))

            for file in sorted(files):
                file_path = os.path.join(root, file)

                if not file.endswith(EXTENSIONS) or self.should_ignore(file_path, target_path):
                    continue

                if not self.include_non_test_files and not is_test_file(file_path):
                    continue

                try:
                    if os.path.getsize(file_path) > self.max_file_size:
                        logger.info("Skipping %s: larger than %d bytes", file_path, self.max_file_size)
                        continue
                except OSError:
                    continue

                yield file_path

    def read_file(self, file_path: str) -> Optional[bytes]:
        """Read a file's contents."""
        try:
            return Path(file_path).read_bytes()
        except OSError as e:
            self.errors.append(f"Error reading {file_path}: {e}")
            return None

    def analyze(self, source: Union[str, bytes], file_path: str) -> Tuple[List[Finding], AnalysisContext]:
        """Run the detectors over one source buffer."""
        parsed = parse_source(source, file_path)
        context = AnalysisContext(parsed, config=self.config)
        findings = TreeWalker(self.create_detectors()).walk(context)
        self.errors.extend(context.errors)
        logger.debug("%s: %d finding(s)", file_path, len(findings))
        return findings, context

    def scan_file(self, file_path: str) -> List[Finding]:
        """Scan a single file and return findings."""
        source = self.read_file(file_path)
        if source is None:
            return []
        findings, _ = self.analyze(source, file_path)
        return findings

    def scan_source(self, source: Union[str, bytes], file_path: str = "<stdin>") -> List[Finding]:
        """
        Scan code content directly without reading from a file.

        Useful for editor integrations and testing.
        """
        findings, _ = self.analyze(source, file_path)
        return findings

    def _scan_one(self, file_path: str) -> Tuple[List[Finding], Optional[str]]:
        source = self.read_file(file_path)
        if source is None:
            return [], None
        findings, context = self.analyze(source, file_path)
        framework = context.framework.value if context.framework else None
        return findings, framework

    def scan(self, target_path: str) -> ScanResult:
        """
        Scan a target path and return results.

        Args:
            target_path: Path to a file or directory to scan.

        Returns:
            ScanResult containing all findings and metadata.
        """
        start_time = time.time()
        self.errors = []
        per_file: Dict[str, List[Finding]] = {}
        frameworks_detected: Set[str] = set()

        files = list(self.discover_files(target_path))
        logger.info("Scanning %d file(s) under %s", len(files), target_path)

        if len(files) > 1 and self.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {executor.submit(self._scan_one, f): f for f in files}

                for future in as_completed(futures):
                    file_path = futures[future]
                    try:
                        findings, framework = future.result()
                    except Exception as e:
                        self.errors.append(f"Error scanning {file_path}: {e}")
                        continue
                    per_file[file_path] = findings
                    if framework:
                        frameworks_detected.add(framework)
        else:
            for file_path in files:
                try:
                    findings, framework = self._scan_one(file_path)
                except Exception as e:
                    self.errors.append(f"Error scanning {file_path}: {e}")
                    continue
                per_file[file_path] = findings
                if framework:
                    frameworks_detected.add(framework)

        # Files in path order, each file in reporter order
        all_findings: List[Finding] = []
        for file_path in sorted(per_file):
            all_findings.extend(per_file[file_path])

        return ScanResult(
            findings=all_findings,
            files_scanned=len(per_file),
            scan_time_seconds=round(time.time() - start_time, 3),
            frameworks_detected=sorted(frameworks_detected),
            rules_applied=list(self.active_rules),
            errors=list(self.errors),
        )


def create_engine(config_path: Optional[str] = None, **kwargs) -> ScanEngine:
    """
    Create a scan engine with configuration.

    Args:
        config_path: Optional path to a configuration file.
        **kwargs: Additional configuration options.

    Returns:
        Configured ScanEngine instance.
    """
    config: Dict[str, Any] = {}

    if config_path:
        from flakescanner.config import load_scan_config
        config = load_scan_config(config_path).to_engine_config()

    config.update(kwargs)

    return ScanEngine(config)
