"""
Tests for the flaky test scanner.
"""

import pytest
import json
import os
import sys

import yaml

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from flakescanner.cli import main
from flakescanner.config import (
    ConfigError,
    ScanConfig,
    create_default_config,
    find_config,
    get_preset_rules,
    load_scan_config,
)
from flakescanner.core.engine import ScanEngine, create_engine
from flakescanner.core.findings import (
    CodeLocation,
    Confidence,
    Finding,
    FindingCategory,
    FixEdit,
    ScanResult,
    Severity,
)
from flakescanner.core.rules import registry
from flakescanner.formatters import CLIFormatter, JSONFormatter, SARIFFormatter, get_formatter
from flakescanner.remediation import RemediationEngine


EXAMPLES_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "examples")

ONLY_TEST = "it.only('runs alone', () => {});\n"


def result_for(code, path="example.test.js"):
    findings = ScanEngine().scan_source(code, path)
    return ScanResult(
        findings=findings,
        files_scanned=1,
        scan_time_seconds=0.1,
        frameworks_detected=["jest"],
        rules_applied=["no-test-focus"],
    )


class TestScanEngine:
    """Tests for the main scan engine."""

    def test_engine_creation(self):
        """Test that engine can be created."""
        engine = ScanEngine()
        assert engine is not None
        assert "no-hard-coded-timeout" in engine.active_rules

    def test_engine_with_config(self):
        """Test engine creation with configuration."""
        config = {
            "max_workers": 2,
            "rules": {"disabled": ["no-random-data"], "enabled": ["no-index-queries"]},
        }
        engine = ScanEngine(config)
        assert engine.max_workers == 2
        assert "no-random-data" not in engine.active_rules
        assert "no-index-queries" in engine.active_rules
        assert "no-viewport-dependent" not in engine.active_rules

    def test_recommended_preset(self):
        """The selector rules are opt-in."""
        engine = ScanEngine()
        for rule_id in ("no-index-queries", "no-long-text-match", "no-viewport-dependent"):
            assert rule_id not in engine.active_rules
        assert len(ScanEngine({"rules": {"preset": "all"}}).active_rules) == registry.rule_count

    def test_strict_preset_raises_severity(self):
        """The strict preset lifts low severity rules to medium."""
        engine = ScanEngine({"rules": {"preset": "strict"}})
        assert engine.severity_overrides["no-index-queries"] == Severity.MEDIUM
        assert "no-test-focus" not in engine.severity_overrides

    def test_disable_with_wildcard(self):
        """Rule selections accept glob patterns."""
        engine = ScanEngine({"rules": {"disabled": ["no-unmocked-*"]}})
        assert "no-unmocked-network" not in engine.active_rules
        assert "no-unmocked-fs" not in engine.active_rules

    def test_severity_override(self):
        """Overrides change the severity of reported findings."""
        engine = ScanEngine({"rules": {"severity_overrides": {"no-random-data": "critical"}}})
        findings = engine.scan_source("test('x', () => { Math.random(); });", "example.test.js")
        assert [f.severity for f in findings if f.rule_id == "no-random-data"] == [Severity.CRITICAL]

    def test_unknown_severity_override(self):
        """An invalid severity is a configuration error."""
        with pytest.raises(ConfigError):
            ScanEngine({"rules": {"severity_overrides": {"no-random-data": "urgent"}}})

    def test_unknown_preset(self):
        """Unknown presets are rejected."""
        with pytest.raises(ConfigError):
            ScanEngine({"rules": {"preset": "paranoid"}})

    def test_scan_example_file(self):
        """The bundled example triggers the main rule families."""
        engine = ScanEngine()
        result = engine.scan(os.path.join(EXAMPLES_DIR, "flaky_examples.test.js"))

        assert result.files_scanned == 1
        assert result.errors == []
        assert "testing-library" in result.frameworks_detected

        rule_ids = {f.rule_id for f in result.findings}
        for expected in (
            "no-test-isolation",
            "no-test-focus",
            "await-async-events",
            "no-hard-coded-timeout",
            "no-promise-race",
            "no-unmocked-network",
            "no-unmocked-fs",
            "no-random-data",
            "no-animation-wait",
            "no-focus-check",
        ):
            assert expected in rule_ids
        assert result.fixable_count > 0

    def test_discover_files(self, tmp_path):
        """Only test files outside ignored directories are scanned."""
        (tmp_path / "login.test.js").write_text(ONLY_TEST)
        (tmp_path / "helper.js").write_text("export const x = 1;\n")
        (tmp_path / "__tests__").mkdir()
        (tmp_path / "__tests__" / "cart.js").write_text("test('cart', () => {});\n")
        (tmp_path / "node_modules" / "pkg").mkdir(parents=True)
        (tmp_path / "node_modules" / "pkg" / "a.test.js").write_text(ONLY_TEST)

        engine = ScanEngine()
        files = sorted(os.path.relpath(f, tmp_path) for f in engine.discover_files(str(tmp_path)))
        assert files == [os.path.join("__tests__", "cart.js"), "login.test.js"]

    def test_include_non_test_files(self, tmp_path):
        """Non-test sources can be opted in."""
        (tmp_path / "helper.js").write_text("export const x = 1;\n")
        engine = ScanEngine({"include_non_test_files": True})
        assert len(list(engine.discover_files(str(tmp_path)))) == 1

    def test_scan_directory_in_parallel(self, tmp_path):
        """Findings are collected from every file in path order."""
        for name in ("b.test.js", "a.test.js", "c.test.js"):
            (tmp_path / name).write_text(ONLY_TEST)
        result = ScanEngine({"max_workers": 3}).scan(str(tmp_path))

        assert result.files_scanned == 3
        paths = [os.path.basename(f.location.file_path) for f in result.findings]
        assert paths == ["a.test.js", "b.test.js", "c.test.js"]

    def test_errors_belong_to_one_scan(self, tmp_path, monkeypatch):
        """Each scan reports only its own errors, in a list of its own."""
        (tmp_path / "a.test.js").write_text(ONLY_TEST)
        engine = ScanEngine()

        def broken(source, file_path):
            raise RuntimeError("boom")

        monkeypatch.setattr(engine, "analyze", broken)
        first = engine.scan(str(tmp_path))
        second = engine.scan(str(tmp_path))

        assert len(first.errors) == 1
        assert "boom" in first.errors[0]
        assert len(second.errors) == 1
        assert first.errors is not second.errors

    def test_create_engine(self, tmp_path):
        """Engines can be created from a config file plus overrides."""
        config_file = tmp_path / ".flakescanner.yaml"
        config_file.write_text("rules:\n  disabled:\n    - no-random-data\n")
        engine = create_engine(str(config_file), max_workers=1)
        assert engine.max_workers == 1
        assert "no-random-data" not in engine.active_rules


class TestFindings:
    """Tests for finding data structures."""

    def make_finding(self, **overrides):
        data = dict(
            rule_id="no-test-focus",
            category=FindingCategory.TEST_FOCUS,
            message_key="no_test_only",
            message="Unexpected it.only - this will cause other tests to be skipped",
            severity=Severity.HIGH,
            confidence=Confidence.HIGH,
            location=CodeLocation(file_path="a.test.js", start_line=1, end_line=1, end_column=7, end_byte=7),
            message_data={"method": "it"},
            fix=[FixEdit(2, 7, "")],
        )
        data.update(overrides)
        return Finding(**data)

    def test_finding_creation(self):
        """Test creating a finding."""
        finding = self.make_finding()
        assert finding.rule_id == "no-test-focus"
        assert finding.severity == Severity.HIGH
        assert finding.location.start_line == 1
        assert finding.fixable

    def test_finding_to_dict(self):
        """Test converting finding to dictionary and back."""
        finding = self.make_finding()
        data = finding.to_dict()

        assert data["rule_id"] == "no-test-focus"
        assert data["severity"] == "high"
        assert data["category"] == "test-focus"
        assert data["location"]["start_line"] == 1
        assert data["fix"] == [{"start": 2, "end": 7, "replacement": "", "group": "replace"}]

        restored = Finding.from_dict(data)
        assert restored == finding

    def test_finding_without_fix(self):
        """A finding without a fix serializes fix as None."""
        finding = self.make_finding(fix=None)
        assert not finding.fixable
        assert finding.to_dict()["fix"] is None
        assert Finding.from_dict(finding.to_dict()).fix is None

    def test_severity_comparison(self):
        """Test severity level comparison."""
        assert Severity.CRITICAL > Severity.HIGH
        assert Severity.HIGH > Severity.MEDIUM
        assert Severity.MEDIUM > Severity.LOW
        assert Severity.LOW > Severity.INFO
        assert Severity.HIGH >= Severity.HIGH

    def test_result_counts(self):
        """Suppressed findings are excluded from the counts."""
        result = ScanResult(
            findings=[self.make_finding(), self.make_finding(suppressed=True)],
            files_scanned=1,
            scan_time_seconds=0.0,
            frameworks_detected=[],
            rules_applied=[],
        )
        assert result.high_count == 1
        assert result.total_findings == 1
        assert result.suppressed_count == 1
        assert result.fixable_count == 1
        assert result.to_dict()["summary"]["by_severity"]["high"] == 1


class TestConfig:
    """Tests for configuration loading."""

    def test_defaults(self):
        """A default config uses the recommended preset."""
        config = ScanConfig()
        assert config.rules.preset == "recommended"
        assert config.fix.backup is True
        assert config.output.format == "text"

    def test_from_dict(self):
        """Nested scan settings and rule sections are mapped."""
        config = ScanConfig.from_dict({
            "scan": {"exclude": ["vendor/**"], "include": ["*.spec.js"], "max_workers": 2},
            "rules": {"preset": "strict", "options": {"no-hard-coded-timeout": {"max_timeout": 500}}},
            "output": {"format": "json"},
        })
        assert config.exclude_patterns == ["vendor/**"]
        assert config.include_patterns == ["*.spec.js"]
        assert config.max_workers == 2
        assert config.rules.preset == "strict"
        assert config.output.format == "json"

        engine_config = config.to_engine_config()
        assert engine_config["ignore_patterns"] == ["vendor/**"]
        assert engine_config["rules"]["options"]["no-hard-coded-timeout"]["max_timeout"] == 500

    def test_unknown_preset(self):
        """Unknown presets are rejected when loading."""
        with pytest.raises(ConfigError):
            ScanConfig.from_dict({"rules": {"preset": "paranoid"}})
        with pytest.raises(ConfigError):
            get_preset_rules("paranoid")

    def test_invalid_section(self):
        """Unknown keys inside a section are a configuration error."""
        with pytest.raises(ConfigError):
            ScanConfig.from_dict({"output": {"colour": True}})

    def test_load_yaml(self, tmp_path):
        """YAML files are found and loaded."""
        (tmp_path / ".flakescanner.yaml").write_text(
            "rules:\n  disabled:\n    - no-random-data\noutput:\n  format: sarif\n"
        )
        config = load_scan_config(start_dir=str(tmp_path))
        assert config.rules.disabled == ["no-random-data"]
        assert config.output.format == "sarif"

    def test_load_json(self, tmp_path):
        """JSON files are supported too."""
        path = tmp_path / "flakescanner.json"
        path.write_text(json.dumps({"fix": {"backup": False}}))
        config = load_scan_config(str(path))
        assert config.fix.backup is False

    def test_non_mapping(self, tmp_path):
        """A config file must hold a mapping."""
        path = tmp_path / ".flakescanner.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            load_scan_config(str(path))

    def test_missing_file(self, tmp_path):
        """An explicit missing path is an error."""
        with pytest.raises(ConfigError):
            load_scan_config(str(tmp_path / "nope.yaml"))

    def test_find_config_searches_parents(self, tmp_path):
        """Config files are found in parent directories."""
        (tmp_path / ".flakescanner.yml").write_text("rules: {}\n")
        nested = tmp_path / "src" / "components"
        nested.mkdir(parents=True)
        assert find_config(str(nested)) == str((tmp_path / ".flakescanner.yml").resolve())

    def test_default_config_content(self):
        """The generated default config is valid YAML and loads back."""
        data = yaml.safe_load(create_default_config())
        assert data["rules"]["preset"] == "recommended"
        assert data["rules"]["options"]["no-hard-coded-timeout"]["max_timeout"] == 1000

        config = ScanConfig.from_dict(data)
        assert config.max_file_size == 1048576


class TestFormatters:
    """Tests for output formatters."""

    def test_get_formatter(self):
        """Formatters are looked up by name."""
        assert isinstance(get_formatter("text"), CLIFormatter)
        assert isinstance(get_formatter("json"), JSONFormatter)
        assert isinstance(get_formatter("SARIF"), SARIFFormatter)
        with pytest.raises(ValueError):
            get_formatter("xml")

    def test_cli_formatter(self):
        """Test CLI formatter output."""
        formatter = CLIFormatter(use_color=False)
        output = formatter.format_result(result_for(ONLY_TEST))

        assert "FLAKY TEST SCAN RESULTS" in output
        assert "Unexpected it.only" in output
        assert "example.test.js:1:1" in output
        assert "Fix available" in output

    def test_cli_formatter_empty(self):
        """An empty result says so."""
        output = CLIFormatter(use_color=False).format_result(result_for("test('ok', () => {});\n"))
        assert "No flaky patterns found!" in output

    def test_json_formatter(self):
        """Test JSON formatter output."""
        output = JSONFormatter().format_result(result_for(ONLY_TEST))
        data = json.loads(output)

        assert data["summary"]["total_findings"] == 1
        assert data["summary"]["by_severity"]["high"] == 1
        finding = data["findings"][0]
        assert finding["rule_id"] == "no-test-focus"
        assert finding["message_key"] == "no_test_only"
        assert finding["message_data"] == {"method": "it"}

    def test_format_single_finding(self):
        """A single finding renders on its own in both text and JSON."""
        finding = result_for(ONLY_TEST).findings[0]

        text = CLIFormatter(use_color=False).format_finding(finding)
        assert "no-test-focus" in text
        assert "example.test.js:1:1" in text

        data = json.loads(JSONFormatter().format_finding(finding))
        assert data["message_key"] == "no_test_only"

    def test_json_formatter_hides_suppressed(self):
        """Suppressed findings are left out unless asked for."""
        code = "// flakescanner-ignore\nit.only('runs alone', () => {});\n"
        result = result_for(code)
        assert json.loads(JSONFormatter().format_result(result))["findings"] == []
        shown = json.loads(JSONFormatter(include_suppressed=True).format_result(result))["findings"]
        assert shown[0]["suppressed"] is True

    def test_sarif_formatter(self):
        """Test SARIF formatter output."""
        output = SARIFFormatter().format_result(result_for(ONLY_TEST))
        data = json.loads(output)

        assert data["version"] == "2.1.0"
        run = data["runs"][0]
        assert run["tool"]["driver"]["name"] == "FlakeScanner"
        assert run["tool"]["driver"]["rules"][0]["id"] == "no-test-focus"

        result = run["results"][0]
        assert result["ruleId"] == "no-test-focus"
        assert result["level"] == "error"
        assert result["properties"]["messageKey"] == "no_test_only"
        region = result["locations"][0]["physicalLocation"]["region"]
        assert region["startLine"] == 1
        assert region["startColumn"] == 1

        replacement = result["fixes"][0]["artifactChanges"][0]["replacements"][0]
        assert replacement["deletedRegion"] == {"byteOffset": 2, "byteLength": 5}
        assert replacement["insertedContent"] == {"text": ""}

    def test_sarif_suppressions(self):
        """Suppressed findings carry a suppression when included."""
        code = "// flakescanner-ignore\nit.only('runs alone', () => {});\n"
        output = SARIFFormatter(include_suppressed=True).format_result(result_for(code))
        result = json.loads(output)["runs"][0]["results"][0]
        assert result["suppressions"][0]["kind"] == "inSource"


class TestRemediation:
    """Tests for the remediation engine."""

    def scan_file(self, path):
        return ScanEngine().scan(str(path))

    def test_remediation_plan(self, tmp_path):
        """A plan holds the fixed source and a diff per file."""
        path = tmp_path / "only.test.js"
        path.write_text(ONLY_TEST)

        engine = RemediationEngine()
        plan = engine.generate_remediation_plan(self.scan_file(path))

        assert plan.auto_fixable_count == 1
        assert len(plan.fixes) == 1
        fix = plan.fixes[0]
        assert fix.fixed_code == "it('runs alone', () => {});\n"
        assert "-it.only('runs alone', () => {});" in fix.diff
        assert "+it('runs alone', () => {});" in fix.diff
        assert "REMEDIATION REPORT" in engine.format_remediation_report(plan)

    def test_apply_fixes_with_backup(self, tmp_path):
        """Applying writes the fixed file and a backup."""
        path = tmp_path / "only.test.js"
        path.write_text(ONLY_TEST)

        engine = RemediationEngine({"dry_run": False, "backup": True})
        plan = engine.generate_remediation_plan(self.scan_file(path))
        applied = engine.apply_fixes(plan.fixes)

        assert all(fix.success for fix in applied)
        assert path.read_text() == "it('runs alone', () => {});\n"
        assert (tmp_path / "only.test.js.bak").read_text() == ONLY_TEST

    def test_dry_run(self, tmp_path):
        """A dry run leaves the file alone."""
        path = tmp_path / "only.test.js"
        path.write_text(ONLY_TEST)

        engine = RemediationEngine()
        plan = engine.generate_remediation_plan(self.scan_file(path))
        engine.apply_fixes(plan.fixes)

        assert path.read_text() == ONLY_TEST
        assert not (tmp_path / "only.test.js.bak").exists()

    def test_manual_findings_reported(self, tmp_path):
        """Findings without a fix are listed for manual remediation."""
        path = tmp_path / "random.test.js"
        path.write_text("test('x', () => { Math.random(); });\n")

        engine = RemediationEngine()
        plan = engine.generate_remediation_plan(self.scan_file(path))

        assert plan.fixes == []
        assert plan.manual_fix_count == 1
        assert "MANUAL REMEDIATION REQUIRED" in engine.format_remediation_report(plan)


class TestCLI:
    """Tests for the command-line interface."""

    def test_no_command(self, capsys):
        """Without a command the help is shown."""
        assert main([]) == 0
        assert "flakescanner" in capsys.readouterr().out

    def test_list_rules(self, capsys):
        """All registered rules are listed."""
        assert main(["list-rules"]) == 0
        output = capsys.readouterr().out
        assert "Available Rules" in output
        assert "no-hard-coded-timeout" in output
        assert "Total: %d rules" % registry.rule_count in output

    def test_list_fixable_rules(self, capsys):
        """--fixable filters to rules that produce fixes."""
        assert main(["list-rules", "--fixable"]) == 0
        output = capsys.readouterr().out
        assert "no-test-focus" in output
        assert "no-unmocked-network" not in output

    def test_init(self, tmp_path, monkeypatch, capsys):
        """init writes a config file and refuses to overwrite it."""
        monkeypatch.chdir(tmp_path)
        assert main(["init"]) == 0
        assert (tmp_path / ".flakescanner.yaml").exists()
        assert main(["init"]) == 1
        assert main(["init", "--force"]) == 0

    def test_scan_exit_code(self, tmp_path, capsys):
        """High severity findings fail the scan."""
        (tmp_path / "only.test.js").write_text(ONLY_TEST)
        assert main(["scan", str(tmp_path), "--no-color"]) == 1
        assert "FLAKY TEST SCAN RESULTS" in capsys.readouterr().out

    def test_scan_clean(self, tmp_path, capsys):
        """A clean suite passes."""
        (tmp_path / "ok.test.js").write_text("test('ok', () => { expect(1).toBe(1); });\n")
        assert main(["scan", str(tmp_path), "--no-color"]) == 0

    def test_scan_severity_filter(self, tmp_path, capsys):
        """Findings below the minimum severity are dropped."""
        (tmp_path / "random.test.js").write_text("test('x', () => { Math.random(); });\n")
        output_file = tmp_path / "out.json"
        assert main(["scan", str(tmp_path), "--severity", "high", "--format", "json", "-o", str(output_file)]) == 0
        assert json.loads(output_file.read_text())["findings"] == []

    def test_scan_json_output(self, tmp_path):
        """JSON output can be written to a file."""
        target = tmp_path / "only.test.js"
        target.write_text(ONLY_TEST)
        output_file = tmp_path / "out.json"

        assert main(["scan", str(target), "--format", "json", "-o", str(output_file)]) == 1
        data = json.loads(output_file.read_text())
        assert data["summary"]["total_findings"] == 1
        assert data["findings"][0]["rule_id"] == "no-test-focus"

    def test_fix_dry_run(self, tmp_path, capsys):
        """fix --dry-run prints the report without touching files."""
        target = tmp_path / "only.test.js"
        target.write_text(ONLY_TEST)

        assert main(["fix", str(tmp_path), "--dry-run"]) == 0
        output = capsys.readouterr().out
        assert "REMEDIATION REPORT" in output
        assert "[DRY RUN]" in output
        assert target.read_text() == ONLY_TEST

    def test_fix_applies(self, tmp_path, capsys):
        """fix rewrites the file."""
        target = tmp_path / "only.test.js"
        target.write_text(ONLY_TEST)

        assert main(["fix", str(tmp_path), "--no-backup"]) == 0
        assert target.read_text() == "it('runs alone', () => {});\n"
        assert not (tmp_path / "only.test.js.bak").exists()

    def test_fix_nothing_to_do(self, tmp_path, capsys):
        """Nothing fixable is reported as such."""
        (tmp_path / "ok.test.js").write_text("test('ok', () => {});\n")
        assert main(["fix", str(tmp_path)]) == 0
        assert "No fixable findings!" in capsys.readouterr().out


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
