"""
SARIF output formatter for code-scanning integration.

SARIF (Static Analysis Results Interchange Format) is a standard
format for static analysis tool output, supported by many IDEs
and code review tools.
"""

import json
from datetime import datetime, timezone
from typing import Dict, Any, List

from flakescanner import __version__
from flakescanner.core.findings import Finding, ScanResult, Severity
from flakescanner.core.rules import registry


SARIF_LEVEL = {
    Severity.CRITICAL: "error",
    Severity.HIGH: "error",
    Severity.MEDIUM: "warning",
    Severity.LOW: "note",
    Severity.INFO: "none",
}


class SARIFFormatter:
    """
    Formats scan results in SARIF format.

    Fix edits are emitted as byte-addressed replacements, the same
    offsets the remediation engine applies.
    """

    SARIF_VERSION = "2.1.0"
    SCHEMA_URI = "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/master/Schemata/sarif-schema-2.1.0.json"

    def __init__(self, include_suppressed: bool = False):
        self.include_suppressed = include_suppressed

    def format_result(self, result: ScanResult) -> str:
        """Format a complete scan result in SARIF format."""
        sarif = {
            "$schema": self.SCHEMA_URI,
            "version": self.SARIF_VERSION,
            "runs": [self._create_run(result)],
        }

        return json.dumps(sarif, indent=2)

    def _create_run(self, result: ScanResult) -> Dict[str, Any]:
        """Create a SARIF run object."""
        rules = self._collect_rules(result.findings)

        return {
            "tool": self._create_tool(rules),
            "results": [
                self._create_result(finding)
                for finding in result.findings
                if self.include_suppressed or not finding.suppressed
            ],
            "invocations": [self._create_invocation(result)],
        }

    def _create_tool(self, rules: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "driver": {
                "name": "FlakeScanner",
                "version": __version__,
                "informationUri": "https://github.com/flakescanner/flakescanner",
                "rules": rules,
            }
        }

    def _collect_rules(self, findings: List[Finding]) -> List[Dict[str, Any]]:
        """Collect unique rules from findings."""
        rules_seen = set()
        rules = []

        for finding in findings:
            if finding.rule_id not in rules_seen:
                rules_seen.add(finding.rule_id)
                rules.append(self._create_rule(finding))

        return rules

    def _create_rule(self, finding: Finding) -> Dict[str, Any]:
        """Create a SARIF rule object, described from the rule's metadata."""
        metadata = registry.get_metadata(finding.rule_id)
        name = metadata.name if metadata else finding.rule_id
        description = metadata.description if metadata else finding.message

        return {
            "id": finding.rule_id,
            "name": name,
            "shortDescription": {
                "text": name,
            },
            "fullDescription": {
                "text": description,
            },
            "defaultConfiguration": {
                "level": SARIF_LEVEL.get(finding.severity, "warning"),
            },
            "properties": {
                "tags": list(metadata.tags) if metadata else [],
                "category": finding.category.value,
            },
        }

    def _create_result(self, finding: Finding) -> Dict[str, Any]:
        """Create a SARIF result object from a finding."""
        location = finding.location
        region = {
            "startLine": location.start_line,
            "endLine": location.end_line,
            "startColumn": location.start_column + 1,  # SARIF is 1-indexed
            "endColumn": location.end_column + 1,
        }
        if finding.snippet:
            region["snippet"] = {"text": finding.snippet.code}

        result = {
            "ruleId": finding.rule_id,
            "level": SARIF_LEVEL.get(finding.severity, "warning"),
            "message": {
                "text": finding.message,
            },
            "locations": [
                {
                    "physicalLocation": {
                        "artifactLocation": {
                            "uri": location.file_path,
                        },
                        "region": region,
                    },
                }
            ],
            "properties": {
                "confidence": finding.confidence.value,
                "messageKey": finding.message_key,
            },
        }

        if finding.suppressed:
            result["suppressions"] = [
                {
                    "kind": "inSource",
                    "justification": finding.suppression_reason or "Suppressed by inline comment",
                }
            ]

        if finding.fix:
            result["fixes"] = [
                {
                    "description": {
                        "text": f"Apply the {finding.rule_id} fix",
                    },
                    "artifactChanges": [
                        {
                            "artifactLocation": {
                                "uri": location.file_path,
                            },
                            "replacements": [
                                {
                                    "deletedRegion": {
                                        "byteOffset": edit.start,
                                        "byteLength": edit.end - edit.start,
                                    },
                                    "insertedContent": {
                                        "text": edit.replacement,
                                    },
                                }
                                for edit in sorted(finding.fix, key=lambda e: (e.start, e.end))
                            ],
                        }
                    ],
                }
            ]

        return result

    def _create_invocation(self, result: ScanResult) -> Dict[str, Any]:
        """Create a SARIF invocation object."""
        return {
            "executionSuccessful": len(result.errors) == 0,
            "endTimeUtc": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "toolExecutionNotifications": [
                {
                    "message": {
                        "text": error,
                    },
                    "level": "error",
                }
                for error in result.errors
            ],
        }
