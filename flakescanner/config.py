"""
Configuration system for the flaky-test scanner.

Supports YAML and JSON configuration files for customizing
scanning behavior, rules, output and fixing.
"""

import fnmatch
import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

# Default configuration file names to search for
CONFIG_FILE_NAMES = [
    ".flakescanner.yaml",
    ".flakescanner.yml",
    ".flakescanner.json",
    "flakescanner.yaml",
    "flakescanner.yml",
    "flakescanner.json",
]


class ConfigError(ValueError):
    """Raised for invalid or unreadable configuration."""


@dataclass
class RuleSetConfig:
    """Configuration for rule selection."""
    preset: str = "recommended"
    enabled: List[str] = field(default_factory=list)
    disabled: List[str] = field(default_factory=list)
    severity_overrides: Dict[str, str] = field(default_factory=dict)
    options: Dict[str, Dict[str, Any]] = field(default_factory=dict)


@dataclass
class OutputConfig:
    """Configuration for output formatting."""
    format: str = "text"  # text, json, sarif
    output_file: Optional[str] = None
    verbose: bool = False
    show_suppressed: bool = False
    show_context: bool = True
    color: bool = True


@dataclass
class FixConfig:
    """Configuration for applying fixes."""
    backup: bool = True
    dry_run: bool = False


@dataclass
class ScanConfig:
    """
    Main configuration for the flaky-test scanner.

    Example YAML config:

    ```yaml
    scan:
      exclude:
        - "node_modules/**"
        - "dist/**"
      include:
        - "*.test.js"
      max_file_size: 1048576
      max_workers: 4
      include_non_test_files: false

    rules:
      preset: recommended  # recommended, strict, all
      enabled:
        - no-index-queries
      disabled:
        - no-random-data
      severity_overrides:
        no-hard-coded-timeout: critical
      options:
        no-hard-coded-timeout:
          max_timeout: 500

    output:
      format: text
      color: true

    fix:
      backup: true
      dry_run: false
    ```
    """
    # Scan settings
    target: str = "."
    exclude_patterns: List[str] = field(default_factory=lambda: [
        "node_modules/**",
        ".git/**",
        "dist/**",
        "build/**",
        "coverage/**",
        "*.min.js",
    ])
    include_patterns: Optional[List[str]] = None
    max_file_size: int = 1024 * 1024  # 1MB
    max_workers: int = 4
    include_non_test_files: bool = False

    rules: RuleSetConfig = field(default_factory=RuleSetConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    fix: FixConfig = field(default_factory=FixConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to a dictionary."""
        return asdict(self)

    def to_engine_config(self) -> Dict[str, Any]:
        """Convert to engine configuration format."""
        return {
            "max_file_size": self.max_file_size,
            "max_workers": self.max_workers,
            "ignore_patterns": self.exclude_patterns,
            "include_patterns": self.include_patterns,
            "include_non_test_files": self.include_non_test_files,
            "rules": {
                "preset": self.rules.preset,
                "enabled": self.rules.enabled,
                "disabled": self.rules.disabled,
                "severity_overrides": self.rules.severity_overrides,
                "options": self.rules.options,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanConfig":
        """Create config from a dictionary."""
        data = dict(data)

        # Handle nested 'scan' section
        if isinstance(data.get("scan"), dict):
            data.update(data.pop("scan"))

        try:
            if isinstance(data.get("rules"), dict):
                data["rules"] = RuleSetConfig(**data["rules"])
            if isinstance(data.get("output"), dict):
                data["output"] = OutputConfig(**data["output"])
            if isinstance(data.get("fix"), dict):
                data["fix"] = FixConfig(**data["fix"])
        except TypeError as e:
            raise ConfigError(f"Invalid configuration section: {e}")

        # Map some common alternative names
        if "exclude" in data:
            data["exclude_patterns"] = data.pop("exclude")
        if "include" in data:
            data["include_patterns"] = data.pop("include")

        # Filter to only known fields
        known_fields = {f.name for f in cls.__dataclass_fields__.values()}
        unknown = sorted(k for k in data if k not in known_fields)
        if unknown:
            logger.warning("Ignoring unknown configuration keys: %s", ", ".join(unknown))
        filtered_data = {k: v for k, v in data.items() if k in known_fields}

        config = cls(**filtered_data)
        get_preset_rules(config.rules.preset)
        return config


def load_config(path: str) -> Dict[str, Any]:
    """
    Load configuration from a file.

    Supports YAML and JSON formats.
    """
    path = Path(path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
        if path.suffix == ".json":
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read configuration file {path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")
    return data


def find_config(start_path: str = ".") -> Optional[str]:
    """
    Find a configuration file by searching up the directory tree.

    Returns the path to the first config file found, or None.
    """
    current = Path(start_path).resolve()
    if current.is_file():
        current = current.parent

    while True:
        for name in CONFIG_FILE_NAMES:
            config_path = current / name
            if config_path.exists():
                return str(config_path)
        if current == current.parent:
            return None
        current = current.parent


def load_scan_config(path: Optional[str] = None, start_dir: str = ".") -> ScanConfig:
    """
    Load a ScanConfig from a file or create a default one.

    If path is None, searches for a config file starting from start_dir.
    """
    if path is None:
        path = find_config(start_dir)

    if path is None:
        return ScanConfig()

    logger.info("Using configuration file %s", path)
    return ScanConfig.from_dict(load_config(path))


def create_default_config() -> str:
    """
    Create a default configuration file content.
    """
    config = {
        "scan": {
            "exclude": [
                "node_modules/**",
                ".git/**",
                "dist/**",
                "build/**",
                "coverage/**",
            ],
            "max_file_size": 1048576,
            "max_workers": 4,
            "include_non_test_files": False,
        },
        "rules": {
            "preset": "recommended",
            "enabled": [],
            "disabled": [],
            "severity_overrides": {},
            "options": {
                "no-hard-coded-timeout": {"max_timeout": 1000, "allow_in_setup": False},
                "no-long-text-match": {"max_length": 50},
                "no-test-isolation": {"allowed_shared_variables": []},
            },
        },
        "output": {
            "format": "text",
            "verbose": False,
            "color": True,
            "show_context": True,
        },
        "fix": {
            "backup": True,
            "dry_run": False,
        },
    }

    return yaml.safe_dump(config, default_flow_style=False, sort_keys=False)


# Rule presets
RULE_PRESETS: Dict[str, Dict[str, Any]] = {
    "recommended": {
        "enabled": ["*"],
        "disabled": [
            "no-index-queries",
            "no-long-text-match",
            "no-viewport-dependent",
        ],
    },
    "strict": {
        "enabled": ["*"],
        "disabled": [],
        "severity_floor": "medium",
    },
    "all": {
        "enabled": ["*"],
        "disabled": [],
    },
}


def get_preset_rules(preset: str) -> Dict[str, Any]:
    """Get the rule configuration for a preset."""
    try:
        return RULE_PRESETS[preset]
    except KeyError:
        raise ConfigError(
            f"Unknown rule preset '{preset}' (expected one of: {', '.join(RULE_PRESETS)})"
        )


def matches_any(rule_id: str, patterns: List[str]) -> bool:
    return any(fnmatch.fnmatch(rule_id, pattern) for pattern in patterns)
