"""Configuration file management for btm-parser."""

import logging
from dataclasses import dataclass, fields
from pathlib import Path

import yaml

from btm_parser.errors import ConfigError

OUTPUT_FORMATS = ("json", "table")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
BOOL_FIELDS = ("resolve_executables", "parallel")


@dataclass
class Config:
    """Configuration for parsing and output."""

    # Mount point that bundle paths from the archive are resolved against
    bundle_root: str | None = None

    # Executable path resolution for login items and apps
    resolve_executables: bool = True

    # Resolve user scopes on a thread pool
    parallel: bool = False

    # Output
    output_format: str = "json"
    log_level: str = "WARNING"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        for name in BOOL_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, bool):
                raise ConfigError(f"Invalid value for '{name}': {value!r}. Must be true or false")
        if self.bundle_root is not None and not isinstance(self.bundle_root, str):
            raise ConfigError(f"Invalid value for 'bundle_root': {self.bundle_root!r}. Must be a path")

        self.log_level = str(self.log_level).upper()
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"Invalid log level '{self.log_level}'. Must be one of: {', '.join(LOG_LEVELS)}")
        if self.output_format not in OUTPUT_FORMATS:
            raise ConfigError(
                f"Invalid output format '{self.output_format}'. Must be one of: {', '.join(OUTPUT_FORMATS)}"
            )

    @property
    def logging_level(self) -> int:
        """Numeric level for the ``logging`` module."""
        return getattr(logging, self.log_level)


def default_config_paths() -> list[Path]:
    return [
        Path.home() / ".btm-parser.yaml",
        Path.home() / ".btm-parser.yml",
        Path.home() / ".config" / "btm-parser" / "config.yaml",
        Path.home() / ".config" / "btm-parser" / "config.yml",
    ]


def load_config(config_path: Path | str | None = None) -> Config:
    """
    Load configuration from file.

    Args:
        config_path: Path to config file. If None, checks default locations:
            1. ~/.btm-parser.yaml
            2. ~/.btm-parser.yml
            3. ~/.config/btm-parser/config.yaml
            4. ~/.config/btm-parser/config.yml

    Returns:
        Config object with loaded settings (or defaults if no config found)

    Raises:
        FileNotFoundError: If an explicit config path does not exist
        ConfigError: If the file cannot be parsed or holds unknown keys
    """
    if config_path:
        config_file = Path(config_path).expanduser()
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_file}")
    else:
        config_file = next((path for path in default_config_paths() if path.exists()), None)
        if config_file is None:
            # No config file found, use defaults
            return Config()

    try:
        with open(config_file, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load config from {config_file}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_file} must contain a mapping")

    known = {f.name for f in fields(Config)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys in {config_file}: {', '.join(unknown)}")

    return Config(**data)


def save_example_config(output_path: Path | str) -> None:
    """
    Save an example configuration file with all options documented.

    Args:
        output_path: Where to save the example config
    """
    example = """# btm-parser configuration file
# Place at ~/.btm-parser.yaml or ~/.config/btm-parser/config.yaml

# Resolve bundle paths against a mounted image instead of the live system
# bundle_root: /Volumes/Evidence

# Look up executables of login items and apps in their bundles
resolve_executables: true

# Resolve user scopes in parallel
parallel: false

# Output format: json or table
output_format: json

# Diagnostics level: DEBUG, INFO, WARNING, ERROR, CRITICAL
log_level: WARNING
"""

    path = Path(output_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(example)
