"""Bridge configuration.

Manages the per-project ``.test-bridge/config.toml`` file. Provides
discovery via find_config_root() and CLI integration via
resolve_config_for_cli().
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from .emitter import DEFAULT_LOCATION_PREFIX
from .location import DEFAULT_PACKAGE_CONFIG, FileLocationResolver

logger = logging.getLogger(__name__)

_BRIDGE_DIR = ".test-bridge"
_CONFIG_FILE = "config.toml"


@dataclass(frozen=True)
class LocationsConfig:
    """Location hint configuration."""

    prefix: str = DEFAULT_LOCATION_PREFIX
    project_root: str | None = None
    package_config: str = DEFAULT_PACKAGE_CONFIG


@dataclass(frozen=True)
class OutputConfig:
    """Output configuration."""

    forward_raw: bool = True


@dataclass(frozen=True)
class BridgeConfig:
    """Per-project test event bridge configuration.

    Loaded from .test-bridge/config.toml via load_bridge_config().
    ``base_dir`` is the directory relative paths are resolved against.
    """

    base_dir: Path = field(default_factory=Path.cwd)
    locations: LocationsConfig = field(default_factory=LocationsConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    def resolve_project_root(self) -> Path:
        """Resolve the directory test urls are relative to."""
        if self.locations.project_root is None:
            return self.base_dir.resolve()
        root = Path(self.locations.project_root)
        if not root.is_absolute():
            root = self.base_dir / root
        return root.resolve()

    def create_resolver(self) -> FileLocationResolver:
        """Build the location resolver described by this config."""
        return FileLocationResolver(
            project_root=self.resolve_project_root(),
            package_config=Path(self.locations.package_config),
        )


def load_bridge_config(config_file: Path) -> BridgeConfig:
    """Load config from a TOML file.

    Args:
        config_file: Path to the config file.

    Returns:
        Parsed BridgeConfig. The project root defaults to the directory
        containing ``.test-bridge/`` (or the file's directory for a file
        outside such a directory).

    Raises:
        FileNotFoundError: If the file is missing.
        ValueError: On invalid, empty, or corrupt TOML.
    """
    if not config_file.exists():
        msg = f"Config file not found: {config_file}"
        raise FileNotFoundError(msg)

    content = config_file.read_text(encoding="utf-8")
    if not content.strip():
        msg = f"Config file is empty: {config_file}"
        raise ValueError(msg)

    try:
        data = tomllib.loads(content)
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in {config_file}: {exc}"
        raise ValueError(msg) from exc

    base_dir = config_file.resolve().parent
    if base_dir.name == _BRIDGE_DIR:
        base_dir = base_dir.parent
    return _parse_config(data, base_dir)


def _table(data: dict[str, object], name: str) -> dict[str, object]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        msg = f"[{name}] section must be a table"
        raise ValueError(msg)
    return section


def _string(section: dict[str, object], key: str, default: str | None, table: str) -> str | None:
    value = section.get(key, default)
    if value is not None and not isinstance(value, str):
        msg = f"{table}.{key} must be a string"
        raise ValueError(msg)
    return value


def _parse_config(data: dict[str, object], base_dir: Path) -> BridgeConfig:
    """Parse raw TOML data into a BridgeConfig.

    Unknown fields are silently ignored for forward compatibility.
    """
    locations = _table(data, "locations")
    output = _table(data, "output")

    forward_raw = output.get("forward_raw", True)
    if not isinstance(forward_raw, bool):
        msg = "output.forward_raw must be a boolean"
        raise ValueError(msg)

    config = BridgeConfig(
        base_dir=base_dir,
        locations=LocationsConfig(
            prefix=_string(locations, "prefix", DEFAULT_LOCATION_PREFIX, "locations") or "",
            project_root=_string(locations, "project_root", None, "locations"),
            package_config=_string(locations, "package_config", DEFAULT_PACKAGE_CONFIG, "locations")
            or DEFAULT_PACKAGE_CONFIG,
        ),
        output=OutputConfig(forward_raw=forward_raw),
    )
    _validate_config(config)
    return config


def _validate_config(config: BridgeConfig) -> None:
    """Validate config values.

    Raises:
        ValueError: On invalid configuration.
    """
    if not config.locations.prefix.strip():
        msg = "locations.prefix must not be empty"
        raise ValueError(msg)
    if any(ch.isspace() or ch == "," for ch in config.locations.prefix):
        msg = f"locations.prefix must not contain whitespace or commas: '{config.locations.prefix}'"
        raise ValueError(msg)


def create_default_config(project_path: Path, *, force: bool = False) -> Path:
    """Create .test-bridge/config.toml with default values.

    Args:
        project_path: Path to the project root directory.
        force: Overwrite an existing configuration.

    Returns:
        Path of the written config file.

    Raises:
        FileExistsError: If the config exists and force=False.
    """
    config_file = project_path / _BRIDGE_DIR / _CONFIG_FILE
    if config_file.exists() and not force:
        msg = f"Config already exists: {config_file}"
        raise FileExistsError(msg)

    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(_generate_toml(BridgeConfig(base_dir=project_path)), encoding="utf-8")
    logger.info("Initialized bridge config at %s", config_file)
    return config_file


def find_config_root(start: Path | None = None) -> Path | None:
    """Walk up from start to find the nearest directory with a config.

    Args:
        start: Starting directory. Defaults to cwd.

    Returns:
        The directory containing .test-bridge/config.toml, or None.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        if (current / _BRIDGE_DIR / _CONFIG_FILE).is_file():
            return current
        parent = current.parent
        if parent == current:
            return None
        current = parent


def resolve_config_for_cli(config_override: str | None = None) -> BridgeConfig:
    """Resolve configuration for CLI commands with auto-discovery fallback.

    Args:
        config_override: Explicit --config path. If given, skips discovery.

    Returns:
        The loaded config, or defaults when no config file is found.

    Raises:
        FileNotFoundError: If config_override does not exist.
        ValueError: If the config file is corrupt or invalid.
    """
    if config_override is not None:
        return load_bridge_config(Path(config_override))

    root = find_config_root()
    if root is None:
        logger.debug("No %s/%s found, using defaults", _BRIDGE_DIR, _CONFIG_FILE)
        return BridgeConfig()
    return load_bridge_config(root / _BRIDGE_DIR / _CONFIG_FILE)


def _generate_toml(config: BridgeConfig) -> str:
    """Generate TOML string from a BridgeConfig."""
    lines = [
        "[locations]",
        f'prefix = "{_escape_toml_string(config.locations.prefix)}"',
        f'package_config = "{_escape_toml_string(config.locations.package_config)}"',
        "",
        "[output]",
        f"forward_raw = {'true' if config.output.forward_raw else 'false'}",
        "",
    ]
    return "\n".join(lines)


def _escape_toml_string(value: str) -> str:
    """Escape special characters for TOML string values."""
    return value.replace("\\", "\\\\").replace('"', '\\"')
