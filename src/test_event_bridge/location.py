"""Location resolution for test and group urls.

The runner reports where a test or group was declared as a url: a
``file:`` uri, a ``package:`` uri, or a plain path. A ``LocationResolver``
turns such a url into a filesystem path for the location hint.

``FileLocationResolver`` handles ``package:`` uris through the package
configuration written by ``pub get`` (``.dart_tool/package_config.json``).
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import unquote, urlparse

logger = logging.getLogger(__name__)

DEFAULT_PACKAGE_CONFIG = ".dart_tool/package_config.json"


@runtime_checkable
class LocationResolver(Protocol):
    """Protocol for resolving an opaque location url to a file path."""

    def resolve(self, url: str) -> str | None:
        """Return the path of an existing file, or None if unresolvable."""
        ...


class NullLocationResolver:
    """Resolver that never finds a file."""

    def resolve(self, url: str) -> str | None:
        return None


def _uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    path = unquote(parsed.path)
    # file:///C:/dir -> /C:/dir
    if len(path) > 2 and path[0] == "/" and path[2] == ":":
        path = path[1:]
    return Path(path)


class FileLocationResolver:
    """Resolve ``file:``, ``package:`` and relative urls against a project.

    Attributes:
        project_root: Directory relative paths are resolved against.
        package_config: Path of the package configuration file.
    """

    def __init__(self, project_root: Path | None = None, package_config: Path | None = None) -> None:
        self.project_root = (project_root or Path.cwd()).resolve()
        if package_config is None:
            package_config = self.project_root / DEFAULT_PACKAGE_CONFIG
        elif not package_config.is_absolute():
            package_config = self.project_root / package_config
        self.package_config = package_config
        self._packages: dict[str, Path] | None = None

    def resolve(self, url: str) -> str | None:
        """Resolve a url to an existing file.

        Args:
            url: Location url reported by the runner.

        Returns:
            The file path as a string, or None when the url is of an unknown
            scheme or the file does not exist.
        """
        if url.startswith("file:"):
            candidate = _uri_to_path(url)
        elif url.startswith("package:"):
            candidate = self._resolve_package(url[len("package:"):])
        elif "://" in url or url.startswith("dart:"):
            return None
        else:
            candidate = Path(url)
            if not candidate.is_absolute():
                candidate = self.project_root / candidate

        if candidate is None or not candidate.is_file():
            logger.debug("Cannot resolve location %s", url)
            return None
        return candidate.as_posix()

    def _resolve_package(self, reference: str) -> Path | None:
        name, _, rest = reference.partition("/")
        if not rest:
            return None
        root = self.packages.get(name)
        if root is None:
            return None
        return root / rest

    @property
    def packages(self) -> dict[str, Path]:
        """Package name to library directory, loaded on first use."""
        if self._packages is None:
            self._packages = self._load_packages()
        return self._packages

    def _load_packages(self) -> dict[str, Path]:
        if not self.package_config.is_file():
            logger.debug("No package config at %s", self.package_config)
            return {}
        try:
            data = json.loads(self.package_config.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Cannot read package config %s: %s", self.package_config, exc)
            return {}

        packages: dict[str, Path] = {}
        base = self.package_config.parent
        for entry in data.get("packages", []) if isinstance(data, dict) else []:
            if not isinstance(entry, dict):
                continue
            name = entry.get("name")
            root_uri = entry.get("rootUri")
            if not isinstance(name, str) or not isinstance(root_uri, str):
                continue
            root = _uri_to_path(root_uri) if root_uri.startswith("file:") else base / root_uri
            package_uri = entry.get("packageUri", "lib/")
            packages[name] = (root / package_uri).resolve() if isinstance(package_uri, str) else root.resolve()
        logger.debug("Loaded %d packages from %s", len(packages), self.package_config)
        return packages
