"""Parse resolver configuration and the project manifest."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Set

import yaml

from .cache import ChecksumAlgorithm
from .constants import DEFAULT_CACHE_DIR, DEFAULT_MANIFEST_URL, DEFAULT_MAX_WORKERS, PROJECT_MANIFEST_NAME
from .exceptions import ConfigError, ManifestError
from .solver import ResolutionStrategy

logger = logging.getLogger(__name__)


@dataclass
class Config:
    cache_dir: Path = DEFAULT_CACHE_DIR
    manifest_url: str = DEFAULT_MANIFEST_URL
    resolution_strategy: str = ResolutionStrategy.HIGHEST.value
    checksum_algorithm: str = ChecksumAlgorithm.BLAKE3.value
    strict_conflicts: bool = True
    verify_checksums: bool = True
    show_diffs_on_update: bool = True
    max_workers: int = DEFAULT_MAX_WORKERS

    @property
    def strategy(self) -> ResolutionStrategy:
        return ResolutionStrategy.parse(self.resolution_strategy)


@dataclass
class ProjectManifest:
    name: str
    version: Optional[str] = None
    dependencies: Dict[str, str] = field(default_factory=dict)
    dev_dependencies: Dict[str, str] = field(default_factory=dict)

    def declared_names(self, include_dev: bool = True) -> Set[str]:
        names = set(self.dependencies)
        if include_dev:
            names.update(self.dev_dependencies)
        return names


_BOOL_FIELDS = {"strict_conflicts", "verify_checksums", "show_diffs_on_update"}


def _read_yaml(path: Path, error: type) -> Any:
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise error(f"{path} is not valid YAML: {exc}") from exc


def load_config(path: Optional[Path] = None) -> Config:
    if path is None or not Path(path).exists():
        return Config()
    path = Path(path)
    data = _read_yaml(path, ConfigError)
    if data is None:
        return Config()
    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping")

    known = {item.name for item in fields(Config)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning("Ignoring unknown configuration keys in %s: %s", path, ", ".join(map(str, unknown)))

    options: Dict[str, Any] = {key: value for key, value in data.items() if key in known}
    for key in _BOOL_FIELDS & set(options):
        if not isinstance(options[key], bool):
            raise ConfigError(f"'{key}' must be true or false")
    if "cache_dir" in options:
        options["cache_dir"] = Path(str(options["cache_dir"])).expanduser()
    if "manifest_url" in options and not isinstance(options["manifest_url"], str):
        raise ConfigError("'manifest_url' must be a string")

    max_workers = options.get("max_workers", DEFAULT_MAX_WORKERS)
    if isinstance(max_workers, bool) or not isinstance(max_workers, int) or max_workers < 1:
        raise ConfigError(f"'max_workers' must be a positive integer, got {max_workers!r}")

    config = Config(**options)
    # both raise ConfigError for unsupported values
    ResolutionStrategy.parse(str(config.resolution_strategy))
    ChecksumAlgorithm.parse(str(config.checksum_algorithm))
    return config


def _constraint_table(data: Dict[str, Any], section: str) -> Dict[str, str]:
    table = data.get(section)
    if table is None:
        return {}
    if not isinstance(table, dict):
        raise ManifestError(f"'{section}' must be a mapping of package name to constraint")
    constraints: Dict[str, str] = {}
    for name, constraint in table.items():
        if not isinstance(constraint, str):
            raise ManifestError(f"Constraint for '{name}' in {section} must be a string, got {constraint!r}")
        constraints[str(name)] = constraint
    return constraints


def load_project_manifest(path: Path) -> ProjectManifest:
    path = Path(path)
    if path.is_dir():
        path = path / PROJECT_MANIFEST_NAME
    if not path.exists():
        raise ManifestError(f"No project manifest at {path}")

    data = _read_yaml(path, ManifestError)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ManifestError("Project manifest root must be a mapping")

    version = data.get("version")
    if version is not None and not isinstance(version, str):
        raise ManifestError(f"Project 'version' must be a string, got {version!r}")

    return ProjectManifest(
        name=data.get("name") or path.resolve().parent.name,
        version=version,
        dependencies=_constraint_table(data, "dependencies"),
        dev_dependencies=_constraint_table(data, "dev_dependencies"),
    )
