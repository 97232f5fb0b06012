"""Registry access: the PackageClient interface and its LuaRocks implementation."""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

import requests

from .cache import PackageCache
from .constants import DEFAULT_MANIFEST_URL
from .exceptions import ClientError, InvalidConstraint, InvalidVersion
from .fetchers import fetch_bytes, fetch_manifest_json, fetch_text
from .models import PackageVersion, RegistryManifest, Rockspec
from .rockspec import parse_rockspec
from .version import Version

logger = logging.getLogger(__name__)

_MANIFEST_CACHE_KEY = "manifest.json"
_REVISION_RE = re.compile(r"^(?P<core>[0-9][^-+]*)-(?P<revision>[0-9]+)$")
_DEP_PATTERN = re.compile(r"^(?P<name>[A-Za-z0-9][A-Za-z0-9_.\-]*)\s*(?P<constraints>.*)$")
_DEP_FRAGMENT_RE = re.compile(r"^(?P<op>>=|<=|==|~=|~>|=|>|<)?\s*(?P<version>\S+)$")


class PackageClient(Protocol):
    """Capabilities the resolver and lockfile builder need from a registry."""

    def fetch_manifest(self) -> RegistryManifest: ...

    def download_rockspec(self, url: str) -> str: ...

    def parse_rockspec(self, content: str) -> Rockspec: ...

    def download_source(self, url: str) -> Path: ...


# Manifest normalisation -------------------------------------------------------


def registry_base(manifest_url: str) -> str:
    return manifest_url.rstrip("/").rsplit("/", 1)[0]


def parse_manifest_payload(payload: Dict, base_url: str) -> RegistryManifest:
    """Convert the registry's JSON manifest into PackageVersion records.

    Entries without a rockspec are binary-only uploads and cannot be resolved.
    """
    repository = payload.get("repository")
    if not isinstance(repository, dict):
        raise ClientError("Registry manifest has no 'repository' table")

    packages: Dict[str, List[PackageVersion]] = {}
    for name, versions in repository.items():
        if not isinstance(versions, dict):
            continue
        entries: List[PackageVersion] = []
        for version, builds in versions.items():
            arches = {build.get("arch") for build in builds or [] if isinstance(build, dict)}
            if "rockspec" not in arches:
                continue
            stem = f"{base_url}/{name}-{version}"
            if "src" in arches:
                archive_url = f"{stem}.src.rock"
            elif "all" in arches:
                archive_url = f"{stem}.all.rock"
            else:
                archive_url = f"{stem}.rockspec"
            entries.append(
                PackageVersion(name=name, version=version, rockspec_url=f"{stem}.rockspec", archive_url=archive_url)
            )
        if entries:
            packages[name] = entries
    return RegistryManifest(packages=packages)


def _split_revision(raw: str) -> Tuple[str, int]:
    match = _REVISION_RE.match(raw.strip())
    if match and match.group("core").count(".") >= 2:
        return match.group("core"), int(match.group("revision"))
    return raw, 0


def parse_registry_version(raw: str) -> Version:
    """Parse a registry version, dropping a rockspec revision from three-part versions.

    ``1.13.1-1`` is revision 1 of ``1.13.1``; shorter forms keep the legacy
    meaning handled by :meth:`Version.parse` (``3.0-1`` -> ``3.0.1``).
    """
    core, _ = _split_revision(raw)
    return Version.parse(core)


def registry_candidates(entries: Iterable[PackageVersion]) -> List[Tuple[Version, PackageVersion]]:
    """Parse registry entries, keeping the highest revision of each version."""

    best: Dict[Version, Tuple[int, PackageVersion]] = {}
    for entry in entries:
        try:
            version = parse_registry_version(entry.version)
        except InvalidVersion as exc:
            logger.debug("Skipping %s %s: %s", entry.name, entry.version, exc)
            continue
        _, revision = _split_revision(entry.version)
        current = best.get(version)
        if current is None or revision > current[0]:
            best[version] = (revision, entry)
    return sorted(((version, entry) for version, (_, entry) in best.items()), key=lambda item: item[0])


# Descriptor dependencies ------------------------------------------------------


def _next_patch(entry: str, raw_version: str) -> Version:
    try:
        version = Version.parse(raw_version)
    except InvalidVersion as exc:
        raise InvalidConstraint(entry, exc) from exc
    return Version(version.major, version.minor, version.patch + 1)


def _normalize_fragment(entry: str, fragment: str) -> str:
    match = _DEP_FRAGMENT_RE.match(fragment.strip())
    if not match:
        raise InvalidConstraint(entry, reason=f"cannot parse '{fragment.strip()}'")
    op, version = match.group("op") or "==", match.group("version")
    if op == ">=":
        return f">={version}"
    if op == "<":
        return f"<{version}"
    if op in {"==", "="}:
        return version
    if op == "~>":
        return f"^{version}"
    if op == ">":
        return f">={_next_patch(entry, version)}"
    if op == "<=":
        return f"<{_next_patch(entry, version)}"
    # only "~=" is left
    raise InvalidConstraint(entry, reason="'~=' (not equal) cannot be expressed as a version range")


def parse_dependency_entry(entry: str) -> Tuple[str, str]:
    """Split a descriptor dependency (``"name >= 1.0, < 2.0"``) into name and constraint."""

    match = _DEP_PATTERN.match(entry.strip())
    if not match:
        raise InvalidConstraint(entry, reason="missing package name")
    name = match.group("name")
    expr = match.group("constraints").strip()
    if not expr:
        return name, ">=0.0.0"

    fragments = [_normalize_fragment(entry, part) for part in expr.split(",") if part.strip()]
    if len(fragments) == 1:
        return name, fragments[0]
    if len(fragments) == 2:
        lower, upper = fragments
        if lower.startswith("<") and upper.startswith(">="):
            lower, upper = upper, lower
        if lower.startswith(">=") and upper.startswith("<"):
            return name, f"{lower}, {upper}"
    raise InvalidConstraint(entry, reason="only a single bound or a '>=, <' pair is supported")


# LuaRocks client --------------------------------------------------------------


class LuaRocksClient:
    def __init__(
        self,
        cache: PackageCache,
        manifest_url: str = DEFAULT_MANIFEST_URL,
        session: Optional[requests.Session] = None,
    ):
        self.cache = cache
        self.cache.ensure()
        self.manifest_url = manifest_url
        self.session = session or requests.Session()
        self._manifest: Optional[RegistryManifest] = None

    def close(self) -> None:
        self.session.close()

    def fetch_manifest(self) -> RegistryManifest:
        if self._manifest is not None:
            return self._manifest
        raw = self.cache.load(_MANIFEST_CACHE_KEY)
        if not raw:
            logger.info("Downloading registry manifest from %s", self.manifest_url)
            raw = fetch_manifest_json(self.manifest_url, session=self.session)
            self.cache.store(raw, _MANIFEST_CACHE_KEY)
        self._manifest = parse_manifest_payload(raw, registry_base(self.manifest_url))
        return self._manifest

    def refresh_manifest(self) -> RegistryManifest:
        self.cache.drop(_MANIFEST_CACHE_KEY)
        self._manifest = None
        return self.fetch_manifest()

    def download_rockspec(self, url: str) -> str:
        path = self.cache.rockspec_path(url)
        if path.exists():
            return path.read_text(encoding="utf-8")
        logger.debug("Downloading rockspec %s", url)
        content = fetch_text(url, session=self.session)
        path.write_text(content, encoding="utf-8")
        return content

    def parse_rockspec(self, content: str) -> Rockspec:
        return parse_rockspec(content)

    def download_source(self, url: str) -> Path:
        path = self.cache.source_path(url)
        if path.exists():
            return path
        logger.debug("Downloading source archive %s", url)
        return self.cache.write_bytes(path, fetch_bytes(url, session=self.session))
