"""Turn resolutions into diff-stable lockfiles."""
from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .cache import PackageCache
from .config import Config, ProjectManifest, load_project_manifest
from .conflicts import ConflictChecker
from .constants import DEFAULT_MAX_WORKERS, LOCKFILE_NAME, LOCKFILE_SOURCE, PROJECT_MANIFEST_NAME
from .exceptions import ChecksumMismatch, LockfileCorrupt, ManifestError
from .lockfile import LockedPackage, Lockfile, load_lockfile, save_lockfile
from .models import Resolution, ResolvedPackage
from .parallel import map_bounded
from .registry import PackageClient
from .report import diff_lockfiles, format_lockfile_diff
from .solver import ResolutionStrategy, Resolver
from .version import Version

logger = logging.getLogger(__name__)


def _same_version(locked: Optional[LockedPackage], version: Version) -> bool:
    return locked is not None and Version.parse(locked.version) == version


class LockfileBuilder:
    def __init__(
        self,
        client: PackageClient,
        cache: PackageCache,
        strategy: ResolutionStrategy = ResolutionStrategy.HIGHEST,
        max_workers: int = DEFAULT_MAX_WORKERS,
        strict_conflicts: bool = True,
        show_diffs: bool = True,
        verify_checksums: bool = True,
    ):
        self.client = client
        self.cache = cache
        self.resolver = Resolver(client, strategy=strategy, max_workers=max_workers)
        self.checker = ConflictChecker()
        self.max_workers = max_workers
        self.strict_conflicts = strict_conflicts
        self.show_diffs = show_diffs
        self.verify_checksums = verify_checksums

    @classmethod
    def from_config(
        cls,
        config: Config,
        client: PackageClient,
        cache: Optional[PackageCache] = None,
    ) -> "LockfileBuilder":
        return cls(
            client,
            cache or PackageCache(config.cache_dir, config.checksum_algorithm),
            strategy=config.strategy,
            max_workers=config.max_workers,
            strict_conflicts=config.strict_conflicts,
            show_diffs=config.show_diffs_on_update,
            verify_checksums=config.verify_checksums,
        )

    # ------------------------------------------------------------------

    def build_lockfile(self, manifest: ProjectManifest, project_root: Path, no_dev: bool = False) -> Lockfile:
        self._project_root(project_root)
        resolution = self._resolve(manifest, no_dev)
        packages = self._lock_packages(resolution, sorted(resolution.packages))
        logger.info("Locked %d packages for %s", len(packages), manifest.name)
        return Lockfile(packages=dict(sorted(packages.items())))

    def update_lockfile(
        self,
        existing: Lockfile,
        manifest: ProjectManifest,
        project_root: Path,
        no_dev: bool = False,
    ) -> Lockfile:
        """Re-resolve and relock, reusing entries whose name and version did not change."""

        self._project_root(project_root)
        existing.validate()

        resolution = self._resolve(manifest, no_dev)
        packages: Dict[str, LockedPackage] = {}
        fresh: List[str] = []
        for name, package in sorted(resolution.packages.items()):
            previous = existing.get(name)
            if _same_version(previous, package.version):
                packages[name] = replace(previous, dependencies=self._dependency_map(resolution, package))
            else:
                fresh.append(name)
        logger.debug("Reusing %d locked entries, hashing %d", len(packages), len(fresh))
        packages.update(self._lock_packages(resolution, fresh))

        lockfile = Lockfile(packages=dict(sorted(packages.items())))
        if self.show_diffs:
            changes = diff_lockfiles(existing, lockfile)
            if changes:
                logger.info("Lockfile changes:\n%s", format_lockfile_diff(changes))
            else:
                logger.info("Lockfile is up to date")
        return lockfile

    def sync_lockfile(self, project_root: Path, no_dev: bool = False, rebuild_on_corrupt: bool = False) -> Lockfile:
        root = self._project_root(project_root)
        manifest = load_project_manifest(root / PROJECT_MANIFEST_NAME)
        lock_path = root / LOCKFILE_NAME

        existing: Optional[Lockfile] = None
        if lock_path.exists():
            try:
                existing = load_lockfile(lock_path)
            except LockfileCorrupt:
                if not rebuild_on_corrupt:
                    raise
                logger.warning("%s is corrupt; rebuilding it from the manifest", lock_path)

        if existing is None:
            lockfile = self.build_lockfile(manifest, root, no_dev=no_dev)
        else:
            lockfile = self.update_lockfile(existing, manifest, root, no_dev=no_dev)
            if self.verify_checksums:
                reused = {
                    name: locked
                    for name, locked in lockfile.packages.items()
                    if _same_version(existing.get(name), Version.parse(locked.version))
                }
                mismatched = self.verify_lockfile(Lockfile(packages=reused))
                if mismatched:
                    raise ChecksumMismatch(mismatched)

        save_lockfile(lockfile, lock_path)
        return lockfile

    def verify_lockfile(self, lockfile: Lockfile) -> List[str]:
        """Return the names of locked packages whose artifact no longer matches its checksum."""

        mismatched = [
            name
            for (name, _), matches in map_bounded(self._verify_entry, sorted(lockfile.packages.items()), self.max_workers)
            if not matches
        ]
        return sorted(mismatched)

    # ------------------------------------------------------------------

    def _project_root(self, project_root: Path) -> Path:
        root = Path(project_root)
        if not root.is_dir():
            raise ManifestError(f"Project root {root} is not a directory")
        return root

    def _resolve(self, manifest: ProjectManifest, no_dev: bool) -> Resolution:
        self.checker.check_conflicts(manifest)
        include_dev = not no_dev
        resolution = self.resolver.resolve_packages(
            manifest.dependencies,
            manifest.dev_dependencies if include_dev else None,
        )
        if self.strict_conflicts:
            self.checker.check_strict_conflicts(manifest, resolution, include_dev=include_dev)
        return resolution

    def _dependency_map(self, resolution: Resolution, package: ResolvedPackage) -> Dict[str, str]:
        return {
            dep: str(resolution.packages[dep].version)
            for dep in sorted(package.dependencies)
            if dep in resolution.packages
        }

    def _lock_packages(self, resolution: Resolution, names: Sequence[str]) -> Dict[str, LockedPackage]:
        packages = [resolution.packages[name] for name in names]
        locked: Dict[str, LockedPackage] = {}
        for package, (checksum, size) in map_bounded(self._hash_artifact, packages, self.max_workers):
            locked[package.name] = LockedPackage(
                version=str(package.version),
                source=LOCKFILE_SOURCE,
                rockspec_url=package.rockspec_url,
                source_url=package.archive_url,
                checksum=checksum,
                size=size,
                dependencies=self._dependency_map(resolution, package),
                build=package.build,
            )
        return locked

    def _hash_artifact(self, package: ResolvedPackage) -> Tuple[str, int]:
        path = Path(self.client.download_source(package.archive_url))
        return self.cache.checksum(path), path.stat().st_size

    def _verify_entry(self, item: Tuple[str, LockedPackage]) -> bool:
        _, locked = item
        path = Path(self.client.download_source(locked.source_url))
        return self.cache.verify_checksum(path, locked.checksum)
