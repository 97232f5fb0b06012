"""Shared fixtures: a deterministic in-memory registry client."""

import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

import pytest

from rockflow.cache import PackageCache
from rockflow.exceptions import ClientError
from rockflow.models import PackageVersion, RegistryManifest, Rockspec
from rockflow.rockspec import parse_rockspec

BASE_URL = "https://rocks.test"


def rockspec_url(name: str, version: str) -> str:
    return f"{BASE_URL}/{name}-{version}.rockspec"


def archive_url(name: str, version: str) -> str:
    return f"{BASE_URL}/{name}-{version}.src.rock"


def render_rockspec(name: str, version: str, dependencies: Iterable[str]) -> str:
    """Render a minimal rockspec the regex parser understands."""
    deps = ",\n".join(f'   "{dep}"' for dep in dependencies)
    return (
        f'package = "{name}"\n'
        f'version = "{version}"\n'
        "source = {\n"
        f'   url = "https://example.test/{name}/{name}-{version}.tar.gz"\n'
        "}\n"
        "description = {\n"
        f'   summary = "The {name} library",\n'
        '   license = "MIT"\n'
        "}\n"
        "dependencies = {\n"
        f"{deps}\n"
        "}\n"
        "build = {\n"
        '   type = "builtin"\n'
        "}\n"
    )


class FakePackageClient:
    """In-memory PackageClient; records every call it receives."""

    def __init__(self, artifact_dir: Path):
        self.artifact_dir = artifact_dir
        self.registry: Dict[str, Dict[str, List[str]]] = {}
        self.payloads: Dict[str, bytes] = {}
        self.failing_rockspecs: Set[str] = set()
        self.manifest_calls = 0
        self.rockspec_calls: List[str] = []
        self.source_calls: List[str] = []
        self._urls: Dict[str, Tuple[str, str]] = {}
        self._lock = threading.Lock()

    def add(self, name: str, version: str, dependencies: Iterable[str] = (), payload: Optional[bytes] = None):
        self.registry.setdefault(name, {})[version] = list(dependencies)
        self._urls[rockspec_url(name, version)] = (name, version)
        self.payloads[archive_url(name, version)] = payload if payload is not None else f"{name}-{version}".encode()
        return self

    def fetch_manifest(self) -> RegistryManifest:
        self.manifest_calls += 1
        return RegistryManifest(
            packages={
                name: [
                    PackageVersion(
                        name=name,
                        version=version,
                        rockspec_url=rockspec_url(name, version),
                        archive_url=archive_url(name, version),
                    )
                    for version in versions
                ]
                for name, versions in self.registry.items()
            }
        )

    def download_rockspec(self, url: str) -> str:
        with self._lock:
            self.rockspec_calls.append(url)
        if url in self.failing_rockspecs:
            raise ClientError(f"Failed to fetch {url}: HTTP 503")
        name, version = self._urls[url]
        return render_rockspec(name, version, self.registry[name][version])

    def parse_rockspec(self, content: str) -> Rockspec:
        return parse_rockspec(content)

    def download_source(self, url: str) -> Path:
        with self._lock:
            self.source_calls.append(url)
        path = self.artifact_dir / url.rsplit("/", 1)[-1]
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.payloads[url])
        return path


@pytest.fixture
def client(tmp_path):
    """Empty fake registry; tests add the packages they need."""
    return FakePackageClient(tmp_path / "artifacts")


@pytest.fixture
def cache(tmp_path):
    return PackageCache(tmp_path / "cache")
