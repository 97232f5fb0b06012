"""On-disk cache for registry data and source archives, plus artifact checksums."""
from __future__ import annotations

import hashlib
import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import blake3

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1 << 16
_ARTIFACT_SUFFIXES = (".src.rock", ".all.rock", ".rock", ".rockspec", ".tar.gz", ".tar.bz2", ".zip")


class ChecksumAlgorithm(Enum):
    BLAKE3 = "blake3"
    SHA256 = "sha256"

    @classmethod
    def parse(cls, value: str) -> "ChecksumAlgorithm":
        try:
            return cls(value.lower())
        except ValueError as exc:
            raise ConfigError(f"Unsupported checksum algorithm '{value}'. Must be 'blake3' or 'sha256'") from exc

    @classmethod
    def from_checksum(cls, checksum: str) -> "ChecksumAlgorithm":
        """Infer the algorithm from a prefixed checksum; unprefixed values are BLAKE3."""
        prefix, sep, _ = checksum.partition(":")
        if sep and prefix.lower() == cls.SHA256.value:
            return cls.SHA256
        return cls.BLAKE3


def _sanitize(segment: str) -> str:
    return segment.replace("/", "__")


def _hex_payload(checksum: str) -> str:
    _, sep, payload = checksum.partition(":")
    return (payload if sep else checksum).lower()


def compute_checksum(path: Path | str, algorithm: ChecksumAlgorithm = ChecksumAlgorithm.BLAKE3) -> str:
    hasher = blake3.blake3() if algorithm is ChecksumAlgorithm.BLAKE3 else hashlib.sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            hasher.update(chunk)
    return f"{algorithm.value}:{hasher.hexdigest()}"


class PackageCache:
    def __init__(self, root: Path | str, checksum_algorithm: str = ChecksumAlgorithm.BLAKE3.value):
        self.root = Path(root)
        self.algorithm = ChecksumAlgorithm.parse(checksum_algorithm)

    def ensure(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, *segments: str) -> Path:
        safe_segments = [_sanitize(segment) for segment in segments]
        path = self.root.joinpath(*safe_segments)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def load(self, *segments: str) -> Optional[Dict[str, Any]]:
        path = self._path(*segments)
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    def store(self, data: Dict[str, Any], *segments: str) -> None:
        path = self._path(*segments)
        with path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, ensure_ascii=True, indent=2, sort_keys=True)

    def drop(self, *segments: str) -> None:
        path = self._path(*segments)
        if path.exists():
            path.unlink()

    # Artifacts --------------------------------------------------------------

    def rockspec_path(self, url: str) -> Path:
        filename = url.rstrip("/").rsplit("/", 1)[-1] or "unnamed.rockspec"
        return self._path("rockspecs", filename)

    def source_path(self, url: str) -> Path:
        # keyed by URL hash: mirrors publish identical file names
        digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:32]
        filename = url.rstrip("/").rsplit("/", 1)[-1]
        suffix = next((known for known in _ARTIFACT_SUFFIXES if filename.endswith(known)), Path(filename).suffix)
        return self._path("sources", f"{digest}{suffix}")

    def write_bytes(self, path: Path, data: bytes) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    # Checksums --------------------------------------------------------------

    def checksum(self, path: Path | str) -> str:
        return compute_checksum(path, self.algorithm)

    def verify_checksum(self, path: Path | str, expected: str) -> bool:
        algorithm = ChecksumAlgorithm.from_checksum(expected)
        actual = compute_checksum(path, algorithm)
        matches = _hex_payload(actual) == _hex_payload(expected)
        if not matches:
            logger.warning("Checksum mismatch for %s: expected %s, got %s", path, expected, actual)
        return matches
