"""Static data for the resolver."""
from __future__ import annotations

from pathlib import Path

DEFAULT_MANIFEST_URL = "https://luarocks.org/manifest"

DEFAULT_CACHE_DIR = Path.home() / ".cache" / "rockflow"

PROJECT_MANIFEST_NAME = "package.yaml"
LOCKFILE_NAME = "package.lock"
LOCKFILE_FORMAT_VERSION = 1
LOCKFILE_SOURCE = "luarocks"

DEFAULT_MAX_WORKERS = 8

# Requirer labels used for constraints that come straight from the project manifest.
ROOT_REQUESTER = "(manifest)"
DEV_REQUESTER = "(dev manifest)"
MANIFEST_REQUESTERS = (ROOT_REQUESTER, DEV_REQUESTER)

# Descriptor dependencies on the interpreter itself; these are never registry packages.
RUNTIME_PACKAGES = {
    "lua",
    "luajit",
}
