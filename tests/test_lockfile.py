"""Tests for the lockfile model and YAML persistence."""

import pytest
import yaml

from rockflow.exceptions import LockfileCorrupt
from rockflow.lockfile import LockedPackage, Lockfile, load_lockfile, save_lockfile


def locked(version="1.14.0", **overrides):
    fields = dict(
        version=version,
        source="luarocks",
        rockspec_url=f"https://rocks.test/penlight-{version}.rockspec",
        source_url=f"https://rocks.test/penlight-{version}.src.rock",
        checksum="blake3:" + "a" * 64,
        size=2048,
        dependencies={"luafilesystem": "1.9.0"},
        build="builtin",
    )
    fields.update(overrides)
    return LockedPackage(**fields)


class TestSerialisation:
    """to_dict/from_dict follow the persisted lockfile shape."""

    def test_to_dict_shape(self):
        lockfile = Lockfile(packages={"penlight": locked()})
        data = lockfile.to_dict()
        assert data["version"] == 1
        assert data["packages"]["penlight"] == {
            "version": "1.14.0",
            "source": "luarocks",
            "rockspec_url": "https://rocks.test/penlight-1.14.0.rockspec",
            "source_url": "https://rocks.test/penlight-1.14.0.src.rock",
            "checksum": "blake3:" + "a" * 64,
            "size": 2048,
            "dependencies": {"luafilesystem": "1.9.0"},
            "build": "builtin",
        }

    def test_from_dict_restores_entries(self):
        lockfile = Lockfile(packages={"penlight": locked(), "luafilesystem": locked("1.9.0", dependencies={})})
        assert Lockfile.from_dict(lockfile.to_dict()) == lockfile

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "package.lock"
        lockfile = Lockfile(packages={"penlight": locked(), "argparse": locked("0.7.1", build=None)})
        save_lockfile(lockfile, path)
        assert load_lockfile(path) == lockfile

    def test_output_is_sorted(self, tmp_path):
        path = tmp_path / "package.lock"
        save_lockfile(Lockfile(packages={"zlib": locked("1.2.0"), "argparse": locked("0.7.1")}), path)
        text = path.read_text()
        assert text.index("argparse:") < text.index("zlib:")


class TestCorruption:
    """Malformed lockfiles raise LockfileCorrupt instead of being repaired."""

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "package.lock"
        path.write_text("version: [1\npackages: {")
        with pytest.raises(LockfileCorrupt):
            load_lockfile(path)

    @pytest.mark.parametrize(
        "data",
        [
            None,
            ["not", "a", "mapping"],
            {"version": 2, "packages": {}},
            {"version": True, "packages": {}},
            {"version": 1, "packages": ["penlight"]},
            {"version": 1, "packages": {"penlight": "1.14.0"}},
        ],
    )
    def test_malformed_structure(self, data):
        with pytest.raises(LockfileCorrupt):
            Lockfile.from_dict(data)

    @pytest.mark.parametrize(
        "override",
        [
            {"checksum": None},
            {"version": "not-a-version"},
            {"size": -1},
            {"size": "2048"},
            {"dependencies": ["luafilesystem"]},
            {"dependencies": {"luafilesystem": 1.9}},
            {"build": 3},
        ],
    )
    def test_malformed_entry(self, override):
        entry = locked().to_dict()
        entry.update(override)
        with pytest.raises(LockfileCorrupt) as excinfo:
            Lockfile.from_dict({"version": 1, "packages": {"penlight": entry}})
        assert "penlight" in str(excinfo.value)

    def test_empty_packages_are_allowed(self):
        assert Lockfile.from_dict(yaml.safe_load("version: 1\npackages: {}\n")).packages == {}

    @pytest.mark.parametrize(
        "override",
        [
            {"version": "garbage"},
            {"size": -1},
            {"dependencies": {"luafilesystem": 1.9}},
        ],
    )
    def test_validate_in_memory_entries(self, override):
        with pytest.raises(LockfileCorrupt) as excinfo:
            Lockfile(packages={"penlight": locked(**override)}).validate()
        assert "penlight" in str(excinfo.value)

    def test_validate_accepts_well_formed_lockfile(self):
        Lockfile(packages={"penlight": locked()}).validate()
        with pytest.raises(LockfileCorrupt):
            Lockfile(format_version=2).validate()
