"""Tests for the resolver against the in-memory registry."""

import pytest

from rockflow.constants import DEV_REQUESTER, ROOT_REQUESTER
from rockflow.exceptions import (
    CircularDependency,
    ClientError,
    ConfigError,
    InvalidConstraint,
    ResolutionError,
    UnresolvableDependency,
    VersionConflict,
)
from rockflow.solver import ResolutionStrategy, Resolver
from rockflow.version import Version

from conftest import rockspec_url


@pytest.fixture
def penlight(client):
    for version in ("1.13.0", "1.13.1", "1.14.0", "2.0.0"):
        client.add("penlight", version, ["lua >= 5.1", "luafilesystem >= 1.8.0"])
    client.add("luafilesystem", "1.8.0")
    client.add("luafilesystem", "1.9.0")
    return client


class TestStrategy:
    """ResolutionStrategy parsing and picking."""

    def test_parse(self):
        assert ResolutionStrategy.parse("highest") is ResolutionStrategy.HIGHEST
        assert ResolutionStrategy.parse("LOWEST") is ResolutionStrategy.LOWEST

    def test_parse_rejects_unknown(self):
        with pytest.raises(ConfigError):
            ResolutionStrategy.parse("newest")

    def test_resolver_rejects_zero_workers(self, client):
        with pytest.raises(ConfigError):
            Resolver(client, max_workers=0)


class TestResolve:
    """Winner selection for direct and transitive requirements."""

    def test_highest_respects_major_ceiling(self, penlight):
        result = Resolver(penlight).resolve({"penlight": "^1.13.0"})
        assert result["penlight"] == Version(1, 14, 0)

    def test_lowest_strategy(self, penlight):
        result = Resolver(penlight, strategy=ResolutionStrategy.LOWEST).resolve({"penlight": "^1.13.0"})
        assert result == {"penlight": Version(1, 13, 0), "luafilesystem": Version(1, 8, 0)}

    def test_transitive_dependencies_are_resolved(self, penlight):
        result = Resolver(penlight).resolve({"penlight": "^1.13.0"})
        assert result == {"penlight": Version(1, 14, 0), "luafilesystem": Version(1, 9, 0)}

    def test_interpreter_dependency_is_skipped(self, penlight):
        resolution = Resolver(penlight).resolve_packages({"penlight": "^1.13.0"})
        assert "lua" not in resolution.packages
        assert resolution.packages["penlight"].dependencies == {"luafilesystem": ">=1.8.0"}

    def test_resolution_details(self, penlight):
        resolution = Resolver(penlight).resolve_packages({"penlight": "^1.13.0"})
        package = resolution.packages["penlight"]
        assert package.registry_version == "1.14.0"
        assert package.rockspec_url == rockspec_url("penlight", "1.14.0")
        assert package.build == "builtin"
        assert package.source_url == "https://example.test/penlight/penlight-1.14.0.tar.gz"
        assert resolution.roots == ["penlight"]
        assert resolution.graph.get_node("penlight").dependency_names == ["luafilesystem"]
        assert [(r.requester, r.raw) for r in resolution.requirements["luafilesystem"]] == [
            ("penlight", ">=1.8.0"),
        ]
        assert resolution.requirements["penlight"][0].requester == ROOT_REQUESTER

    def test_exact_and_compound_constraints(self, client):
        for version in ("1.0.0", "2.3.0", "2.7.0", "3.1.0"):
            client.add("lpeg", version)
        assert Resolver(client).resolve({"lpeg": "2.3.0"}) == {"lpeg": Version(2, 3, 0)}
        assert Resolver(client).resolve({"lpeg": ">=0.0.0, <2.0.0 || >=2.5.0, <3.0.0"}) == {
            "lpeg": Version(2, 7, 0)
        }

    def test_empty_request(self, client):
        assert Resolver(client).resolve({}) == {}

    def test_shared_dependency_is_resolved_once(self, client):
        client.add("app-a", "1.0.0", ["shared >= 1.0.0"])
        client.add("app-b", "1.0.0", ["shared >= 1.0.0"])
        client.add("shared", "1.2.0")
        Resolver(client).resolve({"app-a": "1.0.0", "app-b": "1.0.0"})
        assert client.rockspec_calls.count(rockspec_url("shared", "1.2.0")) == 1


class TestDiamond:
    """A package required along several paths gets one consistent version."""

    def _diamond(self, client, x_versions):
        client.add("A", "1.0.0", ["X >= 1.0.0"])
        client.add("B", "1.0.0", ["X < 2.0.0"])
        for version in x_versions:
            client.add("X", version)

    def test_intersection_picks_common_version(self, client):
        self._diamond(client, ["0.9.0", "1.5.0", "2.1.0"])
        result = Resolver(client).resolve({"A": "^1.0.0", "B": "^1.0.0"})
        assert result["X"] == Version(1, 5, 0)

    def test_empty_intersection_is_a_conflict(self, client):
        self._diamond(client, ["0.9.0", "2.1.0"])
        with pytest.raises(VersionConflict) as excinfo:
            Resolver(client).resolve({"A": "^1.0.0", "B": "^1.0.0"})
        error = excinfo.value
        assert error.package == "X"
        assert ("A", ">=1.0.0") in error.constraints
        assert ("B", "<2.0.0") in error.constraints
        assert "'>=1.0.0' (required by A)" in str(error)
        assert "'<2.0.0' (required by B)" in str(error)

    def test_reselection_replaces_old_dependencies(self, client):
        client.add("A", "1.0.0", ["X >= 1.0.0"])
        client.add("B", "1.0.0", ["X < 2.0.0"])
        client.add("X", "1.5.0", ["old-helper >= 1.0"])
        client.add("X", "2.1.0", ["new-helper >= 1.0"])
        client.add("old-helper", "1.0.0")
        client.add("new-helper", "1.0.0")
        resolution = Resolver(client).resolve_packages({"A": "^1.0.0", "B": "^1.0.0"})
        assert resolution.versions["X"] == Version(1, 5, 0)
        assert "new-helper" not in resolution.packages
        assert resolution.versions["old-helper"] == Version(1, 0, 0)
        assert resolution.graph.get_node("X").dependency_names == ["old-helper"]

    def test_back_edge_reselection_settles_new_version(self, client):
        client.add("A", "1.0.0", ["X >= 1.0.0"])
        client.add("B", "1.0.0", ["Y < 2.0.0"])
        client.add("X", "1.0.0")
        client.add("X", "2.0.0", ["Y >= 1.0.0"])
        client.add("Y", "1.0.0")
        client.add("Y", "2.0.0", ["X < 2.0.0"])
        resolution = Resolver(client).resolve_packages({"A": "1.0.0", "B": "1.0.0"})
        assert resolution.versions == {
            "A": Version(1, 0, 0),
            "B": Version(1, 0, 0),
            "X": Version(1, 0, 0),
            "Y": Version(1, 0, 0),
        }
        assert resolution.packages["X"].dependencies == {}
        assert resolution.packages["X"].rockspec_url == rockspec_url("X", "1.0.0")
        assert [requirement.requester for requirement in resolution.requirements["Y"]] == ["B"]

    def test_back_edge_reselection_keeps_real_cycles(self, client):
        client.add("X", "1.0.0", ["Y >= 1.0.0"])
        client.add("X", "2.0.0", ["Y >= 1.0.0"])
        client.add("Y", "1.0.0", ["X < 2.0.0"])
        with pytest.raises(CircularDependency):
            Resolver(client).resolve({"X": ">=1.0.0"})

    def test_runtime_and_dev_constraints_intersect(self, client):
        for version in ("1.0.0", "1.5.0", "1.9.0"):
            client.add("lib", version)
        resolver = Resolver(client, strategy=ResolutionStrategy.LOWEST)
        resolution = resolver.resolve_packages({"lib": "^1.0.0"}, {"lib": ">=1.5.0"})
        assert resolution.versions == {"lib": Version(1, 5, 0)}
        assert resolution.roots == ["lib"]
        assert [(requirement.requester, requirement.raw) for requirement in resolution.requirements["lib"]] == [
            (ROOT_REQUESTER, "^1.0.0"),
            (DEV_REQUESTER, ">=1.5.0"),
        ]

    def test_incompatible_runtime_and_dev_constraints_conflict(self, client):
        client.add("lib", "1.0.0")
        client.add("lib", "2.0.0")
        with pytest.raises(VersionConflict) as excinfo:
            Resolver(client).resolve({"lib": "^1.0.0"}, {"lib": ">=2.0.0"})
        assert (DEV_REQUESTER, ">=2.0.0") in excinfo.value.constraints

    def test_result_independent_of_request_order(self, client):
        self._diamond(client, ["0.9.0", "1.5.0", "2.1.0"])
        forward = Resolver(client).resolve({"A": "^1.0.0", "B": "^1.0.0"})
        backward = Resolver(client).resolve(dict(reversed(list({"A": "^1.0.0", "B": "^1.0.0"}.items()))))
        assert forward == backward


class TestFailures:
    """Every failure aborts the whole resolution."""

    def test_unknown_package(self, client):
        with pytest.raises(UnresolvableDependency) as excinfo:
            Resolver(client).resolve({"ghost": "^1.0.0"})
        assert excinfo.value.package == "ghost"
        assert "'^1.0.0'" in str(excinfo.value)

    def test_no_candidate_satisfies(self, penlight):
        with pytest.raises(UnresolvableDependency) as excinfo:
            Resolver(penlight).resolve({"penlight": "^3.0.0"})
        error = excinfo.value
        assert error.package == "penlight"
        assert error.constraint == "^3.0.0"
        assert "2.0.0" in error.available
        assert str(error).startswith("penlight: ")

    def test_invalid_constraint_fails_before_registry_access(self, penlight):
        with pytest.raises(InvalidConstraint):
            Resolver(penlight).resolve({"penlight": "^1.x"})
        assert penlight.manifest_calls == 0

    def test_transitive_failure_is_reported_for_the_dependency(self, client):
        client.add("app", "1.0.0", ["missing-lib >= 2.0"])
        client.add("missing-lib", "1.0.0")
        with pytest.raises(UnresolvableDependency) as excinfo:
            Resolver(client).resolve({"app": "1.0.0"})
        assert excinfo.value.package == "missing-lib"
        assert excinfo.value.required_by == ["app"]

    @pytest.mark.parametrize(
        "edges",
        [
            {"A": ["B"], "B": ["A"]},
            {"A": ["B"], "B": ["C"], "C": ["A"]},
        ],
    )
    def test_cycles_abort_resolution(self, client, edges):
        for name, deps in edges.items():
            client.add(name, "1.0.0", [f"{dep} >= 1.0.0" for dep in deps])
        with pytest.raises(CircularDependency) as excinfo:
            Resolver(client).resolve({"A": "1.0.0"})
        assert excinfo.value.path[0] == excinfo.value.path[-1]

    def test_client_error_propagates(self, penlight):
        penlight.failing_rockspecs.add(rockspec_url("luafilesystem", "1.9.0"))
        with pytest.raises(ClientError):
            Resolver(penlight).resolve({"penlight": "^1.13.0"})

    def test_errors_share_a_base_class(self, client):
        with pytest.raises(ResolutionError):
            Resolver(client).resolve({"ghost": "1.0.0"})


class TestPrefetch:
    """Top-level descriptors are fetched concurrently before the sequential pass."""

    def test_results_do_not_depend_on_worker_count(self, client):
        for index in range(6):
            client.add(f"pkg{index}", "1.0.0", ["common >= 1.0"])
            client.add(f"pkg{index}", "1.1.0", ["common >= 1.1"])
        client.add("common", "1.0.0")
        client.add("common", "1.1.0")
        requested = {f"pkg{index}": "^1.0.0" for index in range(6)}
        sequential = Resolver(client, max_workers=1).resolve(requested)
        parallel = Resolver(client, max_workers=4).resolve(requested)
        assert sequential == parallel
        assert parallel["common"] == Version(1, 1, 0)

    def test_prefetched_descriptors_are_not_downloaded_twice(self, client):
        client.add("one", "1.0.0")
        client.add("two", "1.0.0")
        Resolver(client, max_workers=2).resolve({"one": "1.0.0", "two": "1.0.0"})
        assert sorted(client.rockspec_calls) == [rockspec_url("one", "1.0.0"), rockspec_url("two", "1.0.0")]

    def test_prefetch_failure_aborts(self, client):
        client.add("one", "1.0.0")
        client.add("two", "1.0.0")
        client.failing_rockspecs.add(rockspec_url("two", "1.0.0"))
        with pytest.raises(ClientError):
            Resolver(client, max_workers=2).resolve({"one": "1.0.0", "two": "1.0.0"})

    def test_unresolvable_root_is_reported_after_prefetch(self, client):
        client.add("one", "1.0.0")
        client.add("two", "1.0.0")
        with pytest.raises(UnresolvableDependency) as excinfo:
            Resolver(client, max_workers=2).resolve({"one": "1.0.0", "two": "1.0.0", "zzz": "1.0.0"})
        assert excinfo.value.package == "zzz"
