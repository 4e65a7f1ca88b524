"""Unit tests for dependency tree resolution against an on-disk Maven repository."""

import logging

import pytest

from jar_flattener.coordinates import Coordinates
from jar_flattener.repository import ResolutionError
from jar_flattener.resolver import is_excluded, iter_tree, log_dependency_tree, resolve_dependency_tree


def _names(root) -> list[tuple[int, str]]:
    return [(depth, f"{node.coordinates.artifact_id}:{node.coordinates.version}") for depth, node in iter_tree(root)]


def test_resolves_transitive_tree_in_declaration_order(maven_repo, offline_repository) -> None:
    maven_repo.add("org.dep:leaf:1")
    maven_repo.add("org.dep:a:1", dependencies=[{"coords": "org.dep:leaf:1"}])
    maven_repo.add("org.dep:b:1")
    maven_repo.add("org.app:app:1", dependencies=[{"coords": "org.dep:a:1"}, {"coords": "org.dep:b:1"}])

    root = resolve_dependency_tree(Coordinates("org.app", "app", "1"), repository=offline_repository)

    assert _names(root) == [(0, "app:1"), (1, "a:1"), (2, "leaf:1"), (1, "b:1")]
    assert root.path.name == "app-1.jar"
    assert root.path.is_file() is True


def test_nearest_declaration_wins(maven_repo, offline_repository) -> None:
    maven_repo.add("org.dep:shared:1")
    maven_repo.add("org.dep:shared:2")
    maven_repo.add("org.dep:a:1", dependencies=[{"coords": "org.dep:shared:1"}])
    maven_repo.add("org.app:app:1", dependencies=[{"coords": "org.dep:a:1"}, {"coords": "org.dep:shared:2"}])

    root = resolve_dependency_tree(Coordinates("org.app", "app", "1"), repository=offline_repository)

    assert _names(root) == [(0, "app:1"), (1, "a:1"), (1, "shared:2")]


def test_first_declaration_wins_on_equal_depth(maven_repo, offline_repository) -> None:
    maven_repo.add("org.dep:shared:1")
    maven_repo.add("org.dep:shared:2")
    maven_repo.add("org.dep:a:1", dependencies=[{"coords": "org.dep:shared:1"}])
    maven_repo.add("org.dep:b:1", dependencies=[{"coords": "org.dep:shared:2"}])
    maven_repo.add("org.app:app:1", dependencies=[{"coords": "org.dep:a:1"}, {"coords": "org.dep:b:1"}])

    root = resolve_dependency_tree(Coordinates("org.app", "app", "1"), repository=offline_repository)

    assert _names(root) == [(0, "app:1"), (1, "a:1"), (2, "shared:1"), (1, "b:1")]


def test_skips_test_provided_optional_and_pom_dependencies(maven_repo, offline_repository) -> None:
    maven_repo.add("org.dep:kept:1")
    maven_repo.add("org.dep:rt:1")
    maven_repo.add(
        "org.app:app:1",
        dependencies=[
            {"coords": "org.dep:kept:1"},
            {"coords": "org.dep:rt:1", "scope": "runtime"},
            {"coords": "junit:junit:4.13", "scope": "test"},
            {"coords": "javax.servlet:servlet-api:2.5", "scope": "provided"},
            {"coords": "org.dep:opt:1", "optional": "true"},
            {"coords": "org.dep:bom:1", "type": "pom"},
        ],
    )

    root = resolve_dependency_tree(Coordinates("org.app", "app", "1"), repository=offline_repository)

    assert _names(root) == [(0, "app:1"), (1, "kept:1"), (1, "rt:1")]
    assert root.children[1].scope == "runtime"


def test_runtime_scope_propagates(maven_repo, offline_repository) -> None:
    maven_repo.add("org.dep:leaf:1")
    maven_repo.add("org.dep:mid:1", dependencies=[{"coords": "org.dep:leaf:1"}])
    maven_repo.add("org.app:app:1", dependencies=[{"coords": "org.dep:mid:1", "scope": "runtime"}])

    root = resolve_dependency_tree(Coordinates("org.app", "app", "1"), repository=offline_repository)

    assert root.children[0].children[0].scope == "runtime"


def test_exclusions_apply_to_the_whole_subtree(maven_repo, offline_repository) -> None:
    maven_repo.add("org.noise:logging:1")
    maven_repo.add("org.dep:leaf:1", dependencies=[{"coords": "org.noise:logging:1"}])
    maven_repo.add("org.dep:mid:1", dependencies=[{"coords": "org.dep:leaf:1"}])
    maven_repo.add(
        "org.app:app:1",
        dependencies=[{"coords": "org.dep:mid:1", "exclusions": ["org.noise:*"]}],
    )

    root = resolve_dependency_tree(Coordinates("org.app", "app", "1"), repository=offline_repository)

    assert _names(root) == [(0, "app:1"), (1, "mid:1"), (2, "leaf:1")]


def test_root_management_pins_transitive_versions(maven_repo, offline_repository) -> None:
    maven_repo.add("org.dep:shared:1")
    maven_repo.add("org.dep:shared:3")
    maven_repo.add("org.dep:a:1", dependencies=[{"coords": "org.dep:shared:1"}])
    maven_repo.add(
        "org.app:app:1",
        dependencies=[{"coords": "org.dep:a:1"}],
        extra_xml=(
            "<dependencyManagement><dependencies>"
            "<dependency><groupId>org.dep</groupId><artifactId>shared</artifactId><version>3</version></dependency>"
            "</dependencies></dependencyManagement>"
        ),
    )

    root = resolve_dependency_tree(Coordinates("org.app", "app", "1"), repository=offline_repository)

    assert _names(root) == [(0, "app:1"), (1, "a:1"), (2, "shared:3")]


def test_missing_dependency_fails(maven_repo, offline_repository) -> None:
    maven_repo.add("org.app:app:1", dependencies=[{"coords": "org.dep:ghost:1"}])

    with pytest.raises(ResolutionError) as excinfo:
        resolve_dependency_tree(Coordinates("org.app", "app", "1"), repository=offline_repository)
    assert "ghost" in str(excinfo.value)


def test_pom_without_jar_fails(maven_repo, offline_repository) -> None:
    maven_repo.add("org.app:app:1", write_jar_file=False)

    with pytest.raises(ResolutionError):
        resolve_dependency_tree(Coordinates("org.app", "app", "1"), repository=offline_repository)

def test_pom_packaging_root_fails(maven_repo, offline_repository) -> None:
    maven_repo.add("org.app:parent:1", packaging="pom")

    with pytest.raises(ResolutionError) as excinfo:
        resolve_dependency_tree(Coordinates("org.app", "parent", "1"), repository=offline_repository)
    assert "packaging 'pom'" in str(excinfo.value)



def test_version_ranges_are_rejected(maven_repo, offline_repository) -> None:
    maven_repo.add("org.app:app:1", dependencies=[{"coords": "org.dep:ranged:[1.0,2.0)"}])

    with pytest.raises(ResolutionError) as excinfo:
        resolve_dependency_tree(Coordinates("org.app", "app", "1"), repository=offline_repository)
    assert "Unsupported version" in str(excinfo.value)


def test_unmanaged_dependency_without_version_fails(maven_repo, offline_repository) -> None:
    maven_repo.add("org.app:app:1", dependencies=[{"coords": "org.dep:floating"}])

    with pytest.raises(ResolutionError) as excinfo:
        resolve_dependency_tree(Coordinates("org.app", "app", "1"), repository=offline_repository)
    assert "No version" in str(excinfo.value)


def test_missing_version_uses_local_metadata(maven_repo, offline_repository) -> None:
    maven_repo.add("org.app:app:1.0")
    maven_repo.add("org.app:app:1.1")
    metadata = maven_repo.root / "org" / "app" / "app" / "maven-metadata-local.xml"
    metadata.write_text(
        "<metadata><groupId>org.app</groupId><artifactId>app</artifactId>"
        "<versioning><versions><version>1.0</version><version>1.1</version></versions></versioning>"
        "</metadata>",
        encoding="utf-8",
    )

    root = resolve_dependency_tree(Coordinates("org.app", "app", None), repository=offline_repository)

    assert root.coordinates.version == "1.1"


def test_is_excluded_patterns() -> None:
    coords = Coordinates("org.slf4j", "slf4j-api", "2.0")

    assert is_excluded(coords, ("org.slf4j:slf4j-api",)) is True
    assert is_excluded(coords, ("org.slf4j:*",)) is True
    assert is_excluded(coords, ("*:*",)) is True
    assert is_excluded(coords, ("org.slf4j",)) is True
    assert is_excluded(coords, ("org.other:*", "ch.qos:logback")) is False
    assert is_excluded(coords, ()) is False


def test_log_dependency_tree_lists_artifacts_and_files(maven_repo, offline_repository, caplog) -> None:
    maven_repo.add("org.dep:a:1")
    maven_repo.add("org.app:app:1", dependencies=[{"coords": "org.dep:a:1"}])
    root = resolve_dependency_tree(Coordinates("org.app", "app", "1"), repository=offline_repository)
    logger = logging.getLogger("test_resolver")

    with caplog.at_level(logging.DEBUG, logger="test_resolver"):
        log_dependency_tree(root, logger=logger)

    messages = [r.getMessage() for r in caplog.records]
    assert "jar-flattener: artifact: org.app:app:1 (compile)" in messages
    assert "jar-flattener:   artifact: org.dep:a:1 (compile)" in messages
    assert any(m.endswith("a-1.jar") and "- file:" in m for m in messages)
