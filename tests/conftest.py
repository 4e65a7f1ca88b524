"""Shared pytest fixtures.

Jars are real zip files written into ``tmp_path``; the Maven repository
fixture lays out POMs and jars exactly like ``~/.m2/repository``.
"""

from collections.abc import Callable
import pathlib
import zipfile

import pytest

from jar_flattener.coordinates import Coordinates
from jar_flattener.repository import ArtifactRepository, RepositoryConfig
from jar_flattener.resolver import DependencyNode


ENTRY_TIME: tuple[int, int, int, int, int, int] = (2021, 6, 15, 12, 30, 42)


def write_jar(
    path: pathlib.Path,
    entries: dict[str, bytes | str | None],
    *,
    date_time: tuple[int, int, int, int, int, int] = ENTRY_TIME,
) -> pathlib.Path:
    """Write a jar; ``None`` values become directory entries."""

    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, content in entries.items():
            info = zipfile.ZipInfo(name, date_time=date_time)
            if content is None:
                info.external_attr = (0o40755 << 16) | 0x10
                zf.writestr(info, b"")
                continue
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = 0o644 << 16
            payload = content.encode("utf-8") if isinstance(content, str) else content
            zf.writestr(info, payload)
    return path


def read_jar(path: pathlib.Path) -> dict[str, bytes]:
    """Read every entry of a jar (directories map to ``b""``)."""

    with zipfile.ZipFile(path) as zf:
        return {info.filename: zf.read(info) for info in zf.infolist()}


@pytest.fixture
def jar_writer() -> Callable[..., pathlib.Path]:
    return write_jar


@pytest.fixture
def jar_reader() -> Callable[[pathlib.Path], dict[str, bytes]]:
    return read_jar


@pytest.fixture
def make_node(tmp_path: pathlib.Path) -> Callable[..., DependencyNode]:
    """Factory building a jar on disk and the tree node pointing at it."""

    def factory(
        name: str,
        entries: dict[str, bytes | str | None],
        children: tuple[DependencyNode, ...] = (),
    ) -> DependencyNode:
        jar: pathlib.Path = write_jar(tmp_path / "jars" / f"{name}.jar", entries)
        return DependencyNode(
            coordinates=Coordinates(group_id="test", artifact_id=name, version="1.0"),
            path=jar,
            children=children,
        )

    return factory


class MavenRepo:
    """Writes artifacts into a Maven-layout directory."""

    def __init__(self, root: pathlib.Path) -> None:
        self.root: pathlib.Path = root

    def add(
        self,
        coords: str,
        *,
        dependencies: list[dict[str, str | list[str]]] | None = None,
        entries: dict[str, bytes | str | None] | None = None,
        parent: str | None = None,
        packaging: str = "jar",
        extra_xml: str = "",
        write_jar_file: bool = True,
    ) -> pathlib.Path:
        """Add ``group:artifact:version``; returns the artifact directory."""

        group_id, artifact_id, version = coords.split(":")
        base: pathlib.Path = self.root / group_id.replace(".", "/") / artifact_id / version
        base.mkdir(parents=True, exist_ok=True)

        parent_xml: str = ""
        if parent is not None:
            pg, pa, pv = parent.split(":")
            parent_xml = f"<parent><groupId>{pg}</groupId><artifactId>{pa}</artifactId><version>{pv}</version></parent>"

        deps_xml: str = "".join(_dependency_xml(dep) for dep in dependencies or [])
        pom: str = (
            '<?xml version="1.0" encoding="UTF-8"?>\n'
            '<project xmlns="http://maven.apache.org/POM/4.0.0">'
            "<modelVersion>4.0.0</modelVersion>"
            f"{parent_xml}"
            f"<groupId>{group_id}</groupId><artifactId>{artifact_id}</artifactId><version>{version}</version>"
            f"<packaging>{packaging}</packaging>"
            f"{extra_xml}"
            f"<dependencies>{deps_xml}</dependencies>"
            "</project>"
        )
        (base / f"{artifact_id}-{version}.pom").write_text(pom, encoding="utf-8")

        if write_jar_file is True and packaging == "jar":
            content = entries if entries is not None else {f"{artifact_id}.txt": artifact_id}
            write_jar(base / f"{artifact_id}-{version}.jar", content)
        return base


def _dependency_xml(dep: dict[str, str | list[str]]) -> str:
    group_id, artifact_id, *rest = str(dep["coords"]).split(":")
    parts: list[str] = [f"<groupId>{group_id}</groupId>", f"<artifactId>{artifact_id}</artifactId>"]
    if len(rest) > 0:
        parts.append(f"<version>{rest[0]}</version>")
    for tag in ("scope", "optional", "type", "classifier"):
        if tag in dep:
            parts.append(f"<{tag}>{dep[tag]}</{tag}>")
    exclusions = dep.get("exclusions")
    if isinstance(exclusions, list):
        ex_xml: str = ""
        for ex in exclusions:
            eg, ea = ex.split(":")
            ex_xml += f"<exclusion><groupId>{eg}</groupId><artifactId>{ea}</artifactId></exclusion>"
        parts.append(f"<exclusions>{ex_xml}</exclusions>")
    return "<dependency>" + "".join(parts) + "</dependency>"


@pytest.fixture
def maven_repo(tmp_path: pathlib.Path) -> MavenRepo:
    return MavenRepo(tmp_path / "m2")


@pytest.fixture
def offline_repository(maven_repo: MavenRepo) -> ArtifactRepository:
    config = RepositoryConfig(
        local_repo=maven_repo.root,
        remote_urls=("https://repo.example.invalid/maven2/",),
        offline=True,
        timeout=5.0,
    )
    return ArtifactRepository(config)
