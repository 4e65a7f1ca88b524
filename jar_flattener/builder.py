"""Uber-jar builder.

This module implements the whole build:

- It resolves the requested artifact and its runtime dependency tree.
- It merges every jar of the tree into one index, dependencies first, so the
  root artifact's own files win any path conflict.
- It drops signature files, rebuilds ``META-INF/MANIFEST.MF`` and writes
  ``<base>.jar``.
- It prepends a small shell launcher to the jar to produce ``<base>``, which
  can be run directly (``java -jar`` tolerates leading bytes before the zip).
"""

from dataclasses import dataclass
import logging
import os
import pathlib
import shutil
import stat
import textwrap
import time

from jar_flattener.archive import write_archive
from jar_flattener.coordinates import Coordinates, output_base_name
from jar_flattener.manifest import MANIFEST_PATH, MANIFEST_VERSION, Manifest, ManifestError, synthesize_manifest
from jar_flattener.merge import MergedIndex, filter_signature_records, merge_tree
from jar_flattener.repository import ArtifactRepository
from jar_flattener.resolver import DependencyNode, log_dependency_tree, resolve_dependency_tree


class BuildError(RuntimeError):
    """Raised when building fails."""


class ExecutablePackagingError(BuildError):
    """Raised when the executable wrapper cannot be written."""


@dataclass(frozen=True, slots=True)
class BuildResult:
    """Outputs of one build.

    :ivar jar_path: Merged jar.
    :ivar executable_path: Executable wrapper, or ``None`` if packaging failed leniently.
    :ivar entry_count: Entries written to the jar (excluding the manifest).
    :ivar removed_paths: Signature files dropped from the merge.
    """

    jar_path: pathlib.Path
    executable_path: pathlib.Path | None
    entry_count: int
    removed_paths: tuple[str, ...]


def build_uber_jar(
    *,
    coords: Coordinates,
    repository: ArtifactRepository,
    output_name: str | None = None,
    output_dir: pathlib.Path | None = None,
    stub: bytes | None = None,
    strict_executable: bool = False,
    jobs: int = 1,
    logger: logging.Logger | None = None,
) -> BuildResult:
    """Resolve an artifact and build its merged jar and executable.

    :param coords: Requested coordinates (version optional).
    :param repository: Repository to resolve from.
    :param output_name: Optional custom base name for the outputs.
    :param output_dir: Directory for the outputs (defaults to the current directory).
    :param stub: Optional launcher stub bytes; defaults to the built-in shell prefix.
    :param strict_executable: Fail the build if the executable cannot be written.
    :param jobs: Number of jars read concurrently.
    :param logger: Optional logger for progress output.
    :returns: Build result.
    :raises ResolutionError: If dependency resolution fails.
    :raises ArchiveError: If a jar cannot be read or the merged jar cannot be written.
    :raises BuildError: If options are invalid, or packaging fails in strict mode.
    """

    if logger is None:
        logger = logging.getLogger("jar_flattener")

    version_text: str = coords.version if coords.version is not None else "(latest)"
    logger.info(f"jar-flattener: install app {coords.group_id}:{coords.artifact_id}:{version_text}")

    t0: float = time.perf_counter()
    root: DependencyNode = resolve_dependency_tree(coords, repository=repository, logger=logger)
    t1: float = time.perf_counter()
    node_count: int = _count_nodes(root)
    logger.info(f"jar-flattener: dependency resolution successful ({node_count} artifacts) in {t1 - t0:.2f}s")
    log_dependency_tree(root, logger=logger)

    base: str = output_base_name(coords, output_name)
    return build_from_tree(
        root=root,
        base_name=base,
        output_dir=output_dir,
        stub=stub,
        strict_executable=strict_executable,
        jobs=jobs,
        logger=logger,
    )


def build_from_tree(
    *,
    root: DependencyNode,
    base_name: str,
    output_dir: pathlib.Path | None = None,
    stub: bytes | None = None,
    strict_executable: bool = False,
    jobs: int = 1,
    logger: logging.Logger | None = None,
) -> BuildResult:
    """Build the merged jar and executable from an already-resolved tree.

    :param root: Root of the dependency tree.
    :param base_name: Base name for ``<base>.jar`` and ``<base>``.
    :param output_dir: Directory for the outputs (defaults to the current directory).
    :param stub: Optional launcher stub bytes.
    :param strict_executable: Fail the build if the executable cannot be written.
    :param jobs: Number of jars read concurrently.
    :param logger: Optional logger for progress output.
    :returns: Build result.
    :raises ArchiveError: If a jar cannot be read or the merged jar cannot be written.
    :raises BuildError: If options are invalid, or packaging fails in strict mode.
    """

    if logger is None:
        logger = logging.getLogger("jar_flattener")

    if len(base_name) == 0 or "/" in base_name or base_name in (".", ".."):
        raise BuildError(f"Invalid output name {base_name!r}; expected a plain file name.")
    if jobs < 1:
        raise BuildError(f"Invalid jobs={jobs}; expected 1 or more.")

    out_dir: pathlib.Path = output_dir if output_dir is not None else pathlib.Path.cwd()
    jar_path: pathlib.Path = out_dir / f"{base_name}.jar"
    executable_path: pathlib.Path = out_dir / base_name

    t_total0: float = time.perf_counter()
    logger.info(f"jar-flattener: root artifact: {root.path.resolve()}")

    t_merge0: float = time.perf_counter()
    index: MergedIndex = merge_tree(root, jobs=jobs, logger=logger)
    t_merge1: float = time.perf_counter()
    logger.info(
        f"jar-flattener: merged {len(index)} entries ({index.overridden} overrides) in {t_merge1 - t_merge0:.2f}s"
    )

    removed: list[str] = filter_signature_records(index, logger=logger)
    if len(removed) > 0:
        logger.info(f"jar-flattener: removed {len(removed)} signature files")

    try:
        manifest: Manifest = synthesize_manifest(index, logger=logger)
    except ManifestError as e:
        raise BuildError(f"Could not parse {MANIFEST_PATH} merged into {jar_path}: {e}") from e
    if logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(f"jar-flattener: manifest {MANIFEST_VERSION}={manifest.main.get(MANIFEST_VERSION)}")

    t_write0: float = time.perf_counter()
    count: int = write_archive(
        output_path=jar_path,
        manifest=manifest.to_record(),
        records=index.records(),
        logger=logger,
    )
    t_write1: float = time.perf_counter()
    jar_size: int = jar_path.stat().st_size
    logger.info(
        f"jar-flattener: created merged jar: {jar_path} ({jar_size / (1024 * 1024):.1f} MiB) in {t_write1 - t_write0:.2f}s"
    )

    stub_bytes: bytes = stub if stub is not None else default_stub()
    written_executable: pathlib.Path | None = executable_path
    try:
        write_executable(stub=stub_bytes, jar_path=jar_path, output_path=executable_path)
        logger.info(f"jar-flattener: created executable: {executable_path}")
    except ExecutablePackagingError as e:
        if strict_executable is True:
            raise
        logger.error(f"jar-flattener: {e}")
        written_executable = None

    t_total1: float = time.perf_counter()
    logger.info(f"jar-flattener: done in {t_total1 - t_total0:.2f}s")

    return BuildResult(
        jar_path=jar_path,
        executable_path=written_executable,
        entry_count=count,
        removed_paths=tuple(removed),
    )


def write_executable(*, stub: bytes, jar_path: pathlib.Path, output_path: pathlib.Path) -> None:
    """Write ``stub`` followed by the bytes of ``jar_path`` and mark it executable.

    :param stub: Launcher prefix bytes.
    :param jar_path: Merged jar.
    :param output_path: Executable to create (replaced if present).
    :raises ExecutablePackagingError: If the file cannot be written.
    """

    tmp_path: pathlib.Path = output_path.with_name(output_path.name + ".tmp")
    try:
        with open(tmp_path, "wb") as out, open(jar_path, "rb") as src:
            out.write(stub)
            shutil.copyfileobj(src, out, 1024 * 1024)
        mode: int = os.stat(tmp_path).st_mode
        os.chmod(tmp_path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        tmp_path.replace(output_path)
    except OSError as e:
        if tmp_path.is_file() is True:
            tmp_path.unlink()
        raise ExecutablePackagingError(f"Could not create executable {output_path}: {e}") from e


def load_stub(path: pathlib.Path) -> bytes:
    """Read a custom launcher stub.

    :param path: Stub file.
    :returns: Stub bytes.
    :raises BuildError: If the file cannot be read.
    """

    try:
        return path.read_bytes()
    except OSError as e:
        raise BuildError(f"Could not read launcher stub {path}: {e}") from e


def default_stub() -> bytes:
    """Return the built-in shell launcher prefix."""

    return _EXECUTABLE_PREFIX.encode("utf-8")


def _count_nodes(root: DependencyNode) -> int:
    """Count the nodes of a tree (shared nodes once per occurrence).

    :param root: Tree root.
    :returns: Node count.
    """

    total: int = 1
    for child in root.children:
        total += _count_nodes(child)
    return total


_EXECUTABLE_PREFIX: str = textwrap.dedent(
    r'''
    #!/bin/sh
    # This file was generated by jar-flattener: a shell launcher followed by a jar.
    MYSELF=`which "$0" 2>/dev/null`
    [ $? -gt 0 -a -f "$0" ] && MYSELF="./$0"
    java=java
    if test -n "$JAVA_HOME"; then
        java="$JAVA_HOME/bin/java"
    fi
    exec "$java" $JAVA_OPTS -jar "$MYSELF" "$@"
    exit 1
    '''
).lstrip()
