"""Dependency tree resolution.

The tree is built breadth-first with nearest-wins mediation: the shallowest
declaration of a ``group:artifact`` (first in declaration order on ties) is
kept, and every later declaration of it is left out of the tree. Only
``compile`` and ``runtime`` dependencies packaged as jars are followed.
"""

from collections import deque
from dataclasses import dataclass, field
import fnmatch
import logging
import pathlib

from jar_flattener.coordinates import Coordinates
from jar_flattener.pom import Dependency, Pom, PomLoader, apply_management
from jar_flattener.repository import ArtifactRepository, ResolutionError


INCLUDED_SCOPES: frozenset[str] = frozenset({"compile", "runtime"})


@dataclass(frozen=True, slots=True)
class DependencyNode:
    """A resolved artifact and the dependencies it brought in.

    :ivar coordinates: Resolved coordinates (always versioned).
    :ivar path: Local file of the artifact.
    :ivar children: Dependencies, in declaration order.
    :ivar scope: Effective scope the artifact was pulled in with.
    """

    coordinates: Coordinates
    path: pathlib.Path
    children: tuple["DependencyNode", ...] = ()
    scope: str = "compile"


@dataclass(slots=True)
class _PendingNode:
    coordinates: Coordinates
    path: pathlib.Path
    scope: str
    children: list["_PendingNode"] = field(default_factory=list)

    def freeze(self) -> DependencyNode:
        return DependencyNode(
            coordinates=self.coordinates,
            path=self.path,
            children=tuple(child.freeze() for child in self.children),
            scope=self.scope,
        )


def resolve_dependency_tree(
    coords: Coordinates,
    *,
    repository: ArtifactRepository,
    logger: logging.Logger | None = None,
) -> DependencyNode:
    """Resolve ``coords`` and all of its runtime dependencies.

    :param coords: Requested coordinates; a missing version picks the latest release.
    :param repository: Repository to fetch POMs and jars from.
    :param logger: Optional logger for progress output.
    :returns: Root of the dependency tree.
    :raises ResolutionError: If any artifact or POM cannot be resolved, or the root is a ``pom`` packaging artifact.
    """

    if logger is None:
        logger = logging.getLogger("jar_flattener")

    if coords.version is None:
        coords = coords.with_version(repository.latest_version(coords.group_id, coords.artifact_id))
    _check_version(coords, required_by=None)

    loader: PomLoader = PomLoader(repository, logger=logger)
    root_pom: Pom = loader.load(coords)
    if root_pom.packaging == "pom":
        raise ResolutionError(f"{coords} has packaging 'pom' and no jar to merge")
    root: _PendingNode = _PendingNode(coordinates=coords, path=repository.fetch(coords), scope="compile")

    selected: dict[str, str] = {coords.key: coords.version or ""}
    queue: deque[tuple[_PendingNode, Pom, tuple[str, ...], int]] = deque()
    queue.append((root, root_pom, (), 0))

    while len(queue) > 0:
        parent, pom, exclusions, depth = queue.popleft()
        for declared in pom.dependencies:
            dep: Dependency = declared
            if depth > 0:
                # The root's dependency management pins transitive versions.
                dep = apply_management(dep, root_pom.managed, force_version=True)

            scope: str = _effective_scope(parent.scope, dep.scope if len(dep.scope) > 0 else "compile")
            if scope not in INCLUDED_SCOPES:
                continue
            if dep.optional is True:
                logger.debug(f"jar-flattener: skipping optional {dep.coordinates} (required by {parent.coordinates})")
                continue
            if dep.coordinates.extension != "jar":
                logger.debug(f"jar-flattener: skipping non-jar {dep.coordinates} (type={dep.type})")
                continue
            if is_excluded(dep.coordinates, exclusions) is True:
                logger.debug(f"jar-flattener: {dep.coordinates} excluded below {parent.coordinates}")
                continue

            winner: str | None = selected.get(dep.coordinates.key)
            if winner is not None:
                if logger.isEnabledFor(logging.DEBUG) is True and winner != dep.coordinates.version:
                    logger.debug(
                        f"jar-flattener: omitting {dep.coordinates} (required by {parent.coordinates}); "
                        f"conflicts with {winner}"
                    )
                continue

            child_coords: Coordinates = dep.coordinates
            _check_version(child_coords, required_by=parent.coordinates)
            selected[child_coords.key] = child_coords.version or ""

            child: _PendingNode = _PendingNode(
                coordinates=child_coords,
                path=repository.fetch(child_coords),
                scope=scope,
            )
            parent.children.append(child)
            child_pom: Pom = loader.load(child_coords)
            queue.append((child, child_pom, exclusions + dep.exclusions, depth + 1))

    return root.freeze()


def is_excluded(coords: Coordinates, exclusions: tuple[str, ...]) -> bool:
    """Check ``coords`` against ``group:artifact`` exclusion patterns.

    :param coords: Candidate coordinates.
    :param exclusions: Patterns; ``*`` wildcards are allowed in either part.
    :returns: ``True`` if any pattern matches.
    """

    for pattern in exclusions:
        group_pat, _, artifact_pat = pattern.partition(":")
        if len(artifact_pat) == 0:
            artifact_pat = "*"
        if fnmatch.fnmatchcase(coords.group_id, group_pat) is True and fnmatch.fnmatchcase(
            coords.artifact_id, artifact_pat
        ) is True:
            return True
    return False


def iter_tree(root: DependencyNode) -> list[tuple[int, DependencyNode]]:
    """Flatten a tree into ``(depth, node)`` pairs in pre-order.

    :param root: Tree root.
    :returns: Pairs for every node.
    """

    out: list[tuple[int, DependencyNode]] = []
    stack: list[tuple[int, DependencyNode]] = [(0, root)]
    while len(stack) > 0:
        depth, node = stack.pop()
        out.append((depth, node))
        for child in reversed(node.children):
            stack.append((depth + 1, child))
    return out


def log_dependency_tree(root: DependencyNode, *, logger: logging.Logger) -> None:
    """Log every resolved artifact and its file at DEBUG.

    :param root: Tree root.
    :param logger: Logger to write to.
    """

    if logger.isEnabledFor(logging.DEBUG) is False:
        return
    for depth, node in iter_tree(root):
        indent: str = "  " * depth
        logger.debug(f"jar-flattener: {indent}artifact: {node.coordinates} ({node.scope})")
        logger.debug(f"jar-flattener: {indent}  - file: {node.path.resolve()}")


def _effective_scope(parent_scope: str, declared_scope: str) -> str:
    """Scope of a transitive dependency given its parent's scope.

    :param parent_scope: Scope the parent was pulled in with.
    :param declared_scope: Scope declared for the dependency.
    :returns: Effective scope; ``runtime`` is sticky, others pass through.
    """

    if declared_scope == "compile" and parent_scope == "runtime":
        return "runtime"
    return declared_scope


def _check_version(coords: Coordinates, *, required_by: Coordinates | None) -> None:
    """Reject missing versions and version ranges.

    :param coords: Coordinates to check.
    :param required_by: Declaring artifact, for the error message.
    :raises ResolutionError: If the version cannot be used as-is.
    """

    origin: str = f" (required by {required_by})" if required_by is not None else ""
    if coords.version is None or len(coords.version) == 0:
        raise ResolutionError(f"No version for {coords}{origin}")
    if coords.version[0] in "[(" or "${" in coords.version:
        raise ResolutionError(f"Unsupported version {coords.version!r} for {coords.key}{origin}")
