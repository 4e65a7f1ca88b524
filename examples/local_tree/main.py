"""Merge jars that are already on disk, without a Maven repository.

Usage::

    python examples/local_tree/main.py app.jar lib-a.jar lib-b.jar

``app.jar`` becomes the root; every other jar is one of its direct
dependencies. Writes ``app-merged.jar`` and ``app-merged`` to the current
directory.
"""

import logging
import pathlib
import sys

from jar_flattener.builder import BuildResult, build_from_tree
from jar_flattener.coordinates import Coordinates
from jar_flattener.resolver import DependencyNode


def _node(path: pathlib.Path, children: tuple[DependencyNode, ...] = ()) -> DependencyNode:
    coords: Coordinates = Coordinates(group_id="local", artifact_id=path.stem, version="0")
    return DependencyNode(coordinates=coords, path=path, children=children)


def main(argv: list[str]) -> int:
    """Run the demo.
    """

    if len(argv) < 1:
        print(__doc__, file=sys.stderr)
        return 2

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    jars: list[pathlib.Path] = [pathlib.Path(p) for p in argv]
    deps: tuple[DependencyNode, ...] = tuple(_node(p) for p in jars[1:])
    root: DependencyNode = _node(jars[0], deps)

    result: BuildResult = build_from_tree(root=root, base_name=f"{jars[0].stem}-merged")
    print(f"{result.jar_path}: {result.entry_count} entries, {len(result.removed_paths)} signature files dropped")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
