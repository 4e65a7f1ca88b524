"""Merge engine.

Jars are merged dependency-first: every child of a node is merged before the
node itself, so a node's own entries replace same-path entries inherited from
anything below it. The root artifact is merged last and always wins.
"""

from collections.abc import Callable, Iterator, MutableMapping
from concurrent.futures import ThreadPoolExecutor
import logging
import pathlib

from jar_flattener.archive import Record, read_archive
from jar_flattener.resolver import DependencyNode


SIGNATURE_DIR: str = "META-INF/"
SIGNATURE_SUFFIXES: tuple[str, ...] = (".SF", ".DSA", ".RSA")

ArchiveReader = Callable[[pathlib.Path], dict[str, Record]]


class MergedIndex(MutableMapping[str, Record]):
    """Ordered ``path -> Record`` accumulator for one build.

    :meth:`merge` is the only operation that resolves conflicts: an existing
    path is removed and the incoming record appended, so the last writer wins
    and the entry moves to where its writer's entries are.
    """

    def __init__(self) -> None:
        self._records: dict[str, Record] = {}
        self.overridden: int = 0

    def __getitem__(self, path: str) -> Record:
        return self._records[path]

    def __setitem__(self, path: str, record: Record) -> None:
        self._records[path] = record

    def __delitem__(self, path: str) -> None:
        del self._records[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def merge(self, records: dict[str, Record]) -> int:
        """Insert or override ``records`` by path.

        :param records: Records of one archive, in archive order.
        :returns: Number of paths that replaced an earlier record.
        """

        replaced: int = 0
        for path, record in records.items():
            if path in self._records:
                del self._records[path]
                replaced += 1
            self._records[path] = record
        self.overridden += replaced
        return replaced

    def records(self) -> list[Record]:
        """Records in iteration order."""

        return list(self._records.values())


def iter_nodes(root: DependencyNode) -> Iterator[DependencyNode]:
    """Yield every node in merge order (children before parents).

    :param root: Tree root.
    :returns: Iterator over nodes; shared nodes are yielded once per occurrence.
    """

    for child in root.children:
        yield from iter_nodes(child)
    yield root


def merge_tree(
    root: DependencyNode,
    *,
    reader: ArchiveReader = read_archive,
    jobs: int = 1,
    logger: logging.Logger | None = None,
) -> MergedIndex:
    """Merge the archives of a whole dependency tree.

    :param root: Root of the resolved dependency tree.
    :param reader: Function reading one archive into records.
    :param jobs: Number of archives read concurrently (merging stays sequential).
    :param logger: Optional logger for progress output.
    :returns: The merged index.
    :raises ArchiveReadError: If any archive in the tree cannot be read.
    """

    if logger is None:
        logger = logging.getLogger("jar_flattener")

    if jobs > 1:
        loaded: dict[pathlib.Path, dict[str, Record]] = _prefetch(root, reader=reader, jobs=jobs)

        def cached_reader(path: pathlib.Path) -> dict[str, Record]:
            return loaded[path]

        reader = cached_reader

    index: MergedIndex = MergedIndex()
    _merge_node(root, index=index, reader=reader, logger=logger)
    return index


def _merge_node(
    node: DependencyNode,
    *,
    index: MergedIndex,
    reader: ArchiveReader,
    logger: logging.Logger,
) -> None:
    """Merge ``node``'s subtree into ``index``, dependencies first.

    :param node: Subtree root.
    :param index: Accumulator.
    :param reader: Archive reader.
    :param logger: Logger for debug output.
    """

    for child in node.children:
        _merge_node(child, index=index, reader=reader, logger=logger)

    records: dict[str, Record] = reader(node.path)
    replaced: int = index.merge(records)
    if logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(
            f"jar-flattener: merged {node.coordinates} ({len(records)} entries, {replaced} overrides)"
        )


def _prefetch(
    root: DependencyNode,
    *,
    reader: ArchiveReader,
    jobs: int,
) -> dict[pathlib.Path, dict[str, Record]]:
    """Read every distinct archive of the tree on a thread pool.

    :param root: Tree root.
    :param reader: Archive reader.
    :param jobs: Worker count.
    :returns: Records keyed by archive path.
    :raises ArchiveReadError: The first read failure, in merge order.
    """

    paths: list[pathlib.Path] = []
    seen: set[pathlib.Path] = set()
    for node in iter_nodes(root):
        if node.path not in seen:
            seen.add(node.path)
            paths.append(node.path)

    with ThreadPoolExecutor(max_workers=jobs, thread_name_prefix="JarReader") as executor:
        results: list[dict[str, Record]] = list(executor.map(reader, paths))
    return dict(zip(paths, results))


def is_signature_path(path: str) -> bool:
    """Check whether an entry is a jar signature file.

    :param path: Entry path.
    :returns: ``True`` for ``META-INF/*.SF``, ``*.DSA`` and ``*.RSA``.
    """

    return path.startswith(SIGNATURE_DIR) is True and path.endswith(SIGNATURE_SUFFIXES) is True


def filter_signature_records(
    index: MutableMapping[str, Record],
    *,
    logger: logging.Logger | None = None,
) -> list[str]:
    """Drop signature files that would make the merged jar fail verification.

    :param index: Merged records; edited in place.
    :param logger: Optional logger for debug output.
    :returns: Removed paths.
    """

    if logger is None:
        logger = logging.getLogger("jar_flattener")

    removed: list[str] = [path for path in index if is_signature_path(path) is True]
    for path in removed:
        logger.debug(f"jar-flattener: removing file from final jar {path}")
        del index[path]
    return removed
