"""Jar (zip) reading and writing primitives.

Reading turns one jar into a ``path -> Record`` mapping. Writing serializes a
manifest record plus an iterable of records into a new jar, keeping each record's
original timestamp so repeated builds of the same inputs are byte-identical.
"""

from dataclasses import dataclass
from collections.abc import Iterable
import logging
import pathlib
import zipfile
import zlib


class ArchiveError(RuntimeError):
    """Base class for jar read/write failures."""


class ArchiveReadError(ArchiveError):
    """Raised when a dependency jar is missing, unreadable or corrupt."""


class ArchiveWriteError(ArchiveError):
    """Raised when the merged jar cannot be written."""


# Directory bit for MS-DOS attributes plus drwxr-xr-x in the high word.
_DIR_EXTERNAL_ATTR: int = (0o40755 << 16) | 0x10


@dataclass(frozen=True, slots=True)
class Record:
    """One entry of a jar.

    :ivar path: Entry name inside the archive (``/``-separated).
    :ivar is_dir: ``True`` for directory entries.
    :ivar date_time: Last-modified timestamp as a zip 6-tuple.
    :ivar data: Payload for files, ``None`` for directories.
    :ivar external_attr: Raw zip external attributes (permission bits).
    """

    path: str
    is_dir: bool
    date_time: tuple[int, int, int, int, int, int]
    data: bytes | None
    external_attr: int = 0


def read_archive(path: pathlib.Path) -> dict[str, Record]:
    """Read every entry of a jar into memory.

    :param path: Jar file to read.
    :returns: Mapping of entry path to :class:`~Record`, in archive order.
    :raises ArchiveReadError: If the file is missing, unreadable or not a zip.
    """

    records: dict[str, Record] = {}
    # Encrypted entries make zipfile raise a bare RuntimeError.
    try:
        with zipfile.ZipFile(path, "r") as zf:
            for info in zf.infolist():
                data: bytes | None
                if info.is_dir() is True:
                    data = None
                else:
                    data = zf.read(info)
                records[info.filename] = Record(
                    path=info.filename,
                    is_dir=info.is_dir(),
                    date_time=info.date_time,
                    data=data,
                    external_attr=info.external_attr,
                )
    except (OSError, EOFError, RuntimeError, zipfile.BadZipFile, zlib.error, NotImplementedError) as e:
        raise ArchiveReadError(f"Could not process file {path}: {e}") from e
    return records


def write_archive(
    *,
    output_path: pathlib.Path,
    manifest: Record,
    records: Iterable[Record],
    logger: logging.Logger | None = None,
) -> int:
    """Write a jar whose first entry is ``manifest``, followed by ``records``.

    The jar is written to a temporary sibling first and moved over
    ``output_path`` only once complete, so a failed write leaves any previous
    output untouched.

    :param output_path: Destination ``.jar`` path.
    :param manifest: Serialized manifest record (written first).
    :param records: Records in the order they should appear.
    :param logger: Optional logger for debug output.
    :returns: Number of records written (excluding the manifest).
    :raises ArchiveWriteError: If the jar cannot be created or written.
    """

    if logger is None:
        logger = logging.getLogger("jar_flattener")

    tmp_path: pathlib.Path = output_path.with_name(output_path.name + ".tmp")
    count: int = 0
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(tmp_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            _write_record(zf, manifest)

            for record in records:
                _write_record(zf, record)
                count += 1
        tmp_path.replace(output_path)
    except (OSError, ValueError, zipfile.LargeZipFile) as e:
        _discard(tmp_path)
        raise ArchiveWriteError(f"Could not create result jar {output_path}: {e}") from e

    if logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(f"jar-flattener: wrote {count} entries to {output_path}")
    return count


def _write_record(zf: zipfile.ZipFile, record: Record) -> None:
    """Append one record to an open zip.

    :param zf: Zip opened for writing.
    :param record: Record to write; directories get no payload.
    """

    info: zipfile.ZipInfo = zipfile.ZipInfo(record.path, date_time=record.date_time)
    if record.is_dir is True:
        info.compress_type = zipfile.ZIP_STORED
        dir_attr: int = record.external_attr if record.external_attr != 0 else _DIR_EXTERNAL_ATTR
        info.external_attr = dir_attr | 0x10
        zf.writestr(info, b"")
        return

    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = record.external_attr if record.external_attr != 0 else 0o644 << 16
    payload: bytes = record.data if record.data is not None else b""
    zf.writestr(info, payload)


def _discard(path: pathlib.Path) -> None:
    """Remove a leftover temporary file if one was created.

    :param path: File to remove.
    """

    if path.is_file() is True:
        path.unlink()
