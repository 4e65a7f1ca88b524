"""Jar manifest model, parser and synthesizer.

The manifest text format is line based: ``Name: value`` headers, lines capped
at 72 bytes with continuation lines starting with a single space, a main
section followed by optional per-entry sections separated by blank lines.
"""

from collections.abc import Iterator, MutableMapping
import logging

from jar_flattener.archive import Record


MANIFEST_PATH: str = "META-INF/MANIFEST.MF"
MANIFEST_VERSION: str = "Manifest-Version"
SIGNATURE_VERSION: str = "Signature-Version"

# Timestamp used for a fabricated manifest; the earliest a zip entry can carry.
DEFAULT_DATE_TIME: tuple[int, int, int, int, int, int] = (1980, 1, 1, 0, 0, 0)

_MAX_LINE_BYTES: int = 72


class ManifestError(ValueError):
    """Raised when manifest text cannot be parsed."""


class Attributes:
    """Ordered attribute map with case-insensitive names.

    The spelling used on first insertion is kept for output.
    """

    def __init__(self) -> None:
        self._items: dict[str, tuple[str, str]] = {}

    def __getitem__(self, name: str) -> str:
        return self._items[name.lower()][1]

    def __setitem__(self, name: str, value: str) -> None:
        key: str = name.lower()
        existing: tuple[str, str] | None = self._items.get(key)
        spelled: str = existing[0] if existing is not None else name
        self._items[key] = (spelled, value)

    def __delitem__(self, name: str) -> None:
        del self._items[name.lower()]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[str]:
        for spelled, _ in self._items.values():
            yield spelled

    def get(self, name: str, default: str | None = None) -> str | None:
        item: tuple[str, str] | None = self._items.get(name.lower())
        if item is None:
            return default
        return item[1]

    def pop(self, name: str, default: str | None = None) -> str | None:
        item: tuple[str, str] | None = self._items.pop(name.lower(), None)
        if item is None:
            return default
        return item[1]

    def items(self) -> list[tuple[str, str]]:
        return list(self._items.values())


class Manifest:
    """A parsed jar manifest.

    :ivar main: Main section attributes.
    :ivar entries: Per-entry sections keyed by their ``Name`` value.
    :ivar date_time: Timestamp to store the manifest entry with.
    """

    def __init__(
        self,
        *,
        main: Attributes | None = None,
        entries: dict[str, Attributes] | None = None,
        date_time: tuple[int, int, int, int, int, int] = DEFAULT_DATE_TIME,
    ) -> None:
        self.main: Attributes = main if main is not None else Attributes()
        self.entries: dict[str, Attributes] = entries if entries is not None else {}
        self.date_time: tuple[int, int, int, int, int, int] = date_time

    def to_bytes(self) -> bytes:
        """Serialize the manifest in jar manifest format.

        ``Manifest-Version`` is always written first; the remaining main
        attributes and sections keep their insertion order.

        :returns: UTF-8 manifest bytes with CRLF line endings.
        """

        out: list[bytes] = []
        version: str | None = self.main.get(MANIFEST_VERSION)
        if version is not None:
            out.append(_header_line(MANIFEST_VERSION, version))
        for name, value in self.main.items():
            if name.lower() == MANIFEST_VERSION.lower():
                continue
            out.append(_header_line(name, value))
        out.append(b"\r\n")

        for entry_name, attrs in self.entries.items():
            out.append(_header_line("Name", entry_name))
            for name, value in attrs.items():
                out.append(_header_line(name, value))
            out.append(b"\r\n")

        return b"".join(out)

    def to_record(self) -> Record:
        """Wrap the serialized manifest as an archive record.

        :returns: Record stored at ``META-INF/MANIFEST.MF``.
        """

        return Record(
            path=MANIFEST_PATH,
            is_dir=False,
            date_time=self.date_time,
            data=self.to_bytes(),
            external_attr=0o644 << 16,
        )


def parse_manifest(data: bytes) -> Manifest:
    """Parse manifest bytes.

    Bytes that are not valid UTF-8 are replaced with U+FFFD, as the JDK does.

    :param data: Raw ``MANIFEST.MF`` contents.
    :returns: Parsed manifest.
    :raises ManifestError: If a header line is malformed.
    """

    text: str = data.decode("utf-8", errors="replace")

    # Leading BOM is tolerated by the JDK parser as well.
    if text.startswith("\ufeff") is True:
        text = text[1:]

    sections: list[list[str]] = [[]]
    for raw in text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        if len(raw) == 0:
            if len(sections[-1]) > 0:
                sections.append([])
            continue
        if raw.startswith(" ") is True:
            if len(sections[-1]) == 0:
                raise ManifestError(f"Continuation line without a header: {raw!r}")
            sections[-1][-1] += raw[1:]
            continue
        sections[-1].append(raw)

    manifest: Manifest = Manifest()
    for index, lines in enumerate(sections):
        if len(lines) == 0:
            continue
        attrs: Attributes = Attributes()
        for line in lines:
            name, value = _split_header(line)
            attrs[name] = value
        if index == 0 and "Name" not in attrs:
            manifest.main = attrs
            continue
        entry_name: str | None = attrs.pop("Name")
        if entry_name is None:
            raise ManifestError(f"Manifest section without a Name header: {lines[0]!r}")
        manifest.entries[entry_name] = attrs

    return manifest


def strip_signature_attributes(manifest: Manifest) -> list[str]:
    """Remove signing leftovers that a merged jar cannot honour.

    Drops ``Signature-Version`` from the main section and every ``*-Digest``
    attribute from per-entry sections; sections emptied by that are removed.

    :param manifest: Manifest to edit in place.
    :returns: Names of the removed attributes (``section:attribute`` for entries).
    """

    removed: list[str] = []
    if manifest.main.pop(SIGNATURE_VERSION) is not None:
        removed.append(SIGNATURE_VERSION)

    for entry_name in list(manifest.entries):
        attrs: Attributes = manifest.entries[entry_name]
        digests: list[str] = [name for name in attrs if name.lower().endswith("-digest") is True]
        for name in digests:
            del attrs[name]
            removed.append(f"{entry_name}:{name}")
        if len(digests) > 0 and len(attrs) == 0:
            del manifest.entries[entry_name]

    return removed


def synthesize_manifest(
    index: MutableMapping[str, Record],
    *,
    logger: logging.Logger | None = None,
) -> Manifest:
    """Produce the single manifest for a merged jar.

    If ``index`` holds a ``META-INF/MANIFEST.MF`` record it is parsed, stripped
    of signature attributes and removed from ``index``. Otherwise a fresh
    manifest containing only ``Manifest-Version: 1.0`` is returned.

    :param index: Merged records; edited in place.
    :param logger: Optional logger for debug output.
    :returns: Manifest to write into the merged jar.
    :raises ManifestError: If the existing manifest cannot be parsed.
    """

    if logger is None:
        logger = logging.getLogger("jar_flattener")

    record: Record | None = index.get(MANIFEST_PATH)
    if record is None or record.is_dir is True:
        logger.debug("jar-flattener: no manifest found; creating a fresh one")
        manifest: Manifest = Manifest()
        manifest.main[MANIFEST_VERSION] = "1.0"
        return manifest

    payload: bytes = record.data if record.data is not None else b""
    parsed: Manifest = parse_manifest(payload)
    parsed.date_time = record.date_time
    removed: list[str] = strip_signature_attributes(parsed)
    if MANIFEST_VERSION not in parsed.main:
        parsed.main[MANIFEST_VERSION] = "1.0"
    del index[MANIFEST_PATH]

    if len(removed) > 0 and logger.isEnabledFor(logging.DEBUG) is True:
        logger.debug(f"jar-flattener: stripped manifest attributes {removed}")
    return parsed


def _split_header(line: str) -> tuple[str, str]:
    """Split a ``Name: value`` line.

    :param line: Unfolded header line.
    :returns: Name and value.
    :raises ManifestError: If the line has no ``": "`` separator.
    """

    idx: int = line.find(": ")
    if idx <= 0:
        # "Name:" with an empty value is legal.
        if line.endswith(":") is True and len(line) > 1:
            return line[:-1], ""
        raise ManifestError(f"Invalid manifest header: {line!r}")
    return line[0:idx], line[idx + 2 :]


def _header_line(name: str, value: str) -> bytes:
    """Render one header, wrapped at 72 bytes.

    Continuation lines begin with a space and never split a UTF-8 sequence.

    :param name: Attribute name.
    :param value: Attribute value.
    :returns: Encoded line(s) including the trailing CRLF.
    """

    raw: bytes = f"{name}: {value}".encode("utf-8")
    if len(raw) <= _MAX_LINE_BYTES:
        return raw + b"\r\n"

    out: list[bytes] = []
    start: int = 0
    limit: int = _MAX_LINE_BYTES
    while start < len(raw):
        end: int = min(start + limit, len(raw))
        # Back off to a character boundary (UTF-8 continuation bytes are 10xxxxxx).
        while end < len(raw) and end > start and (raw[end] & 0xC0) == 0x80:
            end -= 1
        if len(out) > 0:
            out.append(b" ")
        out.append(raw[start:end])
        out.append(b"\r\n")
        start = end
        limit = _MAX_LINE_BYTES - 1
    return b"".join(out)
