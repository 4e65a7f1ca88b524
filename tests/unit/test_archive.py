"""Unit tests for jar reading and writing."""

import zipfile

import pytest

from jar_flattener.archive import ArchiveReadError, ArchiveWriteError, Record, read_archive, write_archive


MANIFEST = Record(
    path="META-INF/MANIFEST.MF",
    is_dir=False,
    date_time=(1980, 1, 1, 0, 0, 0),
    data=b"Manifest-Version: 1.0\r\n\r\n",
)


def test_read_archive_files_and_directories(tmp_path, jar_writer) -> None:
    jar = jar_writer(tmp_path / "in.jar", {"com/": None, "com/A.class": b"\xca\xfe\xba\xbe"})

    records = read_archive(jar)

    assert list(records) == ["com/", "com/A.class"]
    assert records["com/"].is_dir is True
    assert records["com/"].data is None
    assert records["com/A.class"].is_dir is False
    assert records["com/A.class"].data == b"\xca\xfe\xba\xbe"
    assert records["com/A.class"].date_time == (2021, 6, 15, 12, 30, 42)


def test_read_archive_does_not_modify_source(tmp_path, jar_writer) -> None:
    jar = jar_writer(tmp_path / "in.jar", {"a.txt": "a"})
    before = jar.read_bytes()

    read_archive(jar)

    assert jar.read_bytes() == before


def test_read_archive_missing_file(tmp_path) -> None:
    with pytest.raises(ArchiveReadError) as excinfo:
        read_archive(tmp_path / "nope.jar")
    assert "nope.jar" in str(excinfo.value)


def test_read_archive_not_a_zip(tmp_path) -> None:
    bogus = tmp_path / "bogus.jar"
    bogus.write_text("hello", encoding="utf-8")

    with pytest.raises(ArchiveReadError):
        read_archive(bogus)


def test_read_archive_encrypted_entry(tmp_path, jar_writer) -> None:
    jar = jar_writer(tmp_path / "locked.jar", {"secret.txt": "top secret"})
    raw = bytearray(jar.read_bytes())
    # Set the "encrypted" general purpose flag in the local and central headers.
    local = raw.find(b"PK\x03\x04")
    central = raw.find(b"PK\x01\x02")
    raw[local + 6] |= 0x01
    raw[central + 8] |= 0x01
    jar.write_bytes(bytes(raw))

    with pytest.raises(ArchiveReadError) as excinfo:
        read_archive(jar)
    assert "locked.jar" in str(excinfo.value)


def test_write_archive_puts_manifest_first_and_keeps_timestamps(tmp_path) -> None:
    out = tmp_path / "out.jar"
    records = [
        Record(path="z/", is_dir=True, date_time=(2001, 2, 3, 4, 5, 6), data=None),
        Record(path="z/file.txt", is_dir=False, date_time=(2010, 10, 10, 10, 10, 10), data=b"payload"),
    ]

    count = write_archive(output_path=out, manifest=MANIFEST, records=records)

    assert count == 2
    with zipfile.ZipFile(out) as zf:
        infos = zf.infolist()
        assert [i.filename for i in infos] == ["META-INF/MANIFEST.MF", "z/", "z/file.txt"]
        assert infos[1].date_time == (2001, 2, 3, 4, 5, 6)
        assert infos[1].is_dir() is True
        assert zf.read("z/") == b""
        assert infos[2].date_time == (2010, 10, 10, 10, 10, 10)
        assert zf.read("z/file.txt") == b"payload"


def test_write_archive_is_deterministic(tmp_path) -> None:
    records = [Record(path="a.txt", is_dir=False, date_time=(2015, 5, 5, 5, 5, 4), data=b"a" * 1000)]

    write_archive(output_path=tmp_path / "one.jar", manifest=MANIFEST, records=records)
    write_archive(output_path=tmp_path / "two.jar", manifest=MANIFEST, records=records)

    assert (tmp_path / "one.jar").read_bytes() == (tmp_path / "two.jar").read_bytes()


def test_write_archive_failure_keeps_previous_output(tmp_path) -> None:
    out = tmp_path / "out.jar"
    out.write_bytes(b"previous build")
    bad = [Record(path="old.txt", is_dir=False, date_time=(1970, 1, 1, 0, 0, 0), data=b"x")]

    with pytest.raises(ArchiveWriteError) as excinfo:
        write_archive(output_path=out, manifest=MANIFEST, records=bad)

    assert str(out) in str(excinfo.value)
    assert out.read_bytes() == b"previous build"
    assert not (tmp_path / "out.jar.tmp").exists()


def test_write_archive_unwritable_destination(tmp_path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")

    with pytest.raises(ArchiveWriteError):
        write_archive(output_path=blocker / "out.jar", manifest=MANIFEST, records=[])
