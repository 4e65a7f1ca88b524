"""Maven coordinate helpers.

Coordinates are accepted in the usual colon-separated spellings:

- ``groupId:artifactId``
- ``groupId:artifactId:version``
- ``groupId:artifactId:extension:version``
- ``groupId:artifactId:extension:classifier:version``
"""

from dataclasses import dataclass
import re


class CoordinatesError(ValueError):
    """Raised when artifact coordinates cannot be parsed."""


@dataclass(frozen=True, slots=True)
class Coordinates:
    """Maven artifact coordinates.

    :ivar group_id: Group identifier (e.g. ``org.slf4j``).
    :ivar artifact_id: Artifact identifier (e.g. ``slf4j-api``).
    :ivar version: Version, or ``None`` to let the repository pick the latest release.
    :ivar extension: File extension of the artifact (``jar`` by default).
    :ivar classifier: Optional classifier (e.g. ``sources``).
    """

    group_id: str
    artifact_id: str
    version: str | None
    extension: str = "jar"
    classifier: str | None = None

    @property
    def key(self) -> str:
        """Versionless identity used for conflict mediation and exclusions."""

        return f"{self.group_id}:{self.artifact_id}"

    def with_version(self, version: str) -> "Coordinates":
        """Return a copy of these coordinates pinned to ``version``."""

        return Coordinates(
            group_id=self.group_id,
            artifact_id=self.artifact_id,
            version=version,
            extension=self.extension,
            classifier=self.classifier,
        )

    def __str__(self) -> str:
        parts: list[str] = [self.group_id, self.artifact_id]
        if self.extension != "jar" or self.classifier is not None:
            parts.append(self.extension)
        if self.classifier is not None:
            parts.append(self.classifier)
        if self.version is not None:
            parts.append(self.version)
        return ":".join(parts)


_SEGMENT_RE: re.Pattern[str] = re.compile(r"^[A-Za-z0-9_.\-]+$")
_VERSION_RE: re.Pattern[str] = re.compile(r"^[A-Za-z0-9_.\-+]+$")


def parse_coordinates(text: str) -> Coordinates:
    """Parse a colon-separated coordinate string.

    :param text: Coordinates such as ``org.example:app:1.2.3``.
    :returns: Parsed coordinates.
    :raises CoordinatesError: If the string is malformed.
    """

    parts: list[str] = text.strip().split(":")
    if len(parts) < 2 or len(parts) > 5:
        raise CoordinatesError(
            f"Invalid coordinates {text!r}; expected groupId:artifactId[:extension[:classifier]][:version]."
        )

    group_id: str = parts[0]
    artifact_id: str = parts[1]
    extension: str = "jar"
    classifier: str | None = None
    version: str | None = None

    if len(parts) == 3:
        version = parts[2]
    elif len(parts) == 4:
        extension = parts[2]
        version = parts[3]
    elif len(parts) == 5:
        extension = parts[2]
        classifier = parts[3]
        version = parts[4]

    return make_coordinates(
        group_id=group_id,
        artifact_id=artifact_id,
        version=version,
        extension=extension,
        classifier=classifier,
    )


def make_coordinates(
    *,
    group_id: str,
    artifact_id: str,
    version: str | None,
    extension: str = "jar",
    classifier: str | None = None,
) -> Coordinates:
    """Validate individual coordinate fields and build :class:`~Coordinates`.

    Empty strings for ``version`` and ``classifier`` are treated as absent.

    :param group_id: Group identifier.
    :param artifact_id: Artifact identifier.
    :param version: Optional version.
    :param extension: Artifact extension.
    :param classifier: Optional classifier.
    :returns: Validated coordinates.
    :raises CoordinatesError: If a field is empty or contains illegal characters.
    """

    for label, value in (("groupId", group_id), ("artifactId", artifact_id), ("extension", extension)):
        if _SEGMENT_RE.match(value) is None:
            raise CoordinatesError(f"Invalid {label} {value!r}.")

    if classifier is not None and len(classifier) == 0:
        classifier = None
    if classifier is not None and _SEGMENT_RE.match(classifier) is None:
        raise CoordinatesError(f"Invalid classifier {classifier!r}.")

    if version is not None and len(version) == 0:
        version = None
    if version is not None and _VERSION_RE.match(version) is None:
        raise CoordinatesError(f"Invalid version {version!r}.")

    return Coordinates(
        group_id=group_id,
        artifact_id=artifact_id,
        version=version,
        extension=extension,
        classifier=classifier,
    )


def output_base_name(coords: Coordinates, custom_name: str | None) -> str:
    """Compute the base name shared by the merged jar and the executable.

    :param coords: Coordinates as requested by the user (before resolution).
    :param custom_name: Optional explicit name; used when non-empty.
    :returns: ``custom_name`` or ``<artifactId>[_<version>]``.
    """

    if custom_name is not None and len(custom_name) > 0:
        return custom_name
    if coords.version is not None:
        return f"{coords.artifact_id}_{coords.version}"
    return coords.artifact_id
