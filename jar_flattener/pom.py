"""POM parsing and effective-model construction.

Only the parts of the project model that matter for dependency resolution are
read: coordinates, parent, properties, dependencies and dependency management.
Profiles, plugins and repositories declared in POMs are ignored.
"""

from dataclasses import dataclass, field
import logging
import pathlib
import re
import xml.etree.ElementTree as ET

from jar_flattener.coordinates import Coordinates
from jar_flattener.repository import ArtifactRepository, ResolutionError


# Dependency type -> (file extension, implied classifier).
_TYPE_MAP: dict[str, tuple[str, str | None]] = {
    "jar": ("jar", None),
    "bundle": ("jar", None),
    "maven-plugin": ("jar", None),
    "ejb": ("jar", None),
    "ejb-client": ("jar", "client"),
    "test-jar": ("jar", "tests"),
    "java-source": ("jar", "sources"),
    "javadoc": ("jar", "javadoc"),
}

_PLACEHOLDER_RE: re.Pattern[str] = re.compile(r"\$\{([^}]+)\}")
_MAX_INTERPOLATION_DEPTH: int = 10


@dataclass(frozen=True, slots=True)
class Dependency:
    """A dependency declaration after interpolation.

    :ivar coordinates: Target coordinates; ``version`` may be ``None`` until managed.
    :ivar scope: Maven scope (``compile`` when not declared).
    :ivar optional: Whether the dependency is optional.
    :ivar exclusions: ``group:artifact`` patterns excluded below this dependency.
    :ivar type: Declared dependency type.
    """

    coordinates: Coordinates
    scope: str
    optional: bool
    exclusions: tuple[str, ...]
    type: str = "jar"

    @property
    def management_key(self) -> str:
        """Key used to match dependency-management entries."""

        return f"{self.coordinates.key}:{self.type}:{self.coordinates.classifier or ''}"


@dataclass(slots=True)
class _RawDependency:
    group_id: str
    artifact_id: str
    version: str | None
    type: str
    classifier: str | None
    scope: str | None
    optional: str | None
    exclusions: list[tuple[str, str]]


@dataclass(slots=True)
class RawPom:
    """A POM file as written, before inheritance and interpolation."""

    group_id: str | None
    artifact_id: str
    version: str | None
    packaging: str
    parent: tuple[str, str, str] | None
    properties: dict[str, str]
    dependencies: list[_RawDependency]
    managed: list[_RawDependency]


@dataclass(slots=True)
class Pom:
    """Effective project model.

    :ivar coordinates: Project coordinates (always versioned).
    :ivar packaging: Declared packaging.
    :ivar properties: Inherited and own properties.
    :ivar dependencies: Direct dependencies with management applied.
    :ivar managed: Dependency management keyed by :attr:`Dependency.management_key`.
    """

    coordinates: Coordinates
    packaging: str
    properties: dict[str, str] = field(default_factory=dict)
    dependencies: list[Dependency] = field(default_factory=list)
    managed: dict[str, Dependency] = field(default_factory=dict)


def parse_pom(data: bytes, *, source: str) -> RawPom:
    """Parse POM XML.

    :param data: POM bytes.
    :param source: File name or coordinates for error messages.
    :returns: Raw model.
    :raises ResolutionError: If the XML is malformed or lacks an artifactId.
    """

    try:
        root: ET.Element = ET.fromstring(data)
    except ET.ParseError as e:
        raise ResolutionError(f"Malformed POM {source}: {e}") from e

    for el in root.iter():
        if isinstance(el.tag, str) and el.tag.startswith("{") is True:
            el.tag = el.tag.split("}", 1)[1]

    artifact_id: str | None = _text(root, "artifactId")
    if artifact_id is None:
        raise ResolutionError(f"POM {source} has no artifactId")

    parent: tuple[str, str, str] | None = None
    parent_el: ET.Element | None = root.find("parent")
    if parent_el is not None:
        pg: str | None = _text(parent_el, "groupId")
        pa: str | None = _text(parent_el, "artifactId")
        pv: str | None = _text(parent_el, "version")
        if pg is None or pa is None or pv is None:
            raise ResolutionError(f"POM {source} has an incomplete <parent>")
        parent = (pg, pa, pv)

    properties: dict[str, str] = {}
    props_el: ET.Element | None = root.find("properties")
    if props_el is not None:
        for prop in props_el:
            if isinstance(prop.tag, str):
                properties[prop.tag] = (prop.text or "").strip()

    return RawPom(
        group_id=_text(root, "groupId"),
        artifact_id=artifact_id,
        version=_text(root, "version"),
        packaging=_text(root, "packaging") or "jar",
        parent=parent,
        properties=properties,
        dependencies=_parse_dependencies(root.find("dependencies")),
        managed=_parse_dependencies(root.find("dependencyManagement/dependencies")),
    )


class PomLoader:
    """Builds effective POMs from a repository, caching by coordinates.

    :param repository: Repository to fetch POMs from.
    :param logger: Optional logger for debug output.
    """

    def __init__(self, repository: ArtifactRepository, *, logger: logging.Logger | None = None) -> None:
        self.repository: ArtifactRepository = repository
        self.logger: logging.Logger = logger if logger is not None else logging.getLogger("jar_flattener")
        self._cache: dict[str, Pom] = {}
        self._loading: list[str] = []

    def load(self, coords: Coordinates) -> Pom:
        """Load the effective POM of ``coords``.

        :param coords: Fully versioned coordinates.
        :returns: Effective model.
        :raises ResolutionError: If the POM, a parent or an imported BOM cannot be loaded.
        """

        key: str = f"{coords.key}:{coords.version}"
        cached: Pom | None = self._cache.get(key)
        if cached is not None:
            return cached
        if key in self._loading:
            chain: str = " -> ".join([*self._loading, key])
            raise ResolutionError(f"Cyclic POM inheritance or import: {chain}")

        self._loading.append(key)
        try:
            path: pathlib.Path = self.repository.fetch_pom(coords)
            raw: RawPom = parse_pom(path.read_bytes(), source=str(path))
            pom: Pom = self._effective(raw, source=str(coords))
        except OSError as e:
            raise ResolutionError(f"Could not read POM of {coords}: {e}") from e
        finally:
            self._loading.pop()

        self._cache[key] = pom
        return pom

    def _effective(self, raw: RawPom, *, source: str) -> Pom:
        """Apply inheritance, interpolation, imports and management.

        :param raw: Parsed POM.
        :param source: Label for error messages.
        :returns: Effective model.
        """

        parent: Pom | None = None
        if raw.parent is not None:
            pg, pa, pv = raw.parent
            parent = self.load(Coordinates(group_id=pg, artifact_id=pa, version=pv, extension="pom"))

        properties: dict[str, str] = dict(parent.properties) if parent is not None else {}
        properties.update(raw.properties)

        group_id: str | None = raw.group_id if raw.group_id is not None else (parent.coordinates.group_id if parent is not None else None)
        version: str | None = raw.version if raw.version is not None else (parent.coordinates.version if parent is not None else None)
        if group_id is None or version is None:
            raise ResolutionError(f"POM of {source} has no groupId/version and no parent to inherit them from")

        builtins: dict[str, str] = {}
        for prefix in ("project.", "pom.", ""):
            builtins[f"{prefix}groupId"] = group_id
            builtins[f"{prefix}artifactId"] = raw.artifact_id
            builtins[f"{prefix}version"] = version
        if parent is not None:
            builtins["project.parent.groupId"] = parent.coordinates.group_id
            builtins["project.parent.artifactId"] = parent.coordinates.artifact_id
            builtins["project.parent.version"] = parent.coordinates.version or ""
        scope: dict[str, str] = {**properties, **builtins}

        group_id = interpolate(group_id, scope)
        version = interpolate(version, scope)
        for prefix in ("project.", "pom.", ""):
            scope[f"{prefix}groupId"] = group_id
            scope[f"{prefix}version"] = version

        managed: dict[str, Dependency] = dict(parent.managed) if parent is not None else {}
        imports: list[Dependency] = []
        for raw_dep in raw.managed:
            dep: Dependency = _interpolated_dependency(raw_dep, scope)
            if dep.scope == "import" and dep.type == "pom":
                imports.append(dep)
                continue
            managed[dep.management_key] = dep
        for bom in imports:
            if bom.coordinates.version is None:
                raise ResolutionError(f"Imported BOM {bom.coordinates} in {source} has no version")
            bom_pom: Pom = self.load(
                Coordinates(
                    group_id=bom.coordinates.group_id,
                    artifact_id=bom.coordinates.artifact_id,
                    version=bom.coordinates.version,
                    extension="pom",
                )
            )
            for mkey, mdep in bom_pom.managed.items():
                if mkey not in managed:
                    managed[mkey] = mdep

        declared: dict[str, Dependency] = {}
        if parent is not None:
            for dep in parent.dependencies:
                declared[dep.management_key] = dep
        for raw_dep in raw.dependencies:
            dep = _interpolated_dependency(raw_dep, scope)
            declared[dep.management_key] = apply_management(dep, managed)

        return Pom(
            coordinates=Coordinates(group_id=group_id, artifact_id=raw.artifact_id, version=version),
            packaging=raw.packaging,
            properties=properties,
            dependencies=list(declared.values()),
            managed=managed,
        )


def apply_management(dep: Dependency, managed: dict[str, Dependency], *, force_version: bool = False) -> Dependency:
    """Fill a dependency's version and scope from dependency management.

    :param dep: Declared dependency.
    :param managed: Management entries.
    :param force_version: Replace an explicit version too (used for transitive pinning).
    :returns: Managed dependency (``dep`` itself if nothing applies).
    """

    entry: Dependency | None = managed.get(dep.management_key)
    if entry is None:
        return dep

    version: str | None = dep.coordinates.version
    if entry.coordinates.version is not None and (version is None or force_version is True):
        version = entry.coordinates.version
    scope: str = dep.scope
    if dep.scope == "" and len(entry.scope) > 0:
        scope = entry.scope

    coords: Coordinates = Coordinates(
        group_id=dep.coordinates.group_id,
        artifact_id=dep.coordinates.artifact_id,
        version=version,
        extension=dep.coordinates.extension,
        classifier=dep.coordinates.classifier,
    )
    exclusions: tuple[str, ...] = dep.exclusions + tuple(e for e in entry.exclusions if e not in dep.exclusions)
    return Dependency(
        coordinates=coords,
        scope=scope,
        optional=dep.optional,
        exclusions=exclusions,
        type=dep.type,
    )


def interpolate(value: str, scope: dict[str, str]) -> str:
    """Expand ``${name}`` placeholders.

    Unknown placeholders are left untouched.

    :param value: Text to expand.
    :param scope: Property values.
    :returns: Expanded text.
    """

    result: str = value
    for _ in range(_MAX_INTERPOLATION_DEPTH):
        expanded: str = _PLACEHOLDER_RE.sub(lambda m: scope.get(m.group(1), m.group(0)), result)
        if expanded == result:
            break
        result = expanded
    return result


def _interpolated_dependency(raw: _RawDependency, scope: dict[str, str]) -> Dependency:
    """Interpolate a raw declaration into a :class:`~Dependency`.

    An undeclared scope is kept as ``""`` so management can fill it in; the
    resolver treats ``""`` as ``compile``.

    :param raw: Raw declaration.
    :param scope: Property values.
    :returns: Dependency.
    """

    dep_type: str = interpolate(raw.type, scope)
    extension, implied_classifier = _TYPE_MAP.get(dep_type, (dep_type, None))
    classifier: str | None = interpolate(raw.classifier, scope) if raw.classifier is not None else implied_classifier
    version: str | None = interpolate(raw.version, scope) if raw.version is not None else None
    optional_text: str = interpolate(raw.optional, scope) if raw.optional is not None else "false"

    coords: Coordinates = Coordinates(
        group_id=interpolate(raw.group_id, scope),
        artifact_id=interpolate(raw.artifact_id, scope),
        version=version,
        extension=extension,
        classifier=classifier if classifier is not None and len(classifier) > 0 else None,
    )
    exclusions: tuple[str, ...] = tuple(
        f"{interpolate(g, scope)}:{interpolate(a, scope)}" for g, a in raw.exclusions
    )
    return Dependency(
        coordinates=coords,
        scope=interpolate(raw.scope, scope) if raw.scope is not None else "",
        optional=optional_text.strip().lower() == "true",
        exclusions=exclusions,
        type=dep_type,
    )


def _parse_dependencies(container: ET.Element | None) -> list[_RawDependency]:
    """Read ``<dependency>`` children of a ``<dependencies>`` element.

    :param container: ``<dependencies>`` element or ``None``.
    :returns: Raw declarations in document order.
    """

    if container is None:
        return []

    result: list[_RawDependency] = []
    for el in container.findall("dependency"):
        group_id: str | None = _text(el, "groupId")
        artifact_id: str | None = _text(el, "artifactId")
        if group_id is None or artifact_id is None:
            continue
        exclusions: list[tuple[str, str]] = []
        for ex in el.findall("exclusions/exclusion"):
            exclusions.append((_text(ex, "groupId") or "*", _text(ex, "artifactId") or "*"))
        result.append(
            _RawDependency(
                group_id=group_id,
                artifact_id=artifact_id,
                version=_text(el, "version"),
                type=_text(el, "type") or "jar",
                classifier=_text(el, "classifier"),
                scope=_text(el, "scope"),
                optional=_text(el, "optional"),
                exclusions=exclusions,
            )
        )
    return result


def _text(el: ET.Element, path: str) -> str | None:
    """Return the stripped text of a child element, or ``None`` if absent/empty."""

    found: str | None = el.findtext(path)
    if found is None:
        return None
    stripped: str = found.strip()
    if len(stripped) == 0:
        return None
    return stripped
