"""Maven repository access.

Artifacts are looked up in a local repository laid out the Maven way
(``~/.m2/repository`` by default) and downloaded from remote repositories on
a miss. The local repository doubles as the download cache.
"""

from dataclasses import dataclass
import hashlib
import logging
import os
import pathlib
import time
import xml.etree.ElementTree as ET

import requests

from jar_flattener.coordinates import Coordinates


DEFAULT_REMOTE_URL: str = "https://repo.maven.apache.org/maven2/"
LOCAL_REPO_ENV: str = "JAR_FLATTENER_LOCAL_REPO"
USER_AGENT: str = "jar-flattener/0.1.0"
CHUNK_SIZE: int = 64 * 1024


class RepositoryConfigError(ValueError):
    """Raised when repository options are invalid."""


class ResolutionError(RuntimeError):
    """Raised when an artifact or its metadata cannot be resolved."""


@dataclass(frozen=True, slots=True)
class RepositoryConfig:
    """Repository access configuration.

    :ivar local_repo: Local Maven-layout repository (also the download cache).
    :ivar remote_urls: Remote repository base URLs, tried in order.
    :ivar offline: If ``True``, never touch the network.
    :ivar timeout: Per-request timeout in seconds.
    """

    local_repo: pathlib.Path
    remote_urls: tuple[str, ...]
    offline: bool
    timeout: float


def resolve_repository_config(
    *,
    local_repo_override: pathlib.Path | None,
    remote_urls: list[str] | None,
    offline: bool,
    timeout: float = 30.0,
) -> RepositoryConfig:
    """Resolve user-supplied repository options into a :class:`~RepositoryConfig`.

    The local repository comes from the override, then the
    ``JAR_FLATTENER_LOCAL_REPO`` environment variable, then ``~/.m2/repository``.

    :param local_repo_override: Optional explicit local repository.
    :param remote_urls: Optional remote URLs; defaults to Maven Central.
    :param offline: Disable downloads.
    :param timeout: Per-request timeout in seconds.
    :returns: Resolved config.
    :raises RepositoryConfigError: If a URL or the timeout is invalid.
    """

    local_repo: pathlib.Path
    if local_repo_override is not None:
        local_repo = local_repo_override
    elif len(os.environ.get(LOCAL_REPO_ENV, "")) > 0:
        local_repo = pathlib.Path(os.environ[LOCAL_REPO_ENV])
    else:
        local_repo = pathlib.Path.home() / ".m2" / "repository"

    urls: list[str] = remote_urls if remote_urls is not None and len(remote_urls) > 0 else [DEFAULT_REMOTE_URL]
    normalized: list[str] = []
    for url in urls:
        if url.startswith("http://") is False and url.startswith("https://") is False:
            raise RepositoryConfigError(f"Remote repository must be an http(s) URL: {url!r}")
        normalized.append(url if url.endswith("/") is True else url + "/")

    if timeout <= 0:
        raise RepositoryConfigError(f"Invalid timeout={timeout}; expected a positive number of seconds.")

    return RepositoryConfig(
        local_repo=local_repo.expanduser(),
        remote_urls=tuple(normalized),
        offline=offline,
        timeout=timeout,
    )


def artifact_relpath(coords: Coordinates, *, extension: str | None = None) -> str:
    """Compute an artifact's path inside a Maven-layout repository.

    :param coords: Fully versioned coordinates.
    :param extension: Optional extension override (e.g. ``pom``); drops the classifier.
    :returns: POSIX relative path.
    :raises ResolutionError: If ``coords`` has no version.
    """

    if coords.version is None:
        raise ResolutionError(f"Cannot locate {coords} without a version.")

    ext: str = extension if extension is not None else coords.extension
    classifier: str | None = coords.classifier if extension is None else None
    file_name: str = f"{coords.artifact_id}-{coords.version}"
    if classifier is not None:
        file_name += f"-{classifier}"
    file_name += f".{ext}"
    group_path: str = coords.group_id.replace(".", "/")
    return f"{group_path}/{coords.artifact_id}/{coords.version}/{file_name}"


class ArtifactRepository:
    """Local repository plus ordered remotes.

    :param config: Repository configuration.
    :param logger: Optional logger for progress output.
    """

    def __init__(self, config: RepositoryConfig, *, logger: logging.Logger | None = None) -> None:
        self.config: RepositoryConfig = config
        self.logger: logging.Logger = logger if logger is not None else logging.getLogger("jar_flattener")

    def fetch(self, coords: Coordinates) -> pathlib.Path:
        """Return the local path of an artifact, downloading it if needed.

        :param coords: Fully versioned coordinates.
        :returns: Local file path.
        :raises ResolutionError: If the artifact is not available.
        """

        return self._fetch_relpath(artifact_relpath(coords), label=str(coords))

    def fetch_pom(self, coords: Coordinates) -> pathlib.Path:
        """Return the local path of an artifact's POM, downloading it if needed.

        :param coords: Fully versioned coordinates.
        :returns: Local POM path.
        :raises ResolutionError: If the POM is not available.
        """

        return self._fetch_relpath(artifact_relpath(coords, extension="pom"), label=f"{coords} (pom)")

    def latest_version(self, group_id: str, artifact_id: str) -> str:
        """Pick a version from ``maven-metadata.xml``.

        Prefers ``<release>``, then ``<latest>``, then the last listed version.

        :param group_id: Group identifier.
        :param artifact_id: Artifact identifier.
        :returns: Version string.
        :raises ResolutionError: If no metadata lists a version.
        """

        label: str = f"{group_id}:{artifact_id}"
        base: str = f"{group_id.replace('.', '/')}/{artifact_id}"
        for name in ("maven-metadata-local.xml", "maven-metadata.xml"):
            local: pathlib.Path = self.config.local_repo / base / name
            if local.is_file() is True:
                version: str | None = _version_from_metadata(local.read_bytes(), label=label)
                if version is not None:
                    self.logger.info(f"jar-flattener: using version {version} of {label} (local metadata)")
                    return version

        if self.config.offline is False:
            for url in self.config.remote_urls:
                payload: bytes | None = self._get_bytes(f"{url}{base}/maven-metadata.xml", label=label)
                if payload is None:
                    continue
                version = _version_from_metadata(payload, label=label)
                if version is not None:
                    self.logger.info(f"jar-flattener: using version {version} of {label} (from {url})")
                    return version

        raise ResolutionError(f"Could not determine a version for {label}")

    def _fetch_relpath(self, relpath: str, *, label: str) -> pathlib.Path:
        """Look up ``relpath`` locally, then in each remote.

        :param relpath: Repository-relative path.
        :param label: Human-readable name for messages.
        :returns: Local file path.
        :raises ResolutionError: If no repository has the file.
        """

        local: pathlib.Path = self.config.local_repo / relpath
        if local.is_file() is True:
            if self.logger.isEnabledFor(logging.DEBUG) is True:
                self.logger.debug(f"jar-flattener: local repository hit {local}")
            return local

        if self.config.offline is True:
            raise ResolutionError(f"Could not resolve {label}: not in {self.config.local_repo} and offline mode is on")

        for url in self.config.remote_urls:
            if self._download(f"{url}{relpath}", local, label=label) is True:
                return local

        raise ResolutionError(
            f"Could not resolve {label}: not found in {self.config.local_repo} or {list(self.config.remote_urls)}"
        )

    def _download(self, url: str, dest: pathlib.Path, *, label: str) -> bool:
        """Stream ``url`` into ``dest`` and verify it against a ``.sha1`` sidecar.

        :param url: Remote file URL.
        :param dest: Local destination.
        :param label: Human-readable name for messages.
        :returns: ``False`` on 404, ``True`` once the file is in place.
        :raises ResolutionError: On network failures, other HTTP errors or checksum mismatch.
        """

        headers: dict[str, str] = {"User-Agent": USER_AGENT}
        tmp: pathlib.Path = dest.with_name(dest.name + ".part")
        sha1 = hashlib.sha1()
        size: int = 0
        t0: float = time.perf_counter()
        try:
            with requests.get(url, headers=headers, stream=True, timeout=self.config.timeout) as response:
                if response.status_code == 404:
                    if self.logger.isEnabledFor(logging.DEBUG) is True:
                        self.logger.debug(f"jar-flattener: not found at {url}")
                    return False
                response.raise_for_status()
                dest.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp, "wb") as f:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if len(chunk) == 0:
                            continue
                        f.write(chunk)
                        sha1.update(chunk)
                        size += len(chunk)
        except requests.exceptions.RequestException as e:
            tmp.unlink(missing_ok=True)
            raise ResolutionError(f"Could not download {label} from {url}: {e}") from e
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise ResolutionError(f"Could not store {label} at {dest}: {e}") from e

        try:
            expected: str | None = self._remote_sha1(url, label=label)
        except ResolutionError:
            tmp.unlink(missing_ok=True)
            raise
        if expected is not None and expected != sha1.hexdigest():
            tmp.unlink(missing_ok=True)
            raise ResolutionError(
                f"Checksum mismatch for {label} from {url}: expected {expected}, got {sha1.hexdigest()}"
            )
        if expected is None:
            self.logger.warning(f"jar-flattener: no checksum published for {url}; not verified")

        tmp.replace(dest)
        t1: float = time.perf_counter()
        self.logger.info(f"jar-flattener: downloaded {label} ({size / 1024:.1f} KiB) in {t1 - t0:.2f}s")
        return True

    def _remote_sha1(self, url: str, *, label: str) -> str | None:
        """Fetch the SHA-1 sidecar of ``url``.

        :param url: Remote file URL.
        :param label: Human-readable name for messages.
        :returns: Lower-case hex digest, or ``None`` if not published.
        """

        payload: bytes | None = self._get_bytes(url + ".sha1", label=label)
        if payload is None:
            return None
        text: str = payload.decode("ascii", errors="replace").strip()
        if len(text) == 0:
            return None
        return text.split()[0].lower()

    def _get_bytes(self, url: str, *, label: str) -> bytes | None:
        """GET a small file.

        :param url: Remote URL.
        :param label: Human-readable name for messages.
        :returns: Body bytes, or ``None`` on 404.
        :raises ResolutionError: On network failures or other HTTP errors.
        """

        headers: dict[str, str] = {"User-Agent": USER_AGENT}
        try:
            response = requests.get(url, headers=headers, timeout=self.config.timeout)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.content
        except requests.exceptions.RequestException as e:
            raise ResolutionError(f"Could not download {label} from {url}: {e}") from e


def _version_from_metadata(payload: bytes, *, label: str) -> str | None:
    """Extract the preferred version from ``maven-metadata.xml`` bytes.

    :param payload: Metadata XML.
    :param label: Human-readable name for messages.
    :returns: Version, or ``None`` if the metadata lists none.
    :raises ResolutionError: If the XML is malformed.
    """

    try:
        root: ET.Element = ET.fromstring(payload)
    except ET.ParseError as e:
        raise ResolutionError(f"Malformed maven-metadata.xml for {label}: {e}") from e

    versioning: ET.Element | None = root.find("versioning")
    if versioning is None:
        return None
    for tag in ("release", "latest"):
        text: str | None = versioning.findtext(tag)
        if text is not None and len(text.strip()) > 0:
            return text.strip()
    versions: list[str] = [
        v.text.strip() for v in versioning.findall("versions/version") if v.text is not None and len(v.text.strip()) > 0
    ]
    if len(versions) == 0:
        return None
    return versions[-1]
