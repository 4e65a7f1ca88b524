"""Command line interface for jar-flattener."""

import argparse
import logging
import pathlib
import sys

from jar_flattener.archive import ArchiveError
from jar_flattener.builder import BuildError, build_uber_jar, load_stub
from jar_flattener.coordinates import Coordinates, CoordinatesError, make_coordinates, parse_coordinates
from jar_flattener.repository import (
    ArtifactRepository,
    RepositoryConfig,
    RepositoryConfigError,
    ResolutionError,
    resolve_repository_config,
)


def _configure_logging(*, verbose: int, quiet: int) -> logging.Logger:
    """Configure the jar-flattener logger.

    :param verbose: Verbosity count (0+).
    :param quiet: Quietness count (0+).
    :returns: Configured logger.
    """

    level: int = logging.INFO
    if quiet >= 2:
        level = logging.ERROR
    elif quiet >= 1:
        level = logging.WARNING
    elif verbose >= 1:
        level = logging.DEBUG

    logger: logging.Logger = logging.getLogger("jar_flattener")
    logger.setLevel(level)
    logger.propagate = False

    handler: logging.Handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger.handlers.clear()
    logger.addHandler(handler)
    return logger


def _coordinates_from_args(ns: argparse.Namespace) -> Coordinates:
    """Build coordinates from either the positional argument or the explicit flags.

    :param ns: Parsed arguments.
    :returns: Requested coordinates.
    :raises CoordinatesError: If both or neither forms are given, or a field is invalid.
    """

    has_flags: bool = ns.group_id is not None or ns.artifact_id is not None
    if ns.coordinates is not None:
        if has_flags is True:
            raise CoordinatesError("Use either COORDINATES or --group-id/--artifact-id, not both.")
        coords: Coordinates = parse_coordinates(ns.coordinates)
        if ns.version is not None:
            if coords.version is not None:
                raise CoordinatesError("Version given twice (in COORDINATES and --version).")
            coords = make_coordinates(
                group_id=coords.group_id,
                artifact_id=coords.artifact_id,
                version=ns.version,
                extension=coords.extension,
                classifier=coords.classifier,
            )
        return coords

    if ns.group_id is None or ns.artifact_id is None:
        raise CoordinatesError("Provide COORDINATES or both --group-id and --artifact-id.")
    return make_coordinates(group_id=ns.group_id, artifact_id=ns.artifact_id, version=ns.version)


def main(argv: list[str] | None = None) -> int:
    """Run the jar-flattener CLI.

    :param argv: Optional argv list (excluding program name).
    :returns: Exit code.
    """

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="jar-flattener",
        description=(
            "Merge a published Maven artifact and all of its dependencies into one jar "
            "plus a directly executable launcher."
        ),
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_build = subparsers.add_parser(
        "build",
        help="Build <name>.jar and the <name> executable.",
    )
    p_build.add_argument(
        "coordinates",
        nargs="?",
        default=None,
        help="Artifact coordinates: groupId:artifactId[:version].",
    )
    p_build.add_argument(
        "--group-id",
        type=str,
        default=None,
        help="groupId of the artifact (alternative to COORDINATES).",
    )
    p_build.add_argument(
        "--artifact-id",
        type=str,
        default=None,
        help="artifactId of the artifact (alternative to COORDINATES).",
    )
    p_build.add_argument(
        "--version",
        type=str,
        default=None,
        help="Version of the artifact. Defaults to the latest release.",
    )
    p_build.add_argument(
        "-n",
        "--output-name",
        type=str,
        default=None,
        help="Custom base name for the jar and executable (default: <artifactId>[_<version>]).",
    )
    p_build.add_argument(
        "-o",
        "--output-dir",
        type=pathlib.Path,
        default=None,
        help="Directory to write the outputs into (default: current directory).",
    )
    p_build.add_argument(
        "--local-repo",
        type=pathlib.Path,
        default=None,
        help="Local Maven repository (default: $JAR_FLATTENER_LOCAL_REPO or ~/.m2/repository).",
    )
    p_build.add_argument(
        "--remote",
        action="append",
        default=None,
        help="Remote repository URL. Pass multiple times; defaults to Maven Central.",
    )
    p_build.add_argument(
        "--offline",
        action="store_true",
        help="Only use the local repository.",
    )
    p_build.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Network timeout in seconds.",
    )
    p_build.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=1,
        help="Number of jars to read concurrently.",
    )
    p_build.add_argument(
        "--stub",
        type=pathlib.Path,
        default=None,
        help="File to use as the executable's launcher prefix instead of the built-in shell stub.",
    )
    p_build.add_argument(
        "--strict",
        action="store_true",
        help="Fail if the executable cannot be written (by default only the jar is required).",
    )
    p_build.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable verbose logging. Pass multiple times for more detail.",
    )
    p_build.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Reduce logging. Pass multiple times to suppress more output.",
    )

    ns = parser.parse_args(argv)
    if ns.command == "build":
        logger: logging.Logger = _configure_logging(verbose=ns.verbose, quiet=ns.quiet)
        try:
            coords: Coordinates = _coordinates_from_args(ns)
            config: RepositoryConfig = resolve_repository_config(
                local_repo_override=ns.local_repo,
                remote_urls=ns.remote,
                offline=ns.offline,
                timeout=ns.timeout,
            )
            stub: bytes | None = load_stub(ns.stub) if ns.stub is not None else None
            build_uber_jar(
                coords=coords,
                repository=ArtifactRepository(config, logger=logger),
                output_name=ns.output_name,
                output_dir=ns.output_dir,
                stub=stub,
                strict_executable=ns.strict,
                jobs=ns.jobs,
                logger=logger,
            )
        except (CoordinatesError, RepositoryConfigError, ResolutionError, ArchiveError, BuildError) as e:
            logger.error(f"jar-flattener: error: {e}")
            return 1
        return 0

    raise AssertionError(f"Unhandled command: {ns.command}")
