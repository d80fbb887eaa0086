"""Command line interface for the jonah build tool."""
from __future__ import annotations

from argparse import ArgumentParser, BooleanOptionalAction, Namespace
from pathlib import Path
from typing import Iterable
import logging
import shutil
import sys

from .build import BuildEngine, BuildOptions, ProjectBuildResult, remove_image
from .collection import run_collection
from .command_runner import CommandRunner, RecordingCommandRunner, SubprocessCommandRunner
from .config_loader import CollectionDescriptor, GlobalConfig, load_collection, load_descriptor, load_global_config, validate
from .errors import JonahError
from .git_manager import GitManager
from .logging_setup import setup_logging

logger = logging.getLogger(__name__)

_DRY_RUN_CONTAINER_ID = "<container-id>"


def _add_build_arguments(parser: ArgumentParser) -> None:
    parser.add_argument("file", type=Path, help="Path to the descriptor file")
    parser.add_argument("out_path", type=Path, help="Directory where extracted artifacts are stored")
    parser.add_argument("--image", help="Container image name (default: jonah-build-image)")
    parser.add_argument("--container", help="Name given to the created container")
    parser.add_argument("--work-dir", type=Path, help="Directory holding cloned repositories (default: /tmp/jonah)")
    parser.add_argument("--engine", help="Container engine executable (default: docker)")
    parser.add_argument(
        "--echo-commands",
        action=BooleanOptionalAction,
        default=None,
        help="Log every external command before running it (default: on)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Print commands without executing them")


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="jonah", description="A CLI build tool that uses containers")
    parser.add_argument("--config", type=Path, help="Global settings file (default: ~/.config/jonah/config.toml)")
    parser.add_argument("--log-level", help="Logging level (debug, info, warning, error)")
    parser.add_argument("--log-file", help="Also write the log to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    project_parser = subparsers.add_parser("project", help="Build a single project")
    _add_build_arguments(project_parser)

    collection_parser = subparsers.add_parser("collection", help="Build a collection of projects")
    _add_build_arguments(collection_parser)

    clean_parser = subparsers.add_parser("clean", help="Remove the work directory and the build image")
    clean_parser.add_argument("--work-dir", type=Path, help="Directory holding cloned repositories (default: /tmp/jonah)")
    clean_parser.add_argument("--image", help="Container image name (default: jonah-build-image)")
    clean_parser.add_argument("--engine", help="Container engine executable (default: docker)")

    validate_parser = subparsers.add_parser("validate", help="Validate a project or collection descriptor")
    validate_parser.add_argument("file", type=Path, help="Path to the descriptor file")

    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)
    try:
        settings = load_global_config(args.config)
        level = "debug" if args.verbose else (args.log_level or settings.log_level)
        setup_logging(level, args.log_file or settings.log_file)

        if args.command == "project":
            return _handle_project(args, settings)
        if args.command == "collection":
            return _handle_collection(args, settings)
        if args.command == "clean":
            return _handle_clean(args, settings)
        if args.command == "validate":
            return _handle_validate(args)
        raise ValueError(f"Unknown command: {args.command}")
    except (JonahError, OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


def _make_runner(args: Namespace, settings: GlobalConfig) -> CommandRunner:
    if args.dry_run:
        return RecordingCommandRunner(stdout=_DRY_RUN_CONTAINER_ID)
    echo = settings.echo_commands if args.echo_commands is None else args.echo_commands
    return SubprocessCommandRunner(echo=echo)


def _make_engine(args: Namespace, settings: GlobalConfig, runner: CommandRunner) -> BuildEngine:
    options = BuildOptions(
        image=args.image or settings.image,
        container=args.container or settings.container,
        engine=args.engine or settings.engine,
        dry_run=args.dry_run,
    )
    return BuildEngine(command_runner=runner, options=options)


def _emit_dry_run_output(runner: CommandRunner) -> None:
    if isinstance(runner, RecordingCommandRunner):
        for line in runner.iter_formatted(workspace=Path.cwd()):
            print(line)


def _report_exports(result: ProjectBuildResult) -> None:
    for failure in result.failed_exports:
        print(
            f"warning: export '{failure.export.container_path}' was not copied to {failure.destination}",
            file=sys.stderr,
        )


def _handle_project(args: Namespace, settings: GlobalConfig) -> int:
    runner = _make_runner(args, settings)
    engine = _make_engine(args, settings, runner)
    result = engine.run(args.file, args.out_path)
    _report_exports(result)
    _emit_dry_run_output(runner)
    return 0


def _handle_collection(args: Namespace, settings: GlobalConfig) -> int:
    collection = load_collection(args.file)
    runner = _make_runner(args, settings)
    engine = _make_engine(args, settings, runner)
    work_dir = args.work_dir or Path(settings.work_dir)
    result = run_collection(
        collection,
        output_root=args.out_path,
        work_dir=work_dir,
        engine=engine,
        git=GitManager(runner),
        on_build=lambda _, build: _report_exports(build),
    )
    _emit_dry_run_output(runner)
    summary = f"Built {len(result.builds)} of {len(collection.projects)} projects"
    if result.skipped:
        summary += f" ({len(result.skipped)} skipped in dry run)"
    if result.failed_export_count:
        summary += f", {result.failed_export_count} exports missing"
    logger.info(summary)
    return 0


def _handle_clean(args: Namespace, settings: GlobalConfig) -> int:
    work_dir = args.work_dir or Path(settings.work_dir)
    if work_dir.exists():
        logger.info("Removing %s", work_dir)
        shutil.rmtree(work_dir)
    else:
        logger.info("Nothing to remove at %s", work_dir)
    remove_image(
        SubprocessCommandRunner(echo=settings.echo_commands),
        image=args.image or settings.image,
        engine=args.engine or settings.engine,
    )
    return 0


def _handle_validate(args: Namespace) -> int:
    descriptor = load_descriptor(args.file)
    if isinstance(descriptor, CollectionDescriptor):
        validate(descriptor)
        print(f"Collection is valid ({len(descriptor.projects)} projects)")
    else:
        print(f"Project is valid ({len(descriptor.exports)} exports)")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
