"""Container build orchestration for a single project."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List
import logging

from .command_runner import CommandRunner
from .config_loader import DEFAULT_ENGINE, DEFAULT_IMAGE, Export, ProjectDescriptor, load_project
from .errors import BuildError, ContainerError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BuildOptions:
    image: str = DEFAULT_IMAGE
    container: str | None = None
    engine: str = DEFAULT_ENGINE
    dry_run: bool = False


@dataclass(frozen=True, slots=True)
class ExportFailure:
    export: Export
    destination: Path
    returncode: int


@dataclass(slots=True)
class ProjectBuildResult:
    descriptor: ProjectDescriptor
    output_dir: Path
    container_id: str
    extracted: List[Path] = field(default_factory=list)
    failed_exports: List[ExportFailure] = field(default_factory=list)
    teardown_ok: bool = True

    @property
    def complete(self) -> bool:
        return not self.failed_exports and self.teardown_ok


class BuildEngine:
    """Builds an image, creates a container from it and copies exports out.

    Each step runs only when the previous one succeeded. Image build and
    container creation failures raise; export copy and teardown failures are
    recorded on the returned :class:`ProjectBuildResult` instead.
    """

    def __init__(self, *, command_runner: CommandRunner, options: BuildOptions | None = None) -> None:
        self._command_runner = command_runner
        self._options = options or BuildOptions()

    @property
    def options(self) -> BuildOptions:
        return self._options

    def run(self, build_file: Path, output_dir: Path) -> ProjectBuildResult:
        descriptor = load_project(build_file)
        context_dir = build_file.absolute().parent

        self._prepare_directories(descriptor, output_dir=output_dir)
        self._build_image(descriptor, context_dir=context_dir)
        container_id = self._create_container()

        result = ProjectBuildResult(descriptor=descriptor, output_dir=output_dir, container_id=container_id)
        try:
            for export in descriptor.exports:
                self._extract(result, export)
        finally:
            result.teardown_ok = self._remove_container(container_id)

        if result.failed_exports:
            logger.warning(
                "Build finished with %d of %d exports missing",
                len(result.failed_exports),
                len(descriptor.exports),
            )
        else:
            logger.info("Build and extraction complete")
        return result

    def _prepare_directories(self, descriptor: ProjectDescriptor, *, output_dir: Path) -> None:
        if self._options.dry_run:
            return
        output_dir.mkdir(parents=True, exist_ok=True)
        # Host directories are relative to the invoking working directory.
        for host_dir in descriptor.host_dirs:
            Path(host_dir).mkdir(parents=True, exist_ok=True)

    def _build_image(self, descriptor: ProjectDescriptor, *, context_dir: Path) -> None:
        logger.info("Building image %s from %s", self._options.image, context_dir / descriptor.container_file)
        result = self._command_runner.run(
            [self._options.engine, "build", "-t", self._options.image, "-f", descriptor.container_file, "."],
            cwd=context_dir,
            note="Build image",
            stream=True,
        )
        if result.returncode != 0:
            raise BuildError(f"Image build failed with exit code {result.returncode} ({context_dir})")

    def _create_container(self) -> str:
        logger.info("Creating container from %s", self._options.image)
        command = [self._options.engine, "create"]
        if self._options.container:
            command.extend(["--name", self._options.container])
        command.append(self._options.image)
        result = self._command_runner.run(command, note="Create container")
        if result.returncode != 0:
            detail = result.stderr.strip() or f"exit code {result.returncode}"
            raise ContainerError(f"Failed to create the container: {detail}")
        container_id = result.stdout.strip()
        if not container_id:
            raise ContainerError("Container engine did not report a container id")
        return container_id

    def _extract(self, result: ProjectBuildResult, export: Export) -> None:
        destination = result.output_dir / export.host_name
        logger.info("Extracting %s -> %s", export.container_path, destination)
        outcome = self._command_runner.run(
            [self._options.engine, "cp", f"{result.container_id}:{export.container_path}", str(destination)],
            note="Extract export",
        )
        if outcome.returncode != 0:
            logger.warning("Failed to copy %s: %s", export.container_path, outcome.stderr.strip() or outcome.returncode)
            result.failed_exports.append(
                ExportFailure(export=export, destination=destination, returncode=outcome.returncode)
            )
            return
        result.extracted.append(destination)

    def _remove_container(self, container_id: str) -> bool:
        logger.info("Removing container %s", container_id)
        try:
            outcome = self._command_runner.run(
                [self._options.engine, "rm", container_id],
                note="Remove container",
            )
        except OSError as exc:
            logger.warning("Unable to remove container %s: %s", container_id, exc)
            return False
        if outcome.returncode != 0:
            logger.warning("Unable to remove container %s: %s", container_id, outcome.stderr.strip() or outcome.returncode)
            return False
        return True


def remove_image(command_runner: CommandRunner, *, image: str, engine: str = DEFAULT_ENGINE) -> bool:
    try:
        outcome = command_runner.run([engine, "image", "rm", image], note="Remove image")
    except OSError as exc:
        logger.warning("Unable to remove image %s: %s", image, exc)
        return False
    if outcome.returncode != 0:
        logger.warning("Unable to remove image %s: %s", image, outcome.stderr.strip() or outcome.returncode)
        return False
    return True
