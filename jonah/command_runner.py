"""Utilities for executing external commands with optional dry-run support."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Sequence
import logging
import shlex
import subprocess

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Represents the outcome of an executed command.

    Streamed commands write straight to the terminal, so ``stdout`` and
    ``stderr`` stay empty for them.
    """

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str
    streamed: bool = False


def format_command(command: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(part)) for part in command)


class CommandRunner:
    """Abstract command runner interface.

    Runners never raise on a non-zero exit code; callers inspect
    :attr:`CommandResult.returncode` and decide whether the failure is fatal.
    """

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        raise NotImplementedError

    def format_command(self, command: Sequence[str]) -> str:
        return format_command(command)


class SubprocessCommandRunner(CommandRunner):
    """Command runner that executes commands via :mod:`subprocess`."""

    def __init__(self, *, echo: bool = False) -> None:
        self.echo = echo

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        if self.echo:
            location = f" (cwd={cwd})" if cwd else ""
            logger.info("$ %s%s", self.format_command(command), location)
        process = subprocess.run(
            [str(part) for part in command],
            cwd=str(cwd) if cwd else None,
            capture_output=not stream,
            text=True,
            check=False,
        )
        if process.returncode != 0:
            logger.debug("exit code %d: %s", process.returncode, self.format_command(command))
        return CommandResult(
            command=command,
            returncode=process.returncode,
            stdout=process.stdout or "",
            stderr=process.stderr or "",
            streamed=stream,
        )


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None
    note: str | None


class RecordingCommandRunner(CommandRunner):
    """Command runner that records commands instead of executing them.

    Every call succeeds and answers with ``stdout``, which lets callers that
    parse command output (a container id, for instance) keep going.
    """

    def __init__(self, *, stdout: str = "") -> None:
        self.commands: List[RecordedCommand] = []
        self._stdout = stdout

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        self.commands.append(
            RecordedCommand(
                command=[str(part) for part in command],
                cwd=str(cwd) if cwd else None,
                note=note,
            )
        )
        return CommandResult(command=command, returncode=0, stdout=self._stdout, stderr="")

    def iter_formatted(self, *, workspace: Path | None = None) -> Iterable[str]:
        default_cwd = str(workspace) if workspace else None
        for record in self.commands:
            parts: List[str] = ["[dry-run]"]
            if record.note:
                parts.append(record.note)
            cwd = record.cwd or default_cwd
            if cwd:
                parts.append(f"(cwd={cwd})")
            parts.append(self.format_command(record.command))
            yield " ".join(parts)
