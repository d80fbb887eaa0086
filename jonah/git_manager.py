"""Git operations used to materialise project sources."""
from __future__ import annotations

from pathlib import Path
import logging

from .command_runner import CommandRunner, CommandResult
from .errors import ResolveError

logger = logging.getLogger(__name__)


class GitManager:
    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    def sync_repository(self, *, url: str, repo_path: Path) -> None:
        """Clone ``url`` into ``repo_path`` or refresh an existing clone to the remote head."""
        if repo_path.is_dir():
            self.refresh_shallow(repo_path)
        else:
            self.clone_shallow(url, repo_path)

    def clone_shallow(self, url: str, repo_path: Path) -> None:
        logger.info("Cloning %s into %s", url, repo_path)
        result = self._runner.run(
            ["git", "clone", url, str(repo_path), "--depth", "1"],
            note="Clone repository",
            stream=True,
        )
        self._ensure_success(result, f"git clone of '{url}' failed")

    def refresh_shallow(self, repo_path: Path) -> None:
        logger.info("Refreshing %s", repo_path)
        result = self._runner.run(
            ["git", "fetch", "--depth", "1", "origin"],
            cwd=repo_path,
            note="Fetch repository",
            stream=True,
        )
        self._ensure_success(result, f"git fetch in '{repo_path}' failed")
        result = self._runner.run(
            ["git", "reset", "--hard", "origin/HEAD"],
            cwd=repo_path,
            note="Reset repository",
            stream=True,
        )
        self._ensure_success(result, f"git reset in '{repo_path}' failed")

    @staticmethod
    def _ensure_success(result: CommandResult, message: str) -> None:
        if result.returncode != 0:
            raise ResolveError(f"{message} (exit code {result.returncode})")
