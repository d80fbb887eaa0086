"""Resolution of project references into local build descriptors."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Set
import logging

from .config_loader import GitRelative, GitUrl, LocalPath, ProjectReference
from .errors import ResolveError
from .git_manager import GitManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ResolvedSource:
    source_dir: Path
    build_file: Path


def join_git_url(base: str, relative: str) -> str:
    """Join ``base`` and ``relative`` with exactly one ``/`` between them."""
    return f"{base.rstrip('/')}/{relative.lstrip('/')}"


def repository_name(url: str) -> str:
    """Derive a clone directory name from the last path segment of ``url``.

    >>> repository_name("https://example.com/org/repo.git")
    'repo'
    """
    segments = url.split("/")
    name = segments[-1]
    if not name and len(segments) > 1:
        name = segments[-2]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    if not name or name in {".", ".."} or name.endswith(":"):
        raise ResolveError(f"{url} is not a valid git url")
    return name


def reference_url(reference: GitRelative | GitUrl, git_base: str | None) -> str:
    if isinstance(reference, GitUrl):
        return reference.url
    if git_base is None:
        raise ResolveError(
            f"the relative git `{reference.rel_path}` could not be resolved: set the `git_base` url"
        )
    return join_git_url(git_base, reference.rel_path)


def resolve_source(
    reference: ProjectReference,
    *,
    git_base: str | None,
    work_dir: Path,
    seen_urls: Set[str],
    git: GitManager,
) -> ResolvedSource:
    """Make the descriptor behind ``reference`` available on the local filesystem.

    ``seen_urls`` holds the urls already synchronised during this run; a url
    found there is not fetched again. Newly synchronised urls are added to it.
    """
    if isinstance(reference, LocalPath):
        return ResolvedSource(source_dir=Path("."), build_file=Path(reference.build_file))
    if not isinstance(reference, (GitRelative, GitUrl)):
        raise TypeError(f"Unknown project reference: {reference!r}")

    url = reference_url(reference, git_base)
    repo_path = work_dir / repository_name(url)
    if url in seen_urls:
        logger.info("Reusing %s already synchronised in this run", repo_path)
    else:
        git.sync_repository(url=url, repo_path=repo_path)
        seen_urls.add(url)
    return ResolvedSource(source_dir=repo_path, build_file=repo_path / reference.build_file)
