"""Sequential orchestration of every project in a collection."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Set, Tuple
import logging

from .build import BuildEngine, ProjectBuildResult
from .config_loader import CollectionDescriptor, LocalPath, ProjectReference, describe_reference, validate
from .git_manager import GitManager
from .sources import resolve_source

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CollectionResult:
    builds: List[Tuple[ProjectReference, ProjectBuildResult]] = field(default_factory=list)
    skipped: List[ProjectReference] = field(default_factory=list)

    @property
    def failed_export_count(self) -> int:
        return sum(len(result.failed_exports) for _, result in self.builds)


def run_collection(
    collection: CollectionDescriptor,
    *,
    output_root: Path,
    work_dir: Path,
    engine: BuildEngine,
    git: GitManager,
    on_build: Callable[[ProjectReference, ProjectBuildResult], None] | None = None,
) -> CollectionResult:
    """Resolve and build each project of ``collection`` in declared order.

    Validation happens before anything touches the filesystem or spawns a
    process. The first resolve, build or container error stops the run;
    artifacts of projects that already finished stay in place. ``on_build`` is
    called after each project build, before the next project starts.
    """
    validate(collection)
    dry_run = engine.options.dry_run
    if not dry_run:
        output_root.mkdir(parents=True, exist_ok=True)
        work_dir.mkdir(parents=True, exist_ok=True)

    result = CollectionResult()
    seen_urls: Set[str] = set()
    total = len(collection.projects)
    for index, reference in enumerate(collection.projects, start=1):
        logger.info("[%d/%d] %s", index, total, describe_reference(reference))
        source = resolve_source(
            reference,
            git_base=collection.git_base,
            work_dir=work_dir,
            seen_urls=seen_urls,
            git=git,
        )
        if dry_run and not isinstance(reference, LocalPath) and not source.build_file.exists():
            logger.info("Skipping build of %s: descriptor is not available before the clone runs", source.build_file)
            result.skipped.append(reference)
            continue
        build = engine.run(source.build_file, output_root / reference.out_path)
        result.builds.append((reference, build))
        if on_build is not None:
            on_build(reference, build)
    return result
