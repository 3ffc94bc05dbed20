"""
Worktree cleanliness guard.

A release must be built from committed sources only. The guard asks git for
the porcelain status of a repository (tracked and untracked changes) and
reports every changed path. It never stashes or commits anything.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from release_pipeline.errors import DirtyWorktree, RepositoryNotFound, StatusQueryError
from release_pipeline.lib.process import CommandRunner
from release_pipeline.models import Repository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorktreeStatus:
    repository: Repository
    changed_paths: List[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.changed_paths


def parse_porcelain(output: str) -> List[str]:
    """Extract paths from `git status --porcelain` (v1) output."""
    paths = []
    for line in output.splitlines():
        if len(line) < 4:
            continue
        path = line[3:]
        # Renames are reported as "old -> new"
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        paths.append(path.strip('"'))
    return paths


class WorktreeGuard:
    def __init__(self, runner: CommandRunner, git: str = "git"):
        self.runner = runner
        self.git = git

    def check(self, repository: Repository) -> WorktreeStatus:
        """Query the repository's status. Read-only."""
        if not repository.path.is_dir():
            raise RepositoryNotFound(repository.path)

        result = self.runner.run(
            self.git,
            ["status", "--porcelain", "--untracked-files=all"],
            cwd=repository.path,
        )
        if not result.ok:
            raise StatusQueryError(repository.path, result.exit_code, result.stderr)

        status = WorktreeStatus(repository, parse_porcelain(result.stdout))
        if status.clean:
            logger.info(f"{repository.name} worktree is clean")
        else:
            logger.warning(
                f"{repository.name} worktree has {len(status.changed_paths)} pending change(s)"
            )
        return status

    def require_clean(self, repository: Repository) -> WorktreeStatus:
        status = self.check(repository)
        if not status.clean:
            raise DirtyWorktree(repository.name, repository.path, status.changed_paths)
        return status
