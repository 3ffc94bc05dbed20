"""
Pipeline error taxonomy.

Every stage failure is a subclass of PipelineError and carries the process
exit code the orchestrator reports for it, so calling automation can tell
causes apart without parsing text.
"""

from __future__ import annotations

from enum import IntEnum
from typing import List, Optional


class ExitCode(IntEnum):
    """Process exit codes, one per aborting stage category."""
    DONE = 0
    CONFIG_ERROR = 2
    TOOL_NOT_INSTALLED = 10
    REPOSITORY_ERROR = 11
    DIRTY_WORKTREE = 12
    TEST_FAILURE = 13
    BUILD_FAILURE = 14
    EXPORT_FAILURE = 15
    PACKAGING_FAILURE = 16
    PUBLISH_FAILURE = 17
    INTERRUPTED = 130


class PipelineError(Exception):
    """Base class for fatal pipeline errors."""
    exit_code: ExitCode = ExitCode.CONFIG_ERROR


class ConfigError(PipelineError):
    exit_code = ExitCode.CONFIG_ERROR


class ToolNotInstalled(PipelineError):
    exit_code = ExitCode.TOOL_NOT_INSTALLED

    def __init__(self, tool: str, purpose: str = ""):
        self.tool = tool
        self.purpose = purpose
        suffix = f" (required for {purpose})" if purpose else ""
        super().__init__(f"{tool} is not installed{suffix}")


class RepositoryNotFound(PipelineError):
    exit_code = ExitCode.REPOSITORY_ERROR

    def __init__(self, path):
        self.path = path
        super().__init__(f"Repository not found at {path}")


class StatusQueryError(PipelineError):
    exit_code = ExitCode.REPOSITORY_ERROR

    def __init__(self, path, exit_code: int, stderr: str = ""):
        self.path = path
        self.status_exit_code = exit_code
        detail = f": {stderr.strip()}" if stderr.strip() else ""
        super().__init__(f"git status failed in {path} (exit {exit_code}){detail}")


class DirtyWorktree(PipelineError):
    exit_code = ExitCode.DIRTY_WORKTREE

    def __init__(self, role: str, path, changed_paths: List[str]):
        self.role = role
        self.path = path
        self.changed_paths = list(changed_paths)
        preview = ", ".join(self.changed_paths[:5])
        more = f" and {len(self.changed_paths) - 5} more" if len(self.changed_paths) > 5 else ""
        super().__init__(
            f"{role} worktree at {path} is not clean ({preview}{more}). "
            "Commit or stash changes before building."
        )


class TestFailure(PipelineError):
    exit_code = ExitCode.TEST_FAILURE
    __test__ = False

    def __init__(self, role: str, exit_code: int):
        self.role = role
        self.test_exit_code = exit_code
        super().__init__(f"{role} tests failed with exit code {exit_code}")


class BuildFailure(PipelineError):
    exit_code = ExitCode.BUILD_FAILURE

    def __init__(self, exit_code: int, mode: str = ""):
        self.build_exit_code = exit_code
        self.mode = mode
        super().__init__(f"{mode or 'workspace'} build failed with exit code {exit_code}")


class ExportFailure(PipelineError):
    exit_code = ExitCode.EXPORT_FAILURE

    def __init__(self, reason: str, exit_code: Optional[int] = None):
        self.export_exit_code = exit_code
        super().__init__(reason)


class TemplateNotFound(PipelineError):
    exit_code = ExitCode.EXPORT_FAILURE

    def __init__(self, path):
        self.path = path
        super().__init__(f"Template not found: {path}")


class WriteError(PipelineError):
    exit_code = ExitCode.EXPORT_FAILURE

    def __init__(self, path, reason: str = ""):
        self.path = path
        detail = f": {reason}" if reason else ""
        super().__init__(f"Cannot write {path}{detail}")


class PackagingFailure(PipelineError):
    exit_code = ExitCode.PACKAGING_FAILURE


class PublishFailure(PipelineError):
    exit_code = ExitCode.PUBLISH_FAILURE
