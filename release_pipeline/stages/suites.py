"""
Cross-repository test runner.

The core library's suite always runs before the frontend's: the frontend
consumes the core library's interface, so a core regression has to be seen
before frontend failures bury it. Success is the test process exit status and
nothing else; there are no retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from release_pipeline.errors import RepositoryNotFound, TestFailure
from release_pipeline.lib.process import CommandRunner
from release_pipeline.models import Repository, RepositoryRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TestOutcome:
    repository: Repository
    exit_code: int

    __test__ = False

    @property
    def passed(self) -> bool:
        return self.exit_code == 0


class CrossRepoTestRunner:
    def __init__(self, runner: CommandRunner, cargo: str = "cargo", timeout: int = 3600):
        self.runner = runner
        self.cargo = cargo
        self.timeout = timeout

    def command_args(self, repository: Repository) -> List[str]:
        args = ["test"]
        if repository.role is RepositoryRole.CORE:
            args += ["--manifest-path", str(repository.path / "Cargo.toml")]
        args.append("--workspace")
        return args

    def run(self, repository: Repository) -> TestOutcome:
        """Run one repository's full suite."""
        if not repository.path.is_dir():
            raise RepositoryNotFound(repository.path)

        logger.info(f"Running {repository.name} tests")
        result = self.runner.run(
            self.cargo,
            self.command_args(repository),
            cwd=repository.path,
            timeout=self.timeout,
        )
        outcome = TestOutcome(repository, result.exit_code)
        if outcome.passed:
            logger.info(f"{repository.name} tests passed")
        else:
            logger.error(f"{repository.name} tests failed with code {result.exit_code}")
            if result.stderr:
                logger.error(f"Error output: {result.stderr[-500:]}")
        return outcome

    def require_pass(self, repository: Repository) -> TestOutcome:
        outcome = self.run(repository)
        if not outcome.passed:
            raise TestFailure(repository.name, outcome.exit_code)
        return outcome
