"""
Workspace build.

Every invocation exports a fresh FORCE_BUILD token into the build
environment. The build script that generates compile metadata watches that
variable, so the metadata is regenerated for this invocation even when cargo's
incremental cache considers everything up to date.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from release_pipeline.errors import BuildFailure
from release_pipeline.lib.process import CommandRunner
from release_pipeline.models import BuildMode, ForceBuildToken

logger = logging.getLogger(__name__)


class TokenGenerator:
    """
    Produces ForceBuildTokens from a clock.

    Release builds use epoch seconds. Development builds prefix the epoch
    seconds with the current minute, the value the dev build script has
    always exported, so tokens never repeat across hours or processes. Two
    calls within the same tick still get distinct tokens: a sequence suffix
    is appended on collision.
    """

    def __init__(self, clock: Callable[[], float] = time.time, minute_resolution: bool = False):
        self.clock = clock
        self.minute_resolution = minute_resolution
        self._last_base: Optional[str] = None
        self._seq = 0

    def __call__(self) -> ForceBuildToken:
        now = self.clock()
        if self.minute_resolution:
            base = f"{time.strftime('%M', time.localtime(now))}-{int(now)}"
        else:
            base = str(int(now))

        if base == self._last_base:
            self._seq += 1
            return ForceBuildToken(f"{base}.{self._seq}")

        self._last_base = base
        self._seq = 0
        return ForceBuildToken(base)


@dataclass(frozen=True)
class BuildOutcome:
    mode: BuildMode
    binary_dir: Path
    token: ForceBuildToken


class BuildExecutor:
    def __init__(
        self,
        runner: CommandRunner,
        workspace: Path,
        token_factory: Callable[[], ForceBuildToken],
        cargo: str = "cargo",
        target_dir: Optional[Path] = None,
        timeout: int = 3600,
        base_env: Optional[Mapping[str, str]] = None,
    ):
        self.runner = runner
        self.workspace = workspace
        self.token_factory = token_factory
        self.cargo = cargo
        self.target_dir = target_dir or workspace / "target"
        self.timeout = timeout
        self.base_env = base_env

    def command_args(self, mode: BuildMode) -> List[str]:
        args = ["build", "--workspace"]
        if mode is BuildMode.RELEASE:
            args.append("--release")
        return args

    def environment(self, token: ForceBuildToken) -> Dict[str, str]:
        env = dict(os.environ if self.base_env is None else self.base_env)
        env.update(token.as_env())
        return env

    def build(self, mode: BuildMode) -> BuildOutcome:
        token = self.token_factory()
        logger.info(f"Building workspace ({mode.value}), {ForceBuildToken.ENV_VAR}={token.value}")

        result = self.runner.run(
            self.cargo,
            self.command_args(mode),
            cwd=self.workspace,
            env=self.environment(token),
            timeout=self.timeout,
        )
        if not result.ok:
            if result.stderr:
                logger.error(f"Error output: {result.stderr[-500:]}")
            raise BuildFailure(result.exit_code, mode.value)

        binary_dir = self.target_dir / mode.value
        logger.info(f"Build succeeded: {binary_dir}")
        return BuildOutcome(mode, binary_dir, token)
