"""
External command execution.

Stages never spawn processes directly; they go through a CommandRunner so the
sequencing logic can be exercised without real tools.

Usage:
    from release_pipeline.lib.process import SubprocessRunner

    runner = SubprocessRunner()
    result = runner.run("git", ["status", "--porcelain"], cwd=repo_path)
    if result.ok:
        print(result.stdout)
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence, Union

logger = logging.getLogger(__name__)

# Conventional shell exit codes
EXIT_TIMEOUT = 124
EXIT_NOT_FOUND = 127


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command."""
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandRunner(Protocol):
    def run(
        self,
        command: str,
        args: Sequence[str],
        cwd: Union[str, Path],
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> CommandResult:
        ...

    def which(self, tool: str) -> Optional[str]:
        ...


def format_command(command: str, args: Sequence[str]) -> str:
    return " ".join([command, *args])


class SubprocessRunner:
    """Runs commands with subprocess, blocking until they exit."""

    def run(
        self,
        command: str,
        args: Sequence[str],
        cwd: Union[str, Path],
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> CommandResult:
        cmd: List[str] = [command, *args]
        logger.debug(f"Command: {format_command(command, args)} (cwd={cwd})")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                cwd=str(cwd),
                env=env,
            )
        except subprocess.TimeoutExpired:
            logger.error(f"{command} timed out after {timeout} seconds")
            return CommandResult(EXIT_TIMEOUT, "", f"timed out after {timeout} seconds")
        except FileNotFoundError as e:
            logger.error(f"{command} could not be started: {e}")
            return CommandResult(EXIT_NOT_FOUND, "", str(e))

        if result.returncode != 0 and result.stderr:
            logger.debug(f"Error output: {result.stderr[:500]}")

        return CommandResult(result.returncode, result.stdout, result.stderr)

    def which(self, tool: str) -> Optional[str]:
        return shutil.which(tool)
