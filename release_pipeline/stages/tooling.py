"""
Host tooling check.

Runs first so a missing installer compiler is reported before the cost of
tests and compilation is paid.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Tuple

from release_pipeline.errors import ToolNotInstalled
from release_pipeline.lib.process import CommandRunner

logger = logging.getLogger(__name__)


def check_tools(runner: CommandRunner, required: Sequence[Tuple[str, str]]) -> Dict[str, str]:
    """
    Verify every (tool, purpose) pair resolves to an executable.

    Returns a mapping of tool name to resolved path. Raises ToolNotInstalled
    for the first tool that is missing.
    """
    resolved: Dict[str, str] = {}
    for tool, purpose in required:
        location = runner.which(tool)
        if not location:
            raise ToolNotInstalled(tool, purpose)
        logger.debug(f"Found {tool}: {location}")
        resolved[tool] = location
    return resolved


def required_tools(git: str, cargo: str, installer_tool: str = "") -> List[Tuple[str, str]]:
    tools = [
        (git, "worktree checks"),
        (cargo, "tests and builds"),
    ]
    if installer_tool:
        tools.append((installer_tool, "installer packaging"))
    return tools
