"""
Compile-info artifact.

The frontend embeds a generated source file describing the build it came
from. It is rendered from a template by plain placeholder substitution:

    {date}       local build time, "%Y-%m-%d %H:%M:%S"
    {target}     target triple
    {platform}   Windows / Linux / macOS / Android / iOS / Unknown
    {toolchain}  compiler version and release channel
    {version}    workspace version from Cargo.toml
    {branch}     current git branch (or HEAD ref when detached)
    {commit}     current git commit

Values that cannot be determined render as "unknown".
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional

from release_pipeline.errors import ExportFailure, TemplateNotFound, WriteError
from release_pipeline.lib.fsutil import atomic_write_text
from release_pipeline.lib.process import CommandRunner
from release_pipeline.metadata.manifest import UNKNOWN, get_version, load_manifest

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class BuildMetadata:
    date: str
    target: str
    platform: str
    toolchain: str
    version: str
    branch: str
    commit: str

    def placeholders(self) -> Dict[str, str]:
        return {f"{{{key}}}": value for key, value in asdict(self).items()}


def get_platform(target: str) -> str:
    if "windows" in target:
        return "Windows"
    if "linux" in target:
        return "Linux"
    if "darwin" in target or "macos" in target:
        return "macOS"
    if "android" in target:
        return "Android"
    if "ios" in target:
        return "iOS"
    return "Unknown"


def toolchain_channel(version_line: str) -> str:
    if "nightly" in version_line:
        return "nightly"
    if "beta" in version_line:
        return "beta"
    return "stable"


class MetadataCollector:
    """Gathers BuildMetadata from the workspace, git and the toolchain."""

    def __init__(
        self,
        runner: CommandRunner,
        workspace: Path,
        now: Callable[[], datetime] = datetime.now,
        git: str = "git",
        rustc: str = "rustc",
    ):
        self.runner = runner
        self.workspace = workspace
        self.now = now
        self.git = git
        self.rustc = rustc

    def _output(self, command: str, *args: str) -> Optional[str]:
        result = self.runner.run(command, list(args), cwd=self.workspace)
        if not result.ok:
            return None
        return result.stdout.strip()

    def toolchain(self) -> str:
        version_line = self._output(self.rustc, "--version") or UNKNOWN
        return f"{version_line} ({toolchain_channel(version_line)})"

    def target(self) -> str:
        verbose = self._output(self.rustc, "-vV")
        if verbose:
            for line in verbose.splitlines():
                if line.startswith("host:"):
                    return line.split(":", 1)[1].strip()
        return os.environ.get("TARGET") or UNKNOWN

    def branch(self) -> str:
        branch = self._output(self.git, "branch", "--show-current")
        if branch:
            return branch
        # Detached HEAD
        return self._output(self.git, "rev-parse", "--abbrev-ref", "HEAD") or UNKNOWN

    def commit(self) -> str:
        return self._output(self.git, "rev-parse", "HEAD") or UNKNOWN

    def collect(self) -> BuildMetadata:
        target = self.target()
        manifest = load_manifest(self.workspace / "Cargo.toml")
        return BuildMetadata(
            date=self.now().strftime(DATE_FORMAT),
            target=target,
            platform=get_platform(target),
            toolchain=self.toolchain(),
            version=get_version(manifest),
            branch=self.branch(),
            commit=self.commit(),
        )


def render_template(template: str, values: Dict[str, str]) -> str:
    for placeholder, value in values.items():
        template = template.replace(placeholder, value)
    return template


def write_compile_info(template_path: Path, output_path: Path, metadata: BuildMetadata) -> Path:
    """Render the compile-info template to output_path."""
    try:
        template = template_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise TemplateNotFound(template_path)
    except (OSError, UnicodeDecodeError) as e:
        raise ExportFailure(f"Cannot read template {template_path}: {e}") from e

    content = render_template(template, metadata.placeholders())
    try:
        atomic_write_text(output_path, content)
    except OSError as e:
        raise WriteError(output_path, str(e)) from e

    logger.info(f"Compile info written: {output_path} (version {metadata.version})")
    return output_path
