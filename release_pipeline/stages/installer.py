"""
Installer packaging.

Compiles the platform installer from a packaging script with an external
installer compiler. Packaging only runs against a completed export: the
compile-info artifact must be on disk and the exporter must have reported
success.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from release_pipeline.errors import PackagingFailure
from release_pipeline.lib.process import CommandRunner
from release_pipeline.metadata.installer_script import generate_installer_script
from release_pipeline.stages.export import ExportOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageOutcome:
    installer_path: Path
    spec_path: Path


class InstallerPackager:
    def __init__(
        self,
        runner: CommandRunner,
        workspace: Path,
        installer_path: Path,
        tool: str = "iscc",
        script_template: Optional[Path] = None,
        timeout: int = 1800,
    ):
        self.runner = runner
        self.workspace = workspace
        self.installer_path = installer_path
        self.tool = tool
        self.script_template = script_template
        self.timeout = timeout

    def package(self, spec_path: Path, export: Optional[ExportOutcome]) -> PackageOutcome:
        if export is None:
            raise PackagingFailure("Artifact export has not completed successfully")
        if not export.artifact_path.exists():
            raise PackagingFailure(f"Compile info artifact missing: {export.artifact_path}")

        if self.script_template is not None:
            generate_installer_script(self.script_template, spec_path, self.workspace / "Cargo.toml")
        elif not spec_path.exists():
            raise PackagingFailure(f"Packaging script not found: {spec_path}")

        logger.info(f"Compiling installer from {spec_path}")
        result = self.runner.run(
            self.tool,
            [str(spec_path)],
            cwd=self.workspace,
            timeout=self.timeout,
        )
        if not result.ok:
            if result.stderr:
                logger.error(f"Error output: {result.stderr[-500:]}")
            raise PackagingFailure(f"{self.tool} failed with exit code {result.exit_code}")

        if not self.installer_path.exists():
            raise PackagingFailure(f"{self.tool} succeeded but produced no installer at {self.installer_path}")

        logger.info(f"Installer created: {self.installer_path}")
        return PackageOutcome(self.installer_path, spec_path)
