"""
Artifact export.

Runs the exporter tool against the fresh build, then settles the
compile-info artifact according to the policy for the build mode:

- Regenerate (release): render the artifact from its template
- Clear (debug): remove any stale artifact so local builds never carry
  release metadata

New build modes only need an entry in POLICY_BY_MODE.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from release_pipeline.errors import ExportFailure, WriteError
from release_pipeline.lib.process import CommandRunner
from release_pipeline.metadata.compile_info import BuildMetadata, write_compile_info
from release_pipeline.models import BuildMode

logger = logging.getLogger(__name__)


class ArtifactPolicy(Enum):
    REGENERATE = "regenerate"
    CLEAR = "clear"


POLICY_BY_MODE: Dict[BuildMode, ArtifactPolicy] = {
    BuildMode.RELEASE: ArtifactPolicy.REGENERATE,
    BuildMode.DEBUG: ArtifactPolicy.CLEAR,
}


@dataclass(frozen=True)
class ExportOutcome:
    mode: BuildMode
    policy: ArtifactPolicy
    artifact_path: Path
    artifact_exists: bool


class ArtifactExporter:
    def __init__(
        self,
        runner: CommandRunner,
        workspace: Path,
        template_path: Path,
        artifact_path: Path,
        metadata_factory: Callable[[], BuildMetadata],
        cargo: str = "cargo",
        exporter_manifest: str = "tools/build_helper/Cargo.toml",
        exporter_bin: str = "exporter",
        timeout: int = 600,
        policies: Optional[Mapping[BuildMode, ArtifactPolicy]] = None,
    ):
        self.runner = runner
        self.workspace = workspace
        self.template_path = template_path
        self.artifact_path = artifact_path
        self.metadata_factory = metadata_factory
        self.cargo = cargo
        self.exporter_manifest = exporter_manifest
        self.exporter_bin = exporter_bin
        self.timeout = timeout
        self.policies = dict(policies or POLICY_BY_MODE)

    def command_args(self, mode: BuildMode) -> List[str]:
        return [
            "run",
            "--manifest-path", self.exporter_manifest,
            "--bin", self.exporter_bin,
            mode.value,
        ]

    def policy_for(self, mode: BuildMode) -> ArtifactPolicy:
        try:
            return self.policies[mode]
        except KeyError:
            raise ExportFailure(f"No artifact policy configured for {mode.value} builds")

    def export(self, mode: BuildMode) -> ExportOutcome:
        policy = self.policy_for(mode)

        logger.info(f"Running exporter ({mode.value})")
        result = self.runner.run(
            self.cargo,
            self.command_args(mode),
            cwd=self.workspace,
            timeout=self.timeout,
        )
        if not result.ok:
            if result.stderr:
                logger.error(f"Error output: {result.stderr[-500:]}")
            raise ExportFailure(f"exporter failed with exit code {result.exit_code}", result.exit_code)

        if policy is ArtifactPolicy.REGENERATE:
            write_compile_info(self.template_path, self.artifact_path, self.metadata_factory())
        else:
            self._clear()

        return ExportOutcome(mode, policy, self.artifact_path, self.artifact_path.exists())

    def _clear(self) -> None:
        try:
            self.artifact_path.unlink()
            logger.info(f"Removed stale compile info: {self.artifact_path}")
        except FileNotFoundError:
            logger.debug(f"No compile info to remove at {self.artifact_path}")
        except OSError as e:
            raise WriteError(self.artifact_path, str(e)) from e
