#!/usr/bin/env python3
"""
Release Pipeline Orchestrator

Strictly sequential release pipeline for the command-line frontend and the
core library it depends on:

    Init -> CheckingTooling -> HidingArtifacts -> GuardingWorktrees
         -> TestingCore -> TestingFrontend -> Building -> Exporting
         -> Packaging -> Done

Each stage runs only if the previous one succeeded. The first failure moves
the run to Aborted(stage, reason) and nothing after it runs. There are no
retries and no rollback of side effects already applied.

Usage:
    # Full release
    python orchestrator.py

    # Local debug build (no guard, tests or packaging)
    python orchestrator.py --variant dev

    # Only guard the frontend worktree
    python orchestrator.py --guard-scope frontend

    # Show what would run
    python orchestrator.py --dry-run

    # Build and publish binaries
    python orchestrator.py publish --release
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from release_pipeline.config import CONFIG_FILENAME, GuardScope, PipelineConfig, load_config
from release_pipeline.errors import ExitCode, PipelineError
from release_pipeline.lib.process import CommandRunner, SubprocessRunner, format_command
from release_pipeline.metadata.compile_info import MetadataCollector
from release_pipeline.models import (
    BuildMode,
    ForceBuildToken,
    Repository,
    RepositoryRole,
    StageResult,
    StageStatus,
)
from release_pipeline.publish.publisher import Publisher, PublishResult
from release_pipeline.stages.build import BuildExecutor, BuildOutcome, TokenGenerator
from release_pipeline.stages.export import ArtifactExporter, ExportOutcome
from release_pipeline.stages.installer import InstallerPackager
from release_pipeline.stages.suites import CrossRepoTestRunner
from release_pipeline.stages.tooling import check_tools, required_tools
from release_pipeline.stages.visibility import AttributeBackend, VisibilityManager, default_backend
from release_pipeline.stages.worktree import WorktreeGuard

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


class PipelineState(Enum):
    """States of a pipeline run."""
    INIT = "init"
    CHECKING_TOOLING = "checking_tooling"
    HIDING_ARTIFACTS = "hiding_artifacts"
    GUARDING_WORKTREES = "guarding_worktrees"
    TESTING_CORE = "testing_core"
    TESTING_FRONTEND = "testing_frontend"
    BUILDING = "building"
    EXPORTING = "exporting"
    PACKAGING = "packaging"
    DONE = "done"
    ABORTED = "aborted"


STAGE_ORDER: List[PipelineState] = [
    PipelineState.CHECKING_TOOLING,
    PipelineState.HIDING_ARTIFACTS,
    PipelineState.GUARDING_WORKTREES,
    PipelineState.TESTING_CORE,
    PipelineState.TESTING_FRONTEND,
    PipelineState.BUILDING,
    PipelineState.EXPORTING,
    PipelineState.PACKAGING,
]


class Variant(Enum):
    RELEASE = "release"
    DEV = "dev"


VARIANT_MODE: Dict[Variant, BuildMode] = {
    Variant.RELEASE: BuildMode.RELEASE,
    Variant.DEV: BuildMode.DEBUG,
}

# Stages a variant deliberately leaves out
VARIANT_SKIPS: Dict[Variant, frozenset] = {
    Variant.RELEASE: frozenset(),
    Variant.DEV: frozenset({
        PipelineState.GUARDING_WORKTREES,
        PipelineState.TESTING_CORE,
        PipelineState.TESTING_FRONTEND,
        PipelineState.PACKAGING,
    }),
}


@dataclass
class PipelineRun:
    """Result of one pipeline run."""
    run_id: str
    variant: str
    mode: str
    started_at: str
    completed_at: Optional[str] = None
    duration_seconds: float = 0.0
    state: PipelineState = PipelineState.INIT
    aborted_stage: Optional[str] = None
    error: str = ""
    exit_code: int = int(ExitCode.DONE)
    dry_run: bool = False

    transitions: List[str] = field(default_factory=list)
    stages: Dict[str, StageResult] = field(default_factory=dict)
    artifacts: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        """True only for a real run that reached DONE."""
        return self.state is PipelineState.DONE and not self.dry_run

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "variant": self.variant,
            "mode": self.mode,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_seconds": round(self.duration_seconds, 3),
            "state": self.state.value,
            "aborted_stage": self.aborted_stage,
            "error": self.error,
            "exit_code": self.exit_code,
            "dry_run": self.dry_run,
            "transitions": self.transitions,
            "stages": {name: result.to_dict() for name, result in self.stages.items()},
            "artifacts": self.artifacts,
        }


class PipelineOrchestrator:
    """
    Sequences the release stages and applies the fail-fast policy.

    Everything with state or side effects (command runner, attribute backend,
    clocks, build token factory) is an explicit field so tests can substitute
    fakes.
    """

    def __init__(
        self,
        config: PipelineConfig,
        variant: Variant = Variant.RELEASE,
        runner: Optional[CommandRunner] = None,
        backend: Optional[AttributeBackend] = None,
        clock: Callable[[], float] = time.time,
        timer: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now,
        token_factory: Optional[Callable[[], ForceBuildToken]] = None,
        dry_run: bool = False,
        force_visibility: bool = False,
        progress: bool = False,
    ):
        self.config = config
        self.variant = variant
        self.mode = VARIANT_MODE[variant]
        self.runner = runner or SubprocessRunner()
        self.clock = clock
        self.timer = timer
        self.now = now
        self.dry_run = dry_run
        self.force_visibility = force_visibility

        commands = config.commands
        self.frontend = Repository(config.frontend_root, RepositoryRole.FRONTEND)
        self.core = Repository(config.core_root, RepositoryRole.CORE)

        self.visibility = VisibilityManager(
            backend=backend or default_backend(self.runner),
            runner=self.runner,
            marker=config.visibility.marker,
            threshold_seconds=config.visibility.threshold_seconds,
            exclude=config.visibility.exclude,
            clock=clock,
            git=commands.git,
            progress=progress,
        )
        self.guard = WorktreeGuard(self.runner, git=commands.git)
        self.tests = CrossRepoTestRunner(self.runner, cargo=commands.cargo, timeout=commands.test_timeout)
        self.builder = BuildExecutor(
            self.runner,
            workspace=config.frontend_root,
            token_factory=token_factory or TokenGenerator(clock, minute_resolution=variant is Variant.DEV),
            cargo=commands.cargo,
            target_dir=config.target_dir,
            timeout=commands.build_timeout,
        )
        collector = MetadataCollector(self.runner, config.frontend_root, now=now, git=commands.git)
        self.exporter = ArtifactExporter(
            self.runner,
            workspace=config.frontend_root,
            template_path=config.compile_info.template,
            artifact_path=config.compile_info.output,
            metadata_factory=collector.collect,
            cargo=commands.cargo,
            exporter_manifest=commands.exporter_manifest,
            exporter_bin=commands.exporter_bin,
            timeout=commands.export_timeout,
        )
        self.packager = InstallerPackager(
            self.runner,
            workspace=config.frontend_root,
            installer_path=config.installer.output,
            tool=config.installer.tool,
            script_template=config.installer.script_template,
            timeout=commands.package_timeout,
        )

        self._handlers: Dict[PipelineState, Callable[[PipelineRun], StageResult]] = {
            PipelineState.CHECKING_TOOLING: self._check_tooling,
            PipelineState.HIDING_ARTIFACTS: self._hide_artifacts,
            PipelineState.GUARDING_WORKTREES: self._guard_worktrees,
            PipelineState.TESTING_CORE: self._test_core,
            PipelineState.TESTING_FRONTEND: self._test_frontend,
            PipelineState.BUILDING: self._build,
            PipelineState.EXPORTING: self._export,
            PipelineState.PACKAGING: self._package,
        }
        self._build_outcome: Optional[BuildOutcome] = None
        self._export_outcome: Optional[ExportOutcome] = None

    # --- Stage planning ---

    @property
    def skipped_stages(self) -> frozenset:
        return VARIANT_SKIPS[self.variant]

    def guarded_repositories(self) -> List[Repository]:
        scope = self.config.guard_scope
        if scope is GuardScope.BOTH:
            return [self.frontend, self.core]
        if scope is GuardScope.FRONTEND:
            return [self.frontend]
        return []

    def planned_commands(self, state: PipelineState) -> List[str]:
        """Commands a stage would run, for dry runs and stage listings."""
        commands = self.config.commands
        if state is PipelineState.CHECKING_TOOLING:
            return [f"which {tool}" for tool, _ in self._required_tools()]
        if state is PipelineState.HIDING_ARTIFACTS:
            return [f"scan {self.frontend.path} (debounce {self.config.visibility.threshold_seconds:g}s)"]
        if state is PipelineState.GUARDING_WORKTREES:
            return [
                f"{commands.git} status --porcelain  # {repo.name}"
                for repo in self.guarded_repositories()
            ]
        if state is PipelineState.TESTING_CORE:
            return [format_command(commands.cargo, self.tests.command_args(self.core))]
        if state is PipelineState.TESTING_FRONTEND:
            return [format_command(commands.cargo, self.tests.command_args(self.frontend))]
        if state is PipelineState.BUILDING:
            cmd = format_command(commands.cargo, self.builder.command_args(self.mode))
            return [f"{ForceBuildToken.ENV_VAR}=<token> {cmd}"]
        if state is PipelineState.EXPORTING:
            return [format_command(commands.cargo, self.exporter.command_args(self.mode))]
        if state is PipelineState.PACKAGING:
            return [f"{self.config.installer.tool} {self.config.installer.spec}"]
        return []

    def _required_tools(self):
        installer_tool = ""
        if PipelineState.PACKAGING not in self.skipped_stages:
            installer_tool = self.config.installer.tool
        return required_tools(self.config.commands.git, self.config.commands.cargo, installer_tool)

    # --- Stage handlers ---

    def _check_tooling(self, run: PipelineRun) -> StageResult:
        resolved = check_tools(self.runner, self._required_tools())
        return StageResult(PipelineState.CHECKING_TOOLING.value, StageStatus.SUCCESS, details=resolved)

    def _hide_artifacts(self, run: PipelineRun) -> StageResult:
        stage = PipelineState.HIDING_ARTIFACTS.value
        if not self.config.visibility.enabled:
            return StageResult(stage, StageStatus.SKIPPED, reason="disabled")

        outcome = self.visibility.apply(self.frontend.path, force=self.force_visibility)
        if not outcome.applied:
            return StageResult(stage, StageStatus.SKIPPED, reason=outcome.reason)
        return StageResult(stage, StageStatus.SUCCESS, details=outcome.to_dict())

    def _guard_worktrees(self, run: PipelineRun) -> StageResult:
        stage = PipelineState.GUARDING_WORKTREES.value
        repositories = self.guarded_repositories()
        if not repositories:
            return StageResult(stage, StageStatus.SKIPPED, reason="guard scope is none")

        for repository in repositories:
            self.guard.require_clean(repository)
        return StageResult(stage, StageStatus.SUCCESS, details={
            "checked": [repo.name for repo in repositories],
        })

    def _test_core(self, run: PipelineRun) -> StageResult:
        self.tests.require_pass(self.core)
        return StageResult(PipelineState.TESTING_CORE.value, StageStatus.SUCCESS)

    def _test_frontend(self, run: PipelineRun) -> StageResult:
        self.tests.require_pass(self.frontend)
        return StageResult(PipelineState.TESTING_FRONTEND.value, StageStatus.SUCCESS)

    def _build(self, run: PipelineRun) -> StageResult:
        self._build_outcome = self.builder.build(self.mode)
        run.artifacts["binary_dir"] = str(self._build_outcome.binary_dir)
        return StageResult(PipelineState.BUILDING.value, StageStatus.SUCCESS, details={
            "binary_dir": str(self._build_outcome.binary_dir),
            "force_build_token": self._build_outcome.token.value,
        })

    def _export(self, run: PipelineRun) -> StageResult:
        self._export_outcome = self.exporter.export(self.mode)
        if self._export_outcome.artifact_exists:
            run.artifacts["compile_info"] = str(self._export_outcome.artifact_path)
        return StageResult(PipelineState.EXPORTING.value, StageStatus.SUCCESS, details={
            "policy": self._export_outcome.policy.value,
            "compile_info": str(self._export_outcome.artifact_path),
        })

    def _package(self, run: PipelineRun) -> StageResult:
        outcome = self.packager.package(self.config.installer.spec, self._export_outcome)
        run.artifacts["installer"] = str(outcome.installer_path)
        return StageResult(PipelineState.PACKAGING.value, StageStatus.SUCCESS, details={
            "installer": str(outcome.installer_path),
        })

    # --- State machine ---

    def _transition(self, run: PipelineRun, state: PipelineState) -> None:
        run.state = state
        run.transitions.append(state.value)
        logger.debug(f"State -> {state.value}")

    def run(self) -> PipelineRun:
        """
        Run the pipeline once.

        Returns:
            PipelineRun ending in DONE or ABORTED
        """
        run = PipelineRun(
            run_id=f"release_{self.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}",
            variant=self.variant.value,
            mode=self.mode.value,
            started_at=self.now().isoformat(),
            dry_run=self.dry_run,
        )
        self._build_outcome = None
        self._export_outcome = None
        started = self.timer()

        logger.info(f"Starting pipeline: {run.run_id} ({self.variant.value}, {self.mode.value})")
        self._transition(run, PipelineState.INIT)

        for state in STAGE_ORDER:
            self._transition(run, state)
            stage_started = self.timer()

            if state in self.skipped_stages:
                result = StageResult(state.value, StageStatus.SKIPPED, reason=f"not part of {self.variant.value} variant")
            elif self.dry_run:
                for command in self.planned_commands(state):
                    logger.info(f"[DRY RUN] {state.value}: {command}")
                result = StageResult(state.value, StageStatus.SKIPPED, reason="dry run")
            else:
                logger.info(f"Running stage: {state.value}")
                try:
                    result = self._handlers[state](run)
                except PipelineError as e:
                    run.stages[state.value] = StageResult(
                        state.value,
                        StageStatus.FAILED,
                        reason=str(e),
                        duration_seconds=self.timer() - stage_started,
                        details={"error": type(e).__name__},
                    )
                    run.aborted_stage = state.value
                    run.error = f"{type(e).__name__}: {e}"
                    run.exit_code = int(e.exit_code)
                    self._transition(run, PipelineState.ABORTED)
                    logger.error(f"Pipeline aborted at {state.value}: {run.error}")
                    break

            result.duration_seconds = self.timer() - stage_started
            run.stages[state.value] = result
            if result.status is StageStatus.SKIPPED:
                logger.info(f"Skipped {state.value}: {result.reason}")
        else:
            self._transition(run, PipelineState.DONE)

        run.duration_seconds = self.timer() - started
        run.completed_at = self.now().isoformat()

        logger.info(
            f"Pipeline {run.run_id} finished: {run.state.value} "
            f"in {run.duration_seconds:.2f}s"
        )
        return run

    def publish(self, mode: BuildMode) -> PublishResult:
        """Build the workspace and copy the configured binaries to the publish directory."""
        check_tools(self.runner, [(self.config.commands.cargo, "builds")])
        outcome = self.builder.build(mode)
        publisher = Publisher(
            workspace=self.config.frontend_root,
            target_dir=outcome.binary_dir,
            publish_dir=self.config.publish.dir,
            binaries=self.config.publish.binaries,
            copies=self.config.publish.copies,
        )
        return publisher.publish()


def run_pipeline(
    config: PipelineConfig,
    variant: Variant = Variant.RELEASE,
    dry_run: bool = False,
) -> PipelineRun:
    """Run the release pipeline with real subprocesses."""
    orchestrator = PipelineOrchestrator(config, variant=variant, dry_run=dry_run)
    return orchestrator.run()


def print_summary(run: PipelineRun) -> None:
    print("\n" + "=" * 60)
    print("RELEASE SUMMARY")
    print("=" * 60)
    print(f"Run ID: {run.run_id}")
    print(f"Variant: {run.variant} ({run.mode})")
    if run.dry_run:
        print(f"State: {run.state.value.upper()} (DRY RUN, nothing was built)")
    else:
        print(f"State: {run.state.value.upper()}")
    print(f"Duration: {run.duration_seconds:.2f}s")

    if run.stages:
        print("\nStages:")
        for name, result in run.stages.items():
            reason = f" - {result.reason}" if result.reason else ""
            print(f"  {name}: {result.status.value} ({result.duration_seconds:.2f}s){reason}")

    if run.artifacts:
        print("\nArtifacts:")
        for name, path in run.artifacts.items():
            print(f"  {name}: {path}")

    if run.aborted_stage:
        print(f"\nAborted at {run.aborted_stage}: {run.error}")
        print(f"Exit code: {run.exit_code}")

    print("=" * 60)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Release Pipeline Orchestrator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "command",
        nargs="?",
        choices=["run", "publish"],
        default="run",
        help="run the release pipeline (default) or build and publish binaries",
    )

    parser.add_argument(
        "--variant",
        choices=[v.value for v in Variant],
        default=Variant.RELEASE.value,
        help="Pipeline variant (default: release)",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Config file path (default: ./{CONFIG_FILENAME})",
    )

    parser.add_argument(
        "--core",
        type=Path,
        help="Core library repository path (overrides config)",
    )

    parser.add_argument(
        "--guard-scope",
        choices=[s.value for s in GuardScope],
        help="Repositories that must be clean before building (overrides config)",
    )

    parser.add_argument(
        "--force-visibility",
        action="store_true",
        help="Run the visibility scan even inside the debounce window",
    )

    parser.add_argument(
        "--progress",
        action="store_true",
        help="Show progress bars for the visibility scan",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would run without executing",
    )

    parser.add_argument(
        "--list-stages",
        action="store_true",
        help="List the stages of the selected variant and exit",
    )

    parser.add_argument(
        "--report-file",
        type=Path,
        help="Write a JSON report of the run to this path",
    )

    parser.add_argument(
        "--release",
        action="store_true",
        help="publish: build in release mode (default: debug)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_config(args.config)
        if args.core:
            config = dataclasses.replace(config, core_root=args.core.resolve())
        if args.guard_scope:
            config = dataclasses.replace(config, guard_scope=GuardScope(args.guard_scope))
    except PipelineError as e:
        logger.error(f"Configuration error: {e}")
        return int(e.exit_code)

    orchestrator = PipelineOrchestrator(
        config,
        variant=Variant(args.variant),
        dry_run=args.dry_run,
        force_visibility=args.force_visibility,
        progress=args.progress,
    )

    if args.list_stages:
        print(f"\nPipeline Stages ({args.variant}):")
        print("=" * 60)
        for state in STAGE_ORDER:
            skipped = " [SKIPPED]" if state in orchestrator.skipped_stages else ""
            print(f"  {state.value}{skipped}")
            for command in orchestrator.planned_commands(state):
                print(f"    {command}")
        return 0

    try:
        if args.command == "publish":
            mode = BuildMode.RELEASE if args.release else BuildMode.DEBUG
            try:
                result = orchestrator.publish(mode)
            except PipelineError as e:
                logger.error(f"Publish failed: {e}")
                return int(e.exit_code)
            print(f"Published {result.copied_files} file(s) to {result.publish_dir}")
            return 0

        run = orchestrator.run()
    except KeyboardInterrupt:
        logger.error("Interrupted; stages already completed are left as they are")
        return int(ExitCode.INTERRUPTED)

    print_summary(run)

    if args.report_file:
        args.report_file.parent.mkdir(parents=True, exist_ok=True)
        args.report_file.write_text(json.dumps(run.to_dict(), indent=2))
        logger.info(f"Report written: {args.report_file}")

    return run.exit_code


if __name__ == "__main__":
    sys.exit(main())
