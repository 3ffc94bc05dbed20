"""
Release Pipeline Module

Provides the sequential release orchestration:
- Tooling, worktree and test gates
- Forced workspace build
- Compile-info export
- Installer packaging
"""

from release_pipeline.pipeline.orchestrator import (
    PipelineOrchestrator,
    PipelineRun,
    PipelineState,
    Variant,
    run_pipeline,
)

__all__ = [
    "PipelineOrchestrator",
    "PipelineRun",
    "PipelineState",
    "Variant",
    "run_pipeline",
]
