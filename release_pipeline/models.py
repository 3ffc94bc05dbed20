"""
Core data types shared by the pipeline stages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict


class RepositoryRole(Enum):
    CORE = "core"
    FRONTEND = "frontend"


class BuildMode(Enum):
    DEBUG = "debug"
    RELEASE = "release"


@dataclass(frozen=True)
class Repository:
    """A source tree taking part in the release."""
    path: Path
    role: RepositoryRole

    @property
    def name(self) -> str:
        return self.role.value


class StageStatus(Enum):
    """Status of a pipeline stage."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StageResult:
    """Result of a single pipeline stage."""
    stage: str
    status: StageStatus
    reason: str = ""
    duration_seconds: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "status": self.status.value,
            "duration": round(self.duration_seconds, 3),
        }
        if self.reason:
            data["reason"] = self.reason
        if self.details:
            data["details"] = self.details
        return data


@dataclass(frozen=True)
class ForceBuildToken:
    """Opaque value handed to the build so metadata generation always reruns."""
    value: str

    ENV_VAR = "FORCE_BUILD"

    def as_env(self) -> Dict[str, str]:
        return {self.ENV_VAR: self.value}

