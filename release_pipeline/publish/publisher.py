"""
Binary publisher.

Collects the configured binaries from the build target directory into a
freshly recreated publish directory under bin/, taking the shallowest file
when a name occurs more than once. Then copies any extra files listed in
the publish config. Extra files can be limited to specific
platforms; a missing extra file is reported but does not fail the publish.

Usage:
    python -m release_pipeline.pipeline.orchestrator publish --release
"""

from __future__ import annotations

import logging
import shutil
import sys
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Sequence

from release_pipeline.config import CopyEntry
from release_pipeline.errors import PublishFailure

logger = logging.getLogger(__name__)

# Platform names as written in publish config entries
PLATFORM_NAMES = {
    "win32": "windows",
    "darwin": "macos",
    "linux": "linux",
}


def current_platform() -> str:
    return PLATFORM_NAMES.get(sys.platform, sys.platform)


@dataclass
class PublishResult:
    publish_dir: Path
    binaries: List[Path] = field(default_factory=list)
    extras: List[Path] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def copied_files(self) -> int:
        return len(self.binaries) + len(self.extras)


class Publisher:
    def __init__(
        self,
        workspace: Path,
        target_dir: Path,
        publish_dir: Path,
        binaries: Sequence[str],
        copies: Sequence[CopyEntry] = (),
        platform: str = "",
    ):
        self.workspace = workspace
        self.target_dir = target_dir
        self.publish_dir = publish_dir
        self.binaries = set(binaries)
        self.copies = list(copies)
        self.platform = platform or current_platform()

    def _reset_publish_dir(self) -> Path:
        if self.publish_dir.exists():
            shutil.rmtree(self.publish_dir)
        bin_dir = self.publish_dir / "bin"
        bin_dir.mkdir(parents=True, exist_ok=True)
        return bin_dir

    def _copy_binaries(self, bin_dir: Path, result: PublishResult) -> None:
        # Shallowest match per name wins
        copied: Dict[str, Path] = {}
        queue = deque([self.target_dir])
        while queue:
            current = queue.popleft()
            try:
                entries = sorted(current.iterdir())
            except OSError:
                continue

            for path in entries:
                if path.is_dir():
                    queue.append(path)
                    continue
                if path.name in self.binaries:
                    if path.name in copied:
                        logger.debug(f"Skipping `{path.name}` at {path}, already taken from {copied[path.name]}")
                        continue
                    dest = bin_dir / path.name
                    logger.info(f"Binary `{path.name}` ({path})")
                    shutil.copy2(path, dest)
                    result.binaries.append(dest)
                    copied[path.name] = path

        for name in sorted(self.binaries - set(copied)):
            logger.warning(f"Binary `{name}` not found under {self.target_dir}")
            result.missing.append(name)

    def _copy_extras(self, result: PublishResult) -> None:
        for entry in self.copies:
            if entry.platforms and self.platform not in entry.platforms:
                continue

            source = self.workspace / entry.source
            dest = self.publish_dir / entry.dest
            if not source.exists():
                logger.warning(f"`{entry.source}` (file not found)")
                result.missing.append(entry.source)
                continue

            dest.parent.mkdir(parents=True, exist_ok=True)
            logger.info(f"Other `{entry.source}` -> `{entry.dest}` ({source})")
            shutil.copy2(source, dest)
            result.extras.append(dest)

    def publish(self) -> PublishResult:
        start = time.monotonic()
        result = PublishResult(self.publish_dir)

        try:
            bin_dir = self._reset_publish_dir()
            self._copy_binaries(bin_dir, result)
            self._copy_extras(result)
        except OSError as e:
            raise PublishFailure(f"Publishing to {self.publish_dir} failed: {e}") from e

        result.duration_seconds = time.monotonic() - start
        noun = "file" if result.copied_files == 1 else "files"
        logger.info(f"Finished publish {result.copied_files} {noun} in {result.duration_seconds:.1f}s")
        return result
