"""
Visibility manager.

Marks development artifacts (dotfiles and paths ignored by git) as hidden so
packaging steps do not pick them up. The full scan is expensive, so it is
debounced through a timestamp marker file: if the last scan is younger than
the threshold, nothing on disk is touched.

Scan algorithm:
1. Walk the tree, skipping always-visible infrastructure directories
2. Clear the hidden attribute on every path that currently has it
3. Set it on dotfiles and on paths git reports as ignored
4. Record the scan time in the marker

Running the scan twice with no filesystem changes in between gives the same
attribute state. Failures on individual paths are logged and skipped.
"""

from __future__ import annotations

import errno
import logging
import os
import stat
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Set

from tqdm import tqdm

from release_pipeline.lib.process import CommandRunner

logger = logging.getLogger(__name__)

DOTFILE_PREFIX = "."
HIDDEN_XATTR = "user.hidden"


class AttributeBackend(Protocol):
    def is_hidden(self, path: Path) -> bool:
        ...

    def set_hidden(self, path: Path, hidden: bool) -> None:
        ...


class WindowsAttributeBackend:
    """FILE_ATTRIBUTE_HIDDEN, changed through the attrib tool."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def is_hidden(self, path: Path) -> bool:
        attributes = getattr(os.stat(path, follow_symlinks=False), "st_file_attributes", 0)
        return bool(attributes & stat.FILE_ATTRIBUTE_HIDDEN)

    def set_hidden(self, path: Path, hidden: bool) -> None:
        flag = "+h" if hidden else "-h"
        result = self.runner.run("attrib", [flag, str(path)], cwd=path.parent)
        if not result.ok:
            raise OSError(f"attrib {flag} failed ({result.exit_code}): {result.stderr.strip()}")


class DarwinAttributeBackend:
    """The UF_HIDDEN file flag."""

    def is_hidden(self, path: Path) -> bool:
        flags = getattr(os.stat(path, follow_symlinks=False), "st_flags", 0)
        return bool(flags & stat.UF_HIDDEN)

    def set_hidden(self, path: Path, hidden: bool) -> None:
        flags = getattr(os.stat(path, follow_symlinks=False), "st_flags", 0)
        flags = flags | stat.UF_HIDDEN if hidden else flags & ~stat.UF_HIDDEN
        os.chflags(path, flags, follow_symlinks=False)


class XattrAttributeBackend:
    """A user.hidden extended attribute, for filesystems without a hidden flag."""

    def is_hidden(self, path: Path) -> bool:
        try:
            return os.getxattr(path, HIDDEN_XATTR, follow_symlinks=False) == b"1"
        except OSError as e:
            if e.errno in (errno.ENODATA, errno.ENOTSUP, errno.EPERM):
                return False
            raise

    def set_hidden(self, path: Path, hidden: bool) -> None:
        if hidden:
            os.setxattr(path, HIDDEN_XATTR, b"1", follow_symlinks=False)
            return
        try:
            os.removexattr(path, HIDDEN_XATTR, follow_symlinks=False)
        except OSError as e:
            if e.errno != errno.ENODATA:
                raise


def default_backend(runner: CommandRunner) -> AttributeBackend:
    if sys.platform == "win32":
        return WindowsAttributeBackend(runner)
    if sys.platform == "darwin":
        return DarwinAttributeBackend()
    return XattrAttributeBackend()


@dataclass
class VisibilityOutcome:
    applied: bool
    reason: str = ""
    scanned: int = 0
    cleared: int = 0
    hidden: int = 0
    failures: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "applied": self.applied,
            "reason": self.reason,
            "scanned": self.scanned,
            "cleared": self.cleared,
            "hidden": self.hidden,
            "failures": len(self.failures),
        }


def read_marker(marker: Path) -> Optional[float]:
    """Return the last check time, or None if the marker is absent or unreadable."""
    try:
        return float(marker.read_text().strip())
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable visibility marker {marker}: {e}")
        return None


class VisibilityManager:
    def __init__(
        self,
        backend: AttributeBackend,
        runner: CommandRunner,
        marker: Path,
        threshold_seconds: float = 600.0,
        exclude: Sequence[str] = (".git", "target"),
        clock: Callable[[], float] = time.time,
        git: str = "git",
        progress: bool = False,
    ):
        self.backend = backend
        self.runner = runner
        self.marker = marker
        self.threshold_seconds = threshold_seconds
        self.exclude = set(exclude)
        self.clock = clock
        self.git = git
        self.progress = progress

    def is_debounced(self, now: float) -> bool:
        if self.threshold_seconds <= 0:
            return False
        last = read_marker(self.marker)
        if last is None:
            return False
        return now - last < self.threshold_seconds

    def walk(self, root: Path) -> List[Path]:
        """All paths under root, minus excluded directories, in sorted order."""
        # The marker and its directories are bookkeeping, not scan targets
        internal = {self.marker, *self.marker.parents}
        paths: List[Path] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d not in self.exclude)
            base = Path(dirpath)
            paths.extend(base / d for d in dirnames)
            paths.extend(base / f for f in sorted(filenames))
        return sorted(p for p in paths if p not in internal)

    def ignored_paths(self, root: Path) -> Set[Path]:
        """Paths git reports as ignored. Empty if root is not a git worktree."""
        result = self.runner.run(
            self.git,
            ["ls-files", "--others", "--ignored", "--exclude-standard", "--directory"],
            cwd=root,
        )
        if not result.ok:
            logger.warning(
                f"Could not list ignored paths in {root} (exit {result.exit_code}); "
                "hiding dotfiles only"
            )
            return set()

        ignored = set()
        for line in result.stdout.splitlines():
            rel = line.strip().rstrip("/")
            if not rel:
                continue
            if self.exclude.intersection(Path(rel).parts):
                continue
            ignored.add(root / rel)
        return ignored

    def _set(self, path: Path, hidden: bool, outcome: VisibilityOutcome) -> bool:
        try:
            self.backend.set_hidden(path, hidden)
            return True
        except OSError as e:
            action = "hide" if hidden else "unhide"
            logger.warning(f"Could not {action} {path}: {e}")
            outcome.failures.append(str(path))
            return False

    def _iter(self, paths: Iterable[Path], desc: str, total: int) -> Iterable[Path]:
        return tqdm(paths, desc=desc, unit="path", total=total, disable=not self.progress)

    def apply(self, root: Path, force: bool = False) -> VisibilityOutcome:
        now = self.clock()
        if not force and self.is_debounced(now):
            logger.info("Visibility scan skipped: last check is within the debounce window")
            return VisibilityOutcome(applied=False, reason="debounced")

        root = Path(root)
        paths = self.walk(root)
        outcome = VisibilityOutcome(applied=True, scanned=len(paths))

        # Undo drift from earlier runs
        for path in self._iter(paths, "Clearing", len(paths)):
            try:
                hidden = self.backend.is_hidden(path)
            except OSError as e:
                logger.warning(f"Could not read attributes of {path}: {e}")
                outcome.failures.append(str(path))
                continue
            if hidden and self._set(path, False, outcome):
                outcome.cleared += 1

        targets = {p for p in paths if p.name.startswith(DOTFILE_PREFIX)}
        targets |= {p for p in self.ignored_paths(root) if p.exists() or p.is_symlink()}

        for path in self._iter(sorted(targets), "Hiding", len(targets)):
            if self._set(path, True, outcome):
                outcome.hidden += 1

        self._write_marker(now)

        logger.info(
            f"Visibility scan: {outcome.scanned} paths, {outcome.cleared} cleared, "
            f"{outcome.hidden} hidden, {len(outcome.failures)} failed"
        )
        return outcome

    def _write_marker(self, now: float) -> None:
        try:
            self.marker.parent.mkdir(parents=True, exist_ok=True)
            self.marker.write_text(f"{now:.3f}\n")
        except OSError as e:
            logger.warning(f"Could not update visibility marker {self.marker}: {e}")
