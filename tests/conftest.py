"""Shared pytest fixtures for release pipeline tests.

Provides a recording fake command runner, an in-memory hidden-attribute
backend, a controllable clock and a temporary frontend/core workspace, so
pipeline sequencing can be tested without spawning real tools.
"""

import copy
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

import pytest

from release_pipeline.config import DEFAULT_CONFIG, build_config
from release_pipeline.lib.process import CommandResult

COMPILE_INFO_TEMPLATE = """pub struct CompileInfo;
pub const DATE: &str = "{date}";
pub const TARGET: &str = "{target}";
pub const PLATFORM: &str = "{platform}";
pub const TOOLCHAIN: &str = "{toolchain}";
pub const VERSION: &str = "{version}";
pub const BRANCH: &str = "{branch}";
pub const COMMIT: &str = "{commit}";
"""

CARGO_TOML = """[package]
name = "jv_cli"
authors = ["Weicao-CatilGrass"]
homepage = "https://example.org/jv"

[workspace.package]
version = "0.1.7"
"""


@dataclass
class Call:
    command: str
    args: Tuple[str, ...]
    cwd: Path
    env: Optional[Dict[str, str]]
    timeout: Optional[int]

    @property
    def line(self) -> str:
        return " ".join((self.command,) + self.args)


@dataclass
class Rule:
    command: str
    prefix: Tuple[str, ...]
    result: CommandResult
    cwd: Optional[Path] = None
    effect: Optional[Callable[["Call"], None]] = None

    def matches(self, call: Call) -> bool:
        if call.command != self.command or call.args[: len(self.prefix)] != self.prefix:
            return False
        return self.cwd is None or Path(call.cwd) == self.cwd


class FakeRunner:
    """Records every command and answers from registered rules (default: success).

    A rule effect may return a CommandResult to answer from live filesystem state.
    """

    def __init__(self, installed: Sequence[str] = ("git", "cargo", "iscc", "rustc")):
        self.calls: List[Call] = []
        self.rules: List[Rule] = []
        self.installed: Set[str] = set(installed)
        self.on("rustc", "--version", stdout="rustc 1.80.0 (051478957 2024-07-21)\n")
        self.on("rustc", "-vV", stdout="rustc 1.80.0\nhost: x86_64-unknown-linux-gnu\n")
        self.on("git", "branch", "--show-current", stdout="main\n")
        self.on("git", "rev-parse", "HEAD", stdout="0123456789abcdef\n")

    def on(self, command: str, *prefix: str, exit_code: int = 0, stdout: str = "",
           stderr: str = "", cwd: Optional[Path] = None, effect=None) -> None:
        self.rules.append(Rule(command, tuple(prefix), CommandResult(exit_code, stdout, stderr), cwd, effect))

    def run(self, command, args, cwd, env=None, timeout=None):
        call = Call(command, tuple(args), Path(cwd), env, timeout)
        self.calls.append(call)
        for rule in reversed(self.rules):
            if rule.matches(call):
                if rule.effect is not None:
                    produced = rule.effect(call)
                    if isinstance(produced, CommandResult):
                        return produced
                return rule.result
        return CommandResult(0, "", "")

    def which(self, tool):
        return f"/usr/bin/{tool}" if tool in self.installed else None

    def lines(self) -> List[str]:
        return [call.line for call in self.calls]

    def find(self, command: str, *prefix: str) -> List[Call]:
        return [c for c in self.calls if c.command == command and c.args[: len(prefix)] == prefix]


class MemoryAttributes:
    """Hidden bits kept in a dict; paths in `failing` raise on write."""

    def __init__(self):
        self.hidden: Dict[Path, bool] = {}
        self.failing: Set[Path] = set()

    def is_hidden(self, path):
        return self.hidden.get(Path(path), False)

    def set_hidden(self, path, hidden):
        path = Path(path)
        if path in self.failing:
            raise PermissionError(f"access denied: {path}")
        self.hidden[path] = hidden

    def hidden_paths(self) -> Set[Path]:
        return {p for p, h in self.hidden.items() if h}


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def attributes():
    return MemoryAttributes()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def workspace(tmp_path):
    """Create a frontend tree and a core library tree side by side.

    Yields:
        tuple: (frontend_root, core_root)
    """
    root = tmp_path.resolve()
    frontend = root / "CommandLine"
    core = root / "VersionControl"

    (frontend / "templates").mkdir(parents=True)
    (frontend / "src" / "data").mkdir(parents=True)
    (frontend / "scripts" / "setup" / "windows").mkdir(parents=True)
    (frontend / "Cargo.toml").write_text(CARGO_TOML)
    (frontend / "templates" / "compile_info.rs.template").write_text(COMPILE_INFO_TEMPLATE)
    (frontend / "scripts" / "setup" / "windows" / "setup_jv_cli.iss").write_text("; installer\n")
    (frontend / "src" / "main.rs").write_text("fn main() {}\n")

    core.mkdir()
    (core / "Cargo.toml").write_text("[workspace]\n")

    yield frontend, core


def make_config(frontend: Path, core: Path, **overrides):
    """Build a PipelineConfig for the temporary workspace."""
    data = copy.deepcopy(DEFAULT_CONFIG)
    data["repositories"]["core"] = str(core)
    data["visibility"]["marker"] = str(frontend.parent / "state" / "last_visibility_check")
    data["installer"]["script_template"] = None
    for dotted, value in overrides.items():
        section, key = dotted.split("__")
        data[section][key] = value
    return build_config(data, frontend)


@pytest.fixture
def config(workspace):
    frontend, core = workspace
    return make_config(frontend, core)


@pytest.fixture
def config_factory(workspace):
    """Build configs for the temporary workspace with section__key overrides."""
    frontend, core = workspace

    def factory(**overrides):
        return make_config(frontend, core, **overrides)

    return factory
