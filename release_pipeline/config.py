"""
Configuration loader for the release pipeline.

Supports loading from:
1. YAML config file (release.config.yaml at the frontend root)
2. Environment variables (.env.local next to the config, or the shell)

Environment variables take precedence over the file. Variable aliases are
checked in order:
- Core library path: RELEASE_CORE_PATH, CORE_LIB_PATH
- Guard scope: RELEASE_GUARD_SCOPE
- Visibility debounce threshold: RELEASE_VISIBILITY_THRESHOLD_SEC
- Installer compiler: RELEASE_INSTALLER_TOOL, ISCC

Usage:
    from release_pipeline.config import load_config

    config = load_config(Path("release.config.yaml"))
    print(config.core_root, config.guard_scope)
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from release_pipeline.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "release.config.yaml"
ENV_FILENAME = ".env.local"

# Order matters: first valid value found wins
ENV_VAR_ALIASES = {
    "core_path": [
        "RELEASE_CORE_PATH",  # Primary (canonical name)
        "CORE_LIB_PATH",
    ],
    "guard_scope": [
        "RELEASE_GUARD_SCOPE",
    ],
    "visibility_threshold": [
        "RELEASE_VISIBILITY_THRESHOLD_SEC",
    ],
    "installer_tool": [
        "RELEASE_INSTALLER_TOOL",
        "ISCC",
    ],
}

DEFAULT_CONFIG: Dict[str, Any] = {
    "repositories": {
        "frontend": ".",
        "core": "../VersionControl",
    },
    "guard": {
        "scope": "both",
    },
    "commands": {
        "git": "git",
        "cargo": "cargo",
        "target_dir": "target",
        "exporter_manifest": "tools/build_helper/Cargo.toml",
        "exporter_bin": "exporter",
        "test_timeout": 3600,
        "build_timeout": 3600,
        "export_timeout": 600,
        "package_timeout": 1800,
    },
    "visibility": {
        "enabled": True,
        "threshold_seconds": 600,
        "marker": "target/.release_pipeline/last_visibility_check",
        "exclude": [".git", "target"],
    },
    "compile_info": {
        "template": "templates/compile_info.rs.template",
        "output": "src/data/compile_info.rs",
    },
    "installer": {
        "tool": "iscc",
        "spec": "scripts/setup/windows/setup_jv_cli.iss",
        "script_template": "templates/setup_jv_cli.iss.template",
        "output": ".temp/installer/jv_cli_setup.exe",
    },
    "publish": {
        "dir": ".temp/deploy",
        "binaries": [],
        "copies": [],
    },
}


class GuardScope(Enum):
    """Which repositories must have a clean worktree before building."""
    BOTH = "both"
    FRONTEND = "frontend"
    NONE = "none"


@dataclass(frozen=True)
class CommandsConfig:
    git: str = "git"
    cargo: str = "cargo"
    target_dir: str = "target"
    exporter_manifest: str = "tools/build_helper/Cargo.toml"
    exporter_bin: str = "exporter"
    test_timeout: int = 3600
    build_timeout: int = 3600
    export_timeout: int = 600
    package_timeout: int = 1800


@dataclass(frozen=True)
class VisibilityConfig:
    enabled: bool = True
    threshold_seconds: float = 600.0
    marker: Path = Path("target/.release_pipeline/last_visibility_check")
    exclude: Tuple[str, ...] = (".git", "target")


@dataclass(frozen=True)
class CompileInfoConfig:
    template: Path
    output: Path


@dataclass(frozen=True)
class InstallerConfig:
    tool: str
    spec: Path
    output: Path
    script_template: Optional[Path] = None


@dataclass(frozen=True)
class CopyEntry:
    """An extra file copied into the publish directory."""
    source: str
    dest: str
    platforms: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PublishConfig:
    dir: Path
    binaries: Tuple[str, ...] = ()
    copies: Tuple[CopyEntry, ...] = ()


@dataclass(frozen=True)
class PipelineConfig:
    """Fully resolved pipeline configuration. All paths are absolute."""
    frontend_root: Path
    core_root: Path
    guard_scope: GuardScope
    commands: CommandsConfig
    visibility: VisibilityConfig
    compile_info: CompileInfoConfig
    installer: InstallerConfig
    publish: PublishConfig
    source: Optional[Path] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def target_dir(self) -> Path:
        return self.frontend_root / self.commands.target_dir


def load_env_file(env_file: Path) -> None:
    """Load environment variables from a .env-style file if it exists."""
    if not env_file.exists():
        return

    with open(env_file, "r") as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()
                # Remove quotes if present
                if value.startswith('"') and value.endswith('"'):
                    value = value[1:-1]
                elif value.startswith("'") and value.endswith("'"):
                    value = value[1:-1]
                os.environ.setdefault(key, value)


def is_blank(value: Optional[str]) -> bool:
    return not value or not value.strip()


def get_env_with_aliases(alias_key: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Get an environment variable value, checking multiple aliases.
    Returns (value, var_name) tuple or (None, None) if not found.
    """
    for var_name in ENV_VAR_ALIASES.get(alias_key, []):
        value = os.getenv(var_name)
        if not is_blank(value):
            return value, var_name
    return None, None


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_config_file(config_path: Path) -> Dict[str, Any]:
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping at the top level")
    return data


def _apply_env_overrides(data: Dict[str, Any]) -> None:
    core_path, var = get_env_with_aliases("core_path")
    if core_path:
        logger.debug(f"Core library path from {var}")
        data["repositories"]["core"] = core_path

    scope, _ = get_env_with_aliases("guard_scope")
    if scope:
        data["guard"]["scope"] = scope

    threshold, var = get_env_with_aliases("visibility_threshold")
    if threshold:
        try:
            data["visibility"]["threshold_seconds"] = float(threshold)
        except ValueError:
            raise ConfigError(f"{var} must be a number of seconds, got {threshold!r}")

    tool, _ = get_env_with_aliases("installer_tool")
    if tool:
        data["installer"]["tool"] = tool


def _resolve(root: Path, value: str) -> Path:
    path = Path(os.path.expanduser(str(value)))
    if not path.is_absolute():
        path = root / path
    return path.resolve()


def _as_int(section: str, key: str, value: Any) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{section}.{key} must be an integer, got {value!r}")
    if result <= 0:
        raise ConfigError(f"{section}.{key} must be positive, got {result}")
    return result


def _parse_copies(entries: Any) -> Tuple[CopyEntry, ...]:
    if isinstance(entries, dict):
        # Named tables, e.g. {completion: {from: ..., to: ...}}
        entries = list(entries.values())
    if not isinstance(entries, list):
        raise ConfigError("publish.copies must be a list or mapping of {from, to} entries")

    copies: List[CopyEntry] = []
    for entry in entries:
        if not isinstance(entry, dict) or "from" not in entry:
            raise ConfigError(f"publish.copies entry is missing 'from': {entry!r}")
        platforms = entry.get("platforms", entry.get("platform", [])) or []
        copies.append(CopyEntry(
            source=str(entry["from"]),
            dest=str(entry.get("to", "")),
            platforms=tuple(str(p) for p in platforms),
        ))
    return tuple(copies)


def build_config(
    data: Dict[str, Any],
    base_dir: Path,
    source: Optional[Path] = None,
) -> PipelineConfig:
    """Turn a raw (already merged) config mapping into a PipelineConfig."""
    repos = data["repositories"]
    frontend_root = _resolve(base_dir, repos.get("frontend", "."))
    core_root = _resolve(frontend_root, repos["core"])

    scope_value = str(data["guard"].get("scope", "both")).lower()
    try:
        guard_scope = GuardScope(scope_value)
    except ValueError:
        valid = ", ".join(s.value for s in GuardScope)
        raise ConfigError(f"guard.scope must be one of {valid}, got {scope_value!r}")

    cmd = data["commands"]
    commands = CommandsConfig(
        git=str(cmd["git"]),
        cargo=str(cmd["cargo"]),
        target_dir=str(cmd["target_dir"]),
        exporter_manifest=str(cmd["exporter_manifest"]),
        exporter_bin=str(cmd["exporter_bin"]),
        test_timeout=_as_int("commands", "test_timeout", cmd["test_timeout"]),
        build_timeout=_as_int("commands", "build_timeout", cmd["build_timeout"]),
        export_timeout=_as_int("commands", "export_timeout", cmd["export_timeout"]),
        package_timeout=_as_int("commands", "package_timeout", cmd["package_timeout"]),
    )

    vis = data["visibility"]
    try:
        threshold = float(vis["threshold_seconds"])
    except (TypeError, ValueError):
        raise ConfigError(f"visibility.threshold_seconds must be a number, got {vis['threshold_seconds']!r}")
    if threshold < 0:
        raise ConfigError("visibility.threshold_seconds cannot be negative")
    visibility = VisibilityConfig(
        enabled=bool(vis["enabled"]),
        threshold_seconds=threshold,
        marker=_resolve(frontend_root, vis["marker"]),
        exclude=tuple(str(name) for name in vis.get("exclude") or ()),
    )

    info = data["compile_info"]
    compile_info = CompileInfoConfig(
        template=_resolve(frontend_root, info["template"]),
        output=_resolve(frontend_root, info["output"]),
    )

    inst = data["installer"]
    script_template = inst.get("script_template")
    installer = InstallerConfig(
        tool=str(inst["tool"]),
        spec=_resolve(frontend_root, inst["spec"]),
        output=_resolve(frontend_root, inst["output"]),
        script_template=_resolve(frontend_root, script_template) if script_template else None,
    )

    pub = data["publish"]
    publish = PublishConfig(
        dir=_resolve(frontend_root, pub["dir"]),
        binaries=tuple(str(b) for b in pub.get("binaries") or ()),
        copies=_parse_copies(pub.get("copies") or []),
    )

    return PipelineConfig(
        frontend_root=frontend_root,
        core_root=core_root,
        guard_scope=guard_scope,
        commands=commands,
        visibility=visibility,
        compile_info=compile_info,
        installer=installer,
        publish=publish,
        source=source,
        raw=data,
    )


def load_config(
    config_path: Optional[Path] = None,
    frontend_root: Optional[Path] = None,
) -> PipelineConfig:
    """
    Load the pipeline configuration.

    The config file defaults to release.config.yaml in the frontend root (or
    the current directory). A missing file is not an error: the built-in
    defaults are used.
    """
    base_dir = Path(frontend_root) if frontend_root else Path.cwd()
    if config_path is None:
        config_path = base_dir / CONFIG_FILENAME
    else:
        config_path = Path(config_path)
        if frontend_root is None:
            base_dir = config_path.resolve().parent

    load_env_file(config_path.parent / ENV_FILENAME)

    if not config_path.exists():
        logger.warning(f"Config not found: {config_path}, using defaults")
        data = copy.deepcopy(DEFAULT_CONFIG)
        source = None
    else:
        data = _deep_merge(DEFAULT_CONFIG, _read_config_file(config_path))
        source = config_path

    _apply_env_overrides(data)
    return build_config(data, base_dir, source=source)
