"""Tests for release_pipeline.metadata."""

from datetime import datetime

import pytest

from release_pipeline.errors import PackagingFailure
from release_pipeline.metadata.compile_info import (
    MetadataCollector,
    get_platform,
    render_template,
    toolchain_channel,
)
from release_pipeline.metadata.installer_script import generate_installer_script
from release_pipeline.metadata.manifest import UNKNOWN, get_author, get_site, get_version, load_manifest


class TestManifest:
    """Tests for Cargo.toml reading."""

    def test_workspace_version_preferred(self):
        manifest = {"package": {"version": "1.0.0"}, "workspace": {"package": {"version": "2.0.0"}}}

        assert get_version(manifest) == "2.0.0"

    def test_package_version_fallback(self):
        assert get_version({"package": {"version": "1.0.0"}}) == "1.0.0"

    def test_missing_version_is_unknown(self):
        assert get_version({}) == UNKNOWN

    def test_author_and_site(self, workspace):
        frontend, _ = workspace
        manifest = load_manifest(frontend / "Cargo.toml")

        assert get_author(manifest) == "Weicao-CatilGrass"
        assert get_site(manifest) == "https://example.org/jv"

    def test_missing_or_malformed_manifest(self, tmp_path):
        bad = tmp_path / "Cargo.toml"
        bad.write_text("[package\nname = ")

        assert load_manifest(tmp_path / "missing.toml") == {}
        assert load_manifest(bad) == {}


class TestCompileInfo:
    """Tests for compile-info metadata collection."""

    @pytest.mark.parametrize("target,platform", [
        ("x86_64-pc-windows-msvc", "Windows"),
        ("x86_64-unknown-linux-gnu", "Linux"),
        ("aarch64-apple-darwin", "macOS"),
        ("wasm32-unknown-unknown", "Unknown"),
    ])
    def test_platform_from_target(self, target, platform):
        assert get_platform(target) == platform

    def test_toolchain_channel(self):
        assert toolchain_channel("rustc 1.82.0-nightly (abc 2024-08-01)") == "nightly"
        assert toolchain_channel("rustc 1.81.0-beta.3") == "beta"
        assert toolchain_channel("rustc 1.80.0 (051478957 2024-07-21)") == "stable"

    def test_render_leaves_unknown_placeholders(self):
        assert render_template("{version} {other}", {"{version}": "1.2"}) == "1.2 {other}"

    def test_collect(self, runner, workspace):
        frontend, _ = workspace
        collector = MetadataCollector(runner, frontend, now=lambda: datetime(2025, 1, 2, 3, 4, 5))

        metadata = collector.collect()

        assert metadata.date == "2025-01-02 03:04:05"
        assert metadata.target == "x86_64-unknown-linux-gnu"
        assert metadata.platform == "Linux"
        assert metadata.version == "0.1.7"
        assert metadata.branch == "main"
        assert metadata.commit == "0123456789abcdef"

    def test_detached_head_branch(self, runner, workspace):
        """With no current branch, the abbreviated HEAD ref is used."""
        frontend, _ = workspace
        runner.on("git", "branch", "--show-current", stdout="\n")
        runner.on("git", "rev-parse", "--abbrev-ref", "HEAD", stdout="HEAD\n")

        assert MetadataCollector(runner, frontend).branch() == "HEAD"

    def test_unavailable_tools_render_unknown(self, runner, workspace, monkeypatch):
        frontend, _ = workspace
        monkeypatch.delenv("TARGET", raising=False)
        runner.on("rustc", exit_code=127)
        runner.on("git", exit_code=128)

        metadata = MetadataCollector(runner, frontend).collect()

        assert metadata.target == UNKNOWN
        assert metadata.platform == "Unknown"
        assert metadata.branch == UNKNOWN
        assert metadata.commit == UNKNOWN


class TestInstallerScript:
    """Tests for generate_installer_script."""

    def test_missing_template(self, workspace):
        frontend, _ = workspace

        with pytest.raises(PackagingFailure, match="template not found"):
            generate_installer_script(frontend / "nope.template", frontend / "out.iss", frontend / "Cargo.toml")

    def test_missing_author(self, workspace):
        frontend, _ = workspace
        template = frontend / "setup.template"
        template.write_text("<<<AUTHOR>>>")
        manifest = frontend / "Other.toml"
        manifest.write_text('[package]\nhomepage = "https://example.org"\n')

        with pytest.raises(PackagingFailure, match="Author not found"):
            generate_installer_script(template, frontend / "out.iss", manifest)

    def test_undecodable_template(self, workspace):
        frontend, _ = workspace
        template = frontend / "setup.template"
        template.write_bytes(b"#define MyAppPublisher \"\xff<<<AUTHOR>>>\"\n")

        with pytest.raises(PackagingFailure, match="Cannot read installer script template"):
            generate_installer_script(template, frontend / "out.iss", frontend / "Cargo.toml")
