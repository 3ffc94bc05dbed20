"""Tests for release_pipeline.publish.publisher."""

import pytest

from release_pipeline.config import CopyEntry
from release_pipeline.errors import ExitCode, PublishFailure
from release_pipeline.publish.publisher import Publisher


@pytest.fixture
def build_tree(workspace):
    """A target directory holding two binaries and some build noise."""
    frontend, _ = workspace
    release = frontend / "target" / "release"
    (release / "deps").mkdir(parents=True)
    (release / "jv").write_bytes(b"jv-binary")
    (release / "deps" / "jvv").write_bytes(b"jvv-binary")
    (release / "deps" / "libfoo.rlib").write_bytes(b"noise")
    (frontend / "scripts" / "completion_jv.sh").write_text("complete -F _jv jv\n")
    return frontend, release


class TestPublisher:
    """Tests for Publisher.publish."""

    def test_copies_named_binaries(self, build_tree):
        """Configured binaries should be collected from anywhere under target."""
        frontend, release = build_tree
        publisher = Publisher(frontend, release, frontend / ".temp" / "deploy", ["jv", "jvv"])

        result = publisher.publish()

        bin_dir = frontend / ".temp" / "deploy" / "bin"
        assert sorted(p.name for p in bin_dir.iterdir()) == ["jv", "jvv"]
        assert (bin_dir / "jvv").read_bytes() == b"jvv-binary"
        assert result.missing == []
        assert result.copied_files == 2

    def test_publish_dir_recreated(self, build_tree):
        """Leftovers from an earlier publish should be removed."""
        frontend, release = build_tree
        publish_dir = frontend / ".temp" / "deploy"
        (publish_dir / "bin").mkdir(parents=True)
        (publish_dir / "bin" / "old-tool").write_text("stale")

        Publisher(frontend, release, publish_dir, ["jv"]).publish()

        assert not (publish_dir / "bin" / "old-tool").exists()

    def test_missing_binary_reported(self, build_tree):
        frontend, release = build_tree

        result = Publisher(frontend, release, frontend / "out", ["jv", "ghost"]).publish()

        assert result.missing == ["ghost"]
        assert [p.name for p in result.binaries] == ["jv"]

    def test_extra_copies_filtered_by_platform(self, build_tree):
        """Extra files apply only on their listed platforms."""
        frontend, release = build_tree
        copies = [
            CopyEntry("scripts/completion_jv.sh", "completions/completion_jv.sh", ("linux",)),
            CopyEntry("scripts/completion_jv.sh", "windows/completion_jv.sh", ("windows",)),
        ]
        publish_dir = frontend / "out"

        result = Publisher(frontend, release, publish_dir, ["jv"], copies, platform="linux").publish()

        assert (publish_dir / "completions" / "completion_jv.sh").exists()
        assert not (publish_dir / "windows").exists()
        assert len(result.extras) == 1

    def test_missing_extra_is_not_fatal(self, build_tree):
        frontend, release = build_tree
        copies = [CopyEntry("scripts/missing.ps1", "missing.ps1")]

        result = Publisher(frontend, release, frontend / "out", ["jv"], copies, platform="linux").publish()

        assert result.missing == ["scripts/missing.ps1"]
        assert result.copied_files == 1

    def test_duplicate_names_take_shallowest(self, build_tree):
        """A binary name found at several depths should be copied once, from the top."""
        frontend, release = build_tree
        (release / "deps" / "jv").write_bytes(b"intermediate")

        result = Publisher(frontend, release, frontend / "out", ["jv"]).publish()

        assert [p.name for p in result.binaries] == ["jv"]
        assert (frontend / "out" / "bin" / "jv").read_bytes() == b"jv-binary"

    def test_filesystem_errors_raise_publish_failure(self, build_tree):
        frontend, release = build_tree
        publish_dir = frontend / "out"
        publish_dir.write_text("a file where the publish directory should be")

        with pytest.raises(PublishFailure) as exc_info:
            Publisher(frontend, release, publish_dir, ["jv"]).publish()

        assert exc_info.value.exit_code == ExitCode.PUBLISH_FAILURE
