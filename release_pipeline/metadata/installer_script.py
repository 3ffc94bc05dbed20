"""
Installer script generation.

The installer compiler is driven by a script rendered from a template with
the package author, version and homepage taken from Cargo.toml.
"""

from __future__ import annotations

import logging
from pathlib import Path

from release_pipeline.errors import PackagingFailure
from release_pipeline.lib.fsutil import atomic_write_text
from release_pipeline.metadata.compile_info import render_template
from release_pipeline.metadata.manifest import get_author, get_site, get_version, load_manifest

logger = logging.getLogger(__name__)

AUTHOR_PLACEHOLDER = "<<<AUTHOR>>>"
VERSION_PLACEHOLDER = "<<<VERSION>>>"
SITE_PLACEHOLDER = "<<<SITE>>>"


def generate_installer_script(template_path: Path, output_path: Path, manifest_path: Path) -> Path:
    try:
        template = template_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise PackagingFailure(f"Installer script template not found: {template_path}")
    except (OSError, UnicodeDecodeError) as e:
        raise PackagingFailure(f"Cannot read installer script template {template_path}: {e}") from e

    manifest = load_manifest(manifest_path)
    author = get_author(manifest)
    site = get_site(manifest)
    if author is None:
        raise PackagingFailure(f"Author not found in {manifest_path}")
    if site is None:
        raise PackagingFailure(f"Homepage not found in {manifest_path}")

    content = render_template(template, {
        AUTHOR_PLACEHOLDER: author,
        VERSION_PLACEHOLDER: get_version(manifest),
        SITE_PLACEHOLDER: site,
    })
    try:
        atomic_write_text(output_path, content)
    except OSError as e:
        raise PackagingFailure(f"Cannot write installer script {output_path}: {e}") from e

    logger.info(f"Installer script written: {output_path}")
    return output_path
