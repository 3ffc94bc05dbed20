"""
Read release metadata from the frontend's Cargo.toml.
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"


def load_manifest(manifest_path: Path) -> Dict[str, Any]:
    """Parse a Cargo.toml, returning {} if it is missing or malformed."""
    try:
        return tomllib.loads(manifest_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.warning(f"Manifest not found: {manifest_path}")
        return {}
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Could not parse {manifest_path}: {e}")
        return {}
    except OSError as e:
        logger.warning(f"Could not read {manifest_path}: {e}")
        return {}


def get_version(manifest: Dict[str, Any]) -> str:
    """Workspace version first, then the package version."""
    for section in (manifest.get("workspace", {}).get("package", {}), manifest.get("package", {})):
        version = section.get("version")
        if isinstance(version, str) and version:
            return version
    return UNKNOWN


def get_author(manifest: Dict[str, Any]) -> Optional[str]:
    authors = manifest.get("package", {}).get("authors")
    if isinstance(authors, list) and authors and isinstance(authors[0], str):
        return authors[0]
    return None


def get_site(manifest: Dict[str, Any]) -> Optional[str]:
    homepage = manifest.get("package", {}).get("homepage")
    return homepage if isinstance(homepage, str) else None
