"""
Atomic file publishing.

The final path either holds the complete new content or its previous state;
a partial write only ever affects the temp file next to it.
"""

from __future__ import annotations

import os
from pathlib import Path


def atomic_write_text(final_path: Path, text: str, temp_suffix: str = ".tmp") -> None:
    """
    Write text to final_path via a temp file and rename.

    Raises:
        OSError: If the directory cannot be created or the write/rename fails.
    """
    final_path = Path(final_path)
    temp_path = final_path.with_suffix(final_path.suffix + temp_suffix)
    final_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with open(temp_path, "w", encoding="utf-8", newline="") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, final_path)
    except OSError:
        try:
            temp_path.unlink()
        except FileNotFoundError:
            pass
        raise
