"""Archive helpers for restoring backup components."""
from __future__ import annotations

from pathlib import Path

GZIP_TAR_EXTENSION = "tar.gz"


def extract_command(tar_bin: str, archive_path: Path, target_dir: Path) -> list[str]:
    """Return the argv extracting the gzip tarball *archive_path* into *target_dir*."""
    return [tar_bin, "xzf", str(archive_path), "-C", str(target_dir)]


__all__ = ["GZIP_TAR_EXTENSION", "extract_command"]
