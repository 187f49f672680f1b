from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from .command import run_cmd

logger = logging.getLogger(__name__)

PROC_MOUNTS = "/proc/mounts"


def _unescape(field: str) -> str:
    # /proc/mounts octal-escapes space, tab, newline and backslash.
    return (
        field.replace("\\040", " ")
        .replace("\\011", "\t")
        .replace("\\012", "\n")
        .replace("\\134", "\\")
    )


def active_mounts_under(path: str | Path, *, mounts_file: str = PROC_MOUNTS) -> List[str]:
    """Mount points at or below path, deepest first."""

    base = str(Path(path).resolve())
    try:
        text = Path(mounts_file).read_text(encoding="utf-8")
    except OSError:
        logger.warning("Cannot read %s; assuming nothing is mounted under %s", mounts_file, base)
        return []

    found: List[str] = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 2:
            continue
        mp = _unescape(parts[1])
        if mp == base or mp.startswith(base.rstrip("/") + "/"):
            found.append(mp)
    return sorted(found, key=len, reverse=True)


def mount_loop_ro(image: str | Path, mountpoint: str | Path) -> None:
    Path(mountpoint).mkdir(parents=True, exist_ok=True)
    run_cmd(["mount", "-o", "loop,ro", str(image), str(mountpoint)])


def lazy_umount(mountpoint: str | Path) -> None:
    """Detach a mount point; errors (not mounted) are ignored."""

    run_cmd(["umount", "-l", str(mountpoint)], check=False)
