from __future__ import annotations

import logging
import os
import shlex
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..errors import ExtractionError

logger = logging.getLogger(__name__)

RELEASE_FILES = ("etc/os-release", "usr/lib/os-release")


class DistroFamily(str, Enum):
    DEBIAN = "debian"
    FEDORA = "fedora"
    ARCH = "arch"
    SUSE = "suse"
    ALPINE = "alpine"
    GENTOO = "gentoo"
    UNKNOWN = "unknown"


_ID_FAMILIES: Dict[DistroFamily, tuple[str, ...]] = {
    DistroFamily.DEBIAN: (
        "debian", "ubuntu", "pop", "linuxmint", "lmde", "devuan", "neon", "zorin",
        "elementary", "mx", "antix", "sparky", "peppermint", "pureos", "kali", "raspbian",
    ),
    DistroFamily.FEDORA: ("fedora", "rhel", "almalinux", "rocky", "centos", "nobara", "ultramarine"),
    DistroFamily.ARCH: ("arch", "endeavouros", "manjaro", "biglinux", "garuda", "artix", "cachyos", "crystal"),
    DistroFamily.SUSE: ("sles", "suse", "sled"),
    DistroFamily.ALPINE: ("alpine", "postmarketos"),
    DistroFamily.GENTOO: ("gentoo", "funtoo", "calculate"),
}

_LIKE_FAMILIES: Dict[str, DistroFamily] = {
    "debian": DistroFamily.DEBIAN,
    "ubuntu": DistroFamily.DEBIAN,
    "fedora": DistroFamily.FEDORA,
    "rhel": DistroFamily.FEDORA,
    "centos": DistroFamily.FEDORA,
    "arch": DistroFamily.ARCH,
    "suse": DistroFamily.SUSE,
    "opensuse": DistroFamily.SUSE,
    "alpine": DistroFamily.ALPINE,
    "gentoo": DistroFamily.GENTOO,
}


@dataclass(frozen=True)
class OsRelease:
    id: str
    id_like: List[str] = field(default_factory=list)
    name: str = ""
    pretty_name: str = ""
    version_id: str = ""

    @property
    def display_name(self) -> str:
        return self.pretty_name or self.name or self.id


def parse_os_release(text: str) -> Dict[str, str]:
    """Parse os-release KEY=value lines (values may be shell-quoted)."""

    out: Dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        try:
            parts = shlex.split(value, comments=False, posix=True)
        except ValueError:
            # Unbalanced quotes: keep the raw value minus stray quote chars.
            parts = [value.strip().strip("\"'")]
        out[key] = " ".join(parts)
    return out


def _resolve_in_root(root: Path, rel: str, *, max_links: int = 40) -> Optional[Path]:
    """Resolve rel inside root one component at a time, symlinks included.

    Absolute link targets restart at root. Returns None for a path that
    climbs out of root or loops.
    """

    base = Path(os.path.normpath(str(root)))
    current = base
    pending = list(Path(rel).parts)
    links = 0
    while pending:
        part = pending.pop(0)
        if part in ("", ".", "/"):
            continue
        if part == "..":
            if current == base:
                logger.warning("Ignoring %s: resolves outside %s", rel, str(base))
                return None
            current = current.parent
            continue
        nxt = current / part
        if not nxt.is_symlink():
            current = nxt
            continue
        links += 1
        if links > max_links:
            logger.warning("Ignoring %s: too many symbolic links", rel)
            return None
        target = os.readlink(nxt)
        if target.startswith("/"):
            current = base
        pending = list(Path(target).parts) + pending
    return current


def read_os_release(rootfs: str | Path) -> OsRelease:
    root = Path(rootfs)
    for rel in RELEASE_FILES:
        p = _resolve_in_root(root, rel)
        if p is not None and p.is_file():
            data = parse_os_release(p.read_text(encoding="utf-8", errors="replace"))
            release = OsRelease(
                id=data.get("ID", "").strip(),
                id_like=data.get("ID_LIKE", "").split(),
                name=data.get("NAME", ""),
                pretty_name=data.get("PRETTY_NAME", ""),
                version_id=data.get("VERSION_ID", ""),
            )
            logger.info("Detected distro: %s (%s)", release.display_name, release.id)
            logger.info("ID_LIKE: %s", " ".join(release.id_like) or "none")
            return release

    raise ExtractionError(f"No /etc/os-release found in extracted rootfs: {root}")


def detect_family(distro_id: str, id_like: Sequence[str] = ()) -> DistroFamily:
    """Map os-release ID (then ID_LIKE) onto a package-manager family."""

    # os-release IDs are lowercase by definition; anything else is unrecognized.
    did = (distro_id or "").strip()
    if did.startswith("opensuse"):
        return DistroFamily.SUSE
    for family, ids in _ID_FAMILIES.items():
        if did in ids:
            return family

    for like in id_like:
        like_family: Optional[DistroFamily] = _LIKE_FAMILIES.get(like.strip().lower())
        if like_family is not None:
            return like_family

    return DistroFamily.UNKNOWN
