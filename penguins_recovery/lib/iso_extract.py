from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Iterable, List, Optional

from ..errors import ExtractionError
from .capabilities import Capabilities
from .command import run_cmd
from .mounts import active_mounts_under, lazy_umount, mount_loop_ro

logger = logging.getLogger(__name__)

# Known live layouts, checked in order: Debian/Ubuntu, Fedora/RHEL, Arch, SUSE.
FS_IMAGE_CANDIDATES = (
    "live/filesystem.squashfs",
    "LiveOS/squashfs.img",
    "LiveOS/rootfs.img",
    "arch/x86_64/airootfs.sfs",
    "arch/x86_64/airootfs.erofs",
    "boot/*/filesystem.squashfs",
)

FS_IMAGE_PATTERNS = ("*.squashfs", "*.sfs", "*.erofs", "squashfs.img")


def fetch_iso(url: str, dest: Path, caps: Capabilities) -> Path:
    caps.require("curl", "needed to fetch a remote ISO")
    dest.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Downloading ISO from %s", url)
    run_cmd(["curl", "-fSL", "-o", str(dest), url])
    return dest


def find_fs_image(iso_dir: Path, candidates: Iterable[str] = FS_IMAGE_CANDIDATES) -> Optional[Path]:
    """Locate the compressed root filesystem inside an unpacked ISO tree."""

    for rel in candidates:
        if "*" in rel:
            for hit in sorted(iso_dir.glob(rel)):
                if hit.is_file():
                    return hit
        else:
            p = iso_dir / rel
            if p.is_file():
                return p

    hits: List[Path] = []
    for pattern in FS_IMAGE_PATTERNS:
        hits.extend(h for h in iso_dir.rglob(pattern) if h.is_file())
    if hits:
        return sorted(set(hits))[0]
    return None


def fs_format_of(image: Path) -> str:
    return "erofs" if image.suffix == ".erofs" else "squashfs"


def copy_iso_contents(iso: Path, iso_mnt: Path, iso_dir: Path) -> None:
    """Loop-mount the ISO read-only and copy it out; the mount lives only here."""

    logger.info("Mounting ISO: %s", str(iso))
    mount_loop_ro(iso, iso_mnt)
    try:
        logger.info("Copying ISO contents to %s", str(iso_dir))
        iso_dir.mkdir(parents=True, exist_ok=True)
        run_cmd(["cp", "-a", f"{iso_mnt}/.", f"{iso_dir}/"])
    finally:
        lazy_umount(iso_mnt)
    try:
        iso_mnt.rmdir()
    except OSError:
        logger.debug("Leaving %s in place", str(iso_mnt))


def unpack_fs_image(image: Path, rootfs: Path, caps: Capabilities) -> None:
    rootfs.mkdir(parents=True, exist_ok=True)
    if fs_format_of(image) == "erofs":
        caps.require("fsck.erofs", "install erofs-utils to unpack erofs images")
        logger.info("Extracting erofs image...")
        run_cmd(["fsck.erofs", f"--extract={rootfs}", str(image)])
    else:
        caps.require("unsquashfs")
        logger.info("Extracting squashfs image...")
        run_cmd(["unsquashfs", "-f", "-d", str(rootfs), str(image)])


def _top_level_listing(iso_dir: Path, *, limit: int = 40) -> str:
    entries = []
    for p in sorted(iso_dir.rglob("*")):
        rel = p.relative_to(iso_dir)
        if len(rel.parts) <= 3 and p.is_file():
            entries.append(str(rel))
        if len(entries) >= limit:
            break
    return "\n".join(f"  {e}" for e in entries) or "  (empty)"


def release_stale_mounts(work_dir: Path) -> None:
    """Detach mounts a killed run left below work_dir; refuse if any survive.

    rmtree crosses mount points, so a leftover bind of /dev or /run would
    take the host's contents with it.
    """

    stale = active_mounts_under(work_dir)
    if not stale:
        return
    logger.warning("Found mounts left by an earlier run: %s", ", ".join(stale))
    for mp in stale:
        lazy_umount(mp)
    busy = active_mounts_under(work_dir)
    if busy:
        raise ExtractionError(
            f"Refusing to reuse {work_dir}: still mounted below it: {', '.join(busy)}"
        )


def prepare_work_dir(work_dir: Path) -> None:
    """Recreate iso_mnt/, iso/ and rootfs/ from scratch for this run."""

    release_stale_mounts(work_dir)
    for sub in ("iso_mnt", "iso", "rootfs"):
        p = work_dir / sub
        try:
            if p.exists():
                shutil.rmtree(p)
            p.mkdir(parents=True)
        except OSError as e:
            raise ExtractionError(f"Cannot prepare {p}: {e}") from e


def extract_iso(
    source: str,
    *,
    work_dir: Path,
    caps: Capabilities,
    remote: bool = False,
) -> Path:
    """Copy the ISO into work_dir/iso, unpack its rootfs; return the fs image path."""

    iso_mnt = work_dir / "iso_mnt"
    iso_dir = work_dir / "iso"
    rootfs = work_dir / "rootfs"

    prepare_work_dir(work_dir)

    iso = fetch_iso(source, work_dir / "input.iso", caps) if remote else Path(source)
    copy_iso_contents(iso, iso_mnt, iso_dir)

    image = find_fs_image(iso_dir)
    if image is None:
        raise ExtractionError(
            "Could not locate squashfs/erofs image in ISO. ISO contents:\n" + _top_level_listing(iso_dir)
        )
    logger.info("Found filesystem image: %s", str(image))

    unpack_fs_image(image, rootfs, caps)
    logger.info("Extraction complete. Rootfs at: %s", str(rootfs))
    return image
