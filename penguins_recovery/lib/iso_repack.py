from __future__ import annotations

import hashlib
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from ..errors import IsoMasteringError
from .capabilities import ISO_MASTERING_TOOLS, Capabilities
from .command import run_cmd
from .mounts import active_mounts_under
from .secureboot import EFI_IMAGE_CANDIDATES, first_existing

logger = logging.getLogger(__name__)

BIOS_IMAGE_CANDIDATES = (
    "isolinux/isolinux.bin",
    "syslinux/isolinux.bin",
    "boot/syslinux/isolinux.bin",
)

BOOT_CATALOG_CANDIDATES = (
    "isolinux/boot.cat",
    "boot.catalog",
    "boot/syslinux/boot.cat",
)

ISOHYBRID_MBR = "isolinux/isohdpfx.bin"


@dataclass(frozen=True)
class BootLayout:
    """Boot files found in the ISO tree, as paths relative to it."""

    bios_image: Optional[str] = None
    boot_catalog: Optional[str] = None
    efi_image: Optional[str] = None
    isohybrid_mbr: Optional[Path] = None


def _rel(iso_dir: Path, candidates: Sequence[str]) -> Optional[str]:
    hit = first_existing(iso_dir, candidates)
    return str(hit.relative_to(iso_dir)) if hit is not None else None


def detect_boot_layout(iso_dir: Path) -> BootLayout:
    bios = _rel(iso_dir, BIOS_IMAGE_CANDIDATES)
    mbr = iso_dir / ISOHYBRID_MBR
    return BootLayout(
        bios_image=bios,
        boot_catalog=_rel(iso_dir, BOOT_CATALOG_CANDIDATES),
        efi_image=_rel(iso_dir, EFI_IMAGE_CANDIDATES),
        isohybrid_mbr=mbr if bios and mbr.is_file() else None,
    )


def rebuild_fs_image(
    image: Path,
    rootfs: Path,
    caps: Capabilities,
    *,
    squashfs_options: Sequence[str],
    erofs_options: Sequence[str],
) -> Path:
    """Replace the compressed image with a fresh one built from rootfs.

    Returns the path actually written: an erofs image falls back to
    squashfs at <name>.sfs when mkfs.erofs is missing.
    """

    logger.info("Rebuilding filesystem image from %s", str(rootfs))
    if image.exists():
        image.unlink()

    target = image
    if image.suffix == ".erofs":
        if caps.has("mkfs.erofs"):
            run_cmd(["mkfs.erofs", *erofs_options, str(image), str(rootfs)])
            return image
        logger.warning("mkfs.erofs not available, falling back to squashfs")
        target = image.with_suffix(".sfs")

    caps.require("mksquashfs")
    run_cmd(["mksquashfs", str(rootfs), str(target), *squashfs_options])
    logger.info("Filesystem image rebuilt: %s (%d bytes)", str(target), target.stat().st_size if target.exists() else 0)
    return target


def file_md5(path: Path, *, chunk: int = 1024 * 1024) -> str:
    h = hashlib.md5()
    with path.open("rb") as f:
        for block in iter(lambda: f.read(chunk), b""):
            h.update(block)
    return h.hexdigest()


def update_md5sums(iso_dir: Path, image: Path) -> bool:
    """Rewrite the md5sum.txt line for image, if the ISO carries one."""

    sums = iso_dir / "md5sum.txt"
    if not sums.is_file():
        return False

    rel = str(image.relative_to(iso_dir))
    digest = file_md5(image)
    logger.info("Updating md5sum.txt")

    lines = sums.read_text(encoding="utf-8").splitlines()
    out: List[str] = []
    for line in lines:
        if line.endswith(rel):
            out.append(f"{digest}  ./{rel}")
        else:
            out.append(line)
    sums.write_text("\n".join(out) + ("\n" if lines else ""), encoding="utf-8")
    return True


def xorriso_argv(iso_dir: Path, output: Path, volume_id: str, layout: BootLayout) -> List[str]:
    argv = [
        "xorriso",
        "-as",
        "mkisofs",
        "-iso-level",
        "3",
        "-full-iso9660-filenames",
        "-volid",
        volume_id,
        "-output",
        str(output),
    ]
    if layout.bios_image:
        logger.info("BIOS boot: %s", layout.bios_image)
        argv += ["-b", layout.bios_image, "-no-emul-boot", "-boot-load-size", "4", "-boot-info-table"]
        if layout.boot_catalog:
            argv += ["-c", layout.boot_catalog]
    if layout.efi_image:
        logger.info("EFI boot: %s", layout.efi_image)
        argv += ["-eltorito-alt-boot", "-e", layout.efi_image, "-no-emul-boot", "-isohybrid-gpt-basdat"]
    if layout.isohybrid_mbr is not None:
        argv += ["-isohybrid-mbr", str(layout.isohybrid_mbr)]
    argv.append(str(iso_dir))
    return argv


def mkisofs_argv(tool: str, iso_dir: Path, output: Path, volume_id: str) -> List[str]:
    return [tool, "-o", str(output), "-R", "-J", "-V", volume_id, str(iso_dir)]


def master_iso(iso_dir: Path, output: Path, caps: Capabilities, *, volume_id: str) -> str:
    """Build the output ISO with the best available tool; return its name."""

    tool = caps.first_of(ISO_MASTERING_TOOLS)
    if tool is None:
        raise IsoMasteringError("Neither xorriso, genisoimage nor mkisofs found. Cannot build ISO.")

    output.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Building ISO: %s", str(output))
    if tool == "xorriso":
        run_cmd(xorriso_argv(iso_dir, output, volume_id, detect_boot_layout(iso_dir)))
    else:
        logger.warning("xorriso not found, falling back to %s (no hybrid boot)", tool)
        run_cmd(mkisofs_argv(tool, iso_dir, output, volume_id))
    return tool


def repack_iso(
    *,
    image: Path,
    rootfs: Path,
    iso_dir: Path,
    output: Path,
    caps: Capabilities,
    volume_id: str,
    squashfs_options: Sequence[str],
    erofs_options: Sequence[str],
    keep_work: bool = False,
) -> Path:
    written = rebuild_fs_image(
        image, rootfs, caps, squashfs_options=squashfs_options, erofs_options=erofs_options
    )
    update_md5sums(iso_dir, written)
    master_iso(iso_dir, output, caps, volume_id=volume_id)

    size = output.stat().st_size if output.exists() else 0
    logger.info("ISO built: %s (%d bytes)", str(output), size)

    if keep_work:
        logger.info("Keeping %s and %s (--keep-work)", str(rootfs), str(iso_dir))
    else:
        logger.info("Cleaning up work directory")
        for d in (rootfs, iso_dir):
            busy = active_mounts_under(d)
            if busy:
                logger.warning("Not removing %s: still mounted: %s", str(d), ", ".join(busy))
                continue
            shutil.rmtree(d, ignore_errors=True)

    logger.info("Repack complete.")
    return output
