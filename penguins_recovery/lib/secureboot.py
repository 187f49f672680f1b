"""Secure Boot-compatible EFI chain for the output ISO.

Strategies are tried in order until one succeeds:

1. shim: copy a vendor-signed shim (and signed GRUB, MokManager) out of
   the rootfs into EFI/BOOT; the chain is shimx64 -> grubx64 -> kernel.
2. sbctl: sign every EFI binary in the ISO tree with the host's sbctl keys.
3. sbsign: same, with db.key/db.pem found in a key directory.

None of this is fatal: without a chain the ISO still boots with Secure
Boot disabled.
"""

from __future__ import annotations

import logging
import math
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from ..errors import AdapterError
from .assets import copy_tree
from .capabilities import Capabilities
from .command import run_cmd
from .mounts import lazy_umount

logger = logging.getLogger(__name__)

SHIM_CANDIDATES = (
    "usr/lib/shim/shimx64.efi.signed",
    "usr/lib/shim/shimx64.efi",
    "boot/efi/EFI/BOOT/BOOTX64.EFI",
    "boot/efi/EFI/debian/shimx64.efi",
    "boot/efi/EFI/ubuntu/shimx64.efi",
    "boot/efi/EFI/fedora/shimx64.efi",
    "boot/efi/EFI/opensuse/shim.efi",
    "usr/share/shim-signed/shimx64.efi.signed",
)

GRUB_CANDIDATES = (
    "usr/lib/grub/x86_64-efi-signed/grubx64.efi.signed",
    "boot/efi/EFI/debian/grubx64.efi",
    "boot/efi/EFI/ubuntu/grubx64.efi",
    "boot/efi/EFI/fedora/grubx64.efi",
    "usr/lib/grub/x86_64-efi/grubx64.efi",
    "usr/share/grub-signed/grubx64.efi.signed",
)

MOKMANAGER_CANDIDATES = (
    "usr/lib/shim/mmx64.efi",
    "usr/lib/shim/mmx64.efi.signed",
    "usr/share/shim-signed/mmx64.efi.signed",
    "usr/share/shim/mmx64.efi",
)

EFI_IMAGE_CANDIDATES = (
    "boot/grub/efi.img",
    "EFI/boot/efiboot.img",
    "efi.img",
    "boot/grub/efiboot.img",
)

SBCTL_KEY_DIRS = ("/usr/share/secureboot/keys", "/etc/secureboot/keys")
SBSIGN_KEY_DIRS = ("/usr/share/secureboot/keys/db", "/etc/secureboot/keys/db")

EFI_IMAGE_PADDING_KB = 512
FAT_CLUSTER = 4096


def first_existing(root: Path, candidates: Iterable[str]) -> Optional[Path]:
    for rel in candidates:
        p = root / rel
        if p.is_file():
            return p
    return None


def efi_binaries(iso_dir: Path) -> List[Path]:
    efi = iso_dir / "EFI"
    if not efi.is_dir():
        return []
    return sorted(p for p in efi.rglob("*") if p.is_file() and p.suffix.lower() == ".efi")


@dataclass
class ChainInputs:
    iso_dir: Path
    rootfs: Path
    caps: Capabilities
    key_dirs: Sequence[Path] = field(default_factory=tuple)

    @property
    def efi_boot_dir(self) -> Path:
        return self.iso_dir / "EFI/BOOT"


class ChainStrategy:
    name = "none"

    def apply(self, inputs: ChainInputs) -> bool:
        raise NotImplementedError


class ShimChain(ChainStrategy):
    name = "shim"

    def apply(self, inputs: ChainInputs) -> bool:
        shim = first_existing(inputs.rootfs, SHIM_CANDIDATES)
        if shim is None:
            logger.warning("No signed shim found in rootfs.")
            return False

        boot = inputs.efi_boot_dir
        boot.mkdir(parents=True, exist_ok=True)
        logger.info("Found signed shim: %s", str(shim))
        (boot / "BOOTX64.EFI").write_bytes(shim.read_bytes())

        grub = first_existing(inputs.rootfs, GRUB_CANDIDATES)
        if grub is not None:
            logger.info("Found signed GRUB: %s", str(grub))
            (boot / "grubx64.efi").write_bytes(grub.read_bytes())
        elif (boot / "grubx64.efi").is_file():
            logger.info("Using existing GRUB from ISO (may need MOK enrollment).")
        else:
            logger.warning("No GRUB EFI binary found. Secure Boot chain may be incomplete.")

        mm = first_existing(inputs.rootfs, MOKMANAGER_CANDIDATES)
        if mm is not None:
            logger.info("Found MokManager: %s", str(mm))
            (boot / "mmx64.efi").write_bytes(mm.read_bytes())
        return True


class _SigningChain(ChainStrategy):
    def sign_all(self, inputs: ChainInputs, sign: Callable[[Path], bool]) -> bool:
        signed = 0
        for efi in efi_binaries(inputs.iso_dir):
            rel = efi.relative_to(inputs.iso_dir)
            if sign(efi):
                logger.info("  Signed: %s", str(rel))
                signed += 1
            else:
                logger.warning("  Failed to sign: %s", str(rel))
        return signed > 0


def sbctl_sign(efi: Path) -> bool:
    return run_cmd(["sbctl", "sign", "-s", str(efi)], check=False).ok


def sbsign_file(efi: Path, key: Path, cert: Path) -> bool:
    argv = ["sbsign", "--key", str(key), "--cert", str(cert), "--output", str(efi), str(efi)]
    return run_cmd(argv, check=False).ok


class SbctlChain(_SigningChain):
    name = "sbctl"

    def apply(self, inputs: ChainInputs) -> bool:
        if not inputs.caps.has("sbctl"):
            logger.warning("sbctl not found.")
            return False
        if not any(Path(d).is_dir() for d in SBCTL_KEY_DIRS):
            logger.warning("No sbctl keys found. Run 'sbctl create-keys' first.")
            return False
        logger.info("Signing EFI binaries with sbctl...")
        return self.sign_all(inputs, sbctl_sign)


def find_sbsign_keys(key_dirs: Iterable[Path]) -> Optional[Tuple[Path, Path]]:
    """(db.key, certificate) from the first directory holding both."""

    for d in key_dirs:
        key = d / "db.key"
        if not key.is_file():
            continue
        for cert_name in ("db.pem", "db.crt"):
            cert = d / cert_name
            if cert.is_file():
                return key, cert
    return None


class SbsignChain(_SigningChain):
    name = "sbsign"

    def apply(self, inputs: ChainInputs) -> bool:
        if not inputs.caps.has("sbsign"):
            logger.warning("sbsign not found.")
            return False
        search = [*inputs.key_dirs, *(Path(d) for d in SBSIGN_KEY_DIRS)]
        keys = find_sbsign_keys(search)
        if keys is None:
            logger.warning("No Secure Boot signing keys found for sbsign.")
            return False
        key, cert = keys
        logger.info("Signing EFI binaries with sbsign (key %s)...", str(key))
        return self.sign_all(inputs, lambda efi: sbsign_file(efi, key, cert))


DEFAULT_STRATEGIES: Tuple[type, ...] = (ShimChain, SbctlChain, SbsignChain)


def build_chain(inputs: ChainInputs, strategies: Optional[Sequence[ChainStrategy]] = None) -> str:
    """Try each strategy in order; return the winning method name or "none"."""

    logger.info("Setting up Secure Boot-compatible boot chain...")
    for strategy in strategies if strategies is not None else [cls() for cls in DEFAULT_STRATEGIES]:
        try:
            ok = strategy.apply(inputs)
        except Exception as e:
            logger.warning("Secure Boot method %s failed: %s", strategy.name, e)
            ok = False
        if ok:
            logger.info("Secure Boot chain established via %s.", strategy.name)
            return strategy.name

    logger.warning("Could not set up Secure Boot chain.")
    logger.warning("The recovery ISO may not boot on Secure Boot-enabled machines.")
    logger.warning("Options:")
    logger.warning("  - Install shim-signed in the rootfs before adapting")
    logger.warning("  - Set up sbctl keys: sbctl create-keys && sbctl enroll-keys --microsoft")
    logger.warning("  - Generate a key set with penguins-sb-keys and pass --sb-key-dir")
    logger.warning("  - Disable Secure Boot in UEFI firmware settings")
    return "none"


def efi_tree_size_kb(efi_dir: Path) -> int:
    """Space the EFI tree needs on FAT, in KiB, rounded up per cluster."""

    total = 0
    for dirpath, _, filenames in os.walk(efi_dir):
        total += FAT_CLUSTER
        for f in filenames:
            size = os.path.getsize(os.path.join(dirpath, f))
            total += max(1, math.ceil(size / FAT_CLUSTER)) * FAT_CLUSTER
    return math.ceil(total / 1024)


def stage_efi_tree(iso_dir: Path, image: Path, stage: Path) -> Path:
    """Copy iso/EFI to stage/EFI, leaving out the boot image if it lives there."""

    if stage.exists():
        shutil.rmtree(stage)
    dest = stage / "EFI"
    src = iso_dir / "EFI"
    if not src.is_dir():
        dest.mkdir(parents=True)
        return dest

    def _skip_image(dirpath: str, names: List[str]) -> List[str]:
        return [n for n in names if Path(dirpath, n) == image]

    shutil.copytree(src, dest, symlinks=True, ignore=_skip_image)
    return dest


def rebuild_efi_image(iso_dir: Path, caps: Capabilities, *, mount_dir: Path) -> Path:
    """Recreate the embedded FAT image so it carries the current EFI/ tree.

    The new image is built beside the ISO tree and only moved over the
    original once it is complete.
    """

    img = first_existing(iso_dir, EFI_IMAGE_CANDIDATES)
    if img is None:
        logger.warning("No EFI boot image found in ISO. Creating one.")
        img = iso_dir / EFI_IMAGE_CANDIDATES[0]

    caps.require("mkfs.vfat", "install dosfstools to rebuild the EFI image")
    scratch = iso_dir.parent / "efi-rebuild"
    scratch.mkdir(parents=True, exist_ok=True)
    try:
        tree = stage_efi_tree(iso_dir, img, scratch / "tree")
        size_kb = efi_tree_size_kb(tree) + EFI_IMAGE_PADDING_KB
        logger.info("Rebuilding EFI boot image (%d KB)", size_kb)

        new_img = scratch / img.name
        with new_img.open("wb") as f:
            f.truncate(size_kb * 1024)
        run_cmd(["mkfs.vfat", str(new_img)])

        if caps.has("mcopy"):
            run_cmd(["mcopy", "-s", "-i", str(new_img), str(tree), "::/"])
        else:
            mount_dir.mkdir(parents=True, exist_ok=True)
            run_cmd(["mount", "-o", "loop", str(new_img), str(mount_dir)])
            try:
                run_cmd(["cp", "-r", str(tree), f"{mount_dir}/"])
            finally:
                lazy_umount(mount_dir)
            mount_dir.rmdir()

        img.parent.mkdir(parents=True, exist_ok=True)
        os.replace(new_img, img)
    finally:
        shutil.rmtree(scratch, ignore_errors=True)

    logger.info("EFI boot image updated.")
    return img


def snapshot_efi_tree(iso_dir: Path, dest: Path) -> Optional[Path]:
    """Copy iso/EFI aside; None when the ISO has no EFI tree."""

    efi = iso_dir / "EFI"
    if not efi.is_dir():
        return None
    copy_tree(efi, dest, replace=True)
    return dest


def restore_efi_tree(iso_dir: Path, snapshot: Optional[Path]) -> None:
    efi = iso_dir / "EFI"
    if snapshot is None:
        if efi.exists():
            shutil.rmtree(efi)
        return
    copy_tree(snapshot, efi, replace=True)


def apply_secureboot(
    iso_dir: str | Path,
    rootfs: str | Path,
    caps: Capabilities,
    *,
    key_dirs: Sequence[Path] = (),
    mount_dir: Path,
) -> str:
    """Build a chain and refresh the EFI image; on failure the EFI tree is put back as it was."""

    inputs = ChainInputs(iso_dir=Path(iso_dir), rootfs=Path(rootfs), caps=caps, key_dirs=tuple(key_dirs))
    backup = inputs.iso_dir.parent / "efi-backup"
    snapshot = snapshot_efi_tree(inputs.iso_dir, backup)
    try:
        method = build_chain(inputs)
        if method == "none":
            restore_efi_tree(inputs.iso_dir, snapshot)
        else:
            try:
                rebuild_efi_image(inputs.iso_dir, caps, mount_dir=mount_dir)
            except (AdapterError, OSError):
                logger.warning("EFI image rebuild failed; restoring the original EFI tree")
                restore_efi_tree(inputs.iso_dir, snapshot)
                raise
    finally:
        shutil.rmtree(backup, ignore_errors=True)

    logger.info("Secure Boot setup complete (method: %s).", method)
    return method
