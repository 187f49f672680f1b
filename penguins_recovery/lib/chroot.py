from __future__ import annotations

import logging
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Mapping, Sequence

from .command import CmdResult, run_cmd
from .mounts import lazy_umount

logger = logging.getLogger(__name__)

# Mounted in this order, released in reverse.
BIND_MOUNTS = ("/dev", "/dev/pts", "/proc", "/sys", "/run")


def chroot_cmd(
    target_root: str | Path,
    argv: Sequence[str],
    *,
    check: bool = True,
    env: Mapping[str, str] | None = None,
) -> CmdResult:
    """Run a command inside target root."""

    prefix = ["chroot", str(target_root)]
    if env:
        prefix += ["env", *[f"{k}={v}" for k, v in env.items()]]
    return run_cmd([*prefix, *argv], check=check)


def mount_chroot_binds(target_root: str | Path) -> list[str]:
    mounted: list[str] = []
    try:
        for src in BIND_MOUNTS:
            dst = Path(target_root) / src.lstrip("/")
            dst.mkdir(parents=True, exist_ok=True)
            run_cmd(["mount", "--bind", src, str(dst)])
            mounted.append(str(dst))
    except Exception:
        for dst in reversed(mounted):
            lazy_umount(dst)
        raise
    return mounted


def umount_chroot_binds(target_root: str | Path) -> None:
    for src in reversed(BIND_MOUNTS):
        lazy_umount(Path(target_root) / src.lstrip("/"))


def copy_resolv_conf(target_root: str | Path, *, source: str = "/etc/resolv.conf") -> None:
    """Give the chroot network name resolution; best effort."""

    dst = Path(target_root) / "etc/resolv.conf"
    try:
        dst.parent.mkdir(parents=True, exist_ok=True)
        if dst.is_symlink():
            dst.unlink()
        shutil.copyfile(source, dst)
    except OSError as e:
        logger.warning("Could not copy %s into chroot: %s", source, e)


@contextmanager
def chroot_session(target_root: str | Path) -> Iterator[Path]:
    """Bind mounts held for exactly the body of the with-block."""

    root = Path(target_root)
    logger.info("Setting up chroot bind mounts in %s", str(root))
    mount_chroot_binds(root)
    try:
        copy_resolv_conf(root)
        yield root
    finally:
        logger.info("Tearing down chroot bind mounts in %s", str(root))
        umount_chroot_binds(root)
