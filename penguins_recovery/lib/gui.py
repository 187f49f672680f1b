from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ..errors import GuiProfileError
from .assets import copy_tree, force_symlink, install_file
from .chroot import chroot_session
from .manifests import find_profile_document, load_document, profile_packages
from .pkg import InstallFlags, PackageInstaller

logger = logging.getLogger(__name__)

GUI_DEST = "opt/penguins-recovery/gui"
DESKTOP_FILE = "penguins-recovery.desktop"
LAUNCHER_SCRIPT = "recovery-launcher.sh"
LAUNCHER_LINK = "usr/local/bin/penguins-recovery"


@dataclass(frozen=True)
class GuiProfileSpec:
    name: str
    profile_dir: Path
    document: Path
    packages: List[str]


def profile_dir_for(recovery_root: Path, profile: str) -> Path:
    return recovery_root / "gui/profiles" / profile


def check_profile_exists(recovery_root: str | Path, profile: str) -> Path:
    """Preflight: the profile document must exist before anything is extracted."""

    pdir = profile_dir_for(Path(recovery_root), profile)
    doc = find_profile_document(pdir)
    if doc is None:
        raise GuiProfileError(profile, str(pdir))
    return doc


def resolve_profile(recovery_root: str | Path, profile: str, family: str) -> GuiProfileSpec:
    """Find and read the profile document; a missing one is fatal."""

    pdir = profile_dir_for(Path(recovery_root), profile)
    doc_path: Optional[Path] = find_profile_document(pdir)
    if doc_path is None:
        raise GuiProfileError(profile, str(pdir))

    logger.info("Using profile: %s", str(doc_path))
    try:
        packages = profile_packages(load_document(doc_path), family)
    except ValueError as e:
        raise GuiProfileError(profile, str(doc_path), str(e)) from e
    return GuiProfileSpec(name=profile, profile_dir=pdir, document=doc_path, packages=packages)


def install_gui_packages(rootfs: Path, spec: GuiProfileSpec, installer: PackageInstaller) -> None:
    if not spec.packages:
        logger.info("Profile %s lists no %s packages", spec.name, installer.family.value)
        return
    logger.info("Installing GUI packages for %s: %s", installer.family.value, " ".join(spec.packages))
    with chroot_session(rootfs):
        installer.install_packages(rootfs, spec.packages, InstallFlags(include_baseline=False))


def install_gui_files(rootfs: Path, recovery_root: Path, spec: GuiProfileSpec) -> None:
    dest = rootfs / GUI_DEST
    launcher_src = recovery_root / "gui/recovery-launcher"

    base_src = recovery_root / "gui/base"
    if base_src.is_dir():
        logger.info("Installing base shell")
        copy_tree(base_src, dest / "base", replace=True)
    else:
        logger.warning("No GUI base at %s", str(base_src))

    logger.info("Installing recovery-launcher")
    copy_tree(launcher_src, dest / "recovery-launcher", replace=True)
    launcher = dest / "recovery-launcher" / LAUNCHER_SCRIPT
    if launcher.is_file():
        launcher.chmod(0o755)

    logger.info("Installing %s profile components", spec.name)
    copy_tree(spec.profile_dir, dest / "profiles" / spec.name, replace=True)

    desktop = launcher_src / DESKTOP_FILE
    if desktop.is_file():
        install_file(desktop, rootfs / "etc/xdg/autostart" / DESKTOP_FILE, mode=0o644)
        install_file(desktop, rootfs / "usr/share/applications" / DESKTOP_FILE, mode=0o644)
    else:
        logger.warning("No %s in %s; skipping autostart and menu entries", DESKTOP_FILE, str(launcher_src))

    force_symlink(f"/{GUI_DEST}/recovery-launcher/{LAUNCHER_SCRIPT}", rootfs / LAUNCHER_LINK)


def install_gui(
    rootfs: str | Path,
    recovery_root: str | Path,
    profile: str,
    installer: PackageInstaller,
) -> GuiProfileSpec:
    root = Path(rootfs)
    rroot = Path(recovery_root)
    spec = resolve_profile(rroot, profile, installer.family.value)
    install_gui_packages(root, spec, installer)
    try:
        install_gui_files(root, rroot, spec)
    except OSError as e:
        raise GuiProfileError(profile, str(spec.profile_dir), f"installing GUI files failed: {e}") from e
    logger.info("GUI profile '%s' installed.", profile)
    return spec
