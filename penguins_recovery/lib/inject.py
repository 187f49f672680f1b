from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from ..errors import InjectionError
from .assets import copy_tree, install_file, write_text

logger = logging.getLogger(__name__)

SCRIPTS_DEST = "usr/local/bin"
INJECTED_MANIFEST = "usr/local/share/penguins-recovery/injected-scripts"
PROFILE_SCRIPT = "etc/profile.d/penguins-recovery.sh"
RESCAPP_DEST = "opt/rescapp"

RESCAPP_LAUNCHER = """#!/bin/bash
exec /opt/rescapp/bin/rescapp "$@"
"""

RESCAPP_DESKTOP = """[Desktop Entry]
Name=Rescapp
Comment=System rescue wizard
Exec=/opt/rescapp/bin/rescapp
Icon=/opt/rescapp/logos/rescapp.png
Terminal=false
Type=Application
Categories=System;
"""

LOGIN_PROFILE = """# penguins-recovery environment
export PATH="/usr/local/bin:$PATH"

# Show available recovery tools on login
if [ -t 1 ] && [ -z "$RECOVERY_SHOWN" ]; then
    export RECOVERY_SHOWN=1
    echo ""
    echo "Penguins-Recovery tools available:"
    for tool in /usr/local/bin/*-rescue.sh /usr/local/bin/*-restore.sh \\
                /usr/local/bin/*-repair.sh /usr/local/bin/*-reset.sh \\
                /usr/local/bin/*-inspect.sh /usr/local/bin/*-manage.sh \\
                /usr/local/bin/*-provision.sh /usr/local/bin/*-audit.sh \\
                /usr/local/bin/detect-*.sh; do
        [ -f "$tool" ] && echo "  $(basename "$tool")"
    done
    if command -v rescapp >/dev/null 2>&1; then
        echo "  rescapp (GUI wizard)"
    fi
    echo ""
fi
"""


def _read_manifest(rootfs: Path) -> List[str]:
    p = rootfs / INJECTED_MANIFEST
    if not p.is_file():
        return []
    return [line.strip() for line in p.read_text(encoding="utf-8").splitlines() if line.strip()]


def inject_scripts(rootfs: Path, scripts_src: Path) -> List[str]:
    """Install scripts_src/*.sh into /usr/local/bin; drop ones a prior run left behind."""

    dest = rootfs / SCRIPTS_DEST
    dest.mkdir(parents=True, exist_ok=True)

    scripts: List[Path] = []
    if scripts_src.is_dir():
        scripts = sorted(p for p in scripts_src.glob("*.sh") if p.is_file())
    else:
        logger.warning("No scripts found at %s", str(scripts_src))

    names = [s.name for s in scripts]
    for stale in sorted(set(_read_manifest(rootfs)) - set(names)):
        p = dest / stale
        if p.is_file() or p.is_symlink():
            p.unlink()
            logger.info("  - %s (no longer shipped)", stale)

    if scripts:
        logger.info("Injecting rescue scripts into /%s/", SCRIPTS_DEST)
    for s in scripts:
        install_file(s, dest / s.name, mode=0o755)
        logger.info("  + %s", s.name)

    write_text(rootfs / INJECTED_MANIFEST, "".join(f"{n}\n" for n in names))
    return names


def inject_motd(rootfs: Path, motd_src: Path) -> bool:
    if not motd_src.is_file():
        logger.warning("No MOTD at %s", str(motd_src))
        return False
    logger.info("Injecting MOTD")
    install_file(motd_src, rootfs / "etc/motd", mode=0o644)
    return True


def inject_rescapp(rootfs: Path, rescapp_src: Path) -> bool:
    if not rescapp_src.is_dir():
        logger.warning("rescapp requested but %s does not exist", str(rescapp_src))
        return False

    logger.info("Injecting rescapp into /%s/", RESCAPP_DEST)
    copy_tree(rescapp_src, rootfs / RESCAPP_DEST, replace=True)
    write_text(rootfs / SCRIPTS_DEST / "rescapp", RESCAPP_LAUNCHER, mode=0o755)

    # Only graphical images get a menu entry.
    apps = rootfs / "usr/share/applications"
    if apps.is_dir() or (rootfs / "usr/share/xsessions").is_dir():
        write_text(apps / "rescapp.desktop", RESCAPP_DESKTOP, mode=0o644)
        logger.info("  + Desktop entry created")
    logger.info("  + rescapp installed to /%s/", RESCAPP_DEST)
    return True


def write_login_profile(rootfs: Path) -> Path:
    p = write_text(rootfs / PROFILE_SCRIPT, LOGIN_PROFILE, mode=0o755)
    logger.info("Injected recovery shell profile")
    return p


def set_hostname(rootfs: Path, hostname: str) -> None:
    write_text(rootfs / "etc/hostname", f"{hostname}\n", mode=0o644)
    logger.info("Set hostname to %s", hostname)


def inject_recovery(
    rootfs: str | Path,
    recovery_root: str | Path,
    *,
    with_rescapp: bool = False,
    hostname: str = "penguins-recovery",
) -> List[str]:
    """Layer scripts, MOTD, optional rescapp, login profile and hostname.

    Safe to run repeatedly: everything is overwritten in place.
    Returns the names of the injected scripts.
    """

    root = Path(rootfs)
    src = Path(recovery_root)

    try:
        scripts = inject_scripts(root, src / "common/scripts")
        inject_motd(root, src / "common/branding/motd.txt")
        if with_rescapp:
            inject_rescapp(root, src / "tools/rescapp")
        write_login_profile(root)
        set_hostname(root, hostname)
    except OSError as e:
        raise InjectionError(f"Injecting recovery files into {root} failed: {e}") from e

    logger.info("Injection complete.")
    return scripts
