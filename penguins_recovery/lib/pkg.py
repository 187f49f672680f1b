"""Family-specific package installers.

Every installer runs its package manager inside an already bind-mounted
chroot: sync, install non-interactively, clean the cache. What differs per
family is the command set, the baseline extras, and how a failing package
is treated:

- apt: unknown packages are filtered out first, the transaction is fatal.
- dnf/yum and zypper: unavailable packages are skipped by the manager.
- pacman and apk: all-or-nothing; a failed transaction is fatal.
- emerge: one package at a time; failures are warned about, never fatal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar, Dict, Iterable, List, Sequence, Tuple, Type

from ..errors import PackageInstallError, UnsupportedFamilyError
from .chroot import chroot_cmd
from .command import CmdResult
from .distro import DistroFamily

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstallFlags:
    with_rescapp: bool = False
    include_baseline: bool = True


@dataclass
class InstallReport:
    family: DistroFamily
    requested: List[str] = field(default_factory=list)
    installed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def _dedup(items: Iterable[str]) -> List[str]:
    out: List[str] = []
    for i in items:
        if i and i not in out:
            out.append(i)
    return out


def _tail(text: str, lines: int = 5) -> str:
    return "\n".join(text.strip().splitlines()[-lines:])


class PackageInstaller:
    family: ClassVar[DistroFamily] = DistroFamily.UNKNOWN
    baseline: ClassVar[Tuple[str, ...]] = ()
    rescapp: ClassVar[Tuple[str, ...]] = ()

    def packages_for(self, packages: Sequence[str], flags: InstallFlags) -> List[str]:
        extra: List[str] = []
        if flags.include_baseline:
            extra += list(self.baseline)
        if flags.with_rescapp:
            extra += list(self.rescapp)
        return _dedup([*packages, *extra])

    def install_packages(
        self,
        rootfs: str | Path,
        packages: Sequence[str],
        flags: InstallFlags = InstallFlags(),
    ) -> InstallReport:
        root = Path(rootfs)
        wanted = self.packages_for(packages, flags)
        if not wanted:
            logger.info("[%s] nothing to install", self.family.value)
            return InstallReport(family=self.family)

        logger.info("[%s] installing %d packages: %s", self.family.value, len(wanted), " ".join(wanted))
        self.sync(root)
        report = self.install(root, wanted)
        self.clean(root)

        if report.skipped:
            logger.warning("[%s] skipped packages: %s", self.family.value, " ".join(report.skipped))
        logger.info("[%s] package installation complete", self.family.value)
        return report

    def sync(self, rootfs: Path) -> None:
        pass

    def install(self, rootfs: Path, packages: List[str]) -> InstallReport:
        raise NotImplementedError

    def clean(self, rootfs: Path) -> None:
        pass

    def _transaction(self, rootfs: Path, argv: Sequence[str], packages: List[str], **kw) -> CmdResult:
        r = chroot_cmd(rootfs, argv, check=False, **kw)
        if not r.ok:
            raise PackageInstallError(self.family.value, packages, _tail(r.stderr or r.stdout))
        return r


class AptInstaller(PackageInstaller):
    family = DistroFamily.DEBIAN
    baseline = ("bash-completion", "less", "man-db", "sudo")
    rescapp = ("python3", "python3-pyqt5", "python3-pyqt5.qtwebkit", "python3-dbus", "kdialog")

    env: ClassVar[Dict[str, str]] = {"DEBIAN_FRONTEND": "noninteractive"}

    def sync(self, rootfs: Path) -> None:
        logger.info("Updating package lists in chroot")
        chroot_cmd(rootfs, ["apt-get", "update", "-qq"])

    def has_package(self, rootfs: Path, package: str) -> bool:
        """True if apt knows the package; used to keep repo variance non-fatal."""

        return chroot_cmd(rootfs, ["apt-cache", "show", package], check=False).ok

    def install(self, rootfs: Path, packages: List[str]) -> InstallReport:
        known: List[str] = []
        missing: List[str] = []
        for p in packages:
            (known if self.has_package(rootfs, p) else missing).append(p)

        report = InstallReport(family=self.family, requested=list(packages), skipped=missing)
        if known:
            self._transaction(
                rootfs,
                ["apt-get", "install", "-y", "--no-install-recommends", *known],
                known,
                env=self.env,
            )
            report.installed = known
        return report

    def clean(self, rootfs: Path) -> None:
        logger.info("Cleaning apt cache")
        chroot_cmd(rootfs, ["apt-get", "clean"])
        chroot_cmd(rootfs, ["sh", "-c", "rm -rf /var/lib/apt/lists/*"])


class DnfInstaller(PackageInstaller):
    family = DistroFamily.FEDORA
    baseline = ("bash-completion", "less", "man-db", "sudo")
    rescapp = ("python3", "python3-qt5", "python3-qt5-webkit", "python3-dbus", "kdialog")

    def manager(self, rootfs: Path) -> str:
        # dnf5 on newer Fedora, dnf on older, yum on RHEL 7.
        for name in ("dnf5", "dnf", "yum"):
            for bindir in ("usr/bin", "bin", "usr/sbin"):
                p = rootfs / bindir / name
                if p.is_symlink() or p.exists():
                    return name
        return "dnf"

    def install(self, rootfs: Path, packages: List[str]) -> InstallReport:
        mgr = self.manager(rootfs)
        logger.info("Using package manager: %s", mgr)
        skip = "--skip-unavailable" if mgr == "dnf5" else "--skip-broken"
        self._transaction(rootfs, [mgr, "install", "-y", skip, *packages], packages)
        return InstallReport(family=self.family, requested=list(packages), installed=list(packages))

    def clean(self, rootfs: Path) -> None:
        logger.info("Cleaning package cache")
        chroot_cmd(rootfs, [self.manager(rootfs), "clean", "all"])


class PacmanInstaller(PackageInstaller):
    family = DistroFamily.ARCH
    baseline = ("bash-completion", "less", "man-db", "sudo")
    rescapp = ("python", "python-pyqt5", "python-pyqt5-webengine", "python-dbus", "kdialog")

    def sync(self, rootfs: Path) -> None:
        if not (rootfs / "etc/pacman.d/gnupg").is_dir():
            logger.info("Initializing pacman keyring")
            chroot_cmd(rootfs, ["pacman-key", "--init"])
            chroot_cmd(rootfs, ["pacman-key", "--populate", "archlinux"])
        logger.info("Updating package database")
        chroot_cmd(rootfs, ["pacman", "-Sy", "--noconfirm"])

    def install(self, rootfs: Path, packages: List[str]) -> InstallReport:
        self._transaction(rootfs, ["pacman", "-S", "--noconfirm", "--needed", *packages], packages)
        return InstallReport(family=self.family, requested=list(packages), installed=list(packages))

    def clean(self, rootfs: Path) -> None:
        logger.info("Cleaning package cache")
        chroot_cmd(rootfs, ["pacman", "-Scc", "--noconfirm"], check=False)


class ZypperInstaller(PackageInstaller):
    family = DistroFamily.SUSE
    baseline = ("bash-completion", "less", "man", "sudo")
    rescapp = ("python3", "python3-qt5", "python3-dbus-python", "kdialog")

    def sync(self, rootfs: Path) -> None:
        logger.info("Refreshing zypper repositories")
        chroot_cmd(rootfs, ["zypper", "--non-interactive", "refresh"])

    def install(self, rootfs: Path, packages: List[str]) -> InstallReport:
        self._transaction(
            rootfs,
            ["zypper", "--non-interactive", "--ignore-unknown", "install", "--no-recommends", *packages],
            packages,
        )
        return InstallReport(family=self.family, requested=list(packages), installed=list(packages))

    def clean(self, rootfs: Path) -> None:
        logger.info("Cleaning zypper cache")
        chroot_cmd(rootfs, ["zypper", "clean", "--all"])


class ApkInstaller(PackageInstaller):
    family = DistroFamily.ALPINE
    baseline = ("bash", "bash-completion", "less", "man-db", "sudo")
    rescapp = ("python3", "py3-pyqt5", "py3-dbus", "kdialog")

    def sync(self, rootfs: Path) -> None:
        logger.info("Updating apk index")
        chroot_cmd(rootfs, ["apk", "update"])

    def install(self, rootfs: Path, packages: List[str]) -> InstallReport:
        # --no-cache leaves nothing behind, so there is no clean step.
        self._transaction(rootfs, ["apk", "add", "--no-cache", *packages], packages)
        return InstallReport(family=self.family, requested=list(packages), installed=list(packages))


class EmergeInstaller(PackageInstaller):
    family = DistroFamily.GENTOO
    baseline = ("app-shells/bash-completion", "sys-apps/less", "sys-apps/man-db", "app-admin/sudo")
    rescapp = ("dev-python/PyQt5", "dev-python/dbus-python", "kde-apps/kdialog")

    base_opts = ("--ask=n", "--verbose", "--noreplace")

    def sync(self, rootfs: Path) -> None:
        if not (rootfs / "var/db/repos/gentoo").is_dir() and not (rootfs / "usr/portage").is_dir():
            logger.info("Syncing portage tree (this may take a while)")
            chroot_cmd(rootfs, ["emerge-webrsync"])

    def emerge_opts(self, rootfs: Path) -> List[str]:
        opts = list(self.base_opts)
        info = chroot_cmd(rootfs, ["emerge", "--info"], check=False)
        for line in info.stdout.splitlines():
            if line.startswith("FEATURES") and "getbinpkg" in line:
                opts.append("--getbinpkg")
                logger.info("Binary packages enabled")
                break
        return opts

    def install(self, rootfs: Path, packages: List[str]) -> InstallReport:
        opts = self.emerge_opts(rootfs)
        report = InstallReport(family=self.family, requested=list(packages))
        # One at a time so a package missing from the tree cannot sink the rest.
        for pkg in packages:
            logger.info("  Installing: %s", pkg)
            r = chroot_cmd(rootfs, ["emerge", *opts, pkg], check=False)
            if r.ok:
                report.installed.append(pkg)
            else:
                logger.warning("  Failed to install: %s (may not exist in tree)", pkg)
                report.skipped.append(pkg)
        return report

    def clean(self, rootfs: Path) -> None:
        logger.info("Cleaning distfiles")
        chroot_cmd(rootfs, ["eclean-dist", "-d"], check=False)


INSTALLERS: Dict[DistroFamily, Type[PackageInstaller]] = {
    cls.family: cls
    for cls in (AptInstaller, DnfInstaller, PacmanInstaller, ZypperInstaller, ApkInstaller, EmergeInstaller)
}


def installer_for(family: DistroFamily) -> PackageInstaller:
    cls = INSTALLERS.get(family)
    if cls is None:
        raise UnsupportedFamilyError(family.value)
    return cls()
