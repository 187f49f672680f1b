"""
Pytest configuration and shared fixtures for penguins-recovery tests.

No test needs root or the real tools: every external command goes through
subprocess.run, which the ``fake_run`` fixture replaces with a recorder that
answers by rule.
"""

import logging
import subprocess
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import pytest

from penguins_recovery.lib.capabilities import KNOWN_TOOLS, Capabilities
from penguins_recovery.lib.command import set_default_timeout
from penguins_recovery.logging_utils import reset_logging


# ==============================================================================
# Command recorder
# ==============================================================================


def strip_chroot(argv: Sequence[str]) -> List[str]:
    """The command as seen inside the chroot: drop `chroot ROOT [env K=V...]`."""
    args = list(argv)
    if len(args) < 2 or args[0] != "chroot":
        return args
    rest = args[2:]
    if rest and rest[0] == "env":
        rest = rest[1:]
        while rest and "=" in rest[0]:
            rest = rest[1:]
    return rest


class FakeRunner:
    """Stand-in for subprocess.run that records argv and answers by rule.

    Rules are matched against the start of argv, or of the command inside a
    chroot; the most recently added rule wins. Unmatched commands succeed
    with empty output.
    """

    def __init__(self):
        self.calls: List[List[str]] = []
        self.kwargs: List[dict] = []
        self._rules = []

    def on(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        effect: Optional[Callable[[List[str]], None]] = None,
    ) -> "FakeRunner":
        self._rules.append((list(prefix), returncode, stdout, stderr, effect))
        return self

    def __call__(self, argv, **kwargs):
        argv = list(argv)
        self.calls.append(argv)
        self.kwargs.append(kwargs)
        inner = strip_chroot(argv)
        for prefix, returncode, stdout, stderr, effect in reversed(self._rules):
            n = len(prefix)
            if argv[:n] == prefix or inner[:n] == prefix:
                if effect is not None:
                    effect(argv)
                return subprocess.CompletedProcess(argv, returncode, stdout, stderr)
        return subprocess.CompletedProcess(argv, 0, "", "")

    def ran(self, *prefix: str) -> List[List[str]]:
        """Calls whose argv (or in-chroot argv) starts with prefix."""
        n = len(prefix)
        return [c for c in self.calls if c[:n] == list(prefix) or strip_chroot(c)[:n] == list(prefix)]

    def inner_calls(self) -> List[List[str]]:
        return [strip_chroot(c) for c in self.calls if c and c[0] == "chroot"]


@pytest.fixture
def fake_run(monkeypatch) -> FakeRunner:
    """Replace subprocess.run for the duration of one test."""
    runner = FakeRunner()
    monkeypatch.setattr(subprocess, "run", runner)
    return runner


@pytest.fixture(autouse=True)
def _reset_globals():
    """Undo process-wide state a test may have set (timeout, log handlers)."""
    yield
    set_default_timeout(None)
    reset_logging()
    logging.getLogger().setLevel(logging.WARNING)


# ==============================================================================
# Capabilities
# ==============================================================================


@pytest.fixture
def make_caps() -> Callable[..., Capabilities]:
    """Factory: Capabilities holding exactly the named tools."""

    def _make(*tools: str) -> Capabilities:
        return Capabilities(tools={t: f"/usr/bin/{t}" for t in tools})

    return _make


@pytest.fixture
def all_caps(make_caps) -> Capabilities:
    """Every known tool present."""
    return make_caps(*KNOWN_TOOLS)


# ==============================================================================
# Filesystem trees
# ==============================================================================


DEBIAN_OS_RELEASE = """PRETTY_NAME="Debian GNU/Linux 12 (bookworm)"
NAME="Debian GNU/Linux"
VERSION_ID="12"
ID=debian
"""


def write_os_release(rootfs: Path, text: str, rel: str = "etc/os-release") -> Path:
    p = rootfs / rel
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")
    return p


@pytest.fixture
def rootfs(tmp_path) -> Path:
    """An empty unpacked root filesystem."""
    root = tmp_path / "work" / "rootfs"
    root.mkdir(parents=True)
    return root


@pytest.fixture
def recovery_root(tmp_path) -> Path:
    """A small resource tree: tool lists, scripts, branding, GUI profiles."""
    root = tmp_path / "recovery"
    lists = root / "common" / "tool-lists"
    lists.mkdir(parents=True)
    (lists / "disk.list").write_text(
        "# logical | arch | debian | fedora | suse | alpine | gentoo\n"
        "parted | parted | parted | parted | parted | parted | sys-block/parted\n"
        "grub | grub | grub-efi-amd64-bin grub-pc-bin | grub2-efi-x64 | grub2 | -- | sys-boot/grub\n",
        encoding="utf-8",
    )

    scripts = root / "common" / "scripts"
    scripts.mkdir(parents=True)
    (scripts / "detect-disks.sh").write_text("#!/bin/bash\nlsblk\n", encoding="utf-8")

    branding = root / "common" / "branding"
    branding.mkdir(parents=True)
    (branding / "motd.txt").write_text("Welcome to penguins-recovery\n", encoding="utf-8")

    launcher = root / "gui" / "recovery-launcher"
    launcher.mkdir(parents=True)
    (launcher / "recovery-launcher.sh").write_text("#!/bin/bash\necho menu\n", encoding="utf-8")
    (launcher / "penguins-recovery.desktop").write_text("[Desktop Entry]\nName=Penguins Recovery\n", encoding="utf-8")
    (root / "gui" / "base").mkdir(parents=True)
    (root / "gui" / "base" / "README").write_text("base\n", encoding="utf-8")

    minimal = root / "gui" / "profiles" / "minimal"
    minimal.mkdir(parents=True)
    (minimal / "profile.yaml").write_text(
        "name: minimal\npackages:\n  debian: [xorg, openbox]\n  arch: [xorg-server, openbox]\n",
        encoding="utf-8",
    )
    return root


@pytest.fixture
def iso_tree(tmp_path) -> Path:
    """Contents of a Debian-style live ISO, as the loop mount would show them."""
    iso = tmp_path / "iso-contents"
    (iso / "live").mkdir(parents=True)
    (iso / "live" / "filesystem.squashfs").write_bytes(b"squashfs-image")
    (iso / "isolinux").mkdir()
    (iso / "isolinux" / "isolinux.bin").write_bytes(b"bios")
    (iso / "isolinux" / "boot.cat").write_bytes(b"cat")
    (iso / "boot" / "grub").mkdir(parents=True)
    (iso / "boot" / "grub" / "efi.img").write_bytes(b"efi")
    (iso / "md5sum.txt").write_text(
        "0123456789abcdef0123456789abcdef  ./live/filesystem.squashfs\n"
        "fedcba9876543210fedcba9876543210  ./isolinux/isolinux.bin\n",
        encoding="utf-8",
    )
    return iso


@pytest.fixture
def os_release():
    """Writer for a release file inside a rootfs: os_release(rootfs, text, rel=...)."""
    return write_os_release


@pytest.fixture
def debian_rootfs(rootfs) -> Path:
    """A rootfs that identifies as Debian 12."""
    write_os_release(rootfs, DEBIAN_OS_RELEASE)
    return rootfs
