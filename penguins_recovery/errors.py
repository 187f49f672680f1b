"""Exceptions raised by the adapter pipeline.

Exception Hierarchy:
    AdapterError (base, a RuntimeError)
        ├── UsageError
        ├── PrivilegeError
        ├── MissingToolError
        ├── CommandError
        ├── WorkDirLockedError
        ├── ExtractionError
        ├── UnsupportedFamilyError
        ├── PackageInstallError
        ├── GuiProfileError
        ├── InjectionError
        └── IsoMasteringError

Every AdapterError is fatal for the run: the orchestrator moves to the
failed state, cleans up mounts and the work directory, and exits non-zero.
Tolerated failures (a single gentoo package, a Secure Boot strategy) are
logged as warnings and never raised.
"""

from __future__ import annotations

from typing import Sequence


class AdapterError(RuntimeError):
    """Base exception for all adapter failures."""


class UsageError(AdapterError):
    """Invalid or missing command-line input."""


class PrivilegeError(AdapterError):
    """The adapter needs root for mount, chroot and mksquashfs."""

    def __init__(self, reason: str = "must be run as root (need mount, chroot, mksquashfs)"):
        super().__init__(reason)


class MissingToolError(AdapterError):
    """A required external tool is not installed on the host."""

    def __init__(self, tool: str, hint: str = ""):
        self.tool = tool
        self.hint = hint
        msg = f"Required tool not found: {tool}"
        if hint:
            msg += f" ({hint})"
        super().__init__(msg)


class CommandError(AdapterError):
    """An external command failed or exceeded its timeout."""

    def __init__(self, argv: Sequence[str], returncode: int | None, stderr: str = "", *, timed_out: bool = False):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        self.timed_out = timed_out
        cmd = " ".join(self.argv)
        if timed_out:
            msg = f"Command timed out: {cmd}"
        else:
            msg = f"Command failed ({returncode}): {cmd}"
        if stderr:
            msg += f"\n{stderr.strip()}"
        super().__init__(msg)


class WorkDirLockedError(AdapterError):
    """Another adapter run holds the work directory."""

    def __init__(self, work_dir: str):
        self.work_dir = work_dir
        super().__init__(f"Work directory is in use by another adapter run: {work_dir}")


class ExtractionError(AdapterError):
    """The input ISO could not be unpacked into a usable rootfs."""


class UnsupportedFamilyError(AdapterError):
    """The rootfs belongs to a distro family without an installer."""

    def __init__(self, distro_id: str, id_like: Sequence[str] = ()):
        self.distro_id = distro_id
        self.id_like = list(id_like)
        like = " ".join(self.id_like) or "none"
        super().__init__(f"No installer for distro family (ID={distro_id}, ID_LIKE={like})")


class PackageInstallError(AdapterError):
    """A package transaction failed under an all-or-nothing package manager."""

    def __init__(self, family: str, packages: Sequence[str], reason: str):
        self.family = family
        self.packages = list(packages)
        super().__init__(f"[{family}] package installation failed: {reason}")


class GuiProfileError(AdapterError):
    """The requested GUI profile has no usable configuration or could not be installed."""

    def __init__(self, profile: str, profile_dir: str, reason: str | None = None):
        self.profile = profile
        self.profile_dir = profile_dir
        if reason is None:
            msg = f"No profile configuration found for: {profile} (expected YAML/JSON in {profile_dir})"
        else:
            msg = f"GUI profile {profile} ({profile_dir}): {reason}"
        super().__init__(msg)


class InjectionError(AdapterError):
    """Recovery files could not be written into the rootfs."""


class IsoMasteringError(AdapterError):
    """No ISO-mastering tool is available, or mastering failed."""
