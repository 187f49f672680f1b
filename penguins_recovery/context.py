from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

from .config import AdapterConfig
from .errors import UsageError
from .lib.capabilities import Capabilities
from .lib.distro import DistroFamily, OsRelease


class GuiProfile(str, Enum):
    NONE = "none"
    MINIMAL = "minimal"
    TOUCH = "touch"
    FULL = "full"


class AdapterState(str, Enum):
    INIT = "init"
    EXTRACTED = "extracted"
    FAMILY_DETECTED = "family_detected"
    PACKAGES_INSTALLED = "packages_installed"
    INJECTED = "injected"
    GUI_INSTALLED = "gui_installed"
    SECUREBOOT_CHAINED = "secureboot_chained"
    REPACKED = "repacked"
    DONE = "done"
    FAILED = "failed"


def is_remote(source: str) -> bool:
    return source.startswith(("http://", "https://"))


def default_output_for(source: str, *, cwd: Optional[str] = None) -> Path:
    """recovery-<input name without .iso>.iso in the current directory."""

    name = urlparse(source).path if is_remote(source) else source
    base = os.path.basename(name.rstrip("/")) or "input"
    if base.endswith(".iso"):
        base = base[: -len(".iso")]
    return Path(cwd or os.getcwd()) / f"recovery-{base}.iso"


@dataclass(frozen=True)
class AdapterInvocation:
    input: str
    output: Path
    work_dir: Path
    gui_profile: GuiProfile = GuiProfile.NONE
    with_rescapp: bool = False
    keep_work: bool = False
    secureboot: bool = False
    sb_key_dir: Optional[Path] = None

    @property
    def input_is_remote(self) -> bool:
        return is_remote(self.input)

    @property
    def wants_gui(self) -> bool:
        return self.gui_profile is not GuiProfile.NONE

    def validate(self) -> None:
        if not self.input:
            raise UsageError("Missing required --input argument.")
        if not self.input_is_remote and not Path(self.input).is_file():
            raise UsageError(f"Input ISO not found: {self.input}")
        if self.sb_key_dir is not None and not self.sb_key_dir.is_dir():
            raise UsageError(f"Secure Boot key directory not found: {self.sb_key_dir}")
        if self.work_dir.resolve() in self.output.resolve().parents:
            raise UsageError("--output must not live inside --work-dir (the work directory is deleted)")


@dataclass
class ExtractedImage:
    work_dir: Path
    fs_image: Path
    fs_format: str

    @property
    def iso_mnt(self) -> Path:
        return self.work_dir / "iso_mnt"

    @property
    def iso_dir(self) -> Path:
        return self.work_dir / "iso"

    @property
    def rootfs(self) -> Path:
        return self.work_dir / "rootfs"


@dataclass
class AdapterCtx:
    """Everything one adapter run reads and writes, passed to every step."""

    invocation: AdapterInvocation
    config: AdapterConfig
    caps: Capabilities
    state: AdapterState = AdapterState.INIT
    image: Optional[ExtractedImage] = None
    release: Optional[OsRelease] = None
    family: Optional[DistroFamily] = None
    secureboot_method: str = "none"
    output_iso: Optional[Path] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def work_dir(self) -> Path:
        return self.invocation.work_dir

    @property
    def iso_mnt(self) -> Path:
        return self.work_dir / "iso_mnt"

    @property
    def iso_dir(self) -> Path:
        return self.work_dir / "iso"

    @property
    def rootfs(self) -> Path:
        return self.work_dir / "rootfs"

    @property
    def efi_mnt(self) -> Path:
        return self.work_dir / "efi_mnt"

    @property
    def recovery_root(self) -> Path:
        return self.config.recovery_root

    def require_image(self) -> ExtractedImage:
        if self.image is None:
            raise RuntimeError("ISO has not been extracted yet")
        return self.image

    def require_family(self) -> DistroFamily:
        if self.family is None:
            raise RuntimeError("Distro family has not been detected yet")
        return self.family

    def warn(self, message: str) -> None:
        self.warnings.append(message)
