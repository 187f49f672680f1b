from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import UsageError

DEFAULT_WORK_DIR = "/tmp/penguins-recovery-work"
DEFAULT_VOLUME_ID = "PENGUINS_RECOVERY"
DEFAULT_HOSTNAME = "penguins-recovery"
DEFAULT_SQUASHFS_OPTIONS = ["-comp", "xz", "-b", "1M", "-Xdict-size", "100%", "-noappend"]
DEFAULT_EROFS_OPTIONS = ["-zlz4hc"]
DEFAULT_COMMAND_TIMEOUT_S = 4 * 60 * 60


def repo_root() -> Path:
    # penguins_recovery/config.py -> penguins_recovery -> repo root
    return Path(__file__).resolve().parents[1]


@dataclass(frozen=True)
class AdapterConfig:
    raw: Dict[str, Any] = field(default_factory=dict)

    def _section(self, name: str) -> Dict[str, Any]:
        return self.raw.get(name) or {}

    @property
    def work_dir(self) -> str:
        return str(self._section("paths").get("work_dir") or DEFAULT_WORK_DIR)

    @property
    def recovery_root(self) -> Path:
        p = self._section("paths").get("recovery_root")
        return Path(p) if p else repo_root()

    @property
    def log_path(self) -> Optional[str]:
        p = self._section("paths").get("log")
        return str(p) if p else None

    @property
    def volume_id(self) -> str:
        return str(self._section("iso").get("volume_id") or DEFAULT_VOLUME_ID)

    @property
    def hostname(self) -> str:
        return str(self._section("branding").get("hostname") or DEFAULT_HOSTNAME)

    @property
    def squashfs_options(self) -> List[str]:
        opts = self._section("squashfs").get("options")
        return [str(o) for o in opts] if opts else list(DEFAULT_SQUASHFS_OPTIONS)

    @property
    def erofs_options(self) -> List[str]:
        opts = self._section("erofs").get("options")
        return [str(o) for o in opts] if opts else list(DEFAULT_EROFS_OPTIONS)

    @property
    def command_timeout_s(self) -> Optional[float]:
        v = self.raw.get("command_timeout_s", DEFAULT_COMMAND_TIMEOUT_S)
        if v in (None, 0, "0"):
            return None
        return float(v)


def load_config(path: Optional[str]) -> AdapterConfig:
    """Load the optional YAML config; no path means built-in defaults."""

    if not path:
        return AdapterConfig()

    p = Path(path)
    if not p.exists():
        raise UsageError(f"Config file not found: {path}")

    if p.suffix.lower() not in {".yaml", ".yml"}:
        raise UsageError("adapter config must be YAML")

    raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise UsageError(f"{p.name} must contain a mapping/object")

    return AdapterConfig(raw=raw)
