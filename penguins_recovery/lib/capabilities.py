from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, Optional

from ..errors import MissingToolError

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ("unsquashfs", "mksquashfs", "mount", "chroot")

ISO_MASTERING_TOOLS = ("xorriso", "genisoimage", "mkisofs")

# Everything a later step may ask about. Looked up once, never again.
KNOWN_TOOLS = (
    *REQUIRED_TOOLS,
    *ISO_MASTERING_TOOLS,
    "umount",
    "cp",
    "curl",
    "fsck.erofs",
    "mkfs.erofs",
    "mkfs.vfat",
    "mcopy",
    "sbctl",
    "sbsign",
    "openssl",
    "cert-to-efi-sig-list",
    "sign-efi-sig-list",
)


@dataclass(frozen=True)
class Capabilities:
    """Host tools found by a single lookup at startup."""

    tools: Dict[str, str] = field(default_factory=dict)

    def has(self, tool: str) -> bool:
        return tool in self.tools

    def path(self, tool: str) -> Optional[str]:
        return self.tools.get(tool)

    def require(self, tool: str, hint: str = "") -> str:
        p = self.tools.get(tool)
        if not p:
            raise MissingToolError(tool, hint)
        return p

    def first_of(self, candidates: Iterable[str]) -> Optional[str]:
        for t in candidates:
            if t in self.tools:
                return t
        return None

    @property
    def available(self) -> FrozenSet[str]:
        return frozenset(self.tools)


def detect_capabilities(
    tools: Iterable[str] = KNOWN_TOOLS,
    *,
    which: Callable[[str], Optional[str]] = shutil.which,
) -> Capabilities:
    found: Dict[str, str] = {}
    missing: list[str] = []
    for t in tools:
        p = which(t)
        if p:
            found[t] = p
        else:
            missing.append(t)

    logger.info("Host tools found: %s", ", ".join(sorted(found)) or "none")
    if missing:
        logger.info("Host tools missing: %s", ", ".join(sorted(missing)))
    return Capabilities(tools=found)


def check_required(caps: Capabilities, *, needs_download: bool = False) -> None:
    """Fail before any destructive action when a mandatory tool is absent."""

    for t in REQUIRED_TOOLS:
        caps.require(t)
    if needs_download:
        caps.require("curl", "needed to fetch a remote ISO")
    if caps.first_of(ISO_MASTERING_TOOLS) is None:
        raise MissingToolError("xorriso", "no ISO-mastering tool (xorriso, genisoimage, mkisofs) found")
