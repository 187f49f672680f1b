from __future__ import annotations

import logging

from ..context import AdapterCtx, AdapterState
from ..errors import UnsupportedFamilyError
from ..lib.distro import DistroFamily, detect_family, read_os_release

logger = logging.getLogger(__name__)


class DetectFamilyStep:
    step_id = "20_detect_family"
    reaches = AdapterState.FAMILY_DETECTED

    def enabled(self, ctx: AdapterCtx) -> bool:
        return True

    def run(self, ctx: AdapterCtx) -> None:
        rel = read_os_release(ctx.require_image().rootfs)
        family = detect_family(rel.id, rel.id_like)
        logger.info(
            "Detected: %s (ID=%s, ID_LIKE=%s, family=%s)",
            rel.display_name,
            rel.id,
            " ".join(rel.id_like) or "-",
            family.value,
        )
        if family is DistroFamily.UNKNOWN:
            raise UnsupportedFamilyError(rel.id, rel.id_like)
        ctx.release = rel
        ctx.family = family
