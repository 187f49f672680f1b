from __future__ import annotations

import logging

from ..context import AdapterCtx, AdapterState, ExtractedImage
from ..lib.iso_extract import extract_iso, fs_format_of

logger = logging.getLogger(__name__)


class ExtractIsoStep:
    step_id = "10_extract_iso"
    reaches = AdapterState.EXTRACTED

    def enabled(self, ctx: AdapterCtx) -> bool:
        return True

    def run(self, ctx: AdapterCtx) -> None:
        inv = ctx.invocation
        image = extract_iso(
            inv.input,
            work_dir=ctx.work_dir,
            caps=ctx.caps,
            remote=inv.input_is_remote,
        )
        ctx.image = ExtractedImage(work_dir=ctx.work_dir, fs_image=image, fs_format=fs_format_of(image))
