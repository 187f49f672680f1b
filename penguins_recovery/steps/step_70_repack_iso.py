from __future__ import annotations

from ..context import AdapterCtx, AdapterState
from ..lib.iso_repack import repack_iso


class RepackIsoStep:
    step_id = "70_repack_iso"
    reaches = AdapterState.REPACKED

    def enabled(self, ctx: AdapterCtx) -> bool:
        return True

    def run(self, ctx: AdapterCtx) -> None:
        image = ctx.require_image()
        cfg = ctx.config
        ctx.output_iso = repack_iso(
            image=image.fs_image,
            rootfs=image.rootfs,
            iso_dir=image.iso_dir,
            output=ctx.invocation.output,
            caps=ctx.caps,
            volume_id=cfg.volume_id,
            squashfs_options=cfg.squashfs_options,
            erofs_options=cfg.erofs_options,
            keep_work=ctx.invocation.keep_work,
        )
