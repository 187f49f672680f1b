from __future__ import annotations

import logging

from ..context import AdapterCtx, AdapterState
from ..errors import AdapterError
from ..lib.secureboot import apply_secureboot

logger = logging.getLogger(__name__)


class SecureBootChainStep:
    step_id = "60_secureboot_chain"
    reaches = AdapterState.SECUREBOOT_CHAINED

    def enabled(self, ctx: AdapterCtx) -> bool:
        return ctx.invocation.secureboot

    def run(self, ctx: AdapterCtx) -> None:
        image = ctx.require_image()
        key_dirs = [ctx.invocation.sb_key_dir] if ctx.invocation.sb_key_dir else []
        try:
            ctx.secureboot_method = apply_secureboot(
                image.iso_dir,
                image.rootfs,
                ctx.caps,
                key_dirs=key_dirs,
                mount_dir=ctx.efi_mnt,
            )
        except (AdapterError, OSError) as e:
            # The ISO still boots with Secure Boot disabled.
            logger.warning("Secure Boot setup failed, continuing without it: %s", e)
            ctx.secureboot_method = "none"

        if ctx.secureboot_method == "none":
            ctx.warn("no Secure Boot chain; the ISO needs Secure Boot disabled")
