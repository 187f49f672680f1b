from __future__ import annotations

from ..context import AdapterCtx, AdapterState
from ..lib.inject import inject_recovery


class InjectRecoveryStep:
    step_id = "40_inject_recovery"
    reaches = AdapterState.INJECTED

    def enabled(self, ctx: AdapterCtx) -> bool:
        return True

    def run(self, ctx: AdapterCtx) -> None:
        inject_recovery(
            ctx.require_image().rootfs,
            ctx.recovery_root,
            with_rescapp=ctx.invocation.with_rescapp,
            hostname=ctx.config.hostname,
        )
