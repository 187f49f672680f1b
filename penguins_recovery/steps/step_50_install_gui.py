from __future__ import annotations

import logging

from ..context import AdapterCtx, AdapterState
from ..lib.gui import install_gui
from ..lib.pkg import installer_for

logger = logging.getLogger(__name__)


class InstallGuiStep:
    step_id = "50_install_gui"
    reaches = AdapterState.GUI_INSTALLED

    def enabled(self, ctx: AdapterCtx) -> bool:
        return ctx.invocation.wants_gui

    def run(self, ctx: AdapterCtx) -> None:
        profile = ctx.invocation.gui_profile.value
        logger.info("Installing GUI profile '%s'", profile)
        install_gui(
            ctx.require_image().rootfs,
            ctx.recovery_root,
            profile,
            installer_for(ctx.require_family()),
        )
