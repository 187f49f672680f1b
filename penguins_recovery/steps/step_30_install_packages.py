from __future__ import annotations

import logging

from ..context import AdapterCtx, AdapterState
from ..lib.chroot import chroot_session
from ..lib.pkg import InstallFlags, installer_for
from ..lib.tool_lists import resolve_packages

logger = logging.getLogger(__name__)


class InstallPackagesStep:
    step_id = "30_install_packages"
    reaches = AdapterState.PACKAGES_INSTALLED

    def enabled(self, ctx: AdapterCtx) -> bool:
        return True

    def run(self, ctx: AdapterCtx) -> None:
        family = ctx.require_family()
        installer = installer_for(family)
        packages = resolve_packages(family, ctx.recovery_root / "common/tool-lists")

        flags = InstallFlags(with_rescapp=ctx.invocation.with_rescapp)
        rootfs = ctx.require_image().rootfs
        with chroot_session(rootfs):
            report = installer.install_packages(rootfs, packages, flags)

        for pkg in report.skipped:
            ctx.warn(f"package not installed: {pkg}")
