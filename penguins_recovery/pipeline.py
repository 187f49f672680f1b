from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from typing import List, Protocol, Sequence

from .context import AdapterCtx, AdapterState
from .lib.chroot import umount_chroot_binds
from .lib.mounts import active_mounts_under, lazy_umount

logger = logging.getLogger(__name__)


class Step(Protocol):
    """One state transition of the adapter."""

    step_id: str
    reaches: AdapterState

    def enabled(self, ctx: AdapterCtx) -> bool:
        ...

    def run(self, ctx: AdapterCtx) -> None:
        ...


@dataclass(frozen=True)
class PipelineResult:
    state: AdapterState
    ran_steps: List[str]
    skipped_steps: List[str]


def release_mounts(ctx: AdapterCtx) -> List[str]:
    """Lazily detach everything mounted below the work directory.

    Returns the mount points still active afterwards.
    """

    if ctx.rootfs.is_dir():
        umount_chroot_binds(ctx.rootfs)
    for mp in (ctx.iso_mnt, ctx.efi_mnt):
        if mp.is_dir():
            lazy_umount(mp)
    for mp in active_mounts_under(ctx.work_dir):
        lazy_umount(mp)
    return active_mounts_under(ctx.work_dir)


def cleanup(ctx: AdapterCtx) -> bool:
    """Release mounts, then remove the work directory unless --keep-work.

    Returns True when the work directory was removed.
    """

    busy = release_mounts(ctx)
    if ctx.invocation.keep_work:
        logger.info("Work directory preserved: %s", str(ctx.work_dir))
        return False
    if busy:
        logger.error(
            "Not removing %s: mounts still active below it: %s", str(ctx.work_dir), ", ".join(busy)
        )
        return False
    if ctx.work_dir.exists():
        logger.info("Removing work directory %s", str(ctx.work_dir))
        try:
            shutil.rmtree(ctx.work_dir)
        except OSError as e:
            logger.error("Could not remove work directory %s: %s", str(ctx.work_dir), e)
            return False
    return True


def run_pipeline(ctx: AdapterCtx, steps: Sequence[Step]) -> PipelineResult:
    """Run steps in order, advancing ctx.state; disabled steps are skipped.

    Any exception moves ctx to FAILED and is re-raised; cleanup runs either way.
    """

    ran: List[str] = []
    skipped: List[str] = []

    try:
        for step in steps:
            if not step.enabled(ctx):
                logger.info("Skipping step %s (not requested)", step.step_id)
                skipped.append(step.step_id)
                continue

            logger.info("Running step %s", step.step_id)
            step.run(ctx)
            ctx.state = step.reaches
            ran.append(step.step_id)
            logger.info("State: %s", ctx.state.value)

        ctx.state = AdapterState.DONE
    except BaseException:
        logger.error("Step failed in state %s", ctx.state.value)
        ctx.state = AdapterState.FAILED
        raise
    finally:
        cleanup(ctx)

    return PipelineResult(state=ctx.state, ran_steps=ran, skipped_steps=skipped)
