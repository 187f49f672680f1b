from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Optional

from .config import AdapterConfig, load_config
from .context import AdapterCtx, AdapterInvocation, GuiProfile, default_output_for
from .errors import AdapterError, PrivilegeError, UsageError
from .lib.capabilities import Capabilities, check_required, detect_capabilities
from .lib.command import set_default_timeout
from .lib.gui import check_profile_exists
from .lib.worklock import WorkDirLock
from .logging_utils import DEFAULT_LOG_PATH, add_verbosity_flags, configure_logging, console_level
from .pipeline import PipelineResult, run_pipeline
from .steps import (
    DetectFamilyStep,
    ExtractIsoStep,
    InjectRecoveryStep,
    InstallGuiStep,
    InstallPackagesStep,
    RepackIsoStep,
    SecureBootChainStep,
)

logger = logging.getLogger(__name__)

RESOURCE_DIRS = ("common/tool-lists", "common/scripts")


def build_steps():
    return [
        ExtractIsoStep(),
        DetectFamilyStep(),
        InstallPackagesStep(),
        InjectRecoveryStep(),
        InstallGuiStep(),
        SecureBootChainStep(),
        RepackIsoStep(),
    ]


def build_invocation(args: argparse.Namespace, cfg: AdapterConfig) -> AdapterInvocation:
    """CLI flags win over the config file."""

    return AdapterInvocation(
        input=args.input,
        output=Path(args.output) if args.output else default_output_for(args.input),
        work_dir=Path(args.work_dir or cfg.work_dir),
        gui_profile=GuiProfile(args.gui),
        with_rescapp=args.with_rescapp,
        keep_work=args.keep_work,
        secureboot=args.secureboot,
        sb_key_dir=Path(args.sb_key_dir) if args.sb_key_dir else None,
    )


def require_root() -> None:
    if os.geteuid() != 0:
        raise PrivilegeError()


def require_resources(recovery_root: Path) -> None:
    """The tool lists and rescue scripts must be there, or the ISO ships without them."""

    missing = [rel for rel in RESOURCE_DIRS if not (recovery_root / rel).is_dir()]
    if missing:
        raise UsageError(
            f"Recovery resources not found under {recovery_root} (missing {', '.join(missing)}); "
            "pass --recovery-root or set paths.recovery_root"
        )


def preflight(inv: AdapterInvocation, cfg: AdapterConfig) -> Capabilities:
    """Everything that can fail before the work directory is touched."""

    require_root()
    inv.validate()
    require_resources(cfg.recovery_root)
    caps = detect_capabilities()
    check_required(caps, needs_download=inv.input_is_remote)
    if inv.wants_gui:
        check_profile_exists(cfg.recovery_root, inv.gui_profile.value)
    return caps


def run(inv: AdapterInvocation, cfg: AdapterConfig) -> PipelineResult:
    """Preflight, lock the work directory, run every step."""

    logger.info("Input:   %s", inv.input)
    logger.info("Output:  %s", str(inv.output))
    logger.info("Workdir: %s", str(inv.work_dir))
    logger.info(
        "Options: gui=%s rescapp=%s secureboot=%s keep-work=%s",
        inv.gui_profile.value,
        inv.with_rescapp,
        inv.secureboot,
        inv.keep_work,
    )

    caps = preflight(inv, cfg)
    with WorkDirLock(inv.work_dir):
        ctx = AdapterCtx(invocation=inv, config=cfg, caps=caps)
        result = run_pipeline(ctx, build_steps())

    for w in ctx.warnings:
        logger.warning("%s", w)
    logger.info("Recovery ISO created: %s", str(ctx.output_iso or inv.output))
    if inv.secureboot:
        logger.info("Secure Boot method: %s", ctx.secureboot_method)
    return result


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="penguins-adapter",
        description="Turn a naked live ISO into a penguins-recovery ISO.",
    )
    p.add_argument("--input", required=True, help="Input ISO (local path or http(s) URL)")
    p.add_argument("--output", default=None, help="Output ISO (default: ./recovery-<input>.iso)")
    p.add_argument("--with-rescapp", action="store_true", help="Also inject the rescapp GUI wizard")
    p.add_argument(
        "--gui",
        default=GuiProfile.NONE.value,
        choices=[g.value for g in GuiProfile],
        help="GUI profile to layer on top (default: none)",
    )
    p.add_argument("--work-dir", default=None, help="Working directory (default from config)")
    p.add_argument("--keep-work", action="store_true", help="Keep the work directory after the run")
    p.add_argument("--secureboot", action="store_true", help="Set up a Secure Boot-compatible EFI chain")
    p.add_argument("--sb-key-dir", default=None, help="Directory with db.key and db.pem for sbsign")
    p.add_argument("--config", default=None, help="Adapter config (YAML)")
    p.add_argument("--recovery-root", default=None, help="Resource tree (tool lists, scripts, gui)")
    p.add_argument("--log", default=None, help=f"Path to adapter log (default: {DEFAULT_LOG_PATH})")
    add_verbosity_flags(p)
    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        cfg = load_config(args.config)
        if args.recovery_root:
            raw = dict(cfg.raw)
            raw["paths"] = {**(raw.get("paths") or {}), "recovery_root": args.recovery_root}
            cfg = AdapterConfig(raw=raw)

        configure_logging(
            log_path=args.log or cfg.log_path or DEFAULT_LOG_PATH,
            console=console_level(args.verbose, args.quiet),
        )
        set_default_timeout(cfg.command_timeout_s)

        run(build_invocation(args, cfg), cfg)
        return 0
    except AdapterError as e:
        logger.error("%s", e)
        return 1
