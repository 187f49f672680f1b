from __future__ import annotations

import argparse
import logging
from typing import Optional

from .errors import AdapterError
from .lib.capabilities import detect_capabilities
from .lib.sb_keys import REQUIRED_TOOLS, generate_key_set
from .logging_utils import DEFAULT_LOG_PATH, add_verbosity_flags, configure_logging, console_level

logger = logging.getLogger(__name__)


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(
        prog="penguins-sb-keys",
        description="Generate a custom Secure Boot key set (PK, KEK, db) for firmware enrollment.",
    )
    p.add_argument("--out-dir", default=".", help="Parent directory for secureboot-keys-<timestamp>/")
    p.add_argument(
        "--with-microsoft",
        action="store_true",
        help="Also build db-with-ms.auth trusting Microsoft's UEFI CAs (needs network)",
    )
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to log file")
    add_verbosity_flags(p)
    args = p.parse_args(argv)

    configure_logging(log_path=args.log, console=console_level(args.verbose, args.quiet))
    try:
        caps = detect_capabilities((*REQUIRED_TOOLS, "curl"))
        artifacts = generate_key_set(args.out_dir, caps, with_microsoft=args.with_microsoft)
    except (AdapterError, FileExistsError) as e:
        logger.error("%s", e)
        return 1

    for name, auth in sorted(artifacts.auths.items()):
        logger.info("  %-10s %s", name, str(auth))
    return 0
