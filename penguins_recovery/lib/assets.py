from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


def copy_tree(src: str | Path, dst: str | Path, *, replace: bool = False) -> None:
    """Copy src into dst, keeping symlinks and modes.

    With replace, dst is emptied first so files removed from src do not
    linger from an earlier run.
    """

    s = Path(src)
    d = Path(dst)
    if not s.is_dir():
        raise FileNotFoundError(str(s))

    if replace and (d.exists() or d.is_symlink()):
        if d.is_dir() and not d.is_symlink():
            shutil.rmtree(d)
        else:
            d.unlink()

    d.mkdir(parents=True, exist_ok=True)
    for item in sorted(s.rglob("*")):
        rel = item.relative_to(s)
        out = d / rel
        if item.is_symlink():
            out.parent.mkdir(parents=True, exist_ok=True)
            if out.is_symlink() or out.exists():
                out.unlink()
            os.symlink(os.readlink(item), out)
        elif item.is_dir():
            out.mkdir(parents=True, exist_ok=True)
        else:
            out.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(item, out)


def install_file(src: str | Path, dst: str | Path, *, mode: int | None = None) -> Path:
    d = Path(dst)
    d.parent.mkdir(parents=True, exist_ok=True)
    if d.is_symlink():
        d.unlink()
    shutil.copyfile(src, d)
    if mode is not None:
        d.chmod(mode)
    return d


def write_text(dst: str | Path, contents: str, *, mode: int | None = None) -> Path:
    d = Path(dst)
    d.parent.mkdir(parents=True, exist_ok=True)
    if d.is_symlink():
        d.unlink()
    d.write_text(contents, encoding="utf-8")
    if mode is not None:
        d.chmod(mode)
    return d


def force_symlink(target: str, link: str | Path) -> Path:
    """ln -sf: point link at target, replacing whatever is there."""

    p = Path(link)
    p.parent.mkdir(parents=True, exist_ok=True)
    if p.is_symlink() or p.is_file():
        p.unlink()
    os.symlink(target, p)
    return p
