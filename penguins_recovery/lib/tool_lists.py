"""Pipe-delimited tool lists (common/tool-lists/*.list).

Row format, one logical tool per line:

    logical-name | arch | debian | fedora | suse | alpine | gentoo

The legacy 3-column format (logical-name | arch | debian) is still read.
`--` marks a tool as unavailable on a family; a cell may name several
packages separated by whitespace.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .distro import DistroFamily

logger = logging.getLogger(__name__)

UNAVAILABLE = "--"

# 0-based cell index per family; cell 0 is the logical name.
FAMILY_COLUMNS: Dict[DistroFamily, int] = {
    DistroFamily.ARCH: 1,
    DistroFamily.DEBIAN: 2,
    DistroFamily.FEDORA: 3,
    DistroFamily.SUSE: 4,
    DistroFamily.ALPINE: 5,
    DistroFamily.GENTOO: 6,
}

FULL_COLUMNS = 7
LEGACY_COLUMNS = 3
FALLBACK_FAMILY = DistroFamily.DEBIAN


@dataclass(frozen=True)
class ToolListEntry:
    name: str
    cells: List[str] = field(default_factory=list)

    def packages_for(self, family: DistroFamily) -> List[str]:
        """Package names for family, or [] when the tool is unavailable there."""

        col = FAMILY_COLUMNS.get(family)
        if col is None:
            return []

        ncols = len(self.cells) + 1
        if ncols >= FULL_COLUMNS:
            cell = self.cells[col - 1]
        elif ncols >= LEGACY_COLUMNS and col < LEGACY_COLUMNS:
            cell = self.cells[col - 1]
        elif ncols >= LEGACY_COLUMNS:
            cell = self.cells[FAMILY_COLUMNS[FALLBACK_FAMILY] - 1]
        else:
            return []

        if not cell or cell == UNAVAILABLE:
            return []
        return [p for p in cell.split() if p != UNAVAILABLE]


def _parse_line(line: str) -> Optional[ToolListEntry]:
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None
    cells = [c.strip() for c in line.split("|")]
    if not cells[0]:
        return None
    return ToolListEntry(name=cells[0], cells=cells[1:])


def parse_tool_list(path: str | Path) -> List[ToolListEntry]:
    p = Path(path)
    entries: List[ToolListEntry] = []
    seen: set[str] = set()
    for lineno, line in enumerate(p.read_text(encoding="utf-8").splitlines(), start=1):
        entry = _parse_line(line)
        if entry is None:
            continue
        if entry.name in seen:
            logger.warning("%s:%d: duplicate tool %r ignored", p.name, lineno, entry.name)
            continue
        seen.add(entry.name)
        entries.append(entry)
    return entries


def list_files(lists_dir: str | Path) -> List[Path]:
    d = Path(lists_dir)
    if not d.is_dir():
        return []
    return sorted(f for f in d.glob("*.list") if f.is_file())


def resolve_packages(family: DistroFamily, lists_dir: str | Path) -> List[str]:
    """Sorted, de-duplicated package names for family across every list file."""

    files = list_files(lists_dir)
    if not files:
        logger.warning("No tool lists found under %s; package set is empty", str(lists_dir))
        return []

    packages: set[str] = set()
    for f in files:
        for entry in parse_tool_list(f):
            packages.update(entry.packages_for(family))

    resolved = sorted(packages)
    logger.info("Resolved %d %s packages from %d list(s)", len(resolved), family.value, len(files))
    return resolved
