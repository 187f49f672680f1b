from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

PROFILE_SUFFIXES = (".yaml", ".yml", ".json")


def load_document(path: str | Path) -> Dict[str, Any]:
    """Load a YAML or JSON manifest (by suffix) that must be a mapping."""

    p = Path(path)
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Manifest must be a mapping/dict: {p}")
    return data


def find_profile_document(profile_dir: str | Path) -> Optional[Path]:
    """First profile document in profile_dir, YAML preferred over JSON."""

    d = Path(profile_dir)
    if not d.is_dir():
        return None
    for suffix in PROFILE_SUFFIXES:
        hits = sorted(p for p in d.glob(f"*{suffix}") if p.is_file())
        if hits:
            return hits[0]
    return None


def profile_packages(doc: Dict[str, Any], family: str) -> List[str]:
    packages = doc.get("packages") or {}
    if not isinstance(packages, dict):
        raise ValueError("profile 'packages' must map family -> list of package names")
    pkgs = packages.get(family) or []
    if isinstance(pkgs, str):
        pkgs = pkgs.split()
    if not isinstance(pkgs, list):
        raise ValueError(f"profile packages for {family} must be a list")
    return [str(p).strip() for p in pkgs if str(p).strip()]
