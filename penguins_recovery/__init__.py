"""Penguins-Recovery adapter (Python-first, step-driven).

Core design goals:
- Layer recovery tooling onto existing live ISOs
- One installer per distro family, one shared interface
- Scoped mounts, guaranteed cleanup
- Capability probing once, at startup
- Centralized logging
"""

__all__ = []
