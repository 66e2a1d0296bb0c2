"""
cloudbase_manager.tier0_core.ids
─────────────────────────────────
Identifier helpers. Environment ids are ``<name>-<6 hex chars>``; the suffix
is random and only best-effort unique, the platform rejects collisions.
"""
from __future__ import annotations

import secrets


def guid6() -> str:
    """Six lowercase hex characters."""
    return f"{secrets.randbelow(0x1000000):06x}"


def new_env_id(name: str) -> str:
    return f"{name}-{guid6()}"


__all__ = ["guid6", "new_env_id"]
