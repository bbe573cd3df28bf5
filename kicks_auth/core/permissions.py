"""
Capability maps layered on top of staff roles.

Stored as JSON text on ``admin_users.permissions``; a row may hold
anything from a proper object to an empty string or garbage left by an
old migration, so decoding never raises.
"""

from __future__ import annotations

import json
import logging

logger = logging.getLogger(__name__)

CAPABILITIES: tuple[str, ...] = ("all", "orders", "pos", "inventory", "analytics", "users")

_ROLE_DEFAULTS: dict[str, dict[str, bool]] = {
    "admin": {"all": True},
    "staff": {"orders": True, "pos": True},
}


def parse_permissions(raw: object) -> dict[str, bool]:
    """Decode a stored permission map; anything unreadable becomes ``{}``."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Unreadable permissions value; treating as empty")
            return {}
    if isinstance(raw, list):
        # Older rows stored a list of granted capability names.
        return {str(name): True for name in raw}
    if not isinstance(raw, dict):
        return {}
    return {str(name): bool(granted) for name, granted in raw.items()}


def dump_permissions(perms: dict[str, bool]) -> str:
    return json.dumps(perms, sort_keys=True)


def default_permissions(role: str) -> dict[str, bool]:
    return dict(_ROLE_DEFAULTS.get(role, _ROLE_DEFAULTS["staff"]))


def all_permissions() -> dict[str, bool]:
    """Every capability granted; used for legacy ``users.is_admin`` accounts."""
    return {name: True for name in CAPABILITIES}
