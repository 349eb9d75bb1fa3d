from __future__ import annotations

import hashlib
import re

from autotown_core.usage.types import BoardSighting

_HASHED_IDENTITY_RE = re.compile(r"^[0-9a-f]{64}$")

# Legacy product names reported by older ground-control builds.
BOARD_NAME_ALIASES: dict[str, str] = {
    "CopterControl": "CC3D",
}


def hash_identity(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def is_hashed_identity(value: str) -> bool:
    return bool(_HASHED_IDENTITY_RE.match(value))


def resolve_identity(sighting: BoardSighting) -> str | None:
    """Return the stable controller key for a sighting, or None to skip it.

    A reported UUID is used verbatim. Without one, the CPU serial is hashed
    so the raw hardware identifier never becomes a stored key.
    """
    if sighting.uuid:
        return sighting.uuid
    if sighting.cpu:
        return hash_identity(sighting.cpu)
    return None


def normalize_board_name(name: str) -> str:
    return BOARD_NAME_ALIASES.get(name, name)
