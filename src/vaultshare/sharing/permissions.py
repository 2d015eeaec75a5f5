"""Share permission enum and permission-set validation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from .exceptions import InvalidPermissionsError

if TYPE_CHECKING:
    from collections.abc import Iterable


class SharePermission(str, Enum):
    """Capability granted by a share."""

    READ = "read"
    WRITE = "write"
    SHARE = "share"


_ORDER = {p: i for i, p in enumerate(SharePermission)}


def parse_permissions(values: Iterable[SharePermission | str]) -> frozenset[SharePermission]:
    """Validate *values* and return them as a permission set.

    Raises ``InvalidPermissionsError`` if the set is empty or holds a token
    outside READ/WRITE/SHARE.  Tokens are matched case-insensitively.
    """
    if isinstance(values, str):
        values = [values]
    perms: set[SharePermission] = set()
    unknown: list[str] = []
    for value in values:
        if isinstance(value, SharePermission):
            perms.add(value)
            continue
        try:
            perms.add(SharePermission(str(value).strip().lower()))
        except ValueError:
            unknown.append(str(value))
    if unknown:
        raise InvalidPermissionsError(
            f"Unknown permission(s): {', '.join(sorted(unknown))}",
            details={"unknown": sorted(unknown)},
        )
    if not perms:
        raise InvalidPermissionsError("At least one permission is required")
    return frozenset(perms)


def serialize_permissions(perms: Iterable[SharePermission]) -> str:
    """Stable storage form: ``"read,write"``."""
    return ",".join(p.value for p in sorted(set(perms), key=_ORDER.__getitem__))


def deserialize_permissions(raw: str) -> frozenset[SharePermission]:
    return frozenset(SharePermission(token) for token in raw.split(",") if token)
