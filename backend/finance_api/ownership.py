from typing import Any, Optional

from .errors import NotFound


def authorize(principal_id: str, owner_id: Optional[str]) -> bool:
    return owner_id is not None and principal_id == owner_id


def owned_or_not_found(row: Optional[dict[str, Any]], principal_id: str, what: str) -> dict[str, Any]:
    # Absent and foreign rows answer the same way so ids of other users never leak.
    if row is None or not authorize(principal_id, row.get("user_id")):
        raise NotFound(f"{what} not found")
    return row
