from fastapi import Header

from cozmo_inbox.db import get_db

__all__ = ["get_db", "get_owner_id"]


def get_owner_id(x_user_id: str | None = Header(default=None)) -> str | None:
    """Owner tag stamped on created rows; row-level access is enforced by the store."""
    return x_user_id or None
