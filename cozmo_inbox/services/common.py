from __future__ import annotations

import uuid

from cozmo_inbox.services.errors import InboxValidationError


def coerce_uuid(value) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise InboxValidationError("invalid_id", f"Invalid identifier: {value!r}")
