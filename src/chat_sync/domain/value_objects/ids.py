from __future__ import annotations

from typing import NewType

LocalId = NewType("LocalId", str)

LOCAL_ID_PREFIX = "local-"
SERVER_ID_PREFIX = "srv-"


def server_local_id(message_id: int) -> LocalId:
    """Render key for a row that arrived from the server."""
    return LocalId(f"{SERVER_ID_PREFIX}{message_id}")
