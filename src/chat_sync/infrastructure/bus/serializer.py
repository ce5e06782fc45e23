from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel

from chat_sync.domain.value_objects.enums import ChangeKind
from chat_sync.infrastructure.schemas import PushEnvelope


class _Encoder(json.JSONEncoder):
    def default(self, o: object) -> Any:
        if isinstance(o, BaseModel):
            return o.model_dump(mode="json")
        if isinstance(o, datetime):
            return o.isoformat()
        if isinstance(o, Enum):
            return o.value
        return super().default(o)


def dumps(value: Any) -> str:
    return json.dumps(value, cls=_Encoder, ensure_ascii=False)


def loads(raw: str | bytes) -> Any:
    return json.loads(raw)


def serialize_event(change: ChangeKind, row: dict[str, Any] | BaseModel) -> str:
    envelope = {"event": change.value, "data": row}
    return dumps(envelope)


def deserialize_event(raw: str | bytes) -> tuple[str, dict[str, Any]]:
    envelope = PushEnvelope.model_validate_json(raw)
    return envelope.event, envelope.data
