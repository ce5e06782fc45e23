"""Wire rows exchanged with the remote store, the push broker and the cache."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict

from chat_sync.domain.value_objects.enums import MessageKind, SenderRole


def _assume_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_assume_utc)]


class ReplyRow(BaseModel):
    id: int
    message_text: str | None = None
    message_type: MessageKind = MessageKind.TEXT
    sender_type: SenderRole


class MessageRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    company_id: int
    sender_type: SenderRole
    message_type: MessageKind = MessageKind.TEXT
    message_text: str | None = None
    media_url: str | None = None
    media_filename: str | None = None
    media_size: int | None = None
    media_mimetype: str | None = None
    voice_duration: float | None = None
    video_duration: float | None = None
    created_at: UtcDatetime
    is_read: bool = False
    reply_to: ReplyRow | None = None
    # Only present in cached rows: keeps render keys stable across reloads.
    local_id: str | None = None


class ConversationRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    company_id: int
    company_name: str = ""
    company_phone: str | None = None
    unread_count_for_admin: int = 0
    unread_count_for_company: int = 0
    last_message_text: str | None = None
    last_message_type: MessageKind | None = None
    last_message_sender: SenderRole | None = None
    last_message_at: UtcDatetime | None = None


class MessagesResponse(BaseModel):
    messages: list[MessageRow] = []


class ConversationsResponse(BaseModel):
    chats: list[ConversationRow] = []


class SendMessageResponse(BaseModel):
    message: MessageRow


class UploadResponse(BaseModel):
    url: str
    filename: str
    size: int = 0
    mimetype: str = "application/octet-stream"
    filepath: str | None = None


class SendMessageRequest(BaseModel):
    company_id: int
    sender_type: SenderRole
    message_type: MessageKind
    message_text: str | None = None
    url: str | None = None
    media_filename: str | None = None
    media_size: int | None = None
    media_mimetype: str | None = None
    voice_duration: float | None = None
    video_duration: float | None = None
    reply_to_id: int | None = None


class MarkReadRequest(BaseModel):
    company_id: int
    reader_type: SenderRole


class PushEnvelope(BaseModel):
    """Change notification as published on a push channel."""

    event: Literal["INSERT", "UPDATE"]
    data: dict[str, Any]
