from __future__ import annotations

from typing import Protocol

from chat_sync.application.dto.message import UploadedAttachment
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.message import Attachment, Message
from chat_sync.domain.value_objects.enums import MessageKind, SenderRole


class RemoteStore(Protocol):
    async def fetch_messages(self, conversation_id: int) -> list[Message]: ...

    async def send_message(
        self,
        conversation_id: int,
        sender_role: SenderRole,
        kind: MessageKind,
        body: str | None = None,
        attachment: Attachment | None = None,
        reply_to_id: int | None = None,
    ) -> Message:
        """Persist a message and return the authoritative, server-assigned row."""
        ...

    async def mark_read(self, conversation_id: int, reader_role: SenderRole) -> None: ...

    async def fetch_conversation_list(self) -> list[Conversation]: ...

    async def upload_attachment(
        self,
        conversation_id: int,
        filename: str,
        content: bytes,
        mime_type: str,
    ) -> UploadedAttachment: ...
