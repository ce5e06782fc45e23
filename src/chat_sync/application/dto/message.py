from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.entities.message import Attachment, ReplySummary
from chat_sync.domain.value_objects.enums import MessageKind, SenderRole


@dataclass(frozen=True, slots=True)
class MessageDraft:
    sender_role: SenderRole
    kind: MessageKind = MessageKind.TEXT
    body: str | None = None
    attachment: Attachment | None = None
    reply_to: ReplySummary | None = None


@dataclass(frozen=True, slots=True)
class UploadedAttachment:
    url: str
    filename: str
    size: int
    mime_type: str

    def to_attachment(self, duration: float | None = None) -> Attachment:
        return Attachment(
            url=self.url,
            filename=self.filename,
            duration=duration,
            size=self.size,
            mime_type=self.mime_type,
        )
