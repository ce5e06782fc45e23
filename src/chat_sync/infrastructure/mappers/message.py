from __future__ import annotations

from pydantic import ValidationError as PydanticValidationError

from chat_sync.application.exceptions import ValidationError
from chat_sync.domain.entities.message import Attachment, Message, ReplySummary
from chat_sync.domain.events.push_event import MessageInserted, MessageUpdated, PushEvent
from chat_sync.domain.value_objects.enums import ChangeKind, ConfirmState, MessageKind, SenderRole
from chat_sync.domain.value_objects.ids import server_local_id
from chat_sync.infrastructure.schemas import MessageRow, ReplyRow, SendMessageRequest


def row_to_entity(row: MessageRow) -> Message:
    attachment = None
    if row.media_url:
        duration = row.voice_duration if row.message_type == MessageKind.VOICE else row.video_duration
        attachment = Attachment(
            url=row.media_url,
            filename=row.media_filename,
            duration=duration,
            size=row.media_size,
            mime_type=row.media_mimetype,
        )
    reply_to = None
    if row.reply_to is not None:
        reply_to = ReplySummary(
            id=row.reply_to.id,
            body=row.reply_to.message_text,
            kind=row.reply_to.message_type,
            sender_role=row.reply_to.sender_type,
        )
    return Message(
        id=row.id,
        local_id=row.local_id or server_local_id(row.id),
        conversation_id=row.company_id,
        sender_role=row.sender_type,
        kind=row.message_type,
        body=row.message_text,
        attachment=attachment,
        created_at=row.created_at,
        is_read=row.is_read,
        reply_to=reply_to,
        confirm_state=ConfirmState.CONFIRMED,
    )


def entity_to_row(entity: Message) -> MessageRow:
    """Only confirmed messages have a row representation."""
    if entity.id is None:
        raise ValueError(f"Message {entity.local_id} has no server id")
    att = entity.attachment
    reply = entity.reply_to
    return MessageRow(
        id=entity.id,
        company_id=entity.conversation_id,
        sender_type=entity.sender_role,
        message_type=entity.kind,
        message_text=entity.body,
        media_url=att.url if att else None,
        media_filename=att.filename if att else None,
        media_size=att.size if att else None,
        media_mimetype=att.mime_type if att else None,
        voice_duration=att.duration if att and entity.kind == MessageKind.VOICE else None,
        video_duration=att.duration if att and entity.kind == MessageKind.VIDEO else None,
        created_at=entity.created_at,
        is_read=entity.is_read,
        reply_to=ReplyRow(
            id=reply.id,
            message_text=reply.body,
            message_type=reply.kind,
            sender_type=reply.sender_role,
        ) if reply else None,
        local_id=entity.local_id,
    )


def send_request(
    conversation_id: int,
    sender_role: SenderRole,
    kind: MessageKind,
    body: str | None,
    attachment: Attachment | None,
    reply_to_id: int | None,
) -> SendMessageRequest:
    att = attachment
    return SendMessageRequest(
        company_id=conversation_id,
        sender_type=sender_role,
        message_type=kind,
        message_text=body,
        url=att.url if att else None,
        media_filename=att.filename if att else None,
        media_size=att.size if att else None,
        media_mimetype=att.mime_type if att else None,
        voice_duration=att.duration if att and kind == MessageKind.VOICE else None,
        video_duration=att.duration if att and kind == MessageKind.VIDEO else None,
        reply_to_id=reply_to_id,
    )


def push_event_from_row(change: ChangeKind, raw: dict) -> PushEvent:
    """Validate a pushed row at the transport boundary."""
    try:
        row = MessageRow.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid pushed message row: {exc.error_count()} error(s)") from exc
    message = row_to_entity(row)
    if change == ChangeKind.UPDATE:
        return MessageUpdated(message=message)
    return MessageInserted(message=message)
