from __future__ import annotations

from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.value_objects.enums import SenderRole
from chat_sync.infrastructure.schemas import ConversationRow


def row_to_entity(row: ConversationRow, viewer: SenderRole = SenderRole.ADMIN) -> Conversation:
    unread = row.unread_count_for_admin if viewer == SenderRole.ADMIN else row.unread_count_for_company
    return Conversation(
        counterparty_id=row.company_id,
        display_name=row.company_name,
        counterparty_phone=row.company_phone,
        last_message_snippet=row.last_message_text or "",
        last_message_kind=row.last_message_type,
        last_message_sender=row.last_message_sender,
        last_message_at=row.last_message_at,
        unread_count_for_viewer=unread,
    )


def entity_to_row(entity: Conversation, viewer: SenderRole = SenderRole.ADMIN) -> ConversationRow:
    unread = entity.unread_count_for_viewer
    return ConversationRow(
        company_id=entity.counterparty_id,
        company_name=entity.display_name,
        company_phone=entity.counterparty_phone,
        unread_count_for_admin=unread if viewer == SenderRole.ADMIN else 0,
        unread_count_for_company=unread if viewer == SenderRole.COMPANY else 0,
        last_message_text=entity.last_message_snippet,
        last_message_type=entity.last_message_kind,
        last_message_sender=entity.last_message_sender,
        last_message_at=entity.last_message_at,
    )
