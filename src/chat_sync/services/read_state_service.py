from __future__ import annotations

import logging

from chat_sync.application.exceptions import NetworkFailure, NotFoundError
from chat_sync.application.ports.remote_store import RemoteStore
from chat_sync.domain.entities.message import Message
from chat_sync.domain.events.push_event import MessageUpdated
from chat_sync.domain.value_objects.enums import SenderRole
from chat_sync.services.conversation_list import ConversationListCache
from chat_sync.services.message_store import MessageStore

logger = logging.getLogger(__name__)


class ReadStateSynchronizer:
    """Marks conversations read locally first, then remotely; never rolls back."""

    def __init__(
        self,
        remote: RemoteStore,
        conversations: ConversationListCache | None,
        viewer: SenderRole,
    ) -> None:
        self._remote = remote
        self._conversations = conversations
        self._viewer = viewer

    async def mark_read(self, conversation_id: int) -> None:
        if self._conversations is not None:
            try:
                self._conversations.set_unread(conversation_id, 0)
            except NotFoundError:
                logger.debug("Conversation %s not in the list, skipping local zero", conversation_id)

        try:
            await self._remote.mark_read(conversation_id, self._viewer)
        except NetworkFailure as exc:
            logger.warning("mark_read for %s failed, keeping local state: %s", conversation_id, exc.detail)

    def on_message_updated(self, store: MessageStore, event: MessageUpdated) -> Message | None:
        updated = store.on_push_update(event)
        if updated is not None and updated.sender_role == self._viewer and updated.is_read:
            logger.debug("Message %s read by counterpart", updated.id)
        return updated
