from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.value_objects.enums import ScopeKind

GLOBAL_SCOPE_KEY = "all_chat_messages"


@dataclass(frozen=True, slots=True)
class SubscriptionScope:
    kind: ScopeKind
    conversation_id: int | None = None

    @classmethod
    def everything(cls) -> SubscriptionScope:
        return cls(kind=ScopeKind.GLOBAL)

    @classmethod
    def conversation(cls, conversation_id: int) -> SubscriptionScope:
        return cls(kind=ScopeKind.CONVERSATION, conversation_id=conversation_id)

    @property
    def is_global(self) -> bool:
        return self.kind == ScopeKind.GLOBAL

    @property
    def key(self) -> str:
        """Unique key used to de-duplicate listeners on the same channel."""
        if self.is_global:
            return GLOBAL_SCOPE_KEY
        return f"chat_{self.conversation_id}"
