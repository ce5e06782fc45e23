from __future__ import annotations

from enum import StrEnum


class SenderRole(StrEnum):
    ADMIN = "admin"
    COMPANY = "company"


class MessageKind(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    FILE = "file"
    VOICE = "voice"

    @property
    def is_media(self) -> bool:
        return self is not MessageKind.TEXT


class ConfirmState(StrEnum):
    OPTIMISTIC = "optimistic"
    CONFIRMED = "confirmed"


class ChangeKind(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"


class ChannelStatus(StrEnum):
    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"

    @property
    def is_drop(self) -> bool:
        return self is not ChannelStatus.SUBSCRIBED


class ScopeKind(StrEnum):
    GLOBAL = "global"
    CONVERSATION = "conversation"
