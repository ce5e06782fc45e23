"""Remote store over the chat server's REST endpoints."""
from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from chat_sync.application.dto.message import UploadedAttachment
from chat_sync.application.exceptions import NetworkFailure, ValidationError
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.message import Attachment, Message
from chat_sync.domain.value_objects.enums import MessageKind, SenderRole
from chat_sync.infrastructure.mappers import conversation as conversation_mapper
from chat_sync.infrastructure.mappers import message as message_mapper
from chat_sync.infrastructure.schemas import (
    ConversationsResponse,
    MarkReadRequest,
    MessagesResponse,
    SendMessageResponse,
    UploadResponse,
)

logger = logging.getLogger(__name__)


class HttpRemoteStore:
    """Implements application.ports.remote_store.RemoteStore."""

    def __init__(self, client: httpx.AsyncClient, viewer: SenderRole = SenderRole.ADMIN) -> None:
        self._client = client
        self._viewer = viewer

    @staticmethod
    def build_client(base_url: str, token: str, timeout: float = 20.0) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        return httpx.AsyncClient(base_url=base_url.rstrip("/"), headers=headers, timeout=timeout)

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            resp = await self._client.request(method, url, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("%s %s -> %s", method, url, exc.response.status_code)
            raise NetworkFailure(
                f"{method} {url} failed with {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("%s %s unreachable: %s", method, url, exc)
            raise NetworkFailure(f"{method} {url} unreachable: {exc}") from exc
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise ValidationError(f"{method} {url} returned a non-JSON body") from exc

    @staticmethod
    def _parse(model: type[BaseModel], data: Any, what: str) -> Any:
        try:
            return model.model_validate(data)
        except PydanticValidationError as exc:
            raise ValidationError(f"Malformed {what} response: {exc.error_count()} error(s)") from exc

    async def fetch_messages(self, conversation_id: int) -> list[Message]:
        data = await self._request("GET", f"/chat/{conversation_id}/messages")
        parsed: MessagesResponse = self._parse(MessagesResponse, data or {}, "messages")
        return [message_mapper.row_to_entity(r) for r in parsed.messages]

    async def send_message(
        self,
        conversation_id: int,
        sender_role: SenderRole,
        kind: MessageKind,
        body: str | None = None,
        attachment: Attachment | None = None,
        reply_to_id: int | None = None,
    ) -> Message:
        request = message_mapper.send_request(
            conversation_id, sender_role, kind, body, attachment, reply_to_id,
        )
        data = await self._request(
            "POST", "/chat/send", json=request.model_dump(mode="json", exclude_none=True),
        )
        parsed: SendMessageResponse = self._parse(SendMessageResponse, data, "send")
        return message_mapper.row_to_entity(parsed.message)

    async def mark_read(self, conversation_id: int, reader_role: SenderRole) -> None:
        request = MarkReadRequest(company_id=conversation_id, reader_type=reader_role)
        await self._request("POST", "/chat/mark-read", json=request.model_dump(mode="json"))

    async def fetch_conversation_list(self) -> list[Conversation]:
        data = await self._request("GET", "/chat/list")
        parsed: ConversationsResponse = self._parse(ConversationsResponse, data or {}, "chat list")
        return [conversation_mapper.row_to_entity(r, self._viewer) for r in parsed.chats]

    async def upload_attachment(
        self,
        conversation_id: int,
        filename: str,
        content: bytes,
        mime_type: str,
    ) -> UploadedAttachment:
        data = await self._request(
            "POST",
            "/chat/upload",
            files={"file": (filename, content, mime_type)},
            data={"company_id": str(conversation_id)},
        )
        parsed: UploadResponse = self._parse(UploadResponse, data, "upload")
        return UploadedAttachment(
            url=parsed.url,
            filename=parsed.filename,
            size=parsed.size,
            mime_type=parsed.mimetype,
        )
