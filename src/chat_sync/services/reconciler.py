"""Matching of pushed inserts against the local message sequence.

A pushed insert is either the echo of a message we already hold (confirmed
via the send response, or still optimistic) or a genuinely new message. The
decision is made in three steps, first match wins:

1. exact server id match -> update in place;
2. optimistic heuristic match (same sender, same content, created within the
   match window) -> the optimistic entry becomes the confirmed one, keeping
   its slot and render key;
3. otherwise -> append as a new confirmed message.

When several optimistic entries qualify in step 2 the earliest created one is
chosen. Nothing here raises.
"""
from __future__ import annotations

import dataclasses
import logging
from enum import StrEnum
from typing import Sequence

from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import ConfirmState

logger = logging.getLogger(__name__)

DEFAULT_MATCH_WINDOW_SECONDS = 5.0


class ReconcileOutcome(StrEnum):
    UPDATED = "updated"
    MATCHED_OPTIMISTIC = "matched_optimistic"
    APPENDED = "appended"


def find_by_id(messages: Sequence[Message], message_id: int | None) -> int | None:
    if message_id is None:
        return None
    for idx, m in enumerate(messages):
        if m.id == message_id:
            return idx
    return None


def find_by_local_id(messages: Sequence[Message], local_id: str) -> int | None:
    for idx, m in enumerate(messages):
        if m.local_id == local_id:
            return idx
    return None


def same_content(local: Message, incoming: Message) -> bool:
    if incoming.kind.is_media and local.attachment and incoming.attachment:
        return local.attachment.url == incoming.attachment.url
    return local.body == incoming.body


def is_candidate(local: Message, incoming: Message, window: float) -> bool:
    if not local.is_optimistic:
        return False
    if local.sender_role != incoming.sender_role:
        return False
    if not same_content(local, incoming):
        return False
    delta = abs((incoming.created_at - local.created_at).total_seconds())
    return delta < window


def find_optimistic_match(
    messages: Sequence[Message],
    incoming: Message,
    window: float = DEFAULT_MATCH_WINDOW_SECONDS,
) -> int | None:
    """Index of the optimistic entry that ``incoming`` confirms, or None."""
    candidates = [idx for idx, m in enumerate(messages) if is_candidate(m, incoming, window)]
    if not candidates:
        return None
    if len(candidates) > 1:
        logger.debug(
            "Ambiguous optimistic match for message %s: %d candidates, taking earliest",
            incoming.id,
            len(candidates),
        )
    # min() keeps the first of equal keys, so ties go to the earliest inserted.
    return min(candidates, key=lambda idx: messages[idx].created_at)


def confirm(local: Message, server: Message) -> Message:
    """The confirmed message that replaces ``local``, keeping its render key."""
    return dataclasses.replace(
        server,
        local_id=local.local_id,
        confirm_state=ConfirmState.CONFIRMED,
    )


def merge_update(existing: Message, incoming: Message) -> Message:
    return dataclasses.replace(
        incoming,
        local_id=existing.local_id,
        confirm_state=ConfirmState.CONFIRMED,
    )


def reconcile_insert(
    messages: Sequence[Message],
    incoming: Message,
    window: float = DEFAULT_MATCH_WINDOW_SECONDS,
) -> tuple[list[Message], ReconcileOutcome, int]:
    """Apply a pushed insert. Returns (new list, outcome, index of the affected entry).

    The returned list keeps insertion order; callers sort for display.
    """
    result = list(messages)

    idx = find_by_id(result, incoming.id)
    if idx is not None:
        result[idx] = merge_update(result[idx], incoming)
        return result, ReconcileOutcome.UPDATED, idx

    idx = find_optimistic_match(result, incoming, window)
    if idx is not None:
        result[idx] = confirm(result[idx], incoming)
        return result, ReconcileOutcome.MATCHED_OPTIMISTIC, idx

    result.append(dataclasses.replace(incoming, confirm_state=ConfirmState.CONFIRMED))
    return result, ReconcileOutcome.APPENDED, len(result) - 1
