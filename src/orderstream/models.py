"""Conversation data model: messages, turns, and the transcript."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .errors import MessageFrozenError
from .protocol import MenuRef, SuggestedAction
from .state import MessageStatus, advance
from .types import HistoryEntry, Payload


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class SenderRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class MessageMetadata:
    """Analytics annotations attached to an assistant message."""

    intent: str | None = None
    confidence: float | None = None
    tools_used: list[str] = field(default_factory=list)


@dataclass
class Message:
    """A single displayable unit of the transcript."""

    role: SenderRole
    content: str = ""
    status: MessageStatus = MessageStatus.QUEUED
    id: str = field(default_factory=lambda: new_id("msg"))
    turn_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    menu_refs: list[MenuRef] = field(default_factory=list)
    suggested_actions: list[SuggestedAction] = field(default_factory=list)
    metadata: MessageMetadata = field(default_factory=MessageMetadata)

    @classmethod
    def user(cls, text: str, *, turn_id: str | None = None) -> Message:
        return cls(role=SenderRole.USER, content=text, status=MessageStatus.COMPLETE, turn_id=turn_id)

    @classmethod
    def placeholder(cls, *, turn_id: str) -> Message:
        """Assistant message that shows the typing indicator until text arrives."""
        return cls(role=SenderRole.ASSISTANT, status=MessageStatus.QUEUED, turn_id=turn_id)

    @property
    def frozen(self) -> bool:
        return self.status.terminal

    @property
    def is_typing(self) -> bool:
        return self.status in (MessageStatus.QUEUED, MessageStatus.TYPING)

    @property
    def is_streaming(self) -> bool:
        return self.status == MessageStatus.STREAMING

    def transition(self, target: MessageStatus) -> bool:
        return advance(self, target)

    def set_content(self, text: str) -> None:
        self._ensure_mutable()
        self.content = text

    def add_menu_refs(self, refs: Iterable[MenuRef]) -> None:
        self._ensure_mutable()
        self.menu_refs.extend(refs)

    def add_suggested_actions(self, actions: Iterable[SuggestedAction]) -> None:
        self._ensure_mutable()
        self.suggested_actions.extend(actions)

    def merge_metadata(
        self,
        *,
        intent: str | None = None,
        confidence: float | None = None,
        tools_used: list[str] | None = None,
    ) -> None:
        """Replace the provided fields and keep the rest."""
        self._ensure_mutable()
        if intent is not None:
            self.metadata.intent = intent
        if confidence is not None:
            self.metadata.confidence = confidence
        if tools_used is not None:
            self.metadata.tools_used = list(tools_used)

    def to_history(self) -> HistoryEntry:
        return {"role": self.role.value, "content": self.content}

    def _ensure_mutable(self) -> None:
        if self.frozen:
            raise MessageFrozenError(self.id)


class CancelToken:
    """Cooperative cancellation flag observed by the read loop between reads."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._released = False

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def released(self) -> bool:
        return self._released

    def cancel(self) -> bool:
        """Request cancellation; returns False once the turn has already ended."""
        if self._released or self._event.is_set():
            return False
        self._event.set()
        return True

    def release(self) -> None:
        self._released = True

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class ConversationTurn:
    """One user utterance plus the reply in progress."""

    text: str
    session_id: str
    message_id: str
    history: list[HistoryEntry] = field(default_factory=list)
    user_id: str | None = None
    cart_context: list[Payload] = field(default_factory=list)
    id: str = field(default_factory=lambda: new_id("turn"))
    cancel_token: CancelToken = field(default_factory=CancelToken)

    def to_request(self) -> Payload:
        """Request body understood by the streaming chat endpoint."""
        body: dict[str, Any] = {
            "message": self.text,
            "conversation_history": list(self.history),
            "session_id": self.session_id,
            "cart_context": list(self.cart_context),
        }
        if self.user_id is not None:
            body["user_id"] = self.user_id
        return body


class Transcript:
    """Ordered messages of one conversation session."""

    def __init__(self, messages: Iterable[Message] = ()) -> None:
        self._messages: list[Message] = list(messages)
        self._index: dict[str, Message] = {message.id: message for message in self._messages}

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def append(self, message: Message) -> Message:
        self._messages.append(message)
        self._index[message.id] = message
        return message

    def get(self, message_id: str) -> Message | None:
        return self._index.get(message_id)

    def history(self, window: int) -> list[HistoryEntry]:
        """Last ``window`` finished messages as role/content pairs.

        Replies still typing or streaming are left out; failed replies are sent
        with the fallback text they display.
        """
        if window <= 0:
            return []
        settled = [message for message in self._messages if message.status.terminal and message.content]
        return [message.to_history() for message in settled[-window:]]

    def clear(self) -> None:
        self._messages.clear()
        self._index.clear()
