"""Message lifecycle state machine."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from .errors import InvalidTransitionError

if TYPE_CHECKING:
    from .models import Message


class MessageStatus(str, Enum):
    """Lifecycle of one displayable message."""

    QUEUED = "queued"
    TYPING = "typing"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ABORTED = "aborted"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def active(self) -> bool:
        return not self.terminal


_TERMINAL = frozenset({MessageStatus.COMPLETE, MessageStatus.ABORTED, MessageStatus.ERROR})

TRANSITIONS: dict[MessageStatus, frozenset[MessageStatus]] = {
    MessageStatus.QUEUED: frozenset({MessageStatus.TYPING, MessageStatus.STREAMING, *_TERMINAL}),
    MessageStatus.TYPING: frozenset({MessageStatus.STREAMING, *_TERMINAL}),
    MessageStatus.STREAMING: frozenset(_TERMINAL),
    MessageStatus.COMPLETE: frozenset(),
    MessageStatus.ABORTED: frozenset(),
    MessageStatus.ERROR: frozenset(),
}


def can_transition(current: MessageStatus, target: MessageStatus) -> bool:
    return target == current or target in TRANSITIONS[current]


def advance(message: Message, target: MessageStatus) -> bool:
    """Move ``message`` to ``target``.

    Returns True when the status changed and False when the message already
    was in ``target``.

    Raises:
        InvalidTransitionError: If ``target`` is not reachable from the current status
    """
    current = message.status
    if target == current:
        return False
    if target not in TRANSITIONS[current]:
        raise InvalidTransitionError(message.id, current.value, target.value)
    message.status = target
    return True
