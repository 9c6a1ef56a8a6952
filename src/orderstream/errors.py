"""Application-level exception types for orderstream."""

from __future__ import annotations


class OrderStreamError(Exception):
    """Base exception for orderstream."""


class ConfigurationError(OrderStreamError):
    """Raised when settings are missing or inconsistent."""


class TransportError(OrderStreamError):
    """Raised when the response stream cannot be opened or read."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TurnError(OrderStreamError):
    """Base exception for conversational turn errors."""


class TurnInProgressError(TurnError):
    """Raised when a turn is submitted while another one is still active."""

    def __init__(self, turn_id: str) -> None:
        super().__init__(f"Turn '{turn_id}' is still active")
        self.turn_id = turn_id


class InvalidTransitionError(TurnError):
    """Raised when a message is moved to a status its current status cannot reach."""

    def __init__(self, message_id: str, current: str, target: str) -> None:
        super().__init__(f"Message '{message_id}' cannot move from {current} to {target}")
        self.message_id = message_id
        self.current = current
        self.target = target


class MessageFrozenError(TurnError):
    """Raised when a finished message is mutated."""

    def __init__(self, message_id: str) -> None:
        super().__init__(f"Message '{message_id}' is frozen")
        self.message_id = message_id


class CartError(OrderStreamError):
    """Base exception for cart collaborator failures."""


class CartResolutionError(CartError):
    """Raised when a catalog item or variant referenced by a cart line cannot be resolved."""

    def __init__(self, item_id: str, reason: str = "not found") -> None:
        super().__init__(f"Cart item '{item_id}' {reason}")
        self.item_id = item_id
        self.reason = reason
