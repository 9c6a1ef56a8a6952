"""Route typed envelopes to the handler for their kind."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from enum import Enum
from typing import Any

from loguru import logger

from .collaborators import CartCollaborator, Notifier
from .errors import CartError
from .models import Message, Transcript
from .proposals import CartProposalWorkflow
from .protocol import (
    CartOperationEnvelope,
    CartOperationKind,
    CartProposalEnvelope,
    CatalogItemsEnvelope,
    CompleteEnvelope,
    ErrorEnvelope,
    MenuRef,
    MenuRefsEnvelope,
    MetadataEnvelope,
    StreamEnvelope,
    SuggestedActionsEnvelope,
    TextDeltaEnvelope,
    narrow_envelope,
)
from .stream import RenderBuffer

MessageCallback = Callable[[Message], None]

_DEFAULT_CART_MESSAGES: dict[CartOperationKind, str] = {
    CartOperationKind.ADD: "Added to cart",
    CartOperationKind.REMOVE: "Removed from cart",
    CartOperationKind.UPDATE: "Quantity updated",
    CartOperationKind.CLEAR: "Cart cleared",
}


class DispatchOutcome(str, Enum):
    CONTINUE = "continue"
    COMPLETE = "complete"


class EventDispatcher:
    """Apply the envelopes of one turn to its assistant message.

    Text goes to the render buffer. Every other envelope flushes the buffer
    first so visible text always precedes the annotation it was followed by on
    the wire. Imperative cart operations run as background tasks in arrival
    order; :meth:`drain` waits for them. Pass the session's ``cart_lock`` to keep
    that order across turns.
    """

    def __init__(
        self,
        transcript: Transcript,
        buffer: RenderBuffer,
        *,
        cart: CartCollaborator,
        proposals: CartProposalWorkflow,
        notifier: Notifier,
        begin_streaming: MessageCallback,
        changed: MessageCallback,
        cart_lock: asyncio.Lock | None = None,
    ) -> None:
        self._transcript = transcript
        self._buffer = buffer
        self._cart = cart
        self._proposals = proposals
        self._notifier = notifier
        self._begin_streaming = begin_streaming
        self._changed = changed
        self._cart_lock = cart_lock or asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()
        self._handlers: dict[type[StreamEnvelope], Callable[[Any, Message], DispatchOutcome | None]] = {
            TextDeltaEnvelope: self._on_text,
            CatalogItemsEnvelope: self._on_catalog_items,
            CartOperationEnvelope: self._on_cart_operation,
            MenuRefsEnvelope: self._on_menu_refs,
            SuggestedActionsEnvelope: self._on_suggested_actions,
            CartProposalEnvelope: self._on_cart_proposal,
            MetadataEnvelope: self._on_metadata,
            ErrorEnvelope: self._on_error,
            CompleteEnvelope: self._on_complete,
        }

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def dispatch(self, envelope: StreamEnvelope, message_id: str) -> DispatchOutcome:
        typed = narrow_envelope(envelope)
        if typed is None:
            return DispatchOutcome.CONTINUE
        handler = self._handlers.get(type(typed))
        if handler is None:
            return DispatchOutcome.CONTINUE
        message = self._transcript.get(message_id)
        if message is None:
            logger.warning("dispatch.unknown_message message={} kind={}", message_id, typed.kind)
            return DispatchOutcome.CONTINUE
        try:
            outcome = handler(typed, message)
        except Exception:
            logger.opt(exception=True).warning("dispatch.handler_failed kind={} message={}", typed.kind, message_id)
            return DispatchOutcome.CONTINUE
        return outcome or DispatchOutcome.CONTINUE

    async def drain(self) -> None:
        """Wait for background cart operations started by this turn."""
        while self._tasks:
            pending = tuple(self._tasks)
            await asyncio.gather(*pending, return_exceptions=True)
            self._tasks.difference_update(pending)

    def _on_text(self, envelope: TextDeltaEnvelope, message: Message) -> None:
        if not envelope.text:
            return
        if message.is_typing:
            self._begin_streaming(message)
        self._buffer.append(envelope.text)

    def _on_catalog_items(self, envelope: CatalogItemsEnvelope, message: Message) -> None:
        self._buffer.flush()
        if not envelope.items:
            return
        logger.debug("dispatch.catalog_items count={}", len(envelope.items))
        message.add_menu_refs(MenuRef.from_card(item) for item in envelope.items)
        self._changed(message)

    def _on_menu_refs(self, envelope: MenuRefsEnvelope, message: Message) -> None:
        self._buffer.flush()
        if not envelope.items:
            return
        message.add_menu_refs(envelope.items)
        self._changed(message)

    def _on_suggested_actions(self, envelope: SuggestedActionsEnvelope, message: Message) -> None:
        self._buffer.flush()
        if not envelope.actions:
            return
        message.add_suggested_actions(envelope.actions)
        self._changed(message)

    def _on_metadata(self, envelope: MetadataEnvelope, message: Message) -> None:
        self._buffer.flush()
        message.merge_metadata(
            intent=envelope.intent,
            confidence=envelope.confidence,
            tools_used=envelope.tools_used,
        )
        self._changed(message)

    def _on_cart_proposal(self, envelope: CartProposalEnvelope, message: Message) -> None:
        self._buffer.flush()
        self._proposals.offer(envelope.proposal)

    def _on_error(self, envelope: ErrorEnvelope, message: Message) -> None:
        self._buffer.flush()
        logger.warning(
            "dispatch.stream_error code={} recoverable={} message={}",
            envelope.code,
            envelope.recoverable,
            envelope.message,
        )
        if not envelope.recoverable:
            self._notifier.error(envelope.message)

    def _on_complete(self, envelope: CompleteEnvelope, message: Message) -> DispatchOutcome:
        return DispatchOutcome.COMPLETE

    def _on_cart_operation(self, envelope: CartOperationEnvelope, message: Message) -> None:
        task = asyncio.get_running_loop().create_task(self._apply_cart_operation(envelope))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _apply_cart_operation(self, envelope: CartOperationEnvelope) -> None:
        operation = envelope.operation
        result = envelope.result
        # Lock waiters are woken in FIFO order, so operations apply in arrival order.
        async with self._cart_lock:
            try:
                if operation is CartOperationKind.ADD:
                    if result.requires_clarification or result.item is None:
                        logger.info("cart.add_skipped clarification={}", result.requires_clarification)
                        return
                    await self._cart.add_item(
                        result.item, result.variant, result.quantity, list(result.customizations), result.notes
                    )
                elif operation is CartOperationKind.REMOVE:
                    if result.cart_item_id is None:
                        logger.info("cart.remove_skipped reason=missing_cart_item_id")
                        return
                    await self._cart.remove_item(result.cart_item_id)
                elif operation is CartOperationKind.UPDATE:
                    if result.cart_item_id is None or result.new_quantity is None:
                        logger.info("cart.update_skipped reason=missing_fields")
                        return
                    await self._cart.update_quantity(result.cart_item_id, result.new_quantity)
                elif operation is CartOperationKind.CLEAR:
                    await self._cart.clear()
                if not operation.mutates:
                    return
                self._notifier.success(result.message or _DEFAULT_CART_MESSAGES[operation])
                await self._cart.refresh()
            except CartError as exc:
                logger.warning("cart.operation_skipped operation={} reason={}", operation.value, exc)
            except Exception:
                logger.opt(exception=True).error("cart.operation_failed operation={}", operation.value)
