"""Conversation engine: one streaming turn at a time per session."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Sequence
from contextvars import ContextVar
from enum import Enum
from functools import partial
from typing import Any

from blinker import NamedSignal, Signal
from loguru import logger

from .collaborators import CartCollaborator, CatalogCollaborator, Notifier
from .config import Settings
from .dispatcher import DispatchOutcome, EventDispatcher
from .errors import TurnInProgressError
from .models import ConversationTurn, Message, Transcript, new_id
from .proposals import CartProposalWorkflow, ConfirmResult
from .protocol import CartProposal, ProposalLine
from .state import MessageStatus
from .stream import EnvelopeParser, LineReassembler, RenderBuffer
from .transports import StreamTransport
from .types import Unsubscribe

_turn_context: ContextVar[str] = ContextVar("turn")


def current_turn() -> str:
    """Get the id of the turn running in the current context."""
    return _turn_context.get("-")


class EngineStatus(str, Enum):
    """Connection and streaming status shown by the chat surface."""

    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"


class TurnCancelled(Exception):
    """Raised inside the read loop once the turn's cancel token is observed."""


class TurnHandle:
    """Caller-side handle of one submitted turn."""

    def __init__(self, turn: ConversationTurn, message: Message, task: asyncio.Task[None]) -> None:
        self.turn = turn
        self.message = message
        self._task = task

    @property
    def turn_id(self) -> str:
        return self.turn.id

    @property
    def message_id(self) -> str:
        return self.message.id

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        """Request cooperative cancellation; False if the turn already ended."""
        return self.turn.cancel_token.cancel()

    async def wait(self) -> Message:
        """Wait until the turn is terminal and return its assistant message."""
        await self._task
        return self.message


class ConversationEngine:
    """Drive streaming turns and expose the transcript to observers.

    Observers are registered with :meth:`on_message`, :meth:`on_status` and
    :meth:`on_proposal`; each returns a callable that removes the observer.
    """

    def __init__(
        self,
        transport: StreamTransport,
        *,
        cart: CartCollaborator,
        catalog: CatalogCollaborator,
        notifier: Notifier,
        settings: Settings | None = None,
        session_id: str | None = None,
        user_id: str | None = None,
        transcript: Transcript | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.session_id = session_id or new_id("session")
        self.user_id = user_id
        self._transport = transport
        self._cart = cart
        self._notifier = notifier
        self._transcript = transcript or Transcript()
        self._message_signal = NamedSignal("orderstream.message")
        self._status_signal = NamedSignal("orderstream.status")
        self._proposal_signal = NamedSignal("orderstream.proposal")
        self.proposals = CartProposalWorkflow(cart, catalog, notifier, on_change=self._emit_proposal)
        self._cart_lock = asyncio.Lock()
        self._active: TurnHandle | None = None
        self._status = EngineStatus.IDLE

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def messages(self) -> list[Message]:
        return self._transcript.messages

    @property
    def transcript(self) -> Transcript:
        return self._transcript

    @property
    def status(self) -> EngineStatus:
        return self._status

    @property
    def active_turn(self) -> TurnHandle | None:
        return self._active

    @property
    def pending_proposal(self) -> CartProposal | None:
        return self.proposals.pending

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def on_message(self, handler: Callable[[Message], None]) -> Unsubscribe:
        def _receiver(sender: Any, *, message: Message) -> None:
            handler(message)

        return self._connect(self._message_signal, _receiver)

    def on_status(self, handler: Callable[[EngineStatus], None]) -> Unsubscribe:
        def _receiver(sender: Any, *, status: EngineStatus) -> None:
            handler(status)

        return self._connect(self._status_signal, _receiver)

    def on_proposal(self, handler: Callable[[CartProposal | None], None]) -> Unsubscribe:
        def _receiver(sender: Any, *, proposal: CartProposal | None) -> None:
            handler(proposal)

        return self._connect(self._proposal_signal, _receiver)

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    def submit(self, text: str) -> TurnHandle:
        """Start a turn for ``text`` on the running event loop.

        Raises:
            ValueError: If ``text`` is blank
            TurnInProgressError: If the previous turn has not finished yet
        """
        if not text.strip():
            raise ValueError("cannot submit an empty message")
        if self._active is not None and not self._active.done:
            raise TurnInProgressError(self._active.turn_id)
        loop = asyncio.get_running_loop()

        turn_id = new_id("turn")
        history = self._transcript.history(self.settings.history_window)
        user_message = self._transcript.append(Message.user(text, turn_id=turn_id))
        reply = self._transcript.append(Message.placeholder(turn_id=turn_id))
        turn = ConversationTurn(
            id=turn_id,
            text=text,
            session_id=self.session_id,
            message_id=reply.id,
            history=history,
            user_id=self.user_id,
        )
        self._emit_message(user_message)
        self._emit_message(reply)
        self._set_status(EngineStatus.CONNECTING)

        task = loop.create_task(self._run_turn(turn, reply), name=f"orderstream-{turn_id}")
        handle = TurnHandle(turn, reply, task)
        self._active = handle
        logger.info("turn.submitted turn={} message={} history={}", turn_id, reply.id, len(history))
        return handle

    async def send(self, text: str) -> Message:
        """Submit ``text`` and wait for the reply to finish."""
        return await self.submit(text).wait()

    def cancel(self, handle: TurnHandle | None = None) -> bool:
        handle = handle or self._active
        if handle is None:
            return False
        cancelled = handle.cancel()
        if cancelled:
            logger.info("turn.cancel_requested turn={}", handle.turn_id)
        return cancelled

    async def confirm_proposal(self, selected_lines: Sequence[ProposalLine]) -> ConfirmResult:
        return await self.proposals.confirm(selected_lines)

    def cancel_proposal(self) -> bool:
        return self.proposals.cancel()

    async def aclose(self) -> None:
        """Cancel the active turn and wait for its teardown and pending cart operations."""
        handle = self._active
        if handle is None or handle.done:
            return
        handle.cancel()
        await handle.wait()

    # ------------------------------------------------------------------
    # Turn execution
    # ------------------------------------------------------------------

    async def _run_turn(self, turn: ConversationTurn, message: Message) -> None:
        context_token = _turn_context.set(turn.id)
        buffer = RenderBuffer(partial(self._render, message), interval=self.settings.flush_interval_seconds)
        dispatcher = EventDispatcher(
            self._transcript,
            buffer,
            cart=self._cart,
            proposals=self.proposals,
            notifier=self._notifier,
            begin_streaming=self._begin_streaming,
            changed=self._emit_message,
            cart_lock=self._cart_lock,
        )
        outcome = MessageStatus.COMPLETE
        try:
            turn.cart_context = await self._cart.snapshot()
            if message.transition(MessageStatus.TYPING):
                self._emit_message(message)
            await self._read_loop(turn, dispatcher)
        except TurnCancelled:
            outcome = MessageStatus.ABORTED
        except asyncio.CancelledError:
            outcome = MessageStatus.ABORTED
            raise
        except Exception as exc:
            outcome = MessageStatus.ERROR
            logger.opt(exception=exc).error("turn.transport_error turn={} error={}", turn.id, exc)
        finally:
            buffer.flush()
            buffer.close()
            self._finish(turn, message, outcome)
            try:
                await dispatcher.drain()
            finally:
                self._release(turn, message, outcome)
                _turn_context.reset(context_token)

    async def _read_loop(self, turn: ConversationTurn, dispatcher: EventDispatcher) -> None:
        reassembler = LineReassembler(self.settings.encoding)
        parser = EnvelopeParser(frame_prefix=self.settings.frame_prefix, done_sentinel=self.settings.done_sentinel)
        stream = self._transport.stream(turn)
        try:
            while True:
                chunk = await _next_chunk(stream, turn)
                if chunk is None:
                    break
                for line in reassembler.feed(chunk):
                    if self._handle_line(line, parser, dispatcher, turn):
                        return
            for line in reassembler.finish():
                if self._handle_line(line, parser, dispatcher, turn):
                    return
        finally:
            await _close_stream(stream)
            if parser.failures:
                logger.info("turn.frame_errors turn={} count={}", turn.id, parser.failures)

    def _handle_line(
        self,
        line: str,
        parser: EnvelopeParser,
        dispatcher: EventDispatcher,
        turn: ConversationTurn,
    ) -> bool:
        """Process one line; True once the stream has ended."""
        envelope = parser.parse(line)
        if parser.end_of_stream:
            logger.debug("turn.sentinel turn={}", turn.id)
            return True
        if envelope is None:
            return False
        return dispatcher.dispatch(envelope, turn.message_id) is DispatchOutcome.COMPLETE

    def _finish(self, turn: ConversationTurn, message: Message, outcome: MessageStatus) -> None:
        if outcome is MessageStatus.ERROR:
            message.set_content(self.settings.fallback_message)
        message.transition(outcome)
        turn.cancel_token.release()
        self._emit_message(message)

    def _release(self, turn: ConversationTurn, message: Message, outcome: MessageStatus) -> None:
        # Cart operations of this turn have drained; the next turn may start.
        if self._active is not None and self._active.turn_id == turn.id:
            self._active = None
        self._set_status(EngineStatus.IDLE)
        logger.info("turn.finished turn={} outcome={} chars={}", turn.id, outcome.value, len(message.content))

    def _render(self, message: Message, text: str) -> None:
        message.set_content(text)
        self._emit_message(message)

    def _begin_streaming(self, message: Message) -> None:
        # The placeholder keeps its id; the typing indicator becomes the reply in place.
        message.transition(MessageStatus.STREAMING)
        self._set_status(EngineStatus.STREAMING)
        self._emit_message(message)

    # ------------------------------------------------------------------
    # Signal plumbing
    # ------------------------------------------------------------------

    def _connect(self, signal: Signal, receiver: Callable[..., None]) -> Unsubscribe:
        signal.connect(receiver, sender=self, weak=False)
        return lambda: signal.disconnect(receiver, sender=self)

    def _emit(self, signal: NamedSignal, **payload: Any) -> None:
        for receiver in signal.receivers_for(self):
            try:
                receiver(self, **payload)
            except Exception:
                logger.opt(exception=True).warning("observer.failed signal={}", signal.name)

    def _emit_message(self, message: Message) -> None:
        self._emit(self._message_signal, message=message)

    def _emit_proposal(self, proposal: CartProposal | None) -> None:
        self._emit(self._proposal_signal, proposal=proposal)

    def _set_status(self, status: EngineStatus) -> None:
        if status == self._status:
            return
        self._status = status
        self._emit(self._status_signal, status=status)


async def _pull(stream: AsyncIterator[bytes]) -> bytes | None:
    return await anext(stream, None)


async def _next_chunk(stream: AsyncIterator[bytes], turn: ConversationTurn) -> bytes | None:
    """Read the next chunk unless the turn is cancelled first; None at end of stream."""
    token = turn.cancel_token
    if token.cancelled:
        raise TurnCancelled
    read = asyncio.ensure_future(_pull(stream))
    cancelled = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({read, cancelled}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (read, cancelled):
            if not task.done():
                task.cancel()
        await asyncio.gather(read, cancelled, return_exceptions=True)
    if read in done:
        return read.result()
    raise TurnCancelled


async def _close_stream(stream: AsyncIterator[bytes]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is None:
        return
    await aclose()
