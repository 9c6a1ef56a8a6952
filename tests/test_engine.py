from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import pytest

from orderstream.collaborators import InMemoryCart, InMemoryCatalog
from orderstream.config import DEFAULT_FALLBACK_MESSAGE, Settings
from orderstream.engine import ConversationEngine, EngineStatus
from orderstream.errors import TransportError, TurnInProgressError
from orderstream.models import ConversationTurn, Message, SenderRole
from orderstream.protocol import CartProposal, MenuItem
from orderstream.state import MessageStatus
from orderstream.transports import ChunkedReplayTransport, ReplayTransport


def _line(payload: dict[str, Any], *, prefix: str = "data: ") -> str:
    return f"{prefix}{json.dumps(payload, ensure_ascii=False)}\n"


class GatedTransport:
    """Yields ``first`` immediately and blocks the rest behind ``gate``."""

    def __init__(self, first: bytes, rest: bytes = b"") -> None:
        self.first = first
        self.rest = rest
        self.gate = asyncio.Event()
        self.closed = False

    async def stream(self, turn: ConversationTurn) -> AsyncIterator[bytes]:
        try:
            yield self.first
            await self.gate.wait()
            yield self.rest
        finally:
            self.closed = True


class FailingTransport:
    def __init__(self, before: bytes = b"") -> None:
        self.before = before

    async def stream(self, turn: ConversationTurn) -> AsyncIterator[bytes]:
        if self.before:
            yield self.before
        raise TransportError("connection reset")


def _engine(
    transport: Any,
    notifier: Any,
    *,
    cart: InMemoryCart | None = None,
    catalog: InMemoryCatalog | None = None,
    **settings: Any,
) -> ConversationEngine:
    return ConversationEngine(
        transport,
        cart=cart or InMemoryCart(),
        catalog=catalog or InMemoryCatalog(),
        notifier=notifier,
        settings=Settings(**settings),
        session_id="session_test",
    )


async def _until(predicate: Any, attempts: int = 100) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.mark.asyncio
async def test_text_split_across_chunks_renders_whole(notifier) -> None:
    transport = ChunkedReplayTransport([
        _line({"type": "content", "content": "Hel"}),
        _line({"type": "content", "content": "lo"}),
        "data: [DONE]\n",
    ])
    engine = _engine(transport, notifier)

    message = await engine.send("hi")

    assert message.content == "Hello"
    assert message.status is MessageStatus.COMPLETE
    assert engine.status is EngineStatus.IDLE


@pytest.mark.asyncio
async def test_two_lines_in_one_chunk(notifier) -> None:
    transport = ChunkedReplayTransport(['{"type":"content","content":"Hi"}\n{"type":"complete"}\n'])
    engine = _engine(transport, notifier)

    message = await engine.send("hello")

    assert message.content == "Hi"
    assert message.status is MessageStatus.COMPLETE


@pytest.mark.asyncio
async def test_result_does_not_depend_on_chunking(notifier) -> None:
    body = "".join([
        _line({"type": "content", "content": "Our "}),
        _line({"type": "content", "content": "naan is 🔥"}),
        _line({"type": "suggested_actions", "actions": ["Add naan"]}),
        _line({"type": "metadata", "intent": "recommendation", "confidence": 0.9}),
        _line({"type": "complete"}),
    ]).encode()

    snapshots = set()
    for chunk_size in (1, 2, 3, 5, 8, 13, len(body)):
        message = await _engine(ReplayTransport(body, chunk_size=chunk_size), notifier).send("what's good?")
        snapshots.add((
            message.content,
            message.status,
            tuple(action.label for action in message.suggested_actions),
            message.metadata.intent,
        ))

    assert snapshots == {("Our naan is 🔥", MessageStatus.COMPLETE, ("Add naan",), "recommendation")}


@pytest.mark.asyncio
async def test_sentinel_stops_processing(notifier) -> None:
    transport = ChunkedReplayTransport([
        _line({"type": "content", "content": "A"}) + "data: [DONE]\n" + _line({"type": "content", "content": "B"})
    ])

    message = await _engine(transport, notifier).send("hi")

    assert message.content == "A"


@pytest.mark.asyncio
async def test_end_of_body_completes_the_turn(notifier) -> None:
    transport = ChunkedReplayTransport(['garbage\n{"type":"content","content":"ok"}'])

    message = await _engine(transport, notifier).send("hi")

    assert message.content == "ok"
    assert message.status is MessageStatus.COMPLETE


@pytest.mark.asyncio
async def test_placeholder_keeps_identity_through_the_turn(notifier) -> None:
    engine = _engine(ChunkedReplayTransport([_line({"type": "content", "content": "Hi"})]), notifier)

    handle = engine.submit("hi")
    user, reply = engine.messages
    message = await handle.wait()

    assert user.role is SenderRole.USER and user.content == "hi"
    assert reply is message
    assert handle.message_id == message.id
    assert [m.id for m in engine.messages] == [user.id, message.id]


@pytest.mark.asyncio
async def test_cancel_keeps_partial_text(notifier) -> None:
    transport = GatedTransport(_line({"type": "content", "content": "Hel"}).encode(), b'{"type":"content","content":"lo"}\n')
    engine = _engine(transport, notifier, flush_interval_ms=60_000)

    handle = engine.submit("hi")
    await _until(lambda: handle.message.is_streaming)
    assert handle.cancel() is True
    message = await handle.wait()

    assert message.status is MessageStatus.ABORTED
    assert message.content == "Hel"
    assert DEFAULT_FALLBACK_MESSAGE not in message.content
    assert transport.closed
    assert engine.status is EngineStatus.IDLE
    assert engine.active_turn is None
    assert handle.cancel() is False


@pytest.mark.asyncio
async def test_cancel_before_first_byte(notifier) -> None:
    transport = GatedTransport(b"")
    engine = _engine(transport, notifier)

    handle = engine.submit("hi")
    assert engine.cancel() is True
    message = await handle.wait()

    assert message.status is MessageStatus.ABORTED
    assert message.content == ""


@pytest.mark.asyncio
async def test_aclose_cancels_active_turn(notifier) -> None:
    transport = GatedTransport(_line({"type": "content", "content": "Hel"}).encode())
    engine = _engine(transport, notifier)

    handle = engine.submit("hi")
    await _until(lambda: handle.message.is_streaming)
    await engine.aclose()

    assert handle.done
    assert handle.message.status is MessageStatus.ABORTED


@pytest.mark.asyncio
async def test_transport_failure_shows_fallback(notifier) -> None:
    engine = _engine(FailingTransport(_line({"type": "content", "content": "Hel"}).encode()), notifier)

    message = await engine.send("hi")

    assert message.status is MessageStatus.ERROR
    assert message.content == DEFAULT_FALLBACK_MESSAGE
    user = engine.messages[0]
    assert user.content == "hi"
    assert user.status is MessageStatus.COMPLETE
    assert engine.status is EngineStatus.IDLE


@pytest.mark.asyncio
async def test_errored_reply_is_sent_with_its_fallback_text(notifier) -> None:
    requests: list[ConversationTurn] = []

    class FlakyTransport:
        async def stream(self, turn: ConversationTurn) -> AsyncIterator[bytes]:
            requests.append(turn)
            if len(requests) == 1:
                raise TransportError("HTTP 502: bad gateway", status_code=502)
            yield _line({"type": "content", "content": "Hi"}).encode()

    engine = _engine(FlakyTransport(), notifier)
    first = await engine.send("first")
    await engine.send("second")

    assert first.status is MessageStatus.ERROR
    assert requests[1].history == [
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": DEFAULT_FALLBACK_MESSAGE},
    ]


@pytest.mark.asyncio
async def test_second_submit_while_active_is_rejected(notifier) -> None:
    transport = GatedTransport(_line({"type": "content", "content": "Hel"}).encode())
    engine = _engine(transport, notifier)

    handle = engine.submit("hi")
    with pytest.raises(TurnInProgressError):
        engine.submit("again")
    assert len(engine.messages) == 2

    transport.gate.set()
    await handle.wait()
    await engine.send("again")
    assert len(engine.messages) == 4


@pytest.mark.asyncio
async def test_blank_submit_is_rejected(notifier) -> None:
    engine = _engine(ChunkedReplayTransport([]), notifier)
    with pytest.raises(ValueError):
        engine.submit("   ")
    assert engine.messages == []


@pytest.mark.asyncio
async def test_request_carries_history_and_cart(notifier) -> None:
    cart = InMemoryCart()
    transport = ChunkedReplayTransport([_line({"type": "content", "content": "Hi"}), _line({"type": "complete"})])
    engine = _engine(transport, notifier, cart=cart, history_window=2)

    await engine.send("first")
    await cart.add_item(MenuItem(id="m2", name="Garlic Naan"), None, 1, [], None)
    await engine.send("second")

    first, second = transport.requests
    assert first.to_request()["conversation_history"] == []
    assert first.cart_context == []
    assert second.text == "second"
    assert second.session_id == "session_test"
    assert second.history == [{"role": "user", "content": "first"}, {"role": "assistant", "content": "Hi"}]
    assert [entry["name"] for entry in second.cart_context] == ["Garlic Naan"]


@pytest.mark.asyncio
async def test_cart_operation_is_applied_before_wait_returns(notifier) -> None:
    cart = InMemoryCart()
    transport = ChunkedReplayTransport([
        _line({
            "type": "cart_operation",
            "operation": "add_to_cart",
            "result": {"item": {"id": "m2", "name": "Garlic Naan"}, "quantity": 2},
        }),
        _line({"type": "content", "content": "Added two naan."}),
        _line({"type": "complete"}),
    ])
    engine = _engine(transport, notifier, cart=cart)

    message = await engine.send("two naan")

    assert message.content == "Added two naan."
    assert [(line.item.name, line.quantity) for line in cart.lines] == [("Garlic Naan", 2)]
    assert notifier.successes == ["Added to cart"]
    assert cart.refreshes == 1


@pytest.mark.asyncio
async def test_proposal_with_empty_confirmation_changes_nothing(catalog, notifier) -> None:
    cart = InMemoryCart()
    proposals: list[CartProposal | None] = []
    transport = ChunkedReplayTransport([
        _line({
            "type": "cart_proposal",
            "proposal": {"id": "p1", "items": [{"menu_item_id": "m1", "variant_id": "v1", "quantity": 1}]},
        }),
        _line({"type": "content", "content": "Shall I add it?"}),
        _line({"type": "complete"}),
    ])
    engine = _engine(transport, notifier, cart=cart, catalog=catalog)
    engine.on_proposal(proposals.append)

    await engine.send("butter chicken")
    assert engine.pending_proposal is not None
    result = await engine.confirm_proposal([])

    assert result.applied == []
    assert cart.lines == []
    assert cart.refreshes == 0
    assert engine.pending_proposal is None
    assert [p.id if p else None for p in proposals] == ["p1", None]


@pytest.mark.asyncio
async def test_confirmed_proposal_lands_in_cart(catalog, notifier) -> None:
    cart = InMemoryCart()
    transport = ChunkedReplayTransport([
        _line({"type": "cart_proposal", "proposal": {"id": "p1", "lines": [{"menu_item_id": "m1", "variant_id": "v2"}]}}),
    ])
    engine = _engine(transport, notifier, cart=cart, catalog=catalog)

    await engine.send("butter chicken")
    proposal = engine.pending_proposal
    assert proposal is not None
    result = await engine.confirm_proposal(proposal.lines)

    assert result.ok
    assert [(line.item.id, line.variant.id if line.variant else None) for line in cart.lines] == [("m1", "v2")]
    assert engine.cancel_proposal() is False


@pytest.mark.asyncio
async def test_observers_see_lifecycle_and_can_unsubscribe(notifier) -> None:
    transport = ChunkedReplayTransport([
        _line({"type": "content", "content": "Hel"}),
        _line({"type": "content", "content": "lo"}),
        _line({"type": "complete"}),
    ])
    engine = _engine(transport, notifier)
    statuses: list[EngineStatus] = []
    reply_states: list[MessageStatus] = []

    def on_message(message: Message) -> None:
        if message.role is SenderRole.ASSISTANT and (not reply_states or reply_states[-1] is not message.status):
            reply_states.append(message.status)

    def broken(_: Message) -> None:
        raise RuntimeError("observer bug")

    engine.on_status(statuses.append)
    engine.on_message(on_message)
    unsubscribe = engine.on_message(broken)

    message = await engine.send("hi")
    unsubscribe()
    await engine.send("again")

    assert message.content == "Hello"
    assert reply_states[:4] == [
        MessageStatus.QUEUED,
        MessageStatus.TYPING,
        MessageStatus.STREAMING,
        MessageStatus.COMPLETE,
    ]
    assert statuses[:3] == [EngineStatus.CONNECTING, EngineStatus.STREAMING, EngineStatus.IDLE]


@pytest.mark.asyncio
async def test_unrecoverable_stream_error_notifies_and_continues(notifier) -> None:
    transport = ChunkedReplayTransport([
        _line({"type": "error", "message": "menu service slow"}),
        _line({"type": "content", "content": "Still here."}),
    ])

    message = await _engine(transport, notifier).send("hi")

    assert notifier.errors == ["menu service slow"]
    assert message.content == "Still here."
    assert message.status is MessageStatus.COMPLETE


class GatedCart(InMemoryCart):
    """Cart whose additions wait for ``gate``."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def add_item(self, *args: Any) -> None:
        await self.gate.wait()
        await super().add_item(*args)


class ScriptedTransport:
    """Replays one body per turn, in order."""

    def __init__(self, *bodies: str) -> None:
        self.bodies = list(bodies)

    async def stream(self, turn: ConversationTurn) -> AsyncIterator[bytes]:
        yield self.bodies.pop(0).encode()


_ADD_NAAN = _line({"type": "cart_operation", "operation": "add_to_cart", "result": {"item": {"id": "m2"}}})
_CLEAR = _line({"type": "cart_operation", "operation": "clear_cart"})


@pytest.mark.asyncio
async def test_turn_stays_active_until_its_cart_operations_drain(notifier) -> None:
    cart = GatedCart()
    engine = _engine(ScriptedTransport(_ADD_NAAN + _line({"type": "complete"}), _CLEAR), notifier, cart=cart)

    handle = engine.submit("add naan")
    await _until(lambda: handle.message.frozen)

    assert handle.message.status is MessageStatus.COMPLETE
    assert engine.active_turn is handle
    assert not handle.done
    with pytest.raises(TurnInProgressError):
        engine.submit("clear the cart")

    cart.gate.set()
    await handle.wait()
    assert engine.active_turn is None
    assert engine.status is EngineStatus.IDLE

    await engine.send("clear the cart")
    assert cart.lines == []


@pytest.mark.asyncio
async def test_aclose_waits_for_pending_cart_operations(notifier) -> None:
    cart = GatedCart()
    engine = _engine(ScriptedTransport(_ADD_NAAN), notifier, cart=cart)

    handle = engine.submit("add naan")
    await _until(lambda: handle.message.frozen)
    closing = asyncio.ensure_future(engine.aclose())
    await asyncio.sleep(0)
    assert not closing.done()

    cart.gate.set()
    await closing

    assert handle.done
    assert [line.item.id for line in cart.lines] == ["m2"]
