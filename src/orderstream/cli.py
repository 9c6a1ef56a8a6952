"""orderstream command line interface."""

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from orderstream.collaborators import ConsoleNotifier, InMemoryCart, InMemoryCatalog
from orderstream.config import Settings, get_settings
from orderstream.engine import ConversationEngine
from orderstream.errors import ConfigurationError
from orderstream.logging_utils import configure_logging
from orderstream.models import Message
from orderstream.proposals import ConfirmResult
from orderstream.state import MessageStatus
from orderstream.transports import HttpxStreamTransport, ReplayTransport, StreamTransport

app = typer.Typer(
    name="orderstream",
    help="Streaming ordering assistant engine.",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()


@app.command()
def replay(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Recorded NDJSON response body"),
    chunk_size: int = typer.Option(64, "--chunk-size", min=1, help="Bytes per simulated network chunk"),
    catalog: Path | None = typer.Option(None, "--catalog", exists=True, dir_okay=False, help="JSON array of menu items"),
    confirm: bool = typer.Option(False, "--confirm", help="Accept every line of a pending cart proposal"),
    prompt: str = typer.Option("(replay)", "--prompt", help="User utterance recorded in the transcript"),
) -> None:
    """Feed a recorded response through the engine and print the result."""
    settings = get_settings()
    configure_logging(profile="chat", level=settings.log_level)
    transport = ReplayTransport.from_file(path, chunk_size=chunk_size)
    items = InMemoryCatalog.from_file(catalog) if catalog is not None else InMemoryCatalog()
    message = asyncio.run(_run_turn(transport, settings, items, prompt, confirm=confirm))
    if message.status is MessageStatus.ERROR:
        raise typer.Exit(code=1)


@app.command()
def send(
    text: str = typer.Argument(..., help="Message to send"),
    url: str | None = typer.Option(None, "--url", help="Streaming chat endpoint (defaults to ORDERSTREAM_ENDPOINT_URL)"),
    catalog: Path | None = typer.Option(None, "--catalog", exists=True, dir_okay=False, help="JSON array of menu items"),
    confirm: bool = typer.Option(False, "--confirm", help="Accept every line of a pending cart proposal"),
) -> None:
    """Run one live turn against a streaming chat endpoint."""
    settings = get_settings(endpoint_url=url) if url else get_settings()
    configure_logging(profile="chat", level=settings.log_level)
    try:
        transport = HttpxStreamTransport.from_settings(settings)
    except ConfigurationError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=2) from exc
    items = InMemoryCatalog.from_file(catalog) if catalog is not None else InMemoryCatalog()
    message = asyncio.run(_run_turn(transport, settings, items, text, confirm=confirm))
    if message.status is MessageStatus.ERROR:
        raise typer.Exit(code=1)


async def _run_turn(
    transport: StreamTransport,
    settings: Settings,
    catalog: InMemoryCatalog,
    text: str,
    *,
    confirm: bool,
) -> Message:
    cart = InMemoryCart()
    engine = ConversationEngine(
        transport,
        cart=cart,
        catalog=catalog,
        notifier=ConsoleNotifier(console),
        settings=settings,
    )
    message = await engine.send(text)
    _render_message(message)

    proposal = engine.pending_proposal
    if proposal is not None:
        console.print(f"[bold]Cart proposal[/bold] {proposal.id}: {len(proposal.lines)} line(s)")
        if confirm:
            _render_confirm(await engine.confirm_proposal(proposal.lines))
        else:
            engine.cancel_proposal()
            console.print("[dim]proposal discarded (pass --confirm to accept)[/dim]")

    _render_cart(cart)
    return message


def _render_message(message: Message) -> None:
    console.print(f"[bold yellow]Assistant[/bold yellow] [dim]({message.status.value})[/dim]")
    console.print(message.content or "[dim](no text)[/dim]")
    if message.menu_refs:
        table = Table("item", "name", "price", title="Menu references")
        for ref in message.menu_refs:
            price = "" if ref.card is None else f"{ref.card.price:.2f}"
            table.add_row(ref.item_id, ref.name or "", price)
        console.print(table)
    if message.suggested_actions:
        console.print("[bold]Suggestions:[/bold] " + " | ".join(action.label for action in message.suggested_actions))
    meta = message.metadata
    if meta.intent or meta.tools_used:
        console.print(f"[dim]intent={meta.intent} confidence={meta.confidence} tools={','.join(meta.tools_used)}[/dim]")


def _render_confirm(result: ConfirmResult) -> None:
    console.print(f"[green]applied {len(result.applied)} line(s)[/green]")
    for skipped in result.skipped:
        console.print(f"[red]skipped {skipped.line.menu_item_id}: {skipped.reason}[/red]")


def _render_cart(cart: InMemoryCart) -> None:
    if not cart.lines:
        console.print("[dim]cart is empty[/dim]")
        return
    table = Table("id", "item", "variant", "qty", title="Cart")
    for line in cart.lines:
        variant = "" if line.variant is None else (line.variant.name or line.variant.id)
        table.add_row(line.id, line.item.name or line.item.id, variant, str(line.quantity))
    console.print(table)


if __name__ == "__main__":
    app()
