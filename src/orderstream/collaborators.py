"""Interfaces of the cart, catalog, and notification collaborators.

The engine never owns cart or catalog state; it calls these protocols. The
in-memory implementations back the CLI and are small enough to serve as
reference adapters.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from loguru import logger
from rich.console import Console

from .errors import CartResolutionError
from .protocol import MenuItem, Variant
from .types import Payload


class CartCollaborator(Protocol):
    """Cart domain model owned by the host application."""

    async def add_item(
        self,
        item: MenuItem,
        variant: Variant | None,
        quantity: int,
        customizations: list[Any],
        notes: str | None,
    ) -> None: ...

    async def remove_item(self, cart_item_id: str) -> None: ...

    async def update_quantity(self, cart_item_id: str, quantity: int) -> None: ...

    async def clear(self) -> None: ...

    async def refresh(self) -> None: ...

    async def snapshot(self) -> list[Payload]: ...


class CatalogCollaborator(Protocol):
    """Menu catalog lookup."""

    async def find_item(self, item_id: str) -> MenuItem | None: ...


class Notifier(Protocol):
    """Toast-style user notifications."""

    def success(self, text: str) -> None: ...

    def error(self, text: str) -> None: ...


@dataclass
class CartLine:
    item: MenuItem
    variant: Variant | None = None
    quantity: int = 1
    customizations: list[Any] = field(default_factory=list)
    notes: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])

    def to_context(self) -> Payload:
        variant = None if self.variant is None else {"id": self.variant.id, "name": self.variant.name}
        return {
            "id": self.id,
            "name": self.item.name,
            "quantity": self.quantity,
            "variant": variant,
            "customizations": list(self.customizations),
            "notes": self.notes,
        }


class InMemoryCart:
    """Process-local cart."""

    def __init__(self) -> None:
        self._lines: list[CartLine] = []
        self.refreshes = 0

    @property
    def lines(self) -> list[CartLine]:
        return list(self._lines)

    async def add_item(
        self,
        item: MenuItem,
        variant: Variant | None,
        quantity: int,
        customizations: list[Any],
        notes: str | None,
    ) -> None:
        line = CartLine(item=item, variant=variant, quantity=quantity, customizations=list(customizations), notes=notes)
        self._lines.append(line)
        logger.debug("cart.added id={} item={} quantity={}", line.id, item.id, quantity)

    async def remove_item(self, cart_item_id: str) -> None:
        self._lines.remove(self._line(cart_item_id))

    async def update_quantity(self, cart_item_id: str, quantity: int) -> None:
        line = self._line(cart_item_id)
        if quantity <= 0:
            self._lines.remove(line)
            return
        line.quantity = quantity

    async def clear(self) -> None:
        self._lines.clear()

    async def refresh(self) -> None:
        self.refreshes += 1

    async def snapshot(self) -> list[Payload]:
        return [line.to_context() for line in self._lines]

    def _line(self, cart_item_id: str) -> CartLine:
        for line in self._lines:
            if line.id == cart_item_id:
                return line
        raise CartResolutionError(cart_item_id, "is not in the cart")


class InMemoryCatalog:
    """Catalog backed by a list of menu items."""

    def __init__(self, items: Iterable[MenuItem] = ()) -> None:
        self._items = {item.id: item for item in items}

    @classmethod
    def from_file(cls, path: Path) -> InMemoryCatalog:
        """Load a JSON array of menu items."""
        raw = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw, list):
            raise ValueError(f"{path} must contain a JSON array of menu items")
        return cls(MenuItem.model_validate(entry) for entry in raw)

    async def find_item(self, item_id: str) -> MenuItem | None:
        found = self._items.get(item_id)
        if found is not None:
            return found
        # Models sometimes reference dishes by slugged name instead of id.
        slug = item_id.strip().lower()
        return next((item for item in self._items.values() if _slug(item.name) == slug), None)


def _slug(name: str) -> str:
    return "_".join(name.lower().split())


class ConsoleNotifier:
    """Notifier that prints to a rich console."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def success(self, text: str) -> None:
        self.console.print(f"[green]✓[/green] {text}")

    def error(self, text: str) -> None:
        self.console.print(f"[bold red]Error:[/bold red] {text}")
