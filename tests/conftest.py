from __future__ import annotations

import pytest

from orderstream.collaborators import InMemoryCart, InMemoryCatalog
from orderstream.protocol import MenuItem, Variant


class RecordingNotifier:
    def __init__(self) -> None:
        self.successes: list[str] = []
        self.errors: list[str] = []

    def success(self, text: str) -> None:
        self.successes.append(text)

    def error(self, text: str) -> None:
        self.errors.append(text)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def cart() -> InMemoryCart:
    return InMemoryCart()


@pytest.fixture
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog([
        MenuItem(
            id="m1",
            name="Butter Chicken",
            price=14.0,
            variants=[Variant(id="v1", name="Half", price=9.0), Variant(id="v2", name="Full", price=14.0)],
        ),
        MenuItem(id="m2", name="Garlic Naan", price=3.5),
        MenuItem(id="m3", name="Mango Lassi", price=4.0, active=False),
    ])
