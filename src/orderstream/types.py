"""Framework-neutral data aliases."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeAlias

Payload: TypeAlias = dict[str, Any]
HistoryEntry: TypeAlias = dict[str, str]
Unsubscribe: TypeAlias = Callable[[], None]
