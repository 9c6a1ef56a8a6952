"""Process logging setup for the engine and the CLI."""

from __future__ import annotations

import os
import sys
from logging import Handler
from typing import Literal

import loguru
from loguru import logger
from rich import get_console
from rich.logging import RichHandler

LogProfile = Literal["default", "chat"]

_DEFAULT_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<7} | {name}:{function}:{line} | {extra[turn]} | {message}"
_CHAT_FORMAT = "[{extra[turn]}] {message}"
_configured: tuple[LogProfile, str] | None = None


def _inject_turn(record: loguru.Record) -> None:
    from orderstream.engine import current_turn

    record["extra"]["turn"] = current_turn()


def _chat_handler() -> Handler:
    # Shares the console used by the CLI so log lines and tables interleave cleanly.
    return RichHandler(
        console=get_console(),
        show_level=True,
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=False,
    )


def configure_logging(*, profile: LogProfile = "default", level: str | None = None) -> None:
    """Install the loguru sink for ``profile``.

    Every record carries the id of the turn it was emitted from in
    ``extra["turn"]`` ("-" outside a turn). Calling again with the same
    profile and level is a no-op.
    """
    global _configured

    resolved = (level or os.getenv("ORDERSTREAM_LOG_LEVEL", "INFO")).upper()
    if _configured == (profile, resolved):
        return

    logger.remove()
    logger.configure(patcher=_inject_turn)
    if profile == "chat":
        logger.add(_chat_handler(), level=resolved, format=_CHAT_FORMAT, backtrace=False, diagnose=False)
    else:
        logger.add(sys.stderr, level=resolved, format=_DEFAULT_FORMAT, backtrace=False, diagnose=False)
    _configured = (profile, resolved)
