"""orderstream - streaming conversational ordering engine."""

from .collaborators import CartCollaborator, CatalogCollaborator, InMemoryCart, InMemoryCatalog, Notifier
from .config import Settings, get_settings
from .engine import ConversationEngine, EngineStatus, TurnHandle
from .models import ConversationTurn, Message, SenderRole, Transcript
from .proposals import ConfirmResult, SkippedLine
from .state import MessageStatus
from .transports import HttpxStreamTransport, ReplayTransport, StreamTransport

__version__ = "0.1.0"

__all__ = [
    "CartCollaborator",
    "CatalogCollaborator",
    "ConfirmResult",
    "ConversationEngine",
    "ConversationTurn",
    "EngineStatus",
    "HttpxStreamTransport",
    "InMemoryCart",
    "InMemoryCatalog",
    "Message",
    "MessageStatus",
    "Notifier",
    "ReplayTransport",
    "SenderRole",
    "Settings",
    "SkippedLine",
    "StreamTransport",
    "Transcript",
    "TurnHandle",
    "get_settings",
]
