"""Wire protocol: envelope taxonomy, payload models, and the schema registry."""

from .envelopes import (
    CartOperationEnvelope,
    CartOperationKind,
    CartOperationResult,
    CartProposal,
    CartProposalEnvelope,
    CatalogItemsEnvelope,
    CompleteEnvelope,
    EnvelopeKind,
    ErrorEnvelope,
    MenuItem,
    MenuRef,
    MenuRefsEnvelope,
    MetadataEnvelope,
    ProposalLine,
    StreamEnvelope,
    SuggestedAction,
    SuggestedActionsEnvelope,
    TextDeltaEnvelope,
    Variant,
)
from .registry import EnvelopeSchemaRegistry, get_registry, narrow_envelope, register_envelope

__all__ = [
    "CartOperationEnvelope",
    "CartOperationKind",
    "CartOperationResult",
    "CartProposal",
    "CartProposalEnvelope",
    "CatalogItemsEnvelope",
    "CompleteEnvelope",
    "EnvelopeKind",
    "EnvelopeSchemaRegistry",
    "ErrorEnvelope",
    "MenuItem",
    "MenuRef",
    "MenuRefsEnvelope",
    "MetadataEnvelope",
    "ProposalLine",
    "StreamEnvelope",
    "SuggestedAction",
    "SuggestedActionsEnvelope",
    "TextDeltaEnvelope",
    "Variant",
    "get_registry",
    "narrow_envelope",
    "register_envelope",
]
