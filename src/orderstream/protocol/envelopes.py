"""Wire envelope models.

Every line of the response body decodes to one JSON object carrying a ``type``
(or ``kind``) discriminant. The parser produces a generic :class:`StreamEnvelope`;
the dispatcher narrows it to one of the typed envelopes below through the
registry. Each typed envelope normalizes the historical field aliases of its
kind in a single ``before`` validator, so handlers only ever see one shape.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from enum import Enum
from typing import Any, ClassVar

from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .registry import register_envelope


class EnvelopeKind(str, Enum):
    """Envelope discriminants understood by the dispatcher."""

    CONTENT = "content"
    TEXT = "text"
    STRUCTURED_DATA = "structured_data"
    UI_ELEMENT = "ui_element"
    CART_OPERATION = "cart_operation"
    MENU_REFS = "menu_refs"
    SUGGESTED_ACTIONS = "suggested_actions"
    CART_PROPOSAL = "cart_proposal"
    METADATA = "metadata"
    COMPLETE = "complete"
    ERROR = "error"


class CartOperationKind(str, Enum):
    """Imperative cart operations already resolved by the server."""

    ADD = "add"
    REMOVE = "remove"
    UPDATE = "update"
    CLEAR = "clear"
    SUMMARY = "summary"

    @property
    def mutates(self) -> bool:
        return self is not CartOperationKind.SUMMARY


_OPERATION_ALIASES: dict[str, CartOperationKind] = {
    "add_to_cart": CartOperationKind.ADD,
    "remove_from_cart": CartOperationKind.REMOVE,
    "update_quantity": CartOperationKind.UPDATE,
    "clear_cart": CartOperationKind.CLEAR,
    "get_cart_summary": CartOperationKind.SUMMARY,
}


def _first(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present, non-empty value among ``keys``."""
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return default


def _as_mapping(data: Any) -> dict[str, Any] | None:
    if isinstance(data, Mapping):
        return dict(data)
    return None


def _keep_valid(entries: Any, model: type[BaseModel], kind: str) -> Any:
    """Validate ``entries`` one by one, dropping and logging the invalid ones."""
    if not isinstance(entries, list):
        return entries
    kept: list[Any] = []
    for index, entry in enumerate(entries):
        try:
            kept.append(model.model_validate(entry))
        except ValidationError as exc:
            logger.warning("envelope.entry_dropped kind={} index={} errors={}", kind, index, exc.error_count())
    return kept


# ============================================================================
# PAYLOAD MODELS
# ============================================================================


class Variant(BaseModel):
    """One priced variant of a catalog item."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str | None = None
    price: float | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        raw = _as_mapping(data)
        if raw is None:
            return data
        raw["name"] = _first(raw, "name", "variant_name")
        if isinstance(raw.get("id"), int):
            raw["id"] = str(raw["id"])
        return raw


class MenuItem(BaseModel):
    """Catalog item with display metadata."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    description: str | None = None
    image_url: str | None = None
    category_id: str | None = None
    price: float = 0.0
    variants: list[Variant] = Field(default_factory=list)
    spice_indicators: Any = None
    active: bool = True

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        raw = _as_mapping(data)
        if raw is None:
            return data
        raw["id"] = str(_first(raw, "menu_item_id", "item_id", "id", default=""))
        raw["name"] = _first(raw, "name", "item_name", default="")
        raw["category_id"] = _first(raw, "category_id", "category")
        raw["price"] = _first(raw, "price", default=0.0)
        raw["variants"] = raw.get("variants") or []
        if "is_active" in raw and "active" not in raw:
            raw["active"] = raw["is_active"]
        return raw

    @field_validator("id")
    @classmethod
    def _require_id(cls, value: str) -> str:
        if not value:
            raise ValueError("menu item requires an identifier")
        return value

    def find_variant(self, variant_id: str) -> Variant | None:
        return next((variant for variant in self.variants if variant.id == variant_id), None)


class MenuRef(BaseModel):
    """Reference from a message to one catalog item."""

    model_config = ConfigDict(extra="ignore")

    item_id: str
    name: str | None = None
    variant_id: str | None = None
    card: MenuItem | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        raw = _as_mapping(data)
        if raw is None:
            return data
        raw["item_id"] = str(_first(raw, "item_id", "menu_item_id", "id", default=""))
        raw["name"] = _first(raw, "name", "item_name")
        return raw

    @field_validator("item_id")
    @classmethod
    def _require_item_id(cls, value: str) -> str:
        if not value:
            raise ValueError("menu reference requires an item identifier")
        return value

    @classmethod
    def from_card(cls, card: MenuItem) -> MenuRef:
        return cls(item_id=card.id, name=card.name or None, card=card)


class SuggestedAction(BaseModel):
    """Quick-reply chip offered under an assistant message."""

    model_config = ConfigDict(extra="ignore")

    label: str
    payload: str

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"label": data, "payload": data}
        raw = _as_mapping(data)
        if raw is None:
            return data
        label = _first(raw, "label", "text", "title", default="")
        raw["label"] = label
        raw["payload"] = str(_first(raw, "payload", "action", "value", "message", default=label))
        return raw


class ProposalLine(BaseModel):
    """One candidate cart line inside a proposal."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    menu_item_id: str
    variant_id: str | None = None
    quantity: int = Field(default=1, ge=1)
    customizations: list[Any] = Field(default_factory=list)
    notes: str | None = None
    name: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        raw = _as_mapping(data)
        if raw is None:
            return data
        raw["menu_item_id"] = str(_first(raw, "menu_item_id", "item_id", "id", default=""))
        variant_id = _first(raw, "variant_id")
        raw["variant_id"] = None if variant_id is None else str(variant_id)
        raw["notes"] = _first(raw, "notes", "note")
        raw["name"] = _first(raw, "name", "item_name")
        raw["customizations"] = raw.get("customizations") or []
        return raw


class CartProposal(BaseModel):
    """Candidate set of cart lines awaiting explicit confirmation."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    lines: list[ProposalLine] = Field(default_factory=list)
    summary: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        raw = _as_mapping(data)
        if raw is None:
            return data
        proposal_id = _first(raw, "id", "proposal_id")
        if proposal_id is None:
            raw.pop("id", None)
        else:
            raw["id"] = str(proposal_id)
        raw["lines"] = _first(raw, "lines", "items", default=[])
        raw["summary"] = _first(raw, "summary", "message")
        return raw


class CartOperationResult(BaseModel):
    """Server-resolved payload of an imperative cart operation."""

    model_config = ConfigDict(extra="ignore")

    item: MenuItem | None = None
    variant: Variant | None = None
    quantity: int = Field(default=1, ge=1)
    customizations: list[Any] = Field(default_factory=list)
    notes: str | None = None
    cart_item_id: str | None = None
    new_quantity: int | None = None
    message: str | None = None
    requires_clarification: bool = False

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        raw = _as_mapping(data)
        if raw is None:
            return data
        item = _as_mapping(raw.get("item"))
        if item is not None:
            raw.setdefault("variant", item.get("variant"))
            raw.setdefault("customizations", item.get("customizations") or [])
            raw.setdefault("notes", item.get("notes"))
        raw["quantity"] = _first(raw, "quantity", default=1)
        if raw.get("cart_item_id") is not None:
            raw["cart_item_id"] = str(raw["cart_item_id"])
        return raw


# ============================================================================
# ENVELOPES
# ============================================================================


class StreamEnvelope(BaseModel):
    """Generic wire envelope: a discriminant plus a kind-specific payload."""

    kinds: ClassVar[tuple[str, ...]] = ()

    model_config = ConfigDict(extra="allow")

    kind: str = Field(validation_alias=AliasChoices("type", "kind"))

    def raw(self) -> dict[str, Any]:
        """Return the envelope as it appeared on the wire."""
        return {**(self.model_extra or {}), "type": self.kind}


@register_envelope
class TextDeltaEnvelope(StreamEnvelope):
    """Partial run of reply text."""

    kinds = (EnvelopeKind.CONTENT.value, EnvelopeKind.TEXT.value)

    model_config = ConfigDict(extra="ignore")

    text: str = ""

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        raw = _as_mapping(data)
        if raw is None:
            return data
        text = _first(raw, "text", "content", "delta", default="")
        raw["text"] = text if isinstance(text, str) else str(text)
        return raw


@register_envelope
class CatalogItemsEnvelope(StreamEnvelope):
    """Catalog items to be rendered as cards under the reply."""

    kinds = (EnvelopeKind.STRUCTURED_DATA.value, EnvelopeKind.UI_ELEMENT.value)

    model_config = ConfigDict(extra="ignore")

    element: str | None = None
    items: list[MenuItem] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        raw = _as_mapping(data)
        if raw is None:
            return data
        kind = _first(raw, "type", "kind")
        if kind == EnvelopeKind.UI_ELEMENT.value:
            single = {key: value for key, value in raw.items() if key not in {"type", "kind", "element"}}
            raw["items"] = [single] if raw.get("element") == "menu_card" else []
        else:
            raw["items"] = raw.get("items") or []
        raw["items"] = _keep_valid(raw["items"], MenuItem, kind or EnvelopeKind.STRUCTURED_DATA.value)
        return raw


@register_envelope
class CartOperationEnvelope(StreamEnvelope):
    """Imperative cart mutation; applied without confirmation."""

    kinds = (EnvelopeKind.CART_OPERATION.value,)

    model_config = ConfigDict(extra="ignore")

    operation: CartOperationKind
    result: CartOperationResult = Field(default_factory=CartOperationResult)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        raw = _as_mapping(data)
        if raw is None:
            return data
        operation = _first(raw, "operation", "op", "action")
        if isinstance(operation, str):
            raw["operation"] = _OPERATION_ALIASES.get(operation, operation)
        raw["result"] = raw.get("result") or {}
        return raw


@register_envelope
class MenuRefsEnvelope(StreamEnvelope):
    """Menu item references from the model's structured output."""

    kinds = (EnvelopeKind.MENU_REFS.value,)

    model_config = ConfigDict(extra="ignore")

    items: list[MenuRef] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        raw = _as_mapping(data)
        if raw is None:
            return data
        raw["items"] = _keep_valid(_first(raw, "items", "refs", default=[]), MenuRef, EnvelopeKind.MENU_REFS.value)
        return raw


@register_envelope
class SuggestedActionsEnvelope(StreamEnvelope):
    """Quick-reply suggestions."""

    kinds = (EnvelopeKind.SUGGESTED_ACTIONS.value,)

    model_config = ConfigDict(extra="ignore")

    actions: list[SuggestedAction] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        raw = _as_mapping(data)
        if raw is None:
            return data
        raw["actions"] = _first(raw, "actions", "items", default=[])
        return raw


@register_envelope
class CartProposalEnvelope(StreamEnvelope):
    """Cart change that requires explicit user confirmation."""

    kinds = (EnvelopeKind.CART_PROPOSAL.value,)

    model_config = ConfigDict(extra="ignore")

    proposal: CartProposal


@register_envelope
class MetadataEnvelope(StreamEnvelope):
    """Intent, confidence, and tool usage for the reply."""

    kinds = (EnvelopeKind.METADATA.value,)

    model_config = ConfigDict(extra="ignore")

    intent: str | None = None
    confidence: float | None = None
    tools_used: list[str] | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        raw = _as_mapping(data)
        if raw is None:
            return data
        raw["tools_used"] = _first(raw, "tools_used", "toolsUsed", "tools")
        return raw

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float | None) -> float | None:
        if value is None:
            return None
        return min(1.0, max(0.0, value))


@register_envelope
class CompleteEnvelope(StreamEnvelope):
    """End of the reply."""

    kinds = (EnvelopeKind.COMPLETE.value,)

    model_config = ConfigDict(extra="ignore")


@register_envelope
class ErrorEnvelope(StreamEnvelope):
    """Server-side error reported inside the stream."""

    kinds = (EnvelopeKind.ERROR.value,)

    model_config = ConfigDict(extra="ignore")

    code: str | None = None
    message: str = "An error occurred"
    recoverable: bool = False

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        raw = _as_mapping(data)
        if raw is None:
            return data
        raw["message"] = _first(raw, "message", "error", "detail", default="An error occurred")
        if raw.get("code") is not None:
            raw["code"] = str(raw["code"])
        return raw
