"""Envelope schema registry and narrowing."""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger
from pydantic import ValidationError

if TYPE_CHECKING:
    from .envelopes import StreamEnvelope


class EnvelopeSchemaRegistry:
    """Registry mapping wire discriminants to typed envelope classes."""

    def __init__(self) -> None:
        self._schemas: dict[str, type[StreamEnvelope]] = {}

    def register(self, envelope_class: type[StreamEnvelope]) -> type[StreamEnvelope]:
        """Register an envelope class under every kind it declares.

        Args:
            envelope_class: The envelope class to register

        Returns:
            The same envelope class (for decorator usage)

        Raises:
            ValueError: If a kind is already registered with a different class
        """
        for kind in envelope_class.kinds:
            existing = self._schemas.get(kind)
            if existing is not None and existing is not envelope_class:
                msg = (
                    f"Envelope kind '{kind}' already registered with different class: "
                    f"{existing.__name__} vs {envelope_class.__name__}"
                )
                raise ValueError(msg)
            self._schemas[kind] = envelope_class
        return envelope_class

    def get_schema(self, kind: str) -> type[StreamEnvelope] | None:
        return self._schemas.get(kind)

    def is_registered(self, kind: str) -> bool:
        return kind in self._schemas

    def list_schemas(self) -> dict[str, type[StreamEnvelope]]:
        return self._schemas.copy()

    def narrow(self, envelope: StreamEnvelope) -> StreamEnvelope | None:
        """Validate a generic envelope against the schema registered for its kind.

        Returns None for unknown kinds and for payloads that fail their schema.
        """
        schema = self.get_schema(envelope.kind)
        if schema is None:
            logger.debug("envelope.unknown_kind kind={}", envelope.kind)
            return None
        if isinstance(envelope, schema):
            return envelope
        try:
            return schema.model_validate(envelope.raw())
        except ValidationError as exc:
            logger.warning("envelope.invalid kind={} errors={}", envelope.kind, exc.error_count())
            return None


# Global schema registry - singleton pattern
_global_registry = EnvelopeSchemaRegistry()


def register_envelope(envelope_class: type[StreamEnvelope]) -> type[StreamEnvelope]:
    """Register an envelope class with the global schema registry."""
    return _global_registry.register(envelope_class)


def narrow_envelope(envelope: StreamEnvelope) -> StreamEnvelope | None:
    """Narrow a generic envelope through the global registry."""
    return _global_registry.narrow(envelope)


def get_registry() -> EnvelopeSchemaRegistry:
    """Get the global envelope schema registry."""
    return _global_registry
