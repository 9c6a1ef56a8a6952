"""Cart proposals that require explicit confirmation before touching the cart."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from loguru import logger

from .collaborators import CartCollaborator, CatalogCollaborator, Notifier
from .errors import CartError, CartResolutionError
from .protocol import CartProposal, MenuItem, ProposalLine, Variant

ProposalListener = Callable[[CartProposal | None], None]


@dataclass(frozen=True)
class SkippedLine:
    line: ProposalLine
    reason: str


@dataclass
class ConfirmResult:
    """Outcome of confirming a proposal."""

    proposal_id: str | None
    applied: list[ProposalLine] = field(default_factory=list)
    skipped: list[SkippedLine] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.skipped


class CartProposalWorkflow:
    """Hold at most one pending proposal per session and resolve it on demand."""

    def __init__(
        self,
        cart: CartCollaborator,
        catalog: CatalogCollaborator,
        notifier: Notifier,
        *,
        on_change: ProposalListener | None = None,
    ) -> None:
        self._cart = cart
        self._catalog = catalog
        self._notifier = notifier
        self._on_change = on_change
        self._pending: CartProposal | None = None

    @property
    def pending(self) -> CartProposal | None:
        return self._pending

    def offer(self, proposal: CartProposal) -> None:
        """Store ``proposal`` as the pending one, replacing any earlier proposal."""
        previous = self._pending
        if previous is not None:
            # The user is not told about the discarded proposal.
            logger.warning("proposal.replaced previous={} current={}", previous.id, proposal.id)
        self._pending = proposal
        logger.info("proposal.pending id={} lines={}", proposal.id, len(proposal.lines))
        self._changed()

    def cancel(self) -> bool:
        if self._pending is None:
            return False
        logger.info("proposal.cancelled id={}", self._pending.id)
        self._pending = None
        self._changed()
        return True

    async def confirm(self, selected: Sequence[ProposalLine]) -> ConfirmResult:
        """Add the selected lines to the cart, one at a time.

        A selected line matches the proposal by item and variant, so the caller
        may change its quantity, notes, or customizations. Lines whose catalog
        item cannot be resolved are skipped and reported; the rest are still
        applied. An unknown variant falls back to the plain item. The pending
        proposal is cleared before the first cart call, so a second confirm
        cannot apply it twice.
        """
        proposal = self._pending
        if proposal is None:
            logger.info("proposal.confirm_without_pending")
            return ConfirmResult(proposal_id=None)

        self._pending = None
        self._changed()
        result = ConfirmResult(proposal_id=proposal.id)
        if not selected:
            logger.info("proposal.confirmed_empty id={}", proposal.id)
            return result

        offered = {(line.menu_item_id, line.variant_id) for line in proposal.lines}
        try:
            for line in selected:
                if (line.menu_item_id, line.variant_id) not in offered:
                    result.skipped.append(SkippedLine(line, "not part of the pending proposal"))
                    continue
                try:
                    item, variant = await self._resolve(line)
                    await self._cart.add_item(item, variant, line.quantity, list(line.customizations), line.notes)
                except CartError as exc:
                    logger.warning("proposal.line_skipped id={} item={} reason={}", proposal.id, line.menu_item_id, exc)
                    result.skipped.append(SkippedLine(line, str(exc)))
                    continue
                result.applied.append(line)
            if result.applied:
                await self._cart.refresh()
        except Exception:
            self._notifier.error("Failed to add items to cart")
            raise

        logger.info(
            "proposal.confirmed id={} applied={} skipped={}", proposal.id, len(result.applied), len(result.skipped)
        )
        if result.applied:
            self._notifier.success("Items added to cart")
        if result.skipped:
            self._notifier.error(f"{len(result.skipped)} item(s) could not be added")
        return result

    async def _resolve(self, line: ProposalLine) -> tuple[MenuItem, Variant | None]:
        item = await self._catalog.find_item(line.menu_item_id)
        if item is None:
            raise CartResolutionError(line.menu_item_id)
        if not item.active:
            raise CartResolutionError(line.menu_item_id, "is not available")
        if line.variant_id is None:
            return item, None
        variant = item.find_variant(line.variant_id)
        if variant is None:
            logger.warning("proposal.unknown_variant item={} variant={}", line.menu_item_id, line.variant_id)
        return item, variant

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self._pending)
