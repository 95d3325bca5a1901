"""
Cart state machine: add / update / remove / clear.

Every operation works on a copy of the session's lines and commits it in one
step, so a rejected or failed mutation leaves the session (and its version)
untouched. Callers are expected to hold ``session.lock``.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace

from tablecart.core.constants import MAX_LINE_QUANTITY
from tablecart.core.exceptions import (
    CartError,
    InternalCartError,
    InvalidItemError,
    InvalidQuantityError,
    LineNotFoundError,
)
from tablecart.domain.cart import CartLine, CartSnapshot, SelectedOption, Session
from tablecart.domain.catalog import Catalog, MenuItem
from tablecart.domain.requests import MutationRequest, OperationKind

logger = logging.getLogger(__name__)


class CartService:
    """Applies validated mutation requests to a session."""

    def __init__(self, catalog: Catalog, max_line_quantity: int = MAX_LINE_QUANTITY):
        self._catalog = catalog
        self.max_line_quantity = max_line_quantity
        self._handlers = {
            OperationKind.ADD: self.add,
            OperationKind.UPDATE: self.update,
            OperationKind.REMOVE: self.remove,
            OperationKind.CLEAR: self.clear,
        }

    def apply(self, session: Session, request: MutationRequest) -> CartSnapshot:
        """Dispatch by operation kind; unexpected failures become INTERNAL_ERROR."""
        handler = self._handlers[request.kind]
        try:
            return handler(session, request)
        except CartError:
            raise
        except Exception as e:
            logger.exception(
                f"Unexpected error applying {request.kind.value} to session {session.session_id}"
            )
            raise InternalCartError(request.kind.value) from e

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    def add(self, session: Session, request: MutationRequest) -> CartSnapshot:
        quantity = 1 if request.quantity is None else request.quantity
        if quantity <= 0:
            raise InvalidQuantityError(quantity)

        item = self._resolve_item(request.item_id)
        options = self._resolve_options(item, request.customizations or ())
        line = CartLine(
            item_id=item.id,
            name=item.name,
            unit_price=item.base_price,
            quantity=quantity,
            options=options,
            notes=request.notes,
        )

        lines = dict(session.lines)
        existing = lines.get(line.line_id)
        if existing is not None:
            line = replace(
                existing,
                quantity=existing.quantity + quantity,
                notes=request.notes if request.notes is not None else existing.notes,
            )
        self._check_limit(line.quantity)
        lines[line.line_id] = line

        logger.debug(f"Session {session.session_id}: {line.line_id} x{line.quantity}")
        return session.commit(lines)

    def update(self, session: Session, request: MutationRequest) -> CartSnapshot:
        lines = dict(session.lines)
        line_id = request.line_id
        line = lines.get(line_id)
        if line is None:
            raise LineNotFoundError(line_id)

        if request.quantity is not None:
            if request.quantity < 0:
                raise InvalidQuantityError(request.quantity)
            if request.quantity == 0:
                del lines[line_id]
                return session.commit(lines)

        changes = {}
        if request.quantity is not None:
            changes["quantity"] = request.quantity
        if request.notes is not None:
            changes["notes"] = request.notes
        if request.customizations is not None:
            item = self._catalog.get_item(line.item_id)
            if item is None:
                raise InvalidItemError(line.item_id, "is no longer on the menu")
            changes["options"] = self._resolve_options(item, request.customizations)

        updated = replace(line, **changes)
        self._check_limit(updated.quantity)

        if updated.line_id == line_id:
            lines[line_id] = updated
        else:
            lines = self._rekey(lines, line_id, updated, request.notes)
        return session.commit(lines)

    def remove(self, session: Session, request: MutationRequest) -> CartSnapshot:
        lines = dict(session.lines)
        line = lines.get(request.line_id)
        if line is None:
            raise LineNotFoundError(request.line_id)

        if request.quantity is None:
            del lines[request.line_id]
        else:
            if request.quantity <= 0:
                raise InvalidQuantityError(request.quantity)
            remaining = line.quantity - request.quantity
            if remaining <= 0:
                del lines[request.line_id]
            else:
                lines[request.line_id] = replace(line, quantity=remaining)
        return session.commit(lines)

    def clear(self, session: Session, request: MutationRequest | None = None) -> CartSnapshot:
        return session.commit({})

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _resolve_item(self, item_id: str) -> MenuItem:
        item = self._catalog.get_item(item_id)
        if item is None:
            raise InvalidItemError(item_id)
        if not item.available:
            raise InvalidItemError(item_id, "is not available")
        return item

    def _resolve_options(
        self, item: MenuItem, option_ids: Iterable[str]
    ) -> tuple[SelectedOption, ...]:
        selected = []
        for option_id in sorted(set(option_ids)):
            option = item.get_option(option_id)
            if option is None:
                raise InvalidItemError(item.id, f"has no customization option {option_id}")
            if not option.available:
                raise InvalidItemError(item.id, f"option {option_id} is not available")
            selected.append(
                SelectedOption(option_id=option.id, name=option.name, price_delta=option.price_delta)
            )
        return tuple(selected)

    def _check_limit(self, quantity: int) -> None:
        if quantity > self.max_line_quantity:
            raise InvalidQuantityError(quantity, f"exceeds the limit of {self.max_line_quantity}")

    def _rekey(
        self,
        lines: dict[str, CartLine],
        old_id: str,
        updated: CartLine,
        notes: str | None = None,
    ) -> dict[str, CartLine]:
        """Move a line whose identity changed; merge into an existing equal line."""
        target = lines.get(updated.line_id)
        if target is not None:
            merged = replace(
                target,
                quantity=target.quantity + updated.quantity,
                notes=notes if notes is not None else target.notes,
            )
            self._check_limit(merged.quantity)

        rekeyed: dict[str, CartLine] = {}
        for key, line in lines.items():
            if key == old_id:
                if target is None:
                    rekeyed[updated.line_id] = updated
            elif key == updated.line_id:
                rekeyed[key] = merged
            else:
                rekeyed[key] = line
        return rekeyed
