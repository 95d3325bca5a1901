"""
Cart session state and its broadcastable snapshot.

A ``Session`` is the single source of truth for one table's cart. Lines are
keyed by ``line_id``, which is derived from the item id and the set of
selected option ids, so a given item+customization combination appears at
most once.
"""
from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from tablecart.core.exceptions import InvalidQuantityError

CENTS = Decimal("0.01")


def format_money(value: Decimal) -> str:
    return str(value.quantize(CENTS))


def make_line_id(item_id: str, option_ids: Iterable[str] = ()) -> str:
    """Deterministic line identity: ``burger`` or ``burger[bacon,cheese]``."""
    options = sorted(set(option_ids))
    if not options:
        return item_id
    return f"{item_id}[{','.join(options)}]"


@dataclass(frozen=True)
class SelectedOption:
    """Customization captured when the line was added."""

    option_id: str
    name: str
    price_delta: Decimal = Decimal("0")

    def to_dict(self) -> dict[str, Any]:
        return {
            "option_id": self.option_id,
            "name": self.name,
            "price_delta": format_money(self.price_delta),
        }


@dataclass(frozen=True)
class CartLine:
    """One distinct item+customization entry with a quantity."""

    item_id: str
    name: str
    unit_price: Decimal
    quantity: int
    options: tuple[SelectedOption, ...] = ()
    notes: str | None = None

    def __post_init__(self) -> None:
        if self.quantity < 1:
            raise InvalidQuantityError(self.quantity)

    @property
    def line_id(self) -> str:
        return make_line_id(self.item_id, (o.option_id for o in self.options))

    @property
    def unit_total(self) -> Decimal:
        return self.unit_price + sum((o.price_delta for o in self.options), Decimal("0"))

    @property
    def line_total(self) -> Decimal:
        return self.unit_total * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "line_id": self.line_id,
            "item_id": self.item_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": format_money(self.unit_price),
            "options": [option.to_dict() for option in self.options],
            "notes": self.notes,
            "unit_total": format_money(self.unit_total),
            "line_total": format_money(self.line_total),
        }


@dataclass(frozen=True)
class CartSnapshot:
    """Full cart state sent to clients as a replacement, never a diff."""

    session_id: str
    version: int
    lines: tuple[CartLine, ...]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def subtotal(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal("0"))

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def get_line(self, line_id: str) -> CartLine | None:
        for line in self.lines:
            if line.line_id == line_id:
                return line
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "version": self.version,
            "lines": [line.to_dict() for line in self.lines],
            "subtotal": format_money(self.subtotal),
            "item_count": self.item_count,
            "updated_at": self.created_at.isoformat(),
        }


@dataclass(eq=False)
class Session:
    """Server-authoritative cart shared by every channel of one table."""

    session_id: str
    token: str | None = None
    lines: dict[str, CartLine] = field(default_factory=dict)
    version: int = 0
    channels: set = field(default_factory=set)
    closed: bool = False
    last_activity: float = field(default_factory=time.monotonic)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def touch(self, now: float | None = None) -> None:
        self.last_activity = time.monotonic() if now is None else now

    def snapshot(self) -> CartSnapshot:
        return CartSnapshot(
            session_id=self.session_id,
            version=self.version,
            lines=tuple(self.lines.values()),
        )

    def commit(self, lines: dict[str, CartLine]) -> CartSnapshot:
        """Install the new line set, advance the version and snapshot."""
        self.lines = lines
        self.version += 1
        self.touch()
        return self.snapshot()
