"""
Menu catalog lookup consumed by the cart.

The menu itself is owned elsewhere; the cart only needs to resolve an item id
to its name, base price, availability and customization options.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from decimal import Decimal
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from tablecart.core.exceptions import CatalogException

logger = logging.getLogger(__name__)


class CustomizationOption(BaseModel):
    """Selectable add-on for a menu item, e.g. extra cheese."""

    id: str = Field(..., min_length=1)
    name: str
    price_delta: Decimal = Decimal("0")
    available: bool = True


class MenuItem(BaseModel):
    """Orderable menu item."""

    id: str = Field(..., min_length=1)
    name: str
    base_price: Decimal = Field(..., ge=0)
    available: bool = True
    options: list[CustomizationOption] = Field(default_factory=list)

    def get_option(self, option_id: str) -> CustomizationOption | None:
        for option in self.options:
            if option.id == option_id:
                return option
        return None


class CatalogFile(BaseModel):
    items: list[MenuItem] = Field(default_factory=list)


class Catalog(ABC):
    """Abstract menu lookup."""

    @abstractmethod
    def get_item(self, item_id: str) -> MenuItem | None:
        """Return the menu item or None when it does not exist."""
        pass


class InMemoryCatalog(Catalog):
    """Dictionary-backed catalog, loadable from a JSON file."""

    def __init__(self, items: Iterable[MenuItem] = ()):
        self._items: dict[str, MenuItem] = {item.id: item for item in items}

    def get_item(self, item_id: str) -> MenuItem | None:
        return self._items.get(item_id)

    def add_item(self, item: MenuItem) -> None:
        self._items[item.id] = item

    def remove_item(self, item_id: str) -> None:
        self._items.pop(item_id, None)

    def set_available(self, item_id: str, available: bool) -> bool:
        item = self._items.get(item_id)
        if item is None:
            return False
        self._items[item_id] = item.model_copy(update={"available": available})
        return True

    def __len__(self) -> int:
        return len(self._items)

    @classmethod
    def from_dict(cls, data: dict) -> InMemoryCatalog:
        try:
            parsed = CatalogFile.model_validate(data)
        except ValidationError as e:
            raise CatalogException(f"Invalid catalog: {e.error_count()} validation errors") from e
        return cls(parsed.items)

    @classmethod
    def from_file(cls, path: str | Path) -> InMemoryCatalog:
        """Load ``{"items": [...]}`` from a JSON file."""
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise CatalogException(f"Catalog file not found: {path}") from e
        except json.JSONDecodeError as e:
            raise CatalogException(f"Catalog file {path} is not valid JSON: {e}") from e

        catalog = cls.from_dict(data)
        logger.info(f"Loaded {len(catalog)} menu items from {path}")
        return catalog
