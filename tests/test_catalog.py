"""Tests for the menu catalog."""
import json
from decimal import Decimal

import pytest

from tablecart.core.exceptions import CatalogException
from tablecart.domain.catalog import InMemoryCatalog

MENU = {
    "items": [
        {
            "id": "burger",
            "name": "Classic Burger",
            "base_price": "8.50",
            "options": [{"id": "cheese", "name": "Extra cheese", "price_delta": "1.00"}],
        },
        {"id": "fries", "name": "Fries", "base_price": 3.25, "available": False},
    ]
}


def test_from_file(tmp_path):
    path = tmp_path / "menu.json"
    path.write_text(json.dumps(MENU), encoding="utf-8")

    catalog = InMemoryCatalog.from_file(path)

    assert len(catalog) == 2
    burger = catalog.get_item("burger")
    assert burger.base_price == Decimal("8.50")
    assert burger.get_option("cheese").price_delta == Decimal("1.00")
    assert burger.get_option("bacon") is None
    assert catalog.get_item("fries").available is False
    assert catalog.get_item("pizza") is None


def test_missing_file(tmp_path):
    with pytest.raises(CatalogException, match="not found"):
        InMemoryCatalog.from_file(tmp_path / "nope.json")


def test_bad_json(tmp_path):
    path = tmp_path / "menu.json"
    path.write_text("{items: [", encoding="utf-8")
    with pytest.raises(CatalogException, match="not valid JSON"):
        InMemoryCatalog.from_file(path)


def test_negative_price_rejected():
    with pytest.raises(CatalogException):
        InMemoryCatalog.from_dict({"items": [{"id": "x", "name": "X", "base_price": -1}]})


def test_set_available_and_remove():
    catalog = InMemoryCatalog.from_dict(MENU)

    assert catalog.set_available("fries", True)
    assert catalog.get_item("fries").available is True
    assert not catalog.set_available("pizza", True)

    catalog.remove_item("fries")
    assert catalog.get_item("fries") is None
