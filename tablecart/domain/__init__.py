"""Domain package."""

from .cart import CartLine, CartSnapshot, SelectedOption, Session, make_line_id
from .catalog import Catalog, CustomizationOption, InMemoryCatalog, MenuItem
from .requests import JoinRequest, MutationRequest, OperationKind

__all__ = [
    # Cart state
    "CartLine",
    "CartSnapshot",
    "SelectedOption",
    "Session",
    "make_line_id",
    # Catalog
    "Catalog",
    "CustomizationOption",
    "InMemoryCatalog",
    "MenuItem",
    # Requests
    "JoinRequest",
    "MutationRequest",
    "OperationKind",
]
