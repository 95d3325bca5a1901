"""
Pydantic models for inbound channel payloads.

Validation happens here, at the channel boundary. Range checks on quantity
are left to the cart service so they surface as ``INVALID_QUANTITY`` rather
than a generic payload error.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from tablecart.core.constants import MAX_NOTES_LENGTH
from tablecart.core.exceptions import InvalidPayloadError


class OperationKind(str, Enum):
    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"
    CLEAR = "clear"


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "payload"
    return f"{location}: {first.get('msg', 'invalid value')}"


class MutationRequest(BaseModel):
    """One cart mutation, created per inbound event and never persisted."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    kind: OperationKind
    session_id: Optional[str] = Field(
        None,
        min_length=1,
        max_length=128,
        validation_alias=AliasChoices("session_id", "sessionId"),
    )
    item_id: Optional[str] = Field(
        None, min_length=1, validation_alias=AliasChoices("item_id", "item", "menuItemId")
    )
    line_id: Optional[str] = Field(
        None, min_length=1, validation_alias=AliasChoices("line_id", "line", "cartItemId")
    )
    quantity: Optional[int] = Field(None, validation_alias=AliasChoices("quantity", "qty"))
    customizations: Optional[tuple[str, ...]] = None
    notes: Optional[str] = Field(None, max_length=MAX_NOTES_LENGTH)

    @field_validator("quantity", mode="before")
    @classmethod
    def reject_fractional_quantity(cls, v: Any) -> Any:
        if isinstance(v, bool) or (isinstance(v, float) and not v.is_integer()):
            raise ValueError("quantity must be a whole number")
        return v

    @field_validator("customizations", mode="before")
    @classmethod
    def normalize_customizations(cls, v: Any) -> Any:
        """Accept plain option ids or ``{"option_id": ...}`` objects."""
        if v is None:
            return v
        if not isinstance(v, (list, tuple)):
            raise ValueError("customizations must be a list")
        option_ids = []
        for entry in v:
            if isinstance(entry, dict):
                entry = (
                    entry.get("option_id")
                    or entry.get("customizationOptionId")
                    or entry.get("id")
                )
            if not isinstance(entry, str) or not entry:
                raise ValueError("customization entries must be option ids")
            option_ids.append(entry)
        return tuple(option_ids)

    @model_validator(mode="after")
    def check_target(self):
        if self.kind == OperationKind.ADD and not self.item_id:
            raise ValueError("item_id is required")
        if self.kind in (OperationKind.UPDATE, OperationKind.REMOVE) and not self.line_id:
            raise ValueError("line_id is required")
        if self.kind == OperationKind.UPDATE and (
            self.quantity is None and self.customizations is None and self.notes is None
        ):
            raise ValueError("update needs quantity, customizations or notes")
        return self

    @classmethod
    def parse(cls, kind: OperationKind | str, data: Any) -> MutationRequest:
        """Validate a raw event payload, raising ``InvalidPayloadError``."""
        kind = OperationKind(kind)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise InvalidPayloadError("Event data must be an object")
        try:
            return cls.model_validate({**data, "kind": kind})
        except ValidationError as e:
            raise InvalidPayloadError(f"Invalid {kind.value} request ({_describe(e)})") from e


class JoinRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    session_id: str = Field(
        ..., min_length=1, max_length=128, validation_alias=AliasChoices("session_id", "sessionId")
    )
    token: Optional[str] = Field(
        None, validation_alias=AliasChoices("token", "session_token", "sessionToken")
    )

    @classmethod
    def parse(cls, data: Any) -> JoinRequest:
        if not isinstance(data, dict):
            raise InvalidPayloadError("Event data must be an object")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise InvalidPayloadError(f"Invalid join request ({_describe(e)})") from e
