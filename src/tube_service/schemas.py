"""Pydantic schemas used by the API, the repository and the view."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        if value == "":
            return None
    return value


class ListBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class ListCreate(ListBase):
    pass


class ListUpdate(ListBase):
    pass


class ListOut(ListBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime


class TubeFields(BaseModel):
    """Fields shared by tube creation and update payloads.

    Blank optional text collapses to ``None`` and numeric strings are parsed,
    so HTML form values can be submitted unchanged.
    """

    name: str = Field(..., min_length=1, max_length=255)
    esp: str | None = Field(None, description="Spanish name used in some order emails.")
    usage: str | None = Field(None, description="What the tube is used for.")
    quantity: int = Field(0, ge=0)
    stock_mini: int | None = Field(None, ge=0, description="Minimum stock before reorder.")

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("esp", "usage", "stock_mini", mode="before")
    @classmethod
    def _normalize_optional(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("quantity", mode="before")
    @classmethod
    def _strip_quantity(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class TubeCreate(TubeFields):
    list_id: int


class TubeUpdate(TubeFields):
    pass


class TubeOut(TubeFields):
    model_config = ConfigDict(from_attributes=True)

    id: int
    list_id: int
    created_at: datetime


class OrderLine(BaseModel):
    tube_id: int
    name: str
    quantity: int
    shortfall: int


class OrderMail(BaseModel):
    subject: str
    body: str
    url: str
    lines: list[OrderLine] = Field(default_factory=list)


class ChangeEvent(BaseModel):
    table: Literal["lists", "tubes"]
    event: Literal["INSERT", "UPDATE", "DELETE"]
    record_id: int


class HealthStatus(BaseModel):
    status: Literal["ok"] = "ok"
    environment: str


__all__ = [
    "ListCreate",
    "ListUpdate",
    "ListOut",
    "TubeCreate",
    "TubeUpdate",
    "TubeOut",
    "OrderLine",
    "OrderMail",
    "ChangeEvent",
    "HealthStatus",
]
