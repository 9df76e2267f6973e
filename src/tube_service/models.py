"""Database models for lists and tubes."""
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TubeList(Base):
    __tablename__ = "lists"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    tubes: Mapped[list["Tube"]] = relationship(
        back_populates="tube_list",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Tube(Base):
    __tablename__ = "tubes"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_tubes_quantity_positive"),
        CheckConstraint(
            "stock_mini IS NULL OR stock_mini >= 0", name="ck_tubes_stock_mini_positive"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    list_id: Mapped[int] = mapped_column(
        ForeignKey("lists.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    esp: Mapped[str | None] = mapped_column(String(255))
    usage: Mapped[str | None] = mapped_column(Text)
    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    stock_mini: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    tube_list: Mapped[TubeList] = relationship(back_populates="tubes")


__all__ = ["TubeList", "Tube"]
