"""Business logic for interacting with the database."""
from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.exc import NoResultFound
from sqlalchemy.ext.asyncio import AsyncSession

from . import schemas
from .models import Tube, TubeList


async def create_list(session: AsyncSession, data: schemas.ListCreate) -> TubeList:
    tube_list = TubeList(**data.model_dump())
    session.add(tube_list)
    await session.flush()
    await session.refresh(tube_list)
    return tube_list


async def list_lists(session: AsyncSession) -> Sequence[TubeList]:
    stmt = select(TubeList).order_by(TubeList.created_at, TubeList.id)
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_list(session: AsyncSession, list_id: int) -> TubeList:
    stmt = select(TubeList).where(TubeList.id == list_id)
    result = await session.execute(stmt)
    tube_list = result.scalar_one_or_none()
    if tube_list is None:
        raise NoResultFound(f"List {list_id} not found")
    return tube_list


async def update_list(
    session: AsyncSession, tube_list: TubeList, data: schemas.ListUpdate
) -> TubeList:
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(tube_list, field, value)
    await session.flush()
    return tube_list


async def delete_list(session: AsyncSession, tube_list: TubeList) -> None:
    await session.delete(tube_list)
    await session.flush()


async def create_tube(session: AsyncSession, data: schemas.TubeCreate) -> Tube:
    await get_list(session, data.list_id)
    tube = Tube(**data.model_dump())
    session.add(tube)
    await session.flush()
    await session.refresh(tube)
    return tube


async def list_tubes(session: AsyncSession, list_id: int | None = None) -> Sequence[Tube]:
    stmt = select(Tube).order_by(Tube.name, Tube.id)
    if list_id is not None:
        stmt = stmt.where(Tube.list_id == list_id)
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_tube(session: AsyncSession, tube_id: int) -> Tube:
    stmt = select(Tube).where(Tube.id == tube_id)
    result = await session.execute(stmt)
    tube = result.scalar_one_or_none()
    if tube is None:
        raise NoResultFound(f"Tube {tube_id} not found")
    return tube


async def update_tube(session: AsyncSession, tube: Tube, data: schemas.TubeUpdate) -> Tube:
    # Full replacement: cleared optional fields must reach the row as NULL.
    for field, value in data.model_dump().items():
        setattr(tube, field, value)
    await session.flush()
    return tube


async def delete_tube(session: AsyncSession, tube: Tube) -> None:
    await session.delete(tube)
    await session.flush()


__all__ = [name for name in globals() if not name.startswith("_")]
