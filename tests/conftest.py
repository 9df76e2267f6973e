from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tube_service.api import create_app
from tube_service.changes import ChangeFeed, Subscription
from tube_service.config import Settings
from tube_service.database import Base, create_engine, create_session_factory
from tube_service.repository import RepositoryError, SqlTubeRepository
from tube_service.schemas import ListOut, TubeOut


@pytest.fixture()
def test_settings(tmp_path) -> Settings:
    db_path = tmp_path / "test.db"
    return Settings(
        database_url=f"sqlite+aiosqlite:///{db_path}",
        environment="test",
        app_name="Test Tube Inventory",
        order_delivery_header="Livraison à l'atelier :",
    )


@pytest.fixture()
async def session_factory(
    test_settings: Settings,
) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_engine(test_settings.database_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield create_session_factory(engine)

    await engine.dispose()


@pytest.fixture()
def repository(session_factory: async_sessionmaker[AsyncSession]) -> SqlTubeRepository:
    return SqlTubeRepository(session_factory, ChangeFeed())


@pytest.fixture()
async def app(
    test_settings: Settings, session_factory: async_sessionmaker[AsyncSession]
) -> AsyncIterator[FastAPI]:
    app = create_app(test_settings, session_factory=session_factory)

    yield app

    await app.state.view.stop()


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


class FakeRepository:
    """In-memory repository recording every call it receives."""

    def __init__(self) -> None:
        self.lists: dict[int, ListOut] = {}
        self.tubes: dict[int, TubeOut] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.fail_on: set[str] = set()
        self.feed = ChangeFeed()
        self._next_id = 1
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _id(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value

    def _now(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def _record(self, verb: str, *args: Any) -> None:
        self.calls.append((verb, args))
        if verb in self.fail_on:
            raise RepositoryError(f"{verb} failed")

    def count(self, verb: str) -> int:
        return sum(1 for name, _ in self.calls if name == verb)

    def seed_list(self, name: str) -> ListOut:
        tube_list = ListOut(id=self._id(), name=name, created_at=self._now())
        self.lists[tube_list.id] = tube_list
        return tube_list

    def seed_tube(
        self,
        list_id: int,
        name: str,
        quantity: int = 1,
        stock_mini: int | None = None,
        esp: str | None = None,
        usage: str | None = None,
    ) -> TubeOut:
        tube = TubeOut(
            id=self._id(),
            list_id=list_id,
            name=name,
            esp=esp,
            usage=usage,
            quantity=quantity,
            stock_mini=stock_mini,
            created_at=self._now(),
        )
        self.tubes[tube.id] = tube
        return tube

    async def get_lists(self) -> list[ListOut]:
        self._record("get_lists")
        return sorted(self.lists.values(), key=lambda item: (item.created_at, item.id))

    async def get_tubes(self) -> list[TubeOut]:
        self._record("get_tubes")
        return sorted(self.tubes.values(), key=lambda item: (item.name, item.id))

    async def create_list(self, name: str) -> ListOut:
        self._record("create_list", name)
        return self.seed_list(name)

    async def update_list(self, list_id: int, name: str) -> ListOut:
        self._record("update_list", list_id, name)
        updated = self.lists[list_id].model_copy(update={"name": name})
        self.lists[list_id] = updated
        return updated

    async def delete_list(self, list_id: int) -> None:
        self._record("delete_list", list_id)
        self.lists.pop(list_id, None)
        for tube_id in [t.id for t in self.tubes.values() if t.list_id == list_id]:
            del self.tubes[tube_id]

    async def add_tube(self, list_id, name, esp, usage, quantity, stock_mini) -> TubeOut:
        self._record("add_tube", list_id, name, esp, usage, quantity, stock_mini)
        return self.seed_tube(
            list_id,
            name,
            quantity=int(quantity),
            stock_mini=int(stock_mini) if stock_mini not in (None, "") else None,
            esp=esp or None,
            usage=usage or None,
        )

    async def update_tube(self, tube_id, name, esp, usage, quantity, stock_mini) -> TubeOut:
        self._record("update_tube", tube_id, name, esp, usage, quantity, stock_mini)
        # Yield like a real backend round trip so concurrent callers interleave.
        await asyncio.sleep(0)
        updated = self.tubes[tube_id].model_copy(
            update={
                "name": name,
                "esp": esp,
                "usage": usage,
                "quantity": quantity,
                "stock_mini": stock_mini,
            }
        )
        self.tubes[tube_id] = updated
        return updated

    async def delete_tube(self, tube_id: int) -> None:
        self._record("delete_tube", tube_id)
        self.tubes.pop(tube_id, None)

    def subscribe(self, table: str, callback) -> Subscription:
        return self.feed.subscribe(table, callback)


@pytest.fixture()
def fake_repository() -> FakeRepository:
    return FakeRepository()
