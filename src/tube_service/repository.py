"""Narrow data-access interface used by the view controller."""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

from pydantic import ValidationError
from sqlalchemy.exc import NoResultFound, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import crud, schemas
from .changes import ChangeCallback, ChangeFeed, Subscription

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RepositoryError(RuntimeError):
    """Raised when the backend rejects or fails a request."""


class TubeRepository(Protocol):
    async def get_lists(self) -> list[schemas.ListOut]: ...

    async def get_tubes(self) -> list[schemas.TubeOut]: ...

    async def create_list(self, name: str) -> schemas.ListOut: ...

    async def update_list(self, list_id: int, name: str) -> schemas.ListOut: ...

    async def delete_list(self, list_id: int) -> None: ...

    async def add_tube(
        self,
        list_id: int,
        name: str,
        esp: str | None,
        usage: str | None,
        quantity: Any,
        stock_mini: Any,
    ) -> schemas.TubeOut: ...

    async def update_tube(
        self,
        tube_id: int,
        name: str,
        esp: str | None,
        usage: str | None,
        quantity: Any,
        stock_mini: Any,
    ) -> schemas.TubeOut: ...

    async def delete_tube(self, tube_id: int) -> None: ...

    def subscribe(self, table: str, callback: ChangeCallback) -> Subscription: ...


class SqlTubeRepository:
    """:class:`TubeRepository` backed by the SQLAlchemy models.

    Each call opens its own session and commits once. Changes are published
    to ``feed`` only after the commit succeeded.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.feed = feed or ChangeFeed()

    async def _run(self, action: str, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        try:
            async with self._session_factory() as session:
                result = await work(session)
                await session.commit()
                return result
        except NoResultFound as exc:
            raise RepositoryError(str(exc)) from exc
        except SQLAlchemyError as exc:
            logger.error("Backend failure while trying to %s: %s", action, exc)
            raise RepositoryError(f"Could not {action}") from exc

    @staticmethod
    def _tube_payload(model: type[schemas.TubeFields], **fields: Any) -> Any:
        try:
            return model(**fields)
        except ValidationError as exc:
            raise RepositoryError(f"Invalid tube: {exc.error_count()} error(s)") from exc

    async def get_lists(self) -> list[schemas.ListOut]:
        async def work(session: AsyncSession) -> list[schemas.ListOut]:
            rows = await crud.list_lists(session)
            return [schemas.ListOut.model_validate(row) for row in rows]

        return await self._run("read lists", work)

    async def get_tubes(self) -> list[schemas.TubeOut]:
        async def work(session: AsyncSession) -> list[schemas.TubeOut]:
            rows = await crud.list_tubes(session)
            return [schemas.TubeOut.model_validate(row) for row in rows]

        return await self._run("read tubes", work)

    async def create_list(self, name: str) -> schemas.ListOut:
        try:
            payload = schemas.ListCreate(name=name)
        except ValidationError as exc:
            raise RepositoryError("List name is required") from exc

        async def work(session: AsyncSession) -> schemas.ListOut:
            return schemas.ListOut.model_validate(await crud.create_list(session, payload))

        created = await self._run("create list", work)
        self.feed.publish("lists", "INSERT", created.id)
        return created

    async def update_list(self, list_id: int, name: str) -> schemas.ListOut:
        try:
            payload = schemas.ListUpdate(name=name)
        except ValidationError as exc:
            raise RepositoryError("List name is required") from exc

        async def work(session: AsyncSession) -> schemas.ListOut:
            tube_list = await crud.get_list(session, list_id)
            tube_list = await crud.update_list(session, tube_list, payload)
            return schemas.ListOut.model_validate(tube_list)

        updated = await self._run("update list", work)
        self.feed.publish("lists", "UPDATE", list_id)
        return updated

    async def delete_list(self, list_id: int) -> None:
        async def work(session: AsyncSession) -> None:
            tube_list = await crud.get_list(session, list_id)
            await crud.delete_list(session, tube_list)

        await self._run("delete list", work)
        self.feed.publish("lists", "DELETE", list_id)

    async def add_tube(
        self,
        list_id: int,
        name: str,
        esp: str | None,
        usage: str | None,
        quantity: Any,
        stock_mini: Any,
    ) -> schemas.TubeOut:
        payload = self._tube_payload(
            schemas.TubeCreate,
            list_id=list_id,
            name=name,
            esp=esp,
            usage=usage,
            quantity=quantity,
            stock_mini=stock_mini,
        )

        async def work(session: AsyncSession) -> schemas.TubeOut:
            return schemas.TubeOut.model_validate(await crud.create_tube(session, payload))

        created = await self._run("add tube", work)
        self.feed.publish("tubes", "INSERT", created.id)
        return created

    async def update_tube(
        self,
        tube_id: int,
        name: str,
        esp: str | None,
        usage: str | None,
        quantity: Any,
        stock_mini: Any,
    ) -> schemas.TubeOut:
        payload = self._tube_payload(
            schemas.TubeUpdate,
            name=name,
            esp=esp,
            usage=usage,
            quantity=quantity,
            stock_mini=stock_mini,
        )
        logger.debug("Updating tube %s with %s", tube_id, payload.model_dump())

        async def work(session: AsyncSession) -> schemas.TubeOut:
            tube = await crud.get_tube(session, tube_id)
            tube = await crud.update_tube(session, tube, payload)
            return schemas.TubeOut.model_validate(tube)

        updated = await self._run("update tube", work)
        self.feed.publish("tubes", "UPDATE", tube_id)
        return updated

    async def delete_tube(self, tube_id: int) -> None:
        async def work(session: AsyncSession) -> None:
            tube = await crud.get_tube(session, tube_id)
            await crud.delete_tube(session, tube)

        await self._run("delete tube", work)
        self.feed.publish("tubes", "DELETE", tube_id)

    def subscribe(self, table: str, callback: ChangeCallback) -> Subscription:
        return self.feed.subscribe(table, callback)


__all__ = ["RepositoryError", "SqlTubeRepository", "TubeRepository"]
