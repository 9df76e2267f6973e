"""FastAPI router configuration."""
from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Sequence

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, NoResultFound
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import crud, schemas
from .changes import ChangeFeed
from .config import Settings, get_settings
from .database import SessionFactory, get_session
from .orders import ListSnapshot, compose_order_mail
from .repository import SqlTubeRepository
from .view import ScriptedDialogs, TubeForm, TubeManagerView

TEMPLATES = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

router = APIRouter()
ui_router = APIRouter(prefix="/ui", tags=["ui"])


def provide_settings() -> Settings:
    """Dependency returning the active :class:`Settings` instance."""

    return get_settings()


def get_change_feed(request: Request) -> ChangeFeed:
    return request.app.state.change_feed


def get_view(request: Request) -> TubeManagerView:
    return request.app.state.view


def _not_found(exc: NoResultFound) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def _conflict(exc: IntegrityError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc.orig))


@router.get("/health", response_model=schemas.HealthStatus, tags=["system"])
async def health_check(settings: Settings = Depends(provide_settings)) -> schemas.HealthStatus:
    return schemas.HealthStatus(environment=settings.environment)


@router.post("/lists", response_model=schemas.ListOut, status_code=status.HTTP_201_CREATED)
async def create_list(
    payload: schemas.ListCreate,
    session: AsyncSession = Depends(get_session),
    feed: ChangeFeed = Depends(get_change_feed),
) -> schemas.ListOut:
    tube_list = await crud.create_list(session, payload)
    await session.commit()
    feed.publish("lists", "INSERT", tube_list.id)
    return schemas.ListOut.model_validate(tube_list)


@router.get("/lists", response_model=list[schemas.ListOut])
async def list_lists(session: AsyncSession = Depends(get_session)) -> Sequence[schemas.ListOut]:
    lists = await crud.list_lists(session)
    return [schemas.ListOut.model_validate(tube_list) for tube_list in lists]


@router.get("/lists/{list_id}", response_model=schemas.ListOut)
async def get_list(list_id: int, session: AsyncSession = Depends(get_session)) -> schemas.ListOut:
    try:
        tube_list = await crud.get_list(session, list_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    return schemas.ListOut.model_validate(tube_list)


@router.put("/lists/{list_id}", response_model=schemas.ListOut)
async def update_list(
    list_id: int,
    payload: schemas.ListUpdate,
    session: AsyncSession = Depends(get_session),
    feed: ChangeFeed = Depends(get_change_feed),
) -> schemas.ListOut:
    try:
        tube_list = await crud.get_list(session, list_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    tube_list = await crud.update_list(session, tube_list, payload)
    await session.commit()
    feed.publish("lists", "UPDATE", list_id)
    return schemas.ListOut.model_validate(tube_list)


@router.delete("/lists/{list_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_list(
    list_id: int,
    session: AsyncSession = Depends(get_session),
    feed: ChangeFeed = Depends(get_change_feed),
) -> None:
    try:
        tube_list = await crud.get_list(session, list_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    await crud.delete_list(session, tube_list)
    await session.commit()
    feed.publish("lists", "DELETE", list_id)


@router.get("/lists/{list_id}/order", response_model=schemas.OrderMail)
async def get_order_mail(
    list_id: int,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> Any:
    try:
        tube_list = await crud.get_list(session, list_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    tubes = await crud.list_tubes(session, list_id=list_id)
    snapshot = ListSnapshot(
        schemas.ListOut.model_validate(tube_list),
        [schemas.TubeOut.model_validate(tube) for tube in tubes],
    )
    mail = compose_order_mail(snapshot, settings)
    if mail is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return mail


@router.post("/tubes", response_model=schemas.TubeOut, status_code=status.HTTP_201_CREATED)
async def create_tube(
    payload: schemas.TubeCreate,
    session: AsyncSession = Depends(get_session),
    feed: ChangeFeed = Depends(get_change_feed),
) -> schemas.TubeOut:
    try:
        tube = await crud.create_tube(session, payload)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    except IntegrityError as exc:
        raise _conflict(exc) from exc
    await session.commit()
    feed.publish("tubes", "INSERT", tube.id)
    return schemas.TubeOut.model_validate(tube)


@router.get("/tubes", response_model=list[schemas.TubeOut])
async def list_tubes(
    list_id: int | None = None, session: AsyncSession = Depends(get_session)
) -> Sequence[schemas.TubeOut]:
    tubes = await crud.list_tubes(session, list_id=list_id)
    return [schemas.TubeOut.model_validate(tube) for tube in tubes]


@router.get("/tubes/{tube_id}", response_model=schemas.TubeOut)
async def get_tube(tube_id: int, session: AsyncSession = Depends(get_session)) -> schemas.TubeOut:
    try:
        tube = await crud.get_tube(session, tube_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    return schemas.TubeOut.model_validate(tube)


@router.put("/tubes/{tube_id}", response_model=schemas.TubeOut)
async def update_tube(
    tube_id: int,
    payload: schemas.TubeUpdate,
    session: AsyncSession = Depends(get_session),
    feed: ChangeFeed = Depends(get_change_feed),
) -> schemas.TubeOut:
    try:
        tube = await crud.get_tube(session, tube_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    try:
        tube = await crud.update_tube(session, tube, payload)
    except IntegrityError as exc:
        raise _conflict(exc) from exc
    await session.commit()
    feed.publish("tubes", "UPDATE", tube_id)
    return schemas.TubeOut.model_validate(tube)


@router.delete("/tubes/{tube_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tube(
    tube_id: int,
    session: AsyncSession = Depends(get_session),
    feed: ChangeFeed = Depends(get_change_feed),
) -> None:
    try:
        tube = await crud.get_tube(session, tube_id)
    except NoResultFound as exc:
        raise _not_found(exc) from exc
    await crud.delete_tube(session, tube)
    await session.commit()
    feed.publish("tubes", "DELETE", tube_id)


class ConfirmPayload(BaseModel):
    confirmed: bool = False


class PromptPayload(BaseModel):
    answer: str | None = None


class RenamePayload(BaseModel):
    name: str
    key: str | None = None


class DraftPayload(BaseModel):
    name: str | None = None
    esp: str | None = None
    usage: str | None = None
    quantity: str | None = None
    stock_mini: str | None = None

    def values(self) -> dict[str, str]:
        return self.model_dump(exclude_none=True)


class TubeFormPayload(BaseModel):
    name: str = ""
    esp: str = ""
    usage: str = ""
    quantity: str = "1"
    stock_mini: str = ""


async def _ui_result(
    view: TubeManagerView,
    action: Callable[[ScriptedDialogs], Awaitable[Any]] | None = None,
    dialogs: ScriptedDialogs | None = None,
) -> dict[str, Any]:
    dialogs = dialogs or ScriptedDialogs()
    view.state.notice = None
    result = await action(dialogs) if action is not None else None
    return {
        "ok": bool(result),
        "alerts": dialogs.alerts,
        "opened_urls": dialogs.opened_urls,
        "state": view.to_dict(),
    }


async def _done(value: Any) -> Any:
    return value


@router.get("/", response_class=HTMLResponse, include_in_schema=False)
async def index(
    request: Request,
    view: TubeManagerView = Depends(get_view),
    settings: Settings = Depends(provide_settings),
) -> HTMLResponse:
    await view.load()
    return TEMPLATES.TemplateResponse(
        request,
        "index.html",
        {"view": view, "app_name": settings.app_name},
    )


@ui_router.get("/state")
async def ui_state(view: TubeManagerView = Depends(get_view)) -> dict[str, Any]:
    return await _ui_result(view)


@ui_router.post("/reload")
async def ui_reload(view: TubeManagerView = Depends(get_view)) -> dict[str, Any]:
    return await _ui_result(view, lambda dialogs: view.load())


@ui_router.post("/lists")
async def ui_create_list(
    payload: PromptPayload, view: TubeManagerView = Depends(get_view)
) -> dict[str, Any]:
    dialogs = ScriptedDialogs(prompt_answer=payload.answer)
    return await _ui_result(view, view.create_list, dialogs)


@ui_router.post("/lists/{list_id}/toggle")
async def ui_toggle_list(list_id: int, view: TubeManagerView = Depends(get_view)) -> dict[str, Any]:
    return await _ui_result(view, lambda dialogs: _done(view.toggle_list(list_id)))


@ui_router.post("/lists/{list_id}/form")
async def ui_toggle_form(list_id: int, view: TubeManagerView = Depends(get_view)) -> dict[str, Any]:
    return await _ui_result(view, lambda dialogs: _done(view.toggle_add_form(list_id)))


@ui_router.post("/lists/{list_id}/rename")
async def ui_rename_list(
    list_id: int, payload: RenamePayload, view: TubeManagerView = Depends(get_view)
) -> dict[str, Any]:
    async def action(dialogs: ScriptedDialogs) -> bool:
        if not view.begin_rename(list_id):
            return False
        view.update_rename(payload.name)
        if payload.key is not None:
            return await view.title_keypress(payload.key)
        return await view.commit_rename()

    return await _ui_result(view, action)


@ui_router.post("/lists/{list_id}/delete")
async def ui_delete_list(
    list_id: int, payload: ConfirmPayload, view: TubeManagerView = Depends(get_view)
) -> dict[str, Any]:
    dialogs = ScriptedDialogs(confirm_answer=payload.confirmed)
    return await _ui_result(view, lambda d: view.delete_list(list_id, d), dialogs)


@ui_router.post("/lists/{list_id}/tubes")
async def ui_add_tube(
    list_id: int, payload: TubeFormPayload, view: TubeManagerView = Depends(get_view)
) -> dict[str, Any]:
    form = TubeForm(**payload.model_dump())
    return await _ui_result(view, lambda dialogs: view.submit_add_tube(list_id, form))


@ui_router.post("/lists/{list_id}/order")
async def ui_order_mail(list_id: int, view: TubeManagerView = Depends(get_view)) -> dict[str, Any]:
    return await _ui_result(view, lambda d: _done(view.send_order_mail(list_id, d)))


@ui_router.post("/tubes/{tube_id}/edit")
async def ui_begin_edit(tube_id: int, view: TubeManagerView = Depends(get_view)) -> dict[str, Any]:
    return await _ui_result(view, lambda dialogs: view.begin_edit(tube_id))


@ui_router.post("/tubes/{tube_id}/draft")
async def ui_update_draft(
    tube_id: int, payload: DraftPayload, view: TubeManagerView = Depends(get_view)
) -> dict[str, Any]:
    return await _ui_result(
        view, lambda dialogs: _done(view.update_draft(tube_id, **payload.values()))
    )


@ui_router.post("/tubes/{tube_id}/blur")
async def ui_blur_field(
    tube_id: int, payload: DraftPayload, view: TubeManagerView = Depends(get_view)
) -> dict[str, Any]:
    async def action(dialogs: ScriptedDialogs) -> bool:
        view.update_draft(tube_id, **payload.values())
        return await view.blur_field(tube_id)

    return await _ui_result(view, action)


@ui_router.post("/tubes/{tube_id}/delete")
async def ui_delete_tube(
    tube_id: int, payload: ConfirmPayload, view: TubeManagerView = Depends(get_view)
) -> dict[str, Any]:
    dialogs = ScriptedDialogs(confirm_answer=payload.confirmed)
    return await _ui_result(view, lambda d: view.delete_tube(tube_id, d), dialogs)


@ui_router.post("/unload")
async def ui_unload(
    payload: DraftPayload | None = None, view: TubeManagerView = Depends(get_view)
) -> dict[str, Any]:
    async def action(dialogs: ScriptedDialogs) -> bool:
        editing = view.state.editing_tube_id
        if editing is not None and payload is not None:
            view.update_draft(editing, **payload.values())
        return await view.on_unload()

    return await _ui_result(view, action)


def create_app(
    settings: Settings | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await app.state.view.start()
        yield
        await app.state.view.stop()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.dependency_overrides[provide_settings] = lambda: settings
    app.state.session_factory = session_factory or SessionFactory
    app.state.change_feed = ChangeFeed()
    app.state.repository = SqlTubeRepository(app.state.session_factory, app.state.change_feed)
    app.state.view = TubeManagerView(app.state.repository, settings=settings)
    app.include_router(router)
    app.include_router(ui_router)
    return app


app = create_app()


__all__ = ["app", "create_app"]
