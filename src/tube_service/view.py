"""Headless view controller for the list/tube page.

The controller owns everything the page shows: which lists are expanded,
which add-forms are open, which list title is being renamed, and which tube
row (at most one) is in edit mode. Every mutation goes through the
repository and is followed by a full :meth:`TubeManagerView.load`.
"""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Protocol

from .changes import Subscription
from .config import Settings, get_settings
from .orders import NOTHING_TO_ORDER, ListSnapshot, compose_order_mail
from .repository import RepositoryError, TubeRepository
from .schemas import ChangeEvent, ListOut, OrderMail, TubeOut

logger = logging.getLogger(__name__)

NEW_LIST_PROMPT = "Nom de la nouvelle liste:"
DELETE_LIST_CONFIRM = "Voulez-vous vraiment supprimer cette liste et tous ses tubes ?"
DELETE_TUBE_CONFIRM = "Voulez-vous vraiment supprimer ce tube ?"
LOAD_FAILED = "Impossible de charger les listes."


def parse_count(value: Any) -> int | None:
    """Convert form input to a non-negative integer or ``None``."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip()
        # Plain digits only: int() would also take "+3" and "1_000".
        if not (text.isascii() and text.isdigit()):
            return None
        parsed = int(text)
    else:
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            return None
    if parsed < 0:
        return None
    return parsed


def tube_counter(total: int) -> str:
    return f"{total} tube{'s' if total != 1 else ''}"


class RowMode(str, Enum):
    VIEW = "view"
    EDIT = "edit"


@dataclass
class EditDraft:
    """Raw field values of the row being edited, as typed."""

    name: str = ""
    esp: str = ""
    usage: str = ""
    quantity: str = ""
    stock_mini: str = ""

    @classmethod
    def from_tube(cls, tube: TubeOut) -> "EditDraft":
        return cls(
            name=tube.name,
            esp=tube.esp or "",
            usage=tube.usage or "",
            quantity=str(tube.quantity),
            stock_mini="" if tube.stock_mini is None else str(tube.stock_mini),
        )

    def validated(self) -> dict[str, Any]:
        """Return update arguments, or raise :class:`ValueError`."""

        name = self.name.strip()
        if not name:
            raise ValueError("name is required")
        quantity = parse_count(self.quantity)
        if quantity is None:
            raise ValueError(f"invalid quantity {self.quantity!r}")
        stock_mini: int | None = None
        if self.stock_mini.strip():
            stock_mini = parse_count(self.stock_mini)
            if stock_mini is None:
                raise ValueError(f"invalid minimum stock {self.stock_mini!r}")
        return {
            "name": name,
            "esp": self.esp.strip() or None,
            "usage": self.usage.strip() or None,
            "quantity": quantity,
            "stock_mini": stock_mini,
        }

    def to_dict(self) -> dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class TubeForm:
    """The per-list "add a tube" form."""

    name: str = ""
    esp: str = ""
    usage: str = ""
    quantity: str = "1"
    stock_mini: str = ""

    def reset(self) -> None:
        self.name = ""
        self.esp = ""
        self.usage = ""
        self.quantity = "1"
        self.stock_mini = ""

    def to_dict(self) -> dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class TubeRowView:
    tube: TubeOut
    mode: RowMode = RowMode.VIEW
    draft: EditDraft | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tube": self.tube.model_dump(mode="json"),
            "mode": self.mode.value,
            "draft": None if self.draft is None else self.draft.to_dict(),
        }


@dataclass
class ListView:
    list: ListOut
    rows: list[TubeRowView] = field(default_factory=list)
    expanded: bool = False
    form_open: bool = False
    counter: str = tube_counter(0)
    has_order_button: bool = False
    renaming: bool = False
    rename_text: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "list": self.list.model_dump(mode="json"),
            "rows": [row.to_dict() for row in self.rows],
            "expanded": self.expanded,
            "form_open": self.form_open,
            "counter": self.counter,
            "has_order_button": self.has_order_button,
            "renaming": self.renaming,
            "rename_text": self.rename_text,
        }


@dataclass
class ViewState:
    editing_tube_id: int | None = None
    draft: EditDraft | None = None
    expanded: set[int] = field(default_factory=set)
    open_forms: set[int] = field(default_factory=set)
    renaming_list_id: int | None = None
    rename_text: str = ""
    notice: str | None = None


class Dialogs(Protocol):
    def confirm(self, message: str) -> bool: ...

    def prompt(self, message: str, default: str = "") -> str | None: ...

    def alert(self, message: str) -> None: ...

    def open_url(self, url: str) -> None: ...


@dataclass
class ScriptedDialogs:
    """Dialogs answered from preset values.

    Used when the browser already asked the user and sent the answer along
    with the request, and in tests.
    """

    confirm_answer: bool = False
    prompt_answer: str | None = None
    asked: list[str] = field(default_factory=list)
    alerts: list[str] = field(default_factory=list)
    opened_urls: list[str] = field(default_factory=list)

    def confirm(self, message: str) -> bool:
        self.asked.append(message)
        return self.confirm_answer

    def prompt(self, message: str, default: str = "") -> str | None:
        self.asked.append(message)
        return self.prompt_answer

    def alert(self, message: str) -> None:
        self.alerts.append(message)

    def open_url(self, url: str) -> None:
        self.opened_urls.append(url)


PostRenderHook = Callable[["TubeManagerView"], None]


def attach_order_buttons(view: "TubeManagerView") -> int:
    """Give every rendered list an order button; lists that have one are skipped."""

    attached = 0
    for list_view in view.lists:
        if list_view.has_order_button:
            continue
        list_view.has_order_button = True
        attached += 1
    return attached


class TubeManagerView:
    def __init__(
        self,
        repository: TubeRepository,
        dialogs: Dialogs | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.repository = repository
        self.dialogs: Dialogs = dialogs or ScriptedDialogs()
        self.settings = settings or get_settings()
        self.state = ViewState()
        self.lists: list[ListView] = []
        self.snapshots: dict[int, ListSnapshot] = {}
        self.forms: dict[int, TubeForm] = {}
        self.post_render_hooks: list[PostRenderHook] = [attach_order_buttons]
        self._subscriptions: list[Subscription] = []
        self._pending: set[asyncio.Task] = set()
        self._edit_lock = asyncio.Lock()

    # -- lifecycle -----------------------------------------------------

    async def start(self) -> None:
        for table in ("lists", "tubes"):
            self._subscriptions.append(self.repository.subscribe(table, self._on_change))
        await self.load()

    async def stop(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def _on_change(self, change: ChangeEvent) -> None:
        try:
            task = asyncio.get_running_loop().create_task(self.load())
        except RuntimeError:
            logger.warning("Ignoring %s on %s outside of an event loop", change.event, change.table)
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def load(self) -> bool:
        try:
            lists, tubes = await asyncio.gather(
                self.repository.get_lists(), self.repository.get_tubes()
            )
        except RepositoryError:
            logger.exception("Could not load lists and tubes")
            self.state.notice = LOAD_FAILED
            return False
        logger.debug("Loaded %d list(s) and %d tube(s)", len(lists), len(tubes))
        self.render(lists, tubes)
        return True

    # -- rendering -----------------------------------------------------

    def render(self, lists: list[ListOut], tubes: list[TubeOut]) -> None:
        present = {tube_list.id for tube_list in lists}
        self.state.expanded &= present
        self.state.open_forms &= present
        if self.state.renaming_list_id not in present:
            self.state.renaming_list_id = None
        if self.state.editing_tube_id is not None and not any(
            tube.id == self.state.editing_tube_id for tube in tubes
        ):
            self.state.editing_tube_id = None
            self.state.draft = None

        by_list: dict[int, list[TubeOut]] = defaultdict(list)
        for tube in tubes:
            by_list[tube.list_id].append(tube)

        self.snapshots = {}
        views: list[ListView] = []
        for tube_list in lists:
            list_tubes = by_list.get(tube_list.id, [])
            snapshot = ListSnapshot(tube_list, list_tubes)
            self.snapshots[tube_list.id] = snapshot
            views.append(
                ListView(
                    list=tube_list,
                    rows=[TubeRowView(tube) for tube in list_tubes],
                    expanded=tube_list.id in self.state.expanded,
                    form_open=tube_list.id in self.state.open_forms,
                    counter=tube_counter(snapshot.total_quantity),
                )
            )
        self.lists = views
        self._apply_modes()
        for hook in self.post_render_hooks:
            hook(self)

    def _apply_modes(self) -> None:
        for list_view in self.lists:
            list_view.renaming = list_view.list.id == self.state.renaming_list_id
            list_view.rename_text = self.state.rename_text if list_view.renaming else ""
            for row in list_view.rows:
                if row.tube.id == self.state.editing_tube_id:
                    row.mode = RowMode.EDIT
                    row.draft = self.state.draft
                else:
                    row.mode = RowMode.VIEW
                    row.draft = None

    def find_list(self, list_id: int) -> ListView | None:
        for list_view in self.lists:
            if list_view.list.id == list_id:
                return list_view
        return None

    def find_tube(self, tube_id: int) -> TubeOut | None:
        for list_view in self.lists:
            for row in list_view.rows:
                if row.tube.id == tube_id:
                    return row.tube
        return None

    def form_for(self, list_id: int) -> TubeForm:
        return self.forms.setdefault(list_id, TubeForm())

    def to_dict(self) -> dict[str, Any]:
        return {
            "editing_tube_id": self.state.editing_tube_id,
            "notice": self.state.notice,
            "lists": [list_view.to_dict() for list_view in self.lists],
        }

    # -- lists ---------------------------------------------------------

    def toggle_list(self, list_id: int) -> bool:
        list_view = self.find_list(list_id)
        if list_view is None:
            return False
        if list_id in self.state.expanded:
            self.state.expanded.discard(list_id)
        else:
            self.state.expanded.add(list_id)
        list_view.expanded = list_id in self.state.expanded
        return list_view.expanded

    def toggle_add_form(self, list_id: int) -> bool:
        list_view = self.find_list(list_id)
        if list_view is None:
            return False
        if list_id in self.state.open_forms:
            self.state.open_forms.discard(list_id)
        else:
            self.state.open_forms.add(list_id)
        list_view.form_open = list_id in self.state.open_forms
        return list_view.form_open

    async def create_list(self, dialogs: Dialogs | None = None) -> ListOut | None:
        dialogs = dialogs or self.dialogs
        name = dialogs.prompt(NEW_LIST_PROMPT)
        if not name or not name.strip():
            return None
        try:
            created = await self.repository.create_list(name.strip())
        except RepositoryError:
            logger.exception("Could not create list %r", name)
            self.state.notice = "Impossible de créer la liste."
            return None
        await self.load()
        return created

    def begin_rename(self, list_id: int) -> bool:
        list_view = self.find_list(list_id)
        if list_view is None:
            return False
        self.state.renaming_list_id = list_id
        self.state.rename_text = list_view.list.name
        self._apply_modes()
        return True

    def update_rename(self, text: str) -> None:
        if self.state.renaming_list_id is not None:
            self.state.rename_text = text
            self._apply_modes()

    async def title_keypress(self, key: str) -> bool:
        # Enter leaves the editor instead of inserting a newline.
        if key == "Enter":
            return await self.commit_rename()
        return False

    async def commit_rename(self) -> bool:
        list_id = self.state.renaming_list_id
        if list_id is None:
            return False
        new_name = self.state.rename_text.strip()
        self.state.renaming_list_id = None
        self.state.rename_text = ""
        self._apply_modes()
        list_view = self.find_list(list_id)
        if not new_name or list_view is None or new_name == list_view.list.name:
            return False
        try:
            await self.repository.update_list(list_id, new_name)
        except RepositoryError:
            logger.exception("Could not rename list %s", list_id)
            self.state.notice = "Impossible de renommer la liste."
            return False
        await self.load()
        return True

    async def delete_list(self, list_id: int, dialogs: Dialogs | None = None) -> bool:
        dialogs = dialogs or self.dialogs
        if not dialogs.confirm(DELETE_LIST_CONFIRM):
            return False
        try:
            await self.repository.delete_list(list_id)
        except RepositoryError:
            logger.exception("Could not delete list %s", list_id)
            self.state.notice = "Impossible de supprimer la liste."
            return False
        await self.load()
        return True

    # -- tubes ---------------------------------------------------------

    async def submit_add_tube(self, list_id: int, form: TubeForm | None = None) -> bool:
        form = form or self.form_for(list_id)
        try:
            await self.repository.add_tube(
                list_id, form.name, form.esp, form.usage, form.quantity, form.stock_mini
            )
        except RepositoryError:
            logger.exception("Could not add tube to list %s", list_id)
            self.state.notice = "Impossible d'ajouter le tube."
            return False
        form.reset()
        self.state.open_forms.discard(list_id)
        await self.load()
        return True

    async def delete_tube(self, tube_id: int, dialogs: Dialogs | None = None) -> bool:
        dialogs = dialogs or self.dialogs
        if not dialogs.confirm(DELETE_TUBE_CONFIRM):
            return False
        try:
            await self.repository.delete_tube(tube_id)
        except RepositoryError:
            logger.exception("Could not delete tube %s", tube_id)
            self.state.notice = "Impossible de supprimer le tube."
            return False
        await self.load()
        return True

    async def begin_edit(self, tube_id: int) -> bool:
        """Switch a row to edit mode, saving the row being edited first."""

        async with self._edit_lock:
            if self.state.editing_tube_id == tube_id:
                return True
            if self.find_tube(tube_id) is None:
                return False
            if self.state.editing_tube_id is not None:
                await self._save_editing_tube()
            # The save reloaded the page; the tube may be gone by now.
            tube = self.find_tube(tube_id)
            if tube is None:
                return False
            self.state.editing_tube_id = tube_id
            self.state.draft = EditDraft.from_tube(tube)
            self._apply_modes()
            return True

    def update_draft(self, tube_id: int, **values: str) -> bool:
        if tube_id != self.state.editing_tube_id or self.state.draft is None:
            return False
        self.state.draft = replace(self.state.draft, **values)
        self._apply_modes()
        return True

    async def blur_field(self, tube_id: int) -> bool:
        async with self._edit_lock:
            if tube_id != self.state.editing_tube_id:
                return False
            return await self._save_editing_tube()

    async def save_current_edit(self) -> bool:
        async with self._edit_lock:
            return await self._save_editing_tube()

    async def _save_editing_tube(self) -> bool:
        # Callers hold _edit_lock, so a row is never saved twice concurrently.
        tube_id = self.state.editing_tube_id
        draft = self.state.draft
        if tube_id is None or draft is None:
            return False
        try:
            values = draft.validated()
        except ValueError as exc:
            logger.debug("Not saving tube %s: %s", tube_id, exc)
            return False
        try:
            await self.repository.update_tube(tube_id, **values)
        except RepositoryError:
            logger.exception("Could not save tube %s", tube_id)
            self.state.notice = "Impossible d'enregistrer le tube."
            return False
        self.state.editing_tube_id = None
        self.state.draft = None
        await self.load()
        return True

    async def on_unload(self) -> bool:
        if self.state.editing_tube_id is None:
            return False
        logger.info("Page closing while tube %s is being edited", self.state.editing_tube_id)
        return await self.save_current_edit()

    # -- order mail ----------------------------------------------------

    def send_order_mail(
        self, list_id: int, dialogs: Dialogs | None = None
    ) -> OrderMail | None:
        dialogs = dialogs or self.dialogs
        list_view = self.find_list(list_id)
        if list_view is None or not list_view.expanded:
            return None
        snapshot = self.snapshots.get(list_id)
        if snapshot is None:
            logger.warning("No snapshot for list %s", list_id)
            return None
        mail = compose_order_mail(snapshot, self.settings)
        if mail is None:
            dialogs.alert(NOTHING_TO_ORDER)
            return None
        dialogs.open_url(mail.url)
        return mail


__all__ = [
    "Dialogs",
    "EditDraft",
    "ListView",
    "RowMode",
    "ScriptedDialogs",
    "TubeForm",
    "TubeManagerView",
    "TubeRowView",
    "ViewState",
    "attach_order_buttons",
    "parse_count",
    "tube_counter",
]
