"""Order email composition from a per-list snapshot."""
from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import quote

from .config import Settings
from .schemas import ListOut, OrderLine, OrderMail, TubeOut

# Characters left alone by JavaScript's encodeURIComponent.
_URI_COMPONENT_SAFE = "-_.!~*'()"

NOTHING_TO_ORDER = "Aucun tube à commander dans cette liste."


@dataclass
class ListSnapshot:
    """A list together with the tubes it held at the last render."""

    list: ListOut
    tubes: list[TubeOut] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.list.name

    @property
    def total_quantity(self) -> int:
        return sum(tube.quantity for tube in self.tubes)


def uses_alternate_name(list_name: str, marker: str) -> bool:
    return bool(marker) and marker.lower() in list_name.lower()


def order_name(tube: TubeOut, alternate: bool) -> str:
    if alternate and tube.esp:
        return tube.esp
    return tube.name


def items_to_order(snapshot: ListSnapshot, marker: str) -> list[OrderLine]:
    """Return one line per tube whose quantity is strictly below its minimum stock."""

    alternate = uses_alternate_name(snapshot.name, marker)
    lines: list[OrderLine] = []
    for tube in snapshot.tubes:
        if tube.stock_mini is None or tube.quantity >= tube.stock_mini:
            continue
        lines.append(
            OrderLine(
                tube_id=tube.id,
                name=order_name(tube, alternate),
                quantity=tube.quantity,
                shortfall=tube.stock_mini - tube.quantity,
            )
        )
    return lines


def format_order_line(line: OrderLine) -> str:
    return f"({line.quantity})     {line.shortfall}  {line.name}"


def encode_uri_component(value: str) -> str:
    return quote(value, safe=_URI_COMPONENT_SAFE)


def compose_order_mail(snapshot: ListSnapshot, settings: Settings) -> OrderMail | None:
    """Build the ``mailto:`` draft for a list, or ``None`` when nothing is missing."""

    lines = items_to_order(snapshot, settings.spanish_list_marker)
    if not lines:
        return None
    subject = f"Commande {snapshot.name}"
    body = settings.order_delivery_header + "\n\n" + "\n".join(
        format_order_line(line) for line in lines
    )
    url = (
        f"mailto:{settings.order_recipient}"
        f"?subject={encode_uri_component(subject)}"
        f"&body={encode_uri_component(body)}"
    )
    return OrderMail(subject=subject, body=body, url=url, lines=lines)


__all__ = [
    "ListSnapshot",
    "NOTHING_TO_ORDER",
    "compose_order_mail",
    "encode_uri_component",
    "format_order_line",
    "items_to_order",
    "order_name",
    "uses_alternate_name",
]
