"""Incremental text filter and column sort for the entity lists."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from unifimon.models import CLIENT, DEVICE

T = TypeVar("T")

SEARCH_FIELDS: tuple[str, ...] = ("name", "ip", "mac")

# Sortable columns per list kind
SORT_COLUMNS: dict[str, tuple[str, ...]] = {
    DEVICE: ("name", "model", "mac", "ip", "status"),
    CLIENT: ("name", "ip", "mac", "medium"),
}

SORT_NONE = "none"
SORT_ASC = "asc"
SORT_DESC = "desc"
_NEXT_ORDER = {SORT_NONE: SORT_ASC, SORT_ASC: SORT_DESC, SORT_DESC: SORT_NONE}


class SearchFilter:
    """Case-insensitive substring match on name, IP and MAC.

    ``editing`` is True while keystrokes go to the query box.
    """

    def __init__(self) -> None:
        self.query = ""
        self.editing = False
        self._needle = ""

    def set_query(self, text: str) -> None:
        self.query = text
        self._needle = text.lower()

    def append(self, text: str) -> None:
        self.set_query(self.query + text)

    def backspace(self) -> None:
        self.set_query(self.query[:-1])

    def clear(self) -> None:
        self.set_query("")
        self.editing = False

    @property
    def active(self) -> bool:
        return bool(self._needle)

    def matches(self, entity: Any) -> bool:
        if not self._needle:
            return True
        for name in SEARCH_FIELDS:
            value = getattr(entity, name, None)
            if value and self._needle in str(value).lower():
                return True
        return False

    def apply(self, entities: Sequence[T]) -> tuple[T, ...]:
        """Matching entities in their original order. Empty query keeps all."""
        if not self._needle:
            return tuple(entities)
        return tuple(e for e in entities if self.matches(e))


@dataclass
class ListSort:
    """Sort state of one list kind. Cycles none -> asc -> desc -> none."""

    kind: str
    column: int = 0
    order: str = SORT_NONE

    @property
    def column_name(self) -> str:
        return SORT_COLUMNS[self.kind][self.column]

    def cycle_order(self) -> str:
        self.order = _NEXT_ORDER[self.order]
        return self.order

    def next_column(self) -> str:
        self.column = (self.column + 1) % len(SORT_COLUMNS[self.kind])
        return self.column_name

    def apply(self, entities: Sequence[T]) -> tuple[T, ...]:
        if self.order == SORT_NONE:
            return tuple(entities)
        name = self.column_name
        return tuple(
            sorted(
                entities,
                key=lambda e: str(getattr(e, name, "") or "").lower(),
                reverse=self.order == SORT_DESC,
            )
        )
