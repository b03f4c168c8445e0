"""Stack-based navigation over the dashboard views.

Views are small frozen dataclasses (a tagged variant); the navigator keeps
them on a stack together with a per-frame cursor row and detail tab, so
going back restores where the user was.

The stack never holds a view that points outside the active site scope:
choosing a site resets the stack to the site list first.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from unifimon.models import CLIENT, DEVICE, SITE

LIST_KINDS: tuple[str, ...] = (DEVICE, CLIENT)


# ── Views ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SiteList:
    pass


@dataclass(frozen=True)
class EntityList:
    kind: str  # DEVICE or CLIENT
    site_id: str


@dataclass(frozen=True)
class EntityDetail:
    kind: str
    entity_id: str
    site_id: str


@dataclass(frozen=True)
class Stats:
    site_id: str


View = Union[SiteList, EntityList, EntityDetail, Stats]


def view_site(view: View) -> str | None:
    if isinstance(view, SiteList):
        return None
    return view.site_id


@dataclass
class _Frame:
    view: View
    cursor: int = 0
    tab: int = 0


# ── Navigator ──────────────────────────────────────────────────────────────


class Navigator:
    def __init__(self, default_kind: str = DEVICE) -> None:
        self._frames: list[_Frame] = [_Frame(SiteList())]
        self.site_id: str | None = None
        self.list_kind = default_kind

    @property
    def current(self) -> View:
        return self._frames[-1].view

    @property
    def stack(self) -> tuple[View, ...]:
        return tuple(f.view for f in self._frames)

    @property
    def depth(self) -> int:
        return len(self._frames)

    # Cursor and tab belong to the top frame.

    @property
    def cursor(self) -> int:
        return self._frames[-1].cursor

    @property
    def tab(self) -> int:
        return self._frames[-1].tab

    def move_cursor(self, delta: int, length: int) -> int:
        """Move the selection, wrapping at both ends like the list tables do."""
        frame = self._frames[-1]
        frame.cursor = (frame.cursor + delta) % length if length > 0 else 0
        return frame.cursor

    def clamp_cursor(self, length: int) -> int:
        frame = self._frames[-1]
        frame.cursor = max(0, min(frame.cursor, length - 1))
        return frame.cursor

    def cycle_tab(self, delta: int, count: int) -> int:
        frame = self._frames[-1]
        frame.tab = (frame.tab + delta) % count if count > 0 else 0
        return frame.tab

    # ── Transitions ────────────────────────────────────────────────────────

    def push(self, view: View) -> None:
        """Push *view*, refusing anything outside the active scope."""
        site = view_site(view)
        if site is not None and site != self.site_id:
            raise ValueError(f"{view} is outside the active site scope {self.site_id!r}")
        if isinstance(view, SiteList) and self.depth:
            raise ValueError("the site list only lives at the bottom of the stack")
        self._frames.append(_Frame(view))

    def back(self) -> bool:
        """Pop one view. The site list at the bottom is never popped."""
        if len(self._frames) == 1:
            return False
        self._frames.pop()
        return True

    def select_site(self, site_id: str, kind: str | None = None) -> bool:
        """Enter *site_id*'s entity list. Returns True if the scope changed.

        The stack is collapsed to the site list before re-entering, even when
        the same site is chosen again.
        """
        changed = site_id != self.site_id
        root = self._frames[0]
        self._frames = [root]
        self.site_id = site_id
        self.push(EntityList(kind or self.list_kind, site_id))
        return changed

    def select_entity(self, kind: str, entity_id: str) -> None:
        current = self.current
        if not isinstance(current, EntityList):
            raise ValueError(f"cannot open an entity from {current}")
        self.push(EntityDetail(kind, entity_id, current.site_id))

    def show_list(self, kind: str) -> bool:
        """Switch the entity list on top of the stack to *kind*."""
        if kind not in LIST_KINDS:
            raise ValueError(f"unknown list kind {kind!r}")
        self.list_kind = kind
        current = self.current
        if isinstance(current, EntityList) and current.kind != kind:
            self._frames[-1] = _Frame(EntityList(kind, current.site_id))
            return True
        return False

    def open_stats(self) -> bool:
        """Push the stats view for the active site, once a site is chosen."""
        if self.site_id is None or isinstance(self.current, Stats):
            return False
        self.push(Stats(self.site_id))
        return True

    def clear_scope(self) -> None:
        self._frames = [self._frames[0]]
        self.site_id = None

    def forget_entity(self, kind: str, entity_id: str) -> bool:
        """Drop views that reference an entity which no longer exists.

        Losing the active site clears the scope entirely.
        """
        if kind == SITE:
            if entity_id == self.site_id:
                self.clear_scope()
                return True
            return False
        for i, frame in enumerate(self._frames):
            view = frame.view
            if isinstance(view, EntityDetail) and view.kind == kind and view.entity_id == entity_id:
                del self._frames[i:]
                return True
        return False
