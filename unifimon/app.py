"""Dashboard context and the single dispatch point for events.

The context object owns every piece of live state (store, buffers,
navigator, search, sort, scheduler) and is passed explicitly to whoever
needs it. Key presses and poll completions both arrive as small event
objects and go through :func:`dispatch` once per frame.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from unifimon.errors import AuthenticationError
from unifimon.logs import get_logger
from unifimon.models import CLIENT, DEVICE, SITE
from unifimon.navigation import EntityDetail, EntityList, Navigator, SiteList, Stats
from unifimon.scheduler import ControllerAPI, PollOutcome, Scheduler, Spawn
from unifimon.search import ListSort, SearchFilter
from unifimon.series import MetricRingBuffers
from unifimon.store import EntityStore

log = get_logger("app")

DEVICE_TABS: tuple[str, ...] = ("Overview", "Performance", "Ports", "Radios")
STATS_TABS: tuple[str, ...] = ("Summary", "Topology")
ERROR_DISPLAY_SECONDS = 10.0


# ── Events ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Move:
    delta: int


@dataclass(frozen=True)
class Select:
    pass


@dataclass(frozen=True)
class Back:
    pass


@dataclass(frozen=True)
class ShowList:
    kind: str


@dataclass(frozen=True)
class ToggleList:
    pass


@dataclass(frozen=True)
class ShowStats:
    pass


@dataclass(frozen=True)
class StartSearch:
    pass


@dataclass(frozen=True)
class QueryInput:
    text: str


@dataclass(frozen=True)
class QueryBackspace:
    pass


@dataclass(frozen=True)
class EndSearch:
    pass


@dataclass(frozen=True)
class CycleSort:
    pass


@dataclass(frozen=True)
class NextSortColumn:
    pass


@dataclass(frozen=True)
class SwitchTab:
    delta: int


@dataclass(frozen=True)
class Refresh:
    pass


@dataclass(frozen=True)
class ToggleHelp:
    pass


@dataclass(frozen=True)
class Quit:
    pass


@dataclass(frozen=True)
class PollCompleted:
    outcome: PollOutcome


Event = Union[
    Move,
    Select,
    Back,
    ShowList,
    ToggleList,
    ShowStats,
    StartSearch,
    QueryInput,
    QueryBackspace,
    EndSearch,
    CycleSort,
    NextSortColumn,
    SwitchTab,
    Refresh,
    ToggleHelp,
    Quit,
    PollCompleted,
]


# ── Context ────────────────────────────────────────────────────────────────


@dataclass
class DashboardContext:
    store: EntityStore
    buffers: MetricRingBuffers
    navigator: Navigator
    search: SearchFilter
    scheduler: Scheduler
    sorts: dict[str, ListSort] = field(
        default_factory=lambda: {DEVICE: ListSort(DEVICE), CLIENT: ListSort(CLIENT)}
    )
    graph_window: int = 120
    banner: str | None = None
    error_message: str | None = None
    error_at: float = 0.0
    last_update: float | None = None
    show_help: bool = False
    should_quit: bool = False


def build_context(
    api: ControllerAPI,
    config: dict[str, Any],
    *,
    spawn: Spawn | None = None,
    **scheduler_kwargs: Any,
) -> DashboardContext:
    """Wire store, buffers, scheduler and navigator from a loaded config."""
    store = EntityStore(miss_threshold=int(config["miss_threshold"]))
    buffers = MetricRingBuffers(capacity=int(config["history_capacity"]))
    backoff = config.get("backoff", {})
    scheduler = Scheduler(
        api,
        store,
        buffers,
        intervals={k: float(v) for k, v in config.get("intervals", {}).items()},
        backoff_multiplier=float(backoff.get("multiplier", 2.0)),
        backoff_cap=float(backoff.get("max_interval", 60.0)),
        spawn=spawn,
        **scheduler_kwargs,
    )
    navigator = Navigator()

    def _evicted(kind: str, entity_id: str) -> None:
        buffers.drop_entity(entity_id)
        navigator.forget_entity(kind, entity_id)

    store.on_evict(_evicted)
    return DashboardContext(
        store=store,
        buffers=buffers,
        navigator=navigator,
        search=SearchFilter(),
        scheduler=scheduler,
        graph_window=int(config["graph_window"]),
    )


def visible_entities(ctx: DashboardContext) -> tuple[Any, ...]:
    """The rows of the current list view after filtering and sorting."""
    view = ctx.navigator.current
    if isinstance(view, SiteList):
        return ctx.search.apply(ctx.store.items(SITE))
    if isinstance(view, EntityList):
        rows = ctx.search.apply(ctx.store.items(view.kind, view.site_id))
        return ctx.sorts[view.kind].apply(rows)
    return ()


def sync_scheduler(ctx: DashboardContext, now: float) -> None:
    """Point the scheduler at the navigator's site scope and focused device."""
    nav = ctx.navigator
    ctx.scheduler.set_scope(nav.site_id, now)
    view = nav.current
    focus = view.entity_id if isinstance(view, EntityDetail) and view.kind == DEVICE else None
    ctx.scheduler.set_focus(focus, now)


# ── Dispatch ───────────────────────────────────────────────────────────────


def dispatch(ctx: DashboardContext, event: Event, now: float) -> None:
    """Apply one event to the context, then re-target the scheduler."""
    if isinstance(event, PollCompleted):
        _on_poll(ctx, event.outcome)
        return
    if isinstance(event, Quit):
        ctx.should_quit = True
        return
    if isinstance(event, ToggleHelp):
        ctx.show_help = not ctx.show_help
        if ctx.show_help:
            ctx.search.editing = False
        return
    if ctx.show_help:
        if isinstance(event, Back):
            ctx.show_help = False
        return

    _handle_input(ctx, event, now)
    sync_scheduler(ctx, now)


def _handle_input(ctx: DashboardContext, event: Event, now: float) -> None:
    nav = ctx.navigator
    search = ctx.search
    view = nav.current

    if isinstance(event, Move):
        nav.move_cursor(event.delta, len(visible_entities(ctx)))
    elif isinstance(event, Select):
        _select(ctx)
    elif isinstance(event, Back):
        if search.editing:
            search.editing = False
        elif search.active and isinstance(view, (SiteList, EntityList)):
            search.clear()
        else:
            nav.back()
    elif isinstance(event, ShowList):
        if isinstance(view, EntityList):
            nav.show_list(event.kind)
            nav.clamp_cursor(len(visible_entities(ctx)))
        else:
            nav.list_kind = event.kind
    elif isinstance(event, ToggleList):
        if isinstance(view, EntityList):
            nav.show_list(CLIENT if view.kind == DEVICE else DEVICE)
            nav.clamp_cursor(len(visible_entities(ctx)))
    elif isinstance(event, ShowStats):
        nav.open_stats()
    elif isinstance(event, StartSearch):
        if isinstance(view, (SiteList, EntityList)):
            search.editing = True
    elif isinstance(event, QueryInput):
        search.append(event.text)
        nav.clamp_cursor(len(visible_entities(ctx)))
    elif isinstance(event, QueryBackspace):
        search.backspace()
        nav.clamp_cursor(len(visible_entities(ctx)))
    elif isinstance(event, EndSearch):
        search.editing = False
    elif isinstance(event, CycleSort):
        if isinstance(view, EntityList):
            ctx.sorts[view.kind].cycle_order()
    elif isinstance(event, NextSortColumn):
        if isinstance(view, EntityList):
            ctx.sorts[view.kind].next_column()
    elif isinstance(event, SwitchTab):
        if isinstance(view, EntityDetail) and view.kind == DEVICE:
            nav.cycle_tab(event.delta, len(DEVICE_TABS))
        elif isinstance(view, Stats):
            nav.cycle_tab(event.delta, len(STATS_TABS))
    elif isinstance(event, Refresh):
        ctx.scheduler.force_refresh(now)


def _select(ctx: DashboardContext) -> None:
    nav = ctx.navigator
    view = nav.current
    if not isinstance(view, (SiteList, EntityList)):
        return
    rows = visible_entities(ctx)
    if not rows:
        return
    picked = rows[nav.clamp_cursor(len(rows))]
    ctx.search.clear()
    if isinstance(view, SiteList):
        nav.select_site(picked.id)
    else:
        nav.select_entity(view.kind, picked.id)


def _on_poll(ctx: DashboardContext, outcome: PollOutcome) -> None:
    if outcome.discarded:
        return
    if outcome.ok:
        ctx.last_update = outcome.at
        return
    if outcome.error_kind == AuthenticationError.kind:
        ctx.banner = (
            f"Controller rejected the API key; {outcome.poll} polling stopped. "
            "Check credentials and restart."
        )
    ctx.error_message = f"{outcome.poll}: {outcome.message}"
    ctx.error_at = outcome.at
