"""Build the renderable view model from the dashboard context.

:func:`compose` is pure: it reads the store, buffers, navigator, search and
scheduler state and returns plain frozen data. The curses layer draws
whatever it gets and never looks at the context itself.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, assert_never

from unifimon.app import (
    DEVICE_TABS,
    ERROR_DISPLAY_SECONDS,
    STATS_TABS,
    DashboardContext,
    visible_entities,
)
from unifimon.models import (
    CLIENT,
    CLIENTS_TOTAL,
    CLIENTS_WIRED,
    CLIENTS_WIRELESS,
    CPU,
    DEVICE,
    MEM,
    RX,
    SITE,
    TX,
    UNKNOWN_UPLINK,
    Client,
    Device,
    FreshnessInfo,
    MetricSample,
    Site,
)
from unifimon.navigation import EntityDetail, EntityList, SiteList, Stats, View
from unifimon.scheduler import CLIENTS, DEVICES, METRICS, SITES
from unifimon.search import SORT_NONE

# An entity counts as stale once its last refresh is this many poll
# intervals old, even if no poll has failed yet.
STALE_AFTER_INTERVALS = 2.0

_POLL_FOR_KIND = {SITE: SITES, DEVICE: DEVICES, CLIENT: CLIENTS}

LIST_HEADERS: dict[str, tuple[str, ...]] = {
    SITE: ("Name", "ID"),
    DEVICE: ("Name", "Model", "MAC", "IP", "Status"),
    CLIENT: ("Name", "IP", "MAC", "Type", "Uplink", "Uptime"),
}

HINTS: dict[str, str] = {
    "sites": "↑/↓ select | Enter open | / search | r refresh | ? help | q quit",
    "list": "↑/↓ select | Enter details | Tab devices/clients | s sort | S column | / search | t stats | Esc back",
    "detail": "←/→ tabs | Esc back | r refresh | q quit",
    "stats": "←/→ summary/topology | Esc back | r refresh | q quit",
}


# ── View model ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TableRow:
    entity_id: str
    cells: tuple[str, ...]
    status: str = ""
    stale: bool = False


@dataclass(frozen=True)
class Graph:
    label: str
    samples: tuple[MetricSample, ...]
    unit: str = ""  # "%", "bps" or "" for plain counts
    max_value: float | None = None

    @property
    def latest(self) -> float | None:
        return self.samples[-1].value if self.samples else None


@dataclass(frozen=True)
class TreeNode:
    depth: int
    label: str
    status: str = ""


@dataclass(frozen=True)
class Panel:
    """Body of a detail or stats view."""

    title: str
    fields: tuple[tuple[str, str], ...] = ()
    tabs: tuple[str, ...] = ()
    tab: int = 0
    table_header: tuple[str, ...] = ()
    table_rows: tuple[tuple[str, ...], ...] = ()
    graphs: tuple[Graph, ...] = ()
    tree: tuple[TreeNode, ...] = ()
    stale: bool = False
    missing: bool = False


@dataclass(frozen=True)
class PollHealth:
    name: str
    healthy: bool
    halted: bool
    backoff_level: int
    next_in: float
    error: str | None = None


@dataclass(frozen=True)
class ViewModel:
    view: View
    title: str
    breadcrumb: tuple[str, ...]
    header: tuple[str, ...] = ()
    rows: tuple[TableRow, ...] = ()
    cursor: int = 0
    panel: Panel | None = None
    query: str = ""
    searching: bool = False
    sort_label: str = ""
    banner: str | None = None
    status: str = ""
    error: str | None = None
    polls: tuple[PollHealth, ...] = ()
    hints: str = ""
    show_help: bool = False


# ── Formatting helpers ─────────────────────────────────────────────────────


def fmt_bps(bps: float | None) -> str:
    """Human-readable bit rate."""
    if bps is None:
        return "n/a"
    for unit in ("bps", "Kbps", "Mbps", "Gbps"):
        if abs(bps) < 1000:
            return f"{bps:.0f} {unit}" if unit == "bps" else f"{bps:.1f} {unit}"
        bps /= 1000
    return f"{bps:.1f} Tbps"


def fmt_duration(seconds: float | None) -> str:
    """``3d 4h`` / ``2h 10m`` / ``5m`` style durations."""
    if seconds is None:
        return "n/a"
    total = int(seconds)
    hours, minutes = total // 3600, (total % 3600) // 60
    if hours >= 24:
        return f"{hours // 24}d {hours % 24}h"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def fmt_clock(seconds: float) -> str:
    total = max(0, int(seconds))
    return f"{total // 3600:02d}:{(total % 3600) // 60:02d}:{total % 60:02d}"


def _pct(value: float | None) -> str:
    return "n/a" if value is None else f"{value:.1f}%"


# ── Freshness ──────────────────────────────────────────────────────────────


def is_stale(info: FreshnessInfo | None, now: float, interval: float) -> bool:
    if info is None:
        return True
    return info.stale or now - info.last_successful_update > interval * STALE_AFTER_INTERVALS


def _stale(ctx: DashboardContext, kind: str, entity_id: str, now: float) -> bool:
    interval = ctx.scheduler.state(_POLL_FOR_KIND[kind]).interval
    return is_stale(ctx.store.freshness(kind, entity_id), now, interval)


def uplink_label(ctx: DashboardContext, client: Client) -> str:
    """Name of the client's uplink device, or the unknown/offline marker."""
    if client.uplink_device_id is None:
        return UNKNOWN_UPLINK
    device = ctx.store.get(DEVICE, client.uplink_device_id)
    if device is None or not device.online:
        return UNKNOWN_UPLINK
    return device.name


# ── Per-view builders ──────────────────────────────────────────────────────


def _row(ctx: DashboardContext, kind: str, entity: Any, now: float) -> TableRow:
    stale = _stale(ctx, kind, entity.id, now)
    if isinstance(entity, Site):
        return TableRow(entity.id, (entity.name, entity.id), "", stale)
    if isinstance(entity, Device):
        cells = (entity.name, entity.model, entity.mac, entity.ip, entity.status)
        return TableRow(entity.id, cells, entity.status, stale)
    cells = (
        entity.name,
        entity.ip,
        entity.mac,
        entity.medium,
        uplink_label(ctx, entity),
        fmt_duration(entity.uptime_seconds),
    )
    return TableRow(entity.id, cells, entity.status, stale)


def _graph(ctx: DashboardContext, entity_id: str, kind: str, label: str) -> Graph:
    samples = ctx.buffers.snapshot(entity_id, kind, ctx.graph_window)
    if kind in (CPU, MEM):
        return Graph(label, samples, "%", 100.0)
    if kind in (RX, TX):
        return Graph(label, samples, "bps")
    return Graph(label, samples)


def _device_panel(ctx: DashboardContext, view: EntityDetail, tab: int, now: float) -> Panel:
    device: Device | None = ctx.store.get(DEVICE, view.entity_id)
    if device is None:
        return Panel(title="Device no longer available", missing=True)
    stale = _stale(ctx, DEVICE, device.id, now)
    title = f"{device.name} - {device.model}" if device.model else device.name
    tab = tab % len(DEVICE_TABS)
    base = {"title": title, "tabs": DEVICE_TABS, "tab": tab, "stale": stale}

    if tab == 0:
        fields = (
            ("Status", device.status),
            ("Model", device.model or "n/a"),
            ("MAC", device.mac or "n/a"),
            ("IP", device.ip or "n/a"),
            ("Firmware", device.firmware or "n/a"),
            ("Uptime", fmt_duration(device.uptime_seconds)),
            ("CPU", _pct(device.cpu_percent)),
            ("Memory", _pct(device.mem_percent)),
            ("Uplink RX", fmt_bps(device.throughput_in)),
            ("Uplink TX", fmt_bps(device.throughput_out)),
        )
        return Panel(fields=fields, **base)
    if tab == 1:
        graphs = (
            _graph(ctx, device.id, CPU, "CPU"),
            _graph(ctx, device.id, MEM, "Memory"),
            _graph(ctx, device.id, RX, "Uplink RX"),
            _graph(ctx, device.id, TX, "Uplink TX"),
        )
        return Panel(graphs=graphs, **base)
    if tab == 2:
        rows = tuple(
            (
                str(p.idx),
                p.state,
                p.connector or "-",
                f"{p.speed_mbps} Mbps" if p.speed_mbps else "-",
                "on" if p.poe else "off",
            )
            for p in device.ports
        )
        return Panel(table_header=("Port", "State", "Connector", "Speed", "PoE"), table_rows=rows, **base)
    rows = tuple(
        (
            f"{r.frequency_ghz:g} GHz" if r.frequency_ghz is not None else "?",
            str(r.channel) if r.channel is not None else "-",
            f"{r.channel_width_mhz} MHz" if r.channel_width_mhz else "-",
            r.standard or "-",
        )
        for r in device.radios
    )
    return Panel(table_header=("Band", "Channel", "Width", "Standard"), table_rows=rows, **base)


def _client_panel(ctx: DashboardContext, view: EntityDetail, now: float) -> Panel:
    client: Client | None = ctx.store.get(CLIENT, view.entity_id)
    if client is None:
        return Panel(title="Client no longer available", missing=True)
    fields = (
        ("Name", client.name),
        ("IP", client.ip or "n/a"),
        ("MAC", client.mac or "n/a"),
        ("Type", client.medium),
        ("Status", client.status),
        ("Connected", fmt_duration(client.uptime_seconds)),
        ("Uplink", uplink_label(ctx, client)),
    )
    return Panel(title=client.name, fields=fields, stale=_stale(ctx, CLIENT, client.id, now))


def uplink_tree(devices: Sequence[Device], clients: Sequence[Client]) -> tuple[TreeNode, ...]:
    """Flatten the site's uplink graph into indented tree rows.

    Devices nest under the device they uplink through (known only once their
    details were fetched), clients under their uplink device. Clients whose
    uplink is missing or offline are grouped under the unknown/offline node,
    matching :func:`uplink_label`.
    """
    by_id = {d.id: d for d in devices}
    child_devices: dict[str | None, list[Device]] = {}
    for d in devices:
        parent = d.uplink_device_id
        if parent not in by_id or parent == d.id:
            parent = None
        child_devices.setdefault(parent, []).append(d)
    attached: dict[str | None, list[Client]] = {}
    for c in clients:
        uplink = by_id.get(c.uplink_device_id) if c.uplink_device_id else None
        key = uplink.id if uplink is not None and uplink.online else None
        attached.setdefault(key, []).append(c)

    nodes: list[TreeNode] = []
    seen: set[str] = set()

    def walk(device: Device, depth: int) -> None:
        seen.add(device.id)
        label = f"{device.name} ({device.model})" if device.model else device.name
        nodes.append(TreeNode(depth, label, device.status))
        for child in child_devices.get(device.id, []):
            if child.id not in seen:
                walk(child, depth + 1)
        for c in attached.get(device.id, []):
            nodes.append(TreeNode(depth + 1, f"{c.name} [{c.medium}]", c.status))

    for root in child_devices.get(None, []):
        walk(root, 0)
    # Devices on an uplink loop are reachable from no root.
    for d in devices:
        if d.id not in seen:
            walk(d, 0)
    orphans = attached.get(None, [])
    if orphans:
        nodes.append(TreeNode(0, UNKNOWN_UPLINK))
        nodes.extend(TreeNode(1, f"{c.name} [{c.medium}]", c.status) for c in orphans)
    return tuple(nodes)


def _stats_panel(ctx: DashboardContext, view: Stats, tab: int, now: float) -> Panel:
    devices: tuple[Device, ...] = ctx.store.items(DEVICE, view.site_id)
    clients: tuple[Client, ...] = ctx.store.items(CLIENT, view.site_id)
    tab = tab % len(STATS_TABS)
    stale = ctx.scheduler.state(CLIENTS).failures > 0
    if STATS_TABS[tab] == "Topology":
        return Panel(
            title="Topology",
            tabs=STATS_TABS,
            tab=tab,
            tree=uplink_tree(devices, clients),
            stale=stale or ctx.scheduler.state(DEVICES).failures > 0,
        )

    online = sum(1 for d in devices if d.online)
    wireless = sum(1 for c in clients if c.medium == "wireless")
    wired = sum(1 for c in clients if c.medium == "wired")
    fields = (
        ("Sites", str(ctx.store.count(SITE))),
        ("Devices", f"{len(devices)} ({online} online)"),
        ("Clients", str(len(clients))),
        ("Wireless", str(wireless)),
        ("Wired", str(wired)),
    )
    rows = tuple(
        (
            d.name,
            _pct(d.cpu_percent),
            _pct(d.mem_percent),
            fmt_bps(d.throughput_in),
            fmt_bps(d.throughput_out),
        )
        for d in devices
    )
    graphs = (
        _graph(ctx, view.site_id, CLIENTS_TOTAL, "Clients"),
        _graph(ctx, view.site_id, CLIENTS_WIRELESS, "Wireless"),
        _graph(ctx, view.site_id, CLIENTS_WIRED, "Wired"),
    )
    return Panel(
        title="Network Summary",
        tabs=STATS_TABS,
        tab=tab,
        fields=fields,
        table_header=("Device", "CPU", "Memory", "RX", "TX"),
        table_rows=rows,
        graphs=graphs,
        stale=stale,
    )


def _site_name(ctx: DashboardContext, site_id: str | None) -> str | None:
    if site_id is None:
        return None
    site: Site | None = ctx.store.get(SITE, site_id)
    return site.name if site is not None else site_id


def _entity_name(ctx: DashboardContext, kind: str, entity_id: str) -> str:
    entity = ctx.store.get(kind, entity_id)
    return entity.name if entity is not None else entity_id


def _breadcrumb(ctx: DashboardContext) -> tuple[str, ...]:
    parts: list[str] = []
    for view in ctx.navigator.stack:
        if isinstance(view, SiteList):
            parts.append("Sites")
        elif isinstance(view, EntityList):
            parts.append(f"{_site_name(ctx, view.site_id)} / {view.kind.title()}s")
        elif isinstance(view, EntityDetail):
            parts.append(_entity_name(ctx, view.kind, view.entity_id))
        elif isinstance(view, Stats):
            parts.append("Stats")
        else:
            assert_never(view)
    return tuple(parts)


def _status_line(ctx: DashboardContext, now: float) -> str:
    site_id = ctx.navigator.site_id
    devices: tuple[Device, ...] = ctx.store.items(DEVICE, site_id) if site_id else ()
    clients = ctx.store.items(CLIENT, site_id) if site_id else ()
    online = sum(1 for d in devices if d.online)
    updated = (
        f"updated {fmt_clock(now - ctx.last_update)} ago"
        if ctx.last_update is not None
        else "waiting for first update"
    )
    return (
        f"{_site_name(ctx, site_id) or 'No site selected'} | "
        f"Devices: {len(devices)} ({online} online) | Clients: {len(clients)} | {updated}"
    )


def _poll_health(ctx: DashboardContext, now: float) -> tuple[PollHealth, ...]:
    return tuple(
        PollHealth(
            name=s.name,
            healthy=s.failures == 0 and not s.halted,
            halted=s.halted,
            backoff_level=s.backoff_level,
            next_in=max(0.0, s.next_due - now),
            error=s.last_error,
        )
        for s in ctx.scheduler.states()
        if s.name != METRICS or ctx.scheduler.device_id is not None
    )


# ── Entry point ────────────────────────────────────────────────────────────


def compose(ctx: DashboardContext, now: float) -> ViewModel:
    """Assemble everything the renderer needs for one frame."""
    nav = ctx.navigator
    view = nav.current
    common: dict[str, Any] = {
        "view": view,
        "breadcrumb": _breadcrumb(ctx),
        "banner": ctx.banner,
        "status": _status_line(ctx, now),
        "error": (
            ctx.error_message
            if ctx.error_message and now - ctx.error_at < ERROR_DISPLAY_SECONDS
            else None
        ),
        "polls": _poll_health(ctx, now),
        "show_help": ctx.show_help,
        "query": ctx.search.query,
        "searching": ctx.search.editing,
    }

    if isinstance(view, SiteList):
        entities = visible_entities(ctx)
        rows = tuple(_row(ctx, SITE, e, now) for e in entities)
        return ViewModel(
            title=f"Sites [{len(rows)}]",
            header=LIST_HEADERS[SITE],
            rows=rows,
            cursor=min(nav.cursor, max(0, len(rows) - 1)),
            hints=HINTS["sites"],
            **common,
        )
    if isinstance(view, EntityList):
        entities = visible_entities(ctx)
        rows = tuple(_row(ctx, view.kind, e, now) for e in entities)
        sort = ctx.sorts[view.kind]
        sort_label = "" if sort.order == SORT_NONE else f"{sort.column_name} {sort.order}"
        return ViewModel(
            title=f"{view.kind.title()}s - {_site_name(ctx, view.site_id)} [{len(rows)}]",
            header=LIST_HEADERS[view.kind],
            rows=rows,
            cursor=min(nav.cursor, max(0, len(rows) - 1)),
            sort_label=sort_label,
            hints=HINTS["list"],
            **common,
        )
    if isinstance(view, EntityDetail):
        if view.kind == DEVICE:
            panel = _device_panel(ctx, view, nav.tab, now)
        else:
            panel = _client_panel(ctx, view, now)
        return ViewModel(title=panel.title, panel=panel, hints=HINTS["detail"], **common)
    if isinstance(view, Stats):
        panel = _stats_panel(ctx, view, nav.tab, now)
        return ViewModel(
            title=f"Stats - {_site_name(ctx, view.site_id)}",
            panel=panel,
            hints=HINTS["stats"],
            **common,
        )
    assert_never(view)
