"""Interactive terminal dashboard for a UniFi Network controller.

Browses sites, devices and clients with live per-device CPU, memory and
uplink throughput graphs using curses. All controller I/O runs as asyncio
tasks owned by the scheduler; the frame loop below only ticks it, applies
key presses and draws whatever :func:`unifimon.compose.compose` returns.

Usage:
    unifimon --url https://192.168.1.1 --api-key KEY
    UNIFI_URL=... UNIFI_API_KEY=... unifimon --insecure
    unifimon --dump-config > ~/.config/unifimon/config.toml
"""

from __future__ import annotations

import argparse
import asyncio
import curses
import os
import sys
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import psutil

from unifimon.api import UnifiClient
from unifimon.app import (
    Back,
    CycleSort,
    EndSearch,
    Event,
    Move,
    NextSortColumn,
    PollCompleted,
    QueryBackspace,
    QueryInput,
    Quit,
    Refresh,
    Select,
    ShowList,
    ShowStats,
    StartSearch,
    SwitchTab,
    ToggleHelp,
    ToggleList,
    build_context,
    dispatch,
    sync_scheduler,
)
from unifimon.compose import Graph, Panel, PollHealth, TableRow, ViewModel, compose, fmt_bps
from unifimon.config import dump_default_config, load_config, resolve_credentials
from unifimon.errors import AuthenticationError, FetchError
from unifimon.logs import get_logger, setup_file_logging
from unifimon.models import CLIENT, DEVICE, MetricSample, Site

log = get_logger("dashboard")

# ── Constants ──────────────────────────────────────────────────────────────

SPARK = " ▁▂▃▄▅▆▇█"
BAR_FILL = "█"
BAR_EMPTY = "░"
MIN_ROWS, MIN_COLS = 10, 40
PAGE = 10

EXIT_AUTH = 2

# Curses colour-pair IDs
C_NORMAL = 1
C_WARNING = 2
C_CRITICAL = 3
C_TITLE = 4
C_DIM = 5
C_BLUE = 6

KEY_ESC = 27
KEY_TAB = 9
_ENTER_KEYS = (10, 13, curses.KEY_ENTER)
_BACKSPACE_KEYS = (8, 127, curses.KEY_BACKSPACE)

HELP_LINES: tuple[tuple[str, str], ...] = (
    ("↑/↓ j/k", "move selection"),
    ("PgUp/PgDn", "move a page"),
    ("Enter", "open site / details"),
    ("Esc Bksp h", "back (clears search first)"),
    ("d / c", "devices / clients list"),
    ("Tab", "toggle devices and clients"),
    ("t", "site stats"),
    ("/", "search name, IP, MAC"),
    ("s / S", "cycle sort order / sort column"),
    ("←/→", "switch detail or stats tab"),
    ("r", "refresh now"),
    ("?", "toggle this help"),
    ("q", "quit"),
)


# ── Colour helpers ─────────────────────────────────────────────────────────


def _init_colors() -> None:
    curses.start_color()
    curses.use_default_colors()
    curses.init_pair(C_NORMAL, curses.COLOR_GREEN, -1)
    curses.init_pair(C_WARNING, curses.COLOR_YELLOW, -1)
    curses.init_pair(C_CRITICAL, curses.COLOR_RED, -1)
    curses.init_pair(C_TITLE, curses.COLOR_CYAN, -1)
    curses.init_pair(C_DIM, curses.COLOR_WHITE, -1)
    curses.init_pair(C_BLUE, curses.COLOR_BLUE, -1)


def _severity_color(value: float, warn: float = 80.0, crit: float = 95.0) -> int:
    if value >= crit:
        return C_CRITICAL
    if value >= warn:
        return C_WARNING
    return C_NORMAL


def _status_color(status: str) -> int:
    if status in ("online", "connected"):
        return C_NORMAL
    if status in ("offline", "disconnected"):
        return C_CRITICAL
    if status:
        return C_WARNING
    return C_DIM


# ── Formatting helpers ─────────────────────────────────────────────────────


def fmt_bytes(n: int | float) -> str:
    """Human-readable byte count (binary prefixes)."""
    v = float(n)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if abs(v) < 1024:
            return f"{v:.1f} {unit}"
        v /= 1024
    return f"{v:.1f} TiB"


def fmt_graph_value(graph: Graph) -> str:
    value = graph.latest
    if value is None:
        return "n/a"
    if graph.unit == "%":
        return f"{value:5.1f}%"
    if graph.unit == "bps":
        return fmt_bps(value)
    return f"{value:.0f}"


def fmt_poll(poll: PollHealth) -> str:
    if poll.halted:
        return f"{poll.name}:halted"
    if not poll.healthy:
        return f"{poll.name}:retry {poll.next_in:.0f}s"
    return f"{poll.name}:ok"


class ProcessFootprint:
    """Resident memory and CPU of this dashboard process."""

    def __init__(self) -> None:
        self._proc = psutil.Process()
        # First cpu_percent call only primes the counter
        self._proc.cpu_percent(interval=None)

    def sample(self) -> str:
        try:
            rss = self._proc.memory_info().rss
            cpu = self._proc.cpu_percent(interval=None)
        except psutil.Error:
            return ""
        return f"RSS {fmt_bytes(rss)}  CPU {cpu:.1f}%"


# ── Key mapping ────────────────────────────────────────────────────────────


def key_to_event(key: int, searching: bool) -> Event | None:
    """Translate one curses key code into a dashboard event."""
    if key == curses.KEY_UP:
        return Move(-1)
    if key == curses.KEY_DOWN:
        return Move(1)
    if key == curses.KEY_PPAGE:
        return Move(-PAGE)
    if key == curses.KEY_NPAGE:
        return Move(PAGE)
    if key == KEY_ESC:
        return Back()

    if searching:
        if key in _ENTER_KEYS:
            return EndSearch()
        if key in _BACKSPACE_KEYS:
            return QueryBackspace()
        if 32 <= key < 127:
            return QueryInput(chr(key))
        return None

    if key in _ENTER_KEYS:
        return Select()
    if key in _BACKSPACE_KEYS:
        return Back()
    if key == KEY_TAB:
        return ToggleList()
    if key == curses.KEY_LEFT:
        return SwitchTab(-1)
    if key == curses.KEY_RIGHT:
        return SwitchTab(1)
    if key < 0 or key > 255:
        return None

    bindings: dict[str, Event] = {
        "k": Move(-1),
        "j": Move(1),
        "h": Back(),
        "d": ShowList(DEVICE),
        "c": ShowList(CLIENT),
        "t": ShowStats(),
        "/": StartSearch(),
        "s": CycleSort(),
        "S": NextSortColumn(),
        "r": Refresh(),
        "?": ToggleHelp(),
        "q": Quit(),
        "Q": Quit(),
    }
    return bindings.get(chr(key))


# ── Curses drawing primitives ──────────────────────────────────────────────


def _safe(win: curses.window, *args: Any) -> None:
    """addstr wrapper that swallows out-of-bounds errors."""
    try:
        win.addstr(*args)
    except curses.error:
        pass


def _draw_box(
    win: curses.window,
    y: int,
    x: int,
    h: int,
    w: int,
    title: str = "",
) -> curses.window | None:
    """Draw a bordered box and return the inner sub-window."""
    max_y, max_x = win.getmaxyx()
    h = min(h, max_y - y)
    w = min(w, max_x - x)
    if h < 3 or w < 4:
        return None
    try:
        sub = win.subwin(h, w, y, x)
        sub.box()
        if title:
            title = title[: w - 6]
            sub.addstr(0, 2, f" {title} ", curses.color_pair(C_TITLE) | curses.A_BOLD)
        return sub
    except curses.error:
        return None


def _draw_bar(
    win: curses.window,
    y: int,
    x: int,
    width: int,
    pct: float,
    label: str = "",
    color: int = C_NORMAL,
) -> None:
    """Render ``label ████░░░░ 42.0%`` on one line."""
    max_y, max_x = win.getmaxyx()
    if y >= max_y - 1 or x >= max_x - 1:
        return
    cx = x
    if label:
        _safe(win, y, cx, f"{label:>10s} ", curses.color_pair(C_DIM))
        cx += 11
    suffix = f" {pct:5.1f}%"
    bar_w = min(width - (cx - x) - len(suffix), max_x - cx - len(suffix) - 1)
    if bar_w < 3:
        return
    filled = int(bar_w * max(0.0, min(pct, 100.0)) / 100.0)
    _safe(win, y, cx, BAR_FILL * filled, curses.color_pair(color) | curses.A_BOLD)
    _safe(win, BAR_EMPTY * (bar_w - filled), curses.color_pair(C_DIM))
    _safe(win, suffix, curses.color_pair(color) | curses.A_BOLD)


def sparkline(samples: Sequence[MetricSample], width: int, max_val: float | None = None) -> str:
    """Block-character sparkline of the most recent *width* samples."""
    if width < 1 or not samples:
        return ""
    values = [s.value for s in samples[-width:]]
    top = max_val if max_val is not None else max(values)
    if top <= 0:
        top = 1.0
    chars: list[str] = []
    for v in values:
        idx = int(min(max(v, 0.0) / top, 1.0) * (len(SPARK) - 1))
        chars.append(SPARK[max(0, min(idx, len(SPARK) - 1))])
    return "".join(chars)


def _draw_sparkline(
    win: curses.window,
    y: int,
    x: int,
    width: int,
    graph: Graph,
    color: int = C_BLUE,
) -> None:
    max_y, max_x = win.getmaxyx()
    if y >= max_y - 1 or x >= max_x - 1:
        return
    w = min(width, max_x - x - 1)
    _safe(win, y, x, sparkline(graph.samples, w, graph.max_value), curses.color_pair(color))


def _fit(text: str, width: int) -> str:
    if width <= 0:
        return ""
    if len(text) <= width:
        return text.ljust(width)
    return text[: max(0, width - 1)] + "…"


def column_widths(header: Sequence[str], rows: Sequence[TableRow], total: int) -> list[int]:
    """Widths per column; the last column takes whatever is left."""
    if not header:
        return []
    widths = [len(h) for h in header]
    for row in rows:
        for i, cell in enumerate(row.cells[: len(widths)]):
            widths[i] = max(widths[i], len(cell))
    widths = [min(w, 32) + 2 for w in widths]
    used = sum(widths[:-1])
    widths[-1] = max(4, total - used)
    return widths


# ── Panel renderers ────────────────────────────────────────────────────────


def draw_table(win: curses.window, y: int, x: int, w: int, h: int, vm: ViewModel) -> None:
    title = vm.title
    if vm.sort_label:
        title += f"  sort: {vm.sort_label}"
    if vm.query:
        title += f"  filter: {vm.query}"
    box = _draw_box(win, y, x, h, w, title)
    if not box:
        return
    inner_w = w - 4
    widths = column_widths(vm.header, vm.rows, inner_w - 2)
    hdr = "  " + "".join(_fit(c, cw) for c, cw in zip(vm.header, widths))
    _safe(box, 1, 1, hdr[:inner_w], curses.color_pair(C_TITLE) | curses.A_BOLD)

    visible = h - 3
    if visible < 1:
        return
    if not vm.rows:
        msg = "No matches" if vm.query else "Loading..."
        _safe(box, 2, 3, msg, curses.color_pair(C_DIM))
        return
    top = max(0, vm.cursor - visible + 1)
    for i, row in enumerate(vm.rows[top : top + visible]):
        selected = top + i == vm.cursor
        marker = "~ " if row.stale else "  "
        line = marker + "".join(_fit(c, cw) for c, cw in zip(row.cells, widths))
        if row.stale:
            attr = curses.color_pair(C_DIM) | curses.A_DIM
        else:
            attr = curses.color_pair(_status_color(row.status))
        if selected:
            attr |= curses.A_REVERSE
        _safe(box, 2 + i, 1, line[:inner_w].ljust(inner_w), attr)


def draw_panel(win: curses.window, y: int, x: int, w: int, h: int, panel: Panel) -> None:
    title = panel.title + ("  (stale)" if panel.stale else "")
    box = _draw_box(win, y, x, h, w, title)
    if not box:
        return
    inner_w = w - 4
    row = 1
    if panel.missing:
        _safe(box, row, 2, "This entity disappeared from the controller.", curses.color_pair(C_WARNING))
        _safe(box, row + 1, 2, "Press Esc to go back.", curses.color_pair(C_DIM))
        return

    if panel.tabs:
        _safe(box, row, 2, "")
        for i, name in enumerate(panel.tabs):
            attr = curses.color_pair(C_TITLE)
            attr |= curses.A_REVERSE | curses.A_BOLD if i == panel.tab else 0
            _safe(box, f" {name} ", attr)
            _safe(box, " ")
        row += 2

    for node in panel.tree:
        if row >= h - 1:
            return
        branch = "  " * (node.depth - 1) + "└─ " if node.depth else ""
        attr = curses.color_pair(_status_color(node.status))
        if node.depth == 0:
            attr |= curses.A_BOLD
        _safe(box, row, 2, (branch + node.label)[:inner_w], attr)
        row += 1

    fattr = curses.color_pair(C_DIM) | (curses.A_DIM if panel.stale else 0)
    for label, value in panel.fields:
        if row >= h - 1:
            return
        _safe(box, row, 2, f"{label:>12s}  ", fattr)
        _safe(box, value[: max(0, inner_w - 16)], curses.color_pair(C_NORMAL) | curses.A_BOLD)
        row += 1
    if panel.fields:
        row += 1

    for graph in panel.graphs:
        if row >= h - 1:
            return
        if graph.unit == "%" and graph.latest is not None:
            _draw_bar(box, row, 1, inner_w, graph.latest, graph.label, _severity_color(graph.latest))
        else:
            _safe(box, row, 2, f"{graph.label:>10s} ", curses.color_pair(C_DIM))
            _safe(box, fmt_graph_value(graph), curses.color_pair(C_BLUE) | curses.A_BOLD)
        row += 1
        if row < h - 1:
            if graph.samples:
                _draw_sparkline(box, row, 13, inner_w - 12, graph)
            else:
                _safe(box, row, 13, "collecting...", curses.color_pair(C_DIM))
            row += 2

    if panel.table_header and row < h - 2:
        rows = [TableRow("", cells) for cells in panel.table_rows]
        widths = column_widths(panel.table_header, rows, inner_w - 2)
        hdr = "".join(_fit(c, cw) for c, cw in zip(panel.table_header, widths))
        _safe(box, row, 2, hdr[:inner_w], curses.color_pair(C_TITLE) | curses.A_BOLD)
        row += 1
        if not panel.table_rows:
            _safe(box, row, 2, "none reported", curses.color_pair(C_DIM))
        for cells in panel.table_rows:
            if row >= h - 1:
                break
            line = "".join(_fit(c, cw) for c, cw in zip(cells, widths))
            state = cells[1] if len(cells) > 1 else ""
            color = C_NORMAL if state == "up" else C_DIM
            _safe(box, row, 2, line[:inner_w], curses.color_pair(color))
            row += 1


def draw_help(win: curses.window, max_y: int, max_x: int) -> None:
    h = min(len(HELP_LINES) + 4, max_y - 2)
    w = min(52, max_x - 4)
    box = _draw_box(win, (max_y - h) // 2, (max_x - w) // 2, h, w, "Help")
    if not box:
        return
    for i, (keys, what) in enumerate(HELP_LINES[: h - 4]):
        _safe(box, 1 + i, 1, " " * (w - 2))
        _safe(box, 1 + i, 2, f"{keys:<12s}", curses.color_pair(C_TITLE) | curses.A_BOLD)
        _safe(box, what[: w - 16], curses.color_pair(C_DIM))
    _safe(box, h - 2, 2, "Esc or ? to close", curses.color_pair(C_DIM))


# ── Header & status ────────────────────────────────────────────────────────


def _draw_header(win: curses.window, w: int, vm: ViewModel, footprint: str) -> None:
    attr = curses.color_pair(C_TITLE) | curses.A_REVERSE
    _safe(win, 0, 0, " " * (w - 1), attr)
    crumbs = " > ".join(vm.breadcrumb)
    _safe(win, 0, 1, "unifimon", attr | curses.A_BOLD)
    _safe(win, 0, 11, crumbs[: max(0, w // 2 - 12)], attr)
    right = f"{footprint}  {time.strftime('%H:%M:%S')}"
    _safe(win, 0, max(0, w - len(right) - 2), right, attr)


def _draw_footer(win: curses.window, max_y: int, w: int, vm: ViewModel) -> None:
    if vm.searching:
        _safe(win, max_y - 2, 0, f"/{vm.query}_"[: w - 1], curses.color_pair(C_TITLE) | curses.A_BOLD)
    else:
        _safe(win, max_y - 2, 0, vm.hints[: w - 1], curses.color_pair(C_DIM))

    polls = "  ".join(fmt_poll(p) for p in vm.polls)
    if vm.error:
        _safe(win, max_y - 1, 0, vm.error[: w - 1], curses.color_pair(C_CRITICAL) | curses.A_BOLD)
    else:
        _safe(win, max_y - 1, 0, vm.status[: w - 1], curses.color_pair(C_NORMAL))
    if len(polls) + len(vm.status) + 4 < w:
        healthy = all(p.healthy for p in vm.polls)
        color = C_DIM if healthy else C_WARNING
        _safe(win, max_y - 1, w - len(polls) - 1, polls, curses.color_pair(color))


def draw(stdscr: curses.window, vm: ViewModel, footprint: str = "") -> None:
    """Paint one frame."""
    max_y, max_x = stdscr.getmaxyx()
    stdscr.erase()
    if max_y < MIN_ROWS or max_x < MIN_COLS:
        _safe(stdscr, 0, 0, f"Terminal too small (need {MIN_COLS}x{MIN_ROWS}+)")
        stdscr.refresh()
        return

    _draw_header(stdscr, max_x, vm, footprint)
    top = 1
    if vm.banner:
        _safe(stdscr, top, 0, vm.banner[: max_x - 1].ljust(max_x - 1),
              curses.color_pair(C_CRITICAL) | curses.A_REVERSE | curses.A_BOLD)
        top += 1
    body_h = max_y - top - 2
    if vm.panel is not None:
        draw_panel(stdscr, top, 0, max_x, body_h, vm.panel)
    else:
        draw_table(stdscr, top, 0, max_x, body_h, vm)
    _draw_footer(stdscr, max_y, max_x, vm)
    if vm.show_help:
        draw_help(stdscr, max_y, max_x)
    stdscr.refresh()


# ── Main loop ──────────────────────────────────────────────────────────────


async def _run(
    stdscr: curses.window,
    url: str,
    api_key: str,
    client_opts: dict[str, Any],
    config: dict[str, Any],
) -> None:
    frame = float(config["frame_interval"])
    footprint = ProcessFootprint()
    async with UnifiClient(url, api_key, **client_opts) as api:
        ctx = build_context(api, config)
        try:
            while not ctx.should_quit:
                now = time.time()
                ctx.scheduler.tick(now)
                for outcome in ctx.scheduler.drain_outcomes():
                    dispatch(ctx, PollCompleted(outcome), now)

                key = stdscr.getch()
                while key != -1 and not ctx.should_quit:
                    if key == curses.KEY_RESIZE:
                        stdscr.clear()
                    else:
                        event = key_to_event(key, ctx.search.editing)
                        if event is not None:
                            dispatch(ctx, event, now)
                    key = stdscr.getch()

                # Evictions can move the navigator without any key press.
                sync_scheduler(ctx, now)
                draw(stdscr, compose(ctx, now), footprint.sample())
                await asyncio.sleep(frame)
        finally:
            ctx.scheduler.shutdown()
            # Let cancelled fetches unwind before the HTTP client closes.
            await asyncio.sleep(0)


def _dashboard_loop(
    stdscr: curses.window,
    url: str,
    api_key: str,
    client_opts: dict[str, Any],
    config: dict[str, Any],
) -> None:
    _init_colors()
    curses.curs_set(0)
    curses.set_escdelay(25)
    stdscr.keypad(True)
    stdscr.nodelay(True)
    asyncio.run(_run(stdscr, url, api_key, client_opts, config))


async def _preflight(url: str, api_key: str, client_opts: dict[str, Any]) -> list[Site]:
    async with UnifiClient(url, api_key, **client_opts) as api:
        return await api.check_credentials()


# ── CLI entry point ────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Terminal dashboard for UniFi Network controllers.",
    )
    parser.add_argument("--url", default=None, help="Controller URL (env: UNIFI_URL)")
    parser.add_argument("--api-key", default=None, help="Integration API key (env: UNIFI_API_KEY)")
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip TLS certificate verification (self-signed controllers)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help="Path to TOML config file",
    )
    parser.add_argument(
        "--dump-config",
        action="store_true",
        help="Print the default configuration as TOML and exit",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        metavar="PATH",
        help="Debug log location (default: ~/.local/share/unifimon/debug.log)",
    )
    parser.add_argument("--debug", action="store_true", help="Log at DEBUG level")
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    if args.dump_config:
        print(dump_default_config(), end="")
        return

    config = load_config(args.config)
    url, api_key = resolve_credentials(args.url, args.api_key, os.environ)

    log_cfg = config.get("log", {})
    log_file = args.log_file
    if log_file is None and log_cfg.get("file"):
        log_file = Path(log_cfg["file"]).expanduser()
    level = "DEBUG" if args.debug else str(log_cfg.get("level", "INFO"))
    log_path = setup_file_logging(log_file, level)
    log.info("starting against %s (verify TLS: %s)", url, not args.insecure)

    client_opts: dict[str, Any] = {
        "verify": not args.insecure,
        "timeout": float(config["request_timeout"]),
        "page_size": int(config["page_size"]),
    }
    try:
        sites = asyncio.run(_preflight(url, api_key, client_opts))
        log.info("controller reachable, %d site(s)", len(sites))
    except AuthenticationError as e:
        log.error("startup authentication failed: %s", e)
        print(f"unifimon: controller rejected the API key ({e})", file=sys.stderr)
        raise SystemExit(EXIT_AUTH) from e
    except FetchError as e:
        # Not fatal: the scheduler keeps retrying with backoff.
        log.warning("controller check failed at startup: %s", e)

    try:
        curses.wrapper(_dashboard_loop, url, api_key, client_opts, config)
    except KeyboardInterrupt:
        pass
    log.info("exiting; log written to %s", log_path)


if __name__ == "__main__":
    main()
