from __future__ import annotations

import argparse
import logging
import os
import queue
import select
import subprocess
import sys
import termios
import threading
import time
import tty
import webbrowser
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable

from dotenv import load_dotenv
from rich.console import Console, Group
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from feed_cache import FAILED, LOADING, NOT_LOADED, FetchOrchestrator, start_daemon_thread
from hn_api import DEFAULT_STORY_COUNT, FEED_KINDS, HackerNewsClient
from session import (
    COMMANDS,
    OPTIONS_MENU,
    Effect,
    FilterOverlay,
    OptionsOverlay,
    PaletteOverlay,
    SessionState,
    SummaryOverlay,
    append_command_log,
    apply_feed_completion,
    apply_summary_completion,
    current_view,
    feed_items,
    handle_key,
    new_session,
    view_cursor,
    visible_status,
)
from summarize import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_SUMMARY_MODEL,
    FAILED as SUMMARY_FAILED,
    PENDING,
    Summarizer,
    summary_job,
)

logger = logging.getLogger(__name__)

APP_NAME = "Hackertuah News"
API_KEY_ENV_VARS = ("CLAUDE_API_KEY", "ANTHROPIC_API_KEY")
SPINNER = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")
LOG_FORMAT = "%(asctime)s [%(name)s] %(message)s"
KEY_HINT = (
    "j/k move | T A S J feeds | h/l cycle | r refresh | R refresh all | / search | "
    "Ctrl-K or : commands | o options | Enter open | C comments | q quit"
)


class StartupError(Exception):
    """Raised when the session cannot start."""


@dataclass
class AppConfig:
    count: int
    timeout_seconds: int
    model: str
    max_tokens: int
    initial_feed: str
    log_file: str | None


def parse_args(argv: list[str]) -> AppConfig:
    parser = argparse.ArgumentParser(
        description="Browse Hacker News in the terminal with AI summaries."
    )
    parser.add_argument("--count", type=int, default=DEFAULT_STORY_COUNT, help="Stories per feed.")
    parser.add_argument("--timeout-seconds", type=int, default=10)
    parser.add_argument("--model", default=os.getenv("CLAUDE_MODEL", DEFAULT_SUMMARY_MODEL))
    parser.add_argument("--max-tokens", type=int, default=DEFAULT_MAX_TOKENS)
    parser.add_argument(
        "--initial-feed",
        choices=[kind.lower() for kind in FEED_KINDS],
        default="top",
    )
    parser.add_argument("--log-file", default=None, help="Write debug logs to this file.")

    args = parser.parse_args(argv)

    if args.count < 1:
        raise ValueError("--count must be >= 1")
    if args.timeout_seconds < 1:
        raise ValueError("--timeout-seconds must be >= 1")
    if args.max_tokens < 50:
        raise ValueError("--max-tokens must be >= 50")
    if not args.model.strip():
        raise ValueError("--model must not be empty")

    kinds_by_lower = {kind.lower(): kind for kind in FEED_KINDS}
    return AppConfig(
        count=args.count,
        timeout_seconds=args.timeout_seconds,
        model=args.model.strip(),
        max_tokens=args.max_tokens,
        initial_feed=kinds_by_lower[args.initial_feed],
        log_file=args.log_file,
    )


def configure_logging(log_file: str | None) -> None:
    # The live view owns the terminal, so records go to a file or nowhere.
    if log_file:
        logging.basicConfig(
            filename=log_file,
            level=logging.INFO,
            format=LOG_FORMAT,
            datefmt="%H:%M:%S",
        )
    else:
        logging.getLogger().addHandler(logging.NullHandler())
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def resolve_api_key(environ: Mapping[str, str] | None = None) -> str:
    source = os.environ if environ is None else environ
    for name in API_KEY_ENV_VARS:
        value = (source.get(name) or "").strip()
        if value:
            return value
    raise StartupError(
        f"Missing summarization credential. Set {API_KEY_ENV_VARS[0]} in the environment or .env."
    )


def ensure_terminal() -> None:
    if not sys.stdin.isatty():
        raise StartupError("An interactive terminal is required.")


def open_link(url: str) -> str:
    clean_url = url.strip()
    if not clean_url:
        return "No URL available for selected story."
    try:
        if sys.platform == "darwin":
            subprocess.Popen(["open", clean_url], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        elif not webbrowser.open(clean_url, new=2):
            return "Failed to open URL: no browser available."
        return ""
    except (OSError, webbrowser.Error) as exc:
        return f"Failed to open URL: {exc}"


def truncate(value: str, width: int) -> str:
    if len(value) <= width:
        return value
    if width <= 1:
        return value[:width]
    return f"{value[: width - 1]}…"


def spinner_frame() -> str:
    return SPINNER[int(time.monotonic() * 8) % len(SPINNER)]


def visible_window(cursor: int, total: int, rows: int, offset: int = 0) -> tuple[int, int]:
    """Scroll only as far as needed to keep the cursor on screen."""
    rows = max(rows, 1)
    if cursor < offset:
        offset = cursor
    elif cursor >= offset + rows:
        offset = cursor - rows + 1
    start = max(0, min(offset, total - rows))
    return start, min(total, start + rows)


def perform_effect(
    state: SessionState,
    effect: Effect,
    orchestrator: FetchOrchestrator,
    summarizer: Summarizer,
    post: Callable[[tuple[str, Any]], None],
    spawn: Callable[[Callable[[], None]], None] = start_daemon_thread,
) -> bool:
    name, payload = effect
    if name == "quit":
        return True
    if name == "open":
        url, label = payload
        error = open_link(url)
        append_command_log(state, error or f"Opened: {label}")
    elif name == "load":
        if state.cache.get(payload).status == NOT_LOADED:
            orchestrator.refresh(payload)
    elif name == "refresh":
        orchestrator.refresh(payload)
    elif name == "refresh_all":
        orchestrator.refresh_all()
    elif name == "summarize":
        generation, story = payload
        spawn(lambda: post(("summary", summary_job(summarizer, story, generation))))
    else:
        raise ValueError(f"Unknown effect '{name}'")
    return False


def handle_event(
    state: SessionState,
    event: tuple[str, Any],
    orchestrator: FetchOrchestrator,
    summarizer: Summarizer,
    post: Callable[[tuple[str, Any]], None],
    spawn: Callable[[Callable[[], None]], None] = start_daemon_thread,
) -> bool:
    event_type, value = event
    if event_type == "key":
        for effect in handle_key(state, value):
            if perform_effect(state, effect, orchestrator, summarizer, post, spawn):
                return True
    elif event_type == "feed":
        apply_feed_completion(state, orchestrator, value)
    elif event_type == "summary":
        apply_summary_completion(state, value)
    return False


def render_section_tabs(state: SessionState) -> Text:
    tabs = Text(justify="center")
    for kind in state.cache.kinds:
        status = state.cache.get(kind).status
        marker = ""
        if status == LOADING:
            marker = f" {spinner_frame()}"
        elif status == FAILED:
            marker = " !"
        style = "bold green reverse" if kind == state.active_feed else "green"
        tabs.append(f" {kind}{marker} ", style=style)
        tabs.append(" ")
    return tabs


def empty_feed_message(state: SessionState) -> str:
    entry = state.cache.get(state.active_feed)
    kind = state.active_feed
    if isinstance(state.overlay, FilterOverlay) and entry.items:
        return f"No stories match '{state.overlay.query}'."
    if entry.status == LOADING:
        return f"Loading {kind} stories {spinner_frame()}"
    if entry.status == FAILED:
        return f"Failed to load {kind}: {entry.error} (press r to retry)"
    if entry.status == NOT_LOADED:
        return f"{kind} stories not loaded yet."
    return f"No {kind} stories."


def render_story_table(state: SessionState, max_rows: int) -> Table:
    items = feed_items(state)
    view = current_view(state)
    cursor = view_cursor(state)
    table = Table(expand=True, border_style="green", header_style="bold green")
    table.add_column("Sel", width=3)
    table.add_column("#", justify="right", style="dim", width=3)
    table.add_column("Title", style="green", overflow="ellipsis", no_wrap=True)
    table.add_column("Score", justify="right", width=6)
    table.add_column("By", width=16, overflow="ellipsis", no_wrap=True)

    overlay = state.overlay
    if isinstance(overlay, FilterOverlay):
        start, end = visible_window(cursor, len(view), max_rows, overlay.scroll)
        overlay.scroll = start
    else:
        offset = state.scroll_offsets.get(state.active_feed, 0)
        start, end = visible_window(cursor, len(view), max_rows, offset)
        state.scroll_offsets[state.active_feed] = start
    for position in range(start, end):
        story = items[view[position]]
        is_selected = position == cursor
        table.add_row(
            ">" if is_selected else "",
            str(view[position] + 1),
            story.title,
            str(story.score),
            story.author,
            style="bold black on green" if is_selected else "",
        )

    if not view:
        table.add_row("", "-", empty_feed_message(state), "-", "-")
    return table


def render_palette(overlay: PaletteOverlay) -> Panel:
    table = Table(expand=True, show_header=False, box=None)
    table.add_column("Command", style="green", no_wrap=True)
    table.add_column("Description", style="bright_black")
    for position, index in enumerate(overlay.matches):
        command = COMMANDS[index]
        style = "bold black on green" if position == overlay.cursor else ""
        table.add_row(f"> {command.name}" if style else f"  {command.name}", command.description, style=style)
    if not overlay.matches:
        table.add_row("  No matching commands", "")
    query_line = Text(f"Command: {overlay.query}", style="bold green")
    return Panel(Group(query_line, Text(""), table), title="Command Palette", border_style="green")


def render_options(overlay: OptionsOverlay) -> Panel:
    lines = Text()
    for position, (label, _) in enumerate(OPTIONS_MENU):
        style = "bold black on green" if position == overlay.cursor else "green"
        lines.append(f" {label} \n", style=style)
    return Panel(lines, title="Options", border_style="green")


def render_summary(state: SessionState, overlay: SummaryOverlay) -> Panel:
    summary = state.summary
    if summary.status == PENDING:
        body = Text(f"Summarizing {spinner_frame()}", style="green")
    elif summary.status == SUMMARY_FAILED:
        body = Text(f"Failed to get summary: {summary.error}", style="red")
    else:
        body = Text(summary.text or "No summary.", style="green")
    footer = Text("\nEsc to close", style="dim")
    return Panel(
        Group(Text(overlay.story.title, style="bold green"), Text(""), body, footer),
        title="Claude Summary",
        border_style="green",
    )


def build_screen(state: SessionState, terminal_width: int, terminal_height: int) -> Layout:
    overlay = state.overlay
    show_search = isinstance(overlay, FilterOverlay)

    layout = Layout()
    sections = [
        Layout(Panel(Text(APP_NAME, justify="center", style="bold green"), border_style="green"), size=3),
        Layout(Panel(render_section_tabs(state), border_style="green"), size=3),
        Layout(name="body", ratio=1),
    ]
    if show_search:
        search = Panel(Text(f"/{overlay.query}", style="green"), title="Search", border_style="green")
        sections.append(Layout(search, size=3))
    max_chars = max(40, terminal_width - 4)
    footer = Group(
        Text(truncate(f"Status: {visible_status(state) or 'Idle'}", max_chars), style="cyan"),
        Text(truncate(KEY_HINT, max_chars), style="magenta"),
    )
    sections.append(Layout(footer, size=2))
    layout.split_column(*sections)

    fixed_rows = 3 + 3 + 2 + (3 if show_search else 0)
    # table border, header and separator take four rows
    table_rows = max(1, terminal_height - fixed_rows - 4)
    if isinstance(overlay, PaletteOverlay):
        layout["body"].update(render_palette(overlay))
    elif isinstance(overlay, OptionsOverlay):
        layout["body"].update(render_options(overlay))
    elif isinstance(overlay, SummaryOverlay):
        layout["body"].update(render_summary(state, overlay))
    else:
        layout["body"].update(render_story_table(state, table_rows))
    return layout


def command_input_worker(
    event_queue: queue.Queue[tuple[str, Any]],
    stop_event: threading.Event,
) -> None:
    fd = sys.stdin.fileno()
    old_settings = termios.tcgetattr(fd)
    try:
        tty.setcbreak(fd)
        while not stop_event.is_set():
            ready, _, _ = select.select([fd], [], [], 0.2)
            if not ready:
                continue
            data = os.read(fd, 1)
            if not data:
                continue
            key = data.decode("utf-8", errors="ignore")
            if not key:
                continue
            if key in {"\r", "\n"}:
                event_queue.put(("key", "ENTER"))
                continue
            if key in {"\x7f", "\b"}:
                event_queue.put(("key", "BACKSPACE"))
                continue
            if key == "\x0b":
                event_queue.put(("key", "PALETTE"))
                continue
            if key == "\x1b":
                sequence = ""
                while select.select([fd], [], [], 0.001)[0]:
                    sequence += os.read(fd, 1).decode("utf-8", errors="ignore")
                    if not sequence:
                        continue
                    if sequence[-1].isalpha() or sequence.endswith("~") or len(sequence) >= 6:
                        break
                if sequence in {"[A", "OA"}:
                    event_queue.put(("key", "UP"))
                elif sequence in {"[B", "OB"}:
                    event_queue.put(("key", "DOWN"))
                elif not sequence:
                    event_queue.put(("key", "ESC"))
                continue
            if key == "\x03":
                event_queue.put(("key", "QUIT"))
                continue
            event_queue.put(("key", key))
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)


def run(config: AppConfig, console: Console, api_key: str) -> int:
    events: queue.Queue[tuple[str, Any]] = queue.Queue()
    stop_event = threading.Event()
    state = new_session(config.initial_feed)
    client = HackerNewsClient(timeout_seconds=config.timeout_seconds)
    summarizer = Summarizer(
        api_key,
        model=config.model,
        max_tokens=config.max_tokens,
        timeout_seconds=max(config.timeout_seconds, 30),
    )
    orchestrator = FetchOrchestrator(state.cache, client.fetch_stories, events.put, count=config.count)

    input_thread = threading.Thread(
        target=command_input_worker,
        args=(events, stop_event),
        daemon=True,
    )
    input_thread.start()
    orchestrator.load_all()
    append_command_log(state, "Loading all sections...")
    logger.info("Session started on %s", state.active_feed)

    with Live(
        build_screen(state, console.size.width, console.size.height),
        console=console,
        auto_refresh=False,
        screen=True,
        vertical_overflow="crop",
    ) as live:
        try:
            while True:
                try:
                    event: tuple[str, Any] | None = events.get(timeout=0.12)
                except queue.Empty:
                    event = None
                while event is not None:
                    if handle_event(state, event, orchestrator, summarizer, events.put):
                        logger.info("Quit requested")
                        return 0
                    try:
                        event = events.get_nowait()
                    except queue.Empty:
                        event = None
                live.update(
                    build_screen(state, console.size.width, console.size.height),
                    refresh=True,
                )
        finally:
            stop_event.set()
            input_thread.join(timeout=2)


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    console = Console()
    try:
        config = parse_args(argv if argv is not None else sys.argv[1:])
    except ValueError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        return 2

    configure_logging(config.log_file)
    try:
        api_key = resolve_api_key()
        ensure_terminal()
    except StartupError as exc:
        console.print(f"[red]Startup error:[/red] {exc}")
        return 1

    try:
        return run(config, console, api_key)
    except KeyboardInterrupt:
        console.print("\n[bold]Stopped.[/bold]")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
