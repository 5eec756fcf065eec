"""memtop - Textual application and command-line entry point."""

import argparse
import logging
import os
import sys
from collections import deque
from collections.abc import Sequence
from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.css.query import NoMatches
from textual.logging import TextualHandler
from textual.widgets import DataTable, Footer, Static

from memtop.arena import PressureArena
from memtop.config import MONITOR, PRESSURE
from memtop.errors import MemtopError
from memtop.models import AllocationHandle, MonitorRow, ReclaimReport, Target
from memtop.monitor import PollLoop
from memtop.reclaim import ReclaimController
from memtop.sampler import RateSampler
from memtop.sources import MetricSource, PsutilProvider

logger = logging.getLogger(__name__)

COLUMNS = ("Tick", "SysUsed", "SysAvail", "Load%", "ProcRSS", "Heap", "CPU%")
NOT_AVAILABLE = "N/A"
NOT_APPLICABLE = "-"
MAX_TABLE_ROWS = 300


def format_bytes(size: float) -> str:
    """Format bytes as a human-readable string, e.g. ``50 MB``."""
    units = ["B", "KB", "MB", "GB", "TB"]
    unit = 0
    while size >= 1024 and unit < len(units) - 1:
        size = size / 1024
        unit += 1
    return f"{size:.2f}".rstrip("0").rstrip(".") + f" {units[unit]}"


def short_bytes(size: int) -> str:
    """Compact byte format for table columns, e.g. ``812MB`` or ``1.2GB``."""
    mb = size / 1024 / 1024
    if mb < 1024:
        return f"{mb:.0f}MB"
    return f"{mb / 1024:.1f}GB"


def format_row(row: MonitorRow) -> tuple[str, ...]:
    """Render a MonitorRow into the COLUMNS cells. Failed reads render as N/A."""
    if row.system is not None:
        system_cells = (
            short_bytes(row.system.used_bytes),
            short_bytes(row.system.available_bytes),
            f"{row.system.load_percent}",
        )
    else:
        system_cells = (NOT_AVAILABLE,) * 3

    if not row.target.is_process:
        process_cells = (NOT_APPLICABLE,) * 3
    else:
        process = row.process
        process_cells = (
            short_bytes(process.resident_bytes) if process else NOT_AVAILABLE,
            short_bytes(process.managed_heap_bytes) if process else NOT_AVAILABLE,
            f"{row.cpu.percent:.1f}" if row.cpu is not None else NOT_AVAILABLE,
        )

    return (str(row.tick), *system_cells, *process_cells)


def format_report(report: ReclaimReport) -> str:
    """Before/after summary of a reclamation cycle."""
    before, after = report.before, report.after
    sign = "-" if report.resident_delta < 0 else "+"
    return (
        f"Resident : {format_bytes(before.resident_bytes)} -> "
        f"{format_bytes(after.resident_bytes)} ({sign}{format_bytes(abs(report.resident_delta))})\n"
        f"Private  : {format_bytes(before.private_bytes)} -> {format_bytes(after.private_bytes)}\n"
        f"Heap     : {format_bytes(before.managed_heap_bytes)} -> "
        f"{format_bytes(after.managed_heap_bytes)}\n"
        f"Collected: {report.collected} objects"
    )


class HeaderStats(Static):
    """Header widget showing system memory and held-pressure totals."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 5;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize HeaderStats."""
        super().__init__(*args, **kwargs)
        self._last_row: MonitorRow | None = None
        self._held_bytes: int = 0
        self._held_blocks: int = 0
        self._last_report: ReclaimReport | None = None

    def compose(self) -> ComposeResult:
        """Compose the header stats layout."""
        yield Horizontal(
            Static(self._get_mem_info(), id="mem-info"),
            Static(self._get_pressure_info(), id="pressure-info"),
        )

    def update_stats(self, row: MonitorRow) -> None:
        """Update the statistics from the latest monitor row."""
        self._last_row = row
        self._refresh_display()

    def update_arena(self, held_bytes: int, held_blocks: int) -> None:
        """Update the held-pressure totals."""
        self._held_bytes = held_bytes
        self._held_blocks = held_blocks
        self._refresh_display()

    def update_report(self, report: ReclaimReport) -> None:
        """Show the result of the last reclamation cycle."""
        self._last_report = report
        self._refresh_display()

    def _refresh_display(self) -> None:
        """Refresh the display with current data."""
        try:
            self.query_one("#mem-info", Static).update(self._get_mem_info())
            self.query_one("#pressure-info", Static).update(self._get_pressure_info())
        except NoMatches:
            pass  # Widget not mounted yet

    def _get_mem_info(self) -> str:
        """Get memory info display."""
        row = self._last_row
        if row is None:
            return "Loading memory info..."
        if row.system is None:
            return f"System memory: {NOT_AVAILABLE}"

        system = row.system
        bar_len = min(int(system.load_percent / 5), 20)
        bar = "[cyan]█[/cyan]" * bar_len + "[dim]░[/dim]" * (20 - bar_len)
        lines = [
            f"Mem\\[{bar}] {format_bytes(system.used_bytes)}/{format_bytes(system.total_bytes)}",
            f"Available: {format_bytes(system.available_bytes)}  Load: {system.load_percent}%",
        ]
        if row.process is not None:
            lines.append(
                f"PID {row.process.pid}: RSS {format_bytes(row.process.resident_bytes)}"
                f"  Private {format_bytes(row.process.private_bytes)}"
            )
        return "\n".join(lines)

    def _get_pressure_info(self) -> str:
        """Get held-pressure display."""
        lines = [
            f"Held blocks: {self._held_blocks}",
            f"Held size  : {format_bytes(self._held_bytes)}",
        ]
        if self._last_report is not None:
            delta = self._last_report.resident_delta
            sign = "-" if delta < 0 else "+"
            lines.append(f"Last GC    : {sign}{format_bytes(abs(delta))} resident")
        return "\n".join(lines)


class RowTable(Container):
    """Container for the scrolling table of monitor rows."""

    DEFAULT_CSS = """
    RowTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, max_rows: int = MAX_TABLE_ROWS, **kwargs) -> None:
        """Initialize RowTable."""
        super().__init__(*args, **kwargs)
        self._max_rows = max_rows
        self._row_keys: deque[str] = deque()

    @property
    def row_count(self) -> int:
        """Get the number of rows currently shown."""
        return len(self._row_keys)

    def compose(self) -> ComposeResult:
        """Compose the row table."""
        yield DataTable(id="row-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#row-table", DataTable)
        table.cursor_type = "row"
        for column in COLUMNS:
            table.add_column(column, key=column.lower(), width=10)

    def add_monitor_row(self, row: MonitorRow) -> None:
        """Append a row, dropping the oldest once the table is full."""
        table = self.query_one("#row-table", DataTable)
        key = str(row.tick)
        if key in self._row_keys:
            return
        table.add_row(*format_row(row), key=key)
        self._row_keys.append(key)

        while len(self._row_keys) > self._max_rows:
            table.remove_row(self._row_keys.popleft())

        table.move_cursor(row=table.row_count - 1)


class MemtopApp(App):
    """Main memtop application."""

    TITLE = "memtop"
    SUB_TITLE = "Memory Pressure Monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 6;
    }

    Horizontal {
        height: auto;
    }

    #mem-info {
        width: 2fr;
        padding-right: 2;
    }

    #pressure-info {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("a", "allocate", "Allocate"),
        ("f", "free", "Free all"),
        ("g", "reclaim", "Force GC"),
        ("plus", "faster", "Faster"),
        ("minus", "slower", "Slower"),
    ]

    def __init__(
        self,
        target: Target | None = None,
        interval: float = MONITOR.interval,
        source: MetricSource | None = None,
        arena: PressureArena | None = None,
        step_megabytes: int = PRESSURE.tui_step_megabytes,
    ) -> None:
        """Initialize the MemtopApp."""
        super().__init__()
        self._target = target or Target.process(os.getpid())
        self._source = source or MetricSource(PsutilProvider())
        self._arena = arena or PressureArena()
        self._step_megabytes = step_megabytes
        self._update_queue: Queue[MonitorRow] = Queue()
        self._monitor = PollLoop(
            self._source,
            sampler=RateSampler(self._source),
            arena=self._arena,
            interval=interval,
        )
        self._reclaimer = ReclaimController(self._source)

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield HeaderStats(id="header-stats")
        yield RowTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the poll loop when the app is mounted."""
        self._monitor.start(self._update_queue, self._target)
        self.set_interval(0.5, self._check_for_updates)

    def on_unmount(self) -> None:
        """Stop the poll loop however the app exits."""
        self._monitor.stop()

    def _check_for_updates(self) -> None:
        """Drain the queue and show every new row."""
        while True:
            try:
                row = self._update_queue.get_nowait()
            except Empty:
                break
            self._update_ui(row)

    def _update_ui(self, row: MonitorRow) -> None:
        """Update the UI with a new monitor row."""
        try:
            self.query_one("#header-stats", HeaderStats).update_stats(row)
            self.query_one(RowTable).add_monitor_row(row)
        except NoMatches:
            pass  # Screen is being torn down

    def _refresh_arena(self) -> None:
        header = self.query_one("#header-stats", HeaderStats)
        header.update_arena(self._arena.held_total(), self._arena.block_count)

    def action_allocate(self) -> None:
        """Allocate and hold another block."""
        try:
            handle: AllocationHandle = self._arena.allocate(self._step_megabytes)
        except MemtopError as exc:
            self.notify(str(exc), severity="error")
            return
        self._refresh_arena()
        self.notify(
            f"Allocated {self._step_megabytes} MB, holding {format_bytes(handle.held_total_bytes)}"
        )

    def action_free(self) -> None:
        """Release every held block."""
        freed = self._arena.release_all()
        self._refresh_arena()
        self.notify(f"Freed {format_bytes(freed)}. RAM may not drop until GC runs.")

    def action_reclaim(self) -> None:
        """Force a reclamation cycle and show the delta."""
        pid = self._target.pid if self._target.pid is not None else os.getpid()
        try:
            report = self._reclaimer.reclaim_and_report(pid)
        except MemtopError as exc:
            self.notify(str(exc), severity="error")
            return
        self.query_one("#header-stats", HeaderStats).update_report(report)
        self.notify(format_report(report), title="Garbage collection")

    def action_faster(self) -> None:
        """Shorten the poll interval."""
        self._monitor.interval = self._monitor.interval / 2
        self.notify(f"Interval: {self._monitor.interval:.2f}s")

    def action_slower(self) -> None:
        """Lengthen the poll interval."""
        self._monitor.interval = self._monitor.interval * 2
        self.notify(f"Interval: {self._monitor.interval:.2f}s")

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._monitor.stop()
        self.exit()


def _print_rows_header() -> None:
    print(" ".join(f"{column:>10}" for column in COLUMNS))
    print("-" * (11 * len(COLUMNS)))


def _print_row(row: MonitorRow) -> None:
    print(" ".join(f"{cell:>10}" for cell in format_row(row)))


def _resolve_target(args: argparse.Namespace) -> Target:
    if getattr(args, "system", False):
        return Target.system()
    return Target.process(args.pid if args.pid is not None else os.getpid())


def cmd_status(args: argparse.Namespace, source: MetricSource) -> int:
    """Print system memory and one process's metrics once."""
    system = source.read_system_memory()
    print(f"Total Physical RAM : {format_bytes(system.total_bytes)}")
    print(f"Available RAM      : {format_bytes(system.available_bytes)}")
    print(f"Used RAM (approx)  : {format_bytes(system.used_bytes)}")
    print(f"Memory Load        : {system.load_percent}%")

    pid = args.pid if args.pid is not None else os.getpid()
    process = source.read_process_metrics(pid)
    print()
    print(f"PID                : {process.pid}")
    print(f"Working Set (RAM)  : {format_bytes(process.resident_bytes)}")
    print(f"Private Memory     : {format_bytes(process.private_bytes)}")
    print(f"Paged Memory       : {format_bytes(process.paged_bytes)}")
    print(f"CPU Time           : {process.cpu_seconds:.2f}s")
    if pid == os.getpid():
        print(f"Heap (traced)      : {format_bytes(process.managed_heap_bytes)}")
    return 0


def cmd_watch(args: argparse.Namespace, source: MetricSource) -> int:
    """Print one row per tick for a bounded number of ticks."""
    _print_rows_header()
    try:
        PollLoop(source).run(args.ticks, args.interval, _resolve_target(args), on_row=_print_row)
    except KeyboardInterrupt:
        return 130
    return 0


def cmd_pressure(args: argparse.Namespace, source: MetricSource) -> int:
    """Allocate, optionally hold while watching, release and optionally reclaim."""
    arena = PressureArena()
    handle = arena.allocate(args.allocate)
    print(f"Allocated and held : {args.allocate} MB")
    print(f"Total held blocks  : {handle.block_count}")
    print(f"Total held size    : {format_bytes(handle.held_total_bytes)}")

    if args.hold > 0:
        print()
        _print_rows_header()
        ticks = max(1, int(args.hold / args.interval)) if args.interval > 0 else 1
        PollLoop(source, arena=arena).run(
            ticks, args.interval, Target.process(os.getpid()), on_row=_print_row
        )

    freed = arena.release_all()
    print()
    print(f"Freed held memory references: {format_bytes(freed)}")
    print("Note: RAM may not drop immediately until GC runs.")

    if args.reclaim:
        report = ReclaimController(source).reclaim_and_report(os.getpid())
        print()
        print(format_report(report))
    return 0


def cmd_tui(args: argparse.Namespace, source: MetricSource) -> int:
    """Run the Textual application."""
    MemtopApp(target=_resolve_target(args), interval=args.interval, source=source).run()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="memtop", description="Memory and CPU telemetry with controlled memory pressure."
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: WARNING)",
    )
    parser.add_argument("--log-file", help="Write logs to this file instead of stderr")
    parser.add_argument(
        "--no-heap-trace",
        action="store_true",
        help="Do not start tracemalloc; the heap column reads 0",
    )
    sub = parser.add_subparsers(dest="command")

    status = sub.add_parser("status", help="Show system and process memory once")
    status.add_argument("--pid", type=int, help="Process to inspect (default: memtop itself)")
    status.set_defaults(handler=cmd_status)

    for name, handler, help_text in (
        ("watch", cmd_watch, "Print one row per tick"),
        ("tui", cmd_tui, "Interactive terminal UI (default)"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--pid", type=int, help="Process to watch (default: memtop itself)")
        cmd.add_argument("--system", action="store_true", help="System-wide view only")
        cmd.add_argument("--interval", type=float, default=MONITOR.interval)
        cmd.set_defaults(handler=handler)
        if name == "watch":
            cmd.add_argument("--ticks", type=int, default=MONITOR.ticks)

    pressure = sub.add_parser("pressure", help="Allocate and hold memory, then release it")
    pressure.add_argument("--allocate", type=int, required=True, metavar="MB")
    pressure.add_argument("--hold", type=float, default=0.0, help="Seconds to watch while holding")
    pressure.add_argument("--interval", type=float, default=MONITOR.interval)
    pressure.add_argument("--reclaim", action="store_true", help="Force GC after releasing")
    pressure.set_defaults(handler=cmd_pressure)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the memtop command."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        args = parser.parse_args([*(argv if argv is not None else sys.argv[1:]), "tui"])

    if args.log_file:
        logging.basicConfig(level=args.log_level, filename=args.log_file)
    elif args.command == "tui":
        logging.basicConfig(level=args.log_level, handlers=[TextualHandler()])
    else:
        logging.basicConfig(level=args.log_level)

    source = MetricSource(PsutilProvider(trace_heap=not args.no_heap_trace))
    try:
        return args.handler(args, source)
    except MemtopError as exc:
        logger.debug("%s command failed", args.command, exc_info=True)
        print(f"memtop: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
