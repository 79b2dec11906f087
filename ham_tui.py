# ham_tui.py
"""
HAM live dashboard - terminal side of the scanner.

- RawTerminal: cbreak-mode stdin with bounded single-key reads
- Dashboard: redraws the StatusTable with rich and polls for 'q' / Esc
- ScanSession: owns one scan (table, prober thread, dashboard, teardown)

Press 'q' or Esc to quit; Ctrl-C and SIGTERM also stop the scan.

Requirements:
  rich
"""
from __future__ import annotations

import contextlib
import enum
import logging
import os
import select
import signal
import sys
import time
from typing import Callable, Iterator, List, Optional, Sequence

from rich.console import Console, Group
from rich.live import Live
from rich.text import Text

from ham_probe import ProbeSpec, Prober, ProberThread, ScanConfig, build_catalog
from ham_status import BAND_STYLES, RunState, StatusTable, render_bar

logger = logging.getLogger(__name__)
console = Console()

TITLE = "HAM - Network Protocol Scanner"
HINT = "Press 'q' or Esc to quit"
COMPLETION_MESSAGE = "HAM scan completed."

ESC = "\x1b"

KeyReader = Callable[[float], Optional[str]]


class TerminalError(RuntimeError):
    """The terminal could not be put into raw mode."""


class ProberError(RuntimeError):
    """The background prober died before the session was cancelled."""


def is_cancel_key(key: Optional[str]) -> bool:
    if not key:
        return False
    return key == ESC or key.lower() == "q"


# --------------------
# Terminal boundary
# --------------------

class RawTerminal:
    """Puts stdin in cbreak mode for the lifetime of the ``with`` block."""

    def __init__(self, stream=None):
        self.stream = stream if stream is not None else sys.stdin
        self._fd: Optional[int] = None
        self._saved = None

    def __enter__(self) -> "RawTerminal":
        try:
            fd = self.stream.fileno()
        except (AttributeError, ValueError, OSError) as e:
            raise TerminalError("stdin has no file descriptor") from e
        if not os.isatty(fd):
            raise TerminalError("stdin is not a terminal")
        try:
            import termios
            import tty
        except ImportError as e:
            raise TerminalError("raw terminal mode needs a POSIX terminal (termios)") from e
        try:
            self._saved = termios.tcgetattr(fd)
            tty.setcbreak(fd)
        except termios.error as e:
            raise TerminalError(f"cannot enter raw mode: {e}") from e
        self._fd = fd
        return self

    def __exit__(self, *exc) -> None:
        if self._fd is None or self._saved is None:
            return
        import termios
        termios.tcsetattr(self._fd, termios.TCSADRAIN, self._saved)
        self._fd = None
        self._saved = None

    def _ready(self, timeout: float) -> bool:
        return bool(select.select([self._fd], [], [], timeout)[0])

    def read_key(self, timeout: float) -> Optional[str]:
        """Return one keystroke, or None if nothing arrived within timeout."""
        if self._fd is None or not self._ready(timeout):
            return None
        data = os.read(self._fd, 1)
        if not data:
            return None
        if data == ESC.encode():
            # A lone Esc; arrow keys and friends arrive as ESC + more bytes
            tail = b""
            while self._ready(0):
                chunk = os.read(self._fd, 16)
                if not chunk:
                    break
                tail += chunk
            return None if tail else ESC
        return data.decode(errors="ignore")


# --------------------
# Dashboard
# --------------------

class Dashboard:
    """Renders the status table on a fixed cadence until cancelled."""

    def __init__(self, table: StatusTable, run_state: RunState, read_key: KeyReader,
                 out: Optional[Console] = None, redraw_interval: float = 0.5,
                 poll_interval: float = 0.1, screen: bool = True):
        self.table = table
        self.run_state = run_state
        self.read_key = read_key
        self.console = out if out is not None else console
        self.redraw_interval = redraw_interval
        self.poll_interval = min(poll_interval, redraw_interval)
        self.screen = screen
        self.frames = 0

    def render_lines(self) -> List[Text]:
        rows = self.table.snapshot()
        name_width = max([8] + [len(r.name) for r in rows])
        lines = [Text(TITLE, style="bold cyan"), Text(HINT, style="cyan"), Text("")]
        for r in rows:
            band = r.band
            line = f"[{r.name:<{name_width}}] {render_bar(r.score)} {band.label}"
            lines.append(Text(line, style=BAND_STYLES[band]))
        lines.append(Text(""))
        lines.append(Text(f"cycles completed: {self.table.cycles}", style="dim"))
        return lines

    def render(self) -> Group:
        return Group(*self.render_lines())

    def wait_for_cancel(self) -> bool:
        """Poll for input until the next redraw is due. True means stop."""
        deadline = time.monotonic() + self.redraw_interval
        while self.run_state.running:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            key = self.read_key(min(self.poll_interval, remaining))
            if is_cancel_key(key):
                logger.info("cancel key pressed")
                self.run_state.stop()
                return True
        return True

    def run(self) -> None:
        with Live(self.render(), console=self.console, screen=self.screen, auto_refresh=False) as live:
            while self.run_state.running:
                live.update(self.render(), refresh=True)
                self.frames += 1
                if self.wait_for_cancel():
                    break


# --------------------
# Session lifecycle
# --------------------

class SessionState(enum.Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    RUNNING = "running"
    STOPPING = "stopping"


@contextlib.contextmanager
def cancel_on_signals(run_state: RunState) -> Iterator[None]:
    previous = {}

    def _stop(*_):
        run_state.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[sig] = signal.signal(sig, _stop)
        except ValueError:  # only the main thread may install handlers
            pass
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


class ScanSession:
    """One live scan: Idle -> Initializing -> Running -> Stopping -> Idle."""

    def __init__(self, cfg: ScanConfig, catalog: Optional[Sequence[ProbeSpec]] = None,
                 terminal_factory: Callable[[], RawTerminal] = RawTerminal,
                 out: Optional[Console] = None, screen: bool = True):
        self.cfg = cfg
        self.catalog = list(catalog) if catalog is not None else build_catalog(cfg)
        self.terminal_factory = terminal_factory
        self.console = out if out is not None else console
        self.screen = screen
        self.state = SessionState.IDLE
        self.table: Optional[StatusTable] = None
        self.run_state: Optional[RunState] = None
        self.prober_thread: Optional[ProberThread] = None

    def _transition(self, state: SessionState) -> None:
        logger.info("session %s -> %s", self.state.value, state.value)
        self.state = state

    def run(self) -> StatusTable:
        self._transition(SessionState.INITIALIZING)
        table = StatusTable.from_names((s.name for s in self.catalog), (s.detail for s in self.catalog))
        self.table = table
        self.run_state = RunState()
        acquired = False
        try:
            with self.terminal_factory() as terminal:
                acquired = True
                self._run_with_terminal(terminal)
        finally:
            table.close()
            self._transition(SessionState.IDLE)
            if acquired:
                self.console.print(COMPLETION_MESSAGE)
        return table

    def _run_with_terminal(self, terminal: RawTerminal) -> None:
        prober = Prober(self.catalog, self.table, self.run_state, interval=self.cfg.probe_interval_secs)
        thread = ProberThread(prober)
        self.prober_thread = thread
        dashboard = Dashboard(
            self.table, self.run_state, terminal.read_key, out=self.console,
            redraw_interval=self.cfg.redraw_interval_secs,
            poll_interval=self.cfg.poll_interval_secs,
            screen=self.screen,
        )
        with cancel_on_signals(self.run_state):
            thread.start()
            self._transition(SessionState.RUNNING)
            try:
                dashboard.run()
            finally:
                self.run_state.stop()
                self._transition(SessionState.STOPPING)
                thread.join(self.cfg.shutdown_grace_secs)
                if thread.is_alive():
                    logger.warning("prober still inside a probe after %.1fs; leaving it to finish",
                                   self.cfg.shutdown_grace_secs)
        if thread.error is not None:
            raise ProberError("background prober stopped unexpectedly") from thread.error
