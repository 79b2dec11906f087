# ham.py
"""
HAM - Heuristic Adaptive Monitor.

CLI:
  ham scan    [--config ./ham.yaml] [--log-file ./ham.log]   live dashboard (default)
  ham analyze [--timeout 3]                                  one-shot network report
  ham export  json|yaml|qr [--config ./ham.yaml]             dump effective config
  ham check   [--config ./ham.yaml]                          binaries + catalog summary
"""
from __future__ import annotations

import asyncio
import logging
import shutil
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler

from ham_analyzer import EXPORT_FORMATS, export_config, run_analyze
from ham_probe import ScanConfig, __version__, load_config
from ham_tui import ProberError, ScanSession, TerminalError

app = typer.Typer(add_completion=False, help="HAM - Heuristic Adaptive Monitor")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(verbose: bool = False, log_file: Optional[str] = None, interactive: bool = False) -> None:
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else (logging.INFO if log_file else logging.WARNING))

    # Prevent duplicate handlers if invoked twice in one process
    if any(getattr(h, "_ham", False) for h in root.handlers):
        return

    if log_file:
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
    elif interactive:
        # the live screen owns the terminal
        handler = logging.NullHandler()
    else:
        handler = RichHandler(console=Console(stderr=True), show_path=False)
    handler._ham = True  # type: ignore[attr-defined]
    root.addHandler(handler)


def _load_or_exit(config: Optional[str]) -> ScanConfig:
    try:
        return load_config(config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        typer.secho(f"Config error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Live scan by default; see subcommands for one-shot reports."""
    if ctx.invoked_subcommand is None:
        scan(config=None, log_file=None, verbose=False)


@app.command()
def scan(config: Optional[str] = typer.Option(None, help="Path to ham.yaml"),
         log_file: Optional[str] = typer.Option(None, help="Write logs to this file"),
         verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    """Live scan of protocol availability."""
    setup_logging(verbose, log_file, interactive=True)
    cfg = _load_or_exit(config)
    try:
        ScanSession(cfg).run()
    except TerminalError as e:
        typer.secho(f"Cannot start live scan: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    except ProberError as e:
        typer.secho(f"Live scan aborted: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


@app.command()
def analyze(timeout: float = typer.Option(3.0, help="Per-test timeout seconds"),
            verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    """Analyze network conditions."""
    setup_logging(verbose)
    asyncio.run(run_analyze(timeout))


@app.command()
def export(fmt: str = typer.Argument(..., metavar="FORMAT", help="json, yaml or qr"),
           config: Optional[str] = typer.Option(None, help="Path to ham.yaml")):
    """Export the effective configuration."""
    cfg = _load_or_exit(config)
    fmt = fmt.lower()
    if fmt == "qr":
        typer.echo("QR code export not yet implemented.")
        typer.echo("Would contain bridge/tunnel configuration for sharing.")
        return
    if fmt not in EXPORT_FORMATS:
        typer.secho(f"Unsupported format: {fmt}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)
    typer.echo(export_config(cfg, fmt))


@app.command()
def check(config: Optional[str] = typer.Option(None, help="Path to ham.yaml")):
    """Check presence of helper binaries and print config summary."""
    cfg = _load_or_exit(config)
    ping_ok = shutil.which("ping")
    ip_ok = shutil.which("ip")
    typer.echo(f"ham {__version__}")
    typer.echo(f"ping present: {'yes' if ping_ok else 'NO'}")
    typer.echo(f"ip present: {'yes' if ip_ok else 'NO'}")
    typer.echo(f"Probes: {len(cfg.probes)} | probe interval: {cfg.probe_interval_secs}s | "
               f"redraw: {cfg.redraw_interval_secs}s | poll: {cfg.poll_interval_secs}s")
    for p in cfg.probes:
        typer.echo(f"  {p.name:<10} {p.kind:<6} {p.target} ({p.timeout_secs}s)")


if __name__ == "__main__":
    app()
