#!/usr/bin/env python3
"""
HAM analyzer - one-shot network condition report and config export.

analyze: default route, reachability of public resolvers, DNS-based
censorship check over a few well known domains.
export: dump the effective scan config as JSON or YAML.
"""
from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from typing import List, Optional, Tuple

import typer
import yaml

from ham_probe import SCORE_OK, ScanConfig, __version__, dns_probe, tcp_probe

logger = logging.getLogger(__name__)

RESOLVERS = [
    ("Google DNS", "8.8.8.8:53"),
    ("Cloudflare DNS", "1.1.1.1:53"),
    ("OpenDNS", "208.67.222.222:53"),
]
CENSORSHIP_DOMAINS = ["google.com", "facebook.com", "twitter.com", "youtube.com"]

EXPORT_FORMATS = ("json", "yaml")


def reachability(score: int) -> Tuple[str, str]:
    """Return (label, color) for a resolver reachability score."""
    if score > 7:
        return "Reachable", typer.colors.GREEN
    if score > 3:
        return "Limited", typer.colors.YELLOW
    return "Blocked", typer.colors.RED


def censorship_verdict(accessible: int, total: int) -> Tuple[str, str]:
    ratio = accessible / total if total else 0.0
    if ratio > 0.8:
        return "Network appears uncensored", typer.colors.GREEN
    if ratio > 0.5:
        return "Partial censorship detected", typer.colors.YELLOW
    return "Heavy censorship likely", typer.colors.RED


async def has_default_route() -> Optional[bool]:
    """True/False from `ip route show default`; None when it cannot be checked."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "ip", "route", "show", "default",
            stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.DEVNULL,
        )
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=5)
    except (OSError, asyncio.TimeoutError):
        return None
    if proc.returncode != 0:
        return None
    return bool(stdout.decode(errors="ignore").strip())


async def check_resolvers(timeout: float) -> List[Tuple[str, int]]:
    results = []
    for name, addr in RESOLVERS:
        results.append((name, await tcp_probe(addr, timeout)))
    return results


async def check_domains(timeout: float) -> List[Tuple[str, bool]]:
    results = []
    for domain in CENSORSHIP_DOMAINS:
        results.append((domain, await dns_probe(domain, timeout) == SCORE_OK))
    return results


async def run_analyze(timeout: float = 3.0) -> None:
    typer.secho("HAM Network Analysis", fg=typer.colors.CYAN, bold=True)
    typer.echo("Analyzing network conditions...\n")

    typer.secho("📊 Network Interface Status:", fg=typer.colors.YELLOW)
    route = await has_default_route()
    if route is None:
        typer.secho("   ? Could not check routing table", fg=typer.colors.YELLOW)
    elif route:
        typer.secho("   ✓ Default route found", fg=typer.colors.GREEN)
    else:
        typer.secho("   ✗ No default route", fg=typer.colors.RED)

    typer.secho("\n🔍 Connectivity Tests:", fg=typer.colors.YELLOW)
    for name, score in await check_resolvers(timeout):
        label, color = reachability(score)
        mark = {"Reachable": "✓", "Limited": "⚠"}.get(label, "✗")
        typer.secho(f"   {mark} {name} - {label}", fg=color)

    typer.secho("\n🛡️  Censorship Detection:", fg=typer.colors.YELLOW)
    typer.echo("   🔍 Testing for common censorship patterns...")
    domains = await check_domains(timeout)
    for domain, ok in domains:
        if ok:
            typer.secho(f"   ✓ {domain} - DNS resolves", fg=typer.colors.GREEN)
        else:
            typer.secho(f"   ✗ {domain} - DNS blocked", fg=typer.colors.RED)
    verdict, color = censorship_verdict(sum(1 for _d, ok in domains if ok), len(domains))
    typer.secho(f"   📊 {verdict}", fg=color)
    logger.info("analysis finished: %s", verdict)


def config_document(cfg: ScanConfig) -> dict:
    return {
        "ham_config": {
            "version": __version__,
            "scan_intervals": cfg.probe_interval_secs,
            "redraw_interval": cfg.redraw_interval_secs,
            "poll_interval": cfg.poll_interval_secs,
            "test_endpoints": [p.target for p in cfg.probes],
            "protocols": sorted({p.kind for p in cfg.probes}),
            "probes": [dataclasses.asdict(p) for p in cfg.probes],
        }
    }


def export_config(cfg: ScanConfig, fmt: str) -> str:
    doc = config_document(cfg)
    if fmt == "json":
        return json.dumps(doc, indent=2)
    if fmt == "yaml":
        return yaml.safe_dump(doc, sort_keys=False)
    raise ValueError(f"Unsupported format: {fmt}")
