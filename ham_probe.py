# ham_probe.py
"""
HAM probes - the measuring side of the scanner.

- Loads the YAML scan config (intervals + probe catalog)
- Async probe functions for TCP, HTTPS, DNS, ICMP ping and UDP, each bounded
  by its own timeout and returning a 0-10 score instead of raising
- Prober: walks the catalog in order, writes scores into the StatusTable,
  sleeps, repeats until the RunState is stopped
- ProberThread: hosts the Prober's event loop next to the dashboard thread

Requirements (see pyproject.toml):
  PyYAML
  httpx
"""
from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import math
import random
import struct
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import httpx
import yaml

from ham_status import RunState, StatusTable, clamp_score, classify_band

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

SCORE_OK = 10
SCORE_DEGRADED = 5
SCORE_FAILED = 0
SCORE_CONNECT_TIMEOUT = 2  # connection-style probe got no answer at all
SCORE_REQUEST_TIMEOUT = 1  # request-style probe got no answer at all

UDP_QUERY_NAME = "google.com"

# -------------------------
# Config models (lightweight)
# -------------------------

@dataclass
class ProbeTarget:
    name: str
    kind: str
    target: str
    detail: str = ""
    timeout_secs: float = 3.0


def default_probes() -> List[ProbeTarget]:
    return [
        ProbeTarget("TCP:80", "tcp", "www.google.com:80", "HTTP connectivity", 3.0),
        ProbeTarget("TCP:443", "https", "https://www.google.com", "HTTPS connectivity", 5.0),
        ProbeTarget("DNS", "dns", "google.com", "Domain resolution", 3.0),
        ProbeTarget("PING", "ping", "8.8.8.8", "ICMP connectivity", 2.0),
        ProbeTarget("UDP", "udp", "8.8.8.8:53", "UDP connectivity", 2.0),
    ]


@dataclass
class ScanConfig:
    probe_interval_secs: float = 2.0
    redraw_interval_secs: float = 0.5
    poll_interval_secs: float = 0.1
    shutdown_grace_secs: float = 5.0
    probes: List[ProbeTarget] = dataclasses.field(default_factory=default_probes)


def _positive(raw: dict, key: str, default: float) -> float:
    try:
        val = float(raw.get(key, default))
    except (TypeError, ValueError):
        raise ValueError(f"Config key {key} must be a number, got {raw.get(key)!r}")
    if val <= 0:
        raise ValueError(f"Config key {key} must be > 0, got {val}")
    return val


def _check_target(name: str, kind: str, target: str) -> None:
    """Reject targets the probe of that kind could never reach."""
    if kind in ("tcp", "udp"):
        try:
            host, _port = split_host_port(target, default_port=53 if kind == "udp" else None)
        except ValueError as e:
            raise ValueError(f"Invalid target for {name}: {e}") from None
        if not host:
            raise ValueError(f"Invalid target for {name}: {target!r} has no host")
    elif kind == "https":
        try:
            url = httpx.URL(target)
        except httpx.InvalidURL as e:
            raise ValueError(f"Invalid target for {name}: {e}") from None
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError(f"Invalid target for {name}: {target!r} must be an http(s) URL")
    elif not target.strip():
        raise ValueError(f"Invalid target for {name}: empty")


def load_config(path: Optional[str]) -> ScanConfig:
    """Load a scan config from YAML; no path means the built-in defaults."""
    if not path:
        return ScanConfig()
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")

    probes = default_probes()
    if "probes" in raw:
        probes = []
        seen = set()
        for p in raw["probes"] or []:
            for k in ("name", "kind", "target"):
                if k not in p:
                    raise ValueError(f"Probe missing key {k}: {p}")
            kind = str(p["kind"]).lower()
            if kind not in PROBE_KINDS:
                raise ValueError(f"Invalid kind '{kind}' for probe {p['name']}")
            name = str(p["name"])
            if name in seen:
                raise ValueError(f"Duplicate probe name: {name}")
            seen.add(name)
            target = str(p["target"])
            _check_target(name, kind, target)
            probes.append(ProbeTarget(
                name=name,
                kind=kind,
                target=target,
                detail=str(p.get("detail", "")),
                timeout_secs=_positive(p, "timeout_secs", 3.0),
            ))
        if not probes:
            raise ValueError("Config key probes must list at least one probe")

    cfg = ScanConfig(
        probe_interval_secs=_positive(raw, "probe_interval_secs", 2.0),
        redraw_interval_secs=_positive(raw, "redraw_interval_secs", 0.5),
        poll_interval_secs=_positive(raw, "poll_interval_secs", 0.1),
        shutdown_grace_secs=_positive(raw, "shutdown_grace_secs", 5.0),
        probes=probes,
    )
    if not (cfg.poll_interval_secs < cfg.redraw_interval_secs < cfg.probe_interval_secs):
        logger.warning(
            "Intervals should satisfy poll < redraw < probe (got %.3fs / %.3fs / %.3fs)",
            cfg.poll_interval_secs, cfg.redraw_interval_secs, cfg.probe_interval_secs,
        )
    return cfg


# -------------------------
# Probe functions
# -------------------------

def split_host_port(target: str, default_port: Optional[int] = None) -> Tuple[str, int]:
    host, sep, port = target.rpartition(":")
    if not sep or "]" in port:
        if default_port is None:
            raise ValueError(f"Target {target!r} needs a port")
        host, port = target, str(default_port)
    host = host.strip("[]")
    return host, int(port)


async def tcp_probe(target: str, timeout: float) -> int:
    host, port = split_host_port(target)
    try:
        _reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except asyncio.TimeoutError:
        return SCORE_CONNECT_TIMEOUT
    except OSError:
        return SCORE_FAILED
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()
    return SCORE_OK


async def https_probe(target: str, timeout: float, transport: Optional[httpx.AsyncBaseTransport] = None) -> int:
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=True) as client:
            response = await asyncio.wait_for(client.get(target), timeout=timeout)
    except (asyncio.TimeoutError, httpx.TimeoutException):
        return SCORE_REQUEST_TIMEOUT
    except httpx.HTTPError:
        return SCORE_FAILED
    if response.is_success:
        return SCORE_OK
    return SCORE_DEGRADED


async def dns_probe(target: str, timeout: float) -> int:
    loop = asyncio.get_running_loop()
    try:
        infos = await asyncio.wait_for(loop.getaddrinfo(target, None), timeout=timeout)
    except asyncio.TimeoutError:
        return SCORE_CONNECT_TIMEOUT
    except OSError:  # socket.gaierror included
        return SCORE_FAILED
    return SCORE_OK if infos else SCORE_FAILED


async def ping_probe(target: str, timeout: float) -> int:
    deadline = max(1, int(math.ceil(timeout)))
    cmd = ["ping", "-n", "-c", "1", "-w", str(deadline), target]
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd, stdout=asyncio.subprocess.DEVNULL, stderr=asyncio.subprocess.DEVNULL
        )
    except OSError:  # FileNotFoundError / PermissionError
        return SCORE_FAILED
    try:
        await asyncio.wait_for(proc.wait(), timeout=timeout + 1)
    except asyncio.TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        return SCORE_CONNECT_TIMEOUT
    return SCORE_OK if proc.returncode == 0 else SCORE_FAILED


def build_dns_query(name: str, query_id: Optional[int] = None) -> bytes:
    """Minimal recursive A-record query."""
    if query_id is None:
        query_id = random.randint(0, 0xFFFF)
    header = struct.pack("!HHHHHH", query_id, 0x0100, 1, 0, 0, 0)
    qname = b"".join(bytes([len(label)]) + label.encode("ascii") for label in name.split(".") if label)
    return header + qname + b"\x00" + struct.pack("!HH", 1, 1)


class _DatagramReply(asyncio.DatagramProtocol):
    def __init__(self, loop: asyncio.AbstractEventLoop):
        self.reply: asyncio.Future = loop.create_future()

    def datagram_received(self, data: bytes, addr) -> None:
        if not self.reply.done():
            self.reply.set_result(data)

    def error_received(self, exc: Exception) -> None:
        if not self.reply.done():
            self.reply.set_exception(exc)


async def udp_probe(target: str, timeout: float) -> int:
    host, port = split_host_port(target, default_port=53)
    loop = asyncio.get_running_loop()
    try:
        transport, protocol = await asyncio.wait_for(
            loop.create_datagram_endpoint(lambda: _DatagramReply(loop), remote_addr=(host, port)),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        return SCORE_CONNECT_TIMEOUT
    except OSError:
        return SCORE_FAILED
    try:
        transport.sendto(build_dns_query(UDP_QUERY_NAME))
        await asyncio.wait_for(protocol.reply, timeout=timeout)
    except asyncio.TimeoutError:
        return SCORE_CONNECT_TIMEOUT
    except OSError:  # ICMP port unreachable surfaces as ConnectionRefusedError
        return SCORE_FAILED
    finally:
        transport.close()
    return SCORE_OK


ProbeFunc = Callable[[str, float], Awaitable[int]]

PROBE_KINDS: Dict[str, ProbeFunc] = {
    "tcp": tcp_probe,
    "https": https_probe,
    "dns": dns_probe,
    "ping": ping_probe,
    "udp": udp_probe,
}


# -------------------------
# Catalog
# -------------------------

@dataclass(frozen=True)
class ProbeSpec:
    name: str
    probe: ProbeFunc
    target: str = ""
    timeout: float = 3.0
    detail: str = ""

    async def run(self) -> int:
        return await self.probe(self.target, self.timeout)


def build_catalog(cfg: ScanConfig) -> List[ProbeSpec]:
    return [
        ProbeSpec(name=p.name, probe=PROBE_KINDS[p.kind], target=p.target, timeout=p.timeout_secs, detail=p.detail)
        for p in cfg.probes
    ]


# -------------------------
# Prober
# -------------------------

class Prober:
    """Sequentially runs every probe in catalog order, forever, until stopped."""

    def __init__(self, catalog: Sequence[ProbeSpec], table: StatusTable, run_state: RunState,
                 interval: float = 2.0, tick: float = 0.1):
        self.catalog = list(catalog)
        self.table = table
        self.run_state = run_state
        self.interval = interval
        self.tick = min(tick, interval)

    async def probe_once(self, spec: ProbeSpec) -> int:
        try:
            raw = await spec.run()
        except Exception:
            logger.warning("probe %s raised; recording as failed", spec.name, exc_info=True)
            return SCORE_FAILED
        try:
            score = clamp_score(raw)
        except (TypeError, ValueError):
            logger.warning("probe %s returned non-numeric %r; recording as failed", spec.name, raw)
            return SCORE_FAILED
        logger.debug("probe %s (%s): %d %s", spec.name, spec.target, score, classify_band(score).label)
        return score

    async def run_cycle(self) -> bool:
        """One pass over the catalog. Returns False if stopped part-way."""
        for spec in self.catalog:
            if not self.run_state.running:
                return False
            score = await self.probe_once(spec)
            self.table.update(spec.name, score, spec.detail)
        self.table.mark_cycle()
        return True

    async def sleep_interval(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.interval
        while self.run_state.running:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            await asyncio.sleep(min(remaining, self.tick))

    async def run(self) -> None:
        logger.info("prober starting with %d probes every %.2fs", len(self.catalog), self.interval)
        while self.run_state.running:
            await self.run_cycle()
            await self.sleep_interval()
        logger.info("prober stopped after %d cycles", self.table.cycles)


class ProberThread(threading.Thread):
    """Runs a Prober on its own event loop so the dashboard keeps the main thread."""

    def __init__(self, prober: Prober):
        super().__init__(name="ham-prober", daemon=True)
        self.prober = prober
        self.error: Optional[BaseException] = None

    def run(self) -> None:
        try:
            asyncio.run(self.prober.run())
        except Exception as e:
            self.error = e
            logger.exception("prober thread crashed")
            self.prober.run_state.stop()
