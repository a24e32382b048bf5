"""Byte aggregator: per-client traffic counters flushed to a JSON snapshot."""
from __future__ import annotations

import re
import time
from typing import Callable, Dict, Optional

from trafficWatch.collector.filters import ConfigReloader
from trafficWatch.collector.models import BytesSnapshot, ClientByteCounters, ClientSnapshot
from trafficWatch.collector.output import ensure_parent_dir, format_ts, write_snapshot
from trafficWatch.logging_config import get_logger

logger = get_logger("bytes")

FLUSH_INTERVAL = 5.0
MEGABYTE = 1_048_576.0

# tcpdump -n -tt -q output, e.g.
# "1700000000.123456 IP 192.168.1.10.51234 > 8.8.8.8.443: tcp 517"
TCPDUMP_LINE = re.compile(r" IP (\S+) > (\S+): .*? (\d+)$")


def strip_port(address: str) -> str:
    """Drop the trailing `:` and the last dot-separated segment (the port)."""
    clean = address.rstrip(":")
    idx = clean.rfind(".")
    if idx >= 0:
        return clean[:idx]
    return clean


def parse_packet_line(line: str) -> Optional[tuple]:
    """Return (src_ip, dst_ip, size) or None for unmatched/zero-size lines."""
    match = TCPDUMP_LINE.search(line.rstrip("\r\n"))
    if not match:
        return None
    size = int(match.group(3))
    if size == 0:
        return None
    return strip_port(match.group(1)), strip_port(match.group(2)), size


class ByteAggregator:
    """Accumulates byte counters per LAN client and periodically snapshots them."""

    def __init__(
        self,
        *,
        lan_regex: str,
        json_output: str,
        reloader: ConfigReloader,
        flush_interval: float = FLUSH_INTERVAL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.lan = re.compile(lan_regex)
        self.json_output = json_output
        self.reloader = reloader
        self.flush_interval = flush_interval
        self.clock = clock
        self.counters: Dict[str, ClientByteCounters] = {}
        self.last_flush = clock()
        self.stats = {"lines": 0, "discarded": 0}
        ensure_parent_dir(json_output)

    def _counted(self, ip: str) -> bool:
        return self.lan.search(ip) is not None and not self.reloader.snapshot.client_ignored(ip)

    def record(self, src_ip: str, dst_ip: str, size: int, now: float) -> None:
        """Credit `size` bytes to each counted side of one packet."""
        if self._counted(src_ip):
            entry = self.counters.setdefault(src_ip, ClientByteCounters())
            entry.bytes_out += size
            entry.bytes_total += size
            entry.last_seen_any = now
            entry.last_seen_out = now
        if self._counted(dst_ip):
            entry = self.counters.setdefault(dst_ip, ClientByteCounters())
            entry.bytes_in += size
            entry.bytes_total += size
            entry.last_seen_any = now

    def flush_due(self, now: float) -> bool:
        return now - self.last_flush >= self.flush_interval

    def process_line(self, line: str, now: Optional[float] = None, *, flush: bool = True) -> None:
        """Count one tcpdump line; with `flush=False` the caller owns snapshot writes."""
        now = self.clock() if now is None else now
        self.stats["lines"] += 1
        self.reloader.maybe_reload(now)

        parsed = parse_packet_line(line)
        if parsed is None:
            self.stats["discarded"] += 1
        else:
            self.record(*parsed, now=now)

        if flush and self.flush_due(now):
            self.flush(now)

    def snapshot(self, now: Optional[float] = None) -> BytesSnapshot:
        now = self.clock() if now is None else now
        hosts = self.reloader.snapshot.hosts
        clients = {}
        for ip, data in self.counters.items():
            clients[ip] = ClientSnapshot(
                bytes_in=data.bytes_in,
                bytes_out=data.bytes_out,
                bytes_total=data.bytes_total,
                mb_in=data.bytes_in / MEGABYTE,
                mb_out=data.bytes_out / MEGABYTE,
                mb_total=data.bytes_total / MEGABYTE,
                last_seen_any=format_ts(data.last_seen_any) if data.last_seen_any > 0 else None,
                last_seen_out=format_ts(data.last_seen_out) if data.last_seen_out > 0 else None,
                hostname=hosts.get(ip),
            )
        return BytesSnapshot(updated_at=format_ts(now), clients=clients)

    def flush(self, now: Optional[float] = None) -> bool:
        now = self.clock() if now is None else now
        self.last_flush = now
        ok = write_snapshot(self.json_output, self.snapshot(now))
        logger.debug(
            "Byte snapshot flushed",
            extra={"path": self.json_output, "clients": len(self.counters), "outcome": "success" if ok else "error"},
        )
        return ok
