"""Domain correlator: joins DNS hints with the TLS/HTTP connection that used them."""
from __future__ import annotations

import math
import re
import time
from typing import Callable, Dict, List, Optional, Pattern

from trafficWatch.collector.filters import ConfigReloader, FilterSnapshot
from trafficWatch.collector.models import CaptureRecord, PendingDnsEntry, ResolvedEvent, SourceKind
from trafficWatch.collector.output import append_line, ensure_parent_dir, format_log_line
from trafficWatch.logging_config import get_logger

logger = get_logger("domains")

GROUP_WINDOW = 5.0
FLOOD_WINDOW = 1.0
# 9999-12-31 00:00 UTC; later values overflow datetime in some local zones
MAX_PACKET_TIME = 253402214400.0


def parse_packet_time(raw: str, now: float) -> float:
    """Epoch seconds from the capture, or `now` when missing or out of range."""
    try:
        value = float(raw)
    except ValueError:
        return now
    if not math.isfinite(value) or not 0 <= value <= MAX_PACKET_TIME:
        return now
    return value


def parse_capture_line(line: str, now: float) -> Optional[CaptureRecord]:
    """Split a tshark field line; fewer than three fields yields None."""
    fields = line.rstrip("\r\n").split("\t")
    if len(fields) < 3:
        return None
    packet_time = parse_packet_time(fields[0], now)
    extra = fields[3:6] + [""] * (6 - len(fields))
    return CaptureRecord(
        packet_time=packet_time,
        src_ip=fields[1],
        dst_ip=fields[2],
        dns_name=extra[0],
        tls_sni=extra[1],
        http_host=extra[2],
    )


def classify_endpoints(src: str, dst: str, lan: Pattern[str]) -> Optional[tuple]:
    """Return (client, remote); src wins when both are on the LAN."""
    src_lan = lan.search(src) is not None
    dst_lan = lan.search(dst) is not None
    if src_lan:
        return src, dst
    if dst_lan:
        return dst, src
    return None


class DomainCorrelator:
    """Per-pipeline state for the domain log.

    Owns the pending-DNS cache and the flood-control cache. Records are fed
    one line at a time through `process_line`; every expiry decision is
    made against the packet time of the record being processed.
    """

    def __init__(
        self,
        *,
        lan_regex: str,
        gateway_ip: str,
        log_file: str,
        reloader: ConfigReloader,
        group_window: float = GROUP_WINDOW,
        flood_window: float = FLOOD_WINDOW,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.lan = re.compile(lan_regex)
        self.gateway_ip = gateway_ip
        self.log_file = log_file
        self.reloader = reloader
        self.group_window = group_window
        self.flood_window = flood_window
        self.clock = clock
        self._pending: Dict[tuple, PendingDnsEntry] = {}
        # No eviction: one entry per distinct tuple ever emitted.
        self._last_emitted: Dict[tuple, float] = {}
        self.stats = {"lines": 0, "emitted": 0, "delayed": 0, "suppressed": 0, "discarded": 0}
        ensure_parent_dir(log_file)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def flood_keys(self) -> int:
        return len(self._last_emitted)

    def _resolve(self, record: CaptureRecord, snapshot: FilterSnapshot) -> Optional[ResolvedEvent]:
        picked = record.indicator()
        if picked is None:
            return None
        domain, source = picked
        if snapshot.domain_ignored(domain):
            return None
        endpoints = classify_endpoints(record.src_ip, record.dst_ip, self.lan)
        if endpoints is None:
            return None
        client, remote = endpoints
        if snapshot.client_ignored(client):
            return None
        return ResolvedEvent(
            timestamp=record.packet_time,
            domain=domain,
            source_kind=source,
            client_ip=client,
            remote_ip=remote,
        )

    def _write(self, line: str) -> str:
        append_line(self.log_file, line)
        return line

    def sweep_expired(self, packet_time: float, snapshot: FilterSnapshot) -> List[str]:
        """Emit a delayed line for every pending DNS entry older than the window."""
        expired = [
            key for key, entry in self._pending.items()
            if packet_time - entry.timestamp > self.group_window
        ]
        lines = []
        for key in expired:
            entry = self._pending.pop(key)
            client_ip, domain = key
            lines.append(self._write(format_log_line(
                entry.timestamp, client_ip, domain, entry.remote_ip,
                SourceKind.DNS, snapshot.hosts, delayed=True,
            )))
            self.stats["delayed"] += 1
            logger.debug(
                "Unconfirmed DNS query emitted",
                extra={"client_ip": client_ip, "domain": domain, "delayed": True},
            )
        return lines

    def _track_pending(self, event: ResolvedEvent) -> bool:
        """Apply the pending-DNS transition; True when the event was held back."""
        if event.source_kind is SourceKind.DNS:
            if event.remote_ip == self.gateway_ip:
                self._pending[event.pending_key] = PendingDnsEntry(
                    timestamp=event.timestamp, remote_ip=event.remote_ip,
                )
                return True
            return False
        self._pending.pop(event.pending_key, None)
        return False

    def _flooding(self, event: ResolvedEvent) -> bool:
        last = self._last_emitted.get(event.flood_key)
        if last is not None and event.timestamp - last <= self.flood_window:
            return True
        self._last_emitted[event.flood_key] = event.timestamp
        return False

    def process_line(self, line: str, now: Optional[float] = None) -> List[str]:
        """Process one capture line and return the log lines written for it."""
        now = self.clock() if now is None else now
        self.stats["lines"] += 1
        snapshot = self.reloader.maybe_reload(now)

        record = parse_capture_line(line, now)
        event = self._resolve(record, snapshot) if record is not None else None
        if event is None:
            self.stats["discarded"] += 1
            return []

        lines = self.sweep_expired(event.timestamp, snapshot)

        if self._track_pending(event):
            return lines

        if self._flooding(event):
            self.stats["suppressed"] += 1
            return lines

        lines.append(self._write(format_log_line(
            event.timestamp, event.client_ip, event.domain, event.remote_ip,
            event.source_kind, snapshot.hosts,
        )))
        self.stats["emitted"] += 1
        return lines
