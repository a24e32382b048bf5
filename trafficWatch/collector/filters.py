"""Hot-reloadable ignore lists and host map."""
from __future__ import annotations

import re
import time
from pathlib import Path
from typing import Dict, List, Optional, Pattern, Tuple

from pydantic import BaseModel, ConfigDict, Field

from trafficWatch.logging_config import get_logger

logger = get_logger("reloader")

DEFAULT_RELOAD_INTERVAL = 10.0


def _read_lines(path: Optional[str]) -> List[str]:
    if not path:
        return []
    try:
        with Path(path).open("r", encoding="utf-8", errors="replace") as fh:
            return fh.read().splitlines()
    except OSError as exc:
        logger.debug(
            f"Filter file unreadable, treating as empty: {exc}",
            extra={"path": path, "error_type": type(exc).__name__},
        )
        return []


def load_patterns(path: Optional[str]) -> List[str]:
    """Return trimmed, non-blank, non-comment lines of a pattern file."""
    patterns = []
    for line in _read_lines(path):
        trimmed = line.strip()
        if trimmed and not trimmed.startswith("#"):
            patterns.append(trimmed)
    return patterns


def load_host_map(path: Optional[str]) -> Dict[str, str]:
    """Parse `IP Hostname` lines; lines with fewer than two tokens are skipped."""
    hosts: Dict[str, str] = {}
    for line in _read_lines(path):
        parts = line.split()
        if len(parts) < 2 or parts[0].startswith("#"):
            continue
        hosts[parts[0]] = parts[1]
    return hosts


def compile_patterns(patterns: List[str]) -> Tuple[Pattern[str], ...]:
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as exc:
            logger.warning(
                f"Skipping invalid ignore pattern: {exc}",
                extra={"pattern": pattern, "outcome": "skipped"},
            )
    return tuple(compiled)


class FilterSnapshot(BaseModel):
    """Immutable view of the ignore lists and host map for one reload cycle."""
    ignore_domains: Tuple[Pattern[str], ...] = ()
    ignore_clients: Tuple[Pattern[str], ...] = ()
    hosts: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @classmethod
    def from_patterns(
        cls,
        ignore_domains: Optional[List[str]] = None,
        ignore_clients: Optional[List[str]] = None,
        hosts: Optional[Dict[str, str]] = None,
    ) -> "FilterSnapshot":
        return cls(
            ignore_domains=compile_patterns(ignore_domains or []),
            ignore_clients=compile_patterns(ignore_clients or []),
            hosts=dict(hosts or {}),
        )

    def domain_ignored(self, domain: str) -> bool:
        return any(p.search(domain) for p in self.ignore_domains)

    def client_ignored(self, client_ip: str) -> bool:
        return any(p.search(client_ip) for p in self.ignore_clients)

    def hostname(self, ip: str) -> Optional[str]:
        return self.hosts.get(ip)


class ConfigReloader:
    """Re-reads the filter files on a fixed cadence driven by record processing."""

    def __init__(
        self,
        ignore_domains_path: Optional[str],
        ignore_clients_path: Optional[str],
        hosts_map_path: Optional[str],
        *,
        interval: float = DEFAULT_RELOAD_INTERVAL,
    ) -> None:
        self.ignore_domains_path = ignore_domains_path
        self.ignore_clients_path = ignore_clients_path
        self.hosts_map_path = hosts_map_path
        self.interval = interval
        self.snapshot = FilterSnapshot()
        self.last_reload: Optional[float] = None

    def reload(self) -> FilterSnapshot:
        """Read all three files into a new snapshot and swap it in."""
        snapshot = FilterSnapshot.from_patterns(
            ignore_domains=load_patterns(self.ignore_domains_path),
            ignore_clients=load_patterns(self.ignore_clients_path),
            hosts=load_host_map(self.hosts_map_path),
        )
        self.snapshot = snapshot
        logger.debug(
            "Filter snapshot reloaded",
            extra={
                "action": "reload",
                "ignore_domains": len(snapshot.ignore_domains),
                "ignore_clients": len(snapshot.ignore_clients),
                "hosts": len(snapshot.hosts),
            },
        )
        return snapshot

    def due(self, now: float) -> bool:
        return self.last_reload is None or now - self.last_reload >= self.interval

    def maybe_reload(self, now: Optional[float] = None) -> FilterSnapshot:
        """Reload when at least `interval` has passed since the last reload."""
        now = time.time() if now is None else now
        if self.due(now):
            self.reload()
            self.last_reload = now
        return self.snapshot
