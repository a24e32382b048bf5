"""Data models for capture records, correlation state and byte counters."""
from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class SourceKind(str, Enum):
    DNS = "DNS"
    TLS = "TLS"
    HTTP = "HTTP"


class CaptureRecord(BaseModel):
    """One tab-separated line from the tshark field stream."""
    packet_time: float
    src_ip: str
    dst_ip: str
    dns_name: str = ""
    tls_sni: str = ""
    http_host: str = ""

    model_config = ConfigDict(extra="ignore")

    def indicator(self) -> Optional[tuple]:
        """Return (domain, source) by priority DNS > TLS > HTTP, or None."""
        if self.dns_name:
            return self.dns_name, SourceKind.DNS
        if self.tls_sni:
            return self.tls_sni, SourceKind.TLS
        if self.http_host:
            return self.http_host, SourceKind.HTTP
        return None


class ResolvedEvent(BaseModel):
    """A capture record with its domain selected and endpoints classified."""
    timestamp: float
    domain: str
    source_kind: SourceKind
    client_ip: str
    remote_ip: str

    model_config = ConfigDict(frozen=True)

    @property
    def pending_key(self) -> tuple:
        return (self.client_ip, self.domain)

    @property
    def flood_key(self) -> tuple:
        return (self.client_ip, self.domain, self.remote_ip, self.source_kind)


class PendingDnsEntry(BaseModel):
    """DNS query to the gateway waiting for a confirming TLS/HTTP connection."""
    timestamp: float
    remote_ip: str


class ClientByteCounters(BaseModel):
    """Lifetime byte accumulators for one LAN client."""
    bytes_in: int = 0
    bytes_out: int = 0
    bytes_total: int = 0
    last_seen_any: float = 0.0
    last_seen_out: float = 0.0


class ClientSnapshot(BaseModel):
    """Per-client entry of the JSON byte snapshot."""
    bytes_in: int
    bytes_out: int
    bytes_total: int
    mb_in: float
    mb_out: float
    mb_total: float
    last_seen_any: Optional[str] = None
    last_seen_out: Optional[str] = None
    hostname: Optional[str] = None


class BytesSnapshot(BaseModel):
    """Root of the JSON byte snapshot file."""
    updated_at: str
    clients: Dict[str, ClientSnapshot] = Field(default_factory=dict)
