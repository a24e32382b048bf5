"""Formatting and best-effort writers for the correlation log and byte snapshot."""
from __future__ import annotations

import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from trafficWatch.collector.models import BytesSnapshot, SourceKind
from trafficWatch.logging_config import get_logger

logger = get_logger("output")

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_ts(ts: float) -> str:
    """Local wall time of the whole second, e.g. `2025-01-31 18:04:05`."""
    return datetime.fromtimestamp(int(ts)).strftime(TIME_FORMAT)


def resolve_client_name(ip: str, hosts: Dict[str, str]) -> str:
    return f"{ip} ({hosts.get(ip, ip)})"


def format_log_line(
    ts: float,
    client_ip: str,
    domain: str,
    remote_ip: str,
    source: SourceKind,
    hosts: Dict[str, str],
    *,
    delayed: bool = False,
) -> str:
    client = resolve_client_name(client_ip, hosts)
    if delayed:
        target = f"{domain} (via DNS: {remote_ip})"
    else:
        target = f"{domain} ({remote_ip})"
    return f"[+] {format_ts(ts)} | {client} → {target} | fonte={source.value}\n"


def ensure_parent_dir(path: str) -> None:
    parent = Path(path).parent
    try:
        parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning(
            f"Could not create output directory: {exc}",
            extra={"path": str(parent), "error_type": type(exc).__name__},
        )


def append_line(path: str, line: str) -> bool:
    """Append one complete line. Failures are logged and swallowed."""
    try:
        with open(path, "a", encoding="utf-8") as fh:
            fh.write(line)
        return True
    except OSError as exc:
        logger.warning(
            f"Correlation log append failed: {exc}",
            extra={"path": path, "outcome": "error", "error_type": type(exc).__name__},
        )
        return False


def write_snapshot(path: str, snapshot: BytesSnapshot) -> bool:
    """Replace `path` with the serialized snapshot via a temp file and rename."""
    payload = snapshot.model_dump_json(exclude_none=True)
    directory = os.path.dirname(path) or "."
    tmp_name: Optional[str] = None
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=".traffic-bytes-", suffix=".tmp", dir=directory)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(payload)
        # mkstemp creates 0600; the reporting side reads as another user
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, path)
        return True
    except OSError as exc:
        logger.warning(
            f"Byte snapshot write failed: {exc}",
            extra={"path": path, "outcome": "error", "error_type": type(exc).__name__},
        )
        if tmp_name and os.path.exists(tmp_name):
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
        return False
