"""Capture line sources (tshark/tcpdump subprocess, replay file)."""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import AsyncIterator, List, Optional, Protocol, Sequence

from trafficWatch.collector.config import CaptureConfig
from trafficWatch.logging_config import get_logger

logger = get_logger("sources")

TSHARK_FIELDS = [
    "frame.time_epoch",
    "ip.src",
    "ip.dst",
    "dns.qry.name",
    "tls.handshake.extensions_server_name",
    "http.host",
]
TSHARK_FILTER = "dns.qry.name or tls.handshake.extensions_server_name or http.host"

# Upper bound on a single capture line
STREAM_LIMIT = 1024 * 1024


class CaptureStartError(RuntimeError):
    """The external capture tool could not be started."""


class LineSource(Protocol):
    def lines(self) -> AsyncIterator[str]:
        ...

    async def close(self) -> None:
        ...


def tshark_command(cfg: CaptureConfig) -> List[str]:
    cmd = [cfg.tshark_path, "-i", cfg.iface, "-n", "-l", "-T", "fields"]
    for field in TSHARK_FIELDS:
        cmd.extend(["-e", field])
    cmd.extend(["-Y", TSHARK_FILTER])
    return cmd


def tcpdump_command(cfg: CaptureConfig) -> List[str]:
    return [cfg.tcpdump_path, "-i", cfg.iface, "-n", "-tt", "-q", "-l", "ip"]


class CaptureProcessSource:
    """Spawn a capture tool and yield its stdout line by line."""

    def __init__(self, cmd: Sequence[str], *, limit: int = STREAM_LIMIT) -> None:
        self.cmd = list(cmd)
        self.limit = limit
        self.process: Optional[asyncio.subprocess.Process] = None

    async def start(self) -> asyncio.subprocess.Process:
        cmd_str = " ".join(self.cmd)
        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                limit=self.limit,
            )
        except OSError as exc:
            logger.error(
                f"Failed to start capture process: {exc}",
                extra={"command": cmd_str, "outcome": "error", "error_type": type(exc).__name__},
            )
            raise CaptureStartError(f"could not start {self.cmd[0]}: {exc}") from exc
        logger.info("Capture process started", extra={"command": cmd_str, "state": "running"})
        return self.process

    async def lines(self) -> AsyncIterator[str]:
        process = self.process or await self.start()
        if process.stdout is None:
            raise CaptureStartError(f"{self.cmd[0]} started without a stdout pipe")
        while True:
            try:
                raw = await process.stdout.readline()
            except (ValueError, asyncio.LimitOverrunError) as exc:
                logger.warning(
                    f"Capture stream error, stopping: {exc}",
                    extra={"command": self.cmd[0], "outcome": "error", "error_type": type(exc).__name__},
                )
                await self.close()
                break
            if not raw:
                break
            yield raw.decode("utf-8", errors="replace")
        exit_code = await process.wait()
        logger.info(
            "Capture process exited",
            extra={"command": self.cmd[0], "exit_code": exit_code, "state": "stopped"},
        )

    async def close(self) -> None:
        if self.process and self.process.returncode is None:
            self.process.terminate()
            try:
                await asyncio.wait_for(self.process.wait(), timeout=5)
            except asyncio.TimeoutError:
                self.process.kill()
                await self.process.wait()


class ReplayFileSource:
    """Yield lines from a saved capture output file."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)

    async def lines(self) -> AsyncIterator[str]:
        if not self.path.exists():
            raise CaptureStartError(f"replay file not found: {self.path}")
        with self.path.open("r", encoding="utf-8", errors="replace") as fh:
            for line in fh:
                yield line
                # let the sibling pipeline run between lines
                await asyncio.sleep(0)

    async def close(self) -> None:
        return None
