"""LAN traffic monitor: domain correlation log and per-client byte counters."""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
import time
from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.traceback import install as install_rich_traceback

from trafficWatch.collector.config import MonitorConfig
from trafficWatch.collector.counters import ByteAggregator
from trafficWatch.collector.domains import DomainCorrelator
from trafficWatch.collector.filters import ConfigReloader
from trafficWatch.collector.sources import (
    CaptureProcessSource,
    LineSource,
    ReplayFileSource,
    tcpdump_command,
    tshark_command,
)
from trafficWatch.logging_config import get_logger

install_rich_traceback()
console = Console(stderr=True)
logger = get_logger("monitor")


def build_domain_pipeline(cfg: MonitorConfig) -> tuple:
    reloader = ConfigReloader(
        cfg.files.ignore_domains_path,
        cfg.files.ignore_clients_path,
        cfg.files.hosts_map_path,
        interval=cfg.files.reload_interval_seconds,
    )
    correlator = DomainCorrelator(
        lan_regex=cfg.capture.lan_regex,
        gateway_ip=cfg.capture.gateway_ip,
        log_file=cfg.domains.log_file,
        reloader=reloader,
        group_window=cfg.domains.group_window_seconds,
        flood_window=cfg.domains.flood_window_seconds,
    )
    if cfg.domains.replay_file:
        source: LineSource = ReplayFileSource(cfg.domains.replay_file)
    else:
        source = CaptureProcessSource(tshark_command(cfg.capture))
    return correlator, source


def build_counter_pipeline(cfg: MonitorConfig) -> tuple:
    reloader = ConfigReloader(
        None,
        cfg.files.ignore_clients_path,
        cfg.files.hosts_map_path,
        interval=cfg.files.reload_interval_seconds,
    )
    aggregator = ByteAggregator(
        lan_regex=cfg.capture.lan_regex,
        json_output=cfg.counters.json_output,
        reloader=reloader,
        flush_interval=cfg.counters.flush_interval_seconds,
    )
    if cfg.counters.replay_file:
        source: LineSource = ReplayFileSource(cfg.counters.replay_file)
    else:
        source = CaptureProcessSource(tcpdump_command(cfg.capture))
    return aggregator, source


async def run_domains(cfg: MonitorConfig) -> dict:
    correlator, source = build_domain_pipeline(cfg)
    logger.info(
        "Domain pipeline starting",
        extra={"pipeline": "domains", "iface": cfg.capture.iface, "path": cfg.domains.log_file, "state": "starting"},
    )
    console.print(f"[green]\\[domains][/green] monitoring domains on {cfg.capture.iface}", highlight=False)
    try:
        async for line in source.lines():
            # tshark only emits DNS/TLS/HTTP packets, so a thread hop per line is
            # affordable and keeps log appends off the shared event loop
            await asyncio.to_thread(correlator.process_line, line)
    finally:
        await source.close()
        logger.info(
            "Domain pipeline stopped",
            extra={"pipeline": "domains", "state": "stopped", **correlator.stats},
        )
    return correlator.stats


async def run_counters(cfg: MonitorConfig) -> dict:
    aggregator, source = build_counter_pipeline(cfg)
    logger.info(
        "Byte pipeline starting",
        extra={"pipeline": "bytes", "iface": cfg.capture.iface, "path": cfg.counters.json_output, "state": "starting"},
    )
    console.print(f"[green]\\[bytes][/green] writing traffic snapshot to {cfg.counters.json_output}", highlight=False)
    try:
        async for line in source.lines():
            now = time.time()
            if aggregator.reloader.due(now):
                await asyncio.to_thread(aggregator.reloader.maybe_reload, now)
            aggregator.process_line(line, now, flush=False)
            if aggregator.flush_due(now):
                await asyncio.to_thread(aggregator.flush, now)
    finally:
        await source.close()
        await asyncio.to_thread(aggregator.flush)
        logger.info(
            "Byte pipeline stopped",
            extra={"pipeline": "bytes", "state": "stopped", "clients": len(aggregator.counters), **aggregator.stats},
        )
    return aggregator.stats


async def run_monitor(cfg: MonitorConfig, only: Optional[str] = None) -> List[str]:
    """Run the enabled pipelines to completion; return the names of those that failed."""
    tasks = []
    if cfg.domains.enabled and only in (None, "domains"):
        tasks.append(asyncio.create_task(run_domains(cfg), name="domains"))
    if cfg.counters.enabled and only in (None, "bytes"):
        tasks.append(asyncio.create_task(run_counters(cfg), name="bytes"))
    if not tasks:
        logger.warning("All pipelines disabled in config; exiting")
        console.print("[yellow]All pipelines disabled in config; exiting.")
        return []
    results = await asyncio.gather(*tasks, return_exceptions=True)

    failed = []
    for task, result in zip(tasks, results):
        if not isinstance(result, BaseException):
            continue
        if isinstance(result, asyncio.CancelledError):
            raise result
        failed.append(task.get_name())
        logger.error(
            f"Pipeline {task.get_name()} failed: {result}",
            exc_info=result,
            extra={"pipeline": task.get_name(), "outcome": "error", "error_type": type(result).__name__},
        )
        console.print(f"[red]\\[{task.get_name()}][/red] pipeline failed: {escape(str(result))}")
    return failed


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="trafficWatch LAN traffic monitor")
    parser.add_argument(
        "--config",
        default=os.getenv("TRAFFICWATCH_CONFIG"),
        help="Path to optional YAML config (environment variables override it)",
    )
    parser.add_argument(
        "--only",
        choices=["domains", "bytes"],
        default=None,
        help="Run a single pipeline instead of both",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        cfg = MonitorConfig.load(args.config)
    except (FileNotFoundError, ValueError) as exc:
        logger.error(f"Configuration error: {exc}", extra={"outcome": "error", "error_type": type(exc).__name__})
        console.print(f"[red]Configuration error:[/red] {escape(str(exc))}")
        return 2
    try:
        failed = asyncio.run(run_monitor(cfg, args.only))
    except KeyboardInterrupt:
        logger.info("Monitor interrupted", extra={"state": "interrupted"})
        return 0
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
