"""Configuration loader for the traffic monitor pipelines."""
from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

# Environment variables honoured by the deployed services, mapped to
# (section, field) in MonitorConfig.
ENV_OVERRIDES: Dict[str, tuple] = {
    "IFACE": ("capture", "iface"),
    "LAN_REGEX": ("capture", "lan_regex"),
    "GATEWAY_IP": ("capture", "gateway_ip"),
    "LOG_FILE": ("domains", "log_file"),
    "OUTFILE": ("counters", "json_output"),
    "IGNORE_FILE": ("files", "ignore_domains_path"),
    "IGNORE_CLIENTS_FILE": ("files", "ignore_clients_path"),
    "HOSTS_MAP_FILE": ("files", "hosts_map_path"),
}


class CaptureConfig(BaseModel):
    iface: str = Field(default="enx00e04c68054d")
    lan_regex: str = Field(default=r"^192\.168\.1\.")
    gateway_ip: str = Field(default="192.168.1.1")
    tshark_path: str = Field(default="tshark")
    tcpdump_path: str = Field(default="tcpdump")

    @field_validator("lan_regex")
    @classmethod
    def _check_lan_regex(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"invalid LAN regex {value!r}: {exc}") from exc
        return value

    @property
    def lan_pattern(self) -> "re.Pattern[str]":
        return re.compile(self.lan_regex)


class FilterFilesConfig(BaseModel):
    ignore_domains_path: str = Field(default="/etc/traffic-monitor/ignore-domains.txt")
    ignore_clients_path: str = Field(default="/etc/traffic-monitor/ignore-clients.txt")
    hosts_map_path: str = Field(default="/etc/traffic-monitor/lan-hosts.txt")
    reload_interval_seconds: float = Field(default=10.0, gt=0)


class DomainsConfig(BaseModel):
    enabled: bool = Field(default=True)
    log_file: str = Field(default="/var/log/traffic-domains/traffic-domains.log")
    group_window_seconds: float = Field(default=5.0, gt=0)
    flood_window_seconds: float = Field(default=1.0, ge=0)
    replay_file: Optional[str] = Field(default=None, description="Read capture lines from a file instead of tshark")


class CountersConfig(BaseModel):
    enabled: bool = Field(default=True)
    json_output: str = Field(default="/var/log/traffic-domains/traffic-bytes.json")
    flush_interval_seconds: float = Field(default=5.0, gt=0)
    replay_file: Optional[str] = Field(default=None, description="Read capture lines from a file instead of tcpdump")


class MonitorConfig(BaseModel):
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    files: FilterFilesConfig = Field(default_factory=FilterFilesConfig)
    domains: DomainsConfig = Field(default_factory=DomainsConfig)
    counters: CountersConfig = Field(default_factory=CountersConfig)

    @classmethod
    def load(cls, path: Optional[str] = None, env: Optional[Dict[str, str]] = None) -> "MonitorConfig":
        """Load YAML config (if given) and apply environment overrides."""
        raw: dict = {}
        if path:
            cfg_path = Path(path)
            if not cfg_path.exists():
                raise FileNotFoundError(f"Monitor config not found: {cfg_path}")
            try:
                raw = yaml.safe_load(cfg_path.read_text()) or {}
            except yaml.YAMLError as exc:
                raise ValueError(f"Invalid monitor config: {exc}") from exc
            if not isinstance(raw, dict):
                raise ValueError(f"Invalid monitor config: expected a mapping in {cfg_path}")

        env = os.environ if env is None else env
        for var, (section, field) in ENV_OVERRIDES.items():
            value = env.get(var)
            if value:
                raw.setdefault(section, {})[field] = value

        try:
            return cls(**raw)
        except ValidationError as exc:
            raise ValueError(f"Invalid monitor config: {exc}") from exc
