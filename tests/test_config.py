import pytest

from trafficWatch.collector.config import MonitorConfig


def test_defaults_without_file_or_env():
    cfg = MonitorConfig.load(None, env={})
    assert cfg.capture.iface == "enx00e04c68054d"
    assert cfg.capture.gateway_ip == "192.168.1.1"
    assert cfg.capture.lan_pattern.search("192.168.1.77")
    assert cfg.domains.log_file == "/var/log/traffic-domains/traffic-domains.log"
    assert cfg.counters.json_output == "/var/log/traffic-domains/traffic-bytes.json"
    assert cfg.files.reload_interval_seconds == 10.0
    assert cfg.domains.group_window_seconds == 5.0
    assert cfg.domains.flood_window_seconds == 1.0
    assert cfg.counters.flush_interval_seconds == 5.0


def test_yaml_then_env_overrides(tmp_path):
    path = tmp_path / "monitor.yaml"
    path.write_text(
        "capture:\n"
        "  iface: eth1\n"
        "  gateway_ip: 10.0.0.1\n"
        "domains:\n"
        "  log_file: /tmp/yaml-domains.log\n"
        "counters:\n"
        "  flush_interval_seconds: 2\n"
    )
    cfg = MonitorConfig.load(str(path), env={"IFACE": "eth9", "LAN_REGEX": "^10\\.0\\.", "OUTFILE": "/tmp/b.json"})
    assert cfg.capture.iface == "eth9"
    assert cfg.capture.gateway_ip == "10.0.0.1"
    assert cfg.capture.lan_regex == "^10\\.0\\."
    assert cfg.domains.log_file == "/tmp/yaml-domains.log"
    assert cfg.counters.json_output == "/tmp/b.json"
    assert cfg.counters.flush_interval_seconds == 2.0


def test_env_file_paths():
    cfg = MonitorConfig.load(None, env={
        "IGNORE_FILE": "/srv/d.txt",
        "IGNORE_CLIENTS_FILE": "/srv/c.txt",
        "HOSTS_MAP_FILE": "/srv/h.txt",
        "LOG_FILE": "/srv/domains.log",
        "GATEWAY_IP": "192.168.0.1",
    })
    assert cfg.files.ignore_domains_path == "/srv/d.txt"
    assert cfg.files.ignore_clients_path == "/srv/c.txt"
    assert cfg.files.hosts_map_path == "/srv/h.txt"
    assert cfg.domains.log_file == "/srv/domains.log"
    assert cfg.capture.gateway_ip == "192.168.0.1"


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        MonitorConfig.load(str(tmp_path / "nope.yaml"), env={})


def test_invalid_lan_regex():
    with pytest.raises(ValueError):
        MonitorConfig.load(None, env={"LAN_REGEX": "^192.168.(1"})


def test_invalid_yaml(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("capture: [unterminated\n")
    with pytest.raises(ValueError):
        MonitorConfig.load(str(path), env={})
