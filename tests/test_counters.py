import json

import pytest

from trafficWatch.collector.counters import ByteAggregator, parse_packet_line, strip_port
from trafficWatch.collector.output import format_ts

from capture_helpers import LAN, T0, tcpdump_line

CLIENT = "192.168.1.10"
REMOTE = "93.184.216.34"


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock(T0)


@pytest.fixture
def json_output(tmp_path):
    return tmp_path / "out" / "traffic-bytes.json"


@pytest.fixture
def aggregator(reloader, json_output, clock):
    return ByteAggregator(
        lan_regex=LAN,
        json_output=str(json_output),
        reloader=reloader,
        clock=clock,
    )


def test_strip_port():
    assert strip_port("192.168.1.10.51234") == "192.168.1.10"
    assert strip_port("93.184.216.34.443:") == "93.184.216.34"
    assert strip_port("localhost") == "localhost"


def test_parse_packet_line():
    assert parse_packet_line(tcpdump_line(T0, f"{CLIENT}.51234", f"{REMOTE}.443", 517)) == (CLIENT, REMOTE, 517)
    udp = f"{T0:.6f} IP {CLIENT}.5353 > 224.0.0.251.5353: UDP, length 40\n"
    assert parse_packet_line(udp) == (CLIENT, "224.0.0.251", 40)
    assert parse_packet_line(tcpdump_line(T0, f"{CLIENT}.1", f"{REMOTE}.2", 0)) is None
    assert parse_packet_line("tcpdump: verbose output suppressed\n") is None


def test_bidirectional_counters(aggregator):
    aggregator.process_line(tcpdump_line(T0, f"{CLIENT}.51234", f"{REMOTE}.443", 100))
    aggregator.process_line(tcpdump_line(T0, f"{REMOTE}.443", f"{CLIENT}.51234", 50))
    counters = aggregator.counters[CLIENT]
    assert (counters.bytes_out, counters.bytes_in, counters.bytes_total) == (100, 50, 150)
    assert REMOTE not in aggregator.counters


def test_zero_size_and_garbage_lines_ignored(aggregator):
    aggregator.process_line(tcpdump_line(T0, f"{CLIENT}.1", f"{REMOTE}.2", 0))
    aggregator.process_line("not a packet\n")
    assert aggregator.counters == {}
    assert aggregator.stats["discarded"] == 2


def test_intra_lan_traffic_counts_both_sides(aggregator, clock):
    clock.now = T0 + 1
    aggregator.process_line(tcpdump_line(T0, f"{CLIENT}.40000", "192.168.1.20.22", 300))
    src = aggregator.counters[CLIENT]
    dst = aggregator.counters["192.168.1.20"]
    assert (src.bytes_out, src.bytes_in, src.last_seen_out) == (300, 0, T0 + 1)
    assert (dst.bytes_in, dst.bytes_out, dst.last_seen_out) == (300, 0, 0.0)
    assert dst.last_seen_any == T0 + 1


def test_ignored_client_is_skipped_per_side(filter_files, aggregator):
    filter_files["clients"].write_text("# printers\n^192\\.168\\.1\\.20$\n")
    aggregator.process_line(tcpdump_line(T0, f"{CLIENT}.40000", "192.168.1.20.9100", 300))
    assert set(aggregator.counters) == {CLIENT}
    assert aggregator.counters[CLIENT].bytes_out == 300


def test_snapshot_values(filter_files, aggregator, clock):
    filter_files["hosts"].write_text("192.168.1.10 laptop\n")
    aggregator.process_line(tcpdump_line(T0, f"{CLIENT}.1", f"{REMOTE}.443", 3_000_000))
    aggregator.process_line(tcpdump_line(T0, f"{REMOTE}.443", "192.168.1.30.1", 12345))

    snapshot = aggregator.snapshot(T0 + 1)
    assert snapshot.updated_at == format_ts(T0 + 1)
    laptop = snapshot.clients[CLIENT]
    assert laptop.hostname == "laptop"
    assert laptop.mb_total == 3_000_000 / 1048576.0
    assert laptop.last_seen_out == format_ts(T0)

    quiet = snapshot.clients["192.168.1.30"]
    assert quiet.hostname is None
    assert quiet.last_seen_out is None
    assert quiet.last_seen_any == format_ts(T0)


def test_flush_cadence_and_json_document(filter_files, aggregator, json_output, clock):
    filter_files["hosts"].write_text("192.168.1.10 laptop\n")
    clock.now = T0 + 3
    aggregator.process_line(tcpdump_line(T0, f"{CLIENT}.1", f"{REMOTE}.443", 1000))
    aggregator.process_line(tcpdump_line(T0, f"{REMOTE}.443", "192.168.1.30.1", 777))
    assert not json_output.exists()

    clock.now = T0 + 5
    aggregator.process_line("unrelated line\n")
    document = json.loads(json_output.read_text())

    assert document["updated_at"] == format_ts(T0 + 5)
    laptop = document["clients"][CLIENT]
    assert laptop["bytes_out"] == 1000
    assert laptop["bytes_total"] == 1000
    assert laptop["hostname"] == "laptop"
    assert laptop["last_seen_out"] == format_ts(T0 + 3)

    other = document["clients"]["192.168.1.30"]
    assert "hostname" not in other
    assert "last_seen_out" not in other
    assert other["last_seen_any"] == format_ts(T0 + 3)

    for stats in document["clients"].values():
        assert stats["mb_total"] == stats["bytes_total"] / 1048576.0
        assert stats["mb_in"] == stats["bytes_in"] / 1048576.0
        assert stats["mb_out"] == stats["bytes_out"] / 1048576.0


def test_flush_replaces_whole_file(aggregator, json_output, clock):
    json_output.parent.mkdir(parents=True, exist_ok=True)
    json_output.write_text("x" * 10000)
    aggregator.process_line(tcpdump_line(T0, f"{CLIENT}.1", f"{REMOTE}.443", 10))
    assert aggregator.flush(T0 + 1)
    document = json.loads(json_output.read_text())
    assert list(document["clients"]) == [CLIENT]
    assert [p.name for p in json_output.parent.iterdir()] == ["traffic-bytes.json"]


def test_flush_failure_is_swallowed(reloader, tmp_path, clock):
    target = tmp_path / "snapshot-dir"
    target.mkdir()
    aggregator = ByteAggregator(lan_regex=LAN, json_output=str(target), reloader=reloader, clock=clock)
    aggregator.process_line(tcpdump_line(T0, f"{CLIENT}.1", f"{REMOTE}.443", 10))
    assert aggregator.flush() is False
    assert aggregator.counters[CLIENT].bytes_out == 10
    assert [p.name for p in tmp_path.iterdir() if p.name.startswith(".traffic-bytes-")] == []


def test_caller_owned_flush(aggregator, json_output, clock):
    clock.now = T0 + 6
    aggregator.process_line(tcpdump_line(T0, f"{CLIENT}.1", f"{REMOTE}.443", 10), flush=False)
    assert aggregator.flush_due(T0 + 6)
    assert not json_output.exists()

    aggregator.flush(T0 + 6)
    assert not aggregator.flush_due(T0 + 10)
    assert json_output.exists()
