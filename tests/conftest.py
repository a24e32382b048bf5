import os
import tempfile

# Keep component loggers out of the working tree; must run before
# trafficWatch modules create their module-level loggers.
os.environ.setdefault("TRAFFICWATCH_LOG_FILE", os.path.join(tempfile.mkdtemp(prefix="trafficwatch-logs-"), "test.jsonl"))
os.environ.setdefault("TRAFFICWATCH_LOG_LEVEL", "DEBUG")

import pytest

from trafficWatch.collector.filters import ConfigReloader


@pytest.fixture
def filter_files(tmp_path):
    paths = {
        "domains": tmp_path / "ignore-domains.txt",
        "clients": tmp_path / "ignore-clients.txt",
        "hosts": tmp_path / "lan-hosts.txt",
    }
    for path in paths.values():
        path.write_text("")
    return paths


@pytest.fixture
def reloader(filter_files):
    return ConfigReloader(
        str(filter_files["domains"]),
        str(filter_files["clients"]),
        str(filter_files["hosts"]),
    )
