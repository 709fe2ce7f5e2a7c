"""
Shared fixtures for the exporter test suite.

Socket tables are written to a fake procfs tree under tmp_path in the same
layout and encoding the kernel uses for /proc/net/tcp.
"""

import ipaddress
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from tcperrors import SocketTableError  # noqa: E402
from tcptable import SocketRecord  # noqa: E402

HEADER = ("  sl  local_address rem_address   st tx_queue rx_queue tr tm->when retrnsmt"
          "   uid  timeout inode\n")


def encode_address(address, port):
    """Encode an address the way /proc/net/tcp prints it."""
    packed = ipaddress.ip_address(address).packed
    words = [int.from_bytes(packed[i:i + 4], sys.byteorder) for i in range(0, len(packed), 4)]
    return "".join(f"{word:08X}" for word in words) + f":{port:04X}"


def table_line(index, local, remote, state):
    return (f"{index:4d}: {encode_address(*local)} {encode_address(*remote)} {state:02X} "
            f"00000000:00000000 00:00000000 00000000     0        0 {1000 + index} "
            f"1 0000000000000000 100 0 0 10 0\n")


def write_table(path, rows):
    with open(path, "w") as f:
        f.write(HEADER)
        for index, (local, remote, state) in enumerate(rows):
            f.write(table_line(index, local, remote, state))


def record(state, remote=("10.0.0.1", 443), local=("192.168.1.10", 50000)):
    return SocketRecord(ipaddress.ip_address(local[0]), local[1],
                        ipaddress.ip_address(remote[0]), remote[1], state)


class FakeReader:
    """Reader returning queued results; exceptions in the queue are raised."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def read(self):
        self.calls += 1
        result = self.results.pop(0) if self.results else []
        if isinstance(result, Exception):
            raise result
        return list(result)


@pytest.fixture
def proc_root(tmp_path):
    (tmp_path / "net").mkdir()
    write_table(tmp_path / "net" / "tcp", [])
    return tmp_path


@pytest.fixture
def failing_reader():
    return FakeReader(SocketTableError("boom", [record(1)]))
