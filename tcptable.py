import ipaddress
import logging
import os
import sys
from dataclasses import dataclass
from typing import Union

from tcperrors import SocketTableError

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


'''
Linux TCP socket table, as exposed in /proc/net/tcp and /proc/net/tcp6

  sl  local_address rem_address   st tx_queue rx_queue tr tm->when retrnsmt   uid  timeout inode
   0: 0100007F:0277 00000000:0000 0A 00000000:00000000 00:00000000 00000000     0        0 12345 ...

Addresses are printed as 32-bit words in host byte order, ports and the
state code in hex.
'''
TCP_STATES = {
    1: 'ESTABLISHED',
    2: 'SYN_SENT',
    3: 'SYN_RECV',
    4: 'FIN_WAIT1',
    5: 'FIN_WAIT2',
    6: 'TIME_WAIT',
    7: 'CLOSE',
    8: 'CLOSE_WAIT',
    9: 'LAST_ACK',
    10: 'LISTEN',
    11: 'CLOSING',
}

UNKNOWN_STATE = 'UNKNOWN'
LISTEN_STATE = 'LISTEN'


def state_name(code):
    return TCP_STATES.get(code, UNKNOWN_STATE)


@dataclass(frozen=True)
class SocketRecord:
    local_address: IPAddress
    local_port: int
    remote_address: IPAddress
    remote_port: int
    state: int


def parse_address(text):
    '''
    Decode one "ADDR:PORT" column into (ip address, port)
    '''
    hex_ip, sep, hex_port = text.partition(':')
    if not sep or len(hex_ip) not in (8, 32):
        raise ValueError(f"malformed socket address {text!r}")

    packed = b''.join(int(hex_ip[i:i + 8], 16).to_bytes(4, sys.byteorder)
                      for i in range(0, len(hex_ip), 8))
    port = int(hex_port, 16)
    if not 0 <= port <= 65535:
        raise ValueError(f"port out of range in {text!r}")
    return ipaddress.ip_address(packed), port


def parse_line(line):
    fields = line.split()
    if len(fields) < 4:
        raise ValueError(f"too few fields in {line.strip()!r}")
    local_address, local_port = parse_address(fields[1])
    remote_address, remote_port = parse_address(fields[2])
    return SocketRecord(local_address, local_port, remote_address, remote_port, int(fields[3], 16))


class SocketTableReader(object):
    def __init__(self, proc_root="/proc", include_ipv6=False):
        self.proc_root = proc_root
        self.include_ipv6 = include_ipv6
        if not os.path.isfile(self.table_path('tcp')):
            raise SocketTableError(f"socket table not available at {self.table_path('tcp')}")

    def table_path(self, name):
        return os.path.join(self.proc_root, 'net', name)

    def tables(self):
        names = ['tcp']
        if self.include_ipv6:
            names.append('tcp6')
        return [self.table_path(name) for name in names]

    def read(self):
        records = []
        for path in self.tables():
            try:
                with open(path, "r", encoding="ascii", errors="replace") as f:
                    next(f, None)  # skip header
                    for lineno, line in enumerate(f, start=2):
                        if not line.strip():
                            continue
                        try:
                            records.append(parse_line(line))
                        except ValueError as e:
                            raise SocketTableError(f"error parsing {path}:{lineno}: {e}", records) from e
            except OSError as e:
                raise SocketTableError(f"error reading {path}: {e}", records) from e
        logger.debug("read %d socket records", len(records))
        return records
