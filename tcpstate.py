import logging
import threading
from collections import Counter

from prometheus_client.core import GaugeMetricFamily

from tcpconfig import CONNECTION_LABELS, LISTENING_LABELS
from tcperrors import SocketTableError
from tcptable import LISTEN_STATE, state_name

logger = logging.getLogger(__name__)


def metric_names(total_suffix=False):
    suffix = "_total" if total_suffix else ""
    return "tcp_connections" + suffix, "tcp_listening_ports" + suffix


class TcpStateCollector(object):
    '''
    Counts TCP sockets per label set on every scrape.

    Connections are grouped by state, remote address and remote port,
    listening sockets by local address and local port. Both tables are
    rebuilt from zero on each collect() so closed sockets never linger.
    '''

    def __init__(self, reader, static_labels=(), total_suffix=False):
        self.reader = reader
        self.static_labels = tuple(static_labels)
        self.connections_name, self.listening_name = metric_names(total_suffix)
        extra = [name for name, _ in self.static_labels]
        self.connection_labels = list(CONNECTION_LABELS) + extra
        self.listening_labels = list(LISTENING_LABELS) + extra
        self._extra_values = tuple(value for _, value in self.static_labels)
        self._connections = Counter()
        self._listening = Counter()
        self._lock = threading.Lock()

    def describe(self):
        return [
            GaugeMetricFamily(self.connections_name, "Current number of TCP connections by state and remote address",
                              labels=self.connection_labels),
            GaugeMetricFamily(self.listening_name, "Current number of TCP listening ports by local address",
                              labels=self.listening_labels),
        ]

    def read_records(self):
        try:
            return self.reader.read()
        except SocketTableError as e:
            logger.error("error getting TCP socket table: %s (%d records kept)", e, len(e.records))
            return e.records
        except OSError as e:
            logger.error("error getting TCP socket table: %s", e)
            return []

    def update(self, records):
        self._connections.clear()
        self._listening.clear()
        for record in records:
            state = state_name(record.state)
            if state == LISTEN_STATE:
                key = (str(record.local_address), str(record.local_port)) + self._extra_values
                self._listening[key] += 1
            else:
                key = (state, str(record.remote_address), str(record.remote_port)) + self._extra_values
                self._connections[key] += 1

    def collect(self):
        with self._lock:
            self.update(self.read_records())
            connections, listening = self.describe()
            for key, count in self._connections.items():
                connections.add_metric(list(key), count)
            for key, count in self._listening.items():
                listening.add_metric(list(key), count)
        return [connections, listening]
