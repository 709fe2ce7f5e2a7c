import logging
import sys
import time

from prometheus_client import start_http_server
from prometheus_client.core import REGISTRY

from tcpconfig import load_settings
from tcperrors import ConfigurationError, SocketTableError
from tcpstate import TcpStateCollector
from tcptable import SocketTableReader

logger = logging.getLogger("tcp_state_exporter")


def setup_logging(level="INFO"):
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)-5.5s] %(name)s:%(lineno)d\t %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def build_collector(settings):
    reader = SocketTableReader(settings.proc_root, include_ipv6=settings.include_ipv6)
    return TcpStateCollector(reader, settings.static_labels, total_suffix=settings.total_suffix)


def start(settings, registry=REGISTRY):
    collector = build_collector(settings)
    registry.register(collector)
    start_http_server(settings.port, addr=settings.address, registry=registry)
    logger.info("Starting HTTP server on %s:%d", settings.address, settings.port)
    if settings.static_labels:
        logger.info("Static labels: %s", ", ".join(f"{k}={v}" for k, v in settings.static_labels))
    return collector


def main(argv=None):
    setup_logging()
    try:
        settings = load_settings(argv)
    except ConfigurationError as e:
        logger.critical("invalid configuration: %s", e)
        return 1
    logging.getLogger().setLevel(settings.log_level)

    try:
        start(settings, REGISTRY)
    except SocketTableError as e:
        logger.critical("%s", e)
        return 1
    except OSError as e:
        logger.critical("cannot listen on port %d: %s", settings.port, e)
        return 1

    while True:
        time.sleep(settings.timeout)


if __name__ == "__main__":
    sys.exit(main())
