import argparse
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Tuple

import yaml

from tcperrors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "/etc/default/prometheus-tcp-state-exporter.yaml"
DEFAULT_PORT = 9112
DEFAULT_LABEL_PREFIX = "EXPORTER_LABEL_"

CONNECTION_LABELS = ('state', 'remote_address', 'remote_port')
LISTENING_LABELS = ('local_address', 'local_port')

LABEL_NAME_RE = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_]*$')


@dataclass(frozen=True)
class Settings:
    port: int = DEFAULT_PORT
    address: str = "0.0.0.0"
    timeout: float = 60
    label_prefix: str = DEFAULT_LABEL_PREFIX
    proc_root: str = "/proc"
    include_ipv6: bool = False
    total_suffix: bool = False
    log_level: str = "INFO"
    # (name, value) pairs sorted by name, applied to every sample
    static_labels: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)


def get_configuration(file=None):
    '''
    Read the "exporter" section of the YAML configuration file.

    The default file is optional, an explicitly requested one is not.
    '''
    path = file or DEFAULT_CONFIG_FILE
    config_data = {}
    try:
        with open(path, "r") as file_object:
            generator_obj = yaml.load_all(file_object, Loader=yaml.SafeLoader)
            for data in generator_obj:
                config_data = data
    except FileNotFoundError:
        if file is not None:
            raise ConfigurationError(f"configuration file {path} not found")
        logger.debug("no configuration file at %s, using defaults", path)
        return {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"error loading configuration file {path}: {e}") from e

    if config_data is None:
        return {}
    if not isinstance(config_data, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping")
    exporter = config_data.get('exporter') or {}
    if not isinstance(exporter, dict):
        raise ConfigurationError(f"{path}: 'exporter' must be a mapping")
    return exporter


def get_static_labels(prefix=DEFAULT_LABEL_PREFIX, environ=None):
    '''
    Collect label dimensions from environment variables named <prefix><label>
    '''
    if environ is None:
        environ = os.environ
    if not prefix:
        raise ConfigurationError("label prefix must not be empty")

    labels = {}
    for key, value in environ.items():
        if not key.startswith(prefix):
            continue
        name = key[len(prefix):]
        if not LABEL_NAME_RE.match(name) or name.startswith('__'):
            raise ConfigurationError(f"{key}: {name!r} is not a valid label name")
        if name in CONNECTION_LABELS or name in LISTENING_LABELS:
            raise ConfigurationError(f"{key}: label {name!r} is reserved")
        labels[name] = value
    return tuple(sorted(labels.items()))


def parse_port(value):
    if isinstance(value, int) and not isinstance(value, bool):
        port = value
    elif isinstance(value, str) and value.strip().isdecimal():
        port = int(value)
    else:
        raise ConfigurationError(f"invalid port {value!r}")
    if not 1 <= port <= 65535:
        raise ConfigurationError(f"invalid port {value!r}")
    return port


def parse_flag(name, value):
    if not isinstance(value, bool):
        raise ConfigurationError(f"{name} must be true or false, got {value!r}")
    return value


def build_parser():
    parser = argparse.ArgumentParser(
        prog="prometheus-tcp-state-exporter",
        description="Export TCP connection states and listening ports as Prometheus metrics",
    )
    parser.add_argument("-p", "--port", help=f"The port number for the metrics server to listen on (default: {DEFAULT_PORT})")
    parser.add_argument("--address", help="The address for the metrics server to bind to (default: 0.0.0.0)")
    parser.add_argument("-c", "--config", help=f"YAML configuration file (default: {DEFAULT_CONFIG_FILE})")
    parser.add_argument("--log-level", help="Logging level (default: INFO)")
    parser.add_argument("--include-ipv6", action="store_true", default=None,
                        help="Also read the IPv6 socket table")
    parser.add_argument("--total-suffix", action="store_true", default=None,
                        help="Append _total to the metric family names")
    return parser


def load_settings(argv=None, environ=None):
    args = build_parser().parse_args(argv)
    exporter = get_configuration(args.config)

    def option(name, default):
        value = getattr(args, name, None)
        if value is None:
            value = exporter.get(name, default)
        return value

    log_level = str(option('log_level', 'INFO')).upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigurationError(f"invalid log level {log_level!r}")

    try:
        timeout = float(exporter.get('timeout', 60))
    except (TypeError, ValueError):
        raise ConfigurationError(f"invalid timeout {exporter.get('timeout')!r}")
    if timeout <= 0:
        raise ConfigurationError(f"timeout must be positive, got {timeout}")

    label_prefix = str(exporter.get('label_prefix', DEFAULT_LABEL_PREFIX))

    return Settings(
        port=parse_port(option('port', DEFAULT_PORT)),
        address=str(option("address", "0.0.0.0")),
        timeout=timeout,
        label_prefix=label_prefix,
        proc_root=str(exporter.get('proc_root', "/proc")),
        include_ipv6=parse_flag('include_ipv6', option('include_ipv6', False)),
        total_suffix=parse_flag('total_suffix', option('total_suffix', False)),
        log_level=log_level,
        static_labels=get_static_labels(label_prefix, environ),
    )
