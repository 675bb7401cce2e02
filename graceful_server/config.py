"""
Server configuration.

Defaults mirror the fixed values the server has always shipped with; every
field can be overridden from the environment or the command line.
"""

import os
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "GRACEFUL_SERVER_"

DEFAULT_ADDR = ":8080"
DEFAULT_TIMEOUT = 10.0

LOG_LEVELS = ("critical", "error", "warning", "info", "debug")


class ServerConfig(BaseModel):
    """Listener and shutdown settings for a single server instance"""

    addr: str = DEFAULT_ADDR
    read_timeout: float = Field(DEFAULT_TIMEOUT, gt=0)
    write_timeout: float = Field(DEFAULT_TIMEOUT, gt=0)
    shutdown_timeout: float = Field(DEFAULT_TIMEOUT, gt=0)
    log_level: str = "info"

    @field_validator("addr")
    @classmethod
    def validate_addr(cls, value: str) -> str:
        split_address(value)
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        value = value.lower()
        if value not in LOG_LEVELS:
            raise ValueError(f"log level must be one of {', '.join(LOG_LEVELS)}")
        return value

    @property
    def host(self) -> str:
        return split_address(self.addr)[0]

    @property
    def port(self) -> int:
        return split_address(self.addr)[1]


def split_address(addr: str) -> Tuple[str, int]:
    """
    Split a ``host:port`` listen address.

    An empty host (``":8080"``) means every interface. Bracketed IPv6 hosts
    (``"[::1]:8080"``) are accepted.
    """
    host, sep, port_text = addr.rpartition(":")
    if not sep:
        raise ValueError(f"listen address {addr!r} must look like host:port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"invalid port in listen address {addr!r}")
    if not 0 <= port <= 65535:
        raise ValueError(f"port out of range in listen address {addr!r}")
    return host or "0.0.0.0", port


def load_config(
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ServerConfig:
    """
    Build a ServerConfig from defaults, environment variables and explicit overrides.

    Overrides whose value is None are ignored so argparse namespaces can be
    passed straight through.
    """
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = {}

    for name in ServerConfig.model_fields:
        env_value = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if env_value:
            values[name] = env_value

    for name, value in (overrides or {}).items():
        if name in ServerConfig.model_fields and value is not None:
            values[name] = value

    return ServerConfig(**values)
