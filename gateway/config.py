"""Gateway configuration models.

CLI flags and environment defaults are parsed in smokey.py; the values are
validated here before anything connects or binds.
"""

import os
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator

from constants import (
    DEFAULT_BROKER_PASS,
    DEFAULT_BROKER_URL,
    DEFAULT_BROKER_USER,
    DEFAULT_CLIENT_ID,
    DEFAULT_LISTEN_PORT,
    DEFAULT_LOG_DIR,
    DEFAULT_TOPIC_PREFIX,
)

DEFAULT_MQTT_PORT = 1883


class MqttConfig(BaseModel):
    client_id: str = DEFAULT_CLIENT_ID
    broker_url: str = DEFAULT_BROKER_URL
    user: str = DEFAULT_BROKER_USER
    password: str = DEFAULT_BROKER_PASS
    topic_prefix: str = DEFAULT_TOPIC_PREFIX

    @field_validator("broker_url")
    @classmethod
    def _check_broker(cls, v: str) -> str:
        host, _ = split_broker_url(v)
        if not host:
            raise ValueError(f"no host in broker url {v!r}")
        return v

    @property
    def broker_host(self) -> str:
        return split_broker_url(self.broker_url)[0]

    @property
    def broker_port(self) -> int:
        return split_broker_url(self.broker_url)[1]


class GatewayConfig(BaseModel):
    mqtt: MqttConfig = Field(default_factory=MqttConfig)
    listen_port: int = Field(DEFAULT_LISTEN_PORT, ge=1, le=65535)
    log_dir: str = DEFAULT_LOG_DIR
    debug: bool = False
    advertise: bool = False
    tui: bool = False


def split_broker_url(url: str) -> tuple[str, int]:
    """Split 'tcp://host:port', 'mqtt://host' or 'host:port' into (host, port)."""
    if "://" not in url:
        url = "tcp://" + url
    parts = urlsplit(url)
    try:
        port = parts.port or DEFAULT_MQTT_PORT
    except ValueError:
        raise ValueError(f"bad port in broker url {url!r}") from None
    return parts.hostname or "", port


def env_default_log_dir() -> str:
    return os.environ.get("LOGDIR") or DEFAULT_LOG_DIR


def env_default_listen_port() -> int:
    try:
        return int(os.environ.get("LISTENPORT", ""))
    except ValueError:
        return DEFAULT_LISTEN_PORT
