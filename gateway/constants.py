"""Shared constants for the Smokey diffuser gateway."""

import re

# MQTT defaults (client id must stay within 23 characters)
DEFAULT_CLIENT_ID = "smokey_mqtt_agent"
DEFAULT_BROKER_URL = "tcp://192.168.10.238:1883"
DEFAULT_BROKER_USER = ""
DEFAULT_BROKER_PASS = ""
DEFAULT_TOPIC_PREFIX = "smokey/"

DEFAULT_LOG_DIR = "/tmp/smokey_log"
DEFAULT_LISTEN_PORT = 8080

# Topics the device publishes (prefix is prepended at runtime)
SUB_POWER1 = "stat/POWER1"
SUB_POWER2 = "stat/POWER2"
SUB_ERROR = "stat/error"
SUB_STATUS11 = "stat/STATUS11"
SUB_STATE = "tele/STATE"

# Topics the device listens on
PUB_CHECK_STATUS = "cmnd/Status"
PUB_CHECK_WATER = "cmnd/TuyaSend8"
PUB_DIFFUSER = "cmnd/Power1"
PUB_LIGHT = "cmnd/Power2"
PUB_LIGHT_MODE = "cmnd/TuyaEnum2"
PUB_LIGHT_DIM = "cmnd/Dimmer0"
PUB_LIGHT_COLOR = "cmnd/Color1"
PUB_ADVERTISE = "gateway/state"

# Reconciliation timing (seconds)
SECOND_TICK = 1.0
FAST_STATUS_TICK = 15.0
SLOW_STATUS_TICK = 5 * 60.0
CMD_DAMPEN_INTERVAL = 6.0   # Firmware is slow to echo writes back in telemetry

DEFAULT_AUTO_OFF_SECONDS = 3600
SUNSHINE_MAX_DIM = 99

# Error codes the firmware is known to report on stat/error
KNOWN_ERROR_VALUES = frozenset({0, 1})

# Queue depths
COMMAND_QUEUE_DEPTH = 1
INBOUND_QUEUE_DEPTH = 1024
OUTBOUND_QUEUE_DEPTH = 512

# ASCII numeric literals: light colors, and integer request parameters
DECIMAL_RE = re.compile(r'[+-]?[0-9]+')
HEX_RE = re.compile(r'[+-]?[0-9a-f]+')
