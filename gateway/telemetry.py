"""Inbound telemetry parsing.

Each function takes the manager's state and one payload, and either
updates the observed state or logs why the payload was dropped. Nothing
here raises on bad input: the firmware occasionally publishes garbage and
the manager must keep running.

Example tele/STATE payload (trimmed):
    {"Time":"2021-10-17T17:26:43","UptimeSec":1463715,"Heap":27,
     "POWER1":"ON","POWER2":"OFF","Dimmer":100,"Color":"FF2A00", ...}

stat/STATUS11 carries the same object nested under "StatusSTS".
"""

import logging

from pydantic import BaseModel, Field, ValidationError

from codec import first_n, parse_hex_suffix, parse_on, seconds_to_human, ts
from constants import KNOWN_ERROR_VALUES
from device_state import ManagerState

logger = logging.getLogger(__name__)


class OperStateWire(BaseModel):
    """Fields we use from the firmware's state object; the rest is ignored."""
    power1: str = Field("", alias="POWER1")
    power2: str = Field("", alias="POWER2")
    color: str = Field("", alias="Color")
    dimmer: int = Field(0, alias="Dimmer")
    uptime_sec: int = Field(0, alias="UptimeSec")
    heap: int = Field(0, alias="Heap")


class Status11Wire(BaseModel):
    status_sts: OperStateWire = Field(default_factory=OperStateWire, alias="StatusSTS")


def parse_power1(state: ManagerState, payload: str) -> None:
    oper = state.oper
    oper.diffuser_on = parse_on(payload)
    if not oper.diffuser_on:
        oper.diffuser_on_secs = 0


def parse_power2(state: ManagerState, payload: str) -> None:
    oper = state.oper
    oper.light_on = parse_on(payload)
    if not oper.light_on:
        oper.light_on_secs = 0


def parse_state(state: ManagerState, payload: str) -> None:
    """Handle flat telemetry from tele/STATE."""
    logger.debug("parse_state: %s", first_n(payload, 15))
    try:
        wire = OperStateWire.model_validate_json(payload)
    except ValidationError as e:
        logger.error("Ignoring unexpected operstate: %s parse: %s", e, payload)
        return
    _apply_oper_state(state, wire, payload)


def parse_status11(state: ManagerState, payload: str) -> None:
    """Handle telemetry nested under StatusSTS (reply to 'Status 11')."""
    logger.debug("parse_status11: %s", first_n(payload, 15))
    try:
        wire = Status11Wire.model_validate_json(payload)
    except ValidationError as e:
        logger.error("Ignoring unexpected statusSts: %s parse: %s", e, payload)
        return
    _apply_oper_state(state, wire.status_sts, payload)


def _apply_oper_state(state: ManagerState, wire: OperStateWire, raw: str) -> None:
    if not wire.power1 or not wire.power2 or not wire.color:
        logger.error("Ignoring unexpected operstate: %r parse: %s", wire, raw)
        return

    parse_power1(state, wire.power1)
    parse_power2(state, wire.power2)

    oper = state.oper
    try:
        oper.light_color = parse_hex_suffix(wire.color)
    except ValueError as e:
        logger.error("Color parsing for value %s: %s", wire.color, e)
    oper.light_dim = wire.dimmer
    oper.uptime = seconds_to_human(wire.uptime_sec)
    oper.heap = wire.heap
    oper.raw = raw
    oper.last_receive_ts = ts()

    state.stats.parse_state_msgs += 1


def parse_error(state: ManagerState, payload: str) -> None:
    """Handle stat/error, whose bit 0 means the reservoir is low.

    Only a change of the low-water bit does anything; the firmware
    repeats the same report often.
    """
    try:
        value = parse_hex_suffix(payload)
    except ValueError as e:
        logger.error("Conversion failed for device payload %r: %s", payload, e)
        return
    if value not in KNOWN_ERROR_VALUES:
        logger.warning("Unexpected error value from device: %d (from %r)", value, payload)

    low_water = value & 1 == 1
    if low_water == state.oper.low_water:
        return
    state.oper.low_water = low_water

    if low_water:
        logger.warning("Diffuser is low in water: please refill")
        state.wanted.diffuser_on = False
    else:
        logger.info("Diffuser has water now: nice")
