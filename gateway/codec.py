"""Protocol codec for the Tasmota/Tuya diffuser.

Pure helpers that translate between MQTT payload encodings and the
normalized values the manager works with, plus the outbound topic/payload
builders. Nothing in here holds state.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from enum import IntEnum

from constants import (
    DECIMAL_RE,
    DEFAULT_TOPIC_PREFIX,
    HEX_RE,
    PUB_ADVERTISE,
    PUB_CHECK_STATUS,
    PUB_CHECK_WATER,
    PUB_DIFFUSER,
    PUB_LIGHT,
    PUB_LIGHT_COLOR,
    PUB_LIGHT_DIM,
    PUB_LIGHT_MODE,
    SUB_ERROR,
    SUB_POWER1,
    SUB_POWER2,
    SUB_STATE,
    SUB_STATUS11,
)

INT32_MIN = -(1 << 31)
INT32_MAX = (1 << 31) - 1

# https://www.rapidtables.com/web/color/
NAMED_COLORS = {
    "out": 0,
    "none": 0,
    "off": 0,
    "black": 0,
    "red": 0xff0000,
    "green": 0x00ff00,
    "blue": 0x0000ff,
    "yellow": 0xffff00,
    "cyan": 0x00ffff,
    "magenta": 0xff00ff,
    "purple": 0x4b0082,
    "pink": 0xff1493,
    "orange": 0xff8c00,
    "brown": 0x8b4513,
    "gold": 0xd4af37,
    "snow": 0xfffafa,
    "azure": 0xf0ffff,
    "white": 0xffffff,
}

COLOR_OFF = "off"


@dataclass(frozen=True)
class Msg:
    """One MQTT message crossing the transport boundary."""
    topic: str
    payload: str


class LightMode(IntEnum):
    CRAZY = 0
    SOLID = 1
    NIGHT_MODE = 2
    SUNSHINE = 3

    @property
    def label(self) -> str:
        return _MODE_LABELS[self]

    @property
    def code(self) -> int:
        """Value the firmware expects on TuyaEnum2."""
        return _MODE_CODES[self]

    @classmethod
    def from_name(cls, name: str) -> LightMode:
        """Match a mode by its first two letters (case-insensitive).

        Raises:
            ValueError: If the name is too short or matches no mode
        """
        if len(name) < 2:
            raise ValueError(f"Use 2 or more characters than {name!r}")
        mode = _MODE_PREFIXES.get(name.lower()[:2])
        if mode is None:
            raise ValueError(f"No matches found for {name!r}")
        return mode


_MODE_LABELS = {
    LightMode.CRAZY: "crazy",
    LightMode.SOLID: "solid",
    LightMode.NIGHT_MODE: "night-mode",
    LightMode.SUNSHINE: "sunshine",
}
# Sunshine ramps dim on our side; the device just sees solid
_MODE_CODES = {
    LightMode.CRAZY: 0,
    LightMode.SOLID: 1,
    LightMode.NIGHT_MODE: 2,
    LightMode.SUNSHINE: 1,
}
_MODE_PREFIXES = {
    "cr": LightMode.CRAZY,
    "so": LightMode.SOLID,
    "ni": LightMode.NIGHT_MODE,
    "su": LightMode.SUNSHINE,
}


# ---- Inbound decoding ----

def parse_on(payload: str) -> bool:
    return payload.lower() == "on"


def parse_hex_suffix(text: str) -> int:
    """Decode the hex digits after the last 'x' (or the whole token).

    Handles '0x1', 'Ox81' and bare 'FF2A00'. A leading '#' is ignored so
    the '#RRGGBB' form we publish decodes back to the same value.

    Raises:
        ValueError: If the trailing token is not hexadecimal
    """
    digits = text.lower().lstrip("#").split("x")[-1]
    if not HEX_RE.fullmatch(digits):
        raise ValueError(f"invalid hex value {text!r}")
    return int(digits, 16)


def parse_int32(text: str) -> int:
    """Strict base-10 integer in the signed 32-bit range.

    Unlike int(), rejects surrounding whitespace, '_' separators and
    non-ASCII digits.
    """
    if not DECIMAL_RE.fullmatch(text):
        raise ValueError(f"invalid integer {text!r}")
    value = int(text)
    if not INT32_MIN <= value <= INT32_MAX:
        raise ValueError(f"integer out of range {text!r}")
    return value


def color_to_int(color: str, rng: random.Random | None = None) -> int:
    """Resolve a requested light color to an RGB integer.

    Order: explicit number ('0x..' hex or decimal), then a named color,
    then a random color from ``rng``.
    """
    text = color.lower()
    parts = text.split("x")
    digits = parts[-1]
    pattern, base = (HEX_RE, 16) if len(parts) > 1 else (DECIMAL_RE, 10)
    if pattern.fullmatch(digits):
        value = int(digits, base)
        if INT32_MIN <= value <= INT32_MAX:
            return value

    named = NAMED_COLORS.get(text)
    if named is not None:
        return named

    rng = rng or random
    red, green, blue = rng.randrange(256), rng.randrange(256), rng.randrange(256)
    return (red << 16) + (green << 8) + blue


def format_color(color: int) -> str:
    return f"#{color & 0xffffff:06x}"


def on_off(on: bool) -> str:
    return "ON" if on else "OFF"


# ---- Human readable helpers ----

_UNITS = (
    ("year", 12 * 30 * 86400),
    ("month", 30 * 86400),
    ("week", 7 * 86400),
    ("day", 86400),
    ("hour", 3600),
    ("minute", 60),
    ("second", 1),
)


def _plural(count: int, singular: str) -> str:
    if count in (0, 1):
        return f"{count} {singular}"
    return f"{count} {singular}s"


def seconds_to_human(total: int) -> str:
    """Render an uptime like '2 days 0 hours 5 minutes 1 second'.

    Leading zero units are skipped; everything after the first non-zero
    unit is shown.
    """
    remaining = max(0, int(total))
    parts = []
    for name, size in _UNITS:
        count, remaining = divmod(remaining, size)
        if count or parts or size == 1:
            parts.append(_plural(count, name))
    return " ".join(parts)


def ts() -> str:
    """Current local time in RFC 1123 form."""
    return time.strftime("%a, %d %b %Y %H:%M:%S %Z")


def first_n(text: str, n: int) -> str:
    return text[:n]


# ---- Topic map ----

@dataclass(frozen=True)
class Topics:
    """Topic names for one device, built from its prefix."""
    prefix: str = DEFAULT_TOPIC_PREFIX

    @property
    def power1(self) -> str:
        return self.prefix + SUB_POWER1

    @property
    def power2(self) -> str:
        return self.prefix + SUB_POWER2

    @property
    def error(self) -> str:
        return self.prefix + SUB_ERROR

    @property
    def status11(self) -> str:
        return self.prefix + SUB_STATUS11

    @property
    def state(self) -> str:
        return self.prefix + SUB_STATE

    def subscriptions(self) -> list[str]:
        return [self.power1, self.power2, self.error, self.status11, self.state]

    def check_status(self) -> Msg:
        return Msg(self.prefix + PUB_CHECK_STATUS, "11")

    def check_water(self) -> Msg:
        return Msg(self.prefix + PUB_CHECK_WATER, "")

    def set_diffuser(self, on: bool) -> Msg:
        return Msg(self.prefix + PUB_DIFFUSER, on_off(on))

    def set_light(self, on: bool) -> Msg:
        return Msg(self.prefix + PUB_LIGHT, on_off(on))

    def set_light_mode(self, mode: LightMode) -> Msg:
        return Msg(self.prefix + PUB_LIGHT_MODE, str(mode.code))

    def set_light_dim(self, dim: int) -> Msg:
        return Msg(self.prefix + PUB_LIGHT_DIM, str(dim))

    def set_light_color(self, color: int) -> Msg:
        return Msg(self.prefix + PUB_LIGHT_COLOR, format_color(color))

    def advertise(self, payload: str) -> Msg:
        return Msg(self.prefix + PUB_ADVERTISE, payload)
