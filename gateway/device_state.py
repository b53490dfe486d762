"""Data classes holding the gateway's view of the diffuser."""

from dataclasses import dataclass, field

from codec import LightMode


@dataclass
class OperState:
    """Last known actual state of the device, built from telemetry."""
    diffuser_on: bool = False
    light_on: bool = False
    light_color: int = 0
    light_dim: int = 0
    uptime: str = ""
    heap: int = 0
    low_water: bool = False
    raw: str = ""                # Last structured telemetry payload
    last_receive_ts: str = ""
    diffuser_on_secs: int = 0    # Continuous seconds observed on (0 while off)
    light_on_secs: int = 0


@dataclass
class WantedState:
    """Target state the reconciliation loop drives the device toward."""
    diffuser_on: bool = False
    light_on: bool = False
    light_color: int = 0
    light_color_name: str = ""
    light_dim: int = 0
    light_mode: LightMode = LightMode.CRAZY
    light_mode_name: str = LightMode.CRAZY.label
    increase_dim: bool = False     # Only True in sunshine mode
    diffuser_auto_off_secs: int = 0
    light_auto_off_secs: int = 0
    dampen_diffuser_ts: float = 0.0  # Clock value before which no diffuser retry
    dampen_light_ts: float = 0.0


@dataclass
class Stats:
    pub_query_status: int = 0
    parse_state_msgs: int = 0
    get_state_hits: int = 0
    get_state_water_hits: int = 0


@dataclass
class ManagerState:
    wanted: WantedState = field(default_factory=WantedState)
    oper: OperState = field(default_factory=OperState)
    stats: Stats = field(default_factory=Stats)
