"""Commands submitted to the manager's mailbox.

A command is plain data: what to do, its arguments, and (for queries) a
future the caller waits on. Only the manager loop executes them.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class Action(Enum):
    QUERY_STATUS = "query_status"
    CURRENT_STATE = "current_state"
    CURRENT_WATER_STATE = "current_water_state"
    DIFFUSER_ON = "diffuser_on"
    DIFFUSER_OFF = "diffuser_off"
    LIGHT_ON = "light_on"
    LIGHT_OFF = "light_off"
    LIGHT_COLOR = "light_color"
    LIGHT_DIM = "light_dim"


@dataclass
class Command:
    action: Action
    args: tuple[Any, ...] = ()
    reply: Optional[asyncio.Future] = None  # Set for synchronous commands

    @property
    def is_sync(self) -> bool:
        return self.reply is not None
