"""Reconciliation manager for the diffuser/light unit.

Keeps a wanted state and an observed state and nudges the device toward
the wanted one:
  - Per second: retry power commands that did not take, count on-time,
    enforce auto-off budgets
  - Every 15s: poll status while anything is on or out of sync, and step
    the sunshine dim ramp
  - Every 5min: poll status unconditionally
  - Debounce: after any power command, wait CMD_DAMPEN_INTERVAL before
    retrying that actuator (firmware is slow to echo writes)

The manager is an actor. All state lives in one asyncio task; telemetry,
ticks and caller commands are multiplexed into it, so nothing here needs
a lock. Outbound messages go to a thread-safe queue the transport drains.
"""

from __future__ import annotations

import asyncio
import json
import logging
import queue
import random
import time
from dataclasses import asdict
from typing import Callable, Optional

import telemetry
from codec import COLOR_OFF, LightMode, Msg, Topics, color_to_int, first_n, on_off
from commands import Action, Command
from constants import (
    CMD_DAMPEN_INTERVAL,
    COMMAND_QUEUE_DEPTH,
    DEFAULT_AUTO_OFF_SECONDS,
    FAST_STATUS_TICK,
    INBOUND_QUEUE_DEPTH,
    SECOND_TICK,
    SLOW_STATUS_TICK,
    SUNSHINE_MAX_DIM,
)
from device_state import ManagerState

logger = logging.getLogger(__name__)


class _Ticker:
    """Fixed-period deadline. Missed periods are dropped, not replayed."""

    def __init__(self, period: float, callback: Callable[[], None], start: float):
        self.period = period
        self.callback = callback
        self.deadline = start + period

    def due(self, now: float) -> bool:
        if now < self.deadline:
            return False
        self.deadline += self.period
        if self.deadline <= now:
            self.deadline = now + self.period
        return True


class Manager:
    """Single-writer actor owning the wanted/observed state of the device.

    Public coroutines (query_status, current_state, set_light_on, ...) must
    run on the manager's event loop. From another thread, submit them via
    LoopThread.submit() / submit_async().
    """

    def __init__(self, topics: Topics, outbound: queue.Queue, *,
                 advertise: bool = False,
                 clock: Callable[[], float] = time.monotonic,
                 rng: Optional[random.Random] = None):
        self.topics = topics
        self.outbound = outbound
        self.advertise = advertise
        self.state = ManagerState()
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.running = False
        self._clock = clock
        self._rng = rng or random.Random()
        self._inbound: asyncio.Queue[Msg] = asyncio.Queue(maxsize=INBOUND_QUEUE_DEPTH)
        self._commands: asyncio.Queue[Command] = asyncio.Queue(maxsize=COMMAND_QUEUE_DEPTH)

        self._routes = {
            topics.power1: telemetry.parse_power1,
            topics.power2: telemetry.parse_power2,
            topics.state: telemetry.parse_state,
            topics.status11: telemetry.parse_status11,
            topics.error: telemetry.parse_error,
        }
        self._actions = {
            Action.QUERY_STATUS: self._query_status,
            Action.CURRENT_STATE: self._current_state,
            Action.CURRENT_WATER_STATE: self._current_water_state,
            Action.DIFFUSER_ON: self.cmd_diffuser_on,
            Action.DIFFUSER_OFF: self.cmd_diffuser_off,
            Action.LIGHT_ON: self.cmd_light_on,
            Action.LIGHT_OFF: self.cmd_light_off,
            Action.LIGHT_COLOR: self._light_color,
            Action.LIGHT_DIM: self.cmd_light_dim,
        }

    # ---- Public API ----

    async def query_status(self) -> None:
        """Ask the device for status and water level; wait until sent."""
        await self._submit(Action.QUERY_STATUS, wait=True)

    async def current_state(self) -> Optional[str]:
        """JSON snapshot of desired/observed state and counters.

        Returns None if the state could not be serialized.
        """
        return await self._submit(Action.CURRENT_STATE, wait=True)

    async def current_water_state(self) -> str:
        return await self._submit(Action.CURRENT_WATER_STATE, wait=True)

    async def set_diffuser_on(self, auto_off_secs: int) -> None:
        await self._submit(Action.DIFFUSER_ON, auto_off_secs)

    async def set_diffuser_off(self) -> None:
        await self._submit(Action.DIFFUSER_OFF)

    async def set_light_on(self, auto_off_secs: int, mode: LightMode, color: str) -> None:
        await self._submit(Action.LIGHT_ON, auto_off_secs, mode, color)

    async def set_light_off(self) -> None:
        await self._submit(Action.LIGHT_OFF)

    async def set_light_color(self, color: str) -> None:
        """Set color, switching the light on in solid mode if needed.

        Color 0 (e.g. 'off', 'black') turns the light off instead.
        """
        await self._submit(Action.LIGHT_COLOR, color)

    async def set_light_dim(self, dim: int) -> None:
        await self._submit(Action.LIGHT_DIM, dim)

    async def _submit(self, action: Action, *args, wait: bool = False):
        cmd = Command(action, args)
        if wait:
            cmd.reply = asyncio.get_running_loop().create_future()
        # Mailbox holds one command; a second caller waits here for room
        await self._commands.put(cmd)
        if wait:
            return await cmd.reply
        return None

    def deliver(self, msg: Msg) -> None:
        """Hand an inbound MQTT message to the manager. Safe from any thread."""
        loop = self.loop
        if loop is None or loop.is_closed():
            logger.warning("Manager not running, dropping %s", msg.topic)
            return
        loop.call_soon_threadsafe(self._enqueue_inbound, msg)

    def _enqueue_inbound(self, msg: Msg) -> None:
        try:
            self._inbound.put_nowait(msg)
        except asyncio.QueueFull:
            logger.warning("Inbound queue full, dropping %s %r...",
                           msg.topic, first_n(msg.payload, 10))

    # ---- Main Loop ----

    async def run(self) -> None:
        """Service telemetry, ticks and commands until cancelled."""
        self.loop = asyncio.get_running_loop()
        self.running = True
        start = self.loop.time()
        tickers = [
            _Ticker(SECOND_TICK, self.handle_second_tick, start),
            _Ticker(FAST_STATUS_TICK, self.handle_fast_tick, start),
            _Ticker(SLOW_STATUS_TICK, self.handle_slow_tick, start),
        ]
        sources = {"message": self._inbound, "command": self._commands}
        getters: dict[str, asyncio.Task] = {}
        logger.info("Manager loop started (prefix %r)", self.topics.prefix)

        try:
            while self.running:
                for name, source in sources.items():
                    if name not in getters:
                        getters[name] = asyncio.ensure_future(source.get())

                timeout = max(0.0, min(t.deadline for t in tickers) - self.loop.time())
                done, _ = await asyncio.wait(
                    getters.values(), timeout=timeout,
                    return_when=asyncio.FIRST_COMPLETED)

                # At most one item per source per pass, then ticks: a busy
                # telemetry feed cannot starve the 1s reconciliation
                for name in list(getters):
                    task = getters[name]
                    if task not in done:
                        continue
                    del getters[name]
                    if name == "message":
                        self._guarded(self.handle_message, task.result())
                    else:
                        self.execute(task.result())

                now = self.loop.time()
                for ticker in tickers:
                    if ticker.due(now):
                        self._guarded(ticker.callback)
        finally:
            self.running = False
            for task in getters.values():
                task.cancel()
            logger.info("Manager loop stopped")

    def _guarded(self, func, *args) -> None:
        try:
            func(*args)
        except Exception as e:
            # Keep the loop alive; the next tick gets another chance
            logger.error("Error in manager handler %s: %s",
                         getattr(func, "__name__", func), e, exc_info=True)

    def handle_message(self, msg: Msg) -> None:
        """Route one inbound message to its parser."""
        parser = self._routes.get(msg.topic)
        if parser is None:
            logger.info("got topic %s payload %r...", msg.topic, first_n(msg.payload, 10))
            return
        before = self._advertised_fields()
        parser(self.state, msg.payload)
        if self.advertise and self._advertised_fields() != before:
            self._advertise_state()

    def execute(self, cmd: Command) -> None:
        """Run one mailbox command and resolve its reply, if any."""
        handler = self._actions[cmd.action]
        try:
            result = handler(*cmd.args)
        except Exception as e:
            logger.error("Command %s failed: %s", cmd.action.value, e, exc_info=True)
            if cmd.is_sync and not cmd.reply.done():
                cmd.reply.set_exception(e)
            return
        if cmd.is_sync and not cmd.reply.done():
            cmd.reply.set_result(result)

    # ---- Ticks ----

    def handle_second_tick(self) -> None:
        wanted = self.state.wanted
        oper = self.state.oper
        now = self._clock()

        # Diffuser
        if oper.diffuser_on != wanted.diffuser_on and now > wanted.dampen_diffuser_ts:
            logger.info("Diffuser not in wanted state: %s", wanted.diffuser_on)
            self.cmd_diffuser(wanted.diffuser_on)
        elif oper.diffuser_on:
            oper.diffuser_on_secs += 1
            if (wanted.diffuser_on
                    and wanted.diffuser_auto_off_secs > 0
                    and oper.diffuser_on_secs >= wanted.diffuser_auto_off_secs):
                logger.info("Diffuser expiring auto off")
                self.cmd_diffuser_off()

        # Light
        if oper.light_on != wanted.light_on and now > wanted.dampen_light_ts:
            logger.info("Light not in wanted state: %s", wanted.light_on)
            if wanted.light_on:
                auto_off_secs = self.recalculate_light_auto_off()
                saved_dim = wanted.light_dim
                self.cmd_light_on(auto_off_secs, wanted.light_mode, wanted.light_color_name)
                # Powering on resets the dim on the device side
                if wanted.light_mode == LightMode.SUNSHINE:
                    self.cmd_light_dim(saved_dim)
            else:
                self.cmd_light_off()
        elif oper.light_on:
            oper.light_on_secs += 1
            if (wanted.light_on
                    and wanted.light_auto_off_secs > 0
                    and oper.light_on_secs >= wanted.light_auto_off_secs):
                logger.info("Light expiring auto off")
                self.cmd_light_off()

    def handle_fast_tick(self) -> None:
        wanted = self.state.wanted
        oper = self.state.oper
        if (oper.diffuser_on or oper.light_on
                or oper.diffuser_on != wanted.diffuser_on
                or oper.light_on != wanted.light_on):
            self.cmd_pub_query_status()
        self.bump_increase_dim()

    def handle_slow_tick(self) -> None:
        self.cmd_pub_query_status()

    def bump_increase_dim(self) -> None:
        """One step of the sunshine ramp; hands off to crazy mode at the top."""
        wanted = self.state.wanted
        if (not wanted.light_on
                or not self.state.oper.light_on
                or wanted.light_mode != LightMode.SUNSHINE):
            return

        if wanted.light_dim >= SUNSHINE_MAX_DIM:
            logger.info("Sunshine mode reached max bright. Switching to Crazy mode")
            auto_off_secs = self.recalculate_light_auto_off()
            self.cmd_light_on(auto_off_secs, LightMode.CRAZY, "")
        else:
            self.cmd_light_dim(wanted.light_dim + 1)

    def recalculate_light_auto_off(self) -> int:
        """Auto-off budget left for the light; 0 stays 0 (never)."""
        auto_off_secs = self.state.wanted.light_auto_off_secs
        if auto_off_secs > 0:
            auto_off_secs -= self.state.oper.light_on_secs
            if auto_off_secs <= 0:
                auto_off_secs = 1  # Already expired: turn off on the next pass
        return auto_off_secs

    # ---- Command Encoder ----

    def _publish(self, msg: Msg) -> None:
        try:
            self.outbound.put_nowait(msg)
        except queue.Full:
            logger.error("Outbound queue full, dropping %s %r", msg.topic, msg.payload)

    def cmd_pub_query_status(self) -> None:
        self._publish(self.topics.check_status())
        self._publish(self.topics.check_water())
        self.state.stats.pub_query_status += 1

    def cmd_diffuser(self, on: bool) -> None:
        wanted = self.state.wanted
        self._publish(self.topics.set_diffuser(on))
        extra = f". Auto off is {wanted.diffuser_auto_off_secs}" if on else ""
        logger.info("Asking smokey to set diffuser to %s%s", on_off(on), extra)
        self.cmd_pub_query_status()

        self.state.oper.diffuser_on_secs = 0
        wanted.dampen_diffuser_ts = self._clock() + CMD_DAMPEN_INTERVAL

    def cmd_diffuser_on(self, auto_off_secs: int) -> None:
        self.state.wanted.diffuser_auto_off_secs = auto_off_secs
        self.state.wanted.diffuser_on = True
        self.cmd_diffuser(True)

    def cmd_diffuser_off(self) -> None:
        self.state.wanted.diffuser_on = False
        self.cmd_diffuser(False)

    def cmd_light(self, on: bool, mode: LightMode, color: str) -> None:
        wanted = self.state.wanted
        if on != self.state.oper.light_on:
            self._publish(self.topics.set_light(on))
        if on:
            self._publish(self.topics.set_light_mode(mode))
            if mode in (LightMode.SOLID, LightMode.SUNSHINE):
                self.cmd_light_color(color)

        extra = f". Mode {mode.label}. Auto off is {wanted.light_auto_off_secs}" if on else ""
        logger.info("Asking smokey to set light to %s%s", on_off(on), extra)
        self.cmd_pub_query_status()

        self.state.oper.light_on_secs = 0
        wanted.light_mode = mode
        wanted.light_mode_name = mode.label
        wanted.increase_dim = mode == LightMode.SUNSHINE
        wanted.dampen_light_ts = self._clock() + CMD_DAMPEN_INTERVAL

    def cmd_light_on(self, auto_off_secs: int, mode: LightMode, color: str) -> None:
        self.state.wanted.light_auto_off_secs = auto_off_secs
        self.state.wanted.light_on = True
        self.cmd_light(True, mode, color)
        if mode == LightMode.SUNSHINE:
            self.cmd_light_dim(1)

    def cmd_light_off(self) -> None:
        self.state.wanted.light_on = False
        self.cmd_light(False, LightMode.SOLID, COLOR_OFF)

    def cmd_light_color(self, color: str) -> None:
        color_int = color_to_int(color, self._rng)
        self.state.wanted.light_color = color_int
        self.state.wanted.light_color_name = color
        msg = self.topics.set_light_color(color_int)
        self._publish(msg)
        logger.info("Asking smokey to set light color to %r (%s)", color, msg.payload)

    def cmd_light_dim(self, dim: int) -> None:
        self.state.wanted.light_dim = dim
        msg = self.topics.set_light_dim(dim)
        self._publish(msg)
        logger.info("Asking smokey to set light dim to %s", msg.payload)

    def _light_color(self, color: str) -> None:
        wanted = self.state.wanted
        if color_to_int(color, self._rng) == 0:
            self.cmd_light_off()
        elif wanted.light_mode != LightMode.SOLID or not self.state.oper.light_on:
            self.cmd_light_on(DEFAULT_AUTO_OFF_SECONDS, LightMode.SOLID, color)
        else:
            self.cmd_light_color(color)

    # ---- Queries ----

    def _query_status(self) -> None:
        logger.debug("Asking smokey for status")
        self.cmd_pub_query_status()

    def snapshot(self) -> str:
        return json.dumps({
            "desired": asdict(self.state.wanted),
            "observed": asdict(self.state.oper),
            "counters": asdict(self.state.stats),
        })

    def _current_state(self) -> Optional[str]:
        try:
            result = self.snapshot()
        except (TypeError, ValueError) as e:
            logger.error("Unable to encode manager state: %r: %s", self.state, e)
            return None
        self.state.stats.get_state_hits += 1
        return result

    def _current_water_state(self) -> str:
        self.state.stats.get_state_water_hits += 1
        return "low" if self.state.oper.low_water else "high"

    # ---- Advertise ----

    def _advertised_fields(self) -> tuple[bool, bool, bool]:
        oper = self.state.oper
        return oper.diffuser_on, oper.light_on, oper.low_water

    def _advertise_state(self) -> None:
        try:
            payload = self.snapshot()
        except (TypeError, ValueError) as e:
            logger.error("Unable to encode state for advertise: %s", e)
            return
        self._publish(self.topics.advertise(payload))
