"""Textual TUI for the Smokey diffuser gateway."""

import json
import logging

from rich.text import Text
from textual import on, work
from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.message import Message
from textual.widgets import Footer, Header, Input, RichLog, Static

from codec import LightMode, format_color, on_off, parse_int32
from constants import DEFAULT_AUTO_OFF_SECONDS
from loop_thread import LoopThread
from manager import Manager

logger = logging.getLogger(__name__)

STATE_REFRESH_SECS = 2.0

HELP_TEXT = (
    "[bold]--- Diffuser ---[/bold]\n"
    "  diffuser on [secs]             Turn on (auto off, default 3600)\n"
    "  diffuser off                   Turn off\n"
    "\n"
    "[bold]--- Light ---[/bold]\n"
    "  light on [mode] [color] [secs] Modes: crazy solid night sunshine\n"
    "  light off                      Turn off\n"
    "  color <c>                      Name, 0xRRGGBB or decimal\n"
    "  dim <0-100>                    Brightness\n"
    "\n"
    "[bold]--- Misc ---[/bold]\n"
    "  query                          Ask device for status\n"
    "  state / water                  Show snapshot / water level\n"
    "  clear / cls                    Clear log (or F3)\n"
    "  Esc                            Focus input\n"
    "  q / quit                       Quit"
)

# Commands the app handles itself instead of forwarding to the manager
LOCAL_COMMANDS = ("help", "clear", "quit")


def _int_arg(text: str, what: str) -> int:
    try:
        return parse_int32(text)
    except ValueError:
        raise ValueError(f"Invalid {what}: {text!r}") from None


def parse_command(text: str) -> tuple[str, tuple]:
    """Parse one input line into (method name, args).

    Method names are Manager coroutines, or one of LOCAL_COMMANDS.
    Raises ValueError with a usage hint on bad input.
    """
    words = text.split()
    if not words:
        raise ValueError("Empty command")
    cmd, rest = words[0].lower(), words[1:]

    if cmd in ("q", "quit", "exit"):
        return "quit", ()
    if cmd in ("clear", "cls"):
        return "clear", ()
    if cmd == "help":
        return "help", ()
    if cmd == "query":
        return "query_status", ()
    if cmd == "state":
        return "current_state", ()
    if cmd == "water":
        return "current_water_state", ()

    if cmd in ("diffuser", "smoke"):
        if rest and rest[0].lower() == "off" and len(rest) == 1:
            return "set_diffuser_off", ()
        if rest and rest[0].lower() == "on" and len(rest) <= 2:
            secs = _int_arg(rest[1], "seconds") if len(rest) > 1 else DEFAULT_AUTO_OFF_SECONDS
            return "set_diffuser_on", (secs,)
        raise ValueError("Usage: diffuser on [secs] | diffuser off")

    if cmd == "light":
        if rest and rest[0].lower() == "off" and len(rest) == 1:
            return "set_light_off", ()
        if rest and rest[0].lower() == "on" and len(rest) <= 4:
            mode = LightMode.from_name(rest[1]) if len(rest) > 1 else LightMode.CRAZY
            color = rest[2] if len(rest) > 2 else ""
            secs = _int_arg(rest[3], "seconds") if len(rest) > 3 else DEFAULT_AUTO_OFF_SECONDS
            return "set_light_on", (secs, mode, color)
        raise ValueError("Usage: light on [mode] [color] [secs] | light off")

    if cmd == "color":
        if len(rest) != 1:
            raise ValueError("Usage: color <name|0xRRGGBB|decimal>")
        return "set_light_color", (rest[0],)

    if cmd == "dim":
        if len(rest) != 1:
            raise ValueError("Usage: dim <0-100>")
        dim = _int_arg(rest[0], "dim")
        if dim < 0 or dim > 100:
            raise ValueError(f"Bad dim: {dim}. Should be between 0 and 100")
        return "set_light_dim", (dim,)

    raise ValueError("Unknown command. Type 'help' for list.")


def format_sidebar(snapshot: dict) -> str:
    """Render a current_state() snapshot for the sidebar."""
    oper = snapshot["observed"]
    wanted = snapshot["desired"]
    stats = snapshot["counters"]
    lines = ["[bold]Observed[/bold]"]

    diffuser = on_off(oper["diffuser_on"])
    if oper["diffuser_on"]:
        diffuser += f" ({oper['diffuser_on_secs']}s)"
    lines.append(f"Diffuser: {diffuser}")
    light = on_off(oper["light_on"])
    if oper["light_on"]:
        light += f" ({oper['light_on_secs']}s)"
    lines.append(f"Light:    {light}")
    lines.append(f"Color:    {format_color(oper['light_color'])}")
    lines.append(f"Dim:      {oper['light_dim']}")
    if oper["low_water"]:
        lines.append("Water:    [red]LOW[/red]")
    else:
        lines.append("Water:    [green]ok[/green]")
    if oper["uptime"]:
        lines.append(f"Uptime:   {oper['uptime']}")

    lines.append("\n[bold]Desired[/bold]")
    diffuser = on_off(wanted["diffuser_on"])
    if wanted["diffuser_on"]:
        diffuser += f" (off {wanted['diffuser_auto_off_secs']}s)"
    lines.append(f"Diffuser: {diffuser}")
    light = on_off(wanted["light_on"])
    if wanted["light_on"]:
        light += f" (off {wanted['light_auto_off_secs']}s)"
    lines.append(f"Light:    {light}")
    lines.append(f"Mode:     {wanted['light_mode_name']}")
    if wanted["light_color_name"]:
        lines.append(f"Color:    {wanted['light_color_name']}")
    lines.append(f"Dim:      {wanted['light_dim']}")

    # Out of sync means a corrective command is pending
    if (oper["diffuser_on"] != wanted["diffuser_on"]
            or oper["light_on"] != wanted["light_on"]):
        lines.append("[yellow]Syncing...[/yellow]")

    lines.append("\n[bold]Counters[/bold]")
    lines.append(f"Polls:    {stats['pub_query_status']}")
    lines.append(f"Parsed:   {stats['parse_state_msgs']}")
    return "\n".join(lines)


class TuiLogHandler(logging.Handler):
    """Forwards log records into the app's log panel. Safe from any thread."""

    def __init__(self, app: "SmokeyApp", level=logging.INFO):
        super().__init__(level)
        self.app = app

    def emit(self, record: logging.LogRecord) -> None:
        try:
            style = "bold red" if record.levelno >= logging.WARNING else ""
            self.app.post_message(SmokeyApp.EventLine(self.format(record), style))
        except Exception:
            self.handleError(record)


class SmokeyApp(App):
    """Textual TUI driving the diffuser through the manager."""

    TITLE = "Smokey Diffuser Gateway"

    CSS = """
    #state-panel {
        width: 32;
        dock: right;
        border-left: tall $accent;
        padding: 0 1;
        background: $panel;
    }
    #events {
        height: 1fr;
        border: round $primary;
    }
    #command {
        dock: bottom;
        margin: 0 1;
    }
    """

    BINDINGS = [
        ("f3", "clear_log", "Clear"),
        ("f5", "refresh", "Refresh"),
        ("escape", "focus_input", "Input"),
    ]

    # ---- Custom Messages ----

    class EventLine(Message):
        """One line for the event panel."""
        def __init__(self, line: str, style: str = ""):
            super().__init__()
            self.line = line
            self.style = style

    # ---- Init ----

    def __init__(self, manager: Manager, runner: LoopThread):
        super().__init__()
        self.manager = manager
        self.runner = runner
        self._log_handler = TuiLogHandler(self)
        self._log_handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    # ---- Layout ----

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal():
            yield Static("Waiting for state...", id="state-panel")
            yield RichLog(id="events", wrap=True, highlight=True, markup=True)
        yield Input(placeholder="Enter command (type 'help' for list)", id="command")
        yield Footer()

    def on_mount(self) -> None:
        logging.getLogger().addHandler(self._log_handler)
        self.query_one("#command", Input).focus()
        self.refresh_state()
        self.set_interval(STATE_REFRESH_SECS, self.refresh_state)

    def on_unmount(self) -> None:
        logging.getLogger().removeHandler(self._log_handler)

    # ---- Command Handling ----

    @on(Input.Submitted, "#command")
    def on_command_submitted(self, event: Input.Submitted) -> None:
        cmd = event.value.strip()
        event.input.value = ""
        if cmd:
            self.note(f"> {cmd}", style="bold cyan")
            self.dispatch_command(cmd)

    # Not exclusive: cancelling a worker waiting on the mailbox drops its command
    @work(group="cmd")
    async def dispatch_command(self, cmd: str) -> None:
        """Parse a command and run it on the manager's loop."""
        try:
            method, args = parse_command(cmd)
        except ValueError as e:
            self.note(str(e), style="yellow")
            return

        if method in LOCAL_COMMANDS:
            self._run_local(method)
            return

        try:
            result = await self.runner.submit_async(getattr(self.manager, method)(*args))
        except Exception as e:
            self.note(f"Error: {e}", style="bold red")
            return

        if method == "current_state":
            self.note(result or "No state available")
        elif method == "current_water_state":
            self.note(f"Water level: {result}")
        self.refresh_state()

    def _run_local(self, method: str) -> None:
        if method == "quit":
            self.exit()
        elif method == "clear":
            self.action_clear_log()
        else:
            self.query_one("#events", RichLog).write(HELP_TEXT)

    # ---- State Refresh ----

    @work(exclusive=True, group="state")
    async def refresh_state(self) -> None:
        try:
            state = await self.runner.submit_async(self.manager.current_state())
        except Exception as e:
            logger.debug("State refresh failed: %s", e)
            return
        if state is None:
            return
        self.query_one("#state-panel", Static).update(format_sidebar(json.loads(state)))

    # ---- Message Handlers ----

    def on_smokey_app_event_line(self, msg: EventLine) -> None:
        self.query_one("#events", RichLog).write(Text(msg.line, style=msg.style))

    # ---- Actions ----

    def action_clear_log(self) -> None:
        self.query_one("#events", RichLog).clear()

    def action_refresh(self) -> None:
        self.refresh_state()

    def action_focus_input(self) -> None:
        self.query_one("#command", Input).focus()

    def note(self, text: str, style: str = ""):
        self.post_message(self.EventLine(text, style))
