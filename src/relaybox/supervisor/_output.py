"""Console rendering of supervisor events."""

from __future__ import annotations

from typing import TYPE_CHECKING, final

from rich.console import Console
from rich.style import Style
from rich.text import Text

from ._models import ServiceEventType

if TYPE_CHECKING:
    from ._models import ServiceEvent


@final
class ConsoleEventSink:
    """Event sink that prints engine events to a rich console.

    Output lines are printed as ``[engine:pid] line``; stderr lines are dim
    red. Lifecycle events are printed as a colored label with details.
    """

    __slots__ = ("_console", "_event_styles", "_show_output", "_stderr_style", "_stdout_style")

    def __init__(self, console: Console | None = None, *, show_output: bool = True) -> None:
        """Initialize the sink.

        Args:
            console: Rich Console instance for output. If None, creates a new one.
            show_output: Whether engine stdout/stderr lines are printed.
        """
        self._console = console or Console()
        self._show_output = show_output
        self._stdout_style = Style()
        self._stderr_style = Style(color="red", dim=True)
        self._event_styles: dict[ServiceEventType, Style] = {
            ServiceEventType.STARTED: Style(color="green", bold=True),
            ServiceEventType.STOPPED: Style(color="yellow"),
            ServiceEventType.ERROR: Style(color="red", bold=True),
            ServiceEventType.UNEXPECTED_EXIT: Style(color="red", bold=True),
            ServiceEventType.RESTARTING: Style(color="cyan"),
            ServiceEventType.STATE_CHANGED: Style(dim=True),
            ServiceEventType.MODE_CHANGED: Style(color="magenta"),
        }

    def _write_output(self, event: ServiceEvent) -> None:
        if not self._show_output:
            return
        style = self._stderr_style if event.stream == "stderr" else self._stdout_style

        text = Text()
        _ = text.append(f"[engine:{event.pid}]", style=Style(color="blue", bold=True))
        _ = text.append(" ")
        _ = text.append(event.message or "", style=style)
        self._console.print(text)

    async def write_event(self, event: ServiceEvent) -> None:
        """Print an event with formatting based on its type.

        Args:
            event: The event to render.
        """
        if event.event_type is ServiceEventType.OUTPUT:
            self._write_output(event)
            return

        style = self._event_styles.get(event.event_type, Style())

        text = Text()
        _ = text.append("[engine]", style=Style(color="blue", bold=True))
        _ = text.append(" ")
        _ = text.append(event.event_type.value.upper(), style=style)

        if event.event_type is ServiceEventType.STATE_CHANGED and event.state is not None:
            previous = event.previous_state.value if event.previous_state else "?"
            _ = text.append(f" {previous} -> {event.state.value}", style=style)

        if event.pid is not None:
            _ = text.append(f" (pid={event.pid})", style=Style(dim=True))

        if event.exit_code is not None:
            _ = text.append(f" exit_code={event.exit_code}", style=Style(dim=True))

        if event.retry_delay is not None:
            _ = text.append(f" in {event.retry_delay:.1f}s", style=Style(dim=True))

        if event.mode is not None:
            _ = text.append(f" {event.mode.value}", style=style)

        if event.message:
            _ = text.append(f" - {event.message}", style=style)

        self._console.print(text)
