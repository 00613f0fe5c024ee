"""hostpulse - terminal dashboard observing the telemetry feed."""

import json

from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.widgets import Footer, Static

from hostpulse.sessions import SessionManager

BAR_WIDTH = 20


def parse_percent(value: str) -> float:
    """Parse a wire percentage such as '42.5%'; sentinels read as 0."""
    try:
        return float(value.rstrip("%"))
    except (AttributeError, ValueError):
        return 0.0


def render_bar(percent: float, color: str) -> str:
    """Render a fixed-width usage bar."""
    bar_len = min(max(int(percent / (100 / BAR_WIDTH)), 0), BAR_WIDTH)
    bar = f"[{color}]█[/{color}]" * bar_len + "[dim]░[/dim]" * (BAR_WIDTH - bar_len)
    # Use escaped brackets for the bar container
    return f"\\[{bar}]"


class DashboardTransport:
    """In-process transport delivering snapshots straight to the dashboard."""

    def __init__(self, app: "PulseApp") -> None:
        self._app = app
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    async def send_text(self, data: str) -> None:
        self._app.apply_snapshot(json.loads(data))

    async def close(self) -> None:
        self._open = False


class CpuPanel(Static):
    """Per-core busy time."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__("Loading CPU info...", *args, **kwargs)
        self._core_rows: list[dict] = []

    def update_cores(self, cores: list[dict]) -> None:
        self._core_rows = cores
        self.update(self._render_cores())

    def _render_cores(self) -> str:
        if not self._core_rows:
            return "CPU info unavailable"
        lines = []
        for core in self._core_rows:
            busy = 100.0 - parse_percent(core["times"]["idle"])
            lines.append(
                f"CPU{core['core']:<2} {render_bar(busy, 'green')} {busy:5.1f}%"
                f"  {core['speed']}"
            )
        return "\n".join(lines)


class HostPanel(Static):
    """Memory, disk, uptime and addressing summary."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__("Loading host info...", *args, **kwargs)
        self._host_data: dict = {}

    def update_host(self, snapshot: dict) -> None:
        self._host_data = snapshot
        self.update(self._render_host())

    def _render_host(self) -> str:
        snap = self._host_data
        mem = snap["memory"]
        disk = snap["disk"]
        mem_pct = parse_percent(mem["usedPercentage"])
        disk_pct = parse_percent(disk["usedPercentage"])
        return (
            f"Mem {render_bar(mem_pct, 'cyan')} {mem['used']}/{mem['total']}\n"
            f"Dsk {render_bar(disk_pct, 'yellow')} {disk['used']}/{disk['total']}\n"
            f"Host: {snap['os']['hostname']} ({snap['os']['type']} {snap['os']['release']})\n"
            f"IP: {snap['network']['privateIP']}\n"
            f"Uptime: {snap['uptime']}"
        )


class PulseApp(App):
    """Terminal dashboard attached to a SessionManager like any other observer."""

    TITLE = "hostpulse"
    SUB_TITLE = "Live Host Telemetry"

    CSS = """
    Horizontal {
        height: auto;
    }

    #cpu-panel {
        width: 1fr;
        padding: 1 2;
    }

    #host-panel {
        width: 1fr;
        padding: 1 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
    ]

    def __init__(self, manager: SessionManager | None = None) -> None:
        super().__init__()
        self._manager = manager if manager is not None else SessionManager()
        self._session_id: str | None = None
        self.last_snapshot: dict | None = None

    @property
    def session_id(self) -> str | None:
        return self._session_id

    def compose(self) -> ComposeResult:
        yield Horizontal(
            CpuPanel(id="cpu-panel"),
            HostPanel(id="host-panel"),
        )
        yield Footer()

    async def on_mount(self) -> None:
        """Subscribe to the feed once the widgets exist."""
        self._session_id = await self._manager.attach(DashboardTransport(self))

    def apply_snapshot(self, snapshot: dict) -> None:
        """Render one snapshot received from the feed."""
        self.last_snapshot = snapshot
        self.query_one("#cpu-panel", CpuPanel).update_cores(snapshot["cpu"])
        self.query_one("#host-panel", HostPanel).update_host(snapshot)

    async def on_unmount(self) -> None:
        await self._unsubscribe()

    async def action_quit(self) -> None:
        """Detach from the feed, then exit."""
        await self._unsubscribe()
        self.exit()

    async def _unsubscribe(self) -> None:
        if self._session_id is not None:
            session_id, self._session_id = self._session_id, None
            await self._manager.detach(session_id)


def main() -> None:
    """Entry point for the hostpulse terminal dashboard."""
    app = PulseApp()
    app.run()


if __name__ == "__main__":
    main()
