"""
SuperRay TUI - Terminal User Interface
Dashboard with status, live speed chart, server list and activity log
"""

from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import Header, Footer, Static, DataTable, Log
from textual.binding import Binding
from textual.screen import ModalScreen

import logging
import threading
from typing import Optional, Tuple

from rich.text import Text

from .chart import render_traffic_chart
from .dialogs import ConfirmDialog, SubscriptionDialog
from ..core.client import ProxyClient
from ..core.types import ConnectionPhase, RoutingMode, StateSnapshot
from ..utils.formatting import (
    format_bytes, format_speed, format_latency, mask_address, mask_ip_address
)
from ..utils.logging_setup import CallbackHandler, PACKAGE_LOGGER

logger = logging.getLogger(__name__)


class StatusPanel(Static):
    """Connection state, mode, totals and the selected/active server"""

    def render_snapshot(self, snap: StateSnapshot):
        text = Text()

        if snap.phase == ConnectionPhase.CONNECTED:
            text.append("● Connected", style="bold green")
        elif snap.phase == ConnectionPhase.CONNECTING:
            text.append("◌ Connecting...", style="bold yellow")
        elif snap.phase == ConnectionPhase.DISCONNECTING:
            text.append("◌ Disconnecting...", style="bold yellow")
        else:
            text.append("○ Disconnected", style="bold red")

        if snap.routing_mode == RoutingMode.SYSTEM_WIDE:
            text.append("   Mode: ", style="dim")
            text.append("System-wide (TUN)", style="magenta")
            if snap.connected and not snap.routing_active:
                text.append(" inactive", style="yellow")
        else:
            text.append("   Mode: ", style="dim")
            text.append("Proxy", style="cyan")
        text.append(
            f"\nSOCKS5 127.0.0.1:{snap.local_port}  "
            f"HTTP 127.0.0.1:{snap.local_port + 1}",
            style="dim"
        )

        text.append("\nTraffic: ", style="dim")
        text.append(f"↑ {format_bytes(snap.total_upload)}", style="green")
        text.append("  ")
        text.append(f"↓ {format_bytes(snap.total_download)}", style="blue")

        text.append("\nActive:   ", style="dim")
        text.append(self._server_label(snap.active_server) or "-")
        text.append("\nSelected: ", style="dim")
        text.append(self._server_label(snap.selected_server) or "-")

        geo = snap.geo_info
        if geo and geo.get('status') == 'success':
            text.append("\nGeo: ", style="dim")
            if geo.get('query'):
                text.append(f"IP:{mask_ip_address(geo['query'])} ")
            if geo.get('as'):
                text.append(f"ASN:{geo['as']} ", style="yellow")
            text.append(geo.get('location', ''), style="cyan")
            if geo.get('organization'):
                text.append(f" ({geo['organization']})", style="dim")

        self.update(text)

    @staticmethod
    def _server_label(server) -> Optional[str]:
        if server is None:
            return None
        return (
            f"[{server.protocol.upper()}] {server.display_name()} "
            f"({mask_address(server.address)}:{server.port})"
        )


class SpeedPanel(Static):
    """Current rates plus the download chart"""

    def render_snapshot(self, snap: StateSnapshot):
        width = max(self.content_size.width, 10)
        height = max(self.content_size.height - 1, 3)

        text = Text()
        text.append("↑ ", style="green")
        text.append(format_speed(snap.rate.upload_bps))
        text.append("  ↓ ", style="blue")
        text.append(format_speed(snap.rate.download_bps))
        text.append("\n")
        text.append_text(render_traffic_chart(snap.history, width, height))
        self.update(text)


class SuperRayTUI(App):
    """Main SuperRay TUI Application"""

    CSS = """
    Screen {
        background: $surface;
    }

    #top-row {
        height: 9;
    }

    #middle-row {
        height: 1fr;
    }

    StatusPanel, SpeedPanel {
        border: solid $primary;
        padding: 0 1;
        width: 1fr;
        height: 100%;
    }

    #server-table {
        border: solid $primary;
        width: 2fr;
        height: 100%;
    }

    #conn-table {
        border: solid $primary;
        width: 1fr;
        height: 100%;
    }

    Log {
        height: 10;
        border: solid $primary-darken-2;
    }
    """

    BINDINGS = [
        Binding("q", "quit_app", "Quit"),
        Binding("c", "connect", "Connect"),
        Binding("space", "connect", "Connect", show=False),
        Binding("d", "disconnect", "Disconnect"),
        Binding("r", "refresh_catalog", "Reload"),
        Binding("s", "subscription", "Subscription"),
        Binding("t", "latency_test", "Latency"),
        Binding("u", "toggle_mode", "TUN mode"),
        Binding("f", "force_refresh", "Refresh"),
    ]

    TITLE = "SuperRay TUI"
    SUB_TITLE = "Xray proxy client"

    def __init__(self, client: ProxyClient):
        super().__init__()
        self.client = client
        self._ui_thread: Optional[int] = None
        self._closing = False
        self._server_rows: Tuple = ()
        self._log_handler = CallbackHandler(self._on_log_record)

    def compose(self) -> ComposeResult:
        yield Header()
        with Vertical():
            with Horizontal(id="top-row"):
                yield StatusPanel(id="status")
                yield SpeedPanel(id="speed")
            with Horizontal(id="middle-row"):
                yield DataTable(id="server-table", cursor_type="row")
                yield DataTable(id="conn-table", cursor_type="none")
            yield Log(id="activity-log", auto_scroll=True, max_lines=1000)
        yield Footer()

    def on_mount(self) -> None:
        self._ui_thread = threading.get_ident()

        servers = self.query_one("#server-table", DataTable)
        servers.add_columns("Protocol", "Name", "Latency")
        servers.border_title = "Servers"
        connections = self.query_one("#conn-table", DataTable)
        connections.add_columns("Tag", "Upload", "Download")
        connections.border_title = "Connections"
        self.query_one("#status", StatusPanel).border_title = "Status"
        self.query_one("#speed", SpeedPanel).border_title = "Speed"

        logging.getLogger(PACKAGE_LOGGER).addHandler(self._log_handler)
        self.client.add_redraw_listener(self._request_redraw)

        self.client.start()
        self.client.supervisor.spawn('version', self._log_version)

        self.set_interval(1.0, self.refresh_view)
        self.refresh_view()
        servers.focus()

    def _log_version(self):
        logger.info(self.client.version())

    # Thread marshalling

    def _on_thread(self, fn, *args):
        if self._closing:
            return
        if threading.get_ident() == self._ui_thread:
            fn(*args)
        else:
            self.call_from_thread(fn, *args)

    def _request_redraw(self):
        self._on_thread(self.refresh_view)

    def _on_log_record(self, record: logging.LogRecord, message: str):
        self._on_thread(self._write_log, message)

    def _write_log(self, message: str):
        log = self.query_one("#activity-log", Log)
        log.write_line(message)

    # Rendering

    def refresh_view(self):
        if self._closing:
            return
        snap = self.client.snapshot()
        self.query_one("#status", StatusPanel).render_snapshot(snap)
        self.query_one("#speed", SpeedPanel).render_snapshot(snap)
        self._update_servers(snap)
        self._update_connections(snap)

    def _update_servers(self, snap: StateSnapshot):
        rows = tuple(
            (s.protocol.upper(), s.name or f"{mask_address(s.address)}:{s.port}",
             format_latency(s.latency_ms))
            for s in snap.servers
        )
        table = self.query_one("#server-table", DataTable)

        if rows != self._server_rows:
            self._server_rows = rows
            with table.prevent(DataTable.RowHighlighted):
                table.clear()
                for protocol, name, latency in rows:
                    if latency == 'timeout':
                        style = 'red'
                    elif latency == '-':
                        style = 'dim'
                    else:
                        style = 'green'
                    table.add_row(protocol, name, Text(latency, style=style))

        if snap.selected_index >= 0 and table.cursor_row != snap.selected_index:
            with table.prevent(DataTable.RowHighlighted):
                table.move_cursor(row=snap.selected_index)

    def _update_connections(self, snap: StateSnapshot):
        table = self.query_one("#conn-table", DataTable)
        table.clear()
        if not snap.connected or snap.counters is None:
            return
        for section in (snap.counters.inbounds, snap.counters.outbounds):
            for tag, (up, down) in sorted(section.items()):
                table.add_row(
                    tag,
                    Text(format_bytes(up), style="green"),
                    Text(format_bytes(down), style="cyan"),
                )

    # Events

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        if event.data_table.id != "server-table":
            return
        if event.cursor_row != self.client.snapshot().selected_index:
            self.client.select_index(event.cursor_row)

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        if event.data_table.id == "server-table":
            self.client.connect(event.cursor_row)

    # Actions

    def action_connect(self):
        self.client.connect()

    def action_disconnect(self):
        self.client.disconnect()

    def action_refresh_catalog(self):
        self.client.refresh_catalog()

    def action_latency_test(self):
        self.client.run_latency_probe()

    def action_toggle_mode(self):
        self.client.toggle_routing_mode()

    def action_force_refresh(self):
        self._server_rows = ()
        self.refresh_view()

    def action_subscription(self):
        current = self.client.snapshot().subscription_url
        self.push_screen(SubscriptionDialog(current), self._on_subscription)

    def _on_subscription(self, url: Optional[str]):
        if url:
            self.client.set_subscription(url)

    def action_quit_app(self):
        if isinstance(self.screen, ModalScreen):
            return
        if self.client.snapshot().phase == ConnectionPhase.DISCONNECTED:
            self._shutdown()
            return
        self.push_screen(
            ConfirmDialog("Quit", "A session is active. Disconnect and quit?"),
            self._on_quit_confirmed
        )

    def _on_quit_confirmed(self, confirmed: bool):
        if confirmed:
            self._shutdown()

    def _shutdown(self):
        self._closing = True
        logging.getLogger(PACKAGE_LOGGER).removeHandler(self._log_handler)
        self.exit()


def run_tui(client: ProxyClient):
    """Run the TUI until the user quits; the caller shuts the client down"""
    app = SuperRayTUI(client)
    app.run()
