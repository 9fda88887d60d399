"""
Command-line interface for the SuperRay client
"""

import argparse
import logging
import signal
import sys
import time
from pathlib import Path
from typing import List, Optional
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.live import Live
from rich.progress import (
    Progress, SpinnerColumn, TextColumn
)
from rich import box
from rich.markup import escape

from ..core.client import ProxyClient
from ..core.config_manager import ConfigManager
from ..core.errors import EngineError
from ..core.types import RoutingMode, StateSnapshot
from ..utils.formatting import (
    format_bytes, format_speed, format_latency, mask_address
)
from ..utils.logging_setup import (
    PACKAGE_LOGGER, setup_console_logging, setup_file_logging, set_logging_level
)
from ..utils.system_check import get_system_info

console = Console()


class ClientCLI:
    """One-shot commands on top of the client's command surface"""

    def __init__(self, client: ProxyClient):
        self.client = client

    def _wait(self, thread) -> bool:
        """Join a command worker; False when the command was rejected"""
        if thread is None:
            return False
        thread.join()
        return True

    def _load_catalog(self) -> bool:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
        ) as progress:
            progress.add_task("Updating subscription...", total=None)
            self._wait(self.client.refresh_catalog())

        if not self.client.snapshot().servers:
            console.print("[yellow]No servers found[/yellow]")
            return False
        return True

    def _server_table(self, snap: StateSnapshot, title: str) -> Table:
        table = Table(title=title, box=box.ROUNDED)
        table.add_column("#", style="cyan", justify="right")
        table.add_column("Protocol", style="yellow")
        table.add_column("Name", style="white")
        table.add_column("Address", style="blue")
        table.add_column("Latency", style="green")

        for i, server in enumerate(snap.servers):
            latency = format_latency(server.latency_ms)
            if server.latency_timed_out:
                latency = f"[red]{latency}[/red]"
            table.add_row(
                str(i),
                server.protocol.upper(),
                escape(server.display_name()),
                f"{mask_address(server.address)}:{server.port}",
                latency
            )
        return table

    def list_servers(self) -> int:
        """List subscription servers"""
        if not self._load_catalog():
            return 1
        snap = self.client.snapshot()
        console.print(self._server_table(snap, "Available Servers"))
        console.print(f"[dim]Total: {len(snap.servers)} servers[/dim]")
        return 0

    def test_latency(self) -> int:
        """Probe every server and print them ranked by latency"""
        if not self._load_catalog():
            return 1

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
        ) as progress:
            progress.add_task(
                f"Testing {len(self.client.snapshot().servers)} servers...",
                total=None
            )
            self._wait(self.client.run_latency_probe())

        snap = self.client.snapshot()
        console.print(self._server_table(snap, "Latency Test"))
        reachable = sum(1 for s in snap.servers if s.latency_measured)
        console.print(f"[dim]{reachable}/{len(snap.servers)} reachable[/dim]")
        return 0

    def connect(self, index: int = 0, system_wide: bool = False) -> int:
        """Connect and show live traffic until interrupted"""
        if not self._load_catalog():
            return 1

        if system_wide:
            self._wait(self.client.toggle_routing_mode())
            if self.client.snapshot().routing_mode != RoutingMode.SYSTEM_WIDE:
                console.print("[red]✗ System-wide mode unavailable[/red]")
                return 1

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
        ) as progress:
            progress.add_task("Connecting...", total=None)
            if not self._wait(self.client.connect(index)):
                return 1

        snap = self.client.snapshot()
        if not snap.connected:
            console.print("[red]✗ Connection failed[/red]")
            return 1

        console.print("[green]✓ Connected successfully[/green]")
        self.client.telemetry.start()
        try:
            with Live(self._status_panel(snap), console=console,
                      refresh_per_second=2) as live:
                while self.client.snapshot().connected:
                    time.sleep(1)
                    live.update(self._status_panel(self.client.snapshot()))
        except KeyboardInterrupt:
            pass
        finally:
            self.client.shutdown()

        console.print("[green]✓ Disconnected[/green]")
        return 0

    def _status_panel(self, snap: StateSnapshot) -> Panel:
        server = snap.active_server
        mode = (
            "System-wide (TUN)" if snap.routing_mode == RoutingMode.SYSTEM_WIDE
            else "Proxy"
        )
        lines = [
            f"[bold]Server:[/bold] {escape(server.display_name()) if server else '-'}",
            f"[bold]Mode:[/bold] {mode}",
            f"[bold]SOCKS5:[/bold] 127.0.0.1:{snap.local_port}   "
            f"[bold]HTTP:[/bold] 127.0.0.1:{snap.local_port + 1}",
            f"[green]↑ {format_speed(snap.rate.upload_bps)}[/green]   "
            f"[blue]↓ {format_speed(snap.rate.download_bps)}[/blue]",
            f"Total: ↑ {format_bytes(snap.total_upload)}   "
            f"↓ {format_bytes(snap.total_download)}",
            "",
            "[dim]Press Ctrl+C to disconnect[/dim]",
        ]
        return Panel("\n".join(lines), title="Connection", box=box.ROUNDED)

    def version(self) -> int:
        info = get_system_info()
        table = Table(title="Version", box=box.ROUNDED)
        table.add_column("Component", style="cyan")
        table.add_column("Value", style="white")
        table.add_row("Engine", self.client.version())
        table.add_row("Platform", f"{info['platform']} {info['platform_release']}")
        table.add_row("Python", info['python_version'])
        table.add_row("Root", "yes" if info['is_root'] else "no")
        table.add_row("TUN", "available" if info['tun_available'] else "unavailable")
        console.print(table)
        return 0


_active_client: Optional[ProxyClient] = None


def signal_handler(signum, frame):
    """Handle termination signals gracefully"""
    console.print(f"\nReceived signal {signum}, shutting down...")
    if _active_client is not None:
        _active_client.emergency_disconnect()
    sys.exit(0)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='superray-tui',
        description='Terminal client for Xray proxies powered by SuperRay',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                       # launch the TUI
  %(prog)s list
  %(prog)s test
  %(prog)s connect --index 3
  sudo %(prog)s connect --index 3 --system-wide
        """
    )
    parser.add_argument('--config', type=Path, help='Path to settings.yaml')
    parser.add_argument('--log-file', type=Path, help='Path to log file')
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Set logging level'
    )

    subparsers = parser.add_subparsers(
        dest='command',
        help='Command to execute'
    )
    subparsers.add_parser('tui', help='Launch Terminal User Interface (default)')
    subparsers.add_parser('list', help='List subscription servers')
    subparsers.add_parser('test', help='Test latency of all servers')

    connect_parser = subparsers.add_parser('connect', help='Connect to a server')
    connect_parser.add_argument('--index', type=int, default=0,
                                help='Server index as shown by "list"')
    connect_parser.add_argument('--system-wide', action='store_true',
                                help='Route all traffic through a TUN device (root)')

    subparsers.add_parser('version', help='Show engine and platform versions')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    global _active_client

    args = build_parser().parse_args(argv)
    command = args.command or 'tui'

    signal.signal(signal.SIGTERM, signal_handler)
    # Textual owns Ctrl+C in the TUI; "connect" turns it into a clean disconnect
    if command not in ('tui', 'connect'):
        signal.signal(signal.SIGINT, signal_handler)

    config = ConfigManager(args.config)
    log_level = args.log_level or config.get('log_level', 'INFO')
    level = getattr(logging, log_level.upper(), logging.INFO)

    logger = setup_file_logging(
        PACKAGE_LOGGER, args.log_file or Path(config.get('log_file')), level
    )
    set_logging_level(log_level)
    if command != 'tui':
        setup_console_logging(max(level, logging.WARNING))

    try:
        client = ProxyClient.from_config(config)
    except EngineError as e:
        logger.error(f"Failed to initialize engine: {e}")
        console.print(f"[red]✗ {e}[/red]")
        console.print("[dim]Set SUPERRAY_LIB or library_path to libsuperray[/dim]")
        return 1
    _active_client = client

    try:
        cli = ClientCLI(client)
        if command == 'connect':
            return cli.connect(index=args.index, system_wide=args.system_wide)
        if command in ('list', 'test', 'version'):
            handler = {
                'list': cli.list_servers,
                'test': cli.test_latency,
                'version': cli.version,
            }[command]
            code = handler()
            client.shutdown()
            return code

        from ..ui.app import run_tui
        run_tui(client)
        client.shutdown()
        return 0

    except KeyboardInterrupt:
        console.print("\nOperation cancelled by user")
        client.shutdown()
        return 0
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        client.emergency_disconnect()
        return 1
    finally:
        _active_client = None
