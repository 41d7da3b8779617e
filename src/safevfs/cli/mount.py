"""FUSE mount commands: start, stop, status."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Optional

import click
from rich.panel import Panel
from rich.table import Table

from ._common import SAFEVFS_HOME, console


def _daemon(mount_point: Optional[str], home: str):
    from ..fuse_mount import FUSEDaemon

    mount_path = Path(mount_point).expanduser() if mount_point else None
    return FUSEDaemon(mount_point=mount_path, home=Path(home).expanduser())


def register_mount_commands(main: click.Group) -> None:
    """Register the mount command group."""

    @main.group()
    def mount():
        """SAFE FUSE filesystem -- browse the network as files.

        \b
        Mount:    safevfs mount start
        Debug:    safevfs mount start --foreground
        Unmount:  safevfs mount stop
        Status:   safevfs mount status
        """

    @mount.command("start")
    @click.option(
        "--mount-point",
        default=None,
        type=click.Path(),
        help="Directory to mount at (defaults to the configured mount point).",
    )
    @click.option("--home", default=SAFEVFS_HOME, type=click.Path(), help="safevfs home directory.")
    @click.option(
        "--foreground",
        "foreground",
        is_flag=True,
        default=False,
        help="Run in foreground (blocks; useful for debugging).",
    )
    def mount_start(mount_point: Optional[str], home: str, foreground: bool):
        """Mount the SAFE virtual filesystem.

        \b
        Requires: pip install safevfs[fuse]

        \b
        Examples:

            safevfs mount start

            safevfs mount start --mount-point /mnt/safe --foreground
        """
        daemon = _daemon(mount_point, home)
        mount_path = daemon.status()["mount_point"]

        if foreground:
            console.print(
                f"[bold cyan]Mounting SAFE filesystem at [white]{mount_path}[/] "
                f"[dim](foreground, Ctrl-C to unmount)[/]"
            )
        else:
            console.print(f"[bold cyan]Mounting SAFE filesystem at [white]{mount_path}[/] ...")

        ok = daemon.start(foreground=foreground)

        if ok and not foreground:
            console.print("[green]Mounted.[/] [dim]Unmount with: safevfs mount stop[/]")
        elif not ok:
            console.print("[bold red]Mount failed.[/] Check logs or try --foreground for details.")
            sys.exit(1)

    @mount.command("stop")
    @click.option("--mount-point", default=None, type=click.Path(), help="Mount point to unmount.")
    @click.option("--home", default=SAFEVFS_HOME, type=click.Path(), help="safevfs home directory.")
    def mount_stop(mount_point: Optional[str], home: str):
        """Unmount the SAFE virtual filesystem."""
        daemon = _daemon(mount_point, home)
        mount_path = daemon.status()["mount_point"]
        console.print(f"[bold cyan]Unmounting {mount_path} ...[/]")

        if daemon.stop():
            console.print("[green]Unmounted.[/]")
        else:
            console.print(
                "[bold red]Unmount failed.[/] "
                f"[dim]Try manually: fusermount -u {mount_path}[/]"
            )
            sys.exit(1)

    @mount.command("status")
    @click.option("--mount-point", default=None, type=click.Path(), help="Mount point to check.")
    @click.option("--home", default=SAFEVFS_HOME, type=click.Path(), help="safevfs home directory.")
    @click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
    def mount_status(mount_point: Optional[str], home: str, as_json: bool):
        """Show the status of the SAFE FUSE filesystem.

        \b
        Example:

            safevfs mount status --json
        """
        status = _daemon(mount_point, home).status()

        if as_json:
            click.echo(json.dumps(status, indent=2))
            return

        mounted = status.get("mounted", False)
        icon = "[bold green]MOUNTED[/]" if mounted else "[bold red]NOT MOUNTED[/]"
        pid = status.get("pid")
        updated = status.get("updated_at")

        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("Key", style="dim")
        table.add_column("Value")

        table.add_row("Status", icon)
        table.add_row("Mount point", str(status.get("mount_point", "")))
        table.add_row("Launcher", str(status.get("launcher_url", "")))
        table.add_row("Home", str(status.get("home", "")))
        table.add_row("PID", str(pid) if pid else "[dim]—[/]")
        table.add_row("Last updated", updated or "[dim]—[/]")

        console.print()
        console.print(Panel(table, title="[bold]SAFE Filesystem Status[/]", border_style="cyan"))
        console.print()
