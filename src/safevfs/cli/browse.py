"""Browse commands: ls and cat without mounting."""

from __future__ import annotations

import sys
from pathlib import Path

import click
from rich.table import Table

from ..config import load_config
from ..fuse_mount import FUSEDaemon
from ._common import SAFEVFS_HOME, console, mode_string


def register_browse_commands(main: click.Group) -> None:
    """Register the ls and cat commands."""

    @main.command("ls")
    @click.argument("path", default="/")
    @click.option("--home", default=SAFEVFS_HOME, type=click.Path(), help="safevfs home directory.")
    def ls(path: str, home: str):
        """List a virtual directory straight from the launcher.

        \b
        Examples:

            safevfs ls /public

            safevfs ls /dns
        """
        home_path = Path(home).expanduser()
        vfs = FUSEDaemon(home=home_path, config=load_config(home_path)).build_vfs()

        try:
            names = vfs.contents(path)
        except OSError as exc:
            console.print(f"[bold red]{path}:[/] {exc.strerror}")
            sys.exit(1)

        table = Table(show_header=True, box=None, padding=(0, 2))
        table.add_column("Mode", style="dim")
        table.add_column("Size", justify="right")
        table.add_column("Name")

        base = path.rstrip("/")
        for name in names:
            attrs = vfs.getattr(f"{base}/{name}")
            table.add_row(mode_string(attrs), str(attrs.get("st_size", 0)), name)

        console.print(table)

    @main.command("cat")
    @click.argument("path")
    @click.option("--home", default=SAFEVFS_HOME, type=click.Path(), help="safevfs home directory.")
    def cat(path: str, home: str):
        """Print a file's contents to stdout.

        \b
        Example:

            safevfs cat /private/notes/todo.txt
        """
        home_path = Path(home).expanduser()
        vfs = FUSEDaemon(home=home_path, config=load_config(home_path)).build_vfs()

        try:
            handle = vfs.raw_open(path, "r")
            try:
                body = vfs.raw_read(handle, 0, vfs.size(path))
            finally:
                vfs.raw_close(handle)
        except OSError as exc:
            console.print(f"[bold red]{path}:[/] {exc.strerror}")
            sys.exit(1)

        click.echo(body, nl=False)
