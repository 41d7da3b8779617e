"""Setup commands: init."""

from __future__ import annotations

from pathlib import Path

import click

from ..config import config_path, load_config, write_config
from ._common import SAFEVFS_HOME, console


def register_setup_commands(main: click.Group) -> None:
    """Register the init command."""

    @main.command()
    @click.option("--home", default=SAFEVFS_HOME, type=click.Path(), help="safevfs home directory.")
    @click.option("--launcher-url", default=None, help="SAFE launcher endpoint.")
    @click.option("--mount-point", default=None, type=click.Path(), help="Default mount point.")
    @click.option("--force", is_flag=True, default=False, help="Overwrite an existing config.")
    def init(home: str, launcher_url: str, mount_point: str, force: bool):
        """Write a config file with the default settings.

        \b
        Example:

            safevfs init --launcher-url http://localhost:8100
        """
        home_path = Path(home).expanduser()
        existing = config_path(home_path)
        if existing.exists() and not force:
            console.print(f"[yellow]Config already exists at[/] {existing} [dim](use --force)[/]")
            return

        config = load_config(home_path)
        if launcher_url:
            config.launcher_url = launcher_url
        if mount_point:
            config.mount_point = Path(mount_point)

        written = write_config(config, home_path)
        console.print(f"[green]Wrote[/] {written}")
