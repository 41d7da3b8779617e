"""
safevfs CLI -- mount and inspect the SAFE virtual filesystem.

Each command group lives in its own module and is attached to the main
Click group through a register function.

Entry point: safevfs.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="safevfs")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def main(verbose: bool):
    """safevfs -- the SAFE network as a mountable filesystem.

    Browse, read, write, rename and symlink files on the SAFE network
    through an ordinary mount point.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .setup import register_setup_commands
from .browse import register_browse_commands
from .mount import register_mount_commands

register_setup_commands(main)
register_browse_commands(main)
register_mount_commands(main)
