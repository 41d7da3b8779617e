"""
safevfs -- the SAFE network as a mountable filesystem.

Browse, read, write, rename and symlink files on the SAFE network
through an ordinary POSIX mount point. The adapter hides the gap
between what the network offers (whole-file create/delete, a flat
public/private item set, a DNS registry) and what a filesystem client
expects.
"""

import os

__version__ = "0.2.0"
__author__ = "safevfs contributors"

SAFEVFS_HOME = os.environ.get("SAFEVFS_HOME", "~/.safevfs")
