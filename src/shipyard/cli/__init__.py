"""Shipyard CLI - operator commands.

Subcommand groups:
- keys: Signing keypair bootstrap, rotation and key set export
- token: Mint platform tokens for operators and debugging
- builds: Build history and maintenance (list, stale build sweep)
"""

from shipyard.cli.main import app, main

__all__ = ["app", "main"]
