"""CLI command modules."""

from . import config_cmd, demo_cmd, nodes_cmd

__all__ = ["config_cmd", "demo_cmd", "nodes_cmd"]
