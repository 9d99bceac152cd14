"""CLI interface for the Toolkit component."""

import argparse
from typing import Any
import sys # For sys.exit

# --- Switch Command ---
def setup_switch_args(parser: argparse.ArgumentParser):
    """Set up arguments for the 'switch' command."""
    parser.add_argument("--pair", type=int, default=0, help="Index of the validator pair in the config (default: 0).")
    parser.add_argument("--dry-run", action="store_true", help="Show the switch plan and measure the tower transfer without changing any identity.")
    parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation.")

def handle_switch_command(args: Any):
    """Handle the 'switch' command."""
    from thw_switchkit.toolkit.commands.switch import manage_switch
    success = manage_switch(
        pair_index=args.pair,
        dry_run=args.dry_run,
        interactive=not args.yes,
        config_path=args.config if hasattr(args, "config") else None
    )
    if not success:
        sys.exit(1)

# --- Monitor Command ---
def setup_monitor_args(parser: argparse.ArgumentParser):
    """Set up arguments for the 'monitor' command."""
    parser.add_argument("--pair", type=int, help="Only monitor this validator pair (default: all configured pairs).")

def handle_monitor_command(args: Any):
    """Handle the 'monitor' command."""
    from thw_switchkit.toolkit.commands.monitor import run_monitor
    success = run_monitor(
        config_path=args.config if hasattr(args, "config") else None,
        pair_index=args.pair
    )
    if not success:
        sys.exit(1)
