"""
Main CLI dispatcher for THW-SwitchKit.
"""

import sys
import argparse
import logging

from thw_switchkit.toolkit.cli import (
    setup_switch_args, handle_switch_command,
    setup_monitor_args, handle_monitor_command
)

# name -> (help, argument setup, handler)
COMMANDS = {
    "switch": (
        "Move the funded identity from the active node to the standby node.",
        setup_switch_args, handle_switch_command,
    ),
    "monitor": (
        "Watch validator pairs, send alerts and optionally fail over automatically.",
        setup_monitor_args, handle_monitor_command,
    ),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="THW-SwitchKit - Solana validator active/standby identity switching"
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run", required=True)
    for name, (help_text, setup, _) in COMMANDS.items():
        setup(subparsers.add_parser(name, help=help_text))

    # Common arguments go before the command name
    parser.add_argument("--config", help="Path to a custom TOML configuration file.")
    parser.add_argument("--version", action="store_true", help="Show version and exit.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose (DEBUG level) logging for all modules.")
    return parser


def configure_logging(verbose: bool):
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=log_level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s', force=True)
    if not verbose:
        # Retry chatter from the cluster RPC client
        logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("thw_switchkit.cli").debug(f"Log level set to {logging.getLevelName(log_level)}")


def main():
    """Main entry point for the unified CLI."""
    # Handled before parsing so it works without a command
    if "--version" in sys.argv[1:]:
        from thw_switchkit import __version__
        print(f"THW-SwitchKit v{__version__}")
        sys.exit(0)

    args = build_parser().parse_args()
    configure_logging(args.verbose)

    _, _, handler = COMMANDS[args.command]
    handler(args)


if __name__ == "__main__":
    main()
