#!/usr/bin/env python3
"""relaybridge entry point.

    relaybridge status [--json]   report on the bridge running on this machine
    relaybridge [options]         run the bridge (see ``relaybridge --help``)
"""

import json
import sys


def print_status(as_json: bool = False) -> int:
    from rich.console import Console

    from .runtime import get_status

    status = get_status()
    if as_json:
        print(json.dumps(status, indent=2))
    else:
        console = Console()
        if not status.get("running"):
            console.print("[red]relaybridge is not running[/red]")
        else:
            link = "[green]connected[/green]" if status.get("relay_connected") else "[yellow]disconnected[/yellow]"
            console.print(f"relaybridge {status['version']} (pid {status['pid']}) on {status['url']}")
            console.print(f"Relay {status.get('relay_url') or '?'}: {link}")
    return 0 if status.get("running") else 1


def main():
    args = sys.argv[1:]
    if args and args[0] == "status":
        sys.exit(print_status(as_json="--json" in args[1:]))

    from .cli import main as cli_main
    cli_main()


if __name__ == "__main__":
    main()
