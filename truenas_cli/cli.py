"""TrueNAS command-line interface.

Lists and controls virtual machines and applications on an appliance. The
connection settings come from ``TRUENAS_*`` environment variables, optionally
loaded from a dotenv file.

Before a transition the CLI reads the current state and refuses transitions
that would do nothing, such as starting a running VM or restarting a stopped
app.
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from truenas_sdk import ClientConfig, TrueNASClient, TrueNASSDKError, init_logging
from truenas_sdk.core.config import LogLevel
from truenas_sdk.core.logging import get_logger

logger = get_logger(__name__)

VM_ACTIONS = ("list", "status", "start", "stop", "restart")
APP_ACTIONS = ("list", "status", "start", "stop", "restart")


class RefusedTransition(Exception):
    """The requested transition would not change anything."""
    pass


def print_table(rows: List[List[str]], headers: List[str]) -> None:
    widths = [len(h) for h in headers]
    for row in rows:
        widths = [max(w, len(cell)) for w, cell in zip(widths, row)]
    print("  ".join(h.ljust(w) for h, w in zip(headers, widths)).rstrip())
    for row in rows:
        print("  ".join(cell.ljust(w) for cell, w in zip(row, widths)).rstrip())


async def run_vm_command(client: TrueNASClient, args: argparse.Namespace) -> str:
    """Execute a ``vms`` subcommand and return the success message."""
    if args.action == "list":
        vms = await client.list_vms()
        print_table([[str(vm.id), vm.name, vm.state] for vm in vms], ["ID", "NAME", "STATE"])
        return f"{len(vms)} VM(s)"

    vm = await client.get_vm_state(args.target)
    if args.action == "status":
        pid = vm.status.pid if vm.status.pid is not None else "-"
        return f"VM {vm.id} ({vm.name}): {vm.state} pid={pid}"

    if args.action == "start":
        if vm.is_running:
            raise RefusedTransition("VM is already running")
        await client.start_vm(vm.id)
        return "VM started successfully"
    if args.action == "stop":
        if vm.state.upper() == "STOPPED":
            raise RefusedTransition("VM is already stopped")
        await client.stop_vm(vm.id, force=args.force)
        return "VM stopped successfully"

    if vm.state.upper() == "STOPPED":
        raise RefusedTransition("VM is stopped")
    await client.restart_vm(vm.id)
    return "VM restarted successfully"


async def run_app_command(client: TrueNASClient, args: argparse.Namespace) -> str:
    """Execute an ``apps`` subcommand and return the success message."""
    if args.action == "list":
        apps = await client.list_apps()
        print_table([[app.name, app.state] for app in apps], ["NAME", "STATE"])
        return f"{len(apps)} app(s)"

    app = await client.get_app_state(args.target)
    if args.action == "status":
        return f"App {app.name}: {app.state}"

    if args.action == "start":
        if app.is_running:
            raise RefusedTransition("Application is already running")
        await client.start_app(app.name)
        return "Application started successfully"
    if args.action == "stop":
        if app.state.upper() == "STOPPED":
            raise RefusedTransition("Application is already stopped")
        await client.stop_app(app.name)
        return "Application stopped successfully"

    if app.state.upper() == "STOPPED":
        raise RefusedTransition("Application is stopped")
    await client.restart_app(app.name)
    return "Application restarted successfully"


async def run_command(config: ClientConfig, args: argparse.Namespace) -> str:
    async with TrueNASClient(config) as client:
        if args.resource == "vms":
            return await run_vm_command(client, args)
        return await run_app_command(client, args)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="truenas",
        description="Manage virtual machines and apps on a TrueNAS appliance",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging"
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="Dotenv file with TRUENAS_* settings"
    )

    subparsers = parser.add_subparsers(
        title="resources",
        dest="resource",
        help="Resource kind"
    )

    vms_parser = subparsers.add_parser("vms", help="Virtual machines")
    vms_parser.add_argument("action", choices=VM_ACTIONS, help="Operation")
    vms_parser.add_argument("target", nargs="?", type=int, help="VM id")
    vms_parser.add_argument(
        "--force",
        action="store_true",
        help="Force the stop"
    )

    apps_parser = subparsers.add_parser("apps", help="Applications")
    apps_parser.add_argument("action", choices=APP_ACTIONS, help="Operation")
    apps_parser.add_argument("target", nargs="?", help="App name")

    return parser


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Command line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = build_parser()
    parsed = parser.parse_args(args)

    if parsed.resource is None:
        parser.print_help()
        return 0
    if parsed.action != "list" and parsed.target is None:
        parser.error(f"{parsed.resource} {parsed.action} needs a target")

    init_logging(level="DEBUG" if parsed.verbose else "WARNING", fmt="text")

    try:
        config = ClientConfig.from_env(parsed.env_file)
        if parsed.verbose:
            config = config.model_copy(update={"log_level": LogLevel.DEBUG})
        message = asyncio.run(run_command(config, parsed))
    except RefusedTransition as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except TrueNASSDKError as e:
        print(f"error: {e}", file=sys.stderr)
        if parsed.verbose:
            logger.exception("Detailed error")
        return 1

    print(message)
    return 0


if __name__ == "__main__":
    sys.exit(main())
