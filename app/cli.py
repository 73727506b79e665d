"""CLI entrypoints for messaging instance operational tasks."""

from __future__ import annotations

import argparse
import asyncio
import json
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from app.config import configure_structlog, get_settings
from app.dependencies import build_messaging_client
from messaging.client import InstanceLifecycleClient
from messaging.exceptions import MessagingError

ClientFactory = Callable[[], InstanceLifecycleClient]
Command = Callable[[InstanceLifecycleClient, argparse.Namespace], Awaitable[dict[str, Any]]]


def _default_client_factory() -> InstanceLifecycleClient:
    """Build a client from environment settings."""
    settings = get_settings()
    configure_structlog(settings)
    return build_messaging_client(settings)


async def _status(client: InstanceLifecycleClient, args: argparse.Namespace) -> dict[str, Any]:
    status = await client.get_connection_state(args.name, instance_token=args.instance_token)
    return {"name": status.name, "state": status.state.value, "connected": status.is_connected}


async def _pairing_code(
    client: InstanceLifecycleClient, args: argparse.Namespace
) -> dict[str, Any]:
    result = await client.connect_with_pairing_code(args.name, args.phone)
    return {
        "name": result.name,
        "pairing_code": result.artifact.pairing_code,
        "qr_code": result.artifact.qr_code,
        "instance_token": result.instance_token,
    }


async def _qr_code(client: InstanceLifecycleClient, args: argparse.Namespace) -> dict[str, Any]:
    artifact = await client.get_connection_code(args.name)
    return {"name": args.name, "qr_code": artifact.qr_code, "pairing_code": artifact.pairing_code}


async def _delete(client: InstanceLifecycleClient, args: argparse.Namespace) -> dict[str, Any]:
    existed = await client.delete_instance(args.name, instance_token=args.instance_token)
    return {"name": args.name, "deleted": True, "existed": existed}


async def _logout(client: InstanceLifecycleClient, args: argparse.Namespace) -> dict[str, Any]:
    await client.logout_instance(args.name, instance_token=args.instance_token)
    return {"name": args.name, "logged_out": True}


_COMMANDS: dict[str, Command] = {
    "status": _status,
    "pairing-code": _pairing_code,
    "qr-code": _qr_code,
    "delete": _delete,
    "logout": _logout,
}


async def _run(command: Command, args: argparse.Namespace, client_factory: ClientFactory) -> int:
    """Run one command and print its JSON result."""
    async with client_factory() as client:
        try:
            result = await command(client, args)
        except MessagingError as exc:
            print(json.dumps({"code": exc.code, "detail": exc.detail}))
            return 1
    print(json.dumps(result))
    return 0


def _build_parser() -> argparse.ArgumentParser:
    """Build command-line parser for supported operational commands."""
    parser = argparse.ArgumentParser(prog="python -m app.cli")
    subcommands = parser.add_subparsers(dest="command", required=True)

    status_parser = subcommands.add_parser("status", help="Show an instance's connection state.")
    status_parser.add_argument("name")
    status_parser.add_argument("--instance-token", default=None)

    pairing_parser = subcommands.add_parser(
        "pairing-code", help="Create an instance for a phone and print its pairing code."
    )
    pairing_parser.add_argument("name")
    pairing_parser.add_argument("--phone", required=True)

    qr_parser = subcommands.add_parser("qr-code", help="Fetch the current QR code.")
    qr_parser.add_argument("name")

    for command in ("delete", "logout"):
        command_parser = subcommands.add_parser(command)
        command_parser.add_argument("name")
        command_parser.add_argument("--instance-token", default=None)
    return parser


def main(
    argv: Sequence[str] | None = None,
    client_factory: ClientFactory | None = None,
) -> int:
    """Run CLI command."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    command = _COMMANDS.get(args.command)
    if command is None:
        parser.error("Unsupported command")
        return 2
    return asyncio.run(_run(command, args, client_factory or _default_client_factory))


if __name__ == "__main__":
    raise SystemExit(main())
