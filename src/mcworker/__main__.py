"""Entry point for `python -m mcworker` / `mcworker`.

Subcommands:
    mcworker                     Run the HTTP API (default)
    mcworker create NAME PATH    Create a server container, print its id
    mcworker start|stop|rm ID    Drive one container through its lifecycle
    mcworker logs ID             Print the container's recent output
    mcworker status ID           Print the container's phase
    mcworker op ID USERNAME      Grant operator status to a player
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from mcworker.config import get_settings
from mcworker.errors import LifecycleError
from mcworker.logger import logger, set_level


def _serve(host: str, port: int) -> None:
    from mcworker import db
    from mcworker.http_server import start_http_server

    async def _main() -> None:
        await db.init_database(get_settings().database_path)
        runner = await start_http_server(host, port)
        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()
            await db.close_database()

    logger.info("Starting server")
    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        logger.info("Shutting down")


def _operate(args: argparse.Namespace) -> None:
    from mcworker.lifecycle import LifecycleService
    from mcworker.types import LogQuery, Op, ProvisioningSpecBuilder

    with LifecycleService() as svc:
        match args.command:
            case "create":
                builder = ProvisioningSpecBuilder(args.name, args.volume_path)
                if args.host_port is not None:
                    builder = builder.with_port(args.host_port)
                print(svc.create(builder.build()).id)
            case "start":
                svc.start(svc.get_container(args.id))
            case "stop":
                svc.stop(svc.get_container(args.id))
            case "rm":
                svc.remove(svc.get_container(args.id))
            case "logs":
                for line in svc.logs(svc.get_container(args.id), LogQuery(args.tail)):
                    sys.stdout.write(line)
            case "status":
                status = svc.status(svc.get_container(args.id))
                print(status.phase if not status.error else f"{status.phase}: {status.error}")
            case "op":
                svc.run_command(svc.get_container(args.id), Op(args.username))


def main() -> None:
    settings = get_settings()
    set_level(settings.logging.level)

    parser = argparse.ArgumentParser(
        prog="mcworker",
        description="Minecraft server containers on a Docker engine",
    )
    parser.add_argument("--host", default=settings.server.host, help="HTTP bind host")
    parser.add_argument("--port", type=int, default=settings.server.port, help="HTTP bind port")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Run the HTTP API (default)")

    create = sub.add_parser("create", help="Create a server container")
    create.add_argument("name")
    create.add_argument("volume_path", help="Host directory mounted as the world data dir")
    create.add_argument(
        "--host-port", type=int, default=None, help="Host port for the server (default: 25565)"
    )

    for name, help_text in (
        ("start", "Start a container and verify it came up"),
        ("stop", "Stop a container"),
        ("rm", "Force-remove a container"),
        ("status", "Show a container's phase"),
    ):
        sub.add_parser(name, help=help_text).add_argument("id")

    logs = sub.add_parser("logs", help="Print recent container output")
    logs.add_argument("id")
    logs.add_argument("--tail", default="20", help="Number of lines (default: 20)")

    op = sub.add_parser("op", help="Grant operator status to a player")
    op.add_argument("id")
    op.add_argument("username")

    args = parser.parse_args()

    match args.command:
        case None | "serve":
            _serve(args.host, args.port)
        case _:
            try:
                _operate(args)
            except LifecycleError as exc:
                print(f"Error: {exc}", file=sys.stderr)
                sys.exit(1)


if __name__ == "__main__":
    main()
