"""
Command line entry point.

    liveserver serve --root site/ --port 8000
    liveserver reload
    liveserver echo 3 "hello"
"""

import argparse
import asyncio
import sys

from liveserver.client import DEFAULT_URL, ControllerClient
from liveserver.config import Settings, get_settings
from liveserver.errors import ProtocolError
from liveserver.logs import setup_logging
from liveserver.protocol import EchoResult
from liveserver.server import run

COMMANDS = ("serve", "reload", "echo")


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--log-level", default=None, help="Log level (default: info)")

    parser = argparse.ArgumentParser(prog="liveserver", description="Simple Live Server")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", parents=[common], help="Serve a directory with live reload")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.add_argument("--root", default=None, help="Directory to serve (default: current directory)")
    serve.add_argument("--workers", type=int, default=None, help="Threads for file reads")
    serve.add_argument("--no-inject", dest="inject", action="store_false", default=None,
                       help="Serve HTML without the live-reload script")
    serve.add_argument("--no-watch", dest="watch", action="store_false", default=None,
                       help="Do not reload clients when files change")

    reload_cmd = sub.add_parser("reload", parents=[common], help="Reload every connected browser")
    reload_cmd.add_argument("--url", default=DEFAULT_URL)

    echo = sub.add_parser("echo", parents=[common], help="Send a message to one client and wait for its echo")
    echo.add_argument("target", type=int, help="Client id")
    echo.add_argument("message")
    echo.add_argument("--url", default=DEFAULT_URL)

    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Environment settings overridden by any flag given on the command line."""
    names = ("host", "port", "root", "workers", "inject", "watch", "log_level")
    overrides = {name: getattr(args, name) for name in names if getattr(args, name, None) is not None}
    if not overrides:
        return get_settings()
    return Settings(**overrides)


async def control(args: argparse.Namespace) -> int:
    async with ControllerClient(args.url) as controller:
        if args.command == "reload":
            await controller.reload()
            print(f"Reload sent as controller {controller.assigned_id}")
            return 0

        result = await controller.echo(args.target, args.message)
        if not isinstance(result.payload, EchoResult):
            print(f"Client {args.target} is not connected", file=sys.stderr)
            return 1
        print(result.payload.message)
        return 0


def main(argv=None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    # Serving is the default
    if not argv or argv[0] not in COMMANDS + ("-h", "--help"):
        argv.insert(0, "serve")

    args = build_parser().parse_args(argv)
    settings = settings_from_args(args)
    setup_logging(settings.log_level)

    if args.command == "serve":
        run(settings)
        return 0

    try:
        return asyncio.run(control(args))
    except (OSError, asyncio.TimeoutError, ProtocolError) as e:
        print(f"[!] {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
