"""
Command-line entry point.

    warden serve
    warden create-user USERNAME [--role ROLE]
    warden generate-secret
    warden check-config
"""

import argparse
import asyncio
import getpass
import signal
import sys
from typing import List, Optional

from aiohttp import web
from loguru import logger

from .api import create_app
from .auth.database import UserDatabase
from .auth.permissions import DEFAULT_ROLE_ID
from .auth.tickets import TicketBroker
from .auth.user_manager import UserManager
from .collaborators import NullContainerController
from .config import Settings, check_security_config, find_security_issues, generate_secret, load_settings
from .errors import ConfigurationInsecure, RoleNotFound, UserError
from .log import configure_logging
from .stream import ConsoleStreamServer


async def run_server(settings: Settings) -> None:
    """Run the REST API and the console stream server until SIGINT/SIGTERM."""
    manager = UserManager.from_settings(settings)
    manager.db.ensure_bootstrap_admin(settings.manager_username, settings.manager_password)

    tickets = TicketBroker(ttl=settings.ticket_ttl, max_outstanding=settings.max_outstanding_tickets)
    container = NullContainerController()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    stop = loop.create_future()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        if not stop.done():
            loop.call_soon_threadsafe(stop.set_result, None)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    app = create_app(settings, manager=manager, tickets=tickets, container=container)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, settings.http_host, settings.http_port)
    await site.start()
    logger.info(f"HTTP API running on {settings.http_host}:{settings.http_port}")

    stream = ConsoleStreamServer(
        tickets,
        manager.resolver,
        container,
        host=settings.stream_host,
        port=settings.stream_port,
    )
    await stream.start()

    try:
        # Wait for stop signal
        await stop
    finally:
        await stream.stop()
        await runner.cleanup()

    logger.info("Server stopped")


def cmd_serve(args: argparse.Namespace) -> int:
    settings = load_settings()
    configure_logging(settings.log_level, settings.log_file)

    # Bootstrap credentials only matter while the user table is empty
    bootstrap_needed = UserDatabase(settings.db_path, bcrypt_rounds=settings.bcrypt_rounds).count_users() == 0
    try:
        check_security_config(settings, bootstrap_needed=bootstrap_needed)
        asyncio.run(run_server(settings))
    except ConfigurationInsecure as e:
        logger.error(f"Refusing to start: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    return 0


def cmd_create_user(args: argparse.Namespace) -> int:
    settings = load_settings()
    configure_logging(settings.log_level, settings.log_file)
    db = UserDatabase(settings.db_path, bcrypt_rounds=settings.bcrypt_rounds)

    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Confirm password: "):
        print("Passwords do not match", file=sys.stderr)
        return 1

    try:
        user = db.create_user(args.username, password, args.role)
    except (UserError, RoleNotFound) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Created user {user.username} with role {user.role_id}")
    return 0


def cmd_generate_secret(args: argparse.Namespace) -> int:
    print(generate_secret())
    return 0


def cmd_check_config(args: argparse.Namespace) -> int:
    settings = load_settings()
    issues = find_security_issues(settings)

    for issue in issues["critical"]:
        print(f"CRITICAL: {issue}")
    for warning in issues["warnings"]:
        print(f"WARNING: {warning}")

    if issues["critical"]:
        return 1
    print("Configuration OK")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="warden", description="Game-server panel access control")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API and console stream servers")
    serve.set_defaults(func=cmd_serve)

    create = sub.add_parser("create-user", help="Create a panel user (password is prompted)")
    create.add_argument("username")
    create.add_argument("--role", default=DEFAULT_ROLE_ID, help=f"Role id (default: {DEFAULT_ROLE_ID})")
    create.set_defaults(func=cmd_create_user)

    secret = sub.add_parser("generate-secret", help="Print a new token signing secret")
    secret.set_defaults(func=cmd_generate_secret)

    check = sub.add_parser("check-config", help="Report insecure configuration")
    check.set_defaults(func=cmd_check_config)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
