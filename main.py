"""Command-line interface for the DNC checker service."""

from __future__ import annotations

import argparse
import logging
import sys
from getpass import getpass
from typing import Sequence

from dnc_checker.accounts import RegistrationService
from dnc_checker.config import Settings, load_settings
from dnc_checker.database import SQLCredentialStore
from dnc_checker.errors import ConfigurationError, DNCError
from dnc_checker.logging_config import configure_logging
from dnc_checker.pool import ConnectionPool
from dnc_checker.security import PasswordHasher
from dnc_checker.validation import MIN_PASSWORD_LENGTH

logger = logging.getLogger("dnc_checker.main")

KNOWN_COMMANDS = {"serve", "init-db", "create-user", "list-users", "set-active"}


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="DNC checker utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Create the users table and lookup procedures")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP service")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the service")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the HTTP service (default: 8000)",
    )
    serve_parser.add_argument(
        "--ssl-certfile",
        default=None,
        help="Path to the TLS certificate chain in PEM format",
    )
    serve_parser.add_argument(
        "--ssl-keyfile",
        default=None,
        help="Path to the TLS private key in PEM format",
    )

    create_parser = subparsers.add_parser("create-user", help="Create a login account")
    create_parser.add_argument("username", help="Unique username used to sign in")
    create_parser.add_argument("email", help="Unique email address for password resets")

    subparsers.add_parser("list-users", help="List registered accounts")

    active_parser = subparsers.add_parser("set-active", help="Enable or disable an account")
    active_parser.add_argument("user_id", type=int, help="Numeric id of the account")
    active_parser.add_argument(
        "--disable",
        action="store_true",
        help="Disable the account instead of enabling it",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in KNOWN_COMMANDS:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _open_store(settings: Settings) -> SQLCredentialStore:
    pool = ConnectionPool.from_settings(settings.database)
    store = SQLCredentialStore(pool)
    store.initialize()
    logger.info("Database initialised (%s backend)", settings.database.backend)
    return store


def _serve(
    settings: Settings,
    *,
    host: str,
    port: int,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
) -> None:
    from dnc_checker.service import create_app
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting DNC checker on %s://%s:%s", protocol, host, port)

    app = create_app(settings, configure_logs=False)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_config=None,
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
    )


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {MIN_PASSWORD_LENGTH} characters): ")
        if len(password) < MIN_PASSWORD_LENGTH:
            print("Password is too short. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def _create_user(settings: Settings, store: SQLCredentialStore, username: str, email: str) -> int:
    password = _prompt_for_password()
    if password is None:
        print("Aborted creating user.", file=sys.stderr)
        return 1

    registration = RegistrationService(store, PasswordHasher(rounds=settings.bcrypt_rounds))
    try:
        user_id = registration.register(username, email, password)
    except DNCError as exc:
        print(f"Failed to create user: {exc.public_message}", file=sys.stderr)
        return 1

    print(f"Created user #{user_id}: {username.strip()} <{email.strip().lower()}>")
    return 0


def _list_users(store: SQLCredentialStore) -> int:
    users = store.list_users()
    if not users:
        print("No users are currently registered.")
        return 0

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Username':<24}  {'Email':<32}  {'Active':<6}  Created")
    print("-" * 90)
    for user in users:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        active = "yes" if user.is_active else "no"
        print(f"{user.id:>4}  {user.username:<24}  {user.email:<32}  {active:<6}  {created}")
    return 0


def _set_active(store: SQLCredentialStore, user_id: int, *, active: bool) -> int:
    if not store.set_active(user_id, active):
        print(f"No user with id {user_id}.", file=sys.stderr)
        return 1
    state = "enabled" if active else "disabled"
    print(f"User #{user_id} {state}.")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc

    configure_logging(settings.log_level, settings.log_dir)

    if args.command == "serve":
        _serve(
            settings,
            host=args.host,
            port=args.port,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
        )
        return 0

    try:
        store = _open_store(settings)
    except DNCError as exc:
        raise SystemExit(f"Database error: {exc}") from exc

    if args.command == "init-db":
        print("Database initialisation complete.")
        return 0
    if args.command == "create-user":
        return _create_user(settings, store, args.username, args.email)
    if args.command == "list-users":
        return _list_users(store)
    if args.command == "set-active":
        return _set_active(store, args.user_id, active=not args.disable)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
