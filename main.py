"""Command-line interface for the CASA admin portal."""

from __future__ import annotations
import argparse
import logging
import os
import sys
from getpass import getpass
from pathlib import Path
from typing import Sequence


def _running_in_virtualenv() -> bool:
    """Return ``True`` when the current interpreter is executing inside a venv."""

    base_prefix = getattr(sys, "base_prefix", sys.prefix)
    return sys.prefix != base_prefix


def _bootstrap_virtualenv() -> None:
    """Re-exec the script using the bundled virtualenv interpreter when available."""

    if _running_in_virtualenv():
        return

    root = Path(__file__).resolve().parent
    venv_dir = root / ".venv"
    if not venv_dir.is_dir():
        return

    candidates = (
        venv_dir / "bin" / "python",
        venv_dir / "bin" / "python3",
        venv_dir / "Scripts" / "python.exe",
        venv_dir / "Scripts" / "python",
    )

    script = str(Path(__file__).resolve())
    for candidate in candidates:
        if candidate.exists():
            os.execv(str(candidate), [str(candidate), script, *sys.argv[1:]])


_bootstrap_virtualenv()

from casa.config import Settings, load_settings
from casa.database import Database
from casa.invitations import PASSWORD_MIN_LENGTH
from casa.models import Role

logger = logging.getLogger("casa.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="CASA admin portal utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the portal database")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP admin portal")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the portal")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the portal (default: 8000)",
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

    subparsers.add_parser("admin", help="Launch the interactive administration console")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "admin", "init-db"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_database(settings: Settings) -> Database:
    database = Database(settings.database_path)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(
    *,
    settings: Settings,
    database: Database,
    host: str,
    port: int,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
) -> None:
    from casa.web import create_app
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting admin portal on %s://%s:%s", protocol, host, port)

    try:
        app = create_app(database=database, settings=settings)
    except RuntimeError as exc:
        raise SystemExit(str(exc)) from exc

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
    )


def _run_admin_cli(database: Database) -> None:
    """Provide an interactive console for bootstrapping administrators."""

    print("CASA Admin Portal Administration Console")
    print("Press Ctrl+C at any time to exit.\n")

    try:
        while True:
            print("Select an option:")
            print("  1) List all users")
            print("  2) Add a new admin")
            print("  3) Exit")

            choice = input("Enter choice [1-3]: ").strip()

            if choice == "1":
                _list_users(database)
            elif choice == "2":
                _add_admin(database)
            elif choice == "3":
                print("Goodbye!")
                return
            else:
                print("Invalid selection. Please choose a number from the menu.\n")

            print()
    except KeyboardInterrupt:
        print("\nExiting administration console.")


def _list_users(database: Database) -> None:
    users = database.list_users()
    if not users:
        print("No users are currently registered.")
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Email':<32}  {'Role':<11}  Active")
    print("-" * 84)
    for user in users:
        active = "yes" if user.active else "no"
        print(f"{user.id:>4}  {user.display_name:<24}  {user.email:<32}  {user.role.value:<11}  {active}")


def _add_admin(database: Database) -> None:
    print("\nCreate a new admin (leave the organisation blank to cancel).")
    org_name = input("Organisation: ").strip()
    if not org_name:
        print("Admin creation cancelled.")
        return

    display_name = input("Display name: ").strip()
    email = input("Email address: ").strip()

    password = _prompt_for_password()
    if password is None:
        print("Aborted creating admin.")
        return

    try:
        organisation = database.find_or_create_org(org_name)
        user = database.create_user(
            organisation.id,
            email=email,
            display_name=display_name,
            role=Role.CASA_ADMIN,
            password=password,
        )
    except ValueError as exc:
        print(f"Failed to create admin: {exc}")
        return

    print(f"Created admin #{user.id}: {user.display_name} <{user.email}> in {organisation.name}")


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {PASSWORD_MIN_LENGTH} characters): ")
        if len(password) < PASSWORD_MIN_LENGTH:
            print("Password is too short. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    args = _parse_args(argv)
    settings = load_settings()
    database = _initialise_database(settings)

    if args.command == "serve":
        _serve(
            settings=settings,
            database=database,
            host=args.host,
            port=args.port,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
        )
    elif args.command == "admin":
        _run_admin_cli(database)
    elif args.command == "init-db":
        print("Database initialisation complete.")


if __name__ == "__main__":
    main()
