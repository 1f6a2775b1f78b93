import argparse
import getpass
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from casa.config import load_settings, resolve_database_path
from casa.database import Database
from casa.invitations import PASSWORD_MIN_LENGTH
from casa.models import Role


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create the first admin of a CASA organisation")
    parser.add_argument("organisation", help="Organisation name (created when missing)")
    parser.add_argument("display_name", help="Display name for the admin")
    parser.add_argument("email", help="Unique email address for login")
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to CASA_DB_PATH or data/casa.sqlite3)",
    )
    return parser.parse_args()


def prompt_for_password() -> str:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if len(password) < PASSWORD_MIN_LENGTH:
            print(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def main() -> int:
    args = parse_args()
    password = prompt_for_password()

    db_path = resolve_database_path(args.db_path) if args.db_path else load_settings().database_path

    database = Database(db_path)
    database.initialize()

    try:
        organisation = database.find_or_create_org(args.organisation)
        user = database.create_user(
            organisation.id,
            email=args.email,
            display_name=args.display_name,
            role=Role.CASA_ADMIN,
            password=password,
        )
    except ValueError as exc:  # duplicates, blank fields, etc.
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created admin #{user.id}: {user.display_name} <{user.email}> in {organisation.name}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
