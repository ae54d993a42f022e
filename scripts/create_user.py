import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from apm_demo.database import Database, StorageError, resolve_database_path


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a user in the APM demo database")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Unique email address")
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to APM_DEMO_DB_PATH or data/app.db)",
    )
    parser.add_argument(
        "--no-seed",
        dest="seed",
        action="store_false",
        help="Do not insert the sample users when the database is empty",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    name = args.name.strip()
    email = args.email.strip()
    if not name or not email:
        print("Error: name and email are required", file=sys.stderr)
        return 1

    db_env = args.db_path or os.getenv("APM_DEMO_DB_PATH")
    db_path = resolve_database_path(db_env)

    database = Database(db_path, seed_sample_data=args.seed)
    try:
        database.initialize()
    except StorageError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    try:
        user = database.create_user(name, email)
    except StorageError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        database.close()

    print(f"Created user #{user.id}: {user.name} <{user.email}>")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
