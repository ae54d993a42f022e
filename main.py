"""Command-line interface for the APM demo service."""

from __future__ import annotations
import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence, Tuple

try:
    import httpx
except ImportError as exc:  # pragma: no cover - exercised in environments missing deps
    raise SystemExit(
        "The 'httpx' package is required. Run `pip install -e .` to install dependencies."
    ) from exc

from apm_demo.config import ServiceConfig, load_service_config
from apm_demo.database import ConstraintError, Database, InitializationError, StorageError

logger = logging.getLogger("apm_demo.main")

_DEFAULT_SERVICE_URL = "http://localhost:3000"

# Requests issued by the ``traffic`` command, one pass per round.
TRAFFIC_PLAN: Tuple[Tuple[str, str], ...] = (
    ("GET", "/api/health"),
    ("GET", "/api/users"),
    ("GET", "/api/users/1"),
    ("GET", "/api/slow-query?delay=500"),
    ("GET", "/api/memory-intensive?size=100000"),
    ("GET", "/api/random-error"),
    ("GET", "/api/external-call"),
    ("GET", "/api/custom-metrics"),
    ("GET", "/api/complex-operation"),
)

ENDPOINT_SUMMARY = (
    "GET  /api/health - Health check",
    "GET  /api/users - Fast endpoint",
    "GET  /api/slow-query - Slow endpoint (add ?delay=5000)",
    "GET  /api/memory-intensive - Memory intensive (add ?size=1000000)",
    "GET  /api/random-error - Random errors",
    "GET  /api/external-call - External API simulation",
    "GET  /api/custom-metrics - Custom metrics",
    "GET  /api/metrics - Recorded metrics snapshot",
    "GET  /api/complex-operation - Complex operation",
    "POST /api/users - Create user",
    "GET  /api/users/:id - Get user by ID",
)


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (default: APM_DEMO_CONFIG or config/service.yaml)",
    )

    parser = argparse.ArgumentParser(description="APM demo service utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", parents=[common], help="Initialise the demo database")
    subparsers.add_parser("users", parents=[common], help="List stored users")

    add_user_parser = subparsers.add_parser("add-user", parents=[common], help="Create a user")
    add_user_parser.add_argument("name", help="Display name for the user")
    add_user_parser.add_argument("email", help="Unique email address")

    serve_parser = subparsers.add_parser("serve", parents=[common], help="Start the HTTP service")
    serve_parser.add_argument("--host", default=None, help="Bind address (overrides configuration)")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Listening port (overrides configuration and PORT)",
    )

    traffic_parser = subparsers.add_parser(
        "traffic", parents=[common], help="Send a round of requests to a running service"
    )
    traffic_parser.add_argument(
        "--service-url",
        default=_DEFAULT_SERVICE_URL,
        help=f"Base URL of a running service (default: {_DEFAULT_SERVICE_URL})",
    )
    traffic_parser.add_argument(
        "--rounds",
        type=int,
        default=1,
        help="Number of passes over the demo endpoints (default: 1)",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "users", "add-user", "traffic"}

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


def _load_config(config_path: Optional[str]) -> ServiceConfig:
    path = Path(config_path).expanduser() if config_path else None
    return load_service_config(path)


def _initialise_database(config: ServiceConfig) -> Database:
    database = Database(config.database_path, seed_sample_data=config.seed_sample_data)
    database.initialize()
    logger.info("Database initialised at %s", config.database_path)
    return database


def _serve(*, database: Database, config: ServiceConfig, host: str | None, port: int | None) -> None:
    from apm_demo.service import create_app
    import uvicorn

    bind_host = host or config.host
    bind_port = port or config.port

    app = create_app(database=database, config=config)

    logger.info("Server running on http://%s:%s", bind_host, bind_port)
    logger.info("Available endpoints for testing:")
    for line in ENDPOINT_SUMMARY:
        logger.info("  %s", line)

    uvicorn.run(app, host=bind_host, port=bind_port, log_level=config.log_level.lower())


def _list_users(database: Database) -> None:
    users = database.list_users()
    if not users:
        print("No users are currently stored.")
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Email':<32}  Created")
    print("-" * 80)
    for user in users:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        print(f"{user.id:>4}  {user.name:<24}  {user.email:<32}  {created}")


def _add_user(database: Database, name: str, email: str) -> int:
    cleaned_name = name.strip()
    cleaned_email = email.strip()
    if not cleaned_name or not cleaned_email:
        print("Name and email are required.", file=sys.stderr)
        return 1

    try:
        user = database.create_user(cleaned_name, cleaned_email)
    except ConstraintError as exc:
        print(f"Failed to create user: {exc}", file=sys.stderr)
        return 1

    print(f"Created user #{user.id}: {user.name} <{user.email}>")
    return 0


def _generate_traffic(
    service_url: str,
    rounds: int,
    *,
    client: httpx.Client | None = None,
) -> int:
    """Issue every request in :data:`TRAFFIC_PLAN` ``rounds`` times and return the failure count."""

    if rounds < 1:
        print("Rounds must be at least 1.", file=sys.stderr)
        return 1

    owns_client = client is None
    http = client or httpx.Client(base_url=service_url.rstrip("/"), timeout=30.0)
    failures = 0
    try:
        for round_number in range(1, rounds + 1):
            print(f"Round {round_number}/{rounds}")
            for method, path in TRAFFIC_PLAN:
                try:
                    response = http.request(method, path)
                except httpx.HTTPError as exc:
                    failures += 1
                    print(f"  {method} {path} -> request failed: {exc}")
                    continue
                if response.status_code >= 400:
                    failures += 1
                print(f"  {method} {path} -> {response.status_code}")
    finally:
        if owns_client:
            http.close()

    print(f"Completed {rounds} round(s) with {failures} failed request(s).")
    return failures


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    args = _parse_args(argv)

    try:
        config = _load_config(getattr(args, "config", None))
    except (OSError, ValueError) as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    if args.command == "traffic":
        return 1 if _generate_traffic(args.service_url, args.rounds) else 0

    try:
        database = _initialise_database(config)
    except InitializationError as exc:
        logger.error("Failed to initialize database: %s", exc)
        return 1

    if args.command == "serve":
        _serve(database=database, config=config, host=args.host, port=args.port)
        return 0

    try:
        if args.command == "init-db":
            print(f"Database initialisation complete: {config.database_path}")
        elif args.command == "users":
            _list_users(database)
        elif args.command == "add-user":
            return _add_user(database, args.name, args.email)
    except StorageError as exc:
        print(f"Database error: {exc}", file=sys.stderr)
        return 1
    finally:
        database.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
