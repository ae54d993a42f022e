from pathlib import Path

import httpx

from main import TRAFFIC_PLAN, _generate_traffic, _parse_args, main


def test_default_command_invokes_serve() -> None:
    args = _parse_args([])
    assert args.command == "serve"


def test_default_command_accepts_options_without_subcommand() -> None:
    args = _parse_args(["--host", "127.0.0.1", "--port", "8080"])
    assert args.command == "serve"
    assert args.host == "127.0.0.1"
    assert args.port == 8080


def test_add_user_subcommand_parses_positionals() -> None:
    args = _parse_args(["add-user", "Frank", "frank@example.com", "--config", "svc.yaml"])
    assert args.command == "add-user"
    assert args.name == "Frank"
    assert args.email == "frank@example.com"
    assert args.config == "svc.yaml"


def test_traffic_subcommand_defaults() -> None:
    args = _parse_args(["traffic"])
    assert args.command == "traffic"
    assert args.rounds == 1
    assert args.service_url.startswith("http://")


def test_init_db_and_add_user_commands(tmp_path: Path, monkeypatch, capsys) -> None:
    db_path = tmp_path / "cli.db"
    monkeypatch.setenv("APM_DEMO_DB_PATH", str(db_path))
    monkeypatch.delenv("APM_DEMO_CONFIG", raising=False)

    assert main(["init-db"]) == 0
    assert db_path.exists()

    assert main(["add-user", "Frank", "frank@example.com"]) == 0
    assert "Created user #6" in capsys.readouterr().out

    assert main(["add-user", "Dup", "alice@example.com"]) == 1
    assert "already exists" in capsys.readouterr().err

    assert main(["users"]) == 0
    output = capsys.readouterr().out
    assert "6 user(s) found" in output
    assert "frank@example.com" in output


def test_invalid_configuration_exits_with_error(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("APM_DEMO_CONFIG", str(tmp_path / "missing.yaml"))

    assert main(["init-db"]) == 2


def test_generate_traffic_counts_failures(capsys) -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        if request.url.path == "/api/random-error":
            return httpx.Response(500, json={"success": False, "error": "Internal server error"})
        return httpx.Response(200, json={"success": True})

    client = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://demo.test")
    failures = _generate_traffic("http://demo.test", 2, client=client)

    assert failures == 2
    assert len(seen) == 2 * len(TRAFFIC_PLAN)
    assert "Completed 2 round(s) with 2 failed request(s)." in capsys.readouterr().out


def test_generate_traffic_rejects_invalid_rounds() -> None:
    assert _generate_traffic("http://demo.test", 0) == 1
