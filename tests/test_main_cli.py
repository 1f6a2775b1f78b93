from main import _add_admin, _parse_args

from casa.models import Role


def test_default_command_invokes_serve() -> None:
    args = _parse_args([])
    assert args.command == "serve"


def test_default_command_accepts_options_without_subcommand() -> None:
    args = _parse_args(["--host", "127.0.0.1", "--port", "8080"])
    assert args.command == "serve"
    assert args.host == "127.0.0.1"
    assert args.port == 8080


def test_admin_subcommand_still_available() -> None:
    args = _parse_args(["admin"])
    assert args.command == "admin"


def test_init_db_subcommand() -> None:
    args = _parse_args(["init-db"])
    assert args.command == "init-db"


def test_add_admin_creates_organisation_and_admin(database, monkeypatch, capsys) -> None:
    answers = iter(["CASA of Howard County", "First Admin", "first@example.com"])
    monkeypatch.setattr("builtins.input", lambda prompt="": next(answers))
    monkeypatch.setattr("main.getpass", lambda prompt="": "correct horse battery")

    _add_admin(database)

    user = database.get_user_by_email("first@example.com")
    assert user is not None
    assert user.role is Role.CASA_ADMIN
    assert database.get_org(user.casa_org_id).name == "CASA of Howard County"
    assert "Created admin" in capsys.readouterr().out


def test_add_admin_rejects_short_passwords(database, monkeypatch, capsys) -> None:
    answers = iter(["CASA of Howard County", "First Admin", "first@example.com"])
    monkeypatch.setattr("builtins.input", lambda prompt="": next(answers))
    monkeypatch.setattr("main.getpass", lambda prompt="": "short")

    _add_admin(database)

    assert database.get_user_by_email("first@example.com") is None
    assert "Aborted creating admin." in capsys.readouterr().out
