import pytest

from combattracker.backend import migrate


def test_print_sql_outputs_schema_without_database(monkeypatch, capsys) -> None:
    monkeypatch.delenv("COMBATTRACKER_DATABASE_URL", raising=False)

    migrate.main(["--print-sql"])

    assert "CREATE TABLE IF NOT EXISTS encounters" in capsys.readouterr().out


def test_migration_requires_database_url(monkeypatch) -> None:
    monkeypatch.delenv("COMBATTRACKER_DATABASE_URL", raising=False)

    with pytest.raises(RuntimeError):
        migrate.main([])


def test_cli_database_url_overrides_environment(monkeypatch) -> None:
    monkeypatch.setenv("COMBATTRACKER_DATABASE_URL", "postgresql://from-env")
    applied: list[str] = []
    monkeypatch.setattr(migrate, "apply_schema", lambda database_url, schema_path: applied.append(database_url))

    migrate.main(["--database-url", "postgresql://from-cli"])

    assert applied == ["postgresql://from-cli"]
