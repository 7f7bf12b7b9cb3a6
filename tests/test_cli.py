"""Tests for the command-line entry points in main.py.

Covers:
- migrate: fresh database reaches the current version; second run is a no-op
- migrate: database errors print the [!] message instead of a traceback
- create-user: default grant; duplicate email reported
"""

import argparse

import pytest
from sqlalchemy.exc import OperationalError

import main
from core.config import get_settings
from directory.store import UserStore
from storage.database import create_db_engine
from storage.migrator import CURRENT_SCHEMA_VERSION, SchemaMigrator


@pytest.fixture
def db_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setattr(get_settings(), "database_url", url)
    return url


def test_migrate_fresh_then_noop(db_url, capsys):
    assert main.cmd_migrate(argparse.Namespace()) == 0
    assert f"v0 -> v{CURRENT_SCHEMA_VERSION}" in capsys.readouterr().out

    assert main.cmd_migrate(argparse.Namespace()) == 0
    assert "already at" in capsys.readouterr().out


def test_migrate_reports_database_error(db_url, capsys, monkeypatch):
    def locked(self):
        raise OperationalError("PRAGMA user_version", None, Exception("database is locked"))

    monkeypatch.setattr(SchemaMigrator, "current_version", locked)

    assert main.cmd_migrate(argparse.Namespace()) == 1
    out = capsys.readouterr().out
    assert out.startswith("  [!]")
    assert "database is locked" in out


def test_create_user_with_default_grant(db_url, capsys):
    args = argparse.Namespace(email=" cli@example.com ", suspended=False)
    assert main.cmd_create_user(args) == 0
    assert "PRUNK/USER" in capsys.readouterr().out

    engine = create_db_engine(db_url)
    try:
        store = UserStore(engine)
        user = store.get_by_email("cli@example.com")
        assert [(g.service, g.permission) for g in store.list_service_grants(user.id)] == [("PRUNK", "USER")]
    finally:
        engine.dispose()

    assert main.cmd_create_user(args) == 1
    assert "already exists" in capsys.readouterr().out
