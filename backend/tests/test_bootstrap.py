import pytest
from sqlalchemy import create_engine

from app.db import bootstrap


def _raise_error(*args, **kwargs):
    raise RuntimeError("inspector unavailable")


def test_runtime_schema_bootstrap_raises_on_inspection_failure(monkeypatch):
    monkeypatch.setattr(bootstrap.Base.metadata, "create_all", lambda bind: None)
    monkeypatch.setattr(bootstrap, "missing_schema_items", _raise_error)

    with pytest.raises(RuntimeError, match="Runtime schema bootstrap failed"):
        bootstrap.ensure_runtime_schema()


def test_missing_schema_items_reports_empty_database():
    empty = create_engine("sqlite+pysqlite://")

    missing_tables, missing_columns = bootstrap.missing_schema_items(empty)

    assert set(missing_tables) == set(bootstrap.REQUIRED_COLUMNS)
    assert missing_columns == {}


def test_missing_schema_items_accepts_full_schema(engine):
    assert bootstrap.missing_schema_items(engine) == ([], {})
