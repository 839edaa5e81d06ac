from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError

ROOT = Path(__file__).resolve().parents[1]


def _alembic_config(db_url: str) -> Config:
    cfg = Config()
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    return cfg


def test_upgrade_head_builds_the_schema(tmp_path) -> None:
    db_url = f"sqlite:///{tmp_path / 'finance.db'}"

    command.upgrade(_alembic_config(db_url), "head")

    engine = create_engine(db_url)
    inspector = inspect(engine)
    assert {
        "users",
        "categories",
        "cards",
        "currencies",
        "transactions",
        "goals",
        "goal_contributions",
    } <= set(inspector.get_table_names())

    category_uniques = {
        c["name"]: c["column_names"]
        for c in inspector.get_unique_constraints("categories")
    }
    assert category_uniques["uq_category_user_name_key"] == ["user_id", "name_key"]
    currency_indexes = {i["name"] for i in inspector.get_indexes("currencies")}
    assert "uq_currency_user_base" in currency_indexes

    insert = text(
        "INSERT INTO currencies (id, user_id, code, is_base, created_at, updated_at) "
        "VALUES (:id, 'u1', :code, 1, '2026-01-01', '2026-01-01')"
    )
    with engine.begin() as conn:
        conn.execute(insert, {"id": "a" * 32, "code": "USD"})
    with pytest.raises(IntegrityError):
        with engine.begin() as conn:
            conn.execute(insert, {"id": "b" * 32, "code": "EUR"})


def test_downgrade_removes_tables(tmp_path) -> None:
    db_url = f"sqlite:///{tmp_path / 'finance.db'}"
    cfg = _alembic_config(db_url)

    command.upgrade(cfg, "head")
    command.downgrade(cfg, "base")

    tables = set(inspect(create_engine(db_url)).get_table_names())
    assert "transactions" not in tables
    assert "users" not in tables
