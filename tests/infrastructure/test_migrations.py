from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from infrastructure.models import Base


ROOT = Path(__file__).resolve().parents[2]


def _upgrade(db_path: Path) -> None:
    cfg = Config()
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    cfg.set_main_option("sqlalchemy.url", f"sqlite+aiosqlite:///{db_path}")
    command.upgrade(cfg, "head")


def test_initial_revision_matches_models(tmp_path):
    db_path = tmp_path / "migrated.db"
    _upgrade(db_path)

    engine = create_engine(f"sqlite:///{db_path}")
    try:
        insp = inspect(engine)
        assert set(Base.metadata.tables) <= set(insp.get_table_names())

        for name, table in Base.metadata.tables.items():
            assert {c["name"] for c in insp.get_columns(name)} == set(table.columns.keys())
            expected_indexes = {ix.name for ix in table.indexes}
            assert {ix["name"] for ix in insp.get_indexes(name)} == expected_indexes

        uniques = {
            name: {tuple(uc["column_names"]) for uc in insp.get_unique_constraints(name)}
            for name in ("payments", "subscriptions", "webhook_events", "outbox")
        }
        assert ("provider", "provider_payment_id") in uniques["payments"]
        assert ("provider", "provider_subscription_id") in uniques["subscriptions"]
        assert ("provider", "provider_event_id") in uniques["webhook_events"]
        assert ("event_id",) in uniques["outbox"]
        assert insp.get_pk_constraint("idempotency_records")["constrained_columns"] == ["key"]
        checks = {ck["name"] for ck in insp.get_check_constraints("transactions")}
        assert "ck_transactions_single_owner" in checks
    finally:
        engine.dispose()


def test_upgrade_is_repeatable(tmp_path):
    db_path = tmp_path / "migrated.db"
    _upgrade(db_path)
    _upgrade(db_path)

    engine = create_engine(f"sqlite:///{db_path}")
    try:
        assert "alembic_version" in inspect(engine).get_table_names()
    finally:
        engine.dispose()
