import os
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "secret")


def _make_alembic_config(db_url: str) -> Config:
    backend_dir = Path(__file__).resolve().parents[1]
    alembic_ini = backend_dir / "alembic.ini"
    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(backend_dir / "alembic"))
    config.set_main_option("sqlalchemy.url", db_url)
    config.set_main_option("prepend_sys_path", str(backend_dir))
    return config


def _table_names(db_url: str) -> set[str]:
    engine = create_engine(db_url, future=True)
    inspector = inspect(engine)
    tables = set(inspector.get_table_names())
    engine.dispose()
    return tables


def test_migration_upgrade_downgrade_cycle(tmp_path):
    db_url = f"sqlite:///{tmp_path / 'migration_test.db'}"
    config = _make_alembic_config(db_url)
    expected = {"zerospam_blocked", "zerospam_log", "zerospam_settings"}

    command.upgrade(config, "head")
    assert expected.issubset(_table_names(db_url))

    command.downgrade(config, "base")
    assert not expected & _table_names(db_url)

    command.upgrade(config, "head")
    assert expected.issubset(_table_names(db_url))
