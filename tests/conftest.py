import importlib
import os
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from fastapi.testclient import TestClient

from tests.db_utils import temporary_postgres_database

ALEMBIC_INI = Path(__file__).resolve().parents[1] / "alembic.ini"


def _migrate(database_url: str) -> None:
    alembic_cfg = Config(str(ALEMBIC_INI))
    alembic_cfg.set_main_option("script_location", str(ALEMBIC_INI.parent / "migrations"))
    alembic_cfg.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    command.upgrade(alembic_cfg, "head")


def _build_app(database_url: str):
    """Point settings and the engine at the test database, then build a fresh app."""
    os.environ["DATABASE_URL"] = database_url
    os.environ["SECRET_KEY"] = "tillbook-test-secret"
    os.environ["METRICS_ENABLED"] = "true"

    modules = [importlib.import_module(name) for name in ("app.tillbook.core.config", "app.tillbook.db.session", "app.main")]
    for module in modules:
        importlib.reload(module)
    _config, session_module, main_module = modules
    return main_module.create_app(), session_module


@pytest.fixture()
def database_url(tmp_path: Path):
    base_url = os.getenv("TEST_DATABASE_URL", "")
    if base_url.startswith("postgres"):
        with temporary_postgres_database(base_url) as url:
            yield url
    else:
        yield f"sqlite+pysqlite:///{tmp_path / 'tillbook-test.db'}"


@pytest.fixture()
def client(database_url: str):
    _migrate(database_url)
    app, session_module = _build_app(database_url)
    with TestClient(app) as test_client:
        yield test_client
    session_module.engine.dispose()


@pytest.fixture()
def db_session(client):
    from app.tillbook.db.session import SessionLocal

    with SessionLocal() as db:
        yield db
