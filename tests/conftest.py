import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

import pytest
import sqlalchemy as sa

from migrakit import create_app
from migrakit.extensions import db
import migrakit.models  # noqa: F401  (ledger on db.metadata)
from migrakit.services.executor import StatementExecutor

# Catalog tables the product index unit operates on
CATALOG_DDL = (
    "CREATE TABLE money_amount (id INTEGER PRIMARY KEY, variant_id TEXT, region_id TEXT, deleted_at TIMESTAMP)",
    "CREATE TABLE product_option_value (id INTEGER PRIMARY KEY, variant_id TEXT, option_id TEXT, deleted_at TIMESTAMP)",
)
LEGACY_INDEX_DDL = (
    'CREATE INDEX "IDX_17a06d728e4cfbc5bd2ddb70af" ON "money_amount" ("variant_id")',
    'CREATE INDEX "IDX_b433e27b7a83e6d12ab26b15b0" ON "money_amount" ("region_id")',
    'CREATE INDEX "IDX_7234ed737ff4eb1b6ae6e6d7b0" ON "product_option_value" ("variant_id")',
    'CREATE INDEX "IDX_cdf4388f294b30a25c627d69fe" ON "product_option_value" ("option_id")',
)


def _create_catalog(conn, legacy=True):
    for stmt in CATALOG_DDL + (LEGACY_INDEX_DDL if legacy else ()):
        conn.exec_driver_sql(stmt)


@pytest.fixture()
def engine(tmp_path):
    eng = sa.create_engine(f"sqlite:///{tmp_path / 'units.db'}")
    with eng.begin() as conn:
        _create_catalog(conn)
    db.metadata.create_all(eng)
    yield eng
    eng.dispose()

@pytest.fixture()
def bare_engine(tmp_path):
    """Catalog tables without the legacy indexes."""
    eng = sa.create_engine(f"sqlite:///{tmp_path / 'bare.db'}")
    with eng.begin() as conn:
        _create_catalog(conn, legacy=False)
    db.metadata.create_all(eng)
    yield eng
    eng.dispose()

@pytest.fixture()
def conn(engine):
    with engine.connect() as c:
        yield c

@pytest.fixture()
def executor(conn):
    return StatementExecutor(conn)

@pytest.fixture()
def indexes():
    """indexes(conn_or_engine, table) -> {index_name: CREATE sql} for user-defined indexes."""
    def _read(bind, table):
        query = sa.text(
            "SELECT name, sql FROM sqlite_master "
            "WHERE type = 'index' AND tbl_name = :t AND sql IS NOT NULL"
        )
        if isinstance(bind, sa.engine.Engine):
            with bind.connect() as c:
                rows = c.execute(query, {"t": table}).all()
        else:
            rows = bind.execute(query, {"t": table}).all()
        return {name: sql for name, sql in rows}
    return _read

@pytest.fixture()
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'app.db'}",
        "MIGRATION_UNITS_PACKAGE": "migrakit.units",
    })
    with app.app_context():
        db.create_all()
        with db.engine.begin() as c:
            _create_catalog(c)
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()

@pytest.fixture()
def cli(app):
    return app.test_cli_runner()
