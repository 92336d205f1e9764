import logging
from logging.config import fileConfig
import importlib
import pkgutil
from pathlib import Path

from flask import current_app
from alembic import context

# Alembic Config object (reads alembic.ini)
config = context.config

# Logging (robust: works with alembic.ini in migrations/ or in repo root)
def _init_logging():
    ini = config.config_file_name
    if ini and Path(ini).exists():
        fileConfig(ini)
        return
    root_ini = Path(__file__).resolve().parents[1] / "alembic.ini"
    if root_ini.exists():
        fileConfig(str(root_ini))
        return
    logging.basicConfig(level=logging.INFO)

_init_logging()
logger = logging.getLogger("alembic.env")

# ──────────────────────────────────────────────────────────────────────────────
# Flask-Migrate v4 helpers (SQLAlchemy 2.x)
# ──────────────────────────────────────────────────────────────────────────────
def get_engine():
    return current_app.extensions["migrate"].db.engine


def get_engine_url():
    try:
        return get_engine().url.render_as_string(hide_password=False).replace("%", "%%")
    except AttributeError:
        return str(get_engine().url).replace("%", "%%")


config.set_main_option("sqlalchemy.url", get_engine_url())

target_db = current_app.extensions["migrate"].db


def get_metadata():
    if hasattr(target_db, "metadatas"):
        return target_db.metadatas[None]
    return target_db.metadata


def _autoload_models():
    """Import all modules in migrakit.models so the ledger table is on the metadata."""
    import migrakit.models as models_pkg
    for m in pkgutil.iter_modules(models_pkg.__path__):
        importlib.import_module(f"migrakit.models.{m.name}")


def _include_object(object, name, type_, reflected, compare_to):
    """
    Only the ledger belongs to this metadata. Tables and indexes touched by
    migration units (money_amount, product_option_value, ...) are left alone.
    """
    if reflected and compare_to is None:
        return False
    return True


def run_migrations_offline():
    """Run migrations in 'offline' mode."""
    url = config.get_main_option("sqlalchemy.url")
    _autoload_models()

    context.configure(
        url=url,
        target_metadata=get_metadata(),
        literal_binds=True,
        compare_type=True,
        include_object=_include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    """Run migrations in 'online' mode'."""
    def process_revision_directives(context_, revision, directives):
        if getattr(config.cmd_opts, "autogenerate", False):
            script = directives[0]
            if script.upgrade_ops.is_empty():
                directives[:] = []
                logger.info("No changes in schema detected.")

    conf_args = current_app.extensions["migrate"].configure_args
    conf_args = {
        **conf_args,
        "process_revision_directives": conf_args.get(
            "process_revision_directives", process_revision_directives
        ),
        "compare_type": True,
        "include_object": _include_object,
        "target_metadata": get_metadata(),
    }

    _autoload_models()

    connectable = get_engine()
    with connectable.connect() as connection:
        context.configure(connection=connection, **conf_args)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
