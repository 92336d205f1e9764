import os
from flask import Flask

# Load .env only for local/dev. In prod, env vars come from the platform.
if os.getenv("APP_ENV", "development") != "production":
    from dotenv import load_dotenv
    load_dotenv(".env", override=False)


from .config import get_config, transactional_ddl_override
from .extensions import db, migrate
from .observability import init_logging, init_sentry

def create_app(overrides=None):
    app = Flask(__name__)

    # Config: clean, explicit, class-based
    app.config.from_object(get_config())
    if overrides:
        app.config.update(overrides)

    env_key = (os.getenv("APP_ENV", "development") or "development").lower()
    if env_key in ("staging", "production") and not app.config.get("SQLALCHEMY_DATABASE_URI"):
        raise RuntimeError("Missing required environment variable: DATABASE_URL")

    # Fail at boot, not on the first `flask units` call
    transactional_ddl_override(app.config.get("MIGRATION_TRANSACTIONAL_DDL"))

    init_logging(app)
    init_sentry(app)

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db, directory=os.path.join(os.path.dirname(app.root_path), "migrations"))

    # Ledger model must be registered on the metadata before create_all/autogenerate
    from . import models  # noqa: F401

    from .cli import register_cli
    register_cli(app)

    return app
