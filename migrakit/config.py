import os

DEFAULT_MIGRATION_LOCK_KEY = 7245100

class BaseConfig:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-not-secure")

    # Database (env in prod; dev/test may use default)
    try:
        from dotenv import dotenv_values
        _ENV_FALLBACK = dotenv_values(".env")
    except Exception:
        _ENV_FALLBACK = {}
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or _ENV_FALLBACK.get("DATABASE_URL") or "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging / misc
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # --- Migration units ---
    # Package scanned for modules exposing a module-level `unit`
    MIGRATION_UNITS_PACKAGE = os.getenv("MIGRATION_UNITS_PACKAGE", "migrakit.units")
    # pg_advisory_lock key held for the duration of every run
    MIGRATION_LOCK_KEY = int(os.getenv("MIGRATION_LOCK_KEY", str(DEFAULT_MIGRATION_LOCK_KEY)))
    # "auto" trusts the dialect; "true"/"false" force the transaction boundary
    MIGRATION_TRANSACTIONAL_DDL = os.getenv("MIGRATION_TRANSACTIONAL_DDL", "auto").lower()

class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")

class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "WARNING")
    # REQUIRE env vars in production (fail fast if missing)
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL")

class TestingConfig(BaseConfig):
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///:memory:")

_ENV_MAP = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}

def get_config():
    env = os.environ.get("APP_ENV", "development").lower()
    return _ENV_MAP.get(env, DevelopmentConfig)


def transactional_ddl_override(value):
    """Map MIGRATION_TRANSACTIONAL_DDL to None (auto) or a forced bool."""
    value = (value or "auto").strip().lower()
    if value == "auto":
        return None
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    raise ValueError(f"MIGRATION_TRANSACTIONAL_DDL must be auto/true/false, got {value!r}")
