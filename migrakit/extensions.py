from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
# Owns the ledger table's own schema (migrations/versions); units run through services.runner.
migrate = Migrate()
