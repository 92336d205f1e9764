import logging
import threading
from contextlib import contextmanager

from sqlalchemy import text

logger = logging.getLogger(__name__)

# Fallback for engines without advisory locks (sqlite): serializes runs in-process only.
_local_locks = {}
_local_guard = threading.Lock()


def _local_lock(key):
    with _local_guard:
        return _local_locks.setdefault(key, threading.Lock())


@contextmanager
def migration_lock(engine, key):
    """Hold an exclusive migration lock for the duration of the block."""
    if engine.dialect.name == "postgresql":
        # Dedicated connection: the session-level advisory lock lives as long as it does.
        with engine.connect() as conn:
            logger.info("Waiting for pg_advisory_lock(%s)", key)
            conn.execute(text("SELECT pg_advisory_lock(:k)"), {"k": key})
            conn.commit()
            try:
                yield
            finally:
                conn.execute(text("SELECT pg_advisory_unlock(:k)"), {"k": key})
                conn.commit()
                logger.info("Released pg_advisory_lock(%s)", key)
        return

    lock = _local_lock((str(engine.url), key))
    with lock:
        yield
