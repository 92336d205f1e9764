from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError

from migrakit.errors import StatementError

logger = logging.getLogger(__name__)

# Engines whose DDL participates in the surrounding transaction.
# pysqlite commits DDL implicitly, so sqlite is deliberately absent.
_TRANSACTIONAL_DDL_DIALECTS = {"postgresql"}

_SETTING_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")
# session-level, same scope as a plain SET
_SET_CONFIG = text("SELECT set_config(:name, :value, false)")


class StatementExecutor:
    """
    Runs raw statements, one at a time, on a single connection.

    The connection is owned exclusively by the caller for the whole run:
    session settings issued through `scoped_setting` live on it.
    """

    def __init__(self, connection: Connection, transactional_ddl: Optional[bool] = None):
        self.connection = connection
        self._transactional_ddl = transactional_ddl
        self._txn = None

    @property
    def dialect_name(self) -> str:
        return self.connection.dialect.name

    @property
    def supports_transactional_ddl(self) -> bool:
        if self._transactional_ddl is not None:
            return self._transactional_ddl
        return self.dialect_name in _TRANSACTIONAL_DDL_DIALECTS

    def execute(self, statement, params=None):
        """
        Execute one statement; outside `transaction()` it is committed immediately.

        Raw strings go to the driver untouched; SQLAlchemy clauses take bound `params`.
        """
        logger.debug("exec: %s %s", statement, params or "")
        try:
            if isinstance(statement, str):
                result = self.connection.exec_driver_sql(statement)
            else:
                result = self.connection.execute(statement, params or {})
        except DBAPIError as exc:
            if self._txn is None:
                self.connection.rollback()
            raise StatementError(str(statement), exc.orig) from exc
        if self._txn is None:
            self.connection.commit()
        return result

    @contextmanager
    def transaction(self) -> Iterator["StatementExecutor"]:
        """One transaction around the block when the engine has transactional DDL."""
        if not self.supports_transactional_ddl or self._txn is not None:
            yield self
            return
        if self.connection.in_transaction():
            self.connection.commit()
        with self.connection.begin() as txn:
            self._txn = txn
            try:
                yield self
            finally:
                self._txn = None

    def current_setting(self, name: str) -> str:
        _check_setting_name(name)
        return self.connection.exec_driver_sql(f"SHOW {name}").scalar()

    def _set(self, name: str, value):
        # set_config keeps list values such as search_path = "$user", public intact
        _check_setting_name(name)
        self.execute(_SET_CONFIG, {"name": name, "value": str(value)})

    @contextmanager
    def scoped_setting(self, setting) -> Iterator[bool]:
        """
        Enable a session setting for the duration of the block and put the
        previous value back on every exit path.

        Yields True when the setting was issued, False when the dialect is not
        one the setting targets (nothing is sent in that case).
        """
        if not setting.applies_to(self.dialect_name):
            logger.info(
                "session setting %s skipped on dialect %s", setting.name, self.dialect_name
            )
            yield False
            return
        if self._txn is not None:
            raise RuntimeError("session settings must be entered outside the DDL transaction")

        previous = self.current_setting(setting.name)
        self._set(setting.name, setting.value)
        logger.info("session setting %s: %s -> %s", setting.name, previous, setting.value)
        try:
            yield True
        finally:
            self._set(setting.name, previous)
            logger.info("session setting %s restored to %s", setting.name, previous)


def _check_setting_name(name: str):
    if not _SETTING_NAME.match(name or ""):
        raise ValueError(f"Invalid session setting name: {name!r}")

