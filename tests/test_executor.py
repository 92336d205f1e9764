import types

import pytest
from sqlalchemy.exc import DBAPIError

from migrakit.errors import PartialApplyAmbiguity, StatementError
from migrakit.services.executor import StatementExecutor
from migrakit.services.unit import MigrationUnit, SessionSetting
from migrakit.units.v1679950645254_product_domain_improved_indexes import unit as product_unit

SET_CONFIG = "SELECT set_config(:name, :value, false)"


def _set(name, value):
    return (SET_CONFIG, {"name": name, "value": value})


class DummyResult:
    def __init__(self, value): self._value = value
    def scalar(self): return self._value

class DummyTxn:
    def __init__(self, conn): self.conn = conn
    def __enter__(self):
        self.conn.log.append("BEGIN"); return self
    def __exit__(self, exc_type, exc, tb):
        self.conn.log.append("ROLLBACK" if exc_type else "COMMIT"); return False

class DummyConnection:
    """Records statements; pretends to be a postgres session."""
    def __init__(self, dialect="postgresql", fail_on=None, current="on"):
        self.dialect = types.SimpleNamespace(name=dialect)
        self.log, self.commits, self.rollbacks = [], 0, 0
        self._fail_on, self._current = fail_on, current
    def _maybe_fail(self, statement):
        if self._fail_on and self._fail_on in statement:
            raise DBAPIError(statement, None, Exception(f"rejected: {statement}"))
    def exec_driver_sql(self, statement):
        self._maybe_fail(statement)
        self.log.append(statement)
        return DummyResult(self._current)
    def execute(self, clause, params):
        self._maybe_fail(str(clause))
        self.log.append((str(clause), params))
        if "set_config" in str(clause):
            self._current = params["value"]
        return DummyResult(self._current)
    def commit(self): self.commits += 1
    def rollback(self): self.rollbacks += 1
    def in_transaction(self): return False
    def begin(self): return DummyTxn(self)


def test_transactional_ddl_by_dialect():
    assert StatementExecutor(DummyConnection("postgresql")).supports_transactional_ddl
    assert not StatementExecutor(DummyConnection("sqlite")).supports_transactional_ddl
    assert not StatementExecutor(DummyConnection("mysql")).supports_transactional_ddl
    assert StatementExecutor(DummyConnection("sqlite"), transactional_ddl=True).supports_transactional_ddl
    assert not StatementExecutor(DummyConnection("postgresql"), transactional_ddl=False).supports_transactional_ddl


def test_apply_on_postgres_scopes_planner_setting_outside_transaction():
    conn = DummyConnection()
    product_unit.apply(StatementExecutor(conn))
    assert conn.log[0] == "SHOW enable_nestloop"
    assert conn.log[1] == _set("enable_nestloop", "off")
    assert conn.log[2] == "BEGIN"
    assert conn.log[3:11] == list(product_unit.forward)
    assert conn.log[11] == "COMMIT"
    assert conn.log[12] == _set("enable_nestloop", "on")
    assert conn._current == "on"


def test_planner_setting_restored_when_script_fails():
    conn = DummyConnection(fail_on="idx_money_amount_region_id")
    with pytest.raises(StatementError) as excinfo:
        product_unit.apply(StatementExecutor(conn))
    # transactional DDL: rolled back cleanly, not ambiguous
    assert not isinstance(excinfo.value, PartialApplyAmbiguity)
    assert "ROLLBACK" in conn.log
    assert conn.log[-1] == _set("enable_nestloop", "on")
    assert "rejected" in str(excinfo.value)


def test_list_valued_setting_restored_verbatim():
    conn = DummyConnection(current='"$user", public')
    unit = MigrationUnit(
        identifier="1", name="search_path",
        forward=("SELECT 1",), backward=("SELECT 1",),
        session_settings=(SessionSetting("search_path", "catalog"),),
    )
    unit.apply(StatementExecutor(conn))
    assert conn.log[1] == _set("search_path", "catalog")
    assert conn.log[-1] == _set("search_path", '"$user", public')


def test_revert_issues_no_session_setting():
    conn = DummyConnection()
    product_unit.revert(StatementExecutor(conn))
    assert not any("enable_nestloop" in str(s) for s in conn.log)
    assert conn.log == ["BEGIN", *product_unit.backward, "COMMIT"]


def test_success_callback_runs_inside_the_transaction():
    conn = DummyConnection()
    product_unit.revert(StatementExecutor(conn), on_success=lambda ex: ex.execute("INSERT INTO ledger_ok"))
    assert conn.log[-2:] == ["INSERT INTO ledger_ok", "COMMIT"]


def test_failed_ledger_write_rolls_back_script_with_transactional_ddl():
    conn = DummyConnection(fail_on="ledger_fail")
    with pytest.raises(StatementError) as excinfo:
        product_unit.apply(StatementExecutor(conn), on_success=lambda ex: ex.execute("INSERT INTO ledger_fail"))
    assert not isinstance(excinfo.value, PartialApplyAmbiguity)
    assert excinfo.value.statement == "INSERT INTO ledger_fail"
    assert "ROLLBACK" in conn.log and "COMMIT" not in conn.log
    assert conn.log[-1] == _set("enable_nestloop", "on")


def test_session_setting_skipped_on_other_dialects(caplog):
    conn = DummyConnection("sqlite")
    executor = StatementExecutor(conn)
    with caplog.at_level("INFO", logger="migrakit"):
        with executor.scoped_setting(SessionSetting("enable_nestloop", "off")) as issued:
            assert issued is False
    assert conn.log == []
    assert "skipped on dialect sqlite" in caplog.text


def test_statement_error_keeps_engine_message_and_rolls_back_outside_txn():
    conn = DummyConnection("sqlite", fail_on="boom")
    executor = StatementExecutor(conn)
    with pytest.raises(StatementError) as excinfo:
        executor.execute("DROP INDEX boom")
    assert excinfo.value.statement == "DROP INDEX boom"
    assert str(excinfo.value.orig) == "rejected: DROP INDEX boom"
    assert conn.rollbacks == 1


def test_non_transactional_executor_commits_each_statement():
    conn = DummyConnection("sqlite")
    executor = StatementExecutor(conn)
    with executor.transaction():
        executor.execute("CREATE TABLE a (x)")
        executor.execute("CREATE TABLE b (x)")
    assert conn.commits == 2
    assert "BEGIN" not in conn.log


def test_invalid_setting_name_rejected():
    executor = StatementExecutor(DummyConnection())
    with pytest.raises(ValueError):
        with executor.scoped_setting(SessionSetting("enable_nestloop; DROP TABLE x", "off")):
            pass
