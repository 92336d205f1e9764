import types

import pytest

from migrakit.services.locking import migration_lock


class DummyLockConnection:
    def __init__(self, log): self.log = log
    def __enter__(self): return self
    def __exit__(self, *exc):
        self.log.append("CLOSE"); return False
    def execute(self, clause, params):
        self.log.append((str(clause), params))
    def commit(self): pass

class DummyEngine:
    def __init__(self, dialect="postgresql"):
        self.dialect = types.SimpleNamespace(name=dialect)
        self.url = f"{dialect}://test/db"
        self.log = []
    def connect(self): return DummyLockConnection(self.log)


LOCK = ("SELECT pg_advisory_lock(:k)", {"k": 42})
UNLOCK = ("SELECT pg_advisory_unlock(:k)", {"k": 42})


def test_postgres_run_holds_advisory_lock_around_body():
    engine = DummyEngine()
    with migration_lock(engine, 42):
        engine.log.append("BODY")
    assert engine.log == [LOCK, "BODY", UNLOCK, "CLOSE"]


def test_postgres_advisory_lock_released_when_body_raises():
    engine = DummyEngine()
    with pytest.raises(RuntimeError):
        with migration_lock(engine, 42):
            engine.log.append("BODY")
            raise RuntimeError("unit failed")
    assert engine.log == [LOCK, "BODY", UNLOCK, "CLOSE"]


def test_other_dialects_take_process_local_lock():
    engine = DummyEngine("sqlite")
    with migration_lock(engine, 42):
        engine.log.append("BODY")
    assert engine.log == ["BODY"]
