from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from migrakit.errors import (
    OrderViolation,
    PartialApplyAmbiguity,
    RegistryError,
    ScriptChanged,
)
from migrakit.config import DEFAULT_MIGRATION_LOCK_KEY
from migrakit.models.ledger import (
    LedgerEntry,
    STATUS_APPLIED,
    STATUS_FAILED,
    STATUS_PENDING,
)
from migrakit.services.executor import StatementExecutor
from migrakit.services.locking import migration_lock
from migrakit.services.unit import APPLY, REVERT, MigrationUnit, UnitResult

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


class MigrationRunner:
    """
    Sequences migration units against one database and keeps the ledger.

    - apply: strictly increasing identifier order, never past a pending unit
    - revert: strictly decreasing order, latest applied unit first
    - every run holds the migration lock; units get a fresh, exclusive connection
    - the ledger row is written through the unit's executor, inside the same
      transaction as the script when the engine has transactional DDL
    - nothing is retried; a partial failure flags the unit `failed` and blocks
      further runs until `resolve` is called
    """

    def __init__(self, engine, units, lock_key: int = DEFAULT_MIGRATION_LOCK_KEY,
                 transactional_ddl: Optional[bool] = None):
        self.engine = engine
        self.units: List[MigrationUnit] = sorted(units, key=lambda u: u.sort_key)
        self.lock_key = lock_key
        self.transactional_ddl = transactional_ddl
        self._by_id = {u.identifier: u for u in self.units}
        if len(self._by_id) != len(self.units):
            raise RegistryError("duplicate unit identifiers in migration history")

    # ------------------------------------------------------------------ ledger
    def _entries(self, session) -> Dict[str, LedgerEntry]:
        return {e.identifier: e for e in session.scalars(select(LedgerEntry))}

    def _status_of(self, entries, identifier) -> str:
        entry = entries.get(identifier)
        return entry.status if entry else STATUS_PENDING

    def status(self):
        """[(unit, status, applied_at)] in history order."""
        with Session(self.engine) as session:
            entries = self._entries(session)
            rows = []
            for unit in self.units:
                entry = entries.get(unit.identifier)
                rows.append((
                    unit,
                    entry.status if entry else STATUS_PENDING,
                    entry.applied_at if entry else None,
                ))
            orphans = sorted(set(entries) - set(self._by_id))
            for identifier in orphans:
                logger.warning("Ledger lists unit %s which is not registered", identifier)
        return rows

    def _preflight(self, entries):
        failed = [i for i, e in entries.items() if e.status == STATUS_FAILED]
        if failed:
            raise OrderViolation(
                f"unit(s) {', '.join(sorted(failed))} are marked failed; inspect the database "
                "and run `resolve` before applying or reverting anything"
            )
        for identifier, entry in entries.items():
            if entry.status != STATUS_APPLIED:
                continue
            unit = self._by_id.get(identifier)
            if unit is None:
                raise OrderViolation(f"applied unit {identifier} is missing from the registry")
            if entry.checksum != unit.checksum:
                raise ScriptChanged(identifier, entry.checksum, unit.checksum)

        seen_pending = None
        for unit in self.units:
            status = self._status_of(entries, unit.identifier)
            if status == STATUS_PENDING and seen_pending is None:
                seen_pending = unit
            elif status == STATUS_APPLIED and seen_pending is not None:
                raise OrderViolation(
                    f"unit {seen_pending.identifier} is pending but later unit "
                    f"{unit.identifier} is already applied"
                )

    def _unit(self, identifier) -> MigrationUnit:
        unit = self._by_id.get(identifier)
        if unit is None:
            raise OrderViolation(f"unknown unit {identifier}")
        return unit

    # ------------------------------------------------------------------ forward
    def upgrade(self, target: Optional[str] = None) -> List[UnitResult]:
        """Apply every pending unit up to and including `target` (default: all)."""
        if target is not None:
            self._unit(target)
        results = []
        with migration_lock(self.engine, self.lock_key):
            with Session(self.engine) as session:
                entries = self._entries(session)
                self._preflight(entries)
            for unit in self.units:
                if target is not None and unit.sort_key > self._by_id[target].sort_key:
                    break
                if self._status_of(entries, unit.identifier) == STATUS_APPLIED:
                    continue
                results.append(self._execute(unit, APPLY, STATUS_PENDING))
        if not results:
            logger.info("Nothing to apply; ledger is up to date")
        return results

    def apply(self, identifier: str) -> UnitResult:
        unit = self._unit(identifier)
        with migration_lock(self.engine, self.lock_key):
            with Session(self.engine) as session:
                entries = self._entries(session)
                self._preflight(entries)
            status = self._status_of(entries, identifier)
            if status != STATUS_PENDING:
                raise OrderViolation(f"cannot apply unit {identifier}: status is {status!r}")
            for earlier in self.units:
                if earlier.sort_key >= unit.sort_key:
                    break
                if self._status_of(entries, earlier.identifier) != STATUS_APPLIED:
                    raise OrderViolation(
                        f"cannot apply unit {identifier} while earlier unit {earlier.identifier} is pending"
                    )
            return self._execute(unit, APPLY, status)

    # ----------------------------------------------------------------- backward
    def _applied_desc(self, entries) -> List[MigrationUnit]:
        return [
            u for u in reversed(self.units)
            if self._status_of(entries, u.identifier) == STATUS_APPLIED
        ]

    def downgrade(self, steps: int = 1) -> List[UnitResult]:
        """Revert the `steps` most recently applied units, newest first."""
        if steps < 1:
            raise ValueError("steps must be >= 1")
        results = []
        with migration_lock(self.engine, self.lock_key):
            with Session(self.engine) as session:
                entries = self._entries(session)
                self._preflight(entries)
            for unit in self._applied_desc(entries)[:steps]:
                results.append(self._execute(unit, REVERT, STATUS_APPLIED))
        if not results:
            logger.info("Nothing to revert; no unit is applied")
        return results

    def revert(self, identifier: str) -> UnitResult:
        unit = self._unit(identifier)
        with migration_lock(self.engine, self.lock_key):
            with Session(self.engine) as session:
                entries = self._entries(session)
                self._preflight(entries)
            status = self._status_of(entries, identifier)
            if status != STATUS_APPLIED:
                raise OrderViolation(f"cannot revert unit {identifier}: status is {status!r}")
            latest = self._applied_desc(entries)[0]
            if latest.identifier != identifier:
                raise OrderViolation(
                    f"cannot revert unit {identifier} before later unit {latest.identifier}"
                )
            return self._execute(unit, REVERT, status)

    # ------------------------------------------------------------------- manual
    def resolve(self, identifier: str, status: str) -> LedgerEntry:
        """Clear a `failed` flag after manual inspection."""
        if status not in (STATUS_PENDING, STATUS_APPLIED):
            raise ValueError("status must be 'pending' or 'applied'")
        unit = self._unit(identifier)
        with migration_lock(self.engine, self.lock_key):
            with Session(self.engine, expire_on_commit=False) as session:
                entry = session.scalars(
                    select(LedgerEntry).where(LedgerEntry.identifier == identifier)
                ).one_or_none()
                if entry is None or entry.status != STATUS_FAILED:
                    raise OrderViolation(f"unit {identifier} is not marked failed")
                entry.status = status
                entry.checksum = unit.checksum
                entry.applied_at = _utcnow() if status == STATUS_APPLIED else None
                entry.last_error = None
                session.commit()
        logger.info("Unit %s resolved to %s", identifier, status)
        return entry

    # ---------------------------------------------------------------- internals
    def _execute(self, unit: MigrationUnit, direction: str, status: str) -> UnitResult:
        new_status = STATUS_APPLIED if direction == APPLY else STATUS_PENDING
        write_ledger = self._ledger_writer(unit, new_status)
        try:
            with self.engine.connect() as conn:
                executor = StatementExecutor(conn, transactional_ddl=self.transactional_ddl)
                if direction == APPLY:
                    result = unit.apply(executor, status, on_success=write_ledger)
                else:
                    result = unit.revert(executor, status, on_success=write_ledger)
        except PartialApplyAmbiguity as exc:
            try:
                self._record(unit, STATUS_FAILED, error=str(exc))
            except SQLAlchemyError:
                logger.exception("Could not flag unit %s as failed in the ledger", unit.identifier)
            raise
        logger.info("Unit %s %s -> %s (%d statements)", unit.display_name, direction, result.status, result.statements)
        return result

    def _ledger_writer(self, unit: MigrationUnit, status: str):
        """
        Ledger upsert issued through the unit's executor, inside its transaction.
        A rejected write surfaces like any other statement failure.
        """
        table = LedgerEntry.__table__

        def write(executor):
            now = _utcnow()
            values = dict(
                name=unit.name,
                checksum=unit.checksum,
                status=status,
                applied_at=now if status == STATUS_APPLIED else None,
                updated_at=now,
                last_error=None,
            )
            result = executor.execute(
                table.update().where(table.c.identifier == unit.identifier).values(**values)
            )
            if result.rowcount == 0:
                executor.execute(table.insert().values(identifier=unit.identifier, **values))

        return write

    def _record(self, unit: MigrationUnit, status: str, error: Optional[str] = None):
        with Session(self.engine) as session:
            entry = session.scalars(
                select(LedgerEntry).where(LedgerEntry.identifier == unit.identifier)
            ).one_or_none()
            if entry is None:
                entry = LedgerEntry(identifier=unit.identifier, name=unit.name)
                session.add(entry)
            entry.name = unit.name
            entry.checksum = unit.checksum
            entry.status = status
            entry.last_error = error
            session.commit()
