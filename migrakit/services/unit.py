from __future__ import annotations

import hashlib
import logging
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Tuple

from migrakit.errors import OrderViolation, PartialApplyAmbiguity, StatementError
from migrakit.models.ledger import STATUS_APPLIED, STATUS_PENDING

logger = logging.getLogger(__name__)

APPLY = "apply"
REVERT = "revert"

# migration_ledger.identifier is String(64)
MAX_IDENTIFIER_LENGTH = 64


@dataclass(frozen=True)
class SessionSetting:
    """A connection-scoped planner/session option held while a script runs."""

    name: str
    value: str
    dialects: Tuple[str, ...] = ("postgresql",)

    def applies_to(self, dialect_name: str) -> bool:
        return dialect_name in self.dialects


@dataclass(frozen=True)
class UnitResult:
    identifier: str
    direction: str
    status: str
    statements: int


def identifier_key(identifier: str):
    """Numeric order for digit tokens (timestamps), lexical for anything else."""
    if identifier.isdigit():
        return (0, int(identifier), identifier)
    return (1, 0, identifier)


@dataclass(frozen=True)
class MigrationUnit:
    """
    A named, versioned, reversible unit of schema change.

    Status transitions are pending --apply--> applied --revert--> pending.
    The caller passes the status it has on record for the target database;
    the unit refuses any other transition. `on_success(executor)` runs after
    the last statement and inside the same transaction, so a ledger write made
    there commits or rolls back together with the script.

    Session settings are entered before the forward script and released after
    it, outside the DDL transaction. The backward script does not re-issue
    them: names listed in `irreversible_settings` are not restored by revert.
    """

    identifier: str
    name: str
    forward: Tuple[str, ...]
    backward: Tuple[str, ...]
    session_settings: Tuple[SessionSetting, ...] = ()
    irreversible_settings: Tuple[str, ...] = ()
    description: str = ""
    checksum: str = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if not self.identifier:
            raise ValueError("MigrationUnit.identifier is required")
        if len(self.identifier) > MAX_IDENTIFIER_LENGTH:
            raise ValueError(f"unit identifier longer than {MAX_IDENTIFIER_LENGTH} chars: {self.identifier!r}")
        if not self.forward:
            raise ValueError(f"unit {self.identifier} has an empty forward script")
        # normalise lists passed by authors into tuples (dataclass is frozen)
        object.__setattr__(self, "forward", tuple(self.forward))
        object.__setattr__(self, "backward", tuple(self.backward))
        object.__setattr__(self, "session_settings", tuple(self.session_settings))
        object.__setattr__(self, "irreversible_settings", tuple(self.irreversible_settings))
        object.__setattr__(self, "checksum", self._compute_checksum())

    @property
    def display_name(self) -> str:
        return f"{self.identifier}_{self.name}"

    @property
    def sort_key(self):
        return identifier_key(self.identifier)

    def _compute_checksum(self) -> str:
        h = hashlib.sha256()
        h.update(self.identifier.encode("utf-8"))
        for part in ("forward", *self.forward, "backward", *self.backward):
            h.update(b"\x00")
            h.update(part.encode("utf-8"))
        for s in self.session_settings:
            h.update(f"\x00set:{s.name}={s.value}@{','.join(s.dialects)}".encode("utf-8"))
        return h.hexdigest()

    def apply(self, executor, status: str = STATUS_PENDING, on_success=None) -> UnitResult:
        if status != STATUS_PENDING:
            raise OrderViolation(f"cannot apply unit {self.identifier}: status is {status!r}, expected 'pending'")
        count = self._run(executor, APPLY, self.forward, self.session_settings, on_success)
        return UnitResult(self.identifier, APPLY, STATUS_APPLIED, count)

    def revert(self, executor, status: str = STATUS_APPLIED, on_success=None) -> UnitResult:
        if status != STATUS_APPLIED:
            raise OrderViolation(f"cannot revert unit {self.identifier}: status is {status!r}, expected 'applied'")
        count = self._run(executor, REVERT, self.backward, (), on_success)
        if self.irreversible_settings:
            logger.warning(
                "unit %s reverted; session settings not restored: %s",
                self.identifier, ", ".join(self.irreversible_settings),
            )
        return UnitResult(self.identifier, REVERT, STATUS_PENDING, count)

    def _run(self, executor, direction, statements, settings, on_success=None) -> int:
        logger.info("%s %s (%d statements)", direction, self.display_name, len(statements))
        executed = 0
        with ExitStack() as stack:
            for setting in settings:
                stack.enter_context(executor.scoped_setting(setting))
            try:
                with executor.transaction():
                    for statement in statements:
                        executor.execute(statement)
                        executed += 1
                    if on_success is not None:
                        on_success(executor)
            except StatementError as exc:
                logger.error("%s %s failed at statement %d: %s", direction, self.display_name, executed + 1, exc)
                if executed and not executor.supports_transactional_ddl:
                    raise PartialApplyAmbiguity(self.identifier, direction, executed, exc) from exc
                raise
        return executed
