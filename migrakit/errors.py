"""Error taxonomy for migration units and the runner.

Nothing here is retried by the unit or the runner; retry policy belongs to
whoever invokes them.
"""


class MigrationError(Exception):
    """Base class for everything the unit/runner raises on purpose."""


class StatementError(MigrationError):
    """The engine rejected a statement (syntax, privileges, missing object...)."""

    def __init__(self, statement, orig):
        self.statement = statement
        self.orig = orig
        super().__init__(f"{orig} [statement: {statement}]")


class OrderViolation(MigrationError):
    """apply/revert invoked out of sequence or against the wrong status."""


class ScriptChanged(OrderViolation):
    """An applied unit's statements no longer match the recorded checksum."""

    def __init__(self, identifier, recorded, current):
        self.identifier = identifier
        self.recorded = recorded
        self.current = current
        super().__init__(
            f"unit {identifier} was edited after it was applied "
            f"(recorded checksum {recorded[:12]}, current {current[:12]})"
        )


class PartialApplyAmbiguity(MigrationError):
    """A script failed partway and earlier statements could not be rolled back.

    The schema no longer matches the ledger; the database needs manual
    inspection before anything else runs against it.
    """

    def __init__(self, identifier, direction, executed, cause):
        self.identifier = identifier
        self.direction = direction
        self.executed = executed
        self.cause = cause
        super().__init__(
            f"unit {identifier} {direction} failed after {executed} statement(s) "
            f"were committed: {cause}"
        )


class RegistryError(MigrationError):
    """Unit discovery found a malformed or duplicated unit."""
