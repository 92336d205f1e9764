"""Partial indexes for money_amount / product_option_value lookups

Identifier: 1679950645254

Large `IN (...)` lookups by variant/region/option are issued as separate
queries; nested-loop joins are disabled while the indexes are rebuilt.
To turn the heuristic back on in a session: `SET enable_nestloop TO on`.

Not atomic: enable_nestloop is a session setting held around the DDL
transaction, not inside it.
"""
from migrakit.services.unit import MigrationUnit, SessionSetting

# (legacy index, new partial index, table, column)
INDEXES = (
    ("IDX_17a06d728e4cfbc5bd2ddb70af", "idx_money_amount_variant_id", "money_amount", "variant_id"),
    ("IDX_b433e27b7a83e6d12ab26b15b0", "idx_money_amount_region_id", "money_amount", "region_id"),
    ("IDX_7234ed737ff4eb1b6ae6e6d7b0", "idx_product_option_value_variant_id", "product_option_value", "variant_id"),
    ("IDX_cdf4388f294b30a25c627d69fe", "idx_product_option_value_option_id", "product_option_value", "option_id"),
)

FILTER = "deleted_at IS NULL"


def _forward():
    for legacy, new, table, column in INDEXES:
        yield f'DROP INDEX IF EXISTS "{legacy}"'
        yield f"CREATE INDEX IF NOT EXISTS {new} ON {table} ({column}) WHERE {FILTER}"


def _backward():
    # Unguarded: reverting twice fails here instead of passing silently.
    for _legacy, new, _table, _column in INDEXES:
        yield f"DROP INDEX {new}"
    for legacy, _new, table, column in INDEXES:
        yield f'CREATE INDEX IF NOT EXISTS "{legacy}" ON "{table}" ("{column}")'


unit = MigrationUnit(
    identifier="1679950645254",
    name="product_domain_improved_indexes",
    description=__doc__.splitlines()[0],
    forward=tuple(_forward()),
    backward=tuple(_backward()),
    session_settings=(SessionSetting("enable_nestloop", "off"),),
    irreversible_settings=("enable_nestloop",),
)
