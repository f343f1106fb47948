"""Database schema DDL. All tables use CREATE IF NOT EXISTS for idempotency.

Table and column names are configurable, so the DDL is rendered from
Settings rather than kept as a constant. Only primary keys are declared;
secondary indexes are left to the application.
"""

from closuretree.config import Settings


def entity_table_sql(settings: Settings) -> str:
    """DDL for the node records owned by the entity layer."""
    return f"""
CREATE TABLE IF NOT EXISTS {settings.entity_table} (
    id TEXT PRIMARY KEY,
    {settings.position_column} INTEGER NOT NULL DEFAULT 0,
    data TEXT NOT NULL DEFAULT '{{}}',
    created_at TEXT NOT NULL,
    deleted_at TEXT
);
"""


def closure_table_sql(settings: Settings) -> str:
    """DDL for the closure relation: one row per reachable (ancestor, descendant) pair."""
    cols = settings.columns
    table = settings.closure_table_name
    return f"""
CREATE TABLE IF NOT EXISTS {table} (
    {cols.ancestor} TEXT NOT NULL,
    {cols.descendant} TEXT NOT NULL,
    {cols.depth} INTEGER NOT NULL CHECK ({cols.depth} >= 0),
    PRIMARY KEY ({cols.ancestor}, {cols.descendant}),
    FOREIGN KEY ({cols.ancestor}) REFERENCES {settings.entity_table}(id),
    FOREIGN KEY ({cols.descendant}) REFERENCES {settings.entity_table}(id)
);
"""


def schema_sql(settings: Settings) -> str:
    return entity_table_sql(settings) + closure_table_sql(settings)
