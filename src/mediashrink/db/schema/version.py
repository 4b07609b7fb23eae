"""Reads the schema version recorded in ``_meta``."""

import sqlite3

_VERSION_QUERY = "SELECT value FROM _meta WHERE key = 'schema_version'"


def get_schema_version(conn: sqlite3.Connection) -> int | None:
    """Stored schema version, or None for a database not yet initialized."""
    try:
        row = conn.execute(_VERSION_QUERY).fetchone()
    except sqlite3.OperationalError:
        # no _meta table
        return None
    if row is None:
        return None
    return int(row[0])
