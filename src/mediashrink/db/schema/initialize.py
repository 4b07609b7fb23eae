"""Creates the job database schema on first open."""

import sqlite3

from .definition import SCHEMA_VERSION, create_schema
from .version import get_schema_version


class SchemaVersionError(Exception):
    """The job database was written by a newer mediashrink."""


def initialize_database(conn: sqlite3.Connection) -> None:
    """Create the tables in an empty database; accept any older or equal version.

    Raises:
        SchemaVersionError: The stored version is newer than SCHEMA_VERSION.
    """
    found = get_schema_version(conn)
    if found is None:
        create_schema(conn)
        return
    if found > SCHEMA_VERSION:
        raise SchemaVersionError(
            f"Job database has schema version {found}, newer than supported "
            f"version {SCHEMA_VERSION}; upgrade mediashrink"
        )
