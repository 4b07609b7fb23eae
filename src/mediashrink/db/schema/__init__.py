"""Database schema package."""

from .definition import SCHEMA_SQL, SCHEMA_VERSION, create_schema
from .initialize import SchemaVersionError, initialize_database
from .version import get_schema_version

__all__ = [
    "SCHEMA_SQL",
    "SCHEMA_VERSION",
    "SchemaVersionError",
    "create_schema",
    "get_schema_version",
    "initialize_database",
]
