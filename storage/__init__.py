"""
Storage Package.

Persistence for the holdings engine: wallet/token configuration,
append-only financial records and run states.

Modules:
- database: engine, sessions, schema creation
- models/: ORM models
- repositories/: data access layer
"""

from storage.database import (
    DatabasePersistenceError,
    create_database_engine,
    get_database_url,
    get_session_factory,
    init_schema,
    session_scope,
)


__all__ = [
    "DatabasePersistenceError",
    "create_database_engine",
    "get_database_url",
    "get_session_factory",
    "init_schema",
    "session_scope",
]
