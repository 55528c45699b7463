from .errors import Conflict, NotFound, PersistenceError, StoreError, UnsupportedOperation, ValidationError
from .persistence import JsonFilePersistence, MemoryPersistence, Persistence, SqlPersistence, build_persistence
from .query import Query, parse_query
from .records import AuditContext, FindResult, RecordStore
from .schema import DEFAULT_TABLES, TableSpec

__all__ = [
    "AuditContext",
    "Conflict",
    "DEFAULT_TABLES",
    "FindResult",
    "JsonFilePersistence",
    "MemoryPersistence",
    "NotFound",
    "Persistence",
    "PersistenceError",
    "Query",
    "RecordStore",
    "SqlPersistence",
    "StoreError",
    "TableSpec",
    "UnsupportedOperation",
    "ValidationError",
    "build_persistence",
    "parse_query",
]
