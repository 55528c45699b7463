"""
Persistence port for the record store.

Every backend answers two calls: ``load()`` returns all stored tables and
``save(tables)`` writes the given tables (a subset is allowed). Backends raise
PersistenceError; they never swallow write failures.
"""
import copy
import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from dawaak.core.database import build_engine, init_db
from dawaak.models import TableSnapshot

from .errors import PersistenceError

logger = logging.getLogger(__name__)

Tables = dict[str, list[dict[str, Any]]]


class Persistence:
    name = "abstract"

    def load(self) -> Tables:
        raise NotImplementedError

    def save(self, tables: Tables) -> None:
        raise NotImplementedError


class MemoryPersistence(Persistence):
    """Keeps deep copies in process memory (tests, throwaway runs)."""

    name = "memory"

    def __init__(self, initial: Tables | None = None):
        self._tables: Tables = copy.deepcopy(initial or {})

    def load(self) -> Tables:
        return copy.deepcopy(self._tables)

    def save(self, tables: Tables) -> None:
        for table, rows in tables.items():
            self._tables[table] = copy.deepcopy(rows)


class JsonFilePersistence(Persistence):
    """One ``<table>.json`` file per table inside ``directory``."""

    name = "file"

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _path(self, table: str) -> Path:
        return self.directory / f"{table}.json"

    def load(self) -> Tables:
        tables: Tables = {}
        if not self.directory.is_dir():
            return tables
        for path in sorted(self.directory.glob("*.json")):
            try:
                rows = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                raise PersistenceError(f"Could not read {path.name}: {e}") from e
            if not isinstance(rows, list):
                raise PersistenceError(f"{path.name} does not contain a JSON array")
            tables[path.stem] = rows
        return tables

    def save(self, tables: Tables) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            for table, rows in tables.items():
                target = self._path(table)
                fd, tmp = tempfile.mkstemp(prefix=f".{table}.", suffix=".tmp", dir=self.directory)
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as fh:
                        json.dump(rows, fh, ensure_ascii=False, indent=2, default=str)
                    os.replace(tmp, target)
                except BaseException:
                    Path(tmp).unlink(missing_ok=True)
                    raise
                logger.debug("Saved %d records to %s", len(rows), target)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Could not write tables {sorted(tables)}: {e}") from e


class SqlPersistence(Persistence):
    """One ``table_snapshot`` row (JSON payload) per table; SQLite or PostgreSQL."""

    name = "sql"

    def __init__(self, engine: Engine):
        self.engine = engine
        init_db(engine)

    def load(self) -> Tables:
        try:
            with Session(self.engine) as db:
                rows = db.exec(select(TableSnapshot)).all()
                return {row.name: json.loads(row.payload or "[]") for row in rows}
        except (SQLAlchemyError, ValueError) as e:
            raise PersistenceError(f"Could not load tables: {e}") from e

    def save(self, tables: Tables) -> None:
        try:
            with Session(self.engine) as db:
                for table, rows in tables.items():
                    snapshot = db.get(TableSnapshot, table) or TableSnapshot(name=table)
                    snapshot.payload = json.dumps(rows, ensure_ascii=False, default=str)
                    snapshot.updated_at = datetime.utcnow()
                    db.add(snapshot)
                db.commit()
        except (SQLAlchemyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Could not write tables {sorted(tables)}: {e}") from e


def build_persistence(storage_url: str) -> Persistence:
    """
    Picks the backend from one setting:
    ``memory://`` -> in process, ``file:<dir>`` -> JSON files (local),
    anything else -> SQLAlchemy URL (remote database).
    """
    url = (storage_url or "").strip()
    if not url or url.startswith("memory:"):
        return MemoryPersistence()
    if url.startswith("file:"):
        directory = url[len("file:") :]
        if directory.startswith("//"):
            directory = directory[2:]
        return JsonFilePersistence(directory or "./database")
    return SqlPersistence(build_engine(url))
