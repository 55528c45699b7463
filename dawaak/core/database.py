from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine


def normalized_database_url(raw_url: str) -> str:
    """
    Database URL normalisation:
    - postgres:// or postgresql:// without a driver is rewritten to the psycopg3 dialect.
    - Anything else (SQLite etc.) is returned unchanged.
    """
    if not raw_url:
        return "sqlite:///./dawaak.db"
    raw_url = raw_url.strip()
    if raw_url.startswith("postgres://"):
        return "postgresql+psycopg://" + raw_url[len("postgres://") :]
    if raw_url.startswith("postgresql://") and "+psycopg" not in raw_url.split("://", 1)[0]:
        return "postgresql+psycopg://" + raw_url[len("postgresql://") :]
    return raw_url


def build_engine(raw_url: str) -> Engine:
    url = normalized_database_url(raw_url)
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    # In-memory SQLite: one shared connection so every session sees the same tables
    in_memory = url.startswith("sqlite") and (":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite:/"))
    return create_engine(
        url,
        connect_args=connect_args,
        poolclass=StaticPool if in_memory else None,
    )


def init_db(engine: Engine) -> None:
    # Import registers the table on SQLModel.metadata
    from dawaak.models import TableSnapshot  # noqa: F401

    SQLModel.metadata.create_all(engine)
