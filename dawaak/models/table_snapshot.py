from datetime import datetime

from sqlmodel import Field, SQLModel


class TableSnapshot(SQLModel, table=True):
    __tablename__ = "table_snapshot"

    name: str = Field(primary_key=True)  # record store table name
    payload: str = "[]"  # JSON array of records
    updated_at: datetime = Field(default_factory=datetime.utcnow)
