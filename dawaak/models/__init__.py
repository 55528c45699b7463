from .table_snapshot import TableSnapshot

__all__ = ["TableSnapshot"]
