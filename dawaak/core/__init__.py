from .config import settings
from .database import build_engine, init_db

__all__ = ["settings", "build_engine", "init_db"]
