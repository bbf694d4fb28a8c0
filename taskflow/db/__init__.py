"""Database engine and schema helpers."""
from .session import create_db_and_tables, get_engine

__all__ = ["create_db_and_tables", "get_engine"]
