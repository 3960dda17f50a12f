"""Persistence capabilities and their SQL and in-memory implementations."""

from folio.repositories.base import ImportBatch, Store, UnitOfWork, get_owned_portfolio
from folio.repositories.memory import MemoryStore
from folio.repositories.sql import SqlStore

__all__ = ["ImportBatch", "MemoryStore", "SqlStore", "Store", "UnitOfWork", "get_owned_portfolio"]
