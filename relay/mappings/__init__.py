"""Mapping records between conversations, threads and tracker tickets."""

from .service import MappingStore, NotMappedError
from .store import AccountDataStore, InMemoryAccountDataStore, PostgresAccountDataStore

__all__ = [
    "AccountDataStore",
    "InMemoryAccountDataStore",
    "MappingStore",
    "NotMappedError",
    "PostgresAccountDataStore",
]
