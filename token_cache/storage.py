"""
Storage accessor contract and the in-memory adapter.

The cache engine talks to a backing store only through StorageAccessor: one partition per item kind,
serialized text in, serialized text out. Backends pick their own durability and retry policy; a failed
write raises StorageWriteError, a failed read StorageReadError. The engine never retries.
"""
import logging
import threading
from abc import ABC, abstractmethod
from typing import Sequence

from token_cache import config
from token_cache.keys import CredentialKind

logger = logging.getLogger(__name__)


class StorageAccessor(ABC):
    @abstractmethod
    def save_record(self, kind: CredentialKind, key: str, text: str) -> None:
        """Insert or overwrite the record stored under key (last write wins)."""

    @abstractmethod
    def delete_record(self, kind: CredentialKind, key: str) -> None:
        """Remove the record stored under key. No-op if absent."""

    @abstractmethod
    def get_record(self, kind: CredentialKind, key: str) -> str | None:
        """Serialized text stored under key, or None."""

    @abstractmethod
    def get_all_records(self, kind: CredentialKind) -> Sequence[str]:
        """Serialized text of every record in one partition, unordered."""

    @abstractmethod
    def clear_all(self) -> None:
        """Remove every record from every partition."""


class InMemoryStorageAccessor(StorageAccessor):
    """Process-local store: one dict per kind. Lost when the process exits."""

    def __init__(self) -> None:
        self._partitions: dict[CredentialKind, dict[str, str]] = {k: {} for k in CredentialKind}
        self._lock = threading.Lock()

    def save_record(self, kind: CredentialKind, key: str, text: str) -> None:
        with self._lock:
            self._partitions[CredentialKind(kind)][key] = text

    def delete_record(self, kind: CredentialKind, key: str) -> None:
        with self._lock:
            self._partitions[CredentialKind(kind)].pop(key, None)

    def get_record(self, kind: CredentialKind, key: str) -> str | None:
        with self._lock:
            return self._partitions[CredentialKind(kind)].get(key)

    def get_all_records(self, kind: CredentialKind) -> list[str]:
        with self._lock:
            return list(self._partitions[CredentialKind(kind)].values())

    def clear_all(self) -> None:
        with self._lock:
            for partition in self._partitions.values():
                partition.clear()


def create_accessor(
    backend: str | None = None,
    database_url: str | None = None,
    encryption_key: str | bytes | None = None,
) -> StorageAccessor:
    """
    Build the storage adapter named by backend ("memory" or "sql"); defaults come from config.
    When an encryption key is given (or TOKEN_CACHE_ENCRYPTION_KEY is set) the adapter is wrapped
    so records are Fernet-encrypted at rest.
    """
    backend = (backend or config.BACKEND).strip().lower()
    accessor: StorageAccessor
    if backend == "memory":
        accessor = InMemoryStorageAccessor()
    elif backend == "sql":
        from token_cache.sql_storage import SqlStorageAccessor

        accessor = SqlStorageAccessor(database_url or config.DATABASE_URL)
    else:
        raise ValueError(f"Unknown token cache backend: {backend!r}")

    key = encryption_key if encryption_key is not None else config.ENCRYPTION_KEY
    if key:
        from token_cache.encrypted_storage import EncryptedStorageAccessor

        accessor = EncryptedStorageAccessor(accessor, key)
    logger.debug("Created %s token cache storage (encrypted=%s)", backend, bool(key))
    return accessor
