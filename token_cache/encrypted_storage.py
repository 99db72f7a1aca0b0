"""
Encryption at rest for any storage backend (cryptography Fernet).
Keys are never logged. An entry that fails to decrypt is returned as stored, so the cache reports it
as a malformed record instead of failing the whole read.
"""
import logging

from cryptography.fernet import Fernet, InvalidToken

from token_cache.keys import CredentialKind
from token_cache.storage import StorageAccessor

logger = logging.getLogger(__name__)


def generate_key() -> str:
    """New Fernet key suitable for TOKEN_CACHE_ENCRYPTION_KEY."""
    return Fernet.generate_key().decode("ascii")


class EncryptedStorageAccessor(StorageAccessor):
    def __init__(self, inner: StorageAccessor, key: str | bytes):
        self.inner = inner
        self._fernet = Fernet(key)

    def _decrypt(self, kind: CredentialKind, stored: str) -> str:
        try:
            return self._fernet.decrypt(stored.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            logger.warning("Could not decrypt %s record (%s); returning it unchanged", CredentialKind(kind).value, type(e).__name__)
            return stored

    def save_record(self, kind: CredentialKind, key: str, text: str) -> None:
        self.inner.save_record(kind, key, self._fernet.encrypt(text.encode("utf-8")).decode("ascii"))

    def delete_record(self, kind: CredentialKind, key: str) -> None:
        self.inner.delete_record(kind, key)

    def get_record(self, kind: CredentialKind, key: str) -> str | None:
        stored = self.inner.get_record(kind, key)
        if stored is None:
            return None
        return self._decrypt(kind, stored)

    def get_all_records(self, kind: CredentialKind) -> list[str]:
        return [self._decrypt(kind, stored) for stored in self.inner.get_all_records(kind)]

    def clear_all(self) -> None:
        self.inner.clear_all()
