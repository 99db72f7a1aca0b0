"""
Error types for the token cache. Every error carries a stable error_code callers can branch on.
Absence of a cached credential is never an error; lookups return None for that.
"""


class TokenCacheError(Exception):
    """Base class for token cache failures."""

    error_code = "token_cache_error"

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        if error_code is not None:
            self.error_code = error_code

    def __str__(self) -> str:
        return f"{self.error_code}: {self.args[0]}"


class InvalidKeyComponentError(TokenCacheError):
    error_code = "invalid_key_component"


class MalformedRecordError(TokenCacheError):
    """A stored record could not be parsed. The record is skipped, not deleted."""

    error_code = "malformed_record"

    def __init__(self, message: str, kind=None, key: str | None = None):
        super().__init__(message)
        self.kind = kind
        self.key = key


class InvalidTokenResponseError(TokenCacheError):
    error_code = "invalid_token_response"


class StorageError(TokenCacheError):
    error_code = "storage_error"


class StorageReadError(StorageError):
    error_code = "storage_read_failed"


class StorageWriteError(StorageError):
    error_code = "storage_write_failed"
