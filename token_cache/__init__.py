"""
Token cache for OAuth2/OIDC clients: stores access, refresh and ID tokens plus account records, and
finds a reusable token for a request before the client goes back to the identity provider.
"""
from token_cache.account import TokenResponse
from token_cache.cache import AccessTokenMatch, CacheScan, TokenCache
from token_cache.errors import (
    InvalidKeyComponentError,
    InvalidTokenResponseError,
    MalformedRecordError,
    StorageError,
    StorageReadError,
    StorageWriteError,
    TokenCacheError,
)
from token_cache.items import AccessTokenItem, AccountItem, IdTokenItem, RefreshTokenItem, deserialize, serialize
from token_cache.keys import CredentialKind, derive_key
from token_cache.storage import InMemoryStorageAccessor, StorageAccessor, create_accessor

__all__ = [
    "AccessTokenItem",
    "AccessTokenMatch",
    "AccountItem",
    "CacheScan",
    "CredentialKind",
    "IdTokenItem",
    "InMemoryStorageAccessor",
    "InvalidKeyComponentError",
    "InvalidTokenResponseError",
    "MalformedRecordError",
    "RefreshTokenItem",
    "StorageAccessor",
    "StorageError",
    "StorageReadError",
    "StorageWriteError",
    "TokenCache",
    "TokenCacheError",
    "TokenResponse",
    "create_accessor",
    "derive_key",
    "deserialize",
    "serialize",
]
