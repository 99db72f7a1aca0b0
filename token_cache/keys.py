"""
Cache key derivation. Pure functions; the write path and every lookup path go through derive_key
so that a record is always found under the key it was stored with.

Key layout: home_account_id|environment|kind|client_id|realm|target, all lowercased.
"""
from enum import Enum
from typing import Iterable

from token_cache.errors import InvalidKeyComponentError

KEY_DELIMITER = "|"

# Realm values meaning "valid for any tenant"
WILDCARD_REALMS = frozenset({"", "*"})


class CredentialKind(str, Enum):
    ACCESS_TOKEN = "AccessToken"
    REFRESH_TOKEN = "RefreshToken"
    ID_TOKEN = "IdToken"
    ACCOUNT = "Account"


def scope_list(scopes: str | Iterable[str] | None) -> list[str]:
    """Split scopes (space-delimited string or iterable of strings) into individual scope tokens."""
    if scopes is None:
        return []
    if isinstance(scopes, str):
        return scopes.split()
    tokens = []
    for s in scopes:
        tokens.extend(s.split())
    return tokens


def scope_set(scopes: str | Iterable[str] | None) -> frozenset[str]:
    """Case-insensitive scope set used for containment checks."""
    return frozenset(s.lower() for s in scope_list(scopes))


def normalize_target(scopes: str | Iterable[str] | None) -> str:
    """
    Deterministic target string: duplicates removed (case-insensitively, first spelling kept),
    sorted, single-space joined. Order and duplication never change the result.
    """
    seen: dict[str, str] = {}
    for s in scope_list(scopes):
        seen.setdefault(s.lower(), s)
    return " ".join(seen[k] for k in sorted(seen))


def _component(name: str, value: str | None) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InvalidKeyComponentError(f"{name} must be a string, got {type(value).__name__}")
    if KEY_DELIMITER in value or "\n" in value or "\r" in value:
        raise InvalidKeyComponentError(f"{name} contains a reserved character: {value!r}")
    return value.lower()


def derive_key(
    kind: CredentialKind,
    home_account_id: str | None,
    environment: str | None,
    client_id: str | None = None,
    realm: str | None = None,
    target: str | Iterable[str] | None = None,
) -> str:
    """Composite lookup key for a cache item. Raises InvalidKeyComponentError on bad input."""
    kind = CredentialKind(kind)
    if kind is CredentialKind.ACCESS_TOKEN:
        # Validate the raw scopes first so a delimiter is rejected rather than split around
        raw = target if isinstance(target, str) or target is None else " ".join(target)
        _component("target", raw)
        target_part = normalize_target(raw).lower()
    else:
        target_part = ""
    return KEY_DELIMITER.join(
        [
            _component("home_account_id", home_account_id),
            _component("environment", environment),
            kind.value.lower(),
            _component("client_id", client_id),
            _component("realm", realm),
            target_part,
        ]
    )
