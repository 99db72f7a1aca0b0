"""
Typed cache items and their persisted JSON form.

Field names are a stable on-disk contract shared with other tooling. Timestamps are written as
string-encoded epoch seconds. Fields this version does not know are kept in `extra` and written
back unchanged, so older and newer readers can share one store.
"""
import json
from dataclasses import dataclass, field
from typing import Any, ClassVar

from token_cache.errors import MalformedRecordError
from token_cache.keys import CredentialKind, derive_key


@dataclass(frozen=True, kw_only=True)
class CacheItem:
    kind: ClassVar[CredentialKind]
    # attribute name -> persisted field name, in write order
    _json_fields: ClassVar[dict[str, str]]
    _required: ClassVar[frozenset[str]] = frozenset({"environment"})
    _timestamps: ClassVar[frozenset[str]] = frozenset({"cached_at"})

    home_account_id: str = ""
    environment: str
    cached_at: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True, kw_only=True)
class AccessTokenItem(CacheItem):
    kind: ClassVar[CredentialKind] = CredentialKind.ACCESS_TOKEN
    _json_fields: ClassVar[dict[str, str]] = {
        "home_account_id": "home_account_id",
        "environment": "environment",
        "client_id": "client_id",
        "secret": "secret",
        "realm": "realm",
        "target": "target",
        "cached_at": "cached_at",
        "expires_on": "expires_on",
        "extended_expires_on": "extended_expires_on",
        "refresh_on": "refresh_on",
        "token_type": "token_type",
    }
    _required: ClassVar[frozenset[str]] = frozenset({"environment", "secret", "expires_on"})
    _timestamps: ClassVar[frozenset[str]] = frozenset(
        {"cached_at", "expires_on", "extended_expires_on", "refresh_on"}
    )

    client_id: str = ""
    secret: str
    realm: str = ""
    target: str = ""
    expires_on: int
    extended_expires_on: int = 0
    refresh_on: int | None = None
    token_type: str = "Bearer"

    @property
    def key(self) -> str:
        return derive_key(
            self.kind, self.home_account_id, self.environment, self.client_id, self.realm, self.target
        )


@dataclass(frozen=True, kw_only=True)
class RefreshTokenItem(CacheItem):
    kind: ClassVar[CredentialKind] = CredentialKind.REFRESH_TOKEN
    _json_fields: ClassVar[dict[str, str]] = {
        "home_account_id": "home_account_id",
        "environment": "environment",
        "client_id": "client_id",
        "secret": "secret",
        "cached_at": "cached_at",
    }
    _required: ClassVar[frozenset[str]] = frozenset({"environment", "secret"})

    client_id: str = ""
    secret: str

    @property
    def key(self) -> str:
        return derive_key(self.kind, self.home_account_id, self.environment, self.client_id)


@dataclass(frozen=True, kw_only=True)
class IdTokenItem(CacheItem):
    kind: ClassVar[CredentialKind] = CredentialKind.ID_TOKEN
    _json_fields: ClassVar[dict[str, str]] = {
        "home_account_id": "home_account_id",
        "environment": "environment",
        "client_id": "client_id",
        "secret": "secret",
        "realm": "realm",
        "cached_at": "cached_at",
    }
    _required: ClassVar[frozenset[str]] = frozenset({"environment", "secret"})

    client_id: str = ""
    secret: str
    realm: str = ""

    @property
    def key(self) -> str:
        return derive_key(self.kind, self.home_account_id, self.environment, self.client_id, self.realm)


@dataclass(frozen=True, kw_only=True)
class AccountItem(CacheItem):
    kind: ClassVar[CredentialKind] = CredentialKind.ACCOUNT
    _json_fields: ClassVar[dict[str, str]] = {
        "home_account_id": "home_account_id",
        "environment": "environment",
        "realm": "realm",
        "local_account_id": "local_account_id",
        "username": "username",
        "name": "name",
        "raw_client_info": "client_info",
        "authority_type": "authority_type",
        "cached_at": "cached_at",
    }

    realm: str = ""
    local_account_id: str = ""
    username: str = ""
    name: str = ""
    raw_client_info: str = ""
    authority_type: str = "MSSTS"

    @property
    def key(self) -> str:
        return derive_key(self.kind, self.home_account_id, self.environment, None, self.realm)


ITEM_TYPES: dict[CredentialKind, type[CacheItem]] = {
    cls.kind: cls for cls in (AccessTokenItem, RefreshTokenItem, IdTokenItem, AccountItem)
}

# Credentials carry their kind in the record itself; accounts do not
_CREDENTIAL_TYPE_FIELD = "credential_type"


def to_dict(item: CacheItem) -> dict[str, Any]:
    """Persisted field map for an item (unknown fields first, known fields override)."""
    data: dict[str, Any] = dict(item.extra)
    for attr, name in item._json_fields.items():
        value = getattr(item, attr)
        if attr in item._timestamps:
            if value is None:
                data.pop(name, None)
                continue
            value = str(int(value))
        data[name] = value
    if item.kind is not CredentialKind.ACCOUNT:
        data[_CREDENTIAL_TYPE_FIELD] = item.kind.value
    return data


def serialize(item: CacheItem) -> str:
    return json.dumps(to_dict(item), sort_keys=True, separators=(",", ":"))


def _parse_timestamp(kind: CredentialKind, name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise MalformedRecordError(f"{kind.value} field {name} is not a timestamp", kind=kind)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedRecordError(f"{kind.value} field {name} is not a timestamp: {value!r}", kind=kind)


def from_dict(kind: CredentialKind, data: Any) -> CacheItem:
    kind = CredentialKind(kind)
    cls = ITEM_TYPES[kind]
    if not isinstance(data, dict):
        raise MalformedRecordError(f"{kind.value} record is not an object", kind=kind)
    remaining = dict(data)
    if kind is not CredentialKind.ACCOUNT:
        credential_type = remaining.pop(_CREDENTIAL_TYPE_FIELD, kind.value)
        if credential_type != kind.value:
            raise MalformedRecordError(
                f"expected credential_type {kind.value}, found {credential_type!r}", kind=kind
            )
    values: dict[str, Any] = {}
    for attr, name in cls._json_fields.items():
        if name not in remaining:
            if attr in cls._required:
                raise MalformedRecordError(f"{kind.value} record missing {name}", kind=kind)
            continue
        value = remaining.pop(name)
        if attr in cls._timestamps:
            value = _parse_timestamp(kind, name, value)
        elif not isinstance(value, str):
            raise MalformedRecordError(f"{kind.value} field {name} must be a string", kind=kind)
        values[attr] = value
    return cls(extra=remaining, **values)


def deserialize(kind: CredentialKind, text: str | bytes | None) -> CacheItem:
    """Parse persisted text into an item. Raises MalformedRecordError for corrupt or truncated input."""
    kind = CredentialKind(kind)
    if text is None:
        raise MalformedRecordError(f"{kind.value} record is empty", kind=kind)
    try:
        data = json.loads(text)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedRecordError(f"{kind.value} record is not valid JSON: {e}", kind=kind) from e
    return from_dict(kind, data)
