"""
Token cache engine: stores token endpoint output and answers "is there a usable access token for this
request, and if not, which refresh token can get one".

All mutations run under the store's write lock and lookups under its read lock (see concurrency.py).
Storage failures propagate unchanged; malformed records are logged, reported by scan(), and skipped.
"""
import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable

from token_cache import config
from token_cache.account import TokenResponse, build_account
from token_cache.concurrency import ReadWriteLock, lock_for
from token_cache.errors import InvalidKeyComponentError, InvalidTokenResponseError, MalformedRecordError
from token_cache.items import (
    AccessTokenItem,
    AccountItem,
    CacheItem,
    IdTokenItem,
    RefreshTokenItem,
    deserialize,
    serialize,
)
from token_cache.keys import WILDCARD_REALMS, CredentialKind, normalize_target, scope_set
from token_cache.storage import StorageAccessor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessTokenMatch:
    """
    A cached access token usable for the request.
    stale: past expires_on, served inside the extended-expiry window (caller opted in).
    refresh_due: inside the refresh-ahead window; usable now, but the caller should refresh soon.
    """
    item: AccessTokenItem
    stale: bool = False
    refresh_due: bool = False

    @property
    def secret(self) -> str:
        return self.item.secret


@dataclass
class CacheScan:
    """Well-formed items of one partition plus the records that failed to parse."""
    items: list[CacheItem] = field(default_factory=list)
    malformed: list[MalformedRecordError] = field(default_factory=list)


def _lower(value: str | None) -> str:
    return (value or "").lower()


def _home_account_id(account: Any) -> str:
    """Accepts an AccountItem, any object with home_account_id, a plain id string, or None (no user)."""
    if account is None:
        return ""
    if isinstance(account, str):
        return account
    return getattr(account, "home_account_id", "") or ""


def _aliases(environment_aliases: str | Iterable[str]) -> frozenset[str]:
    if isinstance(environment_aliases, str):
        environment_aliases = [environment_aliases]
    return frozenset(a.lower() for a in environment_aliases)


def _realm_matches(realm: str, tenant_id: str | None) -> bool:
    if tenant_id is None or realm in WILDCARD_REALMS:
        return True
    return realm.lower() == tenant_id.lower()


class TokenCache:
    def __init__(
        self,
        storage: StorageAccessor,
        *,
        lock: ReadWriteLock | None = None,
        clock: Callable[[], float] = time.time,
        refresh_buffer_seconds: int | None = None,
        read_through: bool | None = None,
    ):
        self.storage = storage
        self._lock = lock if lock is not None else lock_for(storage)
        self._clock = clock
        self.refresh_buffer_seconds = (
            config.REFRESH_BUFFER_SECONDS if refresh_buffer_seconds is None else refresh_buffer_seconds
        )
        self.read_through = config.READ_THROUGH if read_through is None else read_through
        # Deserialized partitions, valid until the next mutation
        self._memo: dict[CredentialKind, tuple[int, CacheScan]] = {}
        self._memo_lock = threading.Lock()

    def _now(self) -> int:
        return int(self._clock())

    # --- reading -----------------------------------------------------------------

    def _load(self, kind: CredentialKind) -> CacheScan:
        """Read and parse one partition straight from storage. Caller holds the lock."""
        result = CacheScan()
        for text in self.storage.get_all_records(kind):
            try:
                item = deserialize(kind, text)
                # Records whose key cannot be derived could never be found or deleted by key
                item.key
            except InvalidKeyComponentError as e:
                malformed = MalformedRecordError(f"{kind.value} record has no valid cache key: {e}", kind=kind)
                logger.warning("Skipping malformed %s record: %s", kind.value, malformed)
                result.malformed.append(malformed)
            except MalformedRecordError as e:
                logger.warning("Skipping malformed %s record: %s", kind.value, e)
                result.malformed.append(e)
            else:
                result.items.append(item)
        return result

    def _scan(self, kind: CredentialKind) -> CacheScan:
        """Partition contents for readers; served from the memo when read-through is on."""
        if not self.read_through:
            return self._load(kind)
        # Readers hold the lock, so the generation cannot move under us
        generation = self._lock.generation
        with self._memo_lock:
            cached = self._memo.get(kind)
        if cached is not None and cached[0] == generation:
            return cached[1]
        loaded = self._load(kind)
        with self._memo_lock:
            self._memo[kind] = (generation, loaded)
        return loaded

    def _invalidate(self) -> None:
        with self._memo_lock:
            self._memo.clear()

    def scan(self, kind: CredentialKind) -> CacheScan:
        """All items of one kind, with any malformed records reported separately."""
        kind = CredentialKind(kind)
        with self._lock.read():
            found = self._scan(kind)
            return CacheScan(items=list(found.items), malformed=list(found.malformed))

    def get_item(self, kind: CredentialKind, key: str) -> CacheItem | None:
        """Exact-key read. A malformed record reads as absent."""
        kind = CredentialKind(kind)
        with self._lock.read():
            text = self.storage.get_record(kind, key)
        if text is None:
            return None
        try:
            return deserialize(kind, text)
        except MalformedRecordError as e:
            e.key = key
            logger.warning("Malformed %s record under requested key: %s", kind.value, e)
            return None

    def find_access_token(
        self,
        client_id: str,
        account: Any,
        scopes: str | Iterable[str] | None,
        tenant_id: str | None,
        environment_aliases: str | Iterable[str],
        *,
        allow_extended: bool = False,
    ) -> AccessTokenMatch | None:
        """
        Best cached access token covering the requested scopes, or None.
        Candidates must match client and account exactly, live on one of the environment aliases,
        belong to the tenant (or be tenant-wildcard), and carry a superset of the requested scopes.
        The latest expiry wins; ties go to the most recently cached.
        """
        home = _lower(_home_account_id(account))
        aliases = _aliases(environment_aliases)
        wanted = scope_set(scopes)
        now = self._now()
        with self._lock.read():
            items = self._scan(CredentialKind.ACCESS_TOKEN).items
        candidates = [
            at
            for at in items
            if _lower(at.client_id) == _lower(client_id)
            and _lower(at.home_account_id) == home
            and _lower(at.environment) in aliases
            and _realm_matches(at.realm, tenant_id)
            and wanted <= scope_set(at.target)
        ]
        candidates.sort(key=lambda at: (at.expires_on, at.cached_at), reverse=True)
        for at in candidates:
            if now < at.expires_on:
                logger.debug("Access token cache hit for client %s", client_id)
                return AccessTokenMatch(at, stale=False, refresh_due=self._refresh_due(at, now))
            if allow_extended and now < at.extended_expires_on:
                logger.debug("Serving access token from extended expiry window for client %s", client_id)
                return AccessTokenMatch(at, stale=True, refresh_due=True)
        logger.debug("Access token cache miss for client %s (%d scope candidates)", client_id, len(candidates))
        return None

    def _refresh_due(self, at: AccessTokenItem, now: int) -> bool:
        """
        True inside the refresh-ahead window. A server-provided refresh_on wins; otherwise the buffer
        applies only when the token lives longer than the buffer (else it would always be due).
        """
        if at.refresh_on is not None:
            return now >= at.refresh_on
        lifetime = at.expires_on - at.cached_at
        buffer = self.refresh_buffer_seconds
        return lifetime > buffer and now >= at.expires_on - buffer

    def find_refresh_token(
        self,
        client_id: str,
        account: Any,
        environment_aliases: str | Iterable[str],
    ) -> RefreshTokenItem | None:
        home = _lower(_home_account_id(account))
        aliases = _aliases(environment_aliases)
        with self._lock.read():
            items = self._scan(CredentialKind.REFRESH_TOKEN).items
        candidates = [
            rt
            for rt in items
            if _lower(rt.client_id) == _lower(client_id)
            and _lower(rt.home_account_id) == home
            and _lower(rt.environment) in aliases
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda rt: rt.cached_at)

    def find_id_token(
        self,
        client_id: str,
        account: Any,
        tenant_id: str | None,
        environment_aliases: str | Iterable[str],
    ) -> IdTokenItem | None:
        home = _lower(_home_account_id(account))
        aliases = _aliases(environment_aliases)
        with self._lock.read():
            items = self._scan(CredentialKind.ID_TOKEN).items
        candidates = [
            it
            for it in items
            if _lower(it.client_id) == _lower(client_id)
            and _lower(it.home_account_id) == home
            and _lower(it.environment) in aliases
            and _realm_matches(it.realm, tenant_id)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda it: it.cached_at)

    def get_accounts(self, environment_aliases: str | Iterable[str] | None = None) -> list[AccountItem]:
        """Cached accounts, optionally limited to one identity provider's aliases."""
        with self._lock.read():
            items = self._scan(CredentialKind.ACCOUNT).items
        if environment_aliases is None:
            return list(items)
        aliases = _aliases(environment_aliases)
        return [a for a in items if _lower(a.environment) in aliases]

    def find_account(
        self,
        home_account_id: str,
        environment_aliases: str | Iterable[str],
        tenant_id: str | None = None,
    ) -> AccountItem | None:
        home = _lower(home_account_id)
        for a in self.get_accounts(environment_aliases):
            if _lower(a.home_account_id) == home and _realm_matches(a.realm, tenant_id):
                return a
        return None

    # --- writing -----------------------------------------------------------------

    def save_token_response(
        self,
        client_id: str,
        tenant_id: str | None,
        environment: str,
        account: AccountItem | None,
        response: TokenResponse | dict,
    ) -> None:
        """
        Store every token present in a token endpoint response.
        Existing access tokens for the same client/account/environment/realm whose scopes overlap the
        new token's are removed first, in the same locked step, so overlapping tokens never pile up.
        Keys are derived before anything is written; a bad key component aborts with no write.
        """
        if isinstance(response, dict):
            response = TokenResponse.from_dict(response)
        if response.access_token and response.expires_in is None:
            raise InvalidTokenResponseError("access_token present without expires_in")
        now = self._now()
        if account is None:
            account = build_account(environment, tenant_id, response)
        home_account_id = account.home_account_id if account is not None else ""
        realm = tenant_id or ""

        writes: list[tuple[CacheItem, str, str]] = []
        access_token = None
        if response.access_token:
            expires_on = now + response.expires_in
            extended = response.extended_expires_in
            access_token = AccessTokenItem(
                home_account_id=home_account_id,
                environment=environment,
                client_id=client_id,
                secret=response.access_token,
                realm=realm,
                target=normalize_target(response.scope),
                cached_at=now,
                expires_on=expires_on,
                extended_expires_on=now + extended if extended is not None else expires_on,
                refresh_on=now + response.refresh_in if response.refresh_in is not None else None,
                token_type=response.token_type,
            )
            writes.append((access_token, access_token.key, serialize(access_token)))
        if response.refresh_token:
            rt = RefreshTokenItem(
                home_account_id=home_account_id,
                environment=environment,
                client_id=client_id,
                secret=response.refresh_token,
                cached_at=now,
            )
            writes.append((rt, rt.key, serialize(rt)))
        if response.id_token:
            it = IdTokenItem(
                home_account_id=home_account_id,
                environment=environment,
                client_id=client_id,
                secret=response.id_token,
                realm=realm,
                cached_at=now,
            )
            writes.append((it, it.key, serialize(it)))
        if account is not None and account.home_account_id:
            if not account.cached_at:
                account = replace(account, cached_at=now)
            writes.append((account, account.key, serialize(account)))

        with self._lock.write():
            try:
                if access_token is not None:
                    self._evict_overlapping(access_token)
                for item, key, text in writes:
                    self.storage.save_record(item.kind, key, text)
            finally:
                self._invalidate()
        logger.debug(
            "Saved token response for client %s: %s",
            client_id,
            ", ".join(item.kind.value for item, _, _ in writes) or "nothing",
        )

    def _evict_overlapping(self, new: AccessTokenItem) -> None:
        """Delete access tokens sharing client/account/environment/realm whose scopes intersect new's."""
        new_scopes = scope_set(new.target)
        # _load only yields items with derivable keys; collect them all before deleting anything
        doomed = [
            at.key
            for at in self._load(CredentialKind.ACCESS_TOKEN).items
            if _lower(at.client_id) == _lower(new.client_id)
            and _lower(at.home_account_id) == _lower(new.home_account_id)
            and _lower(at.environment) == _lower(new.environment)
            and _lower(at.realm) == _lower(new.realm)
            and scope_set(at.target) & new_scopes
        ]
        for key in doomed:
            self.storage.delete_record(CredentialKind.ACCESS_TOKEN, key)
        if doomed:
            logger.debug("Evicted %d overlapping access tokens for client %s", len(doomed), new.client_id)

    def remove_credential(self, item: CacheItem) -> None:
        """Delete one record, e.g. a refresh token the server rejected."""
        key = item.key
        with self._lock.write():
            try:
                self.storage.delete_record(item.kind, key)
            finally:
                self._invalidate()

    def delete_account(
        self,
        home_account_id: str,
        environment: str,
        environment_aliases: str | Iterable[str] = (),
    ) -> None:
        """
        Sign-out: remove the account record on the environment (and any extra aliases given) and every
        access, refresh and ID token of that user on any environment. Runs as one locked step; lookups
        see all of it or none of it.
        """
        home = _lower(home_account_id)
        if isinstance(environment_aliases, str):
            environment_aliases = [environment_aliases]
        envs = _aliases([environment, *environment_aliases])
        with self._lock.write():
            try:
                doomed = [
                    (kind, item.key)
                    for kind in (
                        CredentialKind.ACCESS_TOKEN,
                        CredentialKind.REFRESH_TOKEN,
                        CredentialKind.ID_TOKEN,
                    )
                    for item in self._load(kind).items
                    if _lower(item.home_account_id) == home
                ]
                doomed.extend(
                    (CredentialKind.ACCOUNT, a.key)
                    for a in self._load(CredentialKind.ACCOUNT).items
                    if _lower(a.home_account_id) == home and _lower(a.environment) in envs
                )
                for kind, key in doomed:
                    self.storage.delete_record(kind, key)
            finally:
                self._invalidate()
        logger.debug("Deleted account: %d cache records removed", len(doomed))

    def clear(self) -> None:
        with self._lock.write():
            try:
                self.storage.clear_all()
            finally:
                self._invalidate()
        logger.debug("Token cache cleared")
