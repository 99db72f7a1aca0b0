"""
SQL storage backend (SQLAlchemy). SQLite works out of the box; any SQLAlchemy URL is accepted.
Each accessor owns its engine; there is no module-level database.
"""
import logging

from sqlalchemy import create_engine, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from token_cache.errors import StorageReadError, StorageWriteError
from token_cache.keys import CredentialKind
from token_cache.models import Base, CacheEntry
from token_cache.storage import StorageAccessor

logger = logging.getLogger(__name__)


def _create_engine(database_url: str):
    # SQLite: in-memory needs StaticPool so all connections share the same DB
    # File-based SQLite needs check_same_thread=False for use from several threads
    if database_url.startswith("sqlite:///:memory:") or database_url == "sqlite://":
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    return create_engine(database_url, connect_args=connect_args)


class SqlStorageAccessor(StorageAccessor):
    def __init__(self, database_url: str):
        self.engine = _create_engine(database_url)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        Base.metadata.create_all(bind=self.engine)

    def save_record(self, kind: CredentialKind, key: str, text: str) -> None:
        kind = CredentialKind(kind)
        with self._session_factory() as db:
            try:
                entry = db.scalars(
                    select(CacheEntry).where(CacheEntry.kind == kind.value, CacheEntry.cache_key == key)
                ).first()
                if entry is None:
                    db.add(CacheEntry(kind=kind.value, cache_key=key, value=text))
                else:
                    entry.value = text
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StorageWriteError(f"Could not save {kind.value} record: {e}") from e

    def delete_record(self, kind: CredentialKind, key: str) -> None:
        kind = CredentialKind(kind)
        with self._session_factory() as db:
            try:
                db.execute(delete(CacheEntry).where(CacheEntry.kind == kind.value, CacheEntry.cache_key == key))
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StorageWriteError(f"Could not delete {kind.value} record: {e}") from e

    def get_record(self, kind: CredentialKind, key: str) -> str | None:
        kind = CredentialKind(kind)
        with self._session_factory() as db:
            try:
                return db.scalars(
                    select(CacheEntry.value).where(CacheEntry.kind == kind.value, CacheEntry.cache_key == key)
                ).first()
            except SQLAlchemyError as e:
                raise StorageReadError(f"Could not read {kind.value} record: {e}") from e

    def get_all_records(self, kind: CredentialKind) -> list[str]:
        kind = CredentialKind(kind)
        with self._session_factory() as db:
            try:
                return list(db.scalars(select(CacheEntry.value).where(CacheEntry.kind == kind.value)))
            except SQLAlchemyError as e:
                raise StorageReadError(f"Could not read {kind.value} records: {e}") from e

    def clear_all(self) -> None:
        with self._session_factory() as db:
            try:
                count = db.execute(delete(CacheEntry)).rowcount
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StorageWriteError(f"Could not clear token cache: {e}") from e
        logger.debug("Cleared %s cache entries", count)
