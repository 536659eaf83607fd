import logging
import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hearth.models import KV, BackgroundCache, IconCache
from hearth.services.asset_writer import is_bare_filename

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    cache_key: str
    stored_path: str
    provenance: str
    recorded_at: int


class _CacheTable:
    """Maps a cache key to the bare filename of a stored asset.

    Rows are hints: the file they name may have been removed since, and
    callers check the filesystem before trusting one.
    """

    model = None

    def __init__(self, db: Session):
        self.db = db

    def _entry(self, row) -> CacheEntry:
        raise NotImplementedError

    def _apply(self, row, stored_path: str, provenance: str, now: int):
        raise NotImplementedError

    def get(self, cache_key: str) -> Optional[CacheEntry]:
        row = self.db.get(self.model, cache_key)
        return self._entry(row) if row is not None else None

    def set(self, cache_key: str, stored_path: str, provenance: str = "site") -> CacheEntry:
        if not is_bare_filename(stored_path):
            raise ValueError(f"stored path must be a bare filename, got {stored_path!r}")
        now = int(time.time())
        try:
            row = self._upsert(cache_key, stored_path, provenance, now)
        except IntegrityError:
            # A concurrent request inserted the same key first; last write wins.
            self.db.rollback()
            row = self._upsert(cache_key, stored_path, provenance, now)
        logger.debug(f"Cached {cache_key} -> {stored_path}")
        return self._entry(row)

    def _upsert(self, cache_key: str, stored_path: str, provenance: str, now: int):
        row = self.db.get(self.model, cache_key)
        if row is None:
            row = self.model(cache_key=cache_key)
            self.db.add(row)
        self._apply(row, stored_path, provenance, now)
        self.db.commit()
        return row

    def delete(self, cache_key: str) -> bool:
        deleted = self.db.query(self.model).filter(self.model.cache_key == cache_key).delete()
        self.db.commit()
        return bool(deleted)


class IconCacheStore(_CacheTable):
    model = IconCache

    def _entry(self, row) -> CacheEntry:
        return CacheEntry(row.cache_key, row.icon_path, row.icon_source, row.updated_at)

    def _apply(self, row, stored_path, provenance, now):
        row.icon_path = stored_path
        row.icon_source = provenance
        row.updated_at = now


class BackgroundCacheStore(_CacheTable):
    model = BackgroundCache

    def _entry(self, row) -> CacheEntry:
        return CacheEntry(row.cache_key, row.file_path, "site", row.fetched_at)

    def _apply(self, row, stored_path, provenance, now):
        row.file_path = stored_path
        row.fetched_at = now


class SettingsStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, key: str, default: str = "") -> str:
        row = self.db.get(KV, key)
        if row is None or row.value == "":
            return default
        return row.value

    def set(self, key: str, value: str):
        row = self.db.get(KV, key)
        if row is None:
            self.db.add(KV(key=key, value=value))
        else:
            row.value = value
        self.db.commit()
