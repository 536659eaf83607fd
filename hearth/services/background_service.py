import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Callable, Optional

from sqlalchemy.orm import Session

from hearth.errors import FetchError, InvalidInput, ProviderError
from hearth.services.asset_writer import AssetWriter
from hearth.services.background_provider import BackgroundProviderResolver, ImageResult
from hearth.services.cache_store import BackgroundCacheStore, SettingsStore
from hearth.services.default_background import ensure_default_background
from hearth.services.fetcher import FetchBudget
from hearth.services.freshness import BackgroundProvider, Freshness, classify, parse_interval

logger = logging.getLogger(__name__)

KV_BACKGROUND_PROVIDER = "settings.background.provider"  # default|bing_daily|bing_random|unsplash|picsum
KV_BACKGROUND_UNSPLASH_QUERY = "settings.background.unsplash.query"
KV_BACKGROUND_INTERVAL = "settings.background.interval"  # duration string, 0 means never auto refresh

PREFETCH_TIMEOUT = 20
REFRESH_TIMEOUT = 14
REQUEST_TIMEOUT = 30


@dataclass
class BackgroundSelection:
    provider: BackgroundProvider
    query: str = ""
    interval_text: str = "0"

    @property
    def interval(self) -> timedelta:
        return parse_interval(self.interval_text)

    @property
    def cache_key(self) -> str:
        return self.provider.cache_key(self.query)


class BackgroundService:
    """Serves the background image from the cache dir, refetching when stale."""

    def __init__(
        self,
        cache_dir: Path,
        resolver: Optional[BackgroundProviderResolver] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        default_image: Optional[Callable[[], Optional[Path]]] = None,
    ):
        self.cache_dir = Path(cache_dir)
        self.files = AssetWriter(self.cache_dir)
        self.resolver = resolver or BackgroundProviderResolver(self.cache_dir)
        self.session_factory = session_factory
        self._default_image = default_image or (lambda: ensure_default_background(self.cache_dir))

    def selection(self, db: Session, provider: Optional[str] = None) -> BackgroundSelection:
        settings = SettingsStore(db)
        raw_provider = provider if provider else settings.get(KV_BACKGROUND_PROVIDER, "default")
        return BackgroundSelection(
            provider=BackgroundProvider.parse(raw_provider),
            query=settings.get(KV_BACKGROUND_UNSPLASH_QUERY, ""),
            interval_text=settings.get(KV_BACKGROUND_INTERVAL, "0"),
        )

    def current_selection(self, db: Session) -> BackgroundSelection:
        try:
            return self.selection(db)
        except InvalidInput as e:
            # A stored provider we no longer know about behaves like Bing daily.
            logger.warning(f"{e}; falling back to {BackgroundProvider.BING_DAILY.value}")
            return self.selection(db, BackgroundProvider.BING_DAILY.value)

    def save_selection(self, db: Session, provider: str, query: str = "", interval: str = "0") -> BackgroundSelection:
        selected = BackgroundProvider.parse(provider)
        settings = SettingsStore(db)
        settings.set(KV_BACKGROUND_PROVIDER, selected.value)
        settings.set(KV_BACKGROUND_UNSPLASH_QUERY, (query or "").strip())
        settings.set(KV_BACKGROUND_INTERVAL, (interval or "0").strip() or "0")
        return self.selection(db)

    def default_image(self) -> Optional[Path]:
        return self._default_image()

    def cached_file(self, store: BackgroundCacheStore, cache_key: str) -> Optional[Path]:
        entry = store.get(cache_key)
        if entry is None:
            return None
        path = self.files.existing(entry.stored_path)
        if path is None:
            logger.info(f"Cache row {cache_key} points at missing file {entry.stored_path}")
        return path

    def image_for_request(self, db: Session, budget: Optional[FetchBudget] = None) -> Path:
        """Path of the file to serve for the configured provider.

        Raises ProviderError or FetchError only when the remote source failed
        and no default image is available.
        """
        selection = self.current_selection(db)
        if not selection.provider.is_remote:
            default = self.default_image()
            if default is None:
                raise ProviderError("default background missing")
            return default

        store = BackgroundCacheStore(db)
        cached = self.cached_file(store, selection.cache_key)
        state = classify(cached, selection.provider, selection.interval)
        logger.info(f"Background {selection.cache_key} is {state.value}")
        if state is Freshness.FRESH:
            return cached

        try:
            result = self._fetch_and_record(store, selection, budget or FetchBudget.start(REQUEST_TIMEOUT))
        except (ProviderError, FetchError) as e:
            logger.warning(f"Background fetch for {selection.cache_key} failed: {e}")
            default = self.default_image()
            if default is None:
                raise
            return default
        return self.cache_dir / result.file_name

    def refresh(
        self, db: Session, provider: Optional[str] = None, budget: Optional[FetchBudget] = None
    ) -> Optional[ImageResult]:
        """Fetch a new image regardless of freshness. None for the default provider."""
        selection = self.selection(db, provider) if provider else self.current_selection(db)
        if not selection.provider.is_remote:
            return None
        store = BackgroundCacheStore(db)
        return self._fetch_and_record(store, selection, budget or FetchBudget.start(REFRESH_TIMEOUT))

    def prefetch(self, provider: str, query: str = ""):
        """Warm the cache for a provider; never raises."""
        if self.session_factory is None:
            return
        budget = FetchBudget.start(PREFETCH_TIMEOUT)
        db = self.session_factory()
        try:
            selection = BackgroundSelection(provider=BackgroundProvider.parse(provider), query=query)
            if not selection.provider.is_remote:
                return
            store = BackgroundCacheStore(db)
            if self.cached_file(store, selection.cache_key) is not None:
                return
            self._fetch_and_record(store, selection, budget)
        except Exception as e:
            logger.warning(f"Background prefetch for {provider} failed: {e}")
        finally:
            db.close()

    def _fetch_and_record(
        self, store: BackgroundCacheStore, selection: BackgroundSelection, budget: FetchBudget
    ) -> ImageResult:
        image_url = self.resolver.resolve_url(selection.provider, selection.query, budget)
        logger.info(f"Resolved {selection.provider.value} background url {image_url}")
        result = self.resolver.fetch_to_file(image_url, selection.cache_key, budget)
        store.set(selection.cache_key, result.file_name)
        return result
