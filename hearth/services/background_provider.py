import json
import logging
import random
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import quote_plus

from hearth.errors import FetchError, ProviderError
from hearth.services.asset_writer import AssetWriter
from hearth.services.fetcher import (
    IMAGE_ACCEPT,
    JSON_ACCEPT,
    MAX_BACKGROUND_BYTES,
    BoundedFetcher,
    FetchBudget,
)
from hearth.services.freshness import BackgroundProvider

logger = logging.getLogger(__name__)

USER_AGENT = "Hearth/0.1"
BING_ARCHIVE_URL = "https://www.bing.com/HPImageArchive.aspx?format=js&idx={idx}&n=1&mkt=en-US"
BING_BASE_URL = "https://www.bing.com"
BING_MAX_IDX = 7
UNSPLASH_URL = "https://source.unsplash.com/1920x1080"
PICSUM_URL = "https://picsum.photos/1920/1080"
MAX_ARCHIVE_BYTES = 256 * 1024

BACKGROUND_EXTENSIONS = {
    "image/png": ".png",
    "image/webp": ".webp",
    "image/jpeg": ".jpg",
}


@dataclass
class ImageResult:
    file_name: str
    mime_type: str


class BackgroundProviderResolver:
    """Turns a provider into an image URL and downloads images into the cache dir."""

    def __init__(
        self,
        cache_dir: Path,
        fetcher: Optional[BoundedFetcher] = None,
        writer: Optional[AssetWriter] = None,
        randint: Callable[[int, int], int] = random.randint,
    ):
        self.fetcher = fetcher or BoundedFetcher(user_agent=USER_AGENT)
        self.writer = writer or AssetWriter(cache_dir)
        self.randint = randint

    def resolve_url(
        self, provider: BackgroundProvider, query: str = "", budget: Optional[FetchBudget] = None
    ) -> str:
        if provider is BackgroundProvider.PICSUM:
            return self.resolve_picsum_url()
        if provider is BackgroundProvider.UNSPLASH:
            return self.resolve_unsplash_url(query)
        if provider is BackgroundProvider.BING_RANDOM:
            return self.resolve_bing_url(self.randint(0, BING_MAX_IDX), budget)
        if provider is BackgroundProvider.BING_DAILY:
            return self.resolve_bing_url(0, budget)
        raise ProviderError(f"provider {provider.value} has no remote source")

    def resolve_bing_url(self, idx: int, budget: Optional[FetchBudget] = None) -> str:
        idx = min(max(idx, 0), BING_MAX_IDX)
        try:
            resp = self.fetcher.fetch(
                BING_ARCHIVE_URL.format(idx=idx),
                accept=JSON_ACCEPT,
                max_bytes=MAX_ARCHIVE_BYTES,
                budget=budget,
            )
        except FetchError as e:
            raise ProviderError(f"bing archive request failed: {e}") from e
        try:
            payload = json.loads(resp.content)
        except ValueError as e:
            raise ProviderError(f"bing archive returned invalid JSON: {e}") from e
        images = payload.get("images") if isinstance(payload, dict) else None
        first = images[0] if isinstance(images, list) and images else None
        url = first.get("url") if isinstance(first, dict) else None
        if not url or not isinstance(url, str):
            raise ProviderError("bing archive returned no image")
        return BING_BASE_URL + url

    def resolve_unsplash_url(self, query: str = "") -> str:
        query = (query or "").strip()
        if not query:
            return f"{UNSPLASH_URL}?random=1"
        return f"{UNSPLASH_URL}?{quote_plus(query)}"

    def resolve_picsum_url(self) -> str:
        # Picsum caches by URL, so vary it to get a new image on every refresh.
        return f"{PICSUM_URL}?rand={time.time_ns()}"

    def fetch_to_file(self, image_url: str, cache_key: str, budget: Optional[FetchBudget] = None) -> ImageResult:
        resp = self.fetcher.fetch(
            image_url,
            accept=IMAGE_ACCEPT,
            max_bytes=MAX_BACKGROUND_BYTES,
            budget=budget,
        )
        mime_type = resp.media_type or "image/jpeg"
        ext = BACKGROUND_EXTENSIONS.get(mime_type, ".jpg")
        file_name = self.writer.write(resp.content, cache_key, ext)
        logger.info(f"Fetched background {image_url} -> {file_name} ({mime_type})")
        return ImageResult(file_name=file_name, mime_type=mime_type)
