import hashlib
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlparse, urlunparse

from hearth.errors import DecodeError, FetchError, InvalidInput, ResolutionFailed
from hearth.services.asset_writer import AssetWriter, infer_extension, sniff_extension
from hearth.services.data_uri import decode_data_uri, is_data_uri
from hearth.services.fetcher import MAX_ICON_BYTES, BoundedFetcher, FetchBudget
from hearth.services.html_extractor import extract_title_and_icon

logger = logging.getLogger(__name__)

# Failures that move the chain on to its next step. Anything else,
# WriteError in particular, ends the resolution.
RECOVERABLE_ERRORS = (FetchError, DecodeError)


class IconSource(str, Enum):
    SITE = "site"
    FALLBACK = "fallback"


@dataclass
class IconResult:
    title: str = ""
    icon_path: str = ""
    icon_source: str = ""


@dataclass
class _Attempt:
    page_url: str
    page_key: str
    base_url: str
    budget: Optional[FetchBudget] = None
    title: str = ""


def icon_cache_key(page_url: str) -> str:
    """Key of the icon cache row for a page URL."""
    return hashlib.sha256(page_url.encode("utf-8")).hexdigest()


def page_key(page_url: str) -> str:
    """Short hash of the page URL, used to salt stored icon names."""
    return hashlib.sha256(page_url.encode("utf-8")).hexdigest()[:16]


def origin_of(url: str) -> str:
    parsed = urlparse(url)
    return urlunparse((parsed.scheme, parsed.netloc, "", "", "", ""))


class IconResolver:
    """Finds a page's title and icon and stores the icon under the icons dir.

    Resolution is a fixed chain: the icon the page declares, then
    ``/favicon.ico`` at the page's origin. The first step that stores a file
    wins; a step that fails with a fetch or decode error hands over to the
    next one.
    """

    def __init__(
        self,
        icons_dir: Path,
        fetcher: Optional[BoundedFetcher] = None,
        writer: Optional[AssetWriter] = None,
    ):
        self.fetcher = fetcher or BoundedFetcher()
        self.writer = writer or AssetWriter(icons_dir)
        self.chain: List[Tuple[IconSource, Callable[[_Attempt], Optional[str]]]] = [
            (IconSource.SITE, self._declared_icon),
            (IconSource.FALLBACK, self._root_favicon),
        ]

    def resolve(self, page_url: str, budget: Optional[FetchBudget] = None) -> IconResult:
        parsed = urlparse(page_url or "")
        if not parsed.scheme or not parsed.netloc:
            raise InvalidInput(f"invalid url: {page_url!r}")

        attempt = _Attempt(page_url=page_url, page_key=page_key(page_url), base_url=page_url, budget=budget)
        for source, step in self.chain:
            try:
                filename = step(attempt)
            except RECOVERABLE_ERRORS as e:
                logger.info(f"{source.value} icon step failed for {page_url}: {e}")
                continue
            if filename:
                logger.info(f"Resolved {source.value} icon for {page_url}: {filename}")
                return IconResult(title=attempt.title, icon_path=filename, icon_source=source.value)

        if attempt.title:
            logger.warning(f"No icon found for {page_url}, returning title only")
            return IconResult(title=attempt.title)
        raise ResolutionFailed(f"no icon or title found for {page_url}")

    def _declared_icon(self, attempt: _Attempt) -> Optional[str]:
        try:
            page = self.fetcher.fetch_html(attempt.page_url, budget=attempt.budget)
        except FetchError as e:
            if e.url:
                attempt.base_url = e.url
            raise
        attempt.base_url = page.final_url

        attempt.title, icon_href = extract_title_and_icon(page.content, page.final_url)
        if not icon_href:
            return None
        if is_data_uri(icon_href):
            data, ext = decode_data_uri(icon_href)
            return self.writer.write(data, attempt.page_key, ext)
        return self._download(icon_href, attempt)

    def _root_favicon(self, attempt: _Attempt) -> Optional[str]:
        return self._download(origin_of(attempt.base_url) + "/favicon.ico", attempt)

    def _download(self, icon_url: str, attempt: _Attempt) -> str:
        icon = self.fetcher.fetch(icon_url, max_bytes=MAX_ICON_BYTES, budget=attempt.budget)
        if "html" in icon.media_type:
            # Soft 404 pages answer 200 with an HTML body.
            raise FetchError(FetchError.NOT_IMAGE, f"{icon.final_url} returned {icon.media_type}", url=icon.final_url)
        if not icon.media_type.startswith("image/") and not sniff_extension(icon.content):
            raise FetchError(
                FetchError.NOT_IMAGE,
                f"{icon.final_url} returned {icon.media_type or 'untyped'} bytes that are not an image",
                url=icon.final_url,
            )
        ext = infer_extension(icon.content_type, icon.final_url, icon.content)
        return self.writer.write(icon.content, attempt.page_key, ext)
