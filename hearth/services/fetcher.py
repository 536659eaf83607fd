import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

import cloudscraper
import requests

from hearth.errors import FetchError

logger = logging.getLogger(__name__)

# A common browser user agent keeps sites from serving stripped-down pages.
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
IMAGE_ACCEPT = "image/*,*/*;q=0.8"
JSON_ACCEPT = "application/json,*/*;q=0.8"

MAX_HTML_BYTES = 2 * 1024 * 1024  # 2MB
MAX_ICON_BYTES = 1 * 1024 * 1024  # 1MB
MAX_BACKGROUND_BYTES = 8 * 1024 * 1024  # 8MB
DEFAULT_TIMEOUT = 15
CHUNK_SIZE = 8192


@dataclass
class FetchBudget:
    """Deadline plus cancellation flag shared by every fetch of one request."""

    deadline: float
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @classmethod
    def start(cls, seconds: float) -> "FetchBudget":
        return cls(deadline=time.monotonic() + seconds)

    def remaining(self) -> float:
        return max(0.0, self.deadline - time.monotonic())

    def cancel(self):
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check(self, url: str = ""):
        if self.cancelled:
            raise FetchError(FetchError.CANCELLED, f"fetch of {url} cancelled", url=url or None)
        if self.remaining() <= 0:
            raise FetchError(FetchError.TIMEOUT, f"budget exhausted before {url}", url=url or None)


@dataclass
class FetchResult:
    content: bytes
    final_url: str
    content_type: str = ""
    truncated: bool = False

    @property
    def media_type(self) -> str:
        return self.content_type.split(";", 1)[0].strip().lower()


class BoundedFetcher:
    """GET with a fixed user agent, a timeout and a hard ceiling on body size."""

    def __init__(self, session: Optional[requests.Session] = None, user_agent: str = DEFAULT_USER_AGENT):
        self.session = session if session is not None else cloudscraper.create_scraper()
        self.user_agent = user_agent

    def fetch(
        self,
        url: str,
        accept: str = IMAGE_ACCEPT,
        max_bytes: int = MAX_ICON_BYTES,
        timeout: float = DEFAULT_TIMEOUT,
        budget: Optional[FetchBudget] = None,
    ) -> FetchResult:
        if budget is not None:
            budget.check(url)
            timeout = min(timeout, budget.remaining())
        headers = {
            "User-Agent": self.user_agent,
            "Accept": accept,
            "Accept-Language": "en-US,en;q=0.9",
        }
        try:
            resp = self._open(url, headers, timeout)
        except requests.exceptions.Timeout as e:
            raise FetchError(FetchError.TIMEOUT, f"timed out fetching {url}", url=url) from e
        except requests.exceptions.RequestException as e:
            raise FetchError(FetchError.NETWORK, f"request to {url} failed: {e}", url=url) from e

        try:
            final_url = resp.url or url
            if not 200 <= resp.status_code < 300:
                raise FetchError(FetchError.BAD_STATUS, "bad status", status=resp.status_code, url=final_url)
            content, truncated = self._read_bounded(resp, max_bytes, budget, final_url)
        finally:
            resp.close()

        if not content:
            raise FetchError(FetchError.EMPTY, f"empty response from {final_url}", url=final_url)
        if truncated:
            logger.debug(f"Truncated body of {final_url} at {max_bytes} bytes")
        return FetchResult(
            content=content,
            final_url=final_url,
            content_type=resp.headers.get("content-type", "") or "",
            truncated=truncated,
        )

    def fetch_html(self, url: str, budget: Optional[FetchBudget] = None) -> FetchResult:
        result = self.fetch(url, accept=HTML_ACCEPT, max_bytes=MAX_HTML_BYTES, budget=budget)
        if result.media_type and "html" not in result.media_type:
            raise FetchError(
                FetchError.NOT_HTML,
                f"{result.final_url} returned {result.media_type}",
                url=result.final_url,
            )
        return result

    def _open(self, url: str, headers: dict, timeout: float) -> requests.Response:
        try:
            return self.session.get(url, headers=headers, timeout=timeout, stream=True, allow_redirects=True)
        except requests.exceptions.SSLError:
            # Self-hosted services often run on self-signed certificates.
            logger.info(f"TLS verification failed for {url}, retrying without verification")
            return self.session.get(
                url, headers=headers, timeout=timeout, stream=True, allow_redirects=True, verify=False
            )

    def _read_bounded(self, resp, max_bytes: int, budget: Optional[FetchBudget], final_url: str):
        chunks = []
        total = 0
        truncated = False
        try:
            for chunk in resp.iter_content(CHUNK_SIZE):
                if budget is not None:
                    budget.check(final_url)
                if not chunk:
                    continue
                room = max_bytes - total
                if len(chunk) > room:
                    chunks.append(chunk[:room])
                    total += room
                    truncated = True
                    break
                chunks.append(chunk)
                total += len(chunk)
        except requests.exceptions.RequestException as e:
            raise FetchError(FetchError.NETWORK, f"reading {final_url} failed: {e}", url=final_url) from e
        return b"".join(chunks), truncated
