import logging
import posixpath
from dataclasses import dataclass
from typing import List, Optional, Tuple
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

FORMAT_BONUS = {".svg": 25, ".png": 20, ".webp": 15}


@dataclass
class IconCandidate:
    href: str
    priority: int
    declared_size: int = 0


def rel_score(rel: str) -> int:
    # first match wins, so "shortcut icon" scores as an icon
    if "apple-touch-icon" in rel:
        return 100
    if "icon" in rel:
        return 50
    if "shortcut" in rel:
        return 10
    return 0


def parse_declared_size(sizes: str) -> int:
    """Width from a ``sizes="WxH"`` attribute, 0 when absent or ``any``."""
    sizes = (sizes or "").strip().lower()
    if not sizes or sizes == "any":
        return 0
    try:
        return int(sizes.split("x", 1)[0])
    except ValueError:
        return 0


def size_bonus(size: int) -> int:
    if 128 <= size <= 192:
        return 30
    if size >= 64:
        return 20
    if size >= 32:
        return 10
    return 0


def format_bonus(href: str) -> int:
    ext = posixpath.splitext(urlparse(href).path)[1].lower()
    return FORMAT_BONUS.get(ext, 0)


def _attr_text(value) -> str:
    # bs4 hands multi-valued attributes such as rel back as lists
    if isinstance(value, (list, tuple)):
        return " ".join(value)
    return value or ""


def collect_icon_candidates(soup: BeautifulSoup, base_url: str) -> List[IconCandidate]:
    candidates = []
    for link in soup.find_all("link"):
        href = (link.get("href") or "").strip()
        rel = _attr_text(link.get("rel")).lower()
        if not href or "icon" not in rel:
            continue
        if href.lower().startswith("data:"):
            # Inline icons go straight to the data URI decoder.
            candidates.append(IconCandidate(href=href, priority=rel_score(rel)))
            continue
        size = parse_declared_size(_attr_text(link.get("sizes")))
        candidates.append(
            IconCandidate(
                href=urljoin(base_url, href),
                priority=rel_score(rel) + size_bonus(size) + format_bonus(href),
                declared_size=size,
            )
        )
    return candidates


def pick_best(candidates: List[IconCandidate]) -> Optional[IconCandidate]:
    best = None
    for candidate in candidates:
        if best is None or candidate.priority > best.priority:
            best = candidate
    return best


def extract_title_and_icon(html: bytes, base_url: str) -> Tuple[str, str]:
    """Return the page title and the best icon URL, either possibly empty.

    ``base_url`` must be the post-redirect URL of the page so relative hrefs
    resolve the way the browser would resolve them.
    """
    soup = BeautifulSoup(html, "html.parser")
    title = ""
    if title_tag := soup.find("title"):
        title = title_tag.get_text(strip=True)
    best = pick_best(collect_icon_candidates(soup, base_url))
    if best is None:
        logger.debug(f"No icon links found on {base_url}")
        return title, ""
    return title, best.href
