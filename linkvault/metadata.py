from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup  # type: ignore

from .errors import LinkVaultError
from .log import get_logger
from .platforms import is_valid_url

log = get_logger(__name__)

_YOUTUBE_ID_PATTERNS = (
    re.compile(r"(?:youtube\.com/watch\?v=|youtu\.be/)([^&?/]+)"),
    re.compile(r"youtube\.com/embed/([^&?/]+)"),
    re.compile(r"youtube\.com/shorts/([^&?/]+)"),
)

_BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


@dataclass
class LinkMetadata:
    title: str
    description: str
    image: str


class MetadataError(LinkVaultError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


def youtube_video_id(url: str) -> Optional[str]:
    for pattern in _YOUTUBE_ID_PATTERNS:
        m = pattern.search(url or "")
        if m:
            return m.group(1)
    return None


def fetch_metadata(url: str, *, timeout_s: int = 10, user_agent: str, max_bytes: int = 500_000) -> LinkMetadata:
    """Look up title/description/thumbnail for a URL. Never touches the store."""
    if not is_valid_url(url):
        raise MetadataError(f"invalid URL: {url!r}", status=400)

    timeout = httpx.Timeout(timeout_s, connect=timeout_s)
    headers = {"User-Agent": user_agent, **_BROWSER_HEADERS}
    with httpx.Client(follow_redirects=True, max_redirects=5, headers=headers, timeout=timeout) as client:
        video_id = youtube_video_id(url)
        if video_id:
            try:
                return _fetch_youtube(client, video_id)
            except (httpx.HTTPError, ValueError) as e:
                log.warning("YouTube oEmbed lookup failed for %s, falling back to scraping: %s", url, e)

        try:
            r = client.get(url)
        except httpx.TimeoutException as e:
            raise MetadataError("request timeout: the website took too long to respond", status=408) from e
        except httpx.HTTPError as e:
            raise MetadataError(f"failed to fetch metadata: {e}") from e

    if r.status_code == 404:
        raise MetadataError("URL not found (404)", status=404)
    if r.status_code == 403:
        raise MetadataError("access forbidden: the website blocked the request", status=403)
    if r.status_code >= 400:
        raise MetadataError(f"failed to fetch metadata: HTTP {r.status_code}", status=r.status_code)
    return extract_metadata(r.content[:max_bytes], base_url=str(r.url))


def _fetch_youtube(client: httpx.Client, video_id: str) -> LinkMetadata:
    r = client.get(
        "https://www.youtube.com/oembed",
        params={"url": f"https://www.youtube.com/watch?v={video_id}", "format": "json"},
    )
    r.raise_for_status()
    data = r.json()
    title = data.get("title") or "YouTube Video"
    return LinkMetadata(
        title=title,
        description=f'Watch "{title}" by {data.get("author_name") or "unknown"}',
        image=data.get("thumbnail_url") or f"https://img.youtube.com/vi/{video_id}/maxresdefault.jpg",
    )


def extract_metadata(content: bytes, *, base_url: str) -> LinkMetadata:
    """Open Graph first, then Twitter cards, then plain <title>/description."""
    soup = BeautifulSoup(content or b"", "lxml")

    def _meta(attr: str, value: str) -> str:
        tag = soup.find("meta", attrs={attr: value})
        content_value = tag.get("content") if tag else None
        return content_value.strip() if isinstance(content_value, str) else ""

    page_title = soup.title.get_text(strip=True) if soup.title else ""
    title = _meta("property", "og:title") or _meta("name", "twitter:title") or page_title or "No title found"
    image = (
        _meta("property", "og:image")
        or _meta("name", "twitter:image")
        or _meta("name", "twitter:image:src")
    )
    description = (
        _meta("property", "og:description")
        or _meta("name", "description")
        or _meta("name", "twitter:description")
    )
    if image and not image.startswith("http"):
        image = urljoin(base_url, image)
    return LinkMetadata(title=title.strip(), description=description.strip(), image=image)
