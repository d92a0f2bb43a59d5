from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple
from urllib.parse import urlparse

import tldextract  # type: ignore

PLATFORMS: Tuple[str, ...] = (
    "youtube",
    "twitter",
    "instagram",
    "linkedin",
    "tiktok",
    "github",
    "medium",
    "reddit",
    "facebook",
    "other",
)

OTHER = "other"


@dataclass(frozen=True)
class PlatformInfo:
    name: str
    color: str
    icon: str
    domains: Tuple[str, ...]


PLATFORM_CONFIG: Dict[str, PlatformInfo] = {
    "youtube": PlatformInfo("YouTube", "#FF0000", "Youtube", ("youtube.com", "youtu.be")),
    "twitter": PlatformInfo("Twitter", "#1DA1F2", "Twitter", ("twitter.com", "x.com")),
    "instagram": PlatformInfo("Instagram", "#E4405F", "Instagram", ("instagram.com",)),
    "linkedin": PlatformInfo("LinkedIn", "#0077B5", "Linkedin", ("linkedin.com",)),
    "tiktok": PlatformInfo("TikTok", "#000000", "Music", ("tiktok.com",)),
    "github": PlatformInfo("GitHub", "#181717", "Github", ("github.com",)),
    "medium": PlatformInfo("Medium", "#00AB6C", "BookOpen", ("medium.com",)),
    "reddit": PlatformInfo("Reddit", "#FF4500", "MessageCircle", ("reddit.com",)),
    "facebook": PlatformInfo("Facebook", "#1877F2", "Facebook", ("facebook.com",)),
    OTHER: PlatformInfo("Other", "#6B7280", "Link", ()),
}

# Uses the bundled public-suffix snapshot; never goes to the network.
_extract = tldextract.TLDExtract(suffix_list_urls=())

_DOMAIN_TO_PLATFORM: Dict[str, str] = {
    d: key for key, info in PLATFORM_CONFIG.items() for d in info.domains
}


def is_platform(value: object) -> bool:
    return isinstance(value, str) and value in PLATFORM_CONFIG


def platform_folder_specs() -> List[Tuple[str, PlatformInfo]]:
    """Every platform gets an auto-created root folder, in catalog order."""
    return [(key, PLATFORM_CONFIG[key]) for key in PLATFORMS]


def is_valid_url(url: str) -> bool:
    try:
        p = urlparse((url or "").strip())
    except ValueError:
        return False
    return p.scheme in ("http", "https") and bool(p.netloc)


def registered_domain(url: str) -> str:
    ext = _extract((url or "").strip())
    if not ext.domain or not ext.suffix:
        return ""
    return f"{ext.domain}.{ext.suffix}".lower()


def detect_platform(url: str) -> str:
    return _DOMAIN_TO_PLATFORM.get(registered_domain(url), OTHER)
