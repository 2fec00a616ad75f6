"""URL normalization and content-page filtering for website discovery."""

from __future__ import annotations

import re
from urllib.parse import urlparse, urlunparse

from ..observability.logger import get_logger

logger = get_logger(__name__)

# Built-in path patterns that never hold post-worthy content.
EXCLUDED_PATH_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^/about/?$",
        r"^/contact/?$",
        r"^/terms/?$",
        r"^/privacy/?$",
        r"^/cookie",
        r"^/legal",
        r"^/login/?$",
        r"^/register/?$",
        r"^/signup/?$",
        r"^/search/?$",
        r"^/cart/?$",
        r"^/checkout/?$",
        r"^/account/?$",
        r"/tag/",
        r"/category/",
        r"/author/",
        r"/page/\d+",
        r"/feed/?$",
        r"/rss/?$",
        r"/sitemap",
        r"/wp-admin",
        r"/wp-login",
        r"/wp-json",
        r"/api/",
        r"/cdn-cgi/",
    )
]

EXCLUDED_EXTENSIONS = (
    ".pdf", ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp",
    ".mp3", ".mp4", ".avi", ".mov", ".zip", ".rar", ".gz",
    ".css", ".js", ".xml", ".json", ".ico", ".woff", ".woff2",
    ".ttf", ".eot",
)

_DATE_PATH_RE = re.compile(r"/\d{4}/\d{1,2}/")
_CONTENT_SECTION_RE = re.compile(r"(^|/)(blog|articles?|posts?|news|guides?|docs?|learn|stories)(/|$)", re.IGNORECASE)


def bare_domain(host: str) -> str:
    host = (host or "").lower()
    return host[4:] if host.startswith("www.") else host


def normalize_url(url: str) -> str:
    """Drop the fragment and trailing slashes (except the root path)."""
    s = (url or "").strip()
    if not s:
        return ""
    s = s.split("#", 1)[0]
    p = urlparse(s)
    if p.scheme and p.netloc:
        path = p.path or "/"
        if path != "/" and path.endswith("/"):
            s = urlunparse(p._replace(path=path.rstrip("/") or "/"))
    return s


def compile_patterns(patterns: list[str]) -> list[re.Pattern]:
    """Compile user filter patterns, ignoring blank and invalid ones."""
    out: list[re.Pattern] = []
    for raw in patterns:
        p = (raw or "").strip()
        if not p:
            continue
        try:
            out.append(re.compile(p, re.IGNORECASE))
        except re.error as e:
            logger.warning("invalid_filter_pattern_ignored", pattern=p, error=str(e))
    return out


def is_content_page(url: str, domain: str, custom: list[re.Pattern]) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False
    if bare_domain(parsed.hostname or "") != domain:
        return False

    path = parsed.path or "/"
    if path == "/":
        return False
    if path.lower().endswith(EXCLUDED_EXTENSIONS):
        return False
    # Query strings are usually pagination or filters.
    if parsed.query:
        return False
    if any(rx.search(path) for rx in EXCLUDED_PATH_PATTERNS):
        return False
    if any(rx.search(url) or rx.search(path) for rx in custom):
        return False
    return True


def filter_content_pages(urls: list[str], domain: str, custom_patterns: list[str] | None = None) -> list[str]:
    """Keep only same-domain URLs that plausibly hold readable content."""
    custom = compile_patterns(custom_patterns or [])
    return [u for u in urls if is_content_page(u, domain, custom)]


def content_likelihood(url: str) -> int:
    path = urlparse(url).path.rstrip("/")
    segments = [s for s in path.split("/") if s]
    last = segments[-1] if segments else ""
    score = 0
    if _DATE_PATH_RE.search(path + "/"):
        score += 3
    if last.count("-") >= 2:
        score += 2
    if len(segments) >= 2:
        score += 1
    if _CONTENT_SECTION_RE.search(path):
        score += 1
    return score


def sort_by_content_likelihood(urls: list[str]) -> list[str]:
    """Article-like URLs first; ties keep their discovery order."""
    return sorted(urls, key=content_likelihood, reverse=True)
