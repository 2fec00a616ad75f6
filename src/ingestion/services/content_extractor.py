"""Readable-text extraction from raw HTML."""

from __future__ import annotations

import re
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag

from ..domain.models import ExtractedContent

# Never contain readable content.
ALWAYS_REMOVE_TAGS = ["script", "style", "noscript", "link", "meta", "template", "svg", "canvas", "iframe"]

# Page chrome, removed in selective mode only.
SELECTIVE_REMOVE_TAGS = [
    "nav", "header", "footer", "aside", "form", "button", "input", "select", "textarea", "video", "audio",
]

SELECTIVE_REMOVE_SELECTORS = [
    '[role="navigation"]',
    '[role="banner"]',
    '[role="contentinfo"]',
    '[role="complementary"]',
    ".nav",
    ".navbar",
    ".sidebar",
    ".advertisement",
    ".ad",
    ".ads",
    ".social-share",
    ".comments",
    ".related-posts",
    ".footer",
    ".header",
    "#nav",
    "#header",
    "#footer",
    "#sidebar",
    "#comments",
]

# Content containers in order of priority.
CONTENT_SELECTORS = [
    "article",
    '[role="main"]',
    "main",
    ".post-content",
    ".article-content",
    ".entry-content",
    ".content",
    ".post",
    ".article",
    "#content",
    "#main",
]

BLOCK_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6", "p", "li", "blockquote", "pre", "td", "th", "div"]
HEADING_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6"}

_TITLE_SUFFIX_RE = re.compile(r"\s+[|\-–—]\s+")
_MULTI_NEWLINE_RE = re.compile(r"\n{3,}")
_WHITESPACE_RE = re.compile(r"\s+")


class ContentExtractor:
    """Processing layer component: main-content text extraction.

    Selective mode strips navigation/chrome and prefers the first content
    container holding more than `min_container_chars` of text; full mode keeps
    everything except scripts/styles and deduplicates repeated text blocks.
    """

    def __init__(self, min_container_chars: int = 200):
        self._min_container_chars = min_container_chars

    def extract(self, html: str, url: str, *, full_extraction: bool = False) -> ExtractedContent:
        soup = BeautifulSoup(html or "", "lxml")
        host = (urlparse(url).hostname or "").lower()
        domain = host[4:] if host.startswith("www.") else host

        title = self._find_title(soup)

        for tag in soup.find_all(ALWAYS_REMOVE_TAGS):
            tag.decompose()

        if full_extraction:
            container = soup.body or soup
            content = self._full_text(container)
        else:
            for tag in soup.find_all(SELECTIVE_REMOVE_TAGS):
                tag.decompose()
            for selector in SELECTIVE_REMOVE_SELECTORS:
                for el in soup.select(selector):
                    el.decompose()
            container = self._find_main_content(soup) or soup.body or soup
            content = self._block_text(container)

        return ExtractedContent(title=clean_title(title), domain=domain, content=content.strip())

    def _find_title(self, soup: BeautifulSoup) -> str:
        for attrs in ({"property": "og:title"}, {"name": "twitter:title"}):
            meta = soup.find("meta", attrs=attrs)
            if meta is not None and (meta.get("content") or "").strip():
                return str(meta["content"]).strip()
        h1 = soup.find("h1")
        if h1 is not None and h1.get_text(strip=True):
            return h1.get_text(" ", strip=True)
        if soup.title is not None and soup.title.get_text(strip=True):
            return soup.title.get_text(" ", strip=True)
        return "Untitled"

    def _find_main_content(self, soup: BeautifulSoup) -> Tag | None:
        for selector in CONTENT_SELECTORS:
            candidate = soup.select_one(selector)
            if candidate is None:
                continue
            if len(candidate.get_text(strip=True)) > self._min_container_chars:
                return candidate
        return None

    def _block_text(self, container: Tag) -> str:
        blocks: list[str] = []
        for el in container.find_all(BLOCK_TAGS):
            # Only leaf blocks, so nested containers don't repeat their children's text.
            if el.find(BLOCK_TAGS) is not None:
                continue
            text = el.get_text(" ", strip=True)
            if not text:
                continue
            blocks.append(f"\n{text}\n" if el.name in HEADING_TAGS else text)

        if not blocks:
            return _WHITESPACE_RE.sub(" ", container.get_text(" ", strip=True)).strip()
        return _MULTI_NEWLINE_RE.sub("\n\n", "\n\n".join(blocks)).strip()

    def _full_text(self, container: Tag) -> str:
        blocks: list[str] = []
        seen: set[str] = set()
        for el in container.find_all(True):
            if el.has_attr("hidden") or "display:none" in (el.get("style") or "").replace(" ", ""):
                continue
            direct = "".join(el.find_all(string=True, recursive=False)).strip()
            if not direct:
                continue
            normalized = _WHITESPACE_RE.sub(" ", direct)
            if normalized in seen:
                continue
            seen.add(normalized)
            blocks.append(f"\n{normalized}\n" if el.name in HEADING_TAGS else normalized)

        if not blocks:
            return _WHITESPACE_RE.sub(" ", container.get_text(" ", strip=True)).strip()
        return _MULTI_NEWLINE_RE.sub("\n\n", "\n\n".join(blocks)).strip()


def clean_title(title: str) -> str:
    """Drop a trailing site-name suffix ("Post | Site") and cap the length."""
    cleaned = _WHITESPACE_RE.sub(" ", _TITLE_SUFFIX_RE.split(title or "", maxsplit=1)[0]).strip()
    if not cleaned:
        return "Untitled"
    return cleaned[:147] + "..." if len(cleaned) > 150 else cleaned
