"""Website page discovery (business logic).

Responsibilities:
- Read URLs from the site's sitemap (following sitemap indexes)
- Fall back to a bounded BFS link crawl when the sitemap is missing or too small
- Filter to same-domain content pages, rank article-like URLs first, cap the result
- Tag each URL as new or already known
"""

from __future__ import annotations

from collections import deque
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from ..domain.errors import IngestionDomainError
from ..domain.models import DiscoveredPage
from ..observability.logger import get_logger
from ..scraping.http_fetcher import HttpFetcher
from ..utils.rate_limiter import DomainRateLimiter
from ..utils.url_filters import bare_domain, filter_content_pages, normalize_url, sort_by_content_likelihood
from ..utils.validators import require_http_url

logger = get_logger(__name__)


class PageDiscoverer:
    def __init__(
        self,
        *,
        fetcher: HttpFetcher,
        fetch_timeout_ms: int,
        sitemap_min_urls: int = 5,
        sitemap_max_nesting: int = 2,
        max_depth: int = 3,
        max_visited_pages: int = 150,
        rate_limiter: DomainRateLimiter | None = None,
    ):
        self._fetcher = fetcher
        self._timeout_ms = fetch_timeout_ms
        self._sitemap_min_urls = sitemap_min_urls
        self._sitemap_max_nesting = sitemap_max_nesting
        self._max_depth = max_depth
        self._max_visited_pages = max_visited_pages
        self._rate_limiter = rate_limiter

    async def discover(
        self,
        root_url: str,
        *,
        max_pages: int,
        filter_patterns: list[str] | None = None,
        existing_urls: set[str] | None = None,
    ) -> list[DiscoveredPage]:
        root_url = require_http_url(root_url)
        existing = existing_urls or set()
        domain = bare_domain(urlparse(root_url).hostname or "")

        logger.info("discovery_started", root_url=root_url, max_pages=max_pages)

        sitemap_urls = await self.parse_sitemap(root_url)
        titles: dict[str, str] = {}
        if len(sitemap_urls) >= self._sitemap_min_urls:
            all_urls = sitemap_urls
        else:
            logger.info("sitemap_insufficient", root_url=root_url, sitemap_urls=len(sitemap_urls))
            crawled, titles = await self.crawl_links(root_url, max_pages)
            all_urls = list(dict.fromkeys(sitemap_urls + crawled))

        filtered = filter_content_pages(all_urls, domain, filter_patterns)
        ranked = sort_by_content_likelihood(filtered)[: max(0, int(max_pages))]

        logger.info(
            "discovery_completed",
            root_url=root_url,
            candidates=len(all_urls),
            content_pages=len(filtered),
            returned=len(ranked),
        )
        return [DiscoveredPage(url=u, is_new=u not in existing, title=titles.get(u)) for u in ranked]

    async def parse_sitemap(self, root_url: str) -> list[str]:
        """Same-domain page URLs from /sitemap.xml; [] when unavailable."""
        parsed = urlparse(root_url)
        domain = bare_domain(parsed.hostname or "")
        sitemap_url = f"{parsed.scheme}://{parsed.netloc}/sitemap.xml"
        try:
            urls = await self._fetch_sitemap_urls(sitemap_url, 0)
        except IngestionDomainError as e:
            logger.info("sitemap_fetch_failed", sitemap_url=sitemap_url, error=str(e))
            return []

        out: list[str] = []
        for u in urls:
            try:
                host = urlparse(u).hostname or ""
            except ValueError:
                continue
            if bare_domain(host) == domain:
                out.append(normalize_url(u))
        return list(dict.fromkeys(out))

    async def _fetch_sitemap_urls(self, url: str, depth: int) -> list[str]:
        if depth > self._sitemap_max_nesting:
            return []
        body = await self._fetcher.fetch_text(url, timeout_ms=self._timeout_ms)
        if not body:
            return []

        soup = BeautifulSoup(body, "xml")
        index = soup.find("sitemapindex")
        if index is not None:
            urls: list[str] = []
            for loc in index.find_all("loc"):
                nested = loc.get_text(strip=True)
                if nested:
                    urls.extend(await self._fetch_sitemap_urls(nested, depth + 1))
            return urls

        urlset = soup.find("urlset")
        if urlset is None:
            return []
        return [loc.get_text(strip=True) for loc in urlset.find_all("loc") if loc.get_text(strip=True)]

    async def crawl_links(self, root_url: str, max_pages: int) -> tuple[list[str], dict[str, str]]:
        """BFS over internal links.

        Collects every same-domain URL seen, but only visits up to
        min(max_pages, max_visited_pages) pages. Returns (urls, titles of visited pages).
        """
        domain = bare_domain(urlparse(root_url).hostname or "")
        visit_cap = min(max(1, int(max_pages)), self._max_visited_pages)

        root = normalize_url(root_url)
        discovered: dict[str, None] = {root: None}
        visited: set[str] = set()
        titles: dict[str, str] = {}
        q: deque[tuple[str, int]] = deque([(root, 0)])

        while q and len(visited) < visit_cap:
            url, depth = q.popleft()
            if url in visited or depth > self._max_depth:
                continue
            visited.add(url)

            if self._rate_limiter is not None:
                await self._rate_limiter.wait_for_slot(url)
            try:
                page = await self._fetcher.fetch_html(url, timeout_ms=self._timeout_ms)
            except IngestionDomainError as e:
                logger.warning("discovery_fetch_failed", url=url, error=str(e))
                continue

            soup = BeautifulSoup(page.html or "", "lxml")
            if soup.title is not None:
                title = soup.title.get_text(" ", strip=True)
                if title:
                    titles[url] = title

            for a in soup.select("a[href]"):
                href = str(a.get("href") or "").strip()
                if not href or href.startswith(("#", "mailto:", "javascript:", "tel:")):
                    continue
                abs_url = normalize_url(urljoin(url, href))
                p = urlparse(abs_url)
                if p.scheme not in ("http", "https") or bare_domain(p.hostname or "") != domain:
                    continue
                if abs_url in discovered:
                    continue
                discovered[abs_url] = None
                if depth + 1 <= self._max_depth:
                    q.append((abs_url, depth + 1))

        logger.info("link_crawl_completed", root_url=root_url, visited=len(visited), discovered=len(discovered))
        return list(discovered), titles
