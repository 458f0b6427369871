"""Documentation crawler for the Onyx docs site.

Single-domain, breadth-first crawl driven by an explicit ``CrawlSession``:

1. Freshness check: seeds crawled within ``recrawl_threshold_days`` are
   skipped unless ``force`` is set.
2. Loop: dequeue → fetch → discover links (raw markup) → extract document →
   enqueue new links → fixed politeness delay.
3. Circuit breaker: after ``max_consecutive_errors`` failed fetches in a row
   the session is ABORTED.
4. Persist documents, reduced index and crawl stats (also after an abort).

Fetches are strictly sequential; the only suspension points are the HTTP
request and the politeness sleep.
"""

import asyncio
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from urllib.parse import urlsplit

import httpx
from loguru import logger

from onyx_mcp.config import settings
from onyx_mcp.extract import extract_document, extract_page, find_doc_links, parse_html
from onyx_mcp.models import CrawlState, CrawlStats, Document, now_iso
from onyx_mcp.storage import (
    CRAWL_STATS_FILE,
    DOCS_CORPUS,
    DOCS_FILE,
    DOCS_INDEX_FILE,
    URLS_DIR,
    CorpusStore,
)
from onyx_mcp.urls import ScopePolicy, normalize_url

_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; OnyxMCP-Crawler/1.0)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}


@dataclass
class CrawlSession:
    """Frontier, visited set and results of one crawl invocation.

    Owned by the coroutine driving the crawl; never shared.
    """

    base_urls: list[str]
    frontier: deque[str] = field(default_factory=deque)
    queued: set[str] = field(default_factory=set)
    visited: set[str] = field(default_factory=set)
    documents: list[Document] = field(default_factory=list)
    state: CrawlState = CrawlState.IDLE
    consecutive_failures: int = 0
    pages_processed: int = 0

    def enqueue(self, url: str) -> bool:
        """Queue a normalized URL unless already visited or queued."""
        if url in self.visited or url in self.queued:
            return False
        self.frontier.append(url)
        self.queued.add(url)
        return True

    def dequeue(self) -> str:
        url = self.frontier.popleft()
        self.queued.discard(url)
        return url


@dataclass
class CrawlReport:
    """Outcome of ``DocsCrawler.crawl``."""

    state: CrawlState
    base_urls: list[str] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)
    documents: int = 0
    code_examples: int = 0
    urls_crawled: int = 0

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "base_urls": self.base_urls,
            "skipped": self.skipped,
            "documents": self.documents,
            "code_examples": self.code_examples,
            "urls_crawled": self.urls_crawled,
        }


class DocsCrawler:
    """Crawl the documentation site into the docs corpus."""

    def __init__(
        self,
        store: CorpusStore,
        policy: ScopePolicy | None = None,
        *,
        force: bool = False,
        delay: float | None = None,
        max_pages: int | None = None,
        timeout: int | None = None,
        recrawl_threshold_days: int | None = None,
        max_consecutive_errors: int | None = None,
    ):
        self.store = store
        self.policy = policy or ScopePolicy.from_settings(settings)
        self.force = force
        self.delay = settings.crawl_delay if delay is None else delay
        self.max_pages = settings.crawl_max_pages if max_pages is None else max_pages
        self.timeout = settings.crawl_timeout if timeout is None else timeout
        self.recrawl_threshold_days = (
            settings.recrawl_threshold_days
            if recrawl_threshold_days is None
            else recrawl_threshold_days
        )
        self.max_consecutive_errors = (
            settings.max_consecutive_errors
            if max_consecutive_errors is None
            else max_consecutive_errors
        )

    # ------------------------------------------------------------------
    # Freshness policy
    # ------------------------------------------------------------------

    def check_recent_crawls(self, urls: list[str]) -> list[dict]:
        """Return the seeds crawled within the freshness threshold."""
        stats = self.store.load_crawl_stats()
        if stats is None or not stats.crawl_date:
            return []

        try:
            last_crawl = datetime.fromisoformat(stats.crawl_date)
        except ValueError:
            logger.debug(f"Unparseable crawl date in stats: {stats.crawl_date}")
            return []
        if last_crawl.tzinfo is None:
            last_crawl = last_crawl.replace(tzinfo=timezone.utc)

        days_ago = (datetime.now(timezone.utc) - last_crawl).days
        logger.debug(f"Last crawl was {days_ago} days ago ({stats.crawl_date})")
        if days_ago >= self.recrawl_threshold_days:
            return []

        previous = {normalize_url(u) for u in stats.base_urls} - {None}
        return [
            {
                "url": url,
                "last_crawled": last_crawl.date().isoformat(),
                "days_ago": days_ago,
            }
            for url in urls
            if normalize_url(url) in previous
        ]

    # ------------------------------------------------------------------
    # Crawl loop
    # ------------------------------------------------------------------

    async def crawl(self, start_urls: list[str] | None = None) -> CrawlReport:
        """Crawl from *start_urls* (default: configured seeds)."""
        urls = list(start_urls or settings.docs_base_urls)
        logger.info(f"Starting crawl from {len(urls)} URLs")

        skipped: list[dict] = []
        recent = self.check_recent_crawls(urls)
        if recent and not self.force:
            skipped = recent
            skip_set = {s["url"] for s in recent}
            for site in recent:
                logger.info(
                    f"Skipping recently crawled site: {site['url']} "
                    f"(last crawled: {site['last_crawled']})"
                )
            urls = [u for u in urls if u not in skip_set]
            if not urls:
                logger.info("All sites were recently crawled. Use force to recrawl.")
                return CrawlReport(state=CrawlState.IDLE, skipped=skipped)
        elif recent:
            logger.info(f"Force recrawl of {len(urls)} sites")

        base_urls: list[str] = []
        for url in urls:
            normalized = normalize_url(url)
            if normalized is None:
                logger.warning(f"Skipping invalid seed URL: {url}")
                continue
            if normalized not in base_urls:
                base_urls.append(normalized)

        if not base_urls:
            logger.warning("No valid URLs to crawl")
            return CrawlReport(state=CrawlState.IDLE, skipped=skipped)

        session = CrawlSession(base_urls=base_urls)
        for url in base_urls:
            session.enqueue(url)

        session.state = CrawlState.RUNNING
        async with httpx.AsyncClient(
            timeout=self.timeout, headers=_HEADERS, follow_redirects=True
        ) as client:
            await self.process_queue(session, client)

        self.save(session)

        total_code = sum(len(d.code_examples) for d in session.documents)
        logger.info(
            f"Crawl {session.state.value}: {len(session.documents)} documents, "
            f"{len(session.visited)} pages visited"
        )
        return CrawlReport(
            state=session.state,
            base_urls=base_urls,
            skipped=skipped,
            documents=len(session.documents),
            code_examples=total_code,
            urls_crawled=len(session.visited),
        )

    async def process_queue(
        self, session: CrawlSession, client: httpx.AsyncClient
    ) -> None:
        """Drain the frontier; ends DONE, or ABORTED when the breaker trips."""
        while session.frontier and session.pages_processed < self.max_pages:
            url = session.dequeue()

            if url in session.visited:
                logger.debug(f"Skipping already visited: {url}")
                continue

            logger.info(
                f"[{session.pages_processed + 1}] Crawling: {url} "
                f"(queue: {len(session.frontier)}, visited: {len(session.visited)})"
            )

            try:
                await self.crawl_page(session, client, url)
                session.consecutive_failures = 0
                session.pages_processed += 1
            except Exception as e:
                session.consecutive_failures += 1
                logger.error(f"Error crawling {url}: {e}")
                if session.consecutive_failures >= self.max_consecutive_errors:
                    logger.error(
                        f"Too many consecutive errors "
                        f"({session.consecutive_failures}). Stopping crawl."
                    )
                    session.state = CrawlState.ABORTED
                    return

            if session.frontier:
                await asyncio.sleep(self.delay)

        if session.pages_processed >= self.max_pages:
            logger.warning(f"Hit safety limit of {self.max_pages} pages")
        session.state = CrawlState.DONE

    async def crawl_page(
        self, session: CrawlSession, client: httpx.AsyncClient, url: str
    ) -> Document | None:
        """Fetch one page, record its document and queue its links."""
        session.visited.add(url)

        response = await client.get(url)
        response.raise_for_status()
        logger.debug(f"Fetched: {url} ({response.status_code}, {len(response.text)} bytes)")

        soup = parse_html(response.text)

        # Links first: extraction strips the navigation they live in
        links = find_doc_links(soup, url, self.policy)
        doc = extract_document(soup, url)
        if doc is not None:
            session.documents.append(doc)
            logger.debug(f"Extracted: {doc.title} ({len(doc.content)} chars)")

        added = sum(1 for link in links if session.enqueue(link))
        logger.debug(f"Queued {added} new links (queue: {len(session.frontier)})")
        return doc

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def build_stats(self, session: CrawlSession) -> CrawlStats:
        by_domain = Counter(urlsplit(d.url).hostname or "" for d in session.documents)
        return CrawlStats(
            total_docs=len(session.documents),
            total_code_examples=sum(len(d.code_examples) for d in session.documents),
            urls_crawled=len(session.visited),
            base_urls=list(session.base_urls),
            crawl_date=now_iso(),
            state=session.state.value,
            unique_domains=len(by_domain),
            urls_by_domain=dict(by_domain),
            visited_urls=sorted(session.visited),
        )

    def save(self, session: CrawlSession) -> CrawlStats:
        """Persist the session's documents, index and stats."""
        stats = self.build_stats(session)
        with self.store.writing(DOCS_CORPUS):
            self.store.write_json(DOCS_FILE, [d.to_dict() for d in session.documents])
            self.store.write_json(
                DOCS_INDEX_FILE, [d.to_index_entry() for d in session.documents]
            )
            self.store.write_json(CRAWL_STATS_FILE, stats.to_dict())
        logger.info(
            f"Saved {stats.total_docs} documents "
            f"({stats.total_code_examples} code examples)"
        )
        return stats


async def crawl_documentation(
    urls: list[str] | None = None,
    force: bool = False,
    store: CorpusStore | None = None,
) -> CrawlReport:
    """Crawl the configured (or given) documentation seeds."""
    crawler = DocsCrawler(store or CorpusStore(settings.get_data_dir()), force=force)
    return await crawler.crawl(urls)


def _url_filename(url: str) -> str:
    parts = urlsplit(url)
    raw = f"{parts.hostname or ''}{parts.path}"
    safe = "".join(c if c.isalnum() else "_" for c in raw)
    while "__" in safe:
        safe = safe.replace("__", "_")
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"{safe[:100]}_{stamp}.json"


async def crawl_url(
    url: str,
    extract_code: bool = True,
    store: CorpusStore | None = None,
) -> dict:
    """Fetch and extract a single page outside the docs crawl scope.

    The result is saved under ``urls/`` in the data directory. Failures are
    returned as ``{"error", "url", "crawled_at"}``.
    """
    logger.info(f"Crawling single URL: {url}")
    try:
        async with httpx.AsyncClient(
            timeout=settings.crawl_timeout, headers=_HEADERS, follow_redirects=True
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error(f"Failed to crawl {url}: {e}")
        return {"error": str(e), "url": url, "crawled_at": now_iso()}

    result = extract_page(response.text, url, extract_code=extract_code)

    store = store or CorpusStore(settings.get_data_dir())
    path = store.write_json(f"{URLS_DIR}/{_url_filename(url)}", result)
    logger.info(f"Saved content to {path}")
    return result
