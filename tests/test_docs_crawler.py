"""Tests for onyx_mcp.sources.docs: documentation crawl loop and persistence.

Covers frontier/visited bookkeeping, link following within scope, the
consecutive-failure circuit breaker, the freshness (recrawl) policy,
persisted corpus layout, and single-URL extraction.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from conftest import make_client, make_response, page

from onyx_mcp.models import CrawlState, CrawlStats
from onyx_mcp.sources.docs import CrawlSession, DocsCrawler, crawl_url
from onyx_mcp.storage import (
    CRAWL_STATS_FILE,
    DOCS_CORPUS,
    DOCS_FILE,
    DOCS_INDEX_FILE,
    STATE_COMPLETE,
)

BASE = "https://docs.onyxlang.io"
SEED = f"{BASE}/book/Overview.html"


def _router(pages: dict[str, str], calls: list[str]):
    """Serve *pages* by URL; anything else fails to connect."""

    async def get(url):
        calls.append(url)
        if url in pages:
            return make_response(pages[url])
        raise httpx.ConnectError(f"connection refused: {url}")

    return AsyncMock(side_effect=get)


def _crawler(store, **kwargs) -> DocsCrawler:
    kwargs.setdefault("delay", 0)
    return DocsCrawler(store, **kwargs)


# -----------------------------------------------------------------------
# CrawlSession
# -----------------------------------------------------------------------


class TestCrawlSession:
    def test_enqueue_skips_visited_and_queued(self):
        """A URL is queued at most once and never after being visited."""
        session = CrawlSession(base_urls=[SEED])
        assert session.enqueue(SEED)
        assert not session.enqueue(SEED)
        assert session.dequeue() == SEED
        session.visited.add(SEED)
        assert not session.enqueue(SEED)
        assert not session.frontier


# -----------------------------------------------------------------------
# Crawl loop
# -----------------------------------------------------------------------


class TestCrawl:
    @pytest.mark.asyncio
    async def test_follows_in_scope_links(self, store):
        """Links in the nav are followed; out-of-scope links are not."""
        pages = {
            SEED: page(
                "Overview",
                "<p>Welcome to Onyx.</p>",
                links=("/book/Types.html", "https://github.com/onyx-lang/onyx"),
            ),
            f"{BASE}/book/Types.html": page(
                "Types",
                "<p>Types of Onyx.</p><pre><code>x: i32 = 10;</code></pre>",
                links=("/book/Overview.html#top",),
            ),
        }
        calls: list[str] = []
        client = make_client(_router(pages, calls))

        with patch("onyx_mcp.sources.docs.httpx.AsyncClient", return_value=client):
            report = await _crawler(store).crawl([SEED])

        assert report.state is CrawlState.DONE
        assert calls == [SEED, f"{BASE}/book/Types.html"]
        assert report.documents == 2
        assert report.code_examples == 1
        assert report.urls_crawled == 2

    @pytest.mark.asyncio
    async def test_each_url_fetched_once(self, store):
        """Pages linking to each other never cause a refetch."""
        a, b, c = (f"{BASE}/book/{n}.html" for n in "ABC")
        pages = {
            a: page("A", "<p>a</p>", links=("/book/B.html", "/book/C.html")),
            b: page("B", "<p>b</p>", links=("/book/A.html", "/book/C.html/")),
            c: page("C", "<p>c</p>", links=("/book/A.html?", "/book/B.html#x")),
        }
        calls: list[str] = []
        client = make_client(_router(pages, calls))

        with patch("onyx_mcp.sources.docs.httpx.AsyncClient", return_value=client):
            report = await _crawler(store).crawl([a])

        assert sorted(calls) == sorted([a, b, c])
        assert report.documents == 3

    @pytest.mark.asyncio
    async def test_max_pages_limit(self, store):
        """The safety ceiling stops the crawl after max_pages successes."""
        links = tuple(f"/book/p{i}.html" for i in range(10))
        pages = {SEED: page("Overview", "<p>x</p>", links=links)}
        pages.update(
            {f"{BASE}/book/p{i}.html": page(f"P{i}", "<p>y</p>") for i in range(10)}
        )
        calls: list[str] = []
        client = make_client(_router(pages, calls))

        with patch("onyx_mcp.sources.docs.httpx.AsyncClient", return_value=client):
            report = await _crawler(store, max_pages=3).crawl([SEED])

        assert report.state is CrawlState.DONE
        assert len(calls) == 3
        assert report.documents == 3

    @pytest.mark.asyncio
    async def test_politeness_delay_between_fetches(self, store):
        """The fixed delay is awaited while the frontier is non-empty."""
        pages = {
            SEED: page("Overview", "<p>x</p>", links=("/book/Types.html",)),
            f"{BASE}/book/Types.html": page("Types", "<p>y</p>"),
        }
        client = make_client(_router(pages, []))

        with (
            patch("onyx_mcp.sources.docs.httpx.AsyncClient", return_value=client),
            patch("onyx_mcp.sources.docs.asyncio.sleep", new_callable=AsyncMock) as sleep,
        ):
            await DocsCrawler(store, delay=2.0).crawl([SEED])

        sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_invalid_seeds_only(self, store):
        """A run with no valid seed does nothing."""
        report = await _crawler(store).crawl(["not a url"])
        assert report.state is CrawlState.IDLE
        assert not store.exists(DOCS_FILE)


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_aborts_after_consecutive_failures(self, store):
        """Six failing pages with a threshold of five: abort after the fifth."""
        links = tuple(f"/book/missing{i}.html" for i in range(6))
        pages = {SEED: page("Overview", "<p>Start page.</p>", links=links)}
        calls: list[str] = []
        client = make_client(_router(pages, calls))

        with patch("onyx_mcp.sources.docs.httpx.AsyncClient", return_value=client):
            report = await _crawler(store, max_consecutive_errors=5).crawl([SEED])

        assert report.state is CrawlState.ABORTED
        assert len(calls) == 6
        assert f"{BASE}/book/missing5.html" not in calls

        # Partial results are still persisted
        docs = store.read_json(DOCS_FILE)
        assert [d["title"] for d in docs] == ["Overview"]
        assert store.read_json(CRAWL_STATS_FILE)["state"] == "aborted"
        assert store.corpus_state(DOCS_CORPUS)["state"] == STATE_COMPLETE

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, store):
        """Failures separated by successes never trip the breaker."""
        pages = {
            SEED: page(
                "Overview",
                "<p>x</p>",
                links=("/book/bad1.html", "/book/ok1.html", "/book/bad2.html"),
            ),
            f"{BASE}/book/ok1.html": page("Ok", "<p>fine</p>"),
        }
        client = make_client(_router(pages, []))

        with patch("onyx_mcp.sources.docs.httpx.AsyncClient", return_value=client):
            report = await _crawler(store, max_consecutive_errors=2).crawl([SEED])

        assert report.state is CrawlState.DONE
        assert report.documents == 2

    @pytest.mark.asyncio
    async def test_failed_pages_are_visited(self, store):
        """A failing URL is not retried within the same run."""
        pages = {
            SEED: page("Overview", "<p>x</p>", links=("/book/bad.html", "/book/ok.html")),
            f"{BASE}/book/ok.html": page("Ok", "<p>y</p>", links=("/book/bad.html",)),
        }
        calls: list[str] = []
        client = make_client(_router(pages, calls))

        with patch("onyx_mcp.sources.docs.httpx.AsyncClient", return_value=client):
            await _crawler(store).crawl([SEED])

        assert calls.count(f"{BASE}/book/bad.html") == 1


# -----------------------------------------------------------------------
# Freshness policy
# -----------------------------------------------------------------------


def _write_stats(store, days_ago: int, base_urls=(SEED,)):
    crawl_date = datetime.now(timezone.utc) - timedelta(days=days_ago)
    stats = CrawlStats(
        total_docs=1,
        total_code_examples=0,
        urls_crawled=1,
        base_urls=list(base_urls),
        crawl_date=crawl_date.isoformat(),
    )
    store.write_json(CRAWL_STATS_FILE, stats.to_dict())


class TestFreshness:
    def test_recent_seed_detected(self, store):
        """Seeds from a crawl younger than the threshold are reported."""
        _write_stats(store, days_ago=2)
        recent = _crawler(store, recrawl_threshold_days=7).check_recent_crawls(
            [SEED, f"{BASE}/packages/core.html"]
        )
        assert [r["url"] for r in recent] == [SEED]
        assert recent[0]["days_ago"] == 2

    def test_old_crawl_not_recent(self, store):
        """A crawl older than the threshold allows recrawling."""
        _write_stats(store, days_ago=10)
        assert _crawler(store, recrawl_threshold_days=7).check_recent_crawls([SEED]) == []

    def test_no_stats(self, store):
        """Without previous stats nothing is skipped."""
        assert _crawler(store).check_recent_crawls([SEED]) == []

    @pytest.mark.asyncio
    async def test_second_run_is_noop(self, store):
        """Re-running within the threshold fetches nothing and keeps the corpus."""
        pages = {SEED: page("Overview", "<p>Welcome.</p>")}
        calls: list[str] = []
        client = make_client(_router(pages, calls))

        with patch("onyx_mcp.sources.docs.httpx.AsyncClient", return_value=client):
            await _crawler(store).crawl([SEED])
            before = store.read_json(DOCS_FILE)
            generation = store.corpus_state(DOCS_CORPUS)["generation"]

            report = await _crawler(store).crawl([SEED])

        assert report.state is CrawlState.IDLE
        assert [s["url"] for s in report.skipped] == [SEED]
        assert calls == [SEED]
        assert store.read_json(DOCS_FILE) == before
        assert store.corpus_state(DOCS_CORPUS)["generation"] == generation

    @pytest.mark.asyncio
    async def test_force_recrawls(self, store):
        """force ignores the freshness threshold."""
        _write_stats(store, days_ago=0)
        pages = {SEED: page("Overview", "<p>Welcome.</p>")}
        calls: list[str] = []
        client = make_client(_router(pages, calls))

        with patch("onyx_mcp.sources.docs.httpx.AsyncClient", return_value=client):
            report = await _crawler(store, force=True).crawl([SEED])

        assert report.state is CrawlState.DONE
        assert calls == [SEED]


# -----------------------------------------------------------------------
# Persistence
# -----------------------------------------------------------------------


class TestPersistence:
    @pytest.mark.asyncio
    async def test_index_and_stats(self, store):
        """The index truncates content; stats record seeds and visits."""
        long_text = "word " * 200
        pages = {SEED: page("Overview", f"<h2>Intro</h2><p>{long_text}</p>")}
        client = make_client(_router(pages, []))

        with patch("onyx_mcp.sources.docs.httpx.AsyncClient", return_value=client):
            await _crawler(store).crawl([SEED])

        index = store.read_json(DOCS_INDEX_FILE)
        assert len(index) == 1
        assert index[0]["content"].endswith("...")
        assert len(index[0]["content"]) == 503
        assert index[0]["headings"] == ["Overview", "Intro"]
        assert index[0]["code_count"] == 0

        stats = store.read_json(CRAWL_STATS_FILE)
        assert stats["base_urls"] == [SEED]
        assert stats["visited_urls"] == [SEED]
        assert stats["urls_by_domain"] == {"docs.onyxlang.io": 1}
        assert stats["state"] == "done"


# -----------------------------------------------------------------------
# crawl_url
# -----------------------------------------------------------------------


class TestCrawlUrl:
    @pytest.mark.asyncio
    async def test_saves_extracted_page(self, store):
        """A single page is extracted and saved under urls/."""
        html = "<html><head><title>Post</title></head><body><p>Hello</p></body></html>"
        client = make_client(AsyncMock(return_value=make_response(html)))

        with patch("onyx_mcp.sources.docs.httpx.AsyncClient", return_value=client):
            result = await crawl_url("https://example.com/post", store=store)

        assert result["title"] == "Post"
        saved = list((store.data_dir / "urls").iterdir())
        assert len(saved) == 1
        assert saved[0].name.startswith("example_com_post_")

    @pytest.mark.asyncio
    async def test_fetch_error_returned(self, store):
        """A failed fetch returns an error record and saves nothing."""
        client = make_client(AsyncMock(side_effect=httpx.ConnectTimeout("timed out")))

        with patch("onyx_mcp.sources.docs.httpx.AsyncClient", return_value=client):
            result = await crawl_url("https://example.com/slow", store=store)

        assert result["error"] == "timed out"
        assert result["url"] == "https://example.com/slow"
        assert not (store.data_dir / "urls").exists()
