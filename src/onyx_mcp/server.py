"""Onyx MCP Server - Main server definition."""

import asyncio
import functools
import json
import sys
from contextlib import asynccontextmanager

from loguru import logger
from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations

from onyx_mcp.config import settings
from onyx_mcp.search import SearchEngine
from onyx_mcp.security import is_safe_url, wrap_external_content
from onyx_mcp.sources.docs import crawl_url as _crawl_url
from onyx_mcp.storage import (
    CODE_FILE,
    DOCS_FILE,
    CorpusStore,
)

# Configure logging
logger.remove()
logger.add(sys.stderr, level=settings.log_level)

# Module-level state (set during lifespan, or lazily on first tool call)
_engine: SearchEngine | None = None


def _get_engine() -> SearchEngine:
    global _engine
    if _engine is None:
        _engine = SearchEngine(CorpusStore(settings.get_data_dir()))
    return _engine


@asynccontextmanager
async def _lifespan(_server: FastMCP):
    """Server lifespan: open the corpus store and report what is indexed."""
    logger.info("Starting Onyx MCP Server...")

    engine = _get_engine()
    data_dir = engine.store.data_dir
    logger.info(f"Data directory: {data_dir}")

    if not engine.store.exists(DOCS_FILE):
        logger.warning(
            "No documentation corpus found. Run `onyx-mcp crawl-docs` to build it."
        )
    if not engine.store.exists(CODE_FILE):
        logger.warning(
            "No GitHub corpus found. Run `onyx-mcp crawl-github` to build it."
        )

    try:
        yield
    finally:
        logger.info("Shutting down Onyx MCP Server...")


mcp = FastMCP(
    name="onyx",
    instructions=(
        "Onyx programming language knowledge server. "
        "Use `search_onyx_docs` for the official documentation, "
        "`search_github_examples` for example code by topic, "
        "`get_onyx_functions` / `get_onyx_structs` for definitions, "
        "`search_all_sources` to search everything at once. "
        "Onyx is a WebAssembly-first language: prefer these tools over "
        "guessing its syntax."
    ),
    lifespan=_lifespan,
)


def _dumps(result: dict) -> str:
    return json.dumps(result, ensure_ascii=False, indent=2)


def _wrap_tool(tool_name: str):
    """Decorator to wrap tool results with untrusted-content markers."""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            result = await func(*args, **kwargs)
            return wrap_external_content(tool_name, result)

        return wrapper

    return decorator


# ---------------------------------------------------------------------------
# Search tools
# ---------------------------------------------------------------------------


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        openWorldHint=False,
        idempotentHint=True,
    ),
)
@_wrap_tool("docs")
async def search_onyx_docs(query: str, limit: int = 5) -> str:
    """Search the official Onyx documentation.

    Ranks pages by title, heading and body matches of the query
    (case-insensitive substring) and returns snippets around the match.
    """
    return _dumps(_get_engine().search_docs(query, limit))


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        openWorldHint=False,
        idempotentHint=True,
    ),
)
@_wrap_tool("examples")
async def search_github_examples(topic: str, limit: int = 5) -> str:
    """Find Onyx code examples from GitHub repositories by topic.

    Topics include networking, data-formats, file-io, concurrency,
    memory-management, testing, examples and more. Unknown topics return the
    list of available topics.
    """
    return _dumps(_get_engine().search_github_examples(topic, limit))


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        openWorldHint=False,
        idempotentHint=True,
    ),
)
@_wrap_tool("functions")
async def get_onyx_functions(function_name: str | None = None, limit: int = 10) -> str:
    """List Onyx function definitions found in GitHub repositories.

    Optionally filter by a partial function name.
    """
    return _dumps(_get_engine().get_functions(function_name, limit))


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        openWorldHint=False,
        idempotentHint=True,
    ),
)
@_wrap_tool("structs")
async def get_onyx_structs(struct_name: str | None = None, limit: int = 10) -> str:
    """List Onyx struct definitions found in GitHub repositories.

    Optionally filter by a partial struct name.
    """
    return _dumps(_get_engine().get_structs(struct_name, limit))


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        openWorldHint=False,
        idempotentHint=True,
    ),
)
async def list_github_repos(sort_by: str = "stars") -> str:
    """List the crawled GitHub repositories containing Onyx code.

    sort_by: stars (default), name or updated.
    """
    return _dumps(_get_engine().list_repositories(sort_by))


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=True,
        openWorldHint=False,
        idempotentHint=True,
    ),
)
@_wrap_tool("search_all")
async def search_all_sources(
    query: str,
    sources: list[str] | None = None,
    limit: int = 10,
) -> str:
    """Search documentation and GitHub code together.

    sources: any of "docs", "github" (default both). The limit is split
    evenly across sources and the merged results are ranked by score.
    """
    return _dumps(_get_engine().search_all(query, sources or ["docs", "github"], limit))


# ---------------------------------------------------------------------------
# Ingestion tool
# ---------------------------------------------------------------------------


@mcp.tool(
    annotations=ToolAnnotations(
        readOnlyHint=False,
        destructiveHint=False,
        openWorldHint=True,
        idempotentHint=False,
    ),
)
@_wrap_tool("crawl_url")
async def crawl_url(url: str, extract_code: bool = True) -> str:
    """Fetch a single web page and extract its title, text and code blocks.

    The extracted page is saved to the data directory under urls/.
    """
    if not await asyncio.to_thread(is_safe_url, url):
        return _dumps({"error": f"Refusing to fetch unsafe URL: {url}"})
    store = _get_engine().store
    return _dumps(await _crawl_url(url, extract_code=extract_code, store=store))


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


@mcp.prompt()
def write_onyx_code(task: str) -> str:
    """Generate a prompt to write Onyx code grounded in real examples."""
    return (
        f"Write Onyx code for the following task: {task}\n\n"
        "1. Use search_onyx_docs to look up the relevant language features.\n"
        "2. Use search_github_examples and get_onyx_functions to find real "
        "code that does something similar.\n"
        "3. Only use syntax you have seen in the docs or examples."
    )


@mcp.prompt()
def explain_onyx_feature(feature: str) -> str:
    """Generate a prompt to explain an Onyx language feature."""
    return (
        f"Explain the Onyx language feature '{feature}'.\n\n"
        f"Use search_all_sources with query='{feature}' and cite the "
        "documentation pages and repository files you relied on."
    )


def main() -> None:
    """Entry point for the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
