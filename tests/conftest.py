"""Pytest configuration and fixtures."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from onyx_mcp.storage import CorpusStore


@pytest.fixture
def store(tmp_path):
    """Corpus store rooted in a temporary data directory."""
    return CorpusStore(tmp_path / "data")


def make_response(text: str = "", status_code: int = 200, json_data=None):
    """Build a mock httpx response."""
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if json_data is not None:
        response.json.return_value = json_data
    return response


def make_client(get: AsyncMock) -> AsyncMock:
    """Build a mock ``httpx.AsyncClient`` usable as an async context manager."""
    mock_client = AsyncMock()
    mock_client.get = get
    mock_client.__aenter__.return_value = mock_client
    mock_client.__aexit__.return_value = None
    return mock_client


def page(title: str, body: str = "", links: tuple[str, ...] = ()) -> str:
    """Minimal documentation page with a nav bar of *links*."""
    nav = "".join(f'<a href="{href}">{href}</a>' for href in links)
    return (
        f"<html><head><title>{title} - Onyx Documentation</title></head>"
        f"<body><nav>{nav}</nav><main><h1>{title}</h1>{body}</main></body></html>"
    )


@pytest.fixture
def populated_store(store):
    """Store holding a small docs corpus and a small GitHub corpus."""
    store.write_json(
        "onyx-docs.json",
        [
            {
                "url": "https://docs.onyxlang.io/book/memory/allocators.html",
                "title": "Allocators",
                "content": "Allocators manage memory. The heap allocator is default.",
                "headings": [{"level": 2, "text": "Custom Allocators", "id": None}],
                "code_examples": [],
                "crawled_at": "2026-10-01T00:00:00+00:00",
            },
            {
                "url": "https://docs.onyxlang.io/book/memory/arenas.html",
                "title": "Arenas",
                "content": "An arena is one of the allocators in core.alloc.",
                "headings": [],
                "code_examples": [],
                "crawled_at": "2026-10-01T00:00:00+00:00",
            },
            {
                "url": "https://docs.onyxlang.io/book/types/structs.html",
                "title": "Structures",
                "content": "Structs group fields together.",
                "headings": [{"level": 2, "text": "Fields", "id": "fields"}],
                "code_examples": [],
                "crawled_at": "2026-10-01T00:00:00+00:00",
            },
        ],
    )
    store.write_json(
        "github/onyx-code.json",
        [
            {
                "repository": "onyx-lang/pkg-http-server",
                "path": "src/http.onyx",
                "size": 40,
                "content": "use core.net\nServer :: struct { port: u32 }",
                "file_type": "source",
                "url": "https://github.com/onyx-lang/pkg-http-server/blob/HEAD/src/http.onyx",
                "extracted_at": "2026-10-01T00:00:00+00:00",
            },
            {
                "repository": "onyx-lang/onyx",
                "path": "core/alloc/arena.onyx",
                "size": 30,
                "content": "// Arena allocators\nArena :: struct { size: u32 }",
                "file_type": "source",
                "url": "https://github.com/onyx-lang/onyx/blob/HEAD/core/alloc/arena.onyx",
                "extracted_at": "2026-10-01T00:00:00+00:00",
            },
        ],
    )
    store.write_json(
        "github/code-patterns.json",
        {
            "imports": ["use core.net"],
            "functions": [
                {
                    "definition": "main :: () {",
                    "file": "main.onyx",
                    "repository": "onyx-lang/onyx-examples",
                    "url": "https://github.com/onyx-lang/onyx-examples/blob/HEAD/main.onyx",
                },
                {
                    "definition": "serve :: (port: u32) -> bool {",
                    "file": "src/http.onyx",
                    "repository": "onyx-lang/pkg-http-server",
                    "url": "https://github.com/onyx-lang/pkg-http-server/blob/HEAD/src/http.onyx",
                },
            ],
            "structs": [
                {
                    "definition": "Server :: struct { port: u32 }",
                    "file": "src/http.onyx",
                    "repository": "onyx-lang/pkg-http-server",
                    "url": "https://github.com/onyx-lang/pkg-http-server/blob/HEAD/src/http.onyx",
                },
            ],
            "enums": [],
        },
    )
    store.write_json(
        "github/examples-by-topic.json",
        {
            "networking": [
                {
                    "repository": "onyx-lang/pkg-http-server",
                    "path": f"src/net_{i}.onyx",
                    "url": f"https://github.com/onyx-lang/pkg-http-server/blob/HEAD/src/net_{i}.onyx",
                    "code": "use core.net\n" * (i + 1),
                    "file_type": "source",
                }
                for i in range(4)
            ],
            "memory-management": [
                {
                    "repository": "onyx-lang/onyx",
                    "path": "core/alloc/arena.onyx",
                    "url": "https://github.com/onyx-lang/onyx/blob/HEAD/core/alloc/arena.onyx",
                    "code": "x" * 1500,
                    "file_type": "source",
                }
            ],
        },
    )
    store.write_json(
        "github/repositories.json",
        [
            {
                "owner": "onyx-lang",
                "name": "pkg-http-server",
                "full_name": "onyx-lang/pkg-http-server",
                "url": "https://github.com/onyx-lang/pkg-http-server",
                "description": "HTTP server",
                "stars": 12,
                "language": "Onyx",
                "last_updated": "2026-01-05T00:00:00Z",
            },
            {
                "owner": "onyx-lang",
                "name": "onyx",
                "full_name": "onyx-lang/onyx",
                "url": "https://github.com/onyx-lang/onyx",
                "description": "The Onyx compiler",
                "stars": 600,
                "language": "C",
                "last_updated": "2026-09-30T00:00:00Z",
            },
            {
                "owner": "onyx-lang",
                "name": "Examples",
                "full_name": "onyx-lang/Examples",
                "url": "https://github.com/onyx-lang/Examples",
                "description": "",
                "stars": 3,
                "language": None,
                "last_updated": None,
            },
        ],
    )
    return store
