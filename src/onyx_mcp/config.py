"""Configuration settings for the Onyx MCP Server."""

import os
from pathlib import Path

from pydantic_settings import BaseSettings


def _default_data_dir() -> Path:
    """Get default data directory (~/.onyx-mcp/)."""
    return Path.home() / ".onyx-mcp"


# Seed pages for the documentation crawl
_DEFAULT_DOCS_BASE_URLS = [
    "https://docs.onyxlang.io/book/Overview.html",
    "https://docs.onyxlang.io/packages/core.html",
]

# Repositories harvested when no reference is given on the command line
_DEFAULT_GITHUB_REPOS = [
    "onyx-lang/onyx",
    "onyx-lang/onyx-examples",
    "onyx-lang/onyx-website",
    "onyx-lang/pkg-glfw3",
    "onyx-lang/pkg-http-client",
    "onyx-lang/pkg-http-server",
    "onyx-lang/pkg-json-rpc",
    "onyx-lang/pkg-ncurses",
    "onyx-lang/pkg-openal",
    "onyx-lang/pkg-opencl",
    "onyx-lang/pkg-opengles",
    "onyx-lang/pkg-openssl",
    "onyx-lang/pkg-otmp",
    "onyx-lang/pkg-perlin",
    "onyx-lang/pkg-postgres-orm",
    "onyx-lang/pkg-postgres",
    "onyx-lang/pkg-protobuf",
    "onyx-lang/pkg-qoi",
    "onyx-lang/pkg-raylib",
    "onyx-lang/pkg-stb_image",
    "onyx-lang/pkg-stb_truetype",
    "onyx-lang/pkg-webgl2",
]


class Settings(BaseSettings):
    """Onyx MCP Server configuration.

    Environment variables:
    - DATA_DIR: Corpus directory (default: ~/.onyx-mcp/)
    - DOCS_BASE_URLS: Seed URLs for the documentation crawl (JSON list)
    - DOCS_HOST: Only links on this host are followed
    - DOCS_ALLOWED_PREFIXES: Path prefixes the crawler may follow (JSON list)
    - CRAWL_DELAY: Seconds between page fetches (default: 2.0)
    - CRAWL_MAX_PAGES: Safety ceiling on pages per crawl (default: 500)
    - RECRAWL_THRESHOLD_DAYS: Skip seeds crawled more recently (default: 7)
    - MAX_CONSECUTIVE_ERRORS: Circuit breaker threshold (default: 5)
    - GITHUB_TOKEN / GH_TOKEN: GitHub API token (60 req/hr without one)
    - GITHUB_REPOS: Default repositories to harvest (JSON list)
    - MAX_FILES_PER_REPO / MAX_FILE_SIZE: Per-repository harvest caps
    """

    # Storage
    data_dir: str = ""  # Default: ~/.onyx-mcp

    # Documentation crawler
    docs_base_urls: list[str] = _DEFAULT_DOCS_BASE_URLS
    docs_host: str = "docs.onyxlang.io"
    docs_allowed_prefixes: list[str] = ["/book/", "/packages/"]
    crawl_delay: float = 2.0
    crawl_max_pages: int = 500
    crawl_timeout: int = 15
    recrawl_threshold_days: int = 7
    max_consecutive_errors: int = 5

    # GitHub harvester
    github_token: str = ""  # Falls back to GITHUB_TOKEN / GH_TOKEN env vars
    github_api_base: str = "https://api.github.com"
    github_repos: list[str] = _DEFAULT_GITHUB_REPOS
    github_repo_limit: int = 20
    github_timeout: int = 30
    max_files_per_repo: int = 50
    max_file_size: int = 100_000  # bytes
    blob_delay: float = 0.1
    repo_delay: float = 1.0

    # Logging
    log_level: str = "INFO"

    model_config = {"env_prefix": "", "case_sensitive": False}

    # --- Path helpers ---

    def get_data_dir(self) -> Path:
        """Get data directory.

        Uses DATA_DIR if set, otherwise ~/.onyx-mcp/.
        """
        if self.data_dir:
            return Path(self.data_dir).expanduser()
        return _default_data_dir()

    def resolve_github_token(self) -> str | None:
        """Return explicit token, else GITHUB_TOKEN / GH_TOKEN, else None."""
        if self.github_token:
            return self.github_token
        return os.environ.get("GITHUB_TOKEN") or os.environ.get("GH_TOKEN") or None


settings = Settings()
