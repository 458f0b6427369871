"""GitHub repository harvester.

For each repository reference:

1. Resolve ``owner/name`` from a URL, host-qualified path or bare reference.
2. Look up metadata (stars, description, language); on failure keep a
   degraded descriptor so one bad reference never blocks the batch.
3. List the full tree in one recursive call, keep relevant paths (capped per
   repository), fetch blobs under the size cap and classify each file.

Requests are sequential with fixed delays between blobs and repositories.
The harvested files are then run through the pattern analyzer and every
derived collection is persisted next to the raw files.
"""

import asyncio
import base64
import re
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx
from loguru import logger

from onyx_mcp.analyzer import analyze_files
from onyx_mcp.config import settings
from onyx_mcp.models import CodeAnalysis, RepositoryDescriptor, RepositoryFile, now_iso
from onyx_mcp.storage import (
    ANALYSIS_FILE,
    CODE_FILE,
    DOCUMENTATION_FILE,
    FILE_TYPES_FILE,
    GITHUB_CORPUS,
    PATTERNS_FILE,
    REPOSITORIES_FILE,
    TOPICS_FILE,
    CorpusStore,
)

# Trailing sub-paths stripped from repository URLs
_SUBPATH_RE = re.compile(r"/(?:tree|blob)/.*$|/(?:releases|issues|pull)(?:/.*)?$")


def _github_headers() -> dict[str, str]:
    """Return GitHub API headers, including auth token if available."""
    headers = {
        "User-Agent": "onyx-mcp-crawler/1.0.0",
        "Accept": "application/vnd.github.v3+json",
    }
    token = settings.resolve_github_token()
    if token:
        headers["Authorization"] = f"token {token}"
    return headers


def parse_repository_reference(reference: str) -> tuple[str, str] | None:
    """Resolve ``(owner, name)`` from a repository reference.

    Accepts ``https://github.com/owner/repo[.git][/tree/...]``,
    ``github.com/owner/repo`` and ``owner/repo``. Returns ``None`` for
    anything with fewer than two path segments.
    """
    clean = reference.strip()
    clean = re.sub(r"^https?://", "", clean)
    clean = re.sub(r"^(?:www\.)?github\.com/", "", clean)
    clean = _SUBPATH_RE.sub("", clean)
    clean = clean.rstrip("/")
    clean = re.sub(r"\.git$", "", clean)

    parts = [p for p in clean.split("/") if p]
    if len(parts) < 2:
        return None
    return parts[0], parts[1]


# ---------------------------------------------------------------------------
# Path rules
# ---------------------------------------------------------------------------

_ALWAYS_INCLUDE = frozenset(
    {
        "readme.md",
        "readme.txt",
        "readme",
        "license",
        "license.md",
        "license.txt",
        "changelog.md",
        "changelog.txt",
    }
)
_README_NAMES = frozenset({"readme.md", "readme.txt", "readme"})
_CONFIG_EXTENSIONS = (".toml", ".yaml", ".yml")


def _is_package_config(path: str) -> bool:
    return path == "onyx.pkg" or path.endswith(".onyx.pkg")


# Any rule accepting the (lowercased) path keeps the file
_RELEVANCE_RULES: tuple[Callable[[str], bool], ...] = (
    lambda p: p in _ALWAYS_INCLUDE,
    lambda p: _is_package_config(p)
    or p.endswith(".kdl")
    or p in ("package.json", "manifest.json"),
    lambda p: "doc" in p and p.endswith((".md", ".txt", ".html")),
    lambda p: "example" in p and p.endswith((".md", ".onyx", ".html")),
    lambda p: p.endswith(".onyx"),
    lambda p: p.endswith(".html"),
    lambda p: p.endswith(_CONFIG_EXTENSIONS),
)


def is_relevant_path(path: str) -> bool:
    lowered = path.lower()
    return any(rule(lowered) for rule in _RELEVANCE_RULES)


def _html_file_type(path: str) -> str:
    if "doc" in path or "manual" in path or "guide" in path:
        return "documentation"
    if "example" in path or "demo" in path or "tutorial" in path:
        return "example"
    if "index" in path:
        return "web-index"
    return "web-content"


# Ordered, first match wins: ".onyx" beats the example-path rule
_FILE_TYPE_RULES: tuple[tuple[Callable[[str], bool], Callable[[str], str]], ...] = (
    (lambda p: p.endswith(".onyx"), lambda p: "source"),
    (lambda p: p.endswith(".kdl"), lambda p: "project-config"),
    (_is_package_config, lambda p: "package-config"),
    (lambda p: p in _README_NAMES, lambda p: "readme"),
    (lambda p: "license" in p, lambda p: "license"),
    (lambda p: "changelog" in p, lambda p: "changelog"),
    (
        lambda p: "doc" in p and p.endswith((".md", ".html")),
        lambda p: "documentation",
    ),
    (lambda p: "example" in p, lambda p: "example"),
    (lambda p: p.endswith(".html"), _html_file_type),
    (lambda p: p.endswith(_CONFIG_EXTENSIONS + (".json",)), lambda p: "config"),
    (lambda p: p.endswith(".md"), lambda p: "markdown"),
    (lambda p: p.endswith(".txt"), lambda p: "text"),
)


def determine_file_type(file_path: str) -> str:
    """Classify a repository path; a pure function of the path."""
    path = file_path.lower()
    for matches, label in _FILE_TYPE_RULES:
        if matches(path):
            return label(path)
    return "other"


# ---------------------------------------------------------------------------
# Harvester
# ---------------------------------------------------------------------------


@dataclass
class HarvestReport:
    """Outcome of ``GitHubCrawler.crawl``."""

    repositories: list[RepositoryDescriptor] = field(default_factory=list)
    files: int = 0
    total_lines: int = 0
    functions: int = 0
    structs: int = 0
    topics: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "repositories": [r.full_name for r in self.repositories],
            "failed": [r.full_name for r in self.repositories if r.fetch_error],
            "files": self.files,
            "total_lines": self.total_lines,
            "functions": self.functions,
            "structs": self.structs,
            "topics": self.topics,
        }


class GitHubCrawler:
    """Harvest Onyx repositories into the repository corpus."""

    def __init__(
        self,
        store: CorpusStore,
        *,
        api_base: str | None = None,
        max_files_per_repo: int | None = None,
        max_file_size: int | None = None,
        blob_delay: float | None = None,
        repo_delay: float | None = None,
        timeout: int | None = None,
    ):
        self.store = store
        self.api_base = (api_base or settings.github_api_base).rstrip("/")
        self.max_files_per_repo = (
            settings.max_files_per_repo
            if max_files_per_repo is None
            else max_files_per_repo
        )
        self.max_file_size = (
            settings.max_file_size if max_file_size is None else max_file_size
        )
        self.blob_delay = settings.blob_delay if blob_delay is None else blob_delay
        self.repo_delay = settings.repo_delay if repo_delay is None else repo_delay
        self.timeout = settings.github_timeout if timeout is None else timeout

    async def _fetch_json(self, client: httpx.AsyncClient, url: str) -> dict:
        resp = await client.get(url)
        if resp.status_code != 200:
            raise httpx.HTTPStatusError(
                f"GitHub API error: {resp.status_code}",
                request=resp.request,
                response=resp,
            )
        return resp.json()

    async def fetch_repository(
        self,
        client: httpx.AsyncClient,
        owner: str,
        name: str,
        provided_url: str = "",
    ) -> RepositoryDescriptor:
        """Look up repository metadata; degrade instead of failing."""
        full_name = f"{owner}/{name}"
        try:
            data = await self._fetch_json(client, f"{self.api_base}/repos/{full_name}")
            descriptor = RepositoryDescriptor(
                owner=data["owner"]["login"],
                name=data["name"],
                full_name=data["full_name"],
                url=data.get("html_url") or f"https://github.com/{full_name}",
                description=data.get("description") or f"{data['name']} repository",
                stars=data.get("stargazers_count") or 0,
                language=data.get("language"),
                provided_url=provided_url,
                last_updated=data.get("updated_at"),
                is_private=bool(data.get("private", False)),
            )
            logger.info(f"Added {full_name} ({descriptor.stars} stars)")
            return descriptor
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Repository {full_name} not accessible: {e}")
            return RepositoryDescriptor(
                owner=owner,
                name=name,
                full_name=full_name,
                url=f"https://github.com/{full_name}",
                description=f"{name} repository",
                language="Onyx",
                provided_url=provided_url,
                fetch_error=str(e) or type(e).__name__,
            )

    async def get_repositories(
        self,
        client: httpx.AsyncClient,
        references: list[str],
        limit: int,
    ) -> list[RepositoryDescriptor]:
        """Resolve references to descriptors, sorted by stars, capped at *limit*."""
        repositories: list[RepositoryDescriptor] = []
        for reference in references:
            parsed = parse_repository_reference(reference)
            if parsed is None:
                logger.warning(f"Could not parse repository reference: {reference}")
                continue
            owner, name = parsed
            repositories.append(
                await self.fetch_repository(client, owner, name, reference)
            )
            await asyncio.sleep(self.repo_delay)

        repositories.sort(key=lambda r: r.stars, reverse=True)
        return repositories[:limit]

    async def walk_repository(
        self, client: httpx.AsyncClient, repo: RepositoryDescriptor
    ) -> list[RepositoryFile]:
        """Fetch and classify the relevant files of one repository."""
        logger.info(f"Crawling repository: {repo.full_name}")
        api_repo = f"{self.api_base}/repos/{repo.full_name}"

        try:
            tree = await self._fetch_json(
                client, f"{api_repo}/git/trees/HEAD?recursive=1"
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to list tree of {repo.full_name}: {e}")
            return []

        entries = [
            item
            for item in tree.get("tree", [])
            if item.get("type") == "blob" and is_relevant_path(item.get("path", ""))
        ][: self.max_files_per_repo]
        logger.info(f"Found {len(entries)} relevant files in {repo.full_name}")

        files: list[RepositoryFile] = []
        for item in entries:
            path = item["path"]
            size = int(item.get("size") or 0)
            if size > self.max_file_size:
                logger.debug(f"Skipping large file: {path} ({size} bytes)")
                continue

            try:
                blob = await self._fetch_json(client, f"{api_repo}/git/blobs/{item['sha']}")
                content = base64.b64decode(blob.get("content", "")).decode(
                    "utf-8", errors="replace"
                )
            except (httpx.HTTPError, KeyError, ValueError) as e:
                logger.warning(f"Failed to fetch {repo.full_name}/{path}: {e}")
                continue

            file_type = determine_file_type(path)
            files.append(
                RepositoryFile(
                    repository=repo.full_name,
                    path=path,
                    size=size,
                    content=content,
                    file_type=file_type,
                    url=f"https://github.com/{repo.full_name}/blob/HEAD/{path}",
                    extracted_at=now_iso(),
                )
            )
            logger.debug(f"Extracted: {path} ({file_type}, {size} bytes)")
            await asyncio.sleep(self.blob_delay)

        return files

    async def crawl(
        self, references: list[str], limit: int | None = None
    ) -> HarvestReport:
        """Harvest *references*, analyze and persist the repository corpus."""
        limit = settings.github_repo_limit if limit is None else limit
        if not references:
            logger.warning("No repository references provided")
            return HarvestReport()

        logger.info(f"Starting GitHub crawl of {len(references)} repositories")
        async with httpx.AsyncClient(
            timeout=self.timeout, headers=_github_headers(), follow_redirects=True
        ) as client:
            repositories = await self.get_repositories(client, references, limit)
            if not repositories:
                logger.warning("No accessible repositories found")
                return HarvestReport()

            all_files: list[RepositoryFile] = []
            for repo in repositories:
                all_files.extend(await self.walk_repository(client, repo))
                await asyncio.sleep(self.repo_delay)

        logger.info(f"Extracted {len(all_files)} files total")
        analysis = analyze_files(all_files)
        self.save(repositories, all_files, analysis)

        return HarvestReport(
            repositories=repositories,
            files=len(all_files),
            total_lines=analysis.total_lines,
            functions=len(analysis.functions),
            structs=len(analysis.structs),
            topics=sorted(analysis.by_topic),
        )

    def save(
        self,
        repositories: list[RepositoryDescriptor],
        files: list[RepositoryFile],
        analysis: CodeAnalysis,
    ) -> None:
        with self.store.writing(GITHUB_CORPUS):
            self.store.write_json(
                REPOSITORIES_FILE, [r.to_dict() for r in repositories]
            )
            self.store.write_json(CODE_FILE, [f.to_dict() for f in files])
            self.store.write_json(ANALYSIS_FILE, analysis.to_dict())
            self.store.write_json(TOPICS_FILE, analysis.by_topic)
            self.store.write_json(PATTERNS_FILE, analysis.patterns_dict())
            self.store.write_json(DOCUMENTATION_FILE, analysis.documentation)
            self.store.write_json(FILE_TYPES_FILE, analysis.files_by_type)


async def crawl_github(
    references: list[str] | None = None,
    limit: int | None = None,
    store: CorpusStore | None = None,
) -> HarvestReport:
    """Harvest the given (or configured) repositories."""
    crawler = GitHubCrawler(store or CorpusStore(settings.get_data_dir()))
    return await crawler.crawl(list(references or settings.github_repos), limit)
