"""Records produced by the crawlers and consumed by the search engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def now_iso() -> str:
    """Current UTC time as an ISO8601 string."""
    return datetime.now(timezone.utc).isoformat()


class CrawlState(str, Enum):
    """Lifecycle of one documentation crawl session."""

    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    ABORTED = "aborted"


# ---------------------------------------------------------------------------
# Documentation corpus
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Heading:
    level: int
    text: str
    id: str | None = None


@dataclass(frozen=True, slots=True)
class CodeExample:
    code: str
    language: str
    context: str = ""


@dataclass(frozen=True, slots=True)
class Document:
    """One successfully fetched, non-empty documentation page."""

    url: str
    title: str
    content: str
    headings: tuple[Heading, ...] = ()
    code_examples: tuple[CodeExample, ...] = ()
    crawled_at: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["headings"] = [asdict(h) for h in self.headings]
        data["code_examples"] = [asdict(c) for c in self.code_examples]
        return data

    def to_index_entry(self) -> dict[str, Any]:
        """Reduced form stored in the quick-search index."""
        content = self.content[:500] + ("..." if len(self.content) > 500 else "")
        return {
            "url": self.url,
            "title": self.title,
            "content": content,
            "headings": [h.text for h in self.headings],
            "code_count": len(self.code_examples),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Document:
        return cls(
            url=data["url"],
            title=data.get("title", ""),
            content=data.get("content", ""),
            headings=tuple(Heading(**h) for h in data.get("headings", [])),
            code_examples=tuple(
                CodeExample(**c) for c in data.get("code_examples", [])
            ),
            crawled_at=data.get("crawled_at", ""),
        )


@dataclass(slots=True)
class CrawlStats:
    """Summary of the last completed documentation crawl.

    Used by the freshness policy to decide whether seeds can be skipped.
    """

    total_docs: int
    total_code_examples: int
    urls_crawled: int
    base_urls: list[str]
    crawl_date: str = field(default_factory=now_iso)
    state: str = CrawlState.DONE.value
    unique_domains: int = 0
    urls_by_domain: dict[str, int] = field(default_factory=dict)
    visited_urls: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CrawlStats:
        return cls(
            total_docs=data.get("total_docs", 0),
            total_code_examples=data.get("total_code_examples", 0),
            urls_crawled=data.get("urls_crawled", 0),
            base_urls=list(data.get("base_urls", [])),
            crawl_date=data.get("crawl_date", ""),
            state=data.get("state", CrawlState.DONE.value),
            unique_domains=data.get("unique_domains", 0),
            urls_by_domain=dict(data.get("urls_by_domain", {})),
            visited_urls=list(data.get("visited_urls", [])),
        )


# ---------------------------------------------------------------------------
# Repository corpus
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class RepositoryDescriptor:
    """Repository metadata; degraded (``fetch_error`` set) when lookup failed."""

    owner: str
    name: str
    full_name: str
    url: str
    description: str = ""
    stars: int = 0
    language: str | None = None
    provided_url: str = ""
    last_updated: str | None = None
    is_private: bool = False
    fetch_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class RepositoryFile:
    repository: str
    path: str
    size: int
    content: str
    file_type: str
    url: str
    extracted_at: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class PatternRecord:
    """A structural match (function, struct or enum) found in a source file."""

    definition: str
    file: str
    repository: str
    url: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class CodeAnalysis:
    """Aggregate output of the code pattern analyzer."""

    total_files: int = 0
    total_lines: int = 0
    files_by_type: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    imports: list[str] = field(default_factory=list)
    functions: list[PatternRecord] = field(default_factory=list)
    structs: list[PatternRecord] = field(default_factory=list)
    enums: list[PatternRecord] = field(default_factory=list)
    by_topic: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    by_complexity: dict[str, list[dict[str, Any]]] = field(
        default_factory=lambda: {"simple": [], "intermediate": [], "advanced": []}
    )
    documentation: dict[str, list[dict[str, Any]]] = field(
        default_factory=lambda: {
            "readmes": [],
            "package_configs": [],
            "project_configs": [],
            "changelogs": [],
            "examples": [],
        }
    )

    def patterns_dict(self) -> dict[str, Any]:
        return {
            "imports": list(self.imports),
            "functions": [p.to_dict() for p in self.functions],
            "structs": [p.to_dict() for p in self.structs],
            "enums": [p.to_dict() for p in self.enums],
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_files": self.total_files,
            "total_lines": self.total_lines,
            "files_by_type": self.files_by_type,
            "patterns": self.patterns_dict(),
            "examples": {
                "by_topic": self.by_topic,
                "by_complexity": self.by_complexity,
            },
            "documentation": self.documentation,
        }
