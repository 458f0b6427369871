"""Keyword search over the persisted corpora.

Scoring is a weighted, case-insensitive substring match: no tokenization,
no stemming, no inverted index. Each corpus file is loaded on first use and
cached until its corpus generation changes; ``reload()`` drops the cache.

A corpus that is flagged mid-write in the manifest is refused (and not
cached) so a query never mixes files from two different crawls.
"""

import math
from typing import Any

from loguru import logger

from onyx_mcp.storage import (
    CODE_FILE,
    DOCS_CORPUS,
    DOCS_FILE,
    GITHUB_CORPUS,
    PATTERNS_FILE,
    REPOSITORIES_FILE,
    STATE_WRITING,
    TOPICS_FILE,
    CorpusStore,
)

# kind -> (corpus, file, message when missing)
_SOURCES = {
    "docs": (
        DOCS_CORPUS,
        DOCS_FILE,
        "Documentation not available. Run the docs crawler first.",
    ),
    "github_files": (
        GITHUB_CORPUS,
        CODE_FILE,
        "GitHub code not available. Run the GitHub crawler first.",
    ),
    "github_patterns": (
        GITHUB_CORPUS,
        PATTERNS_FILE,
        "GitHub patterns not available. Run the GitHub crawler first.",
    ),
    "examples_by_topic": (
        GITHUB_CORPUS,
        TOPICS_FILE,
        "GitHub examples not available. Run the GitHub crawler first.",
    ),
    "repositories": (
        GITHUB_CORPUS,
        REPOSITORIES_FILE,
        "Repository list not available. Run the GitHub crawler first.",
    ),
}

TITLE_WEIGHT = 10
HEADING_WEIGHT = 5
CONTENT_WEIGHT = 1

PATH_WEIGHT = 5
REPOSITORY_WEIGHT = 3
CODE_WEIGHT = 1

MAX_EXAMPLE_CODE = 1000

SORT_KEYS = ("stars", "name", "updated")


class CorpusUnavailableError(Exception):
    """A corpus file is missing, unreadable or mid-write."""


def get_snippet(content: str, query: str, context_length: int = 150) -> str:
    """Window of *content* around the first occurrence of *query*.

    Ellipsized on each truncated side; the head of the content when the
    query does not occur.
    """
    index = content.lower().find(query.lower())
    if index == -1:
        return content[:context_length] + "..."

    half = context_length // 2
    start = max(0, index - half)
    end = min(len(content), index + len(query) + half)
    prefix = "..." if start > 0 else ""
    suffix = "..." if end < len(content) else ""
    return f"{prefix}{content[start:end]}{suffix}"


class SearchEngine:
    """Query interface over the docs and repository corpora."""

    def __init__(self, store: CorpusStore):
        self.store = store
        # kind -> (corpus generation, loaded data or the load failure)
        self._cache: dict[str, tuple[int | None, Any]] = {}

    def reload(self) -> None:
        """Forget every cached corpus, including cached failures."""
        self._cache.clear()

    def _load(self, kind: str) -> Any:
        corpus, name, missing = _SOURCES[kind]
        entry = self.store.corpus_state(corpus) or {}
        if entry.get("state") == STATE_WRITING:
            logger.warning(f"Refusing to load {name}: {corpus} corpus is mid-write")
            raise CorpusUnavailableError(
                f"The {corpus} corpus is being rewritten by a crawl. Try again shortly."
            )

        # A finished crawl bumps the generation, which invalidates the entry
        generation = entry.get("generation")
        cached = self._cache.get(kind)
        if cached is not None and cached[0] == generation:
            if isinstance(cached[1], CorpusUnavailableError):
                raise cached[1]
            return cached[1]

        try:
            data = self.store.read_json(name)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load {name}: {e}")
            error = CorpusUnavailableError(missing)
            self._cache[kind] = (generation, error)
            raise error from e

        self._cache[kind] = (generation, data)
        logger.debug(f"Loaded {name} (generation {generation})")
        return data

    # ------------------------------------------------------------------
    # Documentation
    # ------------------------------------------------------------------

    def search_docs(self, query: str, limit: int = 5) -> dict[str, Any]:
        """Rank documents by title, heading and body matches."""
        try:
            docs = self._load("docs")
        except CorpusUnavailableError as e:
            return {"error": str(e)}

        needle = query.lower()
        scored: list[tuple[int, dict[str, Any]]] = []
        for doc in docs:
            score = 0
            if needle in doc.get("title", "").lower():
                score += TITLE_WEIGHT
            if needle in doc.get("content", "").lower():
                score += CONTENT_WEIGHT
            for heading in doc.get("headings", []):
                if needle in heading.get("text", "").lower():
                    score += HEADING_WEIGHT
            if score > 0:
                scored.append((score, doc))

        scored.sort(key=lambda item: item[0], reverse=True)
        return {
            "query": query,
            "source": "documentation",
            "total_found": len(scored),
            "results": [
                {
                    "title": doc.get("title", ""),
                    "url": doc.get("url", ""),
                    "snippet": get_snippet(doc.get("content", ""), query),
                    "headings": [h.get("text", "") for h in doc.get("headings", [])][
                        :3
                    ],
                    "score": score,
                }
                for score, doc in scored[:limit]
            ],
        }

    # ------------------------------------------------------------------
    # Repository corpus
    # ------------------------------------------------------------------

    def search_github_examples(self, topic: str, limit: int = 5) -> dict[str, Any]:
        """Examples from every topic that contains, or is contained in, *topic*."""
        try:
            by_topic = self._load("examples_by_topic")
        except CorpusUnavailableError as e:
            return {"error": str(e)}

        available = sorted(by_topic)
        needle = topic.lower()
        matching = [t for t in by_topic if t.lower() in needle or needle in t.lower()]

        if not matching:
            return {
                "query": topic,
                "available_topics": available,
                "examples": [],
                "message": (
                    f'No examples found for topic "{topic}". '
                    "Try one of the available topics."
                ),
            }

        per_topic = math.ceil(limit / len(matching))
        examples: list[dict[str, Any]] = []
        for name in matching:
            examples.extend(by_topic.get(name, [])[:per_topic])

        return {
            "query": topic,
            "matching_topics": matching,
            "examples": [self._example_result(e) for e in examples[:limit]],
            "total_available": len(examples),
            "available_topics": available,
        }

    @staticmethod
    def _example_result(example: dict[str, Any]) -> dict[str, Any]:
        code = example.get("code", "")
        if len(code) > MAX_EXAMPLE_CODE:
            shown = code[:MAX_EXAMPLE_CODE] + "\n... (truncated)"
        else:
            shown = code
        return {
            "file": example.get("path", ""),
            "repository": example.get("repository", ""),
            "url": example.get("url", ""),
            "code": shown,
            "full_code_length": len(code),
        }

    def _pattern_examples(
        self, kind: str, name: str | None, limit: int
    ) -> dict[str, Any]:
        try:
            patterns = self._load("github_patterns")
        except CorpusUnavailableError as e:
            return {"error": str(e)}

        records = patterns.get(kind, [])
        if name:
            needle = name.lower()
            records = [r for r in records if needle in r.get("definition", "").lower()]

        return {
            "query": name,
            "total_found": len(records),
            "examples": [
                {
                    "definition": r.get("definition", ""),
                    "file": r.get("file", ""),
                    "repository": r.get("repository", ""),
                    "url": r.get("url", ""),
                }
                for r in records[:limit]
            ],
        }

    def get_functions(self, name: str | None = None, limit: int = 10) -> dict[str, Any]:
        """Function definitions, optionally filtered by partial name."""
        return self._pattern_examples("functions", name, limit)

    def get_structs(self, name: str | None = None, limit: int = 10) -> dict[str, Any]:
        """Struct definitions, optionally filtered by partial name."""
        return self._pattern_examples("structs", name, limit)

    def list_repositories(self, sort_by: str = "stars") -> dict[str, Any]:
        if sort_by not in SORT_KEYS:
            return {
                "error": f"Unknown sort key: {sort_by}. Use one of {', '.join(SORT_KEYS)}."
            }
        try:
            repos = list(self._load("repositories"))
        except CorpusUnavailableError as e:
            return {"error": str(e)}

        match sort_by:
            case "stars":
                repos.sort(key=lambda r: r.get("stars") or 0, reverse=True)
            case "name":
                repos.sort(key=lambda r: (r.get("name") or "").lower())
            case "updated":
                repos.sort(key=lambda r: r.get("last_updated") or "", reverse=True)

        return {
            "total_repos": len(repos),
            "sorted_by": sort_by,
            "repositories": [
                {
                    "name": r.get("full_name", ""),
                    "description": r.get("description", ""),
                    "stars": r.get("stars", 0),
                    "url": r.get("url", ""),
                    "language": r.get("language"),
                    "last_updated": r.get("last_updated"),
                }
                for r in repos
            ],
        }

    def search_github_files(self, query: str, limit: int) -> dict[str, Any]:
        """Rank raw repository files by path, repository and content matches."""
        try:
            files = self._load("github_files")
        except CorpusUnavailableError as e:
            return {"error": str(e)}

        needle = query.lower()
        scored: list[dict[str, Any]] = []
        for file in files:
            content = file.get("content", "")
            score = 0
            if needle in file.get("path", "").lower():
                score += PATH_WEIGHT
            if needle in file.get("repository", "").lower():
                score += REPOSITORY_WEIGHT
            if needle in content.lower():
                score += CODE_WEIGHT
            if score > 0:
                scored.append(
                    {
                        "file": file.get("path", ""),
                        "repository": file.get("repository", ""),
                        "url": file.get("url", ""),
                        "score": score,
                        "code_snippet": get_snippet(content, query, 200),
                    }
                )

        scored.sort(key=lambda r: r["score"], reverse=True)
        return {"source": "github", "total_found": len(scored), "results": scored[:limit]}

    # ------------------------------------------------------------------
    # Unified
    # ------------------------------------------------------------------

    def search_all(
        self,
        query: str,
        sources: list[str] | tuple[str, ...] = ("docs", "github"),
        limit: int = 10,
    ) -> dict[str, Any]:
        """Search each source with an even share of *limit* and merge by score.

        An unavailable source reports ``{"error": ...}`` in its slot; the
        others still contribute.
        """
        sources = [s for s in dict.fromkeys(sources) if s in ("docs", "github")]
        result: dict[str, Any] = {
            "query": query,
            "sources": sources,
            "total_results": 0,
            "results_by_source": {},
            "combined_results": [],
        }
        if not sources:
            return result

        per_source = math.ceil(limit / len(sources))
        by_source = result["results_by_source"]
        if "docs" in sources:
            by_source["docs"] = self.search_docs(query, per_source)
        if "github" in sources:
            by_source["github"] = self.search_github_files(query, per_source)

        combined: list[dict[str, Any]] = []
        for source_result in by_source.values():
            if "error" in source_result:
                continue
            result["total_results"] += source_result.get("total_found", 0)
            combined.extend(
                {**item, "source": source_result["source"]}
                for item in source_result["results"]
            )

        combined.sort(key=lambda r: r.get("score", 0), reverse=True)
        result["combined_results"] = combined[:limit]
        return result
