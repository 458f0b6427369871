"""Code pattern analysis over harvested repository files.

Extracts imports, function signatures and struct/enum bodies from Onyx
sources, assigns a complexity tier, tags files with topics and builds
documentation digests (README summaries, package and KDL metadata).

Structural extraction is a best-effort text heuristic, not a parser: the
struct/enum patterns stop at the first closing brace, so nested bodies are
truncated. It sits behind ``PatternExtractor`` so a real tokenizer can replace
``RegexPatternExtractor`` without touching callers.
"""

import json
import re
from typing import Any, Protocol

from loguru import logger

from onyx_mcp.models import CodeAnalysis, PatternRecord, RepositoryFile

# ---------------------------------------------------------------------------
# Structural extraction
# ---------------------------------------------------------------------------

_USE_RE = re.compile(r"use\s+[\w.{}*,\s]+")
_FUNCTION_RE = re.compile(r"(\w+)\s*::\s*\([^)]*\)\s*(->\s*[\w\[\]]+)?\s*\{")
_STRUCT_RE = re.compile(r"(\w+)\s*::\s*struct[^{]*\{[^}]*\}", re.DOTALL)
_ENUM_RE = re.compile(r"(\w+)\s*::\s*enum[^{]*\{[^}]*\}", re.DOTALL)


class PatternExtractor(Protocol):
    """Finds structural definitions in source text."""

    def imports(self, code: str) -> list[str]: ...

    def functions(self, code: str) -> list[str]: ...

    def structs(self, code: str) -> list[str]: ...

    def enums(self, code: str) -> list[str]: ...


class RegexPatternExtractor:
    """Regex heuristics for Onyx ``use`` statements and ``::`` definitions."""

    def imports(self, code: str) -> list[str]:
        return [m.group(0).strip() for m in _USE_RE.finditer(code)]

    def functions(self, code: str) -> list[str]:
        return [m.group(0).strip() for m in _FUNCTION_RE.finditer(code)]

    def structs(self, code: str) -> list[str]:
        return [m.group(0).strip() for m in _STRUCT_RE.finditer(code)]

    def enums(self, code: str) -> list[str]:
        return [m.group(0).strip() for m in _ENUM_RE.finditer(code)]


# ---------------------------------------------------------------------------
# Complexity
# ---------------------------------------------------------------------------

_COMPLEX_PATTERNS = (
    re.compile(r"struct.*\{[\s\S]*?\}"),
    re.compile(r"enum.*\{[\s\S]*?\}"),
    re.compile(r"macro"),
    re.compile(r"generic"),
    re.compile(r"interface"),
)
_COMPLEX_PENALTY = 10
_SIMPLE_BELOW = 50
_INTERMEDIATE_BELOW = 200


def determine_complexity(code: str, line_count: int) -> str:
    """Tier a file as ``simple``, ``intermediate`` or ``advanced``."""
    score = line_count
    for pattern in _COMPLEX_PATTERNS:
        score += len(pattern.findall(code)) * _COMPLEX_PENALTY

    if score < _SIMPLE_BELOW:
        return "simple"
    if score < _INTERMEDIATE_BELOW:
        return "intermediate"
    return "advanced"


# ---------------------------------------------------------------------------
# Topics
# ---------------------------------------------------------------------------

# Every matching rule contributes its topic (union, not first match)
_PATH_TOPICS = (
    (re.compile(r"test|spec"), "testing"),
    (re.compile(r"example"), "examples"),
    (re.compile(r"http|net|web"), "networking"),
    (re.compile(r"json|xml|csv"), "data-formats"),
    (re.compile(r"crypto|hash"), "cryptography"),
    (re.compile(r"math"), "mathematics"),
    (re.compile(r"string"), "string-manipulation"),
    (re.compile(r"file|io"), "file-io"),
    (re.compile(r"thread|async"), "concurrency"),
    (re.compile(r"memory|alloc"), "memory-management"),
    (re.compile(r"html|web|ui"), "web-development"),
    (re.compile(r"doc|guide|manual"), "documentation"),
    (re.compile(r"tutorial|learn"), "tutorials"),
)

_CODE_TOPICS = (
    (re.compile(r"use\s+core\.net"), "networking"),
    (re.compile(r"use\s+core\.json"), "data-formats"),
    (re.compile(r"use\s+core\.crypto"), "cryptography"),
    (re.compile(r"use\s+core\.math"), "mathematics"),
    (re.compile(r"use\s+core\.string"), "string-manipulation"),
    (re.compile(r"use\s+core\.io"), "file-io"),
    (re.compile(r"use\s+core\.thread"), "concurrency"),
    (re.compile(r"println|printf"), "basic-io"),
    (re.compile(r"struct.*\{"), "data-structures"),
    (re.compile(r"enum.*\{"), "enumerations"),
)

_HTML_TOPICS = (
    (
        re.compile(r"<script[^>]*>.*onyx", re.IGNORECASE | re.DOTALL),
        "web-onyx-integration",
    ),
    (re.compile(r"<pre[^>]*>.*\.onyx", re.IGNORECASE | re.DOTALL), "onyx-examples"),
    (
        re.compile(r"api\s+documentation|reference", re.IGNORECASE),
        "api-documentation",
    ),
    (re.compile(r"getting\s+started|tutorial", re.IGNORECASE), "tutorials"),
    (re.compile(r"example|demo", re.IGNORECASE), "examples"),
    (re.compile(r"guide|manual", re.IGNORECASE), "documentation"),
)


def extract_topics(file_path: str, code: str) -> list[str]:
    """Tag a file with every topic whose path or content rule matches.

    HTML files run the HTML rules instead of the source rules and always
    carry ``web-development``.
    """
    topics: dict[str, None] = {}
    path = file_path.lower()

    for pattern, topic in _PATH_TOPICS:
        if pattern.search(path):
            topics.setdefault(topic, None)

    is_html = path.endswith(".html")
    for pattern, topic in _HTML_TOPICS if is_html else _CODE_TOPICS:
        if pattern.search(code):
            topics.setdefault(topic, None)
    if is_html:
        topics.setdefault("web-development", None)

    return list(topics)


# ---------------------------------------------------------------------------
# Documentation digests
# ---------------------------------------------------------------------------

_KEY_VALUE_RE = re.compile(r"^\s*(\w+)\s*[=:]\s*(.+)$")
_KDL_SETTING_RE = re.compile(r"^(\w+)\s+(.+)$")


def extract_readme_summary(content: str) -> str:
    """First three substantial lines among the first twenty."""
    summary: list[str] = []
    for line in content.splitlines()[:20]:
        trimmed = line.strip()
        if trimmed and not trimmed.startswith("#") and not trimmed.startswith("!["):
            summary.append(trimmed)
            if len(summary) >= 3:
                break
    return " ".join(summary)


def extract_package_metadata(content: str, file_path: str) -> dict[str, Any]:
    """Metadata from ``package.json``-style or ``onyx.pkg`` files."""
    metadata: dict[str, Any] = {"type": "unknown"}

    if file_path.endswith(".json"):
        try:
            parsed = json.loads(content)
        except ValueError as e:
            metadata["parse_error"] = str(e)
            return metadata
        metadata["type"] = "json"
        metadata["data"] = parsed
        if isinstance(parsed, dict):
            metadata["name"] = parsed.get("name")
            metadata["version"] = parsed.get("version")
            metadata["description"] = parsed.get("description")
        return metadata

    metadata["type"] = "onyx-pkg"
    metadata["raw_content"] = content
    for line in content.splitlines():
        match = _KEY_VALUE_RE.match(line)
        if match:
            key, value = match.groups()
            metadata[key] = value.replace('"', "").replace("'", "").strip()
    return metadata


def extract_kdl_metadata(content: str) -> dict[str, Any]:
    """Dependency lines and top-level settings from a KDL project file."""
    metadata: dict[str, Any] = {
        "type": "kdl",
        "raw_content": content,
        "dependencies": [],
        "configuration": {},
    }
    for line in content.splitlines():
        trimmed = line.strip()
        if "dependency" in trimmed or "dep" in trimmed:
            metadata["dependencies"].append(trimmed)
        match = _KDL_SETTING_RE.match(trimmed)
        if match:
            key, value = match.groups()
            metadata["configuration"][key] = value
    return metadata


# ---------------------------------------------------------------------------
# Aggregate analysis
# ---------------------------------------------------------------------------


def _is_source(file: RepositoryFile) -> bool:
    return file.file_type == "source" or file.path.endswith(".onyx")


def _file_ref(file: RepositoryFile) -> dict[str, Any]:
    return {"repository": file.repository, "path": file.path, "url": file.url}


def _add_topics(analysis: CodeAnalysis, file: RepositoryFile) -> None:
    for topic in extract_topics(file.path, file.content):
        analysis.by_topic.setdefault(topic, []).append(
            {**_file_ref(file), "code": file.content, "file_type": file.file_type}
        )


def _collect_documentation(analysis: CodeAnalysis, file: RepositoryFile) -> None:
    docs = analysis.documentation
    match file.file_type:
        case "readme":
            docs["readmes"].append(
                {
                    **_file_ref(file),
                    "content": file.content,
                    "summary": extract_readme_summary(file.content),
                }
            )
        case "package-config":
            docs["package_configs"].append(
                {
                    **_file_ref(file),
                    "content": file.content,
                    "metadata": extract_package_metadata(file.content, file.path),
                }
            )
        case "project-config":
            docs["project_configs"].append(
                {
                    **_file_ref(file),
                    "content": file.content,
                    "metadata": extract_kdl_metadata(file.content),
                }
            )
        case "changelog":
            docs["changelogs"].append({**_file_ref(file), "content": file.content})
        case "documentation" | "web-content" | "web-index" | "example":
            docs["examples"].append(
                {
                    **_file_ref(file),
                    "content": file.content,
                    "file_type": file.file_type,
                    "is_html": file.path.lower().endswith(".html"),
                }
            )


def analyze_files(
    files: list[RepositoryFile],
    extractor: PatternExtractor | None = None,
) -> CodeAnalysis:
    """Aggregate patterns, complexity tiers, topics and docs over *files*."""
    extractor = extractor or RegexPatternExtractor()
    analysis = CodeAnalysis(total_files=len(files))
    imports: dict[str, None] = {}

    for file in files:
        analysis.files_by_type.setdefault(file.file_type or "unknown", []).append(
            {**_file_ref(file), "size": file.size}
        )

        lines = file.content.split("\n")
        analysis.total_lines += len(lines)

        _collect_documentation(analysis, file)

        if file.path.lower().endswith(".html"):
            _add_topics(analysis, file)
            continue
        if not _is_source(file):
            continue

        for statement in extractor.imports(file.content):
            imports.setdefault(statement, None)

        ref = {"file": file.path, "repository": file.repository, "url": file.url}
        analysis.functions.extend(
            PatternRecord(definition=d, **ref) for d in extractor.functions(file.content)
        )
        analysis.structs.extend(
            PatternRecord(definition=d, **ref) for d in extractor.structs(file.content)
        )
        analysis.enums.extend(
            PatternRecord(definition=d, **ref) for d in extractor.enums(file.content)
        )

        complexity = determine_complexity(file.content, len(lines))
        analysis.by_complexity[complexity].append(
            {**_file_ref(file), "code": file.content, "lines": len(lines)}
        )

        _add_topics(analysis, file)

    analysis.imports = list(imports)
    logger.info(
        f"Analyzed {analysis.total_files} files ({analysis.total_lines} lines): "
        f"{len(analysis.functions)} functions, {len(analysis.structs)} structs, "
        f"{len(analysis.enums)} enums, {len(analysis.by_topic)} topics"
    )
    return analysis
