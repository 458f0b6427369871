"""HTML content extraction for documentation pages.

Turns fetched markup into structured ``Document`` records: title, flattened
text, heading outline and code blocks with a best-effort language guess.

Link discovery (``find_doc_links``) must run on the markup *before*
``extract_document``: extraction strips navigation regions, which is where
most of the in-scope links live.
"""

import re

from bs4 import BeautifulSoup, Tag
from loguru import logger

from onyx_mcp.models import CodeExample, Document, Heading, now_iso
from onyx_mcp.urls import ScopePolicy, is_in_scope, normalize_url, resolve_link

# Regions removed before any text is read
_BOILERPLATE_SELECTOR = "footer, .navigation, .toc, script, style, nav"

# Main-content landmarks, tried in order
_MAIN_CONTENT_SELECTORS = (
    "#content main",
    "main",
    ".content",
    ".documentation",
    "article",
    ".docs-content",
    ".markdown-body",
)

_SIDEBAR_SELECTOR = "#sidebar, .sidebar, nav"
_HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]
_CODE_SELECTOR = "pre code, .code-example, .highlight, code"
_TITLE_SUFFIX = " - Onyx Documentation"

# Code fragments at or below this length are inline noise, not examples
_MIN_CODE_LENGTH = 10

_WHITESPACE_RE = re.compile(r"\s+")

# (class hint, language); checked in order against the element's classes,
# then the parent's
_DOCS_LANGUAGE_HINTS = (
    ("language-onyx", "onyx"),
    ("language-javascript", "javascript"),
    ("language-json", "json"),
    ("language-bash", "bash"),
)
_DOCS_ELEMENT_HINTS = (
    ("onyx", "onyx"),
    ("javascript", "javascript"),
    ("js", "javascript"),
    ("json", "json"),
)

_GENERIC_LANGUAGE_HINTS = (
    (("onyx",), "onyx"),
    (("javascript", "js"), "javascript"),
    (("python", "py"), "python"),
    (("java",), "java"),
    (("cpp", "c++"), "cpp"),
    (("rust",), "rust"),
    (("go",), "go"),
    (("bash", "shell"), "bash"),
    (("json",), "json"),
    (("yaml", "yml"), "yaml"),
    (("html",), "html"),
    (("css",), "css"),
)


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def _classes(el: Tag | None) -> str:
    if el is None:
        return ""
    value = el.get("class") or []
    if isinstance(value, str):
        return value
    return " ".join(value)


def _flatten(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def detect_language(el: Tag) -> str:
    """Guess a code block's language from class hints (default ``onyx``)."""
    classes = _classes(el)
    parent_classes = _classes(el.parent if isinstance(el.parent, Tag) else None)

    for hint, language in _DOCS_LANGUAGE_HINTS:
        if hint in classes or hint in parent_classes:
            return language
    for hint, language in _DOCS_ELEMENT_HINTS:
        if hint in classes:
            return language
    return "onyx"


def _detect_language_generic(el: Tag) -> str:
    parent = el.parent if isinstance(el.parent, Tag) else None
    all_classes = f"{_classes(el)} {_classes(parent)}"
    for hints, language in _GENERIC_LANGUAGE_HINTS:
        if any(hint in all_classes for hint in hints):
            return language
    return "unknown"


def _select_main_content(soup: BeautifulSoup) -> Tag | None:
    for selector in _MAIN_CONTENT_SELECTORS:
        found = soup.select_one(selector)
        if found is not None:
            return found

    body = soup.body or soup
    for el in body.select(_SIDEBAR_SELECTOR):
        el.decompose()
    return body


def _extract_title(soup: BeautifulSoup) -> str:
    h1 = soup.find("h1")
    if h1 is not None:
        text = h1.get_text(strip=True)
        if text:
            return text

    if soup.title is not None:
        text = soup.title.get_text().replace(_TITLE_SUFFIX, "").strip()
        if text:
            return text

    og_title = soup.find("meta", attrs={"property": "og:title"})
    if og_title is not None and og_title.get("content"):
        return str(og_title["content"]).strip()

    return "Untitled"


def _extract_headings(content: Tag) -> list[Heading]:
    headings: list[Heading] = []
    for el in content.find_all(_HEADING_TAGS):
        text = el.get_text(strip=True)
        if text:
            headings.append(Heading(level=int(el.name[1]), text=text, id=el.get("id")))
    return headings


def _code_context(el: Tag) -> str:
    heading = el.find_previous(["h1", "h2", "h3", "h4"])
    return heading.get_text(strip=True) if heading is not None else ""


def extract_document(soup: BeautifulSoup, url: str) -> Document | None:
    """Build a ``Document`` from a parsed page.

    Mutates *soup* (boilerplate regions are removed). Returns ``None`` when
    nothing but boilerplate was on the page.
    """
    for el in soup.select(_BOILERPLATE_SELECTOR):
        el.decompose()

    content = _select_main_content(soup)
    if content is None:
        return None

    title = _extract_title(soup)
    headings = _extract_headings(content)

    code_examples: list[CodeExample] = []
    for el in content.select(_CODE_SELECTOR):
        code = el.get_text().strip()
        if len(code) > _MIN_CODE_LENGTH:
            code_examples.append(
                CodeExample(
                    code=code,
                    language=detect_language(el),
                    context=_code_context(el),
                )
            )

    text = _flatten(content.get_text(" "))
    if not text:
        logger.debug(f"No content extracted from: {url}")
        return None

    logger.debug(
        f"Extracted: title={title!r}, headings={len(headings)}, "
        f"code={len(code_examples)}, content={len(text)} chars"
    )
    return Document(
        url=url,
        title=title,
        content=text,
        headings=tuple(headings),
        code_examples=tuple(code_examples),
        crawled_at=now_iso(),
    )


def find_doc_links(
    soup: BeautifulSoup, page_url: str, policy: ScopePolicy
) -> list[str]:
    """Collect normalized, in-scope links from the raw page markup."""
    links: dict[str, None] = {}
    total = 0
    for a in soup.find_all("a", href=True):
        href = a["href"]
        if not href:
            continue
        total += 1
        if not is_in_scope(href, page_url, policy):
            continue
        resolved = resolve_link(href, page_url)
        normalized = normalize_url(resolved) if resolved else None
        if normalized:
            links.setdefault(normalized, None)

    logger.debug(
        f"Link stats for {page_url}: {total} found, {len(links)} valid, "
        f"{total - len(links)} skipped"
    )
    return list(links)


def extract_page(html: str, url: str, extract_code: bool = True) -> dict:
    """Extract a single arbitrary page (no crawl scope).

    Used for one-off URL ingestion. Title prefers ``<title>``; code blocks use
    a broader language table than the docs crawler.
    """
    soup = parse_html(html)
    for el in soup.select("script, style, nav, footer, .navigation, .sidebar"):
        el.decompose()

    title = ""
    if soup.title is not None:
        title = soup.title.get_text(strip=True)
    if not title:
        h1 = soup.find("h1")
        title = h1.get_text(strip=True) if h1 is not None else ""
    title = title or "Untitled"

    content = soup.select_one("main, article, .content, .post, .entry")
    if content is None:
        content = soup.body or soup

    text = _flatten(content.get_text(" "))
    headings = _extract_headings(content)

    code_blocks: list[dict] = []
    if extract_code:
        for el in content.select("pre, code, .code, .highlight, .codehilite"):
            code = el.get_text().strip()
            if len(code) > 5:
                code_blocks.append(
                    {
                        "code": code,
                        "language": _detect_language_generic(el),
                        "context": _code_context(el),
                    }
                )

    links: list[dict] = []
    for a in content.find_all("a", href=True):
        link_text = a.get_text(strip=True)
        resolved = resolve_link(a["href"], url)
        if resolved and link_text:
            links.append({"url": resolved, "text": link_text})

    return {
        "url": url,
        "title": title,
        "content": text,
        "headings": [{"level": h.level, "text": h.text} for h in headings],
        "code_blocks": code_blocks,
        "links": links[:20],
        "content_length": len(text),
        "code_block_count": len(code_blocks),
        "crawled_at": now_iso(),
    }
