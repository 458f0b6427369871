"""URL canonicalization and crawl-scope checks.

Both helpers are pure: no I/O and no shared state, so the crawler's frontier
and visited set can rely on them treating equivalent URLs identically.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from loguru import logger

_REJECTED_SCHEMES = ("mailto:", "tel:", "javascript:")


def normalize_url(url: str) -> str | None:
    """Canonicalize an absolute URL.

    Drops the fragment, sorts query parameters by key and removes a trailing
    slash from non-root paths. Returns ``None`` when the input is not an
    absolute URL.
    """
    try:
        parts = urlsplit(url.strip())
    except (ValueError, AttributeError):
        return None

    if not parts.scheme or not parts.netloc:
        return None

    # First value wins for repeated keys
    params: dict[str, str] = {}
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        params.setdefault(key, value)
    query = urlencode(sorted(params.items()))

    path = parts.path or "/"
    if path != "/" and path.endswith("/"):
        path = path[:-1]

    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), path, query, "")
    )


@dataclass(frozen=True)
class ScopePolicy:
    """Allow-list describing which links a documentation crawl may follow."""

    host: str
    allowed_prefixes: tuple[str, ...]
    excluded_substrings: tuple[str, ...] = ("/print.html", "favicon")
    excluded_paths: tuple[str, ...] = ()
    blocked_link_substrings: tuple[str, ...] = (
        "github.com",
        "twitter.com",
        "onyxlang.io/playground",
        "webassembly.org",
    )

    @classmethod
    def from_settings(cls, settings) -> ScopePolicy:
        """Build the policy for the configured docs host.

        The bare prefix pages (``/book/``, ``/packages/``) are excluded; they
        only redirect into the real content.
        """
        prefixes = tuple(settings.docs_allowed_prefixes)
        return cls(
            host=settings.docs_host,
            allowed_prefixes=prefixes,
            excluded_paths=prefixes,
        )


def resolve_link(link: str, page_url: str) -> str | None:
    """Resolve *link* against *page_url*; ``None`` for non-HTTP targets."""
    href = link.strip()
    if not href or href.lower().startswith(_REJECTED_SCHEMES):
        return None
    try:
        full_url = urljoin(page_url, href)
        parts = urlsplit(full_url)
    except ValueError:
        return None
    if parts.scheme not in ("http", "https"):
        return None
    return full_url


def is_in_scope(link: str, page_url: str, policy: ScopePolicy) -> bool:
    """Decide whether a discovered link should be queued.

    Hard allow-list: exact host, an allowed path prefix, and no exclusion.
    """
    if any(blocked in link for blocked in policy.blocked_link_substrings):
        return False

    full_url = resolve_link(link, page_url)
    if full_url is None:
        return False

    parts = urlsplit(full_url)
    if parts.hostname != policy.host:
        return False

    path = parts.path
    if not path.startswith(policy.allowed_prefixes):
        return False
    if any(excluded in path for excluded in policy.excluded_substrings):
        logger.debug(f"Excluded link: {full_url}")
        return False
    if path in policy.excluded_paths:
        return False
    return True
