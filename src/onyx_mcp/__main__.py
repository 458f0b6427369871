"""Onyx MCP Server entry point."""

import asyncio
import json
import sys

_USAGE = """\
usage: onyx-mcp [command] [args]

commands:
  server                               run the MCP server on stdio (default)
  crawl-docs [--force] [URL ...]       crawl the Onyx documentation site
  crawl-github [--limit N] [REPO ...]  harvest Onyx code from GitHub
  crawl-all [--force]                  crawl-docs followed by crawl-github
  crawl-url [--no-code] URL            extract a single page
"""


def _configure_logging() -> None:
    from loguru import logger

    from onyx_mcp.config import settings

    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)


def _print(result: dict) -> None:
    print(json.dumps(result, ensure_ascii=False, indent=2))


def _crawl_docs(args: list[str]) -> int:
    """Crawl the documentation seeds (or the given URLs).

    Seeds crawled within RECRAWL_THRESHOLD_DAYS are skipped unless --force.
    """
    from onyx_mcp.models import CrawlState
    from onyx_mcp.sources.docs import crawl_documentation

    force = "--force" in args
    urls = [a for a in args if not a.startswith("--")]
    report = asyncio.run(crawl_documentation(urls or None, force=force))
    _print(report.to_dict())
    return 1 if report.state is CrawlState.ABORTED else 0


def _crawl_github(args: list[str]) -> int:
    from onyx_mcp.sources.github import crawl_github

    limit = None
    references: list[str] = []
    it = iter(args)
    for arg in it:
        if arg == "--limit":
            value = next(it, None)
            if value is None or not value.isdigit():
                print("Error: --limit requires a number", file=sys.stderr)
                return 2
            limit = int(value)
        else:
            references.append(arg)

    report = asyncio.run(crawl_github(references or None, limit=limit))
    _print(report.to_dict())
    return 0 if report.repositories else 1


def _crawl_url(args: list[str]) -> int:
    from onyx_mcp.sources.docs import crawl_url

    urls = [a for a in args if not a.startswith("--")]
    if len(urls) != 1:
        print("Error: crawl-url takes exactly one URL", file=sys.stderr)
        return 2

    result = asyncio.run(crawl_url(urls[0], extract_code="--no-code" not in args))
    _print(
        {k: v for k, v in result.items() if k not in ("content", "code_blocks")}
        | {"content_preview": result.get("content", "")[:200]}
    )
    return 1 if "error" in result else 0


def _cli() -> None:
    """CLI dispatcher: server (default), or a crawl subcommand."""
    command = sys.argv[1] if len(sys.argv) >= 2 else "server"
    args = sys.argv[2:]

    match command:
        case "server":
            from onyx_mcp.server import main

            main()
        case "crawl-docs":
            _configure_logging()
            sys.exit(_crawl_docs(args))
        case "crawl-github":
            _configure_logging()
            sys.exit(_crawl_github(args))
        case "crawl-all":
            _configure_logging()
            docs_status = _crawl_docs([a for a in args if a == "--force"])
            github_status = _crawl_github([])
            sys.exit(docs_status or github_status)
        case "crawl-url":
            _configure_logging()
            sys.exit(_crawl_url(args))
        case "-h" | "--help" | "help":
            print(_USAGE, end="")
        case _:
            print(f"Error: unknown command '{command}'\n", file=sys.stderr)
            print(_USAGE, end="", file=sys.stderr)
            sys.exit(2)


if __name__ == "__main__":
    _cli()
