"""Onyx MCP Server - Onyx language docs and code examples for AI agents."""

from importlib.metadata import version

from onyx_mcp.__main__ import _cli as main
from onyx_mcp.search import SearchEngine

__version__ = version("onyx-mcp")
__all__ = ["SearchEngine", "main", "__version__"]
