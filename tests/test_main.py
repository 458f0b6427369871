"""Tests for onyx_mcp.__main__: CLI dispatcher."""

import json
import sys
from unittest.mock import AsyncMock, patch

import pytest

from onyx_mcp.models import CrawlState
from onyx_mcp.sources.docs import CrawlReport
from onyx_mcp.sources.github import HarvestReport


class TestCli:
    """CLI dispatcher routes subcommands correctly."""

    @patch("onyx_mcp.server.main")
    def test_default_runs_server(self, mock_main):
        from onyx_mcp.__main__ import _cli

        with patch.object(sys, "argv", ["onyx-mcp"]):
            _cli()
        mock_main.assert_called_once()

    @patch("onyx_mcp.server.main")
    def test_server_subcommand(self, mock_main):
        from onyx_mcp.__main__ import _cli

        with patch.object(sys, "argv", ["onyx-mcp", "server"]):
            _cli()
        mock_main.assert_called_once()

    def test_crawl_docs(self, capsys):
        from onyx_mcp.__main__ import _cli

        report = CrawlReport(state=CrawlState.DONE, documents=3)
        with (
            patch(
                "onyx_mcp.sources.docs.crawl_documentation",
                new_callable=AsyncMock,
                return_value=report,
            ) as mock_crawl,
            patch.object(
                sys, "argv", ["onyx-mcp", "crawl-docs", "--force", "https://x.test/a"]
            ),
            pytest.raises(SystemExit) as exc,
        ):
            _cli()

        assert exc.value.code == 0
        mock_crawl.assert_awaited_once_with(["https://x.test/a"], force=True)
        assert json.loads(capsys.readouterr().out)["documents"] == 3

    def test_crawl_docs_aborted_exit_code(self):
        from onyx_mcp.__main__ import _cli

        report = CrawlReport(state=CrawlState.ABORTED)
        with (
            patch(
                "onyx_mcp.sources.docs.crawl_documentation",
                new_callable=AsyncMock,
                return_value=report,
            ),
            patch.object(sys, "argv", ["onyx-mcp", "crawl-docs"]),
            pytest.raises(SystemExit) as exc,
        ):
            _cli()

        assert exc.value.code == 1

    def test_crawl_github_with_limit(self):
        from onyx_mcp.__main__ import _cli

        with (
            patch(
                "onyx_mcp.sources.github.crawl_github",
                new_callable=AsyncMock,
                return_value=HarvestReport(),
            ) as mock_crawl,
            patch.object(
                sys, "argv", ["onyx-mcp", "crawl-github", "--limit", "3", "onyx-lang/onyx"]
            ),
            pytest.raises(SystemExit),
        ):
            _cli()

        mock_crawl.assert_awaited_once_with(["onyx-lang/onyx"], limit=3)

    def test_crawl_github_bad_limit(self):
        from onyx_mcp.__main__ import _cli

        with (
            patch.object(sys, "argv", ["onyx-mcp", "crawl-github", "--limit", "many"]),
            pytest.raises(SystemExit) as exc,
        ):
            _cli()

        assert exc.value.code == 2

    def test_crawl_url_requires_one_url(self):
        from onyx_mcp.__main__ import _cli

        with (
            patch.object(sys, "argv", ["onyx-mcp", "crawl-url"]),
            pytest.raises(SystemExit) as exc,
        ):
            _cli()

        assert exc.value.code == 2

    def test_unknown_command(self, capsys):
        from onyx_mcp.__main__ import _cli

        with (
            patch.object(sys, "argv", ["onyx-mcp", "frobnicate"]),
            pytest.raises(SystemExit) as exc,
        ):
            _cli()

        assert exc.value.code == 2
        assert "unknown command" in capsys.readouterr().err
