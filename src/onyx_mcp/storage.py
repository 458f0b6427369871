"""Flat-file JSON persistence for the documentation and repository corpora.

Every file is written atomically (temp file + ``os.replace``) so a reader
never sees a half-written file. On top of that a small ``manifest.json``
records a generation counter and a ``writing`` / ``complete`` state per
corpus: writers flag the corpus before rewriting its files and clear the flag
afterwards, and the search engine refuses to load a corpus that is flagged
mid-write instead of mixing files from two different crawls.
"""

import json
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from loguru import logger

from onyx_mcp.models import CrawlStats, now_iso

DOCS_CORPUS = "docs"
GITHUB_CORPUS = "github"

DOCS_FILE = "onyx-docs.json"
DOCS_INDEX_FILE = "onyx-docs-index.json"
CRAWL_STATS_FILE = "crawl-stats.json"

REPOSITORIES_FILE = "github/repositories.json"
CODE_FILE = "github/onyx-code.json"
ANALYSIS_FILE = "github/code-analysis.json"
PATTERNS_FILE = "github/code-patterns.json"
TOPICS_FILE = "github/examples-by-topic.json"
DOCUMENTATION_FILE = "github/documentation.json"
FILE_TYPES_FILE = "github/file-types.json"

URLS_DIR = "urls"
MANIFEST_FILE = "manifest.json"

STATE_WRITING = "writing"
STATE_COMPLETE = "complete"


class CorpusStore:
    """Reads and writes the persisted corpora under one data directory."""

    def __init__(self, data_dir: Path):
        self._data_dir = Path(data_dir)

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def path(self, name: str) -> Path:
        return self._data_dir / name

    # --- raw JSON ---

    def write_json(self, name: str, data: Any) -> Path:
        """Atomically replace *name* with the JSON encoding of *data*."""
        target = self.path(name)
        target.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            dir=target.parent, prefix=f".{target.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.debug(f"Wrote {target}")
        return target

    def read_json(self, name: str) -> Any:
        """Load *name*; raises ``FileNotFoundError`` or ``ValueError``."""
        with open(self.path(name), encoding="utf-8") as f:
            return json.load(f)

    def exists(self, name: str) -> bool:
        return self.path(name).is_file()

    # --- manifest ---

    def _read_manifest(self) -> dict[str, dict[str, Any]]:
        try:
            data = self.read_json(MANIFEST_FILE)
        except FileNotFoundError:
            return {}
        except ValueError as e:
            logger.warning(f"Ignoring unreadable manifest: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def corpus_state(self, corpus: str) -> dict[str, Any] | None:
        """Manifest entry for *corpus*, or ``None`` if never written."""
        return self._read_manifest().get(corpus)

    def is_writing(self, corpus: str) -> bool:
        entry = self.corpus_state(corpus)
        return bool(entry) and entry.get("state") == STATE_WRITING

    def _set_state(self, corpus: str, state: str, bump: bool = False) -> int:
        manifest = self._read_manifest()
        entry = manifest.get(corpus, {"generation": 0})
        generation = int(entry.get("generation", 0)) + (1 if bump else 0)
        manifest[corpus] = {
            "generation": generation,
            "state": state,
            "updated_at": now_iso(),
        }
        self.write_json(MANIFEST_FILE, manifest)
        return generation

    @contextmanager
    def writing(self, corpus: str) -> Iterator[int]:
        """Flag *corpus* as mid-write for the duration of the block.

        Yields the new generation number. If the block raises, the corpus
        stays flagged and readers keep refusing it.
        """
        generation = self._set_state(corpus, STATE_WRITING, bump=True)
        logger.debug(f"Writing {corpus} corpus (generation {generation})")
        yield generation
        self._set_state(corpus, STATE_COMPLETE)
        logger.info(f"Saved {corpus} corpus (generation {generation})")

    # --- typed helpers ---

    def load_crawl_stats(self) -> CrawlStats | None:
        """Previous crawl stats, or ``None`` if absent or unreadable."""
        try:
            data = self.read_json(CRAWL_STATS_FILE)
        except FileNotFoundError:
            return None
        except ValueError as e:
            logger.debug(f"Could not read previous crawl stats: {e}")
            return None
        if not isinstance(data, dict):
            return None
        return CrawlStats.from_dict(data)
