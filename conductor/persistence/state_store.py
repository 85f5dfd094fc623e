"""File-backed state store for agent definitions, cache, metrics and cost config.

Every concern is one JSON document under a dot-prefixed directory in the
project root::

    .conductor/
        agents/<Name>.agent.definition.json   one file per agent
        response_cache.json                   single JSON map
        token_metrics.jsonl                   append-only, one record per line
        cost_config.json                      budgets and speed thresholds

Corrupt documents are never fatal: they are logged as warnings and treated
as absent. Writes go to a temporary sibling and are moved into place so a
crash mid-write never leaves a truncated document behind.

The synchronous methods do the actual I/O; the ``a``-prefixed coroutines run
them in a worker thread so the event loop is not blocked.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog

log = structlog.get_logger(__name__)

AGENT_DEFINITION_SUFFIX = ".agent.definition.json"


class StateStore:
    """Reads and writes the JSON documents that make up persisted state.

    Args:
        root: State directory (usually ``<project>/.conductor``)
        enabled: When False every write is a no-op and every read is empty,
            which keeps tests and ephemeral runs off the filesystem.
    """

    AGENTS_DIR = "agents"
    CACHE_FILE = "response_cache.json"
    METRICS_FILE = "token_metrics.jsonl"
    COST_CONFIG_FILE = "cost_config.json"

    def __init__(self, root: Path, *, enabled: bool = True) -> None:
        self._root = Path(root)
        self._enabled = enabled

    @property
    def root(self) -> Path:
        return self._root

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def agents_dir(self) -> Path:
        return self._root / self.AGENTS_DIR

    @property
    def cache_path(self) -> Path:
        return self._root / self.CACHE_FILE

    @property
    def metrics_path(self) -> Path:
        return self._root / self.METRICS_FILE

    @property
    def cost_config_path(self) -> Path:
        return self._root / self.COST_CONFIG_FILE

    # ------------------------------------------------------------------ #
    # JSON documents
    # ------------------------------------------------------------------ #

    def read_json(self, path: Path) -> Any | None:
        """Load a JSON document.

        Returns:
            The decoded document, or None when persistence is disabled, the
            file does not exist, or it cannot be parsed.
        """
        if not self._enabled or not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            log.warning("state_store.corrupt_document", path=str(path), error=str(exc))
            return None

    def write_json(self, path: Path, data: Any) -> None:
        """Atomically replace ``path`` with the JSON encoding of ``data``."""
        if not self._enabled:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, sort_keys=True, default=str)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        log.debug("state_store.document_written", path=str(path))

    # ------------------------------------------------------------------ #
    # Newline-delimited JSON
    # ------------------------------------------------------------------ #

    def append_jsonl(self, path: Path, record: dict[str, Any]) -> None:
        if not self._enabled:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record, sort_keys=True, default=str)
        with path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")

    def read_jsonl(self, path: Path) -> list[dict[str, Any]]:
        """Read every parseable line of a JSONL file; bad lines are skipped."""
        if not self._enabled or not path.exists():
            return []
        records: list[dict[str, Any]] = []
        skipped = 0
        try:
            with path.open("r", encoding="utf-8") as fh:
                for line in fh:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        value = json.loads(line)
                    except json.JSONDecodeError:
                        skipped += 1
                        continue
                    if isinstance(value, dict):
                        records.append(value)
                    else:
                        skipped += 1
        except OSError as exc:
            log.warning("state_store.corrupt_document", path=str(path), error=str(exc))
            return []
        if skipped:
            log.warning("state_store.jsonl_lines_skipped", path=str(path), skipped=skipped)
        return records

    # ------------------------------------------------------------------ #
    # Agent definitions
    # ------------------------------------------------------------------ #

    def write_agent_definition(self, name: str, data: dict[str, Any]) -> Path:
        path = self.agents_dir / f"{name}{AGENT_DEFINITION_SUFFIX}"
        self.write_json(path, data)
        return path

    # ------------------------------------------------------------------ #
    # Async wrappers
    # ------------------------------------------------------------------ #

    async def aread_json(self, path: Path) -> Any | None:
        return await asyncio.to_thread(self.read_json, path)

    async def awrite_json(self, path: Path, data: Any) -> None:
        await asyncio.to_thread(self.write_json, path, data)

    async def aappend_jsonl(self, path: Path, record: dict[str, Any]) -> None:
        await asyncio.to_thread(self.append_jsonl, path, record)
