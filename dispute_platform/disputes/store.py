"""
Record Store
============

Durable mapping from a collection key to a JSON list of records.

The contract is synchronous ``load`` and ``save`` of a
whole collection, no transactions. Two backends are provided:

- ``JsonFileRecordStore``: one ``<key>.json`` file per collection, written
  atomically (temporary file + ``os.replace``)
- ``InMemoryRecordStore``: serialized blobs held in a dict, for tests and
  embedding

Serialization errors from ``json`` propagate to the caller unchanged.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger("Disputes.Store")


class RecordStore:
    """Base class for collection stores."""

    def load(self, key: str) -> List[Dict[str, Any]]:
        """Return all records stored under ``key`` (empty list if none)."""
        raise NotImplementedError

    def save(self, key: str, records: List[Dict[str, Any]]) -> None:
        """Replace the collection stored under ``key``."""
        raise NotImplementedError


class InMemoryRecordStore(RecordStore):
    """
    Dict-backed store.

    Collections are kept as JSON strings so that every load returns a fresh
    copy and unserializable records fail the same way they would on disk.
    """

    def __init__(self) -> None:
        self._blobs: Dict[str, str] = {}

    def load(self, key: str) -> List[Dict[str, Any]]:
        blob = self._blobs.get(key)
        return json.loads(blob) if blob else []

    def save(self, key: str, records: List[Dict[str, Any]]) -> None:
        self._blobs[key] = json.dumps(records)


class JsonFileRecordStore(RecordStore):
    """
    File-based store, one JSON file per collection key.

    Args:
        storage_path: Directory for the collection files. Defaults to the
                      configured storage directory.
    """

    def __init__(self, storage_path: Optional[str] = None):
        if storage_path is None:
            from ..config import settings
            self.storage_path = settings.get_storage_path()
        else:
            self.storage_path = Path(storage_path)
            self.storage_path.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]+", "_", key or "").strip("._")
        if not safe:
            raise ValueError(f"Invalid collection key: {key!r}")
        return self.storage_path / f"{safe}.json"

    def load(self, key: str) -> List[Dict[str, Any]]:
        """Load a collection from storage."""
        filepath = self._path_for(key)
        if not filepath.exists():
            return []
        with open(filepath, "r", encoding="utf-8") as f:
            return json.load(f)

    def save(self, key: str, records: List[Dict[str, Any]]) -> None:
        """Save a collection, replacing the file only once it is fully written."""
        filepath = self._path_for(key)
        data = json.dumps(records, indent=2)
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.storage_path,
                delete=False,
                prefix=f".{filepath.name}.",
                suffix=".tmp",
            ) as handle:
                tmp_name = handle.name
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, filepath)
        except Exception:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug("Saved %d records to %s", len(records), filepath)
