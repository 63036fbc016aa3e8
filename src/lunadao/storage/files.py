"""File-per-record JSON store.

Layout::

    <root>/proposals/<proposal_id>.json
    <root>/votes/<vote_id>.json

Writes go to a temporary file in the same directory and are moved into place
with ``os.replace`` so a reader never sees a half-written record.
"""

import json
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import List, Optional, Union

from ..errors.exceptions import StorageError
from .base import Record, RecordStore

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class JSONFileRecordStore(RecordStore):
    """Stores each record as its own JSON document."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.proposals_dir = self.root / "proposals"
        self.votes_dir = self.root / "votes"
        self._lock = threading.RLock()
        try:
            self.proposals_dir.mkdir(parents=True, exist_ok=True)
            self.votes_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"Cannot create store directories under {self.root}: {e}",
                storage_type="json_file",
                operation="init",
                cause=e,
            ) from e

    def _path(self, directory: Path, record_id: str) -> Path:
        if not record_id or record_id in (".", "..") or not _SAFE_ID.match(record_id):
            raise StorageError(
                f"Unsafe record id: {record_id!r}",
                storage_type="json_file",
                operation="path",
            )
        return directory / f"{record_id}.json"

    def _write(self, path: Path, record: Record) -> None:
        with self._lock:
            try:
                fd, tmp_name = tempfile.mkstemp(
                    dir=str(path.parent), prefix=".tmp-", suffix=".json"
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as fh:
                        json.dump(record, fh, indent=2, sort_keys=True)
                    os.replace(tmp_name, path)
                except BaseException:
                    if os.path.exists(tmp_name):
                        os.unlink(tmp_name)
                    raise
            except (OSError, TypeError, ValueError) as e:
                raise StorageError(
                    f"Error saving record {path.name}: {e}",
                    storage_type="json_file",
                    operation="write",
                    cause=e,
                ) from e

    def _read(self, path: Path) -> Optional[Record]:
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, ValueError) as e:
            raise StorageError(
                f"Error reading record {path.name}: {e}",
                storage_type="json_file",
                operation="read",
                cause=e,
            ) from e

    def _load_dir(self, directory: Path) -> List[Record]:
        records = []
        for path in sorted(directory.glob("*.json")):
            if path.name.startswith(".tmp-"):
                continue
            try:
                record = self._read(path)
            except StorageError as e:
                logger.error("Skipping unreadable record: %s", e.message)
                continue
            if record is not None:
                records.append(record)
        return records

    def save_proposal(self, record: Record) -> None:
        self._write(self._path(self.proposals_dir, record["id"]), record)

    def save_vote(self, record: Record) -> None:
        self._write(self._path(self.votes_dir, record["vote_id"]), record)

    def delete_vote(self, vote_id: str) -> None:
        path = self._path(self.votes_dir, vote_id)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise StorageError(
                    f"Error deleting record {path.name}: {e}",
                    storage_type="json_file",
                    operation="delete",
                    cause=e,
                ) from e

    def get_proposal(self, proposal_id: str) -> Optional[Record]:
        return self._read(self._path(self.proposals_dir, proposal_id))

    def get_vote(self, vote_id: str) -> Optional[Record]:
        return self._read(self._path(self.votes_dir, vote_id))

    def load_proposals(self) -> List[Record]:
        return self._load_dir(self.proposals_dir)

    def load_votes(self) -> List[Record]:
        return self._load_dir(self.votes_dir)
