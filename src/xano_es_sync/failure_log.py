"""Failure Log

Append-only record of per-item failures (``{id, error, time, kind}``).
Purely diagnostic: nothing in the sync reads it back to make decisions.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, List

from pydantic import ValidationError

from .errors import FailureKind
from .models import FailureEntry

logger = logging.getLogger(__name__)


class FailureLog(ABC):

    def __init__(self) -> None:
        self._entries: List[FailureEntry] = []

    @property
    def entries(self) -> List[FailureEntry]:
        return list(self._entries)

    def record(self, item_id: object, error: str, kind: FailureKind) -> FailureEntry:
        """Append a failure for ``item_id`` and persist the log."""
        entry = FailureEntry(id=str(item_id), error=str(error), kind=kind)
        logger.error("Error for record %s (%s): %s", entry.id, kind.value, entry.error)
        self._entries.append(entry)
        self._persist()
        return entry

    @abstractmethod
    def _persist(self) -> None:
        pass


class InMemoryFailureLog(FailureLog):

    def _persist(self) -> None:
        pass


class JsonFileFailureLog(FailureLog):
    """Failure log stored as a JSON array.

    Entries already present in the file are written back exactly as they
    were read, including ones this version cannot parse, so the file only
    ever grows across runs. A file that is not a JSON array is moved aside
    to ``<name>.unreadable`` before the first write. Writes go through a
    temporary file and ``os.replace``. A failed write is logged and does not
    interrupt the sync; the entry stays in memory and is written with the
    next one.
    """

    def __init__(self, path: Path | str):
        super().__init__()
        self.path = Path(path)
        self._stored: List[Any] = self._load_existing()
        self._entries = self._parse_stored(self._stored)
        self._loaded = len(self._entries)

    def _load_existing(self) -> List[Any]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except json.JSONDecodeError as e:
            self._set_aside(f"unreadable JSON ({e})")
            return []
        except OSError as e:
            logger.warning("Could not read failure log %s: %s", self.path, e)
            return []

        if not isinstance(raw, list):
            self._set_aside("top-level JSON is not a list")
            return []
        return raw

    def _set_aside(self, reason: str) -> None:
        backup = self.path.with_name(self.path.name + ".unreadable")
        try:
            os.replace(self.path, backup)
            logger.warning("Moved failure log %s to %s: %s", self.path, backup, reason)
        except OSError as e:
            logger.error("Could not move unreadable failure log %s aside: %s", self.path, e)

    @staticmethod
    def _parse_stored(stored: List[Any]) -> List[FailureEntry]:
        entries: List[FailureEntry] = []
        for item in stored:
            try:
                entries.append(FailureEntry.model_validate(item))
            except ValidationError:
                logger.debug("Keeping unparsed failure log entry as-is: %r", item)
        return entries

    def _persist(self) -> None:
        payload = self._stored + [
            e.model_dump(mode="json") for e in self._entries[self._loaded:]
        ]
        directory = self.path.parent
        tmp_name = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            logger.debug("Failure logged to %s", self.path)
        except OSError as e:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            logger.error("Failed to write failure log %s: %s", self.path, e)
