"""Checkpoint Store

Persists and restores the ``(lastProcessedPage, lastProcessedRecordId)``
marker that lets a sync resume after a crash.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .models import Checkpoint, utc_now_iso

logger = logging.getLogger(__name__)


class CheckpointStore(ABC):

    @abstractmethod
    def load(self) -> Checkpoint:
        """Return the stored checkpoint, or a zero checkpoint if none is usable."""
        pass

    @abstractmethod
    def save(self, checkpoint: Checkpoint) -> None:
        """Persist the checkpoint, replacing any previous one."""
        pass


class JsonFileCheckpointStore(CheckpointStore):
    """Checkpoint kept as a small JSON file.

    Writes go to a temporary file in the same directory which is then
    renamed over the target, so readers see either the old or the new
    checkpoint and never a half-written one.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> Checkpoint:
        logger.info("Loading checkpoint from %s", self.path)
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.warning("No checkpoint found at %s, starting from scratch", self.path)
            return Checkpoint()
        except OSError as e:
            logger.warning("Could not read checkpoint %s (%s), starting from scratch", self.path, e)
            return Checkpoint()

        try:
            checkpoint = Checkpoint.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning("Corrupt checkpoint in %s (%s), starting from scratch", self.path, e)
            return Checkpoint()

        logger.info(
            "✓ Checkpoint loaded: page=%d, record_id=%d",
            checkpoint.last_processed_page,
            checkpoint.last_processed_record_id,
        )
        return checkpoint

    def save(self, checkpoint: Checkpoint) -> None:
        if checkpoint.timestamp is None:
            checkpoint = checkpoint.model_copy(update={"timestamp": utc_now_iso()})
        payload = json.dumps(checkpoint.model_dump(by_alias=True), indent=2)

        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.debug(
            "Saved checkpoint to %s: page=%d, record_id=%d",
            self.path,
            checkpoint.last_processed_page,
            checkpoint.last_processed_record_id,
        )


class InMemoryCheckpointStore(CheckpointStore):
    """Checkpoint held in memory; keeps every saved version in ``history``."""

    def __init__(self, initial: Optional[Checkpoint] = None):
        self.current = initial or Checkpoint()
        self.history: list[Checkpoint] = []

    def load(self) -> Checkpoint:
        return self.current

    def save(self, checkpoint: Checkpoint) -> None:
        if checkpoint.timestamp is None:
            checkpoint = checkpoint.model_copy(update={"timestamp": utc_now_iso()})
        self.current = checkpoint
        self.history.append(checkpoint)
