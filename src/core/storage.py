"""
Artifact Sink - The Bridge Pattern

The pipeline hands a finished workflow record to a sink and keeps only the
returned key. LocalArtifactSink writes JSON records to disk for development;
production deployments plug in their own implementation.
"""

import json
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Any, List
from datetime import datetime

from src.core.exceptions import StorageError
from src.core.logging import get_logger

logger = get_logger(__name__)


class ArtifactSink(ABC):
    """Interface for persisting finished workflows - The Bridge"""

    @abstractmethod
    async def persist(self, record: Dict[str, Any], folder: str = "workflows") -> str:
        """
        Persist a workflow record and return its storage key.

        Raises:
            StorageError: the record could not be written
        """
        pass

    @abstractmethod
    async def load(self, storage_key: str) -> Dict[str, Any]:
        """Read back a record written by persist()."""
        pass


class LocalArtifactSink(ArtifactSink):
    """Local filesystem sink for development."""

    def __init__(self, base_path: str = "./data/workflows"):
        self.base_path = Path(base_path)

    def _get_unique_filename(self, record: Dict[str, Any]) -> str:
        """Timestamp + workflow id (or a random id) so keys sort chronologically."""
        unique_id = record.get("workflow_id") or uuid.uuid4().hex[:12]
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return f"{timestamp}_{unique_id}.json"

    def _write(self, folder: str, filename: str, payload: str) -> None:
        folder_path = self.base_path / folder
        folder_path.mkdir(parents=True, exist_ok=True)
        (folder_path / filename).write_text(payload, encoding="utf-8")

    async def persist(self, record: Dict[str, Any], folder: str = "workflows") -> str:
        filename = self._get_unique_filename(record)
        payload = json.dumps(record, indent=2, default=str)

        try:
            self._write(folder, filename, payload)
        except OSError as e:
            raise StorageError(
                f"Failed to persist workflow record: {e}",
                workflow_id=record.get("workflow_id")
            ) from e

        storage_key = f"{folder}/{filename}"
        logger.info("workflow_record_persisted", storage_key=storage_key)
        return storage_key

    async def load(self, storage_key: str) -> Dict[str, Any]:
        file_path = self.base_path / storage_key
        try:
            text = file_path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise StorageError(f"Record not found: {storage_key}") from e
        return json.loads(text)

    def list_keys(self, folder: str = "workflows") -> List[str]:
        folder_path = self.base_path / folder
        if not folder_path.exists():
            return []
        return sorted(f"{folder}/{p.name}" for p in folder_path.glob("*.json"))

