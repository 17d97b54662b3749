"""
File-based StateStore.

Each execution is stored as ``<base_dir>/<execution_id>/latest.json``.
Writes go to a temporary file that is then renamed over the old one, so a
crash never leaves a half-written document behind.
"""

from typing import Any, Dict, List, Optional
from pathlib import Path
import asyncio
import json
import logging
import os
import re
import shutil


logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_\-]+$")


class FileStateStore:
    """
    Persists execution state documents as JSON files.

    Blocking file I/O runs in worker threads; an asyncio.Lock serializes
    access within the process.
    """

    STATE_FILE = "latest.json"

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)
        self._lock = asyncio.Lock()

    def _path_for(self, execution_id: str) -> Path:
        if not _SAFE_ID.match(execution_id):
            raise ValueError(f"Invalid execution id: {execution_id!r}")
        return self.base_dir / execution_id / self.STATE_FILE

    def _write(self, path: Path, document: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(document, f, ensure_ascii=False, indent=2, default=str)
        os.replace(tmp_path, path)

    def _read(self, path: Path) -> Optional[Dict[str, Any]]:
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _remove(self, path: Path) -> bool:
        directory = path.parent
        if not directory.exists():
            return False
        shutil.rmtree(directory)
        return True

    def _scan(self) -> List[str]:
        if not self.base_dir.exists():
            return []
        return [
            entry.name
            for entry in self.base_dir.iterdir()
            if entry.is_dir() and (entry / self.STATE_FILE).exists()
        ]

    async def save(self, execution_id: str, state: Dict[str, Any]) -> None:
        path = self._path_for(execution_id)
        async with self._lock:
            await asyncio.to_thread(self._write, path, state)
        logger.debug(f"Persisted state for {execution_id} to {path}")

    async def load(self, execution_id: str) -> Optional[Dict[str, Any]]:
        path = self._path_for(execution_id)
        async with self._lock:
            try:
                return await asyncio.to_thread(self._read, path)
            except json.JSONDecodeError as e:
                logger.error(f"Corrupt state file for {execution_id}: {e}")
                return None

    async def delete(self, execution_id: str) -> bool:
        path = self._path_for(execution_id)
        async with self._lock:
            return await asyncio.to_thread(self._remove, path)

    async def list_ids(self) -> List[str]:
        async with self._lock:
            return await asyncio.to_thread(self._scan)
