# storage/file_manager.py
"""Utility class for asynchronous file operations."""

from __future__ import annotations

import asyncio
import os
import re

from core.errors import PersistenceError

_SAFE_KEY_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class FileManager:
    """Store pipeline artifacts as ``<output_dir>/<key>.txt``."""

    def __init__(self, output_dir: str) -> None:
        self.output_dir = output_dir

    def path_for(self, key: str) -> str:
        if not _SAFE_KEY_RE.match(key or ""):
            raise PersistenceError(f"Invalid artifact key: {key!r}")
        return os.path.join(self.output_dir, f"{key}.txt")

    async def save(self, key: str, content: str) -> str:
        """Write ``content`` under ``key`` and return the file path."""
        path = self.path_for(key)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._save_sync, path, content)
        except OSError as exc:
            raise PersistenceError(f"Failed writing {path}: {exc}") from exc
        return path

    def _save_sync(self, path: str, content: str) -> None:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
