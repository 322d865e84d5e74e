# orchestration/output_service.py
"""Service for persisting pipeline artifacts without ever aborting a run."""

from __future__ import annotations

from typing import Protocol

import structlog

from core.errors import PersistenceError

logger = structlog.get_logger(__name__)


class ArtifactStore(Protocol):
    async def save(self, key: str, content: str) -> object: ...


class OutputService:
    """Wrap an artifact store so that write failures are logged, not raised."""

    def __init__(self, store: ArtifactStore | None) -> None:
        self.store = store
        self.failures = 0

    async def save(self, key: str, content: str) -> bool:
        """Persist ``content`` under ``key``; return whether it was written."""
        if self.store is None:
            return False
        try:
            location = await self.store.save(key, content)
        except (PersistenceError, OSError) as exc:
            self.failures += 1
            logger.error(
                "Failed to persist artifact '%s': %s", key, exc, exc_info=True
            )
            return False
        logger.debug("Saved artifact '%s' to %s.", key, location)
        return True
