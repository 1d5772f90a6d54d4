"""
Shared storage manager for MCP Namespaced Memory.

Holds one set of storage backends (embedding provider, vector index, record
store) per process so the MCP server and the HTTP app reuse the same loaded
embedding model and database handles.
"""

import asyncio
import logging
from threading import Lock
from typing import Optional

from .storage.factory import StorageBackends, create_storage_backends

logger = logging.getLogger(__name__)


class StorageManager:
    """Manages a singleton set of storage backends for shared access."""

    _instance: Optional["StorageManager"] = None
    _lock: Lock = Lock()

    def __init__(self):
        self._backends: StorageBackends | None = None
        self._initialization_lock: asyncio.Lock | None = None

    @classmethod
    def get_instance(cls) -> "StorageManager":
        """Thread-safe singleton accessor."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
                    logger.info("Created new StorageManager singleton instance")
        return cls._instance

    def _get_lock(self) -> asyncio.Lock:
        # Created lazily so the lock binds to the running event loop
        if self._initialization_lock is None:
            self._initialization_lock = asyncio.Lock()
        return self._initialization_lock

    async def get_backends(self) -> StorageBackends:
        """
        Get or create the shared backends.

        Idempotent: concurrent callers share a single initialization.
        """
        if self._backends is not None:
            return self._backends

        async with self._get_lock():
            if self._backends is not None:
                return self._backends

            logger.info("Initializing shared storage backends...")
            self._backends = await create_storage_backends()
            logger.info(
                f"Shared storage initialized: {type(self._backends.vector_index).__name__} + "
                f"{type(self._backends.record_store).__name__}"
            )
            return self._backends

    async def close(self) -> None:
        """Close the backends. Safe to call when never initialized."""
        if self._backends is None:
            return
        logger.info("Closing shared storage backends...")
        try:
            await self._backends.close()
        except Exception as e:
            logger.error(f"Error closing shared storage: {e}")
        finally:
            self._backends = None
            self._initialization_lock = None

    def is_initialized(self) -> bool:
        return self._backends is not None


_manager = StorageManager.get_instance()


async def get_shared_storage() -> StorageBackends:
    """Get the shared storage backends, creating them on first use."""
    return await _manager.get_backends()


async def close_shared_storage() -> None:
    await _manager.close()


def is_storage_initialized() -> bool:
    return _manager.is_initialized()
