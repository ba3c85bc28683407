import asyncio
import os
import threading
from typing import Dict

from loguru import logger

from deflix.core.cache import CacheSet


class CachePersistence:
    """
    Saves all caches to `directory` in regular intervals and once more on shutdown.

    Saving only copies entries under each store's lock and writes outside of it,
    so request traffic continues while a snapshot is written. Once `shutdown()`
    began, periodic snapshots are skipped and the final flush waits for a
    running one, so two writers never touch the same files.
    """

    def __init__(self, caches: CacheSet, directory: str, interval: float = 3600.0):
        self.caches = caches
        self.directory = directory
        self.interval = interval
        self.stopping = False
        self._write_lock = threading.Lock()
        self._task = None

    def persist(self) -> Dict[str, int]:
        """Periodic snapshot. Returns entries written per store, empty if skipped."""
        if self.stopping:
            logger.info("Regular cache persistence triggered, but server is shutting down")
            return {}
        with self._write_lock:
            if self.stopping:
                return {}
            return self._write_all()

    def flush(self) -> Dict[str, int]:
        """Final snapshot on shutdown. Blocks until a running snapshot finished."""
        self.stopping = True
        with self._write_lock:
            return self._write_all()

    def _write_all(self) -> Dict[str, int]:
        logger.info(f"Persisting caches to \"{self.directory}\"...")
        written = {}
        for store in self.caches:
            try:
                written[store.name] = store.save_to_file(os.path.join(self.directory, store.name))
            except OSError as e:
                logger.error(f"Couldn't save {store.name} cache to file: {e}")
        logger.info(f"Persisted caches: {written}")
        return written

    def log_stats(self) -> None:
        for store in self.caches:
            store.purge_expired()
            logger.info(f"{store.name.capitalize()} cache stats: {store.stats()}")

    # --- asyncio integration ---

    def start(self) -> None:
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while not self.stopping:
            await asyncio.sleep(self.interval)
            await asyncio.to_thread(self.persist)
            self.log_stats()

    async def shutdown(self) -> Dict[str, int]:
        self.stopping = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        return await asyncio.to_thread(self.flush)
