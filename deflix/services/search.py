import asyncio
import time
from typing import Dict, List, Sequence, Tuple

from loguru import logger

from deflix.core.cache import CacheStore
from deflix.core.models import MovieIdentifier, SearchResult, TorrentCandidate
from deflix.services.base import IndexerAdapter


def merge_candidates(per_adapter: Sequence[List[TorrentCandidate]]) -> List[TorrentCandidate]:
    """
    Deduplicates by info-hash. The first occurrence (in adapter order) keeps its
    metadata, later ones only add their source names. Best first.
    """
    merged: Dict[str, TorrentCandidate] = {}
    for candidates in per_adapter:
        for candidate in candidates:
            existing = merged.get(candidate.info_hash)
            if existing is None:
                merged[candidate.info_hash] = candidate.model_copy(update={"sources": list(candidate.sources)})
                continue
            for source in candidate.sources:
                if source not in existing.sources:
                    existing.sources.append(source)
    return sorted(merged.values(), key=lambda c: (c.quality_rank, c.size), reverse=True)


class SearchAggregator:
    """
    Finds torrents for a movie on all indexers concurrently.

    Each adapter gets its own deadline and the whole search an outer one.
    A failing or slow adapter only costs its own results, reported as `partial`.
    """

    def __init__(
        self,
        adapters: Sequence[IndexerAdapter],
        cache: CacheStore,
        ttl: float,
        partial_ttl: float,
        adapter_timeout: float = 7.0,
        timeout: float = 10.0,
    ):
        self.adapters = list(adapters)
        self.cache = cache
        self.ttl = ttl
        self.partial_ttl = partial_ttl
        self.adapter_timeout = adapter_timeout
        self.timeout = timeout

    async def search(self, movie_id: MovieIdentifier) -> Tuple[List[TorrentCandidate], bool]:
        cached = self.cache.get(movie_id.cache_key)
        if cached is not None:
            result = SearchResult.model_validate(cached)
            logger.debug(f"Torrent cache hit for {movie_id}: {len(result.candidates)} torrents")
            return result.candidates, result.partial

        started = time.monotonic()
        sinks: List[List[TorrentCandidate]] = [[] for _ in self.adapters]
        tasks = [
            asyncio.create_task(self._collect(adapter, movie_id, sink))
            for adapter, sink in zip(self.adapters, sinks)
        ]
        partial = False
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=self.timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                logger.warning(f"{len(pending)} indexer(s) didn't finish within {self.timeout}s for {movie_id}")
            ok = [task in done and task.result() for task in tasks]
            partial = not all(ok)

        candidates = merge_candidates(sinks)
        logger.info(
            f"Found {len(candidates)} torrents for {movie_id} in {time.monotonic() - started:.2f}s"
            + (" (partial)" if partial else "")
        )

        if not partial:
            self.cache.set(movie_id.cache_key, SearchResult(candidates=candidates).model_dump(mode="json"), self.ttl)
        elif candidates and self.partial_ttl > 0:
            # Don't pin an incomplete result for hours, the missing indexer may be back soon
            result = SearchResult(candidates=candidates, partial=True)
            self.cache.set(movie_id.cache_key, result.model_dump(mode="json"), self.partial_ttl)
        return candidates, partial

    async def _collect(self, adapter: IndexerAdapter, movie_id: MovieIdentifier, sink: List[TorrentCandidate]) -> bool:
        """
        Drains one adapter into `sink`. Whatever arrived before a failure is kept.
        Returns whether the adapter completed.
        """
        async def drain():
            async for candidate in adapter.find(movie_id):
                sink.append(candidate)

        try:
            await asyncio.wait_for(drain(), timeout=self.adapter_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Indexer {adapter.name} timed out after {self.adapter_timeout}s for {movie_id}")
            return False
        except Exception as e:
            logger.warning(f"Indexer {adapter.name} failed for {movie_id}: {type(e).__name__}: {e}")
            return False
        logger.debug(f"Indexer {adapter.name} found {len(sink)} torrents for {movie_id}")
        return True
