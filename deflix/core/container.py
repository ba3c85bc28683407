"""
Wires all components together. Everything is passed in explicitly, there are
no module level service singletons.
"""
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from deflix.core.cache import CacheSet
from deflix.core.config import Settings
from deflix.services.base import DebridProvider, IndexerAdapter
from deflix.services.credentials import CredentialGate
from deflix.services.debrid import DebridClient
from deflix.services.indexers.torrentio import TorrentioService
from deflix.services.indexers.yts import YTSService
from deflix.services.indexers.zilean import ZileanService
from deflix.services.persistence import CachePersistence
from deflix.services.realdebrid import RealDebridService
from deflix.services.redirect import RedirectResolver
from deflix.services.search import SearchAggregator


@dataclass
class Container:
    settings: Settings
    caches: CacheSet
    gate: CredentialGate
    search: SearchAggregator
    debrid: DebridClient
    redirects: RedirectResolver
    persistence: CachePersistence

    async def aclose(self) -> None:
        """Closes the HTTP clients of the provider and all indexers."""
        for adapter in self.search.adapters:
            await adapter.aclose()
        await self.debrid.provider.aclose()


def build_indexers(settings: Settings) -> List[IndexerAdapter]:
    available = {
        "yts": lambda: YTSService(settings.YTS_API_URL, timeout=settings.INDEXER_TIMEOUT),
        "torrentio": lambda: TorrentioService(settings.TORRENTIO_URL, timeout=settings.INDEXER_TIMEOUT),
        "zilean": lambda: ZileanService(settings.ZILEAN_API_URL, timeout=settings.INDEXER_TIMEOUT),
    }
    unknown = [name for name in settings.INDEXERS if name not in available]
    if unknown:
        raise ValueError(f"Unknown indexers configured: {unknown}")
    return [available[name]() for name in settings.INDEXERS]


def build_container(
    settings: Settings,
    caches: Optional[CacheSet] = None,
    provider: Optional[DebridProvider] = None,
    indexers: Optional[List[IndexerAdapter]] = None,
    clock: Callable[[], float] = time.time,
) -> Container:
    if caches is None:
        caches = CacheSet.load(settings.cache_dir, settings.store_max_bytes, clock=clock)
    if provider is None:
        provider = RealDebridService(
            settings.REALDEBRID_API_URL,
            timeout=settings.PROVIDER_TIMEOUT,
            poll_attempts=settings.UNLOCK_POLL_ATTEMPTS,
            poll_interval=settings.UNLOCK_POLL_INTERVAL,
        )
    if indexers is None:
        indexers = build_indexers(settings)

    debrid = DebridClient(
        provider,
        caches.availability,
        settings.AVAILABILITY_TTL,
        batch_size=settings.AVAILABILITY_BATCH_SIZE,
        timeout=settings.PROVIDER_TIMEOUT,
        credential_timeout=settings.CREDENTIAL_CHECK_TIMEOUT,
    )
    return Container(
        settings=settings,
        caches=caches,
        gate=CredentialGate(debrid, caches.credential, settings.CREDENTIAL_TTL, settings.INVALID_CREDENTIAL_TTL),
        search=SearchAggregator(
            indexers,
            caches.torrent,
            settings.TORRENT_TTL,
            settings.PARTIAL_TORRENT_TTL,
            adapter_timeout=settings.INDEXER_TIMEOUT,
            timeout=settings.SEARCH_TIMEOUT,
        ),
        debrid=debrid,
        redirects=RedirectResolver(
            debrid, caches.redirect, settings.STREAM_URL_ADDR, settings.REDIRECT_TTL, settings.STREAM_URL_TTL,
            clock=clock,
        ),
        persistence=CachePersistence(caches, settings.cache_dir, settings.CACHE_PERSIST_INTERVAL),
    )
