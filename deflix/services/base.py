from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict, Iterable, Optional, Tuple

from deflix.core.models import MovieIdentifier, Session, TorrentCandidate


class IndexerAdapter(ABC):
    """
    One external torrent source (YTS, Torrentio, Zilean, ...).
    """
    name: str = "indexer"

    @abstractmethod
    def find(self, movie_id: MovieIdentifier) -> AsyncIterator[TorrentCandidate]:
        """
        Lazily yields the torrents this source knows for `movie_id`.
        The sequence is finite and can only be consumed once.
        Raising (or hanging) only fails this source, never the whole search.
        """

    async def aclose(self) -> None:
        """Releases connections held by the adapter."""


class DebridProvider(ABC):
    """
    Abstract Base Class for Debrid Providers (RealDebrid, ...)
    Implementations raise the errors from `deflix.core.errors`.
    """
    name: str = "debrid"

    @abstractmethod
    async def check_token(self, token: str) -> Session:
        """Identity check. InvalidCredential if rejected, ProviderUnavailable if it can't complete."""

    @abstractmethod
    async def instant_availability(self, session: Session, info_hashes: Iterable[str]) -> Dict[str, bool]:
        """
        One round trip for all `info_hashes`.
        Hashes missing from the result are unknown, not unavailable.
        """

    @abstractmethod
    async def unlock(
        self, session: Session, info_hash: str, file_selector: str = "auto"
    ) -> Tuple[str, Optional[float]]:
        """
        Turns a cached torrent into a direct stream URL.
        Returns (url, expires_at or None). NotCached if it'd require a real-time download.
        """

    async def aclose(self) -> None:
        pass
