import httpx
from loguru import logger
from typing import AsyncIterator, Optional

from deflix.core.models import MovieIdentifier, TorrentCandidate
from deflix.services.base import IndexerAdapter
from deflix.utils.parser import VideoParser


class ZileanService(IndexerAdapter):
    """
    Zilean (DMM hash list) search by IMDb ID.
    """
    name = "zilean"

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def find(self, movie_id: MovieIdentifier) -> AsyncIterator[TorrentCandidate]:
        params = {"ImdbId": movie_id.imdb_id}
        logger.info(f"Zilean Search (Network): {self.base_url}/dmm/filtered with params {params}")
        response = await self.client.get(f"{self.base_url}/dmm/filtered", params=params)
        response.raise_for_status()

        results = response.json()
        if not isinstance(results, list):
            logger.warning(f"Zilean returned unexpected payload type {type(results).__name__}")
            return
        logger.info(f"Zilean returned {len(results)} results")

        for res in results:
            # Assuming Zilean returns list of {raw_title, size, info_hash}
            title = res.get("raw_title") or res.get("filename") or ""
            info_hash = VideoParser.normalize_info_hash(res.get("info_hash", ""))
            if not info_hash or not title:
                continue
            try:
                size = int(res.get("size") or 0)
            except (TypeError, ValueError):
                size = 0
            yield TorrentCandidate(
                title=title,
                quality=VideoParser.get_quality(title),
                info_hash=info_hash,
                size=size,
                sources=[self.name],
            )
