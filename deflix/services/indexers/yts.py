import httpx
from loguru import logger
from typing import AsyncIterator, Optional

from deflix.core.models import MovieIdentifier, TorrentCandidate
from deflix.services.base import IndexerAdapter
from deflix.utils.parser import VideoParser


class YTSService(IndexerAdapter):
    """
    YTS movie API. Docs: https://yts.mx/api
    """
    name = "yts"

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def find(self, movie_id: MovieIdentifier) -> AsyncIterator[TorrentCandidate]:
        response = await self.client.get(
            f"{self.base_url}/list_movies.json", params={"query_term": movie_id.imdb_id}
        )
        response.raise_for_status()
        data = response.json()
        if data.get("status") != "ok":
            logger.warning(f"YTS status for {movie_id}: {data.get('status_message')}")
            return

        for movie in data.get("data", {}).get("movies") or []:
            # query_term is a fuzzy search, make sure it's really our movie
            if movie.get("imdb_code") != movie_id.imdb_id:
                continue
            name = movie.get("title_long") or movie.get("title", "")
            for torrent in movie.get("torrents") or []:
                info_hash = VideoParser.normalize_info_hash(torrent.get("hash", ""))
                if not info_hash:
                    continue
                quality = VideoParser.get_quality(torrent.get("quality", ""))
                source = torrent.get("type", "")
                yield TorrentCandidate(
                    title=f"{name} [{torrent.get('quality', '?')}] [{source}] [YTS]",
                    quality=quality,
                    info_hash=info_hash,
                    size=torrent.get("size_bytes") or 0,
                    sources=[self.name],
                )
