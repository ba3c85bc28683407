import httpx
from typing import AsyncIterator, Optional

from deflix.core.models import MovieIdentifier, TorrentCandidate
from deflix.services.base import IndexerAdapter
from deflix.utils.parser import VideoParser


class TorrentioService(IndexerAdapter):
    """
    Torrentio Stremio addon, queried without a debrid config so it returns plain info-hashes.
    """
    name = "torrentio"

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout, headers={"Accept": "application/json"})

    async def aclose(self) -> None:
        await self.client.aclose()

    async def find(self, movie_id: MovieIdentifier) -> AsyncIterator[TorrentCandidate]:
        url = f"{self.base_url}/sort=qualitysize/stream/{movie_id.media_type}/{movie_id.imdb_id}.json"
        response = await self.client.get(url)
        response.raise_for_status()

        for stream in response.json().get("streams") or []:
            info_hash = VideoParser.normalize_info_hash(stream.get("infoHash", ""))
            if not info_hash:
                continue
            # "Movie.1999.1080p.BluRay.x264\n👤 12 💾 2.1 GB ⚙️ ThePirateBay"
            lines = (stream.get("title") or "").split("\n")
            title = lines[0].strip()
            if not title:
                continue
            details = " ".join(lines[1:])
            yield TorrentCandidate(
                title=title,
                quality=VideoParser.get_quality(stream.get("name", "") + " " + title),
                info_hash=info_hash,
                size=VideoParser.parse_size(details),
                sources=[self.name],
            )
