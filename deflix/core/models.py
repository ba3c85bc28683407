import hashlib
import re
import time
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from deflix.utils.parser import VideoParser

IMDB_ID_PATTERN = re.compile(r"^tt\d{7,10}$")


def credential_key(token: str) -> str:
    """Stable, non-reversible fingerprint of an API token. Safe for cache keys and logs."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]


class Session(BaseModel):
    """
    A validated debrid-provider session. Immutable once created.
    `token` is the user's secret and must never be logged: use `key` instead.
    """
    model_config = ConfigDict(frozen=True)

    token: str = Field(repr=False)
    username: str = ""
    premium: bool = False

    @property
    def key(self) -> str:
        return credential_key(self.token)


class MovieIdentifier(BaseModel):
    model_config = ConfigDict(frozen=True)

    media_type: str = "movie"
    imdb_id: str

    @field_validator("imdb_id")
    @classmethod
    def _check_imdb_id(cls, v: str) -> str:
        if not IMDB_ID_PATTERN.match(v):
            raise ValueError(f"Not an IMDb ID: {v!r}")
        return v

    @property
    def cache_key(self) -> str:
        return f"{self.media_type}:{self.imdb_id}"

    def __str__(self) -> str:
        return self.cache_key


class TorrentCandidate(BaseModel):
    title: str
    quality: str = "Unknown"
    info_hash: str
    size: int = 0
    sources: List[str] = Field(default_factory=list)

    @field_validator("info_hash")
    @classmethod
    def _check_info_hash(cls, v: str) -> str:
        normalized = VideoParser.normalize_info_hash(v)
        if not normalized:
            raise ValueError(f"Not a BitTorrent info-hash: {v!r}")
        return normalized

    @property
    def quality_rank(self) -> int:
        return VideoParser.quality_rank(self.quality)


class SearchResult(BaseModel):
    """Cached value of the torrent store."""
    candidates: List[TorrentCandidate] = Field(default_factory=list)
    partial: bool = False


class AvailabilityRecord(BaseModel):
    instant: bool
    checked_at: float = Field(default_factory=time.time)


class RedirectTicket(BaseModel):
    """
    Stands in for a stream URL that is only unlocked when the player follows it.
    Carries the session by value since the redirect route has no credential in its path.
    """
    id: str
    info_hash: str
    file_selector: str = "auto"
    session: Session
    created_at: float = Field(default_factory=time.time)


class UnlockedStream(BaseModel):
    info_hash: str
    url: str
    expires_at: float

    def is_valid(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) < self.expires_at


class StreamOption(BaseModel):
    """Stream entry as Stremio expects it."""
    name: str
    title: str
    url: str
