import asyncio
from typing import Dict, Iterable, List, Optional

import pytest

from deflix.core.cache import CacheSet
from deflix.core.errors import InvalidCredential, ProviderUnavailable
from deflix.core.models import MovieIdentifier, Session, TorrentCandidate
from deflix.services.base import DebridProvider, IndexerAdapter
from deflix.utils.parser import VideoParser

GOOD_TOKEN = "good-token-123"
HASH_A = "a" * 40
HASH_B = "b" * 40
HASH_C = "c" * 40
HASH_D = "d" * 40


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(DebridProvider):
    """In-memory debrid provider that records every call."""
    name = "fake"

    def __init__(self):
        self.tokens = {GOOD_TOKEN: Session(token=GOOD_TOKEN, username="neo", premium=True)}
        self.cached = set()
        self.check_calls = 0
        self.check_error: Optional[Exception] = None
        self.check_delay = 0.0
        self.availability_calls: List[List[str]] = []
        self.failing_hashes = set()
        self.unlock_calls = []
        self.unlock_errors: Dict[str, Exception] = {}
        self.unlock_delay = 0.0
        self.unlock_expires_at: Optional[float] = None
        self.closed = False

    async def check_token(self, token: str) -> Session:
        self.check_calls += 1
        if self.check_delay:
            await asyncio.sleep(self.check_delay)
        if self.check_error is not None:
            raise self.check_error
        if token not in self.tokens:
            raise InvalidCredential()
        return self.tokens[token]

    async def instant_availability(self, session: Session, info_hashes: Iterable[str]) -> Dict[str, bool]:
        hashes = list(info_hashes)
        self.availability_calls.append(hashes)
        if self.failing_hashes & set(hashes):
            raise ProviderUnavailable("batch failed")
        return {h: h in self.cached for h in hashes}

    async def unlock(self, session: Session, info_hash: str, file_selector: str = "auto"):
        self.unlock_calls.append((session.key, info_hash, file_selector))
        if self.unlock_delay:
            await asyncio.sleep(self.unlock_delay)
        if info_hash in self.unlock_errors:
            raise self.unlock_errors[info_hash]
        return f"https://download.example/{info_hash}/movie.mkv?sig=secret", self.unlock_expires_at

    async def aclose(self) -> None:
        self.closed = True


class FakeIndexer(IndexerAdapter):
    def __init__(self, name: str, candidates=(), delay: float = 0.0, error: Optional[Exception] = None):
        self.name = name
        self.candidates = list(candidates)
        self.delay = delay
        self.error = error
        self.calls = 0
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True

    async def find(self, movie_id: MovieIdentifier):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        for candidate in self.candidates:
            yield candidate
        if self.error is not None:
            raise self.error


def make_candidate(info_hash: str, title: str = "The.Matrix.1999.1080p.BluRay", size: int = 2 * 1024 ** 3,
                   source: str = "yts", quality: str = None) -> TorrentCandidate:
    return TorrentCandidate(
        title=title,
        quality=quality or VideoParser.get_quality(title),
        info_hash=info_hash,
        size=size,
        sources=[source],
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def caches(clock):
    return CacheSet.new(1024 * 1024, clock=clock)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def session(provider):
    return provider.tokens[GOOD_TOKEN]


@pytest.fixture
def matrix():
    return MovieIdentifier(media_type="movie", imdb_id="tt0133093")
