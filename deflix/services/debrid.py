import asyncio
from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger

from deflix.core.cache import CacheStore
from deflix.core.errors import ProviderUnavailable
from deflix.core.models import AvailabilityRecord, Session
from deflix.services.base import DebridProvider

UnlockKey = Tuple[str, str, str]


class DebridClient:
    """
    Rate-aware front of the debrid provider.

    Availability is answered from the cache where possible and the misses are
    sent to the provider in batches. Unlocks are collapsed: concurrent callers
    asking for the same (user, info-hash, file) share a single provider call.
    """

    def __init__(
        self,
        provider: DebridProvider,
        availability_cache: CacheStore,
        availability_ttl: float,
        batch_size: int = 100,
        timeout: float = 5.0,
        credential_timeout: float = 5.0,
    ):
        self.provider = provider
        self.availability_cache = availability_cache
        self.availability_ttl = availability_ttl
        self.batch_size = max(1, batch_size)
        self.timeout = timeout
        self.credential_timeout = credential_timeout
        self._inflight: Dict[UnlockKey, asyncio.Task] = {}

    async def check_availability(self, session: Session, info_hashes: Iterable[str]) -> Dict[str, bool]:
        """
        Returns {info_hash: instantly available}. Hashes the provider didn't answer
        for are reported unavailable but not cached.
        """
        result: Dict[str, bool] = {}
        missing: List[str] = []
        for info_hash in dict.fromkeys(info_hashes):
            cached = self.availability_cache.get(info_hash)
            if cached is not None:
                result[info_hash] = AvailabilityRecord.model_validate(cached).instant
            else:
                missing.append(info_hash)

        if not missing:
            return result
        logger.debug(f"Availability: {len(result)} cached, asking provider for {len(missing)}")

        batches = [missing[i:i + self.batch_size] for i in range(0, len(missing), self.batch_size)]
        failures = 0
        for batch in batches:
            try:
                answered = await asyncio.wait_for(
                    self.provider.instant_availability(session, batch), timeout=self.timeout
                )
            except asyncio.TimeoutError:
                logger.warning(f"Availability check for {len(batch)} hashes timed out after {self.timeout}s")
                failures += 1
                continue
            except ProviderUnavailable as e:
                logger.warning(f"Availability check for {len(batch)} hashes failed: {e}")
                failures += 1
                continue

            for info_hash, instant in answered.items():
                record = AvailabilityRecord(instant=instant)
                self.availability_cache.set(info_hash, record.model_dump(mode="json"), self.availability_ttl)
                result[info_hash] = instant

        if failures == len(batches) and not result:
            raise ProviderUnavailable()
        for info_hash in missing:
            result.setdefault(info_hash, False)
        return result

    async def unlock(self, session: Session, info_hash: str, file_selector: str = "auto") -> Tuple[str, Optional[float]]:
        """
        Unlocks a torrent into (direct URL, expires_at or None).
        Only meant for redirect resolution, never during search: it costs account quota.
        """
        key = (session.key, info_hash, file_selector)
        task = self._inflight.get(key)
        if task is None:
            # Own task, so a caller going away doesn't cancel the unlock for the others
            task = asyncio.create_task(self.provider.unlock(session, info_hash, file_selector))
            self._inflight[key] = task
            task.add_done_callback(lambda t: self._unlock_done(key, t))
        else:
            logger.debug(f"Joining in-flight unlock of {info_hash} for user {session.key}")
        return await asyncio.shield(task)

    def _unlock_done(self, key: UnlockKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark retrieved, nobody may be waiting for this unlock anymore
        if not task.cancelled():
            task.exception()

    async def validate(self, token: str) -> Session:
        """Identity check against the provider, bounded by `credential_timeout`."""
        try:
            return await asyncio.wait_for(self.provider.check_token(token), timeout=self.credential_timeout)
        except asyncio.TimeoutError as e:
            raise ProviderUnavailable(f"Token check timed out after {self.credential_timeout}s") from e
