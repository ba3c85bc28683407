from loguru import logger

from deflix.core.cache import CacheStore
from deflix.core.errors import InvalidCredential
from deflix.core.models import Session, credential_key
from deflix.services.debrid import DebridClient


class CredentialGate:
    """
    Validates the API token a user put into the addon URL.

    Valid sessions are cached for `ttl`. Rejections are cached for `invalid_ttl`
    (0 disables that), so a misconfigured client can't hammer the provider.
    Failures to *complete* the check (ProviderUnavailable) are never cached:
    a provider outage must not turn into a lasting "invalid token".
    Cache keys are token fingerprints, so raw tokens never end up as keys in snapshots.
    """

    def __init__(self, debrid: DebridClient, cache: CacheStore, ttl: float, invalid_ttl: float = 0):
        self.debrid = debrid
        self.cache = cache
        self.ttl = ttl
        self.invalid_ttl = invalid_ttl

    async def validate(self, raw_credential: str) -> Session:
        if not raw_credential:
            raise InvalidCredential()
        key = credential_key(raw_credential)

        cached = self.cache.get(key)
        if cached is not None:
            if not cached.get("valid"):
                raise InvalidCredential()
            return Session.model_validate(cached["session"])

        try:
            session = await self.debrid.validate(raw_credential)
        except InvalidCredential:
            logger.info(f"Provider rejected token {key}")
            if self.invalid_ttl > 0:
                self.cache.set(key, {"valid": False}, self.invalid_ttl)
            raise

        logger.info(f"Validated token {key} (user {session.username or '?'}, premium: {session.premium})")
        self.cache.set(key, {"valid": True, "session": session.model_dump(mode="json")}, self.ttl)
        return session
