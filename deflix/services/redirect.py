import secrets
import time
from typing import Callable, Optional

from loguru import logger

from deflix.core.cache import CacheStore
from deflix.core.errors import TicketExpired
from deflix.core.models import RedirectTicket, Session, UnlockedStream
from deflix.services.debrid import DebridClient


class RedirectResolver:
    """
    Hands out `{base}/redirect/{ticket}` URLs instead of provider URLs, and turns
    them into the real stream URL only when a player follows one.

    Ticket lifecycle: issued -> (unused | resolved) -> expired, never back.
    An expired ticket is rejected even when the stream it pointed to is still
    unlocked and cached, which bounds how long a handed out link stays usable.
    """

    def __init__(
        self,
        debrid: DebridClient,
        cache: CacheStore,
        base_url: str,
        ttl: float,
        stream_ttl: float,
        clock: Callable[[], float] = time.time,
    ):
        self.debrid = debrid
        self.cache = cache
        self.base_url = base_url.rstrip("/")
        self.ttl = ttl
        self.stream_ttl = stream_ttl
        self._clock = clock

    def issue_ticket(self, session: Session, info_hash: str, file_selector: str = "auto") -> str:
        ticket = RedirectTicket(
            id=secrets.token_urlsafe(16),
            info_hash=info_hash,
            file_selector=file_selector,
            session=session,
            created_at=self._clock(),
        )
        self.cache.set(self._ticket_key(ticket.id), ticket.model_dump(mode="json"), self.ttl)
        return f"{self.base_url}/redirect/{ticket.id}"

    def get_ticket(self, ticket_id: str) -> Optional[RedirectTicket]:
        data = self.cache.get(self._ticket_key(ticket_id))
        return RedirectTicket.model_validate(data) if data is not None else None

    async def resolve(self, ticket_id: str) -> str:
        ticket = self.get_ticket(ticket_id)
        if ticket is None:
            raise TicketExpired()

        stream_key = self._stream_key(ticket)
        cached = self.cache.get(stream_key)
        if cached is not None:
            stream = UnlockedStream.model_validate(cached)
            if stream.is_valid(self._clock()):
                logger.debug(f"Redirect {ticket_id}: reusing unlocked stream of {ticket.info_hash}")
                return stream.url

        url, expires_at = await self.debrid.unlock(ticket.session, ticket.info_hash, ticket.file_selector)
        now = self._clock()
        if expires_at is None:
            expires_at = now + self.stream_ttl
        if expires_at > now:
            stream = UnlockedStream(info_hash=ticket.info_hash, url=url, expires_at=expires_at)
            self.cache.set(stream_key, stream.model_dump(mode="json"), expires_at - now)
        return url

    @staticmethod
    def _ticket_key(ticket_id: str) -> str:
        return f"ticket:{ticket_id}"

    @staticmethod
    def _stream_key(ticket: RedirectTicket) -> str:
        # Per user: the unlocked URL belongs to their debrid account
        return f"stream:{ticket.session.key}:{ticket.info_hash}:{ticket.file_selector}"
