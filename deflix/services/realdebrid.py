import httpx
import asyncio
from loguru import logger
from typing import Dict, Iterable, List, Optional, Tuple
from deflix.core.errors import InvalidCredential, NotCached, ProviderUnavailable, QuotaExceeded
from deflix.core.models import Session
from deflix.services.base import DebridProvider

VIDEO_EXTENSIONS = (".mp4", ".mkv", ".avi", ".mov", ".webm", ".m4v", ".ts")

# https://api.real-debrid.com/#api_error_codes
TOKEN_ERROR_CODES = {8, 9, 14, 15}
QUOTA_ERROR_CODES = {18, 21, 23, 36}

# Torrent states in which RD is actively fetching the torrent, i.e. it's not cached
DOWNLOADING_STATES = {"queued", "downloading", "compressing", "uploading"}
DEAD_STATES = {"magnet_error", "error", "virus", "dead"}


class RealDebridService(DebridProvider):
    """
    Client for Real-Debrid API.
    Docs: https://api.real-debrid.com/
    """
    name = "realdebrid"

    def __init__(
        self,
        base_url: str = "https://api.real-debrid.com/rest/1.0",
        timeout: float = 5.0,
        poll_attempts: int = 3,
        poll_interval: float = 0.5,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _get_headers(self, api_key: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    async def _request(self, method: str, path: str, api_key: str, **kwargs) -> httpx.Response:
        headers = await self._get_headers(api_key)
        try:
            resp = await self.client.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderUnavailable(f"Real-Debrid timed out: {type(e).__name__}") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Couldn't reach Real-Debrid: {type(e).__name__}") from e
        if resp.status_code >= 400:
            self._raise_for_error(resp)
        return resp

    @staticmethod
    def _raise_for_error(resp: httpx.Response) -> None:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        error_code = body.get("error_code") if isinstance(body, dict) else None
        error = body.get("error", resp.reason_phrase) if isinstance(body, dict) else resp.reason_phrase

        if error_code in QUOTA_ERROR_CODES:
            raise QuotaExceeded(f"Debrid account limit reached: {error}")
        if resp.status_code in (401, 403) or error_code in TOKEN_ERROR_CODES:
            raise InvalidCredential()
        if resp.status_code == 429 or resp.status_code >= 500:
            raise ProviderUnavailable(f"Real-Debrid responded {resp.status_code}: {error}")
        raise ProviderUnavailable(f"Unexpected Real-Debrid response {resp.status_code}: {error}")

    async def check_token(self, token: str) -> Session:
        resp = await self._request("GET", "/user", token)
        data = resp.json()
        return Session(token=token, username=data.get("username", ""), premium=data.get("type") == "premium")

    async def instant_availability(self, session: Session, info_hashes: Iterable[str]) -> Dict[str, bool]:
        hashes = list(info_hashes)
        if not hashes:
            return {}
        # Structure: { hash: { "rd": [ {"1":{...}, "2":{...}}, ... ] } } or { hash: [] } if not cached
        resp = await self._request("GET", "/torrents/instantAvailability/" + "/".join(hashes), session.token)
        data = resp.json()
        result = {}
        for info_hash in hashes:
            # Not cached is an empty list, which must not fall through to the uppercase lookup
            entry = data[info_hash] if info_hash in data else data.get(info_hash.upper())
            if isinstance(entry, dict):
                result[info_hash] = bool(entry.get("rd"))
            elif entry is not None:
                result[info_hash] = False
        return result

    async def unlock(
        self, session: Session, info_hash: str, file_selector: str = "auto"
    ) -> Tuple[str, Optional[float]]:
        """
        Resolves a Real-Debrid stream.
        1. Add Magnet -> Get Torrent ID
        2. Poll Info -> Wait for file list
        3. Select File (largest video, or the requested one)
        4. Check that RD has it cached (status "downloaded"), never wait for a download
        5. Unrestrict Link
        """
        token = session.token

        # 1. Add Magnet
        logger.info(f"Adding magnet to RD: {info_hash} (user {session.key})")
        resp = await self._request(
            "POST", "/torrents/addMagnet", token, data={"magnet": f"magnet:?xt=urn:btih:{info_hash}"}
        )
        torrent_id = resp.json().get("id")
        if not torrent_id:
            raise ProviderUnavailable("RD did not return torrent ID")

        try:
            # 2. Poll for Info (Files)
            torrent = await self._poll_info(token, torrent_id, lambda t: bool(t.get("files")))
            if not torrent or not torrent.get("files"):
                raise NotCached(f"RD has no file list for {info_hash}")

            # 3. Select File
            file_id = self._pick_file(torrent["files"], file_selector)
            if file_id is None:
                raise NotCached(f"No file matching {file_selector!r} in {info_hash}")
            if torrent.get("status") == "waiting_files_selection":
                logger.info(f"Selecting file {file_id} of {info_hash} on RD...")
                await self._request("POST", f"/torrents/selectFiles/{torrent_id}", token, data={"files": str(file_id)})

            # 4. Re-fetch info to get generated links
            torrent = await self._poll_info(
                token, torrent_id,
                lambda t: t.get("status") in DOWNLOADING_STATES | DEAD_STATES or bool(t.get("links")),
            )
            status = torrent.get("status") if torrent else None
            links = torrent.get("links", []) if torrent else []
            if status != "downloaded" or not links:
                logger.warning(f"Torrent {info_hash} is not cached on RD (status {status}). Cannot stream instantly.")
                raise NotCached()
        except NotCached:
            await self._delete_torrent(token, torrent_id)
            raise

        # 5. Unrestrict the Link
        resp = await self._request("POST", "/unrestrict/link", token, data={"link": links[0]})
        stream_url = resp.json().get("download")
        if not stream_url:
            raise ProviderUnavailable("RD unrestrict response has no download URL")
        logger.info(f"Unlocked {info_hash} for user {session.key}")
        # RD doesn't tell how long a download link stays valid
        return stream_url, None

    async def _poll_info(self, token: str, torrent_id: str, done) -> Optional[dict]:
        torrent = None
        for attempt in range(self.poll_attempts):
            resp = await self._request("GET", f"/torrents/info/{torrent_id}", token)
            torrent = resp.json()
            if done(torrent):
                return torrent
            logger.debug(f"RD torrent {torrent_id} status {torrent.get('status')} (attempt {attempt + 1}/{self.poll_attempts})")
            if attempt < self.poll_attempts - 1:
                await asyncio.sleep(self.poll_interval)
        return torrent

    @staticmethod
    def _pick_file(files: List[dict], file_selector: str) -> Optional[int]:
        # RD File Object: {'id': 1, 'path': '/...mkv', 'bytes': 1234, 'selected': 0}
        if file_selector and file_selector != "auto":
            for f in files:
                if str(f.get("id")) == file_selector:
                    return f.get("id")
            return None
        video_files = [f for f in files if f.get("path", "").lower().endswith(VIDEO_EXTENSIONS)] or files
        best = max(video_files, key=lambda f: f.get("bytes", 0))
        return best.get("id")

    async def _delete_torrent(self, token: str, torrent_id: str) -> None:
        try:
            await self._request("DELETE", f"/torrents/delete/{torrent_id}", token)
        except (ProviderUnavailable, InvalidCredential, QuotaExceeded) as e:
            logger.warning(f"Couldn't delete uncached torrent {torrent_id} from RD: {e}")
