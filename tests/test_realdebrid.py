import json
from urllib.parse import parse_qs

import httpx
import pytest

from deflix.core.errors import InvalidCredential, NotCached, ProviderUnavailable, QuotaExceeded
from deflix.core.models import Session
from deflix.services.realdebrid import RealDebridService

from conftest import GOOD_TOKEN, HASH_A, HASH_B

BASE = "https://api.real-debrid.com/rest/1.0"

FILES = [
    {"id": 1, "path": "/Sample/sample.mkv", "bytes": 10 * 1024 ** 2, "selected": 0},
    {"id": 2, "path": "/The.Matrix.1999.1080p.mkv", "bytes": 2 * 1024 ** 3, "selected": 0},
    {"id": 3, "path": "/extras.iso", "bytes": 4 * 1024 ** 3, "selected": 0},
]


class FakeRealDebrid:
    """Routes requests like the RD API would, and records them."""

    def __init__(self, final_status="downloaded"):
        self.final_status = final_status
        self.requests = []
        self.selected = None
        self.deleted = []
        self.overrides = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.replace("/rest/1.0", "")
        if path in self.overrides:
            return self.overrides[path](request)
        assert request.headers["Authorization"] == f"Bearer {GOOD_TOKEN}"

        if path == "/user":
            return httpx.Response(200, json={"username": "neo", "type": "premium"})
        if path.startswith("/torrents/instantAvailability/"):
            hashes = path.split("/")[3:]
            return httpx.Response(200, json={
                h: ({"rd": [{"2": {"filename": "movie.mkv", "filesize": 1}}]} if h == HASH_A else [])
                for h in hashes
            })
        if path == "/torrents/addMagnet":
            return httpx.Response(201, json={"id": "T1", "uri": "https://real-debrid.com/torrents/T1"})
        if path == "/torrents/info/T1":
            if self.selected is None:
                return httpx.Response(200, json={"id": "T1", "status": "waiting_files_selection", "files": FILES, "links": []})
            links = ["https://real-debrid.com/d/ABC"] if self.final_status == "downloaded" else []
            return httpx.Response(200, json={"id": "T1", "status": self.final_status, "files": FILES, "links": links})
        if path == "/torrents/selectFiles/T1":
            self.selected = parse_qs(request.content.decode())["files"][0]
            return httpx.Response(204)
        if path == "/unrestrict/link":
            assert parse_qs(request.content.decode())["link"] == ["https://real-debrid.com/d/ABC"]
            return httpx.Response(200, json={"download": "https://42.download.real-debrid.com/d/XYZ/movie.mkv"})
        if path == "/torrents/delete/T1":
            self.deleted.append("T1")
            return httpx.Response(204)
        return httpx.Response(404, json={"error": "unknown_ressource", "error_code": 7})


def make_service(handler) -> RealDebridService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RealDebridService(BASE, poll_attempts=2, poll_interval=0, client=client)


@pytest.fixture
def rd():
    return FakeRealDebrid()


@pytest.fixture
def rd_session():
    return Session(token=GOOD_TOKEN)


async def test_check_token(rd):
    session = await make_service(rd).check_token(GOOD_TOKEN)

    assert session.username == "neo"
    assert session.premium
    assert session.token == GOOD_TOKEN


@pytest.mark.parametrize("status,body", [
    (401, {"error": "bad_token", "error_code": 8}),
    (403, {"error": "permission_denied", "error_code": 9}),
    (401, {}),
])
async def test_rejected_token(rd, status, body):
    rd.overrides["/user"] = lambda request: httpx.Response(status, json=body)

    with pytest.raises(InvalidCredential):
        await make_service(rd).check_token(GOOD_TOKEN)


@pytest.mark.parametrize("response", [
    httpx.Response(503, json={"error": "service_unavailable", "error_code": 25}),
    httpx.Response(429, json={"error": "too_many_requests", "error_code": 34}),
    httpx.Response(502, text="Bad Gateway"),
])
async def test_provider_errors_are_retryable(rd, response):
    rd.overrides["/user"] = lambda request: response

    with pytest.raises(ProviderUnavailable):
        await make_service(rd).check_token(GOOD_TOKEN)


async def test_network_failure_is_provider_unavailable(rd):
    def fail(request):
        raise httpx.ConnectError("connection refused", request=request)
    rd.overrides["/user"] = fail

    with pytest.raises(ProviderUnavailable):
        await make_service(rd).check_token(GOOD_TOKEN)


async def test_availability_is_one_request_for_all_hashes(rd, rd_session):
    result = await make_service(rd).instant_availability(rd_session, [HASH_A, HASH_B])

    assert result == {HASH_A: True, HASH_B: False}
    assert len(rd.requests) == 1
    assert rd.requests[0].url.path.endswith(f"/torrents/instantAvailability/{HASH_A}/{HASH_B}")


async def test_availability_of_nothing_skips_the_request(rd, rd_session):
    assert await make_service(rd).instant_availability(rd_session, []) == {}
    assert rd.requests == []


async def test_unlock_selects_largest_video_and_unrestricts(rd, rd_session):
    url, expires_at = await make_service(rd).unlock(rd_session, HASH_A)

    assert url == "https://42.download.real-debrid.com/d/XYZ/movie.mkv"
    assert expires_at is None
    assert rd.selected == "2"
    add = rd.requests[0]
    assert parse_qs(add.content.decode())["magnet"] == [f"magnet:?xt=urn:btih:{HASH_A}"]
    assert rd.deleted == []


async def test_unlock_with_explicit_file(rd, rd_session):
    await make_service(rd).unlock(rd_session, HASH_A, file_selector="1")

    assert rd.selected == "1"


async def test_unlock_with_unknown_file_is_not_cached(rd, rd_session):
    with pytest.raises(NotCached):
        await make_service(rd).unlock(rd_session, HASH_A, file_selector="99")
    assert rd.deleted == ["T1"]


async def test_unlock_never_waits_for_a_download(rd_session):
    rd = FakeRealDebrid(final_status="downloading")

    with pytest.raises(NotCached):
        await make_service(rd).unlock(rd_session, HASH_A)

    assert rd.deleted == ["T1"]
    assert not any(r.url.path.endswith("/unrestrict/link") for r in rd.requests)


async def test_unlock_quota(rd, rd_session):
    rd.overrides["/torrents/addMagnet"] = lambda request: httpx.Response(
        403, json={"error": "too_many_active_downloads", "error_code": 21}
    )

    with pytest.raises(QuotaExceeded):
        await make_service(rd).unlock(rd_session, HASH_A)


def test_error_mapping_reads_error_codes():
    response = httpx.Response(503, content=json.dumps({"error": "traffic_exhausted", "error_code": 23}).encode())

    with pytest.raises(QuotaExceeded):
        RealDebridService._raise_for_error(response)


async def test_availability_reads_uppercase_keys(rd, rd_session):
    rd.overrides[f"/torrents/instantAvailability/{HASH_A}/{HASH_B}"] = lambda request: httpx.Response(200, json={
        HASH_A.upper(): {"rd": [{"1": {"filename": "movie.mkv", "filesize": 1}}]},
        HASH_B.upper(): [],
    })

    result = await make_service(rd).instant_availability(rd_session, [HASH_A, HASH_B])

    assert result == {HASH_A: True, HASH_B: False}


async def test_aclose_closes_the_http_client(rd):
    service = make_service(rd)

    await service.aclose()

    assert service.client.is_closed
