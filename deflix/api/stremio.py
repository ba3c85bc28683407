from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from loguru import logger
from pydantic import ValidationError

from deflix.core.container import Container
from deflix.core.errors import DeflixError
from deflix.core.models import MovieIdentifier, Session, StreamOption, TorrentCandidate
from deflix.utils.parser import VideoParser

router = APIRouter()


def build_manifest(container: Container) -> dict:
    return {
        "id": "tv.deflix.stremio",
        "name": container.settings.PROJECT_NAME,
        "description": "Automatically turns torrents into debrid/cached streams, for high speed and no seeding. "
                       "Currently supported providers: real-debrid.com",
        "version": container.settings.VERSION,
        "resources": [{"name": "stream", "types": ["movie"]}],
        "types": ["movie"],
        # An empty list is required, Stremio rejects a missing one
        "catalogs": [],
        "idPrefixes": ["tt"],
    }


def format_stream(candidate: TorrentCandidate, url: str) -> StreamOption:
    return StreamOption(
        name=f"Deflix\n{candidate.quality}",
        title=f"{candidate.title}\n💾 {VideoParser.format_size(candidate.size)} ⚙️ {', '.join(candidate.sources)}",
        url=url,
    )


# --- Dependencies ---

def get_container(request: Request) -> Container:
    return request.app.state.container


async def get_session(apitoken: str, container: Container = Depends(get_container)) -> Session:
    return await container.gate.validate(apitoken)


async def deflix_error_handler(request: Request, exc: DeflixError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning(f"{type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": type(exc).__name__, "message": exc.message})


# --- Endpoints ---

@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/{apitoken}/manifest.json")
async def manifest(session: Session = Depends(get_session), container: Container = Depends(get_container)):
    return build_manifest(container)


@router.get("/{apitoken}/stream/{media_type}/{movie_id}.json")
async def stream(
    media_type: str,
    movie_id: str,
    session: Session = Depends(get_session),
    container: Container = Depends(get_container),
):
    """
    Lists the instantly available torrents for a movie, best first.
    Every URL is a redirect ticket, the provider URL is only created when it's played.
    """
    if media_type != "movie":
        return {"streams": []}
    try:
        movie = MovieIdentifier(media_type=media_type, imdb_id=movie_id)
    except ValidationError:
        raise HTTPException(status_code=400, detail=f"Invalid movie ID: {movie_id}")

    candidates, partial = await container.search.search(movie)
    if not candidates:
        logger.info(f"No torrents found for {movie}" + (" (some indexers failed)" if partial else ""))
        return {"streams": []}

    availability = await container.debrid.check_availability(session, [c.info_hash for c in candidates])
    streams = [
        format_stream(c, container.redirects.issue_ticket(session, c.info_hash))
        for c in candidates
        if availability.get(c.info_hash)
    ]
    logger.info(f"Returning {len(streams)} of {len(candidates)} torrents for {movie} (user {session.key})")
    return {"streams": [s.model_dump() for s in streams]}


@router.get("/redirect/{ticket_id}")
async def redirect(ticket_id: str, container: Container = Depends(get_container)):
    """
    Redirects stream URLs (previously sent to Stremio) to the actual debrid stream URLs.
    """
    url = await container.redirects.resolve(ticket_id)
    return RedirectResponse(url, status_code=307)
