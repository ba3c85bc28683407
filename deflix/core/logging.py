import re
import sys

from loguru import logger

# /{apitoken}/manifest.json and /{apitoken}/stream/... carry the user's debrid token
_TOKEN_PATH = re.compile(r"^/[^/]+/(manifest\.json|stream/)")


def setup_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
               "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    )


def redact_path(path: str) -> str:
    """Masks the API token in request paths before they get logged."""
    match = _TOKEN_PATH.match(path)
    if not match:
        return path
    return "/***/" + path[match.start(1):]
