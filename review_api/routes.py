from typing import Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest

from jellywrapped.database import library_db, playback_db
from jellywrapped.service import UserNotFoundError, wrapped_service
from jellywrapped.sessions import EventOrderError
from jellywrapped.timeutils import UnknownTimezoneError

router = APIRouter()

REVIEWS_COMPUTED = Counter("jellywrapped_reviews_total", "Year in review computations")
COMPARISONS_COMPUTED = Counter(
    "jellywrapped_comparisons_total", "User comparison and ranking computations"
)
CACHE_ENTRIES = Gauge("jellywrapped_metadata_cache_entries", "Cached metadata lookups")
CACHE_HITS = Gauge("jellywrapped_metadata_cache_hits", "Metadata cache hits")
CACHE_MISSES = Gauge("jellywrapped_metadata_cache_misses", "Metadata cache misses")


def _is_connected(database) -> bool:
    try:
        _ = database.conn
        return True
    except RuntimeError:
        return False


@router.get("/api/users")
async def users():
    """Jellyfin accounts with any playback."""
    return [user.model_dump() for user in await wrapped_service.get_active_users()]


@router.get("/api/users/by-name/{username}")
async def user_by_name(username: str):
    try:
        user = await wrapped_service.get_user(username)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return user.model_dump()


@router.get("/api/users/{user_id}/years")
async def user_years(user_id: str):
    """Years in which the user has playback, newest first."""
    return {"user_id": user_id, "years": await wrapped_service.get_available_years(user_id)}


@router.get("/api/users/{user_id}/review/{year}")
async def year_review(user_id: str, year: int, timezone: Optional[str] = None):
    """Full year in review for a user."""
    try:
        review = await wrapped_service.get_year_review(user_id, year, timezone)
    except UnknownTimezoneError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EventOrderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    REVIEWS_COMPUTED.inc()
    return review.model_dump(mode="json")


@router.get("/api/users/{user_id}/marathons/{year}")
async def marathons(user_id: str, year: int, timezone: Optional[str] = None, limit: int = 5):
    try:
        stats, top = await wrapped_service.get_marathons(user_id, year, timezone, limit)
    except UnknownTimezoneError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EventOrderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {
        "stats": stats.model_dump(mode="json"),
        "top_marathons": [m.model_dump(mode="json") for m in top],
    }


@router.get("/api/users/{user_id}/ranking/{year}")
async def ranking(user_id: str, year: int):
    result = await wrapped_service.get_user_ranking(user_id, year)
    COMPARISONS_COMPUTED.inc()
    return result.model_dump()


@router.get("/api/users/{user_id}/comparison/{year}")
async def user_comparison(user_id: str, year: int):
    """How the user compares to everybody else on the server."""
    result = await wrapped_service.get_user_comparison(user_id, year)
    COMPARISONS_COMPUTED.inc()
    return result.model_dump()


@router.get("/api/server/years")
async def server_years():
    return {"years": await wrapped_service.get_available_years()}


@router.get("/api/server/{year}/users")
async def server_users(year: int, min_hours: float = 0):
    """Accounts ranked by hours watched in the year."""
    ranked = await wrapped_service.get_users_with_hours(year, min_hours)
    return [user.model_dump() for user in ranked]


@router.get("/api/server/{year}")
async def server_stats(year: int, limit: int = 5):
    """Server-wide totals and most watched titles."""
    stats = await wrapped_service.get_server_stats(year, limit)
    return stats.model_dump()


@router.get("/health")
async def health():
    """Basic health check."""
    return {
        "status": "ok",
        "playback_db_connected": _is_connected(playback_db),
        "library_db_connected": _is_connected(library_db),
    }


@router.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    cache_stats = wrapped_service.cache.stats()
    CACHE_ENTRIES.set(cache_stats["size"])
    CACHE_HITS.set(cache_stats["hits"])
    CACHE_MISSES.set(cache_stats["misses"])

    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)
