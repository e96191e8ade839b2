from datetime import date, datetime, timezone

from fastapi.testclient import TestClient

import review_api.routes as routes_module
from jellywrapped.cache import MetadataCache
from jellywrapped.comparison import get_user_comparison, get_user_ranking
from jellywrapped.models import (
    Marathon,
    MarathonStats,
    PlaybackMethodStats,
    PlaybackStats,
    Population,
    PopulationEntry,
    ServerStats,
    ServerTopMovie,
    User,
    UserWithHours,
    YearInReview,
)
from jellywrapped.service import UserNotFoundError
from jellywrapped.sessions import EventOrderError
from jellywrapped.timeutils import resolve_timezone
from review_api.app import app

POPULATION = Population(
    total_hours=[
        PopulationEntry(user_id="user1", value=40),
        PopulationEntry(user_id="user2", value=10),
    ]
)

MARATHON_START = datetime(2024, 3, 1, 18, 0, tzinfo=timezone.utc)

ALICE = User(
    id="AAAAAAAA-0000-0000-0000-000000000001",
    username="alice",
    normalized_id="aaaaaaaa000000000000000000000001",
)


class _DummyDB:
    @property
    def conn(self):
        raise RuntimeError("Database not connected")


class _ConnectedDB:
    @property
    def conn(self):
        return object()


class _DummyService:
    def __init__(self):
        self.cache = MetadataCache()
        self.calls = []

    async def get_available_years(self, user_id=None):
        self.calls.append(("years", user_id))
        return [2024] if user_id else [2024, 2023]

    async def get_year_review(self, user_id, year, timezone=None):
        self.calls.append(("review", user_id, year, timezone))
        resolve_timezone(timezone)
        return YearInReview(
            user_id=user_id,
            year=year,
            timezone=timezone or "Europe/Riga",
            stats=PlaybackStats(total_plays=3, total_hours=2.5),
            top_movies=[],
            abandoned_movies=[],
            finished_movies=0,
            top_shows=[],
            top_genres=[],
            hourly=[],
            day_of_week=[],
            monthly=[],
            devices=[],
            clients=[],
            playback_methods=PlaybackMethodStats(),
            marathons=MarathonStats(),
            top_marathons=[],
            personality="Casual Viewer",
            personality_description="A balanced viewer with diverse tastes.",
            personality_emoji="🍿",
        )

    async def get_marathons(self, user_id, year, timezone=None, limit=5):
        self.calls.append(("marathons", user_id, year, timezone, limit))
        resolve_timezone(timezone)
        marathon = Marathon(
            started_at=MARATHON_START,
            ended_at=MARATHON_START,
            total_minutes=200,
            total_hours=3.3,
            items=[],
            item_count=3,
            local_date=date(2024, 3, 1),
        )
        return MarathonStats(total_marathons=1, longest_marathon=marathon), [marathon]

    async def get_user_ranking(self, user_id, year):
        return get_user_ranking(user_id, POPULATION)

    async def get_user_comparison(self, user_id, year):
        return get_user_comparison(user_id, POPULATION)

    async def get_server_stats(self, year, limit=5):
        self.calls.append(("server", year, limit))
        return ServerStats(
            year=year,
            total_plays=12,
            top_movies=[
                ServerTopMovie(
                    item_id="m1",
                    item_name="Inception",
                    total_hours=4.0,
                    total_plays=3,
                    unique_viewers=2,
                )
            ],
        )

    async def get_active_users(self):
        return [ALICE]

    async def get_user(self, identifier):
        if identifier.lower() != "alice":
            raise UserNotFoundError(f"User not found: {identifier}")
        return ALICE

    async def get_users_with_hours(self, year, min_hours=0):
        self.calls.append(("users", year, min_hours))
        return [UserWithHours(**ALICE.model_dump(), total_hours=12.5, rank=1)]


class _OutOfOrderService(_DummyService):
    async def get_year_review(self, user_id, year, timezone=None):
        raise EventOrderError("Playback events are not in chronological order")

    async def get_marathons(self, user_id, year, timezone=None, limit=5):
        raise EventOrderError("Playback events are not in chronological order")


def _client(monkeypatch, service=None):
    monkeypatch.setattr(routes_module, "wrapped_service", service or _DummyService())
    monkeypatch.setattr(routes_module, "playback_db", _ConnectedDB())
    monkeypatch.setattr(routes_module, "library_db", _DummyDB())
    return TestClient(app)


def test_health_route(monkeypatch):
    client = _client(monkeypatch)

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "playback_db_connected": True,
        "library_db_connected": False,
    }


def test_review_route(monkeypatch):
    service = _DummyService()
    client = _client(monkeypatch, service)

    response = client.get("/api/users/user1/review/2024", params={"timezone": "UTC"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["user_id"] == "user1"
    assert payload["timezone"] == "UTC"
    assert payload["stats"]["total_plays"] == 3
    assert payload["personality"] == "Casual Viewer"
    assert service.calls == [("review", "user1", 2024, "UTC")]


def test_review_route_rejects_unknown_timezone(monkeypatch):
    client = _client(monkeypatch)

    response = client.get("/api/users/user1/review/2024", params={"timezone": "Nowhere/Land"})

    assert response.status_code == 400
    assert "Nowhere/Land" in response.json()["detail"]


def test_review_route_validates_year(monkeypatch):
    client = _client(monkeypatch)

    response = client.get("/api/users/user1/review/last-year")

    assert response.status_code == 422


def test_marathons_route(monkeypatch):
    service = _DummyService()
    client = _client(monkeypatch, service)

    response = client.get("/api/users/user1/marathons/2024", params={"limit": 1})

    assert response.status_code == 200
    payload = response.json()
    assert payload["stats"]["total_marathons"] == 1
    assert payload["top_marathons"][0]["item_count"] == 3
    assert payload["top_marathons"][0]["local_date"] == "2024-03-01"
    assert service.calls == [("marathons", "user1", 2024, None, 1)]


def test_marathons_route_rejects_unknown_timezone(monkeypatch):
    client = _client(monkeypatch)

    response = client.get("/api/users/user1/marathons/2024", params={"timezone": "Bad/Zone"})

    assert response.status_code == 400


def test_ranking_and_comparison_routes(monkeypatch):
    client = _client(monkeypatch)

    ranking = client.get("/api/users/user2/ranking/2024").json()
    comparison = client.get("/api/users/user1/comparison/2024").json()

    assert ranking == {"rank": 2, "total_users": 2, "percentile": 0, "top_viewer_hours": 40.0}
    assert comparison["total_hours"]["rank"] == 1
    assert comparison["total_hours"]["percentile"] == 100
    assert comparison["total_users"] == 2


def test_years_routes(monkeypatch):
    client = _client(monkeypatch)

    assert client.get("/api/users/user1/years").json() == {"user_id": "user1", "years": [2024]}
    assert client.get("/api/server/years").json() == {"years": [2024, 2023]}


def test_server_stats_route(monkeypatch):
    service = _DummyService()
    client = _client(monkeypatch, service)

    response = client.get("/api/server/2024", params={"limit": 3})

    assert response.status_code == 200
    payload = response.json()
    assert payload["total_plays"] == 12
    assert payload["top_movies"][0]["item_name"] == "Inception"
    assert service.calls == [("server", 2024, 3)]


def test_metrics_route(monkeypatch):
    service = _DummyService()
    service.cache.set("runtime:m1", 6000)
    service.cache.get("runtime:m1")
    client = _client(monkeypatch, service)

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "jellywrapped_metadata_cache_entries 1.0" in response.text
    assert "jellywrapped_metadata_cache_hits 1.0" in response.text


def test_timezone_directory_is_rejected(monkeypatch):
    client = _client(monkeypatch)

    response = client.get("/api/users/user1/review/2024", params={"timezone": "America"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Unknown timezone: America"


def test_out_of_order_events_map_to_bad_gateway(monkeypatch):
    client = _client(monkeypatch, _OutOfOrderService())

    review = client.get("/api/users/user1/review/2024")
    marathons = client.get("/api/users/user1/marathons/2024")

    assert review.status_code == 502
    assert review.json()["detail"] == "Playback events are not in chronological order"
    assert marathons.status_code == 502


def test_users_route(monkeypatch):
    client = _client(monkeypatch)

    response = client.get("/api/users")

    assert response.status_code == 200
    assert response.json() == [
        {
            "id": "AAAAAAAA-0000-0000-0000-000000000001",
            "username": "alice",
            "normalized_id": "aaaaaaaa000000000000000000000001",
        }
    ]


def test_user_by_name_route(monkeypatch):
    client = _client(monkeypatch)

    found = client.get("/api/users/by-name/ALICE")
    missing = client.get("/api/users/by-name/mallory")

    assert found.status_code == 200
    assert found.json()["username"] == "alice"
    assert missing.status_code == 404
    assert missing.json()["detail"] == "User not found: mallory"


def test_server_users_route(monkeypatch):
    service = _DummyService()
    client = _client(monkeypatch, service)

    response = client.get("/api/server/2024/users", params={"min_hours": 2})

    assert response.status_code == 200
    assert response.json()[0]["rank"] == 1
    assert response.json()[0]["total_hours"] == 12.5
    assert service.calls == [("users", 2024, 2.0)]
