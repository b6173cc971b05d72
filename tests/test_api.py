from __future__ import annotations

import asyncio
import base64
import logging

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from app.config import Settings
from app.main import install_services, register_routes
from app.models import EpisodeCreate, SeasonCreate
from app.seed_catalog import SEED_CONTENT, SEED_PLANS
from app.services.storage import MemoryStorage

ANA = {"X-User-Id": "ana", "X-User-Email": "ana@example.com", "X-User-Name": "Ana Souza"}
BIA = {"X-User-Id": "bia", "X-User-Name": "Bia"}


def _build_app(**overrides) -> tuple[FastAPI, MemoryStorage]:
    storage = MemoryStorage()
    asyncio.run(storage.seed(SEED_CONTENT, SEED_PLANS))
    app = FastAPI()
    register_routes(app)
    install_services(app, Settings(_env_file=None, **overrides), storage)
    return app, storage


@pytest.fixture
def client() -> TestClient:
    app, _ = _build_app()
    with TestClient(app) as test_client:
        yield test_client


def _title_id(client: TestClient, title: str, **params) -> str:
    response = client.get("/api/content", params=params)
    return next(item["id"] for item in response.json() if item["title"] == title)


def _make_admin(client: TestClient, headers=ANA) -> None:
    assert client.post("/api/admin/bootstrap", headers=headers).status_code == 200


def test_healthcheck(client: TestClient) -> None:
    assert client.get("/healthz").json() == {"status": "ok"}


def test_auth_user_requires_header_and_upserts_claims(client: TestClient) -> None:
    assert client.get("/api/auth/user").status_code == 401

    response = client.get("/api/auth/user", headers=ANA)

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == "ana"
    assert (body["firstName"], body["lastName"]) == ("Ana", "Souza")
    assert body["isAdmin"] is False


def test_content_listing_filters_and_detail(client: TestClient) -> None:
    response = client.get(
        "/api/content", params={"type": "anime", "sortBy": "rating"}
    )
    assert response.status_code == 200
    ratings = [item["rating"] for item in response.json()]
    assert ratings == sorted(ratings, reverse=True)
    assert all(item["type"] == "anime" for item in response.json())

    bad = client.get("/api/content", params={"yearMin": 2020, "yearMax": 2000})
    assert bad.status_code == 400

    dune_id = _title_id(client, "Dune")
    detail = client.get(f"/api/content/{dune_id}")
    assert detail.json()["title"] == "Dune"
    assert client.get("/api/content/missing").status_code == 404


def test_feed_lanes_and_search(client: TestClient) -> None:
    feed = client.get("/api/content/feed").json()

    assert set(feed) == {
        "hero",
        "trending",
        "newReleases",
        "popular",
        "movies",
        "series",
        "anime",
    }
    assert len(feed["hero"]) == 3
    assert feed["hero"] == feed["trending"][:3]
    assert client.get("/api/content/search", params={"q": ""}).status_code == 400
    found = client.get("/api/content/search", params={"q": "cranston"}).json()
    assert [item["title"] for item in found] == ["Breaking Bad"]
    assert client.get("/api/content/type/podcast").status_code == 400


def test_kids_profile_restricts_catalog(client: TestClient) -> None:
    kids = client.post(
        "/api/profiles", json={"name": "Crianças", "isKids": True}, headers=ANA
    ).json()
    breaking_bad = _title_id(client, "Breaking Bad")

    listing = client.get(
        "/api/content", params={"profileId": kids["id"]}, headers=ANA
    ).json()
    assert {item["ageRating"] for item in listing} <= {"L", "10", "12"}
    blocked = client.get(
        f"/api/content/{breaking_bad}", params={"profileId": kids["id"]}, headers=ANA
    )
    assert blocked.status_code == 404
    # Someone else's profile cannot be used to browse.
    foreign = client.get("/api/content", params={"profileId": kids["id"]}, headers=BIA)
    assert foreign.status_code == 404


def test_profile_crud_is_scoped_to_owner(client: TestClient) -> None:
    created = client.post("/api/profiles", json={"name": "  Ana  "}, headers=ANA)
    assert created.status_code == 201
    profile = created.json()
    assert profile["name"] == "Ana"

    assert client.get("/api/profiles", headers=BIA).json() == []
    assert (
        client.put(
            f"/api/profiles/{profile['id']}", json={"name": "Hack"}, headers=BIA
        ).status_code
        == 404
    )

    renamed = client.put(
        f"/api/profiles/{profile['id']}", json={"name": "Aninha"}, headers=ANA
    )
    assert renamed.json()["name"] == "Aninha"

    assert client.delete(f"/api/profiles/{profile['id']}", headers=ANA).status_code == 204
    assert client.get("/api/profiles", headers=ANA).json() == []


def test_profile_limit_returns_conflict() -> None:
    app, _ = _build_app(MAX_PROFILES_PER_USER=2)
    with TestClient(app) as client:
        for name in ("Um", "Dois"):
            assert client.post("/api/profiles", json={"name": name}, headers=ANA).status_code == 201
        response = client.post("/api/profiles", json={"name": "Três"}, headers=ANA)

    assert response.status_code == 409


def test_plan_profile_limit_applies_when_lower(client: TestClient) -> None:
    plans = client.get("/api/subscription-plans").json()
    basic = min(plans, key=lambda plan: plan["maxProfiles"])
    client.post("/api/user/subscription", json={"planId": basic["id"]}, headers=ANA)

    for index in range(basic["maxProfiles"]):
        ok = client.post("/api/profiles", json={"name": f"P{index}"}, headers=ANA)
        assert ok.status_code == 201
    over = client.post("/api/profiles", json={"name": "Extra"}, headers=ANA)

    assert over.status_code == 409


def test_avatar_validation() -> None:
    app, _ = _build_app(MAX_AVATAR_BYTES=16)
    small = base64.b64encode(b"x" * 8).decode("ascii")
    large = base64.b64encode(b"x" * 32).decode("ascii")
    with TestClient(app) as client:
        ok = client.post(
            "/api/profiles",
            json={"name": "A", "avatarUrl": f"data:image/png;base64,{small}"},
            headers=ANA,
        )
        too_big = client.post(
            "/api/profiles",
            json={"name": "B", "avatarUrl": f"data:image/png;base64,{large}"},
            headers=ANA,
        )
        wrong_type = client.post(
            "/api/profiles",
            json={"name": "C", "avatarUrl": f"data:text/plain;base64,{small}"},
            headers=ANA,
        )
        not_a_url = client.post(
            "/api/profiles", json={"name": "D", "avatarUrl": "avatar.png"}, headers=ANA
        )
        link = client.post(
            "/api/profiles",
            json={"name": "E", "avatarUrl": "https://img.example/e.png"},
            headers=ANA,
        )

    assert ok.status_code == 201
    assert too_big.status_code == 400
    assert wrong_type.status_code == 400
    assert not_a_url.status_code == 400
    assert link.status_code == 201


def test_watch_progress_and_continue_watching(client: TestClient) -> None:
    profile = client.post("/api/profiles", json={"name": "Ana"}, headers=ANA).json()
    dune = _title_id(client, "Dune")
    batman = _title_id(client, "The Batman")
    stranger = _title_id(client, "Stranger Things")
    url = f"/api/profiles/{profile['id']}"

    first = client.post(
        f"{url}/watch-progress",
        json={"contentId": dune, "currentTime": 1800, "duration": 3600},
        headers=ANA,
    )
    assert first.status_code == 200
    assert first.json()["progress"] == 50
    assert first.json()["completed"] is False

    finished = client.post(
        f"{url}/watch-progress",
        json={"contentId": batman, "progress": 96.4},
        headers=ANA,
    ).json()
    assert finished["completed"] is True

    client.post(
        f"{url}/watch-progress",
        json={"contentId": stranger, "progress": 12, "seasonNumber": 2, "episodeNumber": 3},
        headers=ANA,
    )

    history = client.get(f"{url}/watch-history", headers=ANA).json()
    assert [entry["contentId"] for entry in history] == [stranger, batman, dune]

    rows = client.get(f"{url}/continue-watching", headers=ANA).json()
    assert [row["id"] for row in rows] == [stranger, dune]
    assert rows[0]["label"] == "T2 E3"
    assert rows[1]["label"] is None

    bad = client.post(
        f"{url}/watch-progress",
        json={"contentId": dune, "currentTime": 10, "duration": 0},
        headers=ANA,
    )
    assert bad.status_code == 400
    missing = client.post(
        f"{url}/watch-progress", json={"contentId": "nope", "progress": 5}, headers=ANA
    )
    assert missing.status_code == 404
    other = client.get(f"{url}/watch-history", headers=BIA)
    assert other.status_code == 404


def test_continue_watching_is_capped_by_setting() -> None:
    app, _ = _build_app(CONTINUE_WATCHING_LIMIT=2)
    with TestClient(app) as client:
        profile = client.post("/api/profiles", json={"name": "Ana"}, headers=ANA).json()
        url = f"/api/profiles/{profile['id']}"
        titles = ["Dune", "The Batman", "Stranger Things", "Your Name"]
        for title in titles:
            client.post(
                f"{url}/watch-progress",
                json={"contentId": _title_id(client, title), "progress": 10},
                headers=ANA,
            )

        rows = client.get(f"{url}/continue-watching", headers=ANA).json()
        history = client.get(f"{url}/watch-history", headers=ANA).json()

    assert [row["title"] for row in rows] == ["Your Name", "Stranger Things"]
    assert len(history) == 4


def test_kids_profile_restricts_feed_search_and_continue_watching(
    client: TestClient,
) -> None:
    kids = client.post(
        "/api/profiles", json={"name": "Crianças", "isKids": True}, headers=ANA
    ).json()
    params = {"profileId": kids["id"]}
    url = f"/api/profiles/{kids['id']}"
    for title in ("Breaking Bad", "Dune"):
        client.post(
            f"{url}/watch-progress",
            json={"contentId": _title_id(client, title), "progress": 40},
            headers=ANA,
        )

    feed = client.get("/api/content/feed", params=params, headers=ANA).json()
    found = client.get(
        "/api/content/search", params={"q": "cranston", **params}, headers=ANA
    ).json()
    rows = client.get(f"{url}/continue-watching", headers=ANA).json()

    lane_titles = {item["title"] for lane in feed.values() for item in lane}
    assert lane_titles == {"Dune", "Your Name"}
    assert feed["hero"] == []
    assert found == []
    assert [row["title"] for row in rows] == ["Dune"]
    adult_feed = client.get("/api/content/feed").json()
    assert "Breaking Bad" in {item["title"] for item in adult_feed["series"]}


def test_stream_descriptor_for_movie(client: TestClient) -> None:
    profile = client.post("/api/profiles", json={"name": "Ana"}, headers=ANA).json()
    dune = _title_id(client, "Dune")
    client.post(
        f"/api/profiles/{profile['id']}/watch-progress",
        json={"contentId": dune, "progress": 30},
        headers=ANA,
    )

    response = client.get(
        f"/api/content/{dune}/stream",
        params={"quality": "1080", "profileId": profile["id"]},
        headers=ANA,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["defaultQuality"] == "1080p"
    assert body["sources"]["1080p"].endswith("quality=1080")
    assert body["resume"]["progress"] == 30
    assert (
        client.get(f"/api/content/{dune}/stream", params={"quality": "8k"}).status_code
        == 400
    )


def test_stream_descriptor_for_series_episode() -> None:
    app, storage = _build_app()
    stranger = next(
        item
        for item in asyncio.run(storage.list_content())
        if item.title == "Stranger Things"
    )

    async def add_episodes() -> None:
        season = await storage.create_season(stranger.id, SeasonCreate(season_number=1))
        for number in (1, 2):
            await storage.create_episode(
                season.id,
                EpisodeCreate(
                    episode_number=number,
                    title=f"Capítulo {number}",
                    video_url=f"https://cdn.example/st/s1e{number}.mp4",
                ),
            )

    asyncio.run(add_episodes())
    with TestClient(app) as client:
        default = client.get(f"/api/content/{stranger.id}/stream").json()
        second = client.get(
            f"/api/content/{stranger.id}/stream", params={"season": 1, "episode": 2}
        ).json()
        missing = client.get(
            f"/api/content/{stranger.id}/stream", params={"season": 4}
        )

    assert (default["seasonNumber"], default["episodeNumber"]) == (1, 1)
    assert default["sources"]["auto"] == "https://cdn.example/st/s1e1.mp4"
    assert second["episodeTitle"] == "Capítulo 2"
    assert missing.status_code == 404


def test_admin_routes_require_admin(client: TestClient) -> None:
    assert client.get("/api/admin/stats", headers=ANA).status_code == 403
    assert client.get("/api/admin/stats").status_code == 401

    _make_admin(client)
    assert client.post("/api/admin/bootstrap", headers=BIA).status_code == 409

    stats = client.get("/api/admin/stats", headers=ANA).json()
    assert stats["contentTotal"] == len(SEED_CONTENT)
    assert stats["admins"] == 1
    assert sum(stats["contentByType"].values()) == stats["contentTotal"]


def test_admin_content_lifecycle(client: TestClient) -> None:
    _make_admin(client)
    payload = {
        "title": "Arcane",
        "description": "Piltover e Zaun.",
        "year": 2021,
        "rating": 90,
        "genre": "Animação",
        "type": "series",
        "imageUrl": "https://img.example/arcane.jpg",
    }

    missing_url = client.post("/api/admin/content", json=payload, headers=ANA)
    assert missing_url.status_code == 422

    created = client.post(
        "/api/admin/content",
        json={**payload, "movieUrl": "https://cdn.example/arcane.mp4"},
        headers=ANA,
    )
    assert created.status_code == 201
    content_id = created.json()["id"]

    season = client.post(
        f"/api/admin/content/{content_id}/seasons",
        json={"seasonNumber": 1, "title": "Ato 1"},
        headers=ANA,
    ).json()
    duplicate = client.post(
        f"/api/admin/content/{content_id}/seasons",
        json={"seasonNumber": 1},
        headers=ANA,
    )
    assert duplicate.status_code == 409
    episode = client.post(
        f"/api/admin/seasons/{season['id']}/episodes",
        json={"episodeNumber": 1, "title": "Welcome to the Playground"},
        headers=ANA,
    ).json()

    detail = client.get(f"/api/content/{content_id}").json()
    assert (detail["totalSeasons"], detail["totalEpisodes"]) == (1, 1)
    assert [s["id"] for s in client.get(f"/api/content/{content_id}/seasons").json()] == [
        season["id"]
    ]
    assert [e["id"] for e in client.get(f"/api/seasons/{season['id']}/episodes").json()] == [
        episode["id"]
    ]

    renamed = client.put(
        f"/api/admin/episodes/{episode['id']}", json={"title": "Bem-vindos"}, headers=ANA
    )
    assert renamed.json()["title"] == "Bem-vindos"

    updated = client.put(
        f"/api/admin/content/{content_id}", json={"rating": 95}, headers=ANA
    )
    assert updated.json()["rating"] == 95

    feed = client.get("/api/notifications", headers=BIA).json()
    assert feed[0]["kind"] == "new_content"
    assert feed[0]["title"] == "Arcane"

    assert client.delete(f"/api/admin/content/{content_id}", headers=ANA).status_code == 204
    assert client.get(f"/api/content/{content_id}").status_code == 404
    assert client.get(f"/api/seasons/{season['id']}/episodes").status_code == 404


def test_admin_cannot_add_season_to_movie(client: TestClient) -> None:
    _make_admin(client)
    dune = _title_id(client, "Dune")

    response = client.post(
        f"/api/admin/content/{dune}/seasons", json={"seasonNumber": 1}, headers=ANA
    )

    assert response.status_code == 400


def test_admin_user_management_guards_self(client: TestClient) -> None:
    _make_admin(client)
    client.get("/api/auth/user", headers=BIA)

    users = client.get("/api/admin/users", headers=ANA).json()
    assert {user["id"] for user in users} == {"ana", "bia"}

    assert (
        client.put("/api/admin/users/ana", json={"isAdmin": False}, headers=ANA).status_code
        == 400
    )
    assert client.delete("/api/admin/users/ana", headers=ANA).status_code == 400

    promoted = client.put("/api/admin/users/bia", json={"isAdmin": True}, headers=ANA)
    assert promoted.json()["isAdmin"] is True
    assert client.delete("/api/admin/users/bia", headers=ANA).status_code == 204
    assert client.delete("/api/admin/users/bia", headers=ANA).status_code == 404


def test_subscription_lifecycle(client: TestClient) -> None:
    assert client.get("/api/user/subscription", headers=ANA).json() is None
    assert client.delete("/api/user/subscription", headers=ANA).status_code == 404
    assert (
        client.post("/api/user/subscription", json={"planId": "nope"}, headers=ANA).status_code
        == 404
    )

    plans = client.get("/api/subscription-plans").json()
    first, second = plans[0], plans[1]
    created = client.post(
        "/api/user/subscription", json={"planId": first["id"]}, headers=ANA
    )
    assert created.status_code == 201
    assert created.json()["daysRemaining"] == first["durationDays"]

    client.post("/api/user/subscription", json={"planId": second["id"]}, headers=ANA)
    status = client.get("/api/user/subscription", headers=ANA).json()
    assert status["planId"] == second["id"]
    assert status["plan"]["name"] == second["name"]
    assert status["expiringSoon"] is False

    assert client.delete("/api/user/subscription", headers=ANA).status_code == 204
    assert client.get("/api/user/subscription", headers=ANA).json() is None


def test_inactive_plan_cannot_be_subscribed(client: TestClient) -> None:
    _make_admin(client)
    plan = client.post(
        "/api/admin/subscription-plans",
        json={"name": "Legado", "priceCents": 990, "isActive": False},
        headers=ANA,
    ).json()

    response = client.post("/api/user/subscription", json={"planId": plan["id"]}, headers=BIA)

    assert response.status_code == 404
    assert plan["id"] not in {p["id"] for p in client.get("/api/subscription-plans").json()}
    reactivated = client.put(
        f"/api/admin/subscription-plans/{plan['id']}", json={"isActive": True}, headers=ANA
    )
    assert reactivated.json()["isActive"] is True


def test_notifications_feed_and_read_flags(client: TestClient) -> None:
    _make_admin(client)
    client.get("/api/auth/user", headers=BIA)

    broadcast = client.post(
        "/api/admin/notifications",
        json={"title": "Manutenção", "message": "Domingo às 2h", "kind": "maintenance"},
        headers=ANA,
    ).json()
    targeted = client.post(
        "/api/admin/notifications",
        json={"title": "Oi Bia", "message": "Seu plano vence logo", "userId": "bia"},
        headers=ANA,
    ).json()
    unknown = client.post(
        "/api/admin/notifications",
        json={"title": "x", "message": "y", "userId": "ghost"},
        headers=ANA,
    )
    assert unknown.status_code == 404

    assert client.get("/api/notifications/unread-count", headers=BIA).json() == {"count": 2}
    assert [n["id"] for n in client.get("/api/notifications", headers=ANA).json()] == [
        broadcast["id"]
    ]
    assert client.post(f"/api/notifications/{targeted['id']}/read", headers=ANA).status_code == 404

    for _ in range(2):
        read = client.post(f"/api/notifications/{targeted['id']}/read", headers=BIA)
        assert read.status_code == 200
    assert client.get("/api/notifications/unread-count", headers=BIA).json() == {"count": 1}

    assert len(client.get("/api/admin/notifications", headers=ANA).json()) == 2
    assert (
        client.delete(f"/api/admin/notifications/{broadcast['id']}", headers=ANA).status_code
        == 204
    )
    assert client.get("/api/notifications/unread-count", headers=BIA).json() == {"count": 0}


def test_create_app_seeds_in_memory_store_on_startup() -> None:
    from app.main import create_app

    with TestClient(create_app()) as client:
        titles = {item["title"] for item in client.get("/api/content").json()}
        plans = client.get("/api/subscription-plans").json()

    assert "Blade Runner 2049" in titles
    assert len(plans) == len(SEED_PLANS)


def test_storage_failures_return_logged_json_error(monkeypatch, caplog) -> None:
    app, storage = _build_app()

    async def broken(*_args, **_kwargs):
        raise OperationalError("SELECT 1", {}, Exception("disk I/O error"))

    with TestClient(app) as client:
        assert client.get("/api/profiles", headers=ANA).status_code == 200
        monkeypatch.setattr(storage, "list_profiles", broken)
        listing = client.get("/api/profiles", headers=ANA)
        monkeypatch.setattr(storage, "upsert_user", broken)
        with caplog.at_level(logging.ERROR, logger="app.main"):
            signed_in = client.get("/api/auth/user", headers=ANA)

    for response in (listing, signed_in):
        assert response.status_code == 500
        assert response.json() == {"detail": "Storage failure"}
    assert "Storage failure on GET /api/auth/user" in caplog.text
