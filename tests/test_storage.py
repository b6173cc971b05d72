"""Behaviour shared by the in-memory and relational stores."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Awaitable, Callable

import pytest

from app.database import Database
from app.models import (
    ContentCreate,
    EpisodeCreate,
    NotificationCreate,
    ProfileCreate,
    SeasonCreate,
    SubscriptionPlanCreate,
    UserClaims,
    WatchHistoryWrite,
)
from app.services.sql_storage import DatabaseStorage
from app.services.storage import ConflictError, MemoryStorage, Storage
from app.utils import utcnow

Scenario = Callable[[Storage], Awaitable[None]]


@pytest.fixture(params=["memory", "sqlite"])
def run_scenario(request, tmp_path) -> Callable[[Scenario], None]:
    """Run a coroutine against a fresh store inside a single event loop."""

    def _run(scenario: Scenario) -> None:
        async def _main() -> None:
            if request.param == "memory":
                await scenario(MemoryStorage())
                return
            database = Database(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
            await database.create_all()
            try:
                await scenario(DatabaseStorage(database.session_factory))
            finally:
                await database.dispose()

        asyncio.run(_main())

    return _run


def _content(title: str = "Arcane", **overrides) -> ContentCreate:
    values = {
        "title": title,
        "description": "Piltover e Zaun.",
        "year": 2021,
        "rating": 90,
        "genre": "Animação",
        "type": "series",
        "image_url": "https://img.example/arcane.jpg",
        "cast": ["Hailee Steinfeld"],
        "categories": ["Steampunk"],
    }
    values.update(overrides)
    return ContentCreate(**values)


async def _user(storage: Storage, user_id: str = "user-1"):
    return await storage.upsert_user(UserClaims(id=user_id, email=f"{user_id}@example.com"))


def test_content_crud_and_search(run_scenario) -> None:
    async def scenario(storage: Storage) -> None:
        created = await storage.create_content(_content(is_trending=True))
        await storage.create_content(_content("Dune", type="movie", cast=[]))

        assert [item.title for item in await storage.list_content()] == ["Arcane", "Dune"]
        assert [item.title for item in await storage.list_trending()] == ["Arcane"]
        assert [item.title for item in await storage.list_content_by_type("movie")] == ["Dune"]
        assert [item.title for item in await storage.search_content("STEAMPUNK")] == ["Arcane"]
        assert [item.title for item in await storage.search_content("hailee")] == ["Arcane"]

        updated = await storage.update_content(created.id, {"rating": 70, "trailer_url": None})
        assert updated.rating == 70
        assert updated.cast == ["Hailee Steinfeld"]

        await storage.delete_content(created.id)
        assert await storage.get_content(created.id) is None
        with pytest.raises(KeyError):
            await storage.delete_content(created.id)

    run_scenario(scenario)


def test_duplicate_season_and_episode_numbers_conflict(run_scenario) -> None:
    async def scenario(storage: Storage) -> None:
        content = await storage.create_content(_content())
        season = await storage.create_season(content.id, SeasonCreate(season_number=1))
        with pytest.raises(ConflictError):
            await storage.create_season(content.id, SeasonCreate(season_number=1))

        await storage.create_episode(season.id, EpisodeCreate(episode_number=1, title="Pilot"))
        with pytest.raises(ConflictError):
            await storage.create_episode(
                season.id, EpisodeCreate(episode_number=1, title="Again")
            )
        with pytest.raises(KeyError):
            await storage.create_episode("missing", EpisodeCreate(episode_number=1, title="x"))

    run_scenario(scenario)


def test_deleting_content_cascades(run_scenario) -> None:
    async def scenario(storage: Storage) -> None:
        user = await _user(storage)
        profile = await storage.create_profile(user.id, ProfileCreate(name="Ana"))
        content = await storage.create_content(_content())
        season = await storage.create_season(content.id, SeasonCreate(season_number=1))
        episode = await storage.create_episode(
            season.id, EpisodeCreate(episode_number=1, title="Pilot")
        )
        await storage.upsert_watch_progress(
            profile.id, WatchHistoryWrite(content_id=content.id, progress=40)
        )

        await storage.delete_content(content.id)

        assert await storage.get_season(season.id) is None
        assert await storage.get_episode(episode.id) is None
        assert await storage.list_watch_history(profile.id) == []

    run_scenario(scenario)


def test_upsert_user_refreshes_claims_without_touching_admin_flag(run_scenario) -> None:
    async def scenario(storage: Storage) -> None:
        await _user(storage)
        await storage.set_user_admin("user-1", True)

        refreshed = await storage.upsert_user(
            UserClaims(id="user-1", email="new@example.com", first_name="Ana")
        )

        assert refreshed.is_admin is True
        assert refreshed.email == "new@example.com"
        assert await storage.has_admin() is True

    run_scenario(scenario)


def test_concurrent_first_sign_ins_create_a_single_user(run_scenario) -> None:
    async def scenario(storage: Storage) -> None:
        results = await asyncio.gather(
            *(
                storage.upsert_user(UserClaims(id="ana", email="ana@example.com"))
                for _ in range(4)
            ),
            return_exceptions=True,
        )

        errors = [type(result).__name__ for result in results if isinstance(result, Exception)]
        assert errors == []
        assert {user.id for user in results} == {"ana"}
        assert [user.id for user in await storage.list_users()] == ["ana"]

    run_scenario(scenario)


def test_watch_progress_keeps_one_row_per_title(run_scenario) -> None:
    async def scenario(storage: Storage) -> None:
        user = await _user(storage)
        profile = await storage.create_profile(user.id, ProfileCreate(name="Ana"))
        first = await storage.create_content(_content("Arcane"))
        second = await storage.create_content(_content("Dune", type="movie"))

        await storage.upsert_watch_progress(
            profile.id, WatchHistoryWrite(content_id=first.id, progress=10)
        )
        await storage.upsert_watch_progress(
            profile.id, WatchHistoryWrite(content_id=second.id, progress=20)
        )
        entry = await storage.upsert_watch_progress(
            profile.id,
            WatchHistoryWrite(
                content_id=first.id, progress=55, season_number=1, episode_number=3
            ),
        )

        history = await storage.list_watch_history(profile.id)
        assert len(history) == 2
        stored = await storage.get_watch_entry(profile.id, first.id)
        assert stored.id == entry.id
        assert (stored.progress, stored.episode_number) == (55, 3)

        await storage.delete_profile(profile.id)
        assert await storage.get_watch_entry(profile.id, first.id) is None

    run_scenario(scenario)


def test_subscriptions_and_cancellation(run_scenario) -> None:
    async def scenario(storage: Storage) -> None:
        user = await _user(storage)
        plan = await storage.create_plan(
            SubscriptionPlanCreate(name="Premium", price_cents=4590, max_profiles=5)
        )
        hidden = await storage.create_plan(
            SubscriptionPlanCreate(name="Legado", price_cents=990, is_active=False)
        )
        now = utcnow()

        assert [p.id for p in await storage.list_plans()] == [plan.id]
        assert {p.id for p in await storage.list_plans(active_only=False)} == {
            plan.id,
            hidden.id,
        }

        await storage.create_subscription(user.id, plan.id, now, now + timedelta(days=30))
        active = await storage.get_active_subscription(user.id, now)
        assert active is not None and active.plan_id == plan.id
        assert await storage.count_active_subscriptions(now) == 1

        assert await storage.cancel_subscriptions(user.id, now) == 1
        assert await storage.get_active_subscription(user.id, now) is None
        assert await storage.cancel_subscriptions(user.id, now) == 0

    run_scenario(scenario)


def test_notification_visibility_and_read_flags(run_scenario) -> None:
    async def scenario(storage: Storage) -> None:
        ana = await _user(storage, "ana")
        bia = await _user(storage, "bia")
        broadcast = await storage.create_notification(
            NotificationCreate(title="Novidade", message="Chegou Arcane")
        )
        private = await storage.create_notification(
            NotificationCreate(title="Conta", message="Pagamento ok", user_id=ana.id)
        )
        with pytest.raises(KeyError):
            await storage.create_notification(
                NotificationCreate(title="x", message="y", user_id="ghost")
            )

        assert {n.id for n in await storage.list_notifications(bia.id)} == {broadcast.id}
        with pytest.raises(KeyError):
            await storage.mark_notification_read(private.id, bia.id)

        await storage.mark_notification_read(broadcast.id, ana.id)
        await storage.mark_notification_read(broadcast.id, ana.id)
        flags = {n.id: n.read for n in await storage.list_notifications(ana.id)}
        assert flags == {broadcast.id: True, private.id: False}

        await storage.delete_user(ana.id)
        assert await storage.get_notification(private.id) is None
        assert [n.read for n in await storage.list_notifications(bia.id)] == [False]

    run_scenario(scenario)
