"""Storage interface and the in-memory store used without a database."""

from __future__ import annotations

import abc
import logging
from datetime import datetime
from typing import Any, Iterable

from ..models import (
    ContentCreate,
    ContentRead,
    EpisodeCreate,
    EpisodeRead,
    NotificationCreate,
    NotificationRead,
    ProfileCreate,
    ProfileRead,
    SeasonCreate,
    SeasonRead,
    SubscriptionPlanCreate,
    SubscriptionPlanRead,
    SubscriptionRead,
    UserClaims,
    UserNotification,
    UserRead,
    WatchHistoryRead,
    WatchHistoryWrite,
)
from ..utils import fold, new_id, utcnow

logger = logging.getLogger(__name__)


class ConflictError(ValueError):
    """Raised when a write would violate a uniqueness or singleton rule."""


def matches_query(content: ContentRead, query: str) -> bool:
    """Return whether a catalog record matches a free-text search."""

    needle = fold(query)
    if not needle:
        return False
    haystack: list[str | None] = [
        content.title,
        content.description,
        content.genre,
        content.director,
        *content.cast,
        *content.categories,
    ]
    return any(needle in fold(value) for value in haystack)


class Storage(abc.ABC):
    """Async persistence contract shared by the memory and SQL stores."""

    # Content ---------------------------------------------------------------

    @abc.abstractmethod
    async def list_content(self) -> list[ContentRead]: ...

    @abc.abstractmethod
    async def list_content_by_type(self, content_type: str) -> list[ContentRead]: ...

    @abc.abstractmethod
    async def list_trending(self) -> list[ContentRead]: ...

    @abc.abstractmethod
    async def list_new_releases(self) -> list[ContentRead]: ...

    @abc.abstractmethod
    async def list_popular(self) -> list[ContentRead]: ...

    @abc.abstractmethod
    async def get_content(self, content_id: str) -> ContentRead | None: ...

    async def search_content(self, query: str) -> list[ContentRead]:
        return [item for item in await self.list_content() if matches_query(item, query)]

    @abc.abstractmethod
    async def create_content(self, data: ContentCreate) -> ContentRead: ...

    @abc.abstractmethod
    async def update_content(
        self, content_id: str, changes: dict[str, Any]
    ) -> ContentRead: ...

    @abc.abstractmethod
    async def delete_content(self, content_id: str) -> None: ...

    # Seasons and episodes --------------------------------------------------

    @abc.abstractmethod
    async def list_seasons(self, content_id: str) -> list[SeasonRead]: ...

    @abc.abstractmethod
    async def get_season(self, season_id: str) -> SeasonRead | None: ...

    @abc.abstractmethod
    async def create_season(self, content_id: str, data: SeasonCreate) -> SeasonRead: ...

    @abc.abstractmethod
    async def update_season(
        self, season_id: str, changes: dict[str, Any]
    ) -> SeasonRead: ...

    @abc.abstractmethod
    async def delete_season(self, season_id: str) -> None: ...

    @abc.abstractmethod
    async def list_episodes(self, season_id: str) -> list[EpisodeRead]: ...

    @abc.abstractmethod
    async def get_episode(self, episode_id: str) -> EpisodeRead | None: ...

    @abc.abstractmethod
    async def create_episode(
        self, season_id: str, data: EpisodeCreate
    ) -> EpisodeRead: ...

    @abc.abstractmethod
    async def update_episode(
        self, episode_id: str, changes: dict[str, Any]
    ) -> EpisodeRead: ...

    @abc.abstractmethod
    async def delete_episode(self, episode_id: str) -> None: ...

    # Users -----------------------------------------------------------------

    @abc.abstractmethod
    async def get_user(self, user_id: str) -> UserRead | None: ...

    @abc.abstractmethod
    async def upsert_user(self, claims: UserClaims) -> UserRead: ...

    @abc.abstractmethod
    async def list_users(self) -> list[UserRead]: ...

    @abc.abstractmethod
    async def set_user_admin(self, user_id: str, is_admin: bool) -> UserRead: ...

    @abc.abstractmethod
    async def delete_user(self, user_id: str) -> None: ...

    async def has_admin(self) -> bool:
        return any(user.is_admin for user in await self.list_users())

    # Profiles --------------------------------------------------------------

    @abc.abstractmethod
    async def list_profiles(self, user_id: str) -> list[ProfileRead]: ...

    @abc.abstractmethod
    async def get_profile(self, profile_id: str) -> ProfileRead | None: ...

    @abc.abstractmethod
    async def create_profile(self, user_id: str, data: ProfileCreate) -> ProfileRead: ...

    @abc.abstractmethod
    async def update_profile(
        self, profile_id: str, changes: dict[str, Any]
    ) -> ProfileRead: ...

    @abc.abstractmethod
    async def delete_profile(self, profile_id: str) -> None: ...

    @abc.abstractmethod
    async def count_profiles(self) -> int: ...

    # Watch history ---------------------------------------------------------

    @abc.abstractmethod
    async def list_watch_history(self, profile_id: str) -> list[WatchHistoryRead]: ...

    @abc.abstractmethod
    async def get_watch_entry(
        self, profile_id: str, content_id: str
    ) -> WatchHistoryRead | None: ...

    @abc.abstractmethod
    async def upsert_watch_progress(
        self, profile_id: str, entry: WatchHistoryWrite
    ) -> WatchHistoryRead: ...

    # Subscriptions ---------------------------------------------------------

    @abc.abstractmethod
    async def list_plans(self, *, active_only: bool = True) -> list[SubscriptionPlanRead]: ...

    @abc.abstractmethod
    async def get_plan(self, plan_id: str) -> SubscriptionPlanRead | None: ...

    @abc.abstractmethod
    async def create_plan(self, data: SubscriptionPlanCreate) -> SubscriptionPlanRead: ...

    @abc.abstractmethod
    async def update_plan(
        self, plan_id: str, changes: dict[str, Any]
    ) -> SubscriptionPlanRead: ...

    @abc.abstractmethod
    async def get_active_subscription(
        self, user_id: str, now: datetime
    ) -> SubscriptionRead | None: ...

    @abc.abstractmethod
    async def create_subscription(
        self, user_id: str, plan_id: str, start: datetime, end: datetime
    ) -> SubscriptionRead: ...

    @abc.abstractmethod
    async def cancel_subscriptions(self, user_id: str, now: datetime) -> int:
        """Cancel every active subscription of the user and return the count."""

    @abc.abstractmethod
    async def count_active_subscriptions(self, now: datetime) -> int: ...

    # Notifications ---------------------------------------------------------

    @abc.abstractmethod
    async def create_notification(self, data: NotificationCreate) -> NotificationRead: ...

    @abc.abstractmethod
    async def get_notification(self, notification_id: str) -> NotificationRead | None: ...

    @abc.abstractmethod
    async def list_all_notifications(self) -> list[NotificationRead]: ...

    @abc.abstractmethod
    async def list_notifications(self, user_id: str) -> list[UserNotification]: ...

    @abc.abstractmethod
    async def mark_notification_read(self, notification_id: str, user_id: str) -> None: ...

    @abc.abstractmethod
    async def delete_notification(self, notification_id: str) -> None: ...

    # Lifecycle -------------------------------------------------------------

    async def seed(
        self,
        content: Iterable[ContentCreate],
        plans: Iterable[SubscriptionPlanCreate],
    ) -> None:
        """Load sample data when the catalog and plan tables are empty."""

        if not await self.list_content():
            created = 0
            for item in content:
                await self.create_content(item)
                created += 1
            logger.info("Seeded %s catalog entries", created)
        if not await self.list_plans(active_only=False):
            for plan in plans:
                await self.create_plan(plan)
            logger.info("Seeded subscription plans")

    async def close(self) -> None:
        return None


def _visible_to(notification: NotificationRead, user_id: str) -> bool:
    return notification.user_id is None or notification.user_id == user_id


class MemoryStorage(Storage):
    """Dict-backed store mirroring the relational cascades."""

    def __init__(self) -> None:
        self._content: dict[str, ContentRead] = {}
        self._seasons: dict[str, SeasonRead] = {}
        self._episodes: dict[str, EpisodeRead] = {}
        self._users: dict[str, UserRead] = {}
        self._profiles: dict[str, ProfileRead] = {}
        self._history: dict[tuple[str, str], WatchHistoryRead] = {}
        self._plans: dict[str, SubscriptionPlanRead] = {}
        self._subscriptions: dict[str, SubscriptionRead] = {}
        self._notifications: dict[str, NotificationRead] = {}
        self._reads: set[tuple[str, str]] = set()

    # Content ---------------------------------------------------------------

    def _content_where(self, predicate) -> list[ContentRead]:
        return [
            item.model_copy(deep=True)
            for item in self._content.values()
            if predicate(item)
        ]

    async def list_content(self) -> list[ContentRead]:
        return self._content_where(lambda item: True)

    async def list_content_by_type(self, content_type: str) -> list[ContentRead]:
        return self._content_where(lambda item: item.type == content_type)

    async def list_trending(self) -> list[ContentRead]:
        return self._content_where(lambda item: item.is_trending)

    async def list_new_releases(self) -> list[ContentRead]:
        return self._content_where(lambda item: item.is_new_release)

    async def list_popular(self) -> list[ContentRead]:
        return self._content_where(lambda item: item.is_popular)

    async def get_content(self, content_id: str) -> ContentRead | None:
        item = self._content.get(content_id)
        return item.model_copy(deep=True) if item else None

    async def create_content(self, data: ContentCreate) -> ContentRead:
        record = ContentRead(**data.model_dump(), id=new_id(), created_at=utcnow())
        self._content[record.id] = record
        return record.model_copy(deep=True)

    async def update_content(
        self, content_id: str, changes: dict[str, Any]
    ) -> ContentRead:
        existing = self._require(self._content, content_id, "Content")
        updated = ContentRead.model_validate({**existing.model_dump(), **changes})
        self._content[content_id] = updated
        return updated.model_copy(deep=True)

    async def delete_content(self, content_id: str) -> None:
        self._require(self._content, content_id, "Content")
        for season in [s for s in self._seasons.values() if s.content_id == content_id]:
            self._drop_season(season.id)
        for key in [key for key in self._history if key[1] == content_id]:
            del self._history[key]
        del self._content[content_id]

    # Seasons and episodes --------------------------------------------------

    async def list_seasons(self, content_id: str) -> list[SeasonRead]:
        seasons = [s for s in self._seasons.values() if s.content_id == content_id]
        return [s.model_copy() for s in sorted(seasons, key=lambda s: s.season_number)]

    async def get_season(self, season_id: str) -> SeasonRead | None:
        season = self._seasons.get(season_id)
        return season.model_copy() if season else None

    async def create_season(self, content_id: str, data: SeasonCreate) -> SeasonRead:
        self._require(self._content, content_id, "Content")
        self._check_season_number(content_id, data.season_number)
        record = SeasonRead(
            **data.model_dump(), id=new_id(), content_id=content_id, created_at=utcnow()
        )
        self._seasons[record.id] = record
        return record.model_copy()

    async def update_season(
        self, season_id: str, changes: dict[str, Any]
    ) -> SeasonRead:
        existing = self._require(self._seasons, season_id, "Season")
        number = changes.get("season_number")
        if number is not None and number != existing.season_number:
            self._check_season_number(existing.content_id, number)
        updated = SeasonRead.model_validate({**existing.model_dump(), **changes})
        self._seasons[season_id] = updated
        return updated.model_copy()

    async def delete_season(self, season_id: str) -> None:
        self._require(self._seasons, season_id, "Season")
        self._drop_season(season_id)

    def _drop_season(self, season_id: str) -> None:
        for episode_id in [
            e.id for e in self._episodes.values() if e.season_id == season_id
        ]:
            del self._episodes[episode_id]
        del self._seasons[season_id]

    def _check_season_number(self, content_id: str, number: int) -> None:
        if any(
            s.content_id == content_id and s.season_number == number
            for s in self._seasons.values()
        ):
            raise ConflictError(f"Season {number} already exists")

    async def list_episodes(self, season_id: str) -> list[EpisodeRead]:
        episodes = [e for e in self._episodes.values() if e.season_id == season_id]
        return [e.model_copy() for e in sorted(episodes, key=lambda e: e.episode_number)]

    async def get_episode(self, episode_id: str) -> EpisodeRead | None:
        episode = self._episodes.get(episode_id)
        return episode.model_copy() if episode else None

    async def create_episode(self, season_id: str, data: EpisodeCreate) -> EpisodeRead:
        self._require(self._seasons, season_id, "Season")
        self._check_episode_number(season_id, data.episode_number)
        record = EpisodeRead(
            **data.model_dump(), id=new_id(), season_id=season_id, created_at=utcnow()
        )
        self._episodes[record.id] = record
        return record.model_copy()

    async def update_episode(
        self, episode_id: str, changes: dict[str, Any]
    ) -> EpisodeRead:
        existing = self._require(self._episodes, episode_id, "Episode")
        number = changes.get("episode_number")
        if number is not None and number != existing.episode_number:
            self._check_episode_number(existing.season_id, number)
        updated = EpisodeRead.model_validate({**existing.model_dump(), **changes})
        self._episodes[episode_id] = updated
        return updated.model_copy()

    async def delete_episode(self, episode_id: str) -> None:
        self._require(self._episodes, episode_id, "Episode")
        del self._episodes[episode_id]

    def _check_episode_number(self, season_id: str, number: int) -> None:
        if any(
            e.season_id == season_id and e.episode_number == number
            for e in self._episodes.values()
        ):
            raise ConflictError(f"Episode {number} already exists")

    # Users -----------------------------------------------------------------

    async def get_user(self, user_id: str) -> UserRead | None:
        user = self._users.get(user_id)
        return user.model_copy() if user else None

    async def upsert_user(self, claims: UserClaims) -> UserRead:
        now = utcnow()
        existing = self._users.get(claims.id)
        if existing is None:
            user = UserRead(**claims.model_dump(), created_at=now, updated_at=now)
        else:
            user = existing.model_copy(
                update={**claims.model_dump(exclude_none=True), "updated_at": now}
            )
        self._users[user.id] = user
        return user.model_copy()

    async def list_users(self) -> list[UserRead]:
        return [user.model_copy() for user in self._users.values()]

    async def set_user_admin(self, user_id: str, is_admin: bool) -> UserRead:
        existing = self._require(self._users, user_id, "User")
        user = existing.model_copy(update={"is_admin": is_admin, "updated_at": utcnow()})
        self._users[user_id] = user
        return user.model_copy()

    async def delete_user(self, user_id: str) -> None:
        self._require(self._users, user_id, "User")
        for profile in [p for p in self._profiles.values() if p.user_id == user_id]:
            await self.delete_profile(profile.id)
        for sub_id in [
            s.id for s in self._subscriptions.values() if s.user_id == user_id
        ]:
            del self._subscriptions[sub_id]
        for notification_id in [
            n.id for n in self._notifications.values() if n.user_id == user_id
        ]:
            await self.delete_notification(notification_id)
        self._reads = {read for read in self._reads if read[1] != user_id}
        del self._users[user_id]

    # Profiles --------------------------------------------------------------

    async def list_profiles(self, user_id: str) -> list[ProfileRead]:
        return [p.model_copy() for p in self._profiles.values() if p.user_id == user_id]

    async def get_profile(self, profile_id: str) -> ProfileRead | None:
        profile = self._profiles.get(profile_id)
        return profile.model_copy() if profile else None

    async def create_profile(self, user_id: str, data: ProfileCreate) -> ProfileRead:
        self._require(self._users, user_id, "User")
        record = ProfileRead(
            **data.model_dump(), id=new_id(), user_id=user_id, created_at=utcnow()
        )
        self._profiles[record.id] = record
        return record.model_copy()

    async def update_profile(
        self, profile_id: str, changes: dict[str, Any]
    ) -> ProfileRead:
        existing = self._require(self._profiles, profile_id, "Profile")
        updated = ProfileRead.model_validate({**existing.model_dump(), **changes})
        self._profiles[profile_id] = updated
        return updated.model_copy()

    async def delete_profile(self, profile_id: str) -> None:
        self._require(self._profiles, profile_id, "Profile")
        for key in [key for key in self._history if key[0] == profile_id]:
            del self._history[key]
        del self._profiles[profile_id]

    async def count_profiles(self) -> int:
        return len(self._profiles)

    # Watch history ---------------------------------------------------------

    async def list_watch_history(self, profile_id: str) -> list[WatchHistoryRead]:
        # Rows are re-inserted on every write, so reverse order is recency.
        return [
            entry.model_copy()
            for key, entry in reversed(self._history.items())
            if key[0] == profile_id
        ]

    async def get_watch_entry(
        self, profile_id: str, content_id: str
    ) -> WatchHistoryRead | None:
        entry = self._history.get((profile_id, content_id))
        return entry.model_copy() if entry else None

    async def upsert_watch_progress(
        self, profile_id: str, entry: WatchHistoryWrite
    ) -> WatchHistoryRead:
        self._require(self._profiles, profile_id, "Profile")
        self._require(self._content, entry.content_id, "Content")
        key = (profile_id, entry.content_id)
        existing = self._history.pop(key, None)
        record = WatchHistoryRead(
            **entry.model_dump(),
            id=existing.id if existing else new_id(),
            profile_id=profile_id,
            watched_at=utcnow(),
        )
        self._history[key] = record
        return record.model_copy()

    # Subscriptions ---------------------------------------------------------

    async def list_plans(self, *, active_only: bool = True) -> list[SubscriptionPlanRead]:
        plans = sorted(self._plans.values(), key=lambda plan: plan.price_cents)
        return [plan.model_copy() for plan in plans if plan.is_active or not active_only]

    async def get_plan(self, plan_id: str) -> SubscriptionPlanRead | None:
        plan = self._plans.get(plan_id)
        return plan.model_copy() if plan else None

    async def create_plan(self, data: SubscriptionPlanCreate) -> SubscriptionPlanRead:
        record = SubscriptionPlanRead(**data.model_dump(), id=new_id())
        self._plans[record.id] = record
        return record.model_copy()

    async def update_plan(
        self, plan_id: str, changes: dict[str, Any]
    ) -> SubscriptionPlanRead:
        existing = self._require(self._plans, plan_id, "Plan")
        updated = SubscriptionPlanRead.model_validate({**existing.model_dump(), **changes})
        self._plans[plan_id] = updated
        return updated.model_copy()

    def _active_subscriptions(self, now: datetime) -> list[SubscriptionRead]:
        return [
            sub
            for sub in self._subscriptions.values()
            if sub.status == "active" and sub.end_date > now
        ]

    async def get_active_subscription(
        self, user_id: str, now: datetime
    ) -> SubscriptionRead | None:
        candidates = [
            sub for sub in self._active_subscriptions(now) if sub.user_id == user_id
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda sub: sub.end_date).model_copy()

    async def create_subscription(
        self, user_id: str, plan_id: str, start: datetime, end: datetime
    ) -> SubscriptionRead:
        self._require(self._users, user_id, "User")
        self._require(self._plans, plan_id, "Plan")
        record = SubscriptionRead(
            id=new_id(),
            user_id=user_id,
            plan_id=plan_id,
            status="active",
            start_date=start,
            end_date=end,
        )
        self._subscriptions[record.id] = record
        return record.model_copy()

    async def cancel_subscriptions(self, user_id: str, now: datetime) -> int:
        cancelled = 0
        for sub in self._active_subscriptions(now):
            if sub.user_id != user_id:
                continue
            self._subscriptions[sub.id] = sub.model_copy(update={"status": "cancelled"})
            cancelled += 1
        return cancelled

    async def count_active_subscriptions(self, now: datetime) -> int:
        return len({sub.user_id for sub in self._active_subscriptions(now)})

    # Notifications ---------------------------------------------------------

    async def create_notification(self, data: NotificationCreate) -> NotificationRead:
        if data.user_id is not None:
            self._require(self._users, data.user_id, "User")
        record = NotificationRead(**data.model_dump(), id=new_id(), created_at=utcnow())
        self._notifications[record.id] = record
        return record.model_copy()

    async def get_notification(self, notification_id: str) -> NotificationRead | None:
        notification = self._notifications.get(notification_id)
        return notification.model_copy() if notification else None

    async def list_all_notifications(self) -> list[NotificationRead]:
        items = sorted(
            self._notifications.values(), key=lambda n: n.created_at, reverse=True
        )
        return [item.model_copy() for item in items]

    async def list_notifications(self, user_id: str) -> list[UserNotification]:
        return [
            UserNotification(
                **item.model_dump(), read=(item.id, user_id) in self._reads
            )
            for item in await self.list_all_notifications()
            if _visible_to(item, user_id)
        ]

    async def mark_notification_read(self, notification_id: str, user_id: str) -> None:
        notification = self._require(self._notifications, notification_id, "Notification")
        if not _visible_to(notification, user_id):
            raise KeyError(f"Notification {notification_id} not found")
        self._reads.add((notification_id, user_id))

    async def delete_notification(self, notification_id: str) -> None:
        self._require(self._notifications, notification_id, "Notification")
        self._reads = {read for read in self._reads if read[0] != notification_id}
        del self._notifications[notification_id]

    @staticmethod
    def _require(table: dict[str, Any], key: str, label: str) -> Any:
        try:
            return table[key]
        except KeyError:
            raise KeyError(f"{label} {key} not found") from None
