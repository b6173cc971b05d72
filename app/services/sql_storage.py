"""SQLAlchemy-backed implementation of the storage contract."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..database import Database
from ..db_models import (
    Content,
    Episode,
    Notification,
    NotificationReceipt,
    Profile,
    Season,
    SubscriptionPlan,
    User,
    UserSubscription,
    WatchHistory,
)
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
from ..utils import utcnow
from .storage import ConflictError, MemoryStorage, Storage

logger = logging.getLogger(__name__)

ReadModel = TypeVar("ReadModel", bound=BaseModel)


def _to_model(model: type[ReadModel], row: Any) -> ReadModel:
    return model.model_validate(row, from_attributes=True)


class DatabaseStorage(Storage):
    """Pass-through CRUD over the relational schema."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        database: Database | None = None,
    ):
        self._session_factory = session_factory
        self._database = database

    async def close(self) -> None:
        if self._database is not None:
            await self._database.dispose()

    async def _require(self, session: AsyncSession, model: type, key: str, label: str):
        row = await session.get(model, key)
        if row is None:
            raise KeyError(f"{label} {key} not found")
        return row

    # Content ---------------------------------------------------------------

    async def _content_where(self, *criteria) -> list[ContentRead]:
        async with self._session_factory() as session:
            stmt = select(Content).where(*criteria).order_by(Content.created_at)
            result = await session.execute(stmt)
            return [_to_model(ContentRead, row) for row in result.scalars()]

    async def list_content(self) -> list[ContentRead]:
        return await self._content_where()

    async def list_content_by_type(self, content_type: str) -> list[ContentRead]:
        return await self._content_where(Content.type == content_type)

    async def list_trending(self) -> list[ContentRead]:
        return await self._content_where(Content.is_trending.is_(True))

    async def list_new_releases(self) -> list[ContentRead]:
        return await self._content_where(Content.is_new_release.is_(True))

    async def list_popular(self) -> list[ContentRead]:
        return await self._content_where(Content.is_popular.is_(True))

    async def get_content(self, content_id: str) -> ContentRead | None:
        async with self._session_factory() as session:
            row = await session.get(Content, content_id)
            return _to_model(ContentRead, row) if row else None

    async def create_content(self, data: ContentCreate) -> ContentRead:
        async with self._session_factory() as session:
            row = Content(**data.model_dump(), created_at=utcnow())
            session.add(row)
            await session.commit()
            return _to_model(ContentRead, row)

    async def update_content(
        self, content_id: str, changes: dict[str, Any]
    ) -> ContentRead:
        async with self._session_factory() as session:
            row = await self._require(session, Content, content_id, "Content")
            for key, value in changes.items():
                setattr(row, key, value)
            await session.commit()
            return _to_model(ContentRead, row)

    async def delete_content(self, content_id: str) -> None:
        async with self._session_factory() as session:
            await self._require(session, Content, content_id, "Content")
            season_ids = select(Season.id).where(Season.content_id == content_id)
            await session.execute(delete(Episode).where(Episode.season_id.in_(season_ids)))
            await session.execute(delete(Season).where(Season.content_id == content_id))
            await session.execute(
                delete(WatchHistory).where(WatchHistory.content_id == content_id)
            )
            await session.execute(delete(Content).where(Content.id == content_id))
            await session.commit()

    # Seasons and episodes --------------------------------------------------

    async def list_seasons(self, content_id: str) -> list[SeasonRead]:
        async with self._session_factory() as session:
            stmt = (
                select(Season)
                .where(Season.content_id == content_id)
                .order_by(Season.season_number)
            )
            result = await session.execute(stmt)
            return [_to_model(SeasonRead, row) for row in result.scalars()]

    async def get_season(self, season_id: str) -> SeasonRead | None:
        async with self._session_factory() as session:
            row = await session.get(Season, season_id)
            return _to_model(SeasonRead, row) if row else None

    async def create_season(self, content_id: str, data: SeasonCreate) -> SeasonRead:
        async with self._session_factory() as session:
            await self._require(session, Content, content_id, "Content")
            row = Season(**data.model_dump(), content_id=content_id, created_at=utcnow())
            session.add(row)
            await self._commit_unique(session, f"Season {data.season_number} already exists")
            return _to_model(SeasonRead, row)

    async def update_season(
        self, season_id: str, changes: dict[str, Any]
    ) -> SeasonRead:
        async with self._session_factory() as session:
            row = await self._require(session, Season, season_id, "Season")
            for key, value in changes.items():
                setattr(row, key, value)
            await self._commit_unique(
                session, f"Season {changes.get('season_number')} already exists"
            )
            return _to_model(SeasonRead, row)

    async def delete_season(self, season_id: str) -> None:
        async with self._session_factory() as session:
            await self._require(session, Season, season_id, "Season")
            await session.execute(delete(Episode).where(Episode.season_id == season_id))
            await session.execute(delete(Season).where(Season.id == season_id))
            await session.commit()

    async def list_episodes(self, season_id: str) -> list[EpisodeRead]:
        async with self._session_factory() as session:
            stmt = (
                select(Episode)
                .where(Episode.season_id == season_id)
                .order_by(Episode.episode_number)
            )
            result = await session.execute(stmt)
            return [_to_model(EpisodeRead, row) for row in result.scalars()]

    async def get_episode(self, episode_id: str) -> EpisodeRead | None:
        async with self._session_factory() as session:
            row = await session.get(Episode, episode_id)
            return _to_model(EpisodeRead, row) if row else None

    async def create_episode(self, season_id: str, data: EpisodeCreate) -> EpisodeRead:
        async with self._session_factory() as session:
            await self._require(session, Season, season_id, "Season")
            row = Episode(**data.model_dump(), season_id=season_id, created_at=utcnow())
            session.add(row)
            await self._commit_unique(
                session, f"Episode {data.episode_number} already exists"
            )
            return _to_model(EpisodeRead, row)

    async def update_episode(
        self, episode_id: str, changes: dict[str, Any]
    ) -> EpisodeRead:
        async with self._session_factory() as session:
            row = await self._require(session, Episode, episode_id, "Episode")
            for key, value in changes.items():
                setattr(row, key, value)
            await self._commit_unique(
                session, f"Episode {changes.get('episode_number')} already exists"
            )
            return _to_model(EpisodeRead, row)

    async def delete_episode(self, episode_id: str) -> None:
        async with self._session_factory() as session:
            await self._require(session, Episode, episode_id, "Episode")
            await session.execute(delete(Episode).where(Episode.id == episode_id))
            await session.commit()

    @staticmethod
    async def _commit_unique(session: AsyncSession, message: str) -> None:
        try:
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            raise ConflictError(message) from exc

    # Users -----------------------------------------------------------------

    async def get_user(self, user_id: str) -> UserRead | None:
        async with self._session_factory() as session:
            row = await session.get(User, user_id)
            return _to_model(UserRead, row) if row else None

    async def upsert_user(self, claims: UserClaims) -> UserRead:
        now = utcnow()
        async with self._session_factory() as session:
            row = await session.get(User, claims.id)
            if row is None:
                created = User(**claims.model_dump(), created_at=now, updated_at=now)
                session.add(created)
                try:
                    await session.commit()
                except IntegrityError:
                    # A concurrent first sign-in inserted the row; update it instead.
                    await session.rollback()
                    logger.debug("User %s created concurrently; updating", claims.id)
                else:
                    return _to_model(UserRead, created)
                row = await self._require(session, User, claims.id, "User")
            for key, value in claims.model_dump(exclude_none=True).items():
                setattr(row, key, value)
            row.updated_at = now
            await session.commit()
            return _to_model(UserRead, row)

    async def list_users(self) -> list[UserRead]:
        async with self._session_factory() as session:
            result = await session.execute(select(User).order_by(User.created_at))
            return [_to_model(UserRead, row) for row in result.scalars()]

    async def set_user_admin(self, user_id: str, is_admin: bool) -> UserRead:
        async with self._session_factory() as session:
            row = await self._require(session, User, user_id, "User")
            row.is_admin = is_admin
            row.updated_at = utcnow()
            await session.commit()
            return _to_model(UserRead, row)

    async def delete_user(self, user_id: str) -> None:
        async with self._session_factory() as session:
            await self._require(session, User, user_id, "User")
            profile_ids = select(Profile.id).where(Profile.user_id == user_id)
            targeted = select(Notification.id).where(Notification.user_id == user_id)
            await session.execute(
                delete(WatchHistory).where(WatchHistory.profile_id.in_(profile_ids))
            )
            await session.execute(delete(Profile).where(Profile.user_id == user_id))
            await session.execute(
                delete(UserSubscription).where(UserSubscription.user_id == user_id)
            )
            await session.execute(
                delete(NotificationReceipt).where(
                    (NotificationReceipt.user_id == user_id)
                    | NotificationReceipt.notification_id.in_(targeted)
                )
            )
            await session.execute(
                delete(Notification).where(Notification.user_id == user_id)
            )
            await session.execute(delete(User).where(User.id == user_id))
            await session.commit()

    async def has_admin(self) -> bool:
        async with self._session_factory() as session:
            stmt = select(User.id).where(User.is_admin.is_(True)).limit(1)
            result = await session.execute(stmt)
            return result.scalar_one_or_none() is not None

    # Profiles --------------------------------------------------------------

    async def list_profiles(self, user_id: str) -> list[ProfileRead]:
        async with self._session_factory() as session:
            stmt = (
                select(Profile)
                .where(Profile.user_id == user_id)
                .order_by(Profile.created_at)
            )
            result = await session.execute(stmt)
            return [_to_model(ProfileRead, row) for row in result.scalars()]

    async def get_profile(self, profile_id: str) -> ProfileRead | None:
        async with self._session_factory() as session:
            row = await session.get(Profile, profile_id)
            return _to_model(ProfileRead, row) if row else None

    async def create_profile(self, user_id: str, data: ProfileCreate) -> ProfileRead:
        async with self._session_factory() as session:
            await self._require(session, User, user_id, "User")
            row = Profile(**data.model_dump(), user_id=user_id, created_at=utcnow())
            session.add(row)
            await session.commit()
            return _to_model(ProfileRead, row)

    async def update_profile(
        self, profile_id: str, changes: dict[str, Any]
    ) -> ProfileRead:
        async with self._session_factory() as session:
            row = await self._require(session, Profile, profile_id, "Profile")
            for key, value in changes.items():
                setattr(row, key, value)
            await session.commit()
            return _to_model(ProfileRead, row)

    async def delete_profile(self, profile_id: str) -> None:
        async with self._session_factory() as session:
            await self._require(session, Profile, profile_id, "Profile")
            await session.execute(
                delete(WatchHistory).where(WatchHistory.profile_id == profile_id)
            )
            await session.execute(delete(Profile).where(Profile.id == profile_id))
            await session.commit()

    async def count_profiles(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(select(func.count(Profile.id)))
            return int(result.scalar_one())

    # Watch history ---------------------------------------------------------

    async def list_watch_history(self, profile_id: str) -> list[WatchHistoryRead]:
        async with self._session_factory() as session:
            stmt = (
                select(WatchHistory)
                .where(WatchHistory.profile_id == profile_id)
                .order_by(WatchHistory.watched_at.desc())
            )
            result = await session.execute(stmt)
            return [_to_model(WatchHistoryRead, row) for row in result.scalars()]

    async def get_watch_entry(
        self, profile_id: str, content_id: str
    ) -> WatchHistoryRead | None:
        async with self._session_factory() as session:
            row = await self._find_watch_row(session, profile_id, content_id)
            return _to_model(WatchHistoryRead, row) if row else None

    @staticmethod
    async def _find_watch_row(
        session: AsyncSession, profile_id: str, content_id: str
    ) -> WatchHistory | None:
        stmt = select(WatchHistory).where(
            WatchHistory.profile_id == profile_id,
            WatchHistory.content_id == content_id,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_watch_progress(
        self, profile_id: str, entry: WatchHistoryWrite
    ) -> WatchHistoryRead:
        async with self._session_factory() as session:
            await self._require(session, Profile, profile_id, "Profile")
            await self._require(session, Content, entry.content_id, "Content")
            row = await self._find_watch_row(session, profile_id, entry.content_id)
            if row is None:
                row = WatchHistory(profile_id=profile_id, content_id=entry.content_id)
                session.add(row)
            row.progress = entry.progress
            row.season_number = entry.season_number
            row.episode_number = entry.episode_number
            row.completed = entry.completed
            row.watched_at = utcnow()
            await session.commit()
            return _to_model(WatchHistoryRead, row)

    # Subscriptions ---------------------------------------------------------

    async def list_plans(self, *, active_only: bool = True) -> list[SubscriptionPlanRead]:
        async with self._session_factory() as session:
            stmt = select(SubscriptionPlan).order_by(SubscriptionPlan.price_cents)
            if active_only:
                stmt = stmt.where(SubscriptionPlan.is_active.is_(True))
            result = await session.execute(stmt)
            return [_to_model(SubscriptionPlanRead, row) for row in result.scalars()]

    async def get_plan(self, plan_id: str) -> SubscriptionPlanRead | None:
        async with self._session_factory() as session:
            row = await session.get(SubscriptionPlan, plan_id)
            return _to_model(SubscriptionPlanRead, row) if row else None

    async def create_plan(self, data: SubscriptionPlanCreate) -> SubscriptionPlanRead:
        async with self._session_factory() as session:
            row = SubscriptionPlan(**data.model_dump())
            session.add(row)
            await session.commit()
            return _to_model(SubscriptionPlanRead, row)

    async def update_plan(
        self, plan_id: str, changes: dict[str, Any]
    ) -> SubscriptionPlanRead:
        async with self._session_factory() as session:
            row = await self._require(session, SubscriptionPlan, plan_id, "Plan")
            for key, value in changes.items():
                setattr(row, key, value)
            await session.commit()
            return _to_model(SubscriptionPlanRead, row)

    @staticmethod
    def _active_criteria(now: datetime) -> tuple:
        return (
            UserSubscription.status == "active",
            UserSubscription.end_date > now,
        )

    async def get_active_subscription(
        self, user_id: str, now: datetime
    ) -> SubscriptionRead | None:
        async with self._session_factory() as session:
            stmt = (
                select(UserSubscription)
                .where(UserSubscription.user_id == user_id, *self._active_criteria(now))
                .order_by(UserSubscription.end_date.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            return _to_model(SubscriptionRead, row) if row else None

    async def create_subscription(
        self, user_id: str, plan_id: str, start: datetime, end: datetime
    ) -> SubscriptionRead:
        async with self._session_factory() as session:
            await self._require(session, User, user_id, "User")
            await self._require(session, SubscriptionPlan, plan_id, "Plan")
            row = UserSubscription(
                user_id=user_id,
                plan_id=plan_id,
                status="active",
                start_date=start,
                end_date=end,
            )
            session.add(row)
            await session.commit()
            return _to_model(SubscriptionRead, row)

    async def cancel_subscriptions(self, user_id: str, now: datetime) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                update(UserSubscription)
                .where(UserSubscription.user_id == user_id, *self._active_criteria(now))
                .values(status="cancelled")
            )
            await session.commit()
            return int(result.rowcount or 0)

    async def count_active_subscriptions(self, now: datetime) -> int:
        async with self._session_factory() as session:
            stmt = select(func.count(func.distinct(UserSubscription.user_id))).where(
                *self._active_criteria(now)
            )
            result = await session.execute(stmt)
            return int(result.scalar_one())

    # Notifications ---------------------------------------------------------

    async def create_notification(self, data: NotificationCreate) -> NotificationRead:
        async with self._session_factory() as session:
            if data.user_id is not None:
                await self._require(session, User, data.user_id, "User")
            row = Notification(**data.model_dump(), created_at=utcnow())
            session.add(row)
            await session.commit()
            return _to_model(NotificationRead, row)

    async def get_notification(self, notification_id: str) -> NotificationRead | None:
        async with self._session_factory() as session:
            row = await session.get(Notification, notification_id)
            return _to_model(NotificationRead, row) if row else None

    async def list_all_notifications(self) -> list[NotificationRead]:
        async with self._session_factory() as session:
            stmt = select(Notification).order_by(Notification.created_at.desc())
            result = await session.execute(stmt)
            return [_to_model(NotificationRead, row) for row in result.scalars()]

    async def list_notifications(self, user_id: str) -> list[UserNotification]:
        async with self._session_factory() as session:
            stmt = (
                select(Notification, NotificationReceipt.read_at)
                .outerjoin(
                    NotificationReceipt,
                    (NotificationReceipt.notification_id == Notification.id)
                    & (NotificationReceipt.user_id == user_id),
                )
                .where(
                    Notification.user_id.is_(None) | (Notification.user_id == user_id)
                )
                .order_by(Notification.created_at.desc())
            )
            result = await session.execute(stmt)
            return [
                UserNotification(
                    **_to_model(NotificationRead, row).model_dump(),
                    read=read_at is not None,
                )
                for row, read_at in result.all()
            ]

    async def mark_notification_read(self, notification_id: str, user_id: str) -> None:
        async with self._session_factory() as session:
            row = await self._require(
                session, Notification, notification_id, "Notification"
            )
            if row.user_id is not None and row.user_id != user_id:
                raise KeyError(f"Notification {notification_id} not found")
            receipt = await session.get(NotificationReceipt, (notification_id, user_id))
            if receipt is None:
                session.add(
                    NotificationReceipt(
                        notification_id=notification_id,
                        user_id=user_id,
                        read_at=utcnow(),
                    )
                )
                await session.commit()

    async def delete_notification(self, notification_id: str) -> None:
        async with self._session_factory() as session:
            await self._require(session, Notification, notification_id, "Notification")
            await session.execute(
                delete(NotificationReceipt).where(
                    NotificationReceipt.notification_id == notification_id
                )
            )
            await session.execute(
                delete(Notification).where(Notification.id == notification_id)
            )
            await session.commit()


async def create_storage(settings: Settings) -> Storage:
    """Return the relational store when configured, else the in-memory one."""

    if not settings.uses_database:
        logger.info("DATABASE_URL not set; using the in-memory store")
        return MemoryStorage()
    database = Database(settings.database_url)
    await database.create_all()
    logger.info("Using the %s database store", database.engine.dialect.name)
    return DatabaseStorage(database.session_factory, database)
