"""Users, profiles, subscriptions and notification feeds."""

from __future__ import annotations

import logging
import math
from datetime import timedelta

from ..config import Settings
from ..models import (
    CONTENT_TYPES,
    AdminStats,
    NotificationCreate,
    NotificationRead,
    ProfileCreate,
    ProfileRead,
    ProfileUpdate,
    SubscriptionPlanCreate,
    SubscriptionPlanRead,
    SubscriptionPlanUpdate,
    SubscriptionRead,
    SubscriptionStatus,
    UserClaims,
    UserNotification,
    UserRead,
)
from ..utils import decoded_data_url_size, utcnow
from .storage import ConflictError, Storage

logger = logging.getLogger(__name__)

EXPIRY_WARNING = timedelta(days=7)
AVATAR_MIME_PREFIXES: tuple[str, ...] = ("image/", "video/")


class AccountService:
    """Business rules layered over the storage for account features."""

    def __init__(self, settings: Settings, storage: Storage):
        self._settings = settings
        self._storage = storage

    # Users ------------------------------------------------------------------

    async def sign_in(self, claims: UserClaims) -> UserRead:
        return await self._storage.upsert_user(claims)

    async def bootstrap_admin(self, user: UserRead) -> UserRead:
        """Promote the caller when the installation has no admin yet."""

        if await self._storage.has_admin():
            raise ConflictError("An administrator is already configured")
        promoted = await self._storage.set_user_admin(user.id, True)
        logger.info("Bootstrapped %s as the first administrator", user.id)
        return promoted

    async def set_admin(self, acting: UserRead, user_id: str, is_admin: bool) -> UserRead:
        if user_id == acting.id and not is_admin:
            raise ValueError("Administrators cannot revoke their own access")
        updated = await self._storage.set_user_admin(user_id, is_admin)
        logger.info("User %s admin flag set to %s by %s", user_id, is_admin, acting.id)
        return updated

    async def delete_user(self, acting: UserRead, user_id: str) -> None:
        if user_id == acting.id:
            raise ValueError("Administrators cannot delete their own account")
        await self._storage.delete_user(user_id)
        logger.info("User %s deleted by %s", user_id, acting.id)

    # Profiles ---------------------------------------------------------------

    async def list_profiles(self, user: UserRead) -> list[ProfileRead]:
        return await self._storage.list_profiles(user.id)

    async def owned_profile(self, user: UserRead, profile_id: str) -> ProfileRead:
        """Return the profile when it belongs to ``user``."""

        profile = await self._storage.get_profile(profile_id)
        if profile is None or profile.user_id != user.id:
            raise KeyError("Profile not found")
        return profile

    async def profile_limit(self, user: UserRead) -> int:
        limit = self._settings.max_profiles_per_user
        subscription = await self._storage.get_active_subscription(user.id, utcnow())
        if subscription is not None:
            plan = await self._storage.get_plan(subscription.plan_id)
            if plan is not None:
                limit = min(limit, plan.max_profiles)
        return limit

    async def create_profile(self, user: UserRead, data: ProfileCreate) -> ProfileRead:
        existing = await self._storage.list_profiles(user.id)
        limit = await self.profile_limit(user)
        if len(existing) >= limit:
            logger.warning("User %s hit the profile limit of %s", user.id, limit)
            raise ConflictError(f"Profile limit of {limit} reached")
        self.validate_avatar(data.avatar_url)
        return await self._storage.create_profile(user.id, data)

    async def update_profile(
        self, user: UserRead, profile_id: str, data: ProfileUpdate
    ) -> ProfileRead:
        await self.owned_profile(user, profile_id)
        changes = data.changes()
        if "avatar_url" in changes:
            self.validate_avatar(changes["avatar_url"])
        return await self._storage.update_profile(profile_id, changes)

    async def delete_profile(self, user: UserRead, profile_id: str) -> None:
        await self.owned_profile(user, profile_id)
        await self._storage.delete_profile(profile_id)

    def validate_avatar(self, avatar_url: str | None) -> None:
        """Accept http(s) links or image/video data URLs within the size limit."""

        if avatar_url is None:
            return
        lowered = avatar_url.lower()
        if lowered.startswith(("http://", "https://")):
            return
        if not lowered.startswith("data:"):
            raise ValueError("avatarUrl must be an http(s) URL or a data URL")
        mime, size = decoded_data_url_size(avatar_url)
        if not mime.startswith(AVATAR_MIME_PREFIXES):
            raise ValueError("Avatars must be images or videos")
        if size > self._settings.max_avatar_bytes:
            logger.warning("Rejected avatar of %s bytes", size)
            raise ValueError(
                f"Avatar exceeds the {self._settings.max_avatar_bytes} byte limit"
            )

    # Subscriptions ----------------------------------------------------------

    async def subscription_status(self, user: UserRead) -> SubscriptionStatus | None:
        now = utcnow()
        subscription = await self._storage.get_active_subscription(user.id, now)
        if subscription is None:
            return None
        return await self._describe(subscription)

    async def _describe(self, subscription: SubscriptionRead) -> SubscriptionStatus:
        now = utcnow()
        remaining = subscription.end_date - now
        return SubscriptionStatus(
            **subscription.model_dump(),
            plan=await self._storage.get_plan(subscription.plan_id),
            expiring_soon=remaining <= EXPIRY_WARNING,
            days_remaining=max(math.ceil(remaining.total_seconds() / 86400), 0),
        )

    async def subscribe(self, user: UserRead, plan_id: str) -> SubscriptionStatus:
        plan = await self._storage.get_plan(plan_id)
        if plan is None or not plan.is_active:
            raise KeyError("Plan not found")
        now = utcnow()
        await self._storage.cancel_subscriptions(user.id, now)
        subscription = await self._storage.create_subscription(
            user.id, plan.id, now, now + timedelta(days=plan.duration_days)
        )
        logger.info("User %s subscribed to plan %s", user.id, plan.id)
        return await self._describe(subscription)

    async def cancel(self, user: UserRead) -> None:
        cancelled = await self._storage.cancel_subscriptions(user.id, utcnow())
        if not cancelled:
            raise KeyError("No active subscription")
        logger.info("User %s cancelled their subscription", user.id)

    # Notifications ----------------------------------------------------------

    async def broadcast(self, data: NotificationCreate) -> NotificationRead:
        notification = await self._storage.create_notification(data)
        logger.info(
            "Notification %s sent to %s",
            notification.id,
            notification.user_id or "everyone",
        )
        return notification

    async def notifications(self, user: UserRead) -> list[UserNotification]:
        return await self._storage.list_notifications(user.id)

    async def unread_count(self, user: UserRead) -> int:
        return sum(1 for item in await self.notifications(user) if not item.read)

    async def mark_read(self, user: UserRead, notification_id: str) -> None:
        await self._storage.mark_notification_read(notification_id, user.id)

    async def all_notifications(self) -> list[NotificationRead]:
        return await self._storage.list_all_notifications()

    async def delete_notification(self, notification_id: str) -> None:
        await self._storage.delete_notification(notification_id)
        logger.info("Notification %s deleted", notification_id)

    # Back-office ------------------------------------------------------------

    async def list_users(self) -> list[UserRead]:
        return await self._storage.list_users()

    async def list_plans(self, *, active_only: bool = True) -> list[SubscriptionPlanRead]:
        return await self._storage.list_plans(active_only=active_only)

    async def create_plan(self, data: SubscriptionPlanCreate) -> SubscriptionPlanRead:
        plan = await self._storage.create_plan(data)
        logger.info("Created subscription plan %s (%s)", plan.id, plan.name)
        return plan

    async def update_plan(
        self, plan_id: str, data: SubscriptionPlanUpdate
    ) -> SubscriptionPlanRead:
        return await self._storage.update_plan(plan_id, data.changes())

    async def stats(self) -> AdminStats:
        content = await self._storage.list_content()
        users = await self._storage.list_users()
        by_type = {content_type: 0 for content_type in CONTENT_TYPES}
        for item in content:
            by_type[item.type] = by_type.get(item.type, 0) + 1
        return AdminStats(
            content_total=len(content),
            content_by_type=by_type,
            users=len(users),
            admins=sum(1 for user in users if user.is_admin),
            profiles=await self._storage.count_profiles(),
            active_subscriptions=await self._storage.count_active_subscriptions(
                utcnow()
            ),
        )
