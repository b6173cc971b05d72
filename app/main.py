"""Entry point for the StreamFlix FastAPI backend."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager, contextmanager
from typing import Iterator

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from .auth import get_account_service, get_current_user, require_admin
from .config import Settings, settings
from .models import (
    CONTENT_TYPES,
    AdminContentCreate,
    AdminStats,
    ContentFilters,
    ContentRead,
    ContentUpdate,
    ContinueWatchingItem,
    EpisodeCreate,
    EpisodeRead,
    EpisodeUpdate,
    HomeFeed,
    NotificationCreate,
    NotificationRead,
    ProfileCreate,
    ProfileRead,
    ProfileUpdate,
    SeasonCreate,
    SeasonRead,
    SeasonUpdate,
    StreamDescriptor,
    SubscribeRequest,
    SubscriptionPlanCreate,
    SubscriptionPlanRead,
    SubscriptionPlanUpdate,
    SubscriptionStatus,
    UserAdminUpdate,
    UserNotification,
    UserRead,
    WatchHistoryRead,
    WatchProgressUpdate,
)
from .seed_catalog import SEED_CONTENT, SEED_PLANS
from .services.accounts import AccountService
from .services.catalog import CatalogService
from .services.sql_storage import create_storage
from .services.storage import ConflictError, Storage
from .services.streaming import PlaybackService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    storage = await create_storage(settings)
    if settings.seed_catalog:
        await storage.seed(SEED_CONTENT, SEED_PLANS)
    install_services(fastapi_app, settings, storage)

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await storage.close()


def install_services(fastapi_app: FastAPI, config: Settings, storage: Storage) -> None:
    """Attach the storage and the services built on it to the app state."""

    fastapi_app.state.storage = storage
    fastapi_app.state.catalog_service = CatalogService(storage)
    fastapi_app.state.account_service = AccountService(config, storage)
    fastapi_app.state.playback_service = PlaybackService(config, storage)


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Catalog, profiles and playback state for the StreamFlix player",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_catalog_service(app: FastAPI) -> CatalogService:
    service = getattr(app.state, "catalog_service", None)
    if not isinstance(service, CatalogService):
        raise RuntimeError("Catalog service not initialised")
    return service


def get_playback_service(app: FastAPI) -> PlaybackService:
    service = getattr(app.state, "playback_service", None)
    if not isinstance(service, PlaybackService):
        raise RuntimeError("Playback service not initialised")
    return service


def _missing(exc: KeyError) -> str:
    return str(exc.args[0]) if exc.args else "Not found"


@contextmanager
def _service_errors() -> Iterator[None]:
    """Translate service-layer exceptions into HTTP errors."""

    try:
        yield
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=_missing(exc)) from exc


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(SQLAlchemyError)
    async def storage_failure_handler(
        request: Request, exc: SQLAlchemyError
    ) -> JSONResponse:
        logger.exception(
            "Storage failure on %s %s", request.method, request.url.path, exc_info=exc
        )
        return JSONResponse(status_code=500, content={"detail": "Storage failure"})

    async def _kids_mode(request: Request, profile_id: str | None) -> bool:
        """Return whether listings must be restricted for the named profile."""

        if not profile_id:
            return False
        user = await get_current_user(request)
        accounts = get_account_service(request)
        with _service_errors():
            profile = await accounts.owned_profile(user, profile_id)
        return profile.is_kids

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/auth/user")
    async def auth_user(user: UserRead = Depends(get_current_user)) -> UserRead:
        return user

    # Catalog ----------------------------------------------------------------

    @fastapi_app.get("/api/content")
    async def list_content(
        request: Request, profile_id: str | None = Query(None, alias="profileId")
    ) -> list[ContentRead]:
        service = get_catalog_service(fastapi_app)
        kids = await _kids_mode(request, profile_id)
        with _service_errors():
            filters = ContentFilters.from_query(request.query_params)
            return await service.browse(filters, kids=kids)

    @fastapi_app.get("/api/content/feed")
    async def home_feed(
        request: Request, profile_id: str | None = Query(None, alias="profileId")
    ) -> HomeFeed:
        service = get_catalog_service(fastapi_app)
        kids = await _kids_mode(request, profile_id)
        with _service_errors():
            return await service.feed(kids=kids)

    @fastapi_app.get("/api/content/trending")
    async def trending(
        request: Request, profile_id: str | None = Query(None, alias="profileId")
    ) -> list[ContentRead]:
        kids = await _kids_mode(request, profile_id)
        with _service_errors():
            return await get_catalog_service(fastapi_app).trending(kids=kids)

    @fastapi_app.get("/api/content/new-releases")
    async def new_releases(
        request: Request, profile_id: str | None = Query(None, alias="profileId")
    ) -> list[ContentRead]:
        kids = await _kids_mode(request, profile_id)
        with _service_errors():
            return await get_catalog_service(fastapi_app).new_releases(kids=kids)

    @fastapi_app.get("/api/content/popular")
    async def popular(
        request: Request, profile_id: str | None = Query(None, alias="profileId")
    ) -> list[ContentRead]:
        kids = await _kids_mode(request, profile_id)
        with _service_errors():
            return await get_catalog_service(fastapi_app).popular(kids=kids)

    @fastapi_app.get("/api/content/search")
    async def search(
        request: Request,
        q: str = "",
        profile_id: str | None = Query(None, alias="profileId"),
    ) -> list[ContentRead]:
        kids = await _kids_mode(request, profile_id)
        with _service_errors():
            return await get_catalog_service(fastapi_app).search(q, kids=kids)

    @fastapi_app.get("/api/content/type/{content_type}")
    async def by_type(
        request: Request,
        content_type: str,
        profile_id: str | None = Query(None, alias="profileId"),
    ) -> list[ContentRead]:
        if content_type not in CONTENT_TYPES:
            raise HTTPException(status_code=400, detail="Unsupported content type")
        kids = await _kids_mode(request, profile_id)
        with _service_errors():
            return await get_catalog_service(fastapi_app).by_type(
                content_type, kids=kids
            )

    @fastapi_app.get("/api/content/{content_id}")
    async def content_detail(
        request: Request,
        content_id: str,
        profile_id: str | None = Query(None, alias="profileId"),
    ) -> ContentRead:
        kids = await _kids_mode(request, profile_id)
        with _service_errors():
            return await get_catalog_service(fastapi_app).get(content_id, kids=kids)

    @fastapi_app.get("/api/content/{content_id}/seasons")
    async def content_seasons(content_id: str) -> list[SeasonRead]:
        with _service_errors():
            return await get_catalog_service(fastapi_app).list_seasons(content_id)

    @fastapi_app.get("/api/seasons/{season_id}/episodes")
    async def season_episodes(season_id: str) -> list[EpisodeRead]:
        with _service_errors():
            return await get_catalog_service(fastapi_app).list_episodes(season_id)

    @fastapi_app.get("/api/content/{content_id}/stream")
    async def stream(
        request: Request,
        content_id: str,
        season: int | None = Query(None, ge=1),
        episode: int | None = Query(None, ge=1),
        quality: str | None = None,
        profile_id: str | None = Query(None, alias="profileId"),
    ) -> StreamDescriptor:
        kids = await _kids_mode(request, profile_id)
        catalog = get_catalog_service(fastapi_app)
        playback = get_playback_service(fastapi_app)
        with _service_errors():
            content = await catalog.get(content_id, kids=kids)
            return await playback.stream(
                content,
                season_number=season,
                episode_number=episode,
                quality=quality,
                profile_id=profile_id,
            )

    # Profiles ---------------------------------------------------------------

    @fastapi_app.get("/api/profiles")
    async def list_profiles(
        request: Request, user: UserRead = Depends(get_current_user)
    ) -> list[ProfileRead]:
        return await get_account_service(request).list_profiles(user)

    @fastapi_app.post("/api/profiles", status_code=201)
    async def create_profile(
        request: Request,
        payload: ProfileCreate,
        user: UserRead = Depends(get_current_user),
    ) -> ProfileRead:
        with _service_errors():
            return await get_account_service(request).create_profile(user, payload)

    @fastapi_app.put("/api/profiles/{profile_id}")
    async def update_profile(
        request: Request,
        profile_id: str,
        payload: ProfileUpdate,
        user: UserRead = Depends(get_current_user),
    ) -> ProfileRead:
        with _service_errors():
            return await get_account_service(request).update_profile(
                user, profile_id, payload
            )

    @fastapi_app.delete("/api/profiles/{profile_id}", status_code=204)
    async def delete_profile(
        request: Request,
        profile_id: str,
        user: UserRead = Depends(get_current_user),
    ) -> None:
        with _service_errors():
            await get_account_service(request).delete_profile(user, profile_id)

    @fastapi_app.post("/api/profiles/{profile_id}/watch-progress")
    async def record_progress(
        request: Request,
        profile_id: str,
        payload: WatchProgressUpdate,
        user: UserRead = Depends(get_current_user),
    ) -> WatchHistoryRead:
        with _service_errors():
            await get_account_service(request).owned_profile(user, profile_id)
            return await get_playback_service(fastapi_app).record_progress(
                profile_id, payload
            )

    @fastapi_app.get("/api/profiles/{profile_id}/watch-history")
    async def watch_history(
        request: Request,
        profile_id: str,
        user: UserRead = Depends(get_current_user),
    ) -> list[WatchHistoryRead]:
        with _service_errors():
            await get_account_service(request).owned_profile(user, profile_id)
            return await get_playback_service(fastapi_app).history(profile_id)

    @fastapi_app.get("/api/profiles/{profile_id}/continue-watching")
    async def continue_watching(
        request: Request,
        profile_id: str,
        user: UserRead = Depends(get_current_user),
    ) -> list[ContinueWatchingItem]:
        with _service_errors():
            profile = await get_account_service(request).owned_profile(
                user, profile_id
            )
            return await get_playback_service(fastapi_app).continue_watching(
                profile_id, kids=profile.is_kids
            )

    # Subscriptions ----------------------------------------------------------

    @fastapi_app.get("/api/subscription-plans")
    async def subscription_plans(request: Request) -> list[SubscriptionPlanRead]:
        return await get_account_service(request).list_plans()

    @fastapi_app.get("/api/user/subscription")
    async def current_subscription(
        request: Request, user: UserRead = Depends(get_current_user)
    ) -> SubscriptionStatus | None:
        return await get_account_service(request).subscription_status(user)

    @fastapi_app.post("/api/user/subscription", status_code=201)
    async def subscribe(
        request: Request,
        payload: SubscribeRequest,
        user: UserRead = Depends(get_current_user),
    ) -> SubscriptionStatus:
        with _service_errors():
            return await get_account_service(request).subscribe(user, payload.plan_id)

    @fastapi_app.delete("/api/user/subscription", status_code=204)
    async def cancel_subscription(
        request: Request, user: UserRead = Depends(get_current_user)
    ) -> None:
        with _service_errors():
            await get_account_service(request).cancel(user)

    # Notifications ----------------------------------------------------------

    @fastapi_app.get("/api/notifications")
    async def notifications(
        request: Request, user: UserRead = Depends(get_current_user)
    ) -> list[UserNotification]:
        return await get_account_service(request).notifications(user)

    @fastapi_app.get("/api/notifications/unread-count")
    async def unread_count(
        request: Request, user: UserRead = Depends(get_current_user)
    ) -> dict[str, int]:
        return {"count": await get_account_service(request).unread_count(user)}

    @fastapi_app.post("/api/notifications/{notification_id}/read")
    async def mark_read(
        request: Request,
        notification_id: str,
        user: UserRead = Depends(get_current_user),
    ) -> dict[str, bool]:
        with _service_errors():
            await get_account_service(request).mark_read(user, notification_id)
        return {"read": True}

    # Back-office ------------------------------------------------------------

    @fastapi_app.post("/api/admin/bootstrap")
    async def bootstrap_admin(
        request: Request, user: UserRead = Depends(get_current_user)
    ) -> UserRead:
        with _service_errors():
            return await get_account_service(request).bootstrap_admin(user)

    @fastapi_app.get("/api/admin/stats")
    async def admin_stats(
        request: Request, _: UserRead = Depends(require_admin)
    ) -> AdminStats:
        with _service_errors():
            return await get_account_service(request).stats()

    @fastapi_app.post("/api/admin/content", status_code=201)
    async def admin_create_content(
        payload: AdminContentCreate, _: UserRead = Depends(require_admin)
    ) -> ContentRead:
        with _service_errors():
            return await get_catalog_service(fastapi_app).create_content(payload)

    @fastapi_app.put("/api/admin/content/{content_id}")
    async def admin_update_content(
        content_id: str,
        payload: ContentUpdate,
        _: UserRead = Depends(require_admin),
    ) -> ContentRead:
        with _service_errors():
            return await get_catalog_service(fastapi_app).update_content(
                content_id, payload
            )

    @fastapi_app.delete("/api/admin/content/{content_id}", status_code=204)
    async def admin_delete_content(
        content_id: str, _: UserRead = Depends(require_admin)
    ) -> None:
        with _service_errors():
            await get_catalog_service(fastapi_app).delete_content(content_id)

    @fastapi_app.post("/api/admin/content/{content_id}/seasons", status_code=201)
    async def admin_add_season(
        content_id: str,
        payload: SeasonCreate,
        _: UserRead = Depends(require_admin),
    ) -> SeasonRead:
        with _service_errors():
            return await get_catalog_service(fastapi_app).add_season(
                content_id, payload
            )

    @fastapi_app.put("/api/admin/seasons/{season_id}")
    async def admin_update_season(
        season_id: str,
        payload: SeasonUpdate,
        _: UserRead = Depends(require_admin),
    ) -> SeasonRead:
        with _service_errors():
            return await get_catalog_service(fastapi_app).update_season(
                season_id, payload
            )

    @fastapi_app.delete("/api/admin/seasons/{season_id}", status_code=204)
    async def admin_delete_season(
        season_id: str, _: UserRead = Depends(require_admin)
    ) -> None:
        with _service_errors():
            await get_catalog_service(fastapi_app).delete_season(season_id)

    @fastapi_app.post("/api/admin/seasons/{season_id}/episodes", status_code=201)
    async def admin_add_episode(
        season_id: str,
        payload: EpisodeCreate,
        _: UserRead = Depends(require_admin),
    ) -> EpisodeRead:
        with _service_errors():
            return await get_catalog_service(fastapi_app).add_episode(
                season_id, payload
            )

    @fastapi_app.put("/api/admin/episodes/{episode_id}")
    async def admin_update_episode(
        episode_id: str,
        payload: EpisodeUpdate,
        _: UserRead = Depends(require_admin),
    ) -> EpisodeRead:
        with _service_errors():
            return await get_catalog_service(fastapi_app).update_episode(
                episode_id, payload
            )

    @fastapi_app.delete("/api/admin/episodes/{episode_id}", status_code=204)
    async def admin_delete_episode(
        episode_id: str, _: UserRead = Depends(require_admin)
    ) -> None:
        with _service_errors():
            await get_catalog_service(fastapi_app).delete_episode(episode_id)

    @fastapi_app.get("/api/admin/users")
    async def admin_list_users(
        request: Request, _: UserRead = Depends(require_admin)
    ) -> list[UserRead]:
        return await get_account_service(request).list_users()

    @fastapi_app.put("/api/admin/users/{user_id}")
    async def admin_update_user(
        request: Request,
        user_id: str,
        payload: UserAdminUpdate,
        admin: UserRead = Depends(require_admin),
    ) -> UserRead:
        with _service_errors():
            return await get_account_service(request).set_admin(
                admin, user_id, payload.is_admin
            )

    @fastapi_app.delete("/api/admin/users/{user_id}", status_code=204)
    async def admin_delete_user(
        request: Request,
        user_id: str,
        admin: UserRead = Depends(require_admin),
    ) -> None:
        with _service_errors():
            await get_account_service(request).delete_user(admin, user_id)

    @fastapi_app.get("/api/admin/notifications")
    async def admin_list_notifications(
        request: Request, _: UserRead = Depends(require_admin)
    ) -> list[NotificationRead]:
        return await get_account_service(request).all_notifications()

    @fastapi_app.post("/api/admin/notifications", status_code=201)
    async def admin_create_notification(
        request: Request,
        payload: NotificationCreate,
        _: UserRead = Depends(require_admin),
    ) -> NotificationRead:
        with _service_errors():
            return await get_account_service(request).broadcast(payload)

    @fastapi_app.delete("/api/admin/notifications/{notification_id}", status_code=204)
    async def admin_delete_notification(
        request: Request,
        notification_id: str,
        _: UserRead = Depends(require_admin),
    ) -> None:
        with _service_errors():
            await get_account_service(request).delete_notification(notification_id)

    @fastapi_app.get("/api/admin/subscription-plans")
    async def admin_list_plans(
        request: Request, _: UserRead = Depends(require_admin)
    ) -> list[SubscriptionPlanRead]:
        return await get_account_service(request).list_plans(active_only=False)

    @fastapi_app.post("/api/admin/subscription-plans", status_code=201)
    async def admin_create_plan(
        request: Request,
        payload: SubscriptionPlanCreate,
        _: UserRead = Depends(require_admin),
    ) -> SubscriptionPlanRead:
        with _service_errors():
            return await get_account_service(request).create_plan(payload)

    @fastapi_app.put("/api/admin/subscription-plans/{plan_id}")
    async def admin_update_plan(
        request: Request,
        plan_id: str,
        payload: SubscriptionPlanUpdate,
        _: UserRead = Depends(require_admin),
    ) -> SubscriptionPlanRead:
        with _service_errors():
            return await get_account_service(request).update_plan(plan_id, payload)


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
