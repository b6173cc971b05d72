"""Pydantic models describing API payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, Literal, Mapping

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .services.playback import QUALITY_LADDER

ContentType = Literal["movie", "series", "anime"]
AgeRating = Literal["L", "10", "12", "14", "16", "18"]
NotificationKind = Literal["info", "new_content", "maintenance", "promotion"]
SubscriptionState = Literal["active", "cancelled"]
SortKey = Literal["popularity", "rating", "year", "title"]

CONTENT_TYPES: tuple[str, ...] = ("movie", "series", "anime")


class APIModel(BaseModel):
    """Base model exchanging camelCase JSON while accepting snake_case too."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _strip_blank(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def _clean_string_list(value: object) -> object:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple, set)):
        return value
    cleaned: list[str] = []
    for entry in value:
        text = str(entry).strip()
        if text and text not in cleaned:
            cleaned.append(text)
    return cleaned


def _reject_nulls(model: BaseModel, fields: frozenset[str]) -> None:
    for name in model.model_fields_set & fields:
        if getattr(model, name) is None:
            raise ValueError(f"{to_camel(name)} cannot be null")


# --------------------------------------------------------------------------
# Catalog
# --------------------------------------------------------------------------


class _ContentFields(APIModel):
    """Validators shared by the create, update and read content models."""

    @field_validator(
        "trailer_url",
        "movie_url",
        "director",
        "release_date",
        "country",
        "language",
        "episode_duration",
        "duration",
        mode="before",
        check_fields=False,
    )
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        return _strip_blank(value)

    @field_validator(
        "cast",
        "subtitle_options",
        "dub_options",
        "categories",
        mode="before",
        check_fields=False,
    )
    @classmethod
    def _clean_lists(cls, value: object) -> object:
        return _clean_string_list(value)

    @field_validator("age_rating", mode="before", check_fields=False)
    @classmethod
    def _normalise_age_rating(cls, value: object) -> object:
        if value is None:
            return value
        rating = str(value).strip().upper()
        if rating in {"", "LIVRE"}:
            return "L"
        return rating

    @field_validator("title", "genre", mode="before", check_fields=False)
    @classmethod
    def _strip_text(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class ContentCreate(_ContentFields):
    """Catalog record as submitted by the back-office or the seed loader."""

    title: str = Field(min_length=1, max_length=200)
    description: str
    year: int = Field(ge=1888, le=2100)
    rating: int = Field(ge=0, le=100, description="Rating out of 100")
    genre: str = Field(min_length=1, max_length=80)
    type: ContentType
    image_url: str = Field(min_length=1)
    trailer_url: str | None = None
    movie_url: str | None = None
    director: str | None = None
    cast: list[str] = Field(default_factory=list)
    age_rating: AgeRating = "L"
    release_date: str | None = None
    country: str | None = None
    language: str | None = None
    subtitle_options: list[str] = Field(default_factory=list)
    dub_options: list[str] = Field(default_factory=list)
    total_episodes: int | None = Field(default=None, ge=0)
    total_seasons: int | None = Field(default=None, ge=0)
    episode_duration: str | None = None
    categories: list[str] = Field(default_factory=list)
    is_trending: bool = False
    is_new_release: bool = False
    is_popular: bool = False
    duration: str | None = None


class AdminContentCreate(ContentCreate):
    """Back-office creation payload; a playable link is mandatory."""

    movie_url: str = Field(min_length=1)

    @field_validator("movie_url")
    @classmethod
    def _require_http_url(cls, value: str) -> str:
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError("movieUrl must be an http(s) URL")
        return value


class ContentUpdate(_ContentFields):
    """Partial update; omitted fields keep their stored value."""

    _NON_NULLABLE: ClassVar[frozenset[str]] = frozenset(
        {
            "title",
            "description",
            "year",
            "rating",
            "genre",
            "type",
            "image_url",
            "age_rating",
            "is_trending",
            "is_new_release",
            "is_popular",
        }
    )

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    year: int | None = Field(default=None, ge=1888, le=2100)
    rating: int | None = Field(default=None, ge=0, le=100)
    genre: str | None = Field(default=None, min_length=1, max_length=80)
    type: ContentType | None = None
    image_url: str | None = Field(default=None, min_length=1)
    trailer_url: str | None = None
    movie_url: str | None = None
    director: str | None = None
    cast: list[str] | None = None
    age_rating: AgeRating | None = None
    release_date: str | None = None
    country: str | None = None
    language: str | None = None
    subtitle_options: list[str] | None = None
    dub_options: list[str] | None = None
    total_episodes: int | None = Field(default=None, ge=0)
    total_seasons: int | None = Field(default=None, ge=0)
    episode_duration: str | None = None
    categories: list[str] | None = None
    is_trending: bool | None = None
    is_new_release: bool | None = None
    is_popular: bool | None = None
    duration: str | None = None

    @model_validator(mode="after")
    def _check_nulls(self) -> "ContentUpdate":
        _reject_nulls(self, self._NON_NULLABLE)
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class ContentRead(ContentCreate):
    id: str
    created_at: datetime | None = None


class SeasonCreate(APIModel):
    season_number: int = Field(ge=1)
    title: str | None = None
    description: str | None = None
    poster_url: str | None = None

    @field_validator("title", "description", "poster_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        return _strip_blank(value)


class SeasonUpdate(SeasonCreate):
    season_number: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _check_nulls(self) -> "SeasonUpdate":
        _reject_nulls(self, frozenset({"season_number"}))
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class SeasonRead(SeasonCreate):
    id: str
    content_id: str
    created_at: datetime | None = None


class EpisodeCreate(APIModel):
    episode_number: int = Field(ge=1)
    title: str = Field(min_length=1, max_length=200)
    synopsis: str | None = None
    duration: str | None = None
    video_url: str | None = None
    thumbnail_url: str | None = None
    air_date: str | None = None

    @field_validator(
        "synopsis",
        "duration",
        "video_url",
        "thumbnail_url",
        "air_date",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        return _strip_blank(value)


class EpisodeUpdate(EpisodeCreate):
    episode_number: int | None = Field(default=None, ge=1)
    title: str | None = Field(default=None, min_length=1, max_length=200)

    @model_validator(mode="after")
    def _check_nulls(self) -> "EpisodeUpdate":
        _reject_nulls(self, frozenset({"episode_number", "title"}))
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class EpisodeRead(EpisodeCreate):
    id: str
    season_id: str
    created_at: datetime | None = None


class ContentFilters(APIModel):
    """Advanced filter selection applied to catalog listings."""

    type: Literal["all", "movie", "series", "anime"] = "all"
    age_rating: list[AgeRating] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    year_min: int | None = None
    year_max: int | None = None
    rating_min: int | None = Field(default=None, ge=0, le=100)
    rating_max: int | None = Field(default=None, ge=0, le=100)
    country: list[str] = Field(default_factory=list)
    language: list[str] = Field(default_factory=list)
    sort_by: SortKey | None = None

    _LIST_KEYS: ClassVar[frozenset[str]] = frozenset(
        {"ageRating", "age_rating", "categories", "country", "language"}
    )

    @classmethod
    def from_query(cls, params: Mapping[str, str]) -> "ContentFilters":
        """Build filters from query parameters.

        List filters accept repeated keys (``?country=Brasil&country=Japão``)
        or comma separated values. ``params`` may be a Starlette
        ``QueryParams`` or any plain mapping.
        """

        payload: dict[str, Any] = {}
        if hasattr(params, "multi_items"):
            items = params.multi_items()
        else:
            items = list(params.items())
        for key, value in items:
            if key in cls._LIST_KEYS:
                payload.setdefault(key, []).extend(str(value).split(","))
            else:
                payload[key] = value
        return cls.model_validate(payload)

    @field_validator("age_rating", mode="before")
    @classmethod
    def _normalise_age_ratings(cls, value: object) -> object:
        cleaned = _clean_string_list(value)
        if isinstance(cleaned, list):
            return [entry.upper() if entry.lower() == "l" else entry for entry in cleaned]
        return cleaned

    @field_validator("categories", "country", "language", mode="before")
    @classmethod
    def _clean_lists(cls, value: object) -> object:
        return _clean_string_list(value)

    @field_validator("type", "sort_by", mode="before")
    @classmethod
    def _lower(cls, value: object) -> object:
        value = _strip_blank(value)
        if isinstance(value, str):
            return value.lower()
        return value

    @field_validator("year_min", "year_max", "rating_min", "rating_max", mode="before")
    @classmethod
    def _parse_optional_int(cls, value: object) -> object:
        if value is None or value == "":
            return None
        if isinstance(value, int):
            return value
        try:
            return int(str(value))
        except (TypeError, ValueError) as exc:
            raise ValueError("Value must be an integer") from exc

    @model_validator(mode="after")
    def _check_ranges(self) -> "ContentFilters":
        if (
            self.year_min is not None
            and self.year_max is not None
            and self.year_min > self.year_max
        ):
            raise ValueError("yearMin must not exceed yearMax")
        if (
            self.rating_min is not None
            and self.rating_max is not None
            and self.rating_min > self.rating_max
        ):
            raise ValueError("ratingMin must not exceed ratingMax")
        return self


class HomeFeed(APIModel):
    hero: list[ContentRead] = Field(default_factory=list)
    trending: list[ContentRead] = Field(default_factory=list)
    new_releases: list[ContentRead] = Field(default_factory=list)
    popular: list[ContentRead] = Field(default_factory=list)
    movies: list[ContentRead] = Field(default_factory=list)
    series: list[ContentRead] = Field(default_factory=list)
    anime: list[ContentRead] = Field(default_factory=list)


# --------------------------------------------------------------------------
# Users and profiles
# --------------------------------------------------------------------------


class UserClaims(APIModel):
    """Identity claims forwarded by the authentication proxy."""

    id: str = Field(min_length=1)
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None


class UserRead(UserClaims):
    is_admin: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class UserAdminUpdate(APIModel):
    is_admin: bool


class ProfileCreate(APIModel):
    name: str = Field(min_length=1, max_length=50)
    avatar_url: str | None = None
    is_kids: bool = False

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("avatar_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        return _strip_blank(value)


class ProfileUpdate(ProfileCreate):
    name: str | None = Field(default=None, min_length=1, max_length=50)
    is_kids: bool | None = None

    @model_validator(mode="after")
    def _check_nulls(self) -> "ProfileUpdate":
        _reject_nulls(self, frozenset({"name", "is_kids"}))
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class ProfileRead(APIModel):
    id: str
    user_id: str
    name: str
    avatar_url: str | None = None
    is_kids: bool = False
    created_at: datetime | None = None


# --------------------------------------------------------------------------
# Playback
# --------------------------------------------------------------------------


class WatchProgressUpdate(APIModel):
    """Progress report sent periodically by the player."""

    content_id: str = Field(min_length=1)
    progress: float | None = Field(default=None, ge=0, le=100)
    current_time: float | None = Field(default=None, ge=0)
    duration: float | None = None
    season_number: int | None = Field(default=None, ge=1)
    episode_number: int | None = Field(default=None, ge=1)
    completed: bool = False

    @model_validator(mode="after")
    def _require_position(self) -> "WatchProgressUpdate":
        if self.progress is None and (
            self.current_time is None or self.duration is None
        ):
            raise ValueError("Provide progress or both currentTime and duration")
        return self


class WatchHistoryWrite(APIModel):
    content_id: str
    progress: int = Field(ge=0, le=100)
    season_number: int | None = None
    episode_number: int | None = None
    completed: bool = False


class WatchHistoryRead(WatchHistoryWrite):
    id: str
    profile_id: str
    watched_at: datetime


class ContinueWatchingItem(ContentRead):
    progress: int
    season_number: int | None = None
    episode_number: int | None = None
    watched_at: datetime
    label: str | None = None


class StreamDescriptor(APIModel):
    content_id: str
    title: str
    type: ContentType
    default_quality: str
    qualities: list[str] = Field(default_factory=lambda: list(QUALITY_LADDER))
    sources: dict[str, str]
    trailer_url: str | None = None
    season_number: int | None = None
    episode_number: int | None = None
    episode_title: str | None = None
    resume: WatchHistoryRead | None = None


# --------------------------------------------------------------------------
# Subscriptions
# --------------------------------------------------------------------------


class SubscriptionPlanCreate(APIModel):
    name: str = Field(min_length=1, max_length=80)
    description: str | None = None
    price_cents: int = Field(ge=0)
    duration_days: int = Field(default=30, ge=1, le=3660)
    max_profiles: int = Field(default=5, ge=1, le=20)
    max_quality: str = "1080p"
    is_active: bool = True

    @field_validator("max_quality")
    @classmethod
    def _check_quality(cls, value: str | None) -> str | None:
        if value is None:
            return value
        quality = value.strip().lower()
        if quality not in QUALITY_LADDER or quality == "auto":
            raise ValueError("maxQuality must be a fixed quality such as 1080p")
        return quality


class SubscriptionPlanUpdate(SubscriptionPlanCreate):
    name: str | None = Field(default=None, min_length=1, max_length=80)
    price_cents: int | None = Field(default=None, ge=0)
    duration_days: int | None = Field(default=None, ge=1, le=3660)
    max_profiles: int | None = Field(default=None, ge=1, le=20)
    max_quality: str | None = None
    is_active: bool | None = None

    @model_validator(mode="after")
    def _check_nulls(self) -> "SubscriptionPlanUpdate":
        _reject_nulls(
            self,
            frozenset(
                {
                    "name",
                    "price_cents",
                    "duration_days",
                    "max_profiles",
                    "max_quality",
                    "is_active",
                }
            ),
        )
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class SubscriptionPlanRead(SubscriptionPlanCreate):
    id: str


class SubscribeRequest(APIModel):
    plan_id: str = Field(min_length=1)


class SubscriptionRead(APIModel):
    id: str
    user_id: str
    plan_id: str
    status: SubscriptionState
    start_date: datetime
    end_date: datetime


class SubscriptionStatus(SubscriptionRead):
    plan: SubscriptionPlanRead | None = None
    expiring_soon: bool = False
    days_remaining: int = 0


# --------------------------------------------------------------------------
# Notifications and administration
# --------------------------------------------------------------------------


class NotificationCreate(APIModel):
    title: str = Field(min_length=1, max_length=120)
    message: str = Field(min_length=1, max_length=2000)
    kind: NotificationKind = "info"
    user_id: str | None = None

    @field_validator("title", "message", mode="before")
    @classmethod
    def _strip_text(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class NotificationRead(NotificationCreate):
    id: str
    created_at: datetime


class UserNotification(NotificationRead):
    read: bool = False


class AdminStats(APIModel):
    content_total: int
    content_by_type: dict[str, int]
    users: int
    admins: int
    profiles: int
    active_subscriptions: int
