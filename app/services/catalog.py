"""Catalog browsing and back-office orchestration."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from ..models import (
    ContentCreate,
    ContentFilters,
    ContentRead,
    ContentUpdate,
    EpisodeCreate,
    EpisodeRead,
    EpisodeUpdate,
    HomeFeed,
    NotificationCreate,
    SeasonCreate,
    SeasonRead,
    SeasonUpdate,
)
from ..utils import fold
from .playback import allowed_for_kids
from .storage import Storage

logger = logging.getLogger(__name__)

HERO_SIZE = 3


def _matches_any(value: str | None, wanted: set[str]) -> bool:
    return fold(value) in wanted


def apply_filters(
    items: Iterable[ContentRead], filters: ContentFilters
) -> list[ContentRead]:
    """Return the items matching every active filter, then sort them."""

    age_ratings = set(filters.age_rating)
    categories = {fold(value) for value in filters.categories}
    countries = {fold(value) for value in filters.country}
    languages = {fold(value) for value in filters.language}

    def _keep(item: ContentRead) -> bool:
        if filters.type != "all" and item.type != filters.type:
            return False
        if age_ratings and item.age_rating not in age_ratings:
            return False
        if categories:
            tags = {fold(item.genre), *(fold(tag) for tag in item.categories)}
            if not tags & categories:
                return False
        if filters.year_min is not None and item.year < filters.year_min:
            return False
        if filters.year_max is not None and item.year > filters.year_max:
            return False
        if filters.rating_min is not None and item.rating < filters.rating_min:
            return False
        if filters.rating_max is not None and item.rating > filters.rating_max:
            return False
        if countries and not _matches_any(item.country, countries):
            return False
        if languages and not _matches_any(item.language, languages):
            return False
        return True

    kept = [item for item in items if _keep(item)]
    if filters.sort_by is None:
        return kept
    return sort_content(kept, filters.sort_by)


def sort_content(items: list[ContentRead], sort_by: str) -> list[ContentRead]:
    if sort_by == "rating":
        return sorted(items, key=lambda item: item.rating, reverse=True)
    if sort_by == "year":
        return sorted(items, key=lambda item: item.year, reverse=True)
    if sort_by == "title":
        return sorted(items, key=lambda item: fold(item.title))
    if sort_by == "popularity":
        return sorted(
            items,
            key=lambda item: (item.is_popular, item.is_trending, item.rating),
            reverse=True,
        )
    raise ValueError(f"Unsupported sort order: {sort_by}")


def restrict_for_kids(items: Iterable[ContentRead], kids: bool) -> list[ContentRead]:
    if not kids:
        return list(items)
    return [item for item in items if allowed_for_kids(item.age_rating)]


class CatalogService:
    """Read lanes for the home feed and coordinate catalog edits."""

    def __init__(self, storage: Storage):
        self._storage = storage

    async def browse(
        self, filters: ContentFilters, *, kids: bool = False
    ) -> list[ContentRead]:
        if filters.type != "all":
            items = await self._storage.list_content_by_type(filters.type)
        else:
            items = await self._storage.list_content()
        return apply_filters(restrict_for_kids(items, kids), filters)

    async def by_type(self, content_type: str, *, kids: bool = False) -> list[ContentRead]:
        if content_type == "all":
            items = await self._storage.list_content()
        else:
            items = await self._storage.list_content_by_type(content_type)
        return restrict_for_kids(items, kids)

    async def trending(self, *, kids: bool = False) -> list[ContentRead]:
        return restrict_for_kids(await self._storage.list_trending(), kids)

    async def new_releases(self, *, kids: bool = False) -> list[ContentRead]:
        return restrict_for_kids(await self._storage.list_new_releases(), kids)

    async def popular(self, *, kids: bool = False) -> list[ContentRead]:
        return restrict_for_kids(await self._storage.list_popular(), kids)

    async def search(self, query: str, *, kids: bool = False) -> list[ContentRead]:
        query = query.strip()
        if not query:
            raise ValueError("Search query is required")
        return restrict_for_kids(await self._storage.search_content(query), kids)

    async def get(self, content_id: str, *, kids: bool = False) -> ContentRead:
        content = await self._storage.get_content(content_id)
        if content is None or (kids and not allowed_for_kids(content.age_rating)):
            raise KeyError("Content not found")
        return content

    async def feed(self, *, kids: bool = False) -> HomeFeed:
        everything = restrict_for_kids(await self._storage.list_content(), kids)
        trending, new_releases, popular = await asyncio.gather(
            self.trending(kids=kids),
            self.new_releases(kids=kids),
            self.popular(kids=kids),
        )
        return HomeFeed(
            hero=trending[:HERO_SIZE],
            trending=trending,
            new_releases=new_releases,
            popular=popular,
            movies=[item for item in everything if item.type == "movie"],
            series=[item for item in everything if item.type == "series"],
            anime=[item for item in everything if item.type == "anime"],
        )

    # Back-office ------------------------------------------------------------

    async def create_content(self, data: ContentCreate) -> ContentRead:
        content = await self._storage.create_content(data)
        logger.info("Created content %s (%s)", content.id, content.title)
        await self._storage.create_notification(
            NotificationCreate(
                title=content.title[:120],
                message=f"{content.title} acabou de chegar ao catálogo.",
                kind="new_content",
            )
        )
        return content

    async def update_content(self, content_id: str, data: ContentUpdate) -> ContentRead:
        changes = data.changes()
        new_type = changes.get("type")
        if new_type == "movie" and await self._storage.list_seasons(content_id):
            raise ValueError("Remove the seasons before turning this title into a movie")
        content = await self._storage.update_content(content_id, changes)
        logger.info("Updated content %s fields %s", content_id, sorted(changes))
        return content

    async def delete_content(self, content_id: str) -> None:
        await self._storage.delete_content(content_id)
        logger.info("Deleted content %s", content_id)

    async def list_seasons(self, content_id: str) -> list[SeasonRead]:
        if await self._storage.get_content(content_id) is None:
            raise KeyError("Content not found")
        return await self._storage.list_seasons(content_id)

    async def list_episodes(self, season_id: str) -> list[EpisodeRead]:
        if await self._storage.get_season(season_id) is None:
            raise KeyError("Season not found")
        return await self._storage.list_episodes(season_id)

    async def add_season(self, content_id: str, data: SeasonCreate) -> SeasonRead:
        content = await self._storage.get_content(content_id)
        if content is None:
            raise KeyError("Content not found")
        if content.type == "movie":
            raise ValueError("Movies cannot have seasons")
        season = await self._storage.create_season(content_id, data)
        await self._sync_totals(content_id)
        return season

    async def update_season(self, season_id: str, data: SeasonUpdate) -> SeasonRead:
        return await self._storage.update_season(season_id, data.changes())

    async def delete_season(self, season_id: str) -> None:
        season = await self._require_season(season_id)
        await self._storage.delete_season(season_id)
        await self._sync_totals(season.content_id)

    async def add_episode(self, season_id: str, data: EpisodeCreate) -> EpisodeRead:
        season = await self._require_season(season_id)
        episode = await self._storage.create_episode(season_id, data)
        await self._sync_totals(season.content_id)
        return episode

    async def update_episode(self, episode_id: str, data: EpisodeUpdate) -> EpisodeRead:
        return await self._storage.update_episode(episode_id, data.changes())

    async def delete_episode(self, episode_id: str) -> None:
        episode = await self._storage.get_episode(episode_id)
        if episode is None:
            raise KeyError("Episode not found")
        season = await self._require_season(episode.season_id)
        await self._storage.delete_episode(episode_id)
        await self._sync_totals(season.content_id)

    async def _require_season(self, season_id: str) -> SeasonRead:
        season = await self._storage.get_season(season_id)
        if season is None:
            raise KeyError("Season not found")
        return season

    async def _sync_totals(self, content_id: str) -> None:
        seasons = await self._storage.list_seasons(content_id)
        episode_total = 0
        for season in seasons:
            episode_total += len(await self._storage.list_episodes(season.id))
        await self._storage.update_content(
            content_id,
            {"total_seasons": len(seasons), "total_episodes": episode_total},
        )
