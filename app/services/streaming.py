"""Stream descriptors, watch progress and the continue-watching row."""

from __future__ import annotations

import logging

from ..config import Settings
from ..models import (
    ContentRead,
    ContinueWatchingItem,
    EpisodeRead,
    StreamDescriptor,
    WatchHistoryRead,
    WatchHistoryWrite,
    WatchProgressUpdate,
)
from .playback import (
    allowed_for_kids,
    episode_label,
    is_completed,
    normalise_quality,
    pick_episode,
    progress_from_position,
    quality_sources,
)
from .storage import Storage

logger = logging.getLogger(__name__)


class PlaybackService:
    """Resolve what a profile plays and remember where it stopped."""

    def __init__(self, settings: Settings, storage: Storage):
        self._settings = settings
        self._storage = storage

    async def record_progress(
        self, profile_id: str, update: WatchProgressUpdate
    ) -> WatchHistoryRead:
        if await self._storage.get_content(update.content_id) is None:
            raise KeyError("Content not found")
        if update.progress is not None:
            progress = round(update.progress)
        else:
            progress = progress_from_position(update.current_time, update.duration)
        completed = is_completed(
            progress, self._settings.completion_threshold, reported=update.completed
        )
        return await self._storage.upsert_watch_progress(
            profile_id,
            WatchHistoryWrite(
                content_id=update.content_id,
                progress=progress,
                season_number=update.season_number,
                episode_number=update.episode_number,
                completed=completed,
            ),
        )

    async def history(self, profile_id: str) -> list[WatchHistoryRead]:
        return await self._storage.list_watch_history(profile_id)

    async def continue_watching(
        self, profile_id: str, *, kids: bool = False
    ) -> list[ContinueWatchingItem]:
        """Unfinished titles for the profile, most recently watched first."""

        items: list[ContinueWatchingItem] = []
        for entry in await self._storage.list_watch_history(profile_id):
            if entry.completed or entry.progress <= 0:
                continue
            content = await self._storage.get_content(entry.content_id)
            if content is None:
                continue
            if kids and not allowed_for_kids(content.age_rating):
                continue
            items.append(
                ContinueWatchingItem(
                    **content.model_dump(),
                    progress=entry.progress,
                    season_number=entry.season_number,
                    episode_number=entry.episode_number,
                    watched_at=entry.watched_at,
                    label=episode_label(
                        content.type, entry.season_number, entry.episode_number
                    ),
                )
            )
            if len(items) >= self._settings.continue_watching_limit:
                break
        return items

    async def stream(
        self,
        content: ContentRead,
        *,
        season_number: int | None = None,
        episode_number: int | None = None,
        quality: str | None = None,
        profile_id: str | None = None,
    ) -> StreamDescriptor:
        default_quality = normalise_quality(quality, self._settings.default_quality)
        video_url = content.movie_url
        episode: EpisodeRead | None = None
        chosen_season: int | None = None

        if content.type != "movie":
            episodes_by_season: dict[int, list[tuple[int, str | None]]] = {}
            by_key: dict[tuple[int, int], EpisodeRead] = {}
            for season in await self._storage.list_seasons(content.id):
                rows = await self._storage.list_episodes(season.id)
                episodes_by_season[season.season_number] = [
                    (row.episode_number, row.video_url) for row in rows
                ]
                for row in rows:
                    by_key[(season.season_number, row.episode_number)] = row
            picked = pick_episode(episodes_by_season, season_number, episode_number)
            if picked is not None:
                chosen_season, chosen_episode, episode_url = picked
                episode = by_key[(chosen_season, chosen_episode)]
                video_url = episode_url or video_url
            elif season_number is not None or episode_number is not None:
                raise KeyError("Episode not found")

        if not video_url:
            raise KeyError("No playable source for this title")

        resume = None
        if profile_id is not None:
            resume = await self._storage.get_watch_entry(profile_id, content.id)

        return StreamDescriptor(
            content_id=content.id,
            title=content.title,
            type=content.type,
            default_quality=default_quality,
            sources=quality_sources(video_url),
            trailer_url=content.trailer_url,
            season_number=chosen_season,
            episode_number=episode.episode_number if episode else None,
            episode_title=episode.title if episode else None,
            resume=resume,
        )
