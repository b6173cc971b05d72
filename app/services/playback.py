"""Playback helpers: stream quality sources and watch progress rules."""

from __future__ import annotations

import logging
from typing import Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

logger = logging.getLogger(__name__)

QUALITY_LADDER: tuple[str, ...] = (
    "auto",
    "360p",
    "480p",
    "720p",
    "1080p",
    "1440p",
    "2160p",
)

KIDS_AGE_RATINGS: frozenset[str] = frozenset({"L", "10", "12"})


def quality_sources(video_url: str) -> dict[str, str]:
    """Map every quality rung to the URL the player should load.

    ``auto`` is the untouched URL; fixed rungs carry a ``quality`` query
    parameter holding the vertical resolution. Existing query parameters are
    preserved and a previous ``quality`` value is replaced.
    """

    parts = urlsplit(video_url)
    base_query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key != "quality"
    ]
    sources: dict[str, str] = {}
    for quality in QUALITY_LADDER:
        if quality == "auto":
            sources[quality] = video_url
            continue
        query = urlencode([*base_query, ("quality", quality.removesuffix("p"))])
        sources[quality] = urlunsplit(
            (parts.scheme, parts.netloc, parts.path, query, parts.fragment)
        )
    return sources


def normalise_quality(value: str | None, default: str) -> str:
    """Return a rung from the ladder or raise for unknown values."""

    if value is None or not value.strip():
        return default
    quality = value.strip().lower()
    if quality.isdigit():
        quality = f"{quality}p"
    if quality not in QUALITY_LADDER:
        logger.warning("Rejected unknown stream quality %r", value)
        raise ValueError(f"Unsupported quality: {value}")
    return quality


def progress_from_position(current_time: float, duration: float) -> int:
    """Convert a playback position into a whole percentage."""

    if duration <= 0:
        raise ValueError("Duration must be positive")
    ratio = max(0.0, min(current_time / duration, 1.0))
    return round(ratio * 100)


def is_completed(progress: int, threshold: int, *, reported: bool = False) -> bool:
    return reported or progress >= threshold


def episode_label(
    content_type: str,
    season_number: int | None,
    episode_number: int | None,
) -> str | None:
    """Return the short "continue watching" label for an entry."""

    if content_type not in {"series", "anime"}:
        return None
    if episode_number and season_number:
        return f"T{season_number} E{episode_number}"
    if episode_number:
        return f"Episódio {episode_number}"
    return None


def allowed_for_kids(age_rating: str | None) -> bool:
    return (age_rating or "L") in KIDS_AGE_RATINGS


def pick_episode(
    episodes_by_season: Mapping[int, list[tuple[int, str | None]]],
    season_number: int | None,
    episode_number: int | None,
) -> tuple[int, int, str | None] | None:
    """Select the season/episode to play and return its video URL.

    ``episodes_by_season`` maps season numbers to ``(episode_number, url)``
    pairs. Missing selectors fall back to the first episode of the lowest
    season that has any.
    A selector that names a season or episode that does not exist raises
    ``KeyError``.
    """

    if not episodes_by_season:
        return None
    if season_number is None:
        stocked = [number for number, items in episodes_by_season.items() if items]
        season_number = min(stocked or episodes_by_season)
    if season_number not in episodes_by_season:
        raise KeyError(f"Season {season_number} not found")
    episodes = sorted(episodes_by_season[season_number])
    if not episodes:
        if episode_number is not None:
            raise KeyError(f"Episode {episode_number} not found")
        return None
    if episode_number is None:
        number, url = episodes[0]
        return season_number, number, url
    for number, url in episodes:
        if number == episode_number:
            return season_number, number, url
    raise KeyError(f"Episode {episode_number} not found")
