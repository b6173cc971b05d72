import pytest
from pydantic import ValidationError

from app.models import (
    AdminContentCreate,
    ContentCreate,
    ContentFilters,
    ContentUpdate,
    ProfileCreate,
    ProfileUpdate,
    SubscriptionPlanCreate,
    WatchProgressUpdate,
)


def _content_payload(**overrides):
    payload = {
        "title": "  Arcane ",
        "description": "Duas irmãs em lados opostos de uma guerra.",
        "year": 2021,
        "rating": 90,
        "genre": "Animação",
        "type": "series",
        "imageUrl": "https://img.example/arcane.jpg",
        "ageRating": "livre",
        "cast": "Hailee Steinfeld, Ella Purnell, Hailee Steinfeld",
        "trailerUrl": "  ",
    }
    payload.update(overrides)
    return payload


def test_content_create_accepts_camel_case_and_cleans_fields():
    content = ContentCreate.model_validate(_content_payload())

    assert content.title == "Arcane"
    assert content.age_rating == "L"
    assert content.cast == ["Hailee Steinfeld", "Ella Purnell"]
    assert content.trailer_url is None
    assert content.model_dump(by_alias=True)["imageUrl"].endswith("arcane.jpg")


def test_content_create_rejects_unknown_type():
    with pytest.raises(ValidationError):
        ContentCreate.model_validate(_content_payload(type="documentary"))


def test_admin_content_requires_http_movie_url():
    with pytest.raises(ValidationError):
        AdminContentCreate.model_validate(_content_payload())
    with pytest.raises(ValidationError):
        AdminContentCreate.model_validate(_content_payload(movieUrl="ftp://x/y.mp4"))

    created = AdminContentCreate.model_validate(
        _content_payload(movieUrl="https://cdn.example/arcane.mp4")
    )
    assert created.movie_url == "https://cdn.example/arcane.mp4"


def test_content_update_reports_only_sent_fields():
    update = ContentUpdate.model_validate({"rating": 75, "trailerUrl": None})

    assert update.changes() == {"rating": 75, "trailer_url": None}


def test_content_update_rejects_null_for_required_columns():
    with pytest.raises(ValidationError, match="title cannot be null"):
        ContentUpdate.model_validate({"title": None})


def test_profile_name_is_trimmed_and_bounded():
    assert ProfileCreate(name="  Kids  ").name == "Kids"
    with pytest.raises(ValidationError):
        ProfileCreate(name="   ")
    with pytest.raises(ValidationError):
        ProfileCreate(name="x" * 51)


def test_profile_update_allows_clearing_avatar():
    update = ProfileUpdate.model_validate({"avatarUrl": None})

    assert update.changes() == {"avatar_url": None}
    with pytest.raises(ValidationError):
        ProfileUpdate.model_validate({"isKids": None})


def test_filters_from_query_split_lists_and_parse_numbers():
    filters = ContentFilters.from_query(
        {
            "type": "Movie",
            "ageRating": "l,12",
            "categories": "Ação, Drama",
            "yearMin": "2000",
            "ratingMax": "90",
            "sortBy": "rating",
            "profileId": "ignored",
        }
    )

    assert filters.type == "movie"
    assert filters.age_rating == ["L", "12"]
    assert filters.categories == ["Ação", "Drama"]
    assert filters.year_min == 2000
    assert filters.rating_max == 90
    assert filters.sort_by == "rating"


def test_filters_reject_inverted_ranges():
    with pytest.raises(ValidationError, match="yearMin must not exceed yearMax"):
        ContentFilters.from_query({"yearMin": "2020", "yearMax": "1999"})
    with pytest.raises(ValidationError):
        ContentFilters.from_query({"ratingMin": "80", "ratingMax": "20"})


def test_watch_progress_requires_a_position():
    with pytest.raises(ValidationError):
        WatchProgressUpdate(content_id="c1")

    by_time = WatchProgressUpdate.model_validate(
        {"contentId": "c1", "currentTime": 60, "duration": 120}
    )
    assert by_time.progress is None


def test_plan_max_quality_must_be_fixed_rung():
    with pytest.raises(ValidationError):
        SubscriptionPlanCreate(name="Auto", price_cents=100, max_quality="auto")
    plan = SubscriptionPlanCreate(name="HD", price_cents=100, max_quality="1080P")
    assert plan.max_quality == "1080p"
