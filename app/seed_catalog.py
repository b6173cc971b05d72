"""Sample catalog and subscription plans loaded into an empty store."""

from __future__ import annotations

from .models import ContentCreate, SubscriptionPlanCreate

_POSTER = "https://images.unsplash.com/photo-{}?ixlib=rb-4.0.3&auto=format&fit=crop&w=800&h=1200"
_SAMPLE_VIDEO = "https://storage.googleapis.com/gtv-videos-bucket/sample/{}.mp4"


SEED_CONTENT: tuple[ContentCreate, ...] = (
    ContentCreate(
        title="Blade Runner 2049",
        description=(
            "Uma sequência visualmente deslumbrante que expande o universo "
            "cyberpunk com uma narrativa profunda sobre humanidade e identidade."
        ),
        year=2017,
        rating=92,
        genre="Sci-Fi",
        type="movie",
        image_url=_POSTER.format("1440404653325-ab127d49abc1"),
        movie_url=_SAMPLE_VIDEO.format("TearsOfSteel"),
        director="Denis Villeneuve",
        cast=["Ryan Gosling", "Harrison Ford", "Ana de Armas"],
        age_rating="14",
        country="Estados Unidos",
        language="Inglês",
        categories=["ficção científica", "drama"],
        is_trending=True,
        is_popular=True,
        duration="2h 44min",
    ),
    ContentCreate(
        title="Missão Impossível",
        description="Ethan Hunt e sua equipe enfrentam sua missão mais perigosa até agora.",
        year=2023,
        rating=88,
        genre="Ação",
        type="movie",
        image_url=_POSTER.format("1635805737707-575885ab0820"),
        movie_url=_SAMPLE_VIDEO.format("ForBiggerChase"),
        director="Christopher McQuarrie",
        cast=["Tom Cruise", "Hayley Atwell"],
        age_rating="14",
        country="Estados Unidos",
        language="Inglês",
        categories=["ação", "aventura"],
        is_trending=True,
        is_new_release=True,
        duration="2h 30min",
    ),
    ContentCreate(
        title="Dark Waters",
        description="Um thriller psicológico que mergulha nas profundezas da mente humana.",
        year=2023,
        rating=82,
        genre="Thriller",
        type="movie",
        image_url=_POSTER.format("1536440136628-849c177e76a1"),
        movie_url=_SAMPLE_VIDEO.format("ElephantsDream"),
        age_rating="16",
        country="Reino Unido",
        language="Inglês",
        categories=["thriller", "crime"],
        is_trending=True,
        duration="1h 58min",
    ),
    ContentCreate(
        title="Demon Slayer",
        description="Tanjiro continua sua jornada para salvar sua irmã e derrotar os demônios.",
        year=2023,
        rating=95,
        genre="Ação",
        type="anime",
        image_url=_POSTER.format("1578662996442-48f60103fc96"),
        movie_url=_SAMPLE_VIDEO.format("ForBiggerBlazes"),
        age_rating="14",
        country="Japão",
        language="Japonês",
        subtitle_options=["Português"],
        dub_options=["Português", "Japonês"],
        total_seasons=3,
        episode_duration="24min",
        categories=["ação", "sobrenatural"],
        is_trending=True,
        is_new_release=True,
        is_popular=True,
        duration="3 temporadas",
    ),
    ContentCreate(
        title="Stranger Things",
        description="As aventuras sobrenaturais continuam em Hawkins.",
        year=2023,
        rating=87,
        genre="Ficção Científica",
        type="series",
        image_url=_POSTER.format("1574375927938-d5a98e8ffe85"),
        movie_url=_SAMPLE_VIDEO.format("ForBiggerEscapes"),
        cast=["Millie Bobby Brown", "Finn Wolfhard", "Winona Ryder"],
        age_rating="14",
        country="Estados Unidos",
        language="Inglês",
        total_seasons=4,
        episode_duration="50min",
        categories=["ficção científica", "terror"],
        is_trending=True,
        is_popular=True,
        duration="4 temporadas",
    ),
    ContentCreate(
        title="The Batman",
        description="Uma nova visão sombria do Cavaleiro das Trevas.",
        year=2022,
        rating=89,
        genre="Super-herói",
        type="movie",
        image_url=_POSTER.format("1635805737707-575885ab0820"),
        movie_url=_SAMPLE_VIDEO.format("Sintel"),
        director="Matt Reeves",
        cast=["Robert Pattinson", "Zoë Kravitz"],
        age_rating="14",
        country="Estados Unidos",
        language="Inglês",
        categories=["ação", "crime"],
        is_new_release=True,
        duration="2h 56min",
    ),
    ContentCreate(
        title="Dune",
        description="A épica adaptação do clássico da ficção científica.",
        year=2021,
        rating=91,
        genre="Ficção Científica",
        type="movie",
        image_url=_POSTER.format("1506905925346-21bda4d32df4"),
        movie_url=_SAMPLE_VIDEO.format("BigBuckBunny"),
        director="Denis Villeneuve",
        cast=["Timothée Chalamet", "Zendaya"],
        age_rating="12",
        country="Estados Unidos",
        language="Inglês",
        categories=["ficção científica", "aventura"],
        is_new_release=True,
        is_popular=True,
        duration="2h 35min",
    ),
    ContentCreate(
        title="Your Name",
        description="Uma história de amor que transcende tempo e espaço.",
        year=2016,
        rating=87,
        genre="Romance",
        type="anime",
        image_url=_POSTER.format("1578662996442-48f60103fc96"),
        movie_url=_SAMPLE_VIDEO.format("ForBiggerJoyrides"),
        director="Makoto Shinkai",
        age_rating="L",
        country="Japão",
        language="Japonês",
        subtitle_options=["Português", "Inglês"],
        categories=["romance", "drama"],
        is_new_release=True,
        duration="1h 46min",
    ),
    ContentCreate(
        title="Breaking Bad",
        description="Um professor de química se torna o melhor fabricante de metanfetamina do mundo.",
        year=2008,
        rating=95,
        genre="Drama",
        type="series",
        image_url=_POSTER.format("1536440136628-849c177e76a1"),
        movie_url=_SAMPLE_VIDEO.format("ForBiggerMeltdowns"),
        cast=["Bryan Cranston", "Aaron Paul"],
        age_rating="18",
        country="Estados Unidos",
        language="Inglês",
        total_seasons=5,
        episode_duration="47min",
        categories=["drama", "crime"],
        is_popular=True,
        duration="5 temporadas",
    ),
    ContentCreate(
        title="Attack on Titan",
        description="Humanidade luta pela sobrevivência contra titãs gigantes.",
        year=2013,
        rating=90,
        genre="Ação",
        type="anime",
        image_url=_POSTER.format("1578662996442-48f60103fc96"),
        movie_url=_SAMPLE_VIDEO.format("SubaruOutbackOnStreetAndDirt"),
        age_rating="16",
        country="Japão",
        language="Japonês",
        subtitle_options=["Português"],
        total_seasons=4,
        episode_duration="24min",
        categories=["ação", "guerra"],
        is_popular=True,
        duration="4 temporadas",
    ),
)


SEED_PLANS: tuple[SubscriptionPlanCreate, ...] = (
    SubscriptionPlanCreate(
        name="Básico",
        description="Um perfil, qualidade 720p.",
        price_cents=1990,
        duration_days=30,
        max_profiles=1,
        max_quality="720p",
    ),
    SubscriptionPlanCreate(
        name="Padrão",
        description="Até três perfis em Full HD.",
        price_cents=3990,
        duration_days=30,
        max_profiles=3,
        max_quality="1080p",
    ),
    SubscriptionPlanCreate(
        name="Premium",
        description="Cinco perfis e qualidade 4K.",
        price_cents=5590,
        duration_days=30,
        max_profiles=5,
        max_quality="2160p",
    ),
)
