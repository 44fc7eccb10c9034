"""Registry of Peruvian political news feeds and the relevance filter."""

from enum import Enum

from pydantic import BaseModel, Field

from ..models import fold_text


class FeedCategory(str, Enum):
    MAINSTREAM = "mainstream"
    OFFICIAL = "official"
    REGIONAL = "regional"
    TV = "tv"
    DIGITAL = "digital"


class FeedSource(BaseModel):
    """One RSS/Atom feed."""

    id: str
    name: str
    url: str
    category: FeedCategory = FeedCategory.MAINSTREAM
    priority: int = Field(default=5, ge=1, le=10)
    backup_urls: list[str] = Field(default_factory=list)

    @property
    def urls(self) -> list[str]:
        """Primary URL followed by backups, without duplicates."""
        return list(dict.fromkeys([self.url, *self.backup_urls]))


NEWS_FEEDS: list[FeedSource] = [
    FeedSource(
        id="elcomercio",
        name="El Comercio",
        url="https://elcomercio.pe/arcio/rss/category/politica/",
        priority=10,
    ),
    FeedSource(
        id="larepublica",
        name="La República",
        url="https://larepublica.pe/arcio/rss/category/politica/",
        priority=10,
    ),
    FeedSource(
        id="andina",
        name="Agencia Andina",
        url="https://andina.pe/agencia/rss/noticia-politica-5.rss",
        category=FeedCategory.OFFICIAL,
        priority=10,
        backup_urls=["https://andina.pe/agencia/rss/noticias-politica.rss"],
    ),
    FeedSource(id="rpp", name="RPP Noticias", url="https://rpp.pe/feed", priority=9),
    FeedSource(
        id="infobae",
        name="Infobae Perú",
        url="https://www.infobae.com/peru/rss/",
        category=FeedCategory.DIGITAL,
        priority=9,
        backup_urls=[
            "https://www.infobae.com/feeds/rss/peru/",
            "https://www.infobae.com/peru/feed/",
        ],
    ),
    FeedSource(
        id="idl",
        name="IDL Reporteros",
        url="https://www.idl-reporteros.pe/feed/",
        category=FeedCategory.DIGITAL,
        priority=9,
    ),
    FeedSource(id="gestion", name="Gestión", url="https://gestion.pe/arcio/rss/", priority=8),
    FeedSource(id="peru21", name="Peru21", url="https://peru21.pe/arcio/rss/", priority=8),
    FeedSource(
        id="correo",
        name="Diario Correo",
        url="https://diariocorreo.pe/feed/politica/",
        priority=7,
        backup_urls=["https://diariocorreo.pe/arcio/rss/"],
    ),
    FeedSource(
        id="exitosa",
        name="Exitosa Noticias",
        url="https://exitosanoticias.pe/feed/",
        category=FeedCategory.DIGITAL,
        priority=7,
    ),
]


def get_feeds(
    min_priority: int | None = None,
    category: FeedCategory | str | None = None,
    ids: list[str] | None = None,
) -> list[FeedSource]:
    """Feeds ordered by priority (highest first), optionally filtered."""
    feeds = sorted(NEWS_FEEDS, key=lambda f: (-f.priority, f.id))
    if min_priority is not None:
        feeds = [f for f in feeds if f.priority >= min_priority]
    if category is not None:
        feeds = [f for f in feeds if f.category == FeedCategory(category)]
    if ids:
        feeds = [f for f in feeds if f.id in ids]
    return feeds


POLITICAL_KEYWORDS = [
    # Elections
    "elecciones",
    "elección",
    "electoral",
    "votación",
    "voto",
    "urna",
    "cédula",
    "sufragio",
    # Candidates and parties
    "candidato",
    "candidata",
    "candidatura",
    "partido",
    "alianza",
    "movimiento",
    "plancha",
    # Institutions
    "congreso",
    "jne",
    "onpe",
    "reniec",
    "ejecutivo",
    "legislativo",
    # Positions
    "presidente",
    "presidencial",
    "vicepresidente",
    "congresista",
    "senador",
    "diputado",
    "parlamentario",
    # Process
    "campaña",
    "encuesta",
    "debate",
    "mitin",
    "inscripción",
    "proclamación",
    # 2026
    "2026",
    "peru 2026",
    "elecciones 2026",
]

_FOLDED_KEYWORDS = [fold_text(k) for k in POLITICAL_KEYWORDS]


def is_politically_relevant(title: str, content: str | None = None) -> bool:
    """Whether title or content mentions any political keyword.

    Matching is accent and case insensitive ("Elección" == "eleccion").
    """
    text = fold_text(f"{title or ''} {content or ''}")
    return any(keyword in text for keyword in _FOLDED_KEYWORDS)
