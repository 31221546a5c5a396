"""
Known catalog sources and the code that ingests each of them.

The CatalogSource table holds the operational settings (active flag,
delays, cookies, schedule); this registry holds what cannot live in the
database: which client or parser class implements a source. The
seed_sources command creates CatalogSource rows from SOURCE_DEFINITIONS.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ingestion.models import CatalogSource, SourceKind


@dataclass(frozen=True)
class SourceDefinition:
    slug: str
    name: str
    kind: str
    base_url: str
    request_delay_seconds: Optional[float] = None
    rate_limit_max_requests: Optional[int] = None
    rate_limit_window_seconds: Optional[int] = None
    default_cookies: Dict[str, str] = field(default_factory=dict)
    notes: str = ""


SOURCE_DEFINITIONS: List[SourceDefinition] = [
    SourceDefinition(
        slug="duga",
        name="DUGA",
        kind=SourceKind.API,
        base_url="http://affapi.duga.jp/search",
        request_delay_seconds=1.0,
        rate_limit_max_requests=60,
        rate_limit_window_seconds=60,
        notes="DUGA web service v1.2; 60 requests per 60 seconds per app id",
    ),
    SourceDefinition(
        slug="sokmil",
        name="Sokmil",
        kind=SourceKind.API,
        base_url="https://sokmil-ad.com/api/v1/Item",
        request_delay_seconds=1.0,
        rate_limit_max_requests=60,
        rate_limit_window_seconds=60,
        notes="Sokmil affiliate API; one-based offset, max 50000",
    ),
    SourceDefinition(
        slug="b10f",
        name="b10f",
        kind=SourceKind.CSV,
        base_url="https://b10f.jp/csv_home.php",
        request_delay_seconds=0,
        notes="Full catalog CSV dump, one download per run",
    ),
    SourceDefinition(
        slug="mgs",
        name="MGS",
        kind=SourceKind.HTML,
        base_url="https://www.mgstage.com",
        request_delay_seconds=1.5,
        default_cookies={"adc": "1"},
    ),
    SourceDefinition(
        slug="japanska",
        name="Japanska",
        kind=SourceKind.HTML,
        base_url="https://www.japanska-xxx.com",
        request_delay_seconds=2.0,
        notes="Needs the list page session cookie and Referer on detail requests",
    ),
    SourceDefinition(
        slug="fc2",
        name="FC2 Contents",
        kind=SourceKind.HTML,
        base_url="https://adult.contents.fc2.com",
        request_delay_seconds=2.0,
        default_cookies={"wei6H": "1"},
    ),
    SourceDefinition(
        slug="caribbeancom",
        name="カリビアンコム",
        kind=SourceKind.HTML,
        base_url="https://www.caribbeancom.com",
        request_delay_seconds=3.0,
        notes="EUC-JP",
    ),
    SourceDefinition(
        slug="caribbeancompr",
        name="カリビアンコムプレミアム",
        kind=SourceKind.HTML,
        base_url="https://www.caribbeancompr.com",
        request_delay_seconds=3.0,
        notes="EUC-JP",
    ),
    SourceDefinition(
        slug="heyzo",
        name="HEYZO",
        kind=SourceKind.HTML,
        base_url="https://www.heyzo.com",
        request_delay_seconds=3.0,
    ),
    SourceDefinition(
        slug="10musume",
        name="天然むすめ",
        kind=SourceKind.HTML,
        base_url="https://www.10musume.com",
        request_delay_seconds=3.0,
        notes="EUC-JP",
    ),
    SourceDefinition(
        slug="pacopacomama",
        name="パコパコママ",
        kind=SourceKind.HTML,
        base_url="https://www.pacopacomama.com",
        request_delay_seconds=3.0,
        notes="EUC-JP",
    ),
]

SOURCES_BY_SLUG: Dict[str, SourceDefinition] = {d.slug: d for d in SOURCE_DEFINITIONS}


def get_definition(slug: str) -> SourceDefinition:
    """
    Raises:
        ValueError: If the slug is not a known source
    """
    try:
        return SOURCES_BY_SLUG[slug.lower()]
    except KeyError:
        raise ValueError(f"Unknown source: {slug}. Available sources: {sorted(SOURCES_BY_SLUG)}") from None


def get_api_client_class(slug: str):
    """
    Raises:
        ValueError: If the source is not an API source
    """
    from ingestion.clients.duga import DugaClient
    from ingestion.clients.sokmil import SokmilClient

    clients = {"duga": DugaClient, "sokmil": SokmilClient}
    if slug not in clients:
        raise ValueError(f"{slug} is not an API source")
    return clients[slug]


def get_api_client(slug: str, source: Optional[CatalogSource] = None, **kwargs):
    """
    Build the API client for an API source.

    The CatalogSource rate-limit columns, when set, override the settings
    defaults for the client's sliding window.

    Raises:
        ValueError: If the source is not an API source
        ConfigurationError: If credentials are missing
    """
    from ingestion.clients.rate_limiter import SlidingWindowRateLimiter

    client_class = get_api_client_class(slug)
    if source is not None and source.rate_limit_max_requests and "rate_limiter" not in kwargs:
        kwargs["rate_limiter"] = SlidingWindowRateLimiter(
            max_requests=source.rate_limit_max_requests,
            window_seconds=source.rate_limit_window_seconds or 60,
            name=slug,
        )
    return client_class(**kwargs)


def get_csv_feed(slug: str, **kwargs):
    """
    Raises:
        ValueError: If the source is not a CSV source
        ConfigurationError: If the affiliate id is missing
    """
    from ingestion.clients.b10f import B10fFeed

    if slug != "b10f":
        raise ValueError(f"{slug} is not a CSV source")
    return B10fFeed(**kwargs)


def seed_sources(update: bool = False) -> Dict[str, int]:
    """
    Create CatalogSource rows for every registered source.

    Args:
        update: Also overwrite base_url, kind and notes of existing rows

    Returns:
        {"created": n, "updated": n, "unchanged": n}
    """
    counts = {"created": 0, "updated": 0, "unchanged": 0}
    for definition in SOURCE_DEFINITIONS:
        defaults = {
            "name": definition.name,
            "kind": definition.kind,
            "base_url": definition.base_url,
            "request_delay_seconds": definition.request_delay_seconds,
            "rate_limit_max_requests": definition.rate_limit_max_requests,
            "rate_limit_window_seconds": definition.rate_limit_window_seconds,
            "default_cookies": dict(definition.default_cookies),
            "notes": definition.notes,
        }
        source, created = CatalogSource.objects.get_or_create(slug=definition.slug, defaults=defaults)
        if created:
            counts["created"] += 1
        elif update:
            for key, value in defaults.items():
                setattr(source, key, value)
            source.save()
            counts["updated"] += 1
        else:
            counts["unchanged"] += 1
    return counts
