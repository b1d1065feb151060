"""Vendor-neutral provider adapters for Cadence.

Each adapter implements the ProviderAdapter ABC.  Vendor integrations
(authentication, vendor APIs, push delivery) live outside this package and
either subclass ProviderAdapter directly or publish a canonical feed.

Available adapters:
    StaticAdapter    In-process records plus a pushable live stream
    HttpFeedAdapter  Canonical JSON feed over HTTP (httpx)
"""

from src.activities.adapters.http_feed import HttpFeedAdapter
from src.activities.adapters.static import StaticAdapter
from src.activities.base import SourceKind

__all__ = [
    "HttpFeedAdapter",
    "StaticAdapter",
    "build_feed_adapters",
    "get_adapter",
]

# Registry: adapter kind → adapter class
ADAPTER_REGISTRY: dict[str, type] = {
    "static": StaticAdapter,
    "http_feed": HttpFeedAdapter,
}

# Provider name → record discriminant for well-known providers
_SOURCE_KINDS: dict[str, SourceKind] = {
    "garmin": SourceKind.GARMIN,
    "wahoo": SourceKind.WAHOO,
    "healthkit": SourceKind.HEALTH_STORE,
}


def get_adapter(kind: str) -> "type":
    """Return the adapter class for a given kind.

    Raises:
        KeyError: If the kind is not registered.
    """
    if kind not in ADAPTER_REGISTRY:
        raise KeyError(
            f"No adapter registered for kind '{kind}'. "
            f"Available: {list(ADAPTER_REGISTRY)}"
        )
    return ADAPTER_REGISTRY[kind]


def build_feed_adapters(
    feed_urls: dict[str, str],
    access_tokens: dict[str, str] | None = None,
) -> list[HttpFeedAdapter]:
    """Create one HttpFeedAdapter per configured provider feed.

    Args:
        feed_urls:     Provider name → feed URL.
        access_tokens: Provider name → bearer token.
    """
    tokens = access_tokens or {}
    adapter_cls = get_adapter("http_feed")
    return [
        adapter_cls(
            name=name,
            url=url,
            access_token=tokens.get(name),
            source_kind=_SOURCE_KINDS.get(name, SourceKind.OTHER),
        )
        for name, url in feed_urls.items()
    ]
