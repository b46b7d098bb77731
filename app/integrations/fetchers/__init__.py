"""
Built-in fetchers and the name -> fetcher registry.

Integration definitions reference a fetcher by name. Custom fetchers can be
added with FetcherRegistry.register() before the engine starts.
"""
from typing import Dict, Iterable, Optional

from app.integrations.fetchers.base import (
    FetchContext,
    FetchError,
    Fetcher,
    FetchOk,
    FetchResult,
)
from app.integrations.fetchers.finnhub import FinnhubFetcher
from app.integrations.fetchers.json_api import JsonApiFetcher
from app.integrations.fetchers.rss import RssFetcher
from app.integrations.fetchers.spotify import SpotifyFetcher

DEFAULT_FETCHER = "json_api"


def _builtin() -> Dict[str, Fetcher]:
    fetchers: Iterable[Fetcher] = (RssFetcher(), JsonApiFetcher(), FinnhubFetcher(), SpotifyFetcher())
    return {fetcher.name: fetcher for fetcher in fetchers}


FETCHER_REGISTRY: Dict[str, Fetcher] = _builtin()


class FetcherRegistry:
    """Lookup of fetchers by name."""

    def __init__(self, fetchers: Optional[Dict[str, Fetcher]] = None):
        self._fetchers: Dict[str, Fetcher] = dict(FETCHER_REGISTRY if fetchers is None else fetchers)

    def register(self, fetcher: Fetcher, name: Optional[str] = None) -> None:
        key = name or fetcher.name
        if not key:
            raise ValueError("Fetcher must have a name")
        self._fetchers[key] = fetcher

    def get(self, name: str) -> Optional[Fetcher]:
        return self._fetchers.get(name)

    def names(self) -> list[str]:
        return sorted(self._fetchers)

    def __contains__(self, name: object) -> bool:
        return name in self._fetchers


__all__ = [
    "DEFAULT_FETCHER",
    "FETCHER_REGISTRY",
    "FetchContext",
    "FetchError",
    "FetchOk",
    "FetchResult",
    "Fetcher",
    "FetcherRegistry",
    "FinnhubFetcher",
    "JsonApiFetcher",
    "RssFetcher",
    "SpotifyFetcher",
]
