# libs/connectors/registry.py
from typing import Callable, Dict
from .base import PageFetcherPort
from .page_fetcher import HttpPageFetcher

_REGISTRY: Dict[str, Callable[..., PageFetcherPort]] = {
    "http": HttpPageFetcher,
}


def get_fetcher(name: str, **opts) -> PageFetcherPort:
    try:
        factory = _REGISTRY[name]
    except KeyError:
        raise ValueError(f"unknown fetcher: {name!r}")
    return factory(**opts)
