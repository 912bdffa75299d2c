from __future__ import annotations
from typing import Protocol, runtime_checkable
from pydantic import BaseModel


class FetchedPage(BaseModel):
    url: str            # final url after redirects
    title: str


@runtime_checkable
class PageFetcherPort(Protocol):
    """
    Contract for page fetchers used by the article store's scrape operation.

    - `source_name`: short identifier for logging, e.g. "http".
    - `fetch(url)`: blocking call; returns the page title and final url.
      Raises on network errors and non-2xx responses.
    """

    source_name: str

    def fetch(self, url: str) -> FetchedPage:
        ...
