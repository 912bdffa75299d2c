from __future__ import annotations

import html
import re

import requests

from .base import FetchedPage

_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_WS_RE = re.compile(r"\s+")


def extract_title(body: str, fallback: str = "") -> str:
    """First <title> of the document, unescaped and whitespace-collapsed."""
    m = _TITLE_RE.search(body or "")
    if not m:
        return fallback
    title = _WS_RE.sub(" ", html.unescape(m.group(1))).strip()
    return title or fallback


class HttpPageFetcher:
    source_name = "http"

    def __init__(self, *, timeout_sec: float = 10.0, user_agent: str = "article-pipeline/0.1") -> None:
        self.timeout_sec = timeout_sec
        self.headers = {"User-Agent": user_agent, "Accept": "text/html,application/xhtml+xml"}

    def fetch(self, url: str) -> FetchedPage:
        r = requests.get(url, headers=self.headers, timeout=self.timeout_sec)
        try:
            r.raise_for_status()
        except requests.HTTPError as exc:
            raise RuntimeError(f"fetch failed: {exc}; status={r.status_code}") from exc
        return FetchedPage(url=r.url or url, title=extract_title(r.text, fallback=url))
