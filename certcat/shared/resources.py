from __future__ import annotations

import base64
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable
from urllib.parse import unquote

import requests

logger = logging.getLogger("certcat.render")

DEFAULT_FETCH_TIMEOUT = 10
_MAX_WORKERS = 6


class ResourceFetchError(RuntimeError):
    """Raised when a single remote resource cannot be loaded."""


def decode_data_url(url: str) -> bytes:
    header, sep, payload = url.partition(",")
    if not sep or not header.startswith("data:"):
        raise ResourceFetchError("malformed data URL")
    try:
        if header.endswith(";base64"):
            return base64.b64decode(payload)
        return unquote(payload).encode("latin-1")
    except (ValueError, UnicodeEncodeError) as exc:
        raise ResourceFetchError(f"undecodable data URL: {exc}") from exc


def fetch_bytes(url: str, timeout: float = DEFAULT_FETCH_TIMEOUT) -> bytes:
    """Load ``url`` (http(s) or data:) and return its body."""
    if not url:
        raise ResourceFetchError("empty URL")
    if url.startswith("data:"):
        return decode_data_url(url)
    try:
        resp = requests.get(url, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise ResourceFetchError(f"{url}: {exc}") from exc
    return resp.content


def fetch_many(
    urls: Iterable[str],
    fetch: Callable[[str], bytes] | None = None,
    timeout: float = DEFAULT_FETCH_TIMEOUT,
) -> dict[str, bytes | None]:
    """Fetch distinct URLs concurrently.

    Every URL gets an entry; a failed fetch maps to ``None`` and does not
    cancel the others.
    """
    unique = list(dict.fromkeys(u for u in urls if u))
    if not unique:
        return {}
    fetcher = fetch or (lambda u: fetch_bytes(u, timeout=timeout))
    results: dict[str, bytes | None] = {}
    with ThreadPoolExecutor(max_workers=min(_MAX_WORKERS, len(unique))) as pool:
        futures = {url: pool.submit(fetcher, url) for url in unique}
        for url, future in futures.items():
            try:
                results[url] = future.result()
            except Exception as exc:
                logger.warning("[FETCH] failed url=%s error=%s", _short(url), exc)
                results[url] = None
    return results


def _short(url: str) -> str:
    return url if len(url) <= 80 else url[:77] + "..."
