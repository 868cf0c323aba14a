"""Link-header pagination over a paged REST API.

A walk is a lazy, finite generator of pages: each request follows the
``Link: <...>; rel="next"`` header of the previous response until the
provider stops sending one. Requests are strictly sequential. A walk cannot
be resumed midway; callers re-run it from the start.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterator, Optional
from urllib.parse import SplitResult, urljoin, urlsplit

import requests

from dirsync.errors import (
    AuthError,
    CursorError,
    ParseError,
    RateLimitError,
    SyncCancelledError,
    TransportError,
)
from dirsync.models import Page

logger = logging.getLogger("dirsync.pagination")

# response -> (records, next page URL or None)
Extractor = Callable[[requests.Response], tuple[list[dict[str, Any]], Optional[str]]]

_DEFAULT_PORTS = {"http": 80, "https": 443}


def json_records(resp: requests.Response) -> list[dict[str, Any]]:
    """Decode a page body that must be a JSON array of objects with an "id"."""
    try:
        data = resp.json()
    except ValueError as exc:
        raise ParseError(f"page body from {_path(resp.url)} is not JSON: {exc}") from exc
    if data is None:
        return []
    if not isinstance(data, list):
        raise ParseError(
            f"expected a JSON array from {_path(resp.url)}, got {type(data).__name__}"
        )
    for record in data:
        if not isinstance(record, dict) or not record.get("id"):
            raise ParseError(f"record without an id in page from {_path(resp.url)}")
    return data


def check_response(resp: requests.Response) -> None:
    """Map a non-success HTTP status onto the sync error taxonomy."""
    if resp.ok:
        return
    summary = _error_summary(resp)
    if resp.status_code in (401, 403):
        raise AuthError(
            f"provider rejected credentials ({resp.status_code}): {summary}",
            status_code=resp.status_code,
        )
    if resp.status_code == 429:
        reset = resp.headers.get("X-Rate-Limit-Reset", "")
        raise RateLimitError(
            f"provider rate limit hit on {_path(resp.url)}",
            reset_at=int(reset) if reset.isdigit() else None,
        )
    raise TransportError(
        f"error querying {_path(resp.url)} status_code={resp.status_code}: {summary}",
        status_code=resp.status_code,
    )


def next_link(resp: requests.Response) -> Optional[str]:
    """Return the rel="next" URL, or None when pagination is exhausted.

    An unusable link ends the walk instead of failing it.
    """
    try:
        return _validated_next_link(resp)
    except CursorError as exc:
        logger.warning("Ending pagination on unusable next link: %s", exc)
        return None


def json_page(resp: requests.Response) -> tuple[list[dict[str, Any]], Optional[str]]:
    return json_records(resp), next_link(resp)


def _origin(parts: SplitResult) -> tuple[str, Optional[str], Optional[int]]:
    return parts.scheme, parts.hostname, parts.port or _DEFAULT_PORTS.get(parts.scheme)


def _validated_next_link(resp: requests.Response) -> Optional[str]:
    href = resp.links.get("next", {}).get("url", "").strip()
    if not href:
        return None
    url = urljoin(resp.url, href)
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise CursorError(f"next link {href!r} is not an http(s) URL")
    try:
        same_origin = _origin(parts) == _origin(urlsplit(resp.url))
    except ValueError as exc:
        raise CursorError(f"next link {href!r} has an invalid port") from exc
    if not same_origin:
        raise CursorError(f"next link points to a different origin: {parts.netloc}")
    return url


def walk_pages(
    session: requests.Session,
    url: str,
    params: Optional[dict[str, Any]] = None,
    *,
    extract: Optional[Extractor] = None,
    cancel: Optional[threading.Event] = None,
    timeout: float = 30.0,
) -> Iterator[Page]:
    """Yield every page reachable from ``url`` by following next links.

    ``params`` apply to the first request only; next links carry their own
    query string.

    ``extract`` turns a response into its records and the next page URL;
    the default reads a JSON array body and the Link header.
    """
    extract = extract or json_page
    page_no = 0
    while url:
        if cancel is not None and cancel.is_set():
            raise SyncCancelledError(f"cancelled before requesting {_path(url)}")
        try:
            resp = session.get(url, params=params or None, timeout=timeout)
        except requests.RequestException as exc:
            raise TransportError(f"GET {_path(url)} failed: {exc}") from exc
        check_response(resp)
        records, nxt = extract(resp)
        page_no += 1
        logger.debug(
            "Fetched page %d of %s (%d records)", page_no, _path(url), len(records),
        )
        yield Page(records=records, next_url=nxt)
        url = nxt or ""
        params = None


def collect(pages: Iterator[Page]) -> list[dict[str, Any]]:
    """Flatten a walk into one record list."""
    records: list[dict[str, Any]] = []
    for page in pages:
        records.extend(page.records)
    return records


def _path(url: Optional[str]) -> str:
    # Path only; query strings carry filters and cursors.
    return urlsplit(url or "").path or "/"


def _error_summary(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict) and body.get("errorSummary"):
        return str(body["errorSummary"])
    return resp.text[:200]
