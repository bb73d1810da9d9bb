"""
Strapi content backend client.

Strapi is the system of record for products, orders and invoices. Two major
versions are in the wild and answer with different row shapes:

- v4: ``{"id": 1, "attributes": {...}}`` with relations wrapped in ``{"data": ...}``
- v5: flat rows ``{"id": 1, "documentId": "abc", ...}``

The ``pick_*`` / ``flatten_row`` helpers below read either shape, so callers
only ever see flat dicts.
"""

from __future__ import annotations

import json as jsonlib
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence, Union
from urllib.parse import quote

import httpx
from libs.common.config import get_settings
from libs.common.errors import UpstreamError
from libs.common.logging import get_logger

logger = get_logger(__name__)

Params = Union[dict[str, Any], Sequence[tuple[str, Any]]]


class StrapiError(UpstreamError):
    """Non-2xx answer (or unusable body) from the content backend."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Any = None,
        url: Optional[str] = None,
    ):
        super().__init__(message, status_code, details)
        self.url = url


# =========================================================================
# Row helpers (v4 / v5)
# =========================================================================


def pick_attr(row: Any) -> dict:
    if not isinstance(row, dict):
        return {}
    attrs = row.get("attributes")
    return attrs if isinstance(attrs, dict) else row


def pick_document_id(row: Any) -> Optional[str]:
    if not isinstance(row, dict):
        return None
    attr = pick_attr(row)
    for value in (
        row.get("documentId"),
        attr.get("documentId"),
        attr.get("document_id"),
    ):
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def pick_field(row: Any, key: str) -> Any:
    if not isinstance(row, dict):
        return None
    if row.get(key) is not None:
        return row[key]
    return pick_attr(row).get(key)


def flatten_row(row: Any) -> Optional[dict]:
    """Merge a v4 ``attributes`` envelope into a flat dict; v5 rows pass through."""
    if not isinstance(row, dict):
        return None
    if isinstance(row.get("attributes"), dict):
        return {
            "id": row.get("id"),
            "documentId": pick_document_id(row),
            **row["attributes"],
        }
    return row


def pick_relation(field: Any) -> Optional[dict]:
    """Single relation: ``{"data": {...}}`` (v4), a flat dict (v5) or a one-item list."""
    node = field.get("data", field) if isinstance(field, dict) and "data" in field else field
    if isinstance(node, list):
        node = node[0] if node else None
    return flatten_row(node)


def pick_media_url(field: Any) -> Optional[str]:
    """URL of a media relation such as an invoice ``pdf``."""
    media = pick_relation(field)
    if not media:
        return None
    url = media.get("url")
    return url.strip() if isinstance(url, str) and url.strip() else None


def rows_of(payload: Any) -> list[dict]:
    data = payload.get("data") if isinstance(payload, dict) else None
    return [r for r in data if isinstance(r, dict)] if isinstance(data, list) else []


def _decode(response: httpx.Response) -> Any:
    text = response.text
    if not text:
        return None
    try:
        return jsonlib.loads(text)
    except ValueError:
        return {"_raw": text}


# =========================================================================
# Client
# =========================================================================


class StrapiClient:
    """Async client for the Strapi REST API (server token)."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.STRAPI_URL).rstrip("/")
        self.token = token if token is not None else settings.STRAPI_API_TOKEN
        self.timeout = timeout
        self._transport = transport

    def absolute_url(self, url: Optional[str]) -> Optional[str]:
        """Strapi returns local uploads as ``/uploads/...``; make them absolute."""
        u = (url or "").strip()
        if not u:
            return None
        if u.lower().startswith(("http://", "https://")):
            return u
        return f"{self.base_url}{u if u.startswith('/') else '/' + u}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Params] = None,
        json: Any = None,
        files: Any = None,
        bearer: Optional[str] = None,
    ) -> tuple[httpx.Response, Any]:
        """Raw call. Returns the response and its decoded body; never raises on status."""
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {bearer or self.token}"}
        async with self._client() as client:
            response = await client.request(
                method,
                url,
                headers=headers,
                params=params,
                json=json,
                files=files,
            )
        return response, _decode(response)

    async def _ok(
        self,
        method: str,
        path: str,
        error: str,
        **kwargs: Any,
    ) -> Any:
        try:
            response, body = await self.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Strapi %s %s unreachable: %s", method, path, e)
            raise StrapiError(error, None, str(e)) from e
        if not response.is_success:
            logger.error(
                "Strapi %s %s failed: %s %s",
                method,
                path,
                response.status_code,
                body,
            )
            raise StrapiError(
                error,
                status_code=response.status_code,
                details=body,
                url=str(response.request.url),
            )
        return body

    # ---------------------------------------------------------------------
    # Collections
    # ---------------------------------------------------------------------

    async def find(self, collection: str, params: Optional[Params] = None) -> list[dict]:
        """List rows of a collection, flattened."""
        body = await self._ok(
            "GET", f"/api/{collection}", f"Strapi find {collection} failed", params=params
        )
        return [flatten_row(r) for r in rows_of(body)]

    async def find_first(
        self,
        collection: str,
        filters: dict[str, Any],
        extra: Iterable[tuple[str, Any]] = (),
    ) -> Optional[dict]:
        params: list[tuple[str, Any]] = [("pagination[pageSize]", "1")]
        for field, value in filters.items():
            params.append((f"filters[{field}][$eq]", str(value)))
        params.extend(extra)
        rows = await self.find(collection, params)
        return rows[0] if rows else None

    async def create(self, collection: str, data: dict) -> dict:
        body = await self._ok(
            "POST",
            f"/api/{collection}",
            f"Strapi create {collection} failed",
            json={"data": data},
        )
        return (body or {}).get("data") or {}

    async def update(self, collection: str, ref: str, data: dict) -> dict:
        body = await self._ok(
            "PUT",
            f"/api/{collection}/{_quote(ref)}",
            f"Strapi update {collection} failed",
            json={"data": data},
        )
        return (body or {}).get("data") or {}

    async def upload(self, filename: str, content: bytes, content_type: str) -> dict:
        """Upload a file to the media library; returns the first file row."""
        body = await self._ok(
            "POST",
            "/api/upload",
            "Strapi upload failed",
            files={"files": (filename, content, content_type)},
        )
        if not isinstance(body, list) or not body or not body[0].get("id"):
            raise StrapiError("Strapi upload returned no file", 500, body)
        return body[0]

    async def post_json(self, path: str, payload: Any) -> Any:
        return await self._ok("POST", path, f"Strapi POST {path} failed", json=payload)

    async def open_file(
        self, url: str
    ) -> tuple[httpx.Response, Callable[[], Awaitable[None]]]:
        """Start streaming a media file. The caller must await the returned closer."""
        client = self._client()
        try:
            response = await client.send(client.build_request("GET", url), stream=True)
        except httpx.HTTPError:
            await client.aclose()
            raise

        async def close() -> None:
            await response.aclose()
            await client.aclose()

        return response, close

    async def me(self, jwt: str) -> Optional[dict]:
        """Resolve an end-user JWT through ``/api/users/me``. None when invalid."""
        try:
            response, body = await self.request("GET", "/api/users/me", bearer=jwt)
        except httpx.HTTPError as e:
            logger.warning("Strapi users/me unreachable: %s", e)
            return None
        if not response.is_success or not isinstance(body, dict):
            return None
        return body


def _quote(ref: str) -> str:
    return quote(str(ref), safe="")


def get_strapi_client() -> StrapiClient:
    """Get a StrapiClient bound to the configured backend."""
    return StrapiClient()
