"""Fetching the invoice PDF to attach it to the confirmation email."""

import base64
import re
from typing import Optional

import httpx
from libs.common.config import get_settings

FETCH_TIMEOUT = 25.0


class AttachmentError(Exception):
    pass


def safe_filename(name: Optional[str]) -> str:
    clean = re.sub(r'[\r\n"]', "", str(name or "").strip()) or "factura.pdf"
    return clean if clean.lower().endswith(".pdf") else f"{clean}.pdf"


class PdfFetcher:
    """Downloads a file by URL and returns it base64-encoded, up to a size cap."""

    def __init__(
        self,
        max_bytes: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.max_bytes = max_bytes or get_settings().MAX_ATTACHMENT_BYTES
        self._transport = transport

    async def fetch_base64(self, url: str) -> str:
        try:
            async with httpx.AsyncClient(
                timeout=FETCH_TIMEOUT, transport=self._transport
            ) as client:
                response = await client.get(
                    url, headers={"Accept": "application/pdf,*/*"}
                )
        except httpx.HTTPError as e:
            raise AttachmentError(f"PDF fetch failed: {e}") from e

        if not response.is_success:
            raise AttachmentError(
                f"PDF fetch failed ({response.status_code}) {response.text[:200]}"
            )
        content = response.content
        if len(content) > self.max_bytes:
            raise AttachmentError(f"PDF too large ({len(content)} bytes)")
        return base64.b64encode(content).decode("ascii")


def get_pdf_fetcher() -> PdfFetcher:
    return PdfFetcher()
