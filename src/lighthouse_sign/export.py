"""Finalized PDF export for completed agreements.

Rendering is done by an external service. This module builds the
payload, calls the renderer and hands the bytes back; the service
layer stores them and records the export in the audit trail.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from .errors import NotCompletedError, RendererError
from .models import Agreement, AgreementStatus
from .models_template import describe_block

logger = logging.getLogger("lighthouse_sign.export")

# Exponential backoff from 0.5s, capped at 10s, plus up to 0.5s of jitter.
RETRY_WAIT = wait_exponential(multiplier=0.5, max=10.0) + wait_random(0, 0.5)


class PdfRenderer(Protocol):
    """Anything that turns a completed agreement into PDF bytes."""

    def render(self, agreement: Agreement) -> bytes: ...


class TransientRendererError(RendererError):
    pass


def _is_transient_status(code: int) -> bool:
    return code in (408, 425, 429, 500, 502, 503, 504)


def export_payload(agreement: Agreement) -> dict[str, Any]:
    """JSON body sent to the renderer.

    Contains the agreement itself (tokens stripped) plus a plain-text
    rendering of each block with its filled value.
    """
    data = agreement.model_dump(mode="json", by_alias=True, exclude={"signer_tokens"})
    for signer in data.get("signers", []):
        signer.pop("token", None)
    data["renderedBlocks"] = [
        {"id": b.id, "text": describe_block(b, agreement.field_values.get(b.id))}
        for b in agreement.content.blocks
    ]
    return data


def require_completed(agreement: Agreement) -> None:
    """Reject anything that is not completed before a renderer is called.

    Raises:
        NotCompletedError: If the stored status is not ``completed``.
    """
    if agreement.status != AgreementStatus.COMPLETED:
        raise NotCompletedError(agreement.id, agreement.status.value)


class HttpPdfRenderer:
    """Thin client for an HTTP rendering service, with retries for transient failures."""

    def __init__(self, http: httpx.Client, url: str):
        self._http = http
        self._url = url

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        msg = f"{resp.request.method} {resp.request.url} -> {resp.status_code}: {resp.text[:200]}"
        if _is_transient_status(resp.status_code):
            raise TransientRendererError(msg)
        raise RendererError(msg)

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, TransientRendererError)),
        stop=stop_after_attempt(4),
        wait=RETRY_WAIT,
        reraise=True,
    )
    def _post(self, payload: dict[str, Any]) -> bytes:
        resp = self._http.post(
            self._url,
            json=payload,
            headers={"Accept": "application/pdf"},
        )
        self._raise_for_status(resp)
        return resp.content

    def render(self, agreement: Agreement) -> bytes:
        require_completed(agreement)
        try:
            pdf = self._post(export_payload(agreement))
        except httpx.TransportError as exc:
            raise RendererError(f"PDF renderer unreachable: {exc}") from exc
        if not pdf.startswith(b"%PDF"):
            raise RendererError("PDF renderer returned something that is not a PDF")
        logger.info("Rendered agreement %s (%d bytes)", agreement.id[:8], len(pdf))
        return pdf


def build_renderer(url: Optional[str], timeout_s: float = 30.0) -> Optional[HttpPdfRenderer]:
    """HTTP renderer for ``url``, or None when no renderer is configured."""
    if not url:
        return None
    return HttpPdfRenderer(http=httpx.Client(timeout=timeout_s), url=url)
