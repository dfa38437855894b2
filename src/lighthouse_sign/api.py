"""Lighthouse Sign REST API: FastAPI server for GLRS agreements.

Staff endpoints live under ``/api/templates`` and ``/api/agreements``.
Signers use ``/api/sign/*`` and authenticate with the token from their
signing link, always sent in the request body (never in a URL). Agreement
responses never carry signing tokens; staff fetch links from
``/api/agreements/{id}/links``.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from .errors import (
    AgreementError,
    AgreementExpiredError,
    AlreadySignedError,
    AlreadyTerminalError,
    ConcurrentModificationError,
    MailQueueError,
    NotYourTurnError,
    PersistenceError,
    RendererError,
    SignerValidationError,
    UnknownFieldError,
)
from .models import (
    Agreement,
    AuditEntry,
    MailMessage,
    SendAgreementResult,
    SignerFormData,
    SigningLink,
    SigningResult,
)
from .models_template import SignerRole, Template
from .query import ALL
from .service import AgreementService, SigningSession, redact_for_signer

logger = logging.getLogger("lighthouse_sign.api")


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SendRequest(_Body):
    """Request body for sending an agreement."""

    template_id: str = Field(..., alias="templateId")
    sender: str
    signers: dict[SignerRole, SignerFormData] = {}
    document_title: Optional[str] = Field(None, alias="documentTitle")
    tenant_id: Optional[str] = Field(None, alias="tenantId")
    created_by: Optional[str] = Field(None, alias="createdBy")
    pir_id: Optional[str] = Field(None, alias="pirId")


class TokenRequest(_Body):
    token: str


class SubmitFieldsRequest(TokenRequest):
    values: dict[str, Any]
    operation_id: Optional[str] = Field(None, alias="operationId")


class TokenSignRequest(TokenRequest):
    """Signer's signature, with any last field values."""

    values: dict[str, Any] = {}
    signed_field_ids: Optional[list[str]] = Field(None, alias="signedFieldIds")
    operation_id: Optional[str] = Field(None, alias="operationId")


class GlrsSignRequest(_Body):
    """In-portal GLRS signature."""

    actor: str
    values: dict[str, Any] = {}
    signed_field_ids: Optional[list[str]] = Field(None, alias="signedFieldIds")
    operation_id: Optional[str] = Field(None, alias="operationId")


class VoidRequest(_Body):
    actor: str
    operation_id: Optional[str] = Field(None, alias="operationId")


class RemindRequest(_Body):
    role: Optional[SignerRole] = None
    sender_name: Optional[str] = Field(None, alias="senderName")


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

def status_for(exc: AgreementError) -> int:
    """HTTP status code for an agreement error."""
    if isinstance(exc, FileNotFoundError):
        return 404
    if isinstance(exc, AgreementExpiredError):
        return 410
    if isinstance(exc, UnknownFieldError):
        return 422
    if isinstance(
        exc,
        (NotYourTurnError, AlreadyTerminalError, AlreadySignedError, ConcurrentModificationError),
    ):
        return 409
    if isinstance(exc, RendererError):
        return 502
    if isinstance(exc, (PersistenceError, MailQueueError)):
        return 503
    return 400


async def _agreement_error_handler(request: Request, exc: AgreementError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    body: dict[str, Any] = {"detail": str(exc)}
    if isinstance(exc, SignerValidationError):
        body["errors"] = exc.errors
    return JSONResponse(status_code=code, content=body)


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

def create_app(service: Optional[AgreementService] = None) -> FastAPI:
    """Build the API around ``service`` (default: one wired from settings)."""
    svc = service or AgreementService.from_settings()

    app = FastAPI(
        title="Lighthouse Sign",
        description="Multi-party sequential signing for GLRS agreements.",
        version="0.1.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(AgreementError, _agreement_error_handler)
    app.state.service = svc

    # -- templates ----------------------------------------------------------

    @app.post("/api/templates", response_model=Template, status_code=201)
    async def create_template(template: Template) -> Template:
        """Create or replace a template."""
        return svc.save_template(template)

    @app.get("/api/templates", response_model=list[Template])
    async def list_templates(
        tenant_id: Optional[str] = Query(None, alias="tenantId"),
        sendable: bool = False,
    ) -> list[Template]:
        """List templates, optionally only those offered for sending."""
        return svc.list_templates(tenant_id=tenant_id, sendable_only=sendable)

    @app.get("/api/templates/{template_id}", response_model=Template)
    async def get_template(template_id: str) -> Template:
        return svc.get_template(template_id)

    # -- agreements ---------------------------------------------------------

    @app.post("/api/agreements", response_model=SendAgreementResult, status_code=201)
    async def send_agreement(req: SendRequest) -> SendAgreementResult:
        """Create an agreement from a template and invite the first signer."""
        return svc.send_agreement(
            req.template_id,
            req.signers,
            sender=req.sender,
            document_title=req.document_title,
            tenant_id=req.tenant_id,
            created_by=req.created_by,
            pir_id=req.pir_id,
        )

    @app.get("/api/agreements", response_model=list[Agreement])
    async def list_agreements(
        tenant_id: str = Query(..., alias="tenantId"),
        status: str = ALL,
        search: str = "",
        limit: Optional[int] = Query(None, ge=1, le=500),
    ) -> list[Agreement]:
        """List a tenant's agreements by effective status, newest first."""
        try:
            agreements = svc.list_agreements(tenant_id, status=status, search=search, limit=limit)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown status filter: {status}")
        return [redact_for_signer(a) for a in agreements]

    @app.get("/api/agreements/counts")
    async def agreement_counts(
        tenant_id: str = Query(..., alias="tenantId"),
    ) -> dict[str, int]:
        """Per-status counts (effective status), plus ``all``."""
        return svc.counts(tenant_id)

    @app.get("/api/agreements/{agreement_id}", response_model=Agreement)
    async def get_agreement(agreement_id: str) -> Agreement:
        return redact_for_signer(svc.get_agreement(agreement_id))

    @app.get("/api/agreements/{agreement_id}/audit", response_model=list[AuditEntry])
    async def get_audit_trail(agreement_id: str) -> list[AuditEntry]:
        """Audit trail, oldest entry first."""
        return svc.get_agreement(agreement_id).audit_trail

    @app.get("/api/agreements/{agreement_id}/links", response_model=list[SigningLink])
    async def get_signing_links(agreement_id: str) -> list[SigningLink]:
        return svc.signing_links(agreement_id)

    @app.post("/api/agreements/{agreement_id}/void", response_model=Agreement)
    async def void_agreement(agreement_id: str, req: VoidRequest) -> Agreement:
        agreement = svc.void(agreement_id, req.actor, operation_id=req.operation_id)
        return redact_for_signer(agreement)

    @app.post("/api/agreements/{agreement_id}/remind", response_model=MailMessage)
    async def send_reminder(agreement_id: str, req: RemindRequest) -> MailMessage:
        """Queue a reminder for a pending signer (default: whoever is up next)."""
        return svc.remind(agreement_id, role=req.role, sender_name=req.sender_name)

    @app.post("/api/agreements/{agreement_id}/sign", response_model=SigningResult)
    async def sign_as_glrs(agreement_id: str, req: GlrsSignRequest) -> SigningResult:
        """GLRS staff signature from the portal."""
        result = svc.sign_as_glrs(
            agreement_id,
            req.actor,
            values=req.values,
            signed_field_ids=req.signed_field_ids,
            operation_id=req.operation_id,
        )
        result.agreement = redact_for_signer(result.agreement)
        return result

    @app.post("/api/agreements/{agreement_id}/export", response_model=Agreement)
    async def export_agreement(agreement_id: str) -> Agreement:
        """Render the completed agreement to PDF and store it."""
        return redact_for_signer(svc.export(agreement_id))

    @app.get("/api/agreements/{agreement_id}/pdf")
    async def get_pdf(agreement_id: str) -> Response:
        pdf = svc.get_pdf(agreement_id)
        if pdf is None:
            raise HTTPException(status_code=404, detail="No PDF has been generated")
        return Response(content=pdf, media_type="application/pdf")

    # -- signer endpoints ---------------------------------------------------

    @app.post("/api/sign/open", response_model=SigningSession)
    async def open_signing_link(req: TokenRequest) -> SigningSession:
        """Resolve a signing-link token; records the signer's first view."""
        return svc.open_by_token(req.token)

    @app.post("/api/sign/fields", response_model=Agreement)
    async def submit_fields(req: SubmitFieldsRequest) -> Agreement:
        agreement = svc.submit_fields_by_token(
            req.token, req.values, operation_id=req.operation_id
        )
        signer = agreement.signer_by_token(req.token)
        return redact_for_signer(agreement, signer.role if signer else None)

    @app.post("/api/sign", response_model=SigningResult)
    async def sign(req: TokenSignRequest) -> SigningResult:
        """Sign with the token from a signing link."""
        result = svc.sign_by_token(
            req.token,
            values=req.values,
            signed_field_ids=req.signed_field_ids,
            operation_id=req.operation_id,
        )
        signer = result.agreement.signer_by_token(req.token)
        result.agreement = redact_for_signer(result.agreement, signer.role if signer else None)
        return result

    # -- health -------------------------------------------------------------

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "lighthouse-sign"}

    return app


def __getattr__(name: str) -> Any:
    # Module-level ``app`` for ``uvicorn lighthouse_sign.api:app``, built on
    # first access so importing this module has no side effects.
    if name == "app":
        global app
        app = create_app()
        return app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
