"""Agreement service: the operations the API, CLI and MCP server call.

Ties the pieces together. Every change to a stored agreement goes
through :meth:`AgreementStore.update`, with the workflow transition as
the mutation, so the status change, signer update and audit entry land
in one write. Email is queued after the write; a failed queue write is
reported but never rolls the agreement back.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .chain import ChainBuilder
from .config import Settings, get_settings
from .distribution import MailGateway, signing_links
from .errors import (
    AlreadySignedError,
    MailQueueError,
    NoEmailError,
    RendererError,
    SignerNotFoundError,
)
from .export import PdfRenderer, build_renderer, require_completed
from .models import (
    Agreement,
    AuditAction,
    AuditEntry,
    EffectiveStatus,
    MailMessage,
    SendAgreementResult,
    Signer,
    SignerFormData,
    SigningLink,
    SigningResult,
)
from .models_template import SignerRole, Template
from .query import ALL, AgreementListView, StatusFilter, filter_agreements, status_counts
from .store import AgreementStore
from .workflow import AgreementWorkflow, Turn, determine_turn, effective_status, require_open

logger = logging.getLogger("lighthouse_sign.service")

Clock = Callable[[], datetime]


class SigningSession(BaseModel):
    """What a signer sees after opening their link.

    The agreement is redacted: other signers' tokens are removed.
    """

    model_config = ConfigDict(populate_by_name=True)

    agreement: Agreement
    role: SignerRole
    signer_name: str = Field(..., alias="signerName")
    status: EffectiveStatus
    turn: Turn


def redact_for_signer(agreement: Agreement, keep: Optional[SignerRole] = None) -> Agreement:
    redacted = agreement.model_copy(deep=True)
    redacted.signer_tokens = []
    for s in redacted.signers:
        if s.role != keep:
            s.token = None
    return redacted


class AgreementService:
    """High-level agreement operations over one store.

    Args:
        store: Document store.
        workflow: State machine (stateless).
        builder: Builds agreements from templates.
        gateway: Queues invitation and reminder emails.
        renderer: PDF renderer for exports, or None if not configured.
        page_size: Size of list views.
        clock: Source of "now" (tests pass a fixed clock).
    """

    def __init__(
        self,
        store: AgreementStore,
        workflow: Optional[AgreementWorkflow] = None,
        builder: Optional[ChainBuilder] = None,
        gateway: Optional[MailGateway] = None,
        renderer: Optional[PdfRenderer] = None,
        page_size: int = 50,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.workflow = workflow or AgreementWorkflow()
        self.builder = builder or ChainBuilder()
        self.gateway = gateway or MailGateway(store)
        self.renderer = renderer
        self.page_size = page_size
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        data_dir: Optional[Path] = None,
    ) -> "AgreementService":
        """Wire a service from ``LIGHTHOUSE_*`` settings."""
        settings = settings or get_settings()
        store = AgreementStore(data_dir or settings.data_dir)
        return cls(
            store=store,
            builder=ChainBuilder(expiration_days=settings.expiration_days),
            gateway=MailGateway(
                store,
                base_url=settings.signing_base_url,
                sender_name=settings.sender_display_name,
                organization=settings.organization_name,
            ),
            renderer=build_renderer(settings.renderer_url, settings.renderer_timeout_s),
            page_size=settings.page_size,
        )

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def save_template(self, template: Template) -> Template:
        self.store.save_template(template)
        return template

    def get_template(self, template_id: str) -> Template:
        return self.store.load_template(template_id)

    def list_templates(
        self, tenant_id: Optional[str] = None, sendable_only: bool = False
    ) -> list[Template]:
        return self.store.list_templates(tenant_id=tenant_id, sendable_only=sendable_only)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send_agreement(
        self,
        template_id: str,
        signers: Mapping[SignerRole, SignerFormData],
        sender: str,
        document_title: Optional[str] = None,
        tenant_id: Optional[str] = None,
        created_by: Optional[str] = None,
        pir_id: Optional[str] = None,
    ) -> SendAgreementResult:
        """Create an agreement from a template and invite the first signer.

        Raises:
            TemplateNotFoundError: If the template doesn't exist.
            SignerValidationError: With every problem in the send form.
            PersistenceError: If the agreement can't be written.
        """
        template = self.store.load_template(template_id)
        agreement = self.builder.build_agreement(
            template,
            signers,
            sender=sender,
            document_title=document_title,
            tenant_id=tenant_id,
            created_by=created_by,
            now=self.clock(),
        )
        agreement.pir_id = pir_id
        self.store.create_agreement(agreement)

        warnings = []
        first = agreement.next_signer
        if first is not None and first.email:
            warning = self._invite(agreement, first, sender)
            if warning:
                warnings.append(warning)

        return SendAgreementResult(
            id=agreement.id,
            document_title=agreement.document_title,
            status=agreement.status,
            signing_links=signing_links(agreement, self.gateway.base_url),
            warnings=warnings,
        )

    def signing_links(self, agreement_id: str) -> list[SigningLink]:
        return signing_links(self.store.load_agreement(agreement_id), self.gateway.base_url)

    # ------------------------------------------------------------------
    # Signer-facing operations (token authenticated)
    # ------------------------------------------------------------------

    def _resolve(self, token: str) -> tuple[Agreement, Signer]:
        agreement = self.store.find_by_token(token)
        signer = agreement.signer_by_token(token)
        return agreement, signer

    def open_by_token(self, token: str) -> SigningSession:
        """Open a signing link: record the first view and return the session.

        Raises:
            AgreementNotFoundError: If the token matches no agreement.
        """
        agreement, signer = self._resolve(token)
        now = self.clock()
        if not agreement.is_terminal:
            agreement = self.store.update(
                agreement.id, lambda a: self.workflow.record_view(a, signer.role, now=now)
            )
        return SigningSession(
            agreement=redact_for_signer(agreement, keep=signer.role),
            role=signer.role,
            signer_name=signer.name,
            status=effective_status(agreement, now),
            turn=determine_turn(agreement, signer.role),
        )

    def submit_fields_by_token(
        self,
        token: str,
        values: Mapping[str, Any],
        operation_id: Optional[str] = None,
    ) -> Agreement:
        agreement, signer = self._resolve(token)
        return self.submit_fields(agreement.id, signer.role, values, operation_id=operation_id)

    def sign_by_token(
        self,
        token: str,
        values: Optional[Mapping[str, Any]] = None,
        signed_field_ids: Optional[list[str]] = None,
        operation_id: Optional[str] = None,
    ) -> SigningResult:
        agreement, signer = self._resolve(token)
        return self.sign(
            agreement.id,
            signer.role,
            values=values,
            signed_field_ids=signed_field_ids,
            operation_id=operation_id,
        )

    # ------------------------------------------------------------------
    # Core transitions
    # ------------------------------------------------------------------

    def submit_fields(
        self,
        agreement_id: str,
        role: SignerRole,
        values: Mapping[str, Any],
        actor: Optional[str] = None,
        operation_id: Optional[str] = None,
    ) -> Agreement:
        """Merge field values for ``role`` (see :meth:`AgreementWorkflow.submit_fields`)."""
        now = self.clock()
        return self.store.update(
            agreement_id,
            lambda a: self.workflow.submit_fields(
                a, role, values, actor=actor, operation_id=operation_id, now=now
            ),
        )

    def sign(
        self,
        agreement_id: str,
        role: SignerRole,
        values: Optional[Mapping[str, Any]] = None,
        signed_field_ids: Optional[list[str]] = None,
        actor: Optional[str] = None,
        operation_id: Optional[str] = None,
    ) -> SigningResult:
        """Sign for ``role`` and invite whoever is next.

        Returns:
            The stored agreement, the role now due to sign (if any) and
            warnings for follow-ups that failed.
        """
        now = self.clock()
        applied = []

        def mutate(current: Agreement) -> Agreement:
            updated = self.workflow.sign(
                current,
                role,
                signed_field_ids=signed_field_ids,
                values=values,
                actor=actor,
                operation_id=operation_id,
                now=now,
            )
            if updated is not current:
                applied.append(True)
            return updated

        agreement = self.store.update(agreement_id, mutate)
        upcoming = agreement.next_signer if not agreement.is_terminal else None
        warnings = []
        if applied and upcoming is not None and upcoming.email:
            warning = self._invite(agreement, upcoming)
            if warning:
                warnings.append(warning)
        return SigningResult(
            agreement=agreement,
            next_signer=upcoming.role if upcoming is not None else None,
            warnings=warnings,
        )

    def sign_as_glrs(
        self,
        agreement_id: str,
        actor: str,
        values: Optional[Mapping[str, Any]] = None,
        signed_field_ids: Optional[list[str]] = None,
        operation_id: Optional[str] = None,
    ) -> SigningResult:
        """In-portal signature by GLRS staff, after every other signer."""
        return self.sign(
            agreement_id,
            SignerRole.GLRS,
            values=values,
            signed_field_ids=signed_field_ids,
            actor=actor,
            operation_id=operation_id,
        )

    def void(
        self, agreement_id: str, actor: str, operation_id: Optional[str] = None
    ) -> Agreement:
        now = self.clock()
        return self.store.update(
            agreement_id,
            lambda a: self.workflow.void(a, actor, operation_id=operation_id, now=now),
        )

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    def remind(
        self,
        agreement_id: str,
        role: Optional[SignerRole] = None,
        sender_name: Optional[str] = None,
    ) -> MailMessage:
        """Queue a reminder for ``role`` (default: the signer whose turn it is).

        Raises:
            AlreadyTerminalError: Agreement is completed or voided.
            AgreementExpiredError: Deadline passed.
            SignerNotFoundError: No such signer, or nobody is pending.
            AlreadySignedError: The signer has already signed.
            NoEmailError: The signer has no email address.
            MailQueueError: The queue write failed.
        """
        agreement = self.store.load_agreement(agreement_id)
        require_open(agreement, "remind", self.clock())
        if role is None:
            signer = agreement.next_signer
            if signer is None:
                raise SignerNotFoundError("pending")
        else:
            signer = agreement.signer_for(role)
            if signer is None:
                raise SignerNotFoundError(role.value)
        if signer.is_signed:
            raise AlreadySignedError(signer.name)
        message = self.gateway.queue_reminder(agreement, signer, sender_name=sender_name)
        logger.info("Reminder queued for %s on agreement %s", signer.role.value, agreement_id[:8])
        return message

    def _invite(
        self, agreement: Agreement, signer: Signer, sender_name: Optional[str] = None
    ) -> Optional[str]:
        try:
            self.gateway.queue_invitation(agreement, signer, sender_name=sender_name)
        except (MailQueueError, NoEmailError) as exc:
            logger.error(
                "Invitation for %s on agreement %s not queued: %s",
                signer.role.value,
                agreement.id[:8],
                exc,
            )
            return str(exc)
        return None

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export(self, agreement_id: str, actor: str = "GLRS") -> Agreement:
        """Render the completed agreement, store the PDF and record it.

        Raises:
            NotCompletedError: Agreement is not completed.
            RendererError: No renderer configured, or rendering failed.
        """
        agreement = self.store.load_agreement(agreement_id)
        require_completed(agreement)
        if self.renderer is None:
            raise RendererError("No PDF renderer is configured")

        pdf = self.renderer.render(agreement)
        path = self.store.save_pdf(agreement_id, pdf)
        now = self.clock()

        def mutate(current: Agreement) -> Agreement:
            updated = current.model_copy(deep=True)
            updated.pdf_path = str(path)
            updated.audit_trail.append(
                AuditEntry(
                    timestamp=now,
                    action=AuditAction.PDF_GENERATED,
                    actor=actor,
                    actor_role=SignerRole.GLRS,
                )
            )
            return updated

        return self.store.update(agreement_id, mutate)

    def get_pdf(self, agreement_id: str) -> Optional[bytes]:
        self.store.load_agreement(agreement_id)
        return self.store.get_pdf(agreement_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_agreement(self, agreement_id: str) -> Agreement:
        return self.store.load_agreement(agreement_id)

    def effective_status(self, agreement: Agreement) -> EffectiveStatus:
        return effective_status(agreement, self.clock())

    def list_agreements(
        self,
        tenant_id: str,
        status: StatusFilter = ALL,
        search: str = "",
        limit: Optional[int] = None,
    ) -> list[Agreement]:
        agreements = self.store.list_agreements(tenant_id, limit=limit or self.page_size)
        return filter_agreements(agreements, status, search, now=self.clock())

    def counts(self, tenant_id: str, limit: Optional[int] = None) -> dict[str, int]:
        agreements = self.store.list_agreements(tenant_id, limit=limit or self.page_size)
        return status_counts(agreements, now=self.clock())

    def list_view(self, tenant_id: str) -> AgreementListView:
        """Live view of the tenant's agreements; call ``start()`` to subscribe."""
        return AgreementListView(self.store, tenant_id, page_size=self.page_size, clock=self.clock)
