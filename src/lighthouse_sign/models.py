"""Core data models for GLRS agreements.

An Agreement is one generated document sent out for signature by an
ordered chain of signers (PIR, family member, GLRS staff). It carries a
snapshot of the template content, the values signers have filled in,
and an append-only audit trail.

Stored status only ever holds ``sent``, ``partially_signed``,
``completed`` or ``voided``. ``expired`` is derived at read time from
``expires_at`` and is never written back.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from .models_template import SignerRole, TemplateContent


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class AgreementStatus(str, Enum):
    """Stored lifecycle states of an agreement."""

    SENT = "sent"
    PARTIALLY_SIGNED = "partially_signed"
    COMPLETED = "completed"
    VOIDED = "voided"


class EffectiveStatus(str, Enum):
    """Status as displayed and filtered: stored status plus expiry overlay."""

    SENT = "sent"
    PARTIALLY_SIGNED = "partially_signed"
    COMPLETED = "completed"
    EXPIRED = "expired"
    VOIDED = "voided"


TERMINAL_STATUSES = frozenset({AgreementStatus.COMPLETED, AgreementStatus.VOIDED})


class SignerStatus(str, Enum):
    """Lifecycle of an individual signer."""

    PENDING = "pending"
    SIGNED = "signed"


class AuditAction(str, Enum):
    """Actions recorded in the audit trail."""

    SENT = "sent"
    VIEWED = "viewed"
    FIELD_SIGNED = "field_signed"
    SIGNED = "signed"
    VOIDED = "voided"
    DECLINED = "declined"
    PDF_GENERATED = "pdf_generated"


# ---------------------------------------------------------------------------
# Signer
# ---------------------------------------------------------------------------

class Signer(BaseModel):
    """One participant in an agreement.

    Attributes:
        role: Partition key; exactly one signer per role per agreement.
        order: Position in the signing chain (0 = first). Unique per agreement.
        name: Display name.
        email: Contact address; None for GLRS, who signs in the portal.
        status: ``pending`` until the signer signs.
        token: Bearer secret embedded in the signing link. None for GLRS.
        signed_at: When the signer signed.
        signed_fields: Block ids the signer attested to when signing.
    """

    model_config = ConfigDict(populate_by_name=True)

    role: SignerRole
    order: int = Field(0, ge=0)
    name: str
    email: Optional[str] = None
    status: SignerStatus = SignerStatus.PENDING
    token: Optional[str] = Field(None, repr=False)
    signed_at: Optional[datetime] = Field(None, alias="signedAt")
    signed_fields: list[str] = Field(default_factory=list, alias="signedFields")

    @property
    def is_signed(self) -> bool:
        return self.status == SignerStatus.SIGNED


class SignerFormData(BaseModel):
    """Sender-entered data for one role, validated before sending."""

    name: str = ""
    email: str = ""
    order: int = 0


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------

class AuditEntry(BaseModel):
    """Immutable audit log entry. Entries are appended, never edited.

    Attributes:
        timestamp: When it happened.
        action: What happened.
        actor: Display name (or email) of whoever did it.
        actor_role: Role of the actor, when the actor is a signer or staff.
        fields: Block ids involved (field submissions and signings).
        recipients: Email recipients (send).
        operation_id: Client-generated id used to make retries idempotent.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    timestamp: datetime = Field(default_factory=_utcnow)
    action: AuditAction
    actor: str
    actor_role: Optional[SignerRole] = Field(None, alias="actorRole")
    fields: Optional[list[str]] = None
    recipients: Optional[list[str]] = None
    operation_id: Optional[str] = Field(None, alias="operationId")


# ---------------------------------------------------------------------------
# Agreement (the aggregate root)
# ---------------------------------------------------------------------------

class Agreement(BaseModel):
    """A document out for multi-party sequential signature.

    Attributes:
        id: Unique identifier.
        template_id: Template the content was snapshotted from.
        document_title: Title shown to signers.
        tenant_id: Owning tenant.
        content: Block snapshot taken at send time.
        signers: Signing chain.
        signer_tokens: Tokens of every external signer, for link lookup.
        field_values: Values keyed by block id.
        status: Stored status (never ``expired``).
        sent_at: When the agreement was sent.
        expires_at: Signing deadline.
        completed_at: When the last signer signed.
        created_by: User id of the sender.
        audit_trail: Append-only history.
        pdf_path: Location of the exported PDF, once generated.
        pir_id: Optional link to the PIR record this agreement concerns.
        revision: Write counter used for compare-and-set updates.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    template_id: Optional[str] = Field(None, alias="templateId")
    document_title: str = Field(..., alias="documentTitle")
    tenant_id: str = Field(..., alias="tenantId")
    content: TemplateContent = Field(default_factory=TemplateContent)
    signers: list[Signer] = Field(default_factory=list)
    signer_tokens: list[str] = Field(
        default_factory=list, alias="signerTokens", repr=False
    )
    field_values: dict[str, Any] = Field(default_factory=dict, alias="fieldValues")
    status: AgreementStatus = AgreementStatus.SENT
    sent_at: datetime = Field(default_factory=_utcnow, alias="sentAt")
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")
    completed_at: Optional[datetime] = Field(None, alias="completedAt")
    created_by: Optional[str] = Field(None, alias="createdBy")
    created_at: datetime = Field(default_factory=_utcnow, alias="createdAt")
    audit_trail: list[AuditEntry] = Field(default_factory=list, alias="auditTrail")
    pdf_path: Optional[str] = Field(None, alias="pdfPath")
    pir_id: Optional[str] = Field(None, alias="pirId")
    pir_name: Optional[str] = Field(None, alias="pirName")
    pir_email: Optional[str] = Field(None, alias="pirEmail")
    revision: int = 0

    @property
    def is_complete(self) -> bool:
        """All signers have signed."""
        return bool(self.signers) and all(s.is_signed for s in self.signers)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def ordered_signers(self) -> list[Signer]:
        return sorted(self.signers, key=lambda s: s.order)

    @property
    def pending_signers(self) -> list[Signer]:
        """Signers who haven't signed yet, in signing order."""
        return [s for s in self.ordered_signers if not s.is_signed]

    @property
    def next_signer(self) -> Optional[Signer]:
        """Next signer in order, or None if all have signed."""
        pending = self.pending_signers
        return pending[0] if pending else None

    @property
    def primary_signer(self) -> Optional[Signer]:
        """First non-GLRS signer; the recipient shown in list views."""
        for s in self.ordered_signers:
            if s.role != SignerRole.GLRS:
                return s
        return self.signers[0] if self.signers else None

    @property
    def can_glrs_sign(self) -> bool:
        """GLRS is pending and every other signer has signed."""
        glrs = self.signer_for(SignerRole.GLRS)
        if glrs is None or glrs.is_signed:
            return False
        return all(s.is_signed for s in self.signers if s.role != SignerRole.GLRS)

    def signer_for(self, role: SignerRole) -> Optional[Signer]:
        """The signer holding ``role``, if any."""
        for s in self.signers:
            if s.role == role:
                return s
        return None

    def signer_by_token(self, token: str) -> Optional[Signer]:
        for s in self.signers:
            if s.token is not None and s.token == token:
                return s
        return None

    def has_operation(self, operation_id: Optional[str]) -> bool:
        """True if an audit entry already records ``operation_id``."""
        if not operation_id:
            return False
        return any(e.operation_id == operation_id for e in self.audit_trail)


# ---------------------------------------------------------------------------
# Distribution records
# ---------------------------------------------------------------------------

class SigningLink(BaseModel):
    """Shareable link for one signer."""

    role: SignerRole
    name: str
    email: Optional[str] = None
    link: str


class SendAgreementResult(BaseModel):
    """What the sender gets back after an agreement is created."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    document_title: str = Field(..., alias="documentTitle")
    status: AgreementStatus
    signing_links: list[SigningLink] = Field(
        default_factory=list, alias="signingLinks"
    )
    warnings: list[str] = Field(default_factory=list)


class SigningResult(BaseModel):
    """Agreement after a signing, plus any follow-up that could not be done.

    A failed invitation to the next signer does not undo the signature;
    it is reported in ``warnings`` instead.
    """

    model_config = ConfigDict(populate_by_name=True)

    agreement: Agreement
    next_signer: Optional[SignerRole] = Field(None, alias="nextSigner")
    warnings: list[str] = Field(default_factory=list)


class MailContent(BaseModel):
    subject: str
    html: str


class MailMessage(BaseModel):
    """One entry in the outbound mail queue, consumed by an external mailer."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    to: str
    message: MailContent
    agreement_id: Optional[str] = Field(None, alias="agreementId")
    created_at: datetime = Field(default_factory=_utcnow, alias="createdAt")

    @property
    def subject(self) -> str:
        return self.message.subject
