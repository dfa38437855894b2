"""Signer chain builder.

Turns a template plus the sender's per-role form data into a validated,
ordered signer list and a ready-to-persist Agreement. Only roles that
own at least one signable block in the template take part; form data
entered for any other role is ignored.
"""

import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from .errors import SignerValidationError
from .models import (
    Agreement,
    AgreementStatus,
    AuditAction,
    AuditEntry,
    Signer,
    SignerFormData,
)
from .models_template import (
    DEFAULT_ROLE_ORDER,
    SignerRole,
    Template,
    TemplateContent,
    has_signature_capture,
    participating_roles,
    role_label,
)

logger = logging.getLogger("lighthouse_sign.chain")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# 24 random bytes -> 192 bits of entropy, 32 URL-safe characters.
TOKEN_BYTES = 24

DEFAULT_EXPIRATION_DAYS = 14


def generate_token() -> str:
    """New URL-safe bearer token for a signing link."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email))


def requires_email(role: SignerRole) -> bool:
    """GLRS signs inside the portal; every other role is reached by email."""
    return role != SignerRole.GLRS


def default_signer_forms(
    roles: list[SignerRole], sender_name: str = ""
) -> dict[SignerRole, SignerFormData]:
    """Initial form data for each role: conventional order, GLRS prefilled."""
    return {
        role: SignerFormData(
            name=sender_name.strip() if role == SignerRole.GLRS else "",
            order=DEFAULT_ROLE_ORDER[role],
        )
        for role in roles
    }


def validate_signers(
    roles: list[SignerRole],
    forms: Mapping[SignerRole, SignerFormData],
) -> dict[str, str]:
    """Check form data for every participating role.

    All problems are collected rather than stopping at the first one.

    Returns:
        Messages keyed ``<role>_<field>``; empty when everything is valid.
    """
    errors: dict[str, str] = {}
    seen_orders: dict[int, SignerRole] = {}

    for role in roles:
        form = forms.get(role) or SignerFormData()
        label = role_label(role)

        if not form.name.strip():
            errors[f"{role.value}_name"] = f"{label} name is required"

        if requires_email(role):
            email = form.email.strip()
            if not email:
                errors[f"{role.value}_email"] = f"{label} email is required"
            elif not is_valid_email(email):
                errors[f"{role.value}_email"] = "Invalid email format"

        if form.order < 0:
            errors[f"{role.value}_order"] = f"{label} signing order must not be negative"
        elif form.order in seen_orders:
            other = role_label(seen_orders[form.order])
            errors[f"{role.value}_order"] = (
                f"{label} signing order {form.order} is already used by {other}"
            )
        else:
            seen_orders[form.order] = role

    return errors


def validate_send(template: Template, document_title: str) -> dict[str, str]:
    """Agreement-level checks made before any signer data is looked at."""
    errors: dict[str, str] = {}
    if not document_title.strip():
        errors["documentTitle"] = "Document title is required"
    if not has_signature_capture(template.content.blocks):
        errors["template"] = "Template must have at least one signature field"
    return errors


class ChainBuilder:
    """Builds Agreement drafts from templates and signer form data.

    Args:
        expiration_days: Days from sending until the agreement expires.
    """

    def __init__(self, expiration_days: int = DEFAULT_EXPIRATION_DAYS) -> None:
        if expiration_days < 1:
            raise ValueError("expiration_days must be at least 1")
        self.expiration_days = expiration_days

    def build_signers(
        self,
        roles: list[SignerRole],
        forms: Mapping[SignerRole, SignerFormData],
    ) -> list[Signer]:
        """Signers for ``roles`` in signing order, with fresh tokens.

        Assumes ``forms`` already passed :func:`validate_signers`.
        """
        used: set[str] = set()
        signers: list[Signer] = []
        for role in roles:
            form = forms[role]
            token: Optional[str] = None
            email: Optional[str] = None
            if requires_email(role):
                email = form.email.strip()
                token = generate_token()
                while token in used:
                    token = generate_token()
                used.add(token)
            signers.append(
                Signer(
                    role=role,
                    order=form.order,
                    name=form.name.strip(),
                    email=email,
                    token=token,
                )
            )
        signers.sort(key=lambda s: s.order)
        return signers

    def build_agreement(
        self,
        template: Template,
        forms: Mapping[SignerRole, SignerFormData],
        sender: str,
        document_title: Optional[str] = None,
        tenant_id: Optional[str] = None,
        created_by: Optional[str] = None,
        expiration_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Agreement:
        """Validate the send request and produce an Agreement in ``sent`` state.

        Args:
            template: Template to snapshot.
            forms: Sender-entered data keyed by role. Roles the template does
                not use are ignored.
            sender: Display name (or email) recorded as the ``sent`` actor.
            document_title: Title shown to signers (default: template name).
            tenant_id: Owning tenant (default: the template's).
            created_by: User id of the sender.
            expiration_days: Override the builder's TTL for this agreement.
            now: Send time (default: current UTC time).

        Returns:
            A new, unsaved Agreement.

        Raises:
            SignerValidationError: With every problem found, keyed per field.
            ValueError: If ``expiration_days`` is less than 1.
        """
        if expiration_days is not None and expiration_days < 1:
            raise ValueError("expiration_days must be at least 1")
        title = (document_title if document_title is not None else template.name).strip()
        roles = participating_roles(template.content.blocks)

        errors = validate_send(template, title)
        errors.update(validate_signers(roles, forms))
        if errors:
            raise SignerValidationError(errors)

        now = now or datetime.now(timezone.utc)
        days = expiration_days if expiration_days is not None else self.expiration_days
        signers = self.build_signers(roles, forms)

        agreement = Agreement(
            template_id=template.id,
            document_title=title,
            tenant_id=tenant_id or template.tenant_id,
            content=TemplateContent.model_validate(
                template.content.model_dump(by_alias=True)
            ),
            signers=signers,
            signer_tokens=[s.token for s in signers if s.token],
            status=AgreementStatus.SENT,
            sent_at=now,
            created_at=now,
            expires_at=now + timedelta(days=days),
            created_by=created_by,
        )
        pir = agreement.signer_for(SignerRole.PIR)
        if pir is not None:
            agreement.pir_name = pir.name
            agreement.pir_email = pir.email

        agreement.audit_trail.append(
            AuditEntry(
                timestamp=now,
                action=AuditAction.SENT,
                actor=sender,
                actor_role=SignerRole.GLRS,
                recipients=[s.email for s in signers if s.email],
            )
        )

        logger.info(
            "Built agreement %s (%s) with %d signer(s): %s",
            agreement.id[:8],
            title,
            len(signers),
            ", ".join(s.role.value for s in signers),
        )
        return agreement
