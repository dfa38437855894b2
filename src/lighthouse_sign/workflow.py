"""Agreement state machine.

Owns every valid transition on an Agreement::

    sent -> partially_signed -> completed
      \\            \\
       +------------+--> voided

``expired`` is an overlay computed from ``expires_at`` at read time and
is never a transition target. Turn order is recomputed on every call
from signer order and status; nothing about turns is stored.

Every operation validates first and then applies its changes to a deep
copy, so a failed call leaves the caller's Agreement untouched and a
successful one returns the whole transition (status, signer, audit
entry) at once. Persisting that copy atomically is the store's job.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from .errors import (
    AgreementExpiredError,
    AlreadyTerminalError,
    IncompleteRequiredFieldsError,
    InvalidFieldValueError,
    NotYourTurnError,
    SignerNotFoundError,
    UnknownFieldError,
)
from .models import (
    Agreement,
    AgreementStatus,
    AuditAction,
    AuditEntry,
    EffectiveStatus,
    Signer,
    SignerStatus,
    TERMINAL_STATUSES,
)
from .models_template import DateFieldBlock, SignerRole, blocks_for_role, is_filled, role_label

logger = logging.getLogger("lighthouse_sign.workflow")


# ---------------------------------------------------------------------------
# Pure read-side functions
# ---------------------------------------------------------------------------

def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def _now(now: Optional[datetime]) -> datetime:
    return _aware(now) if now is not None else datetime.now(timezone.utc)


def is_expired(agreement: Agreement, now: Optional[datetime] = None) -> bool:
    """True when the deadline has passed and the agreement is still open.

    Completed and voided agreements never read as expired.
    """
    if agreement.expires_at is None or agreement.status in TERMINAL_STATUSES:
        return False
    return _aware(agreement.expires_at) < _now(now)


def effective_status(agreement: Agreement, now: Optional[datetime] = None) -> EffectiveStatus:
    """Stored status with the expiry overlay applied."""
    if is_expired(agreement, now):
        return EffectiveStatus.EXPIRED
    return EffectiveStatus(agreement.status.value)


def require_open(agreement: Agreement, action: str, now: Optional[datetime] = None) -> None:
    """Reject terminal and expired agreements.

    Raises:
        AlreadyTerminalError: Agreement is completed or voided.
        AgreementExpiredError: Deadline passed.
    """
    if agreement.status in TERMINAL_STATUSES:
        raise AlreadyTerminalError(agreement.status.value, action)
    if is_expired(agreement, now):
        raise AgreementExpiredError(agreement.id)


class Turn(BaseModel):
    """Whose turn it is, from one signer's point of view.

    Attributes:
        pending: The signer has not signed yet.
        is_their_turn: Pending, and every earlier signer has signed.
        waiting_on: First earlier signer who has not signed, if any.
    """

    model_config = ConfigDict(frozen=True)

    pending: bool
    is_their_turn: bool
    waiting_on: Optional[SignerRole] = None


def _signer(agreement: Agreement, role: SignerRole) -> Signer:
    signer = agreement.signer_for(role)
    if signer is None:
        raise SignerNotFoundError(role.value)
    return signer


def determine_turn(agreement: Agreement, role: SignerRole) -> Turn:
    """Compute the turn state for ``role``.

    A signer may act when they are pending and every signer with a
    strictly lower order has signed.

    Raises:
        SignerNotFoundError: If the agreement has no signer for ``role``.
    """
    signer = _signer(agreement, role)
    pending = signer.status == SignerStatus.PENDING
    earlier = [s for s in agreement.ordered_signers if s.order < signer.order]
    blocking = next((s for s in earlier if not s.is_signed), None)
    return Turn(
        pending=pending,
        is_their_turn=pending and blocking is None,
        waiting_on=blocking.role if blocking is not None else None,
    )


def current_turn(agreement: Agreement) -> Optional[SignerRole]:
    """Role whose turn it is, or None when everyone has signed."""
    for signer in agreement.ordered_signers:
        if determine_turn(agreement, signer.role).is_their_turn:
            return signer.role
    return None


def derive_status(signers: list[Signer]) -> AgreementStatus:
    """Aggregate status implied by signer statuses (ignores voiding)."""
    signed = sum(1 for s in signers if s.is_signed)
    if signers and signed == len(signers):
        return AgreementStatus.COMPLETED
    if signed:
        return AgreementStatus.PARTIALLY_SIGNED
    return AgreementStatus.SENT


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

class AgreementWorkflow:
    """Applies signing transitions to Agreements.

    Stateless: all state lives in the Agreement. Methods take an
    Agreement in and return an updated copy.
    """

    # ------------------------------------------------------------------
    # Field submission
    # ------------------------------------------------------------------

    def submit_fields(
        self,
        agreement: Agreement,
        role: SignerRole,
        values: Mapping[str, Any],
        actor: Optional[str] = None,
        operation_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Agreement:
        """Merge field values filled in by ``role``.

        Values are merged last-write-wins per block id. Signer status does
        not change; signing is a separate step.

        Args:
            agreement: Agreement to update.
            role: Role submitting the values.
            values: Values keyed by block id.
            actor: Display name for the audit entry (default: signer name).
            operation_id: Client id making a retried call a no-op.
            now: Submission time.

        Returns:
            Updated copy, or ``agreement`` itself for a replay or an empty
            submission.

        Raises:
            AlreadyTerminalError: Agreement is completed or voided.
            AgreementExpiredError: Deadline passed.
            NotYourTurnError: An earlier signer has not signed yet.
            UnknownFieldError: A key is not a block owned by ``role``.
        """
        if agreement.has_operation(operation_id):
            logger.info("Replayed field submission %s on %s", operation_id, agreement.id[:8])
            return agreement

        now = _now(now)
        require_open(agreement, "submit fields", now)
        signer = self._require_turn(agreement, role)
        self._check_values(agreement, role, values)
        if not values:
            return agreement

        updated = agreement.model_copy(deep=True)
        updated.field_values.update(values)
        updated.audit_trail.append(
            AuditEntry(
                timestamp=now,
                action=AuditAction.FIELD_SIGNED,
                actor=actor or signer.name,
                actor_role=role,
                fields=list(values),
                operation_id=operation_id,
            )
        )
        logger.info(
            "%s submitted %d field(s) on agreement %s",
            role.value,
            len(values),
            agreement.id[:8],
        )
        return updated

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def sign(
        self,
        agreement: Agreement,
        role: SignerRole,
        signed_field_ids: Optional[list[str]] = None,
        values: Optional[Mapping[str, Any]] = None,
        actor: Optional[str] = None,
        operation_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Agreement:
        """Record ``role``'s signature and advance the agreement.

        Auto-fill date fields the signer left empty get the signing date.

        Args:
            agreement: Agreement to update.
            role: Role signing.
            signed_field_ids: Blocks the signer attests to (default: every
                block owned by ``role``).
            values: Field values to merge before the required-field check.
            actor: Display name for the audit entry (default: signer name).
            operation_id: Client id making a retried call a no-op.
            now: Signing time.

        Returns:
            Updated copy with status ``partially_signed`` or ``completed``,
            or ``agreement`` itself for a replay.

        Raises:
            AlreadyTerminalError: Agreement is completed or voided.
            AgreementExpiredError: Deadline passed.
            NotYourTurnError: An earlier signer has not signed yet.
            UnknownFieldError: A value or field id is not owned by ``role``.
            IncompleteRequiredFieldsError: A required block is still empty.
        """
        if agreement.has_operation(operation_id):
            logger.info("Replayed signing %s on %s", operation_id, agreement.id[:8])
            return agreement

        now = _now(now)
        values = dict(values or {})
        require_open(agreement, "sign", now)
        signer = self._require_turn(agreement, role)
        self._check_values(agreement, role, values)

        owned = blocks_for_role(agreement.content.blocks, role)
        owned_ids = [b.id for b in owned]
        if signed_field_ids is None:
            signed_field_ids = owned_ids
        else:
            stray = [fid for fid in signed_field_ids if fid not in owned_ids]
            if stray:
                raise UnknownFieldError(role.value, stray)

        merged = {**agreement.field_values, **values}
        for b in owned:
            if isinstance(b, DateFieldBlock) and b.auto_fill and not is_filled(merged.get(b.id)):
                merged[b.id] = now.date().isoformat()
        missing = [b.id for b in owned if b.required and not is_filled(merged.get(b.id))]
        if missing:
            raise IncompleteRequiredFieldsError(role.value, missing)

        updated = agreement.model_copy(deep=True)
        updated.field_values = merged
        target = updated.signer_for(role)
        target.status = SignerStatus.SIGNED
        target.signed_at = now
        target.signed_fields = list(signed_field_ids)

        updated.audit_trail.append(
            AuditEntry(
                timestamp=now,
                action=AuditAction.SIGNED,
                actor=actor or signer.name,
                actor_role=role,
                fields=list(signed_field_ids),
                operation_id=operation_id,
            )
        )

        updated.status = derive_status(updated.signers)
        if updated.status == AgreementStatus.COMPLETED:
            updated.completed_at = now

        logger.info(
            "%s signed agreement %s; status now %s",
            role.value,
            agreement.id[:8],
            updated.status.value,
        )
        return updated

    # ------------------------------------------------------------------
    # Voiding
    # ------------------------------------------------------------------

    def void(
        self,
        agreement: Agreement,
        actor: str,
        operation_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Agreement:
        """Permanently cancel an open agreement. Expired agreements may be voided.

        Raises:
            AlreadyTerminalError: Agreement is already completed or voided.
        """
        if agreement.has_operation(operation_id):
            logger.info("Replayed void %s on %s", operation_id, agreement.id[:8])
            return agreement
        if agreement.status in TERMINAL_STATUSES:
            raise AlreadyTerminalError(agreement.status.value, "void")

        now = _now(now)
        updated = agreement.model_copy(deep=True)
        updated.status = AgreementStatus.VOIDED
        updated.audit_trail.append(
            AuditEntry(
                timestamp=now,
                action=AuditAction.VOIDED,
                actor=actor,
                actor_role=SignerRole.GLRS,
                operation_id=operation_id,
            )
        )
        logger.info("Agreement %s voided by %s", agreement.id[:8], actor)
        return updated

    # ------------------------------------------------------------------
    # Viewing
    # ------------------------------------------------------------------

    def record_view(
        self,
        agreement: Agreement,
        role: SignerRole,
        now: Optional[datetime] = None,
    ) -> Agreement:
        """Append a ``viewed`` entry the first time ``role`` opens the agreement.

        Returns:
            Updated copy, or ``agreement`` itself if already viewed.
        """
        signer = _signer(agreement, role)
        seen = any(
            e.action == AuditAction.VIEWED and e.actor_role == role
            for e in agreement.audit_trail
        )
        if seen:
            return agreement

        updated = agreement.model_copy(deep=True)
        updated.audit_trail.append(
            AuditEntry(
                timestamp=_now(now),
                action=AuditAction.VIEWED,
                actor=signer.name,
                actor_role=role,
            )
        )
        return updated

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_turn(agreement: Agreement, role: SignerRole) -> Signer:
        turn = determine_turn(agreement, role)
        if not turn.is_their_turn:
            waiting = None
            if turn.pending and turn.waiting_on is not None:
                waiting = role_label(turn.waiting_on)
            logger.warning(
                "Refused out-of-turn action by %s on agreement %s",
                role.value,
                agreement.id[:8],
            )
            raise NotYourTurnError(role_label(role), waiting)
        return _signer(agreement, role)

    @staticmethod
    def _check_values(
        agreement: Agreement, role: SignerRole, values: Mapping[str, Any]
    ) -> None:
        """Every key must be a block owned by ``role`` and fit that block."""
        owned = {b.id: b for b in blocks_for_role(agreement.content.blocks, role)}
        unknown = [fid for fid in values if fid not in owned]
        if unknown:
            raise UnknownFieldError(role.value, unknown)

        problems: dict[str, str] = {}
        for fid, value in values.items():
            problem = owned[fid].check_value(value)
            if problem:
                problems[fid] = problem
        if problems:
            raise InvalidFieldValueError(role.value, problems)
