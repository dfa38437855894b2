"""Exceptions raised by the agreement workflow.

Validation and state errors subclass ``ValueError``; transport and
persistence failures subclass ``RuntimeError``; lookups that miss
subclass ``FileNotFoundError``. Every message is meant to be shown to a
user as-is.
"""

from typing import Iterable, Optional


class AgreementError(Exception):
    """Root of every error raised by lighthouse_sign."""


# ---------------------------------------------------------------------------
# Validation and state
# ---------------------------------------------------------------------------

class SignerValidationError(AgreementError, ValueError):
    """Signer form data or send parameters failed validation.

    Attributes:
        errors: Messages keyed ``<role>_<field>`` (or ``template`` /
            ``documentTitle`` for agreement-level problems).
    """

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = dict(errors)
        summary = "; ".join(self.errors.values())
        super().__init__(f"Cannot send agreement: {summary}")


class NotYourTurnError(AgreementError, ValueError):
    """The signer acted before every earlier signer had signed."""

    def __init__(self, role: str, waiting_on: Optional[str] = None) -> None:
        self.role = role
        self.waiting_on = waiting_on
        if waiting_on:
            msg = f"It is not {role}'s turn to sign; awaiting {waiting_on}"
        else:
            msg = f"It is not {role}'s turn to sign"
        super().__init__(msg)


class AlreadyTerminalError(AgreementError, ValueError):
    """The agreement is completed or voided and accepts no further changes."""

    def __init__(self, status: str, action: str) -> None:
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action}: agreement is already {status}")


class AgreementExpiredError(AgreementError, ValueError):
    """The agreement passed its expiry date before being completed."""

    def __init__(self, agreement_id: str) -> None:
        self.agreement_id = agreement_id
        super().__init__(f"Agreement {agreement_id} has expired")


class IncompleteRequiredFieldsError(AgreementError, ValueError):
    """Required fields owned by the signer are still empty."""

    def __init__(self, role: str, missing: Iterable[str]) -> None:
        self.role = role
        self.missing = list(missing)
        super().__init__(
            f"{role} must fill {len(self.missing)} required field(s) before "
            f"signing: {', '.join(self.missing)}"
        )


class SignerNotFoundError(AgreementError, ValueError):
    """The agreement has no signer for the requested role."""

    def __init__(self, role: str) -> None:
        self.role = role
        super().__init__(f"Agreement has no {role} signer")


class NoEmailError(AgreementError, ValueError):
    """A message was requested for a signer without an email address."""

    def __init__(self, name: str) -> None:
        super().__init__(f"{name} has no email address on file")


class NoSigningLinkError(AgreementError, ValueError):
    """The signer signs in-portal and has no external link."""

    def __init__(self, name: str) -> None:
        super().__init__(f"{name} signs in the portal and has no signing link")


class AlreadySignedError(AgreementError, ValueError):
    """The signer has already signed; there is nothing to remind them of."""

    def __init__(self, name: str) -> None:
        super().__init__(f"{name} has already signed")


class NotCompletedError(AgreementError, ValueError):
    """An export was requested for an agreement that is not completed."""

    def __init__(self, agreement_id: str, status: str) -> None:
        super().__init__(
            f"Agreement {agreement_id} is {status}; only completed agreements "
            "can be exported"
        )


# ---------------------------------------------------------------------------
# Integration errors (not retried)
# ---------------------------------------------------------------------------

class UnknownFieldError(AgreementError, ValueError):
    """A submission addressed blocks the signer does not own."""

    def __init__(self, role: str, field_ids: Iterable[str]) -> None:
        self.role = role
        self.field_ids = list(field_ids)
        super().__init__(
            f"Fields not owned by {role}: {', '.join(self.field_ids)}"
        )


class InvalidFieldValueError(UnknownFieldError):
    """A submitted value does not fit its block (bad option, too long)."""

    def __init__(self, role: str, problems: dict[str, str]) -> None:
        AgreementError.__init__(self, "; ".join(problems.values()))
        self.role = role
        self.field_ids = list(problems)
        self.problems = problems


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------

class AgreementNotFoundError(AgreementError, FileNotFoundError):
    def __init__(self, ref: str) -> None:
        super().__init__(f"Agreement not found: {ref}")


class TemplateNotFoundError(AgreementError, FileNotFoundError):
    def __init__(self, template_id: str) -> None:
        super().__init__(f"Template not found: {template_id}")


# ---------------------------------------------------------------------------
# Transport and persistence (recoverable, safe to retry)
# ---------------------------------------------------------------------------

class PersistenceError(AgreementError, RuntimeError):
    """The document store could not complete a read or write."""


class ConcurrentModificationError(PersistenceError):
    """Another writer changed the agreement first; reload and retry."""

    def __init__(self, agreement_id: str) -> None:
        self.agreement_id = agreement_id
        super().__init__(
            f"Agreement {agreement_id} was changed by someone else; "
            "reload and try again"
        )


class MailQueueError(AgreementError, RuntimeError):
    """A message could not be written to the outbound mail queue."""


class RendererError(AgreementError, RuntimeError):
    """The external PDF renderer failed."""
