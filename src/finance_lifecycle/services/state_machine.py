"""Financial document state machine with transition validation."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from finance_lifecycle.errors import InvalidTransition, ValidationError

if TYPE_CHECKING:
    from finance_lifecycle.models import FinancialDocument


class DocumentStatus(str, Enum):
    """Financial document status values."""

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"


class DocumentAction(str, Enum):
    """Actions that move a document between states."""

    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    RECORD_PAYMENT = "record_payment"


class Scope(str, Enum):
    """Cost attribution scope."""

    COMPANY = "COMPANY"
    DIVISION = "DIVISION"


def _value(status: str | Enum) -> str:
    return status.value if isinstance(status, Enum) else str(status)


class DocumentStateMachine:
    """State machine for financial document status transitions.

    Allowed transitions:
    - DRAFT → SUBMITTED (submit)
    - SUBMITTED → APPROVED (approve)
    - SUBMITTED → REJECTED (reject)
    - APPROVED → PARTIALLY_PAID | PAID (record_payment)
    - PARTIALLY_PAID → PARTIALLY_PAID | PAID (record_payment)

    REJECTED and PAID are terminal.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        DocumentStatus.DRAFT.value: [DocumentStatus.SUBMITTED.value],
        DocumentStatus.SUBMITTED.value: [
            DocumentStatus.APPROVED.value,
            DocumentStatus.REJECTED.value,
        ],
        DocumentStatus.APPROVED.value: [
            DocumentStatus.PARTIALLY_PAID.value,
            DocumentStatus.PAID.value,
        ],
        DocumentStatus.PARTIALLY_PAID.value: [
            DocumentStatus.PARTIALLY_PAID.value,
            DocumentStatus.PAID.value,
        ],
        DocumentStatus.REJECTED.value: [],  # Terminal state
        DocumentStatus.PAID.value: [],  # Terminal state
    }

    # Which source states each action may start from
    ACTION_SOURCES: dict[str, set[str]] = {
        DocumentAction.SUBMIT.value: {DocumentStatus.DRAFT.value},
        DocumentAction.APPROVE.value: {DocumentStatus.SUBMITTED.value},
        DocumentAction.REJECT.value: {DocumentStatus.SUBMITTED.value},
        DocumentAction.RECORD_PAYMENT.value: {
            DocumentStatus.APPROVED.value,
            DocumentStatus.PARTIALLY_PAID.value,
        },
    }

    # Statuses whose ledger content may still be edited
    EDITABLE = {DocumentStatus.DRAFT.value}

    TERMINAL = {DocumentStatus.REJECTED.value, DocumentStatus.PAID.value}

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(_value(from_status), [])
        return _value(to_status) in allowed

    @classmethod
    def can_perform(cls, status: str, action: str) -> bool:
        """Check if an action may start from a status."""
        return _value(status) in cls.ACTION_SOURCES.get(_value(action), set())

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return list(cls.VALID_TRANSITIONS.get(_value(current_status), []))

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return _value(status) in cls.TERMINAL

    @classmethod
    def target_status(cls, action: str) -> str | None:
        """Fixed target of an action, or None when it is derived (payments)."""
        return {
            DocumentAction.SUBMIT.value: DocumentStatus.SUBMITTED.value,
            DocumentAction.APPROVE.value: DocumentStatus.APPROVED.value,
            DocumentAction.REJECT.value: DocumentStatus.REJECTED.value,
        }.get(_value(action))

    @classmethod
    def validate_action(cls, current_status: str, action: str) -> str | None:
        """Validate an action against the current status.

        Returns the fixed target status (None for payments, whose target is
        derived from the payment sum).

        Raises:
            InvalidTransition: If the action is not legal from this status
        """
        if not cls.can_perform(current_status, action):
            raise InvalidTransition(
                _value(current_status),
                _value(action),
                cls.get_next_statuses(current_status),
            )
        return cls.target_status(action)

    @staticmethod
    def status_for_payments(amount: Decimal, total_paid: Decimal) -> str:
        """Derive the payment status from the payment sum alone.

        Never trusts a client-supplied status.
        """
        if total_paid <= 0:
            return DocumentStatus.APPROVED.value
        if total_paid >= amount:
            return DocumentStatus.PAID.value
        return DocumentStatus.PARTIALLY_PAID.value

    @classmethod
    def validate_document_for_submit(cls, document: FinancialDocument) -> list[str]:
        """Check that a document carries every field required to submit.

        Returns list of error messages (empty if valid).
        """
        errors: list[str] = []
        if document.document_date is None:
            errors.append("date is required")
        if document.category_id is None:
            errors.append("category is required")
        if document.amount is None or document.amount <= 0:
            errors.append("amount must be greater than zero")
        if not document.currency:
            errors.append("currency is required")
        errors.extend(scope_errors(document.scope, document.division_id))
        return errors


def scope_errors(scope: str | None, division_id: object | None) -> list[str]:
    """Errors for the ``scope == DIVISION ⇔ division_id present`` rule."""
    scope_value = _value(scope) if scope is not None else None
    if scope_value not in (Scope.COMPANY.value, Scope.DIVISION.value):
        return [f"scope must be one of COMPANY, DIVISION (got {scope_value!r})"]
    if scope_value == Scope.DIVISION.value and division_id is None:
        return ["division_id is required when scope is DIVISION"]
    if scope_value == Scope.COMPANY.value and division_id is not None:
        return ["division_id must be empty when scope is COMPANY"]
    return []


def assert_scope(scope: str | None, division_id: object | None) -> str:
    """Validate the scope rule, returning the normalized scope value."""
    errors = scope_errors(scope, division_id)
    if errors:
        field = "scope" if errors[0].startswith("scope") else "division_id"
        raise ValidationError(errors[0], field=field)
    return _value(scope)  # type: ignore[arg-type]
