"""Tests for the financial document state machine."""

from decimal import Decimal

import pytest

from finance_lifecycle.errors import InvalidTransition
from finance_lifecycle.services.state_machine import (
    DocumentAction,
    DocumentStateMachine,
    DocumentStatus,
    scope_errors,
)

# Every (status, action) pair and whether it is legal
LEGAL = {
    ("DRAFT", "submit"): True,
    ("DRAFT", "approve"): False,
    ("DRAFT", "reject"): False,
    ("DRAFT", "record_payment"): False,
    ("SUBMITTED", "submit"): False,
    ("SUBMITTED", "approve"): True,
    ("SUBMITTED", "reject"): True,
    ("SUBMITTED", "record_payment"): False,
    ("APPROVED", "submit"): False,
    ("APPROVED", "approve"): False,
    ("APPROVED", "reject"): False,
    ("APPROVED", "record_payment"): True,
    ("PARTIALLY_PAID", "submit"): False,
    ("PARTIALLY_PAID", "approve"): False,
    ("PARTIALLY_PAID", "reject"): False,
    ("PARTIALLY_PAID", "record_payment"): True,
    ("REJECTED", "submit"): False,
    ("REJECTED", "approve"): False,
    ("REJECTED", "reject"): False,
    ("REJECTED", "record_payment"): False,
    ("PAID", "submit"): False,
    ("PAID", "approve"): False,
    ("PAID", "reject"): False,
    ("PAID", "record_payment"): False,
}


class TestDocumentStateMachine:
    """Test state machine transitions."""

    def test_table_covers_every_pair(self):
        assert len(LEGAL) == len(DocumentStatus) * len(DocumentAction)

    @pytest.mark.parametrize(("status", "action"), sorted(LEGAL))
    def test_legality(self, status, action):
        assert DocumentStateMachine.can_perform(status, action) is LEGAL[(status, action)]

    @pytest.mark.parametrize(
        ("status", "action"), sorted(k for k, ok in LEGAL.items() if not ok)
    )
    def test_illegal_action_raises(self, status, action):
        with pytest.raises(InvalidTransition) as exc_info:
            DocumentStateMachine.validate_action(status, action)

        assert exc_info.value.current_state == status
        assert exc_info.value.action == action
        assert exc_info.value.allowed == sorted(
            DocumentStateMachine.get_next_statuses(status)
        )

    def test_fixed_targets(self):
        assert DocumentStateMachine.validate_action("DRAFT", "submit") == "SUBMITTED"
        assert DocumentStateMachine.validate_action("SUBMITTED", "approve") == "APPROVED"
        assert DocumentStateMachine.validate_action("SUBMITTED", "reject") == "REJECTED"
        # Payment targets are derived from the payment sum
        assert DocumentStateMachine.validate_action("APPROVED", "record_payment") is None

    def test_enum_arguments(self):
        assert DocumentStateMachine.can_perform(
            DocumentStatus.DRAFT, DocumentAction.SUBMIT
        ) is True
        assert DocumentStateMachine.can_transition(
            DocumentStatus.SUBMITTED, DocumentStatus.APPROVED
        ) is True

    def test_terminal_states(self):
        assert DocumentStateMachine.is_terminal("REJECTED") is True
        assert DocumentStateMachine.is_terminal("PAID") is True
        assert DocumentStateMachine.get_next_statuses("PAID") == []
        assert DocumentStateMachine.is_terminal("PARTIALLY_PAID") is False

    def test_terminal_error_message(self):
        with pytest.raises(InvalidTransition) as exc_info:
            DocumentStateMachine.validate_action("PAID", "approve")

        assert exc_info.value.allowed == []
        assert "no further transitions" in exc_info.value.message

    def test_no_backwards_transitions(self):
        assert DocumentStateMachine.can_transition("SUBMITTED", "DRAFT") is False
        assert DocumentStateMachine.can_transition("APPROVED", "SUBMITTED") is False
        assert DocumentStateMachine.can_transition("PAID", "PARTIALLY_PAID") is False


class TestStatusForPayments:
    """Payment status is a function of the payment sum only."""

    def test_nothing_paid(self):
        assert DocumentStateMachine.status_for_payments(Decimal("500"), Decimal("0")) == "APPROVED"

    def test_partial(self):
        assert (
            DocumentStateMachine.status_for_payments(Decimal("500"), Decimal("200"))
            == "PARTIALLY_PAID"
        )

    def test_exact(self):
        assert DocumentStateMachine.status_for_payments(Decimal("500"), Decimal("500")) == "PAID"

    def test_over(self):
        assert DocumentStateMachine.status_for_payments(Decimal("500"), Decimal("650")) == "PAID"


class TestScopeRule:
    def test_company_without_division(self):
        assert scope_errors("COMPANY", None) == []

    def test_division_requires_id(self):
        assert scope_errors("DIVISION", None) == [
            "division_id is required when scope is DIVISION"
        ]

    def test_company_rejects_division(self):
        assert scope_errors("COMPANY", "d-1")

    def test_unknown_scope(self):
        assert scope_errors("TEAM", None)[0].startswith("scope must be one of")
