"""Tests for typed fact payloads."""

from decimal import Decimal
from uuid import uuid4

import pytest

from finance_lifecycle.errors import ValidationError
from finance_lifecycle.services.fact_types import (
    Hourly,
    MonthlyFixed,
    ScopeAssignment,
    Stipend,
    parse_compensation,
    parse_scope,
)


class TestCompensation:
    def test_monthly_fixed(self):
        result = parse_compensation(
            {"salary_type": "MONTHLY_FIXED", "amount": "85000", "currency": "INR"}
        )

        assert isinstance(result, MonthlyFixed)
        assert result.amount == Decimal("85000")

    def test_stipend(self):
        result = parse_compensation({"salary_type": "STIPEND", "amount": 12000, "currency": "INR"})

        assert isinstance(result, Stipend)

    def test_hourly_defaults_currency(self):
        result = parse_compensation({"salary_type": "HOURLY", "rate": "450"})

        assert isinstance(result, Hourly)
        assert result.currency == "INR"

    def test_model_passthrough(self):
        payload = Hourly(rate=Decimal("10"), currency="USD")

        assert parse_compensation(payload) is payload

    def test_unknown_salary_type(self):
        with pytest.raises(ValidationError):
            parse_compensation({"salary_type": "COMMISSION", "amount": "10", "currency": "INR"})

    def test_missing_salary_type(self):
        with pytest.raises(ValidationError):
            parse_compensation({"amount": "10", "currency": "INR"})

    def test_non_positive_amount(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_compensation({"salary_type": "MONTHLY_FIXED", "amount": "0", "currency": "INR"})

        assert "amount" in exc_info.value.field

    def test_lowercase_currency(self):
        with pytest.raises(ValidationError):
            parse_compensation({"salary_type": "STIPEND", "amount": "100", "currency": "inr"})


class TestScope:
    def test_company(self):
        assert parse_scope({"scope": "COMPANY"}) == ScopeAssignment(scope="COMPANY")

    def test_division(self):
        division = uuid4()

        assert parse_scope({"scope": "DIVISION", "division_id": division}).division_id == division

    def test_division_without_id(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_scope({"scope": "DIVISION"})

        assert "division_id is required" in exc_info.value.message

    def test_company_with_division(self):
        with pytest.raises(ValidationError):
            parse_scope({"scope": "COMPANY", "division_id": uuid4()})

    def test_unknown_scope(self):
        with pytest.raises(ValidationError):
            parse_scope({"scope": "TEAM"})
