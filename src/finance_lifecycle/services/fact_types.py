"""Typed payloads for versioned facts.

Compensation is a tagged union on ``salary_type`` so each variant keeps
its own validation instead of an untyped object.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic import ValidationError as PydanticValidationError

from finance_lifecycle.errors import ValidationError
from finance_lifecycle.services.state_machine import scope_errors

CurrencyCode = Annotated[str, Field(pattern=r"^[A-Z]{3}$")]


class FactType(str, Enum):
    """Kinds of versioned facts."""

    COMPENSATION = "COMPENSATION"
    SCOPE = "SCOPE"


class MonthlyFixed(BaseModel):
    """Fixed monthly salary."""

    model_config = ConfigDict(frozen=True)

    salary_type: Literal["MONTHLY_FIXED"] = "MONTHLY_FIXED"
    amount: Decimal = Field(gt=0)
    currency: CurrencyCode


class Stipend(BaseModel):
    """Fixed stipend (interns, trainees)."""

    model_config = ConfigDict(frozen=True)

    salary_type: Literal["STIPEND"] = "STIPEND"
    amount: Decimal = Field(gt=0)
    currency: CurrencyCode


class Hourly(BaseModel):
    """Hourly rate."""

    model_config = ConfigDict(frozen=True)

    salary_type: Literal["HOURLY"] = "HOURLY"
    rate: Decimal = Field(gt=0)
    currency: CurrencyCode = "INR"


CompensationPayload = Annotated[
    Union[MonthlyFixed, Stipend, Hourly],
    Field(discriminator="salary_type"),
]

_compensation_adapter: TypeAdapter[Any] = TypeAdapter(CompensationPayload)


class ScopeAssignment(BaseModel):
    """Scope (company-wide or one division) of an employee's cost."""

    model_config = ConfigDict(frozen=True)

    scope: Literal["COMPANY", "DIVISION"]
    division_id: UUID | None = None

    @model_validator(mode="after")
    def _check_division(self) -> ScopeAssignment:
        errors = scope_errors(self.scope, self.division_id)
        if errors:
            raise ValueError(errors[0])
        return self


def _first_error(exc: PydanticValidationError) -> ValidationError:
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error.get("loc", ())) or None
    return ValidationError(error.get("msg", "Invalid payload"), field=field)


def parse_compensation(data: dict[str, Any] | BaseModel) -> MonthlyFixed | Stipend | Hourly:
    """Validate a compensation payload into its tagged variant."""
    if isinstance(data, (MonthlyFixed, Stipend, Hourly)):
        return data
    try:
        return _compensation_adapter.validate_python(data)
    except PydanticValidationError as exc:
        raise _first_error(exc) from exc


def parse_scope(data: dict[str, Any] | ScopeAssignment) -> ScopeAssignment:
    """Validate a scope assignment payload."""
    if isinstance(data, ScopeAssignment):
        return data
    try:
        return ScopeAssignment.model_validate(data)
    except PydanticValidationError as exc:
        raise _first_error(exc) from exc
