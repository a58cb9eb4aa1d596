"""
Typed request payloads.

Each request type carries its own ``content`` shape. ``parse_content`` turns
the raw mapping received at creation into the matching dataclass, raising
``ValidationError`` with a field → message map when a required field is
missing or malformed. Completion handlers read the typed form back with the
same function, so they never probe an untyped bag for keys.

Keys a payload does not model are kept in ``extra`` and written back
unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from decimal import Decimal, InvalidOperation

from coopflow.core.exceptions import ValidationError
from coopflow.models.request import (
    ACCOUNT_CLOSURE,
    BIODATA_UPDATE,
    LOAN_APPLICATION,
    PERSONAL_SAVINGS_CREATION,
    PERSONAL_SAVINGS_WITHDRAWAL,
    SAVINGS_WITHDRAWAL,
)

SUBJECT_LINK_FIELDS = ("biodata_id", "savings_id", "loan_id", "personal_savings_id")

# Subject link that must be present when a request of this type is created
REQUIRED_SUBJECT_LINKS = {
    PERSONAL_SAVINGS_CREATION: "biodata_id",
    BIODATA_UPDATE: "biodata_id",
    ACCOUNT_CLOSURE: "biodata_id",
    PERSONAL_SAVINGS_WITHDRAWAL: "personal_savings_id",
}


# ── Field coercion helpers ───────────────────────────────────────────────────


def _amount(raw, key, errors, *, required=True, positive=True):
    value = raw.get(key)
    if value is None or value == "":
        if required:
            errors[key] = "required"
        return None
    if isinstance(value, bool):
        errors[key] = "must be a number"
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        errors[key] = "must be a number"
        return None
    if not amount.is_finite():
        errors[key] = "must be a number"
        return None
    if positive and amount <= 0:
        errors[key] = "must be greater than 0"
        return None
    if amount < 0:
        errors[key] = "must not be negative"
        return None
    return amount


def _positive_int(raw, key, errors):
    value = raw.get(key)
    if value is None or value == "":
        errors[key] = "required"
        return None
    if isinstance(value, bool):
        errors[key] = "must be an integer"
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        errors[key] = "must be an integer"
        return None
    if isinstance(value, float) and value != number:
        errors[key] = "must be an integer"
        return None
    if number <= 0:
        errors[key] = "must be greater than 0"
        return None
    return number


def _text(raw, key, errors, *, required=False):
    value = raw.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            errors[key] = "required"
        return None
    if not isinstance(value, (str, int)):
        errors[key] = "must be a string"
        return None
    return str(value).strip()


def parse_amount(value, key="amount") -> Decimal:
    """Coerce a single positive money amount, raising ValidationError."""
    errors: dict[str, str] = {}
    amount = _amount({key: value}, key, errors)
    if errors:
        raise ValidationError(f"Invalid {key}", details=errors)
    return amount


def _json_number(value):
    if value is None:
        return None
    if value == value.to_integral_value():
        return int(value)
    return float(value)


# ── Payloads ─────────────────────────────────────────────────────────────────


@dataclass
class _Content:
    extra: dict = field(default_factory=dict)

    @classmethod
    def _known_keys(cls):
        return {f.name for f in fields(cls)} - {"extra"}

    @classmethod
    def _extra(cls, raw):
        known = cls._known_keys()
        return {k: v for k, v in raw.items() if k not in known}

    def _fields_dict(self):
        return {}

    def to_dict(self):
        out = dict(self.extra)
        out.update({k: v for k, v in self._fields_dict().items() if v is not None})
        return out


@dataclass
class LoanApplicationContent(_Content):
    amount: Decimal | None = None
    tenure_months: int | None = None
    loan_type_id: str | None = None
    purpose: str | None = None

    @classmethod
    def from_dict(cls, raw, errors):
        return cls(
            amount=_amount(raw, "amount", errors),
            tenure_months=_positive_int(raw, "tenure_months", errors),
            loan_type_id=_text(raw, "loan_type_id", errors),
            purpose=_text(raw, "purpose", errors),
            extra=cls._extra(raw),
        )

    def _fields_dict(self):
        return {
            "amount": _json_number(self.amount),
            "tenure_months": self.tenure_months,
            "loan_type_id": self.loan_type_id,
            "purpose": self.purpose,
        }


@dataclass
class SavingsWithdrawalContent(_Content):
    amount: Decimal | None = None
    reason: str | None = None

    @classmethod
    def from_dict(cls, raw, errors):
        return cls(
            amount=_amount(raw, "amount", errors),
            reason=_text(raw, "reason", errors),
            extra=cls._extra(raw),
        )

    def _fields_dict(self):
        return {"amount": _json_number(self.amount), "reason": self.reason}


@dataclass
class PersonalSavingsCreationContent(_Content):
    erp_id: str | None = None
    plan_type_id: str | None = None
    plan_name: str | None = None
    target_amount: Decimal | None = None

    @classmethod
    def from_dict(cls, raw, errors):
        return cls(
            erp_id=_text(raw, "erp_id", errors, required=True),
            plan_type_id=_text(raw, "plan_type_id", errors, required=True),
            plan_name=_text(raw, "plan_name", errors),
            target_amount=_amount(raw, "target_amount", errors, required=False),
            extra=cls._extra(raw),
        )

    def _fields_dict(self):
        return {
            "erp_id": self.erp_id,
            "plan_type_id": self.plan_type_id,
            "plan_name": self.plan_name,
            "target_amount": _json_number(self.target_amount),
        }


@dataclass
class PersonalSavingsWithdrawalContent(_Content):
    amount: Decimal | None = None
    reason: str | None = None
    plan_name: str | None = None
    current_balance: Decimal | None = None  # snapshot at submission, display only

    @classmethod
    def from_dict(cls, raw, errors):
        return cls(
            amount=_amount(raw, "amount", errors),
            reason=_text(raw, "reason", errors),
            plan_name=_text(raw, "plan_name", errors),
            current_balance=_amount(raw, "current_balance", errors, required=False, positive=False),
            extra=cls._extra(raw),
        )

    def _fields_dict(self):
        return {
            "amount": _json_number(self.amount),
            "reason": self.reason,
            "plan_name": self.plan_name,
            "current_balance": _json_number(self.current_balance),
        }


@dataclass
class AccountClosureContent(_Content):
    reason: str | None = None

    @classmethod
    def from_dict(cls, raw, errors):
        return cls(reason=_text(raw, "reason", errors), extra=cls._extra(raw))

    def _fields_dict(self):
        return {"reason": self.reason}


@dataclass
class BiodataUpdateContent(_Content):
    changes: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw, errors):
        changes = raw.get("changes") or {}
        if not isinstance(changes, dict):
            errors["changes"] = "must be an object"
            changes = {}
        return cls(changes=changes, extra=cls._extra(raw))

    def _fields_dict(self):
        return {"changes": self.changes}


@dataclass
class GenericContent(_Content):
    """Free-form payload for types without a modelled shape."""

    @classmethod
    def from_dict(cls, raw, errors):
        return cls(extra=dict(raw))


CONTENT_TYPES = {
    LOAN_APPLICATION: LoanApplicationContent,
    SAVINGS_WITHDRAWAL: SavingsWithdrawalContent,
    PERSONAL_SAVINGS_CREATION: PersonalSavingsCreationContent,
    PERSONAL_SAVINGS_WITHDRAWAL: PersonalSavingsWithdrawalContent,
    ACCOUNT_CLOSURE: AccountClosureContent,
    BIODATA_UPDATE: BiodataUpdateContent,
}


def parse_content(request_type, raw):
    """Parse ``raw`` into the payload class registered for ``request_type``.

    Raises:
        ValidationError: with ``details`` keyed by ``content.<field>``.
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValidationError("Request content must be an object",
                              details={"content": "must be an object"})

    content_cls = CONTENT_TYPES.get(request_type, GenericContent)
    errors: dict[str, str] = {}
    content = content_cls.from_dict(raw, errors)
    if errors:
        raise ValidationError(
            f"Invalid content for {request_type}",
            details={f"content.{k}": v for k, v in errors.items()},
        )
    return content


def validate_subject_links(request_type, links):
    """Check the creation-time subject links for ``request_type``.

    At most one link may be populated; types listed in
    ``REQUIRED_SUBJECT_LINKS`` must populate theirs.
    """
    links = links or {}
    unknown = set(links) - set(SUBJECT_LINK_FIELDS)
    if unknown:
        raise ValidationError(
            "Unknown subject link",
            details={k: "not a subject link" for k in sorted(unknown)},
        )
    populated = {k: v for k, v in links.items() if v not in (None, "")}
    if len(populated) > 1:
        raise ValidationError(
            "At most one subject link may be set",
            details={k: "conflicts with another subject link" for k in sorted(populated)},
        )
    required = REQUIRED_SUBJECT_LINKS.get(request_type)
    if required and required not in populated:
        raise ValidationError(
            f"{required} is required for {request_type}",
            details={required: "required"},
        )
    return populated
