"""
Donation request validation.

The API takes camelCase JSON; the form works on snake_case fields. JSON
types are checked first (isAnonymous must be a boolean, amount a number,
quantity an integer, the rest strings), then values are stringified and
bound so WTForms runs its usual range and format validators.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Mapping, Optional

from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import BooleanField, DecimalField, IntegerField, StringField
from wtforms.validators import Email, InputRequired, Length, NumberRange, Regexp, StopValidation
from wtforms.validators import Optional as OptionalValue

from flowaid.errors import ValidationError
from flowaid.models import MAX_AMOUNT, MAX_QUANTITY

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

# payload key -> form field name
FIELD_MAP = {
    "productId": "product_id",
    "schoolId": "school_id",
    "amount": "amount",
    "quantity": "quantity",
    "isAnonymous": "is_anonymous",
    "anonymousEmail": "anonymous_email",
    "anonymousName": "anonymous_name",
}
_PAYLOAD_KEY = {v: k for k, v in FIELD_MAP.items()}

# payload key -> (accepted JSON types, message)
JSON_TYPES = {
    "productId": ((str,), "productId must be a string"),
    "schoolId": ((str,), "schoolId must be a string"),
    "amount": ((int, float), "amount must be a number"),
    "quantity": ((int,), "quantity must be an integer"),
    "isAnonymous": ((bool,), "isAnonymous must be a boolean"),
    "anonymousEmail": ((str,), "anonymousEmail must be a string"),
    "anonymousName": ((str,), "anonymousName must be a string"),
}

_CENT = Decimal("0.01")


def _strip(v: Any) -> Any:
    return v.strip() if isinstance(v, str) else v


def _amount_bounds(form, field) -> None:
    v = field.data
    if v is None:
        # DecimalField already recorded "Not a valid decimal value."
        raise StopValidation()
    if not v.is_finite():
        raise StopValidation("amount must be a finite number")
    if v <= 0:
        raise StopValidation("amount must be greater than 0")
    if v > MAX_AMOUNT:
        raise StopValidation("amount must not exceed 1,000,000")
    if v.quantize(_CENT, rounding=ROUND_HALF_UP) <= 0:
        raise StopValidation("amount must be at least 0.01")


class DonationForm(FlaskForm):
    class Meta:
        csrf = False

    product_id = StringField(
        "productId",
        filters=[_strip],
        validators=[
            InputRequired(message="productId is required"),
            Regexp(UUID_PATTERN, message="InvalidFormat: productId must be a valid UUID"),
        ],
    )
    school_id = StringField(
        "schoolId",
        filters=[_strip],
        validators=[
            OptionalValue(),
            Regexp(UUID_PATTERN, message="InvalidFormat: schoolId must be a valid UUID"),
        ],
    )
    amount = DecimalField(
        "amount",
        places=2,
        validators=[InputRequired(message="amount is required"), _amount_bounds],
    )
    quantity = IntegerField(
        "quantity",
        default=1,
        validators=[
            OptionalValue(),
            NumberRange(min=1, max=MAX_QUANTITY, message="quantity must be between 1 and 10,000"),
        ],
    )
    is_anonymous = BooleanField(
        "isAnonymous",
        default=False,
        false_values=(False, "false", "", "0", "off", "no"),
    )
    anonymous_email = StringField(
        "anonymousEmail",
        filters=[_strip],
        validators=[
            OptionalValue(),
            Length(max=255, message="anonymousEmail must be at most 255 characters"),
            Email(message="anonymousEmail must be a valid email address"),
        ],
    )
    anonymous_name = StringField(
        "anonymousName",
        filters=[_strip],
        validators=[
            OptionalValue(),
            Length(max=100, message="anonymousName must be at most 100 characters"),
        ],
    )

    def validate(self, extra_validators=None) -> bool:
        ok = super().validate(extra_validators=extra_validators)
        if self.is_anonymous.data and not self.anonymous_email.data and not self.anonymous_email.errors:
            self.anonymous_email.errors = list(self.anonymous_email.errors) + [
                "anonymousEmail is required for anonymous donations"
            ]
            ok = False
        return ok


@dataclass(frozen=True)
class DonationRequest:
    product_id: str
    amount: Decimal
    quantity: int = 1
    school_id: Optional[str] = None
    is_anonymous: bool = False
    anonymous_email: Optional[str] = None
    anonymous_name: Optional[str] = None

    @classmethod
    def from_form(cls, form: DonationForm) -> "DonationRequest":
        anonymous = bool(form.is_anonymous.data)
        return cls(
            product_id=form.product_id.data.lower(),
            amount=Decimal(form.amount.data).quantize(_CENT, rounding=ROUND_HALF_UP),
            quantity=int(form.quantity.data or 1),
            school_id=(form.school_id.data or "").lower() or None,
            is_anonymous=anonymous,
            anonymous_email=((form.anonymous_email.data or "").lower() or None) if anonymous else None,
            anonymous_name=(form.anonymous_name.data or None) if anonymous else None,
        )


def _type_errors(payload: Mapping[str, Any]) -> Dict[str, List[str]]:
    out: Dict[str, List[str]] = {}
    for key, (types, message) in JSON_TYPES.items():
        v = payload.get(key)
        if v is None:
            continue
        # bool is an int subclass; only isAnonymous takes it
        if isinstance(v, bool) and bool not in types:
            out[key] = [message]
        elif not isinstance(v, types):
            out[key] = [message]
    return out


def _formdata(payload: Mapping[str, Any], skip=()) -> MultiDict:
    """Stringify type-checked JSON scalars so WTForms coerces them like posted form values."""
    items = []
    for key, field_name in FIELD_MAP.items():
        if key in skip or payload.get(key) is None:
            continue
        v = payload[key]
        if isinstance(v, bool):
            v = "true" if v else "false"
        elif not isinstance(v, str):
            v = str(v)
        items.append((field_name, v))
    return MultiDict(items)


def _collect_errors(form: DonationForm) -> Dict[str, List[str]]:
    out: Dict[str, List[str]] = {}
    for name, errs in form.errors.items():
        if errs:
            out[_PAYLOAD_KEY.get(name, name)] = [str(e) for e in errs]
    return out


def validate_donation_payload(payload: Any) -> DonationRequest:
    """
    Validate an untyped request body. Fail closed: any field error rejects the
    whole request with a field-qualified ValidationError.
    Needs an app context (Flask-WTF reads i18n config from current_app).
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be a JSON object", {"body": ["expected a JSON object"]})

    type_errors = _type_errors(payload)
    form = DonationForm(formdata=_formdata(payload, skip=type_errors))
    if not form.validate() or type_errors:
        errors = _collect_errors(form)
        errors.update(type_errors)
        raise ValidationError.from_fields(errors)
    return DonationRequest.from_form(form)
