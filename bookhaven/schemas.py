# schemas.py - request payload schemas
# JSON bodies use camelCase keys; the models expose snake_case fields.

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from flask import request
import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from bookhaven.errors import ValidationError

EMAIL_PATTERN = r"^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$"


class Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


def parse_body(model):
    """Validate the current request's JSON body against ``model``."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "body"
        raise ValidationError(f"Invalid {field}: {first.get('msg', 'invalid value')}") from exc


def _naive_utc(value):
    if value is not None and value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# --- Accounts ---
class RegisterIn(Payload):
    username: str = Field(min_length=3, max_length=80)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=200)
    password: str = Field(min_length=6, max_length=128)


class LoginIn(Payload):
    email: str
    password: str


class UsernameIn(Payload):
    username: str = Field(min_length=3, max_length=80)


class ContactIn(Payload):
    name: str = Field(min_length=1, max_length=120)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=200)
    subject: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=5000)


# --- Catalog ---
class BookIn(Payload):
    title: str = Field(min_length=1, max_length=200)
    author: str = Field(min_length=1, max_length=120)
    isbn: str = Field(min_length=10, max_length=20)
    price: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    publication_year: int = Field(ge=1000, le=9999)
    description: Optional[str] = None
    category: str = Field(min_length=1, max_length=40)
    image_path: Optional[str] = Field(default=None, max_length=200)


class BookUpdate(Payload):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    author: Optional[str] = Field(default=None, min_length=1, max_length=120)
    isbn: Optional[str] = Field(default=None, min_length=10, max_length=20)
    price: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    publication_year: Optional[int] = Field(default=None, ge=1000, le=9999)
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=40)
    image_path: Optional[str] = Field(default=None, max_length=200)


class SaleIn(Payload):
    discount_percentage: Decimal = Field(ge=0, le=100, max_digits=5, decimal_places=2)
    sale_start_date: datetime
    sale_end_date: datetime

    @field_validator("sale_start_date", "sale_end_date")
    @classmethod
    def to_naive_utc(cls, value):
        return _naive_utc(value)

    @model_validator(mode="after")
    def check_window(self):
        if self.sale_end_date <= self.sale_start_date:
            raise ValueError("sale end date must be after the start date")
        return self


# --- Cart and orders ---
class CartAddIn(Payload):
    book_id: int = Field(gt=0)
    quantity: int = Field(default=1, ge=1)


class QuantityIn(Payload):
    quantity: int = Field(ge=1)


class OrderIn(Payload):
    book_id: int


class ApproveIn(Payload):
    claim_code: str = Field(min_length=1)


class ClaimCodeUpdateIn(Payload):
    order_id: int = Field(gt=0)
    new_claim_code: str = Field(min_length=12, max_length=64)
