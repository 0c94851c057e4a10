"""
Payeezy Gateway -- Domain Models

Normalized data passed across the adapter boundary. The host hands us
CardInfo / ContactInfo / InvoiceAmount; every money-moving operation hands
back a TransactionResult; offsite storage hands back a StoredAccountRef.

Card data is immutable and never persisted by the gateway.
"""

import enum
import re
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_CARD_EXP_PATTERN = re.compile(r"^\d{4}(0[1-9]|1[0-2])$")


class TransactionStatus(str, enum.Enum):
  """The only statuses a TransactionResult may carry."""

  APPROVED = "approved"
  DECLINED = "declined"
  VOID = "void"
  PENDING = "pending"
  RECONCILED = "reconciled"
  REFUNDED = "refunded"
  RETURNED = "returned"


class CardInfo(BaseModel):
  """Credit card and cardholder billing address."""

  model_config = ConfigDict(frozen=True)

  first_name: str = ""
  last_name: str = ""
  card_number: str
  card_exp: str = Field(description="Expiration date in yyyymm format")
  card_security_code: Optional[str] = None
  type: Optional[str] = Field(default=None, description="Card network, e.g. visa")
  address1: Optional[str] = None
  address2: Optional[str] = None
  city: Optional[str] = None
  state: Optional[str] = Field(default=None, description="2 or 3-character state code")
  country: Optional[str] = Field(default=None, description="2-character country code")
  zip: Optional[str] = None
  # Update flow only: card number or expiry changed since it was stored
  account_changed: bool = False

  @field_validator("card_number")
  @classmethod
  def _strip_card_number(cls, value):
    digits = re.sub(r"[\s-]", "", value)
    if not digits.isdigit():
      raise ValueError("card_number must contain only digits")
    return digits

  @field_validator("card_exp")
  @classmethod
  def _check_card_exp(cls, value):
    if not _CARD_EXP_PATTERN.match(value):
      raise ValueError("card_exp must be in yyyymm format")
    return value

  @property
  def exp_year(self):
    return int(self.card_exp[:4])

  @property
  def exp_month(self):
    return int(self.card_exp[4:])

  @property
  def cardholder_name(self):
    return f"{self.first_name} {self.last_name}".strip()

  @property
  def last_four(self):
    return self.card_number[-4:]


class ContactInfo(BaseModel):
  """Billing contact the offsite account is set up under."""

  model_config = ConfigDict(frozen=True)

  id: Optional[str] = None
  client_id: Optional[str] = None
  first_name: str = ""
  last_name: str = ""
  company: Optional[str] = None
  email: Optional[str] = None
  address1: Optional[str] = None
  address2: Optional[str] = None
  city: Optional[str] = None
  state: Optional[str] = None
  country: Optional[str] = None
  zip: Optional[str] = None


class InvoiceAmount(BaseModel):
  """Portion of a payment attributed to one invoice."""

  model_config = ConfigDict(frozen=True)

  id: str
  amount: Decimal

  @field_validator("id", mode="before")
  @classmethod
  def _coerce_id(cls, value):
    return str(value)


class TransactionResult(BaseModel):
  """Uniform return shape for every money-moving operation."""

  status: TransactionStatus
  reference_id: Optional[str] = None
  transaction_id: Optional[str] = None
  message: Optional[str] = None
  # Common error behind a decline, so the host can flag the input field
  error_type: Optional[str] = None
  error_field: Optional[str] = None


class StoredAccountRef(BaseModel):
  """A tokenized payment method held by the processor."""

  model_config = ConfigDict(frozen=True)

  client_reference_id: str
  account_reference_id: str


class StoredCardToken(BaseModel):
  """What resolving a StoredAccountRef yields: a chargeable card token."""

  model_config = ConfigDict(frozen=True)

  token_value: str
  card_type: Optional[str] = None
  cardholder_name: str = ""
  card_exp: str

  @field_validator("card_exp")
  @classmethod
  def _check_card_exp(cls, value):
    if not _CARD_EXP_PATTERN.match(value):
      raise ValueError("card_exp must be in yyyymm format")
    return value


class GatewaySettings(BaseModel):
  """Validated gateway meta data."""

  api_key: str
  stored: bool = False


def normalize_invoice_amounts(invoice_amounts) -> List[InvoiceAmount]:
  """Accept InvoiceAmount models or plain {"id", "amount"} dicts."""
  if not invoice_amounts:
    return []
  return [
    invoice if isinstance(invoice, InvoiceAmount) else InvoiceAmount(**invoice)
    for invoice in invoice_amounts
  ]
