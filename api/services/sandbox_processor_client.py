"""
Payeezy Gateway -- Sandbox Processor Client

Purpose:
- In-memory stand-in for the Payeezy processor
- Does NOT make any network calls
- Returns Payeezy-shaped payloads, so the transaction adapter interprets
  sandbox and live responses through the same code path

Used when PAYEEZY_PROCESSOR_MODE=sandbox and by the test suite.

Behavior:
- Purchases and authorizations are approved unless the card fails a check:
    card type not accepted     -> card_type_not_supported
    card number fails Luhn     -> invalid_card_number
    card_exp in the past       -> card_expired
    security code not 3-4 digits -> invalid_cvv
    billing zip "00000"        -> avs_failed
    same card + amount + merchant_ref seen before -> duplicate_transaction
- Captures, voids and refunds track a per-transaction ledger:
    unknown transaction id/tag -> transaction_not_found
    made under a different stored account than the follow-up's token
                               -> transaction_not_found
    amount above what remains  -> amount_exceeds_available
    void of a captured authorization -> unsupported_transaction_type
- Stored cards live in a per-customer vault. Removed cards are gone.
  Every token issued for a stored card stays bound to that card's
  (customer, card) pair, so ledger entries can be matched to their account.
"""

import datetime
import itertools
import logging

import config
from services.gateway_errors import AuthenticationError, GatewayError, NotFoundError
from services.gateway_models import CardInfo, StoredCardToken
from services.payment_processor_client_interface import (
  TRANSACTION_TYPE_AUTHORIZE,
  TRANSACTION_TYPE_CAPTURE,
  TRANSACTION_TYPE_PURCHASE,
  TRANSACTION_TYPE_REFUND,
  TRANSACTION_TYPE_VOID,
  PaymentProcessorClientInterface,
)

logger = logging.getLogger("payeezy.sandbox")

_AVS_FAILURE_ZIP = "00000"


def passes_luhn_check(card_number):
  """Luhn mod-10 checksum over a digit string."""
  if not card_number or not card_number.isdigit():
    return False
  checksum = 0
  for position, digit_char in enumerate(reversed(card_number)):
    digit = int(digit_char)
    if position % 2 == 1:
      digit *= 2
      if digit > 9:
        digit -= 9
    checksum += digit
  return checksum % 10 == 0


def _current_card_exp():
  today = datetime.date.today()
  return f"{today.year:04d}{today.month:02d}"


class SandboxProcessorClient(PaymentProcessorClientInterface):
  """Deterministic in-memory card processor."""

  def __init__(self, api_secret="sandbox", accepted_card_types=None):
    self.api_secret = api_secret
    self.accepted_card_types = tuple(accepted_card_types or config.ACCEPTED_CARD_TYPES)
    self._transactions = {}
    self._customers = {}
    self._seen_charge_fingerprints = set()
    self._stored_account_by_token_value = {}
    self._id_sequence = itertools.count(1)

  # -----------------------------------------------------------------------
  # Helpers
  # -----------------------------------------------------------------------

  def _check_credentials(self):
    if not self.api_secret:
      raise AuthenticationError("The gateway could not authenticate.")

  def _next_id(self, prefix):
    return f"{prefix}{next(self._id_sequence):08d}"

  def _approved_payload(self, transaction_type, transaction_id, transaction_tag, amount_cents, currency_code):
    return {
      "transaction_status": "approved",
      "validation_status": "success",
      "transaction_type": transaction_type,
      "transaction_id": transaction_id,
      "transaction_tag": transaction_tag,
      "amount": str(amount_cents),
      "currency": currency_code,
      "bank_resp_code": "100",
      "bank_message": "Approved",
      "gateway_resp_code": "00",
      "gateway_message": "Transaction Normal",
    }

  def _rejected_payload(self, transaction_type, error_code, description, transaction_status="Not Processed"):
    return {
      "transaction_status": transaction_status,
      "validation_status": "failed" if transaction_status == "Not Processed" else "success",
      "transaction_type": transaction_type,
      "Error": {"messages": [{"code": error_code, "description": description}]},
    }

  def _find_card_problem(self, card_info):
    """Return (error_code, description) for the first failing card check."""
    if card_info.type and card_info.type.lower() not in self.accepted_card_types:
      return "card_type_not_supported", f"Card type '{card_info.type}' is not supported"
    if not passes_luhn_check(card_info.card_number):
      return "invalid_card_number", "Invalid credit card number"
    if card_info.card_exp < _current_card_exp():
      return "card_expired", "The card has expired"
    security_code = card_info.card_security_code
    if security_code is not None and not (security_code.isdigit() and 3 <= len(security_code) <= 4):
      return "invalid_cvv", "Invalid CVV"
    if card_info.zip == _AVS_FAILURE_ZIP:
      return "avs_failed", "Address verification failed"
    return None

  def _find_stored_card(self, client_reference_id, account_reference_id):
    customer = self._customers.get(client_reference_id)
    if customer is None or account_reference_id not in customer["cards"]:
      raise NotFoundError(
        f"Stored account {client_reference_id}/{account_reference_id} not found",
        processor_code="account_not_found",
      )
    return customer["cards"][account_reference_id]

  def _issue_token(self, client_reference_id, account_reference_id):
    token_value = self._next_id("TOK")
    self._stored_account_by_token_value[token_value] = (client_reference_id, account_reference_id)
    return token_value

  def _stored_account_of(self, payment_source):
    """(customer, card) a payment source belongs to; None for raw cards."""
    if isinstance(payment_source, CardInfo) or payment_source is None:
      return None
    return self._stored_account_by_token_value.get(payment_source.token_value)

  # -----------------------------------------------------------------------
  # Transactions
  # -----------------------------------------------------------------------

  async def create_card_transaction(
    self,
    transaction_type,
    payment_source,
    amount_cents,
    currency_code,
    merchant_reference=None,
  ):
    self._check_credentials()

    if isinstance(payment_source, CardInfo):
      card_problem = self._find_card_problem(payment_source)
      if card_problem:
        error_code, description = card_problem
        logger.info("Sandbox %s rejected: %s", transaction_type, error_code)
        return self._rejected_payload(transaction_type, error_code, description)
      card_fingerprint = payment_source.card_number
    else:
      card_fingerprint = payment_source.token_value

    if merchant_reference:
      charge_fingerprint = (card_fingerprint, amount_cents, merchant_reference, transaction_type)
      if charge_fingerprint in self._seen_charge_fingerprints:
        return self._rejected_payload(
          transaction_type, "duplicate_transaction", "Duplicate transaction", "declined",
        )
      self._seen_charge_fingerprints.add(charge_fingerprint)

    transaction_id = self._next_id("ET")
    transaction_tag = self._next_id("")
    is_purchase = transaction_type == TRANSACTION_TYPE_PURCHASE
    self._transactions[transaction_id] = {
      "transaction_tag": transaction_tag,
      "transaction_type": transaction_type,
      "amount_cents": amount_cents,
      "captured_cents": amount_cents if is_purchase else 0,
      "refunded_cents": 0,
      "state": "captured" if is_purchase else "authorized",
      "authorization_id": None,
      "stored_account": self._stored_account_of(payment_source),
    }

    logger.info(
      "Sandbox %s approved: transaction_id=%s, amount_cents=%s",
      transaction_type, transaction_id, amount_cents,
    )
    return self._approved_payload(
      transaction_type, transaction_id, transaction_tag, amount_cents, currency_code,
    )

  async def create_follow_up_transaction(
    self,
    transaction_type,
    transaction_id,
    transaction_tag,
    amount_cents,
    currency_code,
    merchant_reference=None,
    payment_token=None,
  ):
    self._check_credentials()

    original = self._transactions.get(transaction_id)
    if original is None or (transaction_tag and original["transaction_tag"] != str(transaction_tag)):
      return self._rejected_payload(
        transaction_type, "transaction_not_found", f"Transaction {transaction_id} not found",
      )

    if payment_token is not None:
      follow_up_account = self._stored_account_of(payment_token)
      if follow_up_account is None or original["stored_account"] != follow_up_account:
        logger.info(
          "Sandbox %s rejected: transaction_id=%s not made with this stored account",
          transaction_type, transaction_id,
        )
        return self._rejected_payload(
          transaction_type, "transaction_not_found", f"Transaction {transaction_id} not found",
        )

    if transaction_type == TRANSACTION_TYPE_CAPTURE:
      return self._capture(original, transaction_id, amount_cents, currency_code)
    if transaction_type == TRANSACTION_TYPE_VOID:
      return self._void(original, currency_code)
    if transaction_type == TRANSACTION_TYPE_REFUND:
      return self._refund(original, transaction_id, amount_cents, currency_code)

    return self._rejected_payload(
      transaction_type, "unsupported_transaction_type", f"Unsupported transaction type '{transaction_type}'",
    )

  def _capture(self, authorization, authorization_id, amount_cents, currency_code):
    if authorization["transaction_type"] != TRANSACTION_TYPE_AUTHORIZE or authorization["state"] != "authorized":
      return self._rejected_payload(
        TRANSACTION_TYPE_CAPTURE, "unsupported_transaction_type",
        "Only open authorizations can be captured", "declined",
      )

    if amount_cents is None:
      amount_cents = authorization["amount_cents"]
    if amount_cents > authorization["amount_cents"]:
      return self._rejected_payload(
        TRANSACTION_TYPE_CAPTURE, "amount_exceeds_available",
        "Capture amount exceeds the authorized amount",
      )

    authorization["state"] = "captured"
    authorization["captured_cents"] = amount_cents

    capture_id = self._next_id("ET")
    capture_tag = self._next_id("")
    self._transactions[capture_id] = {
      "transaction_tag": capture_tag,
      "transaction_type": TRANSACTION_TYPE_CAPTURE,
      "amount_cents": amount_cents,
      "captured_cents": amount_cents,
      "refunded_cents": 0,
      "state": "captured",
      "authorization_id": authorization_id,
      "stored_account": authorization["stored_account"],
    }
    return self._approved_payload(
      TRANSACTION_TYPE_CAPTURE, capture_id, capture_tag, amount_cents, currency_code,
    )

  def _void(self, original, currency_code):
    # A captured authorization is settled through its capture record
    is_captured_authorization = (
      original["transaction_type"] == TRANSACTION_TYPE_AUTHORIZE and original["state"] == "captured"
    )
    if original["state"] == "voided" or original["refunded_cents"] > 0 or is_captured_authorization:
      return self._rejected_payload(
        TRANSACTION_TYPE_VOID, "unsupported_transaction_type",
        "Transaction can no longer be voided", "declined",
      )
    original["state"] = "voided"
    return self._approved_payload(
      TRANSACTION_TYPE_VOID, self._next_id("ET"), original["transaction_tag"],
      original["amount_cents"], currency_code,
    )

  def _refund(self, original, transaction_id, amount_cents, currency_code):
    ledger = original
    if original["transaction_type"] == TRANSACTION_TYPE_AUTHORIZE and original["state"] == "captured":
      # Refunding the authorization refunds its capture
      ledger = next(
        record for record in self._transactions.values()
        if record["authorization_id"] == transaction_id
      )

    if ledger["state"] != "captured":
      return self._rejected_payload(
        TRANSACTION_TYPE_REFUND, "unsupported_transaction_type",
        "Only captured transactions can be refunded", "declined",
      )

    refundable_cents = ledger["captured_cents"] - ledger["refunded_cents"]
    if amount_cents is None:
      amount_cents = refundable_cents
    if amount_cents > refundable_cents:
      return self._rejected_payload(
        TRANSACTION_TYPE_REFUND, "amount_exceeds_available",
        "Refund amount exceeds the captured amount",
      )

    ledger["refunded_cents"] += amount_cents
    return self._approved_payload(
      TRANSACTION_TYPE_REFUND, self._next_id("ET"), self._next_id(""), amount_cents, currency_code,
    )

  # -----------------------------------------------------------------------
  # Offsite card vault
  # -----------------------------------------------------------------------

  async def tokenize_card(self, card_info, contact_info, client_reference_id=None):
    self._check_credentials()

    card_problem = self._find_card_problem(card_info)
    if card_problem:
      error_code, description = card_problem
      raise GatewayError(description, processor_code=error_code)

    if client_reference_id is None:
      client_reference_id = self._next_id("CUS")
      self._customers[client_reference_id] = {"contact": contact_info, "cards": {}}
    elif client_reference_id not in self._customers:
      raise NotFoundError(
        f"Customer {client_reference_id} not found", processor_code="account_not_found",
      )

    account_reference_id = self._next_id("CARD")
    self._customers[client_reference_id]["cards"][account_reference_id] = {
      "card": card_info,
      "token_value": self._issue_token(client_reference_id, account_reference_id),
    }
    logger.info(
      "Sandbox card stored: customer_id=%s, card_id=%s, last4=%s",
      client_reference_id, account_reference_id, card_info.last_four,
    )
    return {
      "client_reference_id": client_reference_id,
      "account_reference_id": account_reference_id,
    }

  async def update_stored_card(
    self,
    card_info,
    contact_info,
    client_reference_id,
    account_reference_id,
  ):
    self._check_credentials()

    stored_card = self._find_stored_card(client_reference_id, account_reference_id)
    if card_info.account_changed:
      stored_card["card"] = card_info
      stored_card["token_value"] = self._issue_token(client_reference_id, account_reference_id)
    else:
      # Billing details only; keep the stored number and expiry
      stored_card["card"] = card_info.model_copy(
        update={
          "card_number": stored_card["card"].card_number,
          "card_exp": stored_card["card"].card_exp,
        }
      )
    self._customers[client_reference_id]["contact"] = contact_info
    return {
      "client_reference_id": client_reference_id,
      "account_reference_id": account_reference_id,
    }

  async def remove_stored_card(self, client_reference_id, account_reference_id):
    self._check_credentials()

    self._find_stored_card(client_reference_id, account_reference_id)
    del self._customers[client_reference_id]["cards"][account_reference_id]
    logger.info(
      "Sandbox card removed: customer_id=%s, card_id=%s",
      client_reference_id, account_reference_id,
    )
    return {
      "client_reference_id": client_reference_id,
      "account_reference_id": account_reference_id,
    }

  async def resolve_stored_card(self, client_reference_id, account_reference_id):
    self._check_credentials()

    stored_card = self._find_stored_card(client_reference_id, account_reference_id)
    card_info = stored_card["card"]
    return StoredCardToken(
      token_value=stored_card["token_value"],
      card_type=card_info.type,
      cardholder_name=card_info.cardholder_name,
      card_exp=card_info.card_exp,
    )
