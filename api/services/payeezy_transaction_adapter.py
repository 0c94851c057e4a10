"""
Payeezy Gateway -- Transaction Adapter

Maps normalized card operations onto a payment processor client and maps
the processor's payloads back onto TransactionResult.

One adapter type implements both capability sets (direct card processing
and offsite card storage). Every stored-card operation resolves the stored
account first and then runs the same code path as its direct counterpart.
Stored capture/void/refund hand the resolved token to the processor, which
reports a transaction made under any other account as not found.

Result statuses by operation (when the processor approves):
  purchase  -> approved
  authorize -> pending   (awaiting capture)
  capture   -> approved
  void      -> void
  refund    -> refunded
Anything the processor rejects -> declined, with the common error message.

Raised instead of returned:
  NotFoundError       -- transaction / stored account unknown to the processor
  InvalidAmountError  -- non-positive amount, or more than is available
  AuthenticationError -- processor rejected the API credentials
  GatewayError        -- transport failure or unreadable response

The adapter keeps no transaction state; it relays what the processor reports.
"""

import collections
import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

import config
from services.gateway_errors import InvalidAmountError, NotFoundError
from services.gateway_messages import (
  EN_US_MESSAGES,
  INVALID_AMOUNT_PROCESSOR_CODES,
  classify_processor_error_code,
  get_common_error,
)
from services.gateway_models import (
  GatewaySettings,
  StoredAccountRef,
  TransactionResult,
  TransactionStatus,
  normalize_invoice_amounts,
)
from services.gateway_settings_service import build_gateway_settings
from services.merchant_capability_interfaces import DirectCardProcessing, OffsiteCardStorage
from services.payeezy_processor_client import PayeezyProcessorClient, get_api_base_url_for_mode
from services.payment_processor_client_interface import (
  TRANSACTION_TYPE_AUTHORIZE,
  TRANSACTION_TYPE_CAPTURE,
  TRANSACTION_TYPE_PURCHASE,
  TRANSACTION_TYPE_REFUND,
  TRANSACTION_TYPE_VOID,
  extract_processor_error_messages,
)
from services.sandbox_processor_client import SandboxProcessorClient

logger = logging.getLogger("payeezy.adapter")

_APPROVED_STATUS_BY_TRANSACTION_TYPE = {
  TRANSACTION_TYPE_PURCHASE: TransactionStatus.APPROVED,
  TRANSACTION_TYPE_AUTHORIZE: TransactionStatus.PENDING,
  TRANSACTION_TYPE_CAPTURE: TransactionStatus.APPROVED,
  TRANSACTION_TYPE_VOID: TransactionStatus.VOID,
  TRANSACTION_TYPE_REFUND: TransactionStatus.REFUNDED,
}

_CENTS = Decimal("0.01")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def amount_to_cents(amount):
  """
  Convert a major-unit amount (10.00, "10.00", Decimal) to integer cents.
  Raises InvalidAmountError for non-numeric or non-positive amounts.
  """
  try:
    quantized_amount = Decimal(str(amount)).quantize(_CENTS, rounding=ROUND_HALF_UP)
  except (InvalidOperation, ValueError) as conversion_error:
    raise InvalidAmountError(f"Invalid amount: {amount!r}") from conversion_error

  if not quantized_amount.is_finite() or quantized_amount <= 0:
    raise InvalidAmountError(f"Amount must be greater than zero: {amount!r}")

  return int(quantized_amount * 100)


def build_merchant_reference(invoice_amounts):
  """Reconciliation reference listing the invoice ids a payment covers."""
  invoices = normalize_invoice_amounts(invoice_amounts)
  if not invoices:
    return None
  return "inv:" + ",".join(invoice.id for invoice in invoices)


# ---------------------------------------------------------------------------
# Processor client selection
# ---------------------------------------------------------------------------

_sandbox_clients_by_api_secret = collections.OrderedDict()


def create_processor_client(api_secret, processor_mode=None):
  """
  Build the processor client for a processor mode (config default).

  Sandbox clients are shared per API secret so their ledger survives
  between requests. At most PAYEEZY_SANDBOX_MAX_CLIENTS are kept; the
  least recently used secret's ledger is dropped first.
  """
  processor_mode = processor_mode or config.PAYEEZY_PROCESSOR_MODE
  if processor_mode == "sandbox":
    sandbox_client = _sandbox_clients_by_api_secret.pop(api_secret, None)
    if sandbox_client is None:
      sandbox_client = SandboxProcessorClient(api_secret)
    _sandbox_clients_by_api_secret[api_secret] = sandbox_client
    while len(_sandbox_clients_by_api_secret) > config.PAYEEZY_SANDBOX_MAX_CLIENTS:
      _sandbox_clients_by_api_secret.popitem(last=False)
      logger.info("Sandbox ledger dropped for an idle API secret (%d kept)", len(_sandbox_clients_by_api_secret))
    return sandbox_client
  return PayeezyProcessorClient(api_secret, api_base_url=get_api_base_url_for_mode(processor_mode))


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class PayeezyTransactionAdapter(DirectCardProcessing, OffsiteCardStorage):
  """Payeezy credit card gateway: direct and offsite-stored card processing."""

  def __init__(self, settings, processor_client=None, messages=EN_US_MESSAGES, currency_code=None):
    if not isinstance(settings, GatewaySettings):
      settings = build_gateway_settings(settings, messages)
    self.settings = settings
    self.messages = messages
    self.processor_client = processor_client or create_processor_client(settings.api_key)
    self.currency_code = currency_code or config.DEFAULT_CURRENCY_CODE

  def set_currency(self, currency_code):
    """Set the ISO 4217 currency code used for subsequent payments."""
    if not currency_code or len(currency_code) != 3 or not currency_code.isalpha():
      raise ValueError(f"Invalid ISO 4217 currency code: {currency_code!r}")
    self.currency_code = currency_code.upper()

  def requires_cc_storage(self):
    return self.settings.stored

  def requires_customer_present(self):
    """Stored cards can be autodebited without the customer present."""
    return False

  # -----------------------------------------------------------------------
  # Direct card processing
  # -----------------------------------------------------------------------

  async def process_cc(self, card_info, amount, invoice_amounts=None):
    return await self._run_card_transaction(
      TRANSACTION_TYPE_PURCHASE, card_info, amount, invoice_amounts,
    )

  async def authorize_cc(self, card_info, amount, invoice_amounts=None):
    return await self._run_card_transaction(
      TRANSACTION_TYPE_AUTHORIZE, card_info, amount, invoice_amounts,
    )

  async def capture_cc(self, reference_id, transaction_id, amount, invoice_amounts=None):
    return await self._run_follow_up_transaction(
      TRANSACTION_TYPE_CAPTURE,
      reference_id,
      transaction_id,
      amount_to_cents(amount),
      build_merchant_reference(invoice_amounts),
    )

  async def void_cc(self, reference_id, transaction_id):
    return await self._run_follow_up_transaction(
      TRANSACTION_TYPE_VOID, reference_id, transaction_id, None, None,
    )

  async def refund_cc(self, reference_id, transaction_id, amount):
    return await self._run_follow_up_transaction(
      TRANSACTION_TYPE_REFUND, reference_id, transaction_id, amount_to_cents(amount), None,
    )

  # -----------------------------------------------------------------------
  # Offsite card storage
  # -----------------------------------------------------------------------

  async def store_cc(self, card_info, contact_info, client_reference_id=None):
    stored_account_data = await self.processor_client.tokenize_card(
      card_info, contact_info, client_reference_id,
    )
    stored_account = StoredAccountRef(**stored_account_data)
    logger.info(
      "Card stored offsite: client_reference_id=%s, account_reference_id=%s",
      stored_account.client_reference_id, stored_account.account_reference_id,
    )
    return stored_account

  async def update_cc(self, card_info, contact_info, client_reference_id, account_reference_id):
    stored_account_data = await self.processor_client.update_stored_card(
      card_info, contact_info, client_reference_id, account_reference_id,
    )
    return StoredAccountRef(**stored_account_data)

  async def remove_cc(self, client_reference_id, account_reference_id):
    stored_account_data = await self.processor_client.remove_stored_card(
      client_reference_id, account_reference_id,
    )
    logger.info(
      "Offsite card removed: client_reference_id=%s, account_reference_id=%s",
      client_reference_id, account_reference_id,
    )
    return StoredAccountRef(**stored_account_data)

  async def process_stored_cc(self, stored_account, amount, invoice_amounts=None):
    stored_card_token = await self._resolve_stored_account(stored_account)
    return await self._run_card_transaction(
      TRANSACTION_TYPE_PURCHASE, stored_card_token, amount, invoice_amounts,
    )

  async def authorize_stored_cc(self, stored_account, amount, invoice_amounts=None):
    stored_card_token = await self._resolve_stored_account(stored_account)
    return await self._run_card_transaction(
      TRANSACTION_TYPE_AUTHORIZE, stored_card_token, amount, invoice_amounts,
    )

  async def capture_stored_cc(
    self,
    stored_account,
    transaction_reference_id,
    transaction_id,
    amount,
    invoice_amounts=None,
  ):
    amount_cents = amount_to_cents(amount)
    stored_card_token = await self._resolve_stored_account(stored_account)
    return await self._run_follow_up_transaction(
      TRANSACTION_TYPE_CAPTURE,
      transaction_reference_id,
      transaction_id,
      amount_cents,
      build_merchant_reference(invoice_amounts),
      stored_card_token,
    )

  async def void_stored_cc(self, stored_account, transaction_reference_id, transaction_id):
    stored_card_token = await self._resolve_stored_account(stored_account)
    return await self._run_follow_up_transaction(
      TRANSACTION_TYPE_VOID, transaction_reference_id, transaction_id, None, None, stored_card_token,
    )

  async def refund_stored_cc(self, stored_account, transaction_reference_id, transaction_id, amount):
    amount_cents = amount_to_cents(amount)
    stored_card_token = await self._resolve_stored_account(stored_account)
    return await self._run_follow_up_transaction(
      TRANSACTION_TYPE_REFUND, transaction_reference_id, transaction_id, amount_cents, None,
      stored_card_token,
    )

  # -----------------------------------------------------------------------
  # Internals
  # -----------------------------------------------------------------------

  async def _resolve_stored_account(self, stored_account):
    """StoredAccountRef -> StoredCardToken. NotFoundError if unknown."""
    if not isinstance(stored_account, StoredAccountRef):
      stored_account = StoredAccountRef(**stored_account)
    return await self.processor_client.resolve_stored_card(
      stored_account.client_reference_id, stored_account.account_reference_id,
    )

  async def _run_card_transaction(self, transaction_type, payment_source, amount, invoice_amounts):
    amount_cents = amount_to_cents(amount)
    processor_payload = await self.processor_client.create_card_transaction(
      transaction_type,
      payment_source,
      amount_cents,
      self.currency_code,
      build_merchant_reference(invoice_amounts),
    )
    return self._interpret_processor_response(transaction_type, processor_payload)

  async def _run_follow_up_transaction(
    self,
    transaction_type,
    reference_id,
    transaction_id,
    amount_cents,
    merchant_reference,
    stored_card_token=None,
  ):
    """stored_card_token scopes the follow-up to one stored account."""
    if not transaction_id:
      raise NotFoundError(
        self.messages["error.transaction_not_found"], processor_code="transaction_not_found",
      )
    processor_payload = await self.processor_client.create_follow_up_transaction(
      transaction_type,
      transaction_id,
      reference_id,
      amount_cents,
      self.currency_code,
      merchant_reference,
      payment_token=stored_card_token,
    )
    return self._interpret_processor_response(transaction_type, processor_payload)

  def _interpret_processor_response(self, transaction_type, processor_payload):
    """Processor payload -> TransactionResult (or NotFound/InvalidAmount)."""
    error_messages = extract_processor_error_messages(processor_payload)
    processor_codes = [error_message["code"] for error_message in error_messages]

    transaction_status = str(processor_payload.get("transaction_status", "")).lower()
    if transaction_status != "approved":
      for response_code_key in ("gateway_resp_code", "bank_resp_code"):
        if processor_payload.get(response_code_key):
          processor_codes.append(str(processor_payload[response_code_key]))

    common_error_types = [
      classify_processor_error_code(processor_code) for processor_code in processor_codes
    ]

    if "transaction_not_found" in common_error_types:
      raise NotFoundError(
        self.messages["error.transaction_not_found"], processor_code="transaction_not_found",
      )

    invalid_amount_codes = [code for code in processor_codes if code in INVALID_AMOUNT_PROCESSOR_CODES]
    if invalid_amount_codes:
      description = next(
        (error_message["description"] for error_message in error_messages
         if error_message["code"] in INVALID_AMOUNT_PROCESSOR_CODES),
        "",
      )
      raise InvalidAmountError(
        description or f"Amount not available for {transaction_type}",
        processor_code=invalid_amount_codes[0],
      )

    transaction_id = processor_payload.get("transaction_id")
    transaction_tag = processor_payload.get("transaction_tag")

    if transaction_status == "approved":
      result = TransactionResult(
        status=_APPROVED_STATUS_BY_TRANSACTION_TYPE[transaction_type],
        reference_id=str(transaction_tag) if transaction_tag is not None else None,
        transaction_id=transaction_id,
      )
      logger.info(
        "Payeezy %s %s: transaction_id=%s",
        transaction_type, result.status.value, transaction_id,
      )
      return result

    common_error_type = next((error_type for error_type in common_error_types if error_type), None)
    common_error = get_common_error(common_error_type, self.messages) if common_error_type else None

    if common_error is not None:
      message = common_error.message
    elif error_messages and error_messages[0]["description"]:
      message = error_messages[0]["description"]
    else:
      message = processor_payload.get("bank_message") or self.messages["error.general"]

    logger.warning(
      "Payeezy %s declined: processor_codes=%s, error_type=%s",
      transaction_type, processor_codes, common_error_type,
    )

    return TransactionResult(
      status=TransactionStatus.DECLINED,
      reference_id=str(transaction_tag) if transaction_tag is not None else None,
      transaction_id=transaction_id,
      message=message,
      error_type=common_error_type,
      error_field=common_error.field if common_error else None,
    )
