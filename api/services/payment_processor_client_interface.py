"""
Payeezy Gateway -- Payment Processor Client Interface

Abstract base class for the remote card processor. The transaction adapter
only talks to this interface; the Payeezy REST client and the in-memory
sandbox client both implement it.

Transaction methods return processor-native payload dicts in the Payeezy
shape, declined or not:

  {
    "transaction_status": "approved" | "declined" | "Not Processed",
    "validation_status": "success" | "failed",
    "transaction_type": "purchase" | "authorize" | "capture" | "void" | "refund",
    "transaction_id": "...",
    "transaction_tag": "...",
    "amount": "1000",                      # minor units
    "bank_resp_code": "100",
    "bank_message": "Approved",
    "gateway_resp_code": "00",
    "gateway_message": "Transaction Normal",
    "Error": {"messages": [{"code": "...", "description": "..."}]},
  }

Implementations raise AuthenticationError / NotFoundError / GatewayError
(see services.gateway_errors) only when no payload can be obtained.
"""

from abc import ABC, abstractmethod

TRANSACTION_TYPE_PURCHASE = "purchase"
TRANSACTION_TYPE_AUTHORIZE = "authorize"
TRANSACTION_TYPE_CAPTURE = "capture"
TRANSACTION_TYPE_VOID = "void"
TRANSACTION_TYPE_REFUND = "refund"


class PaymentProcessorClientInterface(ABC):
  """Abstract base for remote card processors."""

  @abstractmethod
  async def create_card_transaction(
    self,
    transaction_type,
    payment_source,
    amount_cents,
    currency_code,
    merchant_reference=None,
  ):
    """
    Run a purchase or authorize against a card.

    Args:
      transaction_type: "purchase" or "authorize".
      payment_source: CardInfo (raw card) or StoredCardToken (offsite card).
      amount_cents: Amount in minor units (integer).
      currency_code: ISO 4217 code.
      merchant_reference: Our reconciliation reference (invoice ids).

    Returns: processor payload dict (see module docstring).
    """
    ...

  @abstractmethod
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
    """
    Run a capture, void or refund against a previous transaction.

    Args:
      transaction_type: "capture", "void" or "refund".
      transaction_id: The processor's id of the original transaction.
      transaction_tag: The processor's tag of the original transaction.
      amount_cents: Amount in minor units. None = the full original amount.
      currency_code: ISO 4217 code.
      merchant_reference: Our reconciliation reference (invoice ids).
      payment_token: StoredCardToken of the stored account the follow-up
        runs under, or None for a direct follow-up. When given, a
        transaction that was not made with that stored account is
        reported as not found.

    Returns: processor payload dict (see module docstring).
    """
    ...

  @abstractmethod
  async def tokenize_card(self, card_info, contact_info, client_reference_id=None):
    """
    Store a card offsite. Creates the customer if client_reference_id is None.

    Returns: dict with "client_reference_id" and "account_reference_id".
    """
    ...

  @abstractmethod
  async def update_stored_card(
    self,
    card_info,
    contact_info,
    client_reference_id,
    account_reference_id,
  ):
    """
    Update a card stored offsite.

    Returns: dict with "client_reference_id" and "account_reference_id".
    """
    ...

  @abstractmethod
  async def remove_stored_card(self, client_reference_id, account_reference_id):
    """
    Remove a card stored offsite.

    Returns: dict with "client_reference_id" and "account_reference_id".
    """
    ...

  @abstractmethod
  async def resolve_stored_card(self, client_reference_id, account_reference_id):
    """
    Look up a stored card so it can be charged.

    Returns: StoredCardToken. Raises NotFoundError if the account is unknown.
    """
    ...


def extract_processor_error_messages(payload):
  """
  Pull [{"code", "description"}, ...] out of a processor payload.
  Returns an empty list when the payload carries no errors.
  """
  if not isinstance(payload, dict):
    return []
  error_block = payload.get("Error")
  if not isinstance(error_block, dict):
    return []
  messages = error_block.get("messages")
  if not isinstance(messages, list):
    return []
  return [
    {"code": str(message.get("code", "")), "description": message.get("description", "")}
    for message in messages
    if isinstance(message, dict)
  ]
