"""
Payeezy Gateway -- Messages and Common Errors

The English message table, the common-error lookup, and the mapping from
processor error codes onto common-error types.

Everything here is pure: the message table is an immutable mapping built at
import time and passed by reference into the adapter and settings service.

Common error types and the form field each one is bound to:

  card_number_invalid          -> card_number
  card_expired                 -> card_exp
  routing_number_invalid       -> routing_number
  account_number_invalid       -> account_number
  duplicate_transaction        -> amount
  card_not_accepted            -> type
  invalid_security_code        -> card_security_code
  address_verification_failed  -> zip
  transaction_not_found        -> transaction_id
  unsupported                  -> (no field)
  general                      -> (no field)
"""

from collections import namedtuple
from types import MappingProxyType

CommonError = namedtuple("CommonError", ["field", "message"])


def build_message_table(overrides=None):
  """
  Build an immutable message table.

  overrides: optional dict of key -> message that replaces the English
  defaults (e.g. a host supplying its own wording).
  """
  messages = {
    # Gateway
    "gateway.name": "Payeezy",
    "gateway.error.auth": "The gateway could not authenticate.",
    "gateway.error.api_key.empty": "Please enter an API Key.",

    # Settings form
    "settings.api_key": "API Secret Key",
    "settings.tooltip_api": (
      "Your API Secret Key is specific to either live or test mode. "
      "Be sure you are using the correct key."
    ),
    "settings.stored": "Store Card Information Offsite",
    "settings.tooltip_stored": (
      "Check this box to store payment account card information with "
      "Payeezy rather than within the billing system."
    ),

    # Common errors
    "error.card_number_invalid": "The card number is invalid.",
    "error.card_expired": "The card has expired.",
    "error.routing_number_invalid": "The routing number is invalid.",
    "error.account_number_invalid": "The account number is invalid.",
    "error.duplicate_transaction": "A duplicate transaction has been submitted.",
    "error.card_not_accepted": "The card type is not accepted.",
    "error.invalid_security_code": "The security code is invalid.",
    "error.address_verification_failed": "The address could not be verified.",
    "error.transaction_not_found": "The transaction could not be found on the remote gateway.",
    "error.unsupported": "The action is not supported by the gateway.",
    "error.general": "An error occurred while processing the transaction.",
  }
  if overrides:
    messages.update(overrides)
  return MappingProxyType(messages)


EN_US_MESSAGES = build_message_table()


# ---------------------------------------------------------------------------
# Common errors
# ---------------------------------------------------------------------------

_COMMON_ERROR_FIELDS = MappingProxyType({
  "card_number_invalid": "card_number",
  "card_expired": "card_exp",
  "routing_number_invalid": "routing_number",
  "account_number_invalid": "account_number",
  "duplicate_transaction": "amount",
  "card_not_accepted": "type",
  "invalid_security_code": "card_security_code",
  "address_verification_failed": "zip",
  "transaction_not_found": "transaction_id",
  "unsupported": None,
  "general": None,
})

COMMON_ERROR_TYPES = tuple(_COMMON_ERROR_FIELDS)


def get_common_error(error_type, messages=EN_US_MESSAGES):
  """
  Look up the form field and message for a common error type.

  Returns: CommonError(field, message), or None if the type is unknown.
  field is None for "unsupported" and "general".
  """
  if error_type not in _COMMON_ERROR_FIELDS:
    return None
  return CommonError(
    field=_COMMON_ERROR_FIELDS[error_type],
    message=messages[f"error.{error_type}"],
  )


# ---------------------------------------------------------------------------
# Processor error codes -> common error types
#
# Payeezy reports failures three ways: gateway response codes, bank
# response codes, and symbolic codes in Error.messages[].code. All three
# share one lookup table.
# ---------------------------------------------------------------------------

_PROCESSOR_CODE_TO_COMMON_ERROR_TYPE = MappingProxyType({
  # Gateway response codes
  "22": "card_number_invalid",
  "25": "card_expired",
  "44": "address_verification_failed",
  "64": "transaction_not_found",
  "68": "card_not_accepted",
  # Bank response codes
  "201": "card_number_invalid",
  "522": "card_expired",
  "531": "invalid_security_code",
  "605": "card_expired",
  # Error.messages codes
  "invalid_card_number": "card_number_invalid",
  "card_expired": "card_expired",
  "invalid_exp_date": "card_expired",
  "invalid_routing_number": "routing_number_invalid",
  "invalid_account_number": "account_number_invalid",
  "duplicate_transaction": "duplicate_transaction",
  "card_type_not_supported": "card_not_accepted",
  "invalid_cvv": "invalid_security_code",
  "avs_failed": "address_verification_failed",
  "transaction_not_found": "transaction_not_found",
  "account_not_found": "transaction_not_found",
  "unsupported_transaction_type": "unsupported",
  "processing_error": "general",
})

# Codes meaning the requested amount exceeds what the original transaction
# has available. These raise InvalidAmountError rather than map to a field.
INVALID_AMOUNT_PROCESSOR_CODES = frozenset({
  "32",
  "invalid_amount",
  "amount_exceeds_available",
})


def classify_processor_error_code(processor_code):
  """
  Map a processor error code onto a common error type.

  Returns: the common error type string, or None if the code is unknown.
  """
  if processor_code is None:
    return None
  return _PROCESSOR_CODE_TO_COMMON_ERROR_TYPE.get(str(processor_code).strip())
