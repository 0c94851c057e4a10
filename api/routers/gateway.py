"""
Payeezy Gateway -- Gateway Router

JSON endpoints a (non-Python) billing host calls to use the gateway.
Every request carries the gateway meta data ({"api_key", "stored"}) from
the host's settings store; nothing is persisted here.

Settings:
  POST /api/v1/gateway/settings        -- validate meta data
  POST /api/v1/gateway/capabilities    -- requires_cc_storage etc.

Direct card processing:
  POST /api/v1/gateway/cc/process
  POST /api/v1/gateway/cc/authorize
  POST /api/v1/gateway/cc/capture
  POST /api/v1/gateway/cc/void
  POST /api/v1/gateway/cc/refund

Offsite card storage:
  POST /api/v1/gateway/stored/store
  POST /api/v1/gateway/stored/update
  POST /api/v1/gateway/stored/remove
  POST /api/v1/gateway/stored/process
  POST /api/v1/gateway/stored/authorize
  POST /api/v1/gateway/stored/capture
  POST /api/v1/gateway/stored/void
  POST /api/v1/gateway/stored/refund

Error envelope status codes:
  400 INVALID_SETTINGS, 401 AUTHENTICATION_FAILED, 404 NOT_FOUND,
  422 INVALID_AMOUNT, 502 GATEWAY_ERROR
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from services import gateway_settings_service
from services.gateway_errors import (
  AuthenticationError,
  GatewayError,
  InvalidAmountError,
  NotFoundError,
  ValidationError,
)
from services.gateway_models import CardInfo, ContactInfo, InvoiceAmount, StoredAccountRef
from services.payeezy_transaction_adapter import PayeezyTransactionAdapter

logger = logging.getLogger("payeezy.gateway_router")

router = APIRouter(prefix="/api/v1/gateway", tags=["gateway"])


def _error_response(http_status_code, error_code, error_message, field=None):
  """Build a standard error envelope."""
  error = {"code": error_code, "message": error_message}
  if field:
    error["field"] = field
  return JSONResponse(
    status_code=http_status_code,
    content={"ok": False, "data": None, "error": error},
  )


def _success_response(data, http_status_code=200):
  """Build a standard success envelope."""
  return JSONResponse(
    status_code=http_status_code,
    content={"ok": True, "data": data, "error": None},
  )


# =========================================================================
# Request bodies
# =========================================================================

class GatewayRequest(BaseModel):
  meta: Dict[str, Any] = Field(default_factory=dict, description="Gateway meta data")
  currency: Optional[str] = Field(default=None, description="ISO 4217 code")


class CardTransactionRequest(GatewayRequest):
  card: CardInfo
  amount: Decimal
  invoice_amounts: List[InvoiceAmount] = Field(default_factory=list)


class FollowUpTransactionRequest(GatewayRequest):
  reference_id: Optional[str] = None
  transaction_id: str
  amount: Optional[Decimal] = None
  invoice_amounts: List[InvoiceAmount] = Field(default_factory=list)


class StoreCardRequest(GatewayRequest):
  card: CardInfo
  contact: ContactInfo
  client_reference_id: Optional[str] = None


class UpdateCardRequest(GatewayRequest):
  card: CardInfo
  contact: ContactInfo
  client_reference_id: str
  account_reference_id: str


class RemoveCardRequest(GatewayRequest):
  client_reference_id: str
  account_reference_id: str


class StoredTransactionRequest(GatewayRequest):
  stored_account: StoredAccountRef
  amount: Decimal
  invoice_amounts: List[InvoiceAmount] = Field(default_factory=list)


class StoredFollowUpTransactionRequest(GatewayRequest):
  stored_account: StoredAccountRef
  reference_id: Optional[str] = None
  transaction_id: str
  amount: Optional[Decimal] = None
  invoice_amounts: List[InvoiceAmount] = Field(default_factory=list)


# =========================================================================
# Shared operation runner
# =========================================================================

async def _run_adapter_operation(operation_name, gateway_request, operation):
  """
  Build an adapter from the request's meta data, run one operation on it,
  and wrap the outcome (or failure) in the response envelope.

  operation: async callable taking the adapter, returning a pydantic model.
  """
  try:
    adapter = PayeezyTransactionAdapter(gateway_request.meta)
    if gateway_request.currency:
      adapter.set_currency(gateway_request.currency)
    result = await operation(adapter)

  except ValidationError as validation_error:
    return _error_response(400, "INVALID_SETTINGS", validation_error.message, field=validation_error.field)
  except ValueError as value_error:
    return _error_response(400, "INVALID_REQUEST", str(value_error))
  except AuthenticationError as auth_error:
    return _error_response(401, "AUTHENTICATION_FAILED", auth_error.message)
  except NotFoundError as not_found_error:
    return _error_response(404, "NOT_FOUND", not_found_error.message)
  except InvalidAmountError as amount_error:
    return _error_response(422, "INVALID_AMOUNT", amount_error.message)
  except GatewayError as gateway_error:
    logger.error("Gateway %s failed: %s", operation_name, gateway_error.message)
    return _error_response(502, "GATEWAY_ERROR", gateway_error.message)

  return _success_response(result.model_dump(mode="json"))


def _require_amount(amount):
  if amount is None:
    raise InvalidAmountError("'amount' is required")
  return amount


# =========================================================================
# Settings
# =========================================================================

@router.post("/settings")
async def validate_gateway_settings(gateway_request: GatewayRequest):
  """
  Validate meta data to be saved for this gateway.

  Always 200: field errors are returned, not raised, so the host can
  redisplay its settings form.
  """
  normalized_meta, errors = gateway_settings_service.validate_gateway_settings(gateway_request.meta)

  field_errors = {}
  for validation_error in errors:
    field_errors.update(validation_error.as_input_error())

  return _success_response({
    "valid": not errors,
    "meta": normalized_meta,
    "errors": field_errors,
    "encryptable_fields": list(gateway_settings_service.get_encryptable_fields()),
  })


@router.post("/capabilities")
async def get_gateway_capabilities(gateway_request: GatewayRequest):
  """Tell the host which card path (direct or offsite) to use."""
  try:
    adapter = PayeezyTransactionAdapter(gateway_request.meta)
  except ValidationError as validation_error:
    return _error_response(400, "INVALID_SETTINGS", validation_error.message, field=validation_error.field)

  return _success_response({
    "requires_cc_storage": adapter.requires_cc_storage(),
    "requires_customer_present": adapter.requires_customer_present(),
  })


# =========================================================================
# Direct card processing
# =========================================================================

@router.post("/cc/process")
async def process_card(gateway_request: CardTransactionRequest):
  """Charge a card."""
  return await _run_adapter_operation(
    "process_cc", gateway_request,
    lambda adapter: adapter.process_cc(
      gateway_request.card, gateway_request.amount, gateway_request.invoice_amounts,
    ),
  )


@router.post("/cc/authorize")
async def authorize_card(gateway_request: CardTransactionRequest):
  """Authorize a card (do not charge)."""
  return await _run_adapter_operation(
    "authorize_cc", gateway_request,
    lambda adapter: adapter.authorize_cc(
      gateway_request.card, gateway_request.amount, gateway_request.invoice_amounts,
    ),
  )


@router.post("/cc/capture")
async def capture_card(gateway_request: FollowUpTransactionRequest):
  """Capture a previously authorized card."""
  return await _run_adapter_operation(
    "capture_cc", gateway_request,
    lambda adapter: adapter.capture_cc(
      gateway_request.reference_id,
      gateway_request.transaction_id,
      _require_amount(gateway_request.amount),
      gateway_request.invoice_amounts,
    ),
  )


@router.post("/cc/void")
async def void_card(gateway_request: FollowUpTransactionRequest):
  return await _run_adapter_operation(
    "void_cc", gateway_request,
    lambda adapter: adapter.void_cc(gateway_request.reference_id, gateway_request.transaction_id),
  )


@router.post("/cc/refund")
async def refund_card(gateway_request: FollowUpTransactionRequest):
  return await _run_adapter_operation(
    "refund_cc", gateway_request,
    lambda adapter: adapter.refund_cc(
      gateway_request.reference_id,
      gateway_request.transaction_id,
      _require_amount(gateway_request.amount),
    ),
  )


# =========================================================================
# Offsite card storage
# =========================================================================

@router.post("/stored/store")
async def store_card(gateway_request: StoreCardRequest):
  """Store a card offsite. Returns the client and account reference ids."""
  return await _run_adapter_operation(
    "store_cc", gateway_request,
    lambda adapter: adapter.store_cc(
      gateway_request.card, gateway_request.contact, gateway_request.client_reference_id,
    ),
  )


@router.post("/stored/update")
async def update_stored_card(gateway_request: UpdateCardRequest):
  return await _run_adapter_operation(
    "update_cc", gateway_request,
    lambda adapter: adapter.update_cc(
      gateway_request.card,
      gateway_request.contact,
      gateway_request.client_reference_id,
      gateway_request.account_reference_id,
    ),
  )


@router.post("/stored/remove")
async def remove_stored_card(gateway_request: RemoveCardRequest):
  return await _run_adapter_operation(
    "remove_cc", gateway_request,
    lambda adapter: adapter.remove_cc(
      gateway_request.client_reference_id, gateway_request.account_reference_id,
    ),
  )


@router.post("/stored/process")
async def process_stored_card(gateway_request: StoredTransactionRequest):
  return await _run_adapter_operation(
    "process_stored_cc", gateway_request,
    lambda adapter: adapter.process_stored_cc(
      gateway_request.stored_account, gateway_request.amount, gateway_request.invoice_amounts,
    ),
  )


@router.post("/stored/authorize")
async def authorize_stored_card(gateway_request: StoredTransactionRequest):
  return await _run_adapter_operation(
    "authorize_stored_cc", gateway_request,
    lambda adapter: adapter.authorize_stored_cc(
      gateway_request.stored_account, gateway_request.amount, gateway_request.invoice_amounts,
    ),
  )


@router.post("/stored/capture")
async def capture_stored_card(gateway_request: StoredFollowUpTransactionRequest):
  return await _run_adapter_operation(
    "capture_stored_cc", gateway_request,
    lambda adapter: adapter.capture_stored_cc(
      gateway_request.stored_account,
      gateway_request.reference_id,
      gateway_request.transaction_id,
      _require_amount(gateway_request.amount),
      gateway_request.invoice_amounts,
    ),
  )


@router.post("/stored/void")
async def void_stored_card(gateway_request: StoredFollowUpTransactionRequest):
  return await _run_adapter_operation(
    "void_stored_cc", gateway_request,
    lambda adapter: adapter.void_stored_cc(
      gateway_request.stored_account, gateway_request.reference_id, gateway_request.transaction_id,
    ),
  )


@router.post("/stored/refund")
async def refund_stored_card(gateway_request: StoredFollowUpTransactionRequest):
  return await _run_adapter_operation(
    "refund_stored_cc", gateway_request,
    lambda adapter: adapter.refund_stored_cc(
      gateway_request.stored_account,
      gateway_request.reference_id,
      gateway_request.transaction_id,
      _require_amount(gateway_request.amount),
    ),
  )
