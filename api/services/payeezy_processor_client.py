"""
Payeezy Gateway -- Payeezy REST Processor Client

Payeezy REST API integration using direct HTTP calls via httpx.
No SDK dependency.

Every request is HMAC-signed:
  Authorization = base64( hex( HMAC-SHA256(api_secret,
                    apikey + nonce + timestamp + token + body) ) )
sent alongside the apikey, token, nonce and timestamp headers.

Endpoints used:
  POST   /v1/transactions                             -- purchase / authorize
  POST   /v1/transactions/{id}                        -- capture / void / refund
  POST   /v1/vault/customers                          -- create customer
  POST   /v1/vault/customers/{cid}/cards              -- store card
  GET    /v1/vault/customers/{cid}/cards/{aid}        -- resolve stored card token
  PUT    /v1/vault/customers/{cid}/cards/{aid}        -- update stored card
  DELETE /v1/vault/customers/{cid}/cards/{aid}        -- remove stored card
"""

import base64
import hashlib
import hmac
import json
import logging
import secrets
import time

import httpx

import config
from services.gateway_errors import AuthenticationError, GatewayError, NotFoundError
from services.gateway_messages import EN_US_MESSAGES
from services.gateway_models import CardInfo, StoredCardToken
from services.payment_processor_client_interface import (
  PaymentProcessorClientInterface,
  extract_processor_error_messages,
)

logger = logging.getLogger("payeezy.processor")


def get_api_base_url_for_mode(processor_mode):
  """Base URL for a processor mode ("live" or "cert"), unless overridden."""
  if config.PAYEEZY_API_BASE_URL:
    return config.PAYEEZY_API_BASE_URL.rstrip("/")
  if processor_mode == "cert":
    return config.PAYEEZY_CERT_API_BASE_URL
  return config.PAYEEZY_LIVE_API_BASE_URL


def card_exp_to_mmyy(card_exp):
  """yyyymm -> MMYY (Payeezy's exp_date format)."""
  return f"{card_exp[4:6]}{card_exp[2:4]}"


def mmyy_to_card_exp(exp_date):
  """MMYY -> yyyymm. Raises GatewayError for anything but a valid MMYY."""
  exp_date = str(exp_date or "")
  if len(exp_date) != 4 or not exp_date.isdigit() or not 1 <= int(exp_date[0:2]) <= 12:
    raise GatewayError(f"Payeezy returned an invalid card expiry: {exp_date!r}")
  return f"20{exp_date[2:4]}{exp_date[0:2]}"


def _serialize_billing_address(card_info):
  return {
    "street": " ".join(part for part in (card_info.address1, card_info.address2) if part),
    "city": card_info.city or "",
    "state_province": card_info.state or "",
    "zip_postal_code": card_info.zip or "",
    "country": card_info.country or "",
  }


def _serialize_credit_card(card_info):
  credit_card = {
    "type": card_info.type or "",
    "cardholder_name": card_info.cardholder_name,
    "card_number": card_info.card_number,
    "exp_date": card_exp_to_mmyy(card_info.card_exp),
  }
  if card_info.card_security_code:
    credit_card["cvv"] = card_info.card_security_code
  return credit_card


def _serialize_payment_source(payment_source):
  """Payeezy request fragment for a raw card or a stored-card token."""
  if isinstance(payment_source, CardInfo):
    return {
      "method": "credit_card",
      "credit_card": _serialize_credit_card(payment_source),
      "billing_address": _serialize_billing_address(payment_source),
    }
  return {
    "method": "token",
    "token": {
      "token_type": "FDToken",
      "token_data": {
        "type": payment_source.card_type or "",
        "value": payment_source.token_value,
        "cardholder_name": payment_source.cardholder_name,
        "exp_date": card_exp_to_mmyy(payment_source.card_exp),
      },
    },
  }


def _serialize_contact(contact_info):
  return {
    "external_id": contact_info.client_id or contact_info.id or "",
    "first_name": contact_info.first_name,
    "last_name": contact_info.last_name,
    "company": contact_info.company or "",
    "email": contact_info.email or "",
    "address": {
      "street": " ".join(part for part in (contact_info.address1, contact_info.address2) if part),
      "city": contact_info.city or "",
      "state_province": contact_info.state or "",
      "zip_postal_code": contact_info.zip or "",
      "country": contact_info.country or "",
    },
  }


class PayeezyProcessorClient(PaymentProcessorClientInterface):
  """Payeezy REST API processor client."""

  def __init__(self, api_secret, api_base_url=None, http_transport=None):
    self.api_secret = api_secret
    self.api_base_url = api_base_url or get_api_base_url_for_mode(config.PAYEEZY_PROCESSOR_MODE)
    self.api_key_id = config.PAYEEZY_API_KEY_ID
    self.merchant_token = config.PAYEEZY_MERCHANT_TOKEN
    self.timeout_seconds = config.PAYEEZY_REQUEST_TIMEOUT_SECONDS
    # Only set in tests (httpx.MockTransport)
    self.http_transport = http_transport

  # -----------------------------------------------------------------------
  # Request signing
  # -----------------------------------------------------------------------

  def build_signed_headers(self, body_text, nonce=None, timestamp=None):
    """
    Build the Payeezy authentication headers for a request body.
    nonce/timestamp are generated when not given.
    """
    if nonce is None:
      nonce = str(secrets.randbelow(10 ** 18))
    if timestamp is None:
      timestamp = str(int(time.time() * 1000))

    message = f"{self.api_key_id}{nonce}{timestamp}{self.merchant_token}{body_text}"
    hex_digest = hmac.new(
      self.api_secret.encode("utf-8"),
      message.encode("utf-8"),
      hashlib.sha256,
    ).hexdigest()

    return {
      "Content-Type": "application/json",
      "Accept": "application/json",
      "apikey": self.api_key_id,
      "token": self.merchant_token,
      "nonce": nonce,
      "timestamp": timestamp,
      "Authorization": base64.b64encode(hex_digest.encode("ascii")).decode("ascii"),
    }

  # -----------------------------------------------------------------------
  # HTTP exchange
  # -----------------------------------------------------------------------

  async def _send(self, method, path, payload=None):
    """
    Send one signed request and return the decoded JSON payload.

    4xx bodies (declines, validation failures) are returned for the
    adapter to interpret. Raises when no payload can be obtained.
    """
    body_text = json.dumps(payload, separators=(",", ":")) if payload is not None else ""
    headers = self.build_signed_headers(body_text)
    url = f"{self.api_base_url}{path}"

    try:
      async with httpx.AsyncClient(
        timeout=self.timeout_seconds,
        transport=self.http_transport,
      ) as http_client:
        response = await http_client.request(
          method,
          url,
          content=body_text.encode("utf-8") if body_text else None,
          headers=headers,
        )
    except httpx.TransportError as transport_error:
      logger.error("Payeezy request failed: %s %s: %s", method, path, transport_error)
      raise GatewayError(f"Payeezy request failed: {transport_error}") from transport_error

    if response.status_code in (401, 403):
      logger.warning("Payeezy rejected credentials: %s %s (HTTP %s)", method, path, response.status_code)
      raise AuthenticationError(EN_US_MESSAGES["gateway.error.auth"])

    if response.status_code == 404:
      raise NotFoundError(
        EN_US_MESSAGES["error.transaction_not_found"],
        processor_code="transaction_not_found",
      )

    if response.status_code >= 500:
      logger.error("Payeezy server error: %s %s (HTTP %s)", method, path, response.status_code)
      raise GatewayError(f"Payeezy server error (HTTP {response.status_code})")

    if response.status_code == 204 or not response.content:
      return {}

    try:
      response_payload = response.json()
    except ValueError as decode_error:
      raise GatewayError("Payeezy returned an unreadable response") from decode_error

    if not isinstance(response_payload, dict):
      logger.error("Payeezy returned a non-object body: %s %s (HTTP %s)", method, path, response.status_code)
      raise GatewayError("Payeezy returned an unreadable response")
    return response_payload

  def _require_vault_field(self, payload, field_name, action):
    """A vault response field we cannot continue without."""
    field_value = payload.get(field_name)
    if not field_value:
      logger.error("Payeezy vault %s returned no %s", action, field_name)
      raise GatewayError(f"Payeezy returned no {field_name}")
    return field_value

  def _raise_for_vault_errors(self, payload, action):
    """Vault calls have no status shape, so any error is a hard failure."""
    error_messages = extract_processor_error_messages(payload)
    if not error_messages:
      return
    first_error = error_messages[0]
    logger.warning(
      "Payeezy vault %s failed: code=%s, description=%s",
      action, first_error["code"], first_error["description"],
    )
    if first_error["code"] in ("account_not_found", "transaction_not_found"):
      raise NotFoundError(first_error["description"], processor_code=first_error["code"])
    raise GatewayError(
      first_error["description"] or EN_US_MESSAGES["error.general"],
      processor_code=first_error["code"],
    )

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
    transaction_payload = {
      "merchant_ref": merchant_reference or "",
      "transaction_type": transaction_type,
      "amount": str(amount_cents),
      "currency_code": currency_code,
    }
    transaction_payload.update(_serialize_payment_source(payment_source))

    transaction_data = await self._send("POST", "/v1/transactions", transaction_payload)

    logger.info(
      "Payeezy %s sent: method=%s, amount_cents=%s, status=%s, transaction_id=%s",
      transaction_type, transaction_payload["method"], amount_cents,
      transaction_data.get("transaction_status"), transaction_data.get("transaction_id"),
    )
    return transaction_data

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
    transaction_payload = {
      "merchant_ref": merchant_reference or "",
      "transaction_tag": transaction_tag,
      "transaction_type": transaction_type,
      "method": "credit_card",
      "currency_code": currency_code,
    }
    if payment_token is not None:
      # Payeezy matches the token against the original transaction's token
      transaction_payload.update(_serialize_payment_source(payment_token))
    if amount_cents is not None:
      transaction_payload["amount"] = str(amount_cents)

    transaction_data = await self._send(
      "POST", f"/v1/transactions/{transaction_id}", transaction_payload,
    )

    logger.info(
      "Payeezy %s sent: original_transaction_id=%s, amount_cents=%s, status=%s",
      transaction_type, transaction_id, amount_cents,
      transaction_data.get("transaction_status"),
    )
    return transaction_data

  # -----------------------------------------------------------------------
  # Offsite card vault
  # -----------------------------------------------------------------------

  async def tokenize_card(self, card_info, contact_info, client_reference_id=None):
    if client_reference_id is None:
      customer_data = await self._send(
        "POST", "/v1/vault/customers", _serialize_contact(contact_info),
      )
      self._raise_for_vault_errors(customer_data, "create customer")
      client_reference_id = self._require_vault_field(customer_data, "customer_id", "create customer")

    card_data = await self._send(
      "POST",
      f"/v1/vault/customers/{client_reference_id}/cards",
      {
        "credit_card": _serialize_credit_card(card_info),
        "billing_address": _serialize_billing_address(card_info),
      },
    )
    self._raise_for_vault_errors(card_data, "store card")
    account_reference_id = self._require_vault_field(card_data, "card_id", "store card")

    logger.info(
      "Payeezy card stored: customer_id=%s, card_id=%s, last4=%s",
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
    update_payload = {
      "billing_address": _serialize_billing_address(card_info),
      "contact": _serialize_contact(contact_info),
    }
    if card_info.account_changed:
      update_payload["credit_card"] = _serialize_credit_card(card_info)
    else:
      update_payload["cardholder_name"] = card_info.cardholder_name

    card_data = await self._send(
      "PUT",
      f"/v1/vault/customers/{client_reference_id}/cards/{account_reference_id}",
      update_payload,
    )
    self._raise_for_vault_errors(card_data, "update card")

    logger.info(
      "Payeezy card updated: customer_id=%s, card_id=%s, account_changed=%s",
      client_reference_id, account_reference_id, card_info.account_changed,
    )
    return {
      "client_reference_id": client_reference_id,
      "account_reference_id": card_data.get("card_id", account_reference_id),
    }

  async def remove_stored_card(self, client_reference_id, account_reference_id):
    removal_data = await self._send(
      "DELETE",
      f"/v1/vault/customers/{client_reference_id}/cards/{account_reference_id}",
    )
    self._raise_for_vault_errors(removal_data, "remove card")

    logger.info(
      "Payeezy card removed: customer_id=%s, card_id=%s",
      client_reference_id, account_reference_id,
    )
    return {
      "client_reference_id": client_reference_id,
      "account_reference_id": account_reference_id,
    }

  async def resolve_stored_card(self, client_reference_id, account_reference_id):
    card_data = await self._send(
      "GET",
      f"/v1/vault/customers/{client_reference_id}/cards/{account_reference_id}",
    )
    self._raise_for_vault_errors(card_data, "resolve card")

    token = card_data.get("token")
    if not isinstance(token, dict) or not token.get("value"):
      raise GatewayError("Payeezy returned a stored card without a token")

    return StoredCardToken(
      token_value=token["value"],
      card_type=token.get("type"),
      cardholder_name=token.get("cardholder_name", ""),
      card_exp=mmyy_to_card_exp(token.get("exp_date", "")),
    )
