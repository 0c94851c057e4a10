"""
Payeezy Gateway -- Tests for the Transaction Adapter

Runs every adapter operation against the in-memory sandbox processor.
No network calls.

These tests focus on:
  - Status invariants (every money movement returns a known status)
  - Authorize -> capture -> refund / void lifecycles
  - NotFoundError and InvalidAmountError boundaries
  - Decline mapping onto common errors and form fields
  - Offsite storage round trip (store -> charge -> remove -> not found)
  - Stored variants composing the direct variants
"""

import asyncio
import os
import sys
from decimal import Decimal
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from services.gateway_errors import (
  AuthenticationError,
  GatewayError,
  InvalidAmountError,
  NotFoundError,
  ValidationError,
)
from services.gateway_models import (
  CardInfo,
  ContactInfo,
  StoredAccountRef,
  TransactionStatus,
)
from services.merchant_capability_interfaces import DirectCardProcessing, OffsiteCardStorage
from services.payeezy_processor_client import PayeezyProcessorClient
from services.payeezy_transaction_adapter import (
  PayeezyTransactionAdapter,
  amount_to_cents,
  build_merchant_reference,
  create_processor_client,
)
from services.sandbox_processor_client import SandboxProcessorClient, passes_luhn_check

_ALL_STATUSES = {status.value for status in TransactionStatus}


def _make_card(**overrides):
  card_fields = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "card_number": "4111111111111111",
    "card_exp": "209912",
    "card_security_code": "123",
    "type": "visa",
    "address1": "1 Analytical Way",
    "city": "Omaha",
    "state": "NE",
    "country": "US",
    "zip": "68102",
  }
  card_fields.update(overrides)
  return CardInfo(**card_fields)


def _make_contact():
  return ContactInfo(
    id="7",
    client_id="1500",
    first_name="Ada",
    last_name="Lovelace",
    email="ada@example.com",
    country="US",
  )


def _make_adapter(stored=False, processor_client=None):
  return PayeezyTransactionAdapter(
    {"api_key": "sk_test_secret", "stored": stored},
    processor_client=processor_client or SandboxProcessorClient("sk_test_secret"),
  )


def _run(coroutine):
  return asyncio.run(coroutine)


# ===========================================================================
# Test: Helpers
# ===========================================================================

class TestAmountConversion:
  """Amounts become integer cents before reaching the processor."""

  def test_decimal_string(self):
    assert amount_to_cents("10.00") == 1000

  def test_integer(self):
    assert amount_to_cents(10) == 1000

  def test_float(self):
    assert amount_to_cents(19.99) == 1999

  def test_half_cent_rounds_up(self):
    assert amount_to_cents(Decimal("10.005")) == 1001

  def test_zero_is_rejected(self):
    with pytest.raises(InvalidAmountError):
      amount_to_cents("0.00")

  def test_negative_is_rejected(self):
    with pytest.raises(InvalidAmountError):
      amount_to_cents(-5)

  def test_garbage_is_rejected(self):
    with pytest.raises(InvalidAmountError):
      amount_to_cents("ten dollars")

  def test_nan_is_rejected(self):
    with pytest.raises(InvalidAmountError):
      amount_to_cents("NaN")


class TestMerchantReference:
  """Invoice allocations travel as the merchant reference."""

  def test_no_invoices(self):
    assert build_merchant_reference(None) is None
    assert build_merchant_reference([]) is None

  def test_invoice_ids_are_listed(self):
    reference = build_merchant_reference([
      {"id": 12, "amount": "4.00"},
      {"id": "13", "amount": "6.00"},
    ])
    assert reference == "inv:12,13"


class TestLuhnCheck:

  def test_known_good_numbers(self):
    assert passes_luhn_check("4111111111111111")
    assert passes_luhn_check("5555555555554444")
    assert passes_luhn_check("378282246310005")

  def test_bad_checksum(self):
    assert not passes_luhn_check("4111111111111112")

  def test_empty(self):
    assert not passes_luhn_check("")


# ===========================================================================
# Test: Adapter construction and capabilities
# ===========================================================================

class TestAdapterConstruction:
  """Settings, capability flags and currency."""

  def test_adapter_implements_both_capability_sets(self):
    assert issubclass(PayeezyTransactionAdapter, DirectCardProcessing)
    assert issubclass(PayeezyTransactionAdapter, OffsiteCardStorage)

  def test_capability_interfaces_are_abstract(self):
    with pytest.raises(TypeError):
      DirectCardProcessing()
    with pytest.raises(TypeError):
      OffsiteCardStorage()

  def test_empty_api_key_raises_validation_error(self):
    with pytest.raises(ValidationError) as raised:
      PayeezyTransactionAdapter({"api_key": ""}, processor_client=SandboxProcessorClient())
    assert raised.value.field == "api_key"

  def test_requires_cc_storage_follows_settings(self):
    assert _make_adapter(stored=True).requires_cc_storage() is True
    assert _make_adapter(stored=False).requires_cc_storage() is False

  def test_requires_cc_storage_defaults_to_false(self):
    adapter = PayeezyTransactionAdapter({"api_key": "k"}, processor_client=SandboxProcessorClient("k"))
    assert adapter.requires_cc_storage() is False

  def test_customer_presence_not_required(self):
    assert _make_adapter().requires_customer_present() is False

  def test_set_currency_uppercases(self):
    adapter = _make_adapter()
    adapter.set_currency("cad")
    assert adapter.currency_code == "CAD"

  def test_set_currency_rejects_bad_codes(self):
    adapter = _make_adapter()
    with pytest.raises(ValueError):
      adapter.set_currency("DOLLARS")


class TestProcessorClientSelection:
  """create_processor_client picks sandbox or REST by mode."""

  def test_sandbox_clients_are_shared_per_secret(self):
    first = create_processor_client("sk_shared", processor_mode="sandbox")
    second = create_processor_client("sk_shared", processor_mode="sandbox")
    other = create_processor_client("sk_other", processor_mode="sandbox")
    assert first is second
    assert first is not other
    assert isinstance(first, SandboxProcessorClient)

  def test_cert_mode_uses_cert_endpoint(self):
    with patch("config.PAYEEZY_API_BASE_URL", ""):
      client = create_processor_client("sk_cert", processor_mode="cert")
    assert isinstance(client, PayeezyProcessorClient)
    assert client.api_base_url == "https://api-cert.payeezy.com"

  def test_live_mode_uses_live_endpoint(self):
    with patch("config.PAYEEZY_API_BASE_URL", ""):
      client = create_processor_client("sk_live", processor_mode="live")
    assert client.api_base_url == "https://api.payeezy.com"


# ===========================================================================
# Test: Direct card processing
# ===========================================================================

class TestProcessCc:

  def test_approved_charge(self):
    result = _run(_make_adapter().process_cc(_make_card(), "10.00"))
    assert result.status == TransactionStatus.APPROVED
    assert result.transaction_id
    assert result.reference_id
    assert result.message is None

  def test_status_is_always_from_the_fixed_set(self):
    adapter = _make_adapter()
    cards = [
      _make_card(),
      _make_card(card_number="4111111111111112"),
      _make_card(card_exp="201901"),
      _make_card(card_security_code="12"),
      _make_card(zip="00000"),
      _make_card(type="unionpay"),
    ]
    for card in cards:
      result = _run(adapter.process_cc(card, "25.00"))
      assert result.status.value in _ALL_STATUSES

  def test_invalid_card_number_is_declined_on_card_number_field(self):
    result = _run(_make_adapter().process_cc(_make_card(card_number="4111111111111112"), "10.00"))
    assert result.status == TransactionStatus.DECLINED
    assert result.error_type == "card_number_invalid"
    assert result.error_field == "card_number"
    assert result.message == "The card number is invalid."

  def test_expired_card_is_declined_on_card_exp_field(self):
    result = _run(_make_adapter().process_cc(_make_card(card_exp="201901"), "10.00"))
    assert result.status == TransactionStatus.DECLINED
    assert result.error_field == "card_exp"

  def test_bad_security_code_is_declined(self):
    result = _run(_make_adapter().process_cc(_make_card(card_security_code="12"), "10.00"))
    assert result.error_type == "invalid_security_code"
    assert result.error_field == "card_security_code"

  def test_avs_failure_is_declined_on_zip(self):
    result = _run(_make_adapter().process_cc(_make_card(zip="00000"), "10.00"))
    assert result.error_type == "address_verification_failed"
    assert result.error_field == "zip"

  def test_unsupported_card_type_is_declined_on_type(self):
    result = _run(_make_adapter().process_cc(_make_card(type="unionpay"), "10.00"))
    assert result.error_type == "card_not_accepted"
    assert result.error_field == "type"

  def test_duplicate_charge_is_declined(self):
    adapter = _make_adapter()
    invoices = [{"id": 1001, "amount": "10.00"}]
    first = _run(adapter.process_cc(_make_card(), "10.00", invoices))
    second = _run(adapter.process_cc(_make_card(), "10.00", invoices))
    assert first.status == TransactionStatus.APPROVED
    assert second.status == TransactionStatus.DECLINED
    assert second.error_type == "duplicate_transaction"
    assert second.error_field == "amount"

  def test_zero_amount_raises_before_processor_call(self):
    with pytest.raises(InvalidAmountError):
      _run(_make_adapter().process_cc(_make_card(), 0))

  def test_bad_credentials_raise(self):
    adapter = _make_adapter(processor_client=SandboxProcessorClient(api_secret=""))
    with pytest.raises(AuthenticationError):
      _run(adapter.process_cc(_make_card(), "10.00"))


class TestAuthorizeAndCapture:

  def test_authorize_is_pending(self):
    result = _run(_make_adapter().authorize_cc(_make_card(), "50.00"))
    assert result.status == TransactionStatus.PENDING

  def test_capture_after_authorize_is_approved(self):
    adapter = _make_adapter()

    async def scenario():
      authorization = await adapter.authorize_cc(_make_card(), "50.00")
      return await adapter.capture_cc(
        authorization.reference_id, authorization.transaction_id, "50.00",
      )

    capture = _run(scenario())
    assert capture.status in (TransactionStatus.APPROVED, TransactionStatus.RECONCILED)

  def test_partial_capture_is_approved(self):
    adapter = _make_adapter()

    async def scenario():
      authorization = await adapter.authorize_cc(_make_card(), "50.00")
      return await adapter.capture_cc(
        authorization.reference_id, authorization.transaction_id, "30.00",
      )

    assert _run(scenario()).status == TransactionStatus.APPROVED

  def test_capture_more_than_authorized_raises(self):
    adapter = _make_adapter()

    async def scenario():
      authorization = await adapter.authorize_cc(_make_card(), "50.00")
      await adapter.capture_cc(authorization.reference_id, authorization.transaction_id, "50.01")

    with pytest.raises(InvalidAmountError):
      _run(scenario())

  def test_capture_unknown_authorization_raises_not_found(self):
    with pytest.raises(NotFoundError):
      _run(_make_adapter().capture_cc("999", "ET-DOES-NOT-EXIST", "10.00"))

  def test_capture_with_wrong_reference_raises_not_found(self):
    adapter = _make_adapter()

    async def scenario():
      authorization = await adapter.authorize_cc(_make_card(), "50.00")
      await adapter.capture_cc("wrong-tag", authorization.transaction_id, "50.00")

    with pytest.raises(NotFoundError):
      _run(scenario())

  def test_capture_without_transaction_id_raises_not_found(self):
    with pytest.raises(NotFoundError):
      _run(_make_adapter().capture_cc("1", "", "10.00"))

  def test_second_capture_is_declined(self):
    adapter = _make_adapter()

    async def scenario():
      authorization = await adapter.authorize_cc(_make_card(), "50.00")
      await adapter.capture_cc(authorization.reference_id, authorization.transaction_id, "50.00")
      return await adapter.capture_cc(authorization.reference_id, authorization.transaction_id, "10.00")

    result = _run(scenario())
    assert result.status == TransactionStatus.DECLINED
    assert result.error_type == "unsupported"


class TestRefundAndVoid:

  def test_full_refund(self):
    adapter = _make_adapter()

    async def scenario():
      charge = await adapter.process_cc(_make_card(), "20.00")
      return await adapter.refund_cc(charge.reference_id, charge.transaction_id, "20.00")

    assert _run(scenario()).status == TransactionStatus.REFUNDED

  def test_partial_refunds_up_to_charge(self):
    adapter = _make_adapter()

    async def scenario():
      charge = await adapter.process_cc(_make_card(), "20.00")
      first = await adapter.refund_cc(charge.reference_id, charge.transaction_id, "15.00")
      second = await adapter.refund_cc(charge.reference_id, charge.transaction_id, "5.00")
      return first, second

    first, second = _run(scenario())
    assert first.status == TransactionStatus.REFUNDED
    assert second.status == TransactionStatus.REFUNDED

  def test_refund_more_than_charged_raises(self):
    adapter = _make_adapter()

    async def scenario():
      charge = await adapter.process_cc(_make_card(), "20.00")
      await adapter.refund_cc(charge.reference_id, charge.transaction_id, "20.01")

    with pytest.raises(InvalidAmountError):
      _run(scenario())

  def test_refund_beyond_remaining_raises(self):
    adapter = _make_adapter()

    async def scenario():
      charge = await adapter.process_cc(_make_card(), "20.00")
      await adapter.refund_cc(charge.reference_id, charge.transaction_id, "15.00")
      await adapter.refund_cc(charge.reference_id, charge.transaction_id, "10.00")

    with pytest.raises(InvalidAmountError):
      _run(scenario())

  def test_refund_of_captured_authorization(self):
    adapter = _make_adapter()

    async def scenario():
      authorization = await adapter.authorize_cc(_make_card(), "40.00")
      await adapter.capture_cc(authorization.reference_id, authorization.transaction_id, "30.00")
      return await adapter.refund_cc(authorization.reference_id, authorization.transaction_id, "30.00")

    assert _run(scenario()).status == TransactionStatus.REFUNDED

  def test_refund_unknown_transaction_raises_not_found(self):
    with pytest.raises(NotFoundError):
      _run(_make_adapter().refund_cc("1", "ET-NOPE", "1.00"))

  def test_void_authorization(self):
    adapter = _make_adapter()

    async def scenario():
      authorization = await adapter.authorize_cc(_make_card(), "40.00")
      return await adapter.void_cc(authorization.reference_id, authorization.transaction_id)

    assert _run(scenario()).status == TransactionStatus.VOID

  def test_void_twice_is_declined(self):
    adapter = _make_adapter()

    async def scenario():
      charge = await adapter.process_cc(_make_card(), "40.00")
      await adapter.void_cc(charge.reference_id, charge.transaction_id)
      return await adapter.void_cc(charge.reference_id, charge.transaction_id)

    assert _run(scenario()).status == TransactionStatus.DECLINED

  def test_void_unknown_transaction_raises_not_found(self):
    with pytest.raises(NotFoundError):
      _run(_make_adapter().void_cc("1", "ET-NOPE"))


# ===========================================================================
# Test: Processor payload interpretation
# ===========================================================================

class TestProcessorResponseInterpretation:
  """Payloads from either processor client map onto the same results."""

  def test_gateway_not_found_code_raises(self):
    payload = {"transaction_status": "declined", "gateway_resp_code": "64"}
    with pytest.raises(NotFoundError):
      _make_adapter()._interpret_processor_response("capture", payload)

  def test_gateway_invalid_refund_code_raises(self):
    payload = {"transaction_status": "declined", "gateway_resp_code": "32"}
    with pytest.raises(InvalidAmountError):
      _make_adapter()._interpret_processor_response("refund", payload)

  def test_bank_code_maps_to_common_error(self):
    payload = {
      "transaction_status": "declined",
      "transaction_id": "ET1",
      "transaction_tag": 77,
      "bank_resp_code": "531",
      "bank_message": "CVV2/VAK Failure",
    }
    result = _make_adapter()._interpret_processor_response("purchase", payload)
    assert result.status == TransactionStatus.DECLINED
    assert result.error_field == "card_security_code"
    assert result.reference_id == "77"

  def test_unknown_code_uses_processor_description(self):
    payload = {
      "transaction_status": "Not Processed",
      "Error": {"messages": [{"code": "mystery", "description": "Something odd"}]},
    }
    result = _make_adapter()._interpret_processor_response("purchase", payload)
    assert result.status == TransactionStatus.DECLINED
    assert result.message == "Something odd"
    assert result.error_type is None

  def test_empty_payload_is_a_general_decline(self):
    result = _make_adapter()._interpret_processor_response("purchase", {})
    assert result.status == TransactionStatus.DECLINED
    assert result.message == "An error occurred while processing the transaction."

  def test_approved_refund_maps_to_refunded(self):
    payload = {"transaction_status": "approved", "transaction_id": "ET9", "transaction_tag": "9"}
    result = _make_adapter()._interpret_processor_response("refund", payload)
    assert result.status == TransactionStatus.REFUNDED


# ===========================================================================
# Test: Offsite card storage
# ===========================================================================

class TestOffsiteStorageRoundTrip:

  def test_store_charge_remove_then_not_found(self):
    adapter = _make_adapter(stored=True)

    async def scenario():
      stored_account = await adapter.store_cc(_make_card(), _make_contact())
      charge = await adapter.process_stored_cc(stored_account, "10.00")
      removal = await adapter.remove_cc(
        stored_account.client_reference_id, stored_account.account_reference_id,
      )
      return stored_account, charge, removal

    stored_account, charge, removal = _run(scenario())
    assert isinstance(stored_account, StoredAccountRef)
    assert charge.status == TransactionStatus.APPROVED
    assert removal == stored_account

    with pytest.raises(NotFoundError):
      _run(adapter.process_stored_cc(stored_account, "10.00"))

  def test_store_under_existing_client(self):
    adapter = _make_adapter(stored=True)

    async def scenario():
      first = await adapter.store_cc(_make_card(), _make_contact())
      second = await adapter.store_cc(
        _make_card(card_number="5555555555554444", type="mastercard"),
        _make_contact(),
        first.client_reference_id,
      )
      return first, second

    first, second = _run(scenario())
    assert first.client_reference_id == second.client_reference_id
    assert first.account_reference_id != second.account_reference_id

  def test_store_invalid_card_raises_gateway_error(self):
    with pytest.raises(GatewayError):
      _run(_make_adapter().store_cc(_make_card(card_number="4111111111111112"), _make_contact()))

  def test_stored_ref_accepts_plain_dict(self):
    adapter = _make_adapter(stored=True)

    async def scenario():
      stored_account = await adapter.store_cc(_make_card(), _make_contact())
      return await adapter.process_stored_cc(stored_account.model_dump(), "10.00")

    assert _run(scenario()).status == TransactionStatus.APPROVED

  def test_remove_unknown_account_raises_not_found(self):
    with pytest.raises(NotFoundError):
      _run(_make_adapter().remove_cc("CUS-NOPE", "CARD-NOPE"))

  def test_update_unknown_account_raises_not_found(self):
    with pytest.raises(NotFoundError):
      _run(_make_adapter().update_cc(_make_card(), _make_contact(), "CUS-NOPE", "CARD-NOPE"))

  def test_update_billing_only_keeps_account(self):
    adapter = _make_adapter(stored=True)

    async def scenario():
      stored_account = await adapter.store_cc(_make_card(), _make_contact())
      updated = await adapter.update_cc(
        _make_card(card_number="4012888888881881", zip="10001"),
        _make_contact(),
        stored_account.client_reference_id,
        stored_account.account_reference_id,
      )
      charge = await adapter.process_stored_cc(updated, "12.00")
      return stored_account, updated, charge

    stored_account, updated, charge = _run(scenario())
    assert updated == stored_account
    assert charge.status == TransactionStatus.APPROVED

  def test_update_with_changed_account(self):
    adapter = _make_adapter(stored=True)

    async def scenario():
      stored_account = await adapter.store_cc(_make_card(), _make_contact())
      return await adapter.update_cc(
        _make_card(card_number="5555555555554444", type="mastercard", account_changed=True),
        _make_contact(),
        stored_account.client_reference_id,
        stored_account.account_reference_id,
      )

    updated = _run(scenario())
    assert updated.account_reference_id


class TestStoredTransactionVariants:

  def test_authorize_capture_refund_stored(self):
    adapter = _make_adapter(stored=True)

    async def scenario():
      stored_account = await adapter.store_cc(_make_card(), _make_contact())
      authorization = await adapter.authorize_stored_cc(stored_account, "75.00")
      capture = await adapter.capture_stored_cc(
        stored_account, authorization.reference_id, authorization.transaction_id, "75.00",
      )
      refund = await adapter.refund_stored_cc(
        stored_account, capture.reference_id, capture.transaction_id, "75.00",
      )
      return authorization, capture, refund

    authorization, capture, refund = _run(scenario())
    assert authorization.status == TransactionStatus.PENDING
    assert capture.status == TransactionStatus.APPROVED
    assert refund.status == TransactionStatus.REFUNDED

  def test_void_stored(self):
    adapter = _make_adapter(stored=True)

    async def scenario():
      stored_account = await adapter.store_cc(_make_card(), _make_contact())
      authorization = await adapter.authorize_stored_cc(stored_account, "75.00")
      return await adapter.void_stored_cc(
        stored_account, authorization.reference_id, authorization.transaction_id,
      )

    assert _run(scenario()).status == TransactionStatus.VOID

  def test_stored_refund_over_amount_raises(self):
    adapter = _make_adapter(stored=True)

    async def scenario():
      stored_account = await adapter.store_cc(_make_card(), _make_contact())
      charge = await adapter.process_stored_cc(stored_account, "10.00")
      await adapter.refund_stored_cc(
        stored_account, charge.reference_id, charge.transaction_id, "10.50",
      )

    with pytest.raises(InvalidAmountError):
      _run(scenario())

  def test_capture_against_unknown_account_raises_not_found(self):
    adapter = _make_adapter(stored=True)

    async def scenario():
      authorization = await adapter.authorize_cc(_make_card(), "10.00")
      await adapter.capture_stored_cc(
        StoredAccountRef(client_reference_id="CUS-NOPE", account_reference_id="CARD-NOPE"),
        authorization.reference_id,
        authorization.transaction_id,
        "10.00",
      )

    with pytest.raises(NotFoundError):
      _run(scenario())


class TestStoredFollowUpsAreScopedToTheirAccount:
  """Capture, void and refund through a stored account only reach its own transactions."""

  def _store_two_accounts(self, adapter):
    async def store_both():
      first_account = await adapter.store_cc(_make_card(), _make_contact())
      second_account = await adapter.store_cc(
        _make_card(card_number="5555555555554444", type="mastercard"), _make_contact(),
      )
      return first_account, second_account

    return _run(store_both())

  def test_refund_through_another_account_raises_not_found(self):
    adapter = _make_adapter(stored=True)
    first_account, second_account = self._store_two_accounts(adapter)
    charge = _run(adapter.process_stored_cc(first_account, "10.00"))

    with pytest.raises(NotFoundError):
      _run(adapter.refund_stored_cc(second_account, charge.reference_id, charge.transaction_id, "10.00"))

    refund = _run(adapter.refund_stored_cc(first_account, charge.reference_id, charge.transaction_id, "10.00"))
    assert refund.status == TransactionStatus.REFUNDED

  def test_capture_through_another_account_raises_not_found(self):
    adapter = _make_adapter(stored=True)
    first_account, second_account = self._store_two_accounts(adapter)
    authorization = _run(adapter.authorize_stored_cc(first_account, "10.00"))

    with pytest.raises(NotFoundError):
      _run(adapter.capture_stored_cc(
        second_account, authorization.reference_id, authorization.transaction_id, "10.00",
      ))

    capture = _run(adapter.capture_stored_cc(
      first_account, authorization.reference_id, authorization.transaction_id, "10.00",
    ))
    assert capture.status == TransactionStatus.APPROVED

  def test_void_through_another_account_raises_not_found(self):
    adapter = _make_adapter(stored=True)
    first_account, second_account = self._store_two_accounts(adapter)
    authorization = _run(adapter.authorize_stored_cc(first_account, "10.00"))

    with pytest.raises(NotFoundError):
      _run(adapter.void_stored_cc(second_account, authorization.reference_id, authorization.transaction_id))

    void = _run(adapter.void_stored_cc(first_account, authorization.reference_id, authorization.transaction_id))
    assert void.status == TransactionStatus.VOID

  def test_refund_of_captured_stored_authorization_stays_scoped(self):
    adapter = _make_adapter(stored=True)
    first_account, second_account = self._store_two_accounts(adapter)

    async def scenario():
      authorization = await adapter.authorize_stored_cc(first_account, "10.00")
      capture = await adapter.capture_stored_cc(
        first_account, authorization.reference_id, authorization.transaction_id, "10.00",
      )
      await adapter.refund_stored_cc(second_account, capture.reference_id, capture.transaction_id, "10.00")

    with pytest.raises(NotFoundError):
      _run(scenario())

  def test_direct_card_charge_is_not_reachable_through_a_stored_account(self):
    adapter = _make_adapter(stored=True)
    first_account, _second_account = self._store_two_accounts(adapter)
    charge = _run(adapter.process_cc(_make_card(), "10.00"))

    with pytest.raises(NotFoundError):
      _run(adapter.refund_stored_cc(first_account, charge.reference_id, charge.transaction_id, "10.00"))

  def test_changed_account_keeps_its_earlier_transactions(self):
    adapter = _make_adapter(stored=True)
    first_account, _second_account = self._store_two_accounts(adapter)

    async def scenario():
      charge = await adapter.process_stored_cc(first_account, "10.00")
      await adapter.update_cc(
        _make_card(card_number="4012888888881881", account_changed=True),
        _make_contact(),
        first_account.client_reference_id,
        first_account.account_reference_id,
      )
      return await adapter.refund_stored_cc(first_account, charge.reference_id, charge.transaction_id, "10.00")

    assert _run(scenario()).status == TransactionStatus.REFUNDED


class TestCapturedAuthorizationLifecycle:
  """Once captured, an authorization settles only through its capture."""

  def test_void_of_captured_authorization_is_declined(self):
    adapter = _make_adapter()

    async def scenario():
      authorization = await adapter.authorize_cc(_make_card(), "10.00")
      capture = await adapter.capture_cc(authorization.reference_id, authorization.transaction_id, "10.00")
      void = await adapter.void_cc(authorization.reference_id, authorization.transaction_id)
      refund = await adapter.refund_cc(capture.reference_id, capture.transaction_id, "10.00")
      return void, refund

    void, refund = _run(scenario())
    assert void.status == TransactionStatus.DECLINED
    assert void.error_type == "unsupported"
    assert refund.status == TransactionStatus.REFUNDED

  def test_voided_capture_cannot_be_refunded(self):
    adapter = _make_adapter()

    async def scenario():
      authorization = await adapter.authorize_cc(_make_card(), "10.00")
      capture = await adapter.capture_cc(authorization.reference_id, authorization.transaction_id, "10.00")
      void = await adapter.void_cc(capture.reference_id, capture.transaction_id)
      refund = await adapter.refund_cc(capture.reference_id, capture.transaction_id, "10.00")
      return void, refund

    void, refund = _run(scenario())
    assert void.status == TransactionStatus.VOID
    assert refund.status == TransactionStatus.DECLINED


class TestSandboxClientRegistry:

  def test_registry_is_capped(self):
    with patch("config.PAYEEZY_SANDBOX_MAX_CLIENTS", 2):
      oldest = create_processor_client("sk_cap_one", processor_mode="sandbox")
      create_processor_client("sk_cap_two", processor_mode="sandbox")
      create_processor_client("sk_cap_three", processor_mode="sandbox")
      assert create_processor_client("sk_cap_one", processor_mode="sandbox") is not oldest

  def test_recently_used_client_is_kept(self):
    with patch("config.PAYEEZY_SANDBOX_MAX_CLIENTS", 2):
      kept = create_processor_client("sk_lru_one", processor_mode="sandbox")
      create_processor_client("sk_lru_two", processor_mode="sandbox")
      create_processor_client("sk_lru_one", processor_mode="sandbox")
      create_processor_client("sk_lru_three", processor_mode="sandbox")
      assert create_processor_client("sk_lru_one", processor_mode="sandbox") is kept
