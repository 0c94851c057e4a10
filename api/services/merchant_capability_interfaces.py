"""
Payeezy Gateway -- Merchant Capability Interfaces

The two capability sets a host calls a card gateway through:

  DirectCardProcessing -- raw card data goes to the processor on each charge
  OffsiteCardStorage   -- cards are tokenized and stored with the processor;
                          later charges reference the stored account

requires_cc_storage() tells the host at runtime which of the two paths to
route card payments through.
"""

from abc import ABC, abstractmethod


class DirectCardProcessing(ABC):
  """Charge, authorize, capture, void and refund raw cards."""

  @abstractmethod
  async def process_cc(self, card_info, amount, invoice_amounts=None):
    """Charge a card. Returns TransactionResult."""
    ...

  @abstractmethod
  async def authorize_cc(self, card_info, amount, invoice_amounts=None):
    """Authorize a card (do not charge). Returns TransactionResult."""
    ...

  @abstractmethod
  async def capture_cc(self, reference_id, transaction_id, amount, invoice_amounts=None):
    """Capture a previous authorization. Returns TransactionResult."""
    ...

  @abstractmethod
  async def void_cc(self, reference_id, transaction_id):
    """Void a charge or authorization. Returns TransactionResult."""
    ...

  @abstractmethod
  async def refund_cc(self, reference_id, transaction_id, amount):
    """Refund a captured charge. Returns TransactionResult."""
    ...


class OffsiteCardStorage(ABC):
  """Store cards with the processor and transact against stored accounts."""

  @abstractmethod
  async def store_cc(self, card_info, contact_info, client_reference_id=None):
    """Store a card offsite. Returns StoredAccountRef."""
    ...

  @abstractmethod
  async def update_cc(self, card_info, contact_info, client_reference_id, account_reference_id):
    """Update a card stored offsite. Returns StoredAccountRef."""
    ...

  @abstractmethod
  async def remove_cc(self, client_reference_id, account_reference_id):
    """Remove a card stored offsite. Returns StoredAccountRef."""
    ...

  @abstractmethod
  async def process_stored_cc(self, stored_account, amount, invoice_amounts=None):
    ...

  @abstractmethod
  async def authorize_stored_cc(self, stored_account, amount, invoice_amounts=None):
    ...

  @abstractmethod
  async def capture_stored_cc(
    self,
    stored_account,
    transaction_reference_id,
    transaction_id,
    amount,
    invoice_amounts=None,
  ):
    ...

  @abstractmethod
  async def void_stored_cc(self, stored_account, transaction_reference_id, transaction_id):
    ...

  @abstractmethod
  async def refund_stored_cc(self, stored_account, transaction_reference_id, transaction_id, amount):
    ...

  @abstractmethod
  def requires_cc_storage(self):
    """True if the host should call the offsite methods for card payments."""
    ...
