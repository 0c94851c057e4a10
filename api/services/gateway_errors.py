"""
Payeezy Gateway -- Error Types

Hard failures raised by the transaction adapter and processor clients.

Processor rejections (declined cards, AVS/CVV failures, ...) are NOT raised.
They come back as a TransactionResult with status "declined". Only failures
that prevent any status from being obtained raise:

  AuthenticationError  -- the processor rejected our credentials
  NotFoundError        -- referenced transaction or stored account unknown
  InvalidAmountError   -- amount is non-positive or exceeds what is available
  GatewayError         -- transport failure, 5xx, or an unreadable response

ValidationError is used for local settings validation and is returned
(not raised) by the settings service.
"""


class GatewayError(Exception):
  """Base class for failures talking to the payment processor."""

  def __init__(self, message, processor_code=None):
    super().__init__(message)
    self.message = message
    self.processor_code = processor_code


class AuthenticationError(GatewayError):
  """Bad or missing API credentials."""


class NotFoundError(GatewayError):
  """The processor does not know the referenced transaction or account."""


class InvalidAmountError(GatewayError):
  """The amount is invalid for this operation (e.g. refund exceeds capture)."""


class ValidationError(Exception):
  """A gateway settings field failed validation."""

  def __init__(self, field, rule, message):
    super().__init__(message)
    self.field = field
    self.rule = rule
    self.message = message

  def as_input_error(self):
    """Field-keyed error dict, e.g. {"api_key": {"empty": "..."}}."""
    return {self.field: {self.rule: self.message}}
