"""
Payeezy Gateway -- Settings Service

Validates the gateway's meta (settings) data supplied by the host's
settings store:

  api_key  -- the Payeezy API secret (required, encrypted at rest by the host)
  stored   -- store card information offsite with Payeezy (checkbox, default off)

Validation never raises. It returns the normalized meta plus a list of
field-bound ValidationError objects, so the host can redisplay the form.
"""

from services.gateway_errors import ValidationError
from services.gateway_messages import EN_US_MESSAGES
from services.gateway_models import GatewaySettings

_ENCRYPTABLE_FIELDS = ("api_key",)

_TRUTHY_CHECKBOX_VALUES = frozenset({"true", "1", "yes", "on"})


def _coerce_checkbox_value(raw_value):
  """Checkboxes arrive as bools or as "true"/"false" strings."""
  if isinstance(raw_value, bool):
    return raw_value
  if raw_value is None:
    return False
  return str(raw_value).strip().lower() in _TRUTHY_CHECKBOX_VALUES


def validate_gateway_settings(meta, messages=EN_US_MESSAGES):
  """
  Validate meta data to be updated for this gateway.

  Returns: (normalized_meta, errors)
    normalized_meta -- copy of meta with "stored" coerced to bool
                       (False when absent)
    errors          -- list of ValidationError, empty when valid
  """
  normalized_meta = dict(meta or {})
  normalized_meta["stored"] = _coerce_checkbox_value(normalized_meta.get("stored"))

  errors = []
  api_key = normalized_meta.get("api_key")
  if api_key is None or not str(api_key).strip():
    errors.append(
      ValidationError(
        field="api_key",
        rule="empty",
        message=messages["gateway.error.api_key.empty"],
      )
    )

  return normalized_meta, errors


def build_gateway_settings(meta, messages=EN_US_MESSAGES):
  """
  Build GatewaySettings from meta data.
  Raises the first ValidationError if the meta data is invalid.
  """
  normalized_meta, errors = validate_gateway_settings(meta, messages)
  if errors:
    raise errors[0]
  return GatewaySettings(
    api_key=str(normalized_meta["api_key"]).strip(),
    stored=normalized_meta["stored"],
  )


def get_encryptable_fields():
  """Meta fields the host must encrypt at rest."""
  return _ENCRYPTABLE_FIELDS
