"""
Payeezy Gateway -- Configuration

All configuration values with sensible defaults.
Override via environment variables or the service's systemd unit.

The API secret is NOT configured here: it is gateway meta data (api_key)
supplied by the host's settings store with every request.
"""

import os

# --- API Settings ---
API_VERSION = "0.3.0"
API_HOST = os.environ.get("PAYEEZY_GATEWAY_API_HOST", "127.0.0.1")
API_PORT = int(os.environ.get("PAYEEZY_GATEWAY_API_PORT", "8190"))

# --- Payeezy REST API ---
# Processor mode:
#   live    -- production Payeezy endpoint
#   cert    -- Payeezy certification (test) endpoint
#   sandbox -- in-memory processor, no network calls
PAYEEZY_PROCESSOR_MODE = os.environ.get("PAYEEZY_PROCESSOR_MODE", "live")
PAYEEZY_LIVE_API_BASE_URL = "https://api.payeezy.com"
PAYEEZY_CERT_API_BASE_URL = "https://api-cert.payeezy.com"
# Overrides the mode's base URL when set
PAYEEZY_API_BASE_URL = os.environ.get("PAYEEZY_API_BASE_URL", "")

# SECURITY: No hardcoded defaults -- must be set via environment variable or systemd unit
PAYEEZY_API_KEY_ID = os.environ.get("PAYEEZY_API_KEY_ID", "")
PAYEEZY_MERCHANT_TOKEN = os.environ.get("PAYEEZY_MERCHANT_TOKEN", "")

PAYEEZY_REQUEST_TIMEOUT_SECONDS = float(os.environ.get("PAYEEZY_REQUEST_TIMEOUT_SECONDS", "30"))

# Sandbox mode keeps one in-memory ledger per API secret, up to this many
PAYEEZY_SANDBOX_MAX_CLIENTS = int(os.environ.get("PAYEEZY_SANDBOX_MAX_CLIENTS", "256"))

# --- Transactions ---
DEFAULT_CURRENCY_CODE = os.environ.get("PAYEEZY_DEFAULT_CURRENCY", "USD")
ACCEPTED_CARD_TYPES = ("visa", "mastercard", "amex", "discover", "jcb", "diners")
