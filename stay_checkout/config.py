import os

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DEBUG = LOG_LEVEL == "DEBUG"

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:3000/api/v1")
if not API_BASE_URL.strip():
    raise ValueError("API_BASE_URL must not be empty")

PAYMENT_GATEWAY_KEY = os.getenv("PAYMENT_GATEWAY_KEY", "")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "INR").upper()
GATEWAY_THEME_COLOR = os.getenv("GATEWAY_THEME_COLOR", "#10b981")

# Gateway amounts are expressed in the currency's minor unit (paise for INR)
CURRENCY_MINOR_UNITS = 100


def _positive_number(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


REQUEST_TIMEOUT_SECONDS = _positive_number("REQUEST_TIMEOUT_SECONDS", "120")
AUTH_TIMEOUT_SECONDS = _positive_number("AUTH_TIMEOUT_SECONDS", "10")
HOLD_DURATION_MINUTES = _positive_number("HOLD_DURATION_MINUTES", "15")
