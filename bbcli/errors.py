"""Error taxonomy for the CLI.

Every failure the vault, the envelope or the exchange client raises is a
``CliError`` carrying a stable ``kind`` (its value is the public error code),
a human message and a remediation hint. Callers switch on ``err.kind``.
"""
import json
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Stable error codes."""

    DUPLICATE_NAME = "DUPLICATE_NAME"
    NOT_FOUND = "NOT_FOUND"
    DECRYPTION_FAILURE = "DECRYPTION_FAILURE"
    API_KEY_NOT_FOUND = "API_KEY_NOT_FOUND"
    AUTH_ERROR = "AUTH_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    INVALID_SYMBOL = "INVALID_SYMBOL"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    NETWORK_ERROR = "NETWORK_ERROR"
    GEO_BLOCKED = "GEO_BLOCKED"
    HTTP_ERROR = "HTTP_ERROR"
    API_ERROR = "API_ERROR"
    UNKNOWN = "UNKNOWN"


class CliError(Exception):
    """Single error type; ``kind`` tells the failures apart."""

    def __init__(self, kind: ErrorKind, message: str, hint: str, ret_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.hint = hint
        # exchange retCode, when the error came from a v5 response
        self.ret_code = ret_code

    @property
    def code(self) -> str:
        return self.kind.value

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "suggestion": self.hint}


# --- Vault / envelope errors ---
def duplicate_name_error(name: str) -> CliError:
    return CliError(
        ErrorKind.DUPLICATE_NAME,
        f'Account "{name}" already exists',
        "Pick another name or remove the existing account first.",
    )


def not_found_error(name: str) -> CliError:
    return CliError(
        ErrorKind.NOT_FOUND,
        f'Account "{name}" not found',
        "List configured accounts with: bb account ls",
    )


def decryption_failure() -> CliError:
    return CliError(
        ErrorKind.DECRYPTION_FAILURE,
        "Failed to decrypt stored API secret (wrong key or corrupted data).",
        "Restore BYBIT_CLI_ENCRYPTION_KEY to the value used when the account "
        "was added, or remove and re-add the account.",
    )


def api_key_not_found_error() -> CliError:
    return CliError(
        ErrorKind.API_KEY_NOT_FOUND,
        "No account configured. Run 'bb account add' first.",
        "Run 'bb account add' to set up an account.",
    )


def database_error(exc: Exception) -> CliError:
    return CliError(
        ErrorKind.UNKNOWN,
        f"Account database error: {exc}",
        "The vault file may be corrupted; check the data directory or restore a backup.",
    )


# --- Exchange errors ---
def auth_error(message: Optional[str] = None) -> CliError:
    return CliError(
        ErrorKind.AUTH_ERROR,
        message or "Authentication failed: invalid API key or secret.",
        "Verify your API key and secret with 'bb account ls', or re-add with 'bb account add'.",
    )


def rate_limit_error() -> CliError:
    return CliError(
        ErrorKind.RATE_LIMIT,
        "API rate limit exceeded.",
        "Please wait a moment and try again.",
    )


def invalid_symbol_error(symbol: str) -> CliError:
    return CliError(
        ErrorKind.INVALID_SYMBOL,
        f"Invalid or unsupported symbol: {symbol}",
        "View available symbols with: bb markets ls",
    )


def insufficient_balance_error(message: Optional[str] = None) -> CliError:
    return CliError(
        ErrorKind.INSUFFICIENT_BALANCE,
        message or "Insufficient balance for this operation.",
        "Check your balance with: bb account balances",
    )


def network_error(message: Optional[str] = None) -> CliError:
    return CliError(
        ErrorKind.NETWORK_ERROR,
        message or "Network error: unable to reach Bybit API.",
        "Check your internet connection and try again.",
    )


_AUTH_CODES = {10003, 10004, 10005}
_NETWORK_MARKERS = ("ECONNREFUSED", "ETIMEDOUT", "ENOTFOUND")


def map_api_error(ret_code: int, ret_msg: str) -> CliError:
    """Map a v5 ``retCode``/``retMsg`` pair to a CliError carrying ``ret_code``."""
    if ret_code == 0 and any(marker in ret_msg for marker in _NETWORK_MARKERS):
        err = network_error(ret_msg)
    elif ret_code in _AUTH_CODES:
        err = auth_error(ret_msg)
    elif ret_code == 10006:
        err = rate_limit_error()
    elif ret_code == 110001:
        err = invalid_symbol_error(ret_msg)
    elif ret_code == 110007:
        err = insufficient_balance_error(ret_msg)
    else:
        err = CliError(
            ErrorKind.API_ERROR,
            f"API error ({ret_code}): {ret_msg}",
            "Check the Bybit API documentation or try again.",
        )
    err.ret_code = ret_code
    return err


# Fields that must never reach logs or error output
SENSITIVE_KEYS = frozenset(
    ["secret", "apiSecret", "api_secret", "key", "apiKey", "api_key", "password", "token"]
)
REDACTED = "[REDACTED]"
MAX_SANITIZE_DEPTH = 5


def sanitize(obj: Any, depth: int = 0) -> Any:
    """Recursively replace credential-like fields with ``[REDACTED]``.

    Recursion stops at ``MAX_SANITIZE_DEPTH``; anything deeper is returned
    as-is.
    """
    if depth > MAX_SANITIZE_DEPTH or obj is None or isinstance(obj, str):
        return obj
    if isinstance(obj, (list, tuple)):
        return [sanitize(v, depth + 1) for v in obj]
    if isinstance(obj, dict):
        clean = {}
        for k, v in obj.items():
            if k in SENSITIVE_KEYS:
                clean[k] = REDACTED
            else:
                clean[k] = sanitize(v, depth + 1)
        return clean
    return obj


def to_cli_error(err: Any) -> CliError:
    """Normalize anything raised or returned as an error into a CliError.

    Upstream HTTP failures arrive as plain dicts shaped like
    ``{code, message, body, requestOptions}``; ``requestOptions`` holds the
    signing secret, so only sanitized content is ever echoed.
    """
    if isinstance(err, CliError):
        return err
    if isinstance(err, Exception):
        return CliError(ErrorKind.UNKNOWN, str(err), "An unexpected error occurred.")
    if isinstance(err, dict):
        code = err.get("code")
        message = err.get("message")
        if isinstance(code, int) and not isinstance(code, bool) and isinstance(message, str):
            if code == 403:
                return CliError(
                    ErrorKind.GEO_BLOCKED,
                    "HTTP 403 Forbidden: API access blocked (possible geo-restriction).",
                    "Check if a VPN/proxy is required for your region, or use --testnet.",
                )
            if code == 429:
                return rate_limit_error()
            return CliError(
                ErrorKind.HTTP_ERROR,
                f"HTTP {code}: {message}",
                "Check your network connection and Bybit API status.",
            )
        safe = json.dumps(sanitize(err), default=str)
        return CliError(ErrorKind.UNKNOWN, safe, "An unexpected error occurred.")
    return CliError(ErrorKind.UNKNOWN, str(err), "An unexpected error occurred.")


def format_error(err: Any) -> str:
    cli_err = to_cli_error(err)
    return f"Error [{cli_err.code}]: {cli_err.message}\nSuggestion: {cli_err.hint}"


def format_error_json(err: Any) -> str:
    return json.dumps(to_cli_error(err).to_dict(), indent=2)
