"""
Execution Adapter - Secure Logging Utilities.

============================================================
SECURITY REQUIREMENTS
============================================================
1. NEVER log the wallet private key
2. Sanitize request bodies before they reach a log line

Asset and wallet addresses are public and stay readable.

============================================================
"""

from typing import Any, Dict


# Parameter names that should be masked
SENSITIVE_PARAMS = {
    "private_key",
    "privatekey",
    "secret",
    "secret_key",
    "password",
    "api_key",
    "apikey",
    "token",
    "access_token",
}


def mask_value(value: str, show_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only first few chars.

    Args:
        value: Value to mask
        show_chars: Number of chars to show at start

    Returns:
        Masked value
    """
    if not value or len(value) <= show_chars * 2:
        return "***"
    return f"{value[:show_chars]}...***"


def mask_params(params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Mask sensitive parameters.

    Args:
        params: Request body or query parameters

    Returns:
        Copy with sensitive values masked
    """
    if not params:
        return {}

    masked = {}
    for key, value in params.items():
        if key.lower() in SENSITIVE_PARAMS:
            masked[key] = mask_value(str(value)) if value else value
        elif isinstance(value, dict):
            masked[key] = mask_params(value)
        else:
            masked[key] = value
    return masked


__all__ = ["SENSITIVE_PARAMS", "mask_value", "mask_params"]
