"""
Utility functions for OTP Vault.
"""
import logging
from typing import Iterable, Tuple

from models import OtpCredential, OtpType

# Configure logging
logger = logging.getLogger(__name__)

MASK_VISIBLE = 4


def validate_password_strength(password: str, min_length: int = 8) -> tuple:
    """
    Validate vault password strength.

    Args:
        password: Password to validate
        min_length: Minimum accepted length

    Returns:
        Tuple of (is_valid, message)
    """
    if not password or len(password) < min_length:
        return False, f"Password must be at least {min_length} characters long"

    if not password.strip():
        return False, "Password must not be only whitespace"

    return True, "Password is strong"


def mask_secret(secret: str) -> str:
    """Mask all but the last few characters of a secret."""
    if len(secret) <= MASK_VISIBLE:
        return '*' * len(secret)
    return '*' * (len(secret) - MASK_VISIBLE) + secret[-MASK_VISIBLE:]


def display_name(credential: dict) -> str:
    issuer = credential.get('issuer')
    account = credential.get('accountName', '')
    return f"{issuer} ({account})" if issuer else account


def format_credential_list(credentials: list) -> str:
    """
    Format the public credential listing for display.

    Args:
        credentials: Public-field dicts as returned by CredentialRepository.list_public

    Returns:
        Formatted string
    """
    if not credentials:
        return "No credentials found."

    result = "Your credentials:\n\n"
    for cred in credentials:
        result += f"• {display_name(cred)}\n"
        result += f"  ID: {cred['id']}\n"
        if cred.get('updated_at'):
            result += f"  Last updated: {cred['updated_at'].strftime('%Y-%m-%d %H:%M')}\n"
        result += "\n"

    return result


def format_codes(codes: Iterable[Tuple[OtpCredential, str, int]]) -> str:
    """
    Format current codes for display.

    Args:
        codes: (credential, decorated code, remaining seconds) tuples

    Returns:
        Formatted string
    """
    lines = []
    for credential, code, remaining in codes:
        name = display_name(credential.public_fields())
        if credential.type == OtpType.HOTP:
            lines.append(f"{name}: {code}  (counter {credential.counter})")
        else:
            lines.append(f"{name}: {code}  ({remaining:2d}s left)")
    return "\n".join(lines) if lines else "No credentials found."
