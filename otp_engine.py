"""
TOTP / HOTP code generation and validation (RFC 4226 / RFC 6238).

pyotp supplies the HMAC and dynamic truncation primitive; this module owns
the step-index arithmetic, parameter checks, skew windows and HOTP
resynchronisation.
"""
import base64
import binascii
import hashlib
import hmac
import logging
import math
import time
from typing import Callable, Optional

import pyotp

from errors import InvalidParameter
from models import OtpCredential, OtpType

# Configure logging
logger = logging.getLogger(__name__)

DIGESTS = {
    'SHA1': hashlib.sha1,
    'SHA256': hashlib.sha256,
    'SHA512': hashlib.sha512,
}
# Largest code length the 31-bit truncated value can fill.
MAX_DIGITS = 10
DEFAULT_WINDOW = 1


def normalize_secret(secret: str) -> str:
    """Strip separators and padding that people paste along with base32 secrets."""
    return secret.replace(' ', '').replace('-', '').rstrip('=').upper()


class OtpEngine:
    """Generates and checks one-time codes for stored credentials."""

    def __init__(self, clock: Callable[[], float] = time.time):
        """
        Initialize the engine.

        Args:
            clock: Wall-clock source returning Unix seconds
        """
        self.clock = clock

    def _now(self, now: Optional[float]) -> float:
        return self.clock() if now is None else now

    def _hotp(self, credential: OtpCredential) -> pyotp.HOTP:
        """Check the credential parameters and build the pyotp primitive."""
        if credential.digits <= 0 or credential.digits > MAX_DIGITS:
            raise InvalidParameter(f"digits must be between 1 and {MAX_DIGITS}, got {credential.digits}")
        if credential.type == OtpType.TOTP and credential.period <= 0:
            raise InvalidParameter(f"period must be positive, got {credential.period}")
        if credential.type == OtpType.HOTP and credential.counter < 0:
            raise InvalidParameter(f"counter must not be negative, got {credential.counter}")

        digest = DIGESTS.get(str(credential.algorithm).upper())
        if digest is None:
            raise InvalidParameter(f"Unsupported algorithm {credential.algorithm!r}")

        secret = normalize_secret(credential.secret)
        padded = secret + '=' * (-len(secret) % 8)
        try:
            key = base64.b32decode(padded, casefold=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidParameter("Secret is not valid base32") from e
        if not key:
            raise InvalidParameter("Secret is empty")

        return pyotp.HOTP(secret, digits=credential.digits, digest=digest)

    def time_step(self, period: int, now: Optional[float] = None) -> int:
        """TOTP step index: floor(now / period)."""
        if period <= 0:
            raise InvalidParameter(f"period must be positive, got {period}")
        return int(math.floor(self._now(now) / period))

    def generate(self, credential: OtpCredential, now: Optional[float] = None) -> str:
        """
        Generate the current code for a credential.

        For TOTP the step index comes from the clock; for HOTP it is the
        stored counter, which is left untouched (see next_hotp).

        Args:
            credential: Decrypted credential
            now: Unix time to generate for, defaults to the engine clock

        Returns:
            Zero-padded numeric code without prefix/postfix
        """
        hotp = self._hotp(credential)
        if credential.type == OtpType.HOTP:
            return hotp.at(credential.counter)
        return hotp.at(self.time_step(credential.period, now))

    def next_hotp(self, credential: OtpCredential) -> str:
        """Generate an HOTP code and advance the counter by exactly one."""
        if credential.type != OtpType.HOTP:
            raise InvalidParameter("next_hotp only applies to HOTP credentials")
        code = self.generate(credential)
        credential.counter += 1
        return code

    @staticmethod
    def _well_formed(token: str, digits: int) -> bool:
        # compare_digest only accepts ASCII str; isdigit() alone admits other scripts.
        return len(token) == digits and token.isascii() and token.isdigit()

    def _match_hotp(self, hotp: pyotp.HOTP, token: str, counter: int, window: int) -> Optional[int]:
        for candidate in range(counter, counter + window + 1):
            if hmac.compare_digest(hotp.at(candidate), token):
                return candidate
        return None

    def validate(self, token: str, credential: OtpCredential, now: Optional[float] = None,
                 window: int = DEFAULT_WINDOW) -> bool:
        """
        Check a token without changing the credential.

        TOTP accepts steps in [current - window, current + window]; HOTP
        accepts counters in [counter, counter + window].
        """
        hotp = self._hotp(credential)
        token = str(token).strip()
        if not self._well_formed(token, credential.digits):
            return False

        if credential.type == OtpType.HOTP:
            return self._match_hotp(hotp, token, credential.counter, window) is not None

        step = self.time_step(credential.period, now)
        for offset in range(-window, window + 1):
            candidate = step + offset
            if candidate < 0:
                continue
            if hmac.compare_digest(hotp.at(candidate), token):
                return True
        return False

    def resync_hotp(self, token: str, credential: OtpCredential, window: int = DEFAULT_WINDOW) -> bool:
        """
        Validate an HOTP token and resynchronise the counter on success.

        On a match at counter c the credential counter becomes c + 1.
        """
        if credential.type != OtpType.HOTP:
            raise InvalidParameter("resync_hotp only applies to HOTP credentials")
        hotp = self._hotp(credential)
        token = str(token).strip()
        if not self._well_formed(token, credential.digits):
            return False
        matched = self._match_hotp(hotp, token, credential.counter, window)
        if matched is None:
            return False
        credential.counter = matched + 1
        logger.info("Resynchronised HOTP counter for credential %s", credential.id)
        return True

    def remaining_seconds(self, period: int, now: Optional[float] = None) -> int:
        """Seconds until the current TOTP code rolls over, always in [1, period]."""
        if period <= 0:
            raise InvalidParameter(f"period must be positive, got {period}")
        return period - (int(math.floor(self._now(now))) % period)

    @staticmethod
    def decorate(code: str, credential: OtpCredential) -> str:
        """Wrap a code in the credential's display prefix and postfix."""
        return f"{credential.prefix}{code}{credential.postfix}"

    @staticmethod
    def generate_secret(length: int = 32) -> str:
        """
        Generate a new random base32 secret.

        Args:
            length: Number of base32 characters (32 chars = 160 bits)
        """
        return pyotp.random_base32(length)
