"""
Vault password lifecycle and session expiry.

States:
    NO_PASSWORD --set_password--> LOCKED --login--> UNLOCKED --timeout/logout--> LOCKED
"""
import asyncio
import dataclasses
import logging
import secrets
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from crypto_utils import CryptoUtils
from errors import BiometricError, VaultError, WeakPassword
from models import VaultSession
from storage import Storage
from utils import validate_password_strength

# Configure logging
logger = logging.getLogger(__name__)

PASSWORD_HASH_KEY = 'password_hash'
DEFAULT_SESSION_TIMEOUT = 15 * 60  # seconds
MIN_PASSWORD_LENGTH = 8
CHALLENGE_BYTES = 32


class SessionState(str, Enum):
    NO_PASSWORD = "no_password"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class BiometricAuthenticator:
    """
    Boundary to the platform's local user-verifying authenticator.

    Implementations return True only when the user passed verification and
    raise BiometricError when the platform call itself fails. The default
    implementation reports that no authenticator is available.
    """

    async def is_available(self) -> bool:
        return False

    async def verify(self, challenge: bytes, origin: str) -> bool:
        return False


class SessionAuthenticator:
    """Owns the vault password verifier, the cached password and the session."""

    def __init__(self, storage: Storage, crypto: CryptoUtils,
                 session_timeout: int = DEFAULT_SESSION_TIMEOUT,
                 min_password_length: int = MIN_PASSWORD_LENGTH,
                 clock: Callable[[], float] = time.time,
                 biometrics: Optional[BiometricAuthenticator] = None,
                 origin: str = "localhost"):
        """
        Initialize the authenticator.

        Args:
            storage: Storage holding the password verifier
            crypto: CryptoUtils used for hashing and verifying the password
            session_timeout: Session lifetime in seconds unless remember_me
            min_password_length: Shortest accepted vault password
            clock: Wall-clock source returning Unix seconds
            biometrics: Platform authenticator, none available by default
            origin: Origin the biometric challenge is bound to
        """
        self.storage = storage
        self.crypto = crypto
        self.session_timeout = session_timeout
        self.min_password_length = min_password_length
        self.clock = clock
        self.biometrics = biometrics or BiometricAuthenticator()
        self.origin = origin
        self._session = VaultSession.locked()
        self._password: Optional[bytearray] = None

    # -- state ---------------------------------------------------------

    def is_password_set(self) -> bool:
        return self.storage.get_setting(PASSWORD_HASH_KEY) is not None

    @property
    def state(self) -> SessionState:
        if not self.is_password_set():
            return SessionState.NO_PASSWORD
        if self.is_authenticated():
            return SessionState.UNLOCKED
        return SessionState.LOCKED

    @property
    def session(self) -> VaultSession:
        """Snapshot of the current session after checking expiry."""
        self.is_authenticated()
        return dataclasses.replace(self._session)

    def is_authenticated(self) -> bool:
        """
        Check whether the session is unlocked.

        Expiry is evaluated lazily: a session past its expiry locks itself
        and drops the cached password as part of this call.
        """
        session = self._session
        if not session.is_authenticated:
            return False
        if session.remember_me or session.expires_at is None:
            return True
        if self.clock() >= session.expires_at:
            logger.info("Session expired, locking vault")
            self.logout()
            return False
        return True

    def active_password(self) -> Optional[str]:
        """The verified vault password while the session is unlocked."""
        if not self.is_authenticated() or self._password is None:
            return None
        return self._password.decode('utf-8')

    # -- password ------------------------------------------------------

    def check_strength(self, password: str):
        is_valid, message = validate_password_strength(password, self.min_password_length)
        if not is_valid:
            raise WeakPassword(message)

    def set_password(self, password: str, records: Optional[List[Dict[str, Any]]] = None):
        """
        Set the vault password for the first time.

        Args:
            password: New vault password
            records: Credential records already encrypted under the new
                password, written in the same transaction as the verifier

        Raises:
            WeakPassword: If the password is too short
            VaultError: If a password is already set (use change_password)
        """
        if self.is_password_set():
            raise VaultError("A vault password is already set")
        self.check_strength(password)

        self.storage.upsert_records(records or [], settings={
            PASSWORD_HASH_KEY: self.crypto.hash_password(password),
        })
        self.logout()
        logger.info("Vault password set")

    def verify_password(self, password: str) -> bool:
        password_hash = self.storage.get_setting(PASSWORD_HASH_KEY)
        if password_hash is None:
            return False
        return self.crypto.verify_password(password_hash, password)

    def change_password(self, old_password: str, new_password: str,
                        records: Optional[List[Dict[str, Any]]] = None) -> bool:
        """
        Replace the password verifier.

        Args:
            old_password: Current vault password
            new_password: Replacement password
            records: Credential records re-encrypted under the new password,
                written in the same transaction as the verifier; see
                VaultContext.change_password

        Returns:
            False if the old password does not verify
        """
        if not self.verify_password(old_password):
            logger.warning("Password change rejected: old password does not verify")
            return False
        self.check_strength(new_password)

        self.storage.upsert_records(records or [], settings={
            PASSWORD_HASH_KEY: self.crypto.hash_password(new_password),
        })
        if self._session.is_authenticated:
            self._cache_password(new_password)
        logger.info("Vault password changed")
        return True

    # -- login / logout ------------------------------------------------

    def _expiry(self, remember_me: bool, session_timeout: Optional[int]) -> Optional[float]:
        if remember_me:
            return None
        return self.clock() + (session_timeout or self.session_timeout)

    def _cache_password(self, password: str):
        self._discard_password()
        self._password = bytearray(password.encode('utf-8'))

    def _discard_password(self):
        if self._password is not None:
            for i in range(len(self._password)):
                self._password[i] = 0
            self._password = None

    def login(self, password: str, remember_me: bool = False,
              session_timeout: Optional[int] = None) -> bool:
        """
        Unlock the vault with the password.

        Args:
            password: Vault password
            remember_me: Keep the session open until logout
            session_timeout: Override the default lifetime in seconds

        Returns:
            True if unlocked; False on mismatch, leaving the vault locked
        """
        password_hash = self.storage.get_setting(PASSWORD_HASH_KEY)
        if password_hash is None:
            return False

        if not self.crypto.verify_password(password_hash, password):
            logger.warning("Login failed: password mismatch")
            self.logout()
            return False

        if self.crypto.needs_rehash(password_hash):
            self.storage.set_setting(PASSWORD_HASH_KEY, self.crypto.hash_password(password))

        self._cache_password(password)
        self._session = VaultSession(
            is_authenticated=True,
            expires_at=self._expiry(remember_me, session_timeout),
            remember_me=remember_me,
        )
        logger.info("Vault unlocked (remember_me=%s)", remember_me)
        return True

    async def login_with_biometrics(self, remember_me: bool = False,
                                    session_timeout: Optional[int] = None) -> bool:
        """
        Re-confirm the user with the platform authenticator.

        A biometric assertion does not recover the vault password, so this
        only renews a session that is still unlocked with the password
        cached in memory. On a locked vault it returns False and the user
        has to log in with the password.
        """
        if not self.is_authenticated():
            logger.info("Biometric unlock refused: no unlocked session to renew")
            return False

        if not await self.biometrics.is_available():
            logger.warning("Biometric authentication is not available")
            return False

        challenge = secrets.token_bytes(CHALLENGE_BYTES)
        try:
            verified = await self.biometrics.verify(challenge, self.origin)
        except BiometricError as e:
            logger.error("Biometric authentication error: %s", e)
            return False

        # The prompt may have outlived the session.
        if not verified or not self.is_authenticated():
            return False

        self._session = VaultSession(
            is_authenticated=True,
            expires_at=self._expiry(remember_me, session_timeout),
            remember_me=remember_me,
        )
        logger.info("Session renewed with biometrics")
        return True

    def logout(self):
        """Lock the vault and discard the cached password."""
        was_authenticated = self._session.is_authenticated
        self._discard_password()
        self._session = VaultSession.locked()
        if was_authenticated:
            logger.info("Vault locked")

    async def cleanup_task(self, interval: float = 1.0) -> None:
        """Background task that locks an expired session without waiting for a read."""
        while True:
            await asyncio.sleep(interval)
            self.is_authenticated()
