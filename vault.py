"""
Composition root for OTP Vault.

VaultContext wires storage, crypto, session, repository and OTP engine
together and is passed explicitly to whatever front end drives the vault.
"""
import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from config import Settings
from crypto_utils import CryptoUtils
from errors import InvalidParameter, VaultError
from models import OtpCredential, OtpType
from otp_engine import OtpEngine, DEFAULT_WINDOW
from repository import CredentialRepository
from session import BiometricAuthenticator, SessionAuthenticator
from storage import Storage
from uri_codec import credential_from_uri, format_otpauth_uri

# Configure logging
logger = logging.getLogger(__name__)


class VaultContext:
    """The vault's components plus the operations that span several of them."""

    def __init__(self, storage: Storage, crypto: CryptoUtils, auth: SessionAuthenticator,
                 repository: CredentialRepository, engine: OtpEngine):
        self.storage = storage
        self.crypto = crypto
        self.auth = auth
        self.repository = repository
        self.engine = engine

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], float] = time.time,
                      biometrics: Optional[BiometricAuthenticator] = None,
                      password_hasher=None) -> "VaultContext":
        """
        Build a context from settings, creating the database tables if needed.

        Args:
            settings: Loaded Settings
            clock: Wall-clock source shared by the session and the OTP engine
            biometrics: Platform authenticator, if any
            password_hasher: Argon2 hasher override
        """
        storage = Storage(settings.db_path)
        storage.init_db()
        crypto = CryptoUtils(settings.kdf_iterations, settings.pepper, password_hasher)
        auth = SessionAuthenticator(
            storage, crypto,
            session_timeout=settings.session_timeout,
            min_password_length=settings.min_password_length,
            clock=clock,
            biometrics=biometrics,
        )
        repository = CredentialRepository(storage, crypto, auth)
        return cls(storage, crypto, auth, repository, OtpEngine(clock))

    def close(self):
        self.auth.logout()
        self.storage.close()

    # -- password ------------------------------------------------------

    def setup_password(self, password: str, remember_me: bool = False) -> int:
        """
        Set the first vault password, unlock, and encrypt existing records.

        The verifier and the encrypted records are written in one
        transaction; if any plaintext record cannot be read nothing changes.

        Returns:
            Number of plaintext records that were moved to encrypted storage
        """
        if self.auth.is_password_set():
            raise VaultError("A vault password is already set")
        self.auth.check_strength(password)

        records = self.repository.reencrypted_records(None, password)
        self.auth.set_password(password, records=records)
        self.auth.login(password, remember_me=remember_me)
        if records:
            logger.info("Encrypted %d previously plaintext credentials", len(records))
        return len(records)

    def change_password(self, old_password: str, new_password: str) -> bool:
        """
        Rotate the vault password, re-encrypting every record.

        Records and verifier are written in one transaction.

        Returns:
            False if the old password is wrong; nothing is changed then
        """
        if not self.auth.verify_password(old_password):
            logger.warning("Password change rejected: old password does not verify")
            return False
        self.auth.check_strength(new_password)
        records = self.repository.reencrypted_records(old_password, new_password)
        return self.auth.change_password(old_password, new_password, records=records)

    # -- credentials ---------------------------------------------------

    def add_from_uri(self, uri: str, prefix: str = "", postfix: str = "") -> OtpCredential:
        """Parse a scanned or pasted otpauth:// URI and store the credential."""
        credential = credential_from_uri(uri, prefix=prefix, postfix=postfix)
        self.repository.save(credential)
        logger.info("Added credential %s from URI", credential.id)
        return credential

    def _get(self, credential_id: str) -> OtpCredential:
        credential = self.repository.get_by_id(credential_id)
        if credential is None:
            raise VaultError(f"No credential with id {credential_id}")
        return credential

    def export_uri(self, credential_id: str) -> str:
        return format_otpauth_uri(self._get(credential_id))

    def current_codes(self, now: Optional[float] = None) -> List[Tuple[OtpCredential, str, Optional[int]]]:
        """Current decorated code for every readable credential; see codes_for."""
        return self.codes_for(self.repository.get_all(), now)

    def codes_for(self, credentials: List[OtpCredential],
                  now: Optional[float] = None) -> List[Tuple[OtpCredential, str, Optional[int]]]:
        """
        Current decorated codes for already decrypted credentials.

        Nothing is decrypted here, so a display loop can call this every tick.

        Returns:
            (credential, decorated code, remaining seconds) tuples; remaining
            seconds is None for HOTP credentials
        """
        codes = []
        for credential in credentials:
            try:
                code = self.engine.generate(credential, now)
            except InvalidParameter as e:
                logger.warning("Cannot generate code for credential %s: %s", credential.id, e)
                continue
            remaining = None
            if credential.type == OtpType.TOTP:
                remaining = self.engine.remaining_seconds(credential.period, now)
            codes.append((credential, self.engine.decorate(code, credential), remaining))
        return codes

    def next_hotp_code(self, credential_id: str) -> str:
        """Generate the next HOTP code and persist the advanced counter."""
        credential = self._get(credential_id)
        code = self.engine.next_hotp(credential)
        self.repository.save(credential)
        return self.engine.decorate(code, credential)

    def verify_code(self, credential_id: str, token: str, window: int = DEFAULT_WINDOW) -> bool:
        """
        Check a code against a stored credential.

        HOTP matches resynchronise and persist the counter.
        """
        credential = self._get(credential_id)
        if credential.type == OtpType.HOTP:
            if not self.engine.resync_hotp(token, credential, window):
                return False
            self.repository.save(credential)
            return True
        return self.engine.validate(token, credential, window=window)

    async def countdown_task(self, credentials: List[OtpCredential],
                             callback: Callable[[Dict[str, int]], None],
                             interval: float = 1.0) -> None:
        """
        Tick once per interval with the remaining seconds of visible TOTP credentials.

        Each tick also checks session expiry; once the vault locks the
        callback receives an empty mapping and the task ends.
        """
        while True:
            if self.auth.is_password_set() and not self.auth.is_authenticated():
                callback({})
                return
            callback({
                credential.id: self.engine.remaining_seconds(credential.period)
                for credential in credentials
                if credential.type == OtpType.TOTP
            })
            await asyncio.sleep(interval)
