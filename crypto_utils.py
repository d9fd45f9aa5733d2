"""
Cryptographic utilities for OTP Vault.
Handles key derivation, authenticated encryption and the vault password verifier.
"""
import base64
import binascii
import hashlib
import logging
import secrets
from collections import OrderedDict
from typing import Optional

import argon2
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.exceptions import InvalidTag

from errors import EncryptionError, DecryptionError
from models import EncryptionResult

# Configure logging
logger = logging.getLogger(__name__)

# Raising the iteration count is the hardening lever; the count used is stored
# with every record so older records stay decryptable.
DEFAULT_ITERATIONS = 100000
KDF_ALGORITHM = 'pbkdf2_sha256'
KEY_LENGTH = 32  # AES-256
SALT_LENGTH = 16
NONCE_LENGTH = 12  # AES-GCM
# (salt, nonce) fingerprints remembered per instance; oldest are forgotten first
MAX_TRACKED_NONCES = 10000


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode('ascii')


def b64decode(data: str) -> bytes:
    return base64.b64decode(data.encode('ascii'), validate=True)


class CryptoUtils:
    """Cryptographic utilities for the OTP secret vault."""

    def __init__(self, iterations: int = DEFAULT_ITERATIONS, pepper: str = "",
                 password_hasher: Optional[argon2.PasswordHasher] = None):
        """
        Initialize crypto utilities.

        Args:
            iterations: PBKDF2 iteration count for new encryptions
            pepper: Optional installation-wide secret mixed into key derivation
            password_hasher: Argon2 hasher for the vault password verifier
        """
        if iterations <= 0:
            raise ValueError("iterations must be positive")
        self.iterations = iterations
        self.pepper = pepper.encode()
        self.argon2_hasher = password_hasher or argon2.PasswordHasher(
            time_cost=2,  # Number of iterations
            memory_cost=102400,  # 100MB memory usage
            parallelism=8,  # Number of parallel threads
            hash_len=32,  # Output hash length
            salt_len=16  # Salt length
        )
        # Fingerprints of (salt, nonce) pairs this instance has encrypted with
        self.max_tracked_nonces = MAX_TRACKED_NONCES
        self._used_nonces: "OrderedDict[bytes, None]" = OrderedDict()

    def derive_key(self, password: str, salt: bytes, iterations: Optional[int] = None) -> bytes:
        """
        Derive an AES-256 key from a password with PBKDF2-HMAC-SHA256.

        Args:
            password: Vault password
            salt: Random salt for key derivation
            iterations: Iteration count, defaults to the instance setting

        Returns:
            32-byte key
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=iterations or self.iterations,
        )
        return kdf.derive(password.encode() + self.pepper)

    def _claim_nonce(self, salt: bytes, nonce: bytes) -> None:
        fingerprint = hashlib.sha256(salt + nonce).digest()
        if fingerprint in self._used_nonces:
            raise EncryptionError("Salt and nonce pair has already been used")
        self._used_nonces[fingerprint] = None
        while len(self._used_nonces) > self.max_tracked_nonces:
            self._used_nonces.popitem(last=False)

    def encrypt(self, plaintext: str, password: str, salt: Optional[bytes] = None,
                iv: Optional[bytes] = None) -> EncryptionResult:
        """
        Encrypt text using AES-GCM under a password-derived key.

        AES-GCM provides both confidentiality and integrity. A fresh salt and
        nonce are generated for every call unless supplied by the caller.

        Args:
            plaintext: Text to encrypt
            password: Vault password
            salt: Optional salt (at least 16 bytes)
            iv: Optional 12-byte nonce

        Returns:
            EncryptionResult with base64 ciphertext, salt and nonce

        Raises:
            EncryptionError: On any failure, including (salt, nonce) reuse
        """
        salt = secrets.token_bytes(SALT_LENGTH) if salt is None else salt
        nonce = secrets.token_bytes(NONCE_LENGTH) if iv is None else iv

        if len(salt) < SALT_LENGTH:
            raise EncryptionError(f"Salt must be at least {SALT_LENGTH} bytes")
        if len(nonce) != NONCE_LENGTH:
            raise EncryptionError(f"Nonce must be exactly {NONCE_LENGTH} bytes")

        self._claim_nonce(salt, nonce)

        try:
            key = self.derive_key(password, salt)
            ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode('utf-8'), None)
        except (TypeError, ValueError, UnicodeError) as e:
            logger.error("Encryption failed: %s", type(e).__name__)
            raise EncryptionError("Failed to encrypt data") from e

        return EncryptionResult(
            ciphertext=b64encode(ciphertext),
            salt=b64encode(salt),
            iv=b64encode(nonce),
            kdf_params={'algorithm': KDF_ALGORITHM, 'iterations': self.iterations},
        )

    def decrypt(self, ciphertext: str, password: str, salt: str, iv: str,
                iterations: Optional[int] = None) -> str:
        """
        Decrypt data produced by encrypt.

        Args:
            ciphertext: Base64 ciphertext with GCM tag
            password: Vault password
            salt: Base64 salt used for key derivation
            iv: Base64 nonce used for encryption
            iterations: Iteration count stored with the record

        Returns:
            Decrypted text

        Raises:
            DecryptionError: For a wrong password, tampered data or malformed
                input alike
        """
        if not all(isinstance(value, str) for value in (ciphertext, salt, iv)):
            raise DecryptionError()

        try:
            raw_salt = b64decode(salt)
            nonce = b64decode(iv)
            data = b64decode(ciphertext)
            key = self.derive_key(password, raw_salt, iterations)
            plaintext = AESGCM(key).decrypt(nonce, data, None)
            return plaintext.decode('utf-8')
        except (InvalidTag, binascii.Error, TypeError, ValueError) as e:
            # One message for every cause so callers cannot tell them apart.
            raise DecryptionError() from e

    def hash_password(self, password: str) -> str:
        """
        Hash the vault password for later verification (Argon2id).

        This hash is independent from the encryption keys, which are always
        re-derived from the password text.
        """
        return self.argon2_hasher.hash(password.encode() + self.pepper)

    def verify_password(self, password_hash: str, password: str) -> bool:
        """Check a password against a stored Argon2 hash."""
        try:
            return self.argon2_hasher.verify(password_hash, password.encode() + self.pepper)
        except argon2.exceptions.VerificationError:
            return False
        except argon2.exceptions.InvalidHashError:
            logger.error("Stored password hash is malformed")
            return False

    def needs_rehash(self, password_hash: str) -> bool:
        return self.argon2_hasher.check_needs_rehash(password_hash)
