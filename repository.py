"""
Credential repository: CRUD over OTP credentials with transparent encryption.

When a vault password is set every record's sensitive fields (secret and OTP
parameters) are encrypted with a fresh salt and nonce on each write. Account
name, issuer, prefix and postfix stay in cleartext so the vault can be listed
while locked. Without a vault password records are stored as plaintext JSON.
"""
import json
import logging
from typing import Any, Dict, List, Optional

from crypto_utils import CryptoUtils
from errors import DecryptionError, ImportFormatError, VaultLocked
from models import EncryptedRecord, OtpCredential
from session import SessionAuthenticator
from storage import Storage

# Configure logging
logger = logging.getLogger(__name__)


class CredentialRepository:
    """Stores OtpCredential objects, encrypting them under the session password."""

    def __init__(self, storage: Storage, crypto: CryptoUtils, auth: SessionAuthenticator):
        """
        Initialize the repository.

        Args:
            storage: Storage instance
            crypto: CryptoUtils instance
            auth: Session authenticator; asked for the password on every call
        """
        self.storage = storage
        self.crypto = crypto
        self.auth = auth

    def _password(self) -> Optional[str]:
        """The password to encrypt with, None in plaintext mode."""
        if not self.auth.is_password_set():
            return None
        password = self.auth.active_password()
        if password is None:
            raise VaultLocked()
        return password

    def _to_record(self, credential: OtpCredential, password: Optional[str]) -> Dict[str, Any]:
        record = {
            'id': credential.id,
            'account_name': credential.account_name,
            'issuer': credential.issuer,
            'prefix': credential.prefix,
            'postfix': credential.postfix,
        }
        payload = json.dumps(credential.sensitive_fields())

        if password is None:
            record.update(encrypted=False, payload=payload, salt=None, iv=None, kdf_params=None)
        else:
            result = self.crypto.encrypt(payload, password)
            record.update(
                encrypted=True,
                payload=result.ciphertext,
                salt=result.salt,
                iv=result.iv,
                kdf_params=result.kdf_params,
            )
        return record

    def _from_record(self, record: Dict[str, Any], password: Optional[str]) -> OtpCredential:
        if record['encrypted']:
            if password is None:
                raise DecryptionError()
            kdf_params = record['kdf_params'] or {}
            if not isinstance(kdf_params, dict):
                raise DecryptionError()
            iterations = kdf_params.get('iterations')
            if iterations is not None and (not isinstance(iterations, int) or iterations <= 0):
                raise DecryptionError()
            payload = self.crypto.decrypt(record['payload'], password, record['salt'],
                                          record['iv'], iterations)
        else:
            payload = record['payload']

        try:
            sensitive = json.loads(payload)
            return OtpCredential(
                id=record['id'],
                account_name=record['account_name'],
                issuer=record['issuer'],
                prefix=record['prefix'] or "",
                postfix=record['postfix'] or "",
                secret=sensitive['secret'],
                type=sensitive['type'],
                algorithm=sensitive['algorithm'],
                digits=int(sensitive['digits']),
                period=int(sensitive['period']),
                counter=int(sensitive['counter']),
                created_at=record['created_at'],
                updated_at=record['updated_at'],
            )
        except (KeyError, TypeError, ValueError) as e:
            # json.JSONDecodeError is a ValueError
            raise DecryptionError() from e

    def get_all(self) -> List[OtpCredential]:
        """
        Get every credential that can be decrypted.

        A record that fails to decrypt is left out of the result and logged
        by id; the rest of the vault stays available.
        """
        password = self._password()
        credentials = []
        for record in self.storage.list_records():
            try:
                credentials.append(self._from_record(record, password))
            except DecryptionError:
                logger.warning("Skipping credential %s: could not be decrypted", record['id'])
        return credentials

    def get_by_id(self, credential_id: str) -> Optional[OtpCredential]:
        """
        Get a single credential.

        Returns:
            The credential, or None if no record has this id

        Raises:
            DecryptionError: If the record exists but cannot be decrypted
        """
        password = self._password()
        record = self.storage.get_record(credential_id)
        if record is None:
            return None
        return self._from_record(record, password)

    def get_encrypted(self, credential_id: str) -> Optional[EncryptedRecord]:
        """The stored encrypted form of a credential, None if absent or cleartext."""
        record = self.storage.get_record(credential_id)
        if record is None or not record['encrypted']:
            return None
        return EncryptedRecord(
            id=record['id'],
            ciphertext=record['payload'],
            salt=record['salt'],
            iv=record['iv'],
            kdf_params=record['kdf_params'],
            public_fields={
                'accountName': record['account_name'],
                'issuer': record['issuer'],
                'prefix': record['prefix'],
                'postfix': record['postfix'],
            },
        )

    def list_public(self, search_query: str = None) -> List[Dict[str, Any]]:
        """List the cleartext fields of every record; works while locked."""
        return [
            {
                'id': record['id'],
                'accountName': record['account_name'],
                'issuer': record['issuer'],
                'prefix': record['prefix'],
                'postfix': record['postfix'],
                'encrypted': record['encrypted'],
                'updated_at': record['updated_at'],
            }
            for record in self.storage.list_records(search_query)
        ]

    def save(self, credential: OtpCredential) -> OtpCredential:
        """Insert or update a credential, re-encrypting with a fresh salt and nonce."""
        password = self._password()
        self.storage.upsert_record(self._to_record(credential, password))
        return credential

    def save_all(self, credentials: List[OtpCredential], replace: bool = False):
        """
        Insert or update several credentials in one transaction.

        Every credential is encrypted before anything is written, so an
        encryption failure leaves the stored vault unchanged.
        """
        password = self._password()
        records = [self._to_record(credential, password) for credential in credentials]
        self.storage.upsert_records(records, replace=replace)

    def remove(self, credential_id: str) -> bool:
        self._password()
        return self.storage.delete_record(credential_id)

    def clear(self):
        self._password()
        self.storage.clear_records()

    def reencrypted_records(self, old_password: Optional[str],
                            new_password: str) -> List[Dict[str, Any]]:
        """
        Every stored record encrypted under a new password, without writing.

        Raises:
            DecryptionError: If any record cannot be read with the old password
        """
        records = self.storage.list_records()
        credentials = [self._from_record(record, old_password) for record in records]
        return [self._to_record(credential, new_password) for credential in credentials]

    def reencrypt_all(self, old_password: Optional[str], new_password: str) -> int:
        """
        Re-encrypt every record under a new password.

        Used for password rotation and for moving a plaintext vault to
        encrypted storage (old_password=None). Fails without writing
        anything if any record cannot be decrypted with the old password.

        Returns:
            Number of records re-encrypted
        """
        records = self.reencrypted_records(old_password, new_password)
        self.storage.upsert_records(records)
        logger.info("Re-encrypted %d credentials", len(records))
        return len(records)

    def export_json(self) -> str:
        """Export decrypted credentials as a JSON array (cleartext secrets)."""
        return json.dumps([credential.to_dict() for credential in self.get_all()], indent=2)

    def import_json(self, text: str, replace: bool = False) -> int:
        """
        Import credentials from an export file.

        Args:
            text: JSON array of credential objects
            replace: Replace the whole vault instead of merging by id

        Returns:
            Number of credentials imported

        Raises:
            ImportFormatError: If the file is not a JSON array of credentials
        """
        try:
            items = json.loads(text)
        except ValueError as e:
            raise ImportFormatError("Import file is not valid JSON") from e
        if not isinstance(items, list):
            raise ImportFormatError("Import file must contain a JSON array")

        credentials = []
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                raise ImportFormatError(f"Entry {index} is not an object")
            try:
                credentials.append(OtpCredential.from_dict(item))
            except (TypeError, ValueError) as e:
                raise ImportFormatError(f"Entry {index} is not a valid credential: {e}") from e

        self.save_all(credentials, replace=replace)
        logger.info("Imported %d credentials (replace=%s)", len(credentials), replace)
        return len(credentials)
