"""
Data models for OTP Vault.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional

DEFAULT_ALGORITHM = "SHA1"
DEFAULT_DIGITS = 6
DEFAULT_PERIOD = 30
STANDARD_DIGITS = (6, 8)


class OtpType(str, Enum):
    TOTP = "TOTP"
    HOTP = "HOTP"


class Algorithm(str, Enum):
    SHA1 = "SHA1"
    SHA256 = "SHA256"
    SHA512 = "SHA512"


def _new_id() -> str:
    return uuid.uuid4().hex


def _upper(value):
    return value.upper() if isinstance(value, str) else value


@dataclass
class OtpCredential:
    """Decrypted OTP account as used by the engine and the export file."""
    account_name: str
    secret: str
    issuer: Optional[str] = None
    type: OtpType = OtpType.TOTP
    algorithm: str = DEFAULT_ALGORITHM
    digits: int = DEFAULT_DIGITS
    period: int = DEFAULT_PERIOD
    counter: int = 0
    prefix: str = ""
    postfix: str = ""
    id: str = field(default_factory=_new_id)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        for name in ('account_name', 'secret', 'prefix', 'postfix', 'algorithm'):
            if not isinstance(getattr(self, name), str):
                raise ValueError(f"{name} must be a string")
        if self.issuer is not None and not isinstance(self.issuer, str):
            raise ValueError("issuer must be a string")
        if not self.account_name.strip():
            raise ValueError("account_name must not be empty")
        if not self.secret.strip():
            raise ValueError("secret must not be empty")
        if not isinstance(self.type, OtpType):
            self.type = OtpType(str(self.type).upper())

    def __repr__(self) -> str:
        # Keep the secret out of tracebacks and log lines.
        return (f"OtpCredential(id={self.id!r}, account_name={self.account_name!r}, "
                f"issuer={self.issuer!r}, type={self.type.value}, secret='***')")

    @property
    def has_standard_digits(self) -> bool:
        return self.digits in STANDARD_DIGITS

    def sensitive_fields(self) -> Dict[str, Any]:
        """Fields that go through encryption when a vault password is active."""
        return {
            'secret': self.secret,
            'type': self.type.value,
            'algorithm': self.algorithm,
            'digits': self.digits,
            'period': self.period,
            'counter': self.counter,
        }

    def public_fields(self) -> Dict[str, Any]:
        """Fields stored in cleartext so the vault can be listed while locked."""
        return {
            'accountName': self.account_name,
            'issuer': self.issuer,
            'prefix': self.prefix,
            'postfix': self.postfix,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = {'id': self.id}
        data.update(self.public_fields())
        data.update(self.sensitive_fields())
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OtpCredential":
        """
        Build a credential from the export-file shape.

        Accepts the older ``secretKey`` spelling for ``secret``.
        """
        kwargs = dict(
            account_name=data.get('accountName') or data.get('account_name'),
            secret=data.get('secret') or data.get('secretKey'),
            issuer=data.get('issuer') or None,
            type=data.get('type') or OtpType.TOTP,
            algorithm=_upper(data.get('algorithm') or DEFAULT_ALGORITHM),
            digits=int(data.get('digits', DEFAULT_DIGITS)),
            period=int(data.get('period', DEFAULT_PERIOD)),
            counter=int(data.get('counter', 0)),
            prefix=data.get('prefix') or "",
            postfix=data.get('postfix') or "",
        )
        if data.get('id'):
            kwargs['id'] = str(data['id'])
        return cls(**kwargs)


@dataclass
class EncryptionResult:
    """Output of a single encryption, all binary fields base64 encoded."""
    ciphertext: str
    salt: str
    iv: str
    kdf_params: Dict[str, Any]


@dataclass
class EncryptedRecord:
    """On-disk shape of a credential while a vault password is active."""
    id: str
    ciphertext: str
    salt: str
    iv: str
    kdf_params: Dict[str, Any]
    public_fields: Dict[str, Any]


@dataclass
class VaultSession:
    is_authenticated: bool = False
    expires_at: Optional[float] = None
    remember_me: bool = False

    @classmethod
    def locked(cls) -> "VaultSession":
        return cls(is_authenticated=False, expires_at=None, remember_me=False)


@dataclass
class OtpUriLabel:
    issuer: Optional[str]
    account: str


@dataclass
class OtpUriParameters:
    secret: str
    issuer: Optional[str] = None
    algorithm: Optional[str] = None
    digits: Optional[int] = None
    period: Optional[int] = None
    counter: Optional[int] = None
    extra: Dict[str, str] = field(default_factory=dict)


@dataclass
class OtpUriData:
    """Transient result of parsing an otpauth:// URI."""
    type: OtpType
    label: OtpUriLabel
    parameters: OtpUriParameters

    @property
    def effective_issuer(self) -> Optional[str]:
        return self.parameters.issuer or self.label.issuer
