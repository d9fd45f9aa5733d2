"""
Exception types for OTP Vault.
"""


class VaultError(Exception):
    """Base class for all OTP Vault errors."""


class ParseError(VaultError):
    """An otpauth:// URI could not be parsed."""


class InvalidScheme(ParseError):
    pass


class InvalidType(ParseError):
    pass


class EmptyLabel(ParseError):
    pass


class EmptyAccount(ParseError):
    pass


class MissingSecret(ParseError):
    pass


class MissingCounter(ParseError):
    pass


class InvalidParameter(VaultError):
    """A credential parameter cannot be used to generate a code."""


class LabelEncodingError(VaultError):
    """A credential label cannot be written as a URI that parses back the same."""


class CryptoError(VaultError):
    pass


class EncryptionError(CryptoError):
    pass


class DecryptionError(CryptoError):
    """Raised for every decryption failure with the same message."""

    def __init__(self, message: str = "Failed to decrypt data"):
        super().__init__(message)


class WeakPassword(VaultError):
    pass


class VaultLocked(VaultError):
    """A vault password is set but the session is not unlocked."""

    def __init__(self, message: str = "Vault is locked"):
        super().__init__(message)


class ImportFormatError(VaultError):
    pass


class BiometricError(VaultError):
    """The platform authenticator failed or was dismissed."""
