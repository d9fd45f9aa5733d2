"""
Configuration for OTP Vault, read from the environment (and a .env file).
"""
import os
from dataclasses import dataclass

from dotenv import load_dotenv


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


@dataclass
class Settings:
    db_path: str = './otpvault.db'
    session_timeout: int = 900  # seconds
    kdf_iterations: int = 100000
    min_password_length: int = 8
    pepper: str = ''
    log_file: str = 'otpvault.log'
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            dotenv: Load a .env file from the working directory first
        """
        if dotenv:
            load_dotenv()

        return cls(
            db_path=os.getenv('DB_PATH', cls.db_path),
            session_timeout=_int_env('SESSION_TIMEOUT', cls.session_timeout),
            kdf_iterations=_int_env('KDF_ITERATIONS', cls.kdf_iterations),
            min_password_length=_int_env('MIN_PASSWORD_LENGTH', cls.min_password_length),
            pepper=os.getenv('VAULT_PEPPER', cls.pepper),
            log_file=os.getenv('LOG_FILE', cls.log_file),
            log_level=os.getenv('LOG_LEVEL', cls.log_level).upper(),
        )
