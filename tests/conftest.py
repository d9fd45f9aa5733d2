import argon2
import pytest

from crypto_utils import CryptoUtils
from repository import CredentialRepository
from session import BiometricAuthenticator, SessionAuthenticator
from storage import Storage
from otp_engine import OtpEngine
from vault import VaultContext
from errors import BiometricError

PASSWORD = "correcthorse1"


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeBiometrics(BiometricAuthenticator):
    def __init__(self, available=True, result=True, error=False):
        self.available = available
        self.result = result
        self.error = error
        self.challenges = []

    async def is_available(self):
        return self.available

    async def verify(self, challenge, origin):
        self.challenges.append((challenge, origin))
        if self.error:
            raise BiometricError("prompt dismissed")
        return self.result


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def crypto():
    # Cheap parameters so the suite stays fast.
    hasher = argon2.PasswordHasher(time_cost=1, memory_cost=1024, parallelism=1)
    return CryptoUtils(iterations=1000, password_hasher=hasher)


@pytest.fixture
def storage(tmp_path):
    storage = Storage(str(tmp_path / "vault.db"))
    storage.init_db()
    yield storage
    storage.close()


@pytest.fixture
def biometrics():
    return FakeBiometrics()


@pytest.fixture
def auth(storage, crypto, clock, biometrics):
    return SessionAuthenticator(storage, crypto, session_timeout=900, clock=clock,
                                biometrics=biometrics)


@pytest.fixture
def repository(storage, crypto, auth):
    return CredentialRepository(storage, crypto, auth)


@pytest.fixture
def unlocked(auth):
    auth.set_password(PASSWORD)
    assert auth.login(PASSWORD)
    return auth


@pytest.fixture
def vault(storage, crypto, auth, repository, clock):
    return VaultContext(storage, crypto, auth, repository, OtpEngine(clock))
