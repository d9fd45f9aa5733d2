from datetime import datetime

from models import OtpCredential, OtpType
from utils import (
    display_name, format_codes, format_credential_list, mask_secret, validate_password_strength
)


def test_validate_password_strength():
    assert validate_password_strength("correcthorse1") == (True, "Password is strong")
    assert validate_password_strength("short")[0] is False
    assert validate_password_strength("         ")[0] is False
    assert validate_password_strength("abcdef", min_length=6)[0] is True


def test_mask_secret():
    assert mask_secret("JBSWY3DPEHPK3PXP") == "************3PXP"
    assert mask_secret("ABC") == "***"


def test_display_name():
    assert display_name({'accountName': "alice", 'issuer': "GitHub"}) == "GitHub (alice)"
    assert display_name({'accountName': "alice", 'issuer': None}) == "alice"


def test_format_credential_list():
    assert format_credential_list([]) == "No credentials found."
    text = format_credential_list([{
        'id': "abc", 'accountName': "alice", 'issuer': "GitHub",
        'updated_at': datetime(2024, 1, 2, 3, 4),
    }])
    assert "GitHub (alice)" in text
    assert "ID: abc" in text
    assert "2024-01-02 03:04" in text


def test_format_codes():
    totp = OtpCredential(account_name="alice", secret="JBSWY3DPEHPK3PXP", issuer="GitHub")
    hotp = OtpCredential(account_name="bob", secret="JBSWY3DPEHPK3PXP",
                         type=OtpType.HOTP, counter=3)
    text = format_codes([(totp, "123456", 7), (hotp, "654321", None)])
    assert "GitHub (alice): 123456  ( 7s left)" in text
    assert "bob: 654321  (counter 3)" in text
    assert format_codes([]) == "No credentials found."
