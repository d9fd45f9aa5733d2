import pytest

import main
from repository import CredentialRepository

SECRET = "JBSWY3DPEHPK3PXP"


@pytest.fixture(autouse=True)
def env(monkeypatch, tmp_path):
    monkeypatch.setenv('DB_PATH', str(tmp_path / "vault.db"))
    monkeypatch.setenv('LOG_FILE', str(tmp_path / "otpvault.log"))
    monkeypatch.setenv('KDF_ITERATIONS', '1000')


def test_add_and_list(capsys):
    assert main.main(['add', '--uri', f"otpauth://totp/GitHub:octocat?secret={SECRET}"]) == 0
    assert "Added octocat" in capsys.readouterr().out

    assert main.main(['list']) == 0
    out = capsys.readouterr().out
    assert "octocat" in out
    assert SECRET not in out


def test_add_by_hand_and_show_codes(capsys):
    assert main.main(['add', '--account', "carol", '--secret', SECRET, '--hotp',
                      '--counter', '4', '--digits', '7']) == 0
    assert "Unusual number of digits" in capsys.readouterr().out

    assert main.main(['codes']) == 0
    assert "carol" in capsys.readouterr().out


def test_invalid_uri_is_reported(capsys):
    assert main.main(['add', '--uri', "https://example.com"]) == 1
    assert "Invalid otpauth URI" in capsys.readouterr().out


def test_missing_credential_is_reported(capsys):
    assert main.main(['next', 'missing']) == 1
    assert "No credential" in capsys.readouterr().out


def test_bad_configuration_exits_with_2(monkeypatch, capsys):
    monkeypatch.setenv('SESSION_TIMEOUT', 'soon')
    assert main.main(['list']) == 2
    assert "SESSION_TIMEOUT" in capsys.readouterr().err


def test_export_then_import(tmp_path, capsys):
    main.main(['add', '--uri', f"otpauth://totp/GitHub:octocat?secret={SECRET}"])
    path = str(tmp_path / "export.json")
    assert main.main(['export', path]) == 0
    assert main.main(['import', path, '--replace']) == 0
    assert "Imported 1 credential(s)" in capsys.readouterr().out


def test_add_with_blank_account_is_reported(capsys):
    assert main.main(['add', '--account', "   ", '--secret', SECRET]) == 2
    assert "account_name must not be empty" in capsys.readouterr().out


def test_watch_decrypts_once(monkeypatch):
    main.main(['add', '--uri', f"otpauth://totp/GitHub:octocat?secret={SECRET}"])

    loads = []
    original_get_all = CredentialRepository.get_all

    def counting_get_all(self):
        loads.append(1)
        return original_get_all(self)

    ticks = []

    def format_codes(codes):
        ticks.append(codes)
        if len(ticks) == 3:
            raise RuntimeError("stop")
        return ""

    monkeypatch.setattr(CredentialRepository, "get_all", counting_get_all)
    monkeypatch.setattr(main, "format_codes", format_codes)

    with pytest.raises(RuntimeError):
        main.main(['codes', '--watch', '--interval', '0'])

    assert len(ticks) == 3
    assert len(loads) == 1
