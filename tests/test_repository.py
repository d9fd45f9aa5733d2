import json

import pytest

from conftest import PASSWORD
from errors import DecryptionError, ImportFormatError, VaultLocked
from models import OtpCredential, OtpType

SECRET = "JBSWY3DPEHPK3PXP"


def make(name="GitHub", secret=SECRET, **kwargs):
    return OtpCredential(account_name=name, secret=secret, **kwargs)


def test_plaintext_mode_round_trip(repository, storage):
    credential = make(issuer="GitHub", prefix="#")
    repository.save(credential)

    stored = storage.get_record(credential.id)
    assert stored['encrypted'] is False
    assert json.loads(stored['payload'])['secret'] == SECRET

    loaded = repository.get_all()
    assert [c.id for c in loaded] == [credential.id]
    assert loaded[0].secret == SECRET
    assert loaded[0].prefix == "#"


def test_secret_never_stored_in_cleartext_when_password_set(repository, storage, unlocked):
    credential = make(issuer="GitHub", prefix="pre", postfix="post")
    repository.save(credential)

    stored = storage.get_record(credential.id)
    assert stored['encrypted'] is True
    assert SECRET not in json.dumps(stored, default=str)
    assert stored['account_name'] == "GitHub"
    assert stored['issuer'] == "GitHub"
    assert stored['prefix'] == "pre"

    loaded = repository.get_by_id(credential.id)
    assert loaded.secret == SECRET
    assert loaded.postfix == "post"


def test_encrypted_record_shape(repository, unlocked):
    credential = make(issuer="GitHub")
    repository.save(credential)

    record = repository.get_encrypted(credential.id)
    assert record.id == credential.id
    assert record.public_fields == {
        'accountName': "GitHub", 'issuer': "GitHub", 'prefix': "", 'postfix': "",
    }
    assert record.kdf_params['iterations'] == 1000
    assert 'secret' not in record.public_fields


def test_saving_again_uses_new_salt_and_nonce(repository, unlocked):
    credential = make()
    repository.save(credential)
    first = repository.get_encrypted(credential.id)

    credential.counter = 1
    repository.save(credential)
    second = repository.get_encrypted(credential.id)

    assert first.iv != second.iv
    assert first.salt != second.salt


def test_update_keeps_single_record(repository, unlocked):
    credential = make()
    repository.save(credential)
    credential.account_name = "GitHub (work)"
    repository.save(credential)

    loaded = repository.get_all()
    assert len(loaded) == 1
    assert loaded[0].account_name == "GitHub (work)"


def test_locked_vault_refuses_reads_and_writes(repository, unlocked):
    repository.save(make())
    unlocked.logout()

    with pytest.raises(VaultLocked):
        repository.get_all()
    with pytest.raises(VaultLocked):
        repository.save(make("Other"))
    with pytest.raises(VaultLocked):
        repository.remove("anything")


def test_public_listing_works_while_locked(repository, unlocked):
    credential = make(issuer="GitHub")
    repository.save(credential)
    unlocked.logout()

    listing = repository.list_public()
    assert listing[0]['id'] == credential.id
    assert listing[0]['accountName'] == "GitHub"
    assert listing[0]['encrypted'] is True
    assert 'secret' not in listing[0]


def test_public_listing_search(repository):
    repository.save(make("alice", issuer="GitHub"))
    repository.save(make("bob", issuer="Google"))

    assert [c['accountName'] for c in repository.list_public("Goo")] == ["bob"]


def test_corrupted_record_is_skipped(repository, storage, unlocked):
    good = make("good")
    bad = make("bad")
    repository.save(good)
    repository.save(bad)

    storage.connect().execute(
        "UPDATE credentials SET payload = ? WHERE id = ?", ("AAAAAAAAAAAAAAAAAAAAAAAA", bad.id)
    )

    assert [c.id for c in repository.get_all()] == [good.id]
    with pytest.raises(DecryptionError):
        repository.get_by_id(bad.id)


def test_get_by_id_missing_returns_none(repository):
    assert repository.get_by_id("missing") is None


def test_remove_and_clear(repository):
    first = make("first")
    second = make("second")
    repository.save_all([first, second])

    assert repository.remove(first.id) is True
    assert repository.remove(first.id) is False
    assert [c.id for c in repository.get_all()] == [second.id]

    repository.clear()
    assert repository.get_all() == []


def test_save_all_replace(repository):
    repository.save(make("old"))
    repository.save_all([make("new")], replace=True)
    assert [c.account_name for c in repository.get_all()] == ["new"]


def test_reencrypt_all_moves_to_new_password(repository, crypto, storage, unlocked):
    credential = make()
    repository.save(credential)
    before = repository.get_encrypted(credential.id)

    assert repository.reencrypt_all(PASSWORD, "batterystaple9") == 1

    after = repository.get_encrypted(credential.id)
    assert after.iv != before.iv
    assert crypto.decrypt(after.ciphertext, "batterystaple9", after.salt, after.iv,
                          after.kdf_params['iterations'])


def test_reencrypt_all_with_wrong_old_password_changes_nothing(repository, unlocked):
    credential = make()
    repository.save(credential)
    before = repository.get_encrypted(credential.id)

    with pytest.raises(DecryptionError):
        repository.reencrypt_all("wrongpassword", "batterystaple9")

    assert repository.get_encrypted(credential.id) == before


def test_export_import_round_trip(repository, unlocked):
    totp = make("alice", issuer="GitHub", prefix="<", postfix=">")
    hotp = make("bob", type=OtpType.HOTP, counter=12, digits=8, algorithm="SHA256")
    repository.save_all([totp, hotp])

    exported = repository.export_json()
    items = json.loads(exported)
    assert {item['accountName'] for item in items} == {"alice", "bob"}
    assert all(item['secret'] == SECRET for item in items)

    repository.clear()
    assert repository.import_json(exported) == 2

    loaded = {c.id: c for c in repository.get_all()}
    assert loaded[hotp.id].counter == 12
    assert loaded[hotp.id].type == OtpType.HOTP
    assert loaded[hotp.id].algorithm == "SHA256"
    assert loaded[totp.id].prefix == "<"


def test_import_merges_by_id(repository):
    existing = make("alice")
    other = make("carol")
    repository.save_all([existing, other])

    payload = json.dumps([
        {'id': existing.id, 'accountName': "alice (renamed)", 'secret': SECRET},
        {'accountName': "dave", 'secretKey': SECRET, 'prefix': "", 'postfix': ""},
    ])
    assert repository.import_json(payload) == 2

    names = sorted(c.account_name for c in repository.get_all())
    assert names == ["alice (renamed)", "carol", "dave"]


def test_import_replace(repository):
    repository.save(make("alice"))
    repository.import_json(json.dumps([{'accountName': "bob", 'secret': SECRET}]), replace=True)
    assert [c.account_name for c in repository.get_all()] == ["bob"]


@pytest.mark.parametrize("text", [
    "not json",
    '{"accountName": "x"}',
    '["x"]',
    '[{"accountName": "x"}]',
    '[{"accountName": "x", "secret": "S", "digits": "six"}]',
    '[{"accountName": "x", "secret": "S", "type": "MOTP"}]',
])
def test_import_rejects_bad_files(repository, text):
    repository.save(make("alice"))
    with pytest.raises(ImportFormatError):
        repository.import_json(text)
    assert [c.account_name for c in repository.get_all()] == ["alice"]


@pytest.mark.parametrize("column, value", [
    ("salt", None),
    ("iv", None),
    ("salt", 12345),
    ("iv", "not base64!"),
    ("kdf_params", "not json"),
    ("kdf_params", '"pbkdf2"'),
    ("kdf_params", '{"iterations": "many"}'),
])
def test_record_with_corrupted_column_is_skipped(repository, storage, unlocked, column, value):
    good = make("good")
    bad = make("bad")
    repository.save_all([good, bad])

    storage.connect().execute(f"UPDATE credentials SET {column} = ? WHERE id = ?", (value, bad.id))

    assert [c.id for c in repository.get_all()] == [good.id]
    with pytest.raises(DecryptionError):
        repository.get_by_id(bad.id)


@pytest.mark.parametrize("text", [
    '[{"accountName": "x", "secret": 123456}]',
    '[{"accountName": 42, "secret": "S"}]',
    '[{"accountName": "x", "secret": "S", "issuer": ["GitHub"]}]',
    '[{"accountName": "x", "secret": "S", "algorithm": 1}]',
    '[{"accountName": "x", "secret": "S", "prefix": 7}]',
    '[{"accountName": "   ", "secret": "S"}]',
])
def test_import_rejects_wrongly_typed_fields(repository, text):
    repository.save(make("alice"))
    with pytest.raises(ImportFormatError):
        repository.import_json(text)
    assert [c.account_name for c in repository.get_all()] == ["alice"]
