import base64

import pytest

from bbcli import crypto
from bbcli.crypto import (
    AUTH_TAG_LENGTH,
    ENCRYPTED_PREFIX,
    IV_LENGTH,
    CryptoEnvelope,
    derive_key,
    is_encrypted,
)
from bbcli.errors import CliError, ErrorKind


@pytest.mark.parametrize("plaintext", ["", "s3cret", "ünïcødé 秘密 🔑", "x" * 4096])
def test_round_trip(envelope, plaintext):
    assert envelope.decrypt(envelope.encrypt(plaintext)) == plaintext


def test_encrypt_is_not_deterministic(envelope):
    assert envelope.encrypt("same secret") != envelope.encrypt("same secret")


def test_envelope_layout(envelope):
    token = envelope.encrypt("abc")
    assert token.startswith(ENCRYPTED_PREFIX)
    payload = base64.b64decode(token[len(ENCRYPTED_PREFIX):])
    # iv || tag || ciphertext, GCM ciphertext is as long as the plaintext
    assert len(payload) == IV_LENGTH + AUTH_TAG_LENGTH + 3


def test_is_encrypted_tagging(envelope):
    assert is_encrypted(envelope.encrypt(""))
    assert envelope.is_encrypted(envelope.encrypt("value"))
    assert not is_encrypted("plain-secret")
    assert not is_encrypted("")


def test_plaintext_passes_through(envelope):
    assert envelope.decrypt("legacy-plaintext") == "legacy-plaintext"
    assert envelope.decrypt("") == ""


def test_wrong_key_fails(envelope, other_envelope):
    token = envelope.encrypt("s3cret")
    with pytest.raises(CliError) as exc_info:
        other_envelope.decrypt(token)
    assert exc_info.value.kind is ErrorKind.DECRYPTION_FAILURE
    assert "s3cret" not in str(exc_info.value)


def test_tampered_ciphertext_fails(envelope):
    token = envelope.encrypt("s3cret")
    payload = bytearray(base64.b64decode(token[len(ENCRYPTED_PREFIX):]))
    payload[-1] ^= 0x01
    tampered = ENCRYPTED_PREFIX + base64.b64encode(bytes(payload)).decode()
    with pytest.raises(CliError) as exc_info:
        envelope.decrypt(tampered)
    assert exc_info.value.kind is ErrorKind.DECRYPTION_FAILURE


@pytest.mark.parametrize("bad", ["enc:not base64!!", "enc:" + base64.b64encode(b"short").decode()])
def test_malformed_envelope_fails(envelope, bad):
    with pytest.raises(CliError) as exc_info:
        envelope.decrypt(bad)
    assert exc_info.value.kind is ErrorKind.DECRYPTION_FAILURE


def test_derive_key_from_passphrase_is_stable():
    key = derive_key("passphrase")
    assert len(key) == 32
    assert derive_key("passphrase") == key
    assert derive_key("other passphrase") != key


def test_derive_key_falls_back_to_machine_identity(monkeypatch):
    monkeypatch.setattr(crypto.socket, "gethostname", lambda: "host-a")
    monkeypatch.setattr(crypto.getpass, "getuser", lambda: "alice")
    assert crypto.machine_identity() == "host-a:alice"
    assert derive_key(None) == derive_key("host-a:alice")
    assert derive_key("") == derive_key(None)


def test_passphrase_envelopes_interoperate():
    a = CryptoEnvelope(passphrase="shared")
    b = CryptoEnvelope(passphrase="shared")
    assert b.decrypt(a.encrypt("portable")) == "portable"

    c = CryptoEnvelope(passphrase="different")
    with pytest.raises(CliError):
        c.decrypt(a.encrypt("portable"))


def test_key_length_is_checked():
    with pytest.raises(ValueError):
        CryptoEnvelope(key=b"too short")
