import pytest

from bbcli.crypto import CryptoEnvelope


@pytest.fixture
def envelope():
    """Envelope with a fixed key; skips scrypt so vault tests stay fast."""
    return CryptoEnvelope(key=b"k" * 32)


@pytest.fixture
def other_envelope():
    return CryptoEnvelope(key=b"o" * 32)
