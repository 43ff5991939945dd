import pytest

from helpers import make_envelope

from vrmdeob.envelope import decrypt_and_decode
from vrmdeob.errors import EnvelopeError

KEY = bytes(range(32))
IV = bytes(range(100, 116))
PAYLOAD = b"glTF" + b"model bytes " * 500


def test_decrypts_and_decompresses_known_fixture():
    data = make_envelope(PAYLOAD, key=KEY, iv=IV)
    assert data[:16] == IV
    assert data[16:48] == KEY
    assert decrypt_and_decode(data) == PAYLOAD


def test_accepts_bytearray_and_memoryview():
    data = make_envelope(PAYLOAD, key=KEY, iv=IV)
    assert decrypt_and_decode(bytearray(data)) == PAYLOAD
    assert decrypt_and_decode(memoryview(data)) == PAYLOAD


@pytest.mark.parametrize("declared", [len(PAYLOAD) + 5, len(PAYLOAD) - 5])
def test_declared_size_mismatch(declared):
    data = make_envelope(PAYLOAD, declared_size=declared, key=KEY, iv=IV)
    with pytest.raises(EnvelopeError):
        decrypt_and_decode(data)


def test_truncated_body():
    data = make_envelope(PAYLOAD, key=KEY, iv=IV)
    with pytest.raises(EnvelopeError):
        decrypt_and_decode(data[:-7])


def test_wrong_key():
    data = bytearray(make_envelope(PAYLOAD, key=KEY, iv=IV))
    data[16:48] = bytes(32)
    with pytest.raises(EnvelopeError):
        decrypt_and_decode(bytes(data))


def test_too_short():
    with pytest.raises(EnvelopeError):
        decrypt_and_decode(b"\x00" * 48)
