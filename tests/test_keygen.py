import pytest
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding

from apkcert.common.errors import KeyGenerationError
from apkcert.crypto import keygen


def sign(priv_key, data):
    return priv_key.sign(data, padding.PKCS1v15(), hashes.SHA256())


def verify(pub_key, signature, data):
    pub_key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())


def test_generate_returns_consistent_pair(key_pair):
    assert key_pair.private_key.key_size == 2048
    assert key_pair.public_key.public_numbers() == key_pair.private_key.public_key().public_numbers()
    assert key_pair.public_key.public_numbers().e == 65537


def test_public_key_verifies_private_signature(key_pair):
    data = b"release build"
    sig = sign(key_pair.private_key, data)
    verify(key_pair.public_key, sig, data)
    with pytest.raises(InvalidSignature):
        verify(key_pair.public_key, sig, data + b"!")


def test_other_key_does_not_verify(key_pair, other_key_pair):
    sig = sign(key_pair.private_key, b"x")
    with pytest.raises(InvalidSignature):
        verify(other_key_pair.public_key, sig, b"x")


def test_generate_3072():
    kp = keygen.generate(3072)
    assert kp.private_key.key_size == 3072


@pytest.mark.parametrize("bits", [0, 512, 1024, 2047, "2048", None])
def test_rejects_weak_or_invalid_sizes(bits):
    with pytest.raises(KeyGenerationError):
        keygen.generate(bits)
