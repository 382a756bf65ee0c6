# apkcert/crypto/keygen.py
"""
RSA key pair generation.

generate(bit_strength) -> KeyPair
  - public exponent 65537, OS CSPRNG (no caller-supplied randomness)
  - rejects bit strengths below MIN_KEY_SIZE
"""
import logging
from typing import NamedTuple

from cryptography.hazmat.primitives.asymmetric import rsa

from apkcert.common.errors import KeyGenerationError

logger = logging.getLogger(__name__)

MIN_KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537


class KeyPair(NamedTuple):
    private_key: rsa.RSAPrivateKey
    public_key: rsa.RSAPublicKey


def generate(bit_strength: int = MIN_KEY_SIZE) -> KeyPair:
    if not isinstance(bit_strength, int) or bit_strength < MIN_KEY_SIZE:
        raise KeyGenerationError(
            f"key size must be an integer >= {MIN_KEY_SIZE}, got {bit_strength!r}"
        )
    try:
        key = rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=bit_strength)
    except (ValueError, MemoryError) as e:
        raise KeyGenerationError(f"RSA key generation failed: {e}") from e
    logger.debug("generated %d-bit RSA key", bit_strength)
    return KeyPair(key, key.public_key())
