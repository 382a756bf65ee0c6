# apkcert/crypto/fingerprint.py
import hashlib
from typing import NamedTuple


class FingerprintSet(NamedTuple):
    """
    Hex digests of a certificate's DER bytes.

    md5 and sha1 are kept for display next to tools that still print them
    (keytool, Play Console); they are informational only. Use sha256 for
    anything trust-bearing.
    """
    md5: str
    sha1: str
    sha256: str


def fingerprints(data: bytes) -> FingerprintSet:
    """Digest the raw bytes as given; never re-encode the certificate first."""
    return FingerprintSet(
        md5=hashlib.md5(data, usedforsecurity=False).hexdigest(),
        sha1=hashlib.sha1(data, usedforsecurity=False).hexdigest(),
        sha256=hashlib.sha256(data).hexdigest(),
    )
