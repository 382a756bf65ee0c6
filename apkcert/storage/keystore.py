# apkcert/storage/keystore.py
"""
Java KeyStore (JKS) container: build, store and load.

Layout (big-endian):
  u32 0xFEEDFEED | u32 version (2) | u32 entry count
  per entry:
    u32 tag (1 = private key, 2 = trusted cert)
    UTF alias | u64 creation time in ms
    tag 1: u32 len + EncryptedPrivateKeyInfo DER, u32 chain length,
           then per cert: UTF type ("X.509") + u32 len + DER
    tag 2: UTF type + u32 len + DER
  SHA-1(store password as UTF-16BE || b"Mighty Aphrodite" || everything above)

UTF is Java modified UTF-8 with a u16 byte-length prefix.

Private keys are PKCS#8 DER protected with the JKS key protector
(OID 1.3.6.1.4.1.42.2.17.1.1): a SHA-1 keystream seeded by a random salt,
followed by SHA-1(password || plaintext) as the check value.
"""
import datetime
import hashlib
import hmac
import io
import logging
import secrets
import struct
from typing import Dict, Iterable, List, NamedTuple, Optional, Union

from Crypto.Util.strxor import strxor
from cryptography.hazmat.primitives import serialization
from pyasn1.codec.der import decoder as der_decoder, encoder as der_encoder
from pyasn1.error import PyAsn1Error
from pyasn1.type import univ
from pyasn1_modules import rfc5208

from apkcert.common.errors import (
    AliasEncodingError,
    EntryProtectionError,
    IOWriteError,
    KeystoreError,
    KeystoreFormatError,
    KeystoreIntegrityError,
    UnrecoverableEntryError,
)
from apkcert.common.utils import to_ms

logger = logging.getLogger(__name__)

MAGIC = 0xFEEDFEED
VERSION = 2
PRIVATE_KEY_TAG = 1
TRUSTED_CERT_TAG = 2
WHITENER = b"Mighty Aphrodite"
KEY_PROTECTOR_OID = "1.3.6.1.4.1.42.2.17.1.1"
CERT_TYPE_X509 = "X.509"
SALT_LEN = 20
DIGEST_LEN = 20
MAX_UTF_LEN = 0xFFFF


class Certificate(NamedTuple):
    type: str
    content: bytes


class PrivateKeyEntry(NamedTuple):
    creation_time: datetime.datetime
    encrypted_key: bytes          # EncryptedPrivateKeyInfo DER
    certificate_chain: List[Certificate]


class TrustedCertEntry(NamedTuple):
    creation_time: datetime.datetime
    certificate: Certificate


Entry = Union[PrivateKeyEntry, TrustedCertEntry]


# ---------------------------------------------------------------------------
# modified UTF-8

def encode_modified_utf8(s: str) -> bytes:
    """
    Java DataOutput.writeUTF encoding: NUL is two bytes, non-BMP characters
    are written as a surrogate pair of three-byte sequences.
    """
    units = s.encode("utf-16-be", "surrogatepass")
    out = bytearray()
    for (u,) in struct.iter_unpack(">H", units):
        if 0x0001 <= u <= 0x007F:
            out.append(u)
        elif u <= 0x07FF:
            out += bytes((0xC0 | (u >> 6), 0x80 | (u & 0x3F)))
        else:
            out += bytes((0xE0 | (u >> 12), 0x80 | ((u >> 6) & 0x3F), 0x80 | (u & 0x3F)))
    return bytes(out)


def decode_modified_utf8(data: bytes) -> str:
    units = []
    i = 0
    n = len(data)
    while i < n:
        b = data[i]
        if b < 0x80:
            units.append(b)
            i += 1
        elif (b & 0xE0) == 0xC0 and i + 1 < n:
            units.append(((b & 0x1F) << 6) | (data[i + 1] & 0x3F))
            i += 2
        elif (b & 0xF0) == 0xE0 and i + 2 < n:
            units.append(((b & 0x0F) << 12) | ((data[i + 1] & 0x3F) << 6) | (data[i + 2] & 0x3F))
            i += 3
        else:
            raise KeystoreFormatError(f"malformed modified UTF-8 at byte {i}")
    raw = b"".join(struct.pack(">H", u) for u in units)
    return raw.decode("utf-16-be", "surrogatepass")


def encode_alias(alias: str) -> bytes:
    if not alias:
        raise AliasEncodingError("alias must not be empty")
    try:
        encoded = encode_modified_utf8(alias)
    except UnicodeEncodeError as e:
        raise AliasEncodingError(f"alias cannot be encoded: {e}") from e
    if len(encoded) > MAX_UTF_LEN:
        raise AliasEncodingError(f"alias too long: {len(encoded)} bytes encoded, max {MAX_UTF_LEN}")
    return encoded


def password_bytes(password: str) -> bytes:
    """Java char[] password as bytes: two big-endian bytes per UTF-16 unit."""
    return password.encode("utf-16-be", "surrogatepass")


# ---------------------------------------------------------------------------
# key protector

def _keystream(passwd: bytes, salt: bytes, length: int) -> bytes:
    out = bytearray()
    digest = salt
    while len(out) < length:
        digest = hashlib.sha1(passwd + digest).digest()
        out += digest
    return bytes(out[:length])


def protect_key(pkcs8: bytes, password: str, salt: Optional[bytes] = None) -> bytes:
    """Wrap PKCS#8 DER as a JKS-protected EncryptedPrivateKeyInfo."""
    if not password:
        raise EntryProtectionError("entry password must not be empty")
    passwd = password_bytes(password)
    salt = salt if salt is not None else secrets.token_bytes(SALT_LEN)
    if len(salt) != SALT_LEN:
        raise EntryProtectionError(f"salt must be {SALT_LEN} bytes")
    encrypted = strxor(pkcs8, _keystream(passwd, salt, len(pkcs8)))
    check = hashlib.sha1(passwd + pkcs8).digest()

    epki = rfc5208.EncryptedPrivateKeyInfo()
    epki["encryptionAlgorithm"]["algorithm"] = univ.ObjectIdentifier(KEY_PROTECTOR_OID)
    epki["encryptionAlgorithm"]["parameters"] = univ.Any(der_encoder.encode(univ.Null("")))
    epki["encryptedData"] = salt + encrypted + check
    try:
        return der_encoder.encode(epki)
    except PyAsn1Error as e:
        raise EntryProtectionError(f"cannot encode protected key: {e}") from e


def recover_key(encrypted_key: bytes, password: str) -> bytes:
    """
    Reverse protect_key and return the PKCS#8 DER.

    Raises:
      - KeystoreFormatError if the blob is not a JKS-protected key
      - UnrecoverableEntryError if the password check fails
    """
    try:
        epki, rest = der_decoder.decode(encrypted_key, asn1Spec=rfc5208.EncryptedPrivateKeyInfo())
    except PyAsn1Error as e:
        raise KeystoreFormatError(f"protected key is not valid DER: {e}") from e
    if rest:
        raise KeystoreFormatError("trailing data after protected key")
    oid = str(epki["encryptionAlgorithm"]["algorithm"])
    if oid != KEY_PROTECTOR_OID:
        raise KeystoreFormatError(f"unsupported key protection algorithm {oid}")
    blob = epki["encryptedData"].asOctets()
    if len(blob) <= SALT_LEN + DIGEST_LEN:
        raise KeystoreFormatError("protected key too short")

    passwd = password_bytes(password)
    salt = blob[:SALT_LEN]
    encrypted = blob[SALT_LEN:-DIGEST_LEN]
    check = blob[-DIGEST_LEN:]
    plain = strxor(encrypted, _keystream(passwd, salt, len(encrypted)))
    if not hmac.compare_digest(hashlib.sha1(passwd + plain).digest(), check):
        raise UnrecoverableEntryError("cannot recover key: wrong password")
    return plain


# ---------------------------------------------------------------------------
# binary helpers

def _write_utf(buf: io.BytesIO, s: str) -> None:
    data = encode_modified_utf8(s)
    if len(data) > MAX_UTF_LEN:
        raise KeystoreError(f"string too long for UTF field: {s[:32]!r}...")
    buf.write(struct.pack(">H", len(data)))
    buf.write(data)


def _write_bytes(buf: io.BytesIO, data: bytes) -> None:
    buf.write(struct.pack(">I", len(data)))
    buf.write(data)


def _write_cert(buf: io.BytesIO, cert: Certificate) -> None:
    _write_utf(buf, cert.type)
    _write_bytes(buf, cert.content)


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def read(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise KeystoreFormatError("unexpected end of keystore data")
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def u16(self) -> int:
        return struct.unpack(">H", self.read(2))[0]

    def u32(self) -> int:
        return struct.unpack(">I", self.read(4))[0]

    def u64(self) -> int:
        return struct.unpack(">Q", self.read(8))[0]

    def utf(self) -> str:
        return decode_modified_utf8(self.read(self.u16()))

    def blob(self) -> bytes:
        return self.read(self.u32())

    def cert(self) -> Certificate:
        return Certificate(self.utf(), self.blob())


def _store_digest(password: str, data: bytes) -> bytes:
    return hashlib.sha1(password_bytes(password) + WHITENER + data).digest()


def _from_ms(ms: int) -> datetime.datetime:
    return datetime.datetime.fromtimestamp(ms / 1000, tz=datetime.timezone.utc)


def _normalize_chain(chain: Iterable[Union[bytes, Certificate]]) -> List[Certificate]:
    out = []
    for c in chain:
        if isinstance(c, Certificate):
            out.append(c)
        else:
            out.append(Certificate(CERT_TYPE_X509, bytes(c)))
    return out


def _pkcs8(private_key) -> bytes:
    if isinstance(private_key, (bytes, bytearray)):
        return bytes(private_key)
    try:
        return private_key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    except (AttributeError, TypeError, ValueError) as e:
        raise EntryProtectionError(f"cannot encode private key as PKCS#8: {e}") from e


# ---------------------------------------------------------------------------
# container

class Keystore:
    """
    In-memory JKS. Aliases are lowercased like the JDK does; setting an alias
    that already exists replaces the old entry.
    """

    def __init__(self):
        self._entries: Dict[str, Entry] = {}

    def __len__(self):
        return len(self._entries)

    def __contains__(self, alias):
        return alias.lower() in self._entries

    def aliases(self) -> List[str]:
        return sorted(self._entries)

    def get_entry(self, alias: str) -> Entry:
        try:
            return self._entries[alias.lower()]
        except KeyError:
            raise KeyError(f"no entry for alias {alias!r}") from None

    def delete_entry(self, alias: str) -> None:
        self._entries.pop(alias.lower(), None)

    def _key(self, alias: str) -> str:
        alias = alias.lower() if alias else alias
        encode_alias(alias)
        return alias

    def set_private_key_entry(self, alias: str, private_key, chain, password: str,
                              creation_time: Optional[datetime.datetime] = None) -> None:
        """
        private_key is a cryptography private key object or PKCS#8 DER bytes;
        chain is a list of DER bytes or Certificate tuples, leaf first.
        """
        key = self._key(alias)
        certs = _normalize_chain(chain)
        if not certs:
            raise KeystoreError("private key entry needs at least one certificate")
        encrypted = protect_key(_pkcs8(private_key), password)
        created = creation_time or datetime.datetime.now(datetime.timezone.utc)
        self._entries[key] = PrivateKeyEntry(created, encrypted, certs)

    def set_trusted_cert_entry(self, alias: str, certificate,
                               creation_time: Optional[datetime.datetime] = None) -> None:
        key = self._key(alias)
        (cert,) = _normalize_chain([certificate])
        created = creation_time or datetime.datetime.now(datetime.timezone.utc)
        self._entries[key] = TrustedCertEntry(created, cert)

    def get_private_key(self, alias: str, password: str) -> bytes:
        """PKCS#8 DER of the key stored under alias."""
        entry = self.get_entry(alias)
        if not isinstance(entry, PrivateKeyEntry):
            raise KeystoreError(f"entry {alias!r} is not a private key entry")
        return recover_key(entry.encrypted_key, password)

    def get_key(self, alias: str, password: str):
        """The stored private key as a cryptography key object."""
        der = self.get_private_key(alias, password)
        try:
            return serialization.load_der_private_key(der, password=None)
        except (ValueError, TypeError) as e:
            raise KeystoreFormatError(f"entry {alias!r} does not hold a PKCS#8 key: {e}") from e

    # -- serialization --

    def dumps(self, password: str) -> bytes:
        buf = io.BytesIO()
        buf.write(struct.pack(">III", MAGIC, VERSION, len(self._entries)))
        for alias in self.aliases():
            entry = self._entries[alias]
            tag = PRIVATE_KEY_TAG if isinstance(entry, PrivateKeyEntry) else TRUSTED_CERT_TAG
            buf.write(struct.pack(">I", tag))
            buf.write(struct.pack(">H", len(encode_alias(alias))))
            buf.write(encode_alias(alias))
            buf.write(struct.pack(">Q", to_ms(entry.creation_time)))
            if tag == PRIVATE_KEY_TAG:
                _write_bytes(buf, entry.encrypted_key)
                buf.write(struct.pack(">I", len(entry.certificate_chain)))
                for cert in entry.certificate_chain:
                    _write_cert(buf, cert)
            else:
                _write_cert(buf, entry.certificate)
        data = buf.getvalue()
        return data + _store_digest(password, data)

    def store(self, stream, password: str) -> None:
        """
        Serialize fully in memory, then write in one call. Nothing reaches
        the stream if serialization fails.
        """
        data = self.dumps(password)
        try:
            written = stream.write(data)
            if hasattr(stream, "flush"):
                stream.flush()
        except (OSError, ValueError) as e:    # ValueError: closed stream
            raise IOWriteError(f"failed to write keystore: {e}") from e
        if written is not None and written != len(data):
            raise IOWriteError(f"short write: {written} of {len(data)} bytes")
        logger.debug("stored keystore with %d entries (%d bytes)", len(self), len(data))

    @classmethod
    def loads(cls, data: bytes, password: str) -> "Keystore":
        """
        Parse a JKS image.

        Raises:
          - KeystoreFormatError for a truncated or non-JKS image
          - KeystoreIntegrityError if the trailing digest does not match
        """
        if len(data) < 12 + DIGEST_LEN:
            raise KeystoreFormatError("keystore data too short")
        body, digest = data[:-DIGEST_LEN], data[-DIGEST_LEN:]
        r = _Reader(body)
        magic, version, count = struct.unpack(">III", r.read(12))
        if magic != MAGIC:
            raise KeystoreFormatError(f"bad magic 0x{magic:08X}")
        if version != VERSION:
            raise KeystoreFormatError(f"unsupported keystore version {version}")
        if not hmac.compare_digest(_store_digest(password, body), digest):
            raise KeystoreIntegrityError("keystore was tampered with, or password was incorrect")

        ks = cls()
        for _ in range(count):
            tag = r.u32()
            alias = r.utf()
            created = _from_ms(r.u64())
            if tag == PRIVATE_KEY_TAG:
                encrypted = r.blob()
                chain = [r.cert() for _ in range(r.u32())]
                ks._entries[alias] = PrivateKeyEntry(created, encrypted, chain)
            elif tag == TRUSTED_CERT_TAG:
                ks._entries[alias] = TrustedCertEntry(created, r.cert())
            else:
                raise KeystoreFormatError(f"unknown entry tag {tag}")
        if r.pos != len(body):
            raise KeystoreFormatError("trailing data after last entry")
        return ks

    @classmethod
    def load(cls, stream, password: str) -> "Keystore":
        return cls.loads(stream.read(), password)


def write(alias: str, private_key, chain, entry_password: str, container_password: str,
          stream, creation_time: Optional[datetime.datetime] = None) -> None:
    """Store a single-entry keystore holding private_key and chain under alias."""
    ks = Keystore()
    ks.set_private_key_entry(alias, private_key, chain, entry_password, creation_time)
    ks.store(stream, container_password)
