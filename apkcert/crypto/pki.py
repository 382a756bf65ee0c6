# apkcert/crypto/pki.py
"""
Self-signed certificate construction and inspection.

  make_template(ca_config, issued_at, serial) -> CertificateTemplate
  build_self_signed(template, key_pair) -> DER bytes
  parse_cert_info(der) -> CertInfo
  verify_self_signed(cert)
"""
import datetime
import logging
import time
from typing import NamedTuple, Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization, hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.x509.oid import NameOID
from pydantic import BaseModel

from apkcert.common.config import CAConfig
from apkcert.common.errors import CertificateEncodingError, InvalidValidityError
from apkcert.common.utils import DISPLAY_FMT, add_years, utc_now
from apkcert.crypto.fingerprint import fingerprints
from apkcert.crypto.keygen import KeyPair

logger = logging.getLogger(__name__)

# digitalSignature + keyEncipherment; fixed for APK signing certs
KEY_USAGE = x509.KeyUsage(
    digital_signature=True,
    content_commitment=False,
    key_encipherment=True,
    data_encipherment=False,
    key_agreement=False,
    key_cert_sign=False,
    crl_sign=False,
    encipher_only=False,
    decipher_only=False,
)


class CertificateTemplate(NamedTuple):
    subject: x509.Name
    serial_number: int
    not_before: datetime.datetime
    not_after: datetime.datetime
    key_usage: x509.KeyUsage = KEY_USAGE


class CertInfo(BaseModel):
    serial_number: str
    subject: str
    issuer: str
    not_before: str
    not_after: str
    md5_fingerprint: str
    sha1_fingerprint: str
    sha256_fingerprint: str


def clock_serial_number() -> int:
    """
    Nanoseconds since the epoch. Unique only as far as two runs never land on
    the same clock tick; not a cryptographic guarantee.
    """
    return time.time_ns()


def new_serial_number(source: str = "random") -> int:
    """Positive serial; "random" (159-bit CSPRNG, the default) or "clock"."""
    if source == "clock":
        return clock_serial_number()
    if source == "random":
        return x509.random_serial_number()
    raise ValueError(f"unknown serial source: {source!r}")


def build_subject(ca: CAConfig) -> x509.Name:
    """
    Subject DN in C, ST, O, OU, CN order. Empty fields are left out.
    Raises CertificateEncodingError for values x509 rejects (e.g. a 3-letter country).
    """
    fields = [
        (NameOID.COUNTRY_NAME, ca.country),
        (NameOID.STATE_OR_PROVINCE_NAME, ca.province),
        (NameOID.ORGANIZATION_NAME, ca.organization),
        (NameOID.ORGANIZATIONAL_UNIT_NAME, ca.organizational_unit),
        (NameOID.COMMON_NAME, ca.common_name),
    ]
    try:
        return x509.Name([x509.NameAttribute(oid, value) for oid, value in fields if value])
    except (ValueError, TypeError) as e:
        raise CertificateEncodingError(f"invalid subject field: {e}") from e


def make_template(ca: CAConfig, issued_at: Optional[datetime.datetime] = None,
                  serial_number: Optional[int] = None) -> CertificateTemplate:
    if ca.validity_years <= 0:
        raise InvalidValidityError(
            f"validity must be a positive number of years, got {ca.validity_years}"
        )
    not_before = issued_at or utc_now()
    try:
        not_after = add_years(not_before, ca.validity_years)
    except (ValueError, OverflowError) as e:
        raise InvalidValidityError(
            f"validity of {ca.validity_years} years ends past year {datetime.MAXYEAR}"
        ) from e
    return CertificateTemplate(
        subject=build_subject(ca),
        serial_number=serial_number if serial_number is not None else new_serial_number(),
        not_before=not_before,
        not_after=not_after,
    )


def build_self_signed(template: CertificateTemplate, key_pair: KeyPair) -> bytes:
    """
    Sign the template with its own key (issuer == subject) and return DER bytes.
    """
    if template.not_after < template.not_before:
        raise InvalidValidityError("notAfter is before notBefore")
    try:
        cert = (
            x509.CertificateBuilder()
            .subject_name(template.subject)
            .issuer_name(template.subject)    # self-signed: issuer == subject
            .public_key(key_pair.public_key)
            .serial_number(template.serial_number)
            .not_valid_before(template.not_before)
            .not_valid_after(template.not_after)
            .add_extension(template.key_usage, critical=True)
            .sign(key_pair.private_key, hashes.SHA256())
        )
        der = cert.public_bytes(serialization.Encoding.DER)
    except (ValueError, TypeError) as e:
        raise CertificateEncodingError(f"failed to build certificate: {e}") from e
    logger.debug("signed certificate serial=%d subject=%s",
                 template.serial_number, template.subject.rfc4514_string())
    return der


def load_der_cert(der: bytes) -> x509.Certificate:
    return x509.load_der_x509_certificate(der)


def parse_cert_info(der: bytes) -> CertInfo:
    """Report view of a DER certificate; fingerprints are over the given bytes."""
    cert = load_der_cert(der)
    fp = fingerprints(der)
    return CertInfo(
        serial_number=str(cert.serial_number),
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        not_before=cert.not_valid_before_utc.strftime(DISPLAY_FMT),
        not_after=cert.not_valid_after_utc.strftime(DISPLAY_FMT),
        md5_fingerprint=fp.md5,
        sha1_fingerprint=fp.sha1,
        sha256_fingerprint=fp.sha256,
    )


def verify_self_signed(cert: x509.Certificate) -> None:
    """
    Verify that `cert` is signed by its own public key.

    Raises:
      - ValueError if issuer does not match subject
      - InvalidSignature (propagated) if verification fails
    """
    if cert.issuer != cert.subject:
        raise ValueError("certificate issuer does not match its subject")
    cert.public_key().verify(
        cert.signature,
        cert.tbs_certificate_bytes,
        padding.PKCS1v15(),
        cert.signature_hash_algorithm,
    )


def check_cn(cert: x509.Certificate, expected_cn: str) -> None:
    """Check the Common Name (CN) in cert subject matches expected_cn. Raises ValueError on mismatch."""
    attrs = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not attrs:
        raise ValueError("certificate has no Common Name (CN)")
    cn = attrs[0].value
    if cn != expected_cn:
        raise ValueError(f"CN mismatch: expected '{expected_cn}', got '{cn}'")
