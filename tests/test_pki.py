import datetime

import pytest
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import ExtensionOID, NameOID

from apkcert.common.errors import CertificateEncodingError, InvalidValidityError
from apkcert.common.utils import add_years
from apkcert.crypto import pki
from apkcert.crypto.fingerprint import fingerprints

UTC = datetime.timezone.utc


def test_self_signed_issuer_equals_subject(cert_der):
    cert = pki.load_der_cert(cert_der)
    assert cert.issuer == cert.subject
    assert cert.version == x509.Version.v3
    pki.verify_self_signed(cert)
    pki.check_cn(cert, "Test CA")


def test_subject_fields_and_empty_fields_omitted(cert_der):
    cert = pki.load_der_cert(cert_der)
    assert cert.subject.get_attributes_for_oid(NameOID.COUNTRY_NAME)[0].value == "CN"
    assert cert.subject.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)[0].value == "Test"
    assert cert.subject.get_attributes_for_oid(NameOID.STATE_OR_PROVINCE_NAME) == []
    assert cert.subject.get_attributes_for_oid(NameOID.ORGANIZATIONAL_UNIT_NAME) == []


def test_key_usage_fixed(cert_der):
    ext = pki.load_der_cert(cert_der).extensions.get_extension_for_oid(ExtensionOID.KEY_USAGE)
    assert ext.critical
    assert ext.value.digital_signature
    assert ext.value.key_encipherment
    assert not ext.value.key_cert_sign
    assert not ext.value.content_commitment


def test_public_key_is_certified_key(cert_der, key_pair):
    cert = pki.load_der_cert(cert_der)
    assert cert.public_key().public_numbers() == key_pair.public_key.public_numbers()


@pytest.mark.parametrize("years", [1, 10, 100])
def test_validity_span_in_calendar_years(ca_config, key_pair, issued_at, years):
    ca = ca_config.model_copy(update={"validity_years": years})
    der = pki.build_self_signed(pki.make_template(ca, issued_at), key_pair)
    cert = pki.load_der_cert(der)
    assert cert.not_valid_before_utc == issued_at
    assert cert.not_valid_after_utc == add_years(issued_at, years)


def test_validity_defaults_to_now(ca_config, key_pair):
    before = datetime.datetime.now(UTC).replace(microsecond=0)
    template = pki.make_template(ca_config)
    after = datetime.datetime.now(UTC)
    assert before <= template.not_before <= after
    assert template.not_before.microsecond == 0
    assert template.not_after == add_years(template.not_before, 10)


def test_add_years_leap_day():
    leap = datetime.datetime(2024, 2, 29, tzinfo=UTC)
    assert add_years(leap, 1) == datetime.datetime(2025, 3, 1, tzinfo=UTC)
    assert add_years(leap, 4) == datetime.datetime(2028, 2, 29, tzinfo=UTC)
    start = datetime.datetime(2020, 1, 1, tzinfo=UTC)
    assert add_years(start, 10) - start == datetime.timedelta(days=3653)


@pytest.mark.parametrize("years", [0, -1])
def test_non_positive_validity_rejected(ca_config, years):
    ca = ca_config.model_copy(update={"validity_years": years})
    with pytest.raises(InvalidValidityError):
        pki.make_template(ca)


def test_malformed_country_rejected(ca_config):
    ca = ca_config.model_copy(update={"country": "CHN"})
    with pytest.raises(CertificateEncodingError):
        pki.make_template(ca)


def test_serial_numbers_differ():
    a = pki.new_serial_number()
    b = pki.new_serial_number()
    assert a > 0 and b > 0
    assert a != b


def test_clock_serial_positive():
    assert pki.new_serial_number("clock") > 0
    with pytest.raises(ValueError):
        pki.new_serial_number("sequential")


def test_template_uses_given_serial(ca_config, key_pair, issued_at):
    template = pki.make_template(ca_config, issued_at, serial_number=123456789)
    cert = pki.load_der_cert(pki.build_self_signed(template, key_pair))
    assert cert.serial_number == 123456789


def test_parse_cert_info(cert_der, issued_at):
    info = pki.parse_cert_info(cert_der)
    cert = pki.load_der_cert(cert_der)
    fp = fingerprints(cert_der)
    assert info.serial_number == str(cert.serial_number)
    assert info.subject == "CN=Test CA,O=Test,C=CN"
    assert info.issuer == info.subject
    assert info.not_before == "2024-02-29 12:30:00"
    assert info.not_after == "2034-03-01 12:30:00"
    assert info.sha256_fingerprint == fp.sha256
    assert info.md5_fingerprint == fp.md5


def test_verify_rejects_foreign_signature(key_pair, other_key_pair, ca_config, issued_at):
    template = pki.make_template(ca_config, issued_at)
    forged = (
        x509.CertificateBuilder()
        .subject_name(template.subject)
        .issuer_name(template.subject)
        .public_key(key_pair.public_key)
        .serial_number(template.serial_number)
        .not_valid_before(template.not_before)
        .not_valid_after(template.not_after)
        .sign(other_key_pair.private_key, hashes.SHA256())
    )
    with pytest.raises(InvalidSignature):
        pki.verify_self_signed(forged)


def test_verify_rejects_different_issuer(key_pair, ca_config, issued_at):
    template = pki.make_template(ca_config, issued_at)
    other = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Someone Else")])
    cert = (
        x509.CertificateBuilder()
        .subject_name(template.subject)
        .issuer_name(other)
        .public_key(key_pair.public_key)
        .serial_number(template.serial_number)
        .not_valid_before(template.not_before)
        .not_valid_after(template.not_after)
        .sign(key_pair.private_key, hashes.SHA256())
    )
    with pytest.raises(ValueError):
        pki.verify_self_signed(cert)


def test_check_cn_mismatch(cert_der):
    with pytest.raises(ValueError):
        pki.check_cn(pki.load_der_cert(cert_der), "Other CA")


def test_validity_past_max_year_rejected(ca_config, issued_at):
    ca = ca_config.model_copy(update={"validity_years": 8000})
    with pytest.raises(InvalidValidityError):
        pki.make_template(ca, issued_at)
