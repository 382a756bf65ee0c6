# apkcert/common/errors.py
"""
Error types raised by the issuance pipeline.

Everything from key generation through the keystore write is fatal for a run;
ConfigLoadError is the only one callers are expected to recover from.
"""


class ApkCertError(Exception):
    """Base class for all apkcert errors."""


class ConfigLoadError(ApkCertError):
    """Config file missing, unreadable or not a valid config document."""


class KeyGenerationError(ApkCertError):
    """RSA key pair could not be generated."""


class InvalidValidityError(ApkCertError):
    """Configured validity period is not a positive number of years."""


class CertificateEncodingError(ApkCertError):
    """Certificate template could not be encoded or signed."""


class KeystoreError(ApkCertError):
    """Base class for JKS encoding/decoding problems."""


class AliasEncodingError(KeystoreError):
    pass


class EntryProtectionError(KeystoreError):
    pass


class IOWriteError(KeystoreError):
    pass


class KeystoreFormatError(KeystoreError):
    pass


class KeystoreIntegrityError(KeystoreError):
    """Trailing digest does not match: wrong store password or tampered data."""


class UnrecoverableEntryError(KeystoreError):
    """Protected key could not be recovered with the given entry password."""
