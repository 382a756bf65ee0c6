# apkcert/storage/report.py
"""
Human-readable summary of an issued keystore.

Passwords are printed in plaintext unless redact=True; this is a build-tool
convenience, the report file is not secret storage.
"""
import logging
from typing import Optional

from apkcert.common.config import Config
from apkcert.crypto.pki import CertInfo

logger = logging.getLogger(__name__)

RULE = "=" * 51
THIN_RULE = "-" * 51
REDACTED = "********"


def render_report(cfg: Config, info: CertInfo, report_path: Optional[str] = None,
                  redact: bool = False) -> str:
    ks = cfg.keystore
    store_pass = REDACTED if redact else ks.password
    key_pass = REDACTED if redact else ks.key_pass
    lines = [
        RULE,
        "APK signing certificate",
        RULE,
        "",
        "Keystore:",
        THIN_RULE,
        f"Keystore path: {ks.file_path}",
    ]
    if report_path:
        lines.append(f"Report file: {report_path}")
    lines += [
        f"Key alias: {ks.key_alias}",
        f"Keystore password: {store_pass}",
        f"Key password: {key_pass}",
        "",
        "Certificate:",
        f"Serial number: {info.serial_number}",
        f"Subject: {info.subject}",
        f"Issuer: {info.issuer}",
        f"Valid: {info.not_before} to {info.not_after} (UTC)",
        "",
        "Fingerprints:",
        f"MD5 (informational): {info.md5_fingerprint}",
        f"SHA1 (informational): {info.sha1_fingerprint}",
        f"SHA256: {info.sha256_fingerprint}",
        RULE,
    ]
    return "\n".join(lines) + "\n"


def save_report(path: str, cfg: Config, info: CertInfo, redact: bool = False) -> bool:
    """Write the report file. Failures are logged, never raised."""
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(render_report(cfg, info, redact=redact))
    except OSError as e:
        logger.error("failed to save certificate report %s: %s", path, e)
        return False
    return True
