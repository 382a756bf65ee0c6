# apkcert/issuer.py
"""
Issuance pipeline:

  keygen.generate -> pki.make_template / build_self_signed
                  -> {fingerprints via parse_cert_info, keystore.write}

The keystore is written to a temp file next to the target, read back, and only
then linked into place, so a failed run never leaves a partial keystore under
the final name. issue() never overwrites an existing keystore.
"""
import datetime
import logging
import os
import tempfile
from typing import NamedTuple, Optional, Tuple

from apkcert.common.config import Config
from apkcert.common.errors import IOWriteError, KeystoreError
from apkcert.common.utils import timestamped_paths, utc_now
from apkcert.crypto import keygen, pki
from apkcert.storage import keystore
from apkcert.storage.report import save_report

logger = logging.getLogger(__name__)


class IssueResult(NamedTuple):
    config: Config            # with keystore.file_path set to the written file
    report_path: str
    cert_info: pki.CertInfo
    report_saved: bool


def report_path_for(keystore_path: str) -> str:
    return os.path.splitext(keystore_path)[0] + ".txt"


def _check_written(tmp_path: str, cfg: Config, key_pair: keygen.KeyPair, cert_der: bytes) -> None:
    """Read the temp keystore back before it is put in place."""
    with open(tmp_path, "rb") as f:
        ks = keystore.Keystore.load(f, cfg.keystore.password)
    entry = ks.get_entry(cfg.keystore.key_alias)
    key = ks.get_key(cfg.keystore.key_alias, cfg.keystore.key_pass)
    if (key.public_key().public_numbers() != key_pair.public_key.public_numbers()
            or entry.certificate_chain[0].content != cert_der):
        raise KeystoreError("written keystore does not match the issued key and certificate")


def _link_unique(tmp_path: str, path: str) -> str:
    """
    Hard-link tmp_path to path, or to path with a -1, -2, ... suffix when
    that name (or its report sibling) is taken. Never replaces an existing file.
    """
    stem, ext = os.path.splitext(path)
    candidate, n = path, 1
    while True:
        if not os.path.exists(report_path_for(candidate)):
            try:
                os.link(tmp_path, candidate)
                return candidate
            except FileExistsError:
                pass
        candidate = f"{stem}-{n}{ext}"
        n += 1


def _write_keystore_atomic(path: str, cfg: Config, key_pair: keygen.KeyPair, cert_der: bytes,
                           issued_at: datetime.datetime, exclusive: bool = False) -> str:
    """Returns the path the keystore ended up at."""
    directory = os.path.dirname(os.path.abspath(path))
    try:
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".keystore-", suffix=".tmp", dir=directory)
    except OSError as e:
        raise IOWriteError(f"cannot create keystore in {directory}: {e}") from e
    try:
        with os.fdopen(fd, "wb") as f:
            keystore.write(
                cfg.keystore.key_alias,
                key_pair.private_key,
                [cert_der],
                cfg.keystore.key_pass,
                cfg.keystore.password,
                f,
                creation_time=issued_at,
            )
        _check_written(tmp_path, cfg, key_pair, cert_der)
        if exclusive:
            path = _link_unique(tmp_path, path)
        else:
            os.replace(tmp_path, path)
    except OSError as e:
        raise IOWriteError(f"failed to write keystore {path}: {e}") from e
    finally:
        _discard(tmp_path)
    return path


def _discard(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


def generate_apk_cert(cfg: Config, issued_at: Optional[datetime.datetime] = None,
                      exclusive: bool = False) -> Tuple[str, pki.CertInfo]:
    """
    Generate key + self-signed cert and store them at cfg.keystore.file_path.
    With exclusive=True an existing file is never overwritten; a suffixed
    name is used instead. Returns (keystore path, cert info).
    Every failure here is fatal for the run.
    """
    key_pair = keygen.generate(cfg.ca.key_size)
    issued_at = issued_at or utc_now()
    template = pki.make_template(cfg.ca, issued_at)
    cert_der = pki.build_self_signed(template, key_pair)
    info = pki.parse_cert_info(cert_der)
    path = _write_keystore_atomic(cfg.keystore.file_path, cfg, key_pair, cert_der, issued_at,
                                  exclusive=exclusive)
    logger.info("wrote keystore %s (alias=%s, serial=%s)",
                path, cfg.keystore.key_alias, info.serial_number)
    return path, info


def issue(cfg: Config, now: Optional[datetime.datetime] = None, redact: bool = False) -> IssueResult:
    """
    Run the pipeline against timestamped output paths derived from
    cfg.keystore.file_path and write the report next to the keystore.
    Runs landing on the same timestamp get distinct files.
    """
    keystore_path, _ = timestamped_paths(cfg.keystore.file_path, now)
    stamped = cfg.model_copy(update={
        "keystore": cfg.keystore.model_copy(update={"file_path": keystore_path}),
    })
    path, info = generate_apk_cert(stamped, exclusive=True)
    cfg = cfg.model_copy(update={
        "keystore": cfg.keystore.model_copy(update={"file_path": path}),
    })
    report_path = report_path_for(path)
    saved = save_report(report_path, cfg, info, redact=redact)
    return IssueResult(cfg, report_path, info, saved)
