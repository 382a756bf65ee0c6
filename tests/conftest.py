import datetime

import pytest

from apkcert.common.config import CAConfig, Config, KeystoreConfig
from apkcert.crypto import keygen, pki


@pytest.fixture(scope="session")
def key_pair():
    return keygen.generate(2048)


@pytest.fixture(scope="session")
def other_key_pair():
    return keygen.generate(2048)


@pytest.fixture
def ca_config():
    return CAConfig(
        country="CN",
        province="",
        organization="Test",
        organizational_unit="",
        common_name="Test CA",
        validity_years=10,
    )


@pytest.fixture
def issued_at():
    return datetime.datetime(2024, 2, 29, 12, 30, 0, tzinfo=datetime.timezone.utc)


@pytest.fixture
def cert_der(key_pair, ca_config, issued_at):
    template = pki.make_template(ca_config, issued_at)
    return pki.build_self_signed(template, key_pair)


@pytest.fixture
def run_config(tmp_path, ca_config):
    return Config(
        keystore=KeystoreConfig(
            file_path=str(tmp_path / "out" / "release.jks"),
            password="pw1",
            key_alias="testkey",
            key_pass="pw2",
        ),
        ca=ca_config,
    )
