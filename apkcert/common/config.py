# apkcert/common/config.py
"""
Config models and loader.

The JSON document uses camelCase keys:

  {"keystore": {"filePath", "password", "keyAlias", "keyPass"},
   "ca": {"country", "province", "organization", "organizationalUnit",
          "commonName", "validityYears", "keySize"}}
"""
import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from apkcert.common.errors import ConfigLoadError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "build/config.json"
DEFAULT_KEY_SIZE = 2048


class KeystoreConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_path: str = Field(alias="filePath")
    password: str
    key_alias: str = Field(alias="keyAlias")
    key_pass: str = Field(alias="keyPass")


class CAConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    country: str
    province: str
    organization: str
    organizational_unit: str = Field(alias="organizationalUnit")
    common_name: str = Field(alias="commonName")
    validity_years: int = Field(alias="validityYears")
    key_size: int = Field(DEFAULT_KEY_SIZE, alias="keySize")


class Config(BaseModel):
    keystore: KeystoreConfig
    ca: CAConfig


def default_config() -> Config:
    """Built-in config used when the config file cannot be loaded."""
    return Config(
        keystore=KeystoreConfig(
            file_path="build/my-release-key.jks",
            password="chrelyonly",
            key_alias="chrelyonly",
            key_pass="chrelyonly",
        ),
        ca=CAConfig(
            country="CN",
            province="Yunnan",
            organization="chrelyonly",
            organizational_unit="chrelyonly",
            common_name="chrelyonly CA",
            validity_years=100,
        ),
    )


def load_config(path: str = DEFAULT_CONFIG_PATH) -> Config:
    """
    Read and validate a JSON config file.

    Raises:
      - ConfigLoadError if the file cannot be read or is not a valid config
    """
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise ConfigLoadError(f"cannot read config {path}: {e}") from e
    try:
        return Config.model_validate_json(data)
    except ValidationError as e:
        raise ConfigLoadError(f"invalid config {path}: {e}") from e


def load_config_or_default(path: Optional[str] = None) -> Config:
    try:
        return load_config(path or DEFAULT_CONFIG_PATH)
    except ConfigLoadError as e:
        logger.warning("failed to load config, using defaults: %s", e)
        return default_config()
