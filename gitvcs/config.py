"""Configuration management for gitvcs."""

import base64
import binascii
import logging
import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional, List, Mapping

from dotenv import load_dotenv

from .errors import ConfigurationError
from .paths import url_to_path

PROXY_TYPES = ("HTTP", "SOCKS4", "SOCKS5")

# Bootstrap property keys, keyed by Config field name.
PROPERTY_KEYS = {
    'local_url': 'vcs.local.url',
    'remote_url': 'vcs.remote.repo.url',
    'revision': 'vcs.revision',
    'auth_impl': 'vcs.auth.impl',
    'username': 'vcs.username',
    'password': 'vcs.password',
    'ssh_keyfile': 'vcs.ssh.keyfile.url',
    'ssh_passphrase': 'vcs.ssh.passphrase',
    'proxy_host': 'vcs.ssh.proxy',
    'proxy_type': 'vcs.ssh.proxy.type',
    'proxy_user': 'vcs.ssh.proxy.username',
    'proxy_password': 'vcs.ssh.proxy.password',
    'clean_update': 'vcs.always.clean.update',
    'commit_name': 'vcs.commit.name',
    'commit_email': 'vcs.commit.email',
}

# Environment variable names, keyed by Config field name.
ENVIRONMENT_KEYS = {
    'local_url': 'GITVCS_LOCAL_URL',
    'remote_url': 'GITVCS_REMOTE_URL',
    'revision': 'GITVCS_REVISION',
    'auth_impl': 'GITVCS_AUTH_IMPL',
    'username': 'GITVCS_USERNAME',
    'password': 'GITVCS_PASSWORD',
    'ssh_keyfile': 'GITVCS_SSH_KEYFILE',
    'ssh_passphrase': 'GITVCS_SSH_PASSPHRASE',
    'proxy_host': 'GITVCS_SSH_PROXY',
    'proxy_type': 'GITVCS_SSH_PROXY_TYPE',
    'proxy_user': 'GITVCS_SSH_PROXY_USERNAME',
    'proxy_password': 'GITVCS_SSH_PROXY_PASSWORD',
    'clean_update': 'GITVCS_CLEAN_UPDATE',
    'commit_name': 'GITVCS_COMMIT_NAME',
    'commit_email': 'GITVCS_COMMIT_EMAIL',
    'log_level': 'GITVCS_LOG_LEVEL',
}

_ENV_REFERENCE = re.compile(r"^%env\{([^}]+)\}$")
_ENCODED_PREFIX = "PW:"


@dataclass
class Config:
    """Configuration for a gitvcs working copy with validation and defaults."""

    # Repository locations
    local_url: Optional[str] = None
    remote_url: Optional[str] = None
    revision: Optional[str] = None

    # Authentication
    auth_impl: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    ssh_keyfile: Optional[str] = None
    ssh_passphrase: Optional[str] = None
    proxy_host: Optional[str] = None
    proxy_type: Optional[str] = None
    proxy_user: Optional[str] = None
    proxy_password: Optional[str] = None

    # Update behaviour
    clean_update: bool = False

    # Commit identity written to fresh working copies
    commit_name: str = "gitvcs"
    commit_email: str = "gitvcs@localhost"

    # Logging
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate configuration after initialization."""
        # Blank strings count as unset
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, str) and f.type is not str and not value.strip():
                setattr(self, f.name, None)

        if isinstance(self.clean_update, str):
            self.clean_update = _to_bool(self.clean_update)
        self.clean_update = bool(self.clean_update)

        self.log_level = self.log_level.upper()
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level not in valid_log_levels:
            raise ValueError(f"Invalid log level: {self.log_level}. Must be one of {valid_log_levels}")

        if self.proxy_type is not None and self.proxy_type.upper() not in PROXY_TYPES:
            raise ValueError(f"Invalid proxy type: {self.proxy_type}. Must be one of {list(PROXY_TYPES)}")

    @property
    def is_configured(self) -> bool:
        """Both the working copy location and the remote URL are set."""
        return self.local_url is not None and self.remote_url is not None

    @property
    def has_revision(self) -> bool:
        return self.revision is not None

    @property
    def working_copy(self) -> Path:
        """Filesystem path of the working copy."""
        if self.local_url is None:
            raise ConfigurationError("No working copy location configured", operation="configuration")
        return url_to_path(self.local_url)

    @property
    def keyfile_path(self) -> Optional[Path]:
        if self.ssh_keyfile is None:
            return None
        return url_to_path(self.ssh_keyfile)

    def __repr__(self) -> str:
        shown = []
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in ('password', 'ssh_passphrase', 'proxy_password') and value is not None:
                value = '***'
            shown.append(f"{f.name}={value!r}")
        return f"Config({', '.join(shown)})"

    @classmethod
    def from_properties(cls, properties: Mapping[str, str]) -> "Config":
        """Build a Config from bootstrap properties using the ``vcs.*`` keys."""
        values = {
            name: properties[key]
            for name, key in PROPERTY_KEYS.items()
            if properties.get(key) is not None
        }
        try:
            return cls(**values)
        except ValueError as e:
            raise ConfigurationError(f"Configuration error: {e}", operation="configuration") from e


def _to_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "yes", "on", "1")


def decode_secret(value: Optional[str]) -> Optional[str]:
    """
    Resolve a configured secret into its plain-text value.

    ``%env{NAME}`` reads the named environment variable and ``PW:<base64>``
    is base64-decoded. Any other value is used as-is.
    """
    if value is None:
        return None
    value = value.strip()

    match = _ENV_REFERENCE.match(value)
    if match:
        name = match.group(1)
        if name not in os.environ:
            raise ConfigurationError(f"Secret references unset environment variable {name}", operation="decode_secret")
        value = os.environ[name]

    if value.startswith(_ENCODED_PREFIX):
        try:
            return base64.b64decode(value[len(_ENCODED_PREFIX):], validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ConfigurationError("Encoded secret could not be decoded", operation="decode_secret") from e

    return value


def load_configuration() -> Config:
    """Load configuration from environment variables (and a ``.env`` file if present)."""
    load_dotenv()
    values = {
        name: os.environ[env_key]
        for name, env_key in ENVIRONMENT_KEYS.items()
        if os.environ.get(env_key)
    }
    try:
        return Config(**values)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Configuration error: {e}", operation="configuration") from e


def validate_configuration(config: Config) -> List[str]:
    """Validate configuration and return any errors or warnings."""
    errors = []

    if config.local_url is None:
        errors.append("WARNING: No working copy location configured; synchronization will be skipped")
    if config.remote_url is None:
        errors.append("WARNING: No remote repository URL configured; synchronization will be skipped")

    if config.remote_url and not config.remote_url.startswith(
        ("http://", "https://", "git://", "ssh://", "git@", "file://", "/")
    ):
        errors.append(f"WARNING: Remote URL may be invalid: {config.remote_url}")

    if config.username and not config.password:
        errors.append("WARNING: Username configured without a password; it will not be used")

    keyfile = config.keyfile_path
    if keyfile is not None and not keyfile.is_file():
        errors.append(f"ERROR: SSH key file does not exist: {keyfile}")

    if config.proxy_host and not (config.ssh_keyfile or (config.auth_impl or "").lower() in ("ssh", "sshkey")):
        errors.append("WARNING: Proxy settings are only used for SSH remotes")

    if config.local_url is not None:
        parent = config.working_copy.parent
        if parent.exists() and not os.access(parent, os.W_OK):
            errors.append(f"ERROR: No write permission for working copy parent directory: {parent}")

    for message in errors:
        logging.getLogger('gitvcs.config').debug(message)

    return errors
