"""Authentication strategy selection for remote Git operations."""

import logging
import os
import shlex
import stat
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .config import Config, decode_secret
from .errors import ConfigurationError

logger = logging.getLogger('gitvcs.auth')

_NO_PROMPT = {"GIT_TERMINAL_PROMPT": "0"}

# Inline credential helper; reads the secrets from the child process environment.
_CREDENTIAL_HELPER = (
    '!f() { test "$1" = get || return 0; '
    'echo "username=$GITVCS_AUTH_USERNAME"; echo "password=$GITVCS_AUTH_PASSWORD"; }; f'
)

_ASKPASS_SCRIPT = '#!/bin/sh\nprintf \'%s\\n\' "$GITVCS_SSH_PASSPHRASE"\n'


class AuthStrategy(Enum):
    """Supported authentication strategies."""
    NONE = "None"
    USERNAME_PASSWORD = "UsernamePassword"
    SSH_KEY = "SSH"

    @classmethod
    def parse(cls, name: str) -> "AuthStrategy":
        aliases = {
            "none": cls.NONE,
            "usernamepassword": cls.USERNAME_PASSWORD,
            "ssh": cls.SSH_KEY,
            "sshkey": cls.SSH_KEY,
        }
        key = name.strip().replace("_", "").replace("-", "").lower()
        if key not in aliases:
            raise ConfigurationError(
                f"Unknown authentication implementation '{name}'; "
                f"expected one of {[s.value for s in cls]}",
                operation="resolve_authentication"
            )
        return aliases[key]


class ProxyType(Enum):
    HTTP = "HTTP"
    SOCKS4 = "SOCKS4"
    SOCKS5 = "SOCKS5"

    @classmethod
    def parse(cls, name: Optional[str]) -> "ProxyType":
        if name is None or not name.strip():
            return cls.HTTP
        return cls(name.strip().upper())


_NC_PROTOCOL = {
    ProxyType.HTTP: "connect",
    ProxyType.SOCKS4: "4",
    ProxyType.SOCKS5: "5",
}

_DEFAULT_PROXY_PORT = {
    ProxyType.HTTP: 80,
    ProxyType.SOCKS4: 1080,
    ProxyType.SOCKS5: 1080,
}


@dataclass(frozen=True)
class ProxySettings:
    """Proxy used to tunnel SSH connections."""
    host: str
    type: ProxyType = ProxyType.HTTP
    user: Optional[str] = None
    secret: Optional[str] = field(default=None, repr=False)

    @property
    def address(self) -> Tuple[str, int]:
        host, sep, port = self.host.rpartition(":")
        if sep and port.isdigit():
            return host, int(port)
        return self.host, _DEFAULT_PROXY_PORT[self.type]

    def proxy_command(self) -> str:
        """ProxyCommand for ssh, tunnelling through ``nc``."""
        host, port = self.address
        parts = ["nc", "-X", _NC_PROTOCOL[self.type], "-x", f"{host}:{port}"]
        if self.user:
            parts.extend(["-P", self.user])
        if self.secret:
            logger.debug("Proxy secret configured; nc does not accept it non-interactively")
        parts.extend(["%h", "%p"])
        return " ".join(parts)


class AuthenticationContext:
    """Base class for the authentication strategies."""

    strategy: AuthStrategy

    def environment(self) -> Dict[str, str]:
        """Environment variables applied to git processes for this strategy."""
        return dict(_NO_PROMPT)

    @contextmanager
    def session(self) -> Iterator[Dict[str, str]]:
        """
        Yield the environment for a set of git calls.

        Temporary resources created for the session are released when the
        block exits, including on error.
        """
        yield self.environment()


@dataclass(frozen=True)
class NoAuthentication(AuthenticationContext):
    strategy = AuthStrategy.NONE

    def __str__(self) -> str:
        return "Auth:NONE"


@dataclass(frozen=True)
class UsernamePassword(AuthenticationContext):
    user: Optional[str]
    secret: Optional[str] = field(default=None, repr=False)

    strategy = AuthStrategy.USERNAME_PASSWORD

    def environment(self) -> Dict[str, str]:
        env = dict(_NO_PROMPT)
        env.update({
            # Reset inherited helpers first so ours is the only one consulted
            "GIT_CONFIG_COUNT": "2",
            "GIT_CONFIG_KEY_0": "credential.helper",
            "GIT_CONFIG_VALUE_0": "",
            "GIT_CONFIG_KEY_1": "credential.helper",
            "GIT_CONFIG_VALUE_1": _CREDENTIAL_HELPER,
            "GITVCS_AUTH_USERNAME": self.user or "",
            "GITVCS_AUTH_PASSWORD": self.secret or "",
        })
        return env

    def __str__(self) -> str:
        return "Auth:Username+Password"


@dataclass(frozen=True)
class SSHKey(AuthenticationContext):
    keyfile: Path
    passphrase: Optional[str] = field(default=None, repr=False)
    proxy: Optional[ProxySettings] = None

    strategy = AuthStrategy.SSH_KEY

    def ssh_command(self) -> str:
        parts = ["ssh", "-i", shlex.quote(str(self.keyfile)), "-o", "IdentitiesOnly=yes"]
        if self.proxy is not None:
            parts.extend(["-o", shlex.quote(f"ProxyCommand={self.proxy.proxy_command()}")])
        return " ".join(parts)

    def environment(self) -> Dict[str, str]:
        env = dict(_NO_PROMPT)
        env["GIT_SSH_COMMAND"] = self.ssh_command()
        return env

    @contextmanager
    def session(self) -> Iterator[Dict[str, str]]:
        env = self.environment()
        if not self.passphrase:
            yield env
            return

        fd, askpass = tempfile.mkstemp(prefix="gitvcs-askpass-", suffix=".sh")
        try:
            with os.fdopen(fd, "w") as handle:
                handle.write(_ASKPASS_SCRIPT)
            os.chmod(askpass, stat.S_IRWXU)
            env.update({
                "SSH_ASKPASS": askpass,
                "SSH_ASKPASS_REQUIRE": "force",
                "GITVCS_SSH_PASSPHRASE": self.passphrase,
            })
            yield env
        finally:
            os.unlink(askpass)

    def __str__(self) -> str:
        return "Auth:SSH"


def _build_none(config: Config) -> AuthenticationContext:
    return NoAuthentication()


def _build_username_password(config: Config) -> AuthenticationContext:
    if config.username is None:
        logger.warning("UsernamePassword authentication selected without a username")
    return UsernamePassword(user=config.username, secret=decode_secret(config.password))


def _build_ssh_key(config: Config) -> AuthenticationContext:
    keyfile = config.keyfile_path
    if keyfile is None:
        raise ConfigurationError(
            "SSH authentication requires an SSH private key file",
            operation="resolve_authentication"
        )
    proxy = None
    if config.proxy_host:
        proxy = ProxySettings(
            host=config.proxy_host,
            type=ProxyType.parse(config.proxy_type),
            user=config.proxy_user,
            secret=decode_secret(config.proxy_password),
        )
    return SSHKey(keyfile=keyfile, passphrase=decode_secret(config.ssh_passphrase), proxy=proxy)


_BUILDERS: Dict[AuthStrategy, Callable[[Config], AuthenticationContext]] = {
    AuthStrategy.NONE: _build_none,
    AuthStrategy.USERNAME_PASSWORD: _build_username_password,
    AuthStrategy.SSH_KEY: _build_ssh_key,
}


def _remote(config: Config) -> str:
    return config.remote_url or ""


def _has_credentials(config: Config) -> bool:
    return config.username is not None and config.password is not None


# Evaluated in order; the first matching rule wins.
INFERENCE_RULES: List[Tuple[str, Callable[[Config], bool], AuthStrategy]] = [
    ("http", lambda c: _remote(c).startswith("http://") and _has_credentials(c), AuthStrategy.USERNAME_PASSWORD),
    ("https", lambda c: _remote(c).startswith("https://") and _has_credentials(c), AuthStrategy.USERNAME_PASSWORD),
    ("git", lambda c: _remote(c).startswith("git://"), AuthStrategy.NONE),
    ("git+ssh", lambda c: _remote(c).startswith("git@") and c.ssh_keyfile is not None, AuthStrategy.SSH_KEY),
    ("ssh", lambda c: _remote(c).startswith("ssh://") and c.ssh_keyfile is not None, AuthStrategy.SSH_KEY),
]


def infer_strategy(config: Config) -> AuthStrategy:
    """Infer the strategy from the remote URL scheme and available credentials."""
    for name, matches, strategy in INFERENCE_RULES:
        if matches(config):
            logger.debug(f"Authentication rule '{name}' matched; using {strategy.value}")
            return strategy
    return AuthStrategy.NONE


def resolve(config: Config) -> AuthenticationContext:
    """
    Select and construct the authentication strategy for a configuration.

    An explicitly configured strategy name is honoured as-is; otherwise the
    strategy is inferred from the remote URL.

    Raises:
        ConfigurationError: if the explicitly named strategy is unknown or
            cannot be constructed from the configuration
    """
    if config.auth_impl:
        logger.debug(f"Explicit authentication implementation requested: {config.auth_impl}")
        strategy = AuthStrategy.parse(config.auth_impl)
    else:
        strategy = infer_strategy(config)

    context = _BUILDERS[strategy](config)
    logger.debug(f"Authentication implementation: {context}")
    return context
