#!/usr/bin/env python3
"""
Unit tests for authentication strategy selection.

Covers the URL/credential inference table, explicitly configured strategies,
secret handling and the environment each strategy hands to git.
"""

import base64
import os
import unittest
from pathlib import Path

# Add the project root to the path so we can import gitvcs modules
import sys
sys.path.insert(0, str(Path(__file__).parent))

from gitvcs.auth import (
    AuthStrategy,
    NoAuthentication,
    ProxySettings,
    ProxyType,
    SSHKey,
    UsernamePassword,
    infer_strategy,
    resolve,
)
from gitvcs.config import Config
from gitvcs.errors import ConfigurationError


class TestStrategyInference(unittest.TestCase):
    """Test cases for the inference table."""

    def test_inference_table(self):
        """Each URL/credential combination selects the expected strategy."""
        print("\nTesting authentication inference table")
        cases = [
            (dict(remote_url="https://example.com/r.git", username="u", password="p"), AuthStrategy.USERNAME_PASSWORD),
            (dict(remote_url="http://example.com/r.git", username="u", password="p"), AuthStrategy.USERNAME_PASSWORD),
            (dict(remote_url="https://example.com/r.git", username="u"), AuthStrategy.NONE),
            (dict(remote_url="https://example.com/r.git"), AuthStrategy.NONE),
            (dict(remote_url="git://example.com/r.git", username="u", password="p"), AuthStrategy.NONE),
            (dict(remote_url="git@example.com:team/r.git", ssh_keyfile="/keys/id_rsa"), AuthStrategy.SSH_KEY),
            (dict(remote_url="ssh://git@example.com/r.git", ssh_keyfile="/keys/id_rsa"), AuthStrategy.SSH_KEY),
            (dict(remote_url="git@example.com:team/r.git"), AuthStrategy.NONE),
            (dict(remote_url="/srv/git/r.git", ssh_keyfile="/keys/id_rsa"), AuthStrategy.NONE),
            (dict(), AuthStrategy.NONE),
        ]
        for values, expected in cases:
            with self.subTest(values=values):
                self.assertEqual(infer_strategy(Config(**values)), expected)
                print(f"  ✓ {values.get('remote_url')} -> {expected.value}")

    def test_resolve_builds_matching_context(self):
        https = resolve(Config(remote_url="https://example.com/r.git", username="u", password="p"))
        self.assertIsInstance(https, UsernamePassword)
        self.assertEqual(https.user, "u")
        self.assertEqual(https.secret, "p")

        ssh = resolve(Config(remote_url="git@example.com:r.git", ssh_keyfile="/keys/id_rsa"))
        self.assertIsInstance(ssh, SSHKey)
        self.assertEqual(ssh.keyfile, Path("/keys/id_rsa"))
        self.assertIsNone(ssh.proxy)

        self.assertIsInstance(resolve(Config()), NoAuthentication)


class TestExplicitStrategy(unittest.TestCase):
    """Test cases for explicitly named strategies."""

    def test_explicit_name_overrides_inference(self):
        config = Config(remote_url="https://example.com/r.git", username="u", password="p", auth_impl="None")
        self.assertIsInstance(resolve(config), NoAuthentication)

    def test_explicit_names_are_case_insensitive(self):
        for name in ("ssh", "SSH", "SshKey", "ssh_key"):
            with self.subTest(name=name):
                self.assertEqual(AuthStrategy.parse(name), AuthStrategy.SSH_KEY)
        self.assertEqual(AuthStrategy.parse("usernamepassword"), AuthStrategy.USERNAME_PASSWORD)

    def test_unknown_strategy_is_configuration_error(self):
        with self.assertRaises(ConfigurationError):
            resolve(Config(auth_impl="kerberos"))

    def test_explicit_ssh_without_keyfile_is_configuration_error(self):
        with self.assertRaises(ConfigurationError):
            resolve(Config(remote_url="git@example.com:r.git", auth_impl="SSH"))

    def test_explicit_username_password_without_username(self):
        context = resolve(Config(remote_url="https://example.com/r.git", auth_impl="UsernamePassword"))
        self.assertIsInstance(context, UsernamePassword)
        self.assertIsNone(context.user)


class TestSecrets(unittest.TestCase):
    """Test cases for secret decoding and masking."""

    def test_encoded_password_is_decoded(self):
        encoded = "PW:" + base64.b64encode(b"s3cret").decode("ascii")
        context = resolve(Config(remote_url="https://example.com/r.git", username="u", password=encoded))
        self.assertEqual(context.secret, "s3cret")

    def test_secrets_not_in_repr(self):
        context = UsernamePassword(user="u", secret="s3cret")
        self.assertNotIn("s3cret", repr(context))
        self.assertEqual(str(context), "Auth:Username+Password")

        ssh = SSHKey(keyfile=Path("/keys/id_rsa"), passphrase="phrase")
        self.assertNotIn("phrase", repr(ssh))
        self.assertEqual(str(ssh), "Auth:SSH")
        self.assertEqual(str(NoAuthentication()), "Auth:NONE")

    def test_username_password_environment(self):
        env = UsernamePassword(user="u", secret="s3cret").environment()
        self.assertEqual(env["GIT_TERMINAL_PROMPT"], "0")
        self.assertEqual(env["GIT_CONFIG_KEY_1"], "credential.helper")
        self.assertEqual(env["GITVCS_AUTH_USERNAME"], "u")
        self.assertEqual(env["GITVCS_AUTH_PASSWORD"], "s3cret")
        self.assertNotIn("s3cret", env["GIT_CONFIG_VALUE_1"])


class TestSSHMechanics(unittest.TestCase):
    """Test cases for the SSH command, proxies and askpass sessions."""

    def test_ssh_command(self):
        command = SSHKey(keyfile=Path("/keys/id_rsa")).ssh_command()
        self.assertEqual(command, "ssh -i /keys/id_rsa -o IdentitiesOnly=yes")

    def test_proxy_commands(self):
        http = ProxySettings(host="proxy.local:3128", type=ProxyType.HTTP, user="bob")
        self.assertEqual(http.proxy_command(), "nc -X connect -x proxy.local:3128 -P bob %h %p")

        socks = ProxySettings(host="socks.local", type=ProxyType.SOCKS5)
        self.assertEqual(socks.address, ("socks.local", 1080))
        self.assertEqual(socks.proxy_command(), "nc -X 5 -x socks.local:1080 %h %p")

        socks4 = ProxySettings(host="socks.local:9050", type=ProxyType.SOCKS4)
        self.assertEqual(socks4.proxy_command(), "nc -X 4 -x socks.local:9050 %h %p")

        self.assertEqual(ProxySettings(host="proxy.local").address, ("proxy.local", 80))

    def test_proxy_type_parsing(self):
        self.assertEqual(ProxyType.parse(None), ProxyType.HTTP)
        self.assertEqual(ProxyType.parse(" "), ProxyType.HTTP)
        self.assertEqual(ProxyType.parse("socks4"), ProxyType.SOCKS4)

    def test_proxy_from_configuration(self):
        config = Config(
            remote_url="ssh://git@example.com/r.git",
            ssh_keyfile="/keys/id_rsa",
            proxy_host="socks.local:1081",
            proxy_type="SOCKS5",
            proxy_user="bob",
        )
        context = resolve(config)
        self.assertEqual(context.proxy.type, ProxyType.SOCKS5)
        self.assertIn("ProxyCommand=nc -X 5 -x socks.local:1081 -P bob %h %p", context.ssh_command())

    def test_session_without_passphrase(self):
        with SSHKey(keyfile=Path("/keys/id_rsa")).session() as env:
            self.assertNotIn("SSH_ASKPASS", env)
            self.assertIn("GIT_SSH_COMMAND", env)

    def test_askpass_script_removed_after_session(self):
        """The askpass helper exists only for the session and never holds the passphrase."""
        context = SSHKey(keyfile=Path("/keys/id_rsa"), passphrase="phrase")

        with context.session() as env:
            askpass = Path(env["SSH_ASKPASS"])
            self.assertTrue(askpass.exists())
            self.assertTrue(os.access(askpass, os.X_OK))
            self.assertNotIn("phrase", askpass.read_text())
            self.assertEqual(env["SSH_ASKPASS_REQUIRE"], "force")
            self.assertEqual(env["GITVCS_SSH_PASSPHRASE"], "phrase")

        self.assertFalse(askpass.exists())
        print("  ✓ Askpass helper cleaned up")

    def test_askpass_script_removed_on_error(self):
        context = SSHKey(keyfile=Path("/keys/id_rsa"), passphrase="phrase")

        with self.assertRaises(RuntimeError):
            with context.session() as env:
                askpass = Path(env["SSH_ASKPASS"])
                raise RuntimeError("git failed")

        self.assertFalse(askpass.exists())


def run_tests():
    """Run all authentication tests."""
    print("Running Authentication Tests")
    print("=" * 60)

    loader = unittest.TestLoader()
    test_suite = unittest.TestSuite()
    for case in (TestStrategyInference, TestExplicitStrategy, TestSecrets, TestSSHMechanics):
        test_suite.addTests(loader.loadTestsFromTestCase(case))

    runner = unittest.TextTestRunner(verbosity=2, stream=sys.stdout)
    result = runner.run(test_suite)

    success = len(result.failures) == 0 and len(result.errors) == 0
    print(f"\nOverall result: {'PASS' if success else 'FAIL'}")
    return success


if __name__ == "__main__":
    success = run_tests()
    sys.exit(0 if success else 1)
