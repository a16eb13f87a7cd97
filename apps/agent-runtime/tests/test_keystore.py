import json
import os
import pathlib
import stat
import sys
import tempfile
import unittest
from unittest import mock

RUNTIME_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(RUNTIME_ROOT) not in sys.path:
    sys.path.insert(0, str(RUNTIME_ROOT))

from solflow_agent import keystore  # noqa: E402
from solflow_agent.base58 import b58decode, b58encode  # noqa: E402
from solflow_agent.errors import WalletPassphraseError, WalletSecurityError, WalletStoreError  # noqa: E402

SEED = bytes(range(32))


class SecretKeyParsingTests(unittest.TestCase):
    def test_accepts_seed_and_keypair_forms(self) -> None:
        signer = keystore.Ed25519Signer(SEED)
        keypair = SEED + b58decode(signer.public_key)
        self.assertEqual(keystore.parse_secret_key(json.dumps(list(keypair))), SEED)
        self.assertEqual(keystore.parse_secret_key(json.dumps(list(SEED))), SEED)
        self.assertEqual(keystore.parse_secret_key(b58encode(keypair)), SEED)

    def test_rejects_mismatched_public_half(self) -> None:
        with self.assertRaises(WalletStoreError):
            keystore.parse_secret_key(json.dumps(list(SEED + bytes(32))))

    def test_rejects_bad_lengths_and_encodings(self) -> None:
        for value in ("[1, 2, 3]", "[300]", "not base58 0OIl", "[1,"):
            with self.subTest(value=value):
                with self.assertRaises(WalletStoreError):
                    keystore.parse_secret_key(value)

    def test_signer_is_deterministic(self) -> None:
        self.assertEqual(keystore.Ed25519Signer(SEED).public_key, keystore.Ed25519Signer(SEED).public_key)
        self.assertEqual(len(keystore.Ed25519Signer(SEED).sign_message(b"msg")), 64)
        with self.assertRaises(WalletStoreError):
            keystore.Ed25519Signer(b"short")


class KeystoreFileTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.home = pathlib.Path(self._tmp.name) / "agent"
        env = mock.patch.dict(os.environ, {"SOLFLOW_AGENT_HOME": str(self.home)}, clear=False)
        env.start()
        self.addCleanup(env.stop)
        self.addCleanup(self._tmp.cleanup)

    def test_save_load_unlock_roundtrip(self) -> None:
        signer = keystore.Ed25519Signer(SEED)
        keystore.save_keystore(signer, "passphrase-123")

        entry = keystore.load_keystore()
        self.assertIsNotNone(entry)
        self.assertEqual(entry["address"], signer.public_key)
        self.assertEqual(entry["crypto"]["kdf"], "argon2id")
        self.assertNotIn(b58encode(SEED), json.dumps(entry))
        self.assertEqual(keystore.unlock_keystore(entry, "passphrase-123").public_key, signer.public_key)
        if os.name != "nt":
            self.assertEqual(stat.S_IMODE(self.home.stat().st_mode), 0o700)
            self.assertEqual(stat.S_IMODE(keystore.keystore_path().stat().st_mode), 0o600)

    def test_wrong_passphrase(self) -> None:
        keystore.save_keystore(keystore.Ed25519Signer(SEED), "right")
        with self.assertRaises(WalletPassphraseError):
            keystore.unlock_keystore(keystore.load_keystore(), "wrong")

    @unittest.skipIf(os.name == "nt", "POSIX permissions only")
    def test_loose_permissions_are_refused(self) -> None:
        keystore.save_keystore(keystore.Ed25519Signer(SEED), "pw")
        os.chmod(keystore.keystore_path(), 0o644)
        with self.assertRaises(WalletSecurityError):
            keystore.load_keystore()

    def test_missing_store_and_remove(self) -> None:
        self.assertIsNone(keystore.load_keystore())
        self.assertFalse(keystore.remove_keystore())
        keystore.save_keystore(keystore.Ed25519Signer(SEED), "pw")
        self.assertTrue(keystore.remove_keystore())
        self.assertIsNone(keystore.load_keystore())

    def test_malformed_crypto_payload(self) -> None:
        entry = {
            "version": 1,
            "address": keystore.Ed25519Signer(SEED).public_key,
            "crypto": {
                "enc": "aes-256-gcm",
                "kdf": "argon2id",
                "kdfParams": {},
                "saltB64": "AA==",
                "nonceB64": "AA==",
                "ciphertextB64": "AA==",
            },
        }
        with self.assertRaises(WalletStoreError):
            keystore.validate_keystore_shape(entry)
        with self.assertRaises(WalletStoreError):
            keystore.validate_keystore_shape({**entry, "version": 2})


class SignerResolutionTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.env = {"SOLFLOW_AGENT_HOME": str(pathlib.Path(self._tmp.name) / "agent"), "SOLANA_SECRET_KEY": ""}
        cli_keypair = mock.patch.object(keystore, "SOLANA_CLI_KEYPAIR", pathlib.Path(self._tmp.name) / "id.json")
        cli_keypair.start()
        self.addCleanup(cli_keypair.stop)

    def test_explicit_secret_beats_environment(self) -> None:
        other_seed = bytes([5]) * 32
        self.env["SOLANA_SECRET_KEY"] = json.dumps(list(other_seed))
        with mock.patch.dict(os.environ, self.env, clear=False):
            signer = keystore.resolve_signer(json.dumps(list(SEED)))
            from_env = keystore.resolve_signer(None)
        self.assertEqual(signer.public_key, keystore.Ed25519Signer(SEED).public_key)
        self.assertEqual(from_env.public_key, keystore.Ed25519Signer(other_seed).public_key)

    def test_keystore_unlocks_with_env_passphrase(self) -> None:
        self.env["SOLFLOW_WALLET_PASSPHRASE"] = "pw"
        with mock.patch.dict(os.environ, self.env, clear=False):
            keystore.save_keystore(keystore.Ed25519Signer(SEED), "pw")
            signer = keystore.resolve_signer()
        self.assertEqual(signer.seed(), SEED)

    def test_keystore_without_passphrase_non_interactive(self) -> None:
        self.env["SOLFLOW_WALLET_PASSPHRASE"] = ""
        with mock.patch.dict(os.environ, self.env, clear=False):
            keystore.save_keystore(keystore.Ed25519Signer(SEED), "pw")
            with mock.patch.object(keystore, "_interactive", return_value=False):
                with self.assertRaises(WalletPassphraseError):
                    keystore.resolve_signer()

    def test_solana_cli_keypair_fallback(self) -> None:
        keystore.SOLANA_CLI_KEYPAIR.write_text(json.dumps(list(SEED + b58decode(keystore.Ed25519Signer(SEED).public_key))))
        with mock.patch.dict(os.environ, self.env, clear=False):
            self.assertEqual(keystore.resolve_signer().seed(), SEED)

    def test_no_signer_configured(self) -> None:
        with mock.patch.dict(os.environ, self.env, clear=False):
            with self.assertRaises(WalletStoreError) as ctx:
                keystore.resolve_signer()
        self.assertIn("No signer configured", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
