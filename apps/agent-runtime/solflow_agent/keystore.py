"""Encrypted-at-rest Ed25519 signer.

The keystore holds a single 32-byte Ed25519 seed encrypted with AES-256-GCM
under an argon2id-derived key. The store directory must be 0700 and the
store file 0600; anything looser is refused before the file is read.
"""

from __future__ import annotations

import base64
import getpass
import json
import os
import pathlib
import secrets
import stat
import sys
from datetime import datetime, timezone
from typing import Any

from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from . import config
from .base58 import b58decode, b58encode, parse_address
from .errors import WalletPassphraseError, WalletSecurityError, WalletStoreError

KEYSTORE_VERSION = 1
KEYSTORE_FILENAME = "keystore.json"
SEED_LENGTH = 32
KEYPAIR_LENGTH = 64

ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST = 65536
ARGON2_PARALLELISM = 1
ARGON2_HASH_LEN = 32

SOLANA_CLI_KEYPAIR = pathlib.Path.home() / ".config" / "solana" / "id.json"


class Ed25519Signer:
    def __init__(self, seed: bytes):
        if len(seed) != SEED_LENGTH:
            raise WalletStoreError(f"Ed25519 seed must be {SEED_LENGTH} bytes, got {len(seed)}.")
        self._seed = seed
        self._key = Ed25519PrivateKey.from_private_bytes(seed)
        self._public = self._key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)

    @property
    def public_key(self) -> str:
        return b58encode(self._public)

    def sign_message(self, message: bytes) -> bytes:
        return self._key.sign(message)

    def seed(self) -> bytes:
        return self._seed

    @classmethod
    def generate(cls) -> "Ed25519Signer":
        return cls(secrets.token_bytes(SEED_LENGTH))


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def keystore_path() -> pathlib.Path:
    return config.agent_home() / KEYSTORE_FILENAME


def ensure_home() -> pathlib.Path:
    home = config.agent_home()
    home.mkdir(mode=0o700, parents=True, exist_ok=True)
    if os.name != "nt":
        os.chmod(home, 0o700)
    return home


def _is_secure_permissions(path: pathlib.Path, expected_mode: int) -> bool:
    if os.name == "nt":
        return True
    return stat.S_IMODE(path.stat().st_mode) == expected_mode


def _assert_secure_permissions(path: pathlib.Path, expected_mode: int, kind: str) -> None:
    if not path.exists():
        return
    if not _is_secure_permissions(path, expected_mode):
        raise WalletSecurityError(
            f"Unsafe {kind} permissions for '{path}'. Expected {oct(expected_mode)} owner-only permissions."
        )


def parse_secret_key(value: str) -> bytes:
    """Accept a base58 secret key or a JSON byte array (32-byte seed or 64-byte keypair)."""
    text = value.strip()
    if text.startswith("["):
        try:
            items = json.loads(text)
        except json.JSONDecodeError as exc:
            raise WalletStoreError("Secret key JSON array is malformed.") from exc
        if not isinstance(items, list) or not all(isinstance(i, int) and 0 <= i <= 255 for i in items):
            raise WalletStoreError("Secret key JSON array must contain byte values.")
        raw = bytes(items)
    else:
        try:
            raw = b58decode(text)
        except ValueError as exc:
            raise WalletStoreError("Secret key must be base58 or a JSON byte array.") from exc
    if len(raw) == SEED_LENGTH:
        return raw
    if len(raw) != KEYPAIR_LENGTH:
        raise WalletStoreError(f"Secret key must be {SEED_LENGTH} or {KEYPAIR_LENGTH} bytes, got {len(raw)}.")
    seed, public = raw[:SEED_LENGTH], raw[SEED_LENGTH:]
    if Ed25519Signer(seed).public_key != b58encode(public):
        raise WalletStoreError("Secret key public half does not match its seed.")
    return seed


def _derive_aes_key(passphrase: str, salt: bytes) -> bytes:
    return hash_secret_raw(
        secret=passphrase.encode("utf-8"),
        salt=salt,
        time_cost=ARGON2_TIME_COST,
        memory_cost=ARGON2_MEMORY_COST,
        parallelism=ARGON2_PARALLELISM,
        hash_len=ARGON2_HASH_LEN,
        type=Type.ID,
    )


def _encrypt_seed(seed: bytes, passphrase: str) -> dict[str, Any]:
    salt = secrets.token_bytes(16)
    nonce = secrets.token_bytes(12)
    ciphertext = AESGCM(_derive_aes_key(passphrase, salt)).encrypt(nonce, seed, None)
    return {
        "enc": "aes-256-gcm",
        "kdf": "argon2id",
        "kdfParams": {
            "timeCost": ARGON2_TIME_COST,
            "memoryCost": ARGON2_MEMORY_COST,
            "parallelism": ARGON2_PARALLELISM,
            "hashLen": ARGON2_HASH_LEN,
        },
        "saltB64": base64.b64encode(salt).decode("ascii"),
        "nonceB64": base64.b64encode(nonce).decode("ascii"),
        "ciphertextB64": base64.b64encode(ciphertext).decode("ascii"),
    }


def _crypto_fields(crypto: dict[str, Any]) -> tuple[bytes, bytes, bytes]:
    try:
        salt = base64.b64decode(str(crypto.get("saltB64", "")), validate=True)
        nonce = base64.b64decode(str(crypto.get("nonceB64", "")), validate=True)
        ciphertext = base64.b64decode(str(crypto.get("ciphertextB64", "")), validate=True)
    except ValueError as exc:
        raise WalletStoreError("Keystore crypto payload is not valid base64.") from exc
    if len(salt) != 16 or len(nonce) != 12 or len(ciphertext) < 16:
        raise WalletStoreError("Keystore crypto payload has invalid lengths.")
    return salt, nonce, ciphertext


def _decrypt_seed(entry: dict[str, Any], passphrase: str) -> bytes:
    crypto = entry.get("crypto")
    if not isinstance(crypto, dict):
        raise WalletStoreError("Keystore entry missing crypto object.")
    salt, nonce, ciphertext = _crypto_fields(crypto)
    try:
        return AESGCM(_derive_aes_key(passphrase, salt)).decrypt(nonce, ciphertext, None)
    except InvalidTag as exc:
        raise WalletPassphraseError("Keystore passphrase is incorrect or the payload was tampered with.") from exc


def validate_keystore_shape(entry: Any) -> None:
    if not isinstance(entry, dict):
        raise WalletStoreError("Keystore must be a JSON object.")
    if entry.get("version") != KEYSTORE_VERSION:
        raise WalletStoreError(f"Unsupported keystore version: {entry.get('version')}")
    address = entry.get("address")
    if not isinstance(address, str) or parse_address(address) is None:
        raise WalletStoreError("Keystore address is missing or invalid.")
    crypto = entry.get("crypto")
    if not isinstance(crypto, dict):
        raise WalletStoreError("Keystore crypto payload is missing.")
    missing = [k for k in ("enc", "kdf", "kdfParams", "saltB64", "nonceB64", "ciphertextB64") if k not in crypto]
    if missing:
        raise WalletStoreError(f"Keystore crypto payload missing fields: {', '.join(missing)}")
    if crypto.get("enc") != "aes-256-gcm" or crypto.get("kdf") != "argon2id":
        raise WalletStoreError("Keystore crypto algorithm metadata is invalid.")
    _crypto_fields(crypto)


def load_keystore() -> dict[str, Any] | None:
    home = config.agent_home()
    path = keystore_path()
    if not path.exists():
        return None
    _assert_secure_permissions(home, 0o700, "directory")
    _assert_secure_permissions(path, 0o600, "keystore file")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise WalletStoreError(f"Invalid JSON in '{path}': {exc}") from exc
    validate_keystore_shape(data)
    return data


def save_keystore(signer: Ed25519Signer, passphrase: str) -> dict[str, Any]:
    ensure_home()
    entry = {
        "version": KEYSTORE_VERSION,
        "address": signer.public_key,
        "createdAt": utc_now(),
        "crypto": _encrypt_seed(signer.seed(), passphrase),
    }
    path = keystore_path()
    path.write_text(json.dumps(entry, indent=2), encoding="utf-8")
    if os.name != "nt":
        os.chmod(path, 0o600)
    return entry


def remove_keystore() -> bool:
    path = keystore_path()
    if not path.exists():
        return False
    path.unlink()
    return True


def unlock_keystore(entry: dict[str, Any], passphrase: str) -> Ed25519Signer:
    signer = Ed25519Signer(_decrypt_seed(entry, passphrase))
    if signer.public_key != entry.get("address"):
        raise WalletStoreError("Keystore encrypted payload does not match stored address.")
    return signer


def _interactive() -> bool:
    return sys.stdin.isatty() and sys.stderr.isatty()


def unlock_passphrase() -> str:
    env_passphrase = os.environ.get("SOLFLOW_WALLET_PASSPHRASE")
    if isinstance(env_passphrase, str) and env_passphrase.strip():
        return env_passphrase
    if not _interactive():
        raise WalletPassphraseError("Keystore unlock requires SOLFLOW_WALLET_PASSPHRASE in non-interactive mode.")
    value = getpass.getpass("Keystore passphrase: ").strip()
    if not value:
        raise WalletPassphraseError("Passphrase cannot be empty.")
    return value


def new_passphrase() -> str:
    env_passphrase = (os.environ.get("SOLFLOW_WALLET_PASSPHRASE") or "").strip()
    if env_passphrase:
        return env_passphrase
    if not _interactive():
        raise WalletPassphraseError("wallet create/import requires SOLFLOW_WALLET_PASSPHRASE in non-interactive mode.")
    first = getpass.getpass("Keystore passphrase: ").strip()
    second = getpass.getpass("Confirm keystore passphrase: ").strip()
    if not first:
        raise ValueError("Passphrase cannot be empty.")
    if first != second:
        raise ValueError("Passphrase confirmation mismatch.")
    return first


def resolve_signer(explicit_secret: Any = None) -> Ed25519Signer:
    """Pick the signer: explicit secret, SOLANA_SECRET_KEY, keystore, then the Solana CLI keypair."""
    if isinstance(explicit_secret, str) and explicit_secret.strip():
        return Ed25519Signer(parse_secret_key(explicit_secret))
    env_secret = (os.environ.get("SOLANA_SECRET_KEY") or "").strip()
    if env_secret:
        return Ed25519Signer(parse_secret_key(env_secret))
    entry = load_keystore()
    if entry is not None:
        return unlock_keystore(entry, unlock_passphrase())
    if SOLANA_CLI_KEYPAIR.exists():
        return Ed25519Signer(parse_secret_key(SOLANA_CLI_KEYPAIR.read_text(encoding="utf-8")))
    raise WalletStoreError(
        "No signer configured. Provide fromSecretKey, set SOLANA_SECRET_KEY, or run `solflow-agent wallet create`."
    )
