"""Base58 (Bitcoin alphabet) codec and Solana address helpers."""

from __future__ import annotations

import hashlib
import re

ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_INDEX = {ch: i for i, ch in enumerate(ALPHABET)}

ADDRESS_PATTERN = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")
PUBLIC_KEY_LENGTH = 32
MAX_SEED_LENGTH = 32
PDA_MARKER = b"ProgramDerivedAddress"


def b58encode(data: bytes) -> str:
    leading = len(data) - len(data.lstrip(b"\0"))
    num = int.from_bytes(data, "big")
    out = []
    while num > 0:
        num, rem = divmod(num, 58)
        out.append(ALPHABET[rem])
    return "1" * leading + "".join(reversed(out))


def b58decode(text: str) -> bytes:
    if not text:
        return b""
    num = 0
    for ch in text:
        if ch not in _INDEX:
            raise ValueError(f"Invalid base58 character: {ch!r}")
        num = num * 58 + _INDEX[ch]
    leading = len(text) - len(text.lstrip("1"))
    body = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\0" * leading + body


def normalize_at_path(value: str) -> str:
    return value[1:] if value.startswith("@") else value


def parse_address(value: str) -> str | None:
    """Return the canonical base58 form of a 32-byte public key, or None."""
    candidate = normalize_at_path(value.strip())
    if not ADDRESS_PATTERN.match(candidate):
        return None
    try:
        raw = b58decode(candidate)
    except ValueError:
        return None
    if len(raw) != PUBLIC_KEY_LENGTH:
        return None
    return b58encode(raw)


def is_address(value: object) -> bool:
    return isinstance(value, str) and parse_address(value) is not None


def create_with_seed(base: str, seed: str, program_id: str) -> str:
    # Mirrors the runtime's Pubkey::create_with_seed: sha256(base || seed || owner).
    seed_bytes = seed.encode("utf-8")
    if len(seed_bytes) > MAX_SEED_LENGTH:
        raise ValueError("Seed exceeds 32 bytes")
    owner = b58decode(program_id)
    if owner.endswith(PDA_MARKER):
        raise ValueError("Owner cannot be a program derived address marker")
    digest = hashlib.sha256(b58decode(base) + seed_bytes + owner).digest()
    return b58encode(digest)
