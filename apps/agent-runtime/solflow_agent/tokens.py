"""Token identifiers: static aliases, candidate parsing, and remote resolution.

Symbol and decimals lookups that leave the process go through two
collaborators: a ``TokenIndex`` (symbol search, best effort) and the RPC
client (mint account decimals). Results land in an injected ``TokenCache``
so one process can share them across calls while tests get a fresh cache.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Protocol

from .amounts import decimal_ui_amount_to_raw, ensure_string, parse_positive_int, to_lamports
from .base58 import parse_address
from .errors import IntentInputError, TokenResolutionError

logger = logging.getLogger(__name__)

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"
RAY_MINT = "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R"
ORCA_MINT = "orcaEKTdK7LKz57vaAYr9QeNsVEPfiu6QeMU1kektZE"
MSOL_MINT = "mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So"
BSOL_MINT = "bSo13r4TkiE4KumL71LsHTPpL2euBYLFx6h9HP3piy1"
BONK_MINT = "6dhTynDkYsVM7cbF7TKfC9DWB636TcEM935fq7JzL2ES"

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"

TOKEN_SYMBOL_RE = re.compile(r"^[A-Za-z][A-Za-z0-9._-]{1,15}$")
_SANITIZE_RE = re.compile(r"^[`\"' ]+|[`\"'., ]+$")
SYMBOL_QUERY_KEYS = ("query", "q", "symbol")
MAINNET_CHAIN_ID = 101


@dataclass(frozen=True)
class KnownToken:
    symbol: str
    mint: str
    decimals: int
    aliases: tuple[str, ...]


KNOWN_TOKENS = (
    KnownToken("SOL", SOL_MINT, 9, ("SOL", "WSOL")),
    KnownToken("USDC", USDC_MINT, 6, ("USDC",)),
    KnownToken("USDT", USDT_MINT, 6, ("USDT",)),
    KnownToken("RAY", RAY_MINT, 6, ("RAY",)),
    KnownToken("ORCA", ORCA_MINT, 6, ("ORCA",)),
    KnownToken("mSOL", MSOL_MINT, 9, ("MSOL", "mSOL")),
    KnownToken("bSOL", BSOL_MINT, 9, ("BSOL", "bSOL")),
    KnownToken("BONK", BONK_MINT, 9, ("BONK",)),
)
STATIC_ALIASES = {alias.upper(): token for token in KNOWN_TOKENS for alias in token.aliases}
STATIC_BY_MINT = {token.mint: token for token in KNOWN_TOKENS}

DEFI_TOKEN_PROFILES = {
    USDC_MINT: {"symbol": "USDC", "protocol": "stablecoin", "category": "stablecoin"},
    USDT_MINT: {"symbol": "USDT", "protocol": "stablecoin", "category": "stablecoin"},
    RAY_MINT: {"symbol": "RAY", "protocol": "raydium", "category": "dex-token"},
    ORCA_MINT: {"symbol": "ORCA", "protocol": "orca", "category": "dex-token"},
    MSOL_MINT: {"symbol": "mSOL", "protocol": "marinade", "category": "liquid-staking"},
    BSOL_MINT: {"symbol": "bSOL", "protocol": "blaze", "category": "liquid-staking"},
}


class TokenIndex(Protocol):
    """Remote symbol search (e.g. Jupiter ``/tokens/v1/search``)."""

    def search(self, symbol: str, query_key: str) -> Any: ...


class MintAccountReader(Protocol):
    def get_parsed_account_info(self, address: str) -> dict[str, Any] | None: ...


class TokenCache:
    """Process-lifetime token cache. Entries are append-only (first write wins)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._aliases: dict[str, KnownToken] = {}
        self._by_mint: dict[str, KnownToken] = {}
        self._decimals: dict[str, int] = {}
        self._symbol_mints: dict[str, str | None] = {}

    def alias(self, symbol: str) -> KnownToken | None:
        upper = symbol.upper()
        return STATIC_ALIASES.get(upper) or self._aliases.get(upper)

    def token_for_mint(self, mint: str) -> KnownToken | None:
        return STATIC_BY_MINT.get(mint) or self._by_mint.get(mint)

    def decimals(self, mint: str) -> int | None:
        token = self.token_for_mint(mint)
        if token is not None:
            return token.decimals
        return self._decimals.get(mint)

    def symbol_lookup(self, symbol: str) -> tuple[bool, str | None]:
        """Return (cached, mint). A cached ``None`` mint records a prior miss."""
        upper = symbol.upper()
        if upper in self._symbol_mints:
            return True, self._symbol_mints[upper]
        return False, None

    def register(self, symbol: str, mint: str, decimals: int) -> None:
        upper = symbol.upper()
        token = KnownToken(upper, mint, decimals, (upper,))
        with self._lock:
            self._aliases.setdefault(upper, token)
            self._by_mint.setdefault(mint, token)
            self._decimals.setdefault(mint, decimals)
            if self._symbol_mints.get(upper) is None:
                self._symbol_mints[upper] = mint

    def remember_decimals(self, mint: str, decimals: int) -> None:
        with self._lock:
            self._decimals.setdefault(mint, decimals)

    def remember_miss(self, symbol: str) -> None:
        with self._lock:
            self._symbol_mints.setdefault(symbol.upper(), None)


def sanitize_token_candidate(value: str) -> str:
    return _SANITIZE_RE.sub("", value.strip())


def is_token_symbol(value: str) -> bool:
    return bool(TOKEN_SYMBOL_RE.match(value))


def parse_mint_or_symbol_candidate(value: str) -> str | None:
    """Known alias -> mint, valid address -> address, symbol-shaped -> the symbol itself."""
    sanitized = sanitize_token_candidate(value)
    if not sanitized:
        return None
    known = STATIC_ALIASES.get(sanitized.upper())
    if known:
        return known.mint
    mint = parse_address(sanitized)
    if mint:
        return mint
    if is_token_symbol(sanitized):
        return sanitized
    return None


def parse_mint_or_known_symbol_candidate(value: str) -> str | None:
    sanitized = sanitize_token_candidate(value)
    if not sanitized:
        return None
    known = STATIC_ALIASES.get(sanitized.upper())
    if known:
        return known.mint
    return parse_address(sanitized)


def _parse_remote_decimals(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def parse_remote_token_entry(value: Any) -> dict[str, Any] | None:
    if not isinstance(value, dict):
        return None
    symbol = value.get("symbol") if isinstance(value.get("symbol"), str) else value.get("ticker")
    mint_raw = value.get("address") if isinstance(value.get("address"), str) else value.get("mint")
    decimals = _parse_remote_decimals(value.get("decimals"))
    if not isinstance(symbol, str) or not isinstance(mint_raw, str) or decimals is None:
        return None
    if decimals < 0 or decimals > 18:
        return None
    mint = parse_address(mint_raw)
    if not mint:
        return None
    chain_id = value.get("chainId")
    priority = 1 if chain_id == MAINNET_CHAIN_ID and not isinstance(chain_id, bool) else 0
    return {"symbol": symbol, "mint": mint, "decimals": decimals, "priority": priority}


def find_token_entries(payload: Any) -> list[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        if isinstance(payload.get("data"), list):
            return payload["data"]
        if isinstance(payload.get("tokens"), list):
            return payload["tokens"]
        return [payload]
    return []


def parse_mint_decimals(account: dict[str, Any]) -> int | None:
    data = account.get("data")
    if not isinstance(data, dict):
        return None
    parsed = data.get("parsed")
    if not isinstance(parsed, dict):
        return None
    info = parsed.get("info")
    if not isinstance(info, dict):
        return None
    decimals = info.get("decimals")
    if isinstance(decimals, bool) or not isinstance(decimals, int) or decimals < 0 or decimals > 18:
        return None
    return decimals


class TokenResolver:
    def __init__(self, cache: TokenCache, rpc: MintAccountReader | None = None, index: TokenIndex | None = None):
        self.cache = cache
        self.rpc = rpc
        self.index = index

    def normalize_mint(self, value: str) -> str | None:
        sanitized = sanitize_token_candidate(value)
        if not sanitized:
            return None
        known = self.cache.alias(sanitized)
        if known:
            return known.mint
        return parse_address(sanitized)

    def resolve_symbol(self, symbol: str) -> str | None:
        upper = symbol.upper()
        cached, mint = self.cache.symbol_lookup(upper)
        if cached:
            return mint
        known = self.cache.alias(upper)
        if known:
            return known.mint
        if self.index is None:
            return None
        for query_key in SYMBOL_QUERY_KEYS:
            try:
                payload = self.index.search(upper, query_key)
            except Exception as exc:
                logger.debug("token index lookup failed symbol=%s key=%s: %s", upper, query_key, exc)
                continue
            best: dict[str, Any] | None = None
            for entry in find_token_entries(payload):
                candidate = parse_remote_token_entry(entry)
                if candidate is None or candidate["symbol"].upper() != upper:
                    continue
                if best is None or candidate["priority"] > best["priority"]:
                    best = candidate
            if best is not None:
                self.cache.register(upper, best["mint"], best["decimals"])
                logger.debug("resolved token symbol %s -> %s", upper, best["mint"])
                return best["mint"]
        self.cache.remember_miss(upper)
        return None

    def ensure_mint(self, value: Any, field: str) -> str:
        raw = ensure_string(value, field)
        normalized = self.normalize_mint(raw)
        if normalized:
            return normalized
        candidate = sanitize_token_candidate(raw)
        if is_token_symbol(candidate):
            resolved = self.resolve_symbol(candidate)
            if resolved:
                return resolved
            raise TokenResolutionError(
                f"{field} is invalid",
                action_hint="Use a token mint address or a symbol listed by the token index.",
                details={"field": field, "token": candidate},
            )
        raise IntentInputError(f"{field} is invalid", details={"field": field, "value": raw})

    def fetch_decimals(self, mint: str) -> int:
        cached = self.cache.decimals(mint)
        if cached is not None:
            return cached
        if self.rpc is None:
            raise TokenResolutionError(
                f"Cannot infer amountRaw: mint decimals unavailable for inputMint={mint}.",
                details={"mint": mint},
            )
        account = self.rpc.get_parsed_account_info(mint)
        if not account:
            raise TokenResolutionError(
                f"Cannot infer amountRaw: mint account not found for inputMint={mint}.", details={"mint": mint}
            )
        data = account.get("data")
        if not isinstance(data, dict) or "parsed" not in data:
            raise TokenResolutionError(
                f"Cannot infer amountRaw: mint account is not parsed for inputMint={mint}.", details={"mint": mint}
            )
        decimals = parse_mint_decimals(account)
        if decimals is None:
            raise TokenResolutionError(
                f"Cannot infer amountRaw: mint decimals unavailable for inputMint={mint}.", details={"mint": mint}
            )
        self.cache.remember_decimals(mint, decimals)
        return decimals

    def resolve_amount_raw(
        self,
        mint: str,
        amount_raw: Any,
        amount_ui: Any,
        amount_sol: Any = None,
        raw_field: str = "amountRaw",
        ui_field: str = "amountUi",
    ) -> str:
        """Resolve an amount in priority order: raw > UI via decimals > SOL via lamports."""
        value = amount_raw
        if not (isinstance(value, str) and value.strip()) and isinstance(amount_ui, str):
            value = decimal_ui_amount_to_raw(amount_ui, self.fetch_decimals(mint), ui_field)
        if not (isinstance(value, str) and value.strip()) and mint == SOL_MINT and amount_sol is not None:
            value = str(to_lamports(amount_sol))
        return str(parse_positive_int(ensure_string(value, raw_field), raw_field))
