"""Read-only intents: balances, portfolios and protocol positions."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Protocol

from . import config
from .amounts import LAMPORTS_PER_SOL, SOL_DECIMALS, format_ui_amount
from .errors import CollaboratorError, IntentInputError
from .intents import (
    BalanceRead,
    DefiPositionsRead,
    Intent,
    LendingMarketsRead,
    LendingPositionsRead,
    MeteoraPositionsRead,
    OrcaPositionsRead,
    PortfolioRead,
    TokenBalanceRead,
)
from .tokens import DEFI_TOKEN_PROFILES, STATIC_BY_MINT, TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID

logger = logging.getLogger(__name__)

STAKE_PROGRAM_ID = "Stake11111111111111111111111111111111111111"
STAKE_STAKER_OFFSET = 12
STAKE_WITHDRAWER_OFFSET = 44
READ_WORKERS = 4


class PositionReader(Protocol):
    """Protocol-specific position lookups (Orca Whirlpools, Meteora DLMM, Kamino)."""

    def orca_positions(self, owner: str) -> list[dict[str, Any]]: ...

    def orca_pool(self, pool: str) -> dict[str, Any]: ...

    def meteora_positions(self, owner: str) -> list[dict[str, Any]]: ...

    def kamino_markets(self, program_id: str | None, limit_markets: int) -> dict[str, Any]: ...

    def kamino_positions(self, owner: str, program_id: str | None, limit_markets: int) -> dict[str, Any]: ...


class AccountReader(Protocol):
    def get_balance(self, address: str, commitment: str | None = None) -> int: ...

    def get_parsed_token_accounts_by_owner(self, owner: str, program_id: str) -> list[dict[str, Any]]: ...

    def get_parsed_program_accounts(self, program_id: str, filters: list[dict[str, Any]]) -> list[dict[str, Any]]: ...


def _record(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def parse_token_account_info(entry: dict[str, Any]) -> dict[str, Any] | None:
    info = _record(_record(_record(_record(entry.get("account")).get("data")).get("parsed")).get("info"))
    mint = info.get("mint")
    amount = _record(info.get("tokenAmount"))
    raw = amount.get("amount")
    decimals = amount.get("decimals")
    if not isinstance(mint, str) or not isinstance(raw, str) or not raw.isdigit():
        return None
    if not isinstance(decimals, int) or isinstance(decimals, bool):
        return None
    return {"mint": mint, "amount": int(raw), "decimals": decimals}


def parse_stake_position(entry: dict[str, Any]) -> dict[str, Any] | None:
    account = _record(entry.get("account"))
    parsed = _record(_record(account.get("data")).get("parsed"))
    info = _record(parsed.get("info"))
    if not parsed or not info:
        return None
    authorized = _record(_record(info.get("meta")).get("authorized"))
    delegation = _record(_record(info.get("stake")).get("delegation"))
    stake = delegation.get("stake")
    delegated = stake if isinstance(stake, str) and stake.isdigit() else None
    lamports = account.get("lamports") if isinstance(account.get("lamports"), int) else 0

    def text(source: dict[str, Any], key: str) -> str | None:
        value = source.get(key)
        return value if isinstance(value, str) else None

    return {
        "stakeAccount": entry.get("pubkey"),
        "state": parsed.get("type") if isinstance(parsed.get("type"), str) else "unknown",
        "lamports": lamports,
        "lamportsUiAmount": format_ui_amount(lamports, SOL_DECIMALS),
        "delegatedLamports": delegated,
        "delegatedUiAmount": None if delegated is None else format_ui_amount(int(delegated), SOL_DECIMALS),
        "voter": text(delegation, "voter"),
        "activationEpoch": text(delegation, "activationEpoch"),
        "deactivationEpoch": text(delegation, "deactivationEpoch"),
        "staker": text(authorized, "staker"),
        "withdrawer": text(authorized, "withdrawer"),
    }


def _token_sort_key(token: dict[str, Any]) -> tuple[int, str]:
    # Known symbols first (alphabetical), then unknown mints.
    if token["symbol"]:
        return (0, token["symbol"])
    return (1, token["mint"])


class ReadService:
    def __init__(self, rpc: AccountReader, positions: PositionReader | None = None):
        self.rpc = rpc
        self.positions = positions

    def execute(self, network: str, intent: Intent) -> dict[str, Any]:
        """Run a read intent and return ``{summary, details}``."""
        handlers: dict[type, Callable[[str, Any], dict[str, Any]]] = {
            BalanceRead: self._balance,
            TokenBalanceRead: self._token_balance,
            PortfolioRead: self._portfolio,
            DefiPositionsRead: self._defi_positions,
            OrcaPositionsRead: self._orca_positions,
            MeteoraPositionsRead: self._meteora_positions,
            LendingMarketsRead: self._lending_markets,
            LendingPositionsRead: self._lending_positions,
        }
        handler = handlers.get(type(intent))
        if handler is None:
            raise IntentInputError(f"Not a read intent: {intent.type}")
        logger.debug("read %s network=%s", intent.type, network)
        return handler(network, intent)

    def _gather(self, *calls: Callable[[], Any]) -> list[Any]:
        with ThreadPoolExecutor(max_workers=READ_WORKERS) as pool:
            futures = [pool.submit(call) for call in calls]
            return [future.result() for future in futures]

    def _position_reader(self) -> PositionReader:
        if self.positions is None:
            raise CollaboratorError(
                "No position reader configured for protocol reads.",
                action_hint="Set SOLFLOW_BUILDERS=module:factory to provide a position reader.",
            )
        return self.positions

    def _token_scans(self, owner: str, include_token2022: bool) -> tuple[list[Any], list[Any]]:
        calls: list[Callable[[], Any]] = [lambda: self.rpc.get_parsed_token_accounts_by_owner(owner, TOKEN_PROGRAM_ID)]
        if include_token2022:
            calls.append(lambda: self.rpc.get_parsed_token_accounts_by_owner(owner, TOKEN_2022_PROGRAM_ID))
        results = self._gather(*calls)
        return results[0], results[1] if include_token2022 else []

    def _balance(self, network: str, intent: BalanceRead) -> dict[str, Any]:
        lamports = self.rpc.get_balance(intent.address)
        sol = lamports / LAMPORTS_PER_SOL
        return {
            "summary": f"Balance: {sol} SOL ({lamports} lamports)",
            "details": {
                "intentType": intent.type,
                "address": intent.address,
                "lamports": lamports,
                "sol": sol,
                "network": network,
                "addressExplorer": config.explorer_address_url(intent.address, network),
            },
        }

    def _token_balance(self, network: str, intent: TokenBalanceRead) -> dict[str, Any]:
        legacy, token2022 = self._token_scans(intent.address, intent.include_token2022)
        total = 0
        decimals = 0
        count = 0
        for entry in [*legacy, *token2022]:
            info = parse_token_account_info(entry)
            if info is None or info["mint"] != intent.token_mint:
                continue
            total += info["amount"]
            decimals = info["decimals"]
            count += 1
        ui_amount = format_ui_amount(total, decimals)
        return {
            "summary": f"Token balance: {ui_amount} (raw {total})",
            "details": {
                "intentType": intent.type,
                "address": intent.address,
                "tokenMint": intent.token_mint,
                "amount": str(total),
                "uiAmount": ui_amount,
                "decimals": decimals,
                "tokenAccountCount": count,
                "tokenProgramAccountCount": len(legacy),
                "token2022AccountCount": len(token2022),
                "network": network,
                "addressExplorer": config.explorer_address_url(intent.address, network),
                "tokenMintExplorer": config.explorer_address_url(intent.token_mint, network),
            },
        }

    def _holdings(self, network: str, address: str, include_zero: bool, include_token2022: bool) -> dict[str, Any]:
        calls: list[Callable[[], Any]] = [
            lambda: self.rpc.get_balance(address),
            lambda: self.rpc.get_parsed_token_accounts_by_owner(address, TOKEN_PROGRAM_ID),
        ]
        if include_token2022:
            calls.append(lambda: self.rpc.get_parsed_token_accounts_by_owner(address, TOKEN_2022_PROGRAM_ID))
        results = self._gather(*calls)
        lamports, legacy = results[0], results[1]
        token2022 = results[2] if include_token2022 else []

        totals: dict[str, dict[str, int]] = {}
        for entry in [*legacy, *token2022]:
            info = parse_token_account_info(entry)
            if info is None:
                continue
            bucket = totals.setdefault(info["mint"], {"amount": 0, "decimals": info["decimals"], "count": 0})
            bucket["amount"] += info["amount"]
            bucket["count"] += 1
        tokens = []
        for mint, bucket in totals.items():
            if not include_zero and bucket["amount"] <= 0:
                continue
            known = STATIC_BY_MINT.get(mint)
            tokens.append(
                {
                    "mint": mint,
                    "symbol": known.symbol if known else None,
                    "amount": str(bucket["amount"]),
                    "uiAmount": format_ui_amount(bucket["amount"], bucket["decimals"]),
                    "decimals": bucket["decimals"],
                    "tokenAccountCount": bucket["count"],
                    "explorer": config.explorer_address_url(mint, network),
                }
            )
        tokens.sort(key=_token_sort_key)
        return {
            "address": address,
            "network": network,
            "addressExplorer": config.explorer_address_url(address, network),
            "sol": {"lamports": lamports, "uiAmount": lamports / LAMPORTS_PER_SOL},
            "tokenCount": len(tokens),
            "tokenAccountCount": len(legacy) + len(token2022),
            "tokenProgramAccountCount": len(legacy),
            "token2022AccountCount": len(token2022),
            "tokens": tokens,
        }

    def _portfolio(self, network: str, intent: PortfolioRead) -> dict[str, Any]:
        holdings = self._holdings(network, intent.address, intent.include_zero, intent.include_token2022)
        return {
            "summary": f"Portfolio: {holdings['sol']['uiAmount']} SOL + {holdings['tokenCount']} token position(s)",
            "details": {"intentType": intent.type, **holdings},
        }

    def _stake_accounts(self, owner: str) -> tuple[list[dict[str, Any]], list[str]]:
        errors: list[str] = []

        def scan(offset: int) -> list[dict[str, Any]]:
            try:
                return self.rpc.get_parsed_program_accounts(
                    STAKE_PROGRAM_ID, [{"memcmp": {"offset": offset, "bytes": owner}}]
                )
            except CollaboratorError as exc:
                errors.append(str(exc))
                return []

        deduped: dict[str, dict[str, Any]] = {}
        for accounts in self._gather(lambda: scan(STAKE_STAKER_OFFSET), lambda: scan(STAKE_WITHDRAWER_OFFSET)):
            for account in accounts:
                deduped[str(account.get("pubkey"))] = account
        stakes = [stake for stake in map(parse_stake_position, deduped.values()) if stake is not None]
        stakes.sort(key=lambda stake: str(stake["stakeAccount"]))
        return stakes, errors

    def _defi_positions(self, network: str, intent: DefiPositionsRead) -> dict[str, Any]:
        holdings = self._holdings(network, intent.address, intent.include_zero, intent.include_token2022)
        exposures = []
        categories: dict[str, int] = {}
        protocols: dict[str, int] = {}
        for token in holdings["tokens"]:
            profile = DEFI_TOKEN_PROFILES.get(token["mint"])
            if profile is None:
                continue
            exposures.append({**token, **profile})
            categories[profile["category"]] = categories.get(profile["category"], 0) + 1
            protocols[profile["protocol"]] = protocols.get(profile["protocol"], 0) + 1

        stakes: list[dict[str, Any]] = []
        stake_errors: list[str] = []
        if intent.include_stake_accounts:
            stakes, stake_errors = self._stake_accounts(intent.address)
        delegated = sum(int(stake["delegatedLamports"] or "0") for stake in stakes)
        return {
            "summary": f"DeFi positions: {len(exposures)} token exposure(s), {len(stakes)} stake account(s)",
            "details": {
                "intentType": intent.type,
                **holdings,
                "defiTokenPositionCount": len(exposures),
                "defiTokenPositions": exposures,
                "categoryExposureCounts": categories,
                "protocolExposureCounts": protocols,
                "stakeAccountCount": len(stakes),
                "stakeAccounts": stakes,
                "stakeQueryErrors": stake_errors,
                "totalDelegatedStakeLamports": str(delegated),
                "totalDelegatedStakeUiAmount": format_ui_amount(delegated, SOL_DECIMALS),
            },
        }

    def _orca_positions(self, network: str, intent: OrcaPositionsRead) -> dict[str, Any]:
        positions = self._position_reader().orca_positions(intent.address)
        pools = {position.get("whirlpool") or position.get("poolAddress") for position in positions}
        return {
            "summary": f"Orca Whirlpool positions: {len(positions)} position(s) across {len(pools)} pool(s)",
            "details": {
                "intentType": intent.type,
                "address": intent.address,
                "network": network,
                "positionCount": len(positions),
                "poolCount": len(pools),
                "positions": positions,
                "addressExplorer": config.explorer_address_url(intent.address, network),
            },
        }

    def _meteora_positions(self, network: str, intent: MeteoraPositionsRead) -> dict[str, Any]:
        positions = self._position_reader().meteora_positions(intent.address)
        pools = {position.get("poolAddress") for position in positions}
        return {
            "summary": f"Meteora DLMM positions: {len(positions)} position(s) across {len(pools)} pool(s)",
            "details": {
                "intentType": intent.type,
                "address": intent.address,
                "network": network,
                "positionCount": len(positions),
                "poolCount": len(pools),
                "positions": positions,
                "addressExplorer": config.explorer_address_url(intent.address, network),
            },
        }

    def _lending_markets(self, network: str, intent: LendingMarketsRead) -> dict[str, Any]:
        markets = self._position_reader().kamino_markets(intent.program_id, intent.limit_markets)
        return {
            "summary": (
                f"Lending markets ({intent.protocol}): "
                f"{markets.get('marketCountQueried', 0)}/{markets.get('marketCount', 0)}"
            ),
            "details": {"intentType": intent.type, **markets, "network": network},
        }

    def _lending_positions(self, network: str, intent: LendingPositionsRead) -> dict[str, Any]:
        lending = self._position_reader().kamino_positions(intent.address, intent.program_id, intent.limit_markets)
        return {
            "summary": (
                f"Lending positions ({intent.protocol}): {lending.get('obligationCount', 0)} obligation(s), "
                f"{lending.get('depositPositionCount', 0)} deposit(s), {lending.get('borrowPositionCount', 0)} borrow(s)"
            ),
            "details": {
                "intentType": intent.type,
                **lending,
                "addressExplorer": config.explorer_address_url(intent.address, network),
            },
        }
