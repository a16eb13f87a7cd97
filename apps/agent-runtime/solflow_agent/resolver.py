"""Turn merged caller parameters into one canonical ``Intent``.

Type inference follows a fixed order of shape rules (liquidity, address-only
reads, transfers, lending, staking, swaps, read fallbacks, native transfer).
Per-variant builders then validate and resolve every field. Owner and
authority fields are bound to the active signer; a mismatch is an error.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Callable

from . import intents
from .amounts import (
    decimal_ui_amount_to_raw,
    ensure_number,
    ensure_string,
    parse_non_negative_int,
    parse_positive_int,
    to_lamports,
)
from .base58 import create_with_seed, parse_address
from .config import PRIMARY_NETWORK
from .errors import IntentInputError
from .reads import STAKE_PROGRAM_ID, PositionReader
from .text_parser import (
    KAMINO_KEYWORD_RULES,
    LENDING_MARKETS_KEYWORDS,
    LENDING_POSITIONS_KEYWORDS,
    METEORA_POSITIONS_KEYWORDS,
    ORCA_DECREASE_KEYWORDS,
    ORCA_POSITIONS_KEYWORDS,
    default_dexes_for_type,
    detect_meteora_lp_type,
    detect_orca_lp_type,
    detect_stake_type,
    merge_intent_params,
)
from .tokens import SOL_MINT, TokenResolver

logger = logging.getLogger(__name__)

KAMINO_MAINNET_MARKET_ADDRESS = "7u3HeHxYDLhnCoErrtycNokbQYbWGzLs6JSDqGAv5PfF"
MAX_EXTRA_COMPUTE_UNITS = 2_000_000
MAX_BPS = 10_000

ORCA_AMOUNT_FIELDS = ("liquidityAmountRaw", "tokenAAmountRaw", "tokenBAmountRaw", "tokenAAmountUi", "tokenBAmountUi")
METEORA_ADD_FIELDS = ("totalXAmountRaw", "totalYAmountRaw", "totalXAmountUi", "totalYAmountUi", "strategyType")
METEORA_REMOVE_FIELDS = ("bps", "shouldClaimAndClose", "skipUnwrapSol", "fromBinId", "toBinId")


def _is_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _is_num(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _lower(value: Any) -> str | None:
    return value.strip().lower() if isinstance(value, str) else None


def resolve_intent_type(params: dict[str, Any]) -> str:
    explicit = params.get("intentType")
    if explicit in intents.INTENT_CLASSES:
        return explicit
    if explicit is not None:
        logger.debug("ignoring unknown intentType=%r, inferring from fields", explicit)
    text = params.get("intentText") if isinstance(params.get("intentText"), str) else ""
    protocol = _lower(params.get("protocol"))

    def has(*keys: str) -> bool:
        return any(_is_str(params.get(k)) for k in keys)

    def num(*keys: str) -> bool:
        return any(_is_num(params.get(k)) for k in keys)

    if has("positionMint") and has(*ORCA_AMOUNT_FIELDS):
        return "solana.lp.orca.decrease" if ORCA_DECREASE_KEYWORDS.search(text) else "solana.lp.orca.increase"
    if has("positionMint") and num("liquidityBps"):
        return "solana.lp.orca.decrease"
    orca_from_text = detect_orca_lp_type(text)
    if orca_from_text:
        return orca_from_text
    meteora_from_text = detect_meteora_lp_type(text)
    if meteora_from_text:
        return meteora_from_text
    if any(params.get(k) is not None for k in METEORA_REMOVE_FIELDS):
        return "solana.lp.meteora.remove"
    if has("positionAddress") or has(*METEORA_ADD_FIELDS):
        return "solana.lp.meteora.add"
    if has("poolAddress") and (
        has("tokenAAmountRaw", "tokenBAmountRaw", "tokenAAmountUi", "tokenBAmountUi", "liquidityAmountRaw")
        or isinstance(params.get("fullRange"), bool)
        or num("lowerPrice", "upperPrice")
    ):
        return "solana.lp.orca.open"

    if (
        has("address")
        and not has("toAddress", "inputMint", "outputMint", "amountRaw")
        and not num("amountSol")
    ):
        if protocol == "orca":
            return "solana.read.orcaPositions"
        if protocol in ("meteora", "dlmm"):
            return "solana.read.meteoraPositions"
        if has("tokenMint"):
            return "solana.read.tokenBalance"
        if isinstance(params.get("includeStakeAccounts"), bool):
            return "solana.read.defiPositions"
        if isinstance(params.get("includeZero"), bool) or isinstance(params.get("includeToken2022"), bool):
            return "solana.read.portfolio"
        return "solana.read.balance"
    if has("tokenMint") and has("toAddress", "sourceTokenAccount", "destinationTokenAccount"):
        return "solana.transfer.spl"

    def leg(prefix: str) -> bool:
        return has(f"{prefix}ReserveMint", f"{prefix}Mint") and (
            has(f"{prefix}AmountRaw", f"{prefix}AmountUi") or num(f"{prefix}AmountSol")
        )

    if leg("repay") and leg("withdraw"):
        return "solana.lend.kamino.repayAndWithdraw"
    if leg("deposit") and leg("borrow"):
        return "solana.lend.kamino.depositAndBorrow"
    for pattern, intent_type in KAMINO_KEYWORD_RULES:
        if pattern.search(text):
            return intent_type
    if protocol == "kamino" and has("reserveMint", "tokenMint") and (has("amountRaw", "amountUi") or num("amountSol")):
        return "solana.lend.kamino.deposit"

    stake_from_text = detect_stake_type(text) if text else None
    if (
        has("voteAccountAddress", "stakeSeed") and num("amountSol") and not has("stakeAccountAddress")
    ) or stake_from_text == "solana.stake.createAndDelegate":
        return "solana.stake.createAndDelegate"
    if has("voteAccountAddress") and has("stakeAccountAddress") or stake_from_text == "solana.stake.delegate":
        return "solana.stake.delegate"
    if (has("newAuthorityAddress") and has("stakeAccountAddress")) or stake_from_text in (
        "solana.stake.authorizeStaker",
        "solana.stake.authorizeWithdrawer",
    ):
        if params.get("authorizationType") == "withdrawer" or stake_from_text == "solana.stake.authorizeWithdrawer":
            return "solana.stake.authorizeWithdrawer"
        return "solana.stake.authorizeStaker"
    if (
        (has("stakeAccountAddress") and has("toAddress") and num("amountSol"))
        or has("withdrawAuthorityAddress")
        or stake_from_text == "solana.stake.withdraw"
    ):
        return "solana.stake.withdraw"
    if has("stakeAccountAddress", "stakeAuthorityAddress") or stake_from_text == "solana.stake.deactivate":
        return "solana.stake.deactivate"

    if has("txVersion", "swapType", "computeUnitPriceMicroLamports") or "raydium" in text.lower():
        return "solana.swap.raydium"
    dexes = params.get("dexes")
    if isinstance(dexes, (list, tuple)):
        joined = " ".join(d for d in dexes if isinstance(d, str)).lower()
        if "meteora" in joined or "dlmm" in joined:
            return "solana.swap.meteora"
        if "orca" in joined:
            return "solana.swap.orca"
    if has("inputMint", "outputMint", "amountRaw", "amountUi") or num("slippageBps"):
        return "solana.swap.jupiter"

    if has("tokenMint") and not has("toAddress", "amountRaw", "amountUi"):
        return "solana.read.tokenBalance"
    if isinstance(params.get("includeZero"), bool):
        return "solana.read.portfolio"
    if isinstance(params.get("includeStakeAccounts"), bool):
        return "solana.read.defiPositions"
    if METEORA_POSITIONS_KEYWORDS.search(text):
        return "solana.read.meteoraPositions"
    if ORCA_POSITIONS_KEYWORDS.search(text) or (protocol == "orca" and has("address")):
        return "solana.read.orcaPositions"
    if LENDING_MARKETS_KEYWORDS.search(text):
        return "solana.read.lendingMarkets"
    if has("programId") or num("limitMarkets") or protocol == "kamino":
        if LENDING_POSITIONS_KEYWORDS.search(text) or has("address"):
            return "solana.read.lendingPositions"
        return "solana.read.lendingMarkets"
    if LENDING_POSITIONS_KEYWORDS.search(text):
        return "solana.read.lendingPositions"
    if has("address"):
        return "solana.read.balance"
    if has("toAddress") or num("amountSol"):
        return "solana.transfer.sol"
    raise IntentInputError(
        "intentType is required. Provide intentType or parsable intentText.",
        action_hint="Pass intentType explicitly, or rephrase intentText with an action keyword.",
    )


def parse_address_field(value: Any, field: str) -> str:
    raw = ensure_string(value, field)
    address = parse_address(raw)
    if not address:
        raise IntentInputError(f"{field} is invalid", details={"field": field, "value": raw})
    return address


def parse_optional_address(value: Any, field: str) -> str | None:
    if not _is_str(value):
        return None
    return parse_address_field(value, field)


def signer_bound_address(params: dict[str, Any], field: str, signer: str) -> str:
    value = params.get(field)
    address = parse_address_field(value if isinstance(value, str) else signer, field)
    if address != signer:
        raise IntentInputError(
            f"{field} mismatch: expected {signer}, got {address}",
            action_hint="Omit the field or set it to the active signer address.",
        )
    return address


def parse_optional_current_slot(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        slot = value.strip()
        if not re.fullmatch(r"[0-9]+", slot):
            raise IntentInputError("currentSlot must be a non-negative integer")
        return slot
    if _is_num(value) and math.isfinite(value) and value == int(value) and value >= 0:
        return str(int(value))
    raise IntentInputError("currentSlot must be a non-negative integer")


def parse_optional_bps(value: Any, field: str = "slippageBps", minimum: int = 0) -> int | None:
    if value is None:
        return None
    message = f"{field} must be an integer between {minimum} and {MAX_BPS}"
    if not _is_num(value) or not math.isfinite(value):
        raise IntentInputError(message)
    normalized = math.floor(value)
    if normalized < minimum or normalized > MAX_BPS:
        raise IntentInputError(message)
    return normalized


def parse_optional_int(value: Any, field: str) -> int | None:
    if value is None:
        return None
    if not _is_num(value) or not math.isfinite(value) or value != int(value):
        raise IntentInputError(f"{field} must be an integer")
    return int(value)


def parse_limit_markets(value: Any) -> int:
    if value is None:
        return 20
    if not _is_num(value) or not math.isfinite(value):
        raise IntentInputError("limitMarkets must be a positive integer")
    limit = math.floor(value)
    if limit < 1 or limit > 200:
        raise IntentInputError("limitMarkets must be between 1 and 200")
    return limit


def parse_lending_protocol(value: Any) -> str:
    protocol = _lower(value) or "kamino"
    if protocol != "kamino":
        raise IntentInputError(f"Unsupported lending protocol: {protocol}. Supported values: kamino")
    return protocol


def normalize_stake_seed(value: Any, run_id: str) -> str:
    raw = value.strip() if _is_str(value) else f"w3rt-{run_id}"
    sanitized = re.sub(r"[^A-Za-z0-9_-]", "-", raw)[:32]
    if not sanitized:
        raise IntentInputError("stakeSeed is invalid. Provide 1-32 chars using letters, numbers, _ or -.")
    return sanitized


def parse_strategy_type(value: Any) -> str:
    if value is None:
        return "Spot"
    lookup = {"spot": "Spot", "curve": "Curve", "bidask": "BidAsk"}
    key = re.sub(r"[\s_-]", "", value.lower()) if isinstance(value, str) else ""
    if key not in lookup:
        raise IntentInputError("strategyType must be one of Spot, Curve, BidAsk")
    return lookup[key]


def _string_list(value: Any) -> tuple[str, ...] | None:
    if not isinstance(value, (list, tuple)):
        return None
    return tuple(entry for entry in value if isinstance(entry, str))


def _optional_bool(value: Any) -> bool | None:
    return value if isinstance(value, bool) else None


class IntentResolver:
    """Resolves caller parameters for one signer into a canonical intent.

    ``positions`` is only consulted for liquidity intents that omit a
    position or pool, or that give a generic amount whose side must be
    matched against the pool mints.
    """

    def __init__(self, tokens: TokenResolver, positions: PositionReader | None = None):
        self.tokens = tokens
        self.positions = positions

    def resolve(self, params: dict[str, Any], signer: str, network: str, run_id: str) -> intents.Intent:
        merged = merge_intent_params(params)
        intent_type = resolve_intent_type(merged)
        family = intents.INTENT_CLASSES[intent_type].family
        builder: Callable[..., intents.Intent] = getattr(self, f"_build_{family}")
        intent = builder(intent_type, merged, signer, network, run_id)
        logger.debug("resolved intent type=%s runId=%s", intent_type, run_id)
        return intent

    # reads

    def _build_read(self, intent_type: str, p: dict[str, Any], signer: str, network: str, run_id: str) -> intents.Intent:
        address = parse_address_field(p["address"] if isinstance(p.get("address"), str) else signer, "address")
        include_token2022 = p.get("includeToken2022") is not False
        include_zero = p.get("includeZero") is True
        if intent_type == "solana.read.balance":
            return intents.BalanceRead(address=address)
        if intent_type == "solana.read.orcaPositions":
            return intents.OrcaPositionsRead(address=address)
        if intent_type == "solana.read.meteoraPositions":
            return intents.MeteoraPositionsRead(address=address)
        if intent_type == "solana.read.tokenBalance":
            token_mint = self.tokens.ensure_mint(p.get("tokenMint"), "tokenMint")
            return intents.TokenBalanceRead(address=address, token_mint=token_mint, include_token2022=include_token2022)
        if intent_type == "solana.read.portfolio":
            return intents.PortfolioRead(address=address, include_zero=include_zero, include_token2022=include_token2022)
        if intent_type == "solana.read.defiPositions":
            return intents.DefiPositionsRead(
                address=address,
                include_zero=include_zero,
                include_token2022=include_token2022,
                include_stake_accounts=p.get("includeStakeAccounts") is not False,
            )
        protocol = parse_lending_protocol(p.get("protocol"))
        program_id = parse_optional_address(p.get("programId"), "programId")
        limit_markets = parse_limit_markets(p.get("limitMarkets"))
        if intent_type == "solana.read.lendingMarkets":
            return intents.LendingMarketsRead(protocol=protocol, program_id=program_id, limit_markets=limit_markets)
        return intents.LendingPositionsRead(
            address=address, protocol=protocol, program_id=program_id, limit_markets=limit_markets
        )

    # transfers

    def _build_transfer(self, intent_type: str, p: dict[str, Any], signer: str, network: str, run_id: str) -> intents.Intent:
        to_address = parse_address_field(p.get("toAddress"), "toAddress")
        if intent_type == "solana.transfer.sol":
            amount_sol = ensure_number(p.get("amountSol"), "amountSol")
            return intents.SolTransfer(
                from_address=signer, to_address=to_address, amount_sol=amount_sol, lamports=to_lamports(amount_sol)
            )
        token_mint = self.tokens.ensure_mint(p.get("tokenMint"), "tokenMint")
        amount_raw = self.tokens.resolve_amount_raw(token_mint, p.get("amountRaw"), p.get("amountUi"))
        return intents.SplTransfer(
            from_address=signer,
            to_address=to_address,
            token_mint=token_mint,
            amount_raw=amount_raw,
            token_program="token2022" if p.get("tokenProgram") == "token2022" else "token",
            source_token_account=parse_optional_address(p.get("sourceTokenAccount"), "sourceTokenAccount"),
            destination_token_account=parse_optional_address(
                p.get("destinationTokenAccount"), "destinationTokenAccount"
            ),
            create_destination_ata_if_missing=p.get("createDestinationAtaIfMissing") is not False,
        )

    # lending

    def _kamino_common(self, intent_type: str, p: dict[str, Any], signer: str, network: str) -> dict[str, Any]:
        owner = signer_bound_address(p, "ownerAddress", signer)
        market_input = p.get("marketAddress") if _is_str(p.get("marketAddress")) else None
        if market_input is None and network == PRIMARY_NETWORK:
            market_input = KAMINO_MAINNET_MARKET_ADDRESS
        if market_input is None:
            raise IntentInputError(f"marketAddress is required for {intent_type} when network is not mainnet-beta")
        extra = p.get("extraComputeUnits")
        extra_compute_units = math.floor(extra) if _is_num(extra) else None
        if extra_compute_units is not None and not 0 <= extra_compute_units <= MAX_EXTRA_COMPUTE_UNITS:
            raise IntentInputError("extraComputeUnits must be an integer between 0 and 2000000")
        return {
            "owner_address": owner,
            "market_address": parse_address_field(market_input, "marketAddress"),
            "program_id": parse_optional_address(p.get("programId"), "programId"),
            "use_v2_ixs": p.get("useV2Ixs") is not False,
            "include_ata_ixs": p.get("includeAtaIxs") is not False,
            "extra_compute_units": extra_compute_units,
            "request_elevation_group": p.get("requestElevationGroup") is True,
        }

    def _kamino_leg(self, p: dict[str, Any], prefix: str) -> tuple[str, str]:
        mint = self.tokens.ensure_mint(
            p.get(f"{prefix}ReserveMint") or p.get(f"{prefix}Mint"), f"{prefix}ReserveMint"
        )
        amount_raw = self.tokens.resolve_amount_raw(
            mint,
            p.get(f"{prefix}AmountRaw"),
            p.get(f"{prefix}AmountUi"),
            p.get(f"{prefix}AmountSol"),
            raw_field=f"{prefix}AmountRaw",
            ui_field=f"{prefix}AmountUi",
        )
        return mint, amount_raw

    def _build_lending(self, intent_type: str, p: dict[str, Any], signer: str, network: str, run_id: str) -> intents.Intent:
        common = self._kamino_common(intent_type, p, signer, network)
        if intent_type == "solana.lend.kamino.depositAndBorrow":
            deposit_mint, deposit_raw = self._kamino_leg(p, "deposit")
            borrow_mint, borrow_raw = self._kamino_leg(p, "borrow")
            return intents.KaminoDepositAndBorrow(
                **common,
                deposit_reserve_mint=deposit_mint,
                deposit_amount_raw=deposit_raw,
                borrow_reserve_mint=borrow_mint,
                borrow_amount_raw=borrow_raw,
            )
        if intent_type == "solana.lend.kamino.repayAndWithdraw":
            repay_mint, repay_raw = self._kamino_leg(p, "repay")
            withdraw_mint, withdraw_raw = self._kamino_leg(p, "withdraw")
            return intents.KaminoRepayAndWithdraw(
                **common,
                repay_reserve_mint=repay_mint,
                repay_amount_raw=repay_raw,
                withdraw_reserve_mint=withdraw_mint,
                withdraw_amount_raw=withdraw_raw,
                current_slot=parse_optional_current_slot(p.get("currentSlot")),
            )
        reserve_mint = self.tokens.ensure_mint(p.get("reserveMint") or p.get("tokenMint"), "reserveMint")
        amount_raw = self.tokens.resolve_amount_raw(reserve_mint, p.get("amountRaw"), p.get("amountUi"), p.get("amountSol"))
        cls = intents.INTENT_CLASSES[intent_type]
        if cls is intents.KaminoRepay:
            return intents.KaminoRepay(
                **common,
                reserve_mint=reserve_mint,
                amount_raw=amount_raw,
                current_slot=parse_optional_current_slot(p.get("currentSlot")),
            )
        return cls(**common, reserve_mint=reserve_mint, amount_raw=amount_raw)

    # staking

    def _build_staking(self, intent_type: str, p: dict[str, Any], signer: str, network: str, run_id: str) -> intents.Intent:
        if intent_type == "solana.stake.createAndDelegate":
            vote_account = parse_address_field(p.get("voteAccountAddress"), "voteAccountAddress")
            amount_sol = ensure_number(p.get("amountSol"), "amountSol")
            lamports = to_lamports(amount_sol)
            stake_authority = signer_bound_address(p, "stakeAuthorityAddress", signer)
            withdraw_authority = signer_bound_address(p, "withdrawAuthorityAddress", signer)
            stake_seed = normalize_stake_seed(p.get("stakeSeed"), run_id)
            return intents.StakeCreateAndDelegate(
                stake_authority_address=stake_authority,
                withdraw_authority_address=withdraw_authority,
                stake_account_address=create_with_seed(stake_authority, stake_seed, STAKE_PROGRAM_ID),
                stake_seed=stake_seed,
                vote_account_address=vote_account,
                amount_sol=amount_sol,
                lamports=lamports,
            )
        stake_account = parse_address_field(p.get("stakeAccountAddress"), "stakeAccountAddress")
        if intent_type == "solana.stake.withdraw":
            to_address = parse_address_field(p.get("toAddress"), "toAddress")
            amount_sol = ensure_number(p.get("amountSol"), "amountSol")
            lamports = to_lamports(amount_sol)
            return intents.StakeWithdraw(
                withdraw_authority_address=signer_bound_address(p, "withdrawAuthorityAddress", signer),
                stake_account_address=stake_account,
                to_address=to_address,
                amount_sol=amount_sol,
                lamports=lamports,
            )
        if intent_type == "solana.stake.delegate":
            vote_account = parse_address_field(p.get("voteAccountAddress"), "voteAccountAddress")
            return intents.StakeDelegate(
                stake_authority_address=signer_bound_address(p, "stakeAuthorityAddress", signer),
                stake_account_address=stake_account,
                vote_account_address=vote_account,
            )
        if intent_type in ("solana.stake.authorizeStaker", "solana.stake.authorizeWithdrawer"):
            new_authority = parse_address_field(p.get("newAuthorityAddress"), "newAuthorityAddress")
            return intents.INTENT_CLASSES[intent_type](
                stake_authority_address=signer_bound_address(p, "stakeAuthorityAddress", signer),
                stake_account_address=stake_account,
                new_authority_address=new_authority,
            )
        return intents.StakeDeactivate(
            stake_authority_address=signer_bound_address(p, "stakeAuthorityAddress", signer),
            stake_account_address=stake_account,
        )

    # liquidity

    def _single_orca_position(self, owner: str) -> dict[str, Any]:
        if self.positions is None:
            raise IntentInputError("positionMint is required")
        positions = self.positions.orca_positions(owner)
        if len(positions) != 1:
            raise IntentInputError(
                f"positionMint is required (owner has {len(positions)} Orca positions)",
                details={"positionMints": [pos.get("positionMint") for pos in positions]},
            )
        return positions[0]

    def _orca_position(self, owner: str, position_mint: str) -> dict[str, Any]:
        if self.positions is None:
            raise IntentInputError("Cannot infer LP side: position lookup is unavailable")
        for position in self.positions.orca_positions(owner):
            if position.get("positionMint") == position_mint:
                return position
        raise IntentInputError(f"Orca position not found for owner: positionMint={position_mint}")

    def _side_from_mint(self, token_mint: str, mint_a: str, mint_b: str, labels: tuple[str, str], intent_type: str) -> int:
        if token_mint == mint_a and token_mint == mint_b:
            raise IntentInputError(f"tokenMint matches both pool mints for intentType={intent_type}; use side-specific fields")
        if token_mint == mint_a:
            return 0
        if token_mint == mint_b:
            return 1
        raise IntentInputError(
            f"tokenMint {token_mint} does not match pool mints for intentType={intent_type}",
            details={labels[0]: mint_a, labels[1]: mint_b},
        )

    def _lp_sides(
        self,
        p: dict[str, Any],
        intent_type: str,
        sides: tuple[str, str],
        side_mint_fields: tuple[str, str],
        pool_mints: Callable[[], tuple[str, str]],
        side_label: str,
        both_message: Callable[[str], str],
    ) -> list[tuple[str | None, str | None]]:
        """Resolve both sides to ``(amount_raw, mint)`` pairs; an unset side is ``(None, None)``."""
        has_generic = _is_str(p.get("amountUi")) or _is_str(p.get("amountRaw"))
        side_fields = [f"{side}AmountRaw" for side in sides] + [f"{side}AmountUi" for side in sides]
        if has_generic and any(_is_str(p.get(field)) for field in side_fields):
            raise IntentInputError(
                f"Provide either amountUi/tokenMint (or amountRaw/tokenMint) or side-specific {side_label} amount fields, not both"
            )
        out: list[tuple[str | None, str | None]] = [(None, None), (None, None)]
        mints_cache: list[tuple[str, str]] = []

        def mints() -> tuple[str, str]:
            if not mints_cache:
                mints_cache.append(pool_mints())
            return mints_cache[0]

        if has_generic:
            if not _is_str(p.get("tokenMint")):
                raise IntentInputError(
                    f"tokenMint is required when amountUi or amountRaw is provided for intentType={intent_type}"
                )
            token_mint = self.tokens.ensure_mint(p.get("tokenMint"), "tokenMint")
            index = self._side_from_mint(token_mint, *mints(), labels=side_mint_fields, intent_type=intent_type)
            amount_raw = self.tokens.resolve_amount_raw(token_mint, p.get("amountRaw"), p.get("amountUi"))
            out[index] = (amount_raw, token_mint)
            return out
        for index, side in enumerate(sides):
            raw, ui = p.get(f"{side}AmountRaw"), p.get(f"{side}AmountUi")
            if _is_str(raw) and _is_str(ui):
                raise IntentInputError(both_message(side))
            if _is_str(raw):
                out[index] = (raw.strip(), None)
            elif _is_str(ui):
                mint_field = side_mint_fields[index]
                mint = (
                    self.tokens.ensure_mint(p.get(mint_field), mint_field)
                    if _is_str(p.get(mint_field))
                    else mints()[index]
                )
                decimals = self.tokens.fetch_decimals(mint)
                out[index] = (decimal_ui_amount_to_raw(ui, decimals, f"{side}AmountUi", allow_zero=True), mint)
        return out

    def _orca_amounts(
        self, p: dict[str, Any], intent_type: str, pool_mints: Callable[[], tuple[str, str]], allow_none: bool = False
    ) -> dict[str, str | None]:
        sides = self._lp_sides(
            p,
            intent_type,
            ("tokenA", "tokenB"),
            ("tokenAMint", "tokenBMint"),
            pool_mints,
            "Orca",
            lambda side: f"Provide either {side}AmountRaw or {side}AmountUi for Orca LP intents, not both",
        )
        liquidity = p.get("liquidityAmountRaw")
        values = {
            "liquidity_amount_raw": liquidity.strip() if _is_str(liquidity) else None,
            "token_a_amount_raw": sides[0][0],
            "token_b_amount_raw": sides[1][0],
        }
        provided = {k: v for k, v in values.items() if v is not None}
        if allow_none and not provided:
            return values
        if len(provided) != 1:
            raise IntentInputError("Provide exactly one of liquidityAmountRaw, tokenAAmountRaw, tokenBAmountRaw")
        field = {"liquidity_amount_raw": "liquidityAmountRaw", "token_a_amount_raw": "tokenAAmountRaw"}.get(
            next(iter(provided)), "tokenBAmountRaw"
        )
        for key, value in provided.items():
            values[key] = str(parse_positive_int(value, field))
        return values

    def _build_orca(self, intent_type: str, p: dict[str, Any], signer: str, network: str, run_id: str) -> intents.Intent:
        owner = signer_bound_address(p, "ownerAddress", signer)
        slippage = parse_optional_bps(p.get("slippageBps"))
        if intent_type == "solana.lp.orca.open":
            pool = parse_address_field(p.get("poolAddress"), "poolAddress")

            def pool_mints() -> tuple[str, str]:
                if self.positions is None:
                    raise IntentInputError("Cannot infer LP side: pool lookup is unavailable")
                info = self.positions.orca_pool(pool)
                return info["tokenMintA"], info["tokenMintB"]

            amounts = self._orca_amounts(p, intent_type, pool_mints)
            lower, upper = p.get("lowerPrice"), p.get("upperPrice")
            has_range = lower is not None or upper is not None
            full_range = p["fullRange"] if isinstance(p.get("fullRange"), bool) else not has_range
            if not full_range:
                if not _is_num(lower) or lower <= 0:
                    raise IntentInputError("lowerPrice must be a positive number when fullRange=false")
                if not _is_num(upper) or upper <= 0:
                    raise IntentInputError("upperPrice must be a positive number when fullRange=false")
                if lower >= upper:
                    raise IntentInputError("lowerPrice must be less than upperPrice")
            return intents.OrcaOpenPosition(
                owner_address=owner,
                pool_address=pool,
                full_range=full_range,
                lower_price=None if full_range else float(lower),
                upper_price=None if full_range else float(upper),
                slippage_bps=slippage,
                **amounts,
            )

        position_input = p.get("positionMint")
        if _is_str(position_input):
            position_mint = parse_address_field(position_input, "positionMint")
            position: dict[str, Any] | None = None
        else:
            position = self._single_orca_position(owner)
            position_mint = parse_address_field(position.get("positionMint"), "positionMint")

        def position_mints() -> tuple[str, str]:
            entry = position or self._orca_position(owner, position_mint)
            return entry["tokenMintA"], entry["tokenMintB"]

        if intent_type == "solana.lp.orca.close":
            return intents.OrcaClosePosition(owner_address=owner, position_mint=position_mint, slippage_bps=slippage)
        if intent_type == "solana.lp.orca.harvest":
            return intents.OrcaHarvestPosition(owner_address=owner, position_mint=position_mint)
        if intent_type == "solana.lp.orca.increase":
            amounts = self._orca_amounts(p, intent_type, position_mints)
            return intents.OrcaIncreaseLiquidity(
                owner_address=owner, position_mint=position_mint, slippage_bps=slippage, **amounts
            )
        liquidity_bps = parse_optional_bps(p.get("liquidityBps"), "liquidityBps", minimum=1)
        amounts = self._orca_amounts(p, intent_type, position_mints, allow_none=True)
        has_amount = any(v is not None for v in amounts.values())
        if (liquidity_bps is None) == (not has_amount):
            raise IntentInputError(
                "Provide either liquidityBps or one of "
                "liquidityAmountRaw/tokenAAmountRaw/tokenBAmountRaw/tokenAAmountUi/tokenBAmountUi"
            )
        return intents.OrcaDecreaseLiquidity(
            owner_address=owner,
            position_mint=position_mint,
            liquidity_bps=liquidity_bps,
            slippage_bps=slippage,
            **amounts,
        )

    def _meteora_position(self, owner: str, pool: str | None, position: str | None) -> dict[str, Any]:
        if self.positions is None:
            if pool and position:
                return {"poolAddress": pool, "positionAddress": position}
            raise IntentInputError("poolAddress and positionAddress are required")
        entries = [
            entry
            for entry in self.positions.meteora_positions(owner)
            if (pool is None or entry.get("poolAddress") == pool)
            and (position is None or entry.get("positionAddress") == position)
        ]
        if len(entries) == 1:
            return entries[0]
        if pool and position:
            return {"poolAddress": pool, "positionAddress": position}
        raise IntentInputError(
            f"poolAddress and positionAddress are required (owner has {len(entries)} matching Meteora positions)",
            details={"positions": [entry.get("positionAddress") for entry in entries]},
        )

    def _build_meteora(self, intent_type: str, p: dict[str, Any], signer: str, network: str, run_id: str) -> intents.Intent:
        owner = signer_bound_address(p, "ownerAddress", signer)
        pool = parse_optional_address(p.get("poolAddress"), "poolAddress")
        position_address = parse_optional_address(p.get("positionAddress"), "positionAddress")
        entry: dict[str, Any] = (
            {"poolAddress": pool, "positionAddress": position_address}
            if pool and position_address
            else self._meteora_position(owner, pool, position_address)
        )
        pool = parse_address_field(entry.get("poolAddress"), "poolAddress")
        position_address = parse_address_field(entry.get("positionAddress"), "positionAddress")

        if intent_type == "solana.lp.meteora.remove":
            from_bin = parse_optional_int(p.get("fromBinId"), "fromBinId")
            to_bin = parse_optional_int(p.get("toBinId"), "toBinId")
            if from_bin is not None and to_bin is not None and from_bin > to_bin:
                raise IntentInputError("fromBinId must be less than or equal to toBinId")
            bps = parse_optional_bps(p.get("bps"), "bps", minimum=1)
            return intents.MeteoraRemoveLiquidity(
                owner_address=owner,
                pool_address=pool,
                position_address=position_address,
                from_bin_id=from_bin,
                to_bin_id=to_bin,
                bps=MAX_BPS if bps is None else bps,
                should_claim_and_close=p.get("shouldClaimAndClose") is True,
                skip_unwrap_sol=p.get("skipUnwrapSol") is True,
            )

        def pool_mints() -> tuple[str, str]:
            mints = (entry.get("tokenXMint"), entry.get("tokenYMint"))
            if not all(isinstance(m, str) for m in mints):
                resolved = self._meteora_position(owner, pool, position_address)
                mints = (resolved.get("tokenXMint"), resolved.get("tokenYMint"))
            if not all(isinstance(m, str) for m in mints):
                raise IntentInputError(f"Cannot infer LP side: pool mints unavailable for poolAddress={pool}")
            return mints[0], mints[1]

        sides = self._lp_sides(
            p,
            intent_type,
            ("totalX", "totalY"),
            ("tokenXMint", "tokenYMint"),
            pool_mints,
            "totalX/totalY",
            lambda side: f"Provide either {side}AmountRaw or {side}AmountUi, not both",
        )
        total_x = str(parse_non_negative_int(sides[0][0], "totalXAmountRaw")) if sides[0][0] else "0"
        total_y = str(parse_non_negative_int(sides[1][0], "totalYAmountRaw")) if sides[1][0] else "0"
        if total_x == "0" and total_y == "0":
            raise IntentInputError("Provide a positive totalXAmountRaw or totalYAmountRaw")
        min_bin = parse_optional_int(p.get("minBinId"), "minBinId")
        max_bin = parse_optional_int(p.get("maxBinId"), "maxBinId")
        if min_bin is not None and max_bin is not None and min_bin > max_bin:
            raise IntentInputError("minBinId must be less than or equal to maxBinId")
        return intents.MeteoraAddLiquidity(
            owner_address=owner,
            pool_address=pool,
            position_address=position_address,
            total_x_amount_raw=total_x,
            total_y_amount_raw=total_y,
            strategy_type=parse_strategy_type(p.get("strategyType")),
            min_bin_id=min_bin,
            max_bin_id=max_bin,
            single_sided_x=_optional_bool(p.get("singleSidedX")),
            slippage_bps=parse_optional_bps(p.get("slippageBps")),
        )

    # swaps

    def _swap_amount_raw(self, p: dict[str, Any], input_mint: str) -> str:
        amount_raw = p.get("amountRaw")
        if not _is_str(amount_raw) and input_mint == SOL_MINT and _is_num(p.get("amountSol")):
            amount_raw = str(to_lamports(ensure_number(p.get("amountSol"), "amountSol")))
        if not _is_str(amount_raw) and isinstance(p.get("amountUi"), str):
            decimals = self.tokens.fetch_decimals(input_mint)
            amount_raw = decimal_ui_amount_to_raw(p["amountUi"], decimals, "amountUi")
        return str(parse_positive_int(ensure_string(amount_raw, "amountRaw"), "amountRaw"))

    def _build_raydium(self, intent_type: str, p: dict[str, Any], signer: str, network: str, run_id: str) -> intents.Intent:
        input_mint = self.tokens.ensure_mint(p.get("inputMint"), "inputMint")
        output_mint = self.tokens.ensure_mint(p.get("outputMint"), "outputMint")
        amount_raw = self._swap_amount_raw(p, input_mint)
        slippage = parse_optional_bps(p.get("slippageBps"), minimum=1)
        if slippage is None:
            raise IntentInputError("slippageBps is required")
        price = p.get("computeUnitPriceMicroLamports")
        return intents.RaydiumSwap(
            user_public_key=signer,
            input_mint=input_mint,
            output_mint=output_mint,
            amount_raw=amount_raw,
            slippage_bps=slippage,
            tx_version="LEGACY" if p.get("txVersion") == "LEGACY" else "V0",
            swap_type="BaseOut" if p.get("swapType") == "BaseOut" else "BaseIn",
            compute_unit_price_micro_lamports=price if isinstance(price, str) else None,
            wrap_sol=_optional_bool(p.get("wrapSol")),
            unwrap_sol=_optional_bool(p.get("unwrapSol")),
            input_account=parse_optional_address(p.get("inputAccount"), "inputAccount"),
            output_account=parse_optional_address(p.get("outputAccount"), "outputAccount"),
        )

    def _build_swap(self, intent_type: str, p: dict[str, Any], signer: str, network: str, run_id: str) -> intents.Intent:
        input_mint = self.tokens.ensure_mint(p.get("inputMint"), "inputMint")
        output_mint = self.tokens.ensure_mint(p.get("outputMint"), "outputMint")
        amount_raw = self._swap_amount_raw(p, input_mint)
        explicit_dexes = _string_list(p.get("dexes"))
        defaults = default_dexes_for_type(intent_type)
        dexes = explicit_dexes if explicit_dexes else (tuple(defaults) if defaults else None)
        max_accounts = parse_optional_int(p.get("maxAccounts"), "maxAccounts")
        if max_accounts is not None and max_accounts < 1:
            raise IntentInputError("maxAccounts must be a positive integer")
        return intents.INTENT_CLASSES[intent_type](
            user_public_key=signer,
            input_mint=input_mint,
            output_mint=output_mint,
            amount_raw=amount_raw,
            slippage_bps=parse_optional_bps(p.get("slippageBps")),
            swap_mode="ExactOut" if p.get("swapMode") == "ExactOut" else "ExactIn",
            restrict_intermediate_tokens=_optional_bool(p.get("restrictIntermediateTokens")),
            only_direct_routes=_optional_bool(p.get("onlyDirectRoutes")),
            max_accounts=max_accounts,
            dexes=dexes,
            exclude_dexes=_string_list(p.get("excludeDexes")),
            as_legacy_transaction=_optional_bool(p.get("asLegacyTransaction")),
            fallback_to_jupiter_on_no_route=_optional_bool(p.get("fallbackToJupiterOnNoRoute")),
        )
