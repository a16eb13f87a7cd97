"""Canonical intent variants.

One frozen dataclass per ``type`` string. Every field is fully resolved:
addresses are canonical base58 and amounts are minimal-unit integer strings.
``to_dict()`` renders the camelCase wire shape with ``type`` first and unset
optional fields omitted.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, ClassVar


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


@dataclass(frozen=True, kw_only=True)
class Intent:
    type: ClassVar[str] = ""
    family: ClassVar[str] = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type}
        for field in dataclasses.fields(self):
            value = getattr(self, field.name)
            if value is None:
                continue
            out[_camel(field.name)] = list(value) if isinstance(value, tuple) else value
        return out

    @property
    def is_read(self) -> bool:
        return self.family == "read"


# Reads


@dataclass(frozen=True, kw_only=True)
class BalanceRead(Intent):
    type: ClassVar[str] = "solana.read.balance"
    family: ClassVar[str] = "read"
    address: str


@dataclass(frozen=True, kw_only=True)
class TokenBalanceRead(Intent):
    type: ClassVar[str] = "solana.read.tokenBalance"
    family: ClassVar[str] = "read"
    address: str
    token_mint: str
    include_token2022: bool = True


@dataclass(frozen=True, kw_only=True)
class PortfolioRead(Intent):
    type: ClassVar[str] = "solana.read.portfolio"
    family: ClassVar[str] = "read"
    address: str
    include_zero: bool = False
    include_token2022: bool = True


@dataclass(frozen=True, kw_only=True)
class DefiPositionsRead(Intent):
    type: ClassVar[str] = "solana.read.defiPositions"
    family: ClassVar[str] = "read"
    address: str
    include_zero: bool = False
    include_token2022: bool = True
    include_stake_accounts: bool = True


@dataclass(frozen=True, kw_only=True)
class OrcaPositionsRead(Intent):
    type: ClassVar[str] = "solana.read.orcaPositions"
    family: ClassVar[str] = "read"
    address: str


@dataclass(frozen=True, kw_only=True)
class MeteoraPositionsRead(Intent):
    type: ClassVar[str] = "solana.read.meteoraPositions"
    family: ClassVar[str] = "read"
    address: str


@dataclass(frozen=True, kw_only=True)
class LendingMarketsRead(Intent):
    type: ClassVar[str] = "solana.read.lendingMarkets"
    family: ClassVar[str] = "read"
    protocol: str = "kamino"
    program_id: str | None = None
    limit_markets: int = 20


@dataclass(frozen=True, kw_only=True)
class LendingPositionsRead(Intent):
    type: ClassVar[str] = "solana.read.lendingPositions"
    family: ClassVar[str] = "read"
    address: str
    protocol: str = "kamino"
    program_id: str | None = None
    limit_markets: int = 20


# Transfers


@dataclass(frozen=True, kw_only=True)
class SolTransfer(Intent):
    type: ClassVar[str] = "solana.transfer.sol"
    family: ClassVar[str] = "transfer"
    from_address: str
    to_address: str
    amount_sol: float
    lamports: int


@dataclass(frozen=True, kw_only=True)
class SplTransfer(Intent):
    type: ClassVar[str] = "solana.transfer.spl"
    family: ClassVar[str] = "transfer"
    from_address: str
    to_address: str
    token_mint: str
    amount_raw: str
    token_program: str = "token"
    source_token_account: str | None = None
    destination_token_account: str | None = None
    create_destination_ata_if_missing: bool = True


# Lending (Kamino)


@dataclass(frozen=True, kw_only=True)
class KaminoIntent(Intent):
    family: ClassVar[str] = "lending"
    owner_address: str
    market_address: str
    program_id: str | None = None
    use_v2_ixs: bool = True
    include_ata_ixs: bool = True
    extra_compute_units: int | None = None
    request_elevation_group: bool = False


@dataclass(frozen=True, kw_only=True)
class KaminoDeposit(KaminoIntent):
    type: ClassVar[str] = "solana.lend.kamino.deposit"
    reserve_mint: str
    amount_raw: str


@dataclass(frozen=True, kw_only=True)
class KaminoBorrow(KaminoIntent):
    type: ClassVar[str] = "solana.lend.kamino.borrow"
    reserve_mint: str
    amount_raw: str


@dataclass(frozen=True, kw_only=True)
class KaminoWithdraw(KaminoIntent):
    type: ClassVar[str] = "solana.lend.kamino.withdraw"
    reserve_mint: str
    amount_raw: str


@dataclass(frozen=True, kw_only=True)
class KaminoRepay(KaminoIntent):
    type: ClassVar[str] = "solana.lend.kamino.repay"
    reserve_mint: str
    amount_raw: str
    current_slot: str | None = None


@dataclass(frozen=True, kw_only=True)
class KaminoDepositAndBorrow(KaminoIntent):
    type: ClassVar[str] = "solana.lend.kamino.depositAndBorrow"
    deposit_reserve_mint: str
    deposit_amount_raw: str
    borrow_reserve_mint: str
    borrow_amount_raw: str


@dataclass(frozen=True, kw_only=True)
class KaminoRepayAndWithdraw(KaminoIntent):
    type: ClassVar[str] = "solana.lend.kamino.repayAndWithdraw"
    repay_reserve_mint: str
    repay_amount_raw: str
    withdraw_reserve_mint: str
    withdraw_amount_raw: str
    current_slot: str | None = None


# Native staking


@dataclass(frozen=True, kw_only=True)
class StakeCreateAndDelegate(Intent):
    type: ClassVar[str] = "solana.stake.createAndDelegate"
    family: ClassVar[str] = "staking"
    stake_authority_address: str
    withdraw_authority_address: str
    stake_account_address: str
    stake_seed: str
    vote_account_address: str
    amount_sol: float
    lamports: int


@dataclass(frozen=True, kw_only=True)
class StakeDelegate(Intent):
    type: ClassVar[str] = "solana.stake.delegate"
    family: ClassVar[str] = "staking"
    stake_authority_address: str
    stake_account_address: str
    vote_account_address: str


@dataclass(frozen=True, kw_only=True)
class StakeAuthorizeStaker(Intent):
    type: ClassVar[str] = "solana.stake.authorizeStaker"
    family: ClassVar[str] = "staking"
    stake_authority_address: str
    stake_account_address: str
    new_authority_address: str


@dataclass(frozen=True, kw_only=True)
class StakeAuthorizeWithdrawer(Intent):
    type: ClassVar[str] = "solana.stake.authorizeWithdrawer"
    family: ClassVar[str] = "staking"
    stake_authority_address: str
    stake_account_address: str
    new_authority_address: str


@dataclass(frozen=True, kw_only=True)
class StakeDeactivate(Intent):
    type: ClassVar[str] = "solana.stake.deactivate"
    family: ClassVar[str] = "staking"
    stake_authority_address: str
    stake_account_address: str


@dataclass(frozen=True, kw_only=True)
class StakeWithdraw(Intent):
    type: ClassVar[str] = "solana.stake.withdraw"
    family: ClassVar[str] = "staking"
    withdraw_authority_address: str
    stake_account_address: str
    to_address: str
    amount_sol: float
    lamports: int


# Liquidity (Orca Whirlpools)


@dataclass(frozen=True, kw_only=True)
class OrcaOpenPosition(Intent):
    type: ClassVar[str] = "solana.lp.orca.open"
    family: ClassVar[str] = "orca"
    owner_address: str
    pool_address: str
    liquidity_amount_raw: str | None = None
    token_a_amount_raw: str | None = None
    token_b_amount_raw: str | None = None
    full_range: bool = True
    lower_price: float | None = None
    upper_price: float | None = None
    slippage_bps: int | None = None


@dataclass(frozen=True, kw_only=True)
class OrcaClosePosition(Intent):
    type: ClassVar[str] = "solana.lp.orca.close"
    family: ClassVar[str] = "orca"
    owner_address: str
    position_mint: str
    slippage_bps: int | None = None


@dataclass(frozen=True, kw_only=True)
class OrcaHarvestPosition(Intent):
    type: ClassVar[str] = "solana.lp.orca.harvest"
    family: ClassVar[str] = "orca"
    owner_address: str
    position_mint: str


@dataclass(frozen=True, kw_only=True)
class OrcaIncreaseLiquidity(Intent):
    type: ClassVar[str] = "solana.lp.orca.increase"
    family: ClassVar[str] = "orca"
    owner_address: str
    position_mint: str
    liquidity_amount_raw: str | None = None
    token_a_amount_raw: str | None = None
    token_b_amount_raw: str | None = None
    slippage_bps: int | None = None


@dataclass(frozen=True, kw_only=True)
class OrcaDecreaseLiquidity(Intent):
    type: ClassVar[str] = "solana.lp.orca.decrease"
    family: ClassVar[str] = "orca"
    owner_address: str
    position_mint: str
    liquidity_amount_raw: str | None = None
    token_a_amount_raw: str | None = None
    token_b_amount_raw: str | None = None
    liquidity_bps: int | None = None
    slippage_bps: int | None = None


# Liquidity (Meteora DLMM)


@dataclass(frozen=True, kw_only=True)
class MeteoraAddLiquidity(Intent):
    type: ClassVar[str] = "solana.lp.meteora.add"
    family: ClassVar[str] = "meteora"
    owner_address: str
    pool_address: str
    position_address: str
    total_x_amount_raw: str
    total_y_amount_raw: str
    strategy_type: str = "Spot"
    min_bin_id: int | None = None
    max_bin_id: int | None = None
    single_sided_x: bool | None = None
    slippage_bps: int | None = None


@dataclass(frozen=True, kw_only=True)
class MeteoraRemoveLiquidity(Intent):
    type: ClassVar[str] = "solana.lp.meteora.remove"
    family: ClassVar[str] = "meteora"
    owner_address: str
    pool_address: str
    position_address: str
    from_bin_id: int | None = None
    to_bin_id: int | None = None
    bps: int = 10_000
    should_claim_and_close: bool = False
    skip_unwrap_sol: bool = False


# Swaps


@dataclass(frozen=True, kw_only=True)
class JupiterSwap(Intent):
    type: ClassVar[str] = "solana.swap.jupiter"
    family: ClassVar[str] = "swap"
    user_public_key: str
    input_mint: str
    output_mint: str
    amount_raw: str
    slippage_bps: int | None = None
    swap_mode: str = "ExactIn"
    restrict_intermediate_tokens: bool | None = None
    only_direct_routes: bool | None = None
    max_accounts: int | None = None
    dexes: tuple[str, ...] | None = None
    exclude_dexes: tuple[str, ...] | None = None
    as_legacy_transaction: bool | None = None
    fallback_to_jupiter_on_no_route: bool | None = None


@dataclass(frozen=True, kw_only=True)
class OrcaSwap(JupiterSwap):
    type: ClassVar[str] = "solana.swap.orca"
    protocol_label: ClassVar[str] = "Orca"


@dataclass(frozen=True, kw_only=True)
class MeteoraSwap(JupiterSwap):
    type: ClassVar[str] = "solana.swap.meteora"
    protocol_label: ClassVar[str] = "Meteora"


@dataclass(frozen=True, kw_only=True)
class RaydiumSwap(Intent):
    type: ClassVar[str] = "solana.swap.raydium"
    family: ClassVar[str] = "raydium"
    user_public_key: str
    input_mint: str
    output_mint: str
    amount_raw: str
    slippage_bps: int
    tx_version: str = "V0"
    swap_type: str = "BaseIn"
    compute_unit_price_micro_lamports: str | None = None
    wrap_sol: bool | None = None
    unwrap_sol: bool | None = None
    input_account: str | None = None
    output_account: str | None = None


INTENT_CLASSES: dict[str, type[Intent]] = {
    cls.type: cls
    for cls in (
        BalanceRead,
        TokenBalanceRead,
        PortfolioRead,
        DefiPositionsRead,
        OrcaPositionsRead,
        MeteoraPositionsRead,
        LendingMarketsRead,
        LendingPositionsRead,
        SolTransfer,
        SplTransfer,
        KaminoDeposit,
        KaminoBorrow,
        KaminoWithdraw,
        KaminoRepay,
        KaminoDepositAndBorrow,
        KaminoRepayAndWithdraw,
        StakeCreateAndDelegate,
        StakeDelegate,
        StakeAuthorizeStaker,
        StakeAuthorizeWithdrawer,
        StakeDeactivate,
        StakeWithdraw,
        OrcaOpenPosition,
        OrcaClosePosition,
        OrcaHarvestPosition,
        OrcaIncreaseLiquidity,
        OrcaDecreaseLiquidity,
        MeteoraAddLiquidity,
        MeteoraRemoveLiquidity,
        JupiterSwap,
        OrcaSwap,
        MeteoraSwap,
        RaydiumSwap,
    )
}
INTENT_TYPES = tuple(INTENT_CLASSES)
READ_INTENT_TYPES = frozenset(t for t, cls in INTENT_CLASSES.items() if cls.family == "read")


def is_read_intent_type(intent_type: str) -> bool:
    return intent_type in READ_INTENT_TYPES
