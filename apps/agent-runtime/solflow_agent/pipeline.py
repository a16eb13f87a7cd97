"""Build, sign, simulate and submit transactions for a canonical intent.

Instruction building is delegated to per-family ``InstructionBuilder``
collaborators; Jupiter-routed swaps go through a ``SwapRouter``. This module
owns the sequencing: every transaction is signed and simulated in build
order, and submission is strictly sequential so a later transaction never
lands ahead of one it depends on.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

from . import config
from .base58 import PUBLIC_KEY_LENGTH, b58encode
from .errors import CollaboratorError, ConfirmationError, IntentInputError, RouteUnavailableError, WorkflowError
from .intents import Intent, JupiterSwap, OrcaDecreaseLiquidity
from .reads import PositionReader
from .text_parser import default_dexes_for_type

logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 64
SCOPED_SWAP_TYPES = ("solana.swap.orca", "solana.swap.meteora")


class RpcClient(Protocol):
    def get_balance(self, address: str, commitment: str | None = None) -> int: ...

    def get_parsed_token_accounts_by_owner(self, owner: str, program_id: str) -> list[dict[str, Any]]: ...

    def get_parsed_account_info(self, address: str) -> dict[str, Any] | None: ...

    def get_latest_blockhash(self, commitment: str | None = None) -> dict[str, Any]: ...

    def simulate_transaction(self, wire: bytes, commitment: str | None = None) -> dict[str, Any]: ...

    def send_raw_transaction(self, wire: bytes, skip_preflight: bool = False, max_retries: int | None = None) -> str: ...

    def confirm_transaction(
        self, signature: str, blockhash: str, last_valid_block_height: int | None, commitment: str | None = None
    ) -> dict[str, Any]: ...

    def get_parsed_program_accounts(self, program_id: str, filters: list[dict[str, Any]]) -> list[dict[str, Any]]: ...


class TransactionSigner(Protocol):
    @property
    def public_key(self) -> str: ...

    def sign_message(self, message: bytes) -> bytes: ...


@dataclass(frozen=True)
class UnsignedTransaction:
    """Compiled message bytes plus the signers the message header requires.

    ``required_signers`` is in header order. Signatures for keys other than
    the local signer must arrive in ``presigned`` (e.g. a fresh position mint
    keypair generated by the builder).
    """

    message: bytes
    version: str = "legacy"
    required_signers: tuple[str, ...] = ()
    presigned: Mapping[str, bytes] = field(default_factory=dict)


@dataclass
class BuildResult:
    transactions: list[UnsignedTransaction]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BuildContext:
    network: str
    signer: str
    blockhash: str
    last_valid_block_height: int | None
    commitment: str
    options: Mapping[str, Any] = field(default_factory=dict)
    intent: Intent | None = None


class InstructionBuilder(Protocol):
    def build(self, intent: Intent, ctx: BuildContext) -> BuildResult: ...


class SwapRouter(Protocol):
    def quote(self, request: dict[str, Any]) -> dict[str, Any]: ...

    def build_swap(self, quote: dict[str, Any], ctx: BuildContext, options: Mapping[str, Any]) -> BuildResult: ...


@dataclass(frozen=True)
class SignedTransaction:
    wire: bytes
    signature: str
    version: str


@dataclass(frozen=True)
class SimulationResult:
    ok: bool
    err: Any = None
    logs: tuple[str, ...] = ()
    units_consumed: int | None = None


@dataclass
class PreparedTransactionSet:
    transactions: list[SignedTransaction]
    simulations: list[SimulationResult]
    context: dict[str, Any]
    blockhash: str
    last_valid_block_height: int | None

    @property
    def ok(self) -> bool:
        return all(sim.ok for sim in self.simulations)

    @property
    def err(self) -> Any:
        for sim in self.simulations:
            if not sim.ok:
                return sim.err
        return None

    @property
    def logs(self) -> list[str]:
        return [line for sim in self.simulations for line in sim.logs]

    @property
    def units_consumed(self) -> int | None:
        units = [sim.units_consumed for sim in self.simulations if sim.units_consumed is not None]
        return sum(units) if units else None

    @property
    def version(self) -> str | None:
        return self.transactions[0].version if self.transactions else None


@dataclass(frozen=True)
class SubmitResult:
    signature: str
    signatures: list[str]
    confirmed: bool


class BuilderRegistry:
    """Instruction builders keyed by intent family (transfer, lending, staking, orca, meteora, raydium)."""

    FAMILIES = ("transfer", "lending", "staking", "orca", "meteora", "raydium")

    def __init__(self, builders: Mapping[str, InstructionBuilder] | None = None, swap_router: SwapRouter | None = None):
        self._builders: dict[str, InstructionBuilder] = {}
        self.swap_router = swap_router
        for family, builder in (builders or {}).items():
            self.register(family, builder)

    def register(self, family: str, builder: InstructionBuilder) -> None:
        if family not in self.FAMILIES:
            raise WorkflowError(
                f"Unknown builder family: {family}",
                code="invalid_config",
                action_hint=f"Use one of: {', '.join(self.FAMILIES)}.",
            )
        self._builders[family] = builder

    def builder_for(self, intent: Intent) -> InstructionBuilder:
        builder = self._builders.get(intent.family)
        if builder is None:
            raise CollaboratorError(
                f"No instruction builder registered for {intent.type} (family={intent.family}).",
                action_hint="Set SOLFLOW_BUILDERS=module:factory to provide instruction builders.",
                details={"family": intent.family},
            )
        return builder

    def router(self) -> SwapRouter:
        if self.swap_router is None:
            raise CollaboratorError(
                "No swap router configured for Jupiter-routed swaps.",
                action_hint="Configure a SwapRouter (JUPITER_API_BASE_URL) or use intentType=solana.swap.raydium.",
            )
        return self.swap_router


def encode_shortvec(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_shortvec(data: bytes, offset: int = 0) -> tuple[int, int]:
    value = 0
    shift = 0
    while True:
        if offset >= len(data):
            raise ValueError("Truncated shortvec length")
        byte = data[offset]
        offset += 1
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, offset
        shift += 7


def decode_wire_transaction(wire: bytes) -> UnsignedTransaction:
    """Split a serialized transaction into its message and the header's signer keys.

    Existing non-zero signatures are kept as ``presigned`` so co-signers
    survive re-signing by the local key.
    """
    count, offset = decode_shortvec(wire)
    signatures = [wire[offset + i * SIGNATURE_LENGTH : offset + (i + 1) * SIGNATURE_LENGTH] for i in range(count)]
    message = wire[offset + count * SIGNATURE_LENGTH :]
    if len(message) < 4 or any(len(sig) != SIGNATURE_LENGTH for sig in signatures):
        raise ValueError("Truncated transaction")
    versioned = bool(message[0] & 0x80)
    cursor = 1 if versioned else 0
    required = message[cursor]
    key_count, cursor = decode_shortvec(message, cursor + 3)
    keys = [
        b58encode(message[cursor + i * PUBLIC_KEY_LENGTH : cursor + (i + 1) * PUBLIC_KEY_LENGTH]) for i in range(key_count)
    ]
    if required > key_count or required != count:
        raise ValueError("Signature count does not match message header")
    signers = tuple(keys[:required])
    presigned = {key: sig for key, sig in zip(signers, signatures) if any(sig)}
    return UnsignedTransaction(
        message=message,
        version="v0" if versioned else "legacy",
        required_signers=signers,
        presigned=presigned,
    )


def sign_transaction(tx: UnsignedTransaction, signer: TransactionSigner) -> SignedTransaction:
    required = tx.required_signers or (signer.public_key,)
    signatures: list[bytes] = []
    for key in required:
        if key == signer.public_key:
            signature = signer.sign_message(tx.message)
        elif key in tx.presigned:
            signature = tx.presigned[key]
        else:
            raise CollaboratorError(f"Missing required signature for {key}", details={"signer": key})
        if len(signature) != SIGNATURE_LENGTH:
            raise CollaboratorError(f"Invalid signature length for {key}: {len(signature)}")
        signatures.append(signature)
    wire = encode_shortvec(len(signatures)) + b"".join(signatures) + tx.message
    return SignedTransaction(wire=wire, signature=b58encode(signatures[0]), version=tx.version)


def has_route(quote: Mapping[str, Any]) -> bool:
    route_plan = quote.get("routePlan")
    if isinstance(route_plan, list) and route_plan:
        return True
    out_amount = quote.get("outAmount")
    return isinstance(out_amount, str) and out_amount.isdigit() and int(out_amount) > 0


def _ensure_jupiter_network(network: str) -> None:
    if network != config.PRIMARY_NETWORK and not config.jupiter_base_url_configured():
        raise IntentInputError(
            "Jupiter API tools currently support mainnet-beta only. "
            "For preprod environments, set JUPITER_API_BASE_URL explicitly."
        )


class TransactionPipeline:
    def __init__(
        self,
        rpc: RpcClient,
        builders: BuilderRegistry,
        positions: PositionReader | None = None,
    ):
        self.rpc = rpc
        self.builders = builders
        self.positions = positions

    def prepare(
        self,
        network: str,
        signer: TransactionSigner,
        intent: Intent,
        options: Mapping[str, Any] | None = None,
    ) -> PreparedTransactionSet:
        options = options or {}
        commitment = config.parse_commitment(options.get("commitment"))
        latest = self.rpc.get_latest_blockhash(commitment)
        blockhash = latest.get("blockhash")
        if not isinstance(blockhash, str) or not blockhash:
            raise CollaboratorError("RPC returned no recent blockhash", details={"response": latest})
        ctx = BuildContext(
            network=network,
            signer=signer.public_key,
            blockhash=blockhash,
            last_valid_block_height=latest.get("lastValidBlockHeight"),
            commitment=commitment,
            options=options,
        )
        context: dict[str, Any] = {}
        if isinstance(intent, OrcaDecreaseLiquidity) and intent.liquidity_bps is not None:
            intent, context = self._resolve_liquidity_bps(intent)
        if isinstance(intent, JupiterSwap):
            result, swap_context = self._build_jupiter_swap(intent, ctx, options)
            context.update(swap_context)
        else:
            result = self.builders.builder_for(intent).build(intent, ctx)
        if not result.transactions:
            raise CollaboratorError(f"Builder produced no transactions for {intent.type}")
        context = {**result.metadata, **context}

        signed = [sign_transaction(tx, signer) for tx in result.transactions]
        simulations = [self._simulate(tx, commitment) for tx in signed]
        prepared = PreparedTransactionSet(
            transactions=signed,
            simulations=simulations,
            context=context,
            blockhash=blockhash,
            last_valid_block_height=ctx.last_valid_block_height,
        )
        logger.info(
            "prepared %s: txCount=%d simulationOk=%s", intent.type, len(signed), prepared.ok
        )
        return prepared

    def _simulate(self, tx: SignedTransaction, commitment: str) -> SimulationResult:
        value = self.rpc.simulate_transaction(tx.wire, commitment)
        err = value.get("err")
        units = value.get("unitsConsumed")
        return SimulationResult(
            ok=err is None,
            err=err,
            logs=tuple(value.get("logs") or ()),
            units_consumed=units if isinstance(units, int) and not isinstance(units, bool) else None,
        )

    def _resolve_liquidity_bps(self, intent: OrcaDecreaseLiquidity) -> tuple[OrcaDecreaseLiquidity, dict[str, Any]]:
        if self.positions is None:
            raise CollaboratorError("liquidityBps requires a position reader to fetch current liquidity")
        position = next(
            (
                entry
                for entry in self.positions.orca_positions(intent.owner_address)
                if entry.get("positionMint") == intent.position_mint
            ),
            None,
        )
        if position is None:
            raise IntentInputError(f"Orca position not found for owner: positionMint={intent.position_mint}")
        liquidity = int(str(position.get("liquidity") or "0"))
        amount = liquidity * int(intent.liquidity_bps or 0) // 10_000
        if amount <= 0:
            raise IntentInputError(
                f"liquidityBps={intent.liquidity_bps} resolves to zero liquidity for positionMint={intent.position_mint}",
                details={"positionLiquidity": str(liquidity)},
            )
        resolved = dataclasses.replace(intent, liquidity_amount_raw=str(amount))
        return resolved, {
            "resolvedLiquidityAmountRaw": str(amount),
            "requestedLiquidityBps": intent.liquidity_bps,
            "positionLiquidity": str(liquidity),
        }

    def _build_jupiter_swap(
        self, intent: JupiterSwap, ctx: BuildContext, options: Mapping[str, Any]
    ) -> tuple[BuildResult, dict[str, Any]]:
        _ensure_jupiter_network(ctx.network)
        router = self.builders.router()
        request = {
            "inputMint": intent.input_mint,
            "outputMint": intent.output_mint,
            "amount": intent.amount_raw,
            "slippageBps": intent.slippage_bps,
            "swapMode": intent.swap_mode,
            "restrictIntermediateTokens": intent.restrict_intermediate_tokens,
            "onlyDirectRoutes": intent.only_direct_routes,
            "asLegacyTransaction": intent.as_legacy_transaction,
            "maxAccounts": intent.max_accounts,
            "dexes": list(intent.dexes) if intent.dexes else None,
            "excludeDexes": list(intent.exclude_dexes) if intent.exclude_dexes else None,
        }
        scoped = intent.type in SCOPED_SWAP_TYPES
        fallback_requested = intent.fallback_to_jupiter_on_no_route is True
        scoped_quote = router.quote(request)
        quote = scoped_quote
        fallback_applied = False
        if scoped and not has_route(scoped_quote):
            label = getattr(intent, "protocol_label", "Jupiter")
            dexes = list(intent.dexes or default_dexes_for_type(intent.type) or [])
            if not fallback_requested:
                raise RouteUnavailableError(
                    f"No {label} route found under dex constraints [{', '.join(dexes)}]. "
                    "Set fallbackToJupiterOnNoRoute=true, try intentType=solana.swap.jupiter, or relax dex constraints.",
                    action_hint="Set fallbackToJupiterOnNoRoute=true or use intentType=solana.swap.jupiter.",
                    details={"dexes": dexes, "intentType": intent.type},
                )
            logger.info("no %s route under dexes=%s; retrying without dex restriction", label, dexes)
            quote = router.quote({**request, "dexes": None})
            if not has_route(quote):
                raise RouteUnavailableError(
                    f"No {label} route found under dex constraints [{', '.join(dexes)}], "
                    "and Jupiter fallback also returned no route.",
                    details={"dexes": dexes, "intentType": intent.type},
                )
            fallback_applied = True
        route_plan = quote.get("routePlan") if isinstance(quote.get("routePlan"), list) else []
        out_amount = quote.get("outAmount") if isinstance(quote.get("outAmount"), str) else None
        result = router.build_swap(quote, dataclasses.replace(ctx, intent=intent), options)
        if fallback_applied:
            route_source = "jupiter-fallback"
        elif scoped:
            route_source = "scoped"
        else:
            route_source = "jupiter"
        return result, {
            "quote": quote,
            "scopedQuote": scoped_quote if fallback_applied else None,
            "outAmount": out_amount,
            "routeCount": len(route_plan),
            "dexes": list(intent.dexes) if intent.dexes else None,
            "effectiveDexes": None if fallback_applied else (list(intent.dexes) if intent.dexes else None),
            "fallbackToJupiterOnNoRoute": fallback_requested,
            "fallbackApplied": fallback_applied,
            "routeSource": route_source,
        }

    def submit(
        self,
        network: str,
        prepared: PreparedTransactionSet,
        options: Mapping[str, Any] | None = None,
    ) -> SubmitResult:
        """Broadcast in build order and stop at the first on-chain failure.

        With ``confirm=False`` only the final transaction is left unconfirmed;
        earlier ones are still awaited because later transactions may depend
        on their state.
        """
        options = options or {}
        wait_final = options.get("confirm") is not False
        commitment = config.parse_finality(options.get("commitment"))
        max_retries = options.get("maxRetries")
        signatures: list[str] = []
        total = len(prepared.transactions)
        for index, tx in enumerate(prepared.transactions):
            try:
                signature = self.rpc.send_raw_transaction(
                    tx.wire,
                    skip_preflight=options.get("skipPreflight") is True,
                    max_retries=max_retries if isinstance(max_retries, int) and not isinstance(max_retries, bool) else None,
                )
                signatures.append(signature)
                logger.info("broadcast %d/%d signature=%s network=%s", index + 1, total, signature, network)
                if index < total - 1 or wait_final:
                    confirmation = self.rpc.confirm_transaction(
                        signature, prepared.blockhash, prepared.last_valid_block_height, commitment
                    )
                    err = confirmation.get("err")
                    if err:
                        raise ConfirmationError(
                            f"Transaction confirmed with error: {json.dumps(err, separators=(',', ':'))}",
                            signatures=signatures,
                            failed_signature=signature,
                            err=err,
                            failed_index=index,
                        )
            except ConfirmationError:
                raise
            except WorkflowError as exc:
                logger.warning("submit stopped at %d/%d after %d broadcast(s): %s", index + 1, total, len(signatures), exc)
                raise CollaboratorError(
                    str(exc),
                    code=exc.code,
                    action_hint="Earlier signatures in the batch may have landed; inspect them before retrying.",
                    details={**exc.details, "signatures": list(signatures), "failedIndex": index},
                ) from exc
        if not signatures:
            raise CollaboratorError("No signature returned")
        return SubmitResult(signature=signatures[-1], signatures=signatures, confirmed=wait_final)
