import hashlib
import pathlib
import sys
import unittest
from unittest import mock

RUNTIME_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(RUNTIME_ROOT) not in sys.path:
    sys.path.insert(0, str(RUNTIME_ROOT))

from solflow_agent import config, intents, pipeline  # noqa: E402
from solflow_agent.base58 import b58encode  # noqa: E402
from solflow_agent.errors import (  # noqa: E402
    CollaboratorError,
    ConfirmationError,
    IntentInputError,
    RouteUnavailableError,
    WorkflowError,
)
from solflow_agent.tokens import SOL_MINT, USDC_MINT  # noqa: E402

SIGNER_BYTES = bytes([1]) * 32
COSIGNER_BYTES = bytes([6]) * 32
PROGRAM_BYTES = bytes([9]) * 32
SIGNER = b58encode(SIGNER_BYTES)
COSIGNER = b58encode(COSIGNER_BYTES)
OTHER = b58encode(bytes([2]) * 32)
POSITION = b58encode(bytes([4]) * 32)
NO_ROUTE = {"routePlan": [], "outAmount": "0"}
ROUTE = {"routePlan": [{"swapInfo": {"label": "Raydium"}}], "outAmount": "1500000"}


class FakeSigner:
    public_key = SIGNER

    def sign_message(self, message: bytes) -> bytes:
        return hashlib.sha512(message).digest()


def legacy_message(required: int, keys: list[bytes]) -> bytes:
    header = bytes([required, 0, 1])
    return header + pipeline.encode_shortvec(len(keys)) + b"".join(keys) + bytes(32) + pipeline.encode_shortvec(0)


def make_rpc(simulations: list[dict] | None = None) -> mock.Mock:
    rpc = mock.Mock()
    rpc.get_latest_blockhash.return_value = {"blockhash": "BLOCKHASH", "lastValidBlockHeight": 500}
    rpc.simulate_transaction.side_effect = simulations or [{"err": None, "logs": [], "unitsConsumed": 1}]
    return rpc


def orca_swap(fallback: bool | None = None) -> intents.OrcaSwap:
    return intents.OrcaSwap(
        user_public_key=SIGNER,
        input_mint=SOL_MINT,
        output_mint=USDC_MINT,
        amount_raw="1000000",
        dexes=("Orca V2", "Orca Whirlpool"),
        fallback_to_jupiter_on_no_route=fallback,
    )


def sol_transfer() -> intents.SolTransfer:
    return intents.SolTransfer(from_address=SIGNER, to_address=OTHER, amount_sol=1, lamports=1_000_000_000)


def router_with(*quotes: dict) -> mock.Mock:
    router = mock.Mock()
    router.quote.side_effect = list(quotes)
    router.build_swap.return_value = pipeline.BuildResult(
        [pipeline.UnsignedTransaction(message=b"swap-message")], {"swapResponse": {"lastValidBlockHeight": 1}}
    )
    return router


class WireFormatTests(unittest.TestCase):
    def test_shortvec(self) -> None:
        for value, encoded in ((0, b"\x00"), (127, b"\x7f"), (128, b"\x80\x01"), (16384, b"\x80\x80\x01")):
            with self.subTest(value=value):
                self.assertEqual(pipeline.encode_shortvec(value), encoded)
                self.assertEqual(pipeline.decode_shortvec(encoded), (value, len(encoded)))
        with self.assertRaises(ValueError):
            pipeline.decode_shortvec(b"\x80")

    def test_decode_keeps_cosigner_signature_and_resigns(self) -> None:
        message = legacy_message(2, [SIGNER_BYTES, COSIGNER_BYTES, PROGRAM_BYTES])
        cosig = b"\x05" * 64
        wire = pipeline.encode_shortvec(2) + bytes(64) + cosig + message

        tx = pipeline.decode_wire_transaction(wire)
        self.assertEqual(tx.version, "legacy")
        self.assertEqual(tx.required_signers, (SIGNER, COSIGNER))
        self.assertEqual(dict(tx.presigned), {COSIGNER: cosig})

        signed = pipeline.sign_transaction(tx, FakeSigner())
        own = hashlib.sha512(message).digest()
        self.assertEqual(signed.wire, b"\x02" + own + cosig + message)
        self.assertEqual(signed.signature, b58encode(own))

    def test_versioned_prefix(self) -> None:
        message = b"\x80" + legacy_message(1, [SIGNER_BYTES, PROGRAM_BYTES])
        tx = pipeline.decode_wire_transaction(pipeline.encode_shortvec(1) + bytes(64) + message)
        self.assertEqual(tx.version, "v0")
        self.assertEqual(tx.required_signers, (SIGNER,))
        self.assertEqual(dict(tx.presigned), {})

    def test_signature_count_must_match_header(self) -> None:
        message = legacy_message(2, [SIGNER_BYTES, COSIGNER_BYTES])
        with self.assertRaises(ValueError):
            pipeline.decode_wire_transaction(pipeline.encode_shortvec(1) + bytes(64) + message)

    def test_missing_cosigner_signature(self) -> None:
        tx = pipeline.UnsignedTransaction(message=b"m" * 8, required_signers=(SIGNER, COSIGNER))
        with self.assertRaises(CollaboratorError):
            pipeline.sign_transaction(tx, FakeSigner())


class BuilderRegistryTests(unittest.TestCase):
    def test_unknown_family_rejected(self) -> None:
        with self.assertRaises(WorkflowError) as ctx:
            pipeline.BuilderRegistry({"bridge": mock.Mock()})
        self.assertEqual(ctx.exception.code, "invalid_config")
        self.assertEqual(str(ctx.exception), "Unknown builder family: bridge")

    def test_missing_builder_and_router(self) -> None:
        registry = pipeline.BuilderRegistry()
        with self.assertRaises(CollaboratorError) as ctx:
            registry.builder_for(sol_transfer())
        self.assertIn("family=transfer", str(ctx.exception))
        with self.assertRaises(CollaboratorError):
            registry.router()

    def test_has_route(self) -> None:
        self.assertTrue(pipeline.has_route(ROUTE))
        self.assertTrue(pipeline.has_route({"outAmount": "5"}))
        self.assertFalse(pipeline.has_route(NO_ROUTE))
        self.assertFalse(pipeline.has_route({}))


class ScopedSwapTests(unittest.TestCase):
    def test_no_orca_route_without_fallback_fails(self) -> None:
        rpc = make_rpc()
        router = router_with(NO_ROUTE)
        tp = pipeline.TransactionPipeline(rpc, pipeline.BuilderRegistry(swap_router=router))

        with self.assertRaises(RouteUnavailableError) as ctx:
            tp.prepare("mainnet-beta", FakeSigner(), orca_swap(), {})

        message = str(ctx.exception)
        self.assertIn("No Orca route found under dex constraints [Orca V2, Orca Whirlpool]", message)
        self.assertIn("fallbackToJupiterOnNoRoute=true", message)
        self.assertEqual(ctx.exception.code, "no_route")
        router.build_swap.assert_not_called()
        rpc.simulate_transaction.assert_not_called()

    def test_fallback_retries_without_dex_restriction(self) -> None:
        rpc = make_rpc()
        router = router_with(NO_ROUTE, ROUTE)
        tp = pipeline.TransactionPipeline(rpc, pipeline.BuilderRegistry(swap_router=router))

        prepared = tp.prepare("mainnet-beta", FakeSigner(), orca_swap(fallback=True), {})

        self.assertTrue(prepared.ok)
        self.assertEqual(router.quote.call_args_list[0].args[0]["dexes"], ["Orca V2", "Orca Whirlpool"])
        self.assertIsNone(router.quote.call_args_list[1].args[0]["dexes"])
        self.assertTrue(prepared.context["fallbackApplied"])
        self.assertEqual(prepared.context["routeSource"], "jupiter-fallback")
        self.assertEqual(prepared.context["scopedQuote"], NO_ROUTE)
        self.assertEqual(prepared.context["outAmount"], "1500000")
        self.assertIsNone(prepared.context["effectiveDexes"])
        self.assertIn("swapResponse", prepared.context)

    def test_fallback_with_no_route_anywhere(self) -> None:
        router = router_with(NO_ROUTE, NO_ROUTE)
        tp = pipeline.TransactionPipeline(make_rpc(), pipeline.BuilderRegistry(swap_router=router))
        with self.assertRaises(RouteUnavailableError) as ctx:
            tp.prepare("mainnet-beta", FakeSigner(), orca_swap(fallback=True), {})
        self.assertIn("Jupiter fallback also returned no route", str(ctx.exception))

    def test_scoped_route_found(self) -> None:
        router = router_with(ROUTE)
        tp = pipeline.TransactionPipeline(make_rpc(), pipeline.BuilderRegistry(swap_router=router))
        prepared = tp.prepare("mainnet-beta", FakeSigner(), orca_swap(), {})
        self.assertEqual(prepared.context["routeSource"], "scoped")
        self.assertFalse(prepared.context["fallbackApplied"])
        self.assertEqual(prepared.context["routeCount"], 1)

    def test_jupiter_off_mainnet_needs_explicit_base_url(self) -> None:
        router = router_with(ROUTE)
        tp = pipeline.TransactionPipeline(make_rpc(), pipeline.BuilderRegistry(swap_router=router))
        with mock.patch.object(config, "jupiter_base_url_configured", return_value=False):
            with self.assertRaises(IntentInputError) as ctx:
                tp.prepare("devnet", FakeSigner(), orca_swap(), {})
        self.assertIn("mainnet-beta only", str(ctx.exception))
        router.quote.assert_not_called()


class PrepareTests(unittest.TestCase):
    def test_second_transaction_simulation_error_fails_the_set(self) -> None:
        err = {"InstructionError": [0, {"Custom": 6001}]}
        rpc = make_rpc(
            [
                {"err": None, "logs": ["first ok"], "unitsConsumed": 1200},
                {"err": err, "logs": ["second failed"]},
            ]
        )
        builder = mock.Mock()
        builder.build.return_value = pipeline.BuildResult(
            [pipeline.UnsignedTransaction(message=b"one"), pipeline.UnsignedTransaction(message=b"two")],
            {"positionMint": POSITION},
        )
        tp = pipeline.TransactionPipeline(rpc, pipeline.BuilderRegistry({"transfer": builder}))

        prepared = tp.prepare("devnet", FakeSigner(), sol_transfer(), {"commitment": "finalized"})

        self.assertFalse(prepared.ok)
        self.assertEqual(prepared.err, err)
        self.assertEqual(prepared.logs, ["first ok", "second failed"])
        self.assertEqual(prepared.units_consumed, 1200)
        self.assertEqual(prepared.version, "legacy")
        self.assertEqual(prepared.context, {"positionMint": POSITION})
        self.assertEqual(rpc.simulate_transaction.call_count, 2)
        rpc.get_latest_blockhash.assert_called_once_with("finalized")
        ctx = builder.build.call_args.args[1]
        self.assertEqual(ctx.blockhash, "BLOCKHASH")
        self.assertEqual(ctx.signer, SIGNER)

    def test_units_consumed_absent_when_not_reported(self) -> None:
        builder = mock.Mock()
        builder.build.return_value = pipeline.BuildResult([pipeline.UnsignedTransaction(message=b"one")])
        rpc = make_rpc([{"err": None, "logs": None}])
        prepared = pipeline.TransactionPipeline(rpc, pipeline.BuilderRegistry({"transfer": builder})).prepare(
            "devnet", FakeSigner(), sol_transfer()
        )
        self.assertTrue(prepared.ok)
        self.assertIsNone(prepared.units_consumed)

    def test_empty_build_is_an_error(self) -> None:
        builder = mock.Mock()
        builder.build.return_value = pipeline.BuildResult([])
        tp = pipeline.TransactionPipeline(make_rpc(), pipeline.BuilderRegistry({"transfer": builder}))
        with self.assertRaises(CollaboratorError):
            tp.prepare("devnet", FakeSigner(), sol_transfer())

    def test_liquidity_bps_resolves_against_current_position(self) -> None:
        positions = mock.Mock()
        positions.orca_positions.return_value = [{"positionMint": POSITION, "liquidity": "1000001"}]
        builder = mock.Mock()
        builder.build.return_value = pipeline.BuildResult([pipeline.UnsignedTransaction(message=b"dec")])
        tp = pipeline.TransactionPipeline(make_rpc(), pipeline.BuilderRegistry({"orca": builder}), positions)
        intent = intents.OrcaDecreaseLiquidity(owner_address=SIGNER, position_mint=POSITION, liquidity_bps=2500)

        prepared = tp.prepare("mainnet-beta", FakeSigner(), intent)

        built = builder.build.call_args.args[0]
        self.assertEqual(built.liquidity_amount_raw, "250000")
        self.assertEqual(prepared.context["resolvedLiquidityAmountRaw"], "250000")
        self.assertEqual(prepared.context["requestedLiquidityBps"], 2500)
        self.assertEqual(prepared.context["positionLiquidity"], "1000001")

    def test_liquidity_bps_rounding_to_zero_is_rejected(self) -> None:
        positions = mock.Mock()
        positions.orca_positions.return_value = [{"positionMint": POSITION, "liquidity": "3"}]
        builder = mock.Mock()
        tp = pipeline.TransactionPipeline(make_rpc(), pipeline.BuilderRegistry({"orca": builder}), positions)
        intent = intents.OrcaDecreaseLiquidity(owner_address=SIGNER, position_mint=POSITION, liquidity_bps=1)
        with self.assertRaises(IntentInputError) as ctx:
            tp.prepare("mainnet-beta", FakeSigner(), intent)
        self.assertIn("resolves to zero liquidity", str(ctx.exception))
        builder.build.assert_not_called()


class SubmitTests(unittest.TestCase):
    def prepared(self, count: int) -> pipeline.PreparedTransactionSet:
        return pipeline.PreparedTransactionSet(
            transactions=[pipeline.SignedTransaction(wire=bytes([i]), signature=f"local{i}", version="v0") for i in range(count)],
            simulations=[pipeline.SimulationResult(ok=True) for _ in range(count)],
            context={},
            blockhash="BLOCKHASH",
            last_valid_block_height=500,
        )

    def test_sends_in_order_and_confirms_each(self) -> None:
        rpc = mock.Mock()
        rpc.send_raw_transaction.side_effect = ["sig1", "sig2"]
        rpc.confirm_transaction.return_value = {"err": None}
        result = pipeline.TransactionPipeline(rpc, pipeline.BuilderRegistry()).submit("devnet", self.prepared(2))
        self.assertEqual(result.signatures, ["sig1", "sig2"])
        self.assertEqual(result.signature, "sig2")
        self.assertTrue(result.confirmed)
        self.assertEqual([c.args[0] for c in rpc.send_raw_transaction.call_args_list], [b"\x00", b"\x01"])
        rpc.confirm_transaction.assert_called_with("sig2", "BLOCKHASH", 500, "confirmed")

    def test_partial_confirmation_failure_reports_landed_signatures(self) -> None:
        rpc = mock.Mock()
        rpc.send_raw_transaction.side_effect = ["sig1", "sig2", "sig3"]
        rpc.confirm_transaction.side_effect = [{"err": None}, {"err": {"InstructionError": [1, "Custom"]}}]
        tp = pipeline.TransactionPipeline(rpc, pipeline.BuilderRegistry())

        with self.assertRaises(ConfirmationError) as ctx:
            tp.submit("devnet", self.prepared(3))

        self.assertEqual(ctx.exception.signatures, ["sig1", "sig2"])
        self.assertEqual(ctx.exception.failed_signature, "sig2")
        self.assertTrue(str(ctx.exception).startswith("Transaction confirmed with error: "))
        self.assertEqual(rpc.send_raw_transaction.call_count, 2)
        self.assertEqual(ctx.exception.details["failedIndex"], 1)

    def test_confirmation_timeout_keeps_earlier_signatures(self) -> None:
        rpc = mock.Mock()
        rpc.send_raw_transaction.side_effect = ["sig1", "sig2"]
        rpc.confirm_transaction.side_effect = [
            {"err": None},
            CollaboratorError("Timed out waiting for confirmation of sig2."),
        ]
        tp = pipeline.TransactionPipeline(rpc, pipeline.BuilderRegistry())

        with self.assertRaises(CollaboratorError) as ctx:
            tp.submit("mainnet-beta", self.prepared(2))

        self.assertEqual(str(ctx.exception), "Timed out waiting for confirmation of sig2.")
        self.assertEqual(ctx.exception.details["signatures"], ["sig1", "sig2"])
        self.assertEqual(ctx.exception.details["failedIndex"], 1)
        self.assertEqual(ctx.exception.code, "collaborator_unavailable")
        self.assertIsInstance(ctx.exception.__cause__, CollaboratorError)

    def test_send_failure_after_first_broadcast(self) -> None:
        rpc = mock.Mock()
        rpc.send_raw_transaction.side_effect = [
            "sig1",
            CollaboratorError("RPC sendTransaction error: blockhash not found", details={"rpcCode": -32002}),
        ]
        rpc.confirm_transaction.return_value = {"err": None}
        tp = pipeline.TransactionPipeline(rpc, pipeline.BuilderRegistry())

        with self.assertRaises(CollaboratorError) as ctx:
            tp.submit("mainnet-beta", self.prepared(3))

        self.assertEqual(ctx.exception.details["signatures"], ["sig1"])
        self.assertEqual(ctx.exception.details["failedIndex"], 1)
        self.assertEqual(ctx.exception.details["rpcCode"], -32002)
        self.assertEqual(rpc.send_raw_transaction.call_count, 2)

    def test_confirm_false_skips_only_the_last_wait(self) -> None:
        rpc = mock.Mock()
        rpc.send_raw_transaction.side_effect = ["sig1", "sig2"]
        rpc.confirm_transaction.return_value = {"err": None}
        result = pipeline.TransactionPipeline(rpc, pipeline.BuilderRegistry()).submit(
            "devnet", self.prepared(2), {"confirm": False, "skipPreflight": True, "maxRetries": 3}
        )
        self.assertFalse(result.confirmed)
        rpc.confirm_transaction.assert_called_once()
        self.assertEqual(rpc.confirm_transaction.call_args.args[0], "sig1")
        rpc.send_raw_transaction.assert_called_with(b"\x01", skip_preflight=True, max_retries=3)


if __name__ == "__main__":
    unittest.main()
