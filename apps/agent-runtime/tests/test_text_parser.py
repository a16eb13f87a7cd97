import pathlib
import sys
import unittest

RUNTIME_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(RUNTIME_ROOT) not in sys.path:
    sys.path.insert(0, str(RUNTIME_ROOT))

from solflow_agent import base58, text_parser  # noqa: E402
from solflow_agent.tokens import SOL_MINT, USDC_MINT  # noqa: E402

RECIPIENT = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
STAKE = base58.b58encode(bytes([2]) * 32)
VOTE = base58.b58encode(bytes([3]) * 32)
POOL = base58.b58encode(bytes([4]) * 32)
POSITION = base58.b58encode(bytes([5]) * 32)


class IntentTextParsingTests(unittest.TestCase):
    def test_send_sol_text_yields_transfer_fields(self) -> None:
        parsed = text_parser.parse_intent_text(f"send 1.5 SOL to {RECIPIENT}")
        self.assertEqual(parsed["intentType"], "solana.transfer.sol")
        self.assertEqual(parsed["toAddress"], RECIPIENT)
        self.assertEqual(parsed["amountSol"], 1.5)
        self.assertNotIn("tokenMint", parsed)

    def test_send_usdc_text_yields_spl_transfer(self) -> None:
        parsed = text_parser.parse_intent_text(f"send 25 USDC to {RECIPIENT}")
        self.assertEqual(parsed["intentType"], "solana.transfer.spl")
        self.assertEqual(parsed["tokenMint"], USDC_MINT)
        self.assertEqual(parsed["amountUi"], "25")

    def test_swap_on_orca_scopes_dexes_and_slippage(self) -> None:
        parsed = text_parser.parse_intent_text("swap 1 SOL to USDC on orca slippage 0.5%")
        self.assertEqual(parsed["intentType"], "solana.swap.orca")
        self.assertEqual(parsed["inputMint"], SOL_MINT)
        self.assertEqual(parsed["outputMint"], USDC_MINT)
        self.assertEqual(parsed["amountUi"], "1")
        self.assertEqual(parsed["slippageBps"], 50)
        self.assertEqual(parsed["dexes"], ["Orca V2", "Orca Whirlpool"])

    def test_plain_swap_defaults_to_jupiter_without_dexes(self) -> None:
        parsed = text_parser.parse_intent_text("swap 2 USDC to SOL slippageBps=30")
        self.assertEqual(parsed["intentType"], "solana.swap.jupiter")
        self.assertEqual(parsed["slippageBps"], 30)
        self.assertNotIn("dexes", parsed)

    def test_canonical_type_name_wins_over_keywords(self) -> None:
        parsed = text_parser.parse_intent_text(f"solana.read.portfolio for {RECIPIENT} then swap later")
        self.assertEqual(parsed["intentType"], "solana.read.portfolio")
        self.assertEqual(parsed["address"], RECIPIENT)

    def test_unrecognised_text_yields_nothing(self) -> None:
        self.assertEqual(text_parser.parse_intent_text("hello there"), {})
        self.assertEqual(text_parser.parse_intent_text("   "), {})
        self.assertEqual(text_parser.parse_intent_text(None), {})

    def test_keyword_categories_reports_ambiguity(self) -> None:
        categories = text_parser.keyword_categories("swap then send the balance")
        self.assertIn("swap", categories)
        self.assertIn("transfer", categories)
        self.assertIn("read", categories)


class ProtocolTextParsingTests(unittest.TestCase):
    def assert_fields(self, text: str, expected: dict) -> None:
        parsed = text_parser.parse_intent_text(text)
        self.assertEqual({key: parsed.get(key) for key in expected}, expected, text)

    def test_kamino_lending_texts(self) -> None:
        cases = [
            (
                "kamino deposit 100 USDC and borrow 0.5 SOL",
                {
                    "intentType": "solana.lend.kamino.depositAndBorrow",
                    "protocol": "kamino",
                    "depositReserveMint": USDC_MINT,
                    "depositAmountUi": "100",
                    "borrowReserveMint": SOL_MINT,
                    "borrowAmountUi": "0.5",
                },
            ),
            (
                "kamino borrow 10 USDC after I deposit 1 SOL",
                {
                    "intentType": "solana.lend.kamino.depositAndBorrow",
                    "depositReserveMint": SOL_MINT,
                    "depositAmountUi": "1",
                    "borrowReserveMint": USDC_MINT,
                    "borrowAmountUi": "10",
                },
            ),
            (
                "kamino repay 5 USDC and withdraw 1 SOL",
                {
                    "intentType": "solana.lend.kamino.repayAndWithdraw",
                    "repayReserveMint": USDC_MINT,
                    "repayAmountUi": "5",
                    "withdrawReserveMint": SOL_MINT,
                    "withdrawAmountUi": "1",
                },
            ),
            (
                "solana.lend.kamino.depositAndBorrow depositMint=USDC depositAmount=100 borrowMint=SOL borrowAmountRaw=5000",
                {
                    "intentType": "solana.lend.kamino.depositAndBorrow",
                    "depositReserveMint": USDC_MINT,
                    "depositAmountUi": "100",
                    "borrowReserveMint": SOL_MINT,
                    "borrowAmountRaw": "5000",
                },
            ),
            (
                "deposit 100 USDC on kamino",
                {"intentType": "solana.lend.kamino.deposit", "reserveMint": USDC_MINT, "amountUi": "100"},
            ),
        ]
        for text, expected in cases:
            with self.subTest(text=text):
                self.assert_fields(text, expected)

    def test_stake_texts(self) -> None:
        cases = [
            (
                f"create stake account with 2 SOL and delegate to {VOTE}",
                {"intentType": "solana.stake.createAndDelegate", "amountSol": 2.0, "voteAccountAddress": VOTE},
            ),
            (
                f"delegate stake account {STAKE} to validator {VOTE}",
                {"intentType": "solana.stake.delegate", "stakeAccountAddress": STAKE, "voteAccountAddress": VOTE},
            ),
            (
                f"withdraw 1.5 SOL from stake account {STAKE} to {RECIPIENT}",
                {
                    "intentType": "solana.stake.withdraw",
                    "stakeAccountAddress": STAKE,
                    "toAddress": RECIPIENT,
                    "amountSol": 1.5,
                },
            ),
            (f"deactivate stake {STAKE}", {"intentType": "solana.stake.deactivate", "stakeAccountAddress": STAKE}),
        ]
        for text, expected in cases:
            with self.subTest(text=text):
                self.assert_fields(text, expected)

    def test_meteora_liquidity_texts(self) -> None:
        cases = [
            (
                f"add liquidity to meteora pool {POOL} x 10 USDC y 0.5 SOL strategy spot bins -5 to 5",
                {
                    "intentType": "solana.lp.meteora.add",
                    "poolAddress": POOL,
                    "totalXAmountUi": "10",
                    "tokenXMint": USDC_MINT,
                    "totalYAmountUi": "0.5",
                    "tokenYMint": SOL_MINT,
                    "strategyType": "Spot",
                    "minBinId": -5,
                    "maxBinId": 5,
                },
            ),
            (
                f"remove half of my meteora position {POSITION} in pool {POOL}",
                {
                    "intentType": "solana.lp.meteora.remove",
                    "positionAddress": POSITION,
                    "poolAddress": POOL,
                    "bps": 5000,
                },
            ),
            (
                f"withdraw 25% from dlmm pool {POOL} position {POSITION}",
                {"intentType": "solana.lp.meteora.remove", "poolAddress": POOL, "bps": 2500},
            ),
            (
                f"remove all liquidity from meteora position {POSITION} in pool {POOL}, claim and close",
                {"intentType": "solana.lp.meteora.remove", "bps": 10_000, "shouldClaimAndClose": True},
            ),
        ]
        for text, expected in cases:
            with self.subTest(text=text):
                self.assert_fields(text, expected)

    def test_orca_decrease_by_percent(self) -> None:
        cases = [
            (f"orca decrease liquidity by 30% on position {POSITION}", {"liquidityBps": 3000}),
            (f"orca decrease liquidity 12.5% slippage 1% position {POSITION}", {"liquidityBps": 1250, "slippageBps": 100}),
            (f"orca withdraw half liquidity position {POSITION}", {"liquidityBps": 5000}),
            (f"orca decrease liquidity liquidityBps=700 by 30% position {POSITION}", {"liquidityBps": 700}),
        ]
        for text, expected in cases:
            with self.subTest(text=text):
                self.assert_fields(
                    text, {"intentType": "solana.lp.orca.decrease", "positionMint": POSITION, **expected}
                )


class MergeParamsTests(unittest.TestCase):
    def test_explicit_params_override_parsed_fields(self) -> None:
        merged = text_parser.merge_intent_params(
            {"intentText": f"send 1.5 SOL to {RECIPIENT}", "amountSol": 2, "network": None}
        )
        self.assertEqual(merged["amountSol"], 2)
        self.assertEqual(merged["toAddress"], RECIPIENT)
        self.assertEqual(merged["intentType"], "solana.transfer.sol")
        self.assertNotIn("network", merged)

    def test_without_text_params_pass_through(self) -> None:
        params = {"intentType": "solana.read.balance", "address": RECIPIENT}
        self.assertEqual(text_parser.merge_intent_params(params), params)


class RunModeHintTests(unittest.TestCase):
    def test_hints(self) -> None:
        self.assertEqual(text_parser.parse_run_mode_hint("simulate this swap"), "simulate")
        self.assertEqual(text_parser.parse_run_mode_hint("analyze the transfer"), "analysis")
        self.assertEqual(text_parser.parse_run_mode_hint("execute the transfer"), "execute")
        self.assertEqual(text_parser.parse_run_mode_hint("先模拟，再确认执行"), "simulate")
        self.assertIsNone(text_parser.parse_run_mode_hint("send 1 SOL"))

    def test_explicit_mode_beats_hint(self) -> None:
        self.assertEqual(text_parser.resolve_run_mode("execute", "simulate first"), "execute")

    def test_missing_or_invalid_mode_falls_back_to_analysis(self) -> None:
        self.assertEqual(text_parser.resolve_run_mode(None, None), "analysis")
        self.assertEqual(text_parser.resolve_run_mode("broadcast", "simulate"), "analysis")
        self.assertEqual(text_parser.resolve_run_mode(None, "dry run please"), "simulate")


if __name__ == "__main__":
    unittest.main()
