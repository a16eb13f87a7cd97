import pathlib
import re
import sys
import unittest

RUNTIME_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(RUNTIME_ROOT) not in sys.path:
    sys.path.insert(0, str(RUNTIME_ROOT))

from solflow_agent import confirmation, intents  # noqa: E402
from solflow_agent.base58 import b58encode  # noqa: E402
from solflow_agent.errors import ApprovalGateError  # noqa: E402

SIGNER = b58encode(bytes([1]) * 32)
OTHER = b58encode(bytes([2]) * 32)


def transfer(lamports: int = 1_000_000_000) -> intents.SolTransfer:
    return intents.SolTransfer(from_address=SIGNER, to_address=OTHER, amount_sol=lamports / 1e9, lamports=lamports)


class ConfirmTokenTests(unittest.TestCase):
    def test_token_is_deterministic_and_shaped(self) -> None:
        first = confirmation.derive_confirm_token("run-1", "mainnet-beta", transfer())
        second = confirmation.derive_confirm_token("run-1", "mainnet-beta", transfer())
        self.assertEqual(first, second)
        self.assertRegex(first, r"^SOL-[0-9A-F]{12}$")

    def test_token_binds_run_network_and_intent(self) -> None:
        base = confirmation.derive_confirm_token("run-1", "mainnet-beta", transfer())
        self.assertNotEqual(base, confirmation.derive_confirm_token("run-2", "mainnet-beta", transfer()))
        self.assertNotEqual(base, confirmation.derive_confirm_token("run-1", "devnet", transfer()))
        self.assertNotEqual(base, confirmation.derive_confirm_token("run-1", "mainnet-beta", transfer(2)))

    def test_canonical_json_sorts_keys(self) -> None:
        self.assertEqual(confirmation.canonical_json({"b": 1, "a": [1, 2]}), '{"a":[1,2],"b":1}')

    def test_run_id_shape(self) -> None:
        run_id = confirmation.create_run_id()
        self.assertTrue(re.fullmatch(r"w3rt_[0-9a-z]+_[0-9a-f]{8}", run_id))
        self.assertNotEqual(run_id, confirmation.create_run_id())


class ApprovalGateTests(unittest.TestCase):
    def test_only_mainnet_writes_need_approval(self) -> None:
        self.assertTrue(confirmation.is_approval_required("mainnet-beta", transfer()))
        self.assertFalse(confirmation.is_approval_required("devnet", transfer()))
        self.assertFalse(confirmation.is_approval_required("mainnet-beta", intents.BalanceRead(address=SIGNER)))

    def test_missing_confirm_flag_fails_closed(self) -> None:
        with self.assertRaises(ApprovalGateError) as ctx:
            confirmation.enforce_approval("run-1", "mainnet-beta", transfer(), None, None)
        self.assertIn("confirmMainnet=true", str(ctx.exception))
        self.assertEqual(ctx.exception.code, "approval_required")

    def test_confirm_flag_must_be_boolean_true(self) -> None:
        token = confirmation.derive_confirm_token("run-1", "mainnet-beta", transfer())
        with self.assertRaises(ApprovalGateError):
            confirmation.enforce_approval("run-1", "mainnet-beta", transfer(), "true", token)

    def test_token_mismatch(self) -> None:
        with self.assertRaises(ApprovalGateError) as ctx:
            confirmation.enforce_approval("run-1", "mainnet-beta", transfer(), True, "SOL-000000000000")
        self.assertEqual(ctx.exception.code, "confirm_token_mismatch")
        self.assertEqual(ctx.exception.details["provided"], "SOL-000000000000")

    def test_token_from_changed_intent_is_rejected(self) -> None:
        stale = confirmation.derive_confirm_token("run-1", "mainnet-beta", transfer())
        with self.assertRaises(ApprovalGateError):
            confirmation.enforce_approval("run-1", "mainnet-beta", transfer(5), True, stale)

    def test_matching_token_passes(self) -> None:
        token = confirmation.derive_confirm_token("run-1", "mainnet-beta", transfer())
        self.assertEqual(confirmation.enforce_approval("run-1", "mainnet-beta", transfer(), True, token), token)
        self.assertIsNone(confirmation.enforce_approval("run-1", "devnet", transfer(), None, None))


if __name__ == "__main__":
    unittest.main()
