import base64
import dataclasses
import pathlib
import sys
import unittest
from unittest import mock

RUNTIME_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(RUNTIME_ROOT) not in sys.path:
    sys.path.insert(0, str(RUNTIME_ROOT))

from solflow_agent import clients, config, intents  # noqa: E402
from solflow_agent.base58 import b58encode  # noqa: E402
from solflow_agent.errors import CollaboratorError  # noqa: E402
from solflow_agent.pipeline import BuildContext, encode_shortvec  # noqa: E402

SIGNER_BYTES = bytes([1]) * 32
SIGNER = b58encode(SIGNER_BYTES)


def rpc_dispatch(results: dict):
    def fake(method, url, payload=None, headers=None, timeout_sec=None):
        value = results[payload["method"]]
        if isinstance(value, list) and value and callable(value[0]):
            value = value.pop(0)()
        return 200, {"jsonrpc": "2.0", "id": payload["id"], "result": value}

    return fake


class SolanaRpcClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = clients.SolanaRpcClient("http://rpc.local", timeout_sec=5)

    def test_get_balance_and_params(self) -> None:
        with mock.patch.object(clients, "_http_json_request", return_value=(200, {"result": {"value": 42}})) as req:
            self.assertEqual(self.client.get_balance(SIGNER, "finalized"), 42)
        payload = req.call_args.args[2]
        self.assertEqual(payload["method"], "getBalance")
        self.assertEqual(payload["params"], [SIGNER, {"commitment": "finalized"}])

    def test_rpc_error_raises(self) -> None:
        body = {"error": {"code": -32602, "message": "invalid param"}}
        with mock.patch.object(clients, "_http_json_request", return_value=(200, body)):
            with self.assertRaises(CollaboratorError) as ctx:
                self.client.get_latest_blockhash()
        self.assertIn("invalid param", str(ctx.exception))
        with mock.patch.object(clients, "_http_json_request", return_value=(503, {})):
            with self.assertRaises(CollaboratorError):
                self.client.get_balance(SIGNER)

    def test_simulate_sends_base64(self) -> None:
        response = {"result": {"value": {"err": None, "logs": ["ok"], "unitsConsumed": 7}}}
        with mock.patch.object(clients, "_http_json_request", return_value=(200, response)) as req:
            value = self.client.simulate_transaction(b"\x01\x02", "confirmed")
        self.assertEqual(value["unitsConsumed"], 7)
        encoded, options = req.call_args.args[2]["params"]
        self.assertEqual(encoded, base64.b64encode(b"\x01\x02").decode("ascii"))
        self.assertEqual(options["encoding"], "base64")

    def test_confirm_polls_until_commitment(self) -> None:
        statuses = [
            lambda: {"value": [{"confirmationStatus": "processed"}]},
            lambda: {"value": [{"confirmationStatus": "confirmed", "slot": 9, "err": None}]},
        ]
        fake = rpc_dispatch({"getSignatureStatuses": statuses, "getBlockHeight": 10})
        with mock.patch.object(clients, "_http_json_request", side_effect=fake), mock.patch.object(
            clients.time, "sleep"
        ) as sleep:
            result = self.client.confirm_transaction("sig", "hash", 100, "confirmed")
        self.assertEqual(result, {"err": None, "slot": 9})
        sleep.assert_called_once()

    def test_confirm_returns_onchain_error(self) -> None:
        statuses = [lambda: {"value": [{"confirmationStatus": "confirmed", "err": {"InstructionError": [0, "x"]}}]}]
        fake = rpc_dispatch({"getSignatureStatuses": statuses})
        with mock.patch.object(clients, "_http_json_request", side_effect=fake):
            result = self.client.confirm_transaction("sig", "hash", None)
        self.assertEqual(result["err"], {"InstructionError": [0, "x"]})

    def test_confirm_gives_up_after_blockhash_expiry(self) -> None:
        fake = rpc_dispatch({"getSignatureStatuses": {"value": [None]}, "getBlockHeight": 101})
        with mock.patch.object(clients, "_http_json_request", side_effect=fake), mock.patch.object(clients.time, "sleep"):
            with self.assertRaises(CollaboratorError) as ctx:
                self.client.confirm_transaction("sig", "hash", 100)
        self.assertIn("expired", str(ctx.exception))


class JupiterClientTests(unittest.TestCase):
    def test_keyless_401_retries_on_lite_api(self) -> None:
        client = clients.JupiterClient(base_url=config.JUPITER_PUBLIC_BASE_URL, api_key="", timeout_sec=3)
        responses = [(401, {"message": "unauthorized"}), (200, {"ok": True})]
        with mock.patch.object(clients, "_http_json_request", side_effect=responses) as req:
            self.assertEqual(client.request("GET", "/swap/v1/quote", {"amount": "1"}), {"ok": True})
        urls = [c.args[1] for c in req.call_args_list]
        self.assertEqual(
            urls,
            [
                f"{config.JUPITER_PUBLIC_BASE_URL}/swap/v1/quote?amount=1",
                f"{config.JUPITER_LITE_BASE_URL}/swap/v1/quote?amount=1",
            ],
        )

    def test_api_key_header_and_http_error(self) -> None:
        client = clients.JupiterClient(base_url="https://jup.local", api_key="k", timeout_sec=3)
        with mock.patch.object(clients, "_http_json_request", return_value=(429, {"message": "slow down"})) as req:
            with self.assertRaises(CollaboratorError) as ctx:
                client.request("GET", "/tokens/v1/search", {"query": "JUP"})
        self.assertEqual(req.call_args.args[3], {"x-api-key": "k"})
        self.assertEqual(ctx.exception.details["status"], 429)


class JupiterSwapRouterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = mock.Mock()
        self.client.base_url = "https://jup.local"
        self.router = clients.JupiterSwapRouter(self.client)
        self.ctx = BuildContext(
            network="mainnet-beta", signer=SIGNER, blockhash="hash", last_valid_block_height=1, commitment="confirmed"
        )

    def test_quote_query_encoding(self) -> None:
        self.client.request.return_value = {"outAmount": "5"}
        self.router.quote(
            {"inputMint": "a", "onlyDirectRoutes": True, "dexes": ["Orca V2", "Orca Whirlpool"], "maxAccounts": None}
        )
        method, path, query = self.client.request.call_args.args
        self.assertEqual((method, path), ("GET", "/swap/v1/quote"))
        self.assertEqual(query, {"inputMint": "a", "onlyDirectRoutes": "true", "dexes": "Orca V2,Orca Whirlpool"})

    def test_build_swap_decodes_returned_transaction(self) -> None:
        message = bytes([1, 0, 1]) + encode_shortvec(2) + SIGNER_BYTES + bytes([9]) * 32 + bytes(32) + b"\x00"
        wire = encode_shortvec(1) + bytes(64) + b"\x80" + message
        self.client.request.return_value = {"swapTransaction": base64.b64encode(wire).decode("ascii")}

        result = self.router.build_swap({"outAmount": "5"}, self.ctx, {"priorityLevel": "high", "wrapAndUnwrapSol": False})

        tx = result.transactions[0]
        self.assertEqual(tx.version, "v0")
        self.assertEqual(tx.required_signers, (SIGNER,))
        body = self.client.request.call_args.kwargs["body"]
        self.assertEqual(body["userPublicKey"], SIGNER)
        self.assertFalse(body["wrapAndUnwrapSol"])
        self.assertEqual(body["prioritizationFeeLamports"]["priorityLevelWithMaxLamports"]["priorityLevel"], "high")
        self.assertEqual(result.metadata["jupiterBaseUrl"], "https://jup.local")

    def test_legacy_flag_follows_the_intent_not_raw_options(self) -> None:
        message = bytes([1, 0, 1]) + encode_shortvec(2) + SIGNER_BYTES + bytes([9]) * 32 + bytes(32) + b"\x00"
        wire = encode_shortvec(1) + bytes(64) + message
        self.client.request.return_value = {"swapTransaction": base64.b64encode(wire).decode("ascii")}
        intent = intents.JupiterSwap(
            user_public_key=SIGNER, input_mint="a", output_mint="b", amount_raw="1", as_legacy_transaction=True
        )

        self.router.build_swap({}, dataclasses.replace(self.ctx, intent=intent), {"asLegacyTransaction": False})
        self.assertIs(self.client.request.call_args.kwargs["body"]["asLegacyTransaction"], True)

        self.router.build_swap({}, self.ctx, {"asLegacyTransaction": True})
        self.assertNotIn("asLegacyTransaction", self.client.request.call_args.kwargs["body"])

    def test_missing_swap_transaction(self) -> None:
        self.client.request.return_value = {"error": "no route"}
        with self.assertRaises(CollaboratorError) as ctx:
            self.router.build_swap({}, self.ctx, {})
        self.assertEqual(str(ctx.exception), "Jupiter swap response missing swapTransaction")


if __name__ == "__main__":
    unittest.main()
