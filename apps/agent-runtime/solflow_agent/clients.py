"""HTTP collaborators: Solana JSON-RPC, Jupiter token search and Jupiter swap routing."""

from __future__ import annotations

import base64
import json
import logging
import secrets
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Mapping

from . import config
from .errors import CollaboratorError
from .pipeline import BuildContext, BuildResult, decode_wire_transaction

logger = logging.getLogger(__name__)

USER_AGENT = "solflow-agent-runtime/1.0"
COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}
CONFIRM_POLL_SEC = 1.0
CONFIRM_TIMEOUT_SEC = 90
JUPITER_PRIORITY_LEVELS = ("medium", "high", "veryHigh", "unsafeMax")
DEFAULT_PRIORITY_MAX_LAMPORTS = 5_000_000


def _http_json_request(
    method: str,
    url: str,
    payload: Any = None,
    headers: Mapping[str, str] | None = None,
    timeout_sec: int = config.DEFAULT_RPC_TIMEOUT_SEC,
) -> tuple[int, Any]:
    request_headers: dict[str, str] = {"Accept": "application/json", "User-Agent": USER_AGENT}
    request_headers.update(headers or {})
    raw_data: bytes | None = None
    if payload is not None:
        raw_data = json.dumps(payload).encode("utf-8")
        request_headers["Content-Type"] = "application/json"

    request = urllib.request.Request(url=url, data=raw_data, headers=request_headers, method=method.upper())
    try:
        with urllib.request.urlopen(request, timeout=timeout_sec) as response:
            body = response.read().decode("utf-8")
            try:
                return int(response.status), json.loads(body) if body else {}
            except json.JSONDecodeError as exc:
                raise CollaboratorError(f"Unexpected non-JSON response from {url}: {body[:200]}") from exc
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8") if exc.fp else ""
        try:
            parsed = json.loads(body) if body else {}
        except json.JSONDecodeError:
            parsed = {"message": body or str(exc)}
        return int(exc.code), parsed
    except urllib.error.URLError as exc:
        raise CollaboratorError(f"HTTP request failed: {exc.reason}", details={"url": url}) from exc


class SolanaRpcClient:
    def __init__(self, endpoint: str, timeout_sec: int | None = None):
        self.endpoint = endpoint
        self.timeout_sec = timeout_sec or config.rpc_timeout_sec()

    @classmethod
    def for_network(cls, network: str) -> "SolanaRpcClient":
        return cls(config.rpc_endpoint(network))

    def _call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": secrets.token_hex(4), "method": method, "params": params}
        status, body = _http_json_request("POST", self.endpoint, payload, timeout_sec=self.timeout_sec)
        if status < 200 or status >= 300:
            raise CollaboratorError(f"RPC {method} failed with HTTP {status}", details={"status": status, "body": body})
        if not isinstance(body, dict):
            raise CollaboratorError(f"RPC {method} returned a non-object payload")
        error = body.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise CollaboratorError(f"RPC {method} error: {message}", details={"error": error})
        return body.get("result")

    def _value(self, method: str, params: list[Any]) -> Any:
        result = self._call(method, params)
        return result.get("value") if isinstance(result, dict) else None

    def get_balance(self, address: str, commitment: str | None = None) -> int:
        value = self._value("getBalance", [address, {"commitment": config.parse_commitment(commitment)}])
        if not isinstance(value, int):
            raise CollaboratorError(f"getBalance returned no lamports for {address}")
        return value

    def get_parsed_token_accounts_by_owner(self, owner: str, program_id: str) -> list[dict[str, Any]]:
        value = self._value(
            "getTokenAccountsByOwner", [owner, {"programId": program_id}, {"encoding": "jsonParsed"}]
        )
        return value if isinstance(value, list) else []

    def get_parsed_account_info(self, address: str) -> dict[str, Any] | None:
        value = self._value("getAccountInfo", [address, {"encoding": "jsonParsed"}])
        return value if isinstance(value, dict) else None

    def get_latest_blockhash(self, commitment: str | None = None) -> dict[str, Any]:
        value = self._value("getLatestBlockhash", [{"commitment": config.parse_commitment(commitment)}])
        if not isinstance(value, dict):
            raise CollaboratorError("getLatestBlockhash returned no value")
        return value

    def simulate_transaction(self, wire: bytes, commitment: str | None = None) -> dict[str, Any]:
        encoded = base64.b64encode(wire).decode("ascii")
        value = self._value(
            "simulateTransaction",
            [encoded, {"encoding": "base64", "commitment": config.parse_commitment(commitment)}],
        )
        if not isinstance(value, dict):
            raise CollaboratorError("simulateTransaction returned no value")
        return value

    def send_raw_transaction(self, wire: bytes, skip_preflight: bool = False, max_retries: int | None = None) -> str:
        options: dict[str, Any] = {"encoding": "base64", "skipPreflight": skip_preflight}
        if max_retries is not None:
            options["maxRetries"] = max_retries
        signature = self._call("sendTransaction", [base64.b64encode(wire).decode("ascii"), options])
        if not isinstance(signature, str) or not signature:
            raise CollaboratorError("sendTransaction returned no signature")
        return signature

    def confirm_transaction(
        self, signature: str, blockhash: str, last_valid_block_height: int | None, commitment: str | None = None
    ) -> dict[str, Any]:
        """Poll signature status until ``commitment`` is reached or the blockhash expires."""
        target = COMMITMENT_RANK[config.parse_finality(commitment)]
        deadline = time.monotonic() + CONFIRM_TIMEOUT_SEC
        while time.monotonic() < deadline:
            statuses = self._value("getSignatureStatuses", [[signature], {"searchTransactionHistory": False}])
            status = statuses[0] if isinstance(statuses, list) and statuses else None
            if isinstance(status, dict):
                if status.get("err"):
                    return {"err": status["err"]}
                reached = COMMITMENT_RANK.get(str(status.get("confirmationStatus")), -1)
                if reached >= target:
                    return {"err": None, "slot": status.get("slot")}
            if last_valid_block_height is not None:
                height = self._call("getBlockHeight", [{"commitment": "confirmed"}])
                if isinstance(height, int) and height > last_valid_block_height:
                    raise CollaboratorError(
                        f"Signature {signature} has expired: block height exceeded.",
                        details={"signature": signature, "blockhash": blockhash},
                    )
            time.sleep(CONFIRM_POLL_SEC)
        raise CollaboratorError(
            f"Timed out waiting for confirmation of {signature}.", details={"signature": signature}
        )

    def get_parsed_program_accounts(self, program_id: str, filters: list[dict[str, Any]]) -> list[dict[str, Any]]:
        result = self._call("getProgramAccounts", [program_id, {"encoding": "jsonParsed", "filters": filters}])
        return result if isinstance(result, list) else []


class JupiterClient:
    """Jupiter REST API; keyless calls against api.jup.ag retry once on lite-api after a 401."""

    def __init__(self, base_url: str | None = None, api_key: str | None = None, timeout_sec: int | None = None):
        self.base_url = base_url or config.jupiter_api_base_url()
        self.api_key = api_key if api_key is not None else config.jupiter_api_key()
        self.timeout_sec = timeout_sec or config.rpc_timeout_sec()

    def request(self, method: str, path: str, query: Mapping[str, Any] | None = None, body: Any = None) -> Any:
        encoded = urllib.parse.urlencode(query or {})
        suffix = f"{path}?{encoded}" if encoded else path
        headers = {"x-api-key": self.api_key} if self.api_key else {}
        status, payload = _http_json_request(method, f"{self.base_url}{suffix}", body, headers, self.timeout_sec)
        if status == 401 and not self.api_key and self.base_url == config.JUPITER_PUBLIC_BASE_URL:
            logger.debug("Jupiter 401 without API key; retrying %s on lite API", path)
            status, payload = _http_json_request(
                method, f"{config.JUPITER_LITE_BASE_URL}{suffix}", body, None, self.timeout_sec
            )
        if status < 200 or status >= 300:
            raise CollaboratorError(
                f"Jupiter {path} failed with HTTP {status}", details={"status": status, "body": payload}
            )
        return payload


class JupiterTokenIndex:
    def __init__(self, client: JupiterClient | None = None):
        self.client = client or JupiterClient(timeout_sec=config.token_index_timeout_sec())

    def search(self, symbol: str, query_key: str) -> Any:
        return self.client.request("GET", "/tokens/v1/search", {query_key: symbol})


def _query_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(value) if value else None
    return value


def _priority_fee(options: Mapping[str, Any]) -> dict[str, Any] | None:
    if isinstance(options.get("jitoTipLamports"), int):
        return {"jitoTipLamports": options["jitoTipLamports"]}
    level = options.get("priorityLevel")
    max_lamports = options.get("priorityMaxLamports")
    return {
        "priorityLevelWithMaxLamports": {
            "maxLamports": max_lamports if isinstance(max_lamports, int) else DEFAULT_PRIORITY_MAX_LAMPORTS,
            "global": options.get("priorityGlobal") is True,
            "priorityLevel": level if level in JUPITER_PRIORITY_LEVELS else "veryHigh",
        }
    }


class JupiterSwapRouter:
    def __init__(self, client: JupiterClient | None = None):
        self.client = client or JupiterClient()

    def quote(self, request: dict[str, Any]) -> dict[str, Any]:
        query = {key: _query_value(value) for key, value in request.items()}
        payload = self.client.request("GET", "/swap/v1/quote", {k: v for k, v in query.items() if v is not None})
        if not isinstance(payload, dict):
            raise CollaboratorError("Jupiter quote returned a non-object payload")
        return payload

    def build_swap(self, quote: dict[str, Any], ctx: BuildContext, options: Mapping[str, Any]) -> BuildResult:
        body: dict[str, Any] = {
            "userPublicKey": ctx.signer,
            "quoteResponse": quote,
            "dynamicComputeUnitLimit": options.get("dynamicComputeUnitLimit") is not False,
            "prioritizationFeeLamports": _priority_fee(options),
        }
        for key in ("wrapAndUnwrapSol", "useSharedAccounts", "skipUserAccountsRpcCalls"):
            if isinstance(options.get(key), bool):
                body[key] = options[key]
        as_legacy = getattr(ctx.intent, "as_legacy_transaction", None)
        if isinstance(as_legacy, bool):
            body["asLegacyTransaction"] = as_legacy
        for key in ("destinationTokenAccount", "trackingAccount", "feeAccount"):
            if isinstance(options.get(key), str):
                body[key] = options[key]
        payload = self.client.request("POST", "/swap/v1/swap", body=body)
        encoded = payload.get("swapTransaction") if isinstance(payload, dict) else None
        if not isinstance(encoded, str) or not encoded:
            raise CollaboratorError("Jupiter swap response missing swapTransaction")
        try:
            tx = decode_wire_transaction(base64.b64decode(encoded))
        except ValueError as exc:
            raise CollaboratorError(f"Jupiter swapTransaction is malformed: {exc}") from exc
        return BuildResult(transactions=[tx], metadata={"swapResponse": payload, "jupiterBaseUrl": self.client.base_url})
