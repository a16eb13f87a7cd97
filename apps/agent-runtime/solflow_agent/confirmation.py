"""Run ids and the mainnet confirmation gate."""

from __future__ import annotations

import hashlib
import json
import secrets
import time
from typing import Any

from .config import PRIMARY_NETWORK
from .errors import ApprovalGateError
from .intents import Intent

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def create_run_id() -> str:
    return f"w3rt_{_base36(int(time.time() * 1000))}_{secrets.token_hex(4)}"


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def derive_confirm_token(run_id: str, network: str, intent: Intent) -> str:
    """Deterministic binding of (runId, network, intent); not a secret."""
    payload = canonical_json({"runId": run_id, "network": network, "intent": intent.to_dict()})
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"SOL-{digest[:12].upper()}"


def is_approval_required(network: str, intent: Intent) -> bool:
    return network == PRIMARY_NETWORK and not intent.is_read


def enforce_approval(
    run_id: str,
    network: str,
    intent: Intent,
    confirm_mainnet: Any,
    confirm_token: Any,
) -> str | None:
    """Fail closed unless the caller re-supplies the token derived for this exact call.

    Returns the expected token, or None when no approval is required.
    """
    if not is_approval_required(network, intent):
        return None
    expected = derive_confirm_token(run_id, network, intent)
    if confirm_mainnet is not True:
        raise ApprovalGateError(
            f"Mainnet execute requires confirmMainnet=true for runId={run_id}. "
            "Run analysis/simulate first to obtain confirmToken.",
            action_hint="Re-run with confirmMainnet=true and the confirmToken from analysis.",
            details={"runId": run_id, "network": network, "confirmToken": expected},
        )
    provided = confirm_token if isinstance(confirm_token, str) and confirm_token else None
    if provided != expected:
        raise ApprovalGateError(
            f"Invalid confirmToken for runId={run_id}. expected={expected} provided={provided or 'null'}.",
            code="confirm_token_mismatch",
            action_hint="Use the confirmToken returned by analysis/simulate for this same runId and intent.",
            details={"runId": run_id, "expected": expected, "provided": provided},
        )
    return expected
