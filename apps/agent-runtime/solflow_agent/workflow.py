"""Staged workflow controller: analysis, simulate, execute.

Each call ends in exactly one terminal state. ``analysis`` resolves the
intent and returns the plan and confirm token. ``simulate`` adds a dry run
(or the read itself). ``execute`` adds the approval gate, the simulation
gate and sequential submission. Nothing is persisted between calls; a run
is resumed by re-supplying the same ``runId``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from . import config
from .confirmation import create_run_id, derive_confirm_token, enforce_approval, is_approval_required
from .errors import SimulationFailedError
from .intents import Intent
from .pipeline import PreparedTransactionSet, TransactionPipeline, TransactionSigner
from .reads import ReadService
from .resolver import IntentResolver
from .text_parser import keyword_categories, resolve_run_mode

logger = logging.getLogger(__name__)

SignerFactory = Callable[[Any], TransactionSigner]

READ_PLAN = ("read:fetch", "respond:result")
TX_PLAN = ("simulate:transaction", "approval:policy", "execute:broadcast", "monitor:confirm")


def build_plan(intent: Intent) -> list[str]:
    return [f"analysis:{intent.type}", *(READ_PLAN if intent.is_read else TX_PLAN)]


def ambiguous_keywords(intent_text: Any) -> list[str]:
    """Three or more co-occurring keyword categories have no fixed precedence."""
    if not isinstance(intent_text, str) or not intent_text.strip():
        return []
    categories = keyword_categories(intent_text)
    return categories if len(categories) >= 3 else []


def _simulate_artifact(prepared: PreparedTransactionSet) -> dict[str, Any]:
    return {
        "stage": "simulate",
        "ok": prepared.ok,
        "err": prepared.err,
        "logs": prepared.logs,
        "unitsConsumed": prepared.units_consumed,
        "version": prepared.version,
        "context": prepared.context,
    }


class WorkflowController:
    def __init__(
        self,
        resolver: IntentResolver,
        pipeline: TransactionPipeline,
        reads: ReadService,
        signer_factory: SignerFactory,
    ):
        self.resolver = resolver
        self.pipeline = pipeline
        self.reads = reads
        self.signer_factory = signer_factory

    def run(self, params: dict[str, Any]) -> dict[str, Any]:
        run_id = params.get("runId") if isinstance(params.get("runId"), str) and params["runId"].strip() else None
        run_id = run_id.strip() if run_id else create_run_id()
        run_mode = resolve_run_mode(params.get("runMode"), params.get("intentText"))
        network = config.parse_network(params.get("network"))
        signer = self.signer_factory(params.get("fromSecretKey"))

        intent = self.resolver.resolve(params, signer.public_key, network, run_id)
        approval_required = is_approval_required(network, intent)
        confirm_token = derive_confirm_token(run_id, network, intent) if approval_required else None
        token_text = confirm_token or "N/A"
        logger.info("workflow analysis runId=%s type=%s mode=%s network=%s", run_id, intent.type, run_mode, network)
        ambiguous = ambiguous_keywords(params.get("intentText"))
        if ambiguous:
            logger.warning("intent text mixes keyword categories runId=%s categories=%s", run_id, ",".join(ambiguous))

        artifacts: dict[str, Any] = {
            "analysis": {
                "stage": "analysis",
                "intent": intent.to_dict(),
                "plan": build_plan(intent),
                "signer": signer.public_key,
                "network": network,
                "runMode": run_mode,
                "ambiguousKeywords": ambiguous,
            },
            "simulate": None,
            "approval": {
                "stage": "approval",
                "required": approval_required,
                "runId": run_id,
                "confirmToken": confirm_token,
                "confirmMainnet": params.get("confirmMainnet") is True,
                "providedConfirmToken": params.get("confirmToken") or None,
            },
            "execute": None,
            "monitor": None,
        }

        def result(status: str, *summary: str) -> dict[str, Any]:
            logger.info("workflow %s runId=%s type=%s", status, run_id, intent.type)
            return {
                "runId": run_id,
                "intentType": intent.type,
                "runMode": run_mode,
                "network": network,
                "status": status,
                "summary": "\n".join(summary),
                "artifacts": artifacts,
            }

        if run_mode == "analysis":
            return result(
                "analysis",
                f"Workflow analyzed: {intent.type}",
                f"runId={run_id} approvalRequired={str(approval_required).lower()} confirmToken={token_text}",
            )

        if intent.is_read:
            logger.info("workflow read runId=%s type=%s", run_id, intent.type)
            read = self.reads.execute(network, intent)
            artifacts["simulate"] = {
                "stage": "simulate",
                "ok": True,
                "err": None,
                "logs": [],
                "unitsConsumed": None,
                "version": None,
                "context": read["details"],
            }
            if run_mode == "simulate":
                return result(
                    "simulated",
                    f"Workflow read simulation: {read['summary']}",
                    f"runId={run_id} approvalRequired=false confirmToken=N/A",
                )
            artifacts["approval"]["approved"] = True
            artifacts["execute"] = {
                "stage": "execute",
                "read": True,
                "guardChecks": {
                    "readOnly": True,
                    "approvalRequired": False,
                    "confirmMainnetRequired": False,
                    "confirmTokenRequired": False,
                },
                "result": read["details"],
            }
            return result("executed", f"Workflow read executed: {read['summary']}", f"runId={run_id}")

        if run_mode == "execute":
            enforce_approval(run_id, network, intent, params.get("confirmMainnet"), params.get("confirmToken"))

        logger.info("workflow simulate runId=%s type=%s", run_id, intent.type)
        prepared = self.pipeline.prepare(network, signer, intent, params)
        artifacts["simulate"] = _simulate_artifact(prepared)
        if run_mode == "simulate":
            return result(
                "simulated",
                f"Workflow simulation {'succeeded' if prepared.ok else 'failed'}",
                f"runId={run_id} approvalRequired={str(approval_required).lower()} confirmToken={token_text}",
            )

        if not prepared.ok:
            raise SimulationFailedError(
                f"Simulation failed for runId={run_id}; execution blocked by workflow policy",
                details={"runId": run_id, "err": prepared.err, "logs": prepared.logs},
            )

        logger.info("workflow execute runId=%s type=%s txCount=%d", run_id, intent.type, len(prepared.transactions))
        submitted = self.pipeline.submit(network, prepared, params)
        artifacts["approval"]["approved"] = True
        artifacts["execute"] = {
            "stage": "execute",
            "signature": submitted.signature,
            "signatures": submitted.signatures,
            "confirmed": submitted.confirmed,
            "version": prepared.version,
            "guardChecks": {
                "approvalRequired": approval_required,
                "confirmMainnetProvided": params.get("confirmMainnet") is True,
                "confirmTokenMatched": (not approval_required) or params.get("confirmToken") == confirm_token,
                "simulationOk": prepared.ok,
            },
        }
        artifacts["monitor"] = {
            "stage": "monitor",
            "signature": submitted.signature,
            "explorer": config.explorer_tx_url(submitted.signature, network),
            "signerExplorer": config.explorer_address_url(signer.public_key, network),
        }
        return result("executed", f"Workflow executed: {submitted.signature}", f"runId={run_id}")
