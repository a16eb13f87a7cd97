#!/usr/bin/env python3
"""solflow agent runtime CLI.

Every command prints exactly one compact JSON object on stdout. Logging goes
to stderr so the JSON line stays machine-readable.
"""

from __future__ import annotations

import argparse
import getpass
import importlib
import json
import logging
import os
import pathlib
import sys
from typing import Any, Callable

from . import config, keystore
from .clients import JupiterSwapRouter, JupiterTokenIndex, SolanaRpcClient
from .errors import WalletPassphraseError, WalletSecurityError, WalletStoreError, WorkflowError
from .pipeline import BuilderRegistry, TransactionPipeline
from .reads import ReadService
from .resolver import IntentResolver
from .text_parser import keyword_categories, parse_intent_text, resolve_run_mode
from .tokens import TokenCache, TokenResolver
from .workflow import WorkflowController

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# One cache per process; entries are append-only.
TOKEN_CACHE = TokenCache()


def emit(payload: dict) -> int:
    print(json.dumps(payload, separators=(",", ":")))
    return 0


def ok(message: str, **extra: object) -> int:
    payload = {"ok": True, "code": "ok", "message": message}
    payload.update(extra)
    return emit(payload)


def fail(code: str, message: str, action_hint: str | None = None, details: dict | None = None, exit_code: int = 1) -> int:
    payload: dict[str, object] = {"ok": False, "code": code, "message": message}
    if action_hint:
        payload["actionHint"] = action_hint
    if details:
        payload["details"] = details
    emit(payload)
    return exit_code


def require_json_flag(args: argparse.Namespace) -> int | None:
    if getattr(args, "json", False):
        return None
    return fail("missing_flag", "This command requires --json output mode.", "Re-run with --json.", exit_code=2)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format=LOG_FORMAT, stream=sys.stderr)


def load_collaborators(network: str, rpc: SolanaRpcClient) -> dict[str, Any]:
    """Call the ``SOLFLOW_BUILDERS`` factory (``module:callable``).

    The factory receives ``(network, rpc)`` and returns a mapping with
    ``builders`` (family -> InstructionBuilder) and optionally ``positions``
    and ``swapRouter``.
    """
    path = config.builders_factory_path()
    if path is None:
        return {}
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise WorkflowError("SOLFLOW_BUILDERS must look like module:factory.", code="invalid_config")
    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as exc:
        raise WorkflowError(f"Cannot load SOLFLOW_BUILDERS={path}: {exc}", code="invalid_config") from exc
    collaborators = factory(network, rpc)
    if not isinstance(collaborators, dict):
        raise WorkflowError("SOLFLOW_BUILDERS factory must return a dict.", code="invalid_config")
    return collaborators


def build_controller(network: str) -> WorkflowController:
    rpc = SolanaRpcClient.for_network(network)
    collaborators = load_collaborators(network, rpc)
    positions = collaborators.get("positions")
    registry = BuilderRegistry(collaborators.get("builders"), collaborators.get("swapRouter") or JupiterSwapRouter())
    tokens = TokenResolver(TOKEN_CACHE, rpc=rpc, index=JupiterTokenIndex())
    return WorkflowController(
        resolver=IntentResolver(tokens, positions),
        pipeline=TransactionPipeline(rpc, registry, positions),
        reads=ReadService(rpc, positions),
        signer_factory=keystore.resolve_signer,
    )


def _load_params(args: argparse.Namespace) -> dict[str, Any]:
    if args.params_file:
        raw = pathlib.Path(args.params_file).read_text(encoding="utf-8")
    elif args.params_json:
        raw = args.params_json
    else:
        raise ValueError("Provide --params-json or --params-file.")
    params = json.loads(raw)
    if not isinstance(params, dict):
        raise ValueError("Workflow params must be a JSON object.")
    return params


def cmd_run(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    configure_logging(args.verbose)
    try:
        params = _load_params(args)
    except (OSError, ValueError) as exc:
        return fail("invalid_input", str(exc), "Pass a JSON object of workflow params.", exit_code=2)

    try:
        network = config.parse_network(params.get("network"))
        result = build_controller(network).run(params)
        return ok(result["summary"].splitlines()[0], **result)
    except WorkflowError as exc:
        return fail(exc.code, str(exc), exc.action_hint, exc.details, exit_code=1)
    except WalletPassphraseError as exc:
        return fail("non_interactive", str(exc), "Set SOLFLOW_WALLET_PASSPHRASE or run with TTY attached.", exit_code=2)
    except WalletSecurityError as exc:
        return fail("unsafe_permissions", str(exc), "Restrict permissions to owner-only (0700/0600) and retry.", exit_code=1)
    except WalletStoreError as exc:
        return fail("signer_unavailable", str(exc), "Configure a signer (fromSecretKey, SOLANA_SECRET_KEY or wallet create).", exit_code=1)
    except Exception as exc:
        logger.debug("workflow run failed", exc_info=True)
        return fail("workflow_failed", str(exc), "Inspect workflow params and runtime configuration, then retry.", exit_code=1)


def cmd_parse(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    return ok(
        "Intent text parsed.",
        fields=parse_intent_text(args.text),
        runMode=resolve_run_mode(None, args.text),
        keywordCategories=keyword_categories(args.text),
    )


def _import_secret_input() -> str:
    env_secret = (os.environ.get("SOLFLOW_WALLET_IMPORT_SECRET_KEY") or "").strip()
    if env_secret:
        return env_secret
    if not (sys.stdin.isatty() and sys.stderr.isatty()):
        raise WalletPassphraseError("wallet import requires SOLFLOW_WALLET_IMPORT_SECRET_KEY in non-interactive mode.")
    return getpass.getpass("Secret key (base58 or JSON array): ")


def _store_new_signer(make_signer: Callable[[], keystore.Ed25519Signer], label: str) -> int:
    try:
        existing = keystore.load_keystore()
        if existing is not None:
            return fail(
                "wallet_exists",
                "Keystore already holds a signer.",
                "Use wallet address/health or wallet remove before creating again.",
                {"address": existing.get("address")},
                exit_code=1,
            )
        signer = make_signer()
        passphrase = keystore.new_passphrase()
        entry = keystore.save_keystore(signer, passphrase)
        return ok(f"Wallet {label}.", address=entry["address"], **{label: True})
    except WalletPassphraseError as exc:
        return fail("non_interactive", str(exc), "Set SOLFLOW_WALLET_PASSPHRASE or run with TTY attached.", exit_code=2)
    except ValueError as exc:
        return fail("invalid_input", str(exc), "Provide matching non-empty passphrase values.", exit_code=2)
    except WalletSecurityError as exc:
        return fail("unsafe_permissions", str(exc), "Restrict permissions to owner-only (0700/0600) and retry.", exit_code=1)
    except WalletStoreError as exc:
        return fail("wallet_store_invalid", str(exc), "Repair or remove the keystore and retry.", exit_code=1)


def cmd_wallet_create(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    return _store_new_signer(keystore.Ed25519Signer.generate, "created")


def cmd_wallet_import(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    try:
        seed = keystore.parse_secret_key(_import_secret_input())
    except WalletPassphraseError as exc:
        return fail(
            "non_interactive",
            str(exc),
            "Set SOLFLOW_WALLET_IMPORT_SECRET_KEY/SOLFLOW_WALLET_PASSPHRASE or run with TTY attached.",
            exit_code=2,
        )
    except WalletStoreError as exc:
        return fail("invalid_input", str(exc), "Provide a base58 or JSON-array Solana secret key.", exit_code=2)
    return _store_new_signer(lambda: keystore.Ed25519Signer(seed), "imported")


def cmd_wallet_address(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    try:
        entry = keystore.load_keystore()
    except (WalletStoreError, WalletSecurityError) as exc:
        return fail("wallet_store_invalid", str(exc), "Repair or remove the keystore and retry.", exit_code=1)
    if entry is None:
        return fail("wallet_missing", "No keystore signer configured.", "Run wallet create or wallet import.", exit_code=1)
    return ok("Wallet address fetched.", address=entry["address"])


def cmd_wallet_health(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    has_wallet = False
    address: str | None = None
    integrity_checked = False
    try:
        entry = keystore.load_keystore()
        if entry is not None:
            has_wallet = True
            address = entry["address"]
            passphrase = os.environ.get("SOLFLOW_WALLET_PASSPHRASE")
            if passphrase:
                keystore.unlock_keystore(entry, passphrase)
                integrity_checked = True
    except WalletSecurityError as exc:
        return fail("unsafe_permissions", str(exc), "Restrict permissions to owner-only (0700/0600) and retry.", exit_code=1)
    except WalletPassphraseError as exc:
        return fail("wallet_locked", str(exc), "Check SOLFLOW_WALLET_PASSPHRASE and retry.", exit_code=1)
    except WalletStoreError as exc:
        return fail("wallet_store_invalid", str(exc), "Repair or remove the keystore and retry.", exit_code=1)

    next_action = "No action needed."
    if not has_wallet:
        next_action = "Run wallet create or wallet import."
    elif not integrity_checked:
        next_action = "Integrity check skipped (no passphrase provided). Set SOLFLOW_WALLET_PASSPHRASE to verify."
    return ok(
        "Wallet health checked.",
        hasWallet=has_wallet,
        address=address,
        integrityChecked=integrity_checked,
        keystorePath=str(keystore.keystore_path()),
        actionHint=next_action,
        timestamp=keystore.utc_now(),
    )


def cmd_wallet_remove(args: argparse.Namespace) -> int:
    chk = require_json_flag(args)
    if chk is not None:
        return chk
    existed = keystore.remove_keystore()
    return ok("Wallet removed." if existed else "No wallet existed.", removed=existed)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="solflow-agent", add_help=True)
    sub = p.add_subparsers(dest="top")

    run = sub.add_parser("run")
    run.add_argument("--params-json")
    run.add_argument("--params-file")
    run.add_argument("--verbose", action="store_true")
    run.add_argument("--json", action="store_true")
    run.set_defaults(func=cmd_run)

    parse = sub.add_parser("parse")
    parse.add_argument("--text", required=True)
    parse.add_argument("--json", action="store_true")
    parse.set_defaults(func=cmd_parse)

    wallet = sub.add_parser("wallet")
    wallet_sub = wallet.add_subparsers(dest="wallet_cmd")
    for name, func in (
        ("create", cmd_wallet_create),
        ("import", cmd_wallet_import),
        ("address", cmd_wallet_address),
        ("health", cmd_wallet_health),
        ("remove", cmd_wallet_remove),
    ):
        wallet_cmd = wallet_sub.add_parser(name)
        wallet_cmd.add_argument("--json", action="store_true")
        wallet_cmd.set_defaults(func=func)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 2
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
