"""Error taxonomy for the solflow workflow runtime.

Every failure that can reach a caller is a ``WorkflowError`` carrying a stable
``code`` plus an optional ``action_hint`` and ``details`` map. The CLI renders
these as ``{"ok": false, "code": ..., "actionHint": ..., "details": ...}``.
"""

from __future__ import annotations

from typing import Any


class WorkflowError(Exception):
    """Workflow precondition or execution failure."""

    code = "workflow_failed"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        action_hint: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        if code:
            self.code = code
        self.action_hint = action_hint
        self.details = details or {}


class IntentInputError(WorkflowError):
    """Missing, malformed, or contradictory intent input."""

    code = "invalid_input"


class TokenResolutionError(WorkflowError):
    """A token identifier or its decimals could not be resolved."""

    code = "token_unresolved"


class RouteUnavailableError(WorkflowError):
    """A dex-restricted quote produced no route."""

    code = "no_route"


class ApprovalGateError(WorkflowError):
    """Mainnet confirmation flag or token missing or mismatched."""

    code = "approval_required"


class SimulationFailedError(WorkflowError):
    """Execution refused because at least one transaction failed simulation."""

    code = "simulation_failed"


class ConfirmationError(WorkflowError):
    """A broadcast transaction confirmed with an on-chain error."""

    code = "tx_confirmation_failed"

    def __init__(
        self,
        message: str,
        signatures: list[str],
        failed_signature: str,
        err: Any = None,
        failed_index: int | None = None,
    ):
        super().__init__(
            message,
            action_hint="Inspect the failed transaction; earlier signatures in the batch already landed.",
            details={
                "signatures": list(signatures),
                "failedSignature": failed_signature,
                "failedIndex": failed_index,
                "err": err,
            },
        )
        self.signatures = list(signatures)
        self.failed_signature = failed_signature
        self.failed_index = failed_index
        self.err = err


class CollaboratorError(WorkflowError):
    """An external collaborator (RPC, builder, quote API) is unavailable or returned garbage."""

    code = "collaborator_unavailable"


class ConfigError(WorkflowError):
    """Environment configuration is invalid."""

    code = "invalid_config"


class WalletStoreError(Exception):
    """Wallet store is unavailable or invalid."""


class WalletSecurityError(Exception):
    """Wallet security checks failed."""


class WalletPassphraseError(Exception):
    """Wallet passphrase input is unavailable or invalid."""
