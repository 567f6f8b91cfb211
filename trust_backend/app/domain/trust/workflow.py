"""
Trust account workflow state machine.

Two layers move together:
- status (OPEN -> SETTLED -> CLOSED), which governs what the ledger allows
- workflow_state, the finer stage shown in the UI

Each stage implies a status, so a stage move is legal only when the stage
table allows it and the implied status move is legal too.
"""

from collections import deque
from typing import Dict, Set

from trust_backend.app.core.exceptions import AccountLockedError, InvalidWorkflowTransitionError
from trust_backend.app.models.trust_account import TrustAccount
from trust_backend.app.models.trust_enums import TrustStatus, WorkflowStage


STATUS_TRANSITIONS: Dict[TrustStatus, Set[TrustStatus]] = {
    TrustStatus.OPEN: {TrustStatus.SETTLED},
    TrustStatus.SETTLED: {TrustStatus.CLOSED},
    TrustStatus.CLOSED: set(),
}

STAGE_TRANSITIONS: Dict[WorkflowStage, Set[WorkflowStage]] = {
    WorkflowStage.VALUED: {WorkflowStage.LISTED},
    WorkflowStage.LISTED: {WorkflowStage.DEPOSIT_RECEIVED, WorkflowStage.TRUST_OPEN},
    WorkflowStage.DEPOSIT_RECEIVED: {WorkflowStage.TRUST_OPEN, WorkflowStage.TAX_PENDING},
    WorkflowStage.TRUST_OPEN: {WorkflowStage.TAX_PENDING, WorkflowStage.SETTLED},
    WorkflowStage.TAX_PENDING: {WorkflowStage.SETTLED},
    WorkflowStage.SETTLED: {WorkflowStage.TRANSFER_COMPLETE, WorkflowStage.TRUST_CLOSED},
    WorkflowStage.TRANSFER_COMPLETE: {WorkflowStage.TRUST_CLOSED},
    WorkflowStage.TRUST_CLOSED: set(),
}

STAGE_STATUS: Dict[WorkflowStage, TrustStatus] = {
    WorkflowStage.VALUED: TrustStatus.OPEN,
    WorkflowStage.LISTED: TrustStatus.OPEN,
    WorkflowStage.DEPOSIT_RECEIVED: TrustStatus.OPEN,
    WorkflowStage.TRUST_OPEN: TrustStatus.OPEN,
    WorkflowStage.TAX_PENDING: TrustStatus.OPEN,
    WorkflowStage.SETTLED: TrustStatus.SETTLED,
    WorkflowStage.TRANSFER_COMPLETE: TrustStatus.SETTLED,
    WorkflowStage.TRUST_CLOSED: TrustStatus.CLOSED,
}

# Stages an account may be opened in
OPENING_STAGES = {stage for stage, status in STAGE_STATUS.items() if status == TrustStatus.OPEN}


def ensure_mutable(account: TrustAccount) -> None:
    """Raise AccountLockedError once the account is closed."""
    if account.locked or account.status == TrustStatus.CLOSED:
        raise AccountLockedError(account.id, account.lock_reason)


def ensure_status_transition(account: TrustAccount, target: TrustStatus) -> None:
    ensure_mutable(account)
    if target not in STATUS_TRANSITIONS[account.status]:
        raise InvalidWorkflowTransitionError(
            f"Cannot move trust account from {account.status.value} to {target.value}",
            details={"trust_account_id": account.id, "from": account.status.value, "to": target.value}
        )


def ensure_stage_transition(account: TrustAccount, target: WorkflowStage) -> TrustStatus:
    """
    Validate an explicit stage move.

    Returns:
        The status the target stage implies
    """
    ensure_mutable(account)
    if target not in STAGE_TRANSITIONS[account.workflow_state]:
        raise InvalidWorkflowTransitionError(
            f"Invalid workflow transition {account.workflow_state.value} -> {target.value}",
            details={"trust_account_id": account.id, "from": account.workflow_state.value, "to": target.value}
        )
    implied = STAGE_STATUS[target]
    if implied != account.status:
        ensure_status_transition(account, implied)
    return implied


def stage_reachable(current: WorkflowStage, target: WorkflowStage) -> bool:
    """True when target can be reached from current by forward moves."""
    seen = {current}
    queue = deque([current])
    while queue:
        stage = queue.popleft()
        for nxt in STAGE_TRANSITIONS[stage]:
            if nxt == target:
                return True
            if nxt not in seen:
                seen.add(nxt)
                queue.append(nxt)
    return False


def advance_stage(account: TrustAccount, target: WorkflowStage) -> bool:
    """
    Move the stage forward as a side effect of an operation.

    Does nothing when the account is already at or past target.
    """
    if stage_reachable(account.workflow_state, target):
        account.workflow_state = target
        return True
    return False
