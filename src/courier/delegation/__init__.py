"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Delegation lifecycle: state machine, summaries and the task ledger.
"""

from .ledger import DelegationLedger, TaskDelegations
from .manager import (
    can_retry,
    clamp_max_retries,
    compute_delegation_summary,
    create_delegation,
    find_delegation_by_run_id,
    find_latest_completed_delegation,
    is_valid_transition,
    update_delegation,
)
from .types import (
    ABSOLUTE_MAX_RETRIES,
    ACTIVE_DELEGATION_STATES,
    DEFAULT_MAX_RETRIES,
    DELEGATION_STATUSES,
    MAX_SNAPSHOT_BYTES,
    TERMINAL_DELEGATION_STATES,
    VALID_DELEGATION_TRANSITIONS,
    Delegation,
    DelegationChange,
    DelegationStatus,
    DelegationSummary,
    DelegationUpdate,
    ResultSnapshot,
    SnapshotInput,
)

__all__ = [
    "ABSOLUTE_MAX_RETRIES",
    "ACTIVE_DELEGATION_STATES",
    "DEFAULT_MAX_RETRIES",
    "DELEGATION_STATUSES",
    "MAX_SNAPSHOT_BYTES",
    "TERMINAL_DELEGATION_STATES",
    "VALID_DELEGATION_TRANSITIONS",
    "Delegation",
    "DelegationChange",
    "DelegationLedger",
    "DelegationStatus",
    "DelegationSummary",
    "DelegationUpdate",
    "ResultSnapshot",
    "SnapshotInput",
    "TaskDelegations",
    "can_retry",
    "clamp_max_retries",
    "compute_delegation_summary",
    "create_delegation",
    "find_delegation_by_run_id",
    "find_latest_completed_delegation",
    "is_valid_transition",
    "update_delegation",
]
