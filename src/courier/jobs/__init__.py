"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Durable jobs: records, store, startup reaper, exchange flow and orchestrator.
"""

from .flow import DeliverFn, ExchangeFlow, ExchangeTurn, Flow, FlowContext, TurnCheckpoint
from .orchestrator import JobOrchestrator
from .reaper import JobReaper, ReaperResult
from .store import JOB_FILE_PREFIX, JOB_FILE_SUFFIX, JobStore
from .types import (
    DEFAULT_FINISHED_TTL_MS,
    DEFAULT_STALE_THRESHOLD_MS,
    FINISHED_JOB_STATES,
    INCOMPLETE_JOB_STATES,
    JobRecord,
    JobRequest,
    JobStatus,
)

__all__ = [
    "DEFAULT_FINISHED_TTL_MS",
    "DEFAULT_STALE_THRESHOLD_MS",
    "FINISHED_JOB_STATES",
    "INCOMPLETE_JOB_STATES",
    "JOB_FILE_PREFIX",
    "JOB_FILE_SUFFIX",
    "DeliverFn",
    "ExchangeFlow",
    "ExchangeTurn",
    "Flow",
    "FlowContext",
    "JobOrchestrator",
    "JobReaper",
    "JobRecord",
    "JobRequest",
    "JobStatus",
    "JobStore",
    "ReaperResult",
    "TurnCheckpoint",
]
