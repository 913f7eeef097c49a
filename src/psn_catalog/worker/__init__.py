"""Scrape worker module."""

from .scheduler import (
    ChannelFailure,
    ChannelResult,
    CycleSummary,
    IngestionScheduler,
    choose_fetch_strategy,
    sweep_due,
)
from .state import WorkerState, WorkerStatus

__all__ = [
    "ChannelFailure",
    "ChannelResult",
    "CycleSummary",
    "IngestionScheduler",
    "choose_fetch_strategy",
    "sweep_due",
    "WorkerState",
    "WorkerStatus",
]
