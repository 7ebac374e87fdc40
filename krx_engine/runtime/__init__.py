"""
Runtime utilities for the KRX backtesting engine.

Provides:
- Job registry running work on a fixed thread pool with progress tracking
- Artefact directory conventions for finished runs
"""

from krx_engine.runtime.artefacts import ArtefactWriter
from krx_engine.runtime.jobs import (
    JobKind,
    JobProgress,
    JobRegistry,
    JobStatus,
    ProgressReporter,
)

__all__ = [
    # Artefacts
    "ArtefactWriter",
    # Jobs
    "JobKind",
    "JobProgress",
    "JobRegistry",
    "JobStatus",
    "ProgressReporter",
]
