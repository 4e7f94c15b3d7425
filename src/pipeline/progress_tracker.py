"""Ingestion progress tracking with callback-based listener notification.

Tracks the current step and progress percentage of each ingestion job and
broadcasts updates to registered listener callbacks.  Listeners are keyed
by job id so concurrent jobs in a batch do not cross-talk; a listener
registered for ``"*"`` hears every job.

Flow::

    IngestionOrchestrator --update()--> ProgressTracker --callback()--> listener

Listener errors are caught and logged so one broken listener cannot block
the pipeline or the other listeners.  Both sync and async callbacks are
supported.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from src.models.ingestion import IngestionStep
from src.utils.logging import get_logger

ALL_JOBS = "*"


@dataclass
class _JobStatus:
    """Latest snapshot of one job's progress (internal, never serialised)."""

    step: IngestionStep = IngestionStep.PENDING
    progress: float = 0.0
    message: str = ""


class ProgressTracker:
    """Tracks and broadcasts ingestion progress via callbacks.

    Callbacks receive ``(job_id, step, progress, message)``.
    """

    def __init__(self) -> None:
        self._statuses: dict[str, _JobStatus] = {}
        self._listeners: dict[str, list[Callable]] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def update(
        self,
        job_id: str,
        step: IngestionStep,
        progress: float,
        message: str = "",
    ) -> None:
        """Record a progress update and notify the job's listeners.

        Parameters
        ----------
        job_id:
            The ingestion job being updated.
        step:
            The step the job just entered.
        progress:
            Completion percentage (0.0 - 100.0).
        message:
            Human-readable status message.
        """
        progress = max(0.0, min(100.0, progress))
        self._statuses[job_id] = _JobStatus(step=step, progress=progress, message=message)

        self._logger.debug(
            "progress_update",
            job_id=job_id,
            step=step.value,
            progress=round(progress, 1),
            message=message,
        )
        await self._notify_listeners(job_id, step, progress, message)

    def register_listener(self, job_id: str, callback: Callable) -> None:
        """Register *callback* for one job, or for every job with ``"*"``."""
        listeners = self._listeners.setdefault(job_id, [])
        if callback not in listeners:
            listeners.append(callback)
            self._logger.debug(
                "listener_registered",
                job_id=job_id,
                total_listeners=len(listeners),
            )

    def unregister_listener(self, job_id: str, callback: Callable) -> None:
        listeners = self._listeners.get(job_id, [])
        if callback in listeners:
            listeners.remove(callback)
            self._logger.debug(
                "listener_unregistered",
                job_id=job_id,
                remaining_listeners=len(listeners),
            )

    def get_status(self, job_id: str) -> dict:
        """Current ``{step, progress, message}`` of a job; zeroed when untracked."""
        status = self._statuses.get(job_id) or _JobStatus()
        return {
            "step": status.step.value,
            "progress": status.progress,
            "message": status.message,
        }

    def forget(self, job_id: str) -> None:
        """Drop a finished job's snapshot and listeners."""
        self._statuses.pop(job_id, None)
        self._listeners.pop(job_id, None)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _notify_listeners(
        self,
        job_id: str,
        step: IngestionStep,
        progress: float,
        message: str,
    ) -> None:
        listeners = [*self._listeners.get(job_id, []), *self._listeners.get(ALL_JOBS, [])]
        for callback in listeners:
            try:
                result = callback(job_id, step, progress, message)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self._logger.warning(
                    "listener_callback_error",
                    job_id=job_id,
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )
