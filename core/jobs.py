"""
Jobs Registry.

Named background jobs with an optional cron schedule. The registry tracks
each job's last run and outcome for ``GET api/jobs``; ``trigger`` runs a job
immediately.
"""

import inspect
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from core.context import AdminContext
from core.errors import ConflictError, NotFoundError, RegistrationClosedError

logger = logging.getLogger(__name__)

JobCallable = Callable[[AdminContext], Awaitable[Any] | Any]


@dataclass
class Job:
    name: str
    schedule: str = ""
    description: str = ""
    handler: Optional[JobCallable] = field(default=None, repr=False)


@dataclass
class JobState:
    status: str = "pending"
    last_run: Optional[datetime] = None
    last_error: str = ""
    run_count: int = 0


class JobRegistry:
    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._states: dict[str, JobState] = {}
        self._lock = threading.Lock()
        self._frozen = False

    @property
    def enabled(self) -> bool:
        return True

    def register(self, job: Job) -> None:
        with self._lock:
            if self._frozen:
                raise RegistrationClosedError(f"Cannot register job '{job.name}' after initialization")
            if job.name in self._jobs:
                raise ConflictError(f"Job '{job.name}' is already registered", code="JOB_DUPLICATE")
            self._jobs[job.name] = job
            self._states[job.name] = JobState()
        logger.debug(f"Job '{job.name}' registered (schedule='{job.schedule}').")

    def freeze(self) -> None:
        self._frozen = True

    def get(self, name: str) -> Optional[Job]:
        return self._jobs.get(name)

    def list_jobs(self) -> list[dict[str, Any]]:
        jobs = []
        for name, job in self._jobs.items():
            state = self._states[name]
            jobs.append({
                "name": name,
                "schedule": job.schedule,
                "description": job.description,
                "status": state.status,
                "last_run": state.last_run.isoformat() if state.last_run else None,
                "last_error": state.last_error,
                "run_count": state.run_count,
            })
        return jobs

    async def trigger(self, name: str, ctx: AdminContext) -> dict[str, Any]:
        """
        Run a job now and record the outcome.

        Raises:
            NotFoundError: Unknown job.
            Exception: Whatever the job raised, after it is recorded.
        """
        job = self._jobs.get(name)
        if job is None:
            raise NotFoundError(f"Job '{name}' is not registered")
        state = self._states[name]
        state.last_run = datetime.now(timezone.utc)
        state.run_count += 1
        try:
            if job.handler is not None:
                result = job.handler(ctx)
                if inspect.isawaitable(result):
                    await result
        except Exception as exc:
            state.status = "failed"
            state.last_error = str(exc)
            logger.error(f"Job '{name}' failed: {exc}")
            raise
        state.status = "ok"
        state.last_error = ""
        logger.info(f"Job '{name}' completed.")
        return next(j for j in self.list_jobs() if j["name"] == name)


class NullJobRegistry(JobRegistry):
    """Jobs registry used when the jobs feature is disabled."""

    @property
    def enabled(self) -> bool:
        return False

    def register(self, job: Job) -> None:
        return None
