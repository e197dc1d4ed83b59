"""Job registry for background work: interval loops and event-triggered jobs.

Handlers are plain async callables registered explicitly with their
dependencies already bound (see jobs.handlers), so tests can run any job
directly without starting a loop.

Every run goes through a bounded tenacity retry envelope. Exception types a
job declares as final (business outcomes such as a failed consolidation) are
never retried.

Interval jobs run as asyncio background loops started from the FastAPI
lifespan and cancelled on shutdown. Event jobs run as one independent task
per emitted event; nothing serializes two events for the same subject.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

logger = structlog.get_logger(__name__)


@dataclass
class IntervalJob:
    """A job run every ``interval_seconds``.

    Attributes:
        name: Registry key.
        handler: Zero-argument async callable.
        interval_seconds: Sleep between runs.
        retries: Extra attempts after a failed run.
        final_errors: Exception types that are never retried.
    """

    name: str
    handler: Callable[[], Awaitable[Any]]
    interval_seconds: int
    retries: int = 0
    final_errors: tuple[type[BaseException], ...] = ()


@dataclass
class EventJob:
    """A job run once per emitted event.

    Attributes:
        event: Event name the job listens to.
        handler: Async callable taking the event payload.
        retries: Extra attempts after a failed run.
        final_errors: Exception types that are never retried.
    """

    event: str
    handler: Callable[[dict], Awaitable[Any]]
    retries: int = 0
    final_errors: tuple[type[BaseException], ...] = ()


@dataclass
class JobRegistry:
    """Explicit registry of interval and event jobs.

    Args:
        retry_wait: tenacity wait strategy between attempts.
    """

    retry_wait: wait_base = field(
        default_factory=lambda: wait_exponential(multiplier=1, min=1, max=30)
    )
    interval_jobs: dict[str, IntervalJob] = field(default_factory=dict)
    event_jobs: dict[str, EventJob] = field(default_factory=dict)
    _loop_tasks: list[asyncio.Task] = field(default_factory=list, init=False, repr=False)
    _event_tasks: set[asyncio.Task] = field(default_factory=set, init=False, repr=False)

    # ── Registration ────────────────────────────────────────────────────────

    def register_interval(
        self,
        name: str,
        handler: Callable[[], Awaitable[Any]],
        interval_seconds: int,
        retries: int = 0,
        final_errors: tuple[type[BaseException], ...] = (),
    ) -> None:
        if name in self.interval_jobs:
            raise ValueError(f"Interval job already registered: {name}")
        self.interval_jobs[name] = IntervalJob(
            name=name,
            handler=handler,
            interval_seconds=interval_seconds,
            retries=retries,
            final_errors=final_errors,
        )

    def register_event(
        self,
        event: str,
        handler: Callable[[dict], Awaitable[Any]],
        retries: int = 0,
        final_errors: tuple[type[BaseException], ...] = (),
    ) -> None:
        if event in self.event_jobs:
            raise ValueError(f"Event job already registered: {event}")
        self.event_jobs[event] = EventJob(
            event=event,
            handler=handler,
            retries=retries,
            final_errors=final_errors,
        )

    # ── Execution ───────────────────────────────────────────────────────────

    async def _run_with_retry(
        self,
        name: str,
        call: Callable[[], Awaitable[Any]],
        retries: int,
        final_errors: tuple[type[BaseException], ...],
    ) -> Any:
        # Cancellation is a BaseException and always propagates.
        retry = retry_if_exception_type(Exception)
        if final_errors:
            retry = retry & retry_if_not_exception_type(final_errors)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(retries + 1),
            wait=self.retry_wait,
            retry=retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                attempt_number = attempt.retry_state.attempt_number
                if attempt_number > 1:
                    logger.warning("jobs.retrying", job=name, attempt=attempt_number)
                return await call()
        return None

    async def run_job(self, name: str) -> Any:
        """Run an interval job once inside its retry envelope.

        Raises:
            KeyError: If no interval job is registered under ``name``.
        """
        job = self.interval_jobs[name]
        result = await self._run_with_retry(
            job.name, job.handler, job.retries, job.final_errors
        )
        logger.info("jobs.completed", job=name)
        return result

    async def dispatch(self, event: str, payload: dict) -> Any:
        """Run the job for an event in the current task and return its result.

        Raises:
            KeyError: If no job listens to ``event``.
        """
        job = self.event_jobs[event]
        return await self._run_with_retry(
            job.event, lambda: job.handler(payload), job.retries, job.final_errors
        )

    def emit(self, event: str, payload: dict) -> asyncio.Task | None:
        """Schedule the job for an event as an independent background task.

        Returns None (and logs) when no job listens to the event.
        """
        if event not in self.event_jobs:
            logger.warning("jobs.unhandled_event", event_name=event)
            return None

        async def _run() -> Any:
            try:
                return await self.dispatch(event, payload)
            except Exception:
                logger.error("jobs.event_failed", event_name=event, payload=payload, exc_info=True)
                return None

        task = asyncio.create_task(_run(), name=f"job_event_{event}")
        self._event_tasks.add(task)
        task.add_done_callback(self._event_tasks.discard)
        logger.info("jobs.event_emitted", event_name=event, payload=payload)
        return task

    # ── Background Loops ────────────────────────────────────────────────────

    def start(self) -> None:
        """Start one background loop per interval job."""
        for job in self.interval_jobs.values():

            async def _loop(job: IntervalJob = job) -> None:
                while True:
                    try:
                        await asyncio.sleep(job.interval_seconds)
                        await self.run_job(job.name)
                    except asyncio.CancelledError:
                        logger.info("jobs.loop_cancelled", job=job.name)
                        break
                    except Exception:
                        logger.warning("jobs.loop_error", job=job.name, exc_info=True)

            self._loop_tasks.append(asyncio.create_task(_loop(), name=f"job_loop_{job.name}"))

        logger.info(
            "jobs.loops_started",
            task_count=len(self._loop_tasks),
            jobs=list(self.interval_jobs),
        )

    async def stop(self) -> None:
        """Cancel background loops and any in-flight event jobs."""
        tasks = [*self._loop_tasks, *self._event_tasks]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_tasks.clear()
        self._event_tasks.clear()
        logger.info("jobs.stopped", cancelled=len(tasks))
