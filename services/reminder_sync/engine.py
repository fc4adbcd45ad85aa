"""Reconciliation engine - keeps one service reminder in step with each job."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, Optional, Set

from shared.config import SyncSettings
from shared.models import Job, Notification, Reminder, StatusEvent
from services.reminder_sync.credentials import CredentialSource
from services.reminder_sync.dates import validate_due_date
from services.reminder_sync.errors import ValidationError
from services.reminder_sync.repository import ReminderRepository

logger = logging.getLogger(__name__)

IDLE = "idle"
CHECKING = "checking"
RECONCILING = "reconciling"

NOOP = "noop"
CREATE = "create"
UPDATE = "update"
DELETE = "delete"


@dataclass
class Decision:
    """Outcome of the decision table for one reconciliation."""
    action: str
    due_date: Optional[date] = None
    invalid: Optional[ValidationError] = None


def decide(
    value: Optional[str],
    existing: Optional[Reminder],
    today: date,
    dayfirst: bool = True
) -> Decision:
    """
    Map the new field value and the current reminder to an action.

    | value              | existing | action  |
    |--------------------|----------|---------|
    | empty              | none     | noop    |
    | empty              | present  | delete  |
    | invalid or past    | none     | noop    |
    | invalid or past    | present  | delete  |
    | valid              | none     | create  |
    | valid              | present  | update  |
    """
    if not (value or "").strip():
        return Decision(DELETE if existing else NOOP)

    try:
        due = validate_due_date(value, today, dayfirst=dayfirst)
    except ValidationError as e:
        return Decision(DELETE if existing else NOOP, invalid=e)

    return Decision(UPDATE if existing else CREATE, due_date=due)


@dataclass
class JobContext:
    """Everything the engine tracks for one job."""
    job_id: str
    job: Optional[Job] = None
    pending_reminder: Optional[Reminder] = None
    pending_value: Optional[str] = None
    pending_generation: int = 0
    state: str = IDLE
    generation: int = 0
    snapshot_seen: bool = False
    check_seq: int = 0
    rerun: bool = False
    debounce: Optional[asyncio.TimerHandle] = None
    snapshot_timer: Optional[asyncio.TimerHandle] = None
    reconcile_task: Optional[asyncio.Task] = None
    tasks: Set[asyncio.Task] = field(default_factory=set)

    def reconciliation_pending(self) -> bool:
        running = self.reconcile_task is not None and not self.reconcile_task.done()
        return self.debounce is not None or running


class ReconciliationEngine:
    """Turns observed job snapshots and field changes into reminder mutations."""

    def __init__(
        self,
        repository: ReminderRepository,
        credentials: CredentialSource,
        status_sink,
        notifier,
        settings: SyncSettings,
        today: Callable[[], date] = date.today
    ):
        """
        Initialize the engine.

        Args:
            repository: Remote reminder operations
            credentials: Session credential source, checked before each cycle
            status_sink: Object with set_status(job_id, StatusEvent)
            notifier: Object with async notify(Notification)
            settings: Agent settings (debounce, settle and snapshot delays)
            today: Clock returning the current calendar date
        """
        self.repository = repository
        self.credentials = credentials
        self.status_sink = status_sink
        self.notifier = notifier
        self.settings = settings
        self.today = today
        self._contexts: Dict[str, JobContext] = {}

    def context(self, job_id: str) -> JobContext:
        ctx = self._contexts.get(job_id)
        if ctx is None:
            ctx = JobContext(job_id=job_id)
            self._contexts[job_id] = ctx
        return ctx

    # Events

    def job_observed(self, job: Job) -> None:
        """A fresh job snapshot was seen; cache it and look up its reminder."""
        ctx = self.context(job.id)
        ctx.job = job
        ctx.snapshot_seen = True
        if ctx.snapshot_timer is not None:
            ctx.snapshot_timer.cancel()
            ctx.snapshot_timer = None

        logger.info(f"Job loaded: {job.number}")
        ctx.check_seq += 1
        self._spawn(ctx, self._check(ctx, job, ctx.check_seq))

    def field_changed(self, job_id: str, value: Optional[str]) -> None:
        """The triggering field was saved; (re)arm the debounce timer."""
        ctx = self.context(job_id)
        ctx.pending_value = "" if value is None else str(value)
        ctx.pending_generation = ctx.generation

        logger.info(
            f"Service due date {'updated' if ctx.pending_value.strip() else 'cleared'} "
            f"for job {job_id}"
        )

        if ctx.debounce is not None:
            ctx.debounce.cancel()
        loop = asyncio.get_running_loop()
        ctx.debounce = loop.call_later(
            self.settings.debounce_seconds, self._debounce_elapsed, ctx
        )

    def navigated_to(self, job_id: str) -> None:
        """The user opened a job; fetch it ourselves if the host's fetch is missed."""
        ctx = self.context(job_id)
        ctx.generation += 1
        ctx.snapshot_seen = False

        if ctx.snapshot_timer is not None:
            ctx.snapshot_timer.cancel()
        loop = asyncio.get_running_loop()
        ctx.snapshot_timer = loop.call_later(
            self.settings.snapshot_wait_seconds, self._snapshot_wait_elapsed, ctx
        )

    def navigated_away(self, job_id: str) -> None:
        """The user left a job; in-flight work finishes silently."""
        ctx = self._contexts.get(job_id)
        if ctx is None:
            return
        ctx.generation += 1
        if ctx.snapshot_timer is not None:
            ctx.snapshot_timer.cancel()
            ctx.snapshot_timer = None

    # Quiescence

    async def wait_until_idle(self, job_id: str, poll_interval: float = 0.01) -> None:
        """Wait until the job has no pending timers and no running tasks."""
        ctx = self._contexts.get(job_id)
        if ctx is None:
            return

        while True:
            if ctx.debounce is not None or ctx.snapshot_timer is not None:
                await asyncio.sleep(poll_interval)
                continue

            running = [task for task in ctx.tasks if not task.done()]
            if not running:
                return
            await asyncio.gather(*running, return_exceptions=True)

    async def drain(self) -> None:
        for job_id in list(self._contexts):
            await self.wait_until_idle(job_id)

    def close(self) -> None:
        """Cancel timers and tasks on shutdown."""
        for ctx in self._contexts.values():
            for handle in (ctx.debounce, ctx.snapshot_timer):
                if handle is not None:
                    handle.cancel()
            ctx.debounce = None
            ctx.snapshot_timer = None
            for task in list(ctx.tasks):
                task.cancel()

    # Timers

    def _debounce_elapsed(self, ctx: JobContext) -> None:
        ctx.debounce = None
        if ctx.reconcile_task is not None and not ctx.reconcile_task.done():
            ctx.rerun = True
            return
        ctx.reconcile_task = self._spawn(ctx, self._run_reconciliation(ctx))

    def _snapshot_wait_elapsed(self, ctx: JobContext) -> None:
        ctx.snapshot_timer = None
        if ctx.snapshot_seen:
            return
        logger.info(f"No job snapshot observed for {ctx.job_id}, fetching it")
        self._spawn(ctx, self._fetch_snapshot(ctx, ctx.generation))

    # Work

    async def _fetch_snapshot(self, ctx: JobContext, generation: int) -> None:
        try:
            await self.credentials.acquire()
            job = await self.repository.fetch_job(ctx.job_id)
        except Exception as e:
            logger.error(f"Failed to fetch job {ctx.job_id}: {e}", exc_info=True)
            self._report(ctx, generation, StatusEvent.error(_describe(e)))
            return

        if not ctx.snapshot_seen:
            self.job_observed(job)

    async def _check(self, ctx: JobContext, job: Job, seq: int) -> None:
        generation = ctx.generation
        if ctx.state == IDLE:
            ctx.state = CHECKING
        if not ctx.reconciliation_pending():
            self._report(ctx, generation, StatusEvent.checking())

        try:
            await self.credentials.acquire()
            existing = await self.repository.search(job.number, job.id)
        except Exception as e:
            logger.error(f"Reminder lookup failed for job {job.number}: {e}", exc_info=True)
            if seq == ctx.check_seq and not ctx.reconciliation_pending():
                self._report(ctx, generation, StatusEvent.error(_describe(e)))
            return
        finally:
            if ctx.state == CHECKING:
                ctx.state = IDLE

        # A newer snapshot or a reconciliation supersedes this lookup
        if seq != ctx.check_seq or ctx.reconciliation_pending():
            return

        ctx.pending_reminder = existing
        if existing is not None:
            self._report(ctx, generation, StatusEvent.has_reminder(existing))
        else:
            self._report(ctx, generation, StatusEvent.no_reminder())

    async def _run_reconciliation(self, ctx: JobContext) -> None:
        while True:
            ctx.rerun = False
            await self._reconcile(ctx)
            if not ctx.rerun:
                break

    async def _reconcile(self, ctx: JobContext) -> None:
        generation = ctx.pending_generation
        ctx.state = RECONCILING
        self._report(ctx, generation, StatusEvent.checking())
        job_number = ctx.job.number if ctx.job else None

        try:
            await self.credentials.acquire()

            if ctx.job is None:
                fetched = await self.repository.fetch_job(ctx.job_id)
                if ctx.job is None:
                    ctx.job = fetched
            job_number = ctx.job.number

            existing = await self.repository.search(ctx.job.number, ctx.job.id)

            # Let the host page's own state settle before acting
            await asyncio.sleep(self.settings.settle_seconds)

            job = ctx.job
            value = ctx.pending_value
            job_number = job.number
            decision = decide(value, existing, self.today(), self.settings.date_dayfirst)
            logger.info(f"Reconciling job {job_number}: {decision.action}")

            await self._apply(ctx, generation, job, value, existing, decision)

        except Exception as e:
            logger.error(f"Failed to sync reminder for job {job_number}: {e}", exc_info=True)
            self._report(ctx, generation, StatusEvent.error(_describe(e)))
            await self._notify(ctx, generation, Notification(
                job_number=job_number,
                level="error",
                title="Failed to sync reminder",
                message=_describe(e)
            ))
        finally:
            ctx.state = IDLE

    async def _apply(
        self,
        ctx: JobContext,
        generation: int,
        job: Job,
        value: str,
        existing: Optional[Reminder],
        decision: Decision
    ) -> None:
        if decision.action == CREATE:
            saved = await self.repository.create(job, decision.due_date)
            ctx.pending_reminder = saved
            self._report(ctx, generation, StatusEvent.has_reminder(saved))
            await self._notify(ctx, generation, Notification(
                job_number=job.number,
                level="success",
                title="Service Reminder Created",
                message=f"Date: {value}, Number: {saved.number}",
                link=self._link(saved)
            ))

        elif decision.action == UPDATE:
            saved = await self.repository.update(existing, decision.due_date)
            ctx.pending_reminder = saved
            self._report(ctx, generation, StatusEvent.has_reminder(saved))
            await self._notify(ctx, generation, Notification(
                job_number=job.number,
                level="success",
                title="Service Reminder Updated",
                message=f"Date: {value}, Number: {saved.number}",
                link=self._link(saved)
            ))

        elif decision.action == DELETE:
            await self.repository.delete(existing)
            ctx.pending_reminder = None
            self._report(ctx, generation, StatusEvent.no_reminder())
            if decision.invalid is not None:
                await self._notify(ctx, generation, Notification(
                    job_number=job.number,
                    level="info",
                    title="Invalid Service Due Date",
                    message=f"'{value}' is {decision.invalid.reason}; "
                            f"reminder {existing.number} deleted"
                ))
            else:
                await self._notify(ctx, generation, Notification(
                    job_number=job.number,
                    level="success",
                    title="Service Reminder Deleted",
                    message=f"Number: {existing.number}"
                ))

        else:
            ctx.pending_reminder = None
            self._report(ctx, generation, StatusEvent.no_reminder())
            if decision.invalid is not None:
                await self._notify(ctx, generation, Notification(
                    job_number=job.number,
                    level="info",
                    title="Invalid Service Due Date",
                    message=f"'{value}' is {decision.invalid.reason}"
                ))
            else:
                await self._notify(ctx, generation, Notification(
                    job_number=job.number,
                    level="info",
                    title="Service Due Date Cleared",
                    message="No reminder to delete"
                ))

    # Sinks

    def _report(self, ctx: JobContext, generation: int, event: StatusEvent) -> None:
        if generation != ctx.generation:
            logger.debug(f"Dropping stale {event.kind} status for job {ctx.job_id}")
            return
        self.status_sink.set_status(ctx.job_id, event)

    async def _notify(self, ctx: JobContext, generation: int, notification: Notification) -> None:
        if generation != ctx.generation:
            logger.debug(f"Dropping stale notification for job {ctx.job_id}")
            return
        await self.notifier.notify(notification)

    def _link(self, reminder: Reminder) -> str:
        return self.settings.reminder_link_template.format(id=reminder.id)

    def _spawn(self, ctx: JobContext, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        ctx.tasks.add(task)
        task.add_done_callback(ctx.tasks.discard)
        return task


def _describe(error: Exception) -> str:
    return f"{error.__class__.__name__}: {error}"
