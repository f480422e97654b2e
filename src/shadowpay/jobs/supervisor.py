"""Job supervisor.

Runs each job in its own execution context and races three event sources:

1. the context's result message (pipe readable)
2. the context's process exiting (sentinel readable)
3. the job deadline (loop timer)

The first source to fire settles a one-shot future; settling disarms the
other two, so late or duplicate signals are dropped. Every exit path
(including cancellation of the awaiting request) goes through the same
teardown: stop timer, remove watchers, terminate and reap the process.

Watching file descriptors uses ``loop.add_reader`` and therefore needs a
selector-based event loop (the default on POSIX).
"""

import asyncio
import logging
import time
from collections import Counter
from typing import Any, Callable, Optional

from shadowpay.config import Settings
from shadowpay.identity import RelayerIdentity
from shadowpay.jobs.context import ContextSpec, ExecutionContext
from shadowpay.jobs.models import (
    ALLOWED_TRANSITIONS,
    Job,
    JobState,
    OperationKind,
    Outcome,
)
from shadowpay.jobs.registry import JobRegistry

logger = logging.getLogger(__name__)

ContextFactory = Callable[[Job], ExecutionContext]


class InvalidTransitionError(RuntimeError):
    """Raised when a job would move backwards in its lifecycle."""

    pass


class JobRun:
    """Lifecycle state of one job while the supervisor owns it."""

    def __init__(self, job: Job):
        self.job = job
        self.state = JobState.IDLE
        self.history = [JobState.IDLE]

    def transition(self, new_state: JobState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Job {self.job.job_id}: {self.state.value} -> {new_state.value} not allowed"
            )
        self.state = new_state
        self.history.append(new_state)


class JobSupervisor:
    """Spawns, watches and tears down execution contexts.

    Example:
        supervisor = JobSupervisor(settings, identity)
        outcome = await supervisor.run(Job(kind="deposit", amount=5_000_000))
        if not outcome.ok:
            raise outcome.to_error()
    """

    def __init__(
        self,
        settings: Settings,
        identity: RelayerIdentity,
        context_factory: Optional[ContextFactory] = None,
        registry: Optional[JobRegistry] = None,
    ):
        self.settings = settings
        self.identity = identity
        self.registry = registry or JobRegistry(max_size=settings.job_history_size)
        self._context_factory = context_factory or self._default_context
        self._active: set[str] = set()
        self._stats: Counter = Counter()

    # ------------------------------------------------------------------
    # Configuration helpers
    # ------------------------------------------------------------------

    def _default_context(self, job: Job) -> ExecutionContext:
        spec = ContextSpec(
            job=job,
            backend=self.settings.privacy_backend,
            rpc_url=self.settings.solana_rpc_url,
            secret_key=self.identity.secret_key,
            backend_options=self.settings.backend_options(),
            log_level=self.settings.log_level.upper(),
        )
        return ExecutionContext(spec, start_method=self.settings.job_start_method)

    def resolve_deadline(self, job: Job) -> float:
        """Deadline in seconds: requested, else configured default, capped at the maximum."""
        if job.deadline is not None:
            deadline = job.deadline
        elif self.settings.job_timeout_seconds:
            deadline = self.settings.job_timeout_seconds
        elif job.kind == OperationKind.WITHDRAW:
            deadline = self.settings.withdraw_timeout_seconds
        else:
            deadline = self.settings.deposit_timeout_seconds
        return min(deadline, self.settings.max_job_timeout_seconds)

    @property
    def active_jobs(self) -> int:
        return len(self._active)

    def get_stats(self) -> dict[str, int]:
        """Counters: jobs started and jobs per terminal state."""
        return dict(self._stats)

    # ------------------------------------------------------------------
    # Running jobs
    # ------------------------------------------------------------------

    async def run(self, job: Job) -> Outcome:
        """Run one job to exactly one terminal outcome.

        Never raises for job failures: timeouts, reported failures and
        crashes all come back as an Outcome. Cancellation of the caller
        still tears the context down before propagating.
        """
        loop = asyncio.get_running_loop()
        run = JobRun(job)
        deadline = self.resolve_deadline(job)
        settled: asyncio.Future = loop.create_future()
        started_at = time.monotonic()
        watched_fds: list[int] = []
        timer: Optional[asyncio.TimerHandle] = None
        abandoned = False

        def disarm() -> None:
            if timer is not None:
                timer.cancel()
            while watched_fds:
                loop.remove_reader(watched_fds.pop())

        def settle(state: JobState, **fields: Any) -> None:
            if settled.done():
                return
            settled.set_result((state, fields))
            disarm()

        def on_deadline() -> None:
            settle(
                JobState.TIMED_OUT,
                error=f"{job.kind.value.capitalize()} timeout after {deadline:g}s",
            )

        def on_message() -> None:
            message = context.receive()
            if message is None:
                # EOF with nothing sent; the sentinel reports the exit
                loop.remove_reader(context.result_fd)
                if context.result_fd in watched_fds:
                    watched_fds.remove(context.result_fd)
                return
            state, fields = self._classify_message(message)
            settle(state, **fields)

        def on_exit() -> None:
            message = context.receive()
            if message is not None:
                state, fields = self._classify_message(message)
                settle(state, **fields)
                return
            exit_code = context.wait_exitcode()
            settle(
                JobState.CRASHED,
                error=f"Execution context stopped with exit code {exit_code} without reporting",
                reason="no_result",
                exit_code=exit_code,
            )

        run.transition(JobState.SPAWNING)
        context = self._context_factory(job)
        self._stats["started"] += 1
        self._active.add(job.job_id)
        self.registry.record_start(job)
        try:
            timer = loop.call_later(deadline, on_deadline)
            try:
                context.start()
            except Exception as e:
                logger.exception(f"Job {job.job_id}: failed to spawn execution context")
                settle(JobState.CRASHED, error=f"Failed to start execution context: {e}", reason="spawn_failed")
            else:
                run.transition(JobState.RUNNING)
                logger.info(
                    f"Job {job.job_id}: {job.describe()} running in pid={context.pid} "
                    f"(deadline {deadline:g}s)"
                )
                if not settled.done():
                    loop.add_reader(context.result_fd, on_message)
                    watched_fds.append(context.result_fd)
                    loop.add_reader(context.sentinel, on_exit)
                    watched_fds.append(context.sentinel)

            state, fields = await settled
        except asyncio.CancelledError:
            logger.warning(f"Job {job.job_id}: request abandoned, tearing down context")
            self._record_abandoned(job)
            abandoned = True
            raise
        finally:
            disarm()
            # The stop runs to completion in the executor even if this await is cancelled
            stopping = loop.run_in_executor(
                None, context.stop, self.settings.job_kill_grace_seconds
            )
            try:
                exit_code = await asyncio.shield(stopping)
            except asyncio.CancelledError:
                logger.warning(f"Job {job.job_id}: cancelled during teardown, context stop continues")
                if not abandoned:
                    self._record_abandoned(job)
                raise
            finally:
                self._active.discard(job.job_id)

        run.transition(state)
        run.transition(JobState.TERMINATED)

        outcome = Outcome(
            job_id=job.job_id,
            kind=job.kind,
            state=state,
            duration=time.monotonic() - started_at,
            exit_code=fields.pop("exit_code", exit_code),
            **fields,
        )
        self._stats[state.value] += 1
        self.registry.record_outcome(outcome)
        self._log_outcome(outcome)
        return outcome

    def _record_abandoned(self, job: Job) -> None:
        self._stats["abandoned"] += 1
        self.registry.record_abandoned(job.job_id)

    @staticmethod
    def _classify_message(message: dict[str, Any]) -> tuple[JobState, dict[str, Any]]:
        status = message.get("status")
        if status == "success" and isinstance(message.get("result"), dict):
            return JobState.SUCCEEDED, {
                "result": message["result"],
                "context_duration": message.get("duration"),
            }
        if status == "failure":
            return JobState.FAILED, {
                "error": message.get("error") or "Execution failed",
                "reason": message.get("reason"),
                "context_duration": message.get("duration"),
            }
        return JobState.FAILED, {
            "error": "Execution context sent a malformed result",
            "reason": "malformed_result",
        }

    def _log_outcome(self, outcome: Outcome) -> None:
        prefix = f"Job {outcome.job_id}: {outcome.kind.value} {outcome.state.value} in {outcome.duration:.3f}s"
        if outcome.state == JobState.SUCCEEDED:
            logger.info(f"{prefix} reference={outcome.result.get('reference')}")
        elif outcome.state == JobState.TIMED_OUT:
            logger.warning(
                f"{prefix}; transaction may have been submitted, external state unknown"
            )
        else:
            logger.error(f"{prefix}: {outcome.error}")
