"""Tests for the job supervisor and execution contexts."""

import asyncio
import os
import threading
import time

import pytest

from shadowpay.backends.dryrun import CRASH_EXIT_CODE
from shadowpay.jobs.context import ContextSpec, ExecutionContext
from shadowpay.jobs.models import Job, JobState, OperationKind
from shadowpay.jobs.supervisor import InvalidTransitionError, JobRun, JobSupervisor

TERMINAL = ("succeeded", "failed", "timed_out", "crashed")


def terminal_count(supervisor: JobSupervisor) -> int:
    stats = supervisor.get_stats()
    return sum(stats.get(state, 0) for state in TERMINAL)


class ReportAndExitContext:
    """In-process context whose result and exit are both ready on start.

    Two plain pipes stand in for the result pipe and the process sentinel,
    so both watchers fire in the same loop iteration.
    """

    def __init__(self, job: Job, message: dict, exit_code: int = 1):
        self.job_id = job.job_id
        self.message = message
        self.exit_code = exit_code
        self.pid = None
        self.receive_calls = 0
        self._result_r, self._result_w = os.pipe()
        self._exit_r, self._exit_w = os.pipe()
        self._delivered = False
        self._stopped = False

    def start(self) -> None:
        os.write(self._result_w, b"x")
        os.write(self._exit_w, b"x")

    @property
    def result_fd(self) -> int:
        return self._result_r

    @property
    def sentinel(self) -> int:
        return self._exit_r

    def receive(self):
        self.receive_calls += 1
        if self._delivered:
            return None
        self._delivered = True
        return self.message

    def wait_exitcode(self, timeout: float = 0.5):
        return self.exit_code

    def is_alive(self) -> bool:
        return False

    def stop(self, grace: float = 2.0):
        if not self._stopped:
            self._stopped = True
            for fd in (self._result_r, self._result_w, self._exit_r, self._exit_w):
                os.close(fd)
        return self.exit_code


class SlowStopContext(ExecutionContext):
    """Real context whose teardown takes ``delay`` seconds longer."""

    def __init__(self, spec: ContextSpec, delay: float, **kwargs):
        super().__init__(spec, **kwargs)
        self.delay = delay
        self.stopped = threading.Event()

    def stop(self, grace: float = 2.0):
        time.sleep(self.delay)
        try:
            return super().stop(grace)
        finally:
            self.stopped.set()


class TestOutcomes:
    """Each kind of terminal outcome, one job at a time."""

    @pytest.mark.asyncio
    async def test_deposit_succeeds(self, settings, identity, make_recorder):
        recorder = make_recorder()
        supervisor = JobSupervisor(settings, identity, context_factory=recorder)

        outcome = await supervisor.run(Job(kind=OperationKind.DEPOSIT, amount=5_000_000))

        assert outcome.state == JobState.SUCCEEDED
        assert outcome.ok
        assert outcome.result["reference"]
        assert outcome.result["amount"] == 5_000_000
        assert outcome.result["commitment"]
        assert outcome.context_duration is not None
        assert not recorder.contexts[0].is_alive()

    @pytest.mark.asyncio
    async def test_withdraw_reports_fee(self, settings, identity, make_recorder, recipient):
        supervisor = JobSupervisor(settings, identity, context_factory=make_recorder())

        outcome = await supervisor.run(
            Job(kind=OperationKind.WITHDRAW, amount=10_000_000, recipient=recipient)
        )

        assert outcome.ok
        assert outcome.result["recipient"] == recipient
        assert outcome.result["fee"] > 0
        assert outcome.result["partial"] is False

    @pytest.mark.asyncio
    async def test_reported_failure(self, settings, identity, make_recorder):
        supervisor = JobSupervisor(settings, identity, context_factory=make_recorder(fault="error"))

        outcome = await supervisor.run(Job(kind=OperationKind.DEPOSIT, amount=1_000))

        assert outcome.state == JobState.FAILED
        assert outcome.reason == "simulated_error"
        assert "Simulated deposit failure" in outcome.error
        assert outcome.error_code.value == "execution_failed"

    @pytest.mark.asyncio
    async def test_crash_without_report(self, settings, identity, make_recorder):
        recorder = make_recorder(fault="crash")
        supervisor = JobSupervisor(settings, identity, context_factory=recorder)

        outcome = await supervisor.run(Job(kind=OperationKind.DEPOSIT, amount=1_000))

        assert outcome.state == JobState.CRASHED
        assert outcome.exit_code == CRASH_EXIT_CODE
        assert outcome.error_code.value == "abnormal_termination"
        assert not recorder.contexts[0].is_alive()

    @pytest.mark.asyncio
    async def test_silent_context_times_out_and_is_terminated(self, settings, identity, make_recorder):
        recorder = make_recorder(fault="hang")
        supervisor = JobSupervisor(settings, identity, context_factory=recorder)

        outcome = await supervisor.run(
            Job(kind=OperationKind.DEPOSIT, amount=1_000, deadline=0.5)
        )

        assert outcome.state == JobState.TIMED_OUT
        assert outcome.error_code.value == "timeout"
        assert 0.5 <= outcome.duration < 5.0
        context = recorder.contexts[0]
        assert not context.is_alive()
        # Killed by the supervisor, not exited on its own
        assert context.exitcode is not None and context.exitcode != 0

    @pytest.mark.asyncio
    async def test_one_millisecond_deadline(self, settings, identity, make_recorder):
        """A 1ms deadline against a 50ms context times out."""
        recorder = make_recorder(latency_ms=50)
        supervisor = JobSupervisor(settings, identity, context_factory=recorder)

        outcome = await supervisor.run(
            Job(kind=OperationKind.DEPOSIT, amount=5_000_000, deadline=0.001)
        )

        assert outcome.state == JobState.TIMED_OUT
        assert not recorder.contexts[0].is_alive()
        assert supervisor.active_jobs == 0

    @pytest.mark.asyncio
    async def test_timeout_is_not_a_failure(self, settings, identity, make_recorder):
        supervisor = JobSupervisor(settings, identity, context_factory=make_recorder(fault="hang"))

        outcome = await supervisor.run(
            Job(kind=OperationKind.DEPOSIT, amount=1_000, deadline=0.2)
        )
        error = outcome.to_error()

        assert error.status_code == 504
        assert error.to_dict()["code"] == "timeout"
        assert error.to_dict()["settlement"] == "unknown"


class TestExactlyOnce:
    """Resolution bookkeeping across jobs."""

    @pytest.mark.asyncio
    async def test_every_job_resolves_exactly_once(self, settings, identity, make_recorder):
        supervisor = JobSupervisor(settings, identity, context_factory=make_recorder())
        faults = [None, "error", "crash", "hang"]

        outcomes = await asyncio.gather(
            *(
                supervisor.run(
                    Job(
                        kind=OperationKind.DEPOSIT,
                        amount=1_000 + i,
                        deadline=1.0 if fault == "hang" else None,
                        metadata={"fault": fault},
                    )
                )
                for i, fault in enumerate(faults)
            )
        )

        assert [o.state for o in outcomes] == [
            JobState.SUCCEEDED,
            JobState.FAILED,
            JobState.CRASHED,
            JobState.TIMED_OUT,
        ]
        stats = supervisor.get_stats()
        assert stats["started"] == len(faults)
        assert terminal_count(supervisor) == len(faults)
        for outcome in outcomes:
            assert supervisor.registry.get(outcome.job_id)["state"] == outcome.state.value

    @pytest.mark.asyncio
    async def test_crash_does_not_affect_concurrent_jobs(self, settings, identity, make_recorder):
        recorder = make_recorder(latency_ms=100)
        supervisor = JobSupervisor(settings, identity, context_factory=recorder)
        jobs = [
            Job(
                kind=OperationKind.DEPOSIT,
                amount=1_000_000 * (i + 1),
                metadata={"fault": "crash"} if i == 2 else {},
            )
            for i in range(6)
        ]

        outcomes = await asyncio.gather(*(supervisor.run(job) for job in jobs))

        for job, outcome in zip(jobs, outcomes):
            assert outcome.job_id == job.job_id
            if job.metadata.get("fault") == "crash":
                assert outcome.state == JobState.CRASHED
            else:
                assert outcome.state == JobState.SUCCEEDED
                assert outcome.result["amount"] == job.amount

        references = [o.result["reference"] for o in outcomes if o.ok]
        assert len(set(references)) == 5
        assert all(not ctx.is_alive() for ctx in recorder.contexts)
        assert supervisor.active_jobs == 0

    @pytest.mark.asyncio
    async def test_abandoned_request_tears_down_context(self, settings, identity, make_recorder):
        recorder = make_recorder(fault="hang")
        supervisor = JobSupervisor(settings, identity, context_factory=recorder)
        job = Job(kind=OperationKind.DEPOSIT, amount=1_000, deadline=30)

        task = asyncio.create_task(supervisor.run(job))
        await asyncio.sleep(0.5)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert not recorder.contexts[0].is_alive()
        assert supervisor.active_jobs == 0
        assert supervisor.get_stats()["abandoned"] == 1
        assert supervisor.registry.get(job.job_id)["state"] == "abandoned"

    @pytest.mark.asyncio
    async def test_cancel_during_slow_teardown(self, settings, identity):
        contexts = []

        def factory(job: Job) -> SlowStopContext:
            spec = ContextSpec(
                job=job,
                backend="dryrun",
                rpc_url=settings.solana_rpc_url,
                secret_key=identity.secret_key,
                backend_options={"fault": "hang"},
            )
            context = SlowStopContext(spec, delay=0.5, start_method=settings.job_start_method)
            contexts.append(context)
            return context

        supervisor = JobSupervisor(settings, identity, context_factory=factory)
        job = Job(kind=OperationKind.DEPOSIT, amount=1_000, deadline=0.3)

        task = asyncio.create_task(supervisor.run(job))
        # Deadline fires at 0.3s; teardown is still sleeping at 0.5s
        await asyncio.sleep(0.5)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert supervisor.active_jobs == 0
        assert supervisor.get_stats()["abandoned"] == 1
        assert terminal_count(supervisor) == 0
        assert supervisor.registry.get(job.job_id)["state"] == "abandoned"

        # The stop keeps running after the request is gone
        loop = asyncio.get_running_loop()
        assert await loop.run_in_executor(None, contexts[0].stopped.wait, 10)
        assert not contexts[0].is_alive()


class TestLateSignals:
    """Signals arriving after a job has settled are dropped."""

    @pytest.mark.asyncio
    async def test_report_then_nonzero_exit(self, settings, identity):
        message = {"status": "success", "result": {"reference": "5sig", "amount": 1_000}, "duration": 0.1}
        contexts = []

        def factory(job: Job) -> ReportAndExitContext:
            contexts.append(ReportAndExitContext(job, message, exit_code=1))
            return contexts[-1]

        supervisor = JobSupervisor(settings, identity, context_factory=factory)

        outcome = await supervisor.run(Job(kind=OperationKind.DEPOSIT, amount=1_000))

        assert outcome.state == JobState.SUCCEEDED
        assert outcome.result == message["result"]
        stats = supervisor.get_stats()
        assert stats["succeeded"] == 1
        assert "crashed" not in stats
        assert terminal_count(supervisor) == 1
        assert supervisor.registry.get(outcome.job_id)["state"] == "succeeded"

    @pytest.mark.asyncio
    async def test_failure_report_is_not_a_crash(self, settings, identity):
        message = {"status": "failure", "reason": "backend_rejected", "error": "Rejected", "duration": 0.1}
        supervisor = JobSupervisor(
            settings,
            identity,
            context_factory=lambda job: ReportAndExitContext(job, message, exit_code=1),
        )

        outcome = await supervisor.run(Job(kind=OperationKind.DEPOSIT, amount=1_000))

        assert outcome.state == JobState.FAILED
        assert outcome.reason == "backend_rejected"
        assert terminal_count(supervisor) == 1

    @pytest.mark.asyncio
    async def test_deadline_racing_report(self, settings, identity):
        message = {"status": "success", "result": {"reference": "5sig", "amount": 1_000}}
        supervisor = JobSupervisor(
            settings,
            identity,
            context_factory=lambda job: ReportAndExitContext(job, message),
        )

        outcomes = await asyncio.gather(
            *(
                supervisor.run(Job(kind=OperationKind.DEPOSIT, amount=1_000, deadline=0.001))
                for _ in range(5)
            )
        )

        assert terminal_count(supervisor) == 5
        for outcome in outcomes:
            assert outcome.state in (JobState.SUCCEEDED, JobState.TIMED_OUT)
            assert supervisor.registry.get(outcome.job_id)["state"] == outcome.state.value


class TestDeadlines:
    """Deadline resolution."""

    def test_kind_defaults(self, settings, identity):
        supervisor = JobSupervisor(settings, identity)

        assert supervisor.resolve_deadline(Job(kind="deposit", amount=1)) == 60.0
        assert supervisor.resolve_deadline(
            Job(kind="withdraw", amount=1, recipient=identity.address)
        ) == 120.0

    def test_requested_deadline_is_capped(self, settings, identity):
        supervisor = JobSupervisor(settings, identity)

        assert supervisor.resolve_deadline(Job(kind="deposit", amount=1, deadline=5)) == 5
        assert supervisor.resolve_deadline(Job(kind="deposit", amount=1, deadline=10_000)) == 300.0

    def test_global_override(self, settings, identity):
        settings = settings.model_copy(update={"job_timeout_seconds": 15.0})
        supervisor = JobSupervisor(settings, identity)

        assert supervisor.resolve_deadline(Job(kind="deposit", amount=1)) == 15.0


class TestJobRun:
    """Lifecycle state machine."""

    def test_happy_path(self):
        run = JobRun(Job(kind="deposit", amount=1))
        for state in (JobState.SPAWNING, JobState.RUNNING, JobState.SUCCEEDED, JobState.TERMINATED):
            run.transition(state)

        assert run.history[0] == JobState.IDLE
        assert run.state == JobState.TERMINATED

    def test_cannot_reenter_running(self):
        run = JobRun(Job(kind="deposit", amount=1))
        run.transition(JobState.SPAWNING)
        run.transition(JobState.RUNNING)
        run.transition(JobState.TIMED_OUT)

        with pytest.raises(InvalidTransitionError):
            run.transition(JobState.RUNNING)

    def test_second_outcome_rejected(self):
        run = JobRun(Job(kind="deposit", amount=1))
        run.transition(JobState.SPAWNING)
        run.transition(JobState.RUNNING)
        run.transition(JobState.CRASHED)

        with pytest.raises(InvalidTransitionError):
            run.transition(JobState.SUCCEEDED)
