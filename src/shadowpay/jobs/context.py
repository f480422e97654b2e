"""Execution context: one isolated OS process per job.

The heavy privacy operation (proof generation + submission) runs in a
separate process with its own heap so it can be hard-killed without
affecting the gateway. The child reports through a one-way pipe and sends
exactly one message:

    {"status": "success", "result": {...}, "duration": 1.23}
    {"status": "failure", "reason": "...", "error": "...", "duration": 0.4}

If the child dies before sending, the parent sees EOF on the pipe and the
process sentinel becomes ready; the supervisor classifies that as a crash.

This module must stay importable without FastAPI: with the ``spawn`` start
method every child re-imports it.
"""

import asyncio
import logging
import multiprocessing
import time
import traceback
from dataclasses import dataclass, field
from multiprocessing.connection import Connection
from typing import Any, Optional

from shadowpay.backends.base import BackendError
from shadowpay.backends.factory import create_backend
from shadowpay.identity import RelayerIdentity
from shadowpay.jobs.models import Job, OperationKind

logger = logging.getLogger(__name__)

CONTEXT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [ctx %(process)d] %(message)s"


@dataclass(frozen=True)
class ContextSpec:
    """Everything a context needs, copied across the process boundary."""

    job: Job
    backend: str
    rpc_url: str
    secret_key: bytes
    backend_options: dict[str, Any] = field(default_factory=dict)
    log_level: str = "INFO"


async def _perform(spec: ContextSpec) -> dict[str, Any]:
    # Identity and backend are rebuilt here, never inherited from the parent
    identity = RelayerIdentity.from_secret_key(spec.secret_key)
    backend = create_backend(spec.backend, identity, spec.rpc_url, **spec.backend_options)
    job = spec.job

    try:
        if job.kind == OperationKind.DEPOSIT:
            result = await backend.deposit(job.amount, referrer=job.referrer)
        else:
            result = await backend.withdraw(job.amount, job.recipient, referrer=job.referrer)
    finally:
        await backend.close()

    if not result.reference:
        raise BackendError(
            f"{job.kind.value.capitalize()} failed: no transaction signature",
            reason="invalid_result",
        )
    return result.to_dict()


def run_context(spec: ContextSpec, conn: Connection) -> None:
    """Process entry point. Sends exactly one terminal message on ``conn``."""
    logging.basicConfig(level=spec.log_level, format=CONTEXT_LOG_FORMAT)
    job = spec.job

    logger.info(f"Job {job.job_id}: starting {job.describe()} via {spec.backend}")
    start = time.monotonic()

    try:
        result = asyncio.run(_perform(spec))
        message = {
            "status": "success",
            "result": result,
            "duration": time.monotonic() - start,
        }
        logger.info(f"Job {job.job_id}: complete in {message['duration']:.3f}s")
    except BackendError as e:
        logger.error(f"Job {job.job_id}: {job.kind.value} failed: {e}")
        message = {
            "status": "failure",
            "reason": e.reason,
            "error": str(e),
            "duration": time.monotonic() - start,
        }
    except Exception as e:
        logger.exception(f"Job {job.job_id}: unexpected error")
        message = {
            "status": "failure",
            "reason": "unexpected_error",
            "error": f"{type(e).__name__}: {e}",
            "trace": traceback.format_exc(limit=5),
            "duration": time.monotonic() - start,
        }

    try:
        conn.send(message)
    finally:
        conn.close()


class ExecutionContext:
    """Parent-side handle for one job's isolated process.

    Owns the process and the read end of its result pipe. ``stop()`` is
    the single teardown path and is safe to call more than once.
    """

    def __init__(self, spec: ContextSpec, start_method: str = "spawn"):
        self.spec = spec
        self.job_id = spec.job.job_id
        mp = multiprocessing.get_context(start_method)
        self._reader, self._writer = mp.Pipe(duplex=False)
        self._process = mp.Process(
            target=run_context,
            args=(spec, self._writer),
            name=f"shadowpay-ctx-{self.job_id[:8]}",
            daemon=True,
        )
        self._started = False
        self._stopped = False
        self._exitcode: Optional[int] = None
        self.pid: Optional[int] = None

    def start(self) -> None:
        self._process.start()
        self._started = True
        self.pid = self._process.pid
        # Only the child holds the write end, so its death shows up as EOF
        self._writer.close()

    @property
    def result_fd(self) -> int:
        return self._reader.fileno()

    @property
    def sentinel(self) -> int:
        return self._process.sentinel

    def receive(self) -> Optional[dict[str, Any]]:
        """Read the terminal message if one is available without blocking.

        Returns:
            The message, or None if nothing was sent (pipe at EOF or empty)
        """
        if self._stopped or self._reader.closed:
            return None
        try:
            if not self._reader.poll():
                return None
            message = self._reader.recv()
        except (EOFError, OSError):
            return None
        return message if isinstance(message, dict) else {"status": "malformed", "raw": repr(message)}

    def wait_exitcode(self, timeout: float = 0.5) -> Optional[int]:
        """Reap the process and return its exit code (None if still running)."""
        if self._stopped:
            return self._exitcode
        self._process.join(timeout)
        return self._process.exitcode

    def is_alive(self) -> bool:
        if self._stopped or not self._started:
            return False
        return self._process.is_alive()

    @property
    def exitcode(self) -> Optional[int]:
        if self._stopped:
            return self._exitcode
        return self._process.exitcode

    def stop(self, grace: float = 2.0) -> Optional[int]:
        """Terminate the process if alive, reap it and release the pipe.

        Sends SIGTERM, waits ``grace`` seconds, then SIGKILL.

        Returns:
            Process exit code
        """
        if self._stopped:
            return self._exitcode

        if self._started:
            if self._process.is_alive():
                logger.warning(f"Job {self.job_id}: terminating context pid={self.pid}")
                self._process.terminate()
                self._process.join(grace)
                if self._process.is_alive():
                    logger.error(f"Job {self.job_id}: context ignored SIGTERM, killing pid={self.pid}")
                    self._process.kill()
                    self._process.join()
            else:
                self._process.join()
            self._exitcode = self._process.exitcode
            self._process.close()
        else:
            self._writer.close()

        self._reader.close()
        self._stopped = True
        return self._exitcode
