#!/usr/bin/env python3
"""
Runner module for the HPCA Benchmark Scheduler.

The ExperimentRunner class is responsible for:
- Submitting the experiments of a set through a job manager backend
- Keeping at most ``max_running_jobs`` jobs in flight, the others queued
- Polling job states and submitting queued experiments as slots free up
- Keeping per-experiment accounting (pending, running, completed, failed)

A single background thread drives the polling and the deferred
submissions; the caller only sees ``run``, ``wait``, ``cancel`` and ``fini``.
"""

import logging
import threading
from collections import Counter, deque
from datetime import datetime
from typing import Deque, Dict, List, Optional

from hpcabench.errors import SubmissionError
from hpcabench.infra.jobmgr import JobBackend, JobState
from hpcabench.models.experiment import (
    ExperimentSet,
    ExperimentState,
    ExperimentStatus,
    RuntimeParams,
)

logger = logging.getLogger(__name__)

# Lower bound of the polling interval, so a zero frequency does not spin
_MIN_POLL_INTERVAL = 0.05

_TERMINAL_STATES = {
    JobState.COMPLETED: ExperimentState.COMPLETED,
    JobState.FAILED: ExperimentState.FAILED,
    JobState.CANCELLED: ExperimentState.CANCELLED,
}


class ExperimentRunner:
    """
    Runs an experiment set under a concurrency bound.

    Typical use::

        runner = ExperimentRunner(backend, RuntimeParams(max_running_jobs=5))
        runner.run(exps)
        runner.wait()
        runner.fini()
    """

    def __init__(self, backend: JobBackend, runtime: RuntimeParams):
        """
        Initialize the runner.

        Args:
            backend: Job manager used to start experiments
            runtime: Concurrency bound and polling cadence
        """
        self.backend = backend
        self.runtime = runtime

        self._lock = threading.Lock()
        self._statuses: List[ExperimentStatus] = []
        self._pending: Deque[ExperimentStatus] = deque()
        self._running: List[ExperimentStatus] = []
        self._exps: Optional[ExperimentSet] = None
        self._thread: Optional[threading.Thread] = None
        self._done = threading.Event()
        self._stop = threading.Event()
        self._cancelled = False
        self._finished = False
        self._has_submitted = False

    @property
    def poll_interval(self) -> float:
        return max(self.runtime.progress_frequency, _MIN_POLL_INTERVAL)

    def run(self, exps: ExperimentSet) -> None:
        """
        Submit an experiment set.

        Returns once every experiment is either submitted or queued; queued
        experiments are submitted in the background as running ones finish.

        Args:
            exps: Experiment set; it becomes read-only

        Raises:
            SubmissionError: If the job manager cannot be used at all
            RuntimeError: If the runner was already used
        """
        if self._exps is not None:
            raise RuntimeError("This runner already ran an experiment set")
        if self._finished:
            raise RuntimeError("Runner already finalized")

        self.backend.check(exps)
        exps.freeze()
        self._exps = exps

        with self._lock:
            for experiment in exps:
                status = ExperimentStatus(experiment=experiment)
                self._statuses.append(status)
                self._pending.append(status)

        logger.info(
            "Running %d experiment(s) with %s, at most %d at a time",
            len(exps), self.backend.name, self.runtime.max_running_jobs,
        )
        self._submit_pending()

        self._start_tracking()

    def _start_tracking(self) -> None:
        if self._all_terminal():
            self._done.set()
            return
        self._thread = threading.Thread(target=self._progress_loop, name="hpcabench-runner", daemon=True)
        self._thread.start()

    def _submit_pending(self) -> None:
        """Submit queued experiments while there is room for them."""
        while True:
            with self._lock:
                if self._cancelled or self._stop.is_set() or not self._pending:
                    return
                if len(self._running) >= self.runtime.max_running_jobs:
                    return
                status = self._pending.popleft()

            if self._has_submitted and self.runtime.sleep_before_submitting_again > 0:
                self._stop.wait(self.runtime.sleep_before_submitting_again)
            self._has_submitted = True

            experiment = status.experiment
            try:
                job_id = self.backend.submit(experiment, self._exps)
            except SubmissionError as e:
                logger.error("Submission of %s failed: %s", experiment.name, e)
                with self._lock:
                    status.state = ExperimentState.FAILED
                    status.error = str(e)
                    status.end_time = datetime.now()
                continue

            with self._lock:
                status.job_id = job_id
                status.submit_time = datetime.now()
                status.state = ExperimentState.RUNNING
                self._running.append(status)
                cancel_now = self._cancelled

            logger.info("%s started (job %s)", experiment.name, job_id)
            if cancel_now:
                self.backend.cancel(job_id)

    def _poll(self) -> None:
        """Update the state of in-flight experiments."""
        with self._lock:
            running = list(self._running)

        for status in running:
            job_state = self.backend.state(status.job_id)
            if not job_state.is_terminal:
                continue

            with self._lock:
                status.state = _TERMINAL_STATES[job_state]
                status.end_time = datetime.now()
                self._running.remove(status)

            self.backend.finalize(status.experiment, self._exps, status.job_id)
            if status.state is ExperimentState.COMPLETED:
                logger.info("%s completed (job %s)", status.experiment.name, status.job_id)
            else:
                logger.warning("%s ended as %s (job %s)", status.experiment.name, status.state.value, status.job_id)

    def _abort_remaining(self, reason: str) -> None:
        with self._lock:
            for status in self._statuses:
                if not status.state.is_terminal:
                    status.state = ExperimentState.FAILED
                    status.error = reason
                    status.end_time = datetime.now()
            self._pending.clear()
            self._running.clear()

    def _progress_loop(self) -> None:
        try:
            while not self._stop.is_set():
                self._poll()
                self._submit_pending()
                if self._all_terminal():
                    break
                self._stop.wait(self.poll_interval)
        except Exception as e:
            logger.exception("Progress tracking failed")
            self._abort_remaining(f"progress tracking failed: {e}")
        finally:
            self._done.set()

    def _all_terminal(self) -> bool:
        with self._lock:
            return all(status.state.is_terminal for status in self._statuses)

    def wait(self) -> None:
        """Block until every experiment reached a terminal state."""
        if self._exps is None:
            return
        while not self._done.wait(self.poll_interval):
            logger.info("Progress: %s", self.format_summary())
        logger.info("All experiments are done: %s", self.format_summary())

    def cancel(self) -> None:
        """
        Stop the experiment set.

        Queued experiments are never submitted and in-flight jobs are asked
        to stop; ``wait`` returns once the backend reports them as over.
        This also works when ``run`` was interrupted in the middle of its
        first submissions.
        """
        with self._lock:
            self._cancelled = True
            # Covers the queue and a submission interrupted before it returned
            for status in self._statuses:
                if not status.state.is_terminal and status not in self._running:
                    status.state = ExperimentState.CANCELLED
                    status.end_time = datetime.now()
            self._pending.clear()
            running = list(self._running)

        logger.warning("Cancelling %d running experiment(s)", len(running))
        for status in running:
            if not self.backend.cancel(status.job_id):
                logger.warning("Unable to cancel job %s (%s)", status.job_id, status.experiment.name)

        if self._thread is None and self._exps is not None and not self._finished:
            self._start_tracking()
        elif self._all_terminal():
            self._done.set()

    def fini(self) -> None:
        """Stop background polling and release the backend. Safe to call more than once."""
        if self._finished:
            return
        self._finished = True
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
        self.backend.close()

    def statuses(self) -> List[ExperimentStatus]:
        with self._lock:
            return list(self._statuses)

    def summary(self) -> Dict[str, int]:
        """Get the number of experiments in each state."""
        with self._lock:
            counts = Counter(status.state.value for status in self._statuses)
        return {state.value: counts.get(state.value, 0) for state in ExperimentState}

    def format_summary(self) -> str:
        return ", ".join(f"{count} {state.lower()}" for state, count in self.summary().items() if count)
