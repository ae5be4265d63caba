"""
Concurrent run supervisor.

Statement runs execute on a thread pool so that uploads and retries return
as soon as the run is scheduled. Runs for different statements share
nothing but the state store; an exception escaping one run is logged and
turned into a failed status for that statement only.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import Optional

from ..state_store import StaleRunError, StateStore
from .processor import TRIGGER_UPLOAD, ProcessingResult, StatementProcessor

logger = logging.getLogger(__name__)


class ProcessingSupervisor:
    """Schedules statement runs on a bounded worker pool."""

    def __init__(self, processor: StatementProcessor, store: StateStore, workers: int = 4):
        self.processor = processor
        self.store = store
        self._executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="statement-run"
        )
        self._futures: list[Future] = []
        self._lock = threading.Lock()

    def submit(
        self, statement_id: int, run_id: str, trigger: str = TRIGGER_UPLOAD
    ) -> Future:
        """Schedule a run. Returns immediately."""
        future = self._executor.submit(self._run_isolated, statement_id, run_id, trigger)
        with self._lock:
            self._futures.append(future)
        logger.debug(f"Scheduled statement {statement_id} run {run_id} ({trigger})")
        return future

    def _run_isolated(
        self, statement_id: int, run_id: str, trigger: str
    ) -> Optional[ProcessingResult]:
        try:
            return self.processor.run(statement_id, run_id, trigger=trigger)
        except Exception as e:
            logger.exception(f"Run {run_id} for statement {statement_id} crashed")
            try:
                self.store.mark_failed(
                    statement_id, run_id, [f"Unhandled error: {type(e).__name__}: {e}"]
                )
            except StaleRunError:
                logger.warning(f"Run {run_id} for statement {statement_id} was superseded")
            except Exception:
                logger.exception(f"Could not mark statement {statement_id} as failed")
            return None

    def wait(self, timeout: Optional[float] = None) -> list[Optional[ProcessingResult]]:
        """Block until every scheduled run has finished. Returns their results."""
        with self._lock:
            futures = list(self._futures)
        done, _ = wait_futures(futures, timeout=timeout)
        with self._lock:
            self._futures = [f for f in self._futures if f not in done]
        return [f.result() for f in futures if f in done]

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "ProcessingSupervisor":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown(wait=True)
