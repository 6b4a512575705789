from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, Generic, List, Optional, Sequence, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

SLOT_DONE = "done"
SLOT_TIMEOUT = "timeout"
SLOT_REJECTED = "rejected"  # no worker slot within the admission timeout
SLOT_CRASHED = "crashed"


@dataclass(frozen=True)
class PoolSlot(Generic[R]):
    index: int
    status: str
    value: Optional[R] = None
    exception: Optional[BaseException] = None
    elapsed_s: float = 0.0


class CalculationPool:
    """
    Bounded fan-out for independent calculations.

    - at most max_workers calculations in flight (semaphore-gated submit)
    - an item that can't get a slot within admission_timeout_s is REJECTED,
      never queued indefinitely
    - each item gets its own deadline (calculation_timeout_s from submit);
      a slow item is reported as TIMEOUT without blocking the others
    - stop_when(value) -> True stops issuing new work; in-flight items drain
    - sequential mode runs items inline; an item that overran its deadline
      is reported as TIMEOUT once it returns
    - items never submitted come back as None
    """

    def __init__(
        self,
        max_workers: int = 8,
        calculation_timeout_s: float = 30.0,
        admission_timeout_s: float = 5.0,
    ):
        self.max_workers = max(1, int(max_workers))
        self.calculation_timeout_s = float(calculation_timeout_s)
        self.admission_timeout_s = float(admission_timeout_s)

    def map(
        self,
        fn: Callable[[T], R],
        items: Sequence[T],
        *,
        parallel: bool = True,
        stop_when: Optional[Callable[[R], bool]] = None,
    ) -> List[Optional[PoolSlot[R]]]:
        if not items:
            return []
        if not parallel or self.max_workers == 1 or len(items) == 1:
            return self._run_sequential(fn, items, stop_when)
        return self._run_parallel(fn, items, stop_when)

    # -----------------
    # sequential (deadline checked after each item returns)
    # -----------------

    def _run_sequential(self, fn, items, stop_when) -> List[Optional[PoolSlot]]:
        slots: List[Optional[PoolSlot]] = [None] * len(items)
        for i, item in enumerate(items):
            started = time.monotonic()
            try:
                value = fn(item)
            except Exception as e:
                logger.exception("calculation_crashed", index=i)
                slots[i] = PoolSlot(i, SLOT_CRASHED, exception=e, elapsed_s=time.monotonic() - started)
                if stop_when is not None:
                    break
                continue

            elapsed = time.monotonic() - started
            if elapsed > self.calculation_timeout_s:
                # can't interrupt a running call; its late result is discarded
                logger.warning("calculation_timeout", index=i, timeout_s=self.calculation_timeout_s)
                slots[i] = PoolSlot(i, SLOT_TIMEOUT, elapsed_s=elapsed)
                if stop_when is not None:
                    break
                continue

            slots[i] = PoolSlot(i, SLOT_DONE, value=value, elapsed_s=elapsed)
            if stop_when is not None and stop_when(value):
                break
        return slots

    # -----------------
    # parallel
    # -----------------

    def _run_parallel(self, fn, items, stop_when) -> List[Optional[PoolSlot]]:
        slots: List[Optional[PoolSlot]] = [None] * len(items)
        gate = threading.BoundedSemaphore(self.max_workers)
        tripped = threading.Event()
        futures: dict[int, Future] = {}
        submitted_at: dict[int, float] = {}

        def _task(item: Any) -> Any:
            try:
                return fn(item)
            finally:
                gate.release()

        def _watch(fut: Future) -> None:
            if fut.exception() is not None or stop_when(fut.result()):
                tripped.set()

        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(items)),
            thread_name_prefix="pricing",
        )
        try:
            for i, item in enumerate(items):
                if tripped.is_set():
                    break
                if not gate.acquire(timeout=self.admission_timeout_s):
                    logger.warning(
                        "concurrency_limit_reached",
                        index=i,
                        max_workers=self.max_workers,
                        admission_timeout_s=self.admission_timeout_s,
                    )
                    slots[i] = PoolSlot(i, SLOT_REJECTED)
                    if stop_when is not None:
                        tripped.set()
                    continue

                submitted_at[i] = time.monotonic()
                fut = executor.submit(_task, item)
                if stop_when is not None:
                    fut.add_done_callback(_watch)
                futures[i] = fut

            for i, fut in futures.items():
                deadline = submitted_at[i] + self.calculation_timeout_s
                try:
                    value = fut.result(timeout=max(0.0, deadline - time.monotonic()))
                except FutureTimeout:
                    logger.warning(
                        "calculation_timeout",
                        index=i,
                        timeout_s=self.calculation_timeout_s,
                    )
                    slots[i] = PoolSlot(i, SLOT_TIMEOUT, elapsed_s=time.monotonic() - submitted_at[i])
                except Exception as e:
                    logger.exception("calculation_crashed", index=i)
                    slots[i] = PoolSlot(i, SLOT_CRASHED, exception=e, elapsed_s=time.monotonic() - submitted_at[i])
                else:
                    slots[i] = PoolSlot(i, SLOT_DONE, value=value, elapsed_s=time.monotonic() - submitted_at[i])
        finally:
            # timed-out work keeps its thread until it returns; don't wait for it
            executor.shutdown(wait=False, cancel_futures=True)
        return slots
