"""
Time-boxed worker driver

Every stress job is one of three shapes:

    run_loop  - one worker repeating a unit of work until the deadline
    fan_out   - N workers, each owning its own resource, sharing one deadline
    ramp_up   - open resources a few per tick up to a target, hold, then close

Work-unit errors are logged and the loop keeps going. Setup errors only
take out the worker (or the single open attempt) they happened in.
"""
import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

import structlog

logger = structlog.get_logger(__name__)

# Polling step used when a caller asks for a zero interval in ramp-up
MIN_TICK_SECONDS = 0.1

Clock = Callable[[], float]
Sleep = Callable[[float], None]


@dataclass
class LoopReport:
    label: str
    cycles: int = 0
    errors: int = 0
    elapsed: float = 0.0


@dataclass
class FanOutReport:
    label: str
    workers: int
    started: int = 0
    failed: int = 0
    loops: List[LoopReport] = field(default_factory=list)
    peak_open: int = 0


@dataclass
class RampReport:
    label: str
    target: int
    opened: int = 0
    failed: int = 0
    per_tick: List[int] = field(default_factory=list)
    peak_open: int = 0
    elapsed: float = 0.0


class ResourcePool:
    """Lock-guarded list of open resources; each one is closed exactly once"""

    def __init__(self, close: Callable[[Any], None], label: str = "pool"):
        self._close = close
        self._label = label
        self._lock = threading.Lock()
        self._open: List[Any] = []
        self.opened = 0
        self.closed = 0
        self.peak = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._open)

    def add(self, resource: Any) -> None:
        with self._lock:
            self._open.append(resource)
            self.opened += 1
            self.peak = max(self.peak, len(self._open))

    def release(self, resource: Any) -> bool:
        with self._lock:
            for i, held in enumerate(self._open):
                if held is resource:
                    del self._open[i]
                    break
            else:
                return False
            self.closed += 1
        self._safe_close(resource)
        return True

    def release_all(self) -> int:
        with self._lock:
            held, self._open = self._open, []
            self.closed += len(held)
        for resource in held:
            self._safe_close(resource)
        return len(held)

    def _safe_close(self, resource: Any) -> None:
        try:
            self._close(resource)
        except Exception as exc:
            logger.warning("resource close failed", pool=self._label, error=str(exc))


# ==============================
# SHAPE A: SINGLE LOOP
# ==============================

def run_loop(
    work: Callable[[], Any],
    duration: float,
    interval: float,
    label: str = "job",
    release: Optional[Callable[[], Any]] = None,
    deadline: Optional[float] = None,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> LoopReport:
    """Run work every interval until the deadline, then release"""
    start = clock()
    end = deadline if deadline is not None else start + duration
    report = LoopReport(label=label)

    try:
        while clock() < end:
            try:
                work()
            except Exception as exc:
                report.errors += 1
                logger.error("work cycle failed", job=label, error=str(exc))
            report.cycles += 1

            remaining = end - clock()
            if interval > 0 and remaining > 0:
                sleep(min(interval, remaining))
    finally:
        if release is not None:
            try:
                release()
            except Exception as exc:
                logger.warning("release failed", job=label, error=str(exc))

    report.elapsed = clock() - start
    logger.info(
        "job completed",
        job=label,
        realized_second=round(report.elapsed, 3),
        cycles=report.cycles,
        errors=report.errors,
    )
    return report


def batch(op: Callable[[], Any], times: int, label: str = "job") -> Callable[[], int]:
    """Work unit running op `times` times; a failing op is logged and the rest still run"""
    def work() -> int:
        failures = 0
        for _ in range(max(times, 0)):
            try:
                op()
            except Exception as exc:
                failures += 1
                logger.error("operation failed", job=label, error=str(exc))
        return failures
    return work


# ==============================
# SHAPE B: FAN-OUT WORKERS
# ==============================

def fan_out(
    open_resource: Callable[[], Any],
    work: Callable[[Any], Any],
    close_resource: Callable[[Any], None],
    count: int,
    duration: float,
    interval: float,
    label: str = "fan_out",
    pool: Optional[ResourcePool] = None,
) -> FanOutReport:
    """count independent workers, each with its own resource; joins them all"""
    pool = pool or ResourcePool(close_resource, label)
    report = FanOutReport(label=label, workers=max(count, 0))
    if count <= 0:
        return report

    end = time.monotonic() + duration
    lock = threading.Lock()

    def worker(worker_id: int) -> None:
        try:
            resource = open_resource()
        except Exception as exc:
            logger.error("worker setup failed", job=label, worker=worker_id, error=str(exc))
            with lock:
                report.failed += 1
            return
        pool.add(resource)
        with lock:
            report.started += 1

        loop = run_loop(
            lambda: work(resource),
            duration,
            interval,
            label=f"{label}#{worker_id}",
            release=lambda: pool.release(resource),
            deadline=end,
        )
        with lock:
            report.loops.append(loop)

    try:
        with ThreadPoolExecutor(max_workers=count, thread_name_prefix=label) as executor:
            list(executor.map(worker, range(count)))
    finally:
        pool.release_all()

    report.peak_open = pool.peak
    logger.info(
        "fan-out completed",
        job=label,
        connections=count,
        started=report.started,
        failed=report.failed,
    )
    return report


# ==============================
# SHAPE C: RAMP-UP THEN HOLD
# ==============================

def ramp_up(
    open_resource: Callable[[], Any],
    close_resource: Callable[[Any], None],
    target: int,
    increase_per_interval: int,
    interval: float,
    duration: float,
    label: str = "ramp_up",
    pool: Optional[ResourcePool] = None,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> RampReport:
    """Open up to increase_per_interval resources per tick until target or deadline, hold, close"""
    pool = pool or ResourcePool(close_resource, label)
    report = RampReport(label=label, target=max(target, 0))
    tick = interval if interval > 0 else MIN_TICK_SECONDS
    start = clock()
    end = start + duration

    try:
        while report.opened < report.target and clock() < end:
            batch = min(max(increase_per_interval, 0), report.target - report.opened)
            opened_now = 0
            for _ in range(batch):
                try:
                    resource = open_resource()
                except Exception as exc:
                    report.failed += 1
                    logger.error("connection open failed", job=label, error=str(exc))
                    continue
                pool.add(resource)
                report.opened += 1
                opened_now += 1
            report.per_tick.append(opened_now)

            if report.opened >= report.target:
                break
            remaining = end - clock()
            if remaining > 0:
                sleep(min(tick, remaining))

        remaining = end - clock()
        if remaining > 0:
            sleep(remaining)
    finally:
        pool.release_all()

    report.peak_open = pool.peak
    report.elapsed = clock() - start
    logger.info(
        "connection ramp completed",
        job=label,
        connections=report.opened,
        failed=report.failed,
        realized_second=round(report.elapsed, 3),
    )
    return report


# ==============================
# SYNC / ASYNC DISPATCH
# ==============================

def launch(job: Callable[[], Any], label: str) -> threading.Thread:
    """Fire-and-forget: the job outlives the request and is not tracked"""
    def guarded() -> None:
        try:
            job()
        except Exception:
            logger.exception("background job crashed", job=label)

    thread = threading.Thread(target=guarded, name=label, daemon=True)
    thread.start()
    return thread


async def run_job(job: Callable[[], Any], run_async: bool, label: str) -> Optional[Any]:
    """Either detach the job or wait for it off the event loop"""
    if run_async:
        launch(job, label)
        return None
    return await asyncio.to_thread(job)
