"""
Local resource stress: CPU, memory, memory leak, filesystem, log volume
"""
import itertools
import math
import os
import random
import tempfile
import threading
import time
from concurrent.futures import ProcessPoolExecutor
from threading import Lock
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Request

from biggie.driver import batch, run_loop
from biggie.duck import Bytes, Count, DuckInt, IntervalSeconds, Megabytes, Percent
from biggie.log import line_logger
from biggie.logformat import random_event
from biggie.routes.common import IntervalPayload, JobPayload, dispatch

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/stress", tags=["stress"])

MAX_CPU_PROCESSES = max(4, (os.cpu_count() or 2) * 2)
CPU_CYCLE_SECONDS = 0.1
LEAK_TICK_SECONDS = 0.5
PAGE = 4096

CpuWorkers = DuckInt(1, MAX_CPU_PROCESSES + 1)

_cpu_executor: Optional[ProcessPoolExecutor] = None
_cpu_executor_lock = Lock()


# ==============================
# PAYLOADS
# ==============================

class CpuPayload(JobPayload):
    cpu_percent: Percent = 0
    cpu_workers: CpuWorkers = 1


class MemoryPayload(JobPayload):
    memory_percent: Megabytes = 0


class MemoryLeakPayload(JobPayload):
    leak_size_mb: Megabytes = 0


class FileWritePayload(IntervalPayload):
    file_size: Bytes = 0
    file_count: Count = 1


class FileReadPayload(IntervalPayload):
    file_path: str
    read_frequency: Count = 1


class LogsPayload(JobPayload):
    log_count_per_interval: Count = 1
    line_per_log: Count = 1
    interval_seconds: IntervalSeconds = 1


# ==============================
# CPU
# ==============================

def get_cpu_executor() -> ProcessPoolExecutor:
    """Lazily create/reuse the process pool for CPU stress"""
    global _cpu_executor
    if _cpu_executor is None:
        with _cpu_executor_lock:
            if _cpu_executor is None:
                _cpu_executor = ProcessPoolExecutor(max_workers=MAX_CPU_PROCESSES)
    return _cpu_executor


def _cpu_worker_process(duration: float, cpu_percent: int, worker_id: int) -> Dict[str, Any]:
    """Busy for cpu_percent of every 100ms cycle, asleep for the rest"""
    cpu_start = time.time()
    deadline = cpu_start + duration
    busy = CPU_CYCLE_SECONDS * min(max(cpu_percent, 0), 100) / 100
    idle = CPU_CYCLE_SECONDS - busy
    iterations = 0

    while time.time() < deadline:
        cycle_start = time.time()
        while time.time() - cycle_start < busy:
            math.sqrt(random.random() * 999_999)
            iterations += 1
        if idle > 0:
            time.sleep(min(idle, max(deadline - time.time(), 0)))

    return {
        "worker_id": worker_id,
        "elapsed": round(time.time() - cpu_start, 3),
        "iterations": iterations,
    }


def run_cpu_stress(cpu_percent: int, duration: float, workers: int) -> List[Dict[str, Any]]:
    worker_count = min(max(1, workers), MAX_CPU_PROCESSES)
    if worker_count == 1:
        stats = [_cpu_worker_process(duration, cpu_percent, 0)]
    else:
        executor = get_cpu_executor()
        futures = [
            executor.submit(_cpu_worker_process, duration, cpu_percent, worker_id)
            for worker_id in range(worker_count)
        ]
        stats = [f.result() for f in futures]
    logger.info(
        "cpu stress completed",
        cpu_percent=cpu_percent,
        maintain_second=duration,
        workers=worker_count,
        iterations=sum(s["iterations"] for s in stats),
    )
    return stats


@router.post("/cpu")
async def cpu_stress(payload: CpuPayload):
    """Approximate cpu_percent load for maintain_second"""
    def job():
        return run_cpu_stress(payload.cpu_percent, payload.maintain_second, payload.cpu_workers)

    return await dispatch(
        job,
        payload.run_async,
        "cpu stress",
        {
            "chosen_cpu_percent": payload.cpu_percent,
            "maintain_second": payload.maintain_second,
            "cpu_workers": payload.cpu_workers,
        },
        "cpu_stress",
    )


# ==============================
# MEMORY
# ==============================

def allocate(size: int) -> bytearray:
    """Zeroed block with every page touched so it is actually resident"""
    block = bytearray(size)
    for i in range(0, size, PAGE):
        block[i] = 1
    return block


def _memory_worker(mem_mb: int, hold: float) -> Dict[str, Any]:
    mem_start = time.time()
    chunks = []
    allocated = 0
    target_bytes = max(0, mem_mb) * 1024 * 1024
    chunk_size = 64 * 1024 * 1024

    try:
        while allocated < target_bytes:
            block = allocate(min(chunk_size, target_bytes - allocated))
            chunks.append(block)
            allocated += len(block)

        if hold > 0:
            time.sleep(hold)
    except MemoryError:
        allocated = sum(len(c) for c in chunks)
        logger.warning("memory allocation stopped early", requested_mb=mem_mb, allocated_mb=allocated // (1024 * 1024))
    finally:
        chunks.clear()

    stats = {
        "requested_mb": mem_mb,
        "allocated_mb": round(allocated / (1024 * 1024), 2),
        "hold_seconds": hold,
        "elapsed": round(time.time() - mem_start, 3),
    }
    logger.info("memory stress completed", **stats)
    return stats


@router.post("/memory")
async def memory_stress(payload: MemoryPayload):
    """Hold memory_percent MB for maintain_second"""
    return await dispatch(
        lambda: _memory_worker(payload.memory_percent, payload.maintain_second),
        payload.run_async,
        "memory stress",
        {
            "chosen_memory_percent": payload.memory_percent,
            "maintain_second": payload.maintain_second,
        },
        "memory_stress",
    )


class LeakStore:
    """Blocks that are never released for the life of the process"""

    def __init__(self):
        self._lock = threading.Lock()
        self._blocks: List[bytearray] = []
        self.total_bytes = 0

    def add(self, block: bytearray) -> None:
        with self._lock:
            self._blocks.append(block)
            self.total_bytes += len(block)

    @property
    def total_mb(self) -> float:
        return round(self.total_bytes / (1024 * 1024), 2)


def run_memory_leak(store: LeakStore, leak_size_mb: int, duration: float):
    allocations = max(int(duration / LEAK_TICK_SECONDS), 1)
    bytes_per_alloc = leak_size_mb * 1024 * 1024 // allocations
    return run_loop(
        lambda: store.add(allocate(bytes_per_alloc)),
        duration,
        LEAK_TICK_SECONDS,
        label="memory_leak",
    )


@router.post("/memory_leak")
async def memory_leak(payload: MemoryLeakPayload, request: Request):
    """Grow the leak store by leak_size_mb over maintain_second, in 500ms steps"""
    store = request.app.state.leaks
    return await dispatch(
        lambda: run_memory_leak(store, payload.leak_size_mb, payload.maintain_second),
        payload.run_async,
        "memory leak simulation",
        {
            "chosen_leak_size_mb": payload.leak_size_mb,
            "maintain_second": payload.maintain_second,
        },
        "memory_leak",
    )


# ==============================
# FILESYSTEM
# ==============================

def write_temp_file(size: int, index: int, directory: Optional[str] = None) -> str:
    """Write size random bytes to a temp file, then remove it"""
    directory = directory or tempfile.gettempdir()
    filename = os.path.join(directory, f"biggie_write_{time.time_ns()}_{index}.tmp")
    with open(filename, "wb") as fh:
        fh.write(os.urandom(size))
    os.remove(filename)
    return filename


def read_file(path: str) -> int:
    with open(path, "rb") as fh:
        return len(fh.read())


@router.post("/filesystem/write")
async def file_write(payload: FileWritePayload):
    """file_count temp files of file_size bytes per interval"""
    counter = itertools.count()

    def job():
        return run_loop(
            batch(lambda: write_temp_file(payload.file_size, next(counter)), payload.file_count, "file_write"),
            payload.maintain_second,
            payload.interval_second,
            label="file_write",
        )

    return await dispatch(
        job,
        payload.run_async,
        "file write stress",
        {
            "file_size": payload.file_size,
            "file_count": payload.file_count,
            "maintain_second": payload.maintain_second,
            "interval_second": payload.interval_second,
        },
        "file_write",
    )


@router.post("/filesystem/read")
async def file_read(payload: FileReadPayload):
    """read_frequency full reads of file_path per interval"""
    def job():
        return run_loop(
            batch(lambda: read_file(payload.file_path), payload.read_frequency, "file_read"),
            payload.maintain_second,
            payload.interval_second,
            label="file_read",
        )

    return await dispatch(
        job,
        payload.run_async,
        "file read stress",
        {
            "file_path": payload.file_path,
            "maintain_second": payload.maintain_second,
            "read_frequency": payload.read_frequency,
            "interval_second": payload.interval_second,
        },
        "file_read",
    )


# ==============================
# LOG VOLUME
# ==============================

@router.post("/logs")
async def logs_generation(payload: LogsPayload, request: Request):
    """Synthetic request lines rendered through the active log format"""
    log_format = request.app.state.log_format
    lines = line_logger()

    def emit():
        rendered = [log_format.render(random_event()) for _ in range(payload.line_per_log)]
        lines.info("\n".join(rendered))

    def job():
        return run_loop(
            batch(emit, payload.log_count_per_interval, "logs"),
            payload.maintain_second,
            payload.interval_seconds,
            label="logs",
        )

    return await dispatch(
        job,
        payload.run_async,
        "logs generation",
        {
            "maintain_second": payload.maintain_second,
            "log_count_per_interval": payload.log_count_per_interval,
            "line_per_log": payload.line_per_log,
            "interval_seconds": payload.interval_seconds,
        },
        "logs",
    )
