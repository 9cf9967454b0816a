"""
System metrics: host load from psutil plus the active simulations
"""
import os

import psutil
from fastapi import APIRouter, Request

from biggie.responses import SERVER_ID, response_json

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("/system")
async def system_metrics(request: Request):
    process = psutil.Process(os.getpid())
    memory = psutil.virtual_memory()
    network = psutil.net_io_counters()
    sent, received = (network.bytes_sent, network.bytes_recv) if network else (0, 0)
    state = request.app.state

    return response_json({
        "server_id": SERVER_ID,
        "cpu_load": psutil.cpu_percent(interval=None),
        "cpu_count": psutil.cpu_count(),
        "memory_usage": {
            "total": memory.total,
            "available": memory.available,
            "percent": memory.percent,
            "process_rss": process.memory_info().rss,
        },
        "network_throughput": {
            "bytes_sent": sent,
            "bytes_recv": received,
        },
        "leaked_memory_mb": state.leaks.total_mb,
        "stress_tests": state.simulation.snapshot(),
    })
