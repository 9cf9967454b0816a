"""
Chaos controls: error injection, crash, downtime, and outbound HTTP floods
"""
import asyncio
import os
import random
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import requests
import structlog
from fastapi import APIRouter, Request

from biggie.driver import run_loop
from biggie.duck import Count, Rate, Seconds
from biggie.responses import response_json
from biggie.routes.common import IntervalPayload, JobPayload, dispatch
from biggie.simulation import DOWNTIME, ERROR_RATE

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/stress", tags=["chaos"])

FLOOD_TIMEOUT = 5
THIRD_PARTY_ERROR_RATE = 0.2

# Process exit hook; tests replace it
terminate = os._exit

_pending_crashes = set()


class ErrorInjectionPayload(JobPayload):
    error_rate: Rate = 0.0


class CrashPayload(JobPayload):
    pass


class DowntimePayload(JobPayload):
    downtime_second: Seconds = 0


class FloodPayload(IntervalPayload):
    target_endpoint: str = "/simple"
    request_count: Count = 1


class DDoSPayload(IntervalPayload):
    target_endpoint: str = "/simple"
    attack_intensity: Count = 1


class ThirdPartyPayload(IntervalPayload):
    target_url: str
    call_rate: Count = 1
    simulate_errors: bool = False


# ==============================
# FAULT FLAGS
# ==============================

@router.post("/error_injection")
async def error_injection(payload: ErrorInjectionPayload, request: Request):
    """Fail inbound requests with probability error_rate for maintain_second"""
    state = request.app.state.simulation
    generation = state.activate(ERROR_RATE, payload.error_rate, payload.maintain_second)
    return await dispatch(
        lambda: state.clear_after(ERROR_RATE, generation, payload.maintain_second),
        payload.run_async,
        "error injection",
        {"error_rate": payload.error_rate, "maintain_second": payload.maintain_second},
        "error_injection",
    )


@router.post("/downtime")
async def downtime(payload: DowntimePayload, request: Request):
    """Answer every other request with 503 for downtime_second"""
    state = request.app.state.simulation
    generation = state.activate(DOWNTIME, 1, payload.downtime_second)
    return await dispatch(
        lambda: state.clear_after(DOWNTIME, generation, payload.downtime_second),
        payload.run_async,
        "downtime simulation",
        {"downtime_second": payload.downtime_second},
        "downtime",
    )


@router.post("/crash")
async def crash(payload: CrashPayload):
    """Terminate the process after maintain_second"""
    delay = payload.maintain_second
    logger.info("crash simulation scheduled", maintain_second=delay)

    async def delayed_crash():
        await asyncio.sleep(delay)
        logger.error("simulated crash: exiting process")
        terminate(1)

    if payload.run_async:
        task = asyncio.create_task(delayed_crash())
        _pending_crashes.add(task)
        task.add_done_callback(_pending_crashes.discard)
        return response_json({"message": "crash simulation started", "maintain_second": delay})

    await delayed_crash()
    return response_json({"message": "crash simulation completed", "maintain_second": delay})


# ==============================
# HTTP FLOODS
# ==============================

def burst(url: str, count: int, label: str, error_rate: float = 0.0, rng: Optional[random.Random] = None) -> int:
    """count concurrent GETs against url; returns how many failed"""
    rng = rng or random.Random()

    def call(_):
        if error_rate and rng.random() < error_rate:
            logger.error("simulated call error", job=label, url=url)
            return False
        try:
            requests.get(url, timeout=FLOOD_TIMEOUT)
            return True
        except requests.RequestException as exc:
            logger.error("request failed", job=label, url=url, error=str(exc))
            return False

    if count <= 0:
        return 0
    with ThreadPoolExecutor(max_workers=count, thread_name_prefix=label) as executor:
        results = list(executor.map(call, range(count)))
    return results.count(False)


def self_url(request: Request, endpoint: str) -> str:
    """URL of an endpoint on this same service, as the caller reached it"""
    if not endpoint.startswith("/"):
        endpoint = "/" + endpoint
    return str(request.base_url).rstrip("/") + endpoint


@router.post("/concurrent_flood")
async def concurrent_flood(payload: FloodPayload, request: Request):
    """request_count concurrent GETs to target_endpoint every interval"""
    url = self_url(request, payload.target_endpoint)
    return await dispatch(
        lambda: run_loop(
            lambda: burst(url, payload.request_count, "concurrent_flood"),
            payload.maintain_second,
            payload.interval_second,
            label="concurrent_flood",
        ),
        payload.run_async,
        "concurrent flood simulation",
        {
            "target_endpoint": payload.target_endpoint,
            "request_count": payload.request_count,
            "maintain_second": payload.maintain_second,
            "interval_second": payload.interval_second,
        },
        "concurrent_flood",
    )


@router.post("/ddos")
async def ddos(payload: DDoSPayload, request: Request):
    url = self_url(request, payload.target_endpoint)
    return await dispatch(
        lambda: run_loop(
            lambda: burst(url, payload.attack_intensity, "ddos"),
            payload.maintain_second,
            payload.interval_second,
            label="ddos",
        ),
        payload.run_async,
        "DDoS attack simulation",
        {
            "target_endpoint": payload.target_endpoint,
            "attack_intensity": payload.attack_intensity,
            "maintain_second": payload.maintain_second,
            "interval_second": payload.interval_second,
        },
        "ddos",
    )


@router.post("/third_party")
async def third_party(payload: ThirdPartyPayload):
    """call_rate GETs to an external target_url every interval, optionally failing 20% locally"""
    error_rate = THIRD_PARTY_ERROR_RATE if payload.simulate_errors else 0.0
    return await dispatch(
        lambda: run_loop(
            lambda: burst(payload.target_url, payload.call_rate, "third_party", error_rate),
            payload.maintain_second,
            payload.interval_second,
            label="third_party",
        ),
        payload.run_async,
        "third-party API call simulation",
        {
            "target_url": payload.target_url,
            "maintain_second": payload.maintain_second,
            "call_rate": payload.call_rate,
            "interval_second": payload.interval_second,
            "simulate_errors": payload.simulate_errors,
        },
        "third_party",
    )
