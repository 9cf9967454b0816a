"""
Health checks: liveness, slow liveness, external dependencies, HTTP relay
"""
import asyncio
import random
from typing import Dict, Optional

import requests
import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from biggie.config import ConfigError
from biggie.responses import REQUEST_CREATION_FAILED, REQUEST_FAILED, ApiError, response_json

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/healthcheck", tags=["health"])

RELAY_TIMEOUT = 10
EXTERNAL_ORDER = ("mysql", "postgres", "redshift", "redis", "kafka")


class RelayPayload(BaseModel):
    url: str
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: str = ""


@router.get("")
async def healthcheck():
    return response_json({"message": "ok"})


@router.get("/slow")
async def slow_healthcheck(wait: Optional[str] = None):
    """Answer after `wait` seconds; missing or invalid means a random 1-5"""
    try:
        seconds = int(wait) if wait is not None else -1
    except ValueError:
        seconds = -1
    if seconds < 0:
        seconds = random.randint(1, 5)
    await asyncio.sleep(seconds)
    return response_json({"message": "ok", "wait_second": seconds})


def check_backend(factory, settings) -> str:
    try:
        backend = factory(settings)
    except ConfigError:
        return "not configured"
    try:
        backend.close(backend.open())
    except Exception as exc:
        logger.warning("external check failed", target=backend.describe(), error=str(exc))
        return f"failed: {exc}"
    return "ok"


@router.get("/external")
async def external_health(request: Request):
    """ok / failed: <reason> / not configured, per back end"""
    factories = request.app.state.backend_factories
    settings = request.app.state.settings
    names = [n for n in EXTERNAL_ORDER if n in factories]
    results = await asyncio.gather(
        *(asyncio.to_thread(check_backend, factories[name], settings) for name in names)
    )
    statuses = dict(zip(names, results))
    logger.info("external health checked", **statuses)
    return response_json(statuses)


def relay(payload: RelayPayload) -> Dict:
    try:
        prepared = requests.Request(
            payload.method.upper(),
            payload.url,
            headers=payload.headers,
            data=payload.body or None,
        ).prepare()
    except (requests.RequestException, ValueError) as exc:
        raise ApiError(500, REQUEST_CREATION_FAILED, str(exc))

    try:
        with requests.Session() as session:
            resp = session.send(prepared, timeout=RELAY_TIMEOUT)
    except requests.RequestException as exc:
        raise ApiError(500, REQUEST_FAILED, str(exc))

    return {
        "status_code": resp.status_code,
        "headers": dict(resp.headers),
        "body": resp.text,
    }


@router.post("/hops")
async def hops(payload: RelayPayload):
    """Forward a request to url and return what came back"""
    return response_json(await asyncio.to_thread(relay, payload))
