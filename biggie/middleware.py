"""
Request pipeline: access log -> body capture -> chaos interceptors -> route
"""
import asyncio
import random
import time
from datetime import datetime, timezone

import structlog
from fastapi import Request

from biggie.logformat import EventContext, LogFormat
from biggie.log import line_logger
from biggie.responses import (
    RANDOM_ERROR,
    SERVICE_DOWN,
    SIMULATED_PACKET_LOSS,
    add_tracking_headers,
    client_ip,
    error_json,
)
from biggie.simulation import DOWNTIME, ERROR_RATE, LATENCY, PACKET_LOSS

logger = structlog.get_logger(__name__)


class RequestBodyMiddleware:
    """Reads the whole body once, keeps it on request.state.raw_body and replays it downstream"""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        chunks = []
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] != "http.request":
                break
            chunks.append(message.get("body", b""))
            more_body = message.get("more_body", False)
        body = b"".join(chunks)
        scope.setdefault("state", {})["raw_body"] = body

        replayed = False

        async def replay():
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, replay, send)


def _content_length(headers) -> int:
    try:
        return int(headers.get("content-length") or 0)
    except ValueError:
        return 0


def access_log(log_format: LogFormat):
    """Middleware rendering one access line per request through the active format"""
    lines = line_logger()

    async def middleware(request: Request, call_next):
        wall_start = time.time()
        started = time.perf_counter_ns()
        event = EventContext(
            time=datetime.now(timezone.utc),
            method=request.method,
            path=request.url.path,
            client_ip=client_ip(request),
            user_agent=request.headers.get("user-agent", "-"),
            protocol="HTTP/" + request.scope.get("http_version", "1.1"),
            request_size=_content_length(request.headers),
        )
        try:
            response = await call_next(request)
        except Exception:
            event.status_code = 500
            event.latency_ns = time.perf_counter_ns() - started
            lines.info(log_format.render(event))
            logger.exception("unhandled error", path=event.path)
            raise

        event.status_code = response.status_code
        event.latency_ns = time.perf_counter_ns() - started
        event.response_size = _content_length(response.headers)
        add_tracking_headers(response, request.url.path, wall_start)
        lines.info(log_format.render(event))
        return response

    return middleware


async def chaos_interceptors(request: Request, call_next):
    """Downtime, latency, packet loss, error injection; in that order"""
    state = request.app.state.simulation

    if state.current(DOWNTIME):
        return error_json(request, 503, SERVICE_DOWN, "service is temporarily unavailable")

    latency_ms = state.current(LATENCY)
    if latency_ms > 0:
        await asyncio.sleep(latency_ms / 1000)

    loss = state.current(PACKET_LOSS)
    if loss > 0 and random.randrange(100) < loss:
        return error_json(request, 503, SIMULATED_PACKET_LOSS, "simulated packet loss, request dropped")

    rate = state.current(ERROR_RATE)
    if rate > 0 and random.random() < rate:
        return error_json(request, 500, RANDOM_ERROR, "simulated random error injection")

    return await call_next(request)
