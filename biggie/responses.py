"""
Response envelopes and error translation
Success bodies carry requested_at; errors carry the offending request too
"""
import socket
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from biggie.duck import INVALID_PAYLOAD, INVALID_RANGE

logger = structlog.get_logger(__name__)

SERVER_ID = socket.gethostname()

CONFIG_ERROR = "CONFIG_ERROR"
SERVICE_DOWN = "SERVICE_DOWN"
SIMULATED_PACKET_LOSS = "SIMULATED_PACKET_LOSS"
RANDOM_ERROR = "RANDOM_ERROR"
REQUEST_FAILED = "REQUEST_FAILED"
REQUEST_CREATION_FAILED = "REQUEST_CREATION_FAILED"


class ApiError(Exception):
    """Raised from handlers; rendered as the error envelope"""

    def __init__(self, status: int, code: str, message: str):
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else ""


def request_details(request: Request) -> Dict[str, Any]:
    """method, ip, query, cookies and the raw body captured by the body middleware"""
    query: Dict[str, Any] = {}
    for key, value in request.query_params.multi_items():
        query.setdefault(key, []).append(value)

    details = {
        "method": request.method,
        "ip": client_ip(request),
        "query": query,
        "cookies": dict(request.cookies),
    }
    raw_body = getattr(request.state, "raw_body", None)
    if raw_body is not None:
        text = raw_body.decode("utf-8", errors="replace")
        details["body"] = {"length": len(text), "payload": text}
    return details


def response_json(payload: Dict[str, Any], status: int = 200) -> JSONResponse:
    body = {"requested_at": now_iso()}
    body.update(payload)
    return JSONResponse(body, status_code=status)


def error_json(request: Request, status: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        {
            "error": code.upper(),
            "message": message.lower(),
            "request": request_details(request),
            "requested_at": now_iso(),
        },
        status_code=status,
    )


def add_tracking_headers(response: Response, endpoint: str, start_time: float, request_id: Optional[str] = None):
    """Add tracking headers"""
    elapsed = time.time() - start_time
    response.headers["X-Server-ID"] = SERVER_ID
    response.headers["X-Response-Time-Ms"] = str(round(elapsed * 1000, 2))
    response.headers["X-Request-ID"] = request_id or str(uuid.uuid4())
    response.headers["X-Endpoint"] = endpoint


# ==============================
# EXCEPTION HANDLERS
# ==============================

async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return error_json(request, exc.status, exc.code, exc.message)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    code = INVALID_PAYLOAD
    if any(err.get("type") == INVALID_RANGE.lower() for err in errors):
        code = INVALID_RANGE
    message = "; ".join(
        "{}: {}".format(".".join(str(p) for p in err.get("loc", ()) if p != "body"), err.get("msg", ""))
        for err in errors
    )
    logger.warning("request rejected", error=code, path=request.url.path, detail=message)
    return error_json(request, 400, code, message or "invalid payload")


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, _api_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
