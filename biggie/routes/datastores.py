"""
Database and cache load: heavy (one connection), multi_heavy (N connections), connection (ramp-up)
for mysql, postgres, redshift and redis
"""
import asyncio
from typing import Any, Callable

import structlog
from fastapi import APIRouter, Request

from biggie.backends import Backend, BackendError
from biggie.driver import batch, fan_out, ramp_up, run_loop
from biggie.responses import ApiError
from biggie.routes.common import ConnectionPayload, MultiQueryPayload, QueryPayload, backend_for, dispatch

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["datastores"])

DATASTORES = {
    "mysql": "MySQL",
    "postgres": "Postgres",
    "redshift": "Redshift",
    "redis": "Redis",
}


async def open_or_fail(backend: Backend) -> Any:
    """Open one connection for a single-connection job; failure -> 500 with the back end's code"""
    try:
        return await asyncio.to_thread(backend.open)
    except BackendError as exc:
        logger.error("connection setup failed", backend=backend.name, error=exc.message)
        raise ApiError(500, exc.code, exc.message)


def prepare_writes(backend: Backend, resource: Any) -> None:
    try:
        backend.prepare(resource)
    except Exception as exc:
        logger.warning("write target setup failed", backend=backend.name, error=str(exc))


def prepare_with_new_connection(backend: Backend) -> None:
    try:
        resource = backend.open()
    except BackendError as exc:
        logger.warning("write target setup failed", backend=backend.name, error=exc.message)
        return
    try:
        prepare_writes(backend, resource)
    finally:
        backend.close(resource)


def query_op(backend: Backend, resource: Any, reads: bool, writes: bool) -> Callable[[], None]:
    def op():
        if reads:
            backend.read(resource)
        if writes:
            backend.write(resource)
    return op


def heavy_params(payload: QueryPayload):
    return {
        "maintain_second": payload.maintain_second,
        "query_per_interval": payload.query_per_interval,
        "interval_second": payload.interval_second,
        "reads": payload.reads,
        "writes": payload.writes,
    }


def add_datastore_routes(router: APIRouter, name: str, display: str) -> None:
    @router.post(f"/{name}/heavy", name=f"{name}_heavy")
    async def heavy(payload: QueryPayload, request: Request):
        backend = backend_for(request, name)
        resource = await open_or_fail(backend)
        if payload.writes:
            await asyncio.to_thread(prepare_writes, backend, resource)

        def job():
            return run_loop(
                batch(query_op(backend, resource, payload.reads, payload.writes), payload.query_per_interval, f"{name}_heavy"),
                payload.maintain_second,
                payload.interval_second,
                label=f"{name}_heavy",
                release=lambda: backend.close(resource),
            )

        return await dispatch(
            job,
            payload.run_async,
            f"{display} heavy query (single connection)",
            heavy_params(payload),
            f"{name}_heavy",
        )

    @router.post(f"/{name}/multi_heavy", name=f"{name}_multi_heavy")
    async def multi_heavy(payload: MultiQueryPayload, request: Request):
        backend = backend_for(request, name)

        def job():
            if payload.writes:
                prepare_with_new_connection(backend)
            return fan_out(
                backend.open,
                lambda resource: batch(
                    query_op(backend, resource, payload.reads, payload.writes),
                    payload.query_per_interval,
                    f"{name}_multi_heavy",
                )(),
                backend.close,
                payload.connection_counts,
                payload.maintain_second,
                payload.interval_second,
                label=f"{name}_multi_heavy",
            )

        params = heavy_params(payload)
        params["connection_counts"] = payload.connection_counts
        return await dispatch(
            job,
            payload.run_async,
            f"{display} heavy query (multiple connections)",
            params,
            f"{name}_multi_heavy",
        )

    @router.post(f"/{name}/connection", name=f"{name}_connection")
    async def connection(payload: ConnectionPayload, request: Request):
        backend = backend_for(request, name)

        def job():
            return ramp_up(
                backend.open,
                backend.close,
                payload.connection_counts,
                payload.increase_per_interval,
                payload.interval_second,
                payload.maintain_second,
                label=f"{name}_connection",
            )

        return await dispatch(
            job,
            payload.run_async,
            f"{display} connection stress",
            {
                "maintain_second": payload.maintain_second,
                "connection_counts": payload.connection_counts,
                "increase_per_interval": payload.increase_per_interval,
                "interval_second": payload.interval_second,
            },
            f"{name}_connection",
        )


for _name, _display in DATASTORES.items():
    add_datastore_routes(router, _name, _display)
