"""
Pieces every stress router shares: the job payload base, back-end lookup, dispatch
"""
from typing import Any, Callable, Dict

from fastapi import Request
from pydantic import BaseModel, ConfigDict, Field

from biggie.backends import Backend
from biggie.config import ConfigError
from biggie.driver import run_job
from biggie.duck import Count, IntervalSeconds, Seconds
from biggie.responses import CONFIG_ERROR, ApiError, response_json


class JobPayload(BaseModel):
    """maintain_second + async, shared by every timed job"""
    model_config = ConfigDict(populate_by_name=True)

    maintain_second: Seconds = 0
    run_async: bool = Field(False, alias="async")


class IntervalPayload(JobPayload):
    interval_second: IntervalSeconds = 1


class QueryPayload(IntervalPayload):
    reads: bool = False
    writes: bool = False
    query_per_interval: Count = 1


class MultiQueryPayload(QueryPayload):
    connection_counts: Count = 1


class ConnectionPayload(IntervalPayload):
    connection_counts: Count = 1
    increase_per_interval: Count = 1


def backend_for(request: Request, name: str) -> Backend:
    """Build the named back end from settings; unconfigured -> 500 CONFIG_ERROR"""
    factory = request.app.state.backend_factories[name]
    try:
        return factory(request.app.state.settings)
    except ConfigError as exc:
        raise ApiError(500, CONFIG_ERROR, str(exc))


async def dispatch(
    job: Callable[[], Any],
    run_async: bool,
    message: str,
    params: Dict[str, Any],
    label: str,
):
    """Run or detach the job and answer with '<message> started|completed' plus params"""
    await run_job(job, run_async, label)
    body = {"message": f"{message} {'started' if run_async else 'completed'}"}
    body.update(params)
    return response_json(body)
