"""
Kafka produce load: heavy (one producer), multi_heavy (N producers), connection (ramp-up)
"""
from typing import Any

from fastapi import APIRouter, Request

from biggie.backends import Backend, lorem_ipsum
from biggie.driver import fan_out, ramp_up, run_loop
from biggie.duck import Count
from biggie.routes.common import ConnectionPayload, IntervalPayload, backend_for, dispatch
from biggie.routes.datastores import open_or_fail

router = APIRouter(prefix="/kafka", tags=["kafka"])


class ProducePayload(IntervalPayload):
    messages: str = ""
    produce_per_interval: Count = 1


class MultiProducePayload(ProducePayload):
    connection_counts: Count = 1


def produce_batch(backend: Backend, producer: Any, count: int, message: str) -> None:
    """count messages keyed key-0..key-<count-1>, then flush"""
    for i in range(count):
        backend.write(producer, (f"key-{i}", message))
    backend.flush(producer)


def produce_params(payload: ProducePayload, message: str):
    return {
        "maintain_second": payload.maintain_second,
        "produce_per_interval": payload.produce_per_interval,
        "interval_second": payload.interval_second,
        "messages": message,
    }


@router.post("/heavy")
async def kafka_heavy(payload: ProducePayload, request: Request):
    backend = backend_for(request, "kafka")
    message = payload.messages or lorem_ipsum()
    producer = await open_or_fail(backend)

    def job():
        return run_loop(
            lambda: produce_batch(backend, producer, payload.produce_per_interval, message),
            payload.maintain_second,
            payload.interval_second,
            label="kafka_heavy",
            release=lambda: backend.close(producer),
        )

    return await dispatch(job, payload.run_async, "Kafka heavy produce", produce_params(payload, message), "kafka_heavy")


@router.post("/multi_heavy")
async def kafka_multi_heavy(payload: MultiProducePayload, request: Request):
    backend = backend_for(request, "kafka")
    message = payload.messages or lorem_ipsum()

    def job():
        return fan_out(
            backend.open,
            lambda producer: produce_batch(backend, producer, payload.produce_per_interval, message),
            backend.close,
            payload.connection_counts,
            payload.maintain_second,
            payload.interval_second,
            label="kafka_multi_heavy",
        )

    params = produce_params(payload, message)
    params["connection_counts"] = payload.connection_counts
    return await dispatch(job, payload.run_async, "Kafka multi heavy produce", params, "kafka_multi_heavy")


@router.post("/connection")
async def kafka_connection(payload: ConnectionPayload, request: Request):
    backend = backend_for(request, "kafka")

    def job():
        return ramp_up(
            backend.open,
            backend.close,
            payload.connection_counts,
            payload.increase_per_interval,
            payload.interval_second,
            payload.maintain_second,
            label="kafka_connection",
        )

    return await dispatch(
        job,
        payload.run_async,
        "Kafka connection stress",
        {
            "maintain_second": payload.maintain_second,
            "connection_counts": payload.connection_counts,
            "increase_per_interval": payload.increase_per_interval,
            "interval_second": payload.interval_second,
        },
        "kafka_connection",
    )
